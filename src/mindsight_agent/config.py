"""
Agent configuration. Settings come from a YAML file, environment
variables (MINDSIGHT_*) and explicit overrides, in increasing priority.
The resulting AgentConfig is immutable; everything reads it once at
construction time.
"""

from __future__ import annotations

import logging
import os
import re
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from mindsight_agent.cache.registry import Source
from mindsight_agent.errors import ConfigError
from mindsight_agent.upstream.auth import DEFAULT_AUDIENCE, DEFAULT_TOKEN_URL

log = logging.getLogger(__name__)

ENV_PREFIX = "MINDSIGHT_"
CONFIG_NAME = "mindsight-agent.yaml"
CONFIG_SEARCH_PATHS = (Path("."), Path("/etc/mindsight"))

DEFAULT_API_SERVER = "https://sre-api.mindsight.io/"
DEFAULT_CACHE_DEPTH = 1000
DEFAULT_CACHE_AGE = timedelta(minutes=5)
DEFAULT_SCRAPE_INTERVAL = timedelta(seconds=5)
DEFAULT_REFRESH_SOURCES_INTERVAL = timedelta(hours=1)
DEFAULT_REQUEST_TIMEOUT = timedelta(seconds=10)

# Go-style duration strings, e.g. "300ms", "5m", "1h30m"
_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|us|µs|ns|h|m|s)")
_DURATION_UNITS = {
    "h": 3600.0,
    "m": 60.0,
    "s": 1.0,
    "ms": 1e-3,
    "us": 1e-6,
    "µs": 1e-6,
    "ns": 1e-9,
}


def parse_duration(value: Any) -> timedelta:
    """Accept a timedelta, a number of seconds, or a Go-style duration string."""
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)
    if not isinstance(value, str):
        raise ValueError(f"invalid duration: {value!r}")

    text = value.strip()
    try:
        return timedelta(seconds=float(text))
    except ValueError:
        pass

    pos = 0
    total = 0.0
    for match in _DURATION_PART_RE.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    if pos == 0 or pos != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return timedelta(seconds=total)


class SourceSpec(BaseModel):
    """One entry of the initial source list."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: int
    endpoint: str = Field(validation_alias=AliasChoices("endpoint", "sourceURL", "url"))
    query: str

    def to_source(self) -> Source:
        return Source(id=self.id, endpoint=self.endpoint, query=self.query)


class AgentConfig(BaseSettings):
    """Agent settings.

    Use ``load_config()`` to build with YAML + env var layering.
    Direct construction (e.g. in tests) skips YAML loading.
    """

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, frozen=True, extra="ignore")

    client_id: str = ""
    client_secret: str = ""
    api_server: str = DEFAULT_API_SERVER
    auth_url: str = DEFAULT_TOKEN_URL
    auth_audience: str = DEFAULT_AUDIENCE
    cache_age: timedelta = DEFAULT_CACHE_AGE
    cache_depth: int = DEFAULT_CACHE_DEPTH
    scrape_interval: timedelta = DEFAULT_SCRAPE_INTERVAL
    refresh_sources_interval: timedelta = DEFAULT_REFRESH_SOURCES_INTERVAL
    request_timeout: timedelta = DEFAULT_REQUEST_TIMEOUT
    sources: List[SourceSpec] = Field(default_factory=list)

    @field_validator(
        "cache_age", "scrape_interval", "refresh_sources_interval", "request_timeout",
        mode="before",
    )
    @classmethod
    def _parse_duration(cls, value: Any) -> timedelta:
        return parse_duration(value)

    @field_validator(
        "cache_age", "scrape_interval", "refresh_sources_interval", "request_timeout",
    )
    @classmethod
    def _positive_duration(cls, value: timedelta) -> timedelta:
        if value <= timedelta(0):
            raise ValueError("must be a positive duration")
        return value

    @field_validator("cache_depth")
    @classmethod
    def _positive_depth(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    def initial_sources(self) -> List[Source]:
        return [spec.to_source() for spec in self.sources]

    def validate_credentials(self):
        if not self.client_id:
            raise ConfigError(
                f"env variable {ENV_PREFIX}CLIENT_ID (or config client_id) must be given"
            )
        if not self.client_secret:
            raise ConfigError(
                f"env variable {ENV_PREFIX}CLIENT_SECRET (or config client_secret) must be given"
            )

    def describe(self) -> Dict[str, str]:
        """Printable view of the settings with the secret masked."""
        return {
            "client_id": self.client_id,
            "client_secret": "XXXX" if self.client_secret else "",
            "api_server": self.api_server,
            "auth_url": self.auth_url,
            "cache_age": str(self.cache_age),
            "cache_depth": str(self.cache_depth),
            "scrape_interval": str(self.scrape_interval),
            "refresh_sources_interval": str(self.refresh_sources_interval),
            "request_timeout": str(self.request_timeout),
            "sources": str(len(self.sources)),
        }

    def __str__(self) -> str:
        return " ".join(f"{k}={v}" for k, v in self.describe().items())


def find_config_file(search_paths: Sequence[Path] = CONFIG_SEARCH_PATHS) -> Optional[Path]:
    for directory in search_paths:
        candidate = directory / CONFIG_NAME
        if candidate.is_file():
            return candidate
    return None


def _load_yaml(path: Path) -> Dict[str, Any]:
    try:
        with path.open() as config_file:
            data = yaml.safe_load(config_file)
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"read config file {path}: {exc}") from exc
    return data if isinstance(data, dict) else {}


def load_config(path: Optional[str] = None, require_credentials: bool = True, **overrides: Any) -> AgentConfig:
    """Build AgentConfig with priority: overrides > env vars > YAML > defaults.

    YAML values are only used for fields that don't have a matching
    environment variable, so env vars always win.

    Raises:
        ConfigError: If the file can't be read or a value is invalid.
    """
    config_path = Path(path) if path else find_config_file()
    yaml_values: Dict[str, Any] = {}

    if config_path is None:
        log.warning("Couldn't find %s, using environment and defaults only", CONFIG_NAME)
    elif not config_path.is_file():
        raise ConfigError(f"config file {config_path} does not exist")
    else:
        yaml_values = _load_yaml(config_path)
        log.debug("Loaded config file %s", config_path)

    filtered: Dict[str, Any] = {}
    for key, value in yaml_values.items():
        # YAML allows non-string keys; unknown ones are ignored by the model
        key = str(key)
        env_key = f"{ENV_PREFIX}{key.upper()}"
        if env_key not in os.environ:
            filtered[key] = value

    merged = {**filtered, **overrides}
    try:
        config = AgentConfig(**merged)
    except ValidationError as exc:
        raise ConfigError(f"invalid configuration: {exc}") from exc

    if require_credentials:
        config.validate_credentials()
    return config
