"""
The agent: wires config, auth, cache and the upstream clients together
and defines the two periodic actions the scheduler drives.

    scrape           collect from every source, push the batch if it flushed
    refresh sources  fetch the source list, install it, push the leftovers

Startup failures are fatal (AgentInitError). Once running, a failing
tick is only logged; the next tick starts from whatever state the cache
was left in.
"""

from __future__ import annotations

import enum
import functools
import logging
from datetime import datetime
from typing import Callable, Optional

from mindsight_agent.cache.accumulator import AccumulationCache, utcnow
from mindsight_agent.cache.registry import Connector
from mindsight_agent.collector.prometheus_client import PrometheusClient
from mindsight_agent.config import AgentConfig
from mindsight_agent.engine.scheduler import Scheduler
from mindsight_agent.errors import AgentError, AgentInitError
from mindsight_agent.metrics import batch_size
from mindsight_agent.upstream.api_client import MetricsPusher, SourceQueryer, TokenSource
from mindsight_agent.upstream.auth import ClientCredentialsGrant

log = logging.getLogger(__name__)

SCRAPE = "scrape"
REFRESH_SOURCES = "refreshSources"


class AgentState(enum.Enum):
    INITIALIZING = "initializing"
    RUNNING = "running"
    TERMINATED = "terminated"


class Agent:

    def __init__(
        self,
        config: AgentConfig,
        *,
        auth: Optional[TokenSource] = None,
        pusher: Optional[MetricsPusher] = None,
        queryer: Optional[SourceQueryer] = None,
        connect: Optional[Connector] = None,
        scheduler: Optional[Scheduler] = None,
        now_fn: Callable[[], datetime] = utcnow,
    ):
        self._config = config
        self._auth = auth
        self._pusher = pusher
        self._queryer = queryer
        self._timeout = config.request_timeout.total_seconds()
        self._connect = connect or functools.partial(PrometheusClient, timeout_seconds=self._timeout)
        self._scheduler = scheduler or Scheduler()
        self._now_fn = now_fn
        self._cache: Optional[AccumulationCache] = None
        self.state = AgentState.INITIALIZING

    @property
    def cache(self) -> Optional[AccumulationCache]:
        return self._cache

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    def _init_auth(self):
        if self._auth is None:
            self._config.validate_credentials()
            self._auth = ClientCredentialsGrant(
                client_id=self._config.client_id,
                client_secret=self._config.client_secret,
                token_url=self._config.auth_url,
                audience=self._config.auth_audience,
                timeout_seconds=self._timeout,
            )
        # test the token
        self._auth.get_access_token()

    def initialize(self):
        """Build everything and fetch the first source list.

        Raises:
            AgentInitError: On any failure. The agent is TERMINATED.
        """
        self.state = AgentState.INITIALIZING
        log.info("Starting agent: %s", self._config)

        steps = [
            ("init auth", self._init_auth),
            ("init cache", self._init_cache),
            ("init api clients", self._init_clients),
            ("init refresh sources", self.refresh_sources),
        ]
        for label, step in steps:
            try:
                step()
            except AgentError as e:
                self.state = AgentState.TERMINATED
                self.close()
                raise AgentInitError(f"{label}: {e}") from e

        self._scheduler.every(self._config.scrape_interval.total_seconds(), SCRAPE, self.scrape)
        self._scheduler.every(
            self._config.refresh_sources_interval.total_seconds(), REFRESH_SOURCES, self.refresh_sources
        )

    def _init_cache(self):
        self._cache = AccumulationCache(
            limit=self._config.cache_depth,
            max_age=self._config.cache_age,
            sources=self._config.initial_sources(),
            connect=self._connect,
            now_fn=self._now_fn,
        )

    def _init_clients(self):
        if self._pusher is None:
            self._pusher = MetricsPusher(self._config.api_server, self._auth, timeout_seconds=self._timeout)
        if self._queryer is None:
            self._queryer = SourceQueryer(self._config.api_server, self._auth, timeout_seconds=self._timeout)

    def scrape(self):
        """One scrape tick. Raises AgentError subclasses on failure."""
        data = self._cache.collect()
        if data is not None:
            log.debug("Scrape flushed %d samples", batch_size(data))
            self._pusher.push(data)

    def refresh_sources(self):
        """One refresh tick: install the upstream source list, push what was pending.

        The leftovers are pushed even when empty.
        """
        sources = self._queryer.query_sources()
        leftovers = self._cache.install(sources)
        self._pusher.push(leftovers)

    def run(self):
        """Initialize, then loop until stop() is called.

        Raises:
            AgentInitError: If startup fails.
        """
        self.initialize()
        self.state = AgentState.RUNNING
        try:
            self._scheduler.run()
        finally:
            self.state = AgentState.TERMINATED
            self.close()

    def stop(self):
        self._scheduler.stop()

    def close(self):
        for component in (self._cache, self._pusher, self._queryer, self._auth):
            close = getattr(component, "close", None)
            if close is not None:
                close()
