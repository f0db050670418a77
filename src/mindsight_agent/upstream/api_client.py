"""
Clients for the Mindsight API: pushing flushed batches to the ingest
endpoint and asking the GraphQL endpoint which sources to scrape.

Both resolve their endpoint against the configured API base, so
`https://sre-api.mindsight.io/` becomes `.../query` and `.../metricsin/`.
"""

from __future__ import annotations

import logging
from typing import List, Protocol
from urllib.parse import urljoin

import httpx

from mindsight_agent.cache.registry import Source
from mindsight_agent.errors import AuthError, ConfigError, PushError, SourceQueryError
from mindsight_agent.metrics import Batch, batch_size, encode_batch

log = logging.getLogger(__name__)

QUERY_PATH = "query"
METRICS_PATH = "metricsin/"

METRIC_SOURCES_QUERY = """{
	metricSources {
		id
		sourceURL
		query
	}
}"""


class TokenSource(Protocol):
    def get_access_token(self) -> str:
        ...


def check_base_url(base_url: str) -> str:
    """Reject an API base that can't be an absolute http(s) URL.

    Raises:
        ConfigError: If the URL doesn't parse or has no host.
    """
    try:
        url = httpx.URL(base_url)
    except (httpx.InvalidURL, TypeError) as exc:
        raise ConfigError(f"parse api server url {base_url!r}: {exc}") from exc
    if url.scheme not in ("http", "https") or not url.host:
        raise ConfigError(f"parse api server url {base_url!r}: not an http(s) URL")
    return base_url


def query_url(base_url: str) -> str:
    return urljoin(base_url, QUERY_PATH)


def metrics_url(base_url: str) -> str:
    return urljoin(base_url, METRICS_PATH)


def _auth_headers(token: str) -> dict:
    return {"Authorization": "bearer " + token}


class MetricsPusher:
    """Sends one flushed batch per call to the ingest endpoint."""

    def __init__(self, base_url: str, auth: TokenSource, timeout_seconds: float = 10.0):
        self._url = metrics_url(check_base_url(base_url))
        self._auth = auth
        self._client = httpx.Client(timeout=timeout_seconds)

    @property
    def url(self) -> str:
        return self._url

    def push(self, batch: Batch):
        try:
            token = self._auth.get_access_token()
        except AuthError as exc:
            raise PushError(f"get access token: {exc}") from exc

        try:
            response = self._client.post(
                self._url,
                json=encode_batch(batch),
                headers={**_auth_headers(token), "Content-Type": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise PushError(f"do http request: {exc}") from exc

        if response.status_code < 200 or response.status_code > 299:
            raise PushError(
                f"response status: {response.status_code} {response.reason_phrase}, "
                f"body: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        log.info("Pushed %d samples from %d sources", batch_size(batch), len(batch))

    def close(self):
        self._client.close()


class SourceQueryer:
    """Fetches the authoritative source list over GraphQL."""

    def __init__(self, base_url: str, auth: TokenSource, timeout_seconds: float = 10.0):
        self._url = query_url(check_base_url(base_url))
        self._auth = auth
        self._client = httpx.Client(timeout=timeout_seconds)

    @property
    def url(self) -> str:
        return self._url

    def query_sources(self) -> List[Source]:
        try:
            token = self._auth.get_access_token()
        except AuthError as exc:
            raise SourceQueryError(f"get auth token: {exc}") from exc

        try:
            response = self._client.post(
                self._url,
                json={"query": METRIC_SOURCES_QUERY},
                headers=_auth_headers(token),
            )
        except httpx.HTTPError as exc:
            raise SourceQueryError(f"query new sources: {exc}") from exc

        if response.status_code < 200 or response.status_code > 299:
            raise SourceQueryError(
                f"query new sources: response status: {response.status_code}, "
                f"body: {response.text}"
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise SourceQueryError("query new sources: response is not JSON") from exc

        errors = body.get("errors") if isinstance(body, dict) else None
        if errors:
            messages = "; ".join(str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors)
            raise SourceQueryError(f"query new sources: graphql: {messages}")

        try:
            items = body["data"]["metricSources"] or []
            sources = [
                Source(id=int(item["id"]), endpoint=str(item["sourceURL"]), query=str(item["query"]))
                for item in items
            ]
        except (KeyError, TypeError, ValueError) as exc:
            raise SourceQueryError(f"query new sources: malformed response: {exc}") from exc

        log.debug("Fetched %d sources from %s", len(sources), self._url)
        return sources

    def close(self):
        self._client.close()
