"""
Backend for a Prometheus server. Runs instant queries against
/api/v1/query and maps the JSON vector result into Samples.

Anything other than a non-empty vector is an error: the cache relies
on that to keep empty scrapes out of a batch.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, List

import httpx

from mindsight_agent.collector.base import QueryBackend
from mindsight_agent.errors import BackendConnectError, QueryError
from mindsight_agent.metrics import Sample

log = logging.getLogger(__name__)

QUERY_PATH = "/api/v1/query"


class PrometheusClient(QueryBackend):

    def __init__(
        self,
        address: str,
        timeout_seconds: float = 5.0,
        now_fn: Callable[[], float] = time.time,
    ):
        try:
            url = httpx.URL(address)
        except (httpx.InvalidURL, TypeError) as exc:
            raise BackendConnectError(f"new prometheus client connection: {address!r}") from exc

        if url.scheme not in ("http", "https") or not url.host:
            raise BackendConnectError(
                f"new prometheus client connection: {address!r} is not an http(s) URL"
            )

        self._address = address.rstrip("/")
        self._query_url = self._address + QUERY_PATH
        self._timeout = timeout_seconds
        self._now_fn = now_fn
        self._client = httpx.Client(timeout=self._timeout)

    @property
    def address(self) -> str:
        return self._address

    def query(self, query: str) -> List[Sample]:
        """Evaluate `query` at the current time and return its vector."""
        params = {"query": query, "time": f"{self._now_fn():.3f}"}
        try:
            response = self._client.get(self._query_url, params=params)
        except httpx.HTTPError as exc:
            raise QueryError(f"query current value: {exc}") from exc

        try:
            payload = response.json()
        except ValueError:
            payload = None

        # Prometheus answers 400/422 with a JSON error body, so check that first
        if isinstance(payload, dict) and payload.get("status") == "error":
            raise QueryError(
                f"query current value: {payload.get('errorType', 'unknown')}: "
                f"{payload.get('error', '')}"
            )

        if response.status_code < 200 or response.status_code > 299:
            raise QueryError(
                f"query current value: response status: {response.status_code}, "
                f"body: {response.text}"
            )

        if not isinstance(payload, dict) or not isinstance(payload.get("data"), dict):
            raise QueryError("query current value: malformed response body")

        data = payload["data"]
        result_type = data.get("resultType")
        if result_type != "vector":
            raise QueryError(f"expected vector result type, got: {result_type}")

        result = data.get("result") or []
        if len(result) == 0:
            raise QueryError("empty result vector")

        try:
            samples = [Sample.from_json(item) for item in result]
        except ValueError as exc:
            raise QueryError(f"decode vector: {exc}") from exc

        log.debug("Query %r on %s returned %d samples", query, self._address, len(samples))
        return samples

    def name(self) -> str:
        return f"Prometheus ({self._address})"

    def close(self):
        self._client.close()
