"""
Accumulation cache. Scrapes every registered source, keeps the results
in memory and decides when a batch is big enough (or old enough) to be
sent upstream.

Not thread-safe: it is only ever driven from the scheduler's thread.
Nothing survives a crash; unflushed samples are simply lost.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional

from mindsight_agent.cache.registry import Connector, Source, SourceRegistry
from mindsight_agent.collector.prometheus_client import PrometheusClient
from mindsight_agent.errors import CollectError, QueryError
from mindsight_agent.metrics import Batch, Sample

log = logging.getLogger(__name__)

DEFAULT_LIMIT = 1000
DEFAULT_MAX_AGE = timedelta(minutes=5)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AccumulationCache:

    def __init__(
        self,
        limit: int = DEFAULT_LIMIT,
        max_age: timedelta = DEFAULT_MAX_AGE,
        sources: Iterable[Source] = (),
        connect: Connector = PrometheusClient,
        now_fn: Callable[[], datetime] = utcnow,
    ):
        self._limit = limit
        self._max_age = max_age
        self._connect = connect
        self._now_fn = now_fn

        self._registry = SourceRegistry()
        self._values: Dict[int, List[Sample]] = {}
        self._sample_count = 0
        self._last_flush = now_fn()

        self.install(sources)

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def max_age(self) -> timedelta:
        return self._max_age

    @property
    def sample_count(self) -> int:
        return self._sample_count

    @property
    def last_flush(self) -> datetime:
        return self._last_flush

    @property
    def sources(self) -> List[Source]:
        return self._registry.sources

    @property
    def registry(self) -> SourceRegistry:
        return self._registry

    def pending(self) -> Batch:
        """Copy of what has accumulated since the last flush."""
        return {sid: list(samples) for sid, samples in self._values.items()}

    def install(self, sources: Iterable[Source]) -> Batch:
        """Swap in a new source list and hand back what the old one collected.

        Connections are built before anything is touched, so a failure
        (BackendConnectError) leaves the registry and pending values as
        they were. On success the pending values are cleared, the flush
        clock restarts and the old connections are closed.
        """
        registry = SourceRegistry.build(list(sources), self._connect)

        previous = self._values
        old_registry = self._registry

        self._registry = registry
        self._values = {}
        self._sample_count = 0
        self._last_flush = self._now_fn()

        old_registry.close()

        log.info(
            "Installed %d sources (%d connections), %d samples handed back",
            len(registry), len(registry.connections), sum(len(v) for v in previous.values()),
        )
        return previous

    def collect(self) -> Optional[Batch]:
        """Query every source once, then flush if a threshold was crossed.

        Returns the flushed batch, or None when there is nothing to flush
        yet. An empty dict is a real flush (e.g. no sources and the age
        limit passed).

        A failing source raises CollectError straight away. Sources queried
        earlier in the same call keep their appended results.
        """
        for bound in self._registry:
            src = bound.source
            try:
                results = bound.backend.query(src.query)
            except QueryError as exc:
                raise CollectError(src.query, src.endpoint, str(exc)) from exc

            if not results:
                raise CollectError(src.query, src.endpoint, "empty result vector")

            self._values.setdefault(src.id, []).extend(results)
            self._sample_count += len(results)

        now = self._now_fn()
        deadline = self._last_flush + self._max_age

        if self._sample_count >= self._limit or now > deadline:
            flushed = self._values
            log.debug(
                "Flushing %d samples from %d sources (count=%s, aged=%s)",
                self._sample_count, len(flushed),
                self._sample_count >= self._limit, now > deadline,
            )
            self._values = {}
            self._sample_count = 0
            self._last_flush = now
            return flushed

        return None

    def close(self):
        self._registry.close()
