"""
Source registry: the current scrape targets, each bound to a backend
connection. Connections are shared by endpoint string, so ten queries
against one Prometheus reuse a single HTTP pool.

A registry is built wholesale from a source list and never mutated;
refreshing the list means building a new one and swapping it in.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from mindsight_agent.collector.base import QueryBackend
from mindsight_agent.errors import BackendConnectError

log = logging.getLogger(__name__)

Connector = Callable[[str], QueryBackend]


@dataclass(frozen=True)
class Source:
    id: int
    endpoint: str
    query: str


@dataclass(frozen=True)
class BoundSource:
    source: Source
    backend: QueryBackend

    @property
    def id(self) -> int:
        return self.source.id


class SourceRegistry:

    def __init__(self, bound: Iterable[BoundSource] = (), connections: Optional[Dict[str, QueryBackend]] = None):
        self._bound: Tuple[BoundSource, ...] = tuple(bound)
        self._connections: Dict[str, QueryBackend] = dict(connections or {})

    @classmethod
    def build(cls, sources: Iterable[Source], connect: Connector) -> "SourceRegistry":
        """Bind every source to a connection, one connection per endpoint.

        If any connection can't be built, the ones already built in this
        call are closed and BackendConnectError is raised.
        """
        connections: Dict[str, QueryBackend] = {}
        bound: List[BoundSource] = []

        for src in sources:
            backend = connections.get(src.endpoint)
            if backend is None:
                try:
                    backend = connect(src.endpoint)
                except Exception as exc:
                    for conn in connections.values():
                        conn.close()
                    if isinstance(exc, BackendConnectError):
                        raise
                    raise BackendConnectError(
                        f"connect to prometheus server {src.endpoint}: {exc}"
                    ) from exc
                connections[src.endpoint] = backend
            bound.append(BoundSource(source=src, backend=backend))

        log.debug("Built registry: %d sources over %d connections", len(bound), len(connections))
        return cls(bound, connections)

    @property
    def sources(self) -> List[Source]:
        return [b.source for b in self._bound]

    @property
    def connections(self) -> Dict[str, QueryBackend]:
        return dict(self._connections)

    def __iter__(self) -> Iterator[BoundSource]:
        return iter(self._bound)

    def __len__(self) -> int:
        return len(self._bound)

    def close(self):
        for conn in self._connections.values():
            conn.close()
