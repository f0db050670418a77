"""
Base query backend interface.

A backend is anything that can turn a query string into a vector of
samples. The cache only talks to this interface, so Prometheus can be
swapped for another time-series store, or a test double.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List

from mindsight_agent.metrics import Sample


class QueryBackend(ABC):
    """Interface for all time-series query endpoints."""

    @abstractmethod
    def query(self, query: str) -> List[Sample]:
        """Run an instant query.

        Must raise QueryError rather than return an empty list when the
        result is empty or not a vector.
        """
        ...

    @abstractmethod
    def name(self) -> str:
        """Human-readable name for this backend."""
        ...

    def close(self):
        """Release any pooled connections. No-op by default."""
