"""
Core sample definitions for the agent.

A Sample mirrors one element of a Prometheus instant-vector result:
a label set, a scalar value and the evaluation timestamp. Batches are
what the cache hands over on a flush: source id -> samples, in the
order they were scraped.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List

Batch = Dict[int, List["Sample"]]


def format_value(value: float) -> str:
    """Prometheus spells special floats its own way."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    return repr(value)


def parse_value(raw: str) -> float:
    # float() already understands NaN, +Inf and -Inf
    return float(raw)


@dataclass(frozen=True)
class Sample:
    """A single labeled observation returned by one query execution."""

    labels: Dict[str, str] = field(default_factory=dict)
    value: float = 0.0
    timestamp: float = 0.0  # unix seconds

    @property
    def name(self) -> str:
        return self.labels.get("__name__", "")

    def to_json(self) -> Dict[str, Any]:
        return {
            "metric": dict(self.labels),
            "value": [round(self.timestamp, 3), format_value(self.value)],
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Sample":
        """Build a Sample from the Prometheus API encoding.

        Raises ValueError if the element doesn't look like a vector sample.
        """
        try:
            ts, raw_value = data["value"]
            labels = data.get("metric") or {}
            return cls(
                labels={str(k): str(v) for k, v in labels.items()},
                value=parse_value(raw_value),
                timestamp=float(ts),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"malformed sample: {data!r}") from exc


def encode_batch(batch: Batch) -> Dict[str, List[Dict[str, Any]]]:
    """JSON-ready form of a flushed batch. Keys become decimal strings."""
    return {
        str(source_id): [sample.to_json() for sample in samples]
        for source_id, samples in batch.items()
    }


def batch_size(batch: Batch) -> int:
    return sum(len(samples) for samples in batch.values())
