"""
Memory layer interface and shared scoring helpers.
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any, TypeVar

from strata.core.types import Layer
from strata.core.typing import Clock, JSONDict

T = TypeVar("T")


def jaccard(a: Iterable[Any], b: Iterable[Any]) -> float:
    """|a & b| / |a | b|, 0 when either side is empty."""
    set_a, set_b = set(a), set(b)
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / len(set_a | set_b)


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


@dataclass
class LayerConsolidation:
    """Outcome of one layer's consolidation pass."""

    layer: Layer
    items_before: int
    removed: int
    retained: int
    details: dict[str, Any] | None = None

    @property
    def compression_ratio(self) -> float:
        return self.removed / self.items_before if self.items_before else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "layer": self.layer.value,
            "items_before": self.items_before,
            "removed": self.removed,
            "retained": self.retained,
            "compression_ratio": self.compression_ratio,
            "details": self.details or {},
        }


class MemoryLayer(ABC):
    """Abstract memory index.

    Writers are serialized by ``_lock``. All mutation done while holding it
    is synchronous, so one write is atomic with respect to cancellation and
    to readers. Searches never take the lock.
    """

    layer: Layer

    def __init__(self, clock: Clock | None = None):
        self._lock = asyncio.Lock()
        self._clock: Clock = clock or datetime.now

    def now(self) -> datetime:
        return self._clock()

    @abstractmethod
    def size(self) -> int:
        """Number of primary items held."""
        ...

    @property
    @abstractmethod
    def capacity(self) -> int:
        """Configured maximum of primary items."""
        ...

    def utilization(self) -> float:
        return self.size() / self.capacity if self.capacity else 0.0

    @abstractmethod
    def status(self) -> dict[str, Any]:
        """Size, utilization and layer-specific counters."""
        ...

    @abstractmethod
    async def consolidate(self) -> LayerConsolidation:
        """Compact the layer in small batches."""
        ...

    @abstractmethod
    def export_state(self) -> JSONDict:
        """JSON-compatible snapshot of the layer."""
        ...

    @abstractmethod
    async def import_state(self, state: JSONDict) -> None:
        """Replace the layer contents with a snapshot."""
        ...
