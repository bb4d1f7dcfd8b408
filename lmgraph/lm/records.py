"""N-gram records and the source interface consumed by the FST converter."""

from abc import ABC, abstractmethod
from typing import Iterator, NamedTuple, Tuple


class NgramRecord(NamedTuple):
    """One n-gram entry.

    Words run from oldest to newest, so ``words[-1]`` is the predicted word.
    ``log_backoff`` is 0.0 when the model gives none (including every
    n-gram of the highest order).
    """
    order: int
    log_prob: float
    words: Tuple[str, ...]
    log_backoff: float


class NgramSource(ABC):
    """Stream of n-gram records.

    Records come in ascending order, and within one order in file or table
    order. ``max_order`` must be valid once iteration has started.
    """

    @property
    @abstractmethod
    def max_order(self) -> int:
        """Highest n-gram order of the model."""

    @abstractmethod
    def __iter__(self) -> Iterator[NgramRecord]:
        """Yield records in conversion order."""
