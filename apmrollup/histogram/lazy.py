"""
Lazy Histogram

Duration histogram that keeps raw values while they are few and switches,
permanently, to a LogBucketHistogram once they are not.
"""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Union

from apmrollup.histogram.log_buckets import MAX_VALUE, LogBucketHistogram
from apmrollup.wire.model import HistogramMessage

logger = logging.getLogger(__name__)

DEFAULT_MAX_EXACT_VALUES = 1024


class HistogramMode(Enum):
    EXACT = "exact"
    APPROXIMATE = "approximate"


@dataclass
class _ExactValues:
    values: List[int] = field(default_factory=list)
    # values are sorted lazily, once per batch of adds
    is_sorted: bool = True

    def ensure_sorted(self) -> None:
        if not self.is_sorted:
            self.values.sort()
            self.is_sorted = True


class LazyHistogram:
    """
    Dual-mode histogram aggregator.

    Args:
        max_exact_values: raw values kept before converting to approximate mode
        significant_digits: precision of the approximate structure
    """

    def __init__(
        self,
        max_exact_values: int = DEFAULT_MAX_EXACT_VALUES,
        significant_digits: int = 2,
    ):
        if max_exact_values < 0:
            raise ValueError(f"max_exact_values must be >= 0, got {max_exact_values}")
        if not 1 <= significant_digits <= 5:
            raise ValueError(f"significant_digits must be in 1..5, got {significant_digits}")
        self.max_exact_values = max_exact_values
        self.significant_digits = significant_digits
        self._state: Union[_ExactValues, LogBucketHistogram] = _ExactValues()

    @property
    def mode(self) -> HistogramMode:
        if isinstance(self._state, LogBucketHistogram):
            return HistogramMode.APPROXIMATE
        return HistogramMode.EXACT

    @property
    def total_count(self) -> int:
        if isinstance(self._state, LogBucketHistogram):
            return self._state.total_count
        return len(self._state.values)

    def __len__(self) -> int:
        return self.total_count

    def _convert_to_approximate(self) -> LogBucketHistogram:
        """One-way transition from exact to approximate mode."""
        state = self._state
        if isinstance(state, LogBucketHistogram):
            return state
        approximate = LogBucketHistogram(self.significant_digits)
        for value in state.values:
            approximate.record(value)
        logger.debug(
            f"Converted histogram to approximate mode after {len(state.values)} values"
        )
        self._state = approximate
        return approximate

    def add(self, value: int) -> None:
        if value is None:
            raise ValueError("Histogram value must not be None")
        value = int(value)
        if value < 0 or value > MAX_VALUE:
            raise ValueError(f"Histogram value out of range: {value}")
        state = self._state
        if isinstance(state, _ExactValues):
            if len(state.values) < self.max_exact_values:
                state.values.append(value)
                state.is_sorted = False
                return
            state = self._convert_to_approximate()
        state.record(value)

    def merge(self, other: "LazyHistogram") -> None:
        """Fold other into this histogram; other is left unchanged."""
        if other is None:
            raise ValueError("Cannot merge a None histogram")
        other_state = other._state
        if isinstance(other_state, _ExactValues):
            for value in list(other_state.values):
                self.add(value)
            return
        self._convert_to_approximate().merge(other_state)

    def merge_wire(self, message: HistogramMessage) -> None:
        if message.is_approximate:
            incoming = LogBucketHistogram.decode(message.encoded_bytes)
            self._convert_to_approximate().merge(incoming)
        else:
            for value in message.ordered_raw_values:
                self.add(value)

    def get_value_at_percentile(self, percentile: float) -> int:
        if not 0 <= percentile <= 100:
            raise ValueError(f"Percentile must be within [0, 100], got {percentile}")
        state = self._state
        if isinstance(state, LogBucketHistogram):
            return state.get_value_at_percentile(percentile)
        if not state.values:
            return 0
        state.ensure_sorted()
        if percentile == 0:
            return state.values[0]
        n = len(state.values)
        index = int(math.ceil(n * percentile / 100.0)) - 1
        return state.values[min(max(index, 0), n - 1)]

    def to_wire(self) -> HistogramMessage:
        state = self._state
        if isinstance(state, LogBucketHistogram):
            return HistogramMessage(encoded_bytes=state.encode())
        state.ensure_sorted()
        return HistogramMessage(ordered_raw_values=tuple(state.values))

    @classmethod
    def from_wire(
        cls,
        message: HistogramMessage,
        max_exact_values: int = DEFAULT_MAX_EXACT_VALUES,
        significant_digits: int = 2,
    ) -> "LazyHistogram":
        histogram = cls(max_exact_values, significant_digits)
        histogram.merge_wire(message)
        return histogram

    def copy(self) -> "LazyHistogram":
        other = LazyHistogram(self.max_exact_values, self.significant_digits)
        state = self._state
        if isinstance(state, LogBucketHistogram):
            other._state = state.copy()
        else:
            other._state = _ExactValues(list(state.values), state.is_sorted)
        return other

    def __repr__(self) -> str:
        return f"LazyHistogram(mode={self.mode.value}, count={self.total_count})"
