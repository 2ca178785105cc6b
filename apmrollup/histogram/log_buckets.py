"""
Log-Bucketed Histogram

Compressed approximate histogram used once a LazyHistogram outgrows exact mode.
Values are grouped into power-of-two buckets, each split into linear
sub-buckets wide enough to keep the configured number of significant decimal
digits. Values below the sub-bucket count are recorded exactly.
"""

import gzip
import logging
import math
import struct
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)

MAX_VALUE = (1 << 63) - 1

_MAGIC = b"APMH"
_VERSION = 1
_HEADER = struct.Struct("<4sBBqqq")


class LogBucketHistogram:
    """
    Approximate histogram over non-negative 64-bit integers.

    min and max are tracked exactly, so percentile 0 and 100 are always exact.
    Other percentiles are accurate to the configured significant digits.
    """

    def __init__(self, significant_digits: int = 2):
        if not 1 <= significant_digits <= 5:
            raise ValueError(
                f"significant_digits must be between 1 and 5, got {significant_digits}"
            )
        self.significant_digits = significant_digits
        largest_single_unit = 2 * 10 ** significant_digits
        self._sub_bucket_magnitude = int(math.ceil(math.log2(largest_single_unit)))
        self._sub_bucket_count = 1 << self._sub_bucket_magnitude
        self._half_magnitude = self._sub_bucket_magnitude - 1

        self._counts = np.zeros(self._sub_bucket_count, dtype=np.int64)
        self._total_count = 0
        self._min: Optional[int] = None
        self._max: Optional[int] = None

    # ------------------------------------------------------------------
    # Bucket geometry
    # ------------------------------------------------------------------

    def _index_for(self, value: int) -> int:
        shift = max(0, value.bit_length() - self._sub_bucket_magnitude)
        return (shift << self._half_magnitude) + (value >> shift)

    def _lowest_equivalent(self, index: int) -> int:
        shift = max(0, (index >> self._half_magnitude) - 1)
        sub_bucket = index - (shift << self._half_magnitude)
        return sub_bucket << shift

    def _highest_equivalent(self, index: int) -> int:
        shift = max(0, (index >> self._half_magnitude) - 1)
        return self._lowest_equivalent(index) + (1 << shift) - 1

    def _ensure_capacity(self, index: int) -> None:
        if index >= len(self._counts):
            grow = max(index + 1, 2 * len(self._counts)) - len(self._counts)
            self._counts = np.concatenate(
                [self._counts, np.zeros(grow, dtype=np.int64)]
            )

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record(self, value: int, count: int = 1) -> None:
        value = int(value)
        if value < 0 or value > MAX_VALUE:
            raise ValueError(f"Histogram value out of range: {value}")
        if count <= 0:
            return
        index = self._index_for(value)
        self._ensure_capacity(index)
        self._counts[index] += count
        self._total_count += count
        if self._min is None or value < self._min:
            self._min = value
        if self._max is None or value > self._max:
            self._max = value

    def merge(self, other: "LogBucketHistogram") -> None:
        """Add all of other's counts into this histogram."""
        if other._total_count == 0:
            return
        if other._sub_bucket_magnitude == self._sub_bucket_magnitude:
            last = len(other._counts)
            self._ensure_capacity(last - 1)
            self._counts[:last] += other._counts
            self._total_count += other._total_count
            self._min = other._min if self._min is None else min(self._min, other._min)
            self._max = other._max if self._max is None else max(self._max, other._max)
            return
        # different precision, replay each bucket at its lowest equivalent value
        for index in np.flatnonzero(other._counts):
            value = other._lowest_equivalent(int(index))
            value = min(max(value, other._min), other._max)
            self.record(value, int(other._counts[index]))
        # bucket replay can lose the exact extremes
        self._min = min(self._min, other._min)
        self._max = max(self._max, other._max)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def total_count(self) -> int:
        return self._total_count

    @property
    def min_value(self) -> int:
        return 0 if self._min is None else self._min

    @property
    def max_value(self) -> int:
        return 0 if self._max is None else self._max

    def get_value_at_percentile(self, percentile: float) -> int:
        if self._total_count == 0:
            return 0
        if percentile <= 0:
            return self.min_value
        if percentile >= 100:
            return self.max_value
        rank = max(1, int(math.ceil(self._total_count * percentile / 100.0)))
        cumulative = np.cumsum(self._counts)
        index = int(np.searchsorted(cumulative, rank, side="left"))
        value = self._highest_equivalent(index)
        return min(max(value, self.min_value), self.max_value)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def encode(self) -> bytes:
        """Header (magic, version, digits, total, min, max) + gzip'd counts."""
        nonzero = np.flatnonzero(self._counts)
        last = int(nonzero[-1]) + 1 if len(nonzero) else 0
        payload = self._counts[:last].astype("<i8").tobytes()
        header = _HEADER.pack(
            _MAGIC,
            _VERSION,
            self.significant_digits,
            self._total_count,
            self.min_value,
            self.max_value,
        )
        return header + gzip.compress(payload)

    @classmethod
    def decode(cls, data: bytes) -> "LogBucketHistogram":
        if len(data) < _HEADER.size:
            raise ValueError(f"Encoded histogram too short: {len(data)} bytes")
        magic, version, significant_digits, total, min_value, max_value = (
            _HEADER.unpack_from(data)
        )
        if magic != _MAGIC:
            raise ValueError(f"Bad encoded histogram magic: {magic!r}")
        if version != _VERSION:
            raise ValueError(f"Unsupported encoded histogram version: {version}")

        histogram = cls(significant_digits)
        try:
            payload = gzip.decompress(data[_HEADER.size:])
        except OSError as e:
            raise ValueError(f"Corrupt encoded histogram payload: {e}") from e
        counts = np.frombuffer(payload, dtype="<i8").astype(np.int64)
        if int(counts.sum()) != total:
            raise ValueError(
                f"Encoded histogram count mismatch: header {total}, "
                f"buckets {int(counts.sum())}"
            )
        if len(counts):
            histogram._ensure_capacity(len(counts) - 1)
            histogram._counts[: len(counts)] = counts
        histogram._total_count = total
        if total:
            histogram._min = min_value
            histogram._max = max_value
        return histogram

    def copy(self) -> "LogBucketHistogram":
        other = LogBucketHistogram(self.significant_digits)
        other._counts = self._counts.copy()
        other._total_count = self._total_count
        other._min = self._min
        other._max = self._max
        return other

    def __repr__(self) -> str:
        return (
            f"LogBucketHistogram(digits={self.significant_digits}, "
            f"count={self._total_count}, min={self.min_value}, max={self.max_value})"
        )
