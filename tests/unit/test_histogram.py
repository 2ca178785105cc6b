"""
APM Rollup Test Suite - Histogram Tests
=======================================
Tests for the dual-mode lazy histogram and the log-bucketed structure.
"""

import pytest
import numpy as np

from apmrollup.histogram.lazy import HistogramMode, LazyHistogram
from apmrollup.histogram.log_buckets import MAX_VALUE, LogBucketHistogram
from apmrollup.wire.model import HistogramMessage


def build(values, max_exact_values=1024):
    histogram = LazyHistogram(max_exact_values=max_exact_values)
    for value in values:
        histogram.add(value)
    return histogram


class TestExactMode:
    """Tests for exact-mode percentiles."""

    def test_empty_histogram(self):
        histogram = LazyHistogram()
        assert histogram.get_value_at_percentile(0) == 0
        assert histogram.get_value_at_percentile(50) == 0
        assert histogram.mode is HistogramMode.EXACT

    def test_ceiling_rank_selection(self):
        histogram = build([7, 3, 10, 1, 5, 2, 9, 4, 8, 6])
        assert histogram.get_value_at_percentile(0) == 1
        assert histogram.get_value_at_percentile(10) == 1
        assert histogram.get_value_at_percentile(11) == 2
        assert histogram.get_value_at_percentile(50) == 5
        assert histogram.get_value_at_percentile(95) == 10
        assert histogram.get_value_at_percentile(100) == 10

    def test_adds_after_query_are_sorted(self):
        histogram = build([5, 1])
        assert histogram.get_value_at_percentile(100) == 5
        histogram.add(0)
        histogram.add(9)
        assert histogram.get_value_at_percentile(0) == 0
        assert histogram.get_value_at_percentile(100) == 9

    def test_negative_value_rejected(self):
        with pytest.raises(ValueError):
            LazyHistogram().add(-1)

    def test_none_value_rejected(self):
        with pytest.raises(ValueError):
            LazyHistogram().add(None)

    def test_percentile_out_of_range_rejected(self):
        histogram = build([1])
        with pytest.raises(ValueError):
            histogram.get_value_at_percentile(101)
        with pytest.raises(ValueError):
            histogram.get_value_at_percentile(-0.5)

    def test_invalid_significant_digits_rejected(self):
        with pytest.raises(ValueError):
            LazyHistogram(significant_digits=9)
        with pytest.raises(ValueError):
            LazyHistogram(significant_digits=0)


class TestModeConversion:
    """Tests for the one-way exact to approximate transition."""

    def test_converts_past_ceiling(self):
        histogram = build(range(8), max_exact_values=8)
        assert histogram.mode is HistogramMode.EXACT
        histogram.add(8)
        assert histogram.mode is HistogramMode.APPROXIMATE
        assert histogram.total_count == 9

    def test_never_converts_back(self):
        histogram = build(range(20), max_exact_values=4)
        histogram.merge(build([1]))
        assert histogram.mode is HistogramMode.APPROXIMATE

    def test_merge_with_approximate_promotes_receiver(self):
        receiver = build([1, 2, 3])
        receiver.merge(build(range(100), max_exact_values=10))
        assert receiver.mode is HistogramMode.APPROXIMATE
        assert receiver.total_count == 103

    def test_merge_leaves_other_unchanged(self):
        other = build([4, 5, 6])
        receiver = build(range(50), max_exact_values=10)
        receiver.merge(other)
        assert other.mode is HistogramMode.EXACT
        assert other.total_count == 3

    def test_merge_into_itself_doubles_counts(self):
        histogram = build([1, 2, 3])
        histogram.merge(histogram)
        assert histogram.mode is HistogramMode.EXACT
        assert histogram.total_count == 6
        assert histogram.get_value_at_percentile(100) == 3

    def test_approximate_merge_into_itself_doubles_counts(self):
        histogram = build(range(100), max_exact_values=10)
        histogram.merge(histogram)
        assert histogram.total_count == 200
        assert histogram.get_value_at_percentile(100) == 99

    @pytest.mark.parametrize("max_exact_values", [1024, 4])
    def test_merge_matches_single_histogram(self, max_exact_values):
        merged = build([1, 2, 3, 4, 5], max_exact_values)
        merged.merge(build([6, 7, 8, 9, 10], max_exact_values))
        single = build(range(1, 11), max_exact_values)
        assert merged.get_value_at_percentile(50) == single.get_value_at_percentile(50) == 5

    @pytest.mark.parametrize("max_exact_values", [1024, 16])
    def test_min_and_max_are_exact(self, max_exact_values):
        rng = np.random.default_rng(42)
        values = rng.integers(0, 10 ** 12, 500)
        histogram = build(values, max_exact_values)
        assert histogram.get_value_at_percentile(0) == int(values.min())
        assert histogram.get_value_at_percentile(100) == int(values.max())

    def test_approximate_precision(self):
        histogram = build(range(1, 100001), max_exact_values=1024)
        assert histogram.mode is HistogramMode.APPROXIMATE
        for percentile in (50, 90, 99):
            exact = np.percentile(np.arange(1, 100001), percentile)
            approx = histogram.get_value_at_percentile(percentile)
            assert abs(approx - exact) / exact < 0.01


class TestLogBucketHistogram:
    """Tests for the approximate structure."""

    def test_small_values_are_exact(self):
        histogram = LogBucketHistogram()
        for value in (3, 3, 200):
            histogram.record(value)
        assert histogram.get_value_at_percentile(50) == 3
        assert histogram.get_value_at_percentile(67) == 200

    def test_max_value(self):
        histogram = LogBucketHistogram()
        histogram.record(MAX_VALUE)
        histogram.record(1)
        assert histogram.get_value_at_percentile(100) == MAX_VALUE
        assert histogram.get_value_at_percentile(0) == 1

    def test_out_of_range(self):
        with pytest.raises(ValueError):
            LogBucketHistogram().record(MAX_VALUE + 1)
        with pytest.raises(ValueError):
            LogBucketHistogram(significant_digits=9)

    def test_merge_different_precision(self):
        coarse = LogBucketHistogram(1)
        fine = LogBucketHistogram(3)
        for value in (10, 5000, 123456):
            fine.record(value)
        coarse.merge(fine)
        assert coarse.total_count == 3
        assert coarse.min_value == 10
        assert coarse.max_value == 123456

    def test_encode_decode(self):
        histogram = LogBucketHistogram()
        for value in (0, 17, 4096, 10 ** 9):
            histogram.record(value, 2)
        decoded = LogBucketHistogram.decode(histogram.encode())
        assert decoded.total_count == 8
        for percentile in (0, 25, 50, 75, 100):
            assert decoded.get_value_at_percentile(percentile) == (
                histogram.get_value_at_percentile(percentile)
            )

    def test_decode_rejects_garbage(self):
        with pytest.raises(ValueError):
            LogBucketHistogram.decode(b"nope")
        encoded = bytearray(LogBucketHistogram().encode())
        encoded[0:4] = b"XXXX"
        with pytest.raises(ValueError):
            LogBucketHistogram.decode(bytes(encoded))


class TestHistogramWire:
    """Tests for histogram serialization."""

    def test_exact_serializes_ordered_values(self):
        message = build([3, 1, 2]).to_wire()
        assert message.ordered_raw_values == (1, 2, 3)
        assert not message.is_approximate

    def test_approximate_serializes_blob(self):
        message = build(range(100), max_exact_values=10).to_wire()
        assert message.is_approximate
        assert message.ordered_raw_values == ()

    def test_from_wire_either_form(self):
        exact = LazyHistogram.from_wire(HistogramMessage(ordered_raw_values=(1, 5, 9)))
        approximate = LazyHistogram.from_wire(build(range(1, 101), 10).to_wire())
        assert exact.get_value_at_percentile(50) == 5
        assert approximate.get_value_at_percentile(50) == 50
        exact.merge(approximate)
        assert exact.mode is HistogramMode.APPROXIMATE
        assert exact.total_count == 103

    def test_merge_wire_into_exact(self):
        histogram = build([1000])
        histogram.merge_wire(HistogramMessage(ordered_raw_values=(1, 2)))
        assert histogram.mode is HistogramMode.EXACT
        assert histogram.get_value_at_percentile(0) == 1

    def test_copy_is_independent(self):
        original = build([1, 2])
        copy = original.copy()
        copy.add(3)
        assert original.total_count == 2
        assert copy.total_count == 3
