"""
APM Rollup Test Suite - Benchmark Tests
=======================================
Performance benchmarks for critical paths.
"""

import pytest
import numpy as np

from apmrollup.collectors.query import QueryCollector
from apmrollup.histogram.lazy import LazyHistogram
from apmrollup.profile.frames import StackFrame, ThreadState
from apmrollup.profile.tree import MutableProfileTree


@pytest.fixture
def durations():
    """Log-normal request durations in nanoseconds."""
    rng = np.random.default_rng(42)
    return rng.lognormal(mean=14.0, sigma=1.0, size=50000).astype(np.int64)


@pytest.fixture
def stacks():
    """Stacks sharing long common prefixes, as samples of one transaction type do."""
    rng = np.random.default_rng(7)
    prefix = [StackFrame("com.example.Handler", f"layer{i}", "Handler.java", i) for i in range(40)]
    result = []
    for _ in range(2000):
        depth = int(rng.integers(1, 20))
        leaf = [
            StackFrame("com.example.Leaf", f"work{int(rng.integers(0, 30))}", "Leaf.java", j)
            for j in range(depth)
        ]
        result.append(prefix + leaf)
    return result


class TestHistogramBenchmarks:
    """Benchmarks for histogram aggregation."""

    @pytest.mark.slow
    def test_add_performance(self, benchmark, durations):
        def run():
            histogram = LazyHistogram()
            for value in durations:
                histogram.add(value)
            return histogram

        result = benchmark(run)
        assert result.total_count == len(durations)

    @pytest.mark.slow
    def test_percentile_performance(self, benchmark, durations):
        histogram = LazyHistogram()
        for value in durations:
            histogram.add(value)
        result = benchmark(histogram.get_value_at_percentile, 99)
        assert result > 0


class TestProfileBenchmarks:
    """Benchmarks for call-tree merging and export."""

    @pytest.mark.slow
    def test_merge_sample_performance(self, benchmark, stacks):
        def run():
            tree = MutableProfileTree()
            for frames in stacks:
                tree.merge_sample(frames, ThreadState.RUNNABLE)
            return tree

        tree = benchmark(run)
        assert tree.get_sample_count() == len(stacks)

    @pytest.mark.slow
    def test_export_performance(self, benchmark, stacks):
        tree = MutableProfileTree()
        for frames in stacks:
            tree.merge_sample(frames, ThreadState.RUNNABLE)
        result = benchmark(tree.to_json)
        assert result.startswith("{")


class TestCollectorBenchmarks:
    """Benchmarks for bounded collectors."""

    @pytest.mark.slow
    def test_high_cardinality_queries(self, benchmark):
        collector = QueryCollector(limit=500)
        for i in range(20000):
            collector.merge_query("SQL", f"select * from t{i}", float(i % 977), 1)
        result = benchmark(collector.get_sorted_and_truncated_result)
        assert len(result) == 501
