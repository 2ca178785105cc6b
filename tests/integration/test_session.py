"""
APM Rollup Test Suite - Session Integration Tests
=================================================
End-to-end tests: record into sharded sessions, combine shards through
in-memory merges and the wire format, and export snapshots.
"""

import json

import pytest

from apmrollup import (
    LIMIT_EXCEEDED_BUCKET,
    AggregateMessage,
    ErrorInterval,
    HistogramMode,
    RollupConfig,
    RollupSession,
    StackFrame,
    ThreadState,
    decode,
    encode,
)

pytestmark = pytest.mark.integration


def fill(session, stack_factory, offset=0):
    for i in range(10):
        session.record_transaction("/checkout", 1000 + offset + i, error=(i % 5 == 0))
        session.record_stack_sample("/checkout", stack_factory("service", "checkout"), ThreadState.RUNNABLE)
    session.record_transaction("/browse", 50 + offset, capture_time=100 + offset)
    session.record_stack_sample("/browse", stack_factory("service", "browse"), ThreadState.WAITING)
    session.record_query("/checkout", "SQL", "select * from cart", 300, total_rows=2)
    session.record_query("/checkout", "SQL", "select * from stock", 200)
    session.record_query("/checkout", "SQL", "update cart", 100)
    session.record_service_call("/checkout", "HTTP", "POST /payments", 700)


class TestRollupSession:
    """Tests for a single session."""

    def test_record_and_snapshot(self, small_config, stack_factory):
        session = RollupSession("Web", small_config, session_id="s1")
        fill(session, stack_factory)
        snapshot = session.snapshot()

        assert snapshot["sessionId"] == "s1"
        assert snapshot["transactionType"] == "Web"
        assert snapshot["overall"]["transactionCount"] == 11
        assert snapshot["overall"]["errorCount"] == 2
        assert snapshot["transactions"]["/checkout"]["transactionCount"] == 10
        assert snapshot["lastCaptureTime"] == 100

        queries = snapshot["transactions"]["/checkout"]["queries"]
        assert [q["truncatedText"] for q in queries] == [
            "select * from cart",
            "select * from stock",
            LIMIT_EXCEEDED_BUCKET,
        ]
        assert queries[0]["totalRows"] == 2

        summaries = snapshot["transactionSummaries"]["records"]
        assert summaries[0]["transactionName"] == "/checkout"
        errors = snapshot["transactionErrorSummaries"]["records"]
        assert [e["transactionName"] for e in errors] == ["/checkout"]

    def test_histogram_converts_under_small_config(self, small_config, stack_factory):
        session = RollupSession("Web", small_config)
        fill(session, stack_factory)
        assert session.get_aggregate("/checkout").histogram.mode is HistogramMode.APPROXIMATE
        assert session.get_aggregate().histogram.get_value_at_percentile(0) == 50

    def test_profile_json_filters_copy(self, stack_factory):
        session = RollupSession("Web")
        fill(session, stack_factory)
        data = json.loads(session.get_profile_json(includes=["browse"]))
        assert data["unfilteredSampleCount"] == 11
        assert data["rootNodes"][0]["sampleCount"] == 1
        # the session's own tree is untouched
        assert session.get_aggregate().profile.get_sample_count() == 11

    def test_profile_flame_graph(self, stack_factory):
        session = RollupSession("Web")
        fill(session, stack_factory)
        data = json.loads(session.get_profile_json("/checkout", flame_graph=True))
        assert data[""]["svTotal"] == 10

    def test_snapshot_truncates_profile(self, stack_factory):
        session = RollupSession("Web", RollupConfig(profile_min_samples=2))
        fill(session, stack_factory)
        profile = session.snapshot()["overall"]["mainThreadProfile"]
        ellipsed = [n.get("ellipsedSampleCount", 0) for n in profile["nodes"]]
        assert sum(ellipsed) == 1
        assert session.get_aggregate().profile.get_sample_count() == 11

    def test_error_intervals(self):
        session = RollupSession("Synthetic")
        session.record_error_intervals([ErrorInterval(0, 10, "timeout")])
        session.record_error_intervals([ErrorInterval(10, 20, "timeout")])
        session.record_gap()
        session.record_error_intervals([ErrorInterval(30, 40, "timeout")])
        intervals = session.snapshot()["errorIntervals"]
        assert [(i["from"], i["to"], i["count"]) for i in intervals] == [(0, 20, 2), (30, 40, 1)]

    def test_unknown_transaction_name(self):
        with pytest.raises(KeyError):
            RollupSession("Web").get_aggregate("/missing")

    def test_timer_frames_recorded(self):
        session = RollupSession("Web")
        frames = [
            StackFrame("com.example.Servlet", "service", "Servlet.java", 5),
            StackFrame("org.apm.Timer", "run$apm$timer$http$request$1"),
            StackFrame("com.example.Servlet", "render", "Servlet.java", 9),
        ]
        session.record_stack_sample("/page", frames)
        root = json.loads(session.get_profile_json("/page"))["rootNodes"][0]
        assert root["timerNames"] == ["http request"]

    def test_aux_thread_samples_kept_apart(self, stack_factory):
        session = RollupSession("Web")
        session.record_stack_sample("/report", stack_factory("handler", "render"))
        session.record_stack_sample(
            "/report", stack_factory("worker", "compress"), ThreadState.RUNNABLE, aux_thread=True
        )
        session.record_stack_sample(
            "/report", stack_factory("worker", "upload"), ThreadState.WAITING, aux_thread=True
        )

        aggregate = session.get_aggregate("/report")
        assert aggregate.profile.get_sample_count() == 1
        assert aggregate.aux_profile.get_sample_count() == 2
        assert session.get_aggregate().aux_profile.get_sample_count() == 2

        aux = json.loads(session.get_profile_json("/report", aux_thread=True))
        assert aux["rootNodes"][0]["sampleCount"] == 2
        main = json.loads(session.get_profile_json("/report"))
        assert main["rootNodes"][0]["sampleCount"] == 1

        nodes = session.snapshot()["transactions"]["/report"]["auxThreadProfile"]["nodes"]
        assert sum(n["sampleCount"] for n in nodes if n["depth"] == 0) == 2


class TestShardMerging:
    """Tests for combining shards of one rollup period."""

    def test_merge_sessions(self, small_config, stack_factory):
        first = RollupSession("Web", small_config)
        second = RollupSession("Web", small_config)
        fill(first, stack_factory)
        fill(second, stack_factory, offset=5000)
        first.merge(second)

        overall = first.get_aggregate()
        assert overall.transaction_count == 22
        assert overall.error_count == 4
        assert overall.profile.get_sample_count() == 22
        assert overall.histogram.total_count == 22
        assert overall.histogram.get_value_at_percentile(100) == 6009
        assert first.summaries.overall.get_summary().transaction_count == 22
        assert first.summaries.overall.last_capture_time == 5100

    def test_merge_into_itself(self, stack_factory):
        session = RollupSession("Web")
        session.record_transaction("/checkout", 1000)
        session.record_stack_sample("/checkout", stack_factory("service", "checkout"))
        session.record_query("/checkout", "SQL", "select * from cart", 300)
        session.merge(session)

        aggregate = session.get_aggregate("/checkout")
        assert aggregate.transaction_count == 2
        assert aggregate.histogram.total_count == 2
        assert aggregate.profile.get_sample_count() == 2
        (query,) = session.to_wire("/checkout").queries
        assert query.execution_count == 2
        assert session.summaries.overall.get_summary().transaction_count == 2

    def test_aux_profile_merges_in_memory_and_through_wire(self, stack_factory):
        shard = RollupSession("Web")
        shard.record_transaction("/report", 500)
        shard.record_stack_sample("/report", stack_factory("worker", "compress"), aux_thread=True)

        merged = RollupSession("Web")
        merged.merge(shard)
        merged.merge(shard)
        assert merged.get_aggregate("/report").aux_profile.get_sample_count() == 2
        assert merged.get_aggregate("/report").profile.get_sample_count() == 0

        payload = encode(shard.to_wire("/report"))
        upstream = RollupSession("Web")
        upstream.merge_wire_aggregate("/report", decode(AggregateMessage, payload))
        assert upstream.get_aggregate("/report").aux_profile.get_sample_count() == 1
        assert upstream.get_aggregate().aux_profile.get_sample_count() == 1

    def test_merge_rejects_other_type(self):
        with pytest.raises(ValueError):
            RollupSession("Web").merge(RollupSession("Background"))

    def test_merge_through_wire(self, stack_factory):
        shard = RollupSession("Web")
        fill(shard, stack_factory)
        payload = encode(shard.to_wire("/checkout"))

        upstream = RollupSession("Web")
        upstream.merge_wire_aggregate("/checkout", decode(AggregateMessage, payload), 200)
        upstream.merge_wire_aggregate("/checkout", decode(AggregateMessage, payload), 300)

        aggregate = upstream.get_aggregate("/checkout")
        assert aggregate.transaction_count == 20
        assert aggregate.error_count == 4
        assert aggregate.profile.get_sample_count() == 20
        assert aggregate.histogram.total_count == 20
        assert upstream.summaries.overall.last_capture_time == 300

        queries = {q.truncated_text: q for q in upstream.to_wire("/checkout").queries}
        assert queries["select * from cart"].total_duration_nanos == 600
        assert queries["select * from cart"].total_rows == 4

    def test_merge_order_preserves_totals(self, stack_factory):
        shards = []
        for offset in (0, 100, 200):
            shard = RollupSession("Web")
            fill(shard, stack_factory, offset)
            shards.append(shard)

        forward = RollupSession("Web")
        for shard in shards:
            forward.merge(shard)
        backward = RollupSession("Web")
        for shard in reversed(shards):
            backward.merge(shard)

        for name in (None, "/checkout", "/browse"):
            a = forward.get_aggregate(name)
            b = backward.get_aggregate(name)
            assert a.transaction_count == b.transaction_count
            assert a.profile.get_sample_count() == b.profile.get_sample_count()
            assert a.histogram.get_value_at_percentile(50) == b.histogram.get_value_at_percentile(50)
