"""
APM Rollup Test Suite - Wire Format Tests
=========================================
Tests for wire messages and the JSON codec.
"""

import pytest

from apmrollup.wire import (
    AggregateMessage,
    HistogramMessage,
    LeafThreadState,
    ProfileNodeMessage,
    ProfileTreeMessage,
    QueryMessage,
    ServiceCallMessage,
    decode,
    encode,
)


class TestWireMessages:
    """Tests for message dict forms."""

    def test_profile_node_optional_fields(self):
        node = ProfileNodeMessage(0, 1, 2, 3, 4, 5)
        data = node.to_dict()
        assert "ellipsedSampleCount" not in data
        assert "timerNameIndexes" not in data
        assert data["leafThreadState"] == "NONE"

    def test_histogram_blob_is_base64(self):
        message = HistogramMessage(encoded_bytes=b"\x00\x01binary")
        data = message.to_dict()
        assert isinstance(data["encodedBytes"], str)
        assert HistogramMessage.from_dict(data) == message

    def test_query_optional_fields(self):
        data = QueryMessage("SQL", "select 1").to_dict()
        assert "fullTextSha1" not in data
        assert "totalRows" not in data


class TestCodec:
    """Tests for encode/decode."""

    def test_aggregate_round_trip(self):
        message = AggregateMessage(
            total_duration_nanos=12.5,
            transaction_count=2,
            error_count=1,
            duration_nanos_histogram=HistogramMessage(ordered_raw_values=(5, 7)),
            main_thread_profile=ProfileTreeMessage(
                package_names=("p",),
                class_names=("C",),
                method_names=("m",),
                file_names=("C.java",),
                timer_names=("db",),
                nodes=(
                    ProfileNodeMessage(
                        0, 0, 0, 0, 0, 3,
                        LeafThreadState.BLOCKED,
                        sample_count=2,
                        ellipsed_sample_count=1,
                        timer_name_indexes=(0,),
                    ),
                ),
            ),
            aux_thread_profile=ProfileTreeMessage(
                package_names=("p",),
                class_names=("Worker",),
                method_names=("run",),
                file_names=("",),
                nodes=(ProfileNodeMessage(0, 0, 0, 0, 0, 7, sample_count=4),),
            ),
            queries=(QueryMessage("SQL", "select 1", "abc", 3.0, 1, 4),),
            service_calls=(ServiceCallMessage("HTTP", "GET /", 9.0, 1),),
        )
        assert decode(AggregateMessage, encode(message)) == message

    def test_aux_profile_defaults_to_empty(self):
        data = AggregateMessage(transaction_count=1).to_dict()
        del data["auxThreadProfile"]
        message = decode(AggregateMessage, data)
        assert message.aux_thread_profile == ProfileTreeMessage()

    def test_decode_accepts_str_and_dict(self):
        message = ServiceCallMessage("HTTP", "GET /", 1.0, 1)
        assert decode(ServiceCallMessage, encode(message).decode("utf-8")) == message
        assert decode(ServiceCallMessage, message.to_dict()) == message

    def test_invalid_json(self):
        with pytest.raises(ValueError):
            decode(QueryMessage, b"{not json")

    def test_non_object_payload(self):
        with pytest.raises(ValueError):
            decode(QueryMessage, b"[1, 2]")

    def test_missing_field(self):
        with pytest.raises(ValueError):
            decode(QueryMessage, {"type": "SQL"})
