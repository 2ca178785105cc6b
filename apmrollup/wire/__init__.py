"""
Wire format for partial aggregates exchanged between rollup sessions.
"""

from apmrollup.wire.model import (
    LeafThreadState,
    ProfileNodeMessage,
    ProfileTreeMessage,
    HistogramMessage,
    QueryMessage,
    ServiceCallMessage,
    AggregateMessage,
)
from apmrollup.wire.codec import encode, decode

__all__ = [
    "LeafThreadState",
    "ProfileNodeMessage",
    "ProfileTreeMessage",
    "HistogramMessage",
    "QueryMessage",
    "ServiceCallMessage",
    "AggregateMessage",
    "encode",
    "decode",
]
