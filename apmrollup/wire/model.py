"""
Wire Model

Immutable messages exchanged with upstream aggregators and the export layer:
- Profile trees (depth-encoded flattened nodes plus name tables)
- Histograms (ordered raw values or an encoded approximate blob)
- Queries and service calls (bounded collector results)
"""

import base64
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class LeafThreadState(Enum):
    """Thread state recorded on the innermost frame of a stack sample."""

    NONE = "NONE"
    NEW = "NEW"
    RUNNABLE = "RUNNABLE"
    BLOCKED = "BLOCKED"
    WAITING = "WAITING"
    TIMED_WAITING = "TIMED_WAITING"
    TERMINATED = "TERMINATED"


@dataclass(frozen=True)
class ProfileNodeMessage:
    """One node of a flattened profile tree, in depth-first pre-order."""

    depth: int
    package_name_index: int
    class_name_index: int
    method_name_index: int
    file_name_index: int
    line_number: int
    leaf_thread_state: LeafThreadState = LeafThreadState.NONE
    sample_count: int = 0
    ellipsed_sample_count: int = 0
    timer_name_indexes: Tuple[int, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "depth": self.depth,
            "packageNameIndex": self.package_name_index,
            "classNameIndex": self.class_name_index,
            "methodNameIndex": self.method_name_index,
            "fileNameIndex": self.file_name_index,
            "lineNumber": self.line_number,
            "leafThreadState": self.leaf_thread_state.value,
            "sampleCount": self.sample_count,
        }
        if self.ellipsed_sample_count:
            data["ellipsedSampleCount"] = self.ellipsed_sample_count
        if self.timer_name_indexes:
            data["timerNameIndexes"] = list(self.timer_name_indexes)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProfileNodeMessage":
        return cls(
            depth=data["depth"],
            package_name_index=data["packageNameIndex"],
            class_name_index=data["classNameIndex"],
            method_name_index=data["methodNameIndex"],
            file_name_index=data["fileNameIndex"],
            line_number=data["lineNumber"],
            leaf_thread_state=LeafThreadState(data.get("leafThreadState", "NONE")),
            sample_count=data.get("sampleCount", 0),
            ellipsed_sample_count=data.get("ellipsedSampleCount", 0),
            timer_name_indexes=tuple(data.get("timerNameIndexes", ())),
        )


@dataclass(frozen=True)
class ProfileTreeMessage:
    """Externally-encoded profile tree."""

    package_names: Tuple[str, ...] = ()
    class_names: Tuple[str, ...] = ()
    method_names: Tuple[str, ...] = ()
    file_names: Tuple[str, ...] = ()
    timer_names: Tuple[str, ...] = ()
    nodes: Tuple[ProfileNodeMessage, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "packageNames": list(self.package_names),
            "classNames": list(self.class_names),
            "methodNames": list(self.method_names),
            "fileNames": list(self.file_names),
            "timerNames": list(self.timer_names),
            "nodes": [node.to_dict() for node in self.nodes],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProfileTreeMessage":
        return cls(
            package_names=tuple(data.get("packageNames", ())),
            class_names=tuple(data.get("classNames", ())),
            method_names=tuple(data.get("methodNames", ())),
            file_names=tuple(data.get("fileNames", ())),
            timer_names=tuple(data.get("timerNames", ())),
            nodes=tuple(ProfileNodeMessage.from_dict(n) for n in data.get("nodes", ())),
        )


@dataclass(frozen=True)
class HistogramMessage:
    """
    Serialized histogram.

    Exactly one of ordered_raw_values (exact mode) and encoded_bytes
    (approximate mode) is populated.
    """

    ordered_raw_values: Tuple[int, ...] = ()
    encoded_bytes: bytes = b""

    @property
    def is_approximate(self) -> bool:
        return bool(self.encoded_bytes)

    def to_dict(self) -> Dict[str, Any]:
        if self.encoded_bytes:
            return {"encodedBytes": base64.b64encode(self.encoded_bytes).decode("ascii")}
        return {"orderedRawValues": list(self.ordered_raw_values)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HistogramMessage":
        encoded = data.get("encodedBytes")
        if encoded:
            return cls(encoded_bytes=base64.b64decode(encoded))
        return cls(ordered_raw_values=tuple(data.get("orderedRawValues", ())))


@dataclass(frozen=True)
class QueryMessage:
    """Aggregated query executions for one (type, text) key."""

    type: str
    truncated_text: str
    full_text_sha1: Optional[str] = None
    total_duration_nanos: float = 0.0
    execution_count: int = 0
    total_rows: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "type": self.type,
            "truncatedText": self.truncated_text,
            "totalDurationNanos": self.total_duration_nanos,
            "executionCount": self.execution_count,
        }
        if self.full_text_sha1 is not None:
            data["fullTextSha1"] = self.full_text_sha1
        if self.total_rows is not None:
            data["totalRows"] = self.total_rows
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueryMessage":
        return cls(
            type=data["type"],
            truncated_text=data["truncatedText"],
            full_text_sha1=data.get("fullTextSha1"),
            total_duration_nanos=data.get("totalDurationNanos", 0.0),
            execution_count=data.get("executionCount", 0),
            total_rows=data.get("totalRows"),
        )


@dataclass(frozen=True)
class ServiceCallMessage:
    """Aggregated service calls for one (type, text) key."""

    type: str
    text: str
    total_duration_nanos: float = 0.0
    execution_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "text": self.text,
            "totalDurationNanos": self.total_duration_nanos,
            "executionCount": self.execution_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServiceCallMessage":
        return cls(
            type=data["type"],
            text=data["text"],
            total_duration_nanos=data.get("totalDurationNanos", 0.0),
            execution_count=data.get("executionCount", 0),
        )


@dataclass(frozen=True)
class AggregateMessage:
    """Everything collected for one transaction type or name in a rollup period."""

    total_duration_nanos: float = 0.0
    transaction_count: int = 0
    error_count: int = 0
    duration_nanos_histogram: HistogramMessage = field(default_factory=HistogramMessage)
    main_thread_profile: ProfileTreeMessage = field(default_factory=ProfileTreeMessage)
    aux_thread_profile: ProfileTreeMessage = field(default_factory=ProfileTreeMessage)
    queries: Tuple[QueryMessage, ...] = ()
    service_calls: Tuple[ServiceCallMessage, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalDurationNanos": self.total_duration_nanos,
            "transactionCount": self.transaction_count,
            "errorCount": self.error_count,
            "durationNanosHistogram": self.duration_nanos_histogram.to_dict(),
            "mainThreadProfile": self.main_thread_profile.to_dict(),
            "auxThreadProfile": self.aux_thread_profile.to_dict(),
            "queries": [q.to_dict() for q in self.queries],
            "serviceCalls": [s.to_dict() for s in self.service_calls],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AggregateMessage":
        return cls(
            total_duration_nanos=data.get("totalDurationNanos", 0.0),
            transaction_count=data.get("transactionCount", 0),
            error_count=data.get("errorCount", 0),
            duration_nanos_histogram=HistogramMessage.from_dict(
                data.get("durationNanosHistogram", {})
            ),
            main_thread_profile=ProfileTreeMessage.from_dict(
                data.get("mainThreadProfile", {})
            ),
            aux_thread_profile=ProfileTreeMessage.from_dict(
                data.get("auxThreadProfile", {})
            ),
            queries=tuple(QueryMessage.from_dict(q) for q in data.get("queries", ())),
            service_calls=tuple(
                ServiceCallMessage.from_dict(s) for s in data.get("serviceCalls", ())
            ),
        )


__all__: List[str] = [
    "LeafThreadState",
    "ProfileNodeMessage",
    "ProfileTreeMessage",
    "HistogramMessage",
    "QueryMessage",
    "ServiceCallMessage",
    "AggregateMessage",
]
