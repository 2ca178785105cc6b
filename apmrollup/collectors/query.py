"""
Query Collector

Aggregates query executions keyed by (query type, truncated text, full-text
SHA1), bounded per query type.
"""

import hashlib
from typing import Dict, Iterable, List, Optional

from apmrollup.collectors.common import BoundedCollector, LimitScope, MutableEntry
from apmrollup.wire.model import QueryMessage

DEFAULT_MAX_QUERIES_PER_TYPE = 500


def sha1_of(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


class QueryCollector(BoundedCollector):
    """Per-type bounded collector of query executions."""

    def __init__(self, limit: int = DEFAULT_MAX_QUERIES_PER_TYPE):
        super().__init__(limit, LimitScope.PER_TYPE)
        self._full_texts: Dict[str, str] = {}
        self.last_capture_time: Optional[int] = None

    def merge_query(
        self,
        query_type: str,
        truncated_text: str,
        total_duration_nanos: float,
        execution_count: int,
        has_total_rows: bool = False,
        total_rows: int = 0,
        full_text_sha1: Optional[str] = None,
        full_text: Optional[str] = None,
    ) -> None:
        """
        Merge one query measurement.

        When full_text is given the SHA1 is computed if absent, and the text is
        kept for get_full_query_text().
        """
        if full_text is not None:
            if full_text_sha1 is None:
                full_text_sha1 = sha1_of(full_text)
            self._full_texts[full_text_sha1] = full_text
        self.merge_entry(
            query_type,
            truncated_text,
            total_duration_nanos,
            execution_count,
            full_text_sha1=full_text_sha1,
            has_total_rows=has_total_rows,
            total_rows=total_rows,
        )

    def merge_wire(self, queries: Iterable[QueryMessage]) -> None:
        for query in queries:
            self.merge_entry(
                query.type,
                query.truncated_text,
                query.total_duration_nanos,
                query.execution_count,
                full_text_sha1=query.full_text_sha1,
                has_total_rows=query.total_rows is not None,
                total_rows=query.total_rows or 0,
            )

    def merge(self, other: "QueryCollector") -> None:
        """Fold another collector's accumulated (untruncated) state into this one."""
        for entries in list(other._entries.values()):
            for entry in list(entries.values()):
                self._merge_mutable(entry)
        for entry in list(other._overflow.values()):
            self._merge_mutable(entry)
        self._full_texts.update(other._full_texts)
        if other.last_capture_time is not None:
            self.update_last_capture_time(other.last_capture_time)

    def _merge_mutable(self, entry: MutableEntry) -> None:
        self.merge_entry(
            entry.type,
            entry.text,
            entry.total_duration_nanos,
            entry.execution_count,
            full_text_sha1=entry.full_text_sha1,
            has_total_rows=entry.has_total_rows,
            total_rows=entry.total_rows,
        )

    def get_full_query_text(self, full_text_sha1: str) -> Optional[str]:
        return self._full_texts.get(full_text_sha1)

    def update_last_capture_time(self, capture_time: int) -> None:
        if self.last_capture_time is None or capture_time > self.last_capture_time:
            self.last_capture_time = capture_time

    def get_sorted_and_truncated_queries(self) -> Dict[str, List[MutableEntry]]:
        """Bounded result grouped by query type, each group sorted by duration."""
        queries: Dict[str, List[MutableEntry]] = {}
        for entry in self.get_sorted_and_truncated_result():
            queries.setdefault(entry.type, []).append(entry)
        return queries

    def to_wire(self) -> List[QueryMessage]:
        return [
            QueryMessage(
                type=entry.type,
                truncated_text=entry.text,
                full_text_sha1=entry.full_text_sha1,
                total_duration_nanos=entry.total_duration_nanos,
                execution_count=entry.execution_count,
                total_rows=entry.total_rows if entry.has_total_rows else None,
            )
            for entry in self.get_sorted_and_truncated_result()
        ]
