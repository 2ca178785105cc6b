"""
Shared pieces of the bounded-cardinality collectors.

Entries accumulate without any eviction. The cardinality limit is applied
only when a result is read: entries ranked beyond the limit are folded into
the per-type overflow entry.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Generic, List, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

LIMIT_EXCEEDED_BUCKET = "LIMIT EXCEEDED BUCKET"

T = TypeVar("T")


@dataclass(frozen=True)
class CollectorResult(Generic[T]):
    """Sorted and limited records, plus whether more were available."""

    records: List[T] = field(default_factory=list)
    more_available: bool = False


class LimitScope(Enum):
    """Whether the cardinality limit counts entries per type or across all types."""

    PER_TYPE = "per_type"
    GLOBAL = "global"


@dataclass
class MutableEntry:
    """Accumulated measurements for one (type, text, sha1) key."""

    type: str
    text: str
    full_text_sha1: Optional[str] = None
    total_duration_nanos: float = 0.0
    execution_count: int = 0
    has_total_rows: bool = True
    total_rows: int = 0

    @property
    def is_overflow(self) -> bool:
        return self.text == LIMIT_EXCEEDED_BUCKET

    def add(
        self,
        total_duration_nanos: float,
        execution_count: int,
        has_total_rows: bool = False,
        total_rows: int = 0,
    ) -> None:
        self.total_duration_nanos += total_duration_nanos
        self.execution_count += execution_count
        if not has_total_rows:
            # one measurement without row totals makes the total unknown
            self.has_total_rows = False
        elif self.has_total_rows:
            self.total_rows += total_rows

    def add_entry(self, other: "MutableEntry") -> None:
        self.add(
            other.total_duration_nanos,
            other.execution_count,
            other.has_total_rows,
            other.total_rows,
        )

    def copy(self) -> "MutableEntry":
        return replace(self)


EntryKey = Tuple[str, Optional[str]]


class BoundedCollector:
    """
    Base for collectors that cap the number of distinct keys at read time.

    Args:
        limit: maximum number of non-overflow entries kept in a result
        scope: count the limit per type or globally across types
    """

    def __init__(self, limit: int, scope: LimitScope = LimitScope.PER_TYPE):
        if limit < 0:
            raise ValueError(f"limit must be >= 0, got {limit}")
        self.limit = limit
        self.scope = scope
        self._entries: Dict[str, Dict[EntryKey, MutableEntry]] = {}
        self._overflow: Dict[str, MutableEntry] = {}

    def merge_entry(
        self,
        type: str,
        text: str,
        total_duration_nanos: float,
        execution_count: int,
        full_text_sha1: Optional[str] = None,
        has_total_rows: bool = False,
        total_rows: int = 0,
    ) -> None:
        if type is None or text is None:
            raise ValueError("Collector entries require a type and a text")
        if text == LIMIT_EXCEEDED_BUCKET:
            entry = self._overflow.get(type)
            if entry is None:
                entry = MutableEntry(type, LIMIT_EXCEEDED_BUCKET)
                self._overflow[type] = entry
        else:
            entries = self._entries.setdefault(type, {})
            key = (text, full_text_sha1)
            entry = entries.get(key)
            if entry is None:
                entry = MutableEntry(type, text, full_text_sha1)
                entries[key] = entry
        entry.add(total_duration_nanos, execution_count, has_total_rows, total_rows)

    def get_sorted_and_truncated_result(self) -> List[MutableEntry]:
        """
        Bound the accumulated entries and return copies of the survivors.

        Entries beyond the limit are folded into their type's overflow entry.
        The list is sorted descending by total duration after folding.
        """
        # fold into copies so the accumulated state is left untouched
        overflow = {t: entry.copy() for t, entry in self._overflow.items()}
        if self.scope is LimitScope.GLOBAL:
            kept = self._truncate(
                [e for entries in self._entries.values() for e in entries.values()],
                overflow,
            )
        else:
            kept = []
            for entries in self._entries.values():
                kept.extend(self._truncate(list(entries.values()), overflow))
        result = [entry.copy() for entry in kept]
        result.extend(overflow.values())
        result.sort(key=lambda entry: entry.total_duration_nanos, reverse=True)
        return result

    def _truncate(
        self, entries: List[MutableEntry], overflow: Dict[str, MutableEntry]
    ) -> List[MutableEntry]:
        entries.sort(key=lambda entry: entry.total_duration_nanos, reverse=True)
        kept = entries[: self.limit]
        folded = entries[self.limit:]
        for entry in folded:
            bucket = overflow.get(entry.type)
            if bucket is None:
                bucket = MutableEntry(entry.type, LIMIT_EXCEEDED_BUCKET)
                overflow[entry.type] = bucket
            bucket.add_entry(entry)
        if folded:
            logger.debug(f"Folded {len(folded)} entries into overflow buckets")
        return kept

    def get_entry_count(self) -> int:
        """Distinct accumulated keys, excluding overflow entries."""
        return sum(len(entries) for entries in self._entries.values())

    def __len__(self) -> int:
        return self.get_entry_count()
