"""
Summary Collectors

Additive duration and error summaries, overall and per transaction name,
with sortable per-name results.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, TypeVar, Union

from apmrollup.collectors.common import CollectorResult

R = TypeVar("R")


class SummarySortOrder(Enum):
    TOTAL_TIME = "total-time"
    AVERAGE_TIME = "average-time"
    THROUGHPUT = "throughput"


class ErrorSummarySortOrder(Enum):
    ERROR_COUNT = "error-count"
    ERROR_RATE = "error-rate"


@dataclass(frozen=True)
class OverallSummary:
    total_duration_nanos: float = 0.0
    transaction_count: int = 0

    @property
    def average_duration_nanos(self) -> float:
        if self.transaction_count == 0:
            return 0.0
        return self.total_duration_nanos / self.transaction_count


@dataclass(frozen=True)
class TransactionNameSummary:
    transaction_name: str
    total_duration_nanos: float = 0.0
    transaction_count: int = 0

    @property
    def average_duration_nanos(self) -> float:
        if self.transaction_count == 0:
            return 0.0
        return self.total_duration_nanos / self.transaction_count


@dataclass(frozen=True)
class OverallErrorSummary:
    error_count: int = 0
    transaction_count: int = 0

    @property
    def error_rate(self) -> float:
        if self.transaction_count == 0:
            return 0.0
        return self.error_count / self.transaction_count


@dataclass(frozen=True)
class TransactionNameErrorSummary:
    transaction_name: str
    error_count: int = 0
    transaction_count: int = 0

    @property
    def error_rate(self) -> float:
        if self.transaction_count == 0:
            return 0.0
        return self.error_count / self.transaction_count


def _parse_sort_order(sort_order, enum_type):
    if isinstance(sort_order, enum_type):
        return sort_order
    if isinstance(sort_order, str):
        for member in enum_type:
            if sort_order in (member.name, member.value):
                return member
    raise ValueError(f"Unexpected {enum_type.__name__}: {sort_order!r}")


def _limit(
    records: List[R], sort_key: Callable[[R], tuple], limit: int
) -> CollectorResult[R]:
    if limit < 0:
        raise ValueError(f"limit must be >= 0, got {limit}")
    records.sort(key=sort_key)
    if len(records) > limit:
        return CollectorResult(records[:limit], more_available=True)
    return CollectorResult(records, more_available=False)


class _CaptureTimeTracker:
    def __init__(self):
        self.last_capture_time: Optional[int] = None

    def _update_capture_time(self, capture_time: Optional[int]) -> None:
        if capture_time is None:
            return
        if self.last_capture_time is None or capture_time > self.last_capture_time:
            self.last_capture_time = capture_time


class OverallSummaryCollector(_CaptureTimeTracker):
    def __init__(self):
        super().__init__()
        self._total_duration_nanos = 0.0
        self._transaction_count = 0

    def merge_summary(
        self,
        total_duration_nanos: float,
        transaction_count: int,
        capture_time: Optional[int] = None,
    ) -> None:
        self._total_duration_nanos += total_duration_nanos
        self._transaction_count += transaction_count
        self._update_capture_time(capture_time)

    def merge(self, other: "OverallSummaryCollector") -> None:
        self.merge_summary(
            other._total_duration_nanos, other._transaction_count, other.last_capture_time
        )

    def get_summary(self) -> OverallSummary:
        return OverallSummary(self._total_duration_nanos, self._transaction_count)


class TransactionSummaryCollector(_CaptureTimeTracker):
    """Duration summaries per transaction name."""

    def __init__(self):
        super().__init__()
        # name -> [total duration, transaction count]
        self._summaries: Dict[str, List[float]] = {}

    def collect(
        self,
        transaction_name: str,
        total_duration_nanos: float,
        transaction_count: int,
        capture_time: Optional[int] = None,
    ) -> None:
        if transaction_name is None:
            raise ValueError("transaction_name must not be None")
        summary = self._summaries.setdefault(transaction_name, [0.0, 0])
        summary[0] += total_duration_nanos
        summary[1] += transaction_count
        self._update_capture_time(capture_time)

    def merge(self, other: "TransactionSummaryCollector") -> None:
        for name, (total, count) in list(other._summaries.items()):
            self.collect(name, total, count)
        self._update_capture_time(other.last_capture_time)

    def get_result(
        self, sort_order: Union[SummarySortOrder, str], limit: int
    ) -> CollectorResult[TransactionNameSummary]:
        sort_order = _parse_sort_order(sort_order, SummarySortOrder)
        records = [
            TransactionNameSummary(name, total, int(count))
            for name, (total, count) in self._summaries.items()
        ]
        if sort_order is SummarySortOrder.TOTAL_TIME:
            key = lambda s: (-s.total_duration_nanos, s.transaction_name)
        elif sort_order is SummarySortOrder.AVERAGE_TIME:
            key = lambda s: (-s.average_duration_nanos, s.transaction_name)
        else:
            key = lambda s: (-s.transaction_count, s.transaction_name)
        return _limit(records, key, limit)


class OverallErrorSummaryCollector(_CaptureTimeTracker):
    def __init__(self):
        super().__init__()
        self._error_count = 0
        self._transaction_count = 0

    def merge_error_summary(
        self,
        error_count: int,
        transaction_count: int,
        capture_time: Optional[int] = None,
    ) -> None:
        self._error_count += error_count
        self._transaction_count += transaction_count
        self._update_capture_time(capture_time)

    def merge(self, other: "OverallErrorSummaryCollector") -> None:
        self.merge_error_summary(
            other._error_count, other._transaction_count, other.last_capture_time
        )

    def get_summary(self) -> OverallErrorSummary:
        return OverallErrorSummary(self._error_count, self._transaction_count)


class TransactionErrorSummaryCollector(_CaptureTimeTracker):
    """Error summaries per transaction name; names without errors are omitted."""

    def __init__(self):
        super().__init__()
        # name -> [error count, transaction count]
        self._summaries: Dict[str, List[int]] = {}

    def collect(
        self,
        transaction_name: str,
        error_count: int,
        transaction_count: int,
        capture_time: Optional[int] = None,
    ) -> None:
        if transaction_name is None:
            raise ValueError("transaction_name must not be None")
        summary = self._summaries.setdefault(transaction_name, [0, 0])
        summary[0] += error_count
        summary[1] += transaction_count
        self._update_capture_time(capture_time)

    def merge(self, other: "TransactionErrorSummaryCollector") -> None:
        for name, (errors, count) in list(other._summaries.items()):
            self.collect(name, errors, count)
        self._update_capture_time(other.last_capture_time)

    def get_result(
        self, sort_order: Union[ErrorSummarySortOrder, str], limit: int
    ) -> CollectorResult[TransactionNameErrorSummary]:
        sort_order = _parse_sort_order(sort_order, ErrorSummarySortOrder)
        records = [
            TransactionNameErrorSummary(name, errors, count)
            for name, (errors, count) in self._summaries.items()
            if errors > 0
        ]
        if sort_order is ErrorSummarySortOrder.ERROR_COUNT:
            key = lambda s: (-s.error_count, s.transaction_name)
        else:
            key = lambda s: (-s.error_rate, -s.error_count, s.transaction_name)
        return _limit(records, key, limit)
