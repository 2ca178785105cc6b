"""
Rollup Session

All collectors of one rollup period for one transaction type:
- Overall and per-transaction-name aggregates (histogram, profile,
  queries, service calls)
- Duration and error summaries
- Error intervals
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from apmrollup.collectors.error_interval import ErrorInterval, ErrorIntervalCollector
from apmrollup.collectors.query import QueryCollector
from apmrollup.collectors.service_call import ServiceCallCollector
from apmrollup.collectors.summary import (
    ErrorSummarySortOrder,
    OverallErrorSummaryCollector,
    OverallSummaryCollector,
    SummarySortOrder,
    TransactionErrorSummaryCollector,
    TransactionSummaryCollector,
)
from apmrollup.core.config import RollupConfig
from apmrollup.histogram.lazy import LazyHistogram
from apmrollup.profile.frames import StackFrame, ThreadState
from apmrollup.profile.tree import MutableProfileTree
from apmrollup.wire.model import AggregateMessage, LeafThreadState

logger = logging.getLogger(__name__)

SNAPSHOT_PERCENTILES = (50.0, 95.0, 99.0)


@dataclass
class TransactionAggregate:
    """Mutable aggregate for the overall type or one transaction name."""

    histogram: LazyHistogram
    profile: MutableProfileTree
    aux_profile: MutableProfileTree
    queries: QueryCollector
    service_calls: ServiceCallCollector
    total_duration_nanos: float = 0.0
    transaction_count: int = 0
    error_count: int = 0

    @classmethod
    def from_config(cls, config: RollupConfig) -> "TransactionAggregate":
        return cls(
            histogram=LazyHistogram(
                config.histogram_max_exact_values, config.histogram_significant_digits
            ),
            profile=MutableProfileTree(config.timer_marker),
            aux_profile=MutableProfileTree(config.timer_marker),
            queries=QueryCollector(config.max_queries_per_type),
            service_calls=ServiceCallCollector(config.max_service_calls_per_type),
        )

    def record(self, duration_nanos: int, error: bool) -> None:
        self.total_duration_nanos += duration_nanos
        self.transaction_count += 1
        if error:
            self.error_count += 1
        self.histogram.add(duration_nanos)

    def merge(self, other: "TransactionAggregate") -> None:
        self.total_duration_nanos += other.total_duration_nanos
        self.transaction_count += other.transaction_count
        self.error_count += other.error_count
        self.histogram.merge(other.histogram)
        self.profile.merge_tree(other.profile)
        self.aux_profile.merge_tree(other.aux_profile)
        self.queries.merge(other.queries)
        self.service_calls.merge(other.service_calls)

    def merge_wire(self, message: AggregateMessage) -> None:
        self.total_duration_nanos += message.total_duration_nanos
        self.transaction_count += message.transaction_count
        self.error_count += message.error_count
        self.histogram.merge_wire(message.duration_nanos_histogram)
        self.profile.merge_subtree(message.main_thread_profile)
        self.aux_profile.merge_subtree(message.aux_thread_profile)
        self.queries.merge_wire(message.queries)
        self.service_calls.merge_wire(message.service_calls)

    def to_wire(self) -> AggregateMessage:
        return AggregateMessage(
            total_duration_nanos=self.total_duration_nanos,
            transaction_count=self.transaction_count,
            error_count=self.error_count,
            duration_nanos_histogram=self.histogram.to_wire(),
            main_thread_profile=self.profile.to_wire(),
            aux_thread_profile=self.aux_profile.to_wire(),
            queries=tuple(self.queries.to_wire()),
            service_calls=tuple(self.service_calls.to_wire()),
        )

    def snapshot(self, profile_min_samples: int) -> Dict[str, Any]:
        return {
            "totalDurationNanos": self.total_duration_nanos,
            "transactionCount": self.transaction_count,
            "errorCount": self.error_count,
            "percentiles": {
                p: self.histogram.get_value_at_percentile(p) for p in SNAPSHOT_PERCENTILES
            },
            "mainThreadProfile": _truncated_wire(self.profile, profile_min_samples),
            "auxThreadProfile": _truncated_wire(self.aux_profile, profile_min_samples),
            "queries": [q.to_dict() for q in self.queries.to_wire()],
            "serviceCalls": [s.to_dict() for s in self.service_calls.to_wire()],
        }


def _truncated_wire(profile: MutableProfileTree, min_samples: int) -> Dict[str, Any]:
    if min_samples > 0:
        profile = profile.copy()
        profile.truncate(min_samples)
    return profile.to_wire().to_dict()


@dataclass
class _Summaries:
    overall: OverallSummaryCollector = field(default_factory=OverallSummaryCollector)
    by_name: TransactionSummaryCollector = field(
        default_factory=TransactionSummaryCollector
    )
    overall_errors: OverallErrorSummaryCollector = field(
        default_factory=OverallErrorSummaryCollector
    )
    errors_by_name: TransactionErrorSummaryCollector = field(
        default_factory=TransactionErrorSummaryCollector
    )

    def collect(
        self,
        transaction_name: str,
        total_duration_nanos: float,
        transaction_count: int,
        error_count: int,
        capture_time: Optional[int],
    ) -> None:
        self.overall.merge_summary(total_duration_nanos, transaction_count, capture_time)
        self.by_name.collect(
            transaction_name, total_duration_nanos, transaction_count, capture_time
        )
        self.overall_errors.merge_error_summary(
            error_count, transaction_count, capture_time
        )
        self.errors_by_name.collect(
            transaction_name, error_count, transaction_count, capture_time
        )

    def merge(self, other: "_Summaries") -> None:
        self.overall.merge(other.overall)
        self.by_name.merge(other.by_name)
        self.overall_errors.merge(other.overall_errors)
        self.errors_by_name.merge(other.errors_by_name)


class RollupSession:
    """
    One rollup period for one transaction type.

    Not thread-safe: a session is owned by a single accumulation pipeline.
    Shards are combined afterwards with merge().

    Example:
        session = RollupSession("Web")
        session.record_transaction("/checkout", 1_200_000)
        session.record_stack_sample("/checkout", frames, ThreadState.RUNNABLE)
        snapshot = session.snapshot()
    """

    def __init__(
        self,
        transaction_type: str,
        config: Optional[RollupConfig] = None,
        session_id: Optional[str] = None,
    ):
        if not transaction_type:
            raise ValueError("transaction_type must not be empty")
        self.transaction_type = transaction_type
        self.config = config or RollupConfig()
        self.session_id = session_id or str(uuid.uuid4())
        self.start_time = time.time()

        self.overall = TransactionAggregate.from_config(self.config)
        self._by_name: Dict[str, TransactionAggregate] = {}
        self.summaries = _Summaries()
        self.error_intervals = ErrorIntervalCollector()

        logger.debug(f"Started rollup session {self.session_id} ({transaction_type})")

    @property
    def transaction_names(self) -> List[str]:
        return list(self._by_name)

    def get_aggregate(self, transaction_name: Optional[str] = None) -> TransactionAggregate:
        """Aggregate for a transaction name, or the overall one when name is None."""
        if transaction_name is None:
            return self.overall
        try:
            return self._by_name[transaction_name]
        except KeyError:
            raise KeyError(f"Unknown transaction name: {transaction_name}") from None

    def _named(self, transaction_name: str) -> TransactionAggregate:
        if transaction_name is None:
            raise ValueError("transaction_name must not be None")
        aggregate = self._by_name.get(transaction_name)
        if aggregate is None:
            aggregate = TransactionAggregate.from_config(self.config)
            self._by_name[transaction_name] = aggregate
        return aggregate

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_transaction(
        self,
        transaction_name: str,
        duration_nanos: int,
        error: bool = False,
        capture_time: Optional[int] = None,
    ) -> None:
        self._named(transaction_name).record(duration_nanos, error)
        self.overall.record(duration_nanos, error)
        self.summaries.collect(
            transaction_name, duration_nanos, 1, 1 if error else 0, capture_time
        )

    def record_stack_sample(
        self,
        transaction_name: str,
        frames: Sequence[StackFrame],
        thread_state: Union[ThreadState, LeafThreadState, str, None] = None,
        aux_thread: bool = False,
    ) -> None:
        """
        Merge one sampled stack, outermost frame first.

        Samples taken on threads other than the transaction's own thread go
        to the auxiliary profile when aux_thread is set.
        """
        for aggregate in (self._named(transaction_name), self.overall):
            profile = aggregate.aux_profile if aux_thread else aggregate.profile
            profile.merge_sample(
                frames, thread_state, may_have_synthetic_timer_methods=True
            )

    def record_query(
        self,
        transaction_name: str,
        query_type: str,
        truncated_text: str,
        total_duration_nanos: float,
        execution_count: int = 1,
        total_rows: Optional[int] = None,
        full_text: Optional[str] = None,
        capture_time: Optional[int] = None,
    ) -> None:
        for aggregate in (self._named(transaction_name), self.overall):
            aggregate.queries.merge_query(
                query_type,
                truncated_text,
                total_duration_nanos,
                execution_count,
                has_total_rows=total_rows is not None,
                total_rows=total_rows or 0,
                full_text=full_text,
            )
            if capture_time is not None:
                aggregate.queries.update_last_capture_time(capture_time)

    def record_service_call(
        self,
        transaction_name: str,
        service_call_type: str,
        text: str,
        total_duration_nanos: float,
        execution_count: int = 1,
    ) -> None:
        for aggregate in (self._named(transaction_name), self.overall):
            aggregate.service_calls.merge_service_call(
                service_call_type, text, total_duration_nanos, execution_count
            )

    def record_error_intervals(self, error_intervals: Iterable[ErrorInterval]) -> None:
        self.error_intervals.add_error_intervals(error_intervals)

    def record_gap(self) -> None:
        self.error_intervals.add_gap()

    # ------------------------------------------------------------------
    # Merging
    # ------------------------------------------------------------------

    def merge_wire_aggregate(
        self,
        transaction_name: str,
        message: AggregateMessage,
        capture_time: Optional[int] = None,
    ) -> None:
        """Merge a partial aggregate produced elsewhere for one transaction name."""
        if message is None:
            raise ValueError("message must not be None")
        self._named(transaction_name).merge_wire(message)
        self.overall.merge_wire(message)
        self.summaries.collect(
            transaction_name,
            message.total_duration_nanos,
            message.transaction_count,
            message.error_count,
            capture_time,
        )

    def merge(self, other: "RollupSession") -> None:
        """
        Fold another shard of the same transaction type into this session.

        Error intervals are not merged since shards cannot be ordered in time.
        """
        if other.transaction_type != self.transaction_type:
            raise ValueError(
                f"Cannot merge session of type {other.transaction_type!r} "
                f"into {self.transaction_type!r}"
            )
        self.overall.merge(other.overall)
        for name, aggregate in list(other._by_name.items()):
            self._named(name).merge(aggregate)
        self.summaries.merge(other.summaries)
        logger.debug(f"Merged session {other.session_id} into {self.session_id}")

    # ------------------------------------------------------------------
    # Exports
    # ------------------------------------------------------------------

    def to_wire(self, transaction_name: Optional[str] = None) -> AggregateMessage:
        return self.get_aggregate(transaction_name).to_wire()

    def get_profile_json(
        self,
        transaction_name: Optional[str] = None,
        includes: Sequence[str] = (),
        excludes: Sequence[str] = (),
        min_samples: Optional[int] = None,
        flame_graph: bool = False,
        aux_thread: bool = False,
    ) -> str:
        """Filtered and truncated profile export; the session's tree is left as is."""
        aggregate = self.get_aggregate(transaction_name)
        profile = (aggregate.aux_profile if aux_thread else aggregate.profile).copy()
        if includes or excludes:
            profile.filter(includes, excludes)
        if min_samples is None:
            min_samples = self.config.profile_min_samples
        if min_samples > 0:
            profile.truncate(min_samples)
        if flame_graph:
            return profile.to_flame_graph_json()
        return profile.to_json()

    def snapshot(
        self,
        summary_sort_order: Union[SummarySortOrder, str] = SummarySortOrder.TOTAL_TIME,
        error_sort_order: Union[
            ErrorSummarySortOrder, str
        ] = ErrorSummarySortOrder.ERROR_COUNT,
        limit: int = 100,
    ) -> Dict[str, Any]:
        """Plain-data view of the session for the export layer."""
        min_samples = self.config.profile_min_samples
        summaries = self.summaries.by_name.get_result(summary_sort_order, limit)
        error_summaries = self.summaries.errors_by_name.get_result(error_sort_order, limit)
        overall_summary = self.summaries.overall.get_summary()
        overall_errors = self.summaries.overall_errors.get_summary()
        return {
            "sessionId": self.session_id,
            "transactionType": self.transaction_type,
            "lastCaptureTime": self.summaries.overall.last_capture_time,
            "overall": self.overall.snapshot(min_samples),
            "transactions": {
                name: aggregate.snapshot(min_samples)
                for name, aggregate in self._by_name.items()
            },
            "overallSummary": {
                "totalDurationNanos": overall_summary.total_duration_nanos,
                "transactionCount": overall_summary.transaction_count,
            },
            "transactionSummaries": {
                "records": [
                    {
                        "transactionName": s.transaction_name,
                        "totalDurationNanos": s.total_duration_nanos,
                        "transactionCount": s.transaction_count,
                    }
                    for s in summaries.records
                ],
                "moreAvailable": summaries.more_available,
            },
            "overallErrorSummary": {
                "errorCount": overall_errors.error_count,
                "transactionCount": overall_errors.transaction_count,
            },
            "transactionErrorSummaries": {
                "records": [
                    {
                        "transactionName": s.transaction_name,
                        "errorCount": s.error_count,
                        "transactionCount": s.transaction_count,
                    }
                    for s in error_summaries.records
                ],
                "moreAvailable": error_summaries.more_available,
            },
            "errorIntervals": [
                {
                    "from": e.from_time,
                    "to": e.to_time,
                    "message": e.message,
                    "count": e.count,
                }
                for e in self.error_intervals.get_merged_intervals()
            ],
        }
