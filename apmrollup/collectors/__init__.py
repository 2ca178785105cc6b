"""
Collectors for queries, service calls, summaries and error intervals.
"""

from apmrollup.collectors.common import (
    LIMIT_EXCEEDED_BUCKET,
    BoundedCollector,
    CollectorResult,
    LimitScope,
    MutableEntry,
)
from apmrollup.collectors.query import QueryCollector
from apmrollup.collectors.service_call import ServiceCallCollector
from apmrollup.collectors.summary import (
    ErrorSummarySortOrder,
    OverallErrorSummary,
    OverallErrorSummaryCollector,
    OverallSummary,
    OverallSummaryCollector,
    SummarySortOrder,
    TransactionErrorSummaryCollector,
    TransactionNameErrorSummary,
    TransactionNameSummary,
    TransactionSummaryCollector,
)
from apmrollup.collectors.error_interval import ErrorInterval, ErrorIntervalCollector

__all__ = [
    "LIMIT_EXCEEDED_BUCKET",
    "BoundedCollector",
    "CollectorResult",
    "LimitScope",
    "MutableEntry",
    "QueryCollector",
    "ServiceCallCollector",
    "ErrorSummarySortOrder",
    "OverallErrorSummary",
    "OverallErrorSummaryCollector",
    "OverallSummary",
    "OverallSummaryCollector",
    "SummarySortOrder",
    "TransactionErrorSummaryCollector",
    "TransactionNameErrorSummary",
    "TransactionNameSummary",
    "TransactionSummaryCollector",
    "ErrorInterval",
    "ErrorIntervalCollector",
]
