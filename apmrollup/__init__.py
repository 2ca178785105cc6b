"""
APM Rollup

In-memory aggregation engine for application performance monitoring data.
Merges stack-trace samples, query executions, service calls, error
occurrences and duration histograms into bounded, queryable rollups.
"""

__version__ = "1.0.0"

from apmrollup.core.config import RollupConfig, setup_logging
from apmrollup.core.interner import NameTable

# Call-tree profiles
from apmrollup.profile import MutableProfileTree, ProfileNode, StackFrame, ThreadState

# Histograms
from apmrollup.histogram import HistogramMode, LazyHistogram, LogBucketHistogram

# Collectors
from apmrollup.collectors import (
    LIMIT_EXCEEDED_BUCKET,
    CollectorResult,
    ErrorInterval,
    ErrorIntervalCollector,
    ErrorSummarySortOrder,
    OverallErrorSummaryCollector,
    OverallSummaryCollector,
    QueryCollector,
    ServiceCallCollector,
    SummarySortOrder,
    TransactionErrorSummaryCollector,
    TransactionSummaryCollector,
)

# Wire format
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

from apmrollup.core.session import RollupSession, TransactionAggregate

__all__ = [
    # Core
    "RollupConfig",
    "setup_logging",
    "NameTable",
    "RollupSession",
    "TransactionAggregate",
    # Profiles
    "MutableProfileTree",
    "ProfileNode",
    "StackFrame",
    "ThreadState",
    # Histograms
    "HistogramMode",
    "LazyHistogram",
    "LogBucketHistogram",
    # Collectors
    "LIMIT_EXCEEDED_BUCKET",
    "CollectorResult",
    "ErrorInterval",
    "ErrorIntervalCollector",
    "ErrorSummarySortOrder",
    "OverallErrorSummaryCollector",
    "OverallSummaryCollector",
    "QueryCollector",
    "ServiceCallCollector",
    "SummarySortOrder",
    "TransactionErrorSummaryCollector",
    "TransactionSummaryCollector",
    # Wire
    "AggregateMessage",
    "HistogramMessage",
    "LeafThreadState",
    "ProfileNodeMessage",
    "ProfileTreeMessage",
    "QueryMessage",
    "ServiceCallMessage",
    "decode",
    "encode",
    # Version
    "__version__",
]
