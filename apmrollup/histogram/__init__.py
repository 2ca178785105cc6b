"""
Duration histograms: exact while small, log-bucketed once large.
"""

from apmrollup.histogram.log_buckets import LogBucketHistogram
from apmrollup.histogram.lazy import HistogramMode, LazyHistogram

__all__ = [
    "LogBucketHistogram",
    "HistogramMode",
    "LazyHistogram",
]
