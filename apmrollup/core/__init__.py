"""
Core building blocks: configuration, name interning, traversal and JSON output.

RollupSession lives in apmrollup.core.session and is re-exported from the
top-level package.
"""

from apmrollup.core.config import RollupConfig, setup_logging
from apmrollup.core.interner import NameTable
from apmrollup.core.json_stream import JsonStreamWriter
from apmrollup.core.traverser import Traverser

__all__ = [
    "RollupConfig",
    "setup_logging",
    "NameTable",
    "JsonStreamWriter",
    "Traverser",
]
