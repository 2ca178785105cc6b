"""
Call-tree profiles built from stack-trace samples.
"""

from apmrollup.profile.frames import StackFrame, ThreadState
from apmrollup.profile.tree import MutableProfileTree, ProfileNode

__all__ = [
    "StackFrame",
    "ThreadState",
    "MutableProfileTree",
    "ProfileNode",
]
