"""
Stack frames and thread states as handed to the profile tree by a sampler.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Pattern, Tuple, Union

from apmrollup.wire.model import LeafThreadState

logger = logging.getLogger(__name__)

NATIVE_METHOD_LINE_NUMBER = -2


class ThreadState(Enum):
    """Sampled thread state."""

    NEW = "NEW"
    RUNNABLE = "RUNNABLE"
    BLOCKED = "BLOCKED"
    WAITING = "WAITING"
    TIMED_WAITING = "TIMED_WAITING"
    TERMINATED = "TERMINATED"


_LEAF_THREAD_STATES = {
    ThreadState.NEW: LeafThreadState.NEW,
    ThreadState.RUNNABLE: LeafThreadState.RUNNABLE,
    ThreadState.BLOCKED: LeafThreadState.BLOCKED,
    ThreadState.WAITING: LeafThreadState.WAITING,
    ThreadState.TIMED_WAITING: LeafThreadState.TIMED_WAITING,
    ThreadState.TERMINATED: LeafThreadState.TERMINATED,
}


@dataclass(frozen=True)
class StackFrame:
    """
    One frame of a sampled call stack.

    class_name is fully qualified; everything before the last '.' is treated
    as the package name.
    """

    class_name: str
    method_name: Optional[str]
    file_name: Optional[str] = None
    line_number: int = -1

    def split_class_name(self) -> Tuple[str, str]:
        """Return (package_name, simple_class_name)."""
        index = self.class_name.rfind(".")
        if index == -1:
            return "", self.class_name
        return self.class_name[:index], self.class_name[index + 1:]

    def __str__(self) -> str:
        return render_frame_text(
            self.class_name, self.method_name or "", self.file_name or "", self.line_number
        )


def render_frame_text(
    full_class_name: str, method_name: str, file_name: str, line_number: int
) -> str:
    """Render a frame the way stack traces print it: Class.method(File:line)."""
    if line_number == NATIVE_METHOD_LINE_NUMBER:
        location = "Native Method"
    elif file_name and line_number >= 0:
        location = f"{file_name}:{line_number}"
    elif file_name:
        location = file_name
    else:
        location = "Unknown Source"
    return f"{full_class_name}.{method_name}({location})"


def to_leaf_thread_state(
    state: Union[ThreadState, LeafThreadState, str, None]
) -> LeafThreadState:
    """
    Map a sampled thread state onto the wire enum.

    Unrecognized states are logged and mapped to NONE.
    """
    if state is None:
        return LeafThreadState.NONE
    if isinstance(state, LeafThreadState):
        return state
    if isinstance(state, ThreadState):
        return _LEAF_THREAD_STATES[state]
    if isinstance(state, str):
        try:
            return _LEAF_THREAD_STATES[ThreadState[state.upper()]]
        except KeyError:
            pass
    logger.warning(f"unexpected thread state: {state!r}")
    return LeafThreadState.NONE


def compile_timer_marker(marker: str) -> Pattern[str]:
    """Pattern matching synthetic timer methods: <anything><marker><name>$<digits>."""
    return re.compile("^.*" + re.escape(marker) + r"(.*)\$[0-9]+$")


def get_timer_name(method_name: str, marker: str, pattern: Pattern[str]) -> Optional[str]:
    """Extract the timer name from a synthetic timer method name, or None."""
    if marker not in method_name:
        # fast check for the common case
        return None
    match = pattern.match(method_name)
    if match is None:
        return None
    return match.group(1).replace("$", " ")
