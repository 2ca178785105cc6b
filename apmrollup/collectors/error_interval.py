"""
Error Interval Collector

Merges chronologically ordered error intervals that share a message into
single spans.
"""

from dataclasses import dataclass, replace
from typing import Iterable, List, Optional


@dataclass(frozen=True)
class ErrorInterval:
    """
    [from_time, to_time) span in which the same error occurred count times.

    do_not_merge_left / do_not_merge_right veto merging with the preceding /
    following interval even when the messages match.
    """

    from_time: int
    to_time: int
    message: str
    count: int = 1
    do_not_merge_left: bool = False
    do_not_merge_right: bool = False


class ErrorIntervalCollector:
    """
    Single-accumulator state machine.

    OPEN while a current interval exists, CLOSED otherwise. Intervals are never
    reordered; callers supply them in non-decreasing time order.
    """

    def __init__(self):
        self._merged_intervals: List[ErrorInterval] = []
        self._current: Optional[ErrorInterval] = None

    def add_error_intervals(self, error_intervals: Iterable[ErrorInterval]) -> None:
        for error_interval in error_intervals:
            if error_interval is None:
                raise ValueError("error interval must not be None")
            current = self._current
            if (
                current is not None
                and current.message == error_interval.message
                and not error_interval.do_not_merge_left
            ):
                self._current = replace(
                    current,
                    to_time=error_interval.to_time,
                    count=current.count + error_interval.count,
                    do_not_merge_right=error_interval.do_not_merge_right,
                )
            else:
                self._close()
                self._current = error_interval
            if error_interval.do_not_merge_right:
                self._close()

    def add_gap(self) -> None:
        self._close()

    def _close(self) -> None:
        if self._current is not None:
            self._merged_intervals.append(self._current)
            self._current = None

    def get_merged_intervals(self) -> List[ErrorInterval]:
        """Merged intervals so far, including the open one; state is unchanged."""
        merged = list(self._merged_intervals)
        if self._current is not None:
            merged.append(self._current)
        return merged
