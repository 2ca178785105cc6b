"""
Token-level JSON writer.

json.dumps() recurses once per nesting level, which breaks on profile trees
deeper than the interpreter recursion limit. This writer emits the document
piece by piece so nesting depth is bounded only by memory.
"""

import json
from typing import Any, List, Optional


class JsonStreamWriter:
    """Builds a JSON document from start/end/field calls."""

    def __init__(self):
        self._parts: List[str] = []
        # one entry per open container: True until its first element is written
        self._first: List[bool] = []

    def _separate(self) -> None:
        if self._first:
            if self._first[-1]:
                self._first[-1] = False
            else:
                self._parts.append(",")

    def _open(self, name: Optional[str], token: str) -> None:
        self._separate()
        if name is not None:
            self._parts.append(json.dumps(name))
            self._parts.append(":")
        self._parts.append(token)
        self._first.append(True)

    def start_object(self, name: Optional[str] = None) -> None:
        self._open(name, "{")

    def end_object(self) -> None:
        self._first.pop()
        self._parts.append("}")

    def start_array(self, name: Optional[str] = None) -> None:
        self._open(name, "[")

    def end_array(self) -> None:
        self._first.pop()
        self._parts.append("]")

    def write_value(self, value: Any) -> None:
        """Write a scalar as the next array element."""
        self._separate()
        self._parts.append(json.dumps(value))

    def write_field(self, name: str, value: Any) -> None:
        self._separate()
        self._parts.append(json.dumps(name))
        self._parts.append(":")
        self._parts.append(json.dumps(value))

    def getvalue(self) -> str:
        if self._first:
            raise ValueError(f"{len(self._first)} JSON container(s) still open")
        return "".join(self._parts)
