"""
Name interning for profile trees.

Each profile tree owns its own tables; indices are never shared across trees.
"""

from typing import Dict, Iterator, List, Sequence


class NameTable:
    """
    Append-only string table with reverse lookup.

    Indices are dense, start at zero and stay stable for the lifetime of the
    table. Nothing is ever removed.
    """

    def __init__(self, names: Sequence[str] = ()):
        self._names: List[str] = []
        self._indexes: Dict[str, int] = {}
        for name in names:
            self.index_of(name)

    def index_of(self, name: str) -> int:
        """Return the index for name, appending it on first occurrence."""
        index = self._indexes.get(name)
        if index is None:
            index = len(self._names)
            self._names.append(name)
            self._indexes[name] = index
        return index

    def name_at(self, index: int) -> str:
        return self._names[index]

    def make_index_mapping(self, incoming_names: Sequence[str]) -> List[int]:
        """
        Intern every name of an incoming table.

        Returns:
            mapping where mapping[i] is the local index of incoming_names[i]
        """
        return [self.index_of(name) for name in incoming_names]

    @property
    def names(self) -> List[str]:
        return list(self._names)

    def __len__(self) -> int:
        return len(self._names)

    def __iter__(self) -> Iterator[str]:
        return iter(self._names)

    def __contains__(self, name: object) -> bool:
        return name in self._indexes
