"""
Explicit-stack tree traversal.

Profile trees can be as deep as the deepest sampled call stack, so every walk
over them goes through Traverser instead of native recursion.
"""

from typing import Generic, Iterator, List, Sequence, Tuple, TypeVar

T = TypeVar("T")

_DONE = object()


class Traverser(Generic[T]):
    """
    Depth-first pre/post-order walk driven by an explicit work stack.

    Subclasses implement visit() which returns the children to descend into,
    and optionally revisit_after_children() which runs once all of a node's
    children have been fully traversed.
    """

    def __init__(self, root: T):
        self._root = root

    def visit(self, node: T, depth: int) -> Sequence[T]:
        raise NotImplementedError

    def revisit_after_children(self, node: T) -> None:
        pass

    def traverse(self) -> None:
        """Walk the whole tree below (and including) the root node."""
        stack: List[Tuple[T, Iterator[T]]] = [
            (self._root, iter(self.visit(self._root, 0)))
        ]
        while stack:
            node, children = stack[-1]
            child = next(children, _DONE)
            if child is _DONE:
                stack.pop()
                self.revisit_after_children(node)
            else:
                # children list of the node is not touched until its own revisit
                stack.append((child, iter(self.visit(child, len(stack)))))
