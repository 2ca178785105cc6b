"""
Mutable Profile Tree

Merges stack-trace samples and pre-aggregated subtrees into one forest of
call-tree nodes, with:
- String-interned frame identity (package, class, method, file, line, state)
- Prefix-only matching for raw samples, full sibling matching for subtrees
- Include/exclude text filtering
- Truncation of rarely-sampled branches into ellipsed counts
- JSON tree, flame-graph and wire exports without native recursion
"""

from collections import deque
import logging
from typing import Deque, Iterator, List, Optional, Sequence, Tuple, Union

from apmrollup.core.interner import NameTable
from apmrollup.core.json_stream import JsonStreamWriter
from apmrollup.core.traverser import Traverser
from apmrollup.profile.frames import (
    StackFrame,
    ThreadState,
    compile_timer_marker,
    get_timer_name,
    render_frame_text,
    to_leaf_thread_state,
)
from apmrollup.wire.model import LeafThreadState, ProfileNodeMessage, ProfileTreeMessage

logger = logging.getLogger(__name__)

DEFAULT_TIMER_MARKER = "$apm$timer$"


class ProfileNode:
    """
    A node of the profile forest.

    Persistent fields: name indexes, line number, leaf thread state, sample
    count, ellipsed sample count, timer names and children. Scratch fields
    belong to filtering only: the matched flag is reset after every filter
    pass, the text caches never go stale.
    """

    __slots__ = (
        "package_name_index",
        "class_name_index",
        "method_name_index",
        "file_name_index",
        "line_number",
        "leaf_thread_state",
        "sample_count",
        "ellipsed_sample_count",
        "timer_name_indexes",
        "child_nodes",
        # scratch
        "text",
        "text_upper",
        "matched",
    )

    def __init__(
        self,
        package_name_index: int,
        class_name_index: int,
        method_name_index: int,
        file_name_index: int,
        line_number: int,
        leaf_thread_state: LeafThreadState,
    ):
        self.package_name_index = package_name_index
        self.class_name_index = class_name_index
        self.method_name_index = method_name_index
        self.file_name_index = file_name_index
        self.line_number = line_number
        self.leaf_thread_state = leaf_thread_state
        self.sample_count = 0
        self.ellipsed_sample_count = 0
        self.timer_name_indexes: Tuple[int, ...] = ()
        self.child_nodes: List["ProfileNode"] = []
        self.text: Optional[str] = None
        self.text_upper: Optional[str] = None
        self.matched = False

    def is_match(
        self,
        package_name_index: int,
        class_name_index: int,
        method_name_index: int,
        file_name_index: int,
        line_number: int,
        leaf_thread_state: LeafThreadState,
    ) -> bool:
        # line number first since it is the most likely to differ
        return (
            line_number == self.line_number
            and file_name_index == self.file_name_index
            and leaf_thread_state is self.leaf_thread_state
            and method_name_index == self.method_name_index
            and class_name_index == self.class_name_index
            and package_name_index == self.package_name_index
        )

    def maybe_set_timer_name_indexes(self, timer_name_indexes: Sequence[int]) -> None:
        # timer names for a given frame should always agree, unless the sample
        # was captured while one of the synthetic timer methods was executing,
        # in which case the shorter list is missing a name
        if len(timer_name_indexes) > len(self.timer_name_indexes):
            self.timer_name_indexes = tuple(timer_name_indexes)

    def reset_scratch(self) -> None:
        self.matched = False

    def __repr__(self) -> str:
        return (
            f"ProfileNode(line={self.line_number}, state={self.leaf_thread_state.value}, "
            f"samples={self.sample_count}, children={len(self.child_nodes)})"
        )


class MutableProfileTree:
    """
    Aggregated call-tree profile for one rollup scope.

    Name tables are owned by the tree instance, so independent trees never
    share interning state.
    """

    def __init__(self, timer_marker: str = DEFAULT_TIMER_MARKER):
        self._package_names = NameTable()
        self._class_names = NameTable()
        self._method_names = NameTable()
        self._file_names = NameTable()
        self._timer_names = NameTable()

        self._root_nodes: List[ProfileNode] = []

        # original sample count, retained in case of a filtered profile
        self._unfiltered_sample_count = -1

        self._timer_marker = timer_marker
        self._timer_pattern = compile_timer_marker(timer_marker)

    @property
    def root_nodes(self) -> Tuple[ProfileNode, ...]:
        return tuple(self._root_nodes)

    @property
    def timer_names(self) -> List[str]:
        return self._timer_names.names

    # ------------------------------------------------------------------
    # Merging
    # ------------------------------------------------------------------

    def merge_sample(
        self,
        frames: Sequence[StackFrame],
        thread_state: Union[ThreadState, LeafThreadState, str, None] = None,
        may_have_synthetic_timer_methods: bool = False,
    ) -> None:
        """
        Merge one stack sample.

        Args:
            frames: call stack ordered from the outermost to the innermost frame
            thread_state: state of the sampled thread, recorded on the innermost node
            may_have_synthetic_timer_methods: consume synthetic timer frames into
                timer-name annotations of the enclosing frame
        """
        if frames is None:
            raise ValueError("frames must not be None")
        for frame in frames:
            if frame.method_name is None:
                # only happens after hot-swapping, ignore the sample altogether
                logger.debug("Discarding stack sample with a null method name")
                return

        merge_into_nodes = self._root_nodes
        looking_for_match = True
        frame_count = len(frames)
        i = 0
        while i < frame_count:
            frame = frames[i]
            i += 1
            timer_name_indexes: Sequence[int] = ()
            if may_have_synthetic_timer_methods:
                timer_name_indexes, i = self._consume_timer_frames(frames, i)

            package_name, class_name = frame.split_class_name()
            package_name_index = self._package_names.index_of(package_name)
            class_name_index = self._class_names.index_of(class_name)
            method_name_index = self._method_names.index_of(frame.method_name)
            file_name_index = self._file_names.index_of(frame.file_name or "")
            line_number = frame.line_number
            if i < frame_count:
                leaf_thread_state = LeafThreadState.NONE
            else:
                leaf_thread_state = to_leaf_thread_state(thread_state)

            node = None
            if looking_for_match:
                for child_node in merge_into_nodes:
                    if child_node.is_match(
                        package_name_index,
                        class_name_index,
                        method_name_index,
                        file_name_index,
                        line_number,
                        leaf_thread_state,
                    ):
                        node = child_node
                        break
            if node is None:
                # stop matching for the rest of this sample
                looking_for_match = False
                node = ProfileNode(
                    package_name_index,
                    class_name_index,
                    method_name_index,
                    file_name_index,
                    line_number,
                    leaf_thread_state,
                )
                merge_into_nodes.append(node)
            node.sample_count += 1
            node.maybe_set_timer_name_indexes(timer_name_indexes)
            merge_into_nodes = node.child_nodes

    def _consume_timer_frames(
        self, frames: Sequence[StackFrame], i: int
    ) -> Tuple[List[int], int]:
        timer_name_indexes: List[int] = []
        while i < len(frames):
            timer_name = get_timer_name(
                frames[i].method_name, self._timer_marker, self._timer_pattern
            )
            if timer_name is None:
                break
            timer_name_indexes.append(self._timer_names.index_of(timer_name))
            i += 1
        return timer_name_indexes, i

    def merge_subtree(self, profile_tree: ProfileTreeMessage) -> None:
        """Merge an externally-encoded (already aggregated) tree."""
        if profile_tree is None:
            raise ValueError("profile_tree must not be None")
        _Merger(self, profile_tree).merge(self._root_nodes)

    def merge_tree(self, other: "MutableProfileTree") -> None:
        """Merge another in-memory tree (through its wire form)."""
        self.merge_subtree(other.to_wire())

    def copy(self) -> "MutableProfileTree":
        """Independent copy with its own name tables; filter state is not carried."""
        other = MutableProfileTree(self._timer_marker)
        other.merge_tree(self)
        return other

    # ------------------------------------------------------------------
    # Filtering and truncation
    # ------------------------------------------------------------------

    def filter(self, includes: Sequence[str], excludes: Sequence[str]) -> None:
        """
        Keep only branches containing every include term, then drop branches
        containing any exclude term. Matching is case-insensitive against the
        rendered frame text and the leaf thread state name.
        """
        self._unfiltered_sample_count = self.get_sample_count()
        for include in includes:
            kept = []
            for root_node in self._root_nodes:
                _ProfileFilterer(self, root_node, include, exclusion=False).traverse()
                if root_node.matched:
                    kept.append(root_node)
            self._root_nodes[:] = kept
            self._reset_scratch()
        for exclude in excludes:
            kept = []
            for root_node in self._root_nodes:
                _ProfileFilterer(self, root_node, exclude, exclusion=True).traverse()
                if not root_node.matched:
                    kept.append(root_node)
            self._root_nodes[:] = kept
            self._reset_scratch()
        logger.debug(
            f"Filtered profile from {self._unfiltered_sample_count} "
            f"to {self.get_sample_count()} samples"
        )

    def _reset_scratch(self) -> None:
        for node in self.iter_nodes():
            node.reset_scratch()

    def truncate(self, min_samples: int) -> None:
        """
        Remove every branch sampled fewer than min_samples times.

        Removed counts move into the parent's ellipsed sample count.
        """
        to_be_visited: Deque[ProfileNode] = deque(self._root_nodes)
        ellipsed_total = 0
        while to_be_visited:
            node = to_be_visited.popleft()
            kept = []
            for child_node in node.child_nodes:
                if child_node.sample_count < min_samples:
                    node.ellipsed_sample_count += child_node.sample_count
                    ellipsed_total += child_node.sample_count
                else:
                    kept.append(child_node)
                    to_be_visited.append(child_node)
            node.child_nodes[:] = kept
        logger.debug(f"Truncated {ellipsed_total} samples below {min_samples}")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_sample_count(self) -> int:
        return sum(root_node.sample_count for root_node in self._root_nodes)

    def get_unfiltered_sample_count(self) -> int:
        if self._unfiltered_sample_count == -1:
            return self.get_sample_count()
        return self._unfiltered_sample_count

    def iter_nodes(self) -> Iterator[ProfileNode]:
        """Yield every node depth-first, pre-order."""
        stack = list(reversed(self._root_nodes))
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.child_nodes))

    def get_text(self, node: ProfileNode) -> str:
        if node.text is None:
            package_name = self._package_names.name_at(node.package_name_index)
            class_name = self._class_names.name_at(node.class_name_index)
            if package_name:
                full_class_name = f"{package_name}.{class_name}"
            else:
                full_class_name = class_name
            node.text = render_frame_text(
                full_class_name,
                self._method_names.name_at(node.method_name_index),
                self._file_names.name_at(node.file_name_index),
                node.line_number,
            )
        return node.text

    def get_text_upper(self, node: ProfileNode) -> str:
        if node.text_upper is None:
            node.text_upper = self.get_text(node).upper()
        return node.text_upper

    def get_timer_names(self, node: ProfileNode) -> List[str]:
        return [self._timer_names.name_at(i) for i in node.timer_name_indexes]

    # ------------------------------------------------------------------
    # Exports
    # ------------------------------------------------------------------

    def to_wire(self) -> ProfileTreeMessage:
        nodes: List[ProfileNodeMessage] = []
        for root_node in self._root_nodes:
            _ProfileNodeCollector(root_node, nodes).traverse()
        return ProfileTreeMessage(
            package_names=tuple(self._package_names),
            class_names=tuple(self._class_names),
            method_names=tuple(self._method_names),
            file_names=tuple(self._file_names),
            timer_names=tuple(self._timer_names),
            nodes=tuple(nodes),
        )

    def to_json(self) -> str:
        writer = JsonStreamWriter()
        writer.start_object()
        writer.write_field("unfilteredSampleCount", self.get_unfiltered_sample_count())
        writer.start_array("rootNodes")
        for root_node in self._root_nodes:
            _ProfileWriter(self, root_node, writer).traverse()
        writer.end_array()
        writer.end_object()
        return writer.getvalue()

    def to_flame_graph_json(self) -> str:
        writer = JsonStreamWriter()
        writer.start_object()
        writer.start_object("")
        writer.write_field("svUnique", 0)
        writer.write_field("svTotal", self.get_sample_count())
        writer.start_object("svChildren")
        for root_node in self._root_nodes:
            if root_node.sample_count > root_node.ellipsed_sample_count:
                _FlameGraphWriter(self, root_node, writer).traverse()
        writer.end_object()
        writer.end_object()
        writer.end_object()
        return writer.getvalue()


def _map_index(mapping: List[int], index: int, kind: str, position: int) -> int:
    if not 0 <= index < len(mapping):
        raise ValueError(f"Invalid {kind} name index {index} at position {position}")
    return mapping[index]


class _Merger:
    """Merges one depth-encoded tree into the destination forest."""

    def __init__(self, tree: MutableProfileTree, to_be_merged: ProfileTreeMessage):
        self._flat_nodes = to_be_merged.nodes
        self._package_name_mapping = tree._package_names.make_index_mapping(
            to_be_merged.package_names
        )
        self._class_name_mapping = tree._class_names.make_index_mapping(
            to_be_merged.class_names
        )
        self._method_name_mapping = tree._method_names.make_index_mapping(
            to_be_merged.method_names
        )
        self._file_name_mapping = tree._file_names.make_index_mapping(
            to_be_merged.file_names
        )
        self._timer_name_mapping = tree._timer_names.make_index_mapping(
            to_be_merged.timer_names
        )

    def merge(self, destination_root_nodes: List[ProfileNode]) -> None:
        destination_stack: List[List[ProfileNode]] = [destination_root_nodes]
        flat_nodes = self._flat_nodes
        for position, flat_node in enumerate(flat_nodes):
            depth = flat_node.depth
            if depth < 0 or depth > len(destination_stack) - 1:
                raise ValueError(
                    f"Invalid profile node depth {depth} at position {position}"
                )
            del destination_stack[depth + 1:]
            destination_node = self._merge_one(flat_node, destination_stack[-1], position)
            if position + 1 < len(flat_nodes) and flat_nodes[position + 1].depth > depth:
                destination_stack.append(destination_node.child_nodes)

    def _merge_one(
        self,
        flat_node: ProfileNodeMessage,
        destination_nodes: List[ProfileNode],
        position: int,
    ) -> ProfileNode:
        package_name_index = _map_index(
            self._package_name_mapping, flat_node.package_name_index, "package", position
        )
        class_name_index = _map_index(
            self._class_name_mapping, flat_node.class_name_index, "class", position
        )
        method_name_index = _map_index(
            self._method_name_mapping, flat_node.method_name_index, "method", position
        )
        file_name_index = _map_index(
            self._file_name_mapping, flat_node.file_name_index, "file", position
        )
        line_number = flat_node.line_number
        leaf_thread_state = flat_node.leaf_thread_state

        destination_node = None
        for node in destination_nodes:
            if node.is_match(
                package_name_index,
                class_name_index,
                method_name_index,
                file_name_index,
                line_number,
                leaf_thread_state,
            ):
                destination_node = node
                break
        if destination_node is None:
            destination_node = ProfileNode(
                package_name_index,
                class_name_index,
                method_name_index,
                file_name_index,
                line_number,
                leaf_thread_state,
            )
            destination_nodes.append(destination_node)

        destination_node.sample_count += flat_node.sample_count
        destination_node.ellipsed_sample_count += flat_node.ellipsed_sample_count
        destination_node.maybe_set_timer_name_indexes(
            [
                _map_index(self._timer_name_mapping, i, "timer", position)
                for i in flat_node.timer_name_indexes
            ]
        )
        return destination_node


class _ProfileNodeCollector(Traverser[ProfileNode]):
    def __init__(self, root_node: ProfileNode, nodes: List[ProfileNodeMessage]):
        super().__init__(root_node)
        self._nodes = nodes

    def visit(self, node: ProfileNode, depth: int) -> Sequence[ProfileNode]:
        self._nodes.append(
            ProfileNodeMessage(
                depth=depth,
                package_name_index=node.package_name_index,
                class_name_index=node.class_name_index,
                method_name_index=node.method_name_index,
                file_name_index=node.file_name_index,
                line_number=node.line_number,
                leaf_thread_state=node.leaf_thread_state,
                sample_count=node.sample_count,
                ellipsed_sample_count=node.ellipsed_sample_count,
                timer_name_indexes=node.timer_name_indexes,
            )
        )
        return node.child_nodes


class _ProfileFilterer(Traverser[ProfileNode]):
    """
    One include or exclude pass over a root node.

    After traversal, node.matched on the root tells the caller whether the
    root survives (include) or must be removed (exclude).
    """

    def __init__(
        self,
        tree: MutableProfileTree,
        root_node: ProfileNode,
        filter_text: str,
        exclusion: bool,
    ):
        super().__init__(root_node)
        self._tree = tree
        self._filter_text_upper = filter_text.upper()
        self._exclusion = exclusion

    def visit(self, node: ProfileNode, depth: int) -> Sequence[ProfileNode]:
        if self._is_match(node):
            node.matched = True
            # no need to visit children
            return ()
        return node.child_nodes

    def revisit_after_children(self, node: ProfileNode) -> None:
        if node.matched:
            # exclusion: parent removes it; inclusion: keep node and all children
            return
        if not node.child_nodes:
            return
        if self._remove_node(node):
            # parent removes it
            if self._exclusion:
                node.matched = True
            return
        if not self._exclusion:
            node.matched = True
        # partial match, prune the children on the wrong side of the filter
        kept = [
            child_node
            for child_node in node.child_nodes
            if self._exclusion != child_node.matched
        ]
        node.child_nodes[:] = kept
        node.sample_count = sum(child_node.sample_count for child_node in kept)

    def _is_match(self, node: ProfileNode) -> bool:
        if self._filter_text_upper in self._tree.get_text_upper(node):
            return True
        return self._filter_text_upper in node.leaf_thread_state.value.upper()

    def _remove_node(self, node: ProfileNode) -> bool:
        if self._exclusion:
            return all(child_node.matched for child_node in node.child_nodes)
        return not any(child_node.matched for child_node in node.child_nodes)


class _ProfileWriter(Traverser[ProfileNode]):
    def __init__(
        self, tree: MutableProfileTree, root_node: ProfileNode, writer: JsonStreamWriter
    ):
        super().__init__(root_node)
        self._tree = tree
        self._writer = writer

    def visit(self, node: ProfileNode, depth: int) -> Sequence[ProfileNode]:
        writer = self._writer
        writer.start_object()
        writer.write_field("stackTraceElement", self._tree.get_text(node))
        if node.leaf_thread_state is not LeafThreadState.NONE:
            writer.write_field("leafThreadState", node.leaf_thread_state.value)
        writer.write_field("sampleCount", node.sample_count)
        if node.timer_name_indexes:
            writer.write_field("timerNames", self._tree.get_timer_names(node))
        if node.ellipsed_sample_count:
            writer.write_field("ellipsedSampleCount", node.ellipsed_sample_count)
        if node.child_nodes:
            writer.start_array("childNodes")
        return node.child_nodes

    def revisit_after_children(self, node: ProfileNode) -> None:
        if node.child_nodes:
            self._writer.end_array()
        self._writer.end_object()


class _FlameGraphWriter(Traverser[ProfileNode]):
    def __init__(
        self, tree: MutableProfileTree, root_node: ProfileNode, writer: JsonStreamWriter
    ):
        super().__init__(root_node)
        self._tree = tree
        self._writer = writer

    def visit(self, node: ProfileNode, depth: int) -> Sequence[ProfileNode]:
        writer = self._writer
        writer.start_object(self._tree.get_text(node))
        sv_unique = node.sample_count - sum(c.sample_count for c in node.child_nodes)
        writer.write_field("svUnique", sv_unique)
        writer.write_field("svTotal", node.sample_count)
        writer.start_object("svChildren")
        return node.child_nodes

    def revisit_after_children(self, node: ProfileNode) -> None:
        self._writer.end_object()
        self._writer.end_object()
