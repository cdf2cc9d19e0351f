"""In-place forest used by the undo/redo merger.

Unlike PersistentSnapshot, updates here overwrite state. Every mutator
returns whatever it overwrote so the caller can invert it in O(1).
"""

from typing import Dict, FrozenSet, Hashable, Iterator, Optional, Set

from movable_tree.errors import UnknownNodeError
from movable_tree.protocols import TreeView
from movable_tree.snapshot import NodeRecord, PersistentSnapshot
from movable_tree.types import ROOT, Parent, ParentLink


class MutableForest(TreeView):
    """Forest state held in plain dicts: node -> record, parent -> children."""

    def __init__(self) -> None:
        self._nodes: Dict[Hashable, NodeRecord] = {}
        self._children: Dict[Optional[Hashable], Set[Hashable]] = {}

    # -- TreeView --

    def get_parent(self, node: Hashable) -> Optional[ParentLink]:
        record = self._nodes.get(node)
        if record is None:
            return None
        return ROOT if record.parent is None else Parent(record.parent)

    def parent_of(self, node: Hashable) -> Optional[Hashable]:
        record = self._nodes.get(node)
        return None if record is None else record.parent

    def children_of(self, node: Hashable) -> FrozenSet[Hashable]:
        if node is None:
            return frozenset()
        return frozenset(self._children.get(node, ()))

    def roots(self) -> FrozenSet[Hashable]:
        return frozenset(self._children.get(None, ()))

    def is_deleted(self, node: Hashable) -> bool:
        record = self._nodes.get(node)
        if record is None:
            raise UnknownNodeError(node)
        return record.deleted

    def __contains__(self, node: object) -> bool:
        return node in self._nodes

    def __iter__(self) -> Iterator[Hashable]:
        return iter(self._nodes)

    def __len__(self) -> int:
        return len(self._nodes)

    # -- mutation --

    def mov(self, node: Hashable, parent: Optional[Hashable]) -> Optional[NodeRecord]:
        """Validated move. Returns the record it replaced (None if the node is new)."""
        self.validate_move(node, parent)
        old = self._nodes.get(node)
        self.restore(node, NodeRecord(parent, old.deleted if old is not None else False))
        return old

    def restore(self, node: Hashable, record: Optional[NodeRecord]) -> None:
        """Put `node` back to `record` without validation; None removes it."""
        old = self._nodes.get(node)
        if old is not None:
            siblings = self._children[old.parent]
            siblings.discard(node)
            if not siblings:
                del self._children[old.parent]
        if record is None:
            self._nodes.pop(node, None)
            return
        self._nodes[node] = record
        self._children.setdefault(record.parent, set()).add(node)

    def set_deleted(self, node: Hashable, deleted: bool = True) -> bool:
        """Flip the tombstone. Returns the previous flag."""
        old = self._nodes.get(node)
        if old is None:
            raise UnknownNodeError(node)
        if old.deleted != deleted:
            self._nodes[node] = NodeRecord(old.parent, deleted)
        return old.deleted

    def freeze(self) -> PersistentSnapshot:
        """Immutable copy of the current state. O(n log n)."""
        return PersistentSnapshot.from_records(self._nodes.items())
