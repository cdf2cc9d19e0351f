"""Immutable, structurally shared forest versions."""

from dataclasses import dataclass
from typing import Any, FrozenSet, Hashable, Iterable, Iterator, Mapping, Optional, Tuple

from movable_tree.errors import UnknownNodeError
from movable_tree.hamt import PersistentMap
from movable_tree.protocols import TreeView
from movable_tree.types import ROOT, Parent, ParentLink


@dataclass(frozen=True)
class NodeRecord:
    """What the forest knows about one node in one version."""
    parent: Optional[Hashable] = None
    deleted: bool = False


class _Top:
    """Children-index key for root-level nodes."""

    def __repr__(self) -> str:
        return "<top>"


_TOP = _Top()
_NO_CHILDREN = PersistentMap()


def _index_key(parent: Optional[Hashable]) -> Any:
    return _TOP if parent is None else parent


def _link(children: PersistentMap, parent: Optional[Hashable], node: Hashable) -> PersistentMap:
    key = _index_key(parent)
    return children.set(key, children.get(key, _NO_CHILDREN).set(node, True))


def _unlink(children: PersistentMap, parent: Optional[Hashable], node: Hashable) -> PersistentMap:
    key = _index_key(parent)
    kids = children.get(key, _NO_CHILDREN).delete(node)
    if len(kids) == 0:
        return children.delete(key)
    return children.set(key, kids)


class PersistentSnapshot(TreeView):
    """One version of a forest.

    Holds two persistent maps: node -> NodeRecord, and parent -> set of
    children. Updates rebuild only the trie paths they touch, so a new
    version costs O(log n) and shares everything else with its
    predecessor. Instances are never mutated; copying one is copying a
    reference.
    """

    __slots__ = ("_nodes", "_children")

    def __init__(self, _nodes: PersistentMap = PersistentMap(),
                 _children: PersistentMap = PersistentMap()):
        self._nodes = _nodes
        self._children = _children

    @classmethod
    def empty(cls) -> "PersistentSnapshot":
        return _EMPTY

    @classmethod
    def from_parents(cls, parents: Mapping[Hashable, Optional[Hashable]]) -> "PersistentSnapshot":
        """Build a snapshot from {node: parent_or_None}. Not validated."""
        return cls.from_records((node, NodeRecord(parent)) for node, parent in parents.items())

    @classmethod
    def from_records(cls, records: Iterable[Tuple[Hashable, NodeRecord]]) -> "PersistentSnapshot":
        nodes = PersistentMap()
        children = PersistentMap()
        for node, record in records:
            nodes = nodes.set(node, record)
            children = _link(children, record.parent, node)
        return cls(nodes, children)

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
        return frozenset(self._children.get(node, _NO_CHILDREN))

    def roots(self) -> FrozenSet[Hashable]:
        return frozenset(self._children.get(_TOP, _NO_CHILDREN))

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

    # -- copy-on-modify --

    def with_move(self, node: Hashable, new_parent: Optional[Hashable]) -> "PersistentSnapshot":
        """New snapshot with `node` under `new_parent`. Does not validate;
        call validate_move first."""
        old = self._nodes.get(node)
        if old is not None and old.parent == new_parent:
            return self
        deleted = old.deleted if old is not None else False
        nodes = self._nodes.set(node, NodeRecord(new_parent, deleted))
        children = self._children
        if old is not None:
            children = _unlink(children, old.parent, node)
        children = _link(children, new_parent, node)
        return PersistentSnapshot(nodes, children)

    def with_deleted(self, node: Hashable, deleted: bool = True) -> "PersistentSnapshot":
        old = self._nodes.get(node)
        if old is None:
            raise UnknownNodeError(node)
        if old.deleted == deleted:
            return self
        return PersistentSnapshot(self._nodes.set(node, NodeRecord(old.parent, deleted)),
                                  self._children)

    def shared_nodes(self, other: "PersistentSnapshot") -> int:
        """Trie nodes of the node table shared with `other`."""
        return self._nodes.shared_nodes(other._nodes)

    def node_count(self) -> int:
        return self._nodes.node_count()

    # -- value semantics --

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PersistentSnapshot):
            return NotImplemented
        return self._nodes == other._nodes

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"PersistentSnapshot({self.to_dict()!r})"


_EMPTY = PersistentSnapshot()
