"""Movable tree protocol definitions as Python Abstract Base Classes.

Three layers:
    1. TreeView  - read access to one version of a forest
    2. Versioned - single-writer forest with retrievable history
    3. Mergeable - replicated state fed by externally sourced operations

All methods are synchronous and in-memory. No layer is thread-safe for
writers; TreeView implementations that are immutable may be read from any
number of threads.
"""

from abc import ABC, abstractmethod
from typing import FrozenSet, Hashable, Iterable, Iterator, List, Optional

from movable_tree.errors import CycleError, UnknownNodeError
from movable_tree.types import Op, ParentLink


# ============================================================
# Layer 1: TreeView (fundamental)
# ============================================================

class TreeView(ABC):
    """Read access to one version of a forest."""

    @abstractmethod
    def get_parent(self, node: Hashable) -> Optional[ParentLink]:
        """ROOT, Parent(id), or None when the node is not in the forest."""
        ...

    @abstractmethod
    def children_of(self, node: Hashable) -> FrozenSet[Hashable]:
        """Direct children. Sibling order is unspecified."""
        ...

    @abstractmethod
    def roots(self) -> FrozenSet[Hashable]:
        """Nodes whose parent link is ROOT."""
        ...

    @abstractmethod
    def parent_of(self, node: Hashable) -> Optional[Hashable]:
        """Parent id, or None for root-level and unknown nodes."""
        ...

    @abstractmethod
    def is_deleted(self, node: Hashable) -> bool:
        ...

    @abstractmethod
    def __contains__(self, node: object) -> bool:
        ...

    @abstractmethod
    def __iter__(self) -> Iterator[Hashable]:
        ...

    @abstractmethod
    def __len__(self) -> int:
        ...

    def ancestors(self, node: Hashable) -> Iterator[Hashable]:
        """Yield the parent of `node`, then its parent, up to a root."""
        current = self.parent_of(node)
        while current is not None:
            yield current
            current = self.parent_of(current)

    def is_ancestor(self, a: Hashable, b: Hashable) -> bool:
        """True if `a` is a strict ancestor of `b`."""
        for ancestor in self.ancestors(b):
            if ancestor == a:
                return True
        return False

    def depth(self, node: Hashable) -> int:
        """Number of ancestors; 0 for roots."""
        if node not in self:
            raise UnknownNodeError(node)
        return sum(1 for _ in self.ancestors(node))

    def validate_move(self, node: Hashable, new_parent: Optional[Hashable]) -> None:
        """Raise if moving `node` under `new_parent` would break the forest.

        The ancestor walk is bounded by the depth of `new_parent`.
        """
        if new_parent is None:
            return
        if new_parent == node:
            raise CycleError(node, new_parent)
        if new_parent not in self:
            raise UnknownNodeError(new_parent)
        if node in self and self.is_ancestor(node, new_parent):
            raise CycleError(node, new_parent)

    def to_dict(self) -> dict:
        """Plain {node: parent_or_None} copy, mostly for tests and debugging."""
        return {node: self.parent_of(node) for node in self}


# ============================================================
# Layer 2: Versioned (single writer with history)
# ============================================================

class Versioned(ABC):
    """A forest whose every version stays retrievable."""

    @abstractmethod
    def mov(self, node: Hashable, parent: Optional[Hashable] = None) -> None:
        """Move `node` under `parent` (None = root).
        Raises CycleError/UnknownNodeError and leaves state unchanged on failure."""
        ...

    @abstractmethod
    def snapshot(self) -> TreeView:
        """Current version, O(1)."""
        ...

    @abstractmethod
    def at(self, version: int) -> TreeView:
        """Version after the first `version` moves. Raises OutOfRangeError."""
        ...

    @property
    @abstractmethod
    def version(self) -> int:
        """Index of the current version (number of applied moves)."""
        ...


# ============================================================
# Layer 3: Mergeable (replicated state)
# ============================================================

class Mergeable(ABC):
    """Replica state fed by operations from any replica, in any order.

    The materialized tree is a pure function of the set of delivered
    operations. Delivery never raises for conflicting moves; they become
    recorded no-ops.
    """

    @abstractmethod
    def deliver_many(self, ops: Iterable[Op]) -> int:
        """Integrate a batch of operations. Returns how many were new."""
        ...

    def deliver(self, op: Op) -> bool:
        """Integrate one operation. Returns False for duplicates."""
        return self.deliver_many([op]) == 1

    @abstractmethod
    def current(self) -> TreeView:
        """Immutable view of the materialized tree."""
        ...

    @abstractmethod
    def log(self) -> List[Op]:
        """Every delivered operation in key order."""
        ...

    @abstractmethod
    def dropped(self) -> List[Op]:
        """Operations recorded but not applied because they conflicted."""
        ...
