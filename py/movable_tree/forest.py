"""Single-writer forest with full version history."""

import logging
from typing import FrozenSet, Hashable, List, Optional

from movable_tree.errors import MovableTreeError
from movable_tree.history import HistoryLog
from movable_tree.protocols import Versioned
from movable_tree.snapshot import PersistentSnapshot
from movable_tree.types import ForestConfig, MoveOp

logger = logging.getLogger(__name__)


class Forest(Versioned):
    """A forest of movable trees.

    `mov` is the only mutation. Each successful move produces a new
    PersistentSnapshot that shares all untouched structure with the previous
    one, and is appended to the HistoryLog. Snapshots handed out by
    `snapshot()` and `at()` never change.

    Not thread-safe: serialize calls to `mov` externally.
    """

    def __init__(self, config: Optional[ForestConfig] = None,
                 base: Optional[PersistentSnapshot] = None):
        self.config = config or ForestConfig()
        self._tip = base if base is not None else PersistentSnapshot.empty()
        self._history = HistoryLog(self._tip, self.config)

    @classmethod
    def fork(cls, snapshot: PersistentSnapshot,
             config: Optional[ForestConfig] = None) -> "Forest":
        """New forest whose version 0 is `snapshot`. O(1)."""
        return cls(config=config, base=snapshot)

    def clone(self) -> "Forest":
        """Independent forest with the same tip and the same history.

        The move log is copied; snapshots are immutable and shared, so later
        moves on either forest never show up in the other.
        """
        other = self.__class__.__new__(self.__class__)
        other.config = self.config
        other._tip = self._tip
        other._history = self._history.copy()
        return other

    __copy__ = clone

    # -- Versioned --

    @property
    def version(self) -> int:
        return self._history.tip

    def mov(self, node: Hashable, parent: Optional[Hashable] = None) -> None:
        if node is None:
            raise ValueError("None cannot be used as a node id")
        try:
            self._tip.validate_move(node, parent)
        except MovableTreeError as e:
            logger.debug("rejected move at version %d: %s", self.version, e)
            raise
        snapshot = self._tip.with_move(node, parent)
        op = MoveOp(node=node, new_parent=parent, seq=self.version)
        self._history.append(op, snapshot)
        self._tip = snapshot

    def snapshot(self) -> PersistentSnapshot:
        return self._tip

    def at(self, version: int) -> PersistentSnapshot:
        # non-int versions fall through to reconstruct, which rejects them
        if isinstance(version, int) and not isinstance(version, bool) \
                and version == self.version:
            return self._tip
        return self._history.reconstruct(version)

    def history(self) -> List[MoveOp]:
        """Applied moves, oldest first. op.seq is the version it started from."""
        return self._history.ops()

    @property
    def history_log(self) -> HistoryLog:
        return self._history

    # -- read shortcuts on the tip --

    def parent_of(self, node: Hashable) -> Optional[Hashable]:
        return self._tip.parent_of(node)

    def children_of(self, node: Hashable) -> FrozenSet[Hashable]:
        return self._tip.children_of(node)

    def roots(self) -> FrozenSet[Hashable]:
        return self._tip.roots()

    def is_ancestor(self, a: Hashable, b: Hashable) -> bool:
        return self._tip.is_ancestor(a, b)

    def __contains__(self, node: object) -> bool:
        return node in self._tip

    def __len__(self) -> int:
        return len(self._tip)

    def __repr__(self) -> str:
        return f"Forest(version={self.version}, nodes={len(self._tip)})"
