"""Core data types for the movable tree.

All types are immutable dataclasses for safety and hashability.
"""

from dataclasses import dataclass
from typing import Any, Hashable, Optional, Union


# ============================================================
# ParentLink - where a node hangs in one version
# ============================================================

class Root:
    """The parent link of a top-level node. Use the `ROOT` singleton."""

    _instance: Optional["Root"] = None

    def __new__(cls) -> "Root":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ROOT"

    def __reduce__(self):
        return (Root, ())


ROOT = Root()


@dataclass(frozen=True)
class Parent:
    """Parent link pointing at another node."""
    node: Hashable


ParentLink = Union[Root, Parent]


# ============================================================
# OpId - total-order key for operations
# ============================================================

@dataclass(frozen=True, order=True)
class OpId:
    """Lamport-style operation key.

    Comparison is lexicographic: lamport first, then replica id.
    """
    lamport: int
    replica: Any

    def __repr__(self) -> str:
        return f"OpId({self.lamport}@{self.replica!r})"


@dataclass(frozen=True, order=True)
class LamportClock:
    """Logical clock for one replica."""
    counter: int = 0

    def tick(self) -> "LamportClock":
        """Advance for a local event."""
        return LamportClock(self.counter + 1)

    def receive(self, remote: int) -> "LamportClock":
        """Update on seeing a remote timestamp; never moves backwards."""
        if remote >= self.counter:
            return LamportClock(remote + 1)
        return self


# ============================================================
# Operations
# ============================================================

@dataclass(frozen=True)
class MoveOp:
    """Reparent `node` under `new_parent` (None = move to root).

    A node that does not exist yet is introduced by its first move.
    """
    node: Hashable
    new_parent: Optional[Hashable]
    seq: int
    origin: Any = None

    @property
    def id(self) -> OpId:
        return OpId(self.seq, self.origin)


@dataclass(frozen=True)
class DeleteOp:
    """Tombstone `node`. The node keeps its place in the tree."""
    node: Hashable
    seq: int
    origin: Any = None

    @property
    def id(self) -> OpId:
        return OpId(self.seq, self.origin)


Op = Union[MoveOp, DeleteOp]


# ============================================================
# Configuration
# ============================================================

@dataclass(frozen=True)
class ForestConfig:
    """Tuning knobs shared by Forest, HistoryLog and the mergers.

    snapshot_density is the `d` of the log-spaced snapshot scheme: the
    checkpoint set holds about 2**d * log2(n) snapshots for n versions.
    """
    snapshot_density: int = 2

    def __post_init__(self) -> None:
        if not isinstance(self.snapshot_density, int) or self.snapshot_density < 0:
            raise ValueError(
                f"snapshot_density must be a non-negative int, got {self.snapshot_density!r}")
