"""movable-tree - movable tree CRDT with structurally shared history.

A forest whose only mutation is "move node X under parent Y". Every
version is an immutable snapshot sharing unchanged structure with its
predecessors, and concurrent moves from several replicas merge into one
deterministic, acyclic tree.
"""

import logging

__version__ = "0.1.0"

from movable_tree.errors import (
    MovableTreeError,
    CycleError,
    OutOfRangeError,
    UnknownNodeError,
)
from movable_tree.types import (
    ROOT,
    Root,
    Parent,
    ParentLink,
    OpId,
    LamportClock,
    MoveOp,
    DeleteOp,
    ForestConfig,
)
from movable_tree.protocols import TreeView, Versioned, Mergeable
from movable_tree.hamt import PersistentMap
from movable_tree.snapshot import NodeRecord, PersistentSnapshot
from movable_tree.history import HistoryLog, LogSpacedSnapshots
from movable_tree.forest import Forest
from movable_tree.mutable import MutableForest
from movable_tree.crdt import CrdtMerger, SnapshotCrdtMerger, Replica

logging.getLogger(__name__).addHandler(logging.NullHandler())
