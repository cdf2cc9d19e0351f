"""Replicated movable tree.

Operations are keyed by OpId (lamport, replica) and conceptually applied in
key order to an empty forest. A move that would create a cycle at its
position in that order, or that targets a node not in the forest yet, is
kept in the log but has no effect. The materialized tree is therefore a
function of the set of delivered operations alone, whatever order they
arrived in.

Two strategies reach that state when an operation arrives late:

    CrdtMerger          - undo the applied ops with greater keys, apply the
                          newcomer, redo them. O(1) per undone op; keeps no
                          history.
    SnapshotCrdtMerger  - roll back to the nearest log-spaced persistent
                          snapshot and replay. Every past state stays
                          retrievable through as_of().

Replica issues operations with its own Lamport clock and exchanges them
with other replicas.
"""

import heapq
import logging
from bisect import bisect_left, bisect_right
from dataclasses import dataclass
from typing import Any, Dict, Hashable, Iterable, List, Mapping, Optional, Set, Tuple

from movable_tree.errors import CycleError, UnknownNodeError
from movable_tree.history import LogSpacedSnapshots
from movable_tree.mutable import MutableForest
from movable_tree.protocols import Mergeable
from movable_tree.snapshot import PersistentSnapshot
from movable_tree.types import DeleteOp, ForestConfig, LamportClock, MoveOp, Op, OpId

logger = logging.getLogger(__name__)


def _op_key(op: Op) -> OpId:
    return op.id


def _fresh_sorted(ops: Iterable[Op], seen: Set[OpId]) -> List[Op]:
    """Drop duplicates and sort by key."""
    fresh: Dict[OpId, Op] = {}
    for op in ops:
        if not isinstance(op, (MoveOp, DeleteOp)):
            raise TypeError(f"expected MoveOp or DeleteOp, got {type(op).__name__}")
        if op.origin is None:
            raise ValueError(f"replicated op {op!r} has no origin")
        if op.node is None:
            raise ValueError(f"op {op!r} has no node")
        if op.id not in seen:
            fresh.setdefault(op.id, op)
    return sorted(fresh.values(), key=_op_key)


# ============================================================
# Undo/redo strategy
# ============================================================

@dataclass
class _LogEntry:
    op: Op
    applied: bool = False
    # NodeRecord (or None) for moves, previous tombstone flag for deletes
    prior: Any = None


class CrdtMerger(Mergeable):
    """Undo/redo merge over an in-place forest.

    Each log entry remembers what its op overwrote, so undoing it is a
    single restore. A late op costs one undo and one redo per applied op
    with a greater key.
    """

    def __init__(self) -> None:
        self._forest = MutableForest()
        self._entries: List[_LogEntry] = []
        self._ids: List[OpId] = []
        self._seen: Set[OpId] = set()
        self._view: Optional[PersistentSnapshot] = None

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def last_id(self) -> Optional[OpId]:
        return self._ids[-1] if self._ids else None

    def deliver_many(self, ops: Iterable[Op]) -> int:
        incoming = _fresh_sorted(ops, self._seen)
        if not incoming:
            return 0
        undone = self._revert_after(incoming[0].id)
        if undone:
            logger.debug("undoing %d ops to insert %d late ops", len(undone), len(incoming))
        for op in heapq.merge(incoming, undone, key=_op_key):
            self._apply(op)
        self._seen.update(op.id for op in incoming)
        self._view = None
        return len(incoming)

    def current(self) -> PersistentSnapshot:
        if self._view is None:
            self._view = self._forest.freeze()
        return self._view

    @property
    def forest(self) -> MutableForest:
        """Live state. Changes on every delivery; use current() to keep a version."""
        return self._forest

    def log(self) -> List[Op]:
        return [entry.op for entry in self._entries]

    def dropped(self) -> List[Op]:
        return [entry.op for entry in self._entries if not entry.applied]

    def _revert_after(self, key: OpId) -> List[Op]:
        """Undo every entry with a key greater than `key`, newest first.
        Returns their ops in key order."""
        start = bisect_left(self._ids, key)
        tail = self._entries[start:]
        for entry in reversed(tail):
            self._undo(entry)
        del self._entries[start:]
        del self._ids[start:]
        return [entry.op for entry in tail]

    def _apply(self, op: Op) -> None:
        entry = _LogEntry(op)
        if isinstance(op, MoveOp):
            try:
                entry.prior = self._forest.mov(op.node, op.new_parent)
                entry.applied = True
            except (CycleError, UnknownNodeError) as e:
                logger.debug("op %r recorded as no-op: %s", op.id, e)
        elif op.node in self._forest:
            entry.prior = self._forest.set_deleted(op.node, True)
            entry.applied = True
        else:
            logger.debug("op %r recorded as no-op: unknown node %r", op.id, op.node)
        self._entries.append(entry)
        self._ids.append(op.id)

    def _undo(self, entry: _LogEntry) -> None:
        if not entry.applied:
            return
        if isinstance(entry.op, MoveOp):
            self._forest.restore(entry.op.node, entry.prior)
        else:
            self._forest.set_deleted(entry.op.node, entry.prior)


# ============================================================
# Snapshot strategy
# ============================================================

def _step(snapshot: PersistentSnapshot, op: Op) -> Tuple[PersistentSnapshot, bool]:
    """Apply one op to a snapshot; conflicting ops leave it unchanged."""
    if isinstance(op, MoveOp):
        try:
            snapshot.validate_move(op.node, op.new_parent)
        except (CycleError, UnknownNodeError) as e:
            logger.debug("op %r recorded as no-op: %s", op.id, e)
            return snapshot, False
        return snapshot.with_move(op.node, op.new_parent), True
    if op.node not in snapshot:
        logger.debug("op %r recorded as no-op: unknown node %r", op.id, op.node)
        return snapshot, False
    return snapshot.with_deleted(op.node, True), True


class SnapshotCrdtMerger(Mergeable):
    """Merge by rolling back to a persistent snapshot and replaying.

    A snapshot is produced after every op and offered to a
    LogSpacedSnapshots cache, so a late op replays at most the ops since
    the nearest surviving checkpoint.
    """

    def __init__(self, config: Optional[ForestConfig] = None):
        self.config = config or ForestConfig()
        self._snapshot = PersistentSnapshot.empty()
        self._ops: List[Op] = []
        self._ids: List[OpId] = []
        self._applied: List[bool] = []
        self._seen: Set[OpId] = set()
        self._cache: LogSpacedSnapshots[OpId, PersistentSnapshot] = \
            LogSpacedSnapshots(self.config.snapshot_density)

    def __len__(self) -> int:
        return len(self._ops)

    @property
    def last_id(self) -> Optional[OpId]:
        return self._ids[-1] if self._ids else None

    def deliver_many(self, ops: Iterable[Op]) -> int:
        incoming = _fresh_sorted(ops, self._seen)
        if not incoming:
            return 0
        pending: Iterable[Op] = incoming
        if self._ids and incoming[0].id < self._ids[-1]:
            keep = self._rollback(incoming[0].id)
            tail = self._ops[keep:]
            del self._ops[keep:]
            del self._ids[keep:]
            del self._applied[keep:]
            logger.debug("rolled back %d ops to insert %d late ops", len(tail), len(incoming))
            pending = heapq.merge(incoming, tail, key=_op_key)
        for op in pending:
            self._snapshot, applied = _step(self._snapshot, op)
            self._ops.append(op)
            self._ids.append(op.id)
            self._applied.append(applied)
            self._cache.push(op.id, self._snapshot)
        self._seen.update(op.id for op in incoming)
        return len(incoming)

    def _rollback(self, key: OpId) -> int:
        """Restore the latest checkpoint before `key`. Returns how many ops it covers."""
        found = self._cache.pop_till_lte(key)
        if found is None:
            self._snapshot = PersistentSnapshot.empty()
            return 0
        checkpoint_id, self._snapshot = found
        return bisect_right(self._ids, checkpoint_id)

    def current(self) -> PersistentSnapshot:
        return self._snapshot

    def as_of(self, op_id: OpId) -> PersistentSnapshot:
        """State after every delivered op with a key <= `op_id`."""
        found = self._cache.nearest_lte(op_id)
        if found is None:
            start, snapshot = 0, PersistentSnapshot.empty()
        else:
            checkpoint_id, snapshot = found
            start = bisect_right(self._ids, checkpoint_id)
        for op in self._ops[start:bisect_right(self._ids, op_id)]:
            snapshot, _ = _step(snapshot, op)
        return snapshot

    def log(self) -> List[Op]:
        return list(self._ops)

    def dropped(self) -> List[Op]:
        return [op for op, applied in zip(self._ops, self._applied) if not applied]

    def cache_size(self) -> int:
        return self._cache.cache_size()


# ============================================================
# Replica
# ============================================================

class Replica:
    """One actor of the replicated forest.

    Issues operations stamped with its Lamport clock and keeps every op it
    knows, grouped by origin, so peers can pull what they are missing.
    Ops from one origin are expected in issue order.
    """

    def __init__(self, replica_id: Any, merger: Optional[Mergeable] = None):
        if replica_id is None:
            raise ValueError("replica_id must not be None")
        self.replica_id = replica_id
        self.merger = merger if merger is not None else CrdtMerger()
        self._clock = LamportClock()
        self._logs: Dict[Any, List[Op]] = {}

    @property
    def clock(self) -> LamportClock:
        return self._clock

    def _next_seq(self) -> int:
        seq = self._clock.counter
        self._clock = self._clock.tick()
        return seq

    def _issue(self, op: Op) -> Op:
        self._logs.setdefault(self.replica_id, []).append(op)
        self.merger.deliver(op)
        return op

    def new_node(self, parent: Optional[Hashable] = None) -> OpId:
        """Create a node; its id is the id of the op that created it."""
        seq = self._next_seq()
        node = OpId(seq, self.replica_id)
        self._issue(MoveOp(node=node, new_parent=parent, seq=seq, origin=self.replica_id))
        return node

    def mov(self, target: Hashable, parent: Optional[Hashable] = None) -> MoveOp:
        op = MoveOp(node=target, new_parent=parent, seq=self._next_seq(), origin=self.replica_id)
        return self._issue(op)

    def delete(self, target: Hashable) -> DeleteOp:
        op = DeleteOp(node=target, seq=self._next_seq(), origin=self.replica_id)
        return self._issue(op)

    def version_vector(self) -> Dict[Any, int]:
        """Number of known ops per origin."""
        return {origin: len(ops) for origin, ops in self._logs.items()}

    def ops_since(self, vector: Mapping[Any, int]) -> List[Op]:
        """Ops this replica knows beyond `vector`."""
        missing: List[Op] = []
        for origin, ops in self._logs.items():
            missing.extend(ops[vector.get(origin, 0):])
        return missing

    def receive(self, ops: Iterable[Op]) -> int:
        """Integrate ops from peers. Returns how many were new."""
        fresh: List[Op] = []
        for op in sorted(ops, key=_op_key):
            known = self._logs.setdefault(op.origin, [])
            if known and op.seq <= known[-1].seq:
                continue
            known.append(op)
            fresh.append(op)
            self._clock = self._clock.receive(op.seq)
        if fresh:
            self.merger.deliver_many(fresh)
        return len(fresh)

    def merge(self, other: "Replica") -> int:
        """Pull everything `other` knows that this replica does not."""
        return self.receive(other.ops_since(self.version_vector()))

    def forest(self) -> PersistentSnapshot:
        return self.merger.current()

    def __repr__(self) -> str:
        return f"Replica({self.replica_id!r}, ops={sum(self.version_vector().values())})"
