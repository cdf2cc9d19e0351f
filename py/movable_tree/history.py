"""Version history: log-spaced checkpoints plus an append-only move log."""

import logging
from bisect import bisect_left, bisect_right, insort
from typing import Any, Dict, Generic, List, Optional, Tuple, TypeVar

from movable_tree.errors import OutOfRangeError
from movable_tree.snapshot import PersistentSnapshot
from movable_tree.types import ForestConfig, MoveOp

logger = logging.getLogger(__name__)

K = TypeVar("K")
V = TypeVar("V")


def first_zero_bit(n: int) -> int:
    """Lowest unset bit of n, as a power of two."""
    return (n + 1) & ~n


# ============================================================
# LogSpacedSnapshots
# ============================================================

class LogSpacedSnapshots(Generic[K, V]):
    """Keep checkpoints whose spacing doubles with distance from the tip.

    Every pushed value gets a position (0, 1, 2, ...). Pushing position n
    evicts the checkpoint at n - (first_zero_bit(n) << d), which leaves
    about 2**d * log2(n) checkpoints for n pushes, dense near the tip and
    sparse far behind it.

    Keys must be pushed in strictly increasing order.
    """

    def __init__(self, d: int = 2):
        if d < 0:
            raise ValueError(f"d must be non-negative, got {d}")
        self.d = d
        self._keys: List[K] = []
        self._cache: Dict[int, V] = {}
        self._positions: List[int] = []

    def __len__(self) -> int:
        """Number of pushed keys, checkpointed or not."""
        return len(self._keys)

    def push(self, key: K, value: V) -> None:
        if self._keys and not key > self._keys[-1]:
            raise ValueError(f"key {key!r} is not greater than last key {self._keys[-1]!r}")
        position = len(self._keys)
        delta = first_zero_bit(position) << self.d
        if position >= delta:
            evicted = position - delta
            if evicted in self._cache:
                del self._cache[evicted]
                self._positions.pop(bisect_left(self._positions, evicted))
        self._cache[position] = value
        insort(self._positions, position)
        self._keys.append(key)

    def _last_position_lte(self, key: K) -> Optional[int]:
        limit = bisect_right(self._keys, key)
        i = bisect_left(self._positions, limit)
        return self._positions[i - 1] if i else None

    def nearest_lte(self, key: K) -> Optional[Tuple[K, V]]:
        """Latest checkpoint whose key is <= `key`, without modifying anything."""
        position = self._last_position_lte(key)
        if position is None:
            return None
        return self._keys[position], self._cache[position]

    def pop_till_lte(self, key: K) -> Optional[Tuple[K, V]]:
        """Discard history until the latest checkpoint's key is <= `key`.

        Keys past the surviving checkpoint are forgotten, so the next push
        continues right after it. Returns that checkpoint, or None when no
        checkpoint survives (everything is discarded).
        """
        position = self._last_position_lte(key)
        if position is None:
            self._keys.clear()
            self._cache.clear()
            self._positions.clear()
            return None
        cut = bisect_right(self._positions, position)
        for dropped in self._positions[cut:]:
            del self._cache[dropped]
        del self._positions[cut:]
        del self._keys[position + 1:]
        return self._keys[position], self._cache[position]

    def copy(self) -> "LogSpacedSnapshots[K, V]":
        """Independent cache sharing the stored values."""
        other: LogSpacedSnapshots[K, V] = LogSpacedSnapshots(self.d)
        other._keys = list(self._keys)
        other._cache = dict(self._cache)
        other._positions = list(self._positions)
        return other

    def cache_size(self) -> int:
        return len(self._cache)

    def positions(self) -> List[int]:
        return list(self._positions)


# ============================================================
# HistoryLog
# ============================================================

class HistoryLog:
    """Append-only move log of one forest with log-spaced checkpoints.

    Version v is the state after the first v moves; version 0 is `base`.
    reconstruct(v) starts from the nearest checkpoint at or before v and
    replays the moves in between.
    """

    def __init__(self, base: Optional[PersistentSnapshot] = None,
                 config: Optional[ForestConfig] = None):
        self.config = config or ForestConfig()
        self._base = base if base is not None else PersistentSnapshot.empty()
        self._ops: List[MoveOp] = []
        self._checkpoints: LogSpacedSnapshots[int, PersistentSnapshot] = \
            LogSpacedSnapshots(self.config.snapshot_density)
        self._checkpoints.push(0, self._base)

    @property
    def tip(self) -> int:
        return len(self._ops)

    def __len__(self) -> int:
        return len(self._ops)

    def ops(self) -> List[MoveOp]:
        return list(self._ops)

    def append(self, op: MoveOp, snapshot: PersistentSnapshot) -> int:
        """Record `op` and the snapshot it produced. Returns the new version."""
        self._ops.append(op)
        self._checkpoints.push(len(self._ops), snapshot)
        return len(self._ops)

    def copy(self) -> "HistoryLog":
        """Independent log; checkpoint snapshots are immutable and shared."""
        other = HistoryLog.__new__(HistoryLog)
        other.config = self.config
        other._base = self._base
        other._ops = list(self._ops)
        other._checkpoints = self._checkpoints.copy()
        return other

    def reconstruct(self, version: int) -> PersistentSnapshot:
        if not isinstance(version, int) or isinstance(version, bool):
            raise TypeError(f"version must be an int, got {type(version).__name__}")
        if version < 0 or version > self.tip:
            raise OutOfRangeError(version, self.tip)
        found = self._checkpoints.nearest_lte(version)
        if found is None:
            start, snapshot = 0, self._base
        else:
            start, snapshot = found
        for op in self._ops[start:version]:
            snapshot = snapshot.with_move(op.node, op.new_parent)
        logger.debug("reconstructed version %d from checkpoint %d (%d replayed)",
                     version, start, version - start)
        return snapshot

    def checkpoint_versions(self) -> List[int]:
        return self._checkpoints.positions()

    def checkpoint_count(self) -> int:
        return self._checkpoints.cache_size()

    def stats(self) -> Dict[str, Any]:
        return {
            "tip": self.tip,
            "checkpoints": self.checkpoint_count(),
            "snapshot_density": self.config.snapshot_density,
        }
