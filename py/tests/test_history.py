"""Tests for log-spaced checkpoints and the history log."""

import math

import pytest

from movable_tree import ForestConfig, HistoryLog, LogSpacedSnapshots, MoveOp, OutOfRangeError
from movable_tree.history import first_zero_bit
from movable_tree.snapshot import PersistentSnapshot


class TestFirstZeroBit:
    def test_values(self):
        assert first_zero_bit(0b1010) == 0b1
        assert first_zero_bit(0b1011) == 0b100
        assert first_zero_bit(0b1111) == 0b10000
        assert first_zero_bit(0) == 1


class TestLogSpacedSnapshots:
    def test_pop_till(self):
        cache = LogSpacedSnapshots(3)
        for i in range(10000):
            cache.push(i, i)
        assert cache.pop_till_lte(9999) == (9999, 9999)
        assert cache.pop_till_lte(9998) == (9998, 9998)
        assert cache.pop_till_lte(6000) == (5119, 5119)
        assert cache.pop_till_lte(2000) is None
        assert len(cache) == 0
        assert cache.cache_size() == 0

    def test_size_is_logarithmic(self):
        for d in (1, 2, 3):
            cache = LogSpacedSnapshots(d)
            n = 1 << 14
            for i in range(n):
                cache.push(i, i)
            assert cache.cache_size() <= (2 ** d) * (math.log2(n) + 1)
            assert len(cache) == n

    def test_nearest_is_non_destructive(self):
        cache = LogSpacedSnapshots(2)
        for i in range(1000):
            cache.push(i * 2, str(i))
        key, value = cache.nearest_lte(1999)
        assert key == 1998 and value == "999"
        size = cache.cache_size()
        key, value = cache.nearest_lte(1001)
        assert key <= 1001
        assert value == str(key // 2)
        assert cache.cache_size() == size
        assert len(cache) == 1000

    def test_nearest_before_everything(self):
        cache = LogSpacedSnapshots(2)
        cache.push(5, "five")
        assert cache.nearest_lte(4) is None
        assert cache.nearest_lte(5) == (5, "five")

    def test_push_after_pop_continues(self):
        cache = LogSpacedSnapshots(1)
        for i in range(100):
            cache.push(i, i)
        key, _ = cache.pop_till_lte(70)
        assert len(cache) == key + 1
        cache.push(key + 1, "again")
        assert cache.nearest_lte(key + 1) == (key + 1, "again")

    def test_keys_must_increase(self):
        cache = LogSpacedSnapshots(2)
        cache.push(3, "x")
        with pytest.raises(ValueError):
            cache.push(3, "y")

    def test_none_values_are_kept(self):
        cache = LogSpacedSnapshots(0)
        for i in range(64):
            cache.push(i, None)
        assert cache.nearest_lte(63) == (63, None)

    def test_copy_is_independent(self):
        cache = LogSpacedSnapshots(1)
        for i in range(20):
            cache.push(i, str(i))
        other = cache.copy()
        other.pop_till_lte(5)
        other.push(6, "six")
        assert len(cache) == 20
        assert cache.nearest_lte(19) == (19, "19")
        assert other.nearest_lte(19) == (6, "six")

    def test_negative_density(self):
        with pytest.raises(ValueError):
            LogSpacedSnapshots(-1)


def build_log(n, density=2):
    log = HistoryLog(config=ForestConfig(snapshot_density=density))
    snap = PersistentSnapshot.empty()
    states = [snap]
    for i in range(n):
        parent = None if i == 0 else i // 2
        op = MoveOp(node=i, new_parent=parent, seq=i)
        snap = snap.with_move(i, parent)
        log.append(op, snap)
        states.append(snap)
    return log, states


class TestHistoryLog:
    def test_reconstruct_every_version(self):
        log, states = build_log(300)
        for version, expected in enumerate(states):
            assert log.reconstruct(version) == expected

    def test_out_of_range(self):
        log, _ = build_log(5)
        with pytest.raises(OutOfRangeError) as info:
            log.reconstruct(6)
        assert info.value.tip == 5
        with pytest.raises(OutOfRangeError):
            log.reconstruct(-1)
        with pytest.raises(IndexError):
            log.reconstruct(99)

    def test_checkpoints_stay_sparse(self):
        log, _ = build_log(4096, density=1)
        assert log.checkpoint_count() <= 2 * (12 + 1)
        versions = log.checkpoint_versions()
        assert versions == sorted(versions)
        assert versions[-1] == 4096

    def test_stats(self):
        log, _ = build_log(10)
        stats = log.stats()
        assert stats["tip"] == 10
        assert stats["snapshot_density"] == 2
        assert stats["checkpoints"] == log.checkpoint_count()

    def test_base_snapshot(self):
        base = PersistentSnapshot.from_parents({"r": None})
        log = HistoryLog(base=base)
        assert log.reconstruct(0) == base
        assert log.tip == 0

    def test_copy_keeps_history_apart(self):
        log, states = build_log(40)
        other = log.copy()
        snap = states[-1].with_move(40, 0)
        other.append(MoveOp(node=40, new_parent=0, seq=40), snap)
        assert log.tip == 40
        assert other.tip == 41
        assert len(log.ops()) == 40
        with pytest.raises(OutOfRangeError):
            log.reconstruct(41)
        assert other.reconstruct(41) == snap
        for version in (0, 17, 40):
            assert other.reconstruct(version) == log.reconstruct(version)
