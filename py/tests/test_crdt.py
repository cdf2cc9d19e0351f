"""Tests for the CRDT mergers and replicas."""

import random

import pytest

from movable_tree import (
    CrdtMerger,
    DeleteOp,
    ForestConfig,
    LamportClock,
    MoveOp,
    OpId,
    Replica,
    SnapshotCrdtMerger,
)
from movable_tree.compliance import assert_valid_forest, random_ops


MERGERS = [CrdtMerger, lambda: SnapshotCrdtMerger(ForestConfig(snapshot_density=1))]


def intro(*nodes, origin=0):
    return [MoveOp(node=n, new_parent=None, seq=i, origin=origin) for i, n in enumerate(nodes)]


class TestOpId:
    def test_order(self):
        assert OpId(1, 5) < OpId(2, 0)
        assert OpId(2, 0) < OpId(2, 1)
        assert MoveOp("a", None, 3, 1).id == OpId(3, 1)

    def test_lamport_clock(self):
        clock = LamportClock()
        assert clock.tick().counter == 1
        assert clock.receive(7).counter == 8
        assert LamportClock(10).receive(3) == LamportClock(10)


@pytest.mark.parametrize("make", MERGERS)
class TestMergers:
    def test_in_order_delivery(self, make):
        merger = make()
        merger.deliver_many(intro("a", "b", "c"))
        merger.deliver(MoveOp("b", "a", 5, 1))
        assert merger.current().children_of("a") == {"b"}
        assert len(merger.log()) == 4

    def test_bad_input(self, make):
        merger = make()
        with pytest.raises(ValueError):
            merger.deliver(MoveOp("a", None, 0))
        with pytest.raises(TypeError):
            merger.deliver(("a", None))

    def test_delete_is_tombstone(self, make):
        merger = make()
        merger.deliver_many(intro("a", "b"))
        merger.deliver(DeleteOp("a", 5, 1))
        tree = merger.current()
        assert tree.is_deleted("a")
        assert not tree.is_deleted("b")
        assert "a" in tree

    def test_late_delete_and_undo(self, make):
        merger = make()
        merger.deliver_many(intro("a", "b"))
        merger.deliver(MoveOp("b", "a", 9, 1))
        merger.deliver(DeleteOp("a", 4, 2))
        tree = merger.current()
        assert tree.is_deleted("a")
        assert tree.parent_of("b") == "a"

    def test_delete_unknown_is_noop(self, make):
        merger = make()
        op = DeleteOp("ghost", 0, 1)
        merger.deliver(op)
        assert merger.dropped() == [op]
        assert len(merger.current()) == 0

    def test_current_is_a_stable_snapshot(self, make):
        merger = make()
        merger.deliver_many(intro("a", "b"))
        before = merger.current()
        merger.deliver(MoveOp("b", "a", 5, 1))
        assert before.parent_of("b") is None
        assert merger.current().parent_of("b") == "a"

    def test_batch_equals_one_by_one(self, make):
        ops = random_ops(random.Random(3), n_nodes=8, n_moves=40)
        batch = make()
        batch.deliver_many(reversed(ops))
        single = make()
        for op in ops:
            single.deliver(op)
        assert batch.current() == single.current()

    def test_last_id(self, make):
        merger = make()
        assert merger.last_id is None
        merger.deliver_many(intro("a", "b"))
        assert merger.last_id == OpId(1, 0)


class TestStrategiesAgree:
    @pytest.mark.parametrize("seed", range(5))
    def test_same_tree(self, seed):
        rng = random.Random(seed)
        ops = random_ops(rng, n_nodes=15, n_moves=120, n_replicas=4)
        rng.shuffle(ops)
        undo = CrdtMerger()
        snap = SnapshotCrdtMerger()
        for op in ops:
            undo.deliver(op)
            snap.deliver(op)
        assert undo.current() == snap.current()
        assert undo.dropped() == snap.dropped()
        assert_valid_forest(undo.current())

    def test_as_of_replays_prefix(self):
        ops = random_ops(random.Random(11), n_nodes=6, n_moves=30)
        merger = SnapshotCrdtMerger()
        merger.deliver_many(ops)
        ordered = sorted(ops, key=lambda op: op.id)
        for i, op in enumerate(ordered):
            prefix = CrdtMerger()
            prefix.deliver_many(ordered[:i + 1])
            assert merger.as_of(op.id) == prefix.current()

    def test_snapshot_cache_is_bounded(self):
        merger = SnapshotCrdtMerger(ForestConfig(snapshot_density=1))
        merger.deliver_many(intro(*range(10)))
        for i in range(1000):
            merger.deliver(MoveOp(i % 10, (i + 1) % 10, 10 + i, 1))
        assert merger.cache_size() < 40
        assert_valid_forest(merger.current())


def make_replicas(n, merger=None):
    return [Replica(i, merger() if merger else None) for i in range(n)]


class TestReplica:
    def test_two_replicas(self):
        a, b = make_replicas(2)
        ids = [a.new_node() for _ in range(10)]
        a.mov(ids[0], ids[2])
        b.merge(a)
        b.mov(ids[3], ids[1])
        a.merge(b)
        assert a.forest() == b.forest()
        assert a.forest().parent_of(ids[3]) == ids[1]

    def test_clock_advances_on_merge(self):
        a, b = make_replicas(2)
        for _ in range(5):
            a.new_node()
        b.merge(a)
        op = b.mov(OpId(0, 0), None)
        assert op.seq == 5

    def test_concurrent_swap(self):
        a, b = make_replicas(2)
        x = a.new_node()
        y = a.new_node()
        b.merge(a)
        a.mov(x, y)
        b.mov(y, x)
        a.merge(b)
        b.merge(a)
        assert a.forest() == b.forest()
        assert_valid_forest(a.forest())
        # equal lamport: replica 0 wins, replica 1's move is dropped
        assert a.forest().parent_of(x) == y
        assert a.forest().parent_of(y) is None

    def test_delete_and_move_converge(self):
        a, b = make_replicas(2)
        ids = [a.new_node() for _ in range(10)]
        b.merge(a)
        a.delete(ids[0])
        a.mov(ids[0], ids[0])
        b.mov(ids[1], ids[1])
        b.merge(a)
        a.merge(b)
        assert a.forest() == b.forest()
        assert a.forest().is_deleted(ids[0])

    def test_merge_is_idempotent(self):
        a, b = make_replicas(2)
        a.new_node()
        assert b.merge(a) == 1
        assert b.merge(a) == 0
        assert a.merge(b) == 0

    def test_version_vector(self):
        a, b = make_replicas(2)
        a.new_node()
        a.new_node()
        b.new_node()
        b.merge(a)
        assert b.version_vector() == {0: 2, 1: 1}
        assert [op.seq for op in a.ops_since({0: 1})] == [1]
        assert len(b.ops_since({0: 1})) == 2

    def test_none_replica_id(self):
        with pytest.raises(ValueError):
            Replica(None)

    @pytest.mark.parametrize("merger", [CrdtMerger, SnapshotCrdtMerger])
    @pytest.mark.parametrize("seed", range(4))
    def test_random_sync_converges(self, merger, seed):
        rng = random.Random(seed)
        actors = make_replicas(4, merger)
        ids = [actors[0].new_node() for _ in range(32)]
        for actor in actors[1:]:
            actor.merge(actors[0])
        for _ in range(300):
            roll = rng.random()
            actor = rng.choice(actors)
            if roll < 0.6:
                actor.mov(rng.choice(ids), rng.choice(ids))
            elif roll < 0.7:
                actor.delete(rng.choice(ids))
            else:
                other = rng.choice(actors)
                if other is not actor:
                    actor.merge(other)
        for left, right in zip(actors, actors[1:]):
            left.merge(right)
            right.merge(left)
        for left, right in reversed(list(zip(actors, actors[1:]))):
            left.merge(right)
        final = actors[0].forest()
        assert_valid_forest(final)
        for actor in actors[1:]:
            assert actor.forest() == final
