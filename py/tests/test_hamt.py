"""Tests for the persistent hash array mapped trie."""

import random

import pytest

from movable_tree.hamt import PersistentMap


class Colliding:
    """Key whose hash collides with every other instance."""

    def __init__(self, name):
        self.name = name

    def __hash__(self):
        return 42

    def __eq__(self, other):
        return isinstance(other, Colliding) and other.name == self.name

    def __repr__(self):
        return f"Colliding({self.name!r})"


class TestBasics:
    def test_empty(self):
        m = PersistentMap()
        assert len(m) == 0
        assert m.get("x") is None
        assert "x" not in m
        assert list(m) == []

    def test_set_returns_new_map(self):
        empty = PersistentMap()
        one = empty.set("a", 1)
        assert len(empty) == 0
        assert one["a"] == 1
        assert len(one) == 1

    def test_overwrite_keeps_size(self):
        m = PersistentMap().set("a", 1).set("a", 2)
        assert len(m) == 1
        assert m["a"] == 2

    def test_same_value_is_noop(self):
        value = object()
        m = PersistentMap().set("a", value)
        assert m.set("a", value) is m

    def test_missing_key_raises(self):
        with pytest.raises(KeyError):
            PersistentMap()["nope"]

    def test_delete(self):
        m = PersistentMap.from_items((i, i) for i in range(100))
        smaller = m.delete(50)
        assert 50 in m
        assert 50 not in smaller
        assert len(smaller) == 99
        assert smaller.delete(50) is smaller

    def test_delete_everything(self):
        m = PersistentMap.from_items((i, str(i)) for i in range(40))
        for i in range(40):
            m = m.delete(i)
        assert len(m) == 0
        assert m == PersistentMap()


class TestAgainstDict:
    def test_random_operations(self):
        rng = random.Random(7)
        m = PersistentMap()
        reference = {}
        for _ in range(3000):
            key = rng.randrange(500)
            if rng.random() < 0.3:
                m = m.delete(key)
                reference.pop(key, None)
            else:
                value = rng.randrange(10)
                m = m.set(key, value)
                reference[key] = value
            assert len(m) == len(reference)
        assert dict(m.items()) == reference
        assert set(m) == set(reference)

    def test_negative_and_large_hashes(self):
        keys = [-1, -2, 2 ** 70, -(2 ** 70), "text", (1, 2), None]
        m = PersistentMap.from_items((k, i) for i, k in enumerate(keys))
        for i, k in enumerate(keys):
            assert m[k] == i


class TestCollisions:
    def test_colliding_keys(self):
        a, b, c = Colliding("a"), Colliding("b"), Colliding("c")
        m = PersistentMap().set(a, 1).set(b, 2).set(c, 3)
        assert len(m) == 3
        assert (m[a], m[b], m[c]) == (1, 2, 3)
        m2 = m.set(b, 20)
        assert m2[b] == 20 and m[b] == 2
        m3 = m2.delete(a).delete(c)
        assert len(m3) == 1
        assert m3[b] == 20

    def test_collision_next_to_regular_key(self):
        m = PersistentMap().set(Colliding("a"), 1).set(Colliding("b"), 2).set(42 + 32, "x")
        assert m[42 + 32] == "x"
        assert m[Colliding("a")] == 1


class TestSharing:
    def test_update_shares_untouched_nodes(self):
        m = PersistentMap.from_items((i, i) for i in range(2000))
        changed = m.set(1234, "new")
        total = m.node_count()
        # only the path from the root to the changed slot is rebuilt
        assert total - changed.shared_nodes(m) <= 4
        assert m[1234] == 1234

    def test_equality_ignores_history(self):
        a = PersistentMap().set(1, "x").set(2, "y")
        b = PersistentMap().set(2, "y").set(1, "x")
        assert a == b
        assert a != b.set(3, "z")
