"""Implementation-agnostic property suite for movable tree backends.

Backends provide a fixture dict:

    fixture = {
        "create_forest": lambda: ...,   # fresh Versioned forest (optional)
        "create_merger": lambda: ...,   # fresh Mergeable (optional)
        "seed": 0,                      # seed for the randomized checks
    }

Layers whose factory is missing are skipped.

Usage with pytest:

    from movable_tree.compliance import run_compliance_tests

    def test_compliance():
        run_compliance_tests({"create_forest": Forest})
"""

import random
from typing import Any, Dict, List

from movable_tree.errors import CycleError, UnknownNodeError
from movable_tree.protocols import TreeView
from movable_tree.types import MoveOp, Op


# ============================================================
# Helpers
# ============================================================

def assert_valid_forest(view: TreeView) -> None:
    """Every parent chain ends at a root within len(view) steps and the
    children index agrees with the parent links."""
    size = len(view)
    for node in view:
        steps = 0
        current = view.parent_of(node)
        while current is not None:
            assert current in view, f"{node!r} has dangling ancestor {current!r}"
            steps += 1
            assert steps <= size, f"cycle through {node!r}"
            current = view.parent_of(current)
        parent = view.parent_of(node)
        siblings = view.roots() if parent is None else view.children_of(parent)
        assert node in siblings, f"{node!r} missing from children of {parent!r}"
    indexed = len(view.roots()) + sum(len(view.children_of(n)) for n in view)
    assert indexed == size, "children index size does not match node count"


def random_ops(rng: random.Random, n_nodes: int = 12, n_moves: int = 60,
               n_replicas: int = 3) -> List[Op]:
    """Random replicated ops with distinct keys: node introductions first,
    then moves among them with concurrent (equal lamport) keys."""
    ops: List[Op] = []
    for i in range(n_nodes):
        ops.append(MoveOp(node=i, new_parent=None, seq=i, origin=0))
    used = set()
    lamport = n_nodes
    while len(ops) < n_nodes + n_moves:
        lamport += rng.randint(0, 1)
        replica = rng.randrange(n_replicas)
        if (lamport, replica) in used:
            continue
        used.add((lamport, replica))
        node = rng.randrange(n_nodes)
        parent = rng.choice([None] + list(range(n_nodes)))
        ops.append(MoveOp(node=node, new_parent=parent, seq=lamport, origin=replica))
    return ops


def _has(fix: Dict[str, Any], key: str) -> bool:
    return fix.get(key) is not None


# ============================================================
# Layer: Versioned
# ============================================================

def test_concrete_scenario(fix: Dict[str, Any]) -> None:
    """1 at root with {2, 3}; then 2 under 3; then 1 under 2 is a cycle."""
    forest = fix["create_forest"]()
    forest.mov(1, None)
    forest.mov(2, 1)
    forest.mov(3, 1)
    tree = forest.snapshot()
    assert tree.roots() == {1}
    assert tree.children_of(1) == {2, 3}

    forest.mov(2, 3)
    tree = forest.snapshot()
    assert tree.children_of(1) == {3}
    assert tree.children_of(3) == {2}

    before = forest.snapshot()
    version = forest.version
    try:
        forest.mov(1, 2)
    except CycleError:
        pass
    else:
        raise AssertionError("moving 1 under its descendant 2 should fail")
    assert forest.snapshot() == before
    assert forest.version == version
    assert forest.snapshot().to_dict() == {1: None, 3: 1, 2: 3}


def test_cycle_rejection(fix: Dict[str, Any]) -> None:
    """mov(a, b) then mov(b, a) fails and changes nothing."""
    forest = fix["create_forest"]()
    forest.mov("a")
    forest.mov("b")
    forest.mov("a", "b")
    before = forest.snapshot().to_dict()
    try:
        forest.mov("b", "a")
    except CycleError:
        pass
    else:
        raise AssertionError("second move should create a cycle")
    assert forest.snapshot().to_dict() == before


def test_self_parent(fix: Dict[str, Any]) -> None:
    forest = fix["create_forest"]()
    forest.mov("x")
    try:
        forest.mov("x", "x")
    except CycleError:
        pass
    else:
        raise AssertionError("a node cannot be its own parent")


def test_unknown_parent(fix: Dict[str, Any]) -> None:
    forest = fix["create_forest"]()
    try:
        forest.mov("x", "missing")
    except UnknownNodeError:
        pass
    else:
        raise AssertionError("moving under an unknown node should fail")
    assert forest.version == 0
    assert len(forest.snapshot()) == 0


def test_old_snapshots_untouched(fix: Dict[str, Any]) -> None:
    forest = fix["create_forest"]()
    forest.mov(1)
    forest.mov(2, 1)
    old = forest.snapshot()
    forest.mov(2)
    assert old.parent_of(2) == 1
    assert forest.snapshot().parent_of(2) is None


def test_history_replay(fix: Dict[str, Any]) -> None:
    """at(k) equals replaying the first k successful moves from scratch."""
    rng = random.Random(fix.get("seed", 0))
    forest = fix["create_forest"]()
    accepted: List[tuple] = []
    for node in range(10):
        forest.mov(node)
        accepted.append((node, None))
    for _ in range(150):
        node = rng.randrange(10)
        parent = rng.choice([None] + list(range(10)))
        try:
            forest.mov(node, parent)
        except CycleError:
            continue
        accepted.append((node, parent))
    assert forest.version == len(accepted)

    for k in range(forest.version + 1):
        fresh = fix["create_forest"]()
        for node, parent in accepted[:k]:
            fresh.mov(node, parent)
        assert forest.at(k) == fresh.snapshot(), f"version {k} differs"


def test_random_moves_stay_valid(fix: Dict[str, Any]) -> None:
    rng = random.Random(fix.get("seed", 0) + 1)
    forest = fix["create_forest"]()
    for node in range(20):
        forest.mov(node, rng.choice([None] + list(range(node))))
    for _ in range(300):
        try:
            forest.mov(rng.randrange(20), rng.choice([None] + list(range(20))))
        except CycleError:
            pass
    for version in range(0, forest.version + 1, 7):
        assert_valid_forest(forest.at(version))


# ============================================================
# Layer: Mergeable
# ============================================================

def test_convergence(fix: Dict[str, Any]) -> None:
    """Any delivery order yields the same tree."""
    rng = random.Random(fix.get("seed", 0))
    ops = random_ops(rng)
    reference = fix["create_merger"]()
    reference.deliver_many(ops)
    expected = reference.current()
    assert_valid_forest(expected)

    orders = [list(reversed(ops))]
    for _ in range(4):
        shuffled = list(ops)
        rng.shuffle(shuffled)
        orders.append(shuffled)
    for order in orders:
        merger = fix["create_merger"]()
        for op in order:
            merger.deliver(op)
            assert_valid_forest(merger.current())
        assert merger.current() == expected
        assert merger.log() == reference.log()
        assert merger.dropped() == reference.dropped()


def test_duplicates_ignored(fix: Dict[str, Any]) -> None:
    merger = fix["create_merger"]()
    op = MoveOp(node="a", new_parent=None, seq=0, origin=1)
    assert merger.deliver(op)
    assert not merger.deliver(op)
    assert merger.log() == [op]


def test_concurrent_cycle_dropped(fix: Dict[str, Any]) -> None:
    """Concurrent a->b and b->a: the greater key loses."""
    merger = fix["create_merger"]()
    merger.deliver_many([
        MoveOp(node="a", new_parent=None, seq=0, origin=1),
        MoveOp(node="b", new_parent=None, seq=1, origin=1),
    ])
    first = MoveOp(node="a", new_parent="b", seq=2, origin=1)
    second = MoveOp(node="b", new_parent="a", seq=2, origin=2)
    merger.deliver(second)
    merger.deliver(first)
    tree = merger.current()
    assert tree.parent_of("a") == "b"
    assert tree.parent_of("b") is None
    assert merger.dropped() == [second]


def test_late_op_keeps_later_moves(fix: Dict[str, Any]) -> None:
    """Moves after a late insertion survive when they stay acyclic."""
    merger = fix["create_merger"]()
    merger.deliver_many(MoveOp(node=n, new_parent=None, seq=n, origin=0) for n in range(5))
    later = [
        MoveOp(node=1, new_parent=0, seq=10, origin=1),
        MoveOp(node=2, new_parent=1, seq=11, origin=1),
        MoveOp(node=4, new_parent=3, seq=12, origin=1),
    ]
    merger.deliver_many(later)
    merger.deliver(MoveOp(node=3, new_parent=2, seq=7, origin=2))
    tree = merger.current()
    assert tree.parent_of(1) == 0
    assert tree.parent_of(2) == 1
    assert tree.parent_of(3) == 2
    assert tree.parent_of(4) == 3
    assert merger.dropped() == []


def test_unknown_parent_is_noop(fix: Dict[str, Any]) -> None:
    merger = fix["create_merger"]()
    op = MoveOp(node="a", new_parent="ghost", seq=0, origin=1)
    merger.deliver(op)
    assert "a" not in merger.current()
    assert merger.dropped() == [op]
    # the parent shows up with a smaller key: the move now applies
    merger.deliver(MoveOp(node="ghost", new_parent=None, seq=0, origin=0))
    assert merger.current().parent_of("a") == "ghost"
    assert merger.dropped() == []


ALL_TESTS = {
    "create_forest": [
        test_concrete_scenario,
        test_cycle_rejection,
        test_self_parent,
        test_unknown_parent,
        test_old_snapshots_untouched,
        test_history_replay,
        test_random_moves_stay_valid,
    ],
    "create_merger": [
        test_convergence,
        test_duplicates_ignored,
        test_concurrent_cycle_dropped,
        test_late_op_keeps_later_moves,
        test_unknown_parent_is_noop,
    ],
}


def run_compliance_tests(fixture: Dict[str, Any]) -> None:
    """Run every layer the fixture provides a factory for."""
    for factory, tests in ALL_TESTS.items():
        if not _has(fixture, factory):
            continue
        for test_fn in tests:
            test_fn(fixture)
