"""Persistent hash array mapped trie.

Every update copies only the nodes on the path from the trie root to the
changed slot; all other nodes are shared with the previous version. Nodes
are never mutated after construction, so any number of versions can alias
them. CPython reference counting reclaims a node once no version uses it.

Layout:
    _Branch    - 32-way bitmap-compressed interior node
    _Entry     - one key/value pair, stored inline in a branch slot
    _Collision - entries whose 64-bit hashes are identical
"""

from typing import Any, Hashable, Iterator, Optional, Tuple

_BITS = 5
_MASK = (1 << _BITS) - 1
_HASH_MASK = (1 << 64) - 1

_MISSING = object()


class _Entry:
    __slots__ = ("hash", "key", "value")

    def __init__(self, h: int, key: Hashable, value: Any):
        self.hash = h
        self.key = key
        self.value = value


class _Collision:
    __slots__ = ("hash", "entries")

    def __init__(self, h: int, entries: Tuple[_Entry, ...]):
        self.hash = h
        self.entries = entries


class _Branch:
    __slots__ = ("bitmap", "slots")

    def __init__(self, bitmap: int, slots: tuple):
        self.bitmap = bitmap
        self.slots = slots


_EMPTY_BRANCH = _Branch(0, ())


def _hash(key: Hashable) -> int:
    return hash(key) & _HASH_MASK


def _bit(h: int, shift: int) -> int:
    return 1 << ((h >> shift) & _MASK)


def _slot_index(bitmap: int, bit: int) -> int:
    return bin(bitmap & (bit - 1)).count("1")


def _replace(slots: tuple, i: int, item) -> tuple:
    return slots[:i] + (item,) + slots[i + 1:]


def _pair(a, b: _Entry, shift: int):
    """Smallest subtrie holding `a` (entry or collision) and entry `b`."""
    if a.hash == b.hash:
        if isinstance(a, _Collision):
            return _Collision(a.hash, a.entries + (b,))
        return _Collision(a.hash, (a, b))
    bit_a = _bit(a.hash, shift)
    bit_b = _bit(b.hash, shift)
    if bit_a == bit_b:
        return _Branch(bit_a, (_pair(a, b, shift + _BITS),))
    if bit_a < bit_b:
        return _Branch(bit_a | bit_b, (a, b))
    return _Branch(bit_a | bit_b, (b, a))


def _find(node, h: int, key: Hashable) -> Optional[_Entry]:
    shift = 0
    while True:
        if isinstance(node, _Collision):
            for entry in node.entries:
                if entry.key == key:
                    return entry
            return None
        bit = _bit(h, shift)
        if not node.bitmap & bit:
            return None
        child = node.slots[_slot_index(node.bitmap, bit)]
        if isinstance(child, _Entry):
            if child.hash == h and child.key == key:
                return child
            return None
        node = child
        shift += _BITS


def _assoc(node, shift: int, entry: _Entry) -> Tuple[Any, bool]:
    """Return (new node, whether a key was added). Unchanged input is returned as is."""
    if isinstance(node, _Collision):
        if node.hash != entry.hash:
            return _pair(node, entry, shift), True
        for i, old in enumerate(node.entries):
            if old.key == entry.key:
                if old.value is entry.value:
                    return node, False
                return _Collision(node.hash, _replace(node.entries, i, entry)), False
        return _Collision(node.hash, node.entries + (entry,)), True

    bit = _bit(entry.hash, shift)
    i = _slot_index(node.bitmap, bit)
    if not node.bitmap & bit:
        return _Branch(node.bitmap | bit, node.slots[:i] + (entry,) + node.slots[i:]), True

    child = node.slots[i]
    if isinstance(child, _Entry):
        if child.hash == entry.hash and child.key == entry.key:
            if child.value is entry.value:
                return node, False
            return _Branch(node.bitmap, _replace(node.slots, i, entry)), False
        return _Branch(node.bitmap, _replace(node.slots, i, _pair(child, entry, shift + _BITS))), True

    sub, added = _assoc(child, shift + _BITS, entry)
    if sub is child:
        return node, False
    return _Branch(node.bitmap, _replace(node.slots, i, sub)), added


def _dissoc(node, shift: int, h: int, key: Hashable):
    """Return the node without `key`: the same object if absent, None if now
    empty, or a bare entry the caller should inline."""
    if isinstance(node, _Collision):
        rest = tuple(e for e in node.entries if e.key != key)
        if len(rest) == len(node.entries):
            return node
        if len(rest) == 1:
            return rest[0]
        return _Collision(node.hash, rest)

    bit = _bit(h, shift)
    if not node.bitmap & bit:
        return node
    i = _slot_index(node.bitmap, bit)
    child = node.slots[i]
    if isinstance(child, _Entry):
        if child.hash != h or child.key != key:
            return node
        sub = None
    else:
        sub = _dissoc(child, shift + _BITS, h, key)
        if sub is child:
            return node

    if sub is None:
        bitmap = node.bitmap & ~bit
        slots = node.slots[:i] + node.slots[i + 1:]
        if not slots:
            return None
        if shift > 0 and len(slots) == 1 and isinstance(slots[0], _Entry):
            return slots[0]
        return _Branch(bitmap, slots)

    if shift > 0 and len(node.slots) == 1 and isinstance(sub, _Entry):
        return sub
    return _Branch(node.bitmap, _replace(node.slots, i, sub))


def _walk(node) -> Iterator[_Entry]:
    if isinstance(node, _Collision):
        yield from node.entries
        return
    for child in node.slots:
        if isinstance(child, _Entry):
            yield child
        else:
            yield from _walk(child)


def _walk_nodes(node) -> Iterator[Any]:
    yield node
    if isinstance(node, _Branch):
        for child in node.slots:
            if not isinstance(child, _Entry):
                yield from _walk_nodes(child)


# ============================================================
# Public API
# ============================================================

class PersistentMap:
    """Immutable mapping with O(log32 n) updates that share structure.

    `set` and `delete` return a new map; the receiver is never modified.
    """

    __slots__ = ("_root", "_size")

    def __init__(self, _root: _Branch = _EMPTY_BRANCH, _size: int = 0):
        self._root = _root
        self._size = _size

    @classmethod
    def from_items(cls, items) -> "PersistentMap":
        result = cls()
        for key, value in items:
            result = result.set(key, value)
        return result

    def get(self, key: Hashable, default: Any = None) -> Any:
        entry = _find(self._root, _hash(key), key)
        return default if entry is None else entry.value

    def __getitem__(self, key: Hashable) -> Any:
        value = self.get(key, _MISSING)
        if value is _MISSING:
            raise KeyError(key)
        return value

    def __contains__(self, key: Hashable) -> bool:
        return _find(self._root, _hash(key), key) is not None

    def set(self, key: Hashable, value: Any) -> "PersistentMap":
        root, added = _assoc(self._root, 0, _Entry(_hash(key), key, value))
        if root is self._root:
            return self
        return PersistentMap(root, self._size + 1 if added else self._size)

    def delete(self, key: Hashable) -> "PersistentMap":
        """Return a map without `key`; a no-op for absent keys."""
        root = _dissoc(self._root, 0, _hash(key), key)
        if root is self._root:
            return self
        if root is None:
            return PersistentMap()
        return PersistentMap(root, self._size - 1)

    def __len__(self) -> int:
        return self._size

    def __iter__(self) -> Iterator[Hashable]:
        for entry in _walk(self._root):
            yield entry.key

    def items(self) -> Iterator[Tuple[Hashable, Any]]:
        for entry in _walk(self._root):
            yield entry.key, entry.value

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PersistentMap):
            return NotImplemented
        if self._root is other._root:
            return True
        if self._size != other._size:
            return False
        for key, value in self.items():
            if other.get(key, _MISSING) != value:
                return False
        return True

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        body = ", ".join(f"{k!r}: {v!r}" for k, v in self.items())
        return f"PersistentMap({{{body}}})"

    # -- structure inspection --

    def node_count(self) -> int:
        """Number of interior trie nodes."""
        return sum(1 for _ in _walk_nodes(self._root))

    def shared_nodes(self, other: "PersistentMap") -> int:
        """How many interior trie nodes this map shares with `other`."""
        mine = {id(n) for n in _walk_nodes(self._root)}
        return sum(1 for n in _walk_nodes(other._root) if id(n) in mine)
