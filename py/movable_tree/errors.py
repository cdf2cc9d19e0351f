"""Exceptions raised by the movable tree.

None of them is fatal: every failing call leaves its target untouched.
"""

from typing import Hashable, Optional


class MovableTreeError(Exception):
    """Base class for all movable tree errors."""


class CycleError(MovableTreeError):
    """A move would make a node its own ancestor."""

    def __init__(self, node: Hashable, new_parent: Optional[Hashable]):
        self.node = node
        self.new_parent = new_parent
        super().__init__(
            f"moving {node!r} under {new_parent!r} would create a cycle")


class OutOfRangeError(MovableTreeError, IndexError):
    """A history index outside [0, tip]."""

    def __init__(self, version: int, tip: int):
        self.version = version
        self.tip = tip
        super().__init__(f"version {version} out of range [0, {tip}]")


class UnknownNodeError(MovableTreeError, KeyError):
    """A node that was never introduced to the forest."""

    def __init__(self, node: Hashable):
        self.node = node
        super().__init__(node)

    def __str__(self) -> str:
        return f"unknown node {self.node!r}"
