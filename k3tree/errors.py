"""Exception types raised by k3tree."""

from __future__ import annotations


class K3TreeError(Exception):
    """Base class for k3tree failures."""


class EmptyTreeError(K3TreeError, ValueError):
    """Raised when a query needs at least one node but the tree is empty."""

    def __init__(self, operation: str):
        super().__init__(f"{operation} requires a non-empty tree")
        self.operation = operation


class CapacityExceededError(K3TreeError, RuntimeError):
    """Raised when range matches do not fit the configured buffer."""

    def __init__(self, capacity: int, required: int):
        super().__init__(
            "Range match capacity exceeded; increase max_matches or enable "
            f"grow_on_overflow (capacity={capacity}, required={required})."
        )
        self.capacity = capacity
        self.required = required


__all__ = ["CapacityExceededError", "EmptyTreeError", "K3TreeError"]
