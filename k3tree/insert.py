"""Incremental (unbalanced) insertion into a k-d tree."""

from __future__ import annotations

import logging
from typing import Optional, Union

import numpy as np
from beartype import beartype
from jaxtyping import ArrayLike, jaxtyped

from .arena import KDTree, NodeArena
from .dtypes import NO_NODE, NUM_AXES
from .points import PointSet, as_point_set

logger = logging.getLogger(__name__)


def _as_point_coords(coords) -> np.ndarray:
    arr = np.asarray(coords, dtype=np.float64)
    if arr.shape != (NUM_AXES,):
        raise ValueError(f"coords must have shape (3,); received shape={arr.shape}")
    if not np.all(np.isfinite(arr)):
        raise ValueError("point coordinates must be finite")
    return arr


class IncrementalKDTree:
    """Single-writer tree that grows one point at a time.

    The side taken at each level is decided by a strict less-than test on
    axis ``depth % 3`` and each new node stores that axis. There is no
    rebalancing, so the height depends on insertion order and reaches ``n``
    for sorted input.
    """

    def __init__(self, capacity: int = 16):
        self._arena = NodeArena(capacity=capacity)

    @classmethod
    def from_tree(cls, tree: KDTree) -> "IncrementalKDTree":
        """Continue inserting into a copy of an existing tree."""

        if tree.num_nodes > 0 and int(tree.axis[tree.root]) != 0:
            raise ValueError("insertion requires a tree whose root splits on axis 0")
        builder = cls.__new__(cls)
        builder._arena = NodeArena.thaw(tree)
        return builder

    @property
    def root(self) -> int:
        return self._arena.root

    @property
    def num_nodes(self) -> int:
        return self._arena.size

    @property
    def height(self) -> int:
        return self._arena.height

    def __len__(self) -> int:
        return self._arena.size

    def insert(
        self,
        point_id: Union[int, np.integer],
        coords,
        *,
        point_index: Optional[int] = None,
    ) -> int:
        """Attach one point below the first absent child on its descent path.

        Args:
            point_id: Caller identifier stored with the point.
            coords: The three coordinates of the point.
            point_index: Row reported for this point by queries. Defaults to
                the insertion position.

        Returns:
            The root node index (always ``0`` once the tree is non-empty).
        """

        if int(point_id) < 0:
            raise ValueError(f"point_id must be non-negative; received {point_id}")
        value = _as_point_coords(coords)
        arena = self._arena
        row = arena.size if point_index is None else int(point_index)

        if arena.size == 0:
            arena.allocate(row, int(point_id), value, axis=0)
            return arena.root

        current = arena.root
        axis = 0
        depth = 0
        while True:
            go_left = value[axis] < arena.coords[current, axis]
            child = arena.left_child[current] if go_left else arena.right_child[current]
            axis = (axis + 1) % NUM_AXES
            depth += 1
            if child == NO_NODE:
                break
            current = int(child)

        node = arena.allocate(row, int(point_id), value, axis=axis, depth=depth)
        arena.attach(current, node, right=not go_left)
        return arena.root

    def insert_many(self, points: PointSet) -> int:
        """Insert every row of ``points`` in order; return the root index."""

        ids = np.asarray(points.ids)
        coords = np.asarray(points.coords)
        offset = self._arena.size
        for row in range(coords.shape[0]):
            self.insert(int(ids[row]), coords[row], point_index=offset + row)
        logger.debug(
            "Inserted %d points: nodes=%d, height=%d",
            coords.shape[0],
            self._arena.size,
            self._arena.height,
        )
        return self._arena.root

    @property
    def tree(self) -> KDTree:
        """Freeze the current nodes into an immutable tree."""

        return self._arena.freeze()


@jaxtyped(typechecker=beartype)
def insert_point(
    tree: Optional[KDTree],
    point_id: Union[int, np.integer],
    coords: ArrayLike,
) -> KDTree:
    """Return a new tree equal to ``tree`` with one more point attached.

    ``tree=None`` (or an empty tree) yields a single-node tree. The input tree
    is left untouched; each call copies the arena, so use
    :class:`IncrementalKDTree` to insert many points.
    """

    builder = IncrementalKDTree() if tree is None else IncrementalKDTree.from_tree(tree)
    builder.insert(point_id, np.asarray(coords))
    return builder.tree


def build_incremental_tree(
    points: Union[PointSet, ArrayLike],
    ids: Optional[ArrayLike] = None,
) -> KDTree:
    """Insert every row of ``points`` in order into an initially empty tree."""

    point_set = as_point_set(points, ids)
    builder = IncrementalKDTree(capacity=point_set.num_points)
    builder.insert_many(point_set)
    return builder.tree


__all__ = ["IncrementalKDTree", "build_incremental_tree", "insert_point"]
