"""Balanced construction and the public build entry point."""

from __future__ import annotations

import logging
from typing import Optional, Union

import numpy as np
from beartype import beartype
from jaxtyping import ArrayLike, jaxtyped

from .arena import KDTree, NodeArena
from .dtypes import NO_NODE, NUM_AXES
from .insert import build_incremental_tree
from .median import median_position, select_median
from .points import PointSet, as_point_set

logger = logging.getLogger(__name__)


def _build_into_arena(
    arena: NodeArena,
    ids: np.ndarray,
    coords: np.ndarray,
    axis: int,
) -> None:
    """Fill ``arena`` with a median-split tree over every row of ``coords``.

    Work items are ``(lo, hi, axis, parent, is_right, depth)`` slices of a
    shared row ordering. Popping the left slice before the right one keeps
    node allocation in preorder, so the root is node 0 and every subtree
    occupies a contiguous block of the arena.
    """

    n = int(coords.shape[0])
    order = np.arange(n, dtype=np.int64)
    columns = [np.ascontiguousarray(coords[:, a]) for a in range(NUM_AXES)]

    stack = [(0, n, axis, NO_NODE, False, 0)]
    while stack:
        lo, hi, node_axis, parent, is_right, depth = stack.pop()
        row = select_median(order, columns[node_axis], lo, hi)
        node = arena.allocate(
            point_index=row,
            point_id=int(ids[row]),
            coords=coords[row],
            axis=node_axis,
            depth=depth,
        )
        if parent != NO_NODE:
            arena.attach(parent, node, right=is_right)

        mid = median_position(lo, hi)
        child_axis = (node_axis + 1) % NUM_AXES
        if hi > mid + 1:
            stack.append((mid + 1, hi, child_axis, node, True, depth + 1))
        if mid > lo:
            stack.append((lo, mid, child_axis, node, False, depth + 1))


@jaxtyped(typechecker=beartype)
def build_balanced_tree(
    points: Union[PointSet, ArrayLike],
    ids: Optional[ArrayLike] = None,
    *,
    axis: int = 0,
) -> KDTree:
    """Build a height-balanced tree by recursive median splits.

    Each node takes the median of its slice on its axis; the left slice keeps
    ``n // 2 - (1 - n % 2)`` points and the right slice ``n // 2``, and
    children split on ``(axis + 1) % 3``. Subtree sizes therefore differ by at
    most one and the tree has ``floor(log2(n)) + 1`` levels.

    Args:
        points: A :class:`PointSet` or coordinates with shape ``(n, 3)``.
        ids: Optional identifiers when ``points`` is a coordinate array.
        axis: Splitting axis of the root node.

    Returns:
        The built tree; an empty tree when ``points`` has no rows.
    """

    if axis not in (0, 1, 2):
        raise ValueError(f"axis must be 0, 1 or 2; received {axis}")
    point_set = as_point_set(points, ids)
    n = point_set.num_points

    arena = NodeArena(capacity=n)
    if n > 0:
        _build_into_arena(
            arena,
            np.asarray(point_set.ids),
            np.asarray(point_set.coords),
            int(axis),
        )
    logger.debug("Built balanced tree: points=%d, height=%d", n, arena.height)
    return arena.freeze()


@jaxtyped(typechecker=beartype)
def build_tree(
    points: Union[PointSet, ArrayLike],
    ids: Optional[ArrayLike] = None,
    *,
    mode: str = "balanced",
) -> KDTree:
    """Build a tree over ``points`` using the requested construction path.

    ``"balanced"`` runs :func:`build_balanced_tree` from axis 0.
    ``"incremental"`` inserts the rows one at a time in input order, which
    gives an unbalanced tree whose shape depends on that order.
    """

    if mode == "balanced":
        return build_balanced_tree(points, ids, axis=0)
    if mode == "incremental":
        return build_incremental_tree(points, ids)
    raise ValueError(f"Unsupported build mode '{mode}'; expected 'balanced' or 'incremental'")


__all__ = ["build_balanced_tree", "build_tree"]
