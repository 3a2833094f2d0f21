"""Node arena and the frozen k-d tree container.

Nodes are addressed by index. ``parent``, ``left_child`` and ``right_child``
hold node indices with ``NO_NODE`` (``-1``) marking an absent link, so the
tree never holds references that could dangle when storage grows.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import jax
import jax.numpy as jnp
import numpy as np
from jaxtyping import Array

from .dtypes import INDEX_DTYPE, NO_NODE, NUM_AXES, REAL_DTYPE

logger = logging.getLogger(__name__)

_MIN_CAPACITY = 16


@dataclass(frozen=True)
class KDTree:
    """Immutable 3-d tree: per-node point data plus index-based links."""

    point_index: Array
    point_ids: Array
    coords: Array
    axis: Array
    parent: Array
    left_child: Array
    right_child: Array
    root: int
    height: int

    @property
    def num_nodes(self) -> int:
        """Return the number of nodes (one per indexed point)."""

        return int(self.parent.shape[0])

    @property
    def is_empty(self) -> bool:
        """Whether the tree holds no nodes."""

        return self.root == NO_NODE

    def __len__(self) -> int:
        return self.num_nodes


def _register_kdtree_pytree() -> None:
    if getattr(KDTree, "_k3tree_pytree_registered", False):
        return

    def flatten(tree: KDTree):
        children = (
            tree.point_index,
            tree.point_ids,
            tree.coords,
            tree.axis,
            tree.parent,
            tree.left_child,
            tree.right_child,
        )
        aux = (tree.root, tree.height)
        return children, aux

    def unflatten(aux, children):
        root, height = aux
        (
            point_index,
            point_ids,
            coords,
            axis,
            parent,
            left_child,
            right_child,
        ) = children
        return KDTree(
            point_index=point_index,
            point_ids=point_ids,
            coords=coords,
            axis=axis,
            parent=parent,
            left_child=left_child,
            right_child=right_child,
            root=root,
            height=height,
        )

    jax.tree_util.register_pytree_node(KDTree, flatten, unflatten)
    setattr(KDTree, "_k3tree_pytree_registered", True)


_register_kdtree_pytree()


class NodeArena:
    """Host-side, growable node storage used while a tree is being built.

    A single writer owns the arena. Capacity doubles when full, and nodes are
    numbered in allocation order.
    """

    def __init__(self, capacity: int = _MIN_CAPACITY):
        capacity = max(int(capacity), 1)
        self.size = 0
        self.height = 0
        self.point_index = np.full((capacity,), NO_NODE, dtype=np.int64)
        self.point_ids = np.zeros((capacity,), dtype=np.int64)
        self.coords = np.zeros((capacity, NUM_AXES), dtype=np.float64)
        self.axis = np.zeros((capacity,), dtype=np.int64)
        self.parent = np.full((capacity,), NO_NODE, dtype=np.int64)
        self.left_child = np.full((capacity,), NO_NODE, dtype=np.int64)
        self.right_child = np.full((capacity,), NO_NODE, dtype=np.int64)

    @property
    def capacity(self) -> int:
        return int(self.parent.shape[0])

    @property
    def root(self) -> int:
        return 0 if self.size > 0 else NO_NODE

    def _grow(self) -> None:
        new_capacity = max(2 * self.capacity, _MIN_CAPACITY)

        def extend(arr: np.ndarray, fill) -> np.ndarray:
            out = np.full((new_capacity,) + arr.shape[1:], fill, dtype=arr.dtype)
            out[: self.size] = arr[: self.size]
            return out

        self.point_index = extend(self.point_index, NO_NODE)
        self.point_ids = extend(self.point_ids, 0)
        self.coords = extend(self.coords, 0.0)
        self.axis = extend(self.axis, 0)
        self.parent = extend(self.parent, NO_NODE)
        self.left_child = extend(self.left_child, NO_NODE)
        self.right_child = extend(self.right_child, NO_NODE)

    def allocate(
        self,
        point_index: int,
        point_id: int,
        coords,
        axis: int,
        parent: int = NO_NODE,
        depth: int = 0,
    ) -> int:
        """Append one node wrapping a point and return its index."""

        if self.size == self.capacity:
            self._grow()
        node = self.size
        self.point_index[node] = point_index
        self.point_ids[node] = point_id
        self.coords[node] = coords
        self.axis[node] = axis
        self.parent[node] = parent
        self.left_child[node] = NO_NODE
        self.right_child[node] = NO_NODE
        self.size = node + 1
        self.height = max(self.height, depth + 1)
        return node

    def attach(self, parent: int, child: int, right: bool) -> None:
        """Link ``child`` below ``parent`` on the requested side."""

        if right:
            self.right_child[parent] = child
        else:
            self.left_child[parent] = child
        self.parent[child] = parent

    def freeze(self) -> KDTree:
        """Copy the used part of the arena into an immutable :class:`KDTree`."""

        n = self.size
        logger.debug("Freezing node arena: nodes=%d, height=%d", n, self.height)
        return KDTree(
            point_index=jnp.asarray(self.point_index[:n], dtype=INDEX_DTYPE),
            point_ids=jnp.asarray(self.point_ids[:n], dtype=INDEX_DTYPE),
            coords=jnp.asarray(self.coords[:n], dtype=REAL_DTYPE),
            axis=jnp.asarray(self.axis[:n], dtype=INDEX_DTYPE),
            parent=jnp.asarray(self.parent[:n], dtype=INDEX_DTYPE),
            left_child=jnp.asarray(self.left_child[:n], dtype=INDEX_DTYPE),
            right_child=jnp.asarray(self.right_child[:n], dtype=INDEX_DTYPE),
            root=self.root,
            height=int(self.height),
        )

    @classmethod
    def thaw(cls, tree: KDTree) -> "NodeArena":
        """Return a writable arena holding a copy of ``tree``."""

        if tree.root not in (NO_NODE, 0):
            raise ValueError(f"arena trees are rooted at node 0; received root={tree.root}")
        n = tree.num_nodes
        arena = cls(capacity=max(2 * n, _MIN_CAPACITY))
        arena.point_index[:n] = np.asarray(tree.point_index)
        arena.point_ids[:n] = np.asarray(tree.point_ids)
        arena.coords[:n] = np.asarray(tree.coords)
        arena.axis[:n] = np.asarray(tree.axis)
        arena.parent[:n] = np.asarray(tree.parent)
        arena.left_child[:n] = np.asarray(tree.left_child)
        arena.right_child[:n] = np.asarray(tree.right_child)
        arena.size = n
        arena.height = int(tree.height)
        return arena


def empty_tree() -> KDTree:
    """Return a tree with no nodes."""

    return NodeArena(capacity=1).freeze()


__all__ = ["KDTree", "NodeArena", "empty_tree"]
