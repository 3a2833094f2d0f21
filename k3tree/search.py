"""Exact query kernels over a :class:`~k3tree.arena.KDTree`.

Every kernel is a ``jax.lax.while_loop`` over node indices, vmapped over the
query batch and compiled with ``jax.jit``. Branches that a recursive
formulation would descend into are kept on explicit fixed-size stacks sized
by ``tree.height``, so unbalanced trees from incremental insertion cannot
exhaust the Python or XLA call stack.
"""

from __future__ import annotations

from functools import partial
from typing import Optional

import jax
import jax.numpy as jnp
from beartype import beartype
from jaxtyping import Array, ArrayLike, jaxtyped

from .arena import KDTree
from .dtypes import INDEX_DTYPE, NO_NODE, NUM_AXES, REAL_DTYPE, as_index
from .errors import EmptyTreeError


def _squared_distance(a: Array, b: Array) -> Array:
    delta = a - b
    return jnp.sum(delta * delta, axis=-1)


def _validate_queries(queries: ArrayLike) -> tuple[Array, bool]:
    """Return ``(queries as (m, 3), whether a single (3,) query was given)``."""

    queries_arr = jnp.asarray(queries, dtype=REAL_DTYPE)
    if queries_arr.ndim == 1 and queries_arr.shape[0] == NUM_AXES:
        return queries_arr[None, :], True
    if queries_arr.ndim != 2 or queries_arr.shape[1] != NUM_AXES:
        raise ValueError(
            "queries must have shape (3,) or (n_queries, 3); "
            f"received shape={tuple(queries_arr.shape)}"
        )
    return queries_arr, False


def _resolve_root(tree: KDTree, root: Optional[int]) -> int:
    if root is None:
        return int(tree.root)
    root_int = int(root)
    if root_int != NO_NODE and not (0 <= root_int < tree.num_nodes):
        raise ValueError(
            f"root must be a node index in [0, {tree.num_nodes}) or -1; received {root_int}"
        )
    return root_int


def _stack_capacity(tree: KDTree) -> int:
    return max(int(tree.height), 1)


def _closest_leaf_single(tree: KDTree, query: Array, start: Array) -> Array:
    """Walk down from ``start`` and return the last node visited."""

    coords = tree.coords
    axes = tree.axis
    left_child = tree.left_child
    right_child = tree.right_child

    def cond_fun(state):
        current, _closest = state
        return current >= 0

    def body_fun(state):
        current, _closest = state
        axis = axes[current]
        go_right = query[axis] > coords[current, axis]
        next_node = jnp.where(go_right, right_child[current], left_child[current])
        return next_node, current

    start = as_index(start)
    _current, closest = jax.lax.while_loop(cond_fun, body_fun, (start, start))
    return closest


def _nearest_single(
    tree: KDTree,
    query: Array,
    start: Array,
    *,
    max_frames: int,
) -> tuple[Array, Array]:
    """Backtracking nearest-neighbour search below ``start``.

    A frame ``(subtree_root, node, last)`` is one upward walk from a closest
    leaf toward ``subtree_root``; ``last`` is the child the walk came from.
    When the splitting plane of ``node`` is nearer than the best distance, a
    new frame is pushed for the child that is not ``last``. A frame whose walk
    has just processed its own root is popped (or replaced by the frame it
    pushes). Nested frames root strictly deeper subtrees, so at most
    ``tree.height`` frames are live.
    """

    coords = tree.coords
    axes = tree.axis
    parent = tree.parent
    left_child = tree.left_child
    right_child = tree.right_child

    start = as_index(start)
    seed = _closest_leaf_single(tree, query, start)

    frame_roots = jnp.full((max_frames,), NO_NODE, dtype=INDEX_DTYPE).at[0].set(start)
    frame_nodes = jnp.full((max_frames,), NO_NODE, dtype=INDEX_DTYPE).at[0].set(seed)
    frame_lasts = jnp.full((max_frames,), NO_NODE, dtype=INDEX_DTYPE)
    top = as_index(0)
    best = seed
    best_d2 = _squared_distance(coords[seed], query)

    def cond_fun(state):
        return state[3] >= 0

    def body_fun(state):
        roots, nodes, lasts, top, best, best_d2 = state
        subtree_root = roots[top]
        current = nodes[top]
        last = lasts[top]

        d2 = _squared_distance(coords[current], query)
        closer = d2 < best_d2
        best = jnp.where(closer, current, best)
        best_d2 = jnp.where(closer, d2, best_d2)

        axis = axes[current]
        plane = coords[current, axis] - query[axis]
        left = left_child[current]
        right = right_child[current]
        opposite = jnp.where(
            last == left,
            right,
            jnp.where(last == right, left, as_index(NO_NODE)),
        )
        descend = (plane * plane < best_d2) & (opposite >= 0)

        nodes = nodes.at[top].set(parent[current])
        lasts = lasts.at[top].set(current)
        top = jnp.where(current == subtree_root, top - 1, top)

        def push(frames):
            f_roots, f_nodes, f_lasts, f_top = frames
            f_top = f_top + 1
            leaf = _closest_leaf_single(tree, query, opposite)
            return (
                f_roots.at[f_top].set(opposite),
                f_nodes.at[f_top].set(leaf),
                f_lasts.at[f_top].set(as_index(NO_NODE)),
                f_top,
            )

        roots, nodes, lasts, top = jax.lax.cond(
            descend,
            push,
            lambda frames: frames,
            (roots, nodes, lasts, top),
        )
        return roots, nodes, lasts, top, best, best_d2

    _roots, _nodes, _lasts, _top, best, best_d2 = jax.lax.while_loop(
        cond_fun,
        body_fun,
        (frame_roots, frame_nodes, frame_lasts, top, best, best_d2),
    )
    return best, best_d2


def _range_single(
    tree: KDTree,
    query: Array,
    radius_sq: Array,
    start: Array,
    *,
    stack_size: int,
    max_matches: int,
) -> tuple[Array, Array, Array]:
    """Collect every node strictly inside ``radius_sq`` of ``query``.

    When the query sphere crosses a node's splitting plane the opposite child
    is visited next and the same-side child waits on the stack, which yields
    the depth-first discovery order of the recursive search. Matches past
    ``max_matches`` are counted but not stored.
    """

    coords = tree.coords
    axes = tree.axis
    left_child = tree.left_child
    right_child = tree.right_child

    stack = jnp.full((stack_size,), NO_NODE, dtype=INDEX_DTYPE)
    stack_top = as_index(0)
    match_nodes = jnp.full((max_matches,), NO_NODE, dtype=INDEX_DTYPE)
    match_d2 = jnp.full((max_matches,), jnp.inf, dtype=REAL_DTYPE)
    count = as_index(0)

    def cond_fun(state):
        current, _stack, stack_top, _nodes, _d2, _count = state
        return (current >= 0) | (stack_top > 0)

    def body_fun(state):
        current, stack, stack_top, nodes, d2s, count = state
        from_stack = current < 0
        stack_top = jnp.where(from_stack, stack_top - 1, stack_top)
        current = jnp.where(from_stack, stack[stack_top], current)

        delta = coords[current] - query
        delta_sq = delta * delta
        d2 = jnp.sum(delta_sq)
        is_match = d2 < radius_sq
        slot = jnp.minimum(count, max_matches - 1)
        store = is_match & (count < max_matches)
        nodes = nodes.at[slot].set(jnp.where(store, current, nodes[slot]))
        d2s = d2s.at[slot].set(jnp.where(store, d2, d2s[slot]))
        count = count + is_match.astype(INDEX_DTYPE)

        axis = axes[current]
        go_right = query[axis] > coords[current, axis]
        same = jnp.where(go_right, right_child[current], left_child[current])
        opposite = jnp.where(go_right, left_child[current], right_child[current])
        crosses = (delta_sq[axis] < radius_sq) & (opposite >= 0)

        defer = crosses & (same >= 0)
        push_slot = jnp.minimum(stack_top, stack_size - 1)
        stack = stack.at[push_slot].set(jnp.where(defer, same, stack[push_slot]))
        stack_top = stack_top + defer.astype(INDEX_DTYPE)
        next_node = jnp.where(crosses, opposite, same)
        return next_node, stack, stack_top, nodes, d2s, count

    _current, _stack, _top, match_nodes, match_d2, count = jax.lax.while_loop(
        cond_fun,
        body_fun,
        (as_index(start), stack, stack_top, match_nodes, match_d2, count),
    )
    return count, match_nodes, match_d2


@jax.jit
def _closest_leaf_kernel(tree: KDTree, queries: Array, start: Array) -> Array:
    return jax.vmap(lambda q: _closest_leaf_single(tree, q, start))(queries)


@partial(jax.jit, static_argnames=("max_frames",))
def _nearest_kernel(
    tree: KDTree,
    queries: Array,
    start: Array,
    *,
    max_frames: int,
) -> tuple[Array, Array]:
    return jax.vmap(
        lambda q: _nearest_single(tree, q, start, max_frames=max_frames)
    )(queries)


@partial(jax.jit, static_argnames=("stack_size", "max_matches"))
def _range_kernel(
    tree: KDTree,
    queries: Array,
    radius_sq: Array,
    start: Array,
    *,
    stack_size: int,
    max_matches: int,
) -> tuple[Array, Array, Array]:
    return jax.vmap(
        lambda q, r: _range_single(
            tree,
            q,
            r,
            start,
            stack_size=stack_size,
            max_matches=max_matches,
        )
    )(queries, radius_sq)


@jaxtyped(typechecker=beartype)
def closest_leaf(
    tree: KDTree,
    queries: ArrayLike,
    *,
    root: Optional[int] = None,
) -> Array:
    """Return the node reached by a single descent for each query.

    At each node the walk goes right when the query coordinate on the node's
    axis is strictly greater than the node's, left otherwise. The result seeds
    :func:`nearest_neighbour` and is not itself guaranteed to be nearest.

    Args:
        tree: Tree to descend.
        queries: Query points with shape ``(3,)`` or ``(n_queries, 3)``.
        root: Subtree root to start from; defaults to the tree root.

    Returns:
        Node indices with shape ``()`` or ``(n_queries,)``.
    """

    queries_arr, single = _validate_queries(queries)
    start = _resolve_root(tree, root)
    if start == NO_NODE:
        raise EmptyTreeError("closest_leaf")
    leaves = _closest_leaf_kernel(tree, queries_arr, as_index(start))
    return leaves[0] if single else leaves


@jaxtyped(typechecker=beartype)
def nearest_neighbour(
    tree: KDTree,
    queries: ArrayLike,
    *,
    root: Optional[int] = None,
) -> tuple[Array, Array]:
    """Exact nearest node below ``root`` for each query.

    Starts from :func:`closest_leaf` and backtracks toward ``root``, searching
    the far side of a splitting plane only when the plane is strictly nearer
    than the best squared distance so far. On equal distances the candidate
    found first is kept.

    Args:
        tree: Non-empty tree to search.
        queries: Query points with shape ``(3,)`` or ``(n_queries, 3)``.
        root: Subtree root to search; defaults to the tree root.

    Returns:
        Tuple ``(nodes, distances_sq)`` with shapes ``()`` or ``(n_queries,)``.

    Raises:
        EmptyTreeError: If the tree (or the requested subtree) is empty.
    """

    queries_arr, single = _validate_queries(queries)
    start = _resolve_root(tree, root)
    if start == NO_NODE:
        raise EmptyTreeError("nearest_neighbour")
    nodes, distances_sq = _nearest_kernel(
        tree,
        queries_arr,
        as_index(start),
        max_frames=_stack_capacity(tree),
    )
    if single:
        return nodes[0], distances_sq[0]
    return nodes, distances_sq


def _prepare_radius(queries_arr: Array, radius_sq: ArrayLike) -> Array:
    radius_arr = jnp.asarray(radius_sq, dtype=REAL_DTYPE)
    n_queries = int(queries_arr.shape[0])
    if radius_arr.ndim == 0:
        return jnp.broadcast_to(radius_arr, (n_queries,))
    if radius_arr.ndim == 1 and radius_arr.shape[0] == n_queries:
        return radius_arr
    raise ValueError(
        "radius_sq must be a scalar or have shape (n_queries,); "
        f"received shape={tuple(radius_arr.shape)} for n_queries={n_queries}"
    )


@jaxtyped(typechecker=beartype)
def in_range(
    tree: KDTree,
    queries: ArrayLike,
    radius_sq: ArrayLike,
    *,
    max_matches: int,
    root: Optional[int] = None,
) -> tuple[Array, Array, Array]:
    """Collect nodes whose squared distance to each query is below ``radius_sq``.

    Args:
        tree: Tree to search; an empty tree (or ``root=-1``) gives no matches.
        queries: Query points with shape ``(3,)`` or ``(n_queries, 3)``.
        radius_sq: Squared radius, scalar or one per query. Values ``<= 0``
            match nothing.
        max_matches: Rows reserved per query for matches.
        root: Subtree root to search; defaults to the tree root.

    Returns:
        Tuple ``(counts, nodes, distances_sq)``. ``counts`` is the true match
        count per query and may exceed ``max_matches``; ``nodes`` and
        ``distances_sq`` hold the first ``min(count, max_matches)`` matches in
        discovery order, padded with ``-1`` and ``inf``.
    """

    if max_matches < 1:
        raise ValueError(f"max_matches must be >= 1, received {max_matches}")
    queries_arr, single = _validate_queries(queries)
    radius_arr = _prepare_radius(queries_arr, radius_sq)
    start = _resolve_root(tree, root)
    n_queries = int(queries_arr.shape[0])

    if start == NO_NODE:
        counts = jnp.zeros((n_queries,), dtype=INDEX_DTYPE)
        nodes = jnp.full((n_queries, max_matches), NO_NODE, dtype=INDEX_DTYPE)
        distances_sq = jnp.full((n_queries, max_matches), jnp.inf, dtype=REAL_DTYPE)
    else:
        counts, nodes, distances_sq = _range_kernel(
            tree,
            queries_arr,
            radius_arr,
            as_index(start),
            stack_size=_stack_capacity(tree),
            max_matches=int(max_matches),
        )
    if single:
        return counts[0], nodes[0], distances_sq[0]
    return counts, nodes, distances_sq


__all__ = ["closest_leaf", "in_range", "nearest_neighbour"]
