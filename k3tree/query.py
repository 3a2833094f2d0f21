"""Public query entry points for matching query points against a tree.

``find_nearest`` maps each query to its closest indexed point. ``find_in_radius``
collects every indexed point strictly inside a squared radius. Both report
matches as rows of the caller's input (``indices``) together with the caller
identifiers (``ids``) and squared distances.

Range results are written to fixed-capacity buffers. When a query has more
matches than the buffer holds, the kernel is rerun once with a capacity equal
to the largest observed count, and the retry is reported through
``retry_logger``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import NamedTuple, Optional

import jax.numpy as jnp
import numpy as np
from beartype import beartype
from beartype.typing import Callable
from jaxtyping import Array, ArrayLike, jaxtyped

from .arena import KDTree
from .dtypes import NO_NODE
from .errors import CapacityExceededError, EmptyTreeError
from .search import in_range, nearest_neighbour

logger = logging.getLogger(__name__)

_DEFAULT_MAX_MATCHES = 64


@dataclass(frozen=True)
class RangeQueryConfig:
    """Buffer sizing for radius queries."""

    max_matches: int = _DEFAULT_MAX_MATCHES
    grow_on_overflow: bool = True


_GLOBAL_RANGE_CONFIG: Optional[RangeQueryConfig] = None


def _validate_range_config(config: RangeQueryConfig) -> RangeQueryConfig:
    if config.max_matches < 1:
        raise ValueError(f"max_matches must be >= 1, received {config.max_matches}")
    return config


def set_default_range_config(config: Optional[RangeQueryConfig]) -> None:
    """Set the module-level fallback configuration for radius queries."""

    global _GLOBAL_RANGE_CONFIG
    if config is not None:
        _validate_range_config(config)
    _GLOBAL_RANGE_CONFIG = config


def get_default_range_config() -> RangeQueryConfig:
    """Return the module-level configuration (or the built-in defaults)."""

    if _GLOBAL_RANGE_CONFIG is None:
        return RangeQueryConfig()
    return _GLOBAL_RANGE_CONFIG


class RangeRetryEvent(NamedTuple):
    """Metadata describing one radius-query capacity retry."""

    attempt: int
    capacity: int
    required: int
    status: str


def log_range_retry(
    event: RangeRetryEvent,
    *,
    level: int = logging.INFO,
    logger: Optional[logging.Logger] = None,
) -> None:
    """Log a retry event using the provided (or module) logger."""

    target_logger = logger or logging.getLogger(__name__)
    target_logger.log(
        level,
        "Radius query %s (attempt %d): capacity=%d, required=%d",
        event.status,
        event.attempt,
        event.capacity,
        event.required,
    )


class Match(NamedTuple):
    """One range-search match."""

    index: int
    id: int
    distance_sq: float


@dataclass(frozen=True)
class NearestResult:
    """Nearest indexed point for each query."""

    nodes: Array
    indices: Array
    ids: Array
    distances_sq: Array


@dataclass(frozen=True)
class RangeResult:
    """Matches within the squared radius for each query.

    Row ``i`` holds ``counts[i]`` matches in discovery order; the remaining
    columns are padding (``valid`` is ``False``, indices ``-1``, distances
    ``inf``).
    """

    counts: Array
    nodes: Array
    indices: Array
    ids: Array
    distances_sq: Array
    valid: Array

    @property
    def total(self) -> int:
        """Return the number of matches across all queries."""

        return int(jnp.sum(self.counts))

    def matches(self, query: int = 0) -> list[Match]:
        """Return the matches of one query as a list."""

        counts = np.atleast_1d(np.asarray(self.counts))
        if not 0 <= query < counts.shape[0]:
            raise IndexError(f"query {query} out of range for {counts.shape[0]} queries")
        count = int(counts[query])
        indices = np.asarray(self.indices).reshape(counts.shape[0], -1)[query, :count]
        ids = np.asarray(self.ids).reshape(counts.shape[0], -1)[query, :count]
        distances_sq = np.asarray(self.distances_sq).reshape(counts.shape[0], -1)[query, :count]
        return [
            Match(index=int(i), id=int(pid), distance_sq=float(d2))
            for i, pid, d2 in zip(indices, ids, distances_sq)
        ]


def _gather_points(tree: KDTree, nodes: Array) -> tuple[Array, Array]:
    """Map node indices to caller rows and ids, keeping ``-1`` for padding."""

    if tree.num_nodes == 0:
        missing = jnp.full(nodes.shape, NO_NODE, dtype=nodes.dtype)
        return missing, missing
    safe_nodes = jnp.clip(nodes, 0, tree.num_nodes - 1)
    present = nodes >= 0
    indices = jnp.where(present, tree.point_index[safe_nodes], NO_NODE)
    ids = jnp.where(present, tree.point_ids[safe_nodes], NO_NODE)
    return indices, ids


@jaxtyped(typechecker=beartype)
def find_nearest(tree: KDTree, query_points: ArrayLike) -> NearestResult:
    """Return the closest indexed point for each query point.

    Args:
        tree: Non-empty tree built by :func:`~k3tree.build.build_tree` or
            :class:`~k3tree.insert.IncrementalKDTree`.
        query_points: Shape ``(3,)`` or ``(n_queries, 3)``.

    Returns:
        A :class:`NearestResult` whose fields have shape ``()`` or
        ``(n_queries,)``.

    Raises:
        EmptyTreeError: If the tree holds no points.
    """

    if tree.is_empty:
        raise EmptyTreeError("find_nearest")
    nodes, distances_sq = nearest_neighbour(tree, query_points)
    indices, ids = _gather_points(tree, nodes)
    return NearestResult(nodes=nodes, indices=indices, ids=ids, distances_sq=distances_sq)


@jaxtyped(typechecker=beartype)
def find_in_radius(
    tree: KDTree,
    query_points: ArrayLike,
    radius_sq: ArrayLike,
    *,
    config: Optional[RangeQueryConfig] = None,
    retry_logger: Optional[Callable[[RangeRetryEvent], None]] = None,
) -> RangeResult:
    """Return every indexed point strictly inside ``radius_sq`` of each query.

    Args:
        tree: Tree to search; an empty tree yields zero matches.
        query_points: Shape ``(3,)`` or ``(n_queries, 3)``.
        radius_sq: Squared radius, scalar or one value per query. Values
            ``<= 0`` match nothing.
        config: Buffer sizing; defaults to :func:`get_default_range_config`.
        retry_logger: Called with a :class:`RangeRetryEvent` when the buffer
            overflows. Defaults to :func:`log_range_retry`.

    Returns:
        A :class:`RangeResult`; per-query fields have a trailing match axis
        whose length is the buffer capacity used.

    Raises:
        CapacityExceededError: If matches overflow the buffer and
            ``config.grow_on_overflow`` is ``False``.
    """

    cfg = _validate_range_config(config or get_default_range_config())
    emit = retry_logger or log_range_retry

    def _emit(event: RangeRetryEvent) -> None:
        try:
            emit(event)
        except Exception:  # pragma: no cover
            logger.exception("retry_logger raised", exc_info=True)

    capacity = int(cfg.max_matches)
    counts, nodes, distances_sq = in_range(tree, query_points, radius_sq, max_matches=capacity)
    required = int(jnp.max(counts)) if counts.size > 0 else 0
    if required > capacity:
        if not cfg.grow_on_overflow:
            _emit(RangeRetryEvent(attempt=1, capacity=capacity, required=required, status="overflow"))
            raise CapacityExceededError(capacity, required)
        _emit(RangeRetryEvent(attempt=1, capacity=capacity, required=required, status="retry"))
        capacity = required
        counts, nodes, distances_sq = in_range(
            tree, query_points, radius_sq, max_matches=capacity
        )

    indices, ids = _gather_points(tree, nodes)
    return RangeResult(
        counts=counts,
        nodes=nodes,
        indices=indices,
        ids=ids,
        distances_sq=distances_sq,
        valid=nodes >= 0,
    )


__all__ = [
    "Match",
    "NearestResult",
    "RangeQueryConfig",
    "RangeResult",
    "RangeRetryEvent",
    "find_in_radius",
    "find_nearest",
    "get_default_range_config",
    "log_range_retry",
    "set_default_range_config",
]
