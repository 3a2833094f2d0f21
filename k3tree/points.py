"""Point-set input contract for tree construction."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

import jax
import jax.numpy as jnp
from beartype import beartype
from jaxtyping import Array, ArrayLike, jaxtyped

from .dtypes import INDEX_DTYPE, NUM_AXES, REAL_DTYPE


@dataclass(frozen=True)
class PointSet:
    """Caller points: one identifier and three coordinates per row."""

    ids: Array
    coords: Array

    @property
    def num_points(self) -> int:
        """Return the number of rows in the point set."""

        return int(self.coords.shape[0])

    def __len__(self) -> int:
        return self.num_points


def _register_point_set_pytree() -> None:
    if getattr(PointSet, "_k3tree_pytree_registered", False):
        return

    def flatten(points: PointSet):
        return (points.ids, points.coords), None

    def unflatten(_aux, children):
        ids, coords = children
        return PointSet(ids=ids, coords=coords)

    jax.tree_util.register_pytree_node(PointSet, flatten, unflatten)
    setattr(PointSet, "_k3tree_pytree_registered", True)


_register_point_set_pytree()


def _validate_coords(coords: ArrayLike) -> Array:
    coords_arr = jnp.asarray(coords, dtype=REAL_DTYPE)
    if coords_arr.ndim != 2 or coords_arr.shape[1] != NUM_AXES:
        raise ValueError(
            "points must have shape (n_points, 3); "
            f"received shape={tuple(coords_arr.shape)}"
        )
    if coords_arr.shape[0] > 0 and not bool(jnp.all(jnp.isfinite(coords_arr))):
        raise ValueError("point coordinates must be finite")
    return coords_arr


def _validate_ids(ids: ArrayLike, num_points: int) -> Array:
    ids_raw = jnp.asarray(ids)
    if ids_raw.ndim != 1 or ids_raw.shape[0] != num_points:
        raise ValueError(
            f"ids must have shape ({num_points},); received shape={tuple(ids_raw.shape)}"
        )
    if num_points > 0 and not jnp.issubdtype(ids_raw.dtype, jnp.integer):
        raise ValueError(f"ids must be integers; received dtype={ids_raw.dtype}")
    ids_arr = ids_raw.astype(INDEX_DTYPE)
    if num_points > 0 and bool(jnp.any(ids_arr < 0)):
        raise ValueError("ids must be non-negative")
    return ids_arr


@jaxtyped(typechecker=beartype)
def make_point_set(coords: ArrayLike, ids: Optional[ArrayLike] = None) -> PointSet:
    """Validate coordinates and identifiers into a :class:`PointSet`.

    Args:
        coords: Coordinates with shape ``(n_points, 3)``.
        ids: Optional non-negative integer identifiers with shape
            ``(n_points,)``. Defaults to the row numbers ``0..n_points-1``.
            Identifiers need not be unique.

    Returns:
        A point set holding ``float64`` coordinates and ``int64`` ids.
    """

    coords_arr = _validate_coords(coords)
    n = int(coords_arr.shape[0])
    if ids is None:
        ids_arr = jnp.arange(n, dtype=INDEX_DTYPE)
    else:
        ids_arr = _validate_ids(ids, n)
    return PointSet(ids=ids_arr, coords=coords_arr)


def as_point_set(
    points: Union[PointSet, ArrayLike],
    ids: Optional[ArrayLike] = None,
) -> PointSet:
    """Return ``points`` as a validated point set."""

    if isinstance(points, PointSet):
        if ids is not None:
            raise ValueError("ids cannot be passed together with a PointSet")
        return points
    return make_point_set(points, ids)


__all__ = ["PointSet", "as_point_set", "make_point_set"]
