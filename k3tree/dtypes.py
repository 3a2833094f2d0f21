"""Local dtype policy for k3tree contracts."""

import jax.numpy as jnp

# Node, parent/child and point-row indices share one integer dtype.
INDEX_DTYPE = jnp.int64
REAL_DTYPE = jnp.float64

# Sentinel for an absent parent/child link or an empty tree root.
NO_NODE = -1

NUM_AXES = 3


def as_index(x):
    """Convert a scalar/array to the k3tree index dtype."""
    return jnp.asarray(x, dtype=INDEX_DTYPE)


def as_real(x):
    """Convert a scalar/array to the k3tree coordinate dtype."""
    return jnp.asarray(x, dtype=REAL_DTYPE)


__all__ = ["INDEX_DTYPE", "NO_NODE", "NUM_AXES", "REAL_DTYPE", "as_index", "as_real"]
