"""k3tree: exact nearest-neighbour and radius matching with a 3-d tree."""

from jax import config as _jax_config

# Coordinates and squared distances are compared in double precision.
_jax_config.update("jax_enable_x64", True)

from .arena import KDTree, NodeArena, empty_tree
from .build import build_balanced_tree, build_tree
from .diagnostics import (
    format_dot_tree,
    format_tree,
    node_depths,
    subtree_nodes,
    tree_height,
)
from .dtypes import INDEX_DTYPE, NO_NODE, REAL_DTYPE, as_index
from .errors import CapacityExceededError, EmptyTreeError, K3TreeError
from .insert import IncrementalKDTree, build_incremental_tree, insert_point
from .median import median_position, select_median
from .points import PointSet, as_point_set, make_point_set
from .query import (
    Match,
    NearestResult,
    RangeQueryConfig,
    RangeResult,
    RangeRetryEvent,
    find_in_radius,
    find_nearest,
    get_default_range_config,
    log_range_retry,
    set_default_range_config,
)
from .search import closest_leaf, in_range, nearest_neighbour

__all__ = [
    "CapacityExceededError",
    "EmptyTreeError",
    "INDEX_DTYPE",
    "IncrementalKDTree",
    "K3TreeError",
    "KDTree",
    "Match",
    "NO_NODE",
    "NearestResult",
    "NodeArena",
    "PointSet",
    "REAL_DTYPE",
    "RangeQueryConfig",
    "RangeResult",
    "RangeRetryEvent",
    "as_index",
    "as_point_set",
    "build_balanced_tree",
    "build_incremental_tree",
    "build_tree",
    "closest_leaf",
    "empty_tree",
    "find_in_radius",
    "find_nearest",
    "format_dot_tree",
    "format_tree",
    "get_default_range_config",
    "in_range",
    "insert_point",
    "log_range_retry",
    "make_point_set",
    "median_position",
    "nearest_neighbour",
    "node_depths",
    "select_median",
    "set_default_range_config",
    "subtree_nodes",
    "tree_height",
]
