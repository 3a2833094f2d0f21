"""Tests for balanced tree construction."""

import math

import jax
import jax.numpy as jnp
import numpy as np
import pytest

from k3tree import (
    NO_NODE,
    build_balanced_tree,
    build_tree,
    make_point_set,
    node_depths,
    subtree_nodes,
    tree_height,
)


def _sample_points(n: int = 32, seed: int = 123) -> jnp.ndarray:
    key = jax.random.PRNGKey(seed)
    return jax.random.uniform(key, (n, 3), minval=-1.0, maxval=1.0, dtype=jnp.float64)


@pytest.mark.parametrize("n", [1, 2, 3, 4, 5, 8, 31, 32, 33, 100, 257])
def test_balanced_height_is_logarithmic(n):
    tree = build_balanced_tree(_sample_points(n, seed=n))

    expected = int(math.floor(math.log2(n))) + 1
    assert tree.height == expected
    assert tree_height(tree) == expected
    assert expected == int(math.ceil(math.log2(n + 1)))


@pytest.mark.parametrize("n", [1, 6, 47, 200])
def test_axis_cycles_with_depth(n):
    tree = build_balanced_tree(_sample_points(n, seed=2 * n))

    depths = node_depths(tree)
    assert np.array_equal(np.asarray(tree.axis), depths % 3)


def test_start_axis_offsets_cycle():
    tree = build_balanced_tree(_sample_points(40), axis=2)

    depths = node_depths(tree)
    assert np.array_equal(np.asarray(tree.axis), (depths + 2) % 3)


@pytest.mark.parametrize("seed", [0, 1, 2])
def test_split_invariant_holds_for_every_node(seed):
    rng = np.random.default_rng(seed)
    # Integer grid coordinates force plenty of ties on each axis.
    coords = rng.integers(0, 6, size=(150, 3)).astype(np.float64)
    tree = build_balanced_tree(coords)

    node_coords = np.asarray(tree.coords)
    axes = np.asarray(tree.axis)
    left_child = np.asarray(tree.left_child)
    right_child = np.asarray(tree.right_child)
    for node in range(tree.num_nodes):
        a = axes[node]
        value = node_coords[node, a]
        left = subtree_nodes(tree, int(left_child[node]))
        right = subtree_nodes(tree, int(right_child[node]))
        assert np.all(node_coords[left, a] <= value)
        assert np.all(node_coords[right, a] >= value)


def test_subtree_sizes_differ_by_at_most_one():
    tree = build_balanced_tree(_sample_points(77))

    left_child = np.asarray(tree.left_child)
    right_child = np.asarray(tree.right_child)
    for node in range(tree.num_nodes):
        n_left = subtree_nodes(tree, int(left_child[node])).shape[0]
        n_right = subtree_nodes(tree, int(right_child[node])).shape[0]
        assert 0 <= n_right - n_left <= 1


def test_links_form_a_single_rooted_tree():
    tree = build_balanced_tree(_sample_points(64))

    parent = np.asarray(tree.parent)
    left_child = np.asarray(tree.left_child)
    right_child = np.asarray(tree.right_child)
    assert tree.root == 0
    assert parent[0] == NO_NODE
    assert np.count_nonzero(parent == NO_NODE) == 1
    for node in range(1, tree.num_nodes):
        p = parent[node]
        assert node in (left_child[p], right_child[p])
    assert sorted(subtree_nodes(tree, 0).tolist()) == list(range(64))


def test_nodes_are_allocated_in_preorder():
    tree = build_balanced_tree(_sample_points(45))

    left_child = np.asarray(tree.left_child)
    right_child = np.asarray(tree.right_child)
    for node in range(tree.num_nodes):
        left = int(left_child[node])
        right = int(right_child[node])
        if left != NO_NODE:
            assert left == node + 1
        if right != NO_NODE:
            n_left = subtree_nodes(tree, left).shape[0]
            assert right == node + 1 + n_left


def test_tree_keeps_caller_ids_and_rows():
    coords = np.asarray(_sample_points(20))
    ids = np.arange(100, 120, dtype=np.int64)
    tree = build_tree(coords, ids)

    point_index = np.asarray(tree.point_index)
    assert sorted(point_index.tolist()) == list(range(20))
    assert np.array_equal(np.asarray(tree.point_ids), ids[point_index])
    assert np.allclose(np.asarray(tree.coords), coords[point_index])


def test_build_accepts_point_set_with_duplicate_ids():
    points = make_point_set(np.asarray(_sample_points(5)), np.asarray([7, 7, 7, 1, 1]))
    tree = build_tree(points)

    assert tree.num_nodes == 5
    assert sorted(np.asarray(tree.point_ids).tolist()) == [1, 1, 7, 7, 7]


def test_build_from_zero_points_is_empty():
    tree = build_tree(np.zeros((0, 3)))

    assert tree.is_empty
    assert tree.root == NO_NODE
    assert tree.num_nodes == 0
    assert tree.height == 0
    assert tree_height(tree) == 0


def test_single_point_tree():
    tree = build_tree(np.asarray([[1.0, 2.0, 3.0]]), np.asarray([42]))

    assert tree.num_nodes == 1
    assert tree.height == 1
    assert int(tree.point_ids[0]) == 42
    assert int(tree.left_child[0]) == NO_NODE
    assert int(tree.right_child[0]) == NO_NODE


def test_build_rejects_bad_inputs():
    with pytest.raises(ValueError, match=r"shape \(n_points, 3\)"):
        build_tree(np.zeros((4, 2)))
    with pytest.raises(ValueError, match="finite"):
        build_tree(np.asarray([[0.0, np.nan, 1.0]]))
    with pytest.raises(ValueError, match="ids must have shape"):
        build_tree(np.zeros((3, 3)), np.asarray([1, 2]))
    with pytest.raises(ValueError, match="non-negative"):
        build_tree(np.zeros((2, 3)), np.asarray([1, -2]))
    with pytest.raises(ValueError, match="integers"):
        build_tree(np.zeros((2, 3)), np.asarray([1.5, 2.0]))
    with pytest.raises(ValueError, match="Unsupported build mode"):
        build_tree(np.zeros((2, 3)), mode="octree")
    with pytest.raises(ValueError, match="axis must be"):
        build_balanced_tree(np.zeros((2, 3)), axis=3)


def test_tree_is_a_pytree():
    tree = build_tree(np.asarray(_sample_points(10)))

    leaves, treedef = jax.tree_util.tree_flatten(tree)
    rebuilt = jax.tree_util.tree_unflatten(treedef, leaves)

    assert len(leaves) == 7
    assert rebuilt.root == tree.root
    assert rebuilt.height == tree.height
    assert jnp.array_equal(rebuilt.coords, tree.coords)
