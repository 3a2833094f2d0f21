"""Tests for incremental insertion."""

import numpy as np
import pytest

from k3tree import (
    NO_NODE,
    IncrementalKDTree,
    build_balanced_tree,
    build_tree,
    insert_point,
    node_depths,
    subtree_nodes,
)


def _scenario_points():
    coords = np.asarray(
        [
            [0.0, 0.0, 0.0],
            [1.0, 0.0, 0.0],
            [0.0, 1.0, 0.0],
            [5.0, 5.0, 5.0],
        ]
    )
    ids = np.asarray([1, 2, 3, 4])
    return coords, ids


def test_insert_into_empty_tree_creates_root():
    builder = IncrementalKDTree()

    root = builder.insert(9, [1.0, 2.0, 3.0])

    tree = builder.tree
    assert root == 0
    assert tree.num_nodes == 1
    assert int(tree.axis[0]) == 0
    assert int(tree.parent[0]) == NO_NODE
    assert int(tree.point_ids[0]) == 9


def test_insert_descends_with_strict_less_than():
    coords, ids = _scenario_points()
    builder = IncrementalKDTree()
    for point_id, value in zip(ids, coords):
        builder.insert(int(point_id), value)
    tree = builder.tree

    # (0,1,0) ties the root on x, so it goes right like (1,0,0).
    right = np.asarray(tree.right_child)
    left = np.asarray(tree.left_child)
    assert right[0] == 1
    assert left[0] == NO_NODE
    assert right[1] == 2
    assert right[2] == 3
    assert np.asarray(tree.axis).tolist() == [0, 1, 2, 0]
    assert np.asarray(tree.parent).tolist() == [NO_NODE, 0, 1, 2]
    assert tree.height == 4


def test_node_axis_matches_insertion_depth():
    rng = np.random.default_rng(3)
    coords = rng.normal(size=(300, 3))
    tree = build_tree(coords, mode="incremental")

    depths = node_depths(tree)
    assert np.array_equal(np.asarray(tree.axis), depths % 3)
    assert tree.height == int(depths.max()) + 1


def test_incremental_ordering_invariant():
    rng = np.random.default_rng(4)
    coords = rng.integers(0, 4, size=(120, 3)).astype(np.float64)
    tree = build_tree(coords, mode="incremental")

    node_coords = np.asarray(tree.coords)
    axes = np.asarray(tree.axis)
    for node in range(tree.num_nodes):
        a = axes[node]
        left = subtree_nodes(tree, int(tree.left_child[node]))
        right = subtree_nodes(tree, int(tree.right_child[node]))
        assert np.all(node_coords[left, a] < node_coords[node, a])
        assert np.all(node_coords[right, a] >= node_coords[node, a])


def test_sorted_insertion_degenerates_to_a_chain():
    coords = np.repeat(np.arange(50, dtype=np.float64)[:, None], 3, axis=1)
    tree = build_tree(coords, mode="incremental")

    assert tree.height == 50
    assert np.all(np.asarray(tree.left_child) == NO_NODE)


def test_insert_point_is_functional():
    coords, ids = _scenario_points()
    tree = None
    for point_id, value in zip(ids, coords):
        tree = insert_point(tree, int(point_id), value)

    grown = insert_point(tree, 5, np.asarray([-1.0, 0.0, 0.0]))

    assert tree.num_nodes == 4
    assert grown.num_nodes == 5
    assert int(grown.left_child[0]) == 4
    assert int(grown.point_index[4]) == 4
    assert int(grown.point_ids[4]) == 5


def test_insert_point_accepts_numpy_integer_ids():
    coords, ids = _scenario_points()
    tree = None
    for point_id, value in zip(np.asarray(ids, dtype=np.int64), coords):
        tree = insert_point(tree, point_id, value)

    assert tree.num_nodes == 4
    assert np.array_equal(np.asarray(tree.point_ids), ids)
    assert int(tree.right_child[0]) == 1


def test_insert_continues_a_balanced_tree():
    rng = np.random.default_rng(5)
    coords = rng.normal(size=(31, 3))
    base = build_balanced_tree(coords)
    builder = IncrementalKDTree.from_tree(base)

    builder.insert(99, [10.0, 10.0, 10.0])

    tree = builder.tree
    assert tree.num_nodes == 32
    assert int(tree.point_ids[31]) == 99
    assert int(tree.point_index[31]) == 31
    assert tree.height >= base.height
    assert base.num_nodes == 31


def test_insert_rejects_non_zero_root_axis():
    tree = build_balanced_tree(np.eye(3), axis=1)
    with pytest.raises(ValueError, match="axis 0"):
        IncrementalKDTree.from_tree(tree)


def test_insert_rejects_bad_points():
    builder = IncrementalKDTree()
    with pytest.raises(ValueError, match=r"shape \(3,\)"):
        builder.insert(0, [1.0, 2.0])
    with pytest.raises(ValueError, match="finite"):
        builder.insert(0, [1.0, np.inf, 2.0])
    with pytest.raises(ValueError, match="non-negative"):
        builder.insert(-1, [1.0, 2.0, 3.0])
    assert len(builder) == 0


def test_arena_grows_past_initial_capacity():
    builder = IncrementalKDTree(capacity=2)
    rng = np.random.default_rng(6)
    for i, value in enumerate(rng.normal(size=(40, 3))):
        builder.insert(i, value)

    assert builder.num_nodes == 40
    assert sorted(np.asarray(builder.tree.point_index).tolist()) == list(range(40))
