"""Inspection helpers: text dumps and structural measurements of a tree."""

from __future__ import annotations

import numpy as np

from .arena import KDTree
from .dtypes import NO_NODE


def _preorder(tree: KDTree) -> list[int]:
    if tree.is_empty:
        return []
    left_child = np.asarray(tree.left_child)
    right_child = np.asarray(tree.right_child)
    order: list[int] = []
    stack = [int(tree.root)]
    while stack:
        node = stack.pop()
        order.append(node)
        if right_child[node] != NO_NODE:
            stack.append(int(right_child[node]))
        if left_child[node] != NO_NODE:
            stack.append(int(left_child[node]))
    return order


def format_tree(tree: KDTree) -> str:
    """Return one ``id x y z`` line per node in preorder."""

    ids = np.asarray(tree.point_ids)
    coords = np.asarray(tree.coords)
    lines = [
        f"{ids[node]} {coords[node, 0]:f} {coords[node, 1]:f} {coords[node, 2]:f}"
        for node in _preorder(tree)
    ]
    return "\n".join(lines)


def format_dot_tree(tree: KDTree, *, name: str = "kdtree") -> str:
    """Return the tree as a Graphviz digraph keyed by point id."""

    ids = np.asarray(tree.point_ids)
    coords = np.asarray(tree.coords)
    left_child = np.asarray(tree.left_child)
    right_child = np.asarray(tree.right_child)

    lines = [f"digraph {name} {{"]
    for node in _preorder(tree):
        for child in (left_child[node], right_child[node]):
            if child != NO_NODE:
                lines.append(f"  {ids[node]} -> {ids[child]};")
        x, y, z = coords[node]
        lines.append(f'  {ids[node]} [label="{ids[node]}\\n {x:f} {y:f} {z:f}"];')
    lines.append("}")
    return "\n".join(lines)


def node_depths(tree: KDTree) -> np.ndarray:
    """Return the depth of every node (root at depth 0)."""

    depths = np.full((tree.num_nodes,), -1, dtype=np.int64)
    parent = np.asarray(tree.parent)
    for node in _preorder(tree):
        p = parent[node]
        depths[node] = 0 if p == NO_NODE else depths[p] + 1
    return depths


def tree_height(tree: KDTree) -> int:
    """Return the number of node levels on the longest root-to-leaf path."""

    if tree.is_empty:
        return 0
    return int(node_depths(tree).max()) + 1


def subtree_nodes(tree: KDTree, root: int) -> np.ndarray:
    """Return the node indices of the subtree rooted at ``root``."""

    if root == NO_NODE:
        return np.zeros((0,), dtype=np.int64)
    left_child = np.asarray(tree.left_child)
    right_child = np.asarray(tree.right_child)
    nodes = []
    stack = [int(root)]
    while stack:
        node = stack.pop()
        nodes.append(node)
        for child in (left_child[node], right_child[node]):
            if child != NO_NODE:
                stack.append(int(child))
    return np.asarray(nodes, dtype=np.int64)


__all__ = [
    "format_dot_tree",
    "format_tree",
    "node_depths",
    "subtree_nodes",
    "tree_height",
]
