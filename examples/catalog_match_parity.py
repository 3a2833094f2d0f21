"""Parity check for balanced vs incremental trees when matching two catalogs.

Builds both trees over a reference catalog, matches a second catalog against
them with nearest-neighbour and radius queries, and compares against a dense
brute-force reference.

    python examples/catalog_match_parity.py --n-reference 4096 --n-query 512
"""

from __future__ import annotations

import argparse
import logging

import jax
import jax.numpy as jnp

from k3tree import build_tree, find_in_radius, find_nearest


def _make_catalogs(
    n_reference: int,
    n_query: int,
    seed: int,
) -> tuple[jax.Array, jax.Array]:
    key = jax.random.PRNGKey(seed)
    k1, k2 = jax.random.split(key)
    reference = jax.random.uniform(k1, (n_reference, 3), minval=-1.0, maxval=1.0)
    queries = jax.random.uniform(k2, (n_query, 3), minval=-1.0, maxval=1.0)
    return reference, queries


def _dense_reference(
    reference: jax.Array,
    queries: jax.Array,
    radius_sq: float,
) -> tuple[jax.Array, jax.Array]:
    delta = queries[:, None, :] - reference[None, :, :]
    d2 = jnp.sum(delta * delta, axis=-1)
    return jnp.argmin(d2, axis=1), jnp.sum(d2 < radius_sq, axis=1)


def _match(tree, queries: jax.Array, radius_sq: float) -> tuple[jax.Array, jax.Array]:
    nearest = find_nearest(tree, queries)
    in_radius = find_in_radius(tree, queries, radius_sq)
    return nearest.indices, in_radius.counts


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--n-reference", type=int, default=4096)
    parser.add_argument("--n-query", type=int, default=512)
    parser.add_argument("--radius", type=float, default=0.1)
    parser.add_argument("--seed", type=int, default=0)
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    radius_sq = float(args.radius) ** 2
    reference, queries = _make_catalogs(args.n_reference, args.n_query, args.seed)
    dense_nearest, dense_counts = _dense_reference(reference, queries, radius_sq)

    balanced = build_tree(reference, mode="balanced")
    incremental = build_tree(reference, mode="incremental")
    bal_nearest, bal_counts = _match(balanced, queries, radius_sq)
    inc_nearest, inc_counts = _match(incremental, queries, radius_sq)

    print("jax:", jax.__version__)
    print("device:", jax.devices()[0])
    print("config:", vars(args))
    print(
        "tree_shapes:",
        {
            "balanced_height": balanced.height,
            "incremental_height": incremental.height,
            "nodes": balanced.num_nodes,
        },
    )
    print(
        "nearest_agreement_vs_dense:",
        {
            "balanced": float(jnp.mean(bal_nearest == dense_nearest)),
            "incremental": float(jnp.mean(inc_nearest == dense_nearest)),
        },
    )
    print(
        "radius_counts_vs_dense:",
        {
            "balanced_exact": bool(jnp.array_equal(bal_counts, dense_counts)),
            "incremental_exact": bool(jnp.array_equal(inc_counts, dense_counts)),
            "mean_matches": float(jnp.mean(dense_counts)),
        },
    )


if __name__ == "__main__":
    main()
