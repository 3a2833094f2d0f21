"""Tests for in-place median selection."""

import numpy as np
import pytest

from k3tree import median_position, select_median


@pytest.mark.parametrize("n", [1, 2, 3, 4, 7, 10, 33, 128])
def test_select_median_partitions_around_lower_median(n):
    rng = np.random.default_rng(n)
    values = rng.normal(size=n)
    order = np.arange(n, dtype=np.int64)

    row = select_median(order, values, 0, n)

    k = median_position(0, n)
    assert order[k] == row
    assert values[row] == np.sort(values)[(n - 1) // 2]
    assert np.all(values[order[:k]] <= values[row])
    assert np.all(values[order[k + 1 :]] >= values[row])
    assert sorted(order.tolist()) == list(range(n))


def test_select_median_only_touches_requested_range():
    values = np.asarray([9.0, 8.0, 3.0, 1.0, 2.0, 0.0, -1.0])
    order = np.arange(7, dtype=np.int64)

    row = select_median(order, values, 2, 5)

    assert row == 4
    assert order[:2].tolist() == [0, 1]
    assert order[5:].tolist() == [5, 6]
    assert order[median_position(2, 5)] == 4


def test_select_median_handles_ties():
    values = np.asarray([2.0, 1.0, 2.0, 2.0, 1.0, 2.0, 3.0, 2.0])
    order = np.arange(values.shape[0], dtype=np.int64)

    row = select_median(order, values, 0, values.shape[0])

    k = median_position(0, values.shape[0])
    assert values[row] == 2.0
    assert np.all(values[order[:k]] <= 2.0)
    assert np.all(values[order[k + 1 :]] >= 2.0)


def test_select_median_is_deterministic():
    rng = np.random.default_rng(7)
    values = rng.integers(0, 5, size=64).astype(np.float64)
    first = np.arange(64, dtype=np.int64)
    second = np.arange(64, dtype=np.int64)

    select_median(first, values, 0, 64)
    select_median(second, values, 0, 64)

    assert np.array_equal(first, second)


def test_select_median_rejects_empty_range():
    order = np.arange(3, dtype=np.int64)
    with pytest.raises(ValueError, match="empty range"):
        select_median(order, np.zeros(3), 2, 2)
