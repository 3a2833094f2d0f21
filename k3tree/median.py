"""Median selection used by the balanced builder.

The builder calls :func:`select_median` once per node, so selection runs in
expected linear time (three-way quickselect) rather than sorting each slice.
Partition rounds are vectorized with NumPy on the host.
"""

from __future__ import annotations

import numpy as np


def median_position(lo: int, hi: int) -> int:
    """Return the slot that receives the (lower) median of ``[lo, hi)``."""

    return lo + (hi - lo - 1) // 2


def _median_of_three(keys: np.ndarray) -> float:
    first = keys[0]
    middle = keys[keys.shape[0] // 2]
    last = keys[-1]
    if first > middle:
        first, middle = middle, first
    if middle > last:
        middle = last
    return max(first, middle)


def select_median(order: np.ndarray, values: np.ndarray, lo: int, hi: int) -> int:
    """Partition ``order[lo:hi]`` in place around the median of ``values``.

    ``order`` holds row indices into ``values`` (one coordinate column of the
    point set). On return the slot :func:`median_position` holds the median
    row, rows before it have ``values <= median`` and rows after it have
    ``values >= median``. Ties are grouped with the pivot; their relative
    order is deterministic for a given input but otherwise unspecified.

    Returns:
        The row index stored at the median slot.
    """

    if hi <= lo:
        raise ValueError(f"cannot select a median from empty range [{lo}, {hi})")

    k = median_position(lo, hi)
    while hi - lo > 1:
        segment = order[lo:hi]
        keys = values[segment]
        pivot = _median_of_three(keys)

        below = keys < pivot
        above = keys > pivot
        equal = ~(below | above)
        n_below = int(np.count_nonzero(below))
        n_equal = int(np.count_nonzero(equal))

        order[lo:hi] = np.concatenate((segment[below], segment[equal], segment[above]))

        equal_start = lo + n_below
        equal_end = equal_start + n_equal
        if k < equal_start:
            hi = equal_start
        elif k >= equal_end:
            lo = equal_end
        else:
            break

    return int(order[k])


__all__ = ["median_position", "select_median"]
