"""
Split searches over a single feature column.

Each splitter takes one feature's values at a node, the node targets and
the node impurity, and proposes a threshold. Scoring is delegated to the
criterion the splitter was built with.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from .criterion import Criterion


@dataclass
class SplitRecord:
    """
    Candidate split of one feature.

    Attributes
    ----------
    gain : float
        Impurity reduction (or boosting gain) of the split.
    threshold : float
        Samples with ``value <= threshold`` go left.
    left_impurity : float
        Impurity of the left child.
    right_impurity : float
        Impurity of the right child.
    """
    gain: float
    threshold: float
    left_impurity: float = 0.0
    right_impurity: float = 0.0


# =============================================================================
# Deterministic Search
# =============================================================================

class BestSplitter:
    """
    Exhaustive search over midpoints of adjacent distinct values.

    Every distinct-value boundary is scored in a single vectorized pass.
    Among equal gains the lowest threshold wins. Only strictly positive
    gains are reported.

    The tree builder hands over columns already in ascending order
    (``presorted=True``), so no sort happens inside the node loop; other
    callers pass raw columns and the column is sorted here.
    """

    presorted = True

    def __init__(self, criterion: Criterion):
        self.criterion = criterion

    def split(
        self,
        values: np.ndarray,
        target: np.ndarray,
        impurity: float,
        rng: np.random.Generator,
        presorted: bool = False,
    ) -> Optional[SplitRecord]:
        if presorted:
            sorted_values, sorted_target = values, target
        else:
            order = np.argsort(values, kind="stable")
            sorted_values, sorted_target = values[order], target[order]
        positions = np.flatnonzero(sorted_values[:-1] != sorted_values[1:])
        if positions.size == 0:
            return None

        gains, left_imp, right_imp = self.criterion.scan_gains(
            sorted_target, positions, impurity
        )
        best = int(np.argmax(gains))
        if not gains[best] > 0.0:
            return None

        pos = positions[best]
        threshold = 0.5 * (sorted_values[pos] + sorted_values[pos + 1])
        return SplitRecord(
            gain=float(gains[best]),
            threshold=float(threshold),
            left_impurity=float(left_imp[best]),
            right_impurity=float(right_imp[best]),
        )


# =============================================================================
# Randomized Searches
# =============================================================================

class RandomSplitter:
    """
    Extremely randomized split: one uniform threshold per feature.

    The threshold is drawn from ``[min, max)`` of the node's values and the
    resulting partition is scored without any search.
    """

    presorted = False

    def __init__(self, criterion: Criterion):
        self.criterion = criterion

    def split(self, values, target, impurity, rng):
        low, high = values.min(), values.max()
        if low == high:
            return None
        threshold = float(rng.uniform(low, high))
        return _score_threshold(self.criterion, values, target, impurity, threshold)


class VariableRandomSplitter:
    """
    Variable-random split.

    With probability ``alpha`` the deterministic best split is used.
    Otherwise two distinct observed values are picked at random and the
    split falls at their midpoint.

    Parameters
    ----------
    criterion : Criterion
        Node scoring strategy.
    alpha : float
        Probability of the deterministic split, clamped to [0, 1].
    """

    presorted = False

    def __init__(self, criterion: Criterion, alpha: float = 0.5):
        self.criterion = criterion
        self.alpha = min(max(alpha, 0.0), 1.0)
        self._best = BestSplitter(criterion)

    def split(self, values, target, impurity, rng):
        if rng.random() < self.alpha:
            return self._best.split(values, target, impurity, rng)

        uniques = np.unique(values)
        if uniques.size < 2:
            return None
        first, second = rng.choice(uniques, size=2, replace=False)
        threshold = 0.5 * (float(first) + float(second))
        return _score_threshold(self.criterion, values, target, impurity, threshold)


def _score_threshold(criterion, values, target, impurity, threshold):
    left = values <= threshold
    gain, left_imp, right_imp = criterion.partition_gain(
        target[left], target[~left], impurity
    )
    return SplitRecord(
        gain=gain,
        threshold=threshold,
        left_impurity=left_imp,
        right_impurity=right_imp,
    )


__all__ = [
    "SplitRecord",
    "BestSplitter",
    "RandomSplitter",
    "VariableRandomSplitter",
]
