"""
Impurity criteria for tree induction.

A criterion knows how to score the targets that reached a node: its
impurity, whether it is worth splitting at all, the leaf payload it would
store, and the gain of candidate partitions. Split searches in
:mod:`arbor.splitter` call into a criterion and never look at the targets
themselves, so one search works for every criterion.

Targets passed to a criterion are
- class codes of shape (n,) for :class:`ClassificationCriterion`,
- a value matrix of shape (n, n_outputs) for :class:`RegressionCriterion`,
- stacked columns ``(gradient, hessian, y)`` for :class:`GradientCriterion`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Tuple

import numpy as np


# =============================================================================
# Impurity Functions
# =============================================================================

def gini(counts: np.ndarray) -> np.ndarray:
    """
    Gini impurity ``1 - sum(p_c ** 2)`` of class-count histograms.

    Parameters
    ----------
    counts : np.ndarray of shape (..., n_classes)
        Class counts. Rows summing to zero score 0.

    Returns
    -------
    impurity : np.ndarray of shape (...)
    """
    totals = counts.sum(axis=-1, keepdims=True)
    probs = np.divide(counts, totals, out=np.zeros_like(counts, dtype=float),
                      where=totals > 0)
    result = 1.0 - np.sum(probs ** 2, axis=-1)
    return np.where(totals[..., 0] > 0, result, 0.0)


def entropy(counts: np.ndarray) -> np.ndarray:
    """
    Entropy ``-sum(p_c * log(p_c))`` of class-count histograms.

    Classes with zero count contribute nothing.
    """
    totals = counts.sum(axis=-1, keepdims=True)
    probs = np.divide(counts, totals, out=np.zeros_like(counts, dtype=float),
                      where=totals > 0)
    logs = np.log(probs, out=np.zeros_like(probs), where=probs > 0)
    return -np.sum(probs * logs, axis=-1)


def mse(y: np.ndarray) -> float:
    """Mean squared deviation from the column means, averaged over outputs."""
    if y.shape[0] == 0:
        return 0.0
    return float(np.mean((y - y.mean(axis=0)) ** 2))


def mae(y: np.ndarray) -> float:
    """Mean absolute deviation from the column means, averaged over outputs."""
    if y.shape[0] == 0:
        return 0.0
    return float(np.mean(np.abs(y - y.mean(axis=0))))


CLASSIFICATION_CRITERIA = {"gini": gini, "entropy": entropy}
REGRESSION_CRITERIA = {"mse": mse, "mae": mae}


# =============================================================================
# Criterion Base Class
# =============================================================================

class Criterion(ABC):
    """
    Abstract base class for node scoring strategies.
    """

    @abstractmethod
    def impurity(self, target: np.ndarray) -> float:
        """Impurity of the node holding ``target``."""

    @abstractmethod
    def is_pure(self, target: np.ndarray) -> bool:
        """Whether splitting the node cannot gain any information."""

    @abstractmethod
    def leaf_value(self, target: np.ndarray) -> np.ndarray:
        """Payload stored for a leaf holding ``target``."""

    @abstractmethod
    def scan_gains(
        self, target: np.ndarray, positions: np.ndarray, impurity: float
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Score every prefix/suffix partition of sorted targets.

        Parameters
        ----------
        target : np.ndarray
            Node targets ordered by the feature being scanned.
        positions : np.ndarray of shape (m,)
            Candidate cut points. Position ``p`` puts ``target[:p + 1]``
            on the left.
        impurity : float
            Impurity of the whole node.

        Returns
        -------
        gains, left_impurity, right_impurity : np.ndarray of shape (m,)
        """

    def partition_gain(
        self, left: np.ndarray, right: np.ndarray, impurity: float
    ) -> Tuple[float, float, float]:
        """
        Score one explicit partition. An empty side has impurity 0.

        Returns
        -------
        gain, left_impurity, right_impurity : float
        """
        n_left, n_right = left.shape[0], right.shape[0]
        n_samples = n_left + n_right
        left_impurity = self.impurity(left) if n_left > 0 else 0.0
        right_impurity = self.impurity(right) if n_right > 0 else 0.0
        gain = (
            impurity
            - left_impurity * n_left / n_samples
            - right_impurity * n_right / n_samples
        )
        return float(gain), left_impurity, right_impurity


# =============================================================================
# Classification
# =============================================================================

class ClassificationCriterion(Criterion):
    """
    Gini or entropy impurity over integer class codes.

    Parameters
    ----------
    name : {'gini', 'entropy'}
        Impurity function.
    n_classes : int
        Number of classes; codes lie in ``[0, n_classes)``.
    """

    def __init__(self, name: str, n_classes: int):
        if name not in CLASSIFICATION_CRITERIA:
            raise ValueError(
                f"criterion must be one of {sorted(CLASSIFICATION_CRITERIA)}, "
                f"got {name!r}"
            )
        self.name = name
        self.n_classes = n_classes
        self._func = CLASSIFICATION_CRITERIA[name]

    def _counts(self, target: np.ndarray) -> np.ndarray:
        return np.bincount(target, minlength=self.n_classes).astype(float)

    def impurity(self, target: np.ndarray) -> float:
        return float(self._func(self._counts(target)))

    def is_pure(self, target: np.ndarray) -> bool:
        return bool(np.all(target == target[0]))

    def leaf_value(self, target: np.ndarray) -> np.ndarray:
        return self._counts(target) / target.shape[0]

    def scan_gains(self, target, positions, impurity):
        one_hot = np.zeros((target.shape[0], self.n_classes))
        one_hot[np.arange(target.shape[0]), target] = 1.0
        cumulative = np.cumsum(one_hot, axis=0)

        left_counts = cumulative[positions]
        right_counts = cumulative[-1] - left_counts
        n_samples = float(target.shape[0])
        n_left = positions + 1.0
        n_right = n_samples - n_left

        left_impurity = self._func(left_counts)
        right_impurity = self._func(right_counts)
        gains = (
            impurity
            - left_impurity * n_left / n_samples
            - right_impurity * n_right / n_samples
        )
        return gains, left_impurity, right_impurity


# =============================================================================
# Regression
# =============================================================================

class RegressionCriterion(Criterion):
    """
    MSE or MAE impurity over a (n, n_outputs) target matrix.

    Both measure deviation from the node mean; MAE does not use the median.

    Parameters
    ----------
    name : {'mse', 'mae'}
        Impurity function.
    """

    def __init__(self, name: str):
        if name not in REGRESSION_CRITERIA:
            raise ValueError(
                f"criterion must be one of {sorted(REGRESSION_CRITERIA)}, "
                f"got {name!r}"
            )
        self.name = name
        self._func = REGRESSION_CRITERIA[name]

    def impurity(self, target: np.ndarray) -> float:
        return self._func(target)

    def is_pure(self, target: np.ndarray) -> bool:
        return bool(np.all(target == target[0]))

    def leaf_value(self, target: np.ndarray) -> np.ndarray:
        return target.mean(axis=0)

    def scan_gains(self, target, positions, impurity):
        n_samples = float(target.shape[0])
        n_left = positions + 1.0
        n_right = n_samples - n_left

        if self.name == "mse":
            sums = np.cumsum(target, axis=0)
            squares = np.cumsum(target ** 2, axis=0)
            left_sum, left_sq = sums[positions], squares[positions]
            right_sum, right_sq = sums[-1] - left_sum, squares[-1] - left_sq
            left_impurity = np.mean(
                left_sq / n_left[:, None] - (left_sum / n_left[:, None]) ** 2, axis=1
            )
            right_impurity = np.mean(
                right_sq / n_right[:, None] - (right_sum / n_right[:, None]) ** 2,
                axis=1,
            )
            # Cancellation can leave tiny negative variances.
            left_impurity = np.maximum(left_impurity, 0.0)
            right_impurity = np.maximum(right_impurity, 0.0)
        else:
            # Every prefix has its own mean, so this scan is quadratic in the node size.
            left_impurity = np.array([mae(target[: p + 1]) for p in positions])
            right_impurity = np.array([mae(target[p + 1:]) for p in positions])

        gains = (
            impurity
            - left_impurity * n_left / n_samples
            - right_impurity * n_right / n_samples
        )
        return gains, left_impurity, right_impurity


# =============================================================================
# Gradient Boosting
# =============================================================================

class GradientCriterion(Criterion):
    """
    Second-order split gain used by gradient-boosted trees.

    The gain of a partition is
    ``G_L**2 / (H_L + lambda) + G_R**2 / (H_R + lambda) - G**2 / (H + lambda)``
    where G and H are sums of gradients and hessians. Nodes carry no
    impurity of their own.

    Parameters
    ----------
    reg_lambda : float
        L2 regularization on leaf weights.
    learning_rate : float
        Shrinkage applied to every leaf weight.
    """

    def __init__(self, reg_lambda: float = 0.0, learning_rate: float = 1.0):
        self.reg_lambda = reg_lambda
        self.learning_rate = learning_rate

    def _score(self, sum_g, sum_h):
        with np.errstate(divide="ignore", invalid="ignore"):
            return sum_g ** 2 / (sum_h + self.reg_lambda)

    def impurity(self, target: np.ndarray) -> float:
        return 0.0

    def is_pure(self, target: np.ndarray) -> bool:
        return bool(np.all(target[:, 2] == target[0, 2]))

    def leaf_value(self, target: np.ndarray) -> np.ndarray:
        sum_g = target[:, 0].sum()
        sum_h = target[:, 1].sum()
        weight = -self.learning_rate * sum_g / (sum_h + self.reg_lambda)
        return np.array([weight])

    def scan_gains(self, target, positions, impurity):
        grad_sums = np.cumsum(target[:, 0])
        hess_sums = np.cumsum(target[:, 1])
        left_g, left_h = grad_sums[positions], hess_sums[positions]
        right_g, right_h = grad_sums[-1] - left_g, hess_sums[-1] - left_h

        gains = (
            self._score(left_g, left_h)
            + self._score(right_g, right_h)
            - self._score(grad_sums[-1], hess_sums[-1])
        )
        gains = np.where(np.isfinite(gains), gains, 0.0)
        zeros = np.zeros_like(gains)
        return gains, zeros, zeros

    def partition_gain(self, left, right, impurity):
        left_g, left_h = left[:, 0].sum(), left[:, 1].sum()
        right_g, right_h = right[:, 0].sum(), right[:, 1].sum()
        gain = (
            self._score(left_g, left_h)
            + self._score(right_g, right_h)
            - self._score(left_g + right_g, left_h + right_h)
        )
        return (float(gain) if np.isfinite(gain) else 0.0), 0.0, 0.0


def get_criterion(name: str, *, n_classes: int = 0) -> Criterion:
    """
    Factory function to create criterion objects by name.

    Parameters
    ----------
    name : str
        'gini' or 'entropy' for classification, 'mse' or 'mae' for regression.
    n_classes : int, default=0
        Number of classes (classification criteria only).

    Raises
    ------
    ValueError
        If the name is not recognized.
    """
    name = name.lower()
    if name in CLASSIFICATION_CRITERIA:
        return ClassificationCriterion(name, n_classes)
    if name in REGRESSION_CRITERIA:
        return RegressionCriterion(name)
    raise ValueError(
        f"Unknown criterion: {name!r}. Supported: "
        f"{sorted(CLASSIFICATION_CRITERIA) + sorted(REGRESSION_CRITERIA)}"
    )


__all__ = [
    "gini",
    "entropy",
    "mse",
    "mae",
    "Criterion",
    "ClassificationCriterion",
    "RegressionCriterion",
    "GradientCriterion",
    "get_criterion",
]
