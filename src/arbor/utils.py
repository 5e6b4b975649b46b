"""
Utility functions for arbor estimators.

This module provides input validation, random seed derivation, weighted
resampling, the metrics used by ``score`` and console logging helpers.
No sklearn dependencies.
"""

from __future__ import annotations

from typing import Any, List, Optional, Tuple, Union

import numpy as np
import pandas as pd

ArrayLike = Union[np.ndarray, List, Tuple, pd.DataFrame, pd.Series]

# Upper bound (exclusive) for every seed drawn or derived in the package.
SEED_BASE = 2 ** 32

EPSILON = 1e-15


# =============================================================================
# Input Validation
# =============================================================================

def check_array(
    X: ArrayLike,
    *,
    ensure_2d: bool = True,
    allow_nan: bool = False,
    dtype: type = float,
) -> np.ndarray:
    """
    Validate and convert input array to numpy array.

    Parameters
    ----------
    X : array-like
        Input data to validate. numpy arrays, nested lists and pandas
        DataFrame/Series objects are accepted.
    ensure_2d : bool, default=True
        Whether to reshape a 1D input into a single column and reject
        inputs with more than two dimensions.
    allow_nan : bool, default=False
        Whether to allow NaN values.
    dtype : type, default=float
        Desired dtype of the output array.

    Returns
    -------
    X_converted : np.ndarray
        Validated and converted array.

    Raises
    ------
    ValueError
        If validation fails.
    TypeError
        If input type is not supported.
    """
    if isinstance(X, pd.DataFrame):
        X_out = X.to_numpy(dtype=dtype)
    elif isinstance(X, pd.Series):
        X_out = X.to_numpy(dtype=dtype)
    else:
        try:
            X_out = np.asarray(X, dtype=dtype)
        except (TypeError, ValueError) as e:
            raise TypeError(
                f"Cannot convert input of type {type(X).__name__} to numpy array: {e}"
            ) from e

    if ensure_2d:
        if X_out.ndim == 1:
            X_out = X_out.reshape(-1, 1)
        elif X_out.ndim != 2:
            raise ValueError(
                f"Expected 2D array, got {X_out.ndim}D array instead."
            )

    if X_out.size == 0:
        raise ValueError("Input array cannot be empty.")

    if np.issubdtype(X_out.dtype, np.floating):
        if np.any(np.isinf(X_out)):
            raise ValueError("Input array contains infinite values.")
        if not allow_nan and np.any(np.isnan(X_out)):
            raise ValueError("Input array contains NaN values.")

    return X_out


def check_X_y(
    X: ArrayLike,
    y: ArrayLike,
    *,
    y_numeric: bool = True,
    multi_output: bool = False,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Validate X and y arrays for supervised learning.

    Parameters
    ----------
    X : array-like of shape (n_samples, n_features)
        Feature matrix.
    y : array-like of shape (n_samples,) or (n_samples, n_outputs)
        Target values or class labels.
    y_numeric : bool, default=True
        If True, y is converted to float. Otherwise y keeps its own dtype
        (class labels of any orderable type).
    multi_output : bool, default=False
        Whether y can have multiple outputs.

    Returns
    -------
    X : np.ndarray
        Validated feature matrix.
    y : np.ndarray
        Validated target array.

    Raises
    ------
    ValueError
        If X and y have incompatible shapes.
    """
    X = check_array(X, ensure_2d=True)
    if y_numeric:
        y = check_array(y, ensure_2d=False, dtype=float)
    else:
        y = np.asarray(y.to_numpy() if isinstance(y, (pd.Series, pd.DataFrame)) else y)
        if y.size == 0:
            raise ValueError("Input array cannot be empty.")

    if y.ndim == 2 and y.shape[1] == 1 and not multi_output:
        y = y.ravel()
    elif y.ndim == 2 and not multi_output:
        raise ValueError(
            f"y has shape {y.shape}, expected 1D array."
        )
    elif y.ndim > 2:
        raise ValueError(f"y must be 1D or 2D, got {y.ndim}D array instead.")

    if X.shape[0] != y.shape[0]:
        raise ValueError(
            f"Found input variables with inconsistent numbers of samples: "
            f"X has {X.shape[0]} samples, y has {y.shape[0]} samples."
        )

    return X, y


def check_n_features(estimator: Any, X: np.ndarray) -> None:
    """Raise ValueError if X does not have the column count seen during fit."""
    if X.shape[1] != estimator.n_features_:
        raise ValueError(
            f"X has {X.shape[1]} features, but {type(estimator).__name__} "
            f"was fitted with {estimator.n_features_} features."
        )


def check_is_fitted(estimator: Any, attributes: Optional[List[str]] = None) -> None:
    """
    Check if an estimator is fitted by verifying required attributes.

    Parameters
    ----------
    estimator : object
        Estimator instance to check.
    attributes : list of str, optional
        Attribute names that must be set. Defaults to ``is_fitted_``.

    Raises
    ------
    NotFittedError
        If the estimator is not fitted.
    """
    if attributes is None:
        attributes = ["is_fitted_"]

    fitted = all(bool(getattr(estimator, attr, None)) for attr in attributes)

    if not fitted:
        raise NotFittedError(
            f"This {type(estimator).__name__} instance is not fitted yet. "
            "Call 'fit' with appropriate arguments before using this estimator."
        )


# =============================================================================
# Custom Exceptions
# =============================================================================

class NotFittedError(ValueError):
    """
    Exception raised when an estimator is used before fitting.

    This exception is raised when calling predict, apply, or similar
    methods before calling fit.
    """
    pass


# =============================================================================
# Random Seeds and Sampling
# =============================================================================

def resolve_seed(random_seed: Optional[int]) -> int:
    """Return ``random_seed`` or a fresh seed drawn from OS entropy."""
    if random_seed is None:
        return int(np.random.SeedSequence().entropy % SEED_BASE)
    return int(random_seed)


def derive_seed(parent_seed: int, index: int) -> int:
    """
    Derive an independent child seed from a parent seed and an index.

    The derivation is stateless: the same ``(parent_seed, index)`` pair
    always yields the same child seed, no matter in which order or on
    which worker the children are requested.

    Parameters
    ----------
    parent_seed : int
        Seed of the owning estimator.
    index : int
        Position of the child (tree number, class number, ...).

    Returns
    -------
    seed : int
        Child seed in ``[0, SEED_BASE)``.
    """
    seq = np.random.SeedSequence(parent_seed, spawn_key=(index,))
    return int(seq.generate_state(1, dtype=np.uint32)[0])


def choice_ids(
    size: int, probs: np.ndarray, rng: np.random.Generator
) -> np.ndarray:
    """
    Draw ``size`` indices with replacement following ``probs``.

    Each draw picks the first index whose cumulative probability reaches a
    uniform random target. Targets beyond the cumulative total (possible
    when probs sum to slightly less than one) fall back to index 0.

    Parameters
    ----------
    size : int
        Number of indices to draw.
    probs : np.ndarray of shape (n,)
        Sampling probabilities.
    rng : np.random.Generator
        Random stream to draw from.

    Returns
    -------
    ids : np.ndarray of shape (size,)
        Sampled indices.
    """
    cumulative = np.cumsum(probs)
    targets = rng.random(size)
    ids = np.searchsorted(cumulative, targets, side="left")
    ids[ids >= len(probs)] = 0
    return ids


# =============================================================================
# Metrics Functions (sklearn-free)
# =============================================================================

def accuracy_score(y_true: ArrayLike, y_pred: ArrayLike) -> float:
    """
    Compute classification accuracy.

    Parameters
    ----------
    y_true : array-like of shape (n_samples,)
        Ground truth labels.
    y_pred : array-like of shape (n_samples,)
        Predicted labels.

    Returns
    -------
    accuracy : float
        Accuracy score between 0 and 1.
    """
    y_true = np.asarray(y_true)
    y_pred = np.asarray(y_pred)

    if y_true.shape != y_pred.shape:
        raise ValueError(
            f"Shape mismatch: y_true has shape {y_true.shape}, "
            f"y_pred has shape {y_pred.shape}"
        )

    return float(np.mean(y_true == y_pred))


def mean_squared_error(y_true: ArrayLike, y_pred: ArrayLike) -> float:
    """Compute mean squared error."""
    y_true = np.asarray(y_true)
    y_pred = np.asarray(y_pred)
    return float(np.mean((y_true - y_pred) ** 2))


def r2_score(y_true: ArrayLike, y_pred: ArrayLike) -> float:
    """
    Compute R-squared (coefficient of determination).

    For 2D targets the score of each output column is computed separately
    and the scores are averaged.

    Parameters
    ----------
    y_true : array-like of shape (n_samples,) or (n_samples, n_outputs)
        Ground truth values.
    y_pred : array-like of shape (n_samples,) or (n_samples, n_outputs)
        Predicted values.

    Returns
    -------
    r2 : float
        R-squared score. Outputs with zero variance score 0.0.
    """
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)
    if y_true.ndim == 1:
        y_true = y_true.reshape(-1, 1)
        y_pred = y_pred.reshape(-1, 1)

    ss_res = np.sum((y_true - y_pred) ** 2, axis=0)
    ss_tot = np.sum((y_true - y_true.mean(axis=0)) ** 2, axis=0)

    scores = np.zeros(y_true.shape[1])
    nonzero = ss_tot != 0
    scores[nonzero] = 1.0 - ss_res[nonzero] / ss_tot[nonzero]

    return float(np.mean(scores))


# =============================================================================
# Logging Utilities
# =============================================================================

def log_message(message: str, *, verbose: int = 0) -> None:
    """
    Print a log message if verbose level is sufficient.

    Parameters
    ----------
    message : str
        Message to print.
    verbose : int, default=0
        Verbosity level. Message is printed if verbose >= 1.
    """
    if verbose >= 1:
        print(f"[arbor] {message}")


def log_training_progress(
    iteration: int,
    total_iterations: int,
    metric_value: float,
    *,
    verbose: int = 0,
    metric_name: str = "loss",
) -> None:
    """
    Log training progress.

    Parameters
    ----------
    iteration : int
        Current iteration number (1-based).
    total_iterations : int
        Total number of iterations.
    metric_value : float
        Current metric value.
    verbose : int, default=0
        Verbosity level.
    metric_name : str, default="loss"
        Name of the metric being tracked.
    """
    if verbose >= 1:
        progress = (iteration / total_iterations) * 100
        print(
            f"[arbor] Iter {iteration}/{total_iterations} "
            f"({progress:.1f}%) - {metric_name}: {metric_value:.6f}"
        )


__all__ = [
    "ArrayLike",
    "SEED_BASE",
    "EPSILON",
    "check_array",
    "check_X_y",
    "check_n_features",
    "check_is_fitted",
    "NotFittedError",
    "resolve_seed",
    "derive_seed",
    "choice_ids",
    "accuracy_score",
    "mean_squared_error",
    "r2_score",
    "log_message",
    "log_training_progress",
]
