"""
Base classes for arbor estimators.

This module provides the hyper-parameter dataclasses of every estimator
family and the abstract estimator class that implements parameter access,
JSON persistence and the string representation.
No sklearn dependencies.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Optional

import numpy as np

from .utils import (
    accuracy_score,
    check_is_fitted,
    r2_score,
    resolve_seed,
)


# =============================================================================
# Parameter Checks
# =============================================================================

def _check_positive_int(name: str, value: Any, *, allow_none: bool = False) -> None:
    if value is None and allow_none:
        return
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)) or value < 1:
        expected = "None or a positive integer" if allow_none else "a positive integer"
        raise ValueError(f"{name} must be {expected}, got {value!r}")


# =============================================================================
# Tree Parameters
# =============================================================================

@dataclass
class TreeParams:
    """
    Hyper-parameters of a single decision tree.

    Parameters
    ----------
    criterion : str
        Impurity function: 'gini' or 'entropy' for classifiers,
        'mse' or 'mae' for regressors.
    max_depth : int or None
        Maximum depth of the tree. None means unlimited.
    max_leaf_nodes : int or None
        Maximum number of leaves. None means unlimited.
    min_samples_leaf : int
        Minimum number of samples in a leaf.
    max_features : int or None
        Number of features examined per split, clamped to
        ``[1, n_features]`` at fit time. None means all features
        (bagging ensembles use ``sqrt(n_features)`` instead).
    random_seed : int or None
        Seed of the tree's random stream.
    """
    criterion: str = "gini"
    max_depth: Optional[int] = None
    max_leaf_nodes: Optional[int] = None
    min_samples_leaf: int = 1
    max_features: Optional[int] = None
    random_seed: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert parameters to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, params: Dict[str, Any]):
        """Create parameters from dictionary, ignoring unknown keys."""
        valid_keys = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in params.items() if k in valid_keys}
        return cls(**filtered)

    def validate(self) -> None:
        """
        Validate all parameters.

        Raises
        ------
        ValueError
            If any parameter is invalid.
        """
        if not isinstance(self.criterion, str):
            raise ValueError(f"criterion must be a string, got {self.criterion!r}")
        _check_positive_int("max_depth", self.max_depth, allow_none=True)
        _check_positive_int("max_leaf_nodes", self.max_leaf_nodes, allow_none=True)
        _check_positive_int("min_samples_leaf", self.min_samples_leaf)
        _check_positive_int("max_features", self.max_features, allow_none=True)
        if self.random_seed is not None and (
            not isinstance(self.random_seed, (int, np.integer)) or self.random_seed < 0
        ):
            raise ValueError(
                f"random_seed must be None or a non-negative integer, "
                f"got {self.random_seed!r}"
            )


@dataclass
class VRTreeParams(TreeParams):
    """
    Parameters of a variable-random tree.

    Parameters
    ----------
    alpha : float
        Probability of using the deterministic best split at a node.
        Values outside [0, 1] are clamped.
    """
    alpha: float = 0.5


@dataclass
class GradientTreeParams(TreeParams):
    """
    Parameters of a gradient-boosting tree.

    Parameters
    ----------
    reg_lambda : float
        L2 regularization on leaf weights.
    learning_rate : float
        Shrinkage applied to every leaf weight.
    """
    criterion: str = "gradient"
    reg_lambda: float = 0.0
    learning_rate: float = 1.0

    def validate(self) -> None:
        super().validate()
        if self.reg_lambda < 0:
            raise ValueError(f"reg_lambda must be non-negative, got {self.reg_lambda}")
        if self.learning_rate <= 0:
            raise ValueError(
                f"learning_rate must be positive, got {self.learning_rate}"
            )


# =============================================================================
# Ensemble Parameters
# =============================================================================

@dataclass
class ForestParams(TreeParams):
    """
    Parameters of a bagging ensemble.

    Parameters
    ----------
    n_estimators : int
        Number of trees.
    n_jobs : int or None
        Number of workers for fitting and prediction. None or 1 runs
        sequentially; -1 uses all CPUs.
    verbose : int
        Verbosity level (0=silent, 1=progress).
    """
    n_estimators: int = 10
    n_jobs: Optional[int] = None
    verbose: int = 0

    def validate(self) -> None:
        super().validate()
        _check_positive_int("n_estimators", self.n_estimators)
        _check_n_jobs(self.n_jobs)


@dataclass
class AdaBoostParams(TreeParams):
    """
    Parameters of an AdaBoost ensemble.

    Parameters
    ----------
    n_estimators : int
        Maximum number of boosting rounds.
    verbose : int
        Verbosity level (0=silent, 1=progress).
    """
    n_estimators: int = 50
    verbose: int = 0

    def validate(self) -> None:
        super().validate()
        _check_positive_int("n_estimators", self.n_estimators)


@dataclass
class AdaBoostRegressorParams(AdaBoostParams):
    """
    Parameters of the AdaBoost regressor.

    Parameters
    ----------
    threshold : float
        Relative absolute error above which a sample counts as wrong.
    exponent : float
        Power applied to the round error when computing ``beta``.
    """
    criterion: str = "mse"
    n_estimators: int = 10
    threshold: float = 0.2
    exponent: float = 1.0

    def validate(self) -> None:
        super().validate()
        if self.threshold <= 0:
            raise ValueError(f"threshold must be positive, got {self.threshold}")
        if self.exponent <= 0:
            raise ValueError(f"exponent must be positive, got {self.exponent}")


@dataclass
class GradientBoostingParams(TreeParams):
    """
    Parameters of a gradient boosting ensemble.

    Parameters
    ----------
    n_estimators : int
        Number of boosting rounds (per class or per output).
    learning_rate : float
        Shrinkage applied to every tree's leaf weights.
    reg_lambda : float
        L2 regularization on leaf weights.
    subsample : float
        Fraction of rows drawn without replacement for every round.
    n_jobs : int or None
        Number of workers for per-class / per-output sequences.
    verbose : int
        Verbosity level (0=silent, 1=progress).
    """
    criterion: str = "gradient"
    n_estimators: int = 100
    learning_rate: float = 0.1
    reg_lambda: float = 0.0
    subsample: float = 1.0
    n_jobs: Optional[int] = None
    verbose: int = 0

    def validate(self) -> None:
        super().validate()
        _check_positive_int("n_estimators", self.n_estimators)
        if self.learning_rate <= 0:
            raise ValueError(
                f"learning_rate must be positive, got {self.learning_rate}"
            )
        if self.reg_lambda < 0:
            raise ValueError(f"reg_lambda must be non-negative, got {self.reg_lambda}")
        if not 0 < self.subsample <= 1:
            raise ValueError(f"subsample must be in (0, 1], got {self.subsample}")
        _check_n_jobs(self.n_jobs)


def _check_n_jobs(n_jobs: Optional[int]) -> None:
    if n_jobs is None:
        return
    if isinstance(n_jobs, bool) or not isinstance(n_jobs, (int, np.integer)) or n_jobs == 0:
        raise ValueError(f"n_jobs must be None or a non-zero integer, got {n_jobs!r}")


# =============================================================================
# Base Estimator Abstract Class
# =============================================================================

class BaseEstimator(ABC):
    """
    Abstract base class for all arbor estimators.

    Subclasses build a parameter dataclass in ``__init__`` and pass it
    here. A missing ``random_seed`` is replaced by a fresh one drawn from
    OS entropy, so every estimator knows the seed it trains with.
    """

    def __init__(self, params: Any):
        self.params = params
        if hasattr(params, "random_seed"):
            params.random_seed = resolve_seed(params.random_seed)

        # Fitted state
        self.n_features_: Optional[int] = None
        self.feature_importances_: Optional[np.ndarray] = None
        self.is_fitted_: bool = False

    @property
    def random_seed(self) -> int:
        return self.params.random_seed

    # -------------------------------------------------------------------------
    # Abstract methods to be implemented by subclasses
    # -------------------------------------------------------------------------

    @abstractmethod
    def fit(self, X: np.ndarray, y: np.ndarray) -> "BaseEstimator":
        """
        Fit the model to training data.

        Parameters
        ----------
        X : np.ndarray of shape (n_samples, n_features)
            Training features.
        y : np.ndarray of shape (n_samples,) or (n_samples, n_outputs)
            Training labels or targets.

        Returns
        -------
        self : BaseEstimator
            Fitted estimator.
        """

    @abstractmethod
    def predict(self, X: np.ndarray) -> np.ndarray:
        """
        Make predictions on new data.

        Parameters
        ----------
        X : np.ndarray of shape (n_samples, n_features)
            Features to predict.

        Returns
        -------
        predictions : np.ndarray
            Predicted labels or values.
        """

    # -------------------------------------------------------------------------
    # Common methods
    # -------------------------------------------------------------------------

    def get_params(self) -> Dict[str, Any]:
        """
        Get estimator parameters.

        Returns
        -------
        params : dict
            Dictionary of parameter names to values.
        """
        return self.params.to_dict()

    def set_params(self, **params: Any) -> "BaseEstimator":
        """
        Set estimator parameters.

        Parameters
        ----------
        **params : dict
            Parameter names and values.

        Returns
        -------
        self : BaseEstimator
            The estimator instance.

        Raises
        ------
        ValueError
            If a name is not a parameter of this estimator.
        """
        for key, value in params.items():
            if hasattr(self.params, key):
                setattr(self.params, key, value)
            else:
                raise ValueError(f"Invalid parameter: {key}")
        return self

    def _validate_params(self) -> None:
        """Validate all hyperparameters."""
        self.params.validate()

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize the fitted model to a JSON-compatible dictionary.

        Raises
        ------
        NotFittedError
            If the estimator has not been fitted.
        """
        check_is_fitted(self)
        model_data = {
            "estimator": type(self).__name__,
            "params": self.params.to_dict(),
            "n_features_": self.n_features_,
            "feature_importances_": self.feature_importances_.tolist(),
        }
        model_data.update(self._get_extra_save_data())
        return model_data

    @classmethod
    def from_dict(cls, model_data: Dict[str, Any]) -> "BaseEstimator":
        """Rebuild a fitted estimator from :meth:`to_dict` output."""
        return cls()._set_state(model_data)

    def _set_state(self, model_data: Dict[str, Any]) -> "BaseEstimator":
        name = model_data.get("estimator")
        if name != type(self).__name__:
            raise ValueError(
                f"Model data describes a {name}, cannot load it into "
                f"{type(self).__name__}."
            )
        self.params = type(self.params).from_dict(model_data["params"])
        self.n_features_ = model_data["n_features_"]
        self.feature_importances_ = np.asarray(
            model_data["feature_importances_"], dtype=float
        )
        self._load_extra_save_data(model_data)
        self.is_fitted_ = True
        return self

    def save_model(self, path: str) -> None:
        """
        Save the model to a JSON file.

        Floats are written with their shortest round-trip representation,
        so a loaded model predicts exactly what the saved one did.

        Parameters
        ----------
        path : str
            File path to save the model.
        """
        with open(path, "w") as f:
            json.dump(self.to_dict(), f)

    def load_model(self, path: str) -> "BaseEstimator":
        """
        Load a model from a JSON file.

        Parameters
        ----------
        path : str
            File path to load the model from.

        Returns
        -------
        self : BaseEstimator
            The loaded model.
        """
        with open(path, "r") as f:
            model_data = json.load(f)
        return self._set_state(model_data)

    def _get_extra_save_data(self) -> Dict[str, Any]:
        """
        Get subclass-specific data for saving.

        Override in subclasses to add the fitted structure.
        """
        raise NotImplementedError(
            f"{type(self).__name__} does not support JSON persistence; use pickle."
        )

    def _load_extra_save_data(self, model_data: Dict[str, Any]) -> None:
        """
        Load subclass-specific data.

        Override in subclasses to restore the fitted structure.
        """
        raise NotImplementedError(
            f"{type(self).__name__} does not support JSON persistence; use pickle."
        )

    def __repr__(self) -> str:
        """Return string representation showing non-default parameters."""
        class_name = self.__class__.__name__
        defaults = {f.name: f.default for f in fields(self.params)}
        params_str = ", ".join(
            f"{k}={v!r}"
            for k, v in self.get_params().items()
            if k != "random_seed" and v != defaults.get(k)
        )
        return f"{class_name}({params_str})"


# =============================================================================
# Mixins
# =============================================================================

class ClassifierMixin:
    """Mixin adding accuracy scoring to classifiers."""

    def score(self, X: np.ndarray, y: np.ndarray) -> float:
        """Return the mean accuracy on the given data."""
        return accuracy_score(np.asarray(y), self.predict(X))


class RegressorMixin:
    """Mixin adding R^2 scoring to regressors."""

    def score(self, X: np.ndarray, y: np.ndarray) -> float:
        """Return the coefficient of determination on the given data."""
        return r2_score(y, self.predict(X))


__all__ = [
    "TreeParams",
    "VRTreeParams",
    "GradientTreeParams",
    "ForestParams",
    "AdaBoostParams",
    "AdaBoostRegressorParams",
    "GradientBoostingParams",
    "BaseEstimator",
    "ClassifierMixin",
    "RegressorMixin",
]
