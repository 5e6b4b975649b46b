"""
AdaBoost ensembles.

Both estimators keep a weight per training sample, draw each round's
training set by weighted resampling, and shift weight toward the samples
the latest tree handled badly. Degenerate rounds (a resample missing a
class, a perfect fit, collapsing weights) end boosting early without
raising.
"""

from __future__ import annotations

import warnings
from typing import Any, Dict, List, Optional

import numpy as np

from .base import (
    AdaBoostParams,
    AdaBoostRegressorParams,
    BaseEstimator,
    ClassifierMixin,
    RegressorMixin,
)
from .tree import DecisionTreeClassifier, DecisionTreeRegressor
from .utils import (
    EPSILON,
    check_array,
    check_is_fitted,
    check_n_features,
    check_X_y,
    choice_ids,
    derive_seed,
    log_message,
    log_training_progress,
)


class _BaseAdaBoost(BaseEstimator):
    """Common helpers of the AdaBoost estimators."""

    @property
    def n_estimators(self) -> int:
        return self.params.n_estimators

    @property
    def verbose(self) -> int:
        return self.params.verbose

    def _max_features(self, n_features: int) -> int:
        max_features = self.params.max_features
        if max_features is None:
            max_features = n_features
        return min(max(max_features, 1), n_features)

    def _plant_tree(self, tree_class, max_features: int, round_index: int):
        return tree_class(
            criterion=self.params.criterion,
            max_depth=self.params.max_depth,
            max_leaf_nodes=self.params.max_leaf_nodes,
            min_samples_leaf=self.params.min_samples_leaf,
            max_features=max_features,
            random_seed=derive_seed(self.params.random_seed, round_index),
        )

    def _check_X(self, X: np.ndarray) -> np.ndarray:
        check_is_fitted(self)
        X = check_array(X)
        check_n_features(self, X)
        return X


# =============================================================================
# Classifier
# =============================================================================

class AdaBoostClassifier(ClassifierMixin, _BaseAdaBoost):
    """
    AdaBoost classifier with the SAMME.R algorithm.

    Each round fits a decision tree to a weighted resample and updates the
    sample weights from the tree's class probabilities, which makes the
    algorithm natively multiclass.

    Parameters
    ----------
    n_estimators : int, default=50
        Maximum number of boosting rounds.
    criterion : {'gini', 'entropy'}, default='gini'
        Impurity function of the trees.
    max_depth : int or None, default=None
        Maximum depth of each tree.
    max_leaf_nodes : int or None, default=None
        Maximum number of leaves per tree.
    min_samples_leaf : int, default=1
        Minimum number of samples in a leaf.
    max_features : int or None, default=None
        Features examined per split; None means all.
    verbose : int, default=0
        Verbosity level.
    random_seed : int or None, default=None
        Seed of the resampling stream and of every tree.

    Attributes
    ----------
    estimators_ : list of DecisionTreeClassifier
        Trees of the rounds that completed.
    classes_ : np.ndarray
        Sorted class labels.
    feature_importances_ : np.ndarray of shape (n_features,)
        Normalized sum of the trees' importances.
    """

    def __init__(
        self,
        n_estimators: int = 50,
        criterion: str = "gini",
        max_depth: Optional[int] = None,
        max_leaf_nodes: Optional[int] = None,
        min_samples_leaf: int = 1,
        max_features: Optional[int] = None,
        verbose: int = 0,
        random_seed: Optional[int] = None,
    ):
        super().__init__(AdaBoostParams(
            n_estimators=n_estimators,
            criterion=criterion,
            max_depth=max_depth,
            max_leaf_nodes=max_leaf_nodes,
            min_samples_leaf=min_samples_leaf,
            max_features=max_features,
            verbose=verbose,
            random_seed=random_seed,
        ))
        self.estimators_: List[DecisionTreeClassifier] = []
        self.classes_: Optional[np.ndarray] = None

    def fit(self, X: np.ndarray, y: np.ndarray) -> "AdaBoostClassifier":
        """
        Fit the boosted ensemble.

        Parameters
        ----------
        X : np.ndarray of shape (n_samples, n_features)
            Training features.
        y : np.ndarray of shape (n_samples,)
            Class labels.

        Returns
        -------
        self : AdaBoostClassifier
            Fitted estimator.

        Raises
        ------
        ValueError
            If y contains fewer than two classes.
        """
        self._validate_params()
        X, y = check_X_y(X, y, y_numeric=False)
        n_samples, n_features = X.shape
        self.classes_, codes = np.unique(y, return_inverse=True)
        codes = codes.ravel()
        n_classes = len(self.classes_)
        if n_classes < 2:
            raise ValueError(
                f"AdaBoostClassifier needs at least 2 classes, got {n_classes}."
            )
        max_features = self._max_features(n_features)

        # SAMME.R coding: 1 for the true class, -1 / (K - 1) elsewhere.
        y_codes = np.full((n_samples, n_classes), -1.0 / (n_classes - 1))
        y_codes[np.arange(n_samples), codes] = 1.0

        weights = np.full(n_samples, 1.0 / n_samples)
        rng = np.random.default_rng(self.params.random_seed)
        self.estimators_ = []
        importances = np.zeros(n_features)

        for t in range(self.params.n_estimators):
            ids = choice_ids(n_samples, weights, rng)
            if np.unique(codes[ids]).size != n_classes:
                log_message(
                    f"Stopping at round {t + 1}: resample lacks a class",
                    verbose=self.params.verbose,
                )
                break

            tree = self._plant_tree(DecisionTreeClassifier, max_features, t)
            tree.fit(X[ids], y[ids])

            proba = np.clip(tree.predict_proba(X), EPSILON, None)
            predicted = np.argmax(proba, axis=1)
            error = np.sum(weights[predicted != codes]) / np.sum(weights)

            self.estimators_.append(tree)
            importances += tree.feature_importances_
            log_training_progress(
                t + 1, self.params.n_estimators, error,
                verbose=self.params.verbose, metric_name="weighted_error",
            )
            if error == 0.0:
                log_message(
                    f"Stopping at round {t + 1}: perfect fit",
                    verbose=self.params.verbose,
                )
                break

            factor = -(n_classes - 1) / n_classes
            weights = weights * np.exp(factor * np.sum(y_codes * np.log(proba), axis=1))
            weights = np.clip(weights, EPSILON, None)
            total = weights.sum()
            if total == 0.0:
                break
            weights /= total

        self.n_features_ = n_features
        total = importances.sum()
        self.feature_importances_ = importances / total if total > 0 else importances
        self.is_fitted_ = True
        return self

    def decision_function(self, X: np.ndarray) -> np.ndarray:
        """
        Averaged SAMME.R scores.

        Returns
        -------
        scores : np.ndarray of shape (n_samples, n_classes)
        """
        X = self._check_X(X)
        n_classes = len(self.classes_)
        scores = np.zeros((X.shape[0], n_classes))
        for tree in self.estimators_:
            log_proba = np.log(np.clip(tree.predict_proba(X), EPSILON, None))
            scores += (n_classes - 1) * (
                log_proba - log_proba.mean(axis=1, keepdims=True)
            )
        return scores / len(self.estimators_)

    def predict_proba(self, X: np.ndarray) -> np.ndarray:
        """
        Predict class probabilities.

        Returns
        -------
        probas : np.ndarray of shape (n_samples, n_classes)
            Rows sum to one; columns follow ``classes_``.
        """
        n_classes = len(self.classes_)
        probs = np.exp(self.decision_function(X) / (n_classes - 1))
        return probs / probs.sum(axis=1, keepdims=True)

    def predict(self, X: np.ndarray) -> np.ndarray:
        """Predict the class with the highest score."""
        return self.classes_[np.argmax(self.decision_function(X), axis=1)]

    def _get_extra_save_data(self) -> Dict[str, Any]:
        return {
            "classes_": self.classes_.tolist(),
            "estimators_": [tree.to_dict() for tree in self.estimators_],
        }

    def _load_extra_save_data(self, model_data: Dict[str, Any]) -> None:
        self.classes_ = np.asarray(model_data["classes_"])
        self.estimators_ = [
            DecisionTreeClassifier.from_dict(data) for data in model_data["estimators_"]
        ]


# =============================================================================
# Regressor
# =============================================================================

class AdaBoostRegressor(RegressorMixin, _BaseAdaBoost):
    """
    AdaBoost regressor in the AdaBoost.RT style.

    A sample counts as wrong when its relative absolute error
    ``|pred - y| / |y|`` exceeds ``threshold``. Each round's tree is weighted
    by ``log(1 / err ** exponent)`` where ``err`` is the total weight of the
    wrong samples, and the weights of correct samples shrink by
    ``err ** exponent``.

    Parameters
    ----------
    n_estimators : int, default=10
        Maximum number of boosting rounds.
    threshold : float, default=0.2
        Relative error above which a sample is wrong.
    exponent : float, default=1.0
        Power applied to the round error.
    criterion : {'mse', 'mae'}, default='mse'
        Impurity function of the trees.
    max_depth : int or None, default=None
        Maximum depth of each tree.
    max_leaf_nodes : int or None, default=None
        Maximum number of leaves per tree.
    min_samples_leaf : int, default=1
        Minimum number of samples in a leaf.
    max_features : int or None, default=None
        Features examined per split; None means all.
    verbose : int, default=0
        Verbosity level.
    random_seed : int or None, default=None
        Seed of the resampling stream and of every tree.

    Attributes
    ----------
    estimators_ : list of DecisionTreeRegressor
        Retained trees.
    estimator_weights_ : np.ndarray of shape (n_estimators_,)
        Weight of every retained tree.
    """

    def __init__(
        self,
        n_estimators: int = 10,
        threshold: float = 0.2,
        exponent: float = 1.0,
        criterion: str = "mse",
        max_depth: Optional[int] = None,
        max_leaf_nodes: Optional[int] = None,
        min_samples_leaf: int = 1,
        max_features: Optional[int] = None,
        verbose: int = 0,
        random_seed: Optional[int] = None,
    ):
        super().__init__(AdaBoostRegressorParams(
            n_estimators=n_estimators,
            threshold=threshold,
            exponent=exponent,
            criterion=criterion,
            max_depth=max_depth,
            max_leaf_nodes=max_leaf_nodes,
            min_samples_leaf=min_samples_leaf,
            max_features=max_features,
            verbose=verbose,
            random_seed=random_seed,
        ))
        self.estimators_: List[DecisionTreeRegressor] = []
        self.estimator_weights_: np.ndarray = np.zeros(0)

    def fit(self, X: np.ndarray, y: np.ndarray) -> "AdaBoostRegressor":
        """
        Fit the boosted ensemble.

        Parameters
        ----------
        X : np.ndarray of shape (n_samples, n_features)
            Training features.
        y : np.ndarray of shape (n_samples,)
            Target values.

        Returns
        -------
        self : AdaBoostRegressor
            Fitted estimator.

        Raises
        ------
        ValueError
            If y has more than one output column.
        """
        self._validate_params()
        X, y = check_X_y(X, y, multi_output=True)
        if y.ndim != 1:
            raise ValueError(
                "AdaBoostRegressor supports only single-output targets; "
                f"y has shape {y.shape}."
            )
        n_samples, n_features = X.shape
        max_features = self._max_features(n_features)

        weights = np.full(n_samples, 1.0 / n_samples)
        rng = np.random.default_rng(self.params.random_seed)
        self.estimators_ = []
        estimator_weights = []
        importances = np.zeros(n_features)

        for t in range(self.params.n_estimators):
            ids = choice_ids(n_samples, weights, rng)
            tree = self._plant_tree(DecisionTreeRegressor, max_features, t)
            tree.fit(X[ids], y[ids])
            pred = tree.predict(X)

            with np.errstate(divide="ignore", invalid="ignore"):
                abs_err = np.abs((pred - y) / y)
            wrong = abs_err > self.params.threshold
            if not wrong.any():
                log_message(
                    f"Stopping at round {t + 1}: no sample above threshold",
                    verbose=self.params.verbose,
                )
                break
            # A round with no correct sample would get a zero estimator weight.
            if wrong.all():
                log_message(
                    f"Stopping at round {t + 1}: every sample above threshold",
                    verbose=self.params.verbose,
                )
                break

            err = weights[wrong].sum()
            if err <= 0.0:
                break

            beta = err ** self.params.exponent
            weight = np.log(1.0 / beta)
            self.estimators_.append(tree)
            estimator_weights.append(weight)
            importances += weight * tree.feature_importances_
            log_training_progress(
                t + 1, self.params.n_estimators, err,
                verbose=self.params.verbose, metric_name="weighted_error",
            )

            correct = abs_err <= self.params.threshold
            if not correct.any():
                break
            weights = weights.copy()
            weights[correct] *= beta
            weights = np.clip(weights, EPSILON, None)
            total = weights.sum()
            if total == 0.0:
                break
            weights /= total

        if not self.estimators_:
            warnings.warn(
                "AdaBoostRegressor failed to fit any tree; check its "
                "hyper-parameters.",
                UserWarning,
            )

        self.estimator_weights_ = np.asarray(estimator_weights, dtype=float)
        self.n_features_ = n_features
        total = importances.sum()
        if total > 0:
            importances /= total
        self.feature_importances_ = importances
        self.is_fitted_ = True
        return self

    def predict(self, X: np.ndarray) -> np.ndarray:
        """
        Weighted average of the retained trees' predictions.

        Raises
        ------
        ValueError
            If fitting retained no tree.
        """
        X = self._check_X(X)
        if not self.estimators_:
            raise ValueError(
                "AdaBoostRegressor retained no tree during fit and cannot predict."
            )
        predictions = np.zeros(X.shape[0])
        for weight, tree in zip(self.estimator_weights_, self.estimators_):
            predictions += weight * tree.predict(X)
        return predictions / self.estimator_weights_.sum()

    def _get_extra_save_data(self) -> Dict[str, Any]:
        return {
            "estimator_weights_": self.estimator_weights_.tolist(),
            "estimators_": [tree.to_dict() for tree in self.estimators_],
        }

    def _load_extra_save_data(self, model_data: Dict[str, Any]) -> None:
        self.estimator_weights_ = np.asarray(model_data["estimator_weights_"], dtype=float)
        self.estimators_ = [
            DecisionTreeRegressor.from_dict(data) for data in model_data["estimators_"]
        ]


__all__ = ["AdaBoostClassifier", "AdaBoostRegressor"]
