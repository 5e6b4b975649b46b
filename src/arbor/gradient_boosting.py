"""
Gradient boosting with second-order regression trees.

Every boosting sequence starts from a constant raw prediction and adds one
:class:`~arbor.tree.GradientTreeRegressor` per round, fitted to the loss
derivatives at the current prediction. Multi-output regression and
multiclass classification train one independent sequence per output or
class; those sequences can run in parallel.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import numpy as np

from .base import (
    BaseEstimator,
    ClassifierMixin,
    GradientBoostingParams,
    RegressorMixin,
)
from .loss_functions import Loss, get_loss_function
from .parallel import parallel_map
from .tree import GradientTreeRegressor
from .utils import (
    SEED_BASE,
    check_array,
    check_is_fitted,
    check_n_features,
    check_X_y,
    derive_seed,
    log_message,
    log_training_progress,
)


# =============================================================================
# Base Gradient Boosting
# =============================================================================

class BaseGradientBoosting(BaseEstimator):
    """
    Shared machinery of the gradient boosting estimators.

    Attributes
    ----------
    estimators_ : list of list of GradientTreeRegressor
        One sequence of ``n_estimators`` trees per output (regression) or
        per class (multiclass classification). Binary classification and
        single-output regression have a single sequence.
    base_predictions_ : np.ndarray of shape (n_sequences,)
        Initial raw prediction of every sequence.
    """

    loss = "squared_error"

    def __init__(
        self,
        n_estimators: int = 100,
        learning_rate: float = 0.1,
        reg_lambda: float = 0.0,
        subsample: float = 1.0,
        max_depth: Optional[int] = None,
        max_leaf_nodes: Optional[int] = None,
        min_samples_leaf: int = 1,
        max_features: Optional[int] = None,
        n_jobs: Optional[int] = None,
        verbose: int = 0,
        random_seed: Optional[int] = None,
    ):
        super().__init__(GradientBoostingParams(
            n_estimators=n_estimators,
            learning_rate=learning_rate,
            reg_lambda=reg_lambda,
            subsample=subsample,
            max_depth=max_depth,
            max_leaf_nodes=max_leaf_nodes,
            min_samples_leaf=min_samples_leaf,
            max_features=max_features,
            n_jobs=n_jobs,
            verbose=verbose,
            random_seed=random_seed,
        ))
        self.estimators_: List[List[GradientTreeRegressor]] = []
        self.base_predictions_: Optional[np.ndarray] = None

    @property
    def n_estimators(self) -> int:
        return self.params.n_estimators

    @property
    def learning_rate(self) -> float:
        return self.params.learning_rate

    @property
    def verbose(self) -> int:
        return self.params.verbose

    def _get_loss(self) -> Loss:
        return get_loss_function(self.loss)

    # -------------------------------------------------------------------------
    # Training
    # -------------------------------------------------------------------------

    def _fit_sequences(self, X: np.ndarray, targets: np.ndarray) -> None:
        """
        Train one boosting sequence per column of ``targets``.

        Parameters
        ----------
        X : np.ndarray of shape (n_samples, n_features)
            Training features.
        targets : np.ndarray of shape (n_samples, n_sequences)
            Target column of every sequence, already encoded for the loss.
        """
        n_samples, n_features = X.shape
        n_sequences = targets.shape[1]
        max_features = self.params.max_features
        if max_features is None:
            max_features = n_features
        max_features = min(max(max_features, 1), n_features)

        loss = self._get_loss()
        self.base_predictions_ = np.array(
            [loss.init_prediction(targets[:, k]) for k in range(n_sequences)]
        )
        log_message(
            f"Fitting {type(self).__name__}: {n_sequences} sequence(s) of "
            f"{self.params.n_estimators} trees on {n_samples} samples",
            verbose=self.params.verbose,
        )

        def run(k):
            return self._fit_sequence(
                X,
                targets[:, k],
                self.base_predictions_[k],
                derive_seed(self.params.random_seed, k),
                max_features,
                loss,
            )

        self.estimators_ = parallel_map(run, range(n_sequences), self.params.n_jobs)
        self.n_features_ = n_features

        importances = np.zeros(n_features)
        for sequence in self.estimators_:
            for tree in sequence:
                importances += tree.feature_importances_
        total = importances.sum()
        if total > 0:
            importances /= total
        self.feature_importances_ = importances
        self.is_fitted_ = True

    def _fit_sequence(
        self,
        X: np.ndarray,
        y: np.ndarray,
        init_pred: float,
        seed: int,
        max_features: int,
        loss: Loss,
    ) -> List[GradientTreeRegressor]:
        """Boost one target column; every draw comes from ``seed``'s stream."""
        n_samples = X.shape[0]
        n_sub_samples = min(n_samples, max(int(n_samples * self.params.subsample), 1))
        rng = np.random.default_rng(seed)
        y_pred = np.full(n_samples, init_pred)

        trees = []
        for iteration in range(self.params.n_estimators):
            ids = rng.choice(n_samples, size=n_sub_samples, replace=False)
            gradient, hessian = loss.gradient_hessian(y[ids], y_pred[ids])
            tree = GradientTreeRegressor(
                reg_lambda=self.params.reg_lambda,
                learning_rate=self.params.learning_rate,
                max_depth=self.params.max_depth,
                max_leaf_nodes=self.params.max_leaf_nodes,
                min_samples_leaf=self.params.min_samples_leaf,
                max_features=max_features,
                random_seed=int(rng.integers(SEED_BASE)),
            )
            tree.fit(X[ids], y[ids], gradient, hessian)
            trees.append(tree)
            y_pred += tree.predict(X)

            log_training_progress(
                iteration + 1,
                self.params.n_estimators,
                loss(y, y_pred),
                verbose=self.params.verbose,
                metric_name="train_loss",
            )
        return trees

    # -------------------------------------------------------------------------
    # Prediction
    # -------------------------------------------------------------------------

    def _check_X(self, X: np.ndarray) -> np.ndarray:
        check_is_fitted(self)
        X = check_array(X)
        check_n_features(self, X)
        return X

    def _raw_predict(self, X: np.ndarray) -> np.ndarray:
        """Raw predictions of shape (n_samples, n_sequences)."""
        def run(sequence):
            total = np.zeros(X.shape[0])
            for tree in sequence:
                total += tree.predict(X)
            return total

        scores = parallel_map(run, self.estimators_, self.params.n_jobs)
        return np.column_stack(scores) + self.base_predictions_

    def apply(self, X: np.ndarray) -> np.ndarray:
        """
        Return the leaf id of each sample in every tree.

        Returns
        -------
        leaf_ids : np.ndarray
            Shape (n_samples, n_estimators) for a single sequence,
            (n_samples, n_estimators, n_sequences) otherwise.
        """
        X = self._check_X(X)
        leaf_ids = np.stack(
            [
                np.column_stack([tree.apply(X) for tree in sequence])
                for sequence in self.estimators_
            ],
            axis=2,
        )
        if leaf_ids.shape[2] == 1:
            return leaf_ids[:, :, 0]
        return leaf_ids

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def _get_extra_save_data(self) -> Dict[str, Any]:
        return {
            "base_predictions_": self.base_predictions_.tolist(),
            "estimators_": [
                [tree.to_dict() for tree in sequence] for sequence in self.estimators_
            ],
        }

    def _load_extra_save_data(self, model_data: Dict[str, Any]) -> None:
        self.base_predictions_ = np.asarray(model_data["base_predictions_"], dtype=float)
        self.estimators_ = [
            [GradientTreeRegressor.from_dict(data) for data in sequence]
            for sequence in model_data["estimators_"]
        ]


# =============================================================================
# Regressor
# =============================================================================

class GradientBoostingRegressor(RegressorMixin, BaseGradientBoosting):
    """
    Gradient boosting regressor with squared error loss.

    Parameters
    ----------
    n_estimators : int, default=100
        Number of boosting rounds per output.
    learning_rate : float, default=0.1
        Shrinkage applied to every tree.
    reg_lambda : float, default=0.0
        L2 regularization on leaf weights.
    subsample : float, default=1.0
        Fraction of rows sampled without replacement for each round.
    max_depth : int or None, default=None
        Maximum depth of each tree.
    max_leaf_nodes : int or None, default=None
        Maximum number of leaves per tree.
    min_samples_leaf : int, default=1
        Minimum number of samples in a leaf.
    max_features : int or None, default=None
        Features examined per split; None means all.
    n_jobs : int or None, default=None
        Workers used for per-output sequences. None runs sequentially.
    verbose : int, default=0
        Verbosity level.
    random_seed : int or None, default=None
        Seed from which every sequence's stream derives.
    """

    def fit(self, X: np.ndarray, y: np.ndarray) -> "GradientBoostingRegressor":
        """
        Fit the boosted ensemble.

        Parameters
        ----------
        X : np.ndarray of shape (n_samples, n_features)
            Training features.
        y : np.ndarray of shape (n_samples,) or (n_samples, n_outputs)
            Target values.

        Returns
        -------
        self : GradientBoostingRegressor
            Fitted estimator.
        """
        self._validate_params()
        X, y = check_X_y(X, y, multi_output=True)
        self.n_outputs_ = 1 if y.ndim == 1 else y.shape[1]
        self._multi_output = y.ndim == 2
        self._fit_sequences(X, y.reshape(y.shape[0], -1))
        return self

    def predict(self, X: np.ndarray) -> np.ndarray:
        """
        Predict target values.

        Returns
        -------
        y_pred : np.ndarray of shape (n_samples,) or (n_samples, n_outputs)
        """
        X = self._check_X(X)
        scores = self._raw_predict(X)
        return scores if self._multi_output else scores[:, 0]

    def _get_extra_save_data(self) -> Dict[str, Any]:
        data = super()._get_extra_save_data()
        data.update({"n_outputs_": self.n_outputs_, "multi_output": self._multi_output})
        return data

    def _load_extra_save_data(self, model_data: Dict[str, Any]) -> None:
        super()._load_extra_save_data(model_data)
        self.n_outputs_ = model_data["n_outputs_"]
        self._multi_output = model_data["multi_output"]


# =============================================================================
# Classifier
# =============================================================================

class GradientBoostingClassifier(ClassifierMixin, BaseGradientBoosting):
    """
    Gradient boosting classifier with binomial deviance loss.

    Labels are encoded as -1 / +1: for two classes the positive class is
    the larger label; for more classes one one-vs-rest sequence is trained
    per class. Parameters are those of :class:`GradientBoostingRegressor`.

    Attributes
    ----------
    classes_ : np.ndarray
        Sorted class labels.
    """

    loss = "binomial_deviance"

    def fit(self, X: np.ndarray, y: np.ndarray) -> "GradientBoostingClassifier":
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
        self : GradientBoostingClassifier
            Fitted estimator.

        Raises
        ------
        ValueError
            If y contains fewer than two classes.
        """
        self._validate_params()
        X, y = check_X_y(X, y, y_numeric=False)
        self.classes_ = np.unique(y)
        if len(self.classes_) < 2:
            raise ValueError(
                f"GradientBoostingClassifier needs at least 2 classes, "
                f"got {len(self.classes_)}."
            )

        if len(self.classes_) == 2:
            targets = np.where(y != self.classes_[0], 1.0, -1.0).reshape(-1, 1)
        else:
            targets = np.column_stack(
                [np.where(y == label, 1.0, -1.0) for label in self.classes_]
            )
        self._fit_sequences(X, targets)
        return self

    def decision_function(self, X: np.ndarray) -> np.ndarray:
        """
        Raw boosted scores.

        Returns
        -------
        scores : np.ndarray of shape (n_samples,) for two classes,
            (n_samples, n_classes) otherwise.
        """
        X = self._check_X(X)
        scores = self._raw_predict(X)
        return scores[:, 0] if len(self.classes_) == 2 else scores

    def predict_proba(self, X: np.ndarray) -> np.ndarray:
        """
        Predict class probabilities.

        Returns
        -------
        probas : np.ndarray of shape (n_samples, n_classes)
            Rows sum to one; columns follow ``classes_``.
        """
        with np.errstate(over="ignore"):
            proba = 1.0 / (np.exp(-self.decision_function(X)) + 1.0)
        if len(self.classes_) > 2:
            return proba / proba.sum(axis=1, keepdims=True)
        return np.column_stack([1.0 - proba, proba])

    def predict(self, X: np.ndarray) -> np.ndarray:
        """Predict the most probable class of each sample."""
        return self.classes_[np.argmax(self.predict_proba(X), axis=1)]

    def _get_extra_save_data(self) -> Dict[str, Any]:
        data = super()._get_extra_save_data()
        data["classes_"] = self.classes_.tolist()
        return data

    def _load_extra_save_data(self, model_data: Dict[str, Any]) -> None:
        super()._load_extra_save_data(model_data)
        self.classes_ = np.asarray(model_data["classes_"])


__all__ = [
    "BaseGradientBoosting",
    "GradientBoostingRegressor",
    "GradientBoostingClassifier",
]
