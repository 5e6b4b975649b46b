"""
Bagging ensembles of decision trees.

Random forests train every tree on a bootstrap sample; extra-trees and
variable-random-trees ensembles train on the full sample and rely on split
randomization alone. All random draws (tree seeds and bootstrap indices)
are made up front from ``random_seed``, so the fitted ensemble does not
depend on ``n_jobs``.
"""

from __future__ import annotations

import math
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from .base import BaseEstimator, ClassifierMixin, ForestParams, RegressorMixin
from .parallel import parallel_map
from .tree import (
    BaseDecisionTree,
    DecisionTreeClassifier,
    DecisionTreeRegressor,
    ExtraTreeClassifier,
    ExtraTreeRegressor,
    VRTreeClassifier,
    VRTreeRegressor,
)
from .utils import (
    SEED_BASE,
    check_array,
    check_is_fitted,
    check_n_features,
    check_X_y,
    derive_seed,
    log_message,
)


# =============================================================================
# Base Forest
# =============================================================================

class BaseForest(BaseEstimator):
    """
    Shared fit/predict machinery of the bagging ensembles.

    Subclasses set ``tree_class`` and ``bootstrap`` and may override
    ``_tree_kwargs`` to pass extra per-tree parameters.
    """

    tree_class = DecisionTreeClassifier
    bootstrap = True

    def __init__(
        self,
        n_estimators: int = 10,
        criterion: str = "gini",
        max_depth: Optional[int] = None,
        max_leaf_nodes: Optional[int] = None,
        min_samples_leaf: int = 1,
        max_features: Optional[int] = None,
        n_jobs: Optional[int] = None,
        verbose: int = 0,
        random_seed: Optional[int] = None,
    ):
        super().__init__(ForestParams(
            n_estimators=n_estimators,
            criterion=criterion,
            max_depth=max_depth,
            max_leaf_nodes=max_leaf_nodes,
            min_samples_leaf=min_samples_leaf,
            max_features=max_features,
            n_jobs=n_jobs,
            verbose=verbose,
            random_seed=random_seed,
        ))
        self.estimators_: List[BaseDecisionTree] = []

    @property
    def n_estimators(self) -> int:
        return self.params.n_estimators

    @property
    def n_jobs(self) -> Optional[int]:
        return self.params.n_jobs

    @property
    def verbose(self) -> int:
        return self.params.verbose

    def _tree_kwargs(self, index: int) -> Dict[str, Any]:
        return {}

    def _plan_tasks(self, n_samples: int) -> List[Tuple[int, Optional[np.ndarray], int]]:
        """Draw (index, sample ids, tree seed) for every tree in a fixed order."""
        tasks = []
        for index in range(self.params.n_estimators):
            seed = derive_seed(self.params.random_seed, index)
            if self.bootstrap:
                rng = np.random.default_rng(seed)
                sample_ids = rng.integers(0, n_samples, size=n_samples)
                tree_seed = int(rng.integers(SEED_BASE))
            else:
                sample_ids, tree_seed = None, seed
            tasks.append((index, sample_ids, tree_seed))
        return tasks

    def _fit_trees(self, X: np.ndarray, y: np.ndarray) -> None:
        n_samples, n_features = X.shape
        max_features = self.params.max_features
        if max_features is None:
            max_features = int(math.sqrt(n_features))
        max_features = min(max(max_features, 1), n_features)

        log_message(
            f"Fitting {type(self).__name__} with {self.params.n_estimators} trees "
            f"on {n_samples} samples, {n_features} features",
            verbose=self.params.verbose,
        )

        def plant(task):
            index, sample_ids, tree_seed = task
            tree = self.tree_class(
                criterion=self.params.criterion,
                max_depth=self.params.max_depth,
                max_leaf_nodes=self.params.max_leaf_nodes,
                min_samples_leaf=self.params.min_samples_leaf,
                max_features=max_features,
                random_seed=tree_seed,
                **self._tree_kwargs(index),
            )
            if sample_ids is None:
                return tree.fit(X, y)
            return tree.fit(X[sample_ids], y[sample_ids])

        self.estimators_ = parallel_map(
            plant, self._plan_tasks(n_samples), self.params.n_jobs
        )
        self.n_features_ = n_features

        importances = np.zeros(n_features)
        for tree in self.estimators_:
            importances += tree.feature_importances_
        total = importances.sum()
        if total > 0:
            importances /= total
        self.feature_importances_ = importances
        self.is_fitted_ = True

        log_message(
            f"Built {len(self.estimators_)} trees", verbose=self.params.verbose
        )

    def _check_X(self, X: np.ndarray) -> np.ndarray:
        check_is_fitted(self)
        X = check_array(X)
        check_n_features(self, X)
        return X

    def _map_trees(self, method: str, X: np.ndarray) -> List[np.ndarray]:
        return parallel_map(
            lambda tree: getattr(tree, method)(X), self.estimators_, self.params.n_jobs
        )

    def apply(self, X: np.ndarray) -> np.ndarray:
        """
        Return the leaf id of each sample in every tree.

        Returns
        -------
        leaf_ids : np.ndarray of shape (n_samples, n_estimators)
        """
        X = self._check_X(X)
        return np.column_stack(self._map_trees("apply", X))

    def _get_extra_save_data(self) -> Dict[str, Any]:
        return {"estimators_": [tree.to_dict() for tree in self.estimators_]}

    def _load_extra_save_data(self, model_data: Dict[str, Any]) -> None:
        self.estimators_ = [
            self.tree_class.from_dict(data) for data in model_data["estimators_"]
        ]


# =============================================================================
# Classification Forests
# =============================================================================

class ForestClassifier(ClassifierMixin, BaseForest):
    """
    Bagging classifier base.

    ``predict`` is a majority vote over the trees' labels; ties go to the
    class that comes first in ``classes_``. ``predict_proba`` averages the
    trees' class probabilities, with classes a tree never saw counted as 0.
    """

    def fit(self, X: np.ndarray, y: np.ndarray) -> "ForestClassifier":
        """
        Fit the ensemble.

        Parameters
        ----------
        X : np.ndarray of shape (n_samples, n_features)
            Training features.
        y : np.ndarray of shape (n_samples,)
            Class labels.

        Returns
        -------
        self : ForestClassifier
            Fitted estimator.
        """
        self._validate_params()
        X, y = check_X_y(X, y, y_numeric=False)
        self.classes_ = np.unique(y)
        self._fit_trees(X, y)
        return self

    def predict(self, X: np.ndarray) -> np.ndarray:
        """Predict class labels by majority vote."""
        X = self._check_X(X)
        votes = np.zeros((X.shape[0], len(self.classes_)))
        rows = np.arange(X.shape[0])
        for labels in self._map_trees("predict", X):
            votes[rows, np.searchsorted(self.classes_, labels)] += 1.0
        return self.classes_[np.argmax(votes, axis=1)]

    def predict_proba(self, X: np.ndarray) -> np.ndarray:
        """
        Predict class probabilities averaged over trees.

        Returns
        -------
        probas : np.ndarray of shape (n_samples, n_classes)
            Rows sum to one; columns follow ``classes_``.
        """
        X = self._check_X(X)
        probas = np.zeros((X.shape[0], len(self.classes_)))
        tree_probas = self._map_trees("predict_proba", X)
        for tree, proba in zip(self.estimators_, tree_probas):
            probas[:, np.searchsorted(self.classes_, tree.classes_)] += proba
        return probas / probas.sum(axis=1, keepdims=True)

    def _get_extra_save_data(self) -> Dict[str, Any]:
        data = super()._get_extra_save_data()
        data["classes_"] = self.classes_.tolist()
        return data

    def _load_extra_save_data(self, model_data: Dict[str, Any]) -> None:
        super()._load_extra_save_data(model_data)
        self.classes_ = np.asarray(model_data["classes_"])


class RandomForestClassifier(ForestClassifier):
    """
    Random forest classifier.

    Every tree is trained on a bootstrap sample and examines
    ``max_features`` random features per split.

    Parameters
    ----------
    n_estimators : int, default=10
        Number of trees.
    criterion : {'gini', 'entropy'}, default='gini'
        Impurity function.
    max_depth : int or None, default=None
        Maximum depth of each tree.
    max_leaf_nodes : int or None, default=None
        Maximum number of leaves per tree.
    min_samples_leaf : int, default=1
        Minimum number of samples in a leaf.
    max_features : int or None, default=None
        Features examined per split; None means ``int(sqrt(n_features))``.
    n_jobs : int or None, default=None
        Workers used to fit and query trees. None runs sequentially.
    verbose : int, default=0
        Verbosity level.
    random_seed : int or None, default=None
        Seed from which every tree's seed and bootstrap sample derive.

    Attributes
    ----------
    estimators_ : list of DecisionTreeClassifier
        Fitted trees.
    classes_ : np.ndarray
        Sorted class labels.
    feature_importances_ : np.ndarray of shape (n_features,)
        Normalized sum of the trees' importances.
    """


class ExtraTreesClassifier(ForestClassifier):
    """
    Extra-trees classifier.

    Trains extremely randomized trees on the full sample. Parameters are
    those of :class:`RandomForestClassifier`.
    """

    tree_class = ExtraTreeClassifier
    bootstrap = False


class VRTreesClassifier(ForestClassifier):
    """
    Variable-random trees classifier.

    Trains variable-random trees on the full sample; tree ``n`` uses
    ``alpha = n * 0.5 / n_estimators``, so the ensemble ranges from fully
    random splits towards half-deterministic ones. Parameters are those
    of :class:`RandomForestClassifier`.
    """

    tree_class = VRTreeClassifier
    bootstrap = False

    def _tree_kwargs(self, index: int) -> Dict[str, Any]:
        return {"alpha": index * 0.5 / self.params.n_estimators}


# =============================================================================
# Regression Forests
# =============================================================================

class ForestRegressor(RegressorMixin, BaseForest):
    """Bagging regressor base: predictions are the mean over trees."""

    tree_class = DecisionTreeRegressor

    def __init__(
        self,
        n_estimators: int = 10,
        criterion: str = "mse",
        max_depth: Optional[int] = None,
        max_leaf_nodes: Optional[int] = None,
        min_samples_leaf: int = 1,
        max_features: Optional[int] = None,
        n_jobs: Optional[int] = None,
        verbose: int = 0,
        random_seed: Optional[int] = None,
    ):
        super().__init__(
            n_estimators=n_estimators,
            criterion=criterion,
            max_depth=max_depth,
            max_leaf_nodes=max_leaf_nodes,
            min_samples_leaf=min_samples_leaf,
            max_features=max_features,
            n_jobs=n_jobs,
            verbose=verbose,
            random_seed=random_seed,
        )

    def fit(self, X: np.ndarray, y: np.ndarray) -> "ForestRegressor":
        """
        Fit the ensemble.

        Parameters
        ----------
        X : np.ndarray of shape (n_samples, n_features)
            Training features.
        y : np.ndarray of shape (n_samples,) or (n_samples, n_outputs)
            Target values.

        Returns
        -------
        self : ForestRegressor
            Fitted estimator.
        """
        self._validate_params()
        X, y = check_X_y(X, y, multi_output=True)
        self._fit_trees(X, y)
        return self

    def predict(self, X: np.ndarray) -> np.ndarray:
        """
        Predict the mean of the trees' predictions.

        Returns
        -------
        y_pred : np.ndarray of shape (n_samples,) or (n_samples, n_outputs)
        """
        X = self._check_X(X)
        predictions = self._map_trees("predict", X)
        total = np.zeros_like(predictions[0])
        for prediction in predictions:
            total += prediction
        return total / len(predictions)


class RandomForestRegressor(ForestRegressor):
    """
    Random forest regressor.

    Every tree is trained on a bootstrap sample. Parameters are those of
    :class:`RandomForestClassifier` with ``criterion`` in {'mse', 'mae'}.
    """


class ExtraTreesRegressor(ForestRegressor):
    """
    Extra-trees regressor trained on the full sample.
    """

    tree_class = ExtraTreeRegressor
    bootstrap = False


class VRTreesRegressor(ForestRegressor):
    """
    Variable-random trees regressor.

    Tree ``n`` uses ``alpha = n * 0.5 / n_estimators``.
    """

    tree_class = VRTreeRegressor
    bootstrap = False

    def _tree_kwargs(self, index: int) -> Dict[str, Any]:
        return {"alpha": index * 0.5 / self.params.n_estimators}


__all__ = [
    "BaseForest",
    "ForestClassifier",
    "ForestRegressor",
    "RandomForestClassifier",
    "RandomForestRegressor",
    "ExtraTreesClassifier",
    "ExtraTreesRegressor",
    "VRTreesClassifier",
    "VRTreesRegressor",
]
