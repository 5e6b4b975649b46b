"""
Decision tree induction.

This module provides the depth-first tree builder shared by every tree
type and the concrete estimators built on it: classification and
regression trees, extremely randomized trees, variable-random trees and
the gradient tree used by gradient boosting.
Completely sklearn-free.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from .base import (
    BaseEstimator,
    ClassifierMixin,
    GradientTreeParams,
    RegressorMixin,
    TreeParams,
    VRTreeParams,
)
from .criterion import (
    ClassificationCriterion,
    Criterion,
    GradientCriterion,
    RegressionCriterion,
)
from .node import Node, NodeArena, TREE_LEAF
from .splitter import BestSplitter, RandomSplitter, VariableRandomSplitter
from .utils import check_array, check_is_fitted, check_n_features, check_X_y


# =============================================================================
# Tree Builder
# =============================================================================

class TreeBuilder:
    """
    Depth-first recursive tree grower.

    A builder is created for a single fit. It owns the growing arena and
    the leaf table; the leaf counter is the length of that table, so leaf
    ids follow the left-to-right order in which leaves are created.

    Parameters
    ----------
    criterion : Criterion
        Node scoring strategy.
    splitter : object
        Split search with a ``split(values, target, impurity, rng)`` method.
    max_depth : int or None
        Depth at which nodes become leaves.
    max_leaf_nodes : int or None
        Once this many leaves exist no further node is created.
    min_samples_leaf : int
        Nodes with fewer samples are not created; nodes with exactly this
        many samples become leaves.
    max_features : int
        Number of features drawn without replacement at every node.
    rng : np.random.Generator
        The tree's private random stream.
    """

    def __init__(
        self,
        criterion: Criterion,
        splitter: Any,
        *,
        max_depth: Optional[int],
        max_leaf_nodes: Optional[int],
        min_samples_leaf: int,
        max_features: int,
        rng: np.random.Generator,
    ):
        self.criterion = criterion
        self.splitter = splitter
        self.max_depth = max_depth
        self.max_leaf_nodes = max_leaf_nodes
        self.min_samples_leaf = min_samples_leaf
        self.max_features = max_features
        self.rng = rng

        self.arena = NodeArena()
        self.leaf_values: List[np.ndarray] = []

    def build(self, X: np.ndarray, target: np.ndarray) -> Tuple[NodeArena, np.ndarray]:
        """
        Grow a tree on ``(X, target)``.

        Returns
        -------
        arena : NodeArena
            Nodes of the tree, root first.
        leaf_values : np.ndarray of shape (n_leaves, payload_size)
            Leaf payloads indexed by leaf id.

        Raises
        ------
        ValueError
            If there are fewer samples than ``min_samples_leaf``.
        """
        n_samples = X.shape[0]
        if n_samples < self.min_samples_leaf:
            raise ValueError(
                f"min_samples_leaf={self.min_samples_leaf} exceeds the number "
                f"of samples ({n_samples})."
            )
        impurity = self.criterion.impurity(target)
        sorted_ids = None
        if getattr(self.splitter, "presorted", False):
            sorted_ids = np.argsort(X, axis=0, kind="stable")
        self._grow(X, target, np.arange(n_samples), sorted_ids, 0, impurity)
        return self.arena, np.vstack(self.leaf_values)

    def _grow(
        self,
        X: np.ndarray,
        target: np.ndarray,
        sample_ids: np.ndarray,
        sorted_ids: Optional[np.ndarray],
        depth: int,
        impurity: float,
    ) -> Optional[int]:
        """
        Grow the subtree for ``sample_ids``; return its arena index or None.

        ``sorted_ids`` holds the same samples once per feature column, each
        column ordered by that feature's values, or None when the splitter
        sorts for itself.
        """
        n_samples = sample_ids.shape[0]

        if self.max_leaf_nodes is not None and len(self.leaf_values) >= self.max_leaf_nodes:
            return None
        if n_samples < self.min_samples_leaf:
            return None

        node = Node(depth=depth, impurity=float(impurity), n_samples=int(n_samples))
        node_id = self.arena.add(node)
        node_target = target[sample_ids]

        if n_samples == self.min_samples_leaf:
            return self._put_leaf(node, node_id, node_target)
        if self.max_depth is not None and depth == self.max_depth:
            return self._put_leaf(node, node_id, node_target)
        if self.criterion.is_pure(node_target):
            return self._put_leaf(node, node_id, node_target)

        feature_id, best = self._find_best_split(
            X, target, sample_ids, sorted_ids, node_target, impurity
        )
        if best is None or best.gain == 0.0:
            return self._put_leaf(node, node_id, node_target)

        go_left = X[sample_ids, feature_id] <= best.threshold
        left_sorted = right_sorted = None
        if sorted_ids is not None:
            left_sorted, right_sorted = _partition_sorted(
                X, sorted_ids, feature_id, best.threshold
            )
        left_id = self._grow(
            X, target, sample_ids[go_left], left_sorted, depth + 1, best.left_impurity
        )
        right_id = self._grow(
            X, target, sample_ids[~go_left], right_sorted, depth + 1, best.right_impurity
        )

        if left_id is None and right_id is None:
            return self._put_leaf(node, node_id, node_target)

        node.leaf = False
        node.feature_id = int(feature_id)
        node.threshold = float(best.threshold)
        node.left = TREE_LEAF if left_id is None else left_id
        node.right = TREE_LEAF if right_id is None else right_id
        return node_id

    def _find_best_split(self, X, target, sample_ids, sorted_ids, node_target, impurity):
        """Return the candidate feature with the highest gain; first seen wins ties."""
        n_features = X.shape[1]
        feature_ids = self.rng.choice(n_features, size=self.max_features, replace=False)

        best_feature, best = -1, None
        for feature_id in feature_ids:
            if sorted_ids is None:
                record = self.splitter.split(
                    X[sample_ids, feature_id], node_target, impurity, self.rng
                )
            else:
                column = sorted_ids[:, feature_id]
                record = self.splitter.split(
                    X[column, feature_id], target[column], impurity, self.rng,
                    presorted=True,
                )
            if record is not None and (best is None or record.gain > best.gain):
                best_feature, best = feature_id, record
        return best_feature, best

    def _put_leaf(self, node: Node, node_id: int, node_target: np.ndarray) -> int:
        node.leaf = True
        node.leaf_id = len(self.leaf_values)
        self.leaf_values.append(np.atleast_1d(self.criterion.leaf_value(node_target)))
        return node_id


def _partition_sorted(
    X: np.ndarray, sorted_ids: np.ndarray, feature_id: int, threshold: float
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Split a node's per-feature sorted sample ids into its two children.

    Boolean selection keeps the relative order inside every column, so the
    children's columns stay sorted without sorting again.
    """
    n_samples, n_features = sorted_ids.shape
    goes_left = X[sorted_ids, feature_id] <= threshold
    n_left = int(goes_left[:, 0].sum())
    left = sorted_ids.T[goes_left.T].reshape(n_features, n_left).T
    right = sorted_ids.T[~goes_left.T].reshape(n_features, n_samples - n_left).T
    return left, right


# =============================================================================
# Base Decision Tree
# =============================================================================

class BaseDecisionTree(BaseEstimator):
    """
    Shared machinery of all tree estimators.

    Subclasses choose the criterion and the split search; this class runs
    the builder, stores the arena and the leaf table, answers ``apply``
    and computes impurity-based feature importances.
    """

    def __init__(self, params: TreeParams):
        super().__init__(params)
        self.tree_: Optional[NodeArena] = None
        self.n_leaves_: int = 0

    @property
    def criterion(self) -> str:
        return self.params.criterion

    @property
    def max_depth(self) -> Optional[int]:
        return self.params.max_depth

    @property
    def min_samples_leaf(self) -> int:
        return self.params.min_samples_leaf

    def _make_splitter(self, criterion: Criterion):
        return BestSplitter(criterion)

    def _grow_tree(
        self, X: np.ndarray, target: np.ndarray, criterion: Criterion
    ) -> np.ndarray:
        """Grow the tree and set the structural fitted attributes."""
        n_features = X.shape[1]
        max_features = self.params.max_features
        if max_features is None:
            max_features = n_features
        max_features = min(max(max_features, 1), n_features)

        builder = TreeBuilder(
            criterion,
            self._make_splitter(criterion),
            max_depth=self.params.max_depth,
            max_leaf_nodes=self.params.max_leaf_nodes,
            min_samples_leaf=self.params.min_samples_leaf,
            max_features=max_features,
            rng=np.random.default_rng(self.params.random_seed),
        )
        self.tree_, leaf_values = builder.build(X, target)
        self.n_features_ = n_features
        self.n_leaves_ = self.tree_.n_leaves
        self.feature_importances_ = self._eval_importance()
        self.is_fitted_ = True
        return leaf_values

    def _eval_importance(self) -> np.ndarray:
        """
        Impurity decrease per feature, normalized to sum to one.

        A missing child contributes nothing. Stays all zeros if no split
        decreased impurity.
        """
        importances = np.zeros(self.n_features_)
        for node in self.tree_:
            if node.leaf:
                continue
            decrease = node.n_samples * node.impurity
            for child_id in (node.left, node.right):
                if child_id != TREE_LEAF:
                    child = self.tree_[child_id]
                    decrease -= child.n_samples * child.impurity
            importances[node.feature_id] += decrease

        importances /= self.tree_.root.n_samples
        total = importances.sum()
        if total > 0:
            importances /= total
        return importances

    def _check_X(self, X: np.ndarray) -> np.ndarray:
        check_is_fitted(self)
        X = check_array(X)
        check_n_features(self, X)
        return X

    def apply(self, X: np.ndarray) -> np.ndarray:
        """
        Return the leaf id each sample falls into.

        Parameters
        ----------
        X : np.ndarray of shape (n_samples, n_features)
            Input samples.

        Returns
        -------
        leaf_ids : np.ndarray of shape (n_samples,)
            Values in ``[0, n_leaves_)``.
        """
        X = self._check_X(X)
        return self.tree_.apply(X)

    def get_depth(self) -> int:
        """Return the depth of the deepest node."""
        check_is_fitted(self)
        return self.tree_.max_depth

    def _get_extra_save_data(self) -> Dict[str, Any]:
        return {"tree_": self.tree_.to_dict(), "n_leaves_": self.n_leaves_}

    def _load_extra_save_data(self, model_data: Dict[str, Any]) -> None:
        self.tree_ = NodeArena.from_dict(model_data["tree_"])
        self.n_leaves_ = model_data["n_leaves_"]


# =============================================================================
# Classification Trees
# =============================================================================

class DecisionTreeClassifier(ClassifierMixin, BaseDecisionTree):
    """
    Decision tree classifier.

    Leaves store the class frequencies of their training samples.

    Parameters
    ----------
    criterion : {'gini', 'entropy'}, default='gini'
        Impurity function.
    max_depth : int or None, default=None
        Maximum depth of the tree.
    max_leaf_nodes : int or None, default=None
        Maximum number of leaves.
    min_samples_leaf : int, default=1
        Minimum number of samples in a leaf.
    max_features : int or None, default=None
        Number of features examined per split. None means all.
    random_seed : int or None, default=None
        Seed of the random stream used for feature sampling.

    Attributes
    ----------
    classes_ : np.ndarray
        Sorted class labels seen during fit.
    leaf_probs_ : np.ndarray of shape (n_leaves, n_classes)
        Class probabilities per leaf.
    leaf_labels_ : np.ndarray of shape (n_leaves,)
        Most frequent class per leaf.
    """

    def __init__(
        self,
        criterion: str = "gini",
        max_depth: Optional[int] = None,
        max_leaf_nodes: Optional[int] = None,
        min_samples_leaf: int = 1,
        max_features: Optional[int] = None,
        random_seed: Optional[int] = None,
    ):
        super().__init__(self._make_params(
            criterion=criterion,
            max_depth=max_depth,
            max_leaf_nodes=max_leaf_nodes,
            min_samples_leaf=min_samples_leaf,
            max_features=max_features,
            random_seed=random_seed,
        ))
        self.classes_: Optional[np.ndarray] = None
        self.leaf_probs_: Optional[np.ndarray] = None
        self.leaf_labels_: Optional[np.ndarray] = None

    def _make_params(self, **kwargs) -> TreeParams:
        return TreeParams(**kwargs)

    def fit(self, X: np.ndarray, y: np.ndarray) -> "DecisionTreeClassifier":
        """
        Build the tree from labelled samples.

        Parameters
        ----------
        X : np.ndarray of shape (n_samples, n_features)
            Training features.
        y : np.ndarray of shape (n_samples,)
            Class labels.

        Returns
        -------
        self : DecisionTreeClassifier
            Fitted estimator.
        """
        self._validate_params()
        X, y = check_X_y(X, y, y_numeric=False)
        self.classes_, codes = np.unique(y, return_inverse=True)
        criterion = ClassificationCriterion(self.params.criterion, len(self.classes_))

        self.leaf_probs_ = self._grow_tree(X, codes.ravel(), criterion)
        self.leaf_labels_ = self.classes_[np.argmax(self.leaf_probs_, axis=1)]
        return self

    def predict(self, X: np.ndarray) -> np.ndarray:
        """Predict the class label of each sample."""
        return self.leaf_labels_[self.apply(X)]

    def predict_proba(self, X: np.ndarray) -> np.ndarray:
        """
        Predict class probabilities.

        Returns
        -------
        probas : np.ndarray of shape (n_samples, n_classes)
            Columns follow ``classes_``.
        """
        return self.leaf_probs_[self.apply(X)]

    def _get_extra_save_data(self) -> Dict[str, Any]:
        data = super()._get_extra_save_data()
        data.update({
            "classes_": self.classes_.tolist(),
            "leaf_probs_": self.leaf_probs_.tolist(),
        })
        return data

    def _load_extra_save_data(self, model_data: Dict[str, Any]) -> None:
        super()._load_extra_save_data(model_data)
        self.classes_ = np.asarray(model_data["classes_"])
        self.leaf_probs_ = np.asarray(model_data["leaf_probs_"], dtype=float)
        self.leaf_labels_ = self.classes_[np.argmax(self.leaf_probs_, axis=1)]


class ExtraTreeClassifier(DecisionTreeClassifier):
    """
    Extremely randomized tree classifier.

    Each candidate feature gets one threshold drawn uniformly between its
    minimum and maximum at the node; the best of those random splits wins.
    Parameters are those of :class:`DecisionTreeClassifier`.
    """

    def _make_splitter(self, criterion: Criterion):
        return RandomSplitter(criterion)


class VRTreeClassifier(DecisionTreeClassifier):
    """
    Variable-random tree classifier.

    Parameters
    ----------
    alpha : float, default=0.5
        Probability of taking the deterministic best split of a feature
        instead of a random midpoint between two observed values.
        Clamped to [0, 1].

    Other parameters are those of :class:`DecisionTreeClassifier`.
    """

    def __init__(
        self,
        criterion: str = "gini",
        alpha: float = 0.5,
        max_depth: Optional[int] = None,
        max_leaf_nodes: Optional[int] = None,
        min_samples_leaf: int = 1,
        max_features: Optional[int] = None,
        random_seed: Optional[int] = None,
    ):
        self._alpha = alpha
        super().__init__(
            criterion=criterion,
            max_depth=max_depth,
            max_leaf_nodes=max_leaf_nodes,
            min_samples_leaf=min_samples_leaf,
            max_features=max_features,
            random_seed=random_seed,
        )

    def _make_params(self, **kwargs) -> TreeParams:
        return VRTreeParams(alpha=self._alpha, **kwargs)

    def _make_splitter(self, criterion: Criterion):
        return VariableRandomSplitter(criterion, self.params.alpha)


# =============================================================================
# Regression Trees
# =============================================================================

class DecisionTreeRegressor(RegressorMixin, BaseDecisionTree):
    """
    Decision tree regressor.

    Leaves store the mean target of their training samples, one value per
    output for multi-output targets.

    Parameters
    ----------
    criterion : {'mse', 'mae'}, default='mse'
        Impurity function. Both measure deviation from the node mean.
    max_depth : int or None, default=None
        Maximum depth of the tree.
    max_leaf_nodes : int or None, default=None
        Maximum number of leaves.
    min_samples_leaf : int, default=1
        Minimum number of samples in a leaf.
    max_features : int or None, default=None
        Number of features examined per split. None means all.
    random_seed : int or None, default=None
        Seed of the random stream used for feature sampling.

    Attributes
    ----------
    leaf_values_ : np.ndarray of shape (n_leaves,) or (n_leaves, n_outputs)
        Mean target per leaf.
    n_outputs_ : int
        Number of target columns.
    """

    def __init__(
        self,
        criterion: str = "mse",
        max_depth: Optional[int] = None,
        max_leaf_nodes: Optional[int] = None,
        min_samples_leaf: int = 1,
        max_features: Optional[int] = None,
        random_seed: Optional[int] = None,
    ):
        super().__init__(self._make_params(
            criterion=criterion,
            max_depth=max_depth,
            max_leaf_nodes=max_leaf_nodes,
            min_samples_leaf=min_samples_leaf,
            max_features=max_features,
            random_seed=random_seed,
        ))
        self.leaf_values_: Optional[np.ndarray] = None
        self.n_outputs_: int = 1

    def _make_params(self, **kwargs) -> TreeParams:
        return TreeParams(**kwargs)

    def fit(self, X: np.ndarray, y: np.ndarray) -> "DecisionTreeRegressor":
        """
        Build the tree from samples and targets.

        Parameters
        ----------
        X : np.ndarray of shape (n_samples, n_features)
            Training features.
        y : np.ndarray of shape (n_samples,) or (n_samples, n_outputs)
            Target values.

        Returns
        -------
        self : DecisionTreeRegressor
            Fitted estimator.
        """
        self._validate_params()
        X, y = check_X_y(X, y, multi_output=True)
        target = y.reshape(y.shape[0], -1)
        self.n_outputs_ = target.shape[1]
        criterion = RegressionCriterion(self.params.criterion)

        leaf_values = self._grow_tree(X, target, criterion)
        self.leaf_values_ = leaf_values.ravel() if y.ndim == 1 else leaf_values
        return self

    def predict(self, X: np.ndarray) -> np.ndarray:
        """
        Predict target values.

        Returns
        -------
        y_pred : np.ndarray of shape (n_samples,) or (n_samples, n_outputs)
        """
        return self.leaf_values_[self.apply(X)]

    def _get_extra_save_data(self) -> Dict[str, Any]:
        data = super()._get_extra_save_data()
        data.update({
            "leaf_values_": self.leaf_values_.tolist(),
            "n_outputs_": self.n_outputs_,
        })
        return data

    def _load_extra_save_data(self, model_data: Dict[str, Any]) -> None:
        super()._load_extra_save_data(model_data)
        self.leaf_values_ = np.asarray(model_data["leaf_values_"], dtype=float)
        self.n_outputs_ = model_data["n_outputs_"]


class ExtraTreeRegressor(DecisionTreeRegressor):
    """
    Extremely randomized tree regressor.

    Parameters are those of :class:`DecisionTreeRegressor`.
    """

    def _make_splitter(self, criterion: Criterion):
        return RandomSplitter(criterion)


class VRTreeRegressor(DecisionTreeRegressor):
    """
    Variable-random tree regressor.

    Parameters
    ----------
    alpha : float, default=0.5
        Probability of taking the deterministic best split of a feature.

    Other parameters are those of :class:`DecisionTreeRegressor`.
    """

    def __init__(
        self,
        criterion: str = "mse",
        alpha: float = 0.5,
        max_depth: Optional[int] = None,
        max_leaf_nodes: Optional[int] = None,
        min_samples_leaf: int = 1,
        max_features: Optional[int] = None,
        random_seed: Optional[int] = None,
    ):
        self._alpha = alpha
        super().__init__(
            criterion=criterion,
            max_depth=max_depth,
            max_leaf_nodes=max_leaf_nodes,
            min_samples_leaf=min_samples_leaf,
            max_features=max_features,
            random_seed=random_seed,
        )

    def _make_params(self, **kwargs) -> TreeParams:
        return VRTreeParams(alpha=self._alpha, **kwargs)

    def _make_splitter(self, criterion: Criterion):
        return VariableRandomSplitter(criterion, self.params.alpha)


# =============================================================================
# Gradient Tree
# =============================================================================

class GradientTreeRegressor(RegressorMixin, BaseDecisionTree):
    """
    Regression tree fitted to loss derivatives, used by gradient boosting.

    Splits maximize the second-order boosting gain and every leaf stores
    the weight ``-learning_rate * sum(g) / (sum(h) + reg_lambda)`` of its
    samples.

    Parameters
    ----------
    reg_lambda : float, default=0.0
        L2 regularization on leaf weights.
    learning_rate : float, default=1.0
        Shrinkage applied to every leaf weight.
    max_depth : int or None, default=None
        Maximum depth of the tree.
    max_leaf_nodes : int or None, default=None
        Maximum number of leaves.
    min_samples_leaf : int, default=1
        Minimum number of samples in a leaf.
    max_features : int or None, default=None
        Number of features examined per split. None means all.
    random_seed : int or None, default=None
        Seed of the random stream used for feature sampling.

    Attributes
    ----------
    leaf_values_ : np.ndarray of shape (n_leaves,)
        Leaf weights.
    feature_importances_ : np.ndarray of shape (n_features,)
        Share of splits made on each feature.
    """

    def __init__(
        self,
        reg_lambda: float = 0.0,
        learning_rate: float = 1.0,
        max_depth: Optional[int] = None,
        max_leaf_nodes: Optional[int] = None,
        min_samples_leaf: int = 1,
        max_features: Optional[int] = None,
        random_seed: Optional[int] = None,
    ):
        super().__init__(GradientTreeParams(
            reg_lambda=reg_lambda,
            learning_rate=learning_rate,
            max_depth=max_depth,
            max_leaf_nodes=max_leaf_nodes,
            min_samples_leaf=min_samples_leaf,
            max_features=max_features,
            random_seed=random_seed,
        ))
        self.leaf_values_: Optional[np.ndarray] = None

    def fit(
        self,
        X: np.ndarray,
        y: np.ndarray,
        gradient: np.ndarray,
        hessian: np.ndarray,
    ) -> "GradientTreeRegressor":
        """
        Build the tree from loss derivatives.

        Parameters
        ----------
        X : np.ndarray of shape (n_samples, n_features)
            Training features.
        y : np.ndarray of shape (n_samples,)
            Targets; a node whose targets are all equal becomes a leaf.
        gradient : np.ndarray of shape (n_samples,)
            First derivative of the loss at the current prediction.
        hessian : np.ndarray of shape (n_samples,)
            Second derivative of the loss at the current prediction.

        Returns
        -------
        self : GradientTreeRegressor
            Fitted estimator.
        """
        self._validate_params()
        X, y = check_X_y(X, y)
        gradient = check_array(gradient, ensure_2d=False)
        hessian = check_array(hessian, ensure_2d=False)
        if gradient.shape != y.shape or hessian.shape != y.shape:
            raise ValueError(
                f"gradient and hessian must have shape {y.shape}, got "
                f"{gradient.shape} and {hessian.shape}."
            )

        criterion = GradientCriterion(self.params.reg_lambda, self.params.learning_rate)
        target = np.column_stack([gradient, hessian, y])
        self.leaf_values_ = self._grow_tree(X, target, criterion).ravel()
        return self

    def _eval_importance(self) -> np.ndarray:
        importances = np.zeros(self.n_features_)
        for node in self.tree_:
            if not node.leaf:
                importances[node.feature_id] += 1.0
        total = importances.sum()
        if total > 0:
            importances /= total
        return importances

    def predict(self, X: np.ndarray) -> np.ndarray:
        """Return the leaf weight reached by each sample."""
        return self.leaf_values_[self.apply(X)]

    def _get_extra_save_data(self) -> Dict[str, Any]:
        data = super()._get_extra_save_data()
        data["leaf_values_"] = self.leaf_values_.tolist()
        return data

    def _load_extra_save_data(self, model_data: Dict[str, Any]) -> None:
        super()._load_extra_save_data(model_data)
        self.leaf_values_ = np.asarray(model_data["leaf_values_"], dtype=float)


__all__ = [
    "TreeBuilder",
    "BaseDecisionTree",
    "DecisionTreeClassifier",
    "DecisionTreeRegressor",
    "ExtraTreeClassifier",
    "ExtraTreeRegressor",
    "VRTreeClassifier",
    "VRTreeRegressor",
    "GradientTreeRegressor",
]
