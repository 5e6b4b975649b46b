"""
Meta-estimators combining user-supplied estimators.

Voting combines the members' predictions directly; stacking trains a
meta estimator on out-of-fold predictions of the members. Members are any
objects with ``fit`` and ``predict`` (and ``predict_proba`` for soft
voting), so these estimators persist through pickle only.
"""

from __future__ import annotations

import copy
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from .base import BaseEstimator, ClassifierMixin, RegressorMixin
from .gradient_boosting import GradientBoostingClassifier, GradientBoostingRegressor
from .utils import check_array, check_is_fitted, check_n_features, check_X_y


# =============================================================================
# Parameters
# =============================================================================

@dataclass
class VotingParams:
    """
    Parameters of a voting ensemble.

    Parameters
    ----------
    weights : dict or None
        Weight of every member keyed by name. None weights all members 1.0.
    voting : {'hard', 'soft'}
        Majority vote on labels or average of class probabilities.
        Ignored by the regressor.
    """
    weights: Optional[Dict[str, float]] = None
    voting: str = "hard"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, params: Dict[str, Any]):
        valid_keys = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in params.items() if k in valid_keys})

    def validate(self) -> None:
        if self.voting not in ("hard", "soft"):
            raise ValueError(f"voting must be 'hard' or 'soft', got {self.voting!r}")
        if self.weights is not None and any(w < 0 for w in self.weights.values()):
            raise ValueError("weights must be non-negative.")


@dataclass
class StackingParams:
    """
    Parameters of a stacking ensemble.

    Parameters
    ----------
    n_splits : int
        Number of folds used to build the out-of-fold predictions.
    shuffle : bool
        Whether to shuffle the samples before splitting them into folds.
    passthrough : bool
        Whether the meta estimator also sees the original features.
    random_seed : int or None
        Seed of the fold shuffling.
    """
    n_splits: int = 5
    shuffle: bool = True
    passthrough: bool = False
    random_seed: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, params: Dict[str, Any]):
        valid_keys = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in params.items() if k in valid_keys})

    def validate(self) -> None:
        if (
            isinstance(self.n_splits, bool)
            or not isinstance(self.n_splits, (int, np.integer))
            or self.n_splits < 2
        ):
            raise ValueError(f"n_splits must be an integer >= 2, got {self.n_splits!r}")


STACK_METHODS = ("predict_proba", "decision_function", "predict")


@dataclass
class StackingClassifierParams(StackingParams):
    """
    Parameters of a stacking classifier.

    Parameters
    ----------
    stack_method : {'auto', 'predict_proba', 'decision_function', 'predict'}
        Member method producing the meta features. 'auto' takes the first
        of ``predict_proba``, ``decision_function`` and ``predict`` that
        each member provides.
    """
    stack_method: str = "auto"

    def validate(self) -> None:
        super().validate()
        if self.stack_method != "auto" and self.stack_method not in STACK_METHODS:
            raise ValueError(
                f"stack_method must be 'auto' or one of {list(STACK_METHODS)}, "
                f"got {self.stack_method!r}"
            )


# =============================================================================
# Base
# =============================================================================

class _BaseMetaEstimator(BaseEstimator):
    """Common behaviour of meta-estimators: named members, pickle-only persistence."""

    def __init__(self, estimators: Dict[str, Any], params: Any):
        if not isinstance(estimators, dict) or not estimators:
            raise ValueError("estimators must be a non-empty dict of name -> estimator.")
        super().__init__(params)
        self.estimators = estimators

    def _weights(self) -> Dict[str, float]:
        weights = self.params.weights
        if weights is None:
            return {name: 1.0 for name in self.estimators}
        missing = set(self.estimators) - set(weights)
        if missing:
            raise ValueError(f"weights lack entries for estimators: {sorted(missing)}")
        return weights

    def _check_X(self, X: np.ndarray) -> np.ndarray:
        check_is_fitted(self)
        X = check_array(X)
        check_n_features(self, X)
        return X

    def to_dict(self) -> Dict[str, Any]:
        raise NotImplementedError(
            f"{type(self).__name__} does not support JSON persistence; use pickle."
        )

    def save_model(self, path: str) -> None:
        raise NotImplementedError(
            f"{type(self).__name__} does not support JSON persistence; use pickle."
        )

    @classmethod
    def from_dict(cls, model_data: Dict[str, Any]) -> "BaseEstimator":
        raise NotImplementedError(
            f"{cls.__name__} does not support JSON persistence; use pickle."
        )

    def _set_state(self, model_data: Dict[str, Any]) -> "BaseEstimator":
        raise NotImplementedError(
            f"{type(self).__name__} does not support JSON persistence; use pickle."
        )

    def __repr__(self) -> str:
        names = ", ".join(self.estimators)
        return f"{type(self).__name__}(estimators=[{names}])"


# =============================================================================
# Voting
# =============================================================================

class VotingClassifier(ClassifierMixin, _BaseMetaEstimator):
    """
    Voting ensemble of classifiers.

    Members are trained on integer-encoded labels, so they may be any
    classifiers following the ``fit`` / ``predict`` / ``predict_proba``
    protocol. Hard voting adds each member's weight to the class it
    predicts; soft voting averages the weighted class probabilities.
    Ties go to the lowest class.

    Parameters
    ----------
    estimators : dict
        Members keyed by name.
    weights : dict or None, default=None
        Weight of every member.
    voting : {'hard', 'soft'}, default='hard'
        Voting rule.

    Examples
    --------
    >>> clf = VotingClassifier({
    ...     "forest": RandomForestClassifier(random_seed=1),
    ...     "boost": AdaBoostClassifier(random_seed=1),
    ... })
    >>> clf.fit(X, y).predict(X)
    """

    def __init__(
        self,
        estimators: Dict[str, Any],
        weights: Optional[Dict[str, float]] = None,
        voting: str = "hard",
    ):
        super().__init__(estimators, VotingParams(weights=weights, voting=voting))
        self.classes_: Optional[np.ndarray] = None

    def fit(self, X: np.ndarray, y: np.ndarray) -> "VotingClassifier":
        self._validate_params()
        X, y = check_X_y(X, y, y_numeric=False)
        self.classes_, codes = np.unique(y, return_inverse=True)
        codes = codes.ravel()
        for estimator in self.estimators.values():
            estimator.fit(X, codes)
        self.n_features_ = X.shape[1]
        self.is_fitted_ = True
        return self

    def decision_function(self, X: np.ndarray) -> np.ndarray:
        """
        Weighted vote counts, or averaged probabilities under soft voting.

        Returns
        -------
        scores : np.ndarray of shape (n_samples, n_classes)
        """
        if self.params.voting == "soft":
            return self.predict_proba(X)
        X = self._check_X(X)
        weights = self._weights()
        scores = np.zeros((X.shape[0], len(self.classes_)))
        rows = np.arange(X.shape[0])
        for name, estimator in self.estimators.items():
            votes = np.asarray(estimator.predict(X)).astype(int)
            np.add.at(scores, (rows, votes), weights[name])
        return scores

    def predict_proba(self, X: np.ndarray) -> np.ndarray:
        """Weighted average of the members' class probabilities."""
        X = self._check_X(X)
        weights = self._weights()
        probs = np.zeros((X.shape[0], len(self.classes_)))
        for name, estimator in self.estimators.items():
            probs += weights[name] * estimator.predict_proba(X)
        return probs / sum(weights.values())

    def predict(self, X: np.ndarray) -> np.ndarray:
        return self.classes_[np.argmax(self.decision_function(X), axis=1)]


class VotingRegressor(RegressorMixin, _BaseMetaEstimator):
    """
    Voting ensemble of regressors.

    Predicts the weighted average of the members' predictions.

    Parameters
    ----------
    estimators : dict
        Members keyed by name.
    weights : dict or None, default=None
        Weight of every member.
    """

    def __init__(
        self,
        estimators: Dict[str, Any],
        weights: Optional[Dict[str, float]] = None,
    ):
        super().__init__(estimators, VotingParams(weights=weights))

    def fit(self, X: np.ndarray, y: np.ndarray) -> "VotingRegressor":
        self._validate_params()
        X, y = check_X_y(X, y, multi_output=True)
        for estimator in self.estimators.values():
            estimator.fit(X, y)
        self.n_features_ = X.shape[1]
        self.is_fitted_ = True
        return self

    def predict(self, X: np.ndarray) -> np.ndarray:
        X = self._check_X(X)
        weights = self._weights()
        total = None
        for name, estimator in self.estimators.items():
            contribution = weights[name] * np.asarray(estimator.predict(X), dtype=float)
            total = contribution if total is None else total + contribution
        return total / sum(weights.values())


# =============================================================================
# Stacking
# =============================================================================

def kfold_indices(
    n_samples: int,
    n_splits: int,
    *,
    shuffle: bool = False,
    rng: Optional[np.random.Generator] = None,
) -> List[Tuple[np.ndarray, np.ndarray]]:
    """
    Split sample indices into K folds.

    The first ``n_samples % n_splits`` folds hold one extra sample.

    Returns
    -------
    folds : list of (train_ids, valid_ids)

    Raises
    ------
    ValueError
        If n_splits is not in ``[2, n_samples]``.
    """
    if not 2 <= n_splits <= n_samples:
        raise ValueError(
            f"n_splits must be between 2 and the number of samples "
            f"({n_samples}), got {n_splits}."
        )
    ids = np.arange(n_samples)
    if shuffle:
        ids = (rng if rng is not None else np.random.default_rng()).permutation(ids)
    fold_sets = np.array_split(ids, n_splits)
    return [
        (np.concatenate([f for j, f in enumerate(fold_sets) if j != k]), fold_sets[k])
        for k in range(n_splits)
    ]


def stratified_kfold_indices(
    codes: np.ndarray,
    n_splits: int,
    *,
    shuffle: bool = False,
    rng: Optional[np.random.Generator] = None,
) -> List[Tuple[np.ndarray, np.ndarray]]:
    """
    Split sample indices into K folds preserving class proportions.

    The samples of each class are dealt over the folds separately, so every
    validation fold holds roughly ``1 / n_splits`` of every class and every
    training fold sees all classes.

    Parameters
    ----------
    codes : np.ndarray of shape (n_samples,)
        Integer class code of every sample.

    Returns
    -------
    folds : list of (train_ids, valid_ids)
        Index arrays in ascending order.

    Raises
    ------
    ValueError
        If n_splits is below 2 or above the size of the smallest class.
    """
    codes = np.asarray(codes)
    _, counts = np.unique(codes, return_counts=True)
    if not 2 <= n_splits <= counts.min():
        raise ValueError(
            f"n_splits must be between 2 and the size of the smallest class "
            f"({counts.min()}), got {n_splits}."
        )
    if shuffle and rng is None:
        rng = np.random.default_rng()

    fold_sets: List[List[np.ndarray]] = [[] for _ in range(n_splits)]
    for code in np.unique(codes):
        ids = np.flatnonzero(codes == code)
        if shuffle:
            ids = rng.permutation(ids)
        for k, part in enumerate(np.array_split(ids, n_splits)):
            fold_sets[k].append(part)

    valid_sets = [np.sort(np.concatenate(parts)) for parts in fold_sets]
    all_ids = np.arange(len(codes))
    return [(np.setdiff1d(all_ids, valid), valid) for valid in valid_sets]


class _BaseStacking(_BaseMetaEstimator):
    """
    Out-of-fold training shared by the stacking estimators.

    Every member is cloned and trained on K-1 folds to produce meta features
    for the held-out fold; the meta estimator learns from these out-of-fold
    features. The members are then refit on all data to produce the
    features seen by the meta estimator at prediction time.
    """

    def __init__(self, estimators: Dict[str, Any], meta_estimator: Any, params: Any):
        super().__init__(estimators, params)
        self.meta_estimator = meta_estimator
        self.output_size_: Dict[str, int] = {}

    def _member_output(self, name: str, estimator: Any, X: np.ndarray) -> np.ndarray:
        return np.asarray(estimator.predict(X), dtype=float).reshape(X.shape[0], -1)

    def _fit_members(self, X: np.ndarray, y: np.ndarray, folds) -> np.ndarray:
        n_samples = X.shape[0]
        blocks = []
        self.output_size_ = {}
        for name, estimator in self.estimators.items():
            oof = None
            for train_ids, valid_ids in folds:
                fold_estimator = copy.deepcopy(estimator)
                fold_estimator.fit(X[train_ids], y[train_ids])
                pred = self._member_output(name, fold_estimator, X[valid_ids])
                if oof is None:
                    oof = np.zeros((n_samples, pred.shape[1]))
                oof[valid_ids] = pred
            blocks.append(oof)
            self.output_size_[name] = oof.shape[1]
            estimator.fit(X, y)
        return self._stack(blocks, X)

    def _stack(self, blocks: List[np.ndarray], X: np.ndarray) -> np.ndarray:
        Z = np.hstack(blocks)
        if self.params.passthrough:
            Z = np.hstack([Z, X])
        return Z

    def transform(self, X: np.ndarray) -> np.ndarray:
        """
        Members' outputs as meta features.

        Returns
        -------
        Z : np.ndarray of shape (n_samples, n_meta_features)
            ``output_size_[name]`` columns per member in insertion order,
            followed by X when ``passthrough`` is set.
        """
        X = self._check_X(X)
        blocks = [
            self._member_output(name, estimator, X)
            for name, estimator in self.estimators.items()
        ]
        return self._stack(blocks, X)

    def fit_transform(self, X: np.ndarray, y: np.ndarray) -> np.ndarray:
        """
        Fit the ensemble, then return the meta features of X.

        The returned features come from the members refit on all of X, not
        from the out-of-fold predictions the meta estimator was trained on.
        """
        return self.fit(X, y).transform(X)


class StackingRegressor(RegressorMixin, _BaseStacking):
    """
    Stacked generalization for regression.

    Parameters
    ----------
    estimators : dict
        Members keyed by name.
    meta_estimator : estimator or None, default=None
        Final regressor. None uses ``GradientBoostingRegressor``.
    n_splits : int, default=5
        Number of folds.
    shuffle : bool, default=True
        Whether to shuffle samples before splitting.
    passthrough : bool, default=False
        Whether to append the original features to the meta features.
    random_seed : int or None, default=None
        Seed of the fold shuffling.

    Attributes
    ----------
    output_size_ : dict
        Number of meta-feature columns contributed by each member.
    """

    def __init__(
        self,
        estimators: Dict[str, Any],
        meta_estimator: Optional[Any] = None,
        n_splits: int = 5,
        shuffle: bool = True,
        passthrough: bool = False,
        random_seed: Optional[int] = None,
    ):
        super().__init__(estimators, meta_estimator, StackingParams(
            n_splits=n_splits,
            shuffle=shuffle,
            passthrough=passthrough,
            random_seed=random_seed,
        ))
        if self.meta_estimator is None:
            self.meta_estimator = GradientBoostingRegressor(random_seed=self.params.random_seed)

    def fit(self, X: np.ndarray, y: np.ndarray) -> "StackingRegressor":
        """
        Fit the members and the meta estimator.

        Raises
        ------
        ValueError
            If n_splits exceeds the number of samples.
        """
        self._validate_params()
        X, y = check_X_y(X, y, multi_output=True)
        rng = np.random.default_rng(self.params.random_seed)
        folds = kfold_indices(
            X.shape[0], self.params.n_splits, shuffle=self.params.shuffle, rng=rng
        )
        Z = self._fit_members(X, y, folds)
        self.meta_estimator.fit(Z, y)

        self.n_features_ = X.shape[1]
        self.is_fitted_ = True
        return self

    def predict(self, X: np.ndarray) -> np.ndarray:
        return self.meta_estimator.predict(self.transform(X))


class StackingClassifier(ClassifierMixin, _BaseStacking):
    """
    Stacked generalization for classification.

    Members and the meta estimator are trained on integer-encoded labels.
    Folds are stratified so that every member sees all classes in each
    training fold and contributes the same number of columns per fold.

    Parameters
    ----------
    estimators : dict
        Members keyed by name.
    meta_estimator : estimator or None, default=None
        Final classifier. None uses ``GradientBoostingClassifier``.
    n_splits : int, default=5
        Number of stratified folds.
    shuffle : bool, default=True
        Whether to shuffle each class before splitting.
    stack_method : {'auto', 'predict_proba', 'decision_function', 'predict'}
        Member method producing the meta features.
    passthrough : bool, default=False
        Whether to append the original features to the meta features.
    random_seed : int or None, default=None
        Seed of the fold shuffling.

    Attributes
    ----------
    classes_ : np.ndarray
        Class labels seen during fit.
    stack_method_ : dict
        Method used for each member.
    output_size_ : dict
        Number of meta-feature columns contributed by each member.

    Examples
    --------
    >>> clf = StackingClassifier({
    ...     "forest": RandomForestClassifier(random_seed=1),
    ...     "boost": AdaBoostClassifier(random_seed=1),
    ... }, random_seed=0)
    >>> clf.fit(X, y).predict_proba(X)
    """

    def __init__(
        self,
        estimators: Dict[str, Any],
        meta_estimator: Optional[Any] = None,
        n_splits: int = 5,
        shuffle: bool = True,
        stack_method: str = "auto",
        passthrough: bool = False,
        random_seed: Optional[int] = None,
    ):
        super().__init__(estimators, meta_estimator, StackingClassifierParams(
            n_splits=n_splits,
            shuffle=shuffle,
            passthrough=passthrough,
            random_seed=random_seed,
            stack_method=stack_method,
        ))
        if self.meta_estimator is None:
            self.meta_estimator = GradientBoostingClassifier(random_seed=self.params.random_seed)
        self.classes_: Optional[np.ndarray] = None
        self.stack_method_: Dict[str, str] = {}

    def _resolve_stack_method(self, name: str, estimator: Any) -> str:
        requested = self.params.stack_method
        candidates = STACK_METHODS if requested == "auto" else (requested,)
        for method in candidates:
            if callable(getattr(estimator, method, None)):
                return method
        raise ValueError(
            f"Estimator {name!r} does not provide {' or '.join(candidates)}."
        )

    def _member_output(self, name: str, estimator: Any, X: np.ndarray) -> np.ndarray:
        output = getattr(estimator, self.stack_method_[name])(X)
        return np.asarray(output, dtype=float).reshape(X.shape[0], -1)

    def fit(self, X: np.ndarray, y: np.ndarray) -> "StackingClassifier":
        """
        Fit the members and the meta estimator.

        Raises
        ------
        ValueError
            If y holds fewer than two classes, if n_splits exceeds the size
            of the smallest class, or if a member lacks the requested
            stack method.
        """
        self._validate_params()
        X, y = check_X_y(X, y, y_numeric=False)
        self.classes_, codes = np.unique(y, return_inverse=True)
        codes = codes.ravel()
        if len(self.classes_) < 2:
            raise ValueError(
                f"StackingClassifier needs at least 2 classes, got {len(self.classes_)}."
            )

        self.stack_method_ = {
            name: self._resolve_stack_method(name, estimator)
            for name, estimator in self.estimators.items()
        }
        rng = np.random.default_rng(self.params.random_seed)
        folds = stratified_kfold_indices(
            codes, self.params.n_splits, shuffle=self.params.shuffle, rng=rng
        )
        Z = self._fit_members(X, codes, folds)
        self.meta_estimator.fit(Z, codes)

        self.n_features_ = X.shape[1]
        self.is_fitted_ = True
        return self

    def decision_function(self, X: np.ndarray) -> np.ndarray:
        """Meta estimator's scores on the stacked features."""
        return self.meta_estimator.decision_function(self.transform(X))

    def predict_proba(self, X: np.ndarray) -> np.ndarray:
        """
        Predict class probabilities.

        Returns
        -------
        probas : np.ndarray of shape (n_samples, n_classes)
            Columns follow ``classes_``.
        """
        return self.meta_estimator.predict_proba(self.transform(X))

    def predict(self, X: np.ndarray) -> np.ndarray:
        codes = np.asarray(self.meta_estimator.predict(self.transform(X))).astype(int)
        return self.classes_[codes]


__all__ = [
    "VotingParams",
    "StackingParams",
    "StackingClassifierParams",
    "VotingClassifier",
    "VotingRegressor",
    "StackingRegressor",
    "StackingClassifier",
    "kfold_indices",
    "stratified_kfold_indices",
]
