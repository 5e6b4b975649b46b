"""
Test suite for the voting and stacking meta-estimators.

Framework: pytest
"""

import pickle
import sys
from pathlib import Path

import numpy as np
import pytest

_repo_root = Path(__file__).resolve().parents[1]
src_path = str(_repo_root / "src")
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from arbor import (
    AdaBoostClassifier,
    DecisionTreeClassifier,
    DecisionTreeRegressor,
    GradientBoostingClassifier,
    GradientBoostingRegressor,
    NotFittedError,
    RandomForestClassifier,
    StackingClassifier,
    StackingRegressor,
    VotingClassifier,
    VotingRegressor,
)
from arbor.meta import kfold_indices, stratified_kfold_indices


class ConstantClassifier:
    """Predicts the same class code for every sample."""

    def __init__(self, code):
        self.code = code

    def fit(self, X, y):
        self.n_classes_ = len(np.unique(y))
        return self

    def predict(self, X):
        return np.full(len(X), self.code)

    def predict_proba(self, X):
        proba = np.zeros((len(X), self.n_classes_))
        proba[:, self.code] = 1.0
        return proba


class ConstantRegressor:
    """Predicts a fixed value for every sample."""

    def __init__(self, value):
        self.value = value

    def fit(self, X, y):
        return self

    def predict(self, X):
        return np.full(len(X), self.value)


def make_classification(n_samples=90, seed=0):
    rng = np.random.default_rng(seed)
    y = np.arange(n_samples) % 2
    X = 4.0 * y[:, None] + rng.standard_normal((n_samples, 3))
    return X, np.where(y == 1, "pos", "neg")


def make_three_classes(n_samples=90, seed=0):
    rng = np.random.default_rng(seed)
    y = np.arange(n_samples) % 3
    X = 4.0 * np.eye(3)[y] + rng.standard_normal((n_samples, 3))
    return X, np.array(["a", "b", "c"])[y]


def make_regression(n_samples=60, seed=0):
    rng = np.random.default_rng(seed)
    X = rng.uniform(-1, 1, size=(n_samples, 2))
    y = 3.0 * X[:, 0] - X[:, 1] ** 2
    return X, y


# =============================================================================
# Voting
# =============================================================================

class TestVotingClassifier:
    """Test VotingClassifier."""

    def test_hard_voting_with_trees(self):
        X, y = make_classification()
        clf = VotingClassifier({
            "shallow": DecisionTreeClassifier(max_depth=1, random_seed=0),
            "deep": DecisionTreeClassifier(random_seed=1),
            "forest": RandomForestClassifier(n_estimators=5, random_seed=2),
        }).fit(X, y)

        predictions = clf.predict(X)
        assert set(np.unique(predictions)) <= {"neg", "pos"}
        assert clf.score(X, y) > 0.9

    def test_hard_vote_counts_weights(self):
        X = np.zeros((4, 1))
        y = np.array([0, 1, 2, 0])
        clf = VotingClassifier(
            {"a": ConstantClassifier(1), "b": ConstantClassifier(2)},
            weights={"a": 1.0, "b": 2.0},
        ).fit(X, y)

        np.testing.assert_array_equal(clf.decision_function(X)[0], [0.0, 1.0, 2.0])
        np.testing.assert_array_equal(clf.predict(X), np.full(4, 2))

    def test_hard_vote_tie_goes_to_first_class(self):
        X = np.zeros((3, 1))
        y = np.array(["x", "y", "z"])
        clf = VotingClassifier(
            {"a": ConstantClassifier(2), "b": ConstantClassifier(1)}
        ).fit(X, y)
        np.testing.assert_array_equal(clf.predict(X), ["y", "y", "y"])

    def test_soft_voting(self):
        X, y = make_classification(seed=1)
        clf = VotingClassifier(
            {
                "tree": DecisionTreeClassifier(max_depth=2, random_seed=0),
                "forest": RandomForestClassifier(n_estimators=5, random_seed=1),
            },
            voting="soft",
        ).fit(X, y)

        proba = clf.predict_proba(X)
        assert proba.shape == (X.shape[0], 2)
        np.testing.assert_allclose(proba.sum(axis=1), 1.0)
        np.testing.assert_array_equal(clf.decision_function(X), proba)

    def test_invalid_voting_raises(self):
        X, y = make_classification()
        clf = VotingClassifier({"a": DecisionTreeClassifier()}, voting="maybe")
        with pytest.raises(ValueError, match="voting"):
            clf.fit(X, y)

    def test_missing_weight_raises(self):
        X, y = make_classification()
        clf = VotingClassifier(
            {"a": DecisionTreeClassifier(), "b": DecisionTreeClassifier()},
            weights={"a": 1.0},
        ).fit(X, y)
        with pytest.raises(ValueError, match="weights"):
            clf.predict(X)

    def test_empty_estimators_raise(self):
        with pytest.raises(ValueError, match="estimators"):
            VotingClassifier({})


class TestVotingRegressor:
    """Test VotingRegressor."""

    def test_weighted_average(self):
        X = np.zeros((5, 2))
        reg = VotingRegressor(
            {"low": ConstantRegressor(1.0), "high": ConstantRegressor(3.0)},
            weights={"low": 1.0, "high": 3.0},
        ).fit(X, np.zeros(5))
        np.testing.assert_allclose(reg.predict(X), np.full(5, 2.5))

    def test_with_trees(self):
        X, y = make_regression()
        reg = VotingRegressor({
            "a": DecisionTreeRegressor(max_depth=3, random_seed=0),
            "b": DecisionTreeRegressor(max_depth=5, random_seed=1),
        }).fit(X, y)

        expected = 0.5 * (
            reg.estimators["a"].predict(X) + reg.estimators["b"].predict(X)
        )
        np.testing.assert_allclose(reg.predict(X), expected)


# =============================================================================
# Stacking
# =============================================================================

class TestKFold:
    """Test kfold_indices."""

    def test_folds_partition_samples(self):
        folds = kfold_indices(10, 3, shuffle=True, rng=np.random.default_rng(0))

        assert [len(valid) for _, valid in folds] == [4, 3, 3]
        all_valid = np.sort(np.concatenate([valid for _, valid in folds]))
        np.testing.assert_array_equal(all_valid, np.arange(10))
        for train, valid in folds:
            assert len(np.intersect1d(train, valid)) == 0
            assert len(train) + len(valid) == 10

    def test_unshuffled_folds_are_contiguous(self):
        folds = kfold_indices(6, 2)
        np.testing.assert_array_equal(folds[0][1], [0, 1, 2])
        np.testing.assert_array_equal(folds[1][1], [3, 4, 5])

    def test_too_many_splits_raises(self):
        with pytest.raises(ValueError, match="n_splits"):
            kfold_indices(3, 4)


class TestStackingRegressor:
    """Test StackingRegressor."""

    def make_model(self, **kwargs):
        return StackingRegressor(
            {
                "shallow": DecisionTreeRegressor(max_depth=2, random_seed=0),
                "deep": DecisionTreeRegressor(max_depth=6, random_seed=1),
            },
            meta_estimator=DecisionTreeRegressor(max_depth=4, random_seed=2),
            random_seed=3,
            **kwargs,
        )

    def test_fit_predict(self):
        X, y = make_regression()
        reg = self.make_model().fit(X, y)

        assert reg.predict(X).shape == (X.shape[0],)
        assert reg.output_size_ == {"shallow": 1, "deep": 1}
        assert reg.score(X, y) > 0.5

    def test_transform_shape(self):
        X, y = make_regression()
        reg = self.make_model().fit(X, y)

        Z = reg.transform(X)
        assert Z.shape == (X.shape[0], 2)
        np.testing.assert_allclose(Z[:, 0], reg.estimators["shallow"].predict(X))

    def test_passthrough_appends_features(self):
        X, y = make_regression()
        reg = self.make_model(passthrough=True).fit(X, y)

        Z = reg.transform(X)
        assert Z.shape == (X.shape[0], 4)
        np.testing.assert_array_equal(Z[:, 2:], X)

    def test_multi_output_members(self):
        X, y = make_regression()
        Y = np.column_stack([y, 2.0 * y])
        reg = self.make_model().fit(X, Y)

        assert reg.output_size_ == {"shallow": 2, "deep": 2}
        assert reg.transform(X).shape == (X.shape[0], 4)
        assert reg.predict(X).shape == (X.shape[0], 2)

    def test_fit_transform_matches_transform(self):
        X, y = make_regression()
        reg = self.make_model(passthrough=True)
        Z = reg.fit_transform(X, y)
        np.testing.assert_array_equal(Z, reg.transform(X))

    def test_reproducible(self):
        X, y = make_regression()
        first = self.make_model().fit(X, y).predict(X)
        second = self.make_model().fit(X, y).predict(X)
        np.testing.assert_array_equal(first, second)

    def test_default_meta_estimator(self):
        reg = StackingRegressor({"tree": DecisionTreeRegressor()}, random_seed=0)
        assert isinstance(reg.meta_estimator, GradientBoostingRegressor)

    def test_unfitted_transform_raises(self):
        with pytest.raises(NotFittedError):
            self.make_model().transform(np.zeros((2, 2)))


class TestStratifiedKFold:
    """Test stratified_kfold_indices."""

    def test_folds_keep_class_balance(self):
        codes = np.array([0] * 12 + [1] * 6)
        folds = stratified_kfold_indices(
            codes, 3, shuffle=True, rng=np.random.default_rng(0)
        )

        all_valid = np.sort(np.concatenate([valid for _, valid in folds]))
        np.testing.assert_array_equal(all_valid, np.arange(18))
        for train, valid in folds:
            assert np.bincount(codes[valid]).tolist() == [4, 2]
            assert np.bincount(codes[train]).tolist() == [8, 4]
            assert len(np.intersect1d(train, valid)) == 0

    def test_unshuffled_folds_follow_sample_order(self):
        codes = np.array([0, 1, 0, 1])
        folds = stratified_kfold_indices(codes, 2)
        np.testing.assert_array_equal(folds[0][1], [0, 1])
        np.testing.assert_array_equal(folds[1][1], [2, 3])
        np.testing.assert_array_equal(folds[0][0], [2, 3])

    def test_more_splits_than_smallest_class_raises(self):
        codes = np.array([0] * 10 + [1] * 3)
        with pytest.raises(ValueError, match="smallest class"):
            stratified_kfold_indices(codes, 4)


class TestStackingClassifier:
    """Test StackingClassifier."""

    def make_model(self, **kwargs):
        return StackingClassifier(
            {
                "tree": DecisionTreeClassifier(max_depth=2, random_seed=0),
                "forest": RandomForestClassifier(n_estimators=5, random_seed=1),
            },
            meta_estimator=DecisionTreeClassifier(max_depth=3, random_seed=2),
            random_seed=3,
            **kwargs,
        )

    def test_fit_predict_with_string_labels(self):
        X, y = make_classification()
        clf = self.make_model().fit(X, y)

        predictions = clf.predict(X)
        assert set(np.unique(predictions)) <= {"neg", "pos"}
        assert clf.score(X, y) > 0.9
        np.testing.assert_array_equal(clf.classes_, ["neg", "pos"])

    def test_auto_uses_predict_proba(self):
        X, y = make_classification()
        clf = self.make_model().fit(X, y)

        assert clf.stack_method_ == {"tree": "predict_proba", "forest": "predict_proba"}
        assert clf.output_size_ == {"tree": 2, "forest": 2}
        Z = clf.transform(X)
        assert Z.shape == (X.shape[0], 4)
        np.testing.assert_allclose(Z[:, :2], clf.estimators["tree"].predict_proba(X))

    def test_predict_proba_rows_sum_to_one(self):
        X, y = make_classification(seed=1)
        proba = self.make_model().fit(X, y).predict_proba(X)

        assert proba.shape == (X.shape[0], 2)
        np.testing.assert_allclose(proba.sum(axis=1), 1.0)

    def test_predict_stack_method(self):
        X, y = make_classification()
        clf = self.make_model(stack_method="predict").fit(X, y)

        assert clf.output_size_ == {"tree": 1, "forest": 1}
        Z = clf.transform(X)
        assert Z.shape == (X.shape[0], 2)
        assert set(np.unique(Z)) <= {0.0, 1.0}

    def test_decision_function_members_on_three_classes(self):
        X, y = make_three_classes()
        clf = StackingClassifier(
            {
                "ada": AdaBoostClassifier(n_estimators=5, random_seed=0),
                "gb": GradientBoostingClassifier(n_estimators=5, random_seed=1),
            },
            n_splits=3,
            stack_method="decision_function",
            random_seed=4,
        ).fit(X, y)

        assert isinstance(clf.meta_estimator, GradientBoostingClassifier)
        assert clf.stack_method_ == {"ada": "decision_function", "gb": "decision_function"}
        assert clf.output_size_ == {"ada": 3, "gb": 3}
        assert clf.transform(X).shape == (X.shape[0], 6)
        assert clf.decision_function(X).shape == (X.shape[0], 3)
        assert clf.score(X, y) > 0.8

    def test_passthrough_appends_features(self):
        X, y = make_classification()
        clf = self.make_model(passthrough=True).fit(X, y)

        Z = clf.transform(X)
        assert Z.shape == (X.shape[0], 4 + X.shape[1])
        np.testing.assert_array_equal(Z[:, 4:], X)

    def test_member_without_probabilities_falls_back_to_predict(self):
        X, y = make_classification()
        clf = StackingClassifier(
            {"tree": DecisionTreeClassifier(random_seed=0), "const": ConstantRegressor(1.0)},
            meta_estimator=DecisionTreeClassifier(random_seed=1),
            random_seed=0,
        ).fit(X, y)

        assert clf.stack_method_ == {"tree": "predict_proba", "const": "predict"}
        assert clf.output_size_ == {"tree": 2, "const": 1}
        np.testing.assert_array_equal(clf.transform(X)[:, 2], np.ones(X.shape[0]))

    def test_missing_requested_method_raises(self):
        X, y = make_classification()
        clf = StackingClassifier(
            {"const": ConstantRegressor(1.0)}, stack_method="predict_proba"
        )
        with pytest.raises(ValueError, match="predict_proba"):
            clf.fit(X, y)

    def test_invalid_stack_method_raises(self):
        X, y = make_classification()
        with pytest.raises(ValueError, match="stack_method"):
            self.make_model(stack_method="vote").fit(X, y)

    def test_single_class_raises(self):
        X = np.zeros((10, 2))
        with pytest.raises(ValueError, match="at least 2 classes"):
            self.make_model().fit(X, np.ones(10))

    def test_too_many_splits_raises(self):
        X, y = make_classification(n_samples=8)
        with pytest.raises(ValueError, match="n_splits"):
            self.make_model(n_splits=5).fit(X, y)

    def test_fit_transform_matches_transform(self):
        X, y = make_classification()
        clf = self.make_model()
        Z = clf.fit_transform(X, y)
        np.testing.assert_array_equal(Z, clf.transform(X))

    def test_reproducible(self):
        X, y = make_classification(seed=2)
        first = self.make_model().fit(X, y).predict_proba(X)
        second = self.make_model().fit(X, y).predict_proba(X)
        np.testing.assert_array_equal(first, second)

    def test_save_model_not_supported(self, tmp_path):
        X, y = make_classification()
        clf = self.make_model().fit(X, y)
        with pytest.raises(NotImplementedError, match="pickle"):
            clf.save_model(str(tmp_path / "stacking.json"))


# =============================================================================
# Persistence
# =============================================================================

class TestMetaPersistence:
    """Meta-estimators persist through pickle only."""

    def test_pickle_round_trip(self):
        X, y = make_regression()
        reg = TestStackingRegressor().make_model().fit(X, y)

        restored = pickle.loads(pickle.dumps(reg))
        np.testing.assert_array_equal(restored.predict(X), reg.predict(X))

    def test_save_model_not_supported(self, tmp_path):
        X, y = make_classification()
        clf = VotingClassifier({"a": DecisionTreeClassifier(random_seed=0)}).fit(X, y)
        with pytest.raises(NotImplementedError, match="pickle"):
            clf.save_model(str(tmp_path / "voting.json"))
