"""
Test suite for the single-tree estimators and the tree builder.

Framework: pytest
"""

import sys
from pathlib import Path

import numpy as np
import pytest

_repo_root = Path(__file__).resolve().parents[1]
src_path = str(_repo_root / "src")
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from arbor import (
    DecisionTreeClassifier,
    DecisionTreeRegressor,
    ExtraTreeClassifier,
    ExtraTreeRegressor,
    GradientTreeRegressor,
    NotFittedError,
    VRTreeClassifier,
    VRTreeRegressor,
)
from arbor.criterion import (
    ClassificationCriterion,
    RegressionCriterion,
    entropy,
    get_criterion,
    gini,
    mae,
    mse,
)
from arbor.node import TREE_LEAF
from arbor.splitter import BestSplitter, VariableRandomSplitter
from arbor.tree import TreeBuilder, _partition_sorted


# =============================================================================
# Test Data Generation
# =============================================================================

def make_classification(n_samples=120, n_features=4, n_classes=3, seed=0):
    """Gaussian blobs, one per class."""
    rng = np.random.default_rng(seed)
    centers = rng.uniform(-5, 5, size=(n_classes, n_features))
    y = np.arange(n_samples) % n_classes
    X = centers[y] + rng.standard_normal((n_samples, n_features))
    return X, y


def make_regression(n_samples=100, n_features=3, seed=0):
    """Smooth nonlinear target."""
    rng = np.random.default_rng(seed)
    X = rng.uniform(-2, 2, size=(n_samples, n_features))
    y = np.sin(X[:, 0]) + 0.5 * X[:, 1] ** 2
    return X, y


# =============================================================================
# Impurity Functions
# =============================================================================

class TestImpurity:
    """Test the impurity functions."""

    def test_gini_of_balanced_binary_node(self):
        assert gini(np.array([2.0, 2.0])) == pytest.approx(0.5)

    def test_gini_of_pure_node_is_zero(self):
        assert gini(np.array([5.0, 0.0, 0.0])) == pytest.approx(0.0)

    def test_entropy_uses_natural_log(self):
        assert entropy(np.array([1.0, 1.0])) == pytest.approx(np.log(2.0))

    def test_mse_is_variance(self):
        y = np.array([[1.0], [3.0]])
        assert mse(y) == pytest.approx(1.0)

    def test_mae_measures_deviation_from_mean(self):
        y = np.array([[0.0], [0.0], [3.0]])
        assert mae(y) == pytest.approx(4.0 / 3.0)

    def test_unknown_regression_criterion_raises(self):
        with pytest.raises(ValueError, match="criterion"):
            RegressionCriterion("gini")

    def test_get_criterion_dispatches_on_name(self):
        assert isinstance(get_criterion("Entropy", n_classes=3), ClassificationCriterion)
        assert isinstance(get_criterion("mae"), RegressionCriterion)
        with pytest.raises(ValueError, match="Unknown criterion"):
            get_criterion("hellinger")

    def test_vr_splitter_clamps_alpha(self):
        criterion = RegressionCriterion("mse")
        assert VariableRandomSplitter(criterion, alpha=5.0).alpha == 1.0
        assert VariableRandomSplitter(criterion, alpha=-1.0).alpha == 0.0

    def test_presorted_split_matches_raw_split(self):
        rng = np.random.default_rng(0)
        values = rng.integers(0, 6, size=40).astype(float)
        target = rng.standard_normal((40, 1))
        criterion = RegressionCriterion("mse")
        impurity = criterion.impurity(target)
        splitter = BestSplitter(criterion)

        order = np.argsort(values, kind="stable")
        raw = splitter.split(values, target, impurity, rng)
        presorted = splitter.split(
            values[order], target[order], impurity, rng, presorted=True
        )
        assert raw == presorted


# =============================================================================
# Tree Builder
# =============================================================================

class UnsortedBestSplitter(BestSplitter):
    """Best split search that sorts every column itself."""

    presorted = False


class TestTreeBuilder:
    """Test the presorted growth path."""

    def test_partition_keeps_columns_sorted(self):
        rng = np.random.default_rng(1)
        X = rng.standard_normal((30, 3))
        sorted_ids = np.argsort(X, axis=0, kind="stable")

        left, right = _partition_sorted(X, sorted_ids, 1, 0.0)
        goes_left = X[:, 1] <= 0.0
        for f in range(3):
            np.testing.assert_array_equal(np.sort(left[:, f]), np.flatnonzero(goes_left))
            np.testing.assert_array_equal(np.sort(right[:, f]), np.flatnonzero(~goes_left))
            assert np.all(np.diff(X[left[:, f], f]) >= 0)
            assert np.all(np.diff(X[right[:, f], f]) >= 0)

    def test_presorted_growth_matches_per_node_sorting(self):
        rng = np.random.default_rng(2)
        X = np.round(rng.uniform(0, 5, size=(80, 3)), 1)
        target = (X[:, 0] ** 2 - X[:, 2]).reshape(-1, 1)

        def build(splitter_class):
            criterion = RegressionCriterion("mse")
            builder = TreeBuilder(
                criterion,
                splitter_class(criterion),
                max_depth=None,
                max_leaf_nodes=None,
                min_samples_leaf=1,
                max_features=3,
                rng=np.random.default_rng(3),
            )
            return builder.build(X, target)

        arena, leaf_values = build(BestSplitter)
        raw_arena, raw_leaf_values = build(UnsortedBestSplitter)

        assert [(n.feature_id, n.threshold, n.left, n.right) for n in arena] == [
            (n.feature_id, n.threshold, n.left, n.right) for n in raw_arena
        ]
        np.testing.assert_array_equal(leaf_values, raw_leaf_values)


# =============================================================================
# Classification Trees
# =============================================================================

class TestDecisionTreeClassifier:
    """Test DecisionTreeClassifier."""

    def test_toy_split_at_midpoint(self):
        X = np.array([[0.0], [1.0], [2.0], [3.0]])
        y = np.array([0, 0, 1, 1])

        tree = DecisionTreeClassifier(max_depth=1, random_seed=0).fit(X, y)

        root = tree.tree_.root
        assert not root.leaf
        assert root.threshold == 1.5
        assert root.feature_id == 0
        np.testing.assert_array_equal(tree.predict(X), [0, 0, 1, 1])

    def test_forced_leaf_when_min_samples_leaf_equals_n(self):
        X, y = make_classification(n_samples=30, seed=1)

        tree = DecisionTreeClassifier(min_samples_leaf=30, random_seed=0).fit(X, y)

        assert tree.n_leaves_ == 1
        assert len(tree.tree_) == 1
        predictions = tree.predict(X)
        assert np.all(predictions == predictions[0])
        np.testing.assert_array_equal(tree.feature_importances_, np.zeros(4))

    def test_min_samples_leaf_above_n_raises(self):
        X, y = make_classification(n_samples=10)
        with pytest.raises(ValueError, match="min_samples_leaf"):
            DecisionTreeClassifier(min_samples_leaf=11).fit(X, y)

    def test_leaf_ids_cover_range_without_gaps(self):
        X, y = make_classification(seed=2)
        tree = DecisionTreeClassifier(random_seed=3).fit(X, y)

        leaf_ids = sorted(node.leaf_id for node in tree.tree_ if node.leaf)
        assert leaf_ids == list(range(tree.n_leaves_))
        assert tree.tree_.n_leaves == tree.n_leaves_ == tree.leaf_probs_.shape[0]

        applied = tree.apply(X)
        assert applied.min() >= 0
        assert applied.max() < tree.n_leaves_
        np.testing.assert_array_equal(np.unique(applied), np.arange(tree.n_leaves_))

    def test_fits_training_data_perfectly(self):
        X, y = make_classification(seed=4)
        tree = DecisionTreeClassifier(random_seed=0).fit(X, y)
        assert tree.score(X, y) == 1.0

    def test_predict_proba_rows_sum_to_one(self):
        X, y = make_classification(seed=5)
        tree = DecisionTreeClassifier(max_depth=2, random_seed=0).fit(X, y)

        proba = tree.predict_proba(X)
        assert proba.shape == (X.shape[0], 3)
        np.testing.assert_allclose(proba.sum(axis=1), 1.0)
        np.testing.assert_array_equal(
            tree.classes_[np.argmax(proba, axis=1)], tree.predict(X)
        )

    def test_string_labels(self):
        X = np.array([[0.0], [1.0], [2.0], [3.0]])
        y = np.array(["cat", "cat", "dog", "dog"])
        tree = DecisionTreeClassifier(random_seed=0).fit(X, y)
        np.testing.assert_array_equal(tree.predict(X), y)

    def test_feature_importances_normalized(self):
        X, y = make_classification(seed=6)
        tree = DecisionTreeClassifier(random_seed=0).fit(X, y)

        assert np.all(tree.feature_importances_ >= 0)
        assert tree.feature_importances_.sum() == pytest.approx(1.0)

    def test_entropy_criterion(self):
        X, y = make_classification(seed=7)
        tree = DecisionTreeClassifier(criterion="entropy", random_seed=0).fit(X, y)
        assert tree.score(X, y) == 1.0

    def test_max_depth_respected(self):
        X, y = make_classification(seed=8)
        tree = DecisionTreeClassifier(max_depth=2, random_seed=0).fit(X, y)
        assert tree.get_depth() <= 2

    def test_max_leaf_nodes_respected(self):
        X, y = make_classification(seed=9)
        tree = DecisionTreeClassifier(max_leaf_nodes=3, random_seed=0).fit(X, y)
        assert tree.n_leaves_ <= 4
        assert tree.apply(X).max() < tree.n_leaves_

    def test_same_seed_same_tree(self):
        X, y = make_classification(seed=10)
        first = DecisionTreeClassifier(max_features=2, random_seed=11).fit(X, y)
        second = DecisionTreeClassifier(max_features=2, random_seed=11).fit(X, y)
        np.testing.assert_array_equal(first.apply(X), second.apply(X))
        np.testing.assert_array_equal(
            first.feature_importances_, second.feature_importances_
        )

    def test_regression_criterion_rejected(self):
        X, y = make_classification(n_samples=20)
        with pytest.raises(ValueError, match="criterion"):
            DecisionTreeClassifier(criterion="mse").fit(X, y)

    def test_unfitted_predict_raises(self):
        with pytest.raises(NotFittedError):
            DecisionTreeClassifier().predict(np.zeros((2, 2)))

    def test_wrong_feature_count_raises(self):
        X, y = make_classification(n_samples=20)
        tree = DecisionTreeClassifier(random_seed=0).fit(X, y)
        with pytest.raises(ValueError, match="features"):
            tree.predict(np.zeros((3, 2)))


class TestRandomizedClassificationTrees:
    """Test ExtraTreeClassifier and VRTreeClassifier."""

    def test_extra_tree_fits_and_is_reproducible(self):
        X, y = make_classification(seed=12)
        first = ExtraTreeClassifier(random_seed=5).fit(X, y)
        second = ExtraTreeClassifier(random_seed=5).fit(X, y)

        np.testing.assert_array_equal(first.predict(X), second.predict(X))
        assert first.score(X, y) > 0.9

    def test_vr_tree_stores_alpha(self):
        X, y = make_classification(seed=13)
        tree = VRTreeClassifier(alpha=0.3, random_seed=0).fit(X, y)

        assert tree.params.alpha == 0.3
        assert tree.score(X, y) > 0.9
        assert tree.feature_importances_.sum() == pytest.approx(1.0)


# =============================================================================
# Regression Trees
# =============================================================================

class TestDecisionTreeRegressor:
    """Test DecisionTreeRegressor."""

    def test_fits_training_data(self):
        X, y = make_regression(seed=0)
        tree = DecisionTreeRegressor(random_seed=0).fit(X, y)

        np.testing.assert_allclose(tree.predict(X), y)
        assert tree.predict(X).shape == (X.shape[0],)

    def test_multi_output_shapes(self):
        X, y = make_regression(n_samples=60, seed=1)
        Y = np.column_stack([y, -2.0 * y])

        tree = DecisionTreeRegressor(max_depth=3, random_seed=0).fit(X, Y)

        assert tree.leaf_values_.shape == (tree.n_leaves_, 2)
        assert tree.predict(X).shape == (60, 2)
        np.testing.assert_allclose(tree.predict(X)[:, 1], -2.0 * tree.predict(X)[:, 0])

    def test_mae_criterion(self):
        X, y = make_regression(seed=2)
        tree = DecisionTreeRegressor(criterion="mae", max_depth=4, random_seed=0).fit(X, y)
        assert tree.score(X, y) > 0.5

    @pytest.mark.parametrize("criterion", ["mse", "mae"])
    def test_min_samples_leaf_is_monotone(self, criterion):
        rng = np.random.default_rng(3)
        X = rng.uniform(0, 10, size=(80, 1))
        y = np.sin(X[:, 0]) + 0.1 * rng.standard_normal(80)

        n_leaves = [
            DecisionTreeRegressor(
                criterion=criterion, min_samples_leaf=m, random_seed=0
            ).fit(X, y).n_leaves_
            for m in (1, 2, 4, 8, 16)
        ]
        assert n_leaves == sorted(n_leaves, reverse=True)

    def test_max_depth_is_monotone(self):
        rng = np.random.default_rng(4)
        X = rng.uniform(0, 10, size=(80, 1))
        y = np.cos(X[:, 0])

        n_leaves = [
            DecisionTreeRegressor(max_depth=d, random_seed=0).fit(X, y).n_leaves_
            for d in (6, 5, 4, 3, 2, 1)
        ]
        assert n_leaves == sorted(n_leaves, reverse=True)

    def test_constant_target_gives_single_leaf(self):
        X = np.arange(10, dtype=float).reshape(-1, 1)
        tree = DecisionTreeRegressor(random_seed=0).fit(X, np.full(10, 2.5))
        assert tree.n_leaves_ == 1
        np.testing.assert_array_equal(tree.predict(X), np.full(10, 2.5))

    def test_missing_child_routes_to_sibling(self):
        X = np.array([[0.0], [1.0], [2.0], [3.0], [10.0]])
        y = np.array([0.0, 0.0, 0.0, 0.0, 100.0])
        tree = DecisionTreeRegressor(min_samples_leaf=2, random_seed=0).fit(X, y)

        root = tree.tree_.root
        assert root.right == TREE_LEAF
        np.testing.assert_array_equal(tree.predict(X), np.zeros(5))

    def test_randomized_regressors(self):
        X, y = make_regression(seed=5)
        extra = ExtraTreeRegressor(random_seed=0).fit(X, y)
        vr = VRTreeRegressor(alpha=0.8, random_seed=0).fit(X, y)

        assert extra.score(X, y) > 0.9
        assert vr.score(X, y) > 0.9


# =============================================================================
# Gradient Tree
# =============================================================================

class TestGradientTreeRegressor:
    """Test GradientTreeRegressor."""

    def test_leaf_weights_follow_newton_step(self):
        X = np.array([[0.0], [1.0], [2.0], [3.0]])
        y = np.array([0.0, 0.0, 1.0, 1.0])
        gradient = 0.5 - y
        hessian = np.ones(4)

        tree = GradientTreeRegressor(random_seed=0).fit(X, y, gradient, hessian)

        assert tree.n_leaves_ == 2
        assert tree.tree_.root.threshold == 1.5
        np.testing.assert_allclose(tree.predict(X), [-0.5, -0.5, 0.5, 0.5])
        np.testing.assert_array_equal(tree.feature_importances_, [1.0])

    def test_learning_rate_and_lambda_shrink_leaves(self):
        X = np.array([[0.0], [1.0], [2.0], [3.0]])
        y = np.array([0.0, 0.0, 1.0, 1.0])
        gradient = 0.5 - y
        hessian = np.ones(4)

        tree = GradientTreeRegressor(
            reg_lambda=2.0, learning_rate=0.5, random_seed=0
        ).fit(X, y, gradient, hessian)

        # -0.5 * (2 * 0.5) / (2 + 2)
        np.testing.assert_allclose(tree.predict(X), [-0.125, -0.125, 0.125, 0.125])

    def test_split_count_importance(self):
        X, y = make_regression(seed=6)
        tree = GradientTreeRegressor(max_depth=3, random_seed=0).fit(
            X, y, -y, np.ones_like(y)
        )
        n_splits = sum(1 for node in tree.tree_ if not node.leaf)
        counts = np.zeros(X.shape[1])
        for node in tree.tree_:
            if not node.leaf:
                counts[node.feature_id] += 1
        np.testing.assert_allclose(tree.feature_importances_, counts / n_splits)

    def test_gradient_shape_mismatch_raises(self):
        X = np.zeros((4, 1))
        with pytest.raises(ValueError, match="gradient"):
            GradientTreeRegressor().fit(X, np.zeros(4), np.zeros(3), np.ones(4))
