"""
Test suite for parameter handling shared by every estimator.

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
    AdaBoostClassifier,
    AdaBoostRegressor,
    DecisionTreeClassifier,
    DecisionTreeRegressor,
    GradientBoostingRegressor,
    GradientTreeRegressor,
    RandomForestClassifier,
)
from arbor.base import ForestParams


X = np.arange(20, dtype=float).reshape(10, 2)
y_class = np.array([0, 1] * 5)
y_reg = np.arange(10, dtype=float)


# =============================================================================
# get_params / set_params
# =============================================================================

class TestParams:
    """Test parameter access."""

    def test_get_params(self):
        params = DecisionTreeClassifier(max_depth=3, random_seed=1).get_params()
        assert params["max_depth"] == 3
        assert params["criterion"] == "gini"
        assert params["random_seed"] == 1

    def test_set_params(self):
        model = RandomForestClassifier(random_seed=0).set_params(n_estimators=7)
        assert model.params.n_estimators == 7

    def test_set_params_invalid_key(self):
        with pytest.raises(ValueError, match="Invalid parameter: n_trees"):
            RandomForestClassifier().set_params(n_trees=7)

    def test_missing_seed_is_drawn(self):
        model = DecisionTreeRegressor()
        assert isinstance(model.random_seed, int)
        assert model.get_params()["random_seed"] == model.random_seed

    def test_params_from_dict_ignores_unknown_keys(self):
        params = ForestParams.from_dict({"n_estimators": 3, "colour": "red"})
        assert params.n_estimators == 3
        assert not hasattr(params, "colour")

    def test_repr_shows_non_default_params(self):
        text = repr(RandomForestClassifier(n_estimators=5, max_depth=3, random_seed=0))
        assert text.startswith("RandomForestClassifier(")
        assert "n_estimators=5" in text
        assert "max_depth=3" in text
        assert "criterion" not in text
        assert "random_seed" not in text

    def test_repr_default(self):
        assert repr(DecisionTreeClassifier(random_seed=0)) == "DecisionTreeClassifier()"


# =============================================================================
# Configuration Errors
# =============================================================================

class TestConfigurationErrors:
    """Invalid hyper-parameters are rejected when fitting."""

    @pytest.mark.parametrize(
        "model, name",
        [
            (DecisionTreeClassifier(max_depth=0), "max_depth"),
            (DecisionTreeClassifier(max_leaf_nodes=0), "max_leaf_nodes"),
            (DecisionTreeClassifier(min_samples_leaf=0), "min_samples_leaf"),
            (DecisionTreeClassifier(max_features=0), "max_features"),
            (DecisionTreeClassifier(criterion="mse"), "criterion"),
            (RandomForestClassifier(n_estimators=0), "n_estimators"),
            (RandomForestClassifier(n_jobs=0), "n_jobs"),
            (AdaBoostClassifier(n_estimators=0), "n_estimators"),
        ],
    )
    def test_classifier_params(self, model, name):
        with pytest.raises(ValueError, match=name):
            model.fit(X, y_class)

    @pytest.mark.parametrize(
        "model, name",
        [
            (DecisionTreeRegressor(criterion="gini"), "criterion"),
            (AdaBoostRegressor(threshold=0), "threshold"),
            (AdaBoostRegressor(exponent=-1.0), "exponent"),
            (GradientBoostingRegressor(learning_rate=0), "learning_rate"),
            (GradientBoostingRegressor(subsample=1.5), "subsample"),
            (GradientBoostingRegressor(reg_lambda=-1.0), "reg_lambda"),
            (GradientBoostingRegressor(n_jobs=0), "n_jobs"),
        ],
    )
    def test_regressor_params(self, model, name):
        with pytest.raises(ValueError, match=name):
            model.fit(X, y_reg)

    def test_gradient_tree_params(self):
        model = GradientTreeRegressor(learning_rate=0)
        with pytest.raises(ValueError, match="learning_rate"):
            model.fit(X, y_reg, -y_reg, np.ones_like(y_reg))
