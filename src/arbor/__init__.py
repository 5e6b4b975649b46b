"""
arbor - Decision trees and tree ensembles from scratch.

This package provides a standalone implementation of decision trees and
the ensembles built on them, with zero sklearn dependencies.

Features:
- Decision, extra and variable-random trees for classification and regression
- Gini, entropy, MSE and MAE impurity criteria
- Multi-output regression trees
- Random forests, extra trees and VR-trees ensembles
- AdaBoost (SAMME.R) classification and AdaBoost.RT-style regression
- Gradient boosting with second-order trees
- Voting and stacking meta-estimators
- Reproducible training from one seed, sequential or parallel (joblib)
- JSON model persistence

Example usage:
    >>> from arbor import RandomForestClassifier, GradientBoostingRegressor
    >>> import numpy as np
    >>>
    >>> X = np.random.randn(100, 5)
    >>> y = (X[:, 0] + X[:, 1] > 0).astype(int)
    >>> forest = RandomForestClassifier(n_estimators=20, random_seed=1)
    >>> forest.fit(X, y)
    >>> probas = forest.predict_proba(X)
    >>>
    >>> y_reg = X[:, 0] + 2 * X[:, 1]
    >>> gbr = GradientBoostingRegressor(n_estimators=50, max_depth=3, random_seed=1)
    >>> predictions = gbr.fit(X, y_reg).predict(X)
"""

__version__ = "0.1.0"
__author__ = "arbor contributors"

# Single trees
from .tree import (
    TreeBuilder,
    DecisionTreeClassifier,
    DecisionTreeRegressor,
    ExtraTreeClassifier,
    ExtraTreeRegressor,
    VRTreeClassifier,
    VRTreeRegressor,
    GradientTreeRegressor,
)
from .node import Node, NodeArena

# Ensembles
from .forest import (
    RandomForestClassifier,
    RandomForestRegressor,
    ExtraTreesClassifier,
    ExtraTreesRegressor,
    VRTreesClassifier,
    VRTreesRegressor,
)
from .weight_boosting import AdaBoostClassifier, AdaBoostRegressor
from .gradient_boosting import GradientBoostingClassifier, GradientBoostingRegressor
from .meta import VotingClassifier, VotingRegressor, StackingClassifier, StackingRegressor

# Loss functions
from .loss_functions import (
    Loss,
    SquaredErrorLoss,
    BinomialDevianceLoss,
    get_loss_function,
)

# Base classes
from .base import BaseEstimator

# Utility functions
from .utils import (
    check_array,
    check_X_y,
    check_is_fitted,
    derive_seed,
    accuracy_score,
    mean_squared_error,
    r2_score,
    NotFittedError,
    log_message,
    log_training_progress,
)
from .parallel import parallel_map

# Public API
__all__ = [
    # Version
    "__version__",
    # Trees
    "TreeBuilder",
    "DecisionTreeClassifier",
    "DecisionTreeRegressor",
    "ExtraTreeClassifier",
    "ExtraTreeRegressor",
    "VRTreeClassifier",
    "VRTreeRegressor",
    "GradientTreeRegressor",
    "Node",
    "NodeArena",
    # Ensembles
    "RandomForestClassifier",
    "RandomForestRegressor",
    "ExtraTreesClassifier",
    "ExtraTreesRegressor",
    "VRTreesClassifier",
    "VRTreesRegressor",
    "AdaBoostClassifier",
    "AdaBoostRegressor",
    "GradientBoostingClassifier",
    "GradientBoostingRegressor",
    "VotingClassifier",
    "VotingRegressor",
    "StackingClassifier",
    "StackingRegressor",
    # Loss functions
    "Loss",
    "SquaredErrorLoss",
    "BinomialDevianceLoss",
    "get_loss_function",
    # Base classes
    "BaseEstimator",
    # Utilities
    "check_array",
    "check_X_y",
    "check_is_fitted",
    "derive_seed",
    "accuracy_score",
    "mean_squared_error",
    "r2_score",
    "NotFittedError",
    "log_message",
    "log_training_progress",
    "parallel_map",
]
