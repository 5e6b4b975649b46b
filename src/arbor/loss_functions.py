"""
Loss functions for gradient boosting.

Each loss supplies the initial raw prediction and the first and second
derivatives that :class:`~arbor.tree.GradientTreeRegressor` fits at every
boosting round.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Tuple

import numpy as np


# =============================================================================
# Base Loss Class
# =============================================================================

class Loss(ABC):
    """
    Abstract base class for loss functions.

    All loss functions must implement methods to compute:
    - The loss value
    - First-order gradients
    - Second-order hessians
    - Initial prediction (bias)
    """

    @abstractmethod
    def __call__(self, y_true: np.ndarray, y_pred: np.ndarray) -> float:
        """
        Compute the loss value.

        Parameters
        ----------
        y_true : np.ndarray of shape (n_samples,)
            True target values.
        y_pred : np.ndarray of shape (n_samples,)
            Raw predictions.

        Returns
        -------
        loss : float
            The computed loss value.
        """

    @abstractmethod
    def gradient(self, y_true: np.ndarray, y_pred: np.ndarray) -> np.ndarray:
        """First-order derivative of the loss with respect to ``y_pred``."""

    @abstractmethod
    def hessian(self, y_true: np.ndarray, y_pred: np.ndarray) -> np.ndarray:
        """Second-order derivative of the loss with respect to ``y_pred``."""

    @abstractmethod
    def init_prediction(self, y: np.ndarray) -> float:
        """
        Compute the initial prediction (bias term).

        Parameters
        ----------
        y : np.ndarray of shape (n_samples,)
            Target values.

        Returns
        -------
        init_pred : float
            Initial raw prediction.
        """

    def gradient_hessian(
        self, y_true: np.ndarray, y_pred: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Compute both gradient and hessian at once."""
        return self.gradient(y_true, y_pred), self.hessian(y_true, y_pred)


# =============================================================================
# Regression
# =============================================================================

class SquaredErrorLoss(Loss):
    """
    Squared error loss for regression.

    L(y, f) = 0.5 * (y - f)^2, so the gradient is ``f - y`` and the
    hessian is 1.
    """

    def __call__(self, y_true, y_pred):
        return float(0.5 * np.mean((y_true - y_pred) ** 2))

    def gradient(self, y_true, y_pred):
        return y_pred - y_true

    def hessian(self, y_true, y_pred):
        return np.ones_like(y_true, dtype=float)

    def init_prediction(self, y):
        """Initial prediction is the mean of targets."""
        return float(np.mean(y))


# =============================================================================
# Classification
# =============================================================================

class BinomialDevianceLoss(Loss):
    """
    Binomial deviance for labels encoded as -1 / +1.

    L(y, f) = log(1 + exp(-2 y f)), with gradient
    ``-2 y / (1 + exp(2 y f))`` and hessian ``|g| * (2 - |g|)``.
    The raw prediction ``f`` is half the log-odds of the positive class.
    """

    def __call__(self, y_true, y_pred):
        return float(np.mean(np.logaddexp(0.0, -2.0 * y_true * y_pred)))

    def gradient(self, y_true, y_pred):
        with np.errstate(over="ignore"):
            return -2.0 * y_true / (1.0 + np.exp(2.0 * y_true * y_pred))

    def hessian(self, y_true, y_pred):
        abs_response = np.abs(self.gradient(y_true, y_pred))
        return abs_response * (2.0 - abs_response)

    def init_prediction(self, y):
        """Half log-odds of the mean encoded label."""
        y_mean = float(np.mean(y))
        return 0.5 * float(np.log((1.0 + y_mean) / (1.0 - y_mean)))


def get_loss_function(objective: str) -> Loss:
    """
    Factory function to create loss objects by name.

    Parameters
    ----------
    objective : str
        'squared_error' or 'binomial_deviance'.

    Raises
    ------
    ValueError
        If objective name is not recognized.
    """
    objective = objective.lower().replace("-", "_")
    if objective in ("squared_error", "mse"):
        return SquaredErrorLoss()
    if objective in ("binomial_deviance", "deviance"):
        return BinomialDevianceLoss()
    raise ValueError(
        f"Unknown objective: {objective!r}. "
        "Supported: 'squared_error', 'binomial_deviance'"
    )


__all__ = [
    "Loss",
    "SquaredErrorLoss",
    "BinomialDevianceLoss",
    "get_loss_function",
]
