"""Gaussian process surrogate model for Bayesian optimization."""

import warnings
from dataclasses import dataclass

import numpy as np
from sklearn.gaussian_process import GaussianProcessRegressor
from sklearn.gaussian_process.kernels import (
    RBF,
    ConstantKernel,
    Kernel,
    Matern,
    WhiteKernel,
)

from .config import KERNELS
from .exceptions import ConfigurationError

NUGGET_INIT = 1e-6
NUGGET_BOUNDS = (1e-10, 1.0)
LENGTH_SCALE_BOUNDS = (1e-3, 1e3)


@dataclass(frozen=True)
class KernelSpec:
    """Covariance family plus its lengthscale parameter.

    Args:
        kind: One of Gaussian, Exponential, Matern32, Matern52
        beta: log10(theta), where theta is the inverse squared lengthscale
    """

    kind: str = "Matern52"
    beta: float = 0.0

    def __post_init__(self) -> None:
        if self.kind not in KERNELS:
            raise ConfigurationError(
                f"Kernel '{self.kind}' not recognized. Choose one of {KERNELS}."
            )

    @property
    def length_scale(self) -> float:
        return float(np.sqrt(1.0 / (2.0 * 10**self.beta)))


def build_kernel(spec: KernelSpec, n_dims: int) -> Kernel:
    """Create an sklearn kernel with one lengthscale per dimension plus a nugget."""
    length_scale = np.full(n_dims, spec.length_scale)

    if spec.kind == "Gaussian":
        base = RBF(length_scale=length_scale, length_scale_bounds=LENGTH_SCALE_BOUNDS)
    else:
        nu = {"Exponential": 0.5, "Matern32": 1.5, "Matern52": 2.5}[spec.kind]
        base = Matern(
            length_scale=length_scale, length_scale_bounds=LENGTH_SCALE_BOUNDS, nu=nu
        )

    return ConstantKernel(1.0) * base + WhiteKernel(
        noise_level=NUGGET_INIT, noise_level_bounds=NUGGET_BOUNDS
    )


def fit_gaussian_process(
    X_train: np.ndarray, y_train: np.ndarray, kernel: Kernel, random_state: int
) -> GaussianProcessRegressor:
    """Fit Gaussian process model to training data.

    Args:
        X_train: Scaled parameter configurations
        y_train: Corresponding targets
        kernel: Initial kernel; its hyperparameters are re-estimated
        random_state: Random seed for reproducibility

    Returns:
        Fitted Gaussian process model
    """
    gp = GaussianProcessRegressor(
        kernel=kernel, normalize_y=True, random_state=random_state
    )
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        gp.fit(X_train, y_train)
    return gp


@dataclass(frozen=True)
class SurrogateHandle:
    """A fitted Gaussian process together with the data it was fitted on."""

    model: GaussianProcessRegressor
    X: np.ndarray
    y: np.ndarray
    random_state: int

    def advance(self, X_new: np.ndarray, y_new: np.ndarray) -> "SurrogateHandle":
        """Return a new handle refitted on the old data plus the new rows.

        The fitted kernel of this handle is used as the starting point, so
        lengthscales and the nugget are re-estimated rather than rebuilt.
        """
        X = np.vstack([self.X, np.atleast_2d(X_new)])
        y = np.concatenate([self.y, np.ravel(y_new)])
        model = fit_gaussian_process(X, y, self.model.kernel_, self.random_state)
        return SurrogateHandle(model, X, y, self.random_state)

    def predict_mean_variance(self, X: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Predict at scaled points.

        Args:
            X: Scaled parameter sets, one per row

        Returns:
            Tuple of (mean, variance), variance clipped at zero
        """
        mean, std = self.model.predict(np.atleast_2d(X), return_std=True)
        return mean, np.maximum(std, 0.0) ** 2

    @property
    def n_observations(self) -> int:
        return len(self.y)


@dataclass(frozen=True)
class UnfittedSurrogate:
    """Surrogate that has not seen data yet; the first ``advance`` fits it."""

    kernel: KernelSpec
    random_state: int

    def advance(self, X_new: np.ndarray, y_new: np.ndarray) -> SurrogateHandle:
        X = np.atleast_2d(np.asarray(X_new, dtype=float))
        y = np.ravel(np.asarray(y_new, dtype=float))
        kernel = build_kernel(self.kernel, X.shape[1])
        model = fit_gaussian_process(X, y, kernel, self.random_state)
        return SurrogateHandle(model, X, y, self.random_state)
