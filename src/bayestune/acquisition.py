"""Acquisition functions and multi-start acquisition maximization."""

import warnings
from dataclasses import dataclass

import numpy as np
from scipy.optimize import minimize
from scipy.stats import norm
from tqdm import tqdm

from .config import ImpatienceRule
from .exceptions import FlatAcquisitionWarning, UnrecognizedAcquisitionFunction
from .surrogate import SurrogateHandle

MIN_ELAPSED = 1e-9


@dataclass(frozen=True)
class LocalOptimum:
    """Result of one local acquisition search, in scaled coordinates."""

    scaled: np.ndarray
    value: float
    n_steps: int


def upper_confidence_bound(
    mean: np.ndarray, variance: np.ndarray, kappa: float
) -> np.ndarray:
    """Upper confidence bound of the posterior.

    Args:
        mean: Posterior mean at each point
        variance: Posterior variance at each point
        kappa: Weight of the standard deviation term

    Returns:
        Utility per point
    """
    return mean + kappa * np.sqrt(variance)


def _improvement_terms(
    mean: np.ndarray, variance: np.ndarray, y_max: float, eps: float
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    improvement = mean - (y_max + eps)
    sigma = np.sqrt(variance)
    safe_sigma = np.where(sigma > 0, sigma, 1.0)
    z = np.where(sigma > 0, improvement / safe_sigma, 0.0)
    return improvement, sigma, z


def expected_improvement(
    mean: np.ndarray, variance: np.ndarray, y_max: float, eps: float
) -> np.ndarray:
    """Expected improvement over ``y_max + eps``.

    With zero variance the improvement is deterministic: ``mean - threshold``
    when positive, otherwise zero.
    """
    improvement, sigma, z = _improvement_terms(mean, variance, y_max, eps)
    ei = improvement * norm.cdf(z) + sigma * norm.pdf(z)
    return np.where(sigma > 0, ei, np.maximum(improvement, 0.0))


def probability_of_improvement(
    mean: np.ndarray, variance: np.ndarray, y_max: float, eps: float
) -> np.ndarray:
    """Probability that a point beats ``y_max + eps``.

    Args:
        mean: Posterior mean at each point
        variance: Posterior variance at each point
        y_max: Best scaled score observed so far
        eps: Minimum improvement that counts

    Returns:
        Probability per point; 0 or 1 where the variance is zero
    """
    improvement, sigma, z = _improvement_terms(mean, variance, y_max, eps)
    return np.where(sigma > 0, norm.cdf(z), (improvement > 0).astype(float))


def calculate_acquisition(
    X: np.ndarray,
    acq: str,
    score_model: SurrogateHandle,
    elapsed_model: SurrogateHandle | None,
    y_max: float,
    kappa: float,
    eps: float,
) -> np.ndarray:
    """Evaluate an acquisition function at scaled points ``X``.

    Args:
        X: Scaled parameter sets, one per row
        acq: One of ucb, ei, eips, poi
        score_model: Surrogate fitted on scaled scores
        elapsed_model: Surrogate fitted on scaled elapsed times (eips only)
        y_max: Best scaled score observed so far
        kappa: Exploration weight of ucb
        eps: Improvement threshold offset

    Returns:
        Utility for each row of ``X``
    """
    mean, variance = score_model.predict_mean_variance(X)

    if acq == "ucb":
        return upper_confidence_bound(mean, variance, kappa)
    if acq == "ei":
        return expected_improvement(mean, variance, y_max, eps)
    if acq == "poi":
        return probability_of_improvement(mean, variance, y_max, eps)
    if acq == "eips":
        if elapsed_model is None:
            raise ValueError("eips requires a surrogate fitted on elapsed time")
        elapsed, _ = elapsed_model.predict_mean_variance(X)
        ei = expected_improvement(mean, variance, y_max, eps)
        return ei / np.maximum(elapsed, MIN_ELAPSED)

    raise UnrecognizedAcquisitionFunction(f"Acquisition function '{acq}' not recognized")


def resolve_acquisition(current: str, rule: ImpatienceRule, n_distinct: int) -> str:
    """Apply the impatience rule: leave ``eips`` once enough sets are scored."""
    if current == "eips" and rule.new_acq != "eips" and n_distinct >= rule.rounds:
        return rule.new_acq
    return current


def maximize_acquisition(
    starts: np.ndarray,
    acq: str,
    score_model: SurrogateHandle,
    elapsed_model: SurrogateHandle | None,
    y_max: float,
    kappa: float,
    eps: float,
    conv_thresh: float,
    show_progress: bool = False,
) -> list[LocalOptimum]:
    """Run a bounded L-BFGS-B search from every scaled starting point.

    Args:
        starts: Scaled starting points, one per row
        conv_thresh: L-BFGS-B ``factr``; multiplied by machine epsilon for ``ftol``

    Returns:
        One LocalOptimum per starting point
    """
    n_dims = starts.shape[1]
    box = [(0.0, 1.0)] * n_dims
    ftol = conv_thresh * np.finfo(float).eps

    def negative_utility(x: np.ndarray) -> float:
        value = calculate_acquisition(
            x.reshape(1, -1), acq, score_model, elapsed_model, y_max, kappa, eps
        )
        return -float(value[0])

    optima = []
    for start in tqdm(starts, desc="Local optimum search", disable=not show_progress):
        res = minimize(
            negative_utility,
            start,
            method="L-BFGS-B",
            bounds=box,
            options={"ftol": ftol},
        )
        scaled = np.clip(res.x, 0.0, 1.0)
        optima.append(LocalOptimum(scaled=scaled, value=-float(res.fun), n_steps=res.nit))

    if not any(opt.n_steps > 2 for opt in optima):
        warnings.warn(
            "Local optimizer only took <3 steps from every start. "
            "Process may be sampling random points. Try decreasing conv_thresh.",
            FlatAcquisitionWarning,
            stacklevel=2,
        )

    return optima
