"""Selection of a diversified candidate batch from local acquisition optima."""

import numpy as np
import pandas as pd

from .acquisition import LocalOptimum
from .bounds import BoundsTable
from .config import CLUSTER_TOLERANCE, MAX_SAMPLING_ATTEMPTS
from .sampling import latin_hypercube_sample

BETA_SHAPE = 4.0


def retain_optima(
    optima: list[LocalOptimum],
    min_cluster_utility: float | None,
    tolerance: float = CLUSTER_TOLERANCE,
) -> list[LocalOptimum]:
    """Keep the optima worth evaluating, best first, without near-duplicates.

    Args:
        optima: Local optima from one multi-start search
        min_cluster_utility: Fraction of the best utility an optimum needs to
            be kept; None keeps only the global optimum
        tolerance: Scaled Chebyshev distance below which optima are merged

    Returns:
        Retained optima sorted by decreasing utility
    """
    ranked = sorted(optima, key=lambda opt: opt.value, reverse=True)
    best = ranked[0]

    if min_cluster_utility is None:
        return [best]

    threshold = min_cluster_utility * best.value
    candidates = [best] + [opt for opt in ranked[1:] if opt.value >= threshold]

    retained: list[LocalOptimum] = []
    for opt in candidates:
        if all(np.max(np.abs(opt.scaled - kept.scaled)) >= tolerance for kept in retained):
            retained.append(opt)
    return retained


def allocate_extra_points(utilities: np.ndarray, n_extra: int) -> np.ndarray:
    """Split ``n_extra`` noisy candidates across retained optima.

    Optima are assumed sorted by decreasing utility. Every optimum receives one
    point before any receives a second; the remainder is shared in proportion
    to utility above the weakest optimum, using largest remainders.
    """
    n_clusters = len(utilities)
    counts = np.zeros(n_clusters, dtype=int)
    first_round = min(n_extra, n_clusters)
    counts[:first_round] = 1

    remaining = n_extra - first_round
    if remaining <= 0:
        return counts

    weights = utilities - utilities.min()
    if weights.sum() <= 0:
        weights = np.ones(n_clusters)
    shares = remaining * weights / weights.sum()
    whole = np.floor(shares).astype(int)
    leftover = remaining - whole.sum()
    # Stable sort keeps ties in utility order.
    order = np.argsort(-(shares - whole), kind="stable")
    whole[order[:leftover]] += 1
    return counts + whole


def beta_noise(
    center: np.ndarray,
    bounds: BoundsTable,
    noise_add: float,
    n_points: int,
    rng: np.random.Generator,
) -> np.ndarray:
    """Draw scaled points from a shape (4, 4) Beta around ``center``.

    Each coordinate lies within ``noise_add`` of the center, clipped to the
    unit box of ``bounds``.
    """
    draws = rng.beta(BETA_SHAPE, BETA_SHAPE, size=(n_points, len(center)))
    return bounds.clip_scaled(center + (draws - 0.5) * 2.0 * noise_add)


def select_batch(
    optima: list[LocalOptimum],
    bounds: BoundsTable,
    n_new: int,
    min_cluster_utility: float | None,
    noise_add: float,
    rng: np.random.Generator,
    observed: set[tuple] | None = None,
    max_attempts: int = MAX_SAMPLING_ATTEMPTS,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Turn local optima into the next batch of raw parameter sets.

    Candidates that match an already evaluated row, or another candidate,
    are re-drawn around the same optimum. If that keeps failing the batch is
    completed from Latin hypercube samples.

    Args:
        optima: Local optima from one multi-start search
        bounds: Parameter space
        n_new: Batch size
        min_cluster_utility: See :func:`retain_optima`
        noise_add: Half-width of the Beta noise as a fraction of each range
        rng: Random generator for the noise draws
        observed: Raw parameter tuples that were already evaluated
        max_attempts: Re-draw rounds before falling back to sampling

    Returns:
        Tuple of (batch, cluster_points). ``batch`` holds at most ``n_new`` raw
        parameter sets; ``cluster_points`` adds ``gpUtility`` and
        ``acqOptimum`` columns describing where each candidate came from.
    """
    seen = set(observed or ())
    retained = retain_optima(optima, min_cluster_utility)

    if len(retained) >= n_new:
        centers = retained[:n_new]
        extra = np.zeros(len(centers), dtype=int)
    else:
        centers = retained
        utilities = np.array([opt.value for opt in centers])
        extra = allocate_extra_points(utilities, n_new - len(centers))

    rows: list[np.ndarray] = []
    utility: list[float] = []
    is_optimum: list[bool] = []

    def accept(scaled: np.ndarray, value: float, optimum: bool) -> bool:
        raw = bounds.unscale(scaled)[0]
        key = tuple(raw)
        if key in seen:
            return False
        seen.add(key)
        rows.append(raw)
        utility.append(value)
        is_optimum.append(optimum)
        return True

    deficit = extra.copy()
    for i, opt in enumerate(centers):
        if not accept(opt.scaled, opt.value, True):
            deficit[i] += 1

    for _ in range(max_attempts):
        if deficit.sum() == 0:
            break
        for i, opt in enumerate(centers):
            if deficit[i] == 0:
                continue
            for point in beta_noise(opt.scaled, bounds, noise_add, deficit[i], rng):
                if accept(point, np.nan, False):
                    deficit[i] -= 1

    missing = n_new - len(rows)
    if missing > 0:
        fill = latin_hypercube_sample(bounds, missing + len(seen), rng, strict=False)
        for scaled in bounds.scale(fill) if len(fill) else []:
            if len(rows) == n_new:
                break
            accept(scaled, np.nan, False)

    if rows:
        batch = bounds.to_frame(np.array(rows))
    else:
        batch = pd.DataFrame(columns=bounds.names)
    cluster_points = batch.copy()
    cluster_points["gpUtility"] = utility
    cluster_points["acqOptimum"] = is_optimum
    return batch, cluster_points
