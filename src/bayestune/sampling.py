"""Parameter sampling utilities for Bayesian optimization."""

import numpy as np
import pandas as pd
from scipy.stats import qmc

from .bounds import BoundsTable
from .config import MAX_SAMPLING_ATTEMPTS
from .exceptions import InsufficientUniqueSamples


def latin_hypercube_sample(
    bounds: BoundsTable,
    n_samples: int,
    rng: np.random.Generator,
    strict: bool = True,
) -> pd.DataFrame:
    """Generate distinct parameter sets using Latin hypercube sampling.

    Integer parameters are rounded after unscaling, which can collapse
    distinct draws onto the same row. Missing rows are topped up with fresh
    draws until ``n_samples`` distinct rows exist.

    Args:
        bounds: Parameter space
        n_samples: Number of distinct parameter sets required
        rng: Random generator driving the sampler
        strict: Raise if ``n_samples`` distinct rows cannot be found

    Returns:
        DataFrame with one column per parameter and at most ``n_samples`` rows
    """
    samples = np.empty((0, bounds.dim))
    needed = n_samples

    for _ in range(MAX_SAMPLING_ATTEMPTS):
        sampler = qmc.LatinHypercube(d=bounds.dim, seed=rng)
        draws = bounds.unscale(sampler.random(n=needed))
        samples = np.unique(np.vstack([samples, draws]), axis=0)
        needed = n_samples - len(samples)
        if needed <= 0:
            break

    if len(samples) < n_samples and strict:
        raise InsufficientUniqueSamples(
            f"Latin Hypercube Sampling could only produce {len(samples)} of "
            f"{n_samples} distinct parameter sets. "
            f"Try decreasing gs_points or init_points."
        )

    # np.unique sorts rows; shuffle so truncation does not favour low corners.
    samples = samples[rng.permutation(len(samples))][:n_samples]
    if len(samples) == 0:
        return pd.DataFrame(columns=bounds.names)
    return bounds.to_frame(samples)
