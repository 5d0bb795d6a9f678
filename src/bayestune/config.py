"""Default settings and run configuration for Bayesian optimization."""

import importlib.util
import math
from dataclasses import dataclass, field

import pandas as pd

from .exceptions import ConfigurationError, UnrecognizedAcquisitionFunction

ACQUISITION_FUNCTIONS = ("ucb", "ei", "eips", "poi")
KERNELS = ("Gaussian", "Exponential", "Matern32", "Matern52")

# Exploration defaults
DEFAULT_KAPPA = 2.576  # 99% upper confidence bound
DEFAULT_EPS = 0.0
DEFAULT_NOISE_ADD = 0.25  # Fraction of each parameter range

# Local optimum search
DEFAULT_GS_POINTS = 100
DEFAULT_CONV_THRESH = 1e7  # L-BFGS-B factr

# Sampling
MAX_SAMPLING_ATTEMPTS = 100
CLUSTER_TOLERANCE = 1e-3  # Scaled distance under which local optima merge

RANDOM_SEED = 42


@dataclass(frozen=True)
class ImpatienceRule:
    """Switch away from ``eips`` once ``rounds`` distinct parameter sets exist.

    Args:
        new_acq: Acquisition function to switch to
        rounds: Number of distinct evaluated parameter sets that triggers the switch
    """

    new_acq: str = "ucb"
    rounds: float = math.inf


@dataclass
class OptimizationConfig:
    """Settings for a single optimization run.

    Args:
        save_intermediate: File path for checkpoints (None to disable)
        left_off: Score table (or checkpoint path) from a previous run to resume from
        parallel: Evaluate batches on a joblib worker pool
        n_jobs: Number of joblib workers when ``parallel`` is set (-1 for all)
        packages: Modules the scoring function needs inside workers
        initialize: Evaluate an initial design before fitting the surrogate
        init_grid: Explicit initial design, one column per parameter
        init_points: Number of Latin hypercube points for the initial design
        bulk_new: Number of parameter sets evaluated per surrogate fit
        n_iters: Total number of distinct parameter sets to evaluate
        kern: Covariance function of the Gaussian process
        beta: log10 of the kernel lengthscale parameter theta
        acq: Acquisition function
        stop_impatient: Rule for abandoning ``eips``
        kappa: Exploration weight of ``ucb``
        eps: Improvement threshold offset of ``ei``, ``eips`` and ``poi``
        gs_points: Number of starting points for the local optimum search
        conv_thresh: L-BFGS-B ``factr``; lower values converge more tightly
        min_cluster_utility: Fraction of the best utility a local optimum needs
            to become a candidate (None keeps only the global optimum)
        noise_add: Half-width of the Beta noise around optima, as a fraction
            of each parameter range
        verbose: 0 silent, 1 progress, 2 progress and per-evaluation detail
        random_state: Random seed for reproducibility
    """

    save_intermediate: str | None = None
    left_off: pd.DataFrame | str | None = None
    parallel: bool = False
    n_jobs: int = -1
    packages: tuple[str, ...] = ()
    initialize: bool = True
    init_grid: pd.DataFrame | None = None
    init_points: int = 0
    bulk_new: int = 1
    n_iters: int = 0
    kern: str = "Matern52"
    beta: float = 0.0
    acq: str = "ucb"
    stop_impatient: ImpatienceRule = field(default_factory=ImpatienceRule)
    kappa: float = DEFAULT_KAPPA
    eps: float = DEFAULT_EPS
    gs_points: int = DEFAULT_GS_POINTS
    conv_thresh: float = DEFAULT_CONV_THRESH
    min_cluster_utility: float | None = None
    noise_add: float = DEFAULT_NOISE_ADD
    verbose: int = 1
    random_state: int = RANDOM_SEED

    def validate(self) -> None:
        """Check option combinations that do not depend on the bounds."""
        if self.acq not in ACQUISITION_FUNCTIONS:
            raise UnrecognizedAcquisitionFunction(
                f"Acquisition function '{self.acq}' not recognized. "
                f"Choose one of {ACQUISITION_FUNCTIONS}."
            )
        if self.stop_impatient.new_acq not in ACQUISITION_FUNCTIONS:
            raise UnrecognizedAcquisitionFunction(
                f"New acquisition function '{self.stop_impatient.new_acq}' "
                f"not recognized. Choose one of {ACQUISITION_FUNCTIONS}."
            )
        if self.kern not in KERNELS:
            raise ConfigurationError(
                f"Kernel '{self.kern}' not recognized. Choose one of {KERNELS}."
            )

        n_left_off = 0 if self.left_off is None else len(self.left_off)
        n_grid = 0 if self.init_grid is None else len(self.init_grid)

        if not self.initialize and n_left_off == 0:
            raise ConfigurationError(
                "initialize cannot be False if left_off is not provided. "
                "Set initialize to True and provide either init_grid or "
                "init_points. You can provide left_off AND initialize."
            )
        if self.initialize and n_grid == 0 and self.init_points <= 0:
            raise ConfigurationError(
                "initialize is True but neither init_grid nor init_points "
                "were provided"
            )
        if self.init_points > 0 and n_grid > 0:
            raise ConfigurationError(
                "init_grid and init_points are both specified, choose one."
            )
        if self.bulk_new < 1:
            raise ConfigurationError("bulk_new must be at least 1")
        if self.gs_points < 1:
            raise ConfigurationError("gs_points must be at least 1")
        if not 0 < self.noise_add <= 1:
            raise ConfigurationError("noise_add must be in (0, 1]")
        if self.min_cluster_utility is not None and not (
            0 <= self.min_cluster_utility <= 1
        ):
            raise ConfigurationError("min_cluster_utility must be in [0, 1]")

        for package in self.packages:
            try:
                spec = importlib.util.find_spec(package)
            except ModuleNotFoundError:
                spec = None
            if spec is None:
                raise ConfigurationError(
                    f"Package '{package}' required by the scoring function "
                    f"cannot be imported"
                )

    def planned_initial_points(self) -> int:
        """Number of initial evaluations this configuration will run."""
        if not self.initialize:
            return 0
        n_grid = 0 if self.init_grid is None else len(self.init_grid)
        return self.init_points + n_grid
