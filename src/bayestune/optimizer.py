"""Main Bayesian optimizer class."""

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping, Sequence

import numpy as np
import pandas as pd

from .acquisition import LocalOptimum
from .bounds import BoundsTable, ParameterSpec
from .checkpointing import load_checkpoint
from .config import OptimizationConfig
from .evaluation import ScoringFunction, make_dispatcher
from .exceptions import BoundsViolationError, ConfigurationError
from .history import SCORE
from .phases import IterationState, run_bayesian_phase, run_initial_phase
from .surrogate import KernelSpec, SurrogateHandle, UnfittedSurrogate

CONTINUATION_FIELDS = frozenset(
    {"left_off", "initialize", "init_grid", "init_points", "n_iters"}
)


@dataclass
class OptimizationResult:
    """Everything produced by a completed run.

    Attributes:
        score_surrogate: Last Gaussian process fitted on scores
        elapsed_surrogate: Last Gaussian process fitted on elapsed time, if
            ``eips`` was still active at the end
        acq_maximums: Candidates selected in each iteration with their utility
        local_optima: Local acquisition optima found in each iteration
        score_history: Every scored parameter set
        best_pars: Best parameter set after each iteration
    """

    score_surrogate: SurrogateHandle
    elapsed_surrogate: SurrogateHandle | None
    acq_maximums: pd.DataFrame
    local_optima: dict[int, list[LocalOptimum]]
    score_history: pd.DataFrame
    best_pars: pd.DataFrame
    param_names: list[str]

    def get_best_params(self, n: int = 1) -> list[dict]:
        """Return the ``n`` best distinct parameter sets, best first."""
        ranked = (
            self.score_history.sort_values(SCORE, ascending=False, kind="stable")
            .drop_duplicates(subset=self.param_names)
            .head(n)
        )
        return ranked[self.param_names].to_dict(orient="records")


class BayesianOptimizer:
    """Batched Bayesian optimizer for an expensive scoring function."""

    def __init__(
        self,
        scoring_function: ScoringFunction,
        bounds: Mapping[str, Sequence[float]] | Sequence[ParameterSpec],
        config: OptimizationConfig | None = None,
        **options,
    ) -> None:
        """Initialize Bayesian optimizer.

        Args:
            scoring_function: Function to maximize, called with one keyword
                argument per parameter; returns a mapping with ``Score`` and
                optionally extra scalar fields
            bounds: ``{"name": (lower, upper)}`` or a list of ParameterSpec;
                parameters with integer bounds are searched over integers
            config: Run configuration
            **options: Overrides for individual OptimizationConfig fields
        """
        config = config or OptimizationConfig()
        if options:
            config = replace(config, **options)
        if isinstance(config.left_off, (str, Path)):
            config = replace(config, left_off=_load_left_off(config.left_off))

        self.scoring_function = scoring_function
        self.bounds = BoundsTable.from_mapping(bounds)
        self.config = config
        self.verbose = config.verbose
        self.rng = np.random.default_rng(config.random_state)
        self.dispatcher = None
        self.state: IterationState | None = None

    def run(self) -> OptimizationResult:
        """Run the optimization until ``n_iters`` distinct sets are scored.

        Returns:
            OptimizationResult for the completed run
        """
        self._validate()

        kernel = KernelSpec(self.config.kern, self.config.beta)
        acq = self.config.acq
        self.state = IterationState(
            acquisition=acq,
            score_model=UnfittedSurrogate(kernel, self.config.random_state),
            elapsed_model=(
                UnfittedSurrogate(kernel, self.config.random_state)
                if acq == "eips"
                else None
            ),
        )

        log = run_initial_phase(self, self.state)
        run_bayesian_phase(self, self.state, log)

        return self._build_result(log)

    def add_iterations(
        self, result: OptimizationResult, n_new: int, **options
    ) -> OptimizationResult:
        """Continue a finished run for ``n_new`` more distinct parameter sets.

        The previous score table is used as the starting design; no initial
        evaluations are run.

        Args:
            result: Result of a completed run
            n_new: Number of additional distinct parameter sets to score
            **options: Overrides for OptimizationConfig fields, except the
                ones that define the starting design and the budget

        Returns:
            OptimizationResult covering the old and the new rows

        Raises:
            ConfigurationError: If ``options`` sets a field fixed by the
                continuation
        """
        fixed = sorted(set(options) & CONTINUATION_FIELDS)
        if fixed:
            raise ConfigurationError(
                f"add_iterations sets {fixed} itself; pass n_new instead"
            )

        n_distinct = len(result.score_history.drop_duplicates(subset=result.param_names))
        config = replace(
            self.config,
            left_off=result.score_history,
            initialize=False,
            init_grid=None,
            init_points=0,
            n_iters=n_distinct + n_new,
            **options,
        )
        return BayesianOptimizer(self.scoring_function, self.bounds, config).run()

    def _validate(self) -> None:
        """Reject the configuration before anything is evaluated."""
        config = self.config
        config.validate()
        self.dispatcher = make_dispatcher(config.parallel, config.n_jobs)

        if config.verbose > 0 and config.parallel:
            if config.bulk_new < self.dispatcher.n_workers:
                print(
                    "bulk_new is less than the number of workers - "
                    "process may not utilize all workers."
                )

        n_left_off = 0
        if config.init_grid is not None and len(config.init_grid) > 0:
            self._check_table(config.init_grid, "init_grid")
        if config.left_off is not None and len(config.left_off) > 0:
            self._check_table(config.left_off, "left_off")
            n_left_off = len(config.left_off.drop_duplicates(subset=self.bounds.names))

        if n_left_off + config.planned_initial_points() >= config.n_iters:
            raise ConfigurationError(
                f"Rows in initial set ({n_left_off + config.planned_initial_points()}) "
                f"will be larger than or equal to n_iters ({config.n_iters})"
            )

    def _check_table(self, table: pd.DataFrame, label: str) -> None:
        missing = [name for name in self.bounds.names if name not in table.columns]
        if missing:
            raise ConfigurationError(f"{label} is missing parameter columns: {missing}")
        if not self.bounds.check_within_bounds(table):
            raise BoundsViolationError(f"{label} not within bounds.")

    def _build_result(self, log) -> OptimizationResult:
        state = self.state
        if state.acq_maximums:
            acq_maximums = pd.concat(state.acq_maximums, ignore_index=True)
        else:
            acq_maximums = pd.DataFrame()

        return OptimizationResult(
            score_surrogate=state.score_model,
            elapsed_surrogate=state.elapsed_model,
            acq_maximums=acq_maximums,
            local_optima=state.local_optima,
            score_history=log.to_frame(),
            best_pars=pd.DataFrame(state.best_pars),
            param_names=list(self.bounds.names),
        )


def bayesian_optimization(
    scoring_function: ScoringFunction,
    bounds: Mapping[str, Sequence[float]] | Sequence[ParameterSpec],
    **options,
) -> OptimizationResult:
    """Maximize ``scoring_function`` over ``bounds``.

    Args:
        scoring_function: Function to maximize
        bounds: Parameter bounds
        **options: OptimizationConfig fields, e.g. ``init_points``, ``n_iters``

    Returns:
        OptimizationResult for the completed run
    """
    return BayesianOptimizer(scoring_function, bounds, **options).run()


def _load_left_off(path: str | Path) -> pd.DataFrame:
    left_off = load_checkpoint(path)
    if left_off is None:
        raise ConfigurationError(f"left_off file {path} does not exist")
    return left_off
