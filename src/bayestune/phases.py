"""Execution logic for optimization phases."""

import time
import warnings
from dataclasses import dataclass, field

import numpy as np
import pandas as pd

from .acquisition import LocalOptimum, maximize_acquisition, resolve_acquisition
from .checkpointing import save_checkpoint
from .clustering import select_batch
from .exceptions import CheckpointWriteError, InsufficientUniqueSamples
from .history import ITERATION, SCORE, Observation, ObservationLog
from .sampling import latin_hypercube_sample
from .surrogate import SurrogateHandle, UnfittedSurrogate


@dataclass
class IterationState:
    """Run-scoped state that changes once per completed batch."""

    acquisition: str
    score_model: UnfittedSurrogate | SurrogateHandle
    elapsed_model: UnfittedSurrogate | SurrogateHandle | None
    start_time: float = field(default_factory=time.time)
    iteration: int = 0
    overwrites: int = 0
    score_scale: float = 1.0
    elapsed_scale: float = 1.0
    local_optima: dict[int, list[LocalOptimum]] = field(default_factory=dict)
    acq_maximums: list[pd.DataFrame] = field(default_factory=list)
    best_pars: list[dict] = field(default_factory=list)


def run_initial_phase(optimizer, state: IterationState) -> ObservationLog:
    """Build the iteration 0 score table.

    Evaluates the initial design (caller grid or Latin hypercube sample) and
    appends the resumed table when its columns match. Without initialization
    the resumed table is used as is.

    Args:
        optimizer: BayesianOptimizer instance
        state: Iteration state to seed with scales and the first best snapshot

    Returns:
        Observation log holding every iteration 0 row
    """
    config = optimizer.config
    bounds = optimizer.bounds
    left_off = config.left_off

    if config.initialize:
        if config.init_grid is not None and len(config.init_grid) > 0:
            init_params = config.init_grid[bounds.names]
        else:
            init_params = latin_hypercube_sample(
                bounds, config.init_points, optimizer.rng
            )

        if optimizer.verbose > 0:
            print("=" * 60)
            print(
                f"Running initial scoring function {len(init_params)} times "
                f"in {optimizer.dispatcher.n_workers} thread(s)"
            )
            print("=" * 60)

        log = ObservationLog(bounds.names)
        log.extend(
            optimizer.dispatcher.map(
                optimizer.scoring_function,
                init_params.to_dict(orient="records"),
                0,
            )
        )

        if left_off is not None and len(left_off) > 0:
            _merge_left_off(optimizer, log, left_off)
    else:
        log = ObservationLog.from_frame(left_off, bounds.names, iteration=0)

    scores = np.array([obs.score for obs in log])
    elapsed = np.array([obs.elapsed for obs in log])
    state.score_scale = float(np.max(np.abs(scores))) or 1.0
    state.elapsed_scale = float(np.max(elapsed)) or 1.0

    _record_best(optimizer, state, log)
    _save_optimizer_checkpoint(optimizer, state, log)
    return log


def run_bayesian_phase(optimizer, state: IterationState, log: ObservationLog) -> None:
    """Fit, search, select and evaluate until enough distinct sets are scored.

    Args:
        optimizer: BayesianOptimizer instance
        state: Iteration state, updated in place
        log: Observation log, extended by one batch per iteration
    """
    config = optimizer.config

    while log.distinct_count() < config.n_iters:
        state.iteration += 1
        n_distinct = log.distinct_count()
        run_new = min(config.n_iters - n_distinct, config.bulk_new)

        if optimizer.verbose > 0:
            print("=" * 60)
            print(f"Starting round number {state.iteration}")

        new_acq = resolve_acquisition(state.acquisition, config.stop_impatient, n_distinct)
        if new_acq != state.acquisition:
            if optimizer.verbose > 0:
                print(
                    f"  0) Changing acquisition function from "
                    f"{state.acquisition} to {new_acq}"
                )
            state.acquisition = new_acq

        if optimizer.verbose > 0:
            print("  1) Fitting Gaussian process...")
        _fit_surrogates(optimizer, state, log)

        if optimizer.verbose > 0:
            print("  2) Running local optimum search...")
        optima = _search_acquisition(optimizer, state, log)
        state.local_optima[state.iteration] = optima

        batch, cluster_points = select_batch(
            optima,
            optimizer.bounds,
            run_new,
            config.min_cluster_utility,
            config.noise_add,
            optimizer.rng,
            observed=log.keys(),
        )
        if batch.empty:
            raise InsufficientUniqueSamples(
                "No new distinct parameter sets remain in the bounds. "
                "Try decreasing n_iters."
            )
        cluster_points.insert(0, ITERATION, state.iteration)
        state.acq_maximums.append(cluster_points)

        if optimizer.verbose > 0:
            print(
                f"  3) Running scoring function {len(batch)} times in "
                f"{optimizer.dispatcher.n_workers} thread(s)..."
            )
        observations = optimizer.dispatcher.map(
            optimizer.scoring_function,
            batch.to_dict(orient="records"),
            state.iteration,
        )

        if optimizer.verbose > 1:
            _print_batch_results(log, observations)

        log.extend(observations)
        _record_best(optimizer, state, log)
        _save_optimizer_checkpoint(optimizer, state, log)


def _merge_left_off(optimizer, log: ObservationLog, left_off: pd.DataFrame) -> None:
    """Append the resumed table when its columns match the fresh score table."""
    fresh_columns = set(log.to_frame().columns)
    resumed_columns = set(left_off.columns) | {ITERATION}

    if fresh_columns != resumed_columns:
        warnings.warn(
            "Names from scoring function do not match left_off table. "
            "Continuing without using left_off table.",
            UserWarning,
            stacklevel=3,
        )
        return

    resumed = ObservationLog.from_frame(left_off, optimizer.bounds.names, iteration=0)
    log.extend(resumed)


def _fit_surrogates(optimizer, state: IterationState, log: ObservationLog) -> None:
    """Advance the surrogates with the rows scored in the previous iteration."""
    new_rows = log.rows_for_iteration(state.iteration - 1)
    X = optimizer.bounds.scale(log.params_matrix(new_rows))
    scores = np.array([obs.score for obs in new_rows]) / state.score_scale
    state.score_model = state.score_model.advance(X, scores)

    if state.acquisition == "eips":
        elapsed = np.array([obs.elapsed for obs in new_rows]) / state.elapsed_scale
        state.elapsed_model = state.elapsed_model.advance(X, elapsed)
    else:
        state.elapsed_model = None


def _search_acquisition(
    optimizer, state: IterationState, log: ObservationLog
) -> list[LocalOptimum]:
    config = optimizer.config
    starts = latin_hypercube_sample(
        optimizer.bounds, config.gs_points, optimizer.rng, strict=False
    )
    y_max = max(obs.score for obs in log) / state.score_scale

    return maximize_acquisition(
        optimizer.bounds.scale(starts),
        state.acquisition,
        state.score_model,
        state.elapsed_model,
        y_max,
        config.kappa,
        config.eps,
        config.conv_thresh,
        show_progress=optimizer.verbose > 1,
    )


def _record_best(optimizer, state: IterationState, log: ObservationLog) -> None:
    best = log.best()
    state.best_pars.append(
        {
            ITERATION: state.iteration,
            **best.params,
            SCORE: best.score,
            **best.extras,
            "elapsedSecs": round(time.time() - state.start_time),
        }
    )


def _print_batch_results(log: ObservationLog, observations: list[Observation]) -> None:
    new_results = ObservationLog(log.param_names)
    new_results.extend(observations)
    print("Results from most recent parameter scoring:")
    print(new_results.to_frame().drop(columns=ITERATION).to_string(index=False))

    best_new = new_results.best()
    if best_new.score > log.best().score:
        print("New best parameter set found:")
        best = best_new
    else:
        print("Maximum score was not raised this round. Best score is still:")
        best = log.best()
    print({**best.params, SCORE: best.score, **best.extras})


def _save_optimizer_checkpoint(
    optimizer, state: IterationState, log: ObservationLog
) -> None:
    """Save the score table; failures are reported and the run continues."""
    checkpoint_file = optimizer.config.save_intermediate
    if checkpoint_file is None:
        return

    try:
        save_checkpoint(log.to_frame(), checkpoint_file)
    except CheckpointWriteError as exc:
        warnings.warn(str(exc), RuntimeWarning, stacklevel=2)
        if optimizer.verbose > 0:
            print("=== Failed to save intermediary results. Please check file path. ===")
        return

    state.overwrites += 1
    if optimizer.verbose > 0:
        print(
            f"Saving intermediary results with {len(log)} rows to {checkpoint_file} "
            f"(save/overwrite number {state.overwrites})"
        )
