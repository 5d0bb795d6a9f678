"""Scoring function evaluation, sequential or on a joblib worker pool."""

import time
from typing import Any, Callable, Mapping

from joblib import Parallel, delayed, effective_n_jobs

from .exceptions import ConfigurationError, EvaluationError
from .history import SCORE, Observation

ScoringFunction = Callable[..., Mapping[str, Any]]


def evaluate_params(
    scoring_function: ScoringFunction, params: dict, iteration: int
) -> Observation:
    """Score one parameter set and time the call.

    Args:
        scoring_function: Called as ``scoring_function(**params)``; must return
            a mapping with at least a ``Score`` entry
        params: Parameter configuration to evaluate
        iteration: Iteration tag recorded on the observation

    Returns:
        Observation holding the score, elapsed seconds and any extra fields
    """
    start = time.perf_counter()
    try:
        result = scoring_function(**params)
    except Exception as exc:
        raise EvaluationError(
            f"Scoring function failed for parameters {params}: {exc!r}"
        ) from exc
    elapsed = time.perf_counter() - start

    if not isinstance(result, Mapping) or SCORE not in result:
        raise EvaluationError(
            f"Scoring function must return a mapping with element '{SCORE}' "
            f"at a minimum, got {result!r} for parameters {params}"
        )

    extras = {name: value for name, value in result.items() if name != SCORE}
    return Observation(
        iteration=iteration,
        params=dict(params),
        elapsed=elapsed,
        score=float(result[SCORE]),
        extras=extras,
    )


def _evaluate_indexed(
    scoring_function: ScoringFunction, index: int, params: dict, iteration: int
) -> tuple[int, Observation]:
    return index, evaluate_params(scoring_function, params, iteration)


class SequentialDispatcher:
    """Evaluate candidates one after another in the calling thread."""

    n_workers = 1

    def map(
        self, scoring_function: ScoringFunction, batch: list[dict], iteration: int
    ) -> list[Observation]:
        return [evaluate_params(scoring_function, params, iteration) for params in batch]


class WorkerPoolDispatcher:
    """Evaluate candidates on a joblib worker pool.

    Results are collected as workers finish and put back in batch order by
    their index. The first failing candidate aborts the whole batch.
    """

    def __init__(self, n_jobs: int = -1, backend: str | None = None) -> None:
        self.n_jobs = n_jobs
        self.backend = backend
        self.n_workers = effective_n_jobs(n_jobs)

    def map(
        self, scoring_function: ScoringFunction, batch: list[dict], iteration: int
    ) -> list[Observation]:
        tasks = Parallel(
            n_jobs=self.n_jobs, backend=self.backend, return_as="generator_unordered"
        )(
            delayed(_evaluate_indexed)(scoring_function, i, params, iteration)
            for i, params in enumerate(batch)
        )

        results: dict[int, Observation] = {}
        try:
            for index, observation in tasks:
                results[index] = observation
        except EvaluationError:
            raise
        except Exception as exc:
            raise EvaluationError(f"Batch evaluation failed: {exc!r}") from exc

        return [results[i] for i in range(len(batch))]


def make_dispatcher(
    parallel: bool, n_jobs: int = -1, backend: str | None = None
) -> SequentialDispatcher | WorkerPoolDispatcher:
    """Pick the dispatcher for a run, refusing a pool with a single worker."""
    if not parallel:
        return SequentialDispatcher()

    dispatcher = WorkerPoolDispatcher(n_jobs=n_jobs, backend=backend)
    if dispatcher.n_workers <= 1:
        raise ConfigurationError(
            "parallel is set to True but only one worker is available. "
            "Set n_jobs to 2 or more, or run with parallel=False."
        )
    return dispatcher
