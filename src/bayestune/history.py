"""Append-only record of evaluated parameter sets."""

from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Mapping

import numpy as np
import pandas as pd

from .exceptions import ConfigurationError, EvaluationError

ITERATION = "Iteration"
ELAPSED = "Elapsed"
SCORE = "Score"


@dataclass(frozen=True)
class Observation:
    """One scored parameter set."""

    iteration: int
    params: Mapping[str, float]
    elapsed: float
    score: float
    extras: Mapping[str, Any] = field(default_factory=dict)

    def key(self, param_names: list[str]) -> tuple:
        return tuple(float(self.params[name]) for name in param_names)


class ObservationLog:
    """Observations in evaluation order, grown one full batch at a time.

    The names of the extra fields returned by the scoring function are fixed
    by the first batch.
    """

    def __init__(self, param_names: list[str]) -> None:
        self.param_names = list(param_names)
        self.extra_names: tuple[str, ...] | None = None
        self._observations: list[Observation] = []

    @classmethod
    def from_frame(
        cls, frame: pd.DataFrame, param_names: list[str], iteration: int = 0
    ) -> "ObservationLog":
        """Build a log from a score table, tagging every row with ``iteration``."""
        missing = [c for c in [*param_names, SCORE, ELAPSED] if c not in frame.columns]
        if missing:
            raise ConfigurationError(f"Score table is missing columns: {missing}")

        extra_names = [
            c for c in frame.columns if c not in {ITERATION, ELAPSED, SCORE, *param_names}
        ]
        log = cls(param_names)
        log.extend(
            Observation(
                iteration=iteration,
                params={name: row[name] for name in param_names},
                elapsed=float(row[ELAPSED]),
                score=float(row[SCORE]),
                extras={name: row[name] for name in extra_names},
            )
            for row in frame.to_dict(orient="records")
        )
        return log

    def extend(self, observations: Iterable[Observation]) -> None:
        """Append a complete batch; nothing is added if the batch is invalid."""
        batch = list(observations)
        if not batch:
            return

        extra_names = self.extra_names
        for obs in batch:
            names = tuple(obs.extras)
            if extra_names is None:
                extra_names = names
            elif set(names) != set(extra_names):
                raise EvaluationError(
                    f"Scoring function returned fields {sorted(names)}, "
                    f"expected {sorted(extra_names)}"
                )

        self.extra_names = extra_names
        self._observations.extend(batch)

    def to_frame(self) -> pd.DataFrame:
        """Columns: Iteration, parameters, Elapsed, Score, extra fields."""
        extra_names = list(self.extra_names or ())
        columns = [ITERATION, *self.param_names, ELAPSED, SCORE, *extra_names]
        records = [
            {
                ITERATION: obs.iteration,
                **obs.params,
                ELAPSED: obs.elapsed,
                SCORE: obs.score,
                **obs.extras,
            }
            for obs in self._observations
        ]
        return pd.DataFrame(records, columns=columns)

    def keys(self) -> set[tuple]:
        return {obs.key(self.param_names) for obs in self._observations}

    def distinct_count(self) -> int:
        return len(self.keys())

    def best(self) -> Observation:
        scores = [obs.score for obs in self._observations]
        return self._observations[int(np.argmax(scores))]

    def rows_for_iteration(self, iteration: int) -> list[Observation]:
        return [obs for obs in self._observations if obs.iteration == iteration]

    def params_matrix(self, observations: list[Observation] | None = None) -> np.ndarray:
        obs_list = self._observations if observations is None else observations
        return np.array(
            [[obs.params[name] for name in self.param_names] for obs in obs_list],
            dtype=float,
        )

    def __len__(self) -> int:
        return len(self._observations)

    def __iter__(self) -> Iterator[Observation]:
        return iter(self._observations)
