"""Parameter space definition and min-max scaling."""

from dataclasses import dataclass
from typing import Mapping, Sequence

import numpy as np
import pandas as pd

from .exceptions import ConfigurationError

CONTINUOUS = "continuous"
INTEGER = "integer"


@dataclass(frozen=True)
class ParameterSpec:
    """A single bounded parameter."""

    name: str
    lower: float
    upper: float
    kind: str = CONTINUOUS

    def __post_init__(self) -> None:
        if self.kind not in (CONTINUOUS, INTEGER):
            raise ConfigurationError(
                f"Parameter '{self.name}' has unknown kind '{self.kind}'"
            )
        if not self.upper > self.lower:
            raise ConfigurationError(
                f"Parameter '{self.name}' needs upper > lower, "
                f"got ({self.lower}, {self.upper})"
            )


class BoundsTable:
    """Ordered parameter space, fixed for the lifetime of a run."""

    def __init__(self, specs: Sequence[ParameterSpec]) -> None:
        if not specs:
            raise ConfigurationError("bounds must contain at least one parameter")
        names = [spec.name for spec in specs]
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Duplicate parameter names in bounds: {names}")

        self.specs = tuple(specs)
        self.names = names
        self.lower = np.array([spec.lower for spec in specs], dtype=float)
        self.upper = np.array([spec.upper for spec in specs], dtype=float)
        self.ranges = self.upper - self.lower
        self.is_integer = np.array([spec.kind == INTEGER for spec in specs])

    @classmethod
    def from_mapping(
        cls, bounds: Mapping[str, Sequence[float]] | Sequence[ParameterSpec]
    ) -> "BoundsTable":
        """Build bounds from ``{"name": (lower, upper)}``.

        A parameter is treated as integer when both of its bounds are ints.
        """
        if isinstance(bounds, BoundsTable):
            return bounds
        if not isinstance(bounds, Mapping):
            return cls(list(bounds))

        specs = []
        for name, (lower, upper) in bounds.items():
            is_int = all(
                isinstance(b, (int, np.integer)) and not isinstance(b, bool)
                for b in (lower, upper)
            )
            specs.append(
                ParameterSpec(name, lower, upper, INTEGER if is_int else CONTINUOUS)
            )
        return cls(specs)

    @property
    def dim(self) -> int:
        return len(self.specs)

    def scale(self, values) -> np.ndarray:
        """Map raw parameter rows to [0, 1]."""
        X = self._as_matrix(values)
        return (X - self.lower) / self.ranges

    def unscale(self, scaled) -> np.ndarray:
        """Map [0, 1] rows back to raw values, rounding integer parameters."""
        S = np.atleast_2d(np.asarray(scaled, dtype=float))
        X = S * self.ranges + self.lower
        X[:, self.is_integer] = np.round(X[:, self.is_integer])
        return X

    def clip_scaled(self, scaled) -> np.ndarray:
        """Clamp scaled rows to the unit box."""
        return np.clip(scaled, 0.0, 1.0)

    def check_within_bounds(self, values) -> bool:
        """True when every row lies inside the bounds, ends included."""
        X = self._as_matrix(values)
        return bool(np.all((X >= self.lower) & (X <= self.upper)))

    def to_frame(self, values) -> pd.DataFrame:
        """Raw rows as a DataFrame with one column per parameter."""
        frame = pd.DataFrame(np.atleast_2d(values), columns=self.names)
        for name, is_int in zip(self.names, self.is_integer):
            if is_int:
                frame[name] = frame[name].astype(int)
        return frame

    def _as_matrix(self, values) -> np.ndarray:
        if isinstance(values, pd.DataFrame):
            values = values[self.names].to_numpy()
        return np.atleast_2d(np.asarray(values, dtype=float))

    def __repr__(self) -> str:
        inner = ", ".join(
            f"{spec.name}=({spec.lower}, {spec.upper}, {spec.kind})"
            for spec in self.specs
        )
        return f"BoundsTable({inner})"
