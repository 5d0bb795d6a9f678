"""Batched Bayesian optimization of expensive scoring functions.

This module provides a modular Bayesian optimization framework with:
- Latin hypercube sampling for initial exploration and local search seeding
- Gaussian process surrogate models (Gaussian, Exponential, Matern kernels)
- Multi-start acquisition maximization (ucb, ei, eips, poi)
- Clustered batch selection for parallel evaluation
- Checkpointing for resumable optimization
"""

from .bounds import BoundsTable, ParameterSpec
from .checkpointing import load_checkpoint, save_checkpoint
from .config import ImpatienceRule, OptimizationConfig
from .exceptions import (
    BayesOptError,
    BoundsViolationError,
    CheckpointWriteError,
    ConfigurationError,
    EvaluationError,
    FlatAcquisitionWarning,
    InsufficientUniqueSamples,
    UnrecognizedAcquisitionFunction,
)
from .optimizer import BayesianOptimizer, OptimizationResult, bayesian_optimization
from .sampling import latin_hypercube_sample
from .surrogate import KernelSpec

__all__ = [
    "BayesOptError",
    "BayesianOptimizer",
    "BoundsTable",
    "BoundsViolationError",
    "CheckpointWriteError",
    "ConfigurationError",
    "EvaluationError",
    "FlatAcquisitionWarning",
    "ImpatienceRule",
    "InsufficientUniqueSamples",
    "KernelSpec",
    "OptimizationConfig",
    "OptimizationResult",
    "ParameterSpec",
    "UnrecognizedAcquisitionFunction",
    "bayesian_optimization",
    "latin_hypercube_sample",
    "load_checkpoint",
    "save_checkpoint",
]
