import math
import warnings

import numpy as np
import pandas as pd
import pytest

from bayestune import (
    BayesianOptimizer,
    BoundsViolationError,
    ConfigurationError,
    EvaluationError,
    ImpatienceRule,
    OptimizationConfig,
    UnrecognizedAcquisitionFunction,
    bayesian_optimization,
    load_checkpoint,
)
from bayestune.surrogate import SurrogateHandle

BOUNDS = {"x": (0.0, 8.0)}


def three_peaks(x):
    a = math.exp(-((2 - x) ** 2)) * 1.5
    b = math.exp(-((4 - x) ** 2)) * 2
    c = math.exp(-((6 - x) ** 2)) * 1
    return {"Score": a + b + c}


def mixed_score(depth, rate):
    return {"Score": -((depth - 6) ** 2) / 10 - (rate - 0.3) ** 2, "nrounds": depth * 10}


class CountingScore:
    def __init__(self, func):
        self.func = func
        self.calls = []

    def __call__(self, **params):
        self.calls.append(params)
        return self.func(**params)


def quiet_run(scoring_function, bounds, **options):
    options.setdefault("verbose", 0)
    options.setdefault("gs_points", 10)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", UserWarning)
        return bayesian_optimization(scoring_function, bounds, **options)


def test_end_to_end_single_point_batches():
    result = quiet_run(three_peaks, BOUNDS, init_points=5, bulk_new=1, n_iters=8)
    history = result.score_history

    assert len(history) == 8, f"FAILED: Expected 8 rows, got {len(history)}!"
    assert not history.duplicated(subset=["x"]).any()
    assert history["Iteration"].is_monotonic_increasing
    assert list(history.columns) == ["Iteration", "x", "Elapsed", "Score"]
    assert result.best_pars["Score"].is_monotonic_increasing
    assert result.best_pars["Iteration"].tolist() == [0, 1, 2, 3]
    assert isinstance(result.score_surrogate, SurrogateHandle)
    assert result.elapsed_surrogate is None
    assert sorted(result.local_optima) == [1, 2, 3]
    assert set(result.acq_maximums["Iteration"]) == {1, 2, 3}


def test_batches_integer_parameters_and_extra_fields():
    bounds = {"depth": (2, 10), "rate": (0.0, 1.0)}
    result = quiet_run(
        mixed_score, bounds, init_points=4, bulk_new=3, n_iters=10,
        min_cluster_utility=0.5,
    )
    history = result.score_history

    assert len(history.drop_duplicates(subset=["depth", "rate"])) == 10
    assert len(history) == 10
    assert (history["depth"] == history["depth"].round()).all()
    assert history["depth"].between(2, 10).all()
    assert history.groupby("Iteration").size().tolist() == [4, 3, 3]
    assert "nrounds" in history.columns and "nrounds" in result.best_pars.columns
    best = result.get_best_params(2)
    assert len(best) == 2 and set(best[0]) == {"depth", "rate"}


def test_last_batch_is_trimmed_to_remaining_budget():
    result = quiet_run(three_peaks, BOUNDS, init_points=3, bulk_new=4, n_iters=9)

    assert result.score_history.groupby("Iteration").size().tolist() == [3, 4, 2]


def test_resume_without_initialize_only_runs_remaining(tmp_path):
    path = tmp_path / "scores.pkl"
    quiet_run(three_peaks, BOUNDS, init_points=4, n_iters=6, save_intermediate=str(path))
    left_off = load_checkpoint(path)
    assert len(left_off) == 6

    counter = CountingScore(three_peaks)
    result = quiet_run(counter, BOUNDS, initialize=False, left_off=left_off, n_iters=9)

    assert len(counter.calls) == 3, f"FAILED: {len(counter.calls)} new evaluations!"
    previous = set(left_off["x"])
    assert not any(call["x"] in previous for call in counter.calls)
    assert (result.score_history["Iteration"].iloc[:6] == 0).all()


def test_resume_from_checkpoint_path(tmp_path):
    path = tmp_path / "scores.csv"
    quiet_run(three_peaks, BOUNDS, init_points=4, n_iters=5, save_intermediate=str(path))

    result = quiet_run(three_peaks, BOUNDS, initialize=False, left_off=str(path), n_iters=7)

    assert len(result.score_history) == 7


def test_left_off_appended_to_initial_design_when_columns_match():
    first = quiet_run(three_peaks, BOUNDS, init_points=3, n_iters=4)
    result = quiet_run(
        three_peaks, BOUNDS, init_points=2, left_off=first.score_history, n_iters=8,
    )

    initial = result.score_history[result.score_history["Iteration"] == 0]
    assert len(initial) == 6


def test_schema_mismatch_ignores_left_off_with_warning():
    left_off = pd.DataFrame(
        {"Iteration": [0, 0], "x": [1.0, 2.0], "Elapsed": [0.1, 0.1],
         "Score": [0.2, 1.5], "nrounds": [5, 6]}
    )

    with pytest.warns(UserWarning, match="do not match left_off"):
        result = bayesian_optimization(
            three_peaks, BOUNDS, init_points=3, left_off=left_off, n_iters=6,
            gs_points=10, verbose=0,
        )

    history = result.score_history
    assert (history["Iteration"] == 0).sum() == 3
    assert "nrounds" not in history.columns


def test_eips_switches_after_impatience_rounds():
    result = quiet_run(
        three_peaks, BOUNDS, init_points=5, n_iters=8, acq="eips",
        stop_impatient=ImpatienceRule(new_acq="ei", rounds=6),
    )
    assert result.elapsed_surrogate is None

    result = quiet_run(three_peaks, BOUNDS, init_points=5, n_iters=7, acq="eips")
    assert isinstance(result.elapsed_surrogate, SurrogateHandle)


@pytest.mark.parametrize("acq", ["ei", "poi"])
def test_other_acquisition_functions_complete(acq):
    result = quiet_run(three_peaks, BOUNDS, init_points=4, n_iters=6, acq=acq, eps=0.01)

    assert len(result.score_history) == 6


def test_evaluation_failure_aborts_run():
    calls = []

    def flaky(x):
        calls.append(x)
        if len(calls) > 5:
            raise RuntimeError("training diverged")
        return {"Score": x}

    with pytest.raises(EvaluationError, match="training diverged") as excinfo:
        quiet_run(flaky, BOUNDS, init_points=5, n_iters=8)

    assert isinstance(excinfo.value.__cause__, RuntimeError)


def test_failed_checkpoint_write_does_not_stop_run(tmp_path):
    path = tmp_path / "missing" / "scores.pkl"

    with pytest.warns(RuntimeWarning, match="Failed to save"):
        result = bayesian_optimization(
            three_peaks, BOUNDS, init_points=3, n_iters=5, gs_points=10,
            verbose=0, save_intermediate=str(path),
        )

    assert len(result.score_history) == 5


def test_add_iterations_continues_a_finished_run():
    optimizer = BayesianOptimizer(
        three_peaks, BOUNDS, OptimizationConfig(init_points=4, n_iters=5, gs_points=10, verbose=0)
    )
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", UserWarning)
        first = optimizer.run()
        second = optimizer.add_iterations(first, 2)

    assert len(second.score_history) == 7
    pd.testing.assert_frame_equal(
        second.score_history.iloc[:5][["x", "Score"]].reset_index(drop=True),
        first.score_history[["x", "Score"]],
    )


def test_add_iterations_rejects_fields_it_sets_itself():
    optimizer = BayesianOptimizer(
        three_peaks, BOUNDS, OptimizationConfig(init_points=4, n_iters=5, gs_points=10, verbose=0)
    )
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", UserWarning)
        first = optimizer.run()

    with pytest.raises(ConfigurationError, match="n_iters"):
        optimizer.add_iterations(first, 2, n_iters=20)


def test_worker_pool_run_collects_every_batch():
    result = quiet_run(
        three_peaks, BOUNDS, init_points=4, bulk_new=2, n_iters=8, parallel=True, n_jobs=2,
    )
    history = result.score_history

    assert len(history.drop_duplicates(subset=["x"])) == 8
    assert history.groupby("Iteration").size().tolist() == [4, 2, 2]
    np.testing.assert_allclose(
        history["Score"], [three_peaks(x)["Score"] for x in history["x"]]
    )


def test_verbose_run_reports_progress(capsys):
    quiet_run(three_peaks, BOUNDS, init_points=3, n_iters=5, verbose=2)
    captured = capsys.readouterr()

    assert "Running initial scoring function 3 times in 1 thread(s)" in captured.out
    assert "Starting round number 2" in captured.out
    assert "1) Fitting Gaussian process..." in captured.out
    assert "Results from most recent parameter scoring:" in captured.out
    assert "Local optimum search" in captured.err, "FAILED: No progress bar shown!"


@pytest.mark.parametrize(
    "options, error",
    [
        ({"acq": "lcb", "init_points": 3, "n_iters": 5}, UnrecognizedAcquisitionFunction),
        (
            {"stop_impatient": ImpatienceRule("thompson", 3), "init_points": 3, "n_iters": 5},
            UnrecognizedAcquisitionFunction,
        ),
        ({"initialize": False, "n_iters": 5}, ConfigurationError),
        ({"n_iters": 5}, ConfigurationError),
        (
            {"init_points": 2, "init_grid": pd.DataFrame({"x": [1.0]}), "n_iters": 5},
            ConfigurationError,
        ),
        ({"init_grid": pd.DataFrame({"x": [1.0, 9.0]}), "n_iters": 5}, BoundsViolationError),
        ({"init_points": 5, "n_iters": 5}, ConfigurationError),
        ({"init_points": 3, "n_iters": 5, "parallel": True, "n_jobs": 1}, ConfigurationError),
        (
            {"init_points": 3, "n_iters": 5, "packages": ("no_such_package_xyz",)},
            ConfigurationError,
        ),
    ],
)
def test_invalid_configuration_fails_before_evaluation(options, error):
    counter = CountingScore(three_peaks)

    with pytest.raises(error):
        bayesian_optimization(counter, BOUNDS, verbose=0, **options)

    assert counter.calls == []


def test_left_off_outside_bounds_is_rejected():
    left_off = pd.DataFrame({"x": [1.0, 12.0], "Elapsed": [0.1, 0.1], "Score": [0.1, 0.2]})

    with pytest.raises(BoundsViolationError):
        bayesian_optimization(three_peaks, BOUNDS, initialize=False, left_off=left_off, n_iters=5)


def test_init_grid_is_used_as_initial_design():
    grid = pd.DataFrame({"x": [0.5, 3.5, 7.5]})
    result = quiet_run(three_peaks, BOUNDS, init_grid=grid, n_iters=5)

    initial = result.score_history[result.score_history["Iteration"] == 0]
    np.testing.assert_allclose(initial["x"], [0.5, 3.5, 7.5])
