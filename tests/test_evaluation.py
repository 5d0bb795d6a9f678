import time

import pytest

from bayestune import ConfigurationError, EvaluationError
from bayestune.evaluation import (
    SequentialDispatcher,
    WorkerPoolDispatcher,
    evaluate_params,
    make_dispatcher,
)


def square_score(x, y):
    return {"Score": -(x**2) - y**2, "norm": abs(x) + abs(y)}


def slow_first_score(x):
    # Earlier candidates finish later, so results arrive out of order.
    time.sleep(0.05 * (3 - x))
    return {"Score": float(x)}


def test_evaluate_params_records_score_extras_and_time():
    obs = evaluate_params(square_score, {"x": 1.0, "y": 2.0}, iteration=3)

    assert obs.score == -5.0
    assert obs.extras == {"norm": 3.0}
    assert obs.iteration == 3
    assert obs.elapsed >= 0.0


def test_missing_score_is_an_evaluation_error():
    with pytest.raises(EvaluationError, match="Score"):
        evaluate_params(lambda x: {"value": x}, {"x": 1.0}, iteration=0)


def test_scoring_failure_keeps_original_cause():
    def broken(x):
        raise ZeroDivisionError("boom")

    with pytest.raises(EvaluationError) as excinfo:
        SequentialDispatcher().map(broken, [{"x": 1.0}], iteration=1)

    assert isinstance(excinfo.value.__cause__, ZeroDivisionError)
    assert "boom" in str(excinfo.value)


def test_worker_pool_returns_results_in_batch_order():
    dispatcher = WorkerPoolDispatcher(n_jobs=3, backend="threading")
    batch = [{"x": 0}, {"x": 1}, {"x": 2}]

    observations = dispatcher.map(slow_first_score, batch, iteration=1)

    assert [obs.score for obs in observations] == [0.0, 1.0, 2.0]


def test_worker_pool_failure_aborts_batch():
    def fail_on_two(x):
        if x == 2:
            raise ValueError("bad candidate")
        return {"Score": x}

    dispatcher = WorkerPoolDispatcher(n_jobs=2, backend="threading")

    with pytest.raises(EvaluationError, match="bad candidate"):
        dispatcher.map(fail_on_two, [{"x": 1}, {"x": 2}, {"x": 3}], iteration=1)


def test_parallel_needs_more_than_one_worker():
    assert isinstance(make_dispatcher(False), SequentialDispatcher)
    assert make_dispatcher(True, n_jobs=2).n_workers == 2

    with pytest.raises(ConfigurationError, match="only one worker"):
        make_dispatcher(True, n_jobs=1)
