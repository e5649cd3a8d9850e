import json
import logging
import os
import time

import numpy as np
import pytest
import sympy as sp
from sklearn.utils import check_random_state

from .. import search
from ..adaptive_parsimony import RunningSearchStatistics
from ..core import node_to_sympy
from ..dataset import Dataset
from ..evaluate import eval_tree_array
from ..expression import Node, count_nodes
from ..hall_of_fame import HallOfFame, calculate_pareto_frontier
from ..metrics import mse
from ..options import ConfigurationError, Options
from ..population import PopMember, Population
from ..recorder import EventType, Recorder
from ..sre import SymbolicRegression


class ExitInWorkers:
    """mse in the calling process, kills any worker process using it"""

    def __init__(self):
        self.main_pid = os.getpid()

    def __call__(self, y_pred, y_true, weights=None):
        if os.getpid() != self.main_pid:
            os._exit(1)
        return mse(y_pred, y_true, weights)


class SlowInWorkers(ExitInWorkers):
    def __call__(self, y_pred, y_true, weights=None):
        if os.getpid() != self.main_pid:
            time.sleep(0.2)
        return mse(y_pred, y_true, weights)


@pytest.fixture
def small_problem():
    random_state = check_random_state(0)
    X = random_state.randn(60, 2)
    y = X[:, 0] * X[:, 1] + 1.0
    return X, y


@pytest.fixture
def small_options():
    return Options(
        unary_operators=["cos"],
        populations=4,
        population_size=12,
        ncycles_per_iteration=5,
        maxsize=10,
    )


def test_finds_scaled_cosine():
    random_state = check_random_state(0)
    X = random_state.randn(100, 2)
    y = 2 * np.cos(X[:, 1])
    options = Options(
        binary_operators=["add", "sub", "mul", "div"],
        unary_operators=["cos"],
        populations=4,
        population_size=30,
        ncycles_per_iteration=100,
        maxsize=15,
        early_stop_condition=1e-8,
    )
    hof = search.equation_search(X, y, options=options, niterations=40, random_state=0)
    frontier = calculate_pareto_frontier(hof)
    found = [(c, m) for c, m in frontier if m.loss < 1e-3]
    assert found
    complexity, best = found[0]
    assert complexity <= 10

    X_test = random_state.randn(50, 2)
    preds, ok = eval_tree_array(best.tree, X_test, options.operators)
    assert ok
    np.testing.assert_allclose(preds, 2 * np.cos(X_test[:, 1]), atol=0.1)
    expr = node_to_sympy(best.tree, options, ["x0", "x1"])
    assert expr.has(sp.cos)


def _pops(X, y, options, seed=0):
    dataset = Dataset(X, y, loss=options.loss)
    random_state = check_random_state(seed)
    pops = [Population.random(dataset, options, random_state) for _ in range(options.populations)]
    return dataset, pops, random_state


def test_lost_batch_is_redispatched(small_problem, small_options, monkeypatch, caplog):
    dataset, pops, random_state = _pops(*small_problem, small_options)
    calls = list()
    run = search._run_batch

    def flaky(*args):
        calls.append(args)
        if len(calls) == 1:
            raise RuntimeError("worker died")
        return run(*args)

    monkeypatch.setattr(search, "_run_batch", flaky)
    with caplog.at_level(logging.WARNING, logger="symevo.search"):
        results = search.run_iteration(pops, dataset, small_options, 10, random_state)
    assert sorted(results) == [0, 1, 2, 3]
    assert len(calls) == 5
    assert "worker died" in caplog.text
    assert "redispatching" in caplog.text


def test_retries_are_bounded(small_problem, monkeypatch, caplog):
    options = Options(populations=2, population_size=10, ncycles_per_iteration=2, max_batch_retries=2)
    dataset, pops, random_state = _pops(*small_problem, options)
    calls = list()

    def broken(*args):
        calls.append(args)
        raise RuntimeError("worker died")

    monkeypatch.setattr(search, "_run_batch", broken)
    with caplog.at_level(logging.WARNING, logger="symevo.search"):
        results = search.run_iteration(pops, dataset, options, 10, random_state)
    assert results == dict()
    assert len(calls) == 2 * 3
    assert "giving up" in caplog.text


def test_non_finite_result_is_lost(small_problem, small_options, monkeypatch):
    dataset, pops, random_state = _pops(*small_problem, small_options)
    calls = list()
    run = search._run_batch

    def corrupted(*args):
        calls.append(args)
        result = run(*args)
        if len(calls) == 1:
            return result._replace(num_evals=np.nan)
        return result

    monkeypatch.setattr(search, "_run_batch", corrupted)
    results = search.run_iteration(pops, dataset, small_options, 10, random_state)
    assert sorted(results) == [0, 1, 2, 3]
    assert len(calls) == 5
    assert all(np.isfinite(r.num_evals) for r in results.values())


def test_batches_work_on_snapshots(small_problem, small_options):
    dataset, pops, random_state = _pops(*small_problem, small_options)
    before = [[m.tree.copy() for m in pop] for pop in pops]
    search.run_iteration(pops, dataset, small_options, 10, random_state)
    assert [[m.tree for m in pop] for pop in pops] == before


def test_migrate():
    random_state = check_random_state(0)
    pop = Population(PopMember(Node.var(0), 1.0, 1.0) for _ in range(20))
    migrants = [PopMember(Node.const(float(i)), 0.0, 0.0) for i in range(3)]
    refs = {m.ref for m in migrants}
    count = search.migrate(migrants, pop, 0.5, random_state)
    assert pop.n == 20
    moved = [m for m in pop if m.tree.constant]
    assert 0 < len(moved) <= count
    for m in moved:
        assert m.parent in refs
        assert m.ref not in refs
    # migrants are copied, never shared
    assert all(m not in migrants for m in moved)
    assert search.migrate(migrants, pop, 0.0, random_state) == 0
    assert search.migrate([], pop, 0.5, random_state) == 0


def test_migrate_populations_keeps_sizes(small_problem, small_options):
    dataset, pops, random_state = _pops(*small_problem, small_options)
    hof = HallOfFame(small_options)
    for pop in pops:
        for m in pop:
            hof.update(m, small_options)
    search.migrate_populations(pops, hof, small_options, random_state)
    assert [pop.n for pop in pops] == [12] * 4


def test_current_maxsize():
    options = Options(maxsize=20, warmup_maxsize_by=0.5)
    sizes = [search.current_maxsize(i, 10, options) for i in range(10)]
    assert sizes[0] == 3
    assert sizes == sorted(sizes)
    assert sizes[5:] == [20] * 5
    assert search.current_maxsize(0, 10, Options(maxsize=20)) == 20


def test_max_evals_stops_the_search(small_problem, caplog):
    options = Options(populations=2, population_size=10, ncycles_per_iteration=3, max_evals=1)
    with caplog.at_level(logging.INFO, logger="symevo.search"):
        hof = search.equation_search(*small_problem, options=options, niterations=20, random_state=1)
    assert len(hof) > 0
    iterations = [r for r in caplog.records if r.getMessage().startswith("iteration")]
    assert len(iterations) == 1
    assert "evaluations reached" in caplog.text


def test_recorder_dump(small_problem, tmp_path):
    path = tmp_path / "lineage.json"
    options = Options(
        populations=2,
        population_size=10,
        ncycles_per_iteration=3,
        recorder_file=str(path),
    )
    search.equation_search(*small_problem, options=options, niterations=2, random_state=2)
    with open(path) as f:
        records = json.load(f)
    events = [e for r in records.values() for e in r["events"]]
    types = {e["type"] for e in events}
    assert {"birth", "death", "tuning"} <= types
    births = [ref for ref, r in records.items() if any(e["type"] == "birth" for e in r["events"])]
    assert len(births) >= 2 * 10
    for ref in births:
        assert records[ref]["tree"] is not None
    times = [e["time"] for r in records.values() for e in r["events"]]
    assert all(t > 0 for t in times)


def test_configuration_error_before_search(small_problem, monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("a population was created")

    monkeypatch.setattr(search.Population, "random", fail)
    with pytest.raises(ConfigurationError):
        SymbolicRegression(constraints={"cos": 3}).fit(*small_problem)
    with pytest.raises(ConfigurationError):
        search.equation_search(*small_problem, options=Options(nested_constraints={"exp": {"exp": 0}}))


def _loky_options(**kwargs):
    return Options(
        populations=2,
        population_size=10,
        ncycles_per_iteration=3,
        n_jobs=2,
        parallel_backend="loky",
        **kwargs,
    )


def test_dead_worker_does_not_abort_the_search(small_problem, caplog):
    options = _loky_options(loss=ExitInWorkers(), max_batch_retries=1)
    with caplog.at_level(logging.WARNING, logger="symevo.search"):
        hof = search.equation_search(*small_problem, options=options, niterations=1, random_state=3)
    assert len(hof) > 0
    assert "worker process died" in caplog.text
    assert "redispatching" in caplog.text
    assert "giving up" in caplog.text


def test_batch_timeout(small_problem, caplog):
    options = _loky_options(loss=SlowInWorkers(), batch_timeout=0.5, max_batch_retries=0)
    with caplog.at_level(logging.WARNING, logger="symevo.search"):
        hof = search.equation_search(*small_problem, options=options, niterations=1, random_state=4)
    assert len(hof) > 0
    assert "timeout while waiting" in caplog.text
    assert "giving up" in caplog.text


def test_loky_workers(small_problem, caplog):
    options = _loky_options(recorder=True)
    recorder = Recorder()
    with caplog.at_level(logging.WARNING, logger="symevo.search"):
        hof = search.equation_search(
            *small_problem, options=options, niterations=2, random_state=5, recorder=recorder
        )
    assert len(hof) > 0
    assert "lost" not in caplog.text
    assert "giving up" not in caplog.text
    tunings = [e for r in recorder.records.values() for e in r.events if e.type == EventType.TUNING]
    assert len(tunings) >= 2 * 2 * 10


def test_migrants_are_recorded():
    random_state = check_random_state(1)
    pop = Population(PopMember(Node.var(0), 1.0, 1.0) for _ in range(20))
    residents = {m.ref for m in pop}
    migrants = [PopMember(Node.const(float(i)), 0.0, 0.0) for i in range(3)]
    refs = {m.ref for m in migrants}
    recorder = Recorder()
    count = search.migrate(migrants, pop, 0.5, random_state, recorder)
    assert count > 0
    births = [r for r in recorder.records.values() if any(e.type == EventType.BIRTH for e in r.events)]
    assert len(births) == count
    for record in births:
        assert record.parent in refs
        assert record.events[0].detail == "migration"
        assert record.tree.constant
    deaths = {ref for ref, r in recorder.records.items() if r.events[-1].type == EventType.DEATH}
    alive = {m.ref for m in pop}
    assert not deaths & alive
    assert residents - alive <= deaths


def test_batches_leave_the_statistics_untouched(small_problem, small_options):
    dataset, pops, random_state = _pops(*small_problem, small_options)
    statistics = RunningSearchStatistics(small_options)
    search.run_iteration(pops, dataset, small_options, 10, random_state, statistics=statistics)
    np.testing.assert_array_equal(statistics.frequencies, np.ones(small_options.maxsize))


def test_every_tree_fits_a_small_maxsize(small_problem):
    options = Options(
        unary_operators=["cos"],
        populations=2,
        population_size=10,
        ncycles_per_iteration=5,
        maxsize=4,
    )
    recorder = Recorder()
    hof = search.equation_search(
        *small_problem, options=options, niterations=3, random_state=6, recorder=recorder
    )
    trees = [r.tree for r in recorder.records.values() if r.tree is not None]
    assert len(trees) >= 2 * 10
    assert all(count_nodes(tree) <= 4 for tree in trees)
    assert all(count_nodes(m.tree) <= 4 for _, m in hof.items())
