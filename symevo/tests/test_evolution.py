import numpy as np
import pytest
from sklearn.utils import check_random_state

from ..dataset import Dataset
from ..evolution import (
    accept,
    optimize_and_simplify_population,
    reg_evol_step,
    s_r_cycle,
    temperature_schedule,
)
from ..expression import Node
from ..options import MUTATIONS, Options
from ..population import PopMember, Population
from ..recorder import EventType, Recorder


@pytest.fixture
def dataset():
    random_state = check_random_state(0)
    X = random_state.randn(40, 2)
    y = 2 * np.cos(X[:, 1])
    return Dataset(X, y, loss=Options().loss)


def test_temperature_schedule():
    options = Options(max_temperature=1.0, min_temperature=0.0)
    np.testing.assert_allclose(temperature_schedule(5, options), [1.0, 0.75, 0.5, 0.25, 0.0])
    flat = Options(annealing=False, min_temperature=0.1)
    np.testing.assert_array_equal(temperature_schedule(3, flat), [0.1, 0.1, 0.1])


def test_accept():
    random_state = check_random_state(0)
    assert accept(0.5, 1.0, 0.0, random_state)
    assert not accept(1.0, 1.0, 0.0, random_state)
    assert not accept(np.inf, 1.0, 1.0, random_state)
    assert not accept(np.nan, np.inf, 1.0, random_state)
    assert not accept(2.0, 1.0, 1e-9, random_state)
    assert accept(1.0 + 1e-12, 1.0, 1.0, random_state)


@pytest.mark.parametrize("crossover_probability, expected", [(0.0, 1), (1.0, 2)])
def test_reg_evol_step_evaluations(dataset, crossover_probability, expected):
    options = Options(unary_operators=["cos"], crossover_probability=crossover_probability)
    random_state = check_random_state(1)
    pop = Population.random(dataset, options, random_state, size=20)
    for _ in range(5):
        assert reg_evol_step(dataset, pop, 0.5, options.maxsize, options, random_state) == expected
    assert pop.n == 20


def test_s_r_cycle(dataset):
    options = Options(unary_operators=["cos"], population_size=20, tournament_size=5)
    random_state = check_random_state(2)
    pop = Population.random(dataset, options, random_state)
    pop, best_seen, num_evals = s_r_cycle(dataset, pop, 10, options.maxsize, options, random_state)
    assert pop.n == 20
    assert 40 <= num_evals <= 80
    assert len(best_seen) > 0
    # every member of the final population went through best_seen
    assert best_seen.best_loss() <= min(m.loss for m in pop)


def test_housekeeping(dataset):
    options = Options(unary_operators=["cos"], optimize_probability=1.0)
    random_state = check_random_state(3)
    pop = Population.random(dataset, options, random_state, size=10)
    recorder = Recorder()
    for member in pop:
        recorder.register(member)
    old = [(m.ref, m.loss) for m in pop]

    pop, num_evals = optimize_and_simplify_population(dataset, pop, options, random_state, recorder)
    assert pop.n == 10
    assert num_evals >= 2 * pop.n
    for member, (old_ref, old_loss) in zip(pop, old):
        assert member.parent == old_ref
        assert member.ref != old_ref
        if np.isfinite(old_loss):
            assert member.loss <= old_loss * (1 + 1e-8) + 1e-12
        types = [e.type for e in recorder[old_ref].events]
        assert types == [EventType.TUNING, EventType.DEATH]
        tuning = recorder[old_ref].events[0]
        assert tuning.child == member.ref
        assert tuning.detail == "simplification_and_optimization"
        assert member.ref in recorder
        assert recorder[member.ref].parent == old_ref


def test_housekeeping_without_optimization(dataset):
    options = Options(unary_operators=["cos"], should_optimize_constants=False)
    random_state = check_random_state(4)
    pop = Population.random(dataset, options, random_state, size=10)
    recorder = Recorder()
    pop, num_evals = optimize_and_simplify_population(dataset, pop, options, random_state, recorder)
    assert num_evals == 10
    details = {e.detail for record in recorder.records.values() for e in record.events if e.detail}
    assert details == {"simplification"}


def test_oversized_copies_are_never_accepted(dataset):
    options = Options(
        crossover_probability=0.0,
        mutation_weights={name: 1.0 if name == "do_nothing" else 0.0 for name in MUTATIONS},
    )
    # (x0 + x1) + 1, five nodes
    tree = Node.binary(0, Node.binary(0, Node.var(0), Node.var(1)), Node.const(1.0))
    pop = Population(PopMember.from_tree(tree.copy(), dataset, options) for _ in range(10))
    before = [m.ref for m in pop]
    random_state = check_random_state(5)
    for _ in range(10):
        assert reg_evol_step(dataset, pop, 1.0, 3, options, random_state) == 0
    assert [m.ref for m in pop] == before
