import numpy as np
import pytest
from sklearn.utils import check_random_state

from ..constant_optimization import optimize_constants
from ..dataset import Dataset
from ..evaluate import eval_loss
from ..expression import Node, gen_random_tree, get_constants
from ..options import Options
from ..population import PopMember

options = Options(
    binary_operators=["add", "mul"],
    unary_operators=["cos"],
    optimizer_iterations=50,
)
ADD, MUL = options.operators.index("add")[1], options.operators.index("mul")[1]
COS = options.operators.index("cos")[1]


@pytest.fixture
def dataset():
    random_state = check_random_state(0)
    X = random_state.randn(100, 1)
    return Dataset(X, 2 * np.cos(X[:, 0]), loss=options.loss)


def scaled_cos(factor):
    return Node.binary(MUL, Node.const(factor), Node.unary(COS, Node.var(0)))


def test_recovers_constant(dataset):
    member = PopMember.from_tree(scaled_cos(0.5), dataset, options)
    member, num_evals = optimize_constants(dataset, member, options, check_random_state(1))
    assert num_evals > 0
    assert member.loss < 1e-6
    np.testing.assert_allclose(get_constants(member.tree), [2.0], atol=1e-2)


@pytest.mark.parametrize("algorithm", ["BFGS", "Nelder-Mead"])
def test_never_worse(dataset, algorithm):
    opts = Options(
        binary_operators=["add", "mul"],
        unary_operators=["cos"],
        optimizer_algorithm=algorithm,
    )
    random_state = check_random_state(2)
    for _ in range(20):
        tree = gen_random_tree(random_state.randint(1, 5), opts, 1, random_state)
        member = PopMember.from_tree(tree, dataset, opts)
        loss_before, score_before = member.loss, member.score
        member, _ = optimize_constants(dataset, member, opts, random_state)
        assert member.loss <= loss_before
        if np.isfinite(member.loss):
            assert member.loss == eval_loss(member.tree, dataset, opts)
            assert member.score <= score_before


def test_no_constants(dataset):
    member = PopMember.from_tree(Node.unary(COS, Node.var(0)), dataset, options)
    before = member.tree.copy()
    result, num_evals = optimize_constants(dataset, member, options, check_random_state(3))
    assert result is member
    assert num_evals == 0
    assert member.tree == before


def test_optimal_constant_kept(dataset):
    member = PopMember.from_tree(scaled_cos(2.0), dataset, options)
    assert member.loss == 0.0
    member, _ = optimize_constants(dataset, member, options, check_random_state(4))
    assert get_constants(member.tree)[0] == 2.0
    assert member.loss == 0.0
