"""
Configuration of a search
"""
import numbers
from typing import Callable, Dict, Optional, Tuple, Union

from .metrics import LOSSES
from .operators import OperatorSet

MUTATIONS = (
    "mutate_constant",
    "mutate_operator",
    "add_node",
    "insert_node",
    "delete_node",
    "simplify",
    "randomize",
    "do_nothing",
)

DEFAULT_MUTATION_WEIGHTS = dict(
    mutate_constant=10.0,
    mutate_operator=1.0,
    add_node=1.0,
    insert_node=3.0,
    delete_node=3.0,
    simplify=0.01,
    randomize=1.0,
    do_nothing=1.0,
)

OPTIMIZER_ALGORITHMS = ("BFGS", "Nelder-Mead", "L-BFGS-B", "Powell")


class ConfigurationError(ValueError):
    """raised for inconsistent options, before any population is created"""


def _check_probability(name, value):
    if not 0.0 <= value <= 1.0:
        raise ConfigurationError(f"{name} should be in [0, 1], got {value}")


def _check_positive_int(name, value, minimum=1):
    if not isinstance(value, numbers.Integral) or value < minimum:
        raise ConfigurationError(f"{name} should be an integer >= {minimum}, got {value}")


class Options:
    """
    All the knobs of a search. Operators and constraints are resolved here,
    once, so that a misconfiguration fails before anything is evolved.

    Parameters
    ----------
    binary_operators, unary_operators
        operator names (see `symevo.operators.BUILTIN_OPERATORS`) or
        `Operator` instances
    maxsize, maxdepth
        bounds on the number of nodes and on the depth of every tree
    constraints
        maximum complexity of the arguments of an operator, eg. `{"cos": 5}`
        or `{"pow": (-1, 1)}` for binary operators. `-1` means no limit
    nested_constraints
        maximum number of occurrences of an operator inside the arguments of
        another one, eg. `{"cos": {"cos": 0}}` forbids `cos(cos(x))`
    complexity_of_operators, complexity_of_constants, complexity_of_variables
        per-node weights used by `compute_complexity`
    parsimony
        score = loss / baseline_loss + parsimony * complexity
    use_frequency, use_frequency_in_tournament, adaptive_parsimony_scaling
        adaptive parsimony: candidates of a crowded complexity are less
        likely to be accepted, and tournament scores are multiplied by
        `exp(adaptive_parsimony_scaling * frequency)`, where `frequency` is
        the share of recent members with that complexity
    tournament_size, prob_pick_first
        sample size of tournaments and probability to pick the best of the
        sample, lower ranks are picked with a geometric decay
    annealing, max_temperature, min_temperature
        temperature schedule of the acceptance rule
    """

    def __init__(
        self,
        binary_operators=("add", "sub", "mul", "div"),
        unary_operators=(),
        maxsize: int = 20,
        maxdepth: Optional[int] = None,
        warmup_maxsize_by: float = 0.0,
        constraints: Optional[Dict] = None,
        nested_constraints: Optional[Dict] = None,
        complexity_of_operators: Optional[Dict[str, int]] = None,
        complexity_of_constants: int = 1,
        complexity_of_variables: int = 1,
        parsimony: float = 0.0032,
        use_frequency: bool = True,
        use_frequency_in_tournament: bool = True,
        adaptive_parsimony_scaling: float = 20.0,
        loss: Union[str, Callable] = "mse",
        tournament_size: int = 10,
        prob_pick_first: float = 0.86,
        crossover_probability: float = 0.066,
        mutation_weights: Optional[Dict[str, float]] = None,
        max_mutation_attempts: int = 10,
        perturbation_factor: float = 0.076,
        prob_negate: float = 0.01,
        annealing: bool = True,
        max_temperature: float = 1.0,
        min_temperature: float = 0.0,
        should_optimize_constants: bool = True,
        optimize_probability: float = 0.14,
        optimizer_algorithm: str = "BFGS",
        optimizer_iterations: int = 8,
        optimizer_nrestarts: int = 2,
        populations: int = 15,
        population_size: int = 33,
        ncycles_per_iteration: int = 300,
        migration: bool = True,
        hof_migration: bool = True,
        fraction_replaced: float = 0.1,
        fraction_replaced_hof: float = 0.1,
        topn: int = 12,
        migration_period: int = 1,
        timeout_in_seconds: Optional[float] = None,
        max_evals: Optional[int] = None,
        early_stop_condition: Optional[float] = None,
        n_jobs: int = 1,
        parallel_backend: str = "loky",
        batch_timeout: Optional[float] = None,
        max_batch_retries: int = 3,
        recorder: bool = False,
        recorder_file: Optional[str] = None,
    ):
        try:
            self.operators = OperatorSet(binary_operators, unary_operators)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

        _check_positive_int("maxsize", maxsize)
        self.maxsize = maxsize
        self.maxdepth = maxsize if maxdepth is None else maxdepth
        _check_positive_int("maxdepth", self.maxdepth)
        if not 0.0 <= warmup_maxsize_by < 1.0:
            raise ConfigurationError("warmup_maxsize_by should be in [0, 1)")
        self.warmup_maxsize_by = warmup_maxsize_by

        self.constraints = constraints or dict()
        self.nested_constraints = nested_constraints or dict()
        self._size_constraints = self._resolve_constraints(self.constraints)
        self._nested_constraints = self._resolve_nested_constraints(
            self.nested_constraints
        )

        self.complexity_of_operators = complexity_of_operators or dict()
        self.complexity_of_constants = complexity_of_constants
        self.complexity_of_variables = complexity_of_variables
        self._complexity_tables = self._resolve_complexities(
            self.complexity_of_operators
        )

        self.parsimony = parsimony
        self.use_frequency = use_frequency
        self.use_frequency_in_tournament = use_frequency_in_tournament
        if adaptive_parsimony_scaling < 0:
            raise ConfigurationError("adaptive_parsimony_scaling should be >= 0")
        self.adaptive_parsimony_scaling = adaptive_parsimony_scaling
        if isinstance(loss, str):
            if loss not in LOSSES:
                raise ConfigurationError(
                    f"unknown loss {loss!r}, available: {sorted(LOSSES)}"
                )
            self.loss = LOSSES[loss]
        elif callable(loss):
            self.loss = loss
        else:
            raise ConfigurationError("loss should be a name or a callable")

        _check_positive_int("tournament_size", tournament_size)
        self.tournament_size = tournament_size
        if not 0.0 < prob_pick_first <= 1.0:
            raise ConfigurationError("prob_pick_first should be in (0, 1]")
        self.prob_pick_first = prob_pick_first
        _check_probability("crossover_probability", crossover_probability)
        self.crossover_probability = crossover_probability

        weights = dict(DEFAULT_MUTATION_WEIGHTS)
        unknown = set(mutation_weights or ()) - set(MUTATIONS)
        if unknown:
            raise ConfigurationError(f"unknown mutations {sorted(unknown)}")
        weights.update(mutation_weights or ())
        if any(w < 0 for w in weights.values()) or not sum(weights.values()):
            raise ConfigurationError("mutation weights should be >= 0, with a positive sum")
        self.mutation_weights = weights
        _check_positive_int("max_mutation_attempts", max_mutation_attempts)
        self.max_mutation_attempts = max_mutation_attempts
        self.perturbation_factor = perturbation_factor
        _check_probability("prob_negate", prob_negate)
        self.prob_negate = prob_negate

        if min_temperature < 0 or max_temperature < min_temperature:
            raise ConfigurationError("expected 0 <= min_temperature <= max_temperature")
        self.annealing = annealing
        self.max_temperature = max_temperature
        self.min_temperature = min_temperature

        self.should_optimize_constants = should_optimize_constants
        _check_probability("optimize_probability", optimize_probability)
        self.optimize_probability = optimize_probability
        if optimizer_algorithm not in OPTIMIZER_ALGORITHMS:
            raise ConfigurationError(
                f"optimizer_algorithm should be one of {OPTIMIZER_ALGORITHMS}"
            )
        self.optimizer_algorithm = optimizer_algorithm
        _check_positive_int("optimizer_iterations", optimizer_iterations)
        self.optimizer_iterations = optimizer_iterations
        _check_positive_int("optimizer_nrestarts", optimizer_nrestarts, minimum=0)
        self.optimizer_nrestarts = optimizer_nrestarts

        _check_positive_int("populations", populations)
        self.populations = populations
        _check_positive_int("population_size", population_size)
        self.population_size = population_size
        _check_positive_int("ncycles_per_iteration", ncycles_per_iteration)
        self.ncycles_per_iteration = ncycles_per_iteration

        self.migration = migration
        self.hof_migration = hof_migration
        _check_probability("fraction_replaced", fraction_replaced)
        _check_probability("fraction_replaced_hof", fraction_replaced_hof)
        self.fraction_replaced = fraction_replaced
        self.fraction_replaced_hof = fraction_replaced_hof
        _check_positive_int("topn", topn)
        self.topn = topn
        _check_positive_int("migration_period", migration_period)
        self.migration_period = migration_period

        self.timeout_in_seconds = timeout_in_seconds
        self.max_evals = max_evals
        self.early_stop_condition = early_stop_condition

        if n_jobs == 0:
            raise ConfigurationError("n_jobs == 0 has no meaning")
        self.n_jobs = n_jobs
        self.parallel_backend = parallel_backend
        self.batch_timeout = batch_timeout
        _check_positive_int("max_batch_retries", max_batch_retries, minimum=0)
        self.max_batch_retries = max_batch_retries

        self.recorder = recorder or recorder_file is not None
        self.recorder_file = recorder_file

    def _find(self, name, kind):
        idx = self.operators.find(name)
        if idx is None:
            raise ConfigurationError(
                f"{kind} given for {name!r}, which is not one of {self.operators}"
            )
        return idx

    def _resolve_constraints(self, constraints) -> Dict[Tuple[int, int], Tuple[int, ...]]:
        resolved = dict()
        for name, limit in constraints.items():
            degree, idx = self._find(name, "constraint")
            if isinstance(limit, numbers.Integral):
                limit = (limit,) * degree
            limit = tuple(int(_) for _ in limit)
            if len(limit) != degree:
                raise ConfigurationError(
                    f"constraint for {name!r} should have {degree} values, got {limit}"
                )
            resolved[(degree, idx)] = limit
        return resolved

    def _resolve_nested_constraints(self, nested_constraints):
        resolved = dict()
        for outer, inners in nested_constraints.items():
            outer_idx = self._find(outer, "nested constraint")
            resolved[outer_idx] = [
                (self._find(inner, "nested constraint"), int(max_count))
                for inner, max_count in inners.items()
            ]
        return resolved

    def _resolve_complexities(self, complexities):
        tables = {
            1: [1] * self.operators.nuna,
            2: [1] * self.operators.nbin,
        }
        for name, value in complexities.items():
            degree, idx = self._find(name, "complexity")
            tables[degree][idx] = value
        return tables

    def operator_complexity(self, degree: int, op: int):
        return self._complexity_tables[degree][op]

    def size_constraint(self, degree: int, op: int) -> Optional[Tuple[int, ...]]:
        return self._size_constraints.get((degree, op))

    def nested_constraint(self, degree: int, op: int):
        return self._nested_constraints.get((degree, op), ())

    def __repr__(self):
        return (
            f"Options({self.operators}, maxsize={self.maxsize}, "
            f"maxdepth={self.maxdepth}, populations={self.populations}, "
            f"population_size={self.population_size})"
        )
