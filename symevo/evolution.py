"""
Regularized evolution of a single population, and its housekeeping pass
"""
from typing import Optional, Tuple

import numpy as np

from .adaptive_parsimony import RunningSearchStatistics
from .constant_optimization import optimize_constants
from .constraints import check_constraints
from .evaluate import score_func
from .expression import compute_complexity
from .hall_of_fame import HallOfFame
from .mutate import crossover_generation, mutate_tree
from .population import (
    PopMember,
    Population,
    best_of_sample,
    finalize_scores,
    generate_reference,
    worst_of_sample,
)
from .recorder import EventType, Recorder, make_event
from .simplify import combine_operators, simplify_tree


def temperature_schedule(ncycles: int, options) -> np.ndarray:
    """linear from max_temperature to min_temperature, flat at min_temperature without annealing"""
    if not options.annealing:
        return np.full(ncycles, float(options.min_temperature))
    return np.linspace(options.max_temperature, options.min_temperature, ncycles)


def accept(
    child_loss: float, parent_loss: float, temperature: float, random_state, frequency_ratio=1.0
) -> bool:
    """
    strict improvements always pass. Otherwise, at a positive temperature, with
    probability exp(-Δloss / T) times `frequency_ratio`
    """
    if not np.isfinite(child_loss):
        return False
    if child_loss < parent_loss:
        return True
    if temperature <= 0:
        return False
    prob = np.exp(-(child_loss - parent_loss) / temperature) * frequency_ratio
    return random_state.rand() < prob


def reg_evol_step(
    dataset,
    pop: Population,
    temperature: float,
    curmaxsize: int,
    options,
    random_state,
    recorder: Optional[Recorder] = None,
    statistics: Optional[RunningSearchStatistics] = None,
) -> int:
    """
    one selection / variation / replacement step, returns the number of
    candidates evaluated
    """
    parent = best_of_sample(pop, options, random_state, statistics)
    if random_state.rand() < options.crossover_probability:
        parent2 = best_of_sample(pop, options, random_state, statistics)
        tree1, tree2, _, _ = crossover_generation(
            parent.tree, parent2.tree, options, curmaxsize, random_state
        )
        candidates = [(parent, tree1, "crossover"), (parent2, tree2, "crossover")]
    else:
        tree, mutation = mutate_tree(
            parent.tree, temperature, options, curmaxsize, dataset.nfeatures, random_state
        )
        candidates = [(parent, tree, mutation)]

    num_evals = 0
    for source, tree, how in candidates:
        if not check_constraints(tree, options, curmaxsize):
            continue
        num_evals += 1
        score, loss = score_func(dataset, tree, options)
        frequency_ratio = 1.0
        if statistics is not None and options.use_frequency:
            frequency_ratio = statistics.frequency_ratio(source.tree, tree, options)
        if not accept(loss, source.loss, temperature, random_state, frequency_ratio):
            continue
        baby = PopMember(tree, score, loss, parent=source.ref)
        slot = worst_of_sample(pop, options, random_state)
        if statistics is not None:
            statistics.update(compute_complexity(tree, options))
        if recorder is not None:
            event_type = EventType.CROSSOVER if how == "crossover" else EventType.MUTATION
            recorder.register(source)
            recorder.append(source.ref, make_event(event_type, child=baby.ref, detail=how))
            recorder.register(baby)
            recorder.append(baby.ref, make_event(EventType.BIRTH))
            recorder.append(pop[slot].ref, make_event(EventType.DEATH))
        pop[slot] = baby
    return num_evals


def reg_evol_cycle(
    dataset,
    pop: Population,
    temperature: float,
    curmaxsize: int,
    options,
    random_state,
    recorder: Optional[Recorder] = None,
    statistics: Optional[RunningSearchStatistics] = None,
) -> Tuple[Population, int]:
    """one generation: about n / tournament_size steps at a fixed temperature"""
    n_steps = max(1, round(pop.n / options.tournament_size))
    num_evals = 0
    for _ in range(n_steps):
        num_evals += reg_evol_step(
            dataset, pop, temperature, curmaxsize, options, random_state, recorder, statistics
        )
    return pop, num_evals


def s_r_cycle(
    dataset,
    pop: Population,
    ncycles: int,
    curmaxsize: int,
    options,
    random_state,
    recorder: Optional[Recorder] = None,
    statistics: Optional[RunningSearchStatistics] = None,
) -> Tuple[Population, HallOfFame, int]:
    """
    `ncycles` generations along the temperature schedule. Returns the
    population, the best members seen at each complexity and the number of
    evaluations.
    `statistics` is updated in place with the complexities of accepted
    children, and renormalized after every generation
    """
    best_seen = HallOfFame(options)
    num_evals = 0
    for temperature in temperature_schedule(ncycles, options):
        pop, n = reg_evol_cycle(
            dataset, pop, temperature, curmaxsize, options, random_state, recorder, statistics
        )
        num_evals += n
        if statistics is not None:
            statistics.normalize()
        for member in pop:
            best_seen.update(member, options)
    return pop, best_seen, num_evals


def optimize_and_simplify_population(
    dataset, pop: Population, options, random_state, recorder: Optional[Recorder] = None
) -> Tuple[Population, int]:
    """
    housekeeping: simplify every member, optimize the constants of some of
    them, rescore them all and give each one a new lineage id
    """
    do_optimization = random_state.rand(pop.n) < options.optimize_probability
    do_optimization &= bool(options.should_optimize_constants)
    num_evals = 0
    for member, optimize in zip(pop, do_optimization):
        member.tree = combine_operators(simplify_tree(member.tree, options), options)
        if optimize:
            member.score, member.loss = score_func(dataset, member.tree, options)
            member, n = optimize_constants(dataset, member, options, random_state)
            num_evals += 1 + n
    pop, n = finalize_scores(dataset, pop, options)
    num_evals += n

    for member, optimized in zip(pop, do_optimization):
        old_ref = member.ref
        member.parent, member.ref = old_ref, generate_reference()
        if recorder is None:
            continue
        detail = "simplification_and_optimization" if optimized else "simplification"
        recorder.append(old_ref, make_event(EventType.TUNING, child=member.ref, detail=detail))
        recorder.append(old_ref, make_event(EventType.DEATH))
        recorder.register(member)
    return pop, num_evals
