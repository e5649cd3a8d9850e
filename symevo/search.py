"""
Multi-population search: batches of evolution dispatched with joblib,
hall of fame merges and migrations in between.
"""
import concurrent.futures
import concurrent.futures.process
import logging
import multiprocessing
import time
import traceback
from typing import Dict, List, NamedTuple, Optional

import numpy as np
from joblib import Parallel, delayed
from joblib.externals.loky.process_executor import TerminatedWorkerError
from sklearn.utils import check_random_state

from .adaptive_parsimony import RunningSearchStatistics
from .dataset import Dataset
from .evolution import optimize_and_simplify_population, s_r_cycle
from .hall_of_fame import HallOfFame, calculate_pareto_frontier
from .options import Options
from .population import PopMember, Population, generate_reference
from .recorder import EventType, Recorder, make_event

logger = logging.getLogger(__name__)

_TIMEOUTS = (TimeoutError, multiprocessing.TimeoutError, concurrent.futures.TimeoutError)
_WORKER_CRASHES = (TerminatedWorkerError, concurrent.futures.process.BrokenProcessPool)


class BatchResult(NamedTuple):
    pop: Population
    best_seen: HallOfFame
    num_evals: int
    recorder: Optional[Recorder]


class BatchFailure(NamedTuple):
    error: str


def _run_batch(pop, dataset, options, curmaxsize, seed, record, statistics=None) -> BatchResult:
    random_state = check_random_state(seed)
    recorder = Recorder() if record else None
    if statistics is not None:
        statistics = statistics.copy()
    pop, best_seen, num_evals = s_r_cycle(
        dataset,
        pop,
        options.ncycles_per_iteration,
        curmaxsize,
        options,
        random_state,
        recorder,
        statistics,
    )
    pop, n = optimize_and_simplify_population(dataset, pop, options, random_state, recorder)
    return BatchResult(pop, best_seen, num_evals + n, recorder)


def run_batch(idx, pop, dataset, options, curmaxsize, seed, record, statistics=None):
    """
    the unit of work sent to a worker: a pure function of its arguments.
    Failures are sent back as a `BatchFailure` instead of tearing down the
    whole search.
    """
    try:
        return idx, _run_batch(pop, dataset, options, curmaxsize, seed, record, statistics)
    except Exception:
        return idx, BatchFailure(traceback.format_exc())


def _is_lost(result) -> bool:
    if isinstance(result, BatchFailure):
        return True
    if not np.isfinite(result.num_evals):
        return True
    return not any(np.isfinite(m.loss) for m in result.pop)


def _describe(result) -> str:
    if isinstance(result, BatchFailure):
        return result.error
    return "no member with a finite loss"


def _dispatch(tasks, options):
    parallel = Parallel(
        n_jobs=options.n_jobs,
        backend=options.parallel_backend,
        timeout=options.batch_timeout,
        return_as="generator_unordered",
    )
    return parallel(delayed(run_batch)(*task) for task in tasks)


def run_iteration(
    pops: List[Population],
    dataset,
    options,
    curmaxsize: int,
    random_state,
    record=False,
    statistics: Optional[RunningSearchStatistics] = None,
) -> Dict[int, BatchResult]:
    """
    evolve every population for one batch. Lost batches (failure, dead
    worker process, timeout or non-finite result) are redispatched from the
    same snapshot with a new seed, at most `options.max_batch_retries` times.
    Returns the results of the batches that went through, by population index.
    """
    results = dict()
    pending = list(range(len(pops)))
    for attempt in range(options.max_batch_retries + 1):
        if not pending:
            break
        if attempt:
            logger.warning("redispatching batches of populations %s (attempt %d)", pending, attempt + 1)
        tasks = [
            (
                i,
                pops[i].copy(),
                dataset,
                options,
                curmaxsize,
                random_state.randint(2 ** 31 - 1),
                record,
                statistics,
            )
            for i in pending
        ]
        lost = set(pending)
        try:
            for i, result in _dispatch(tasks, options):
                if _is_lost(result):
                    logger.warning("batch of population %d lost: %s", i, _describe(result))
                    continue
                results[i] = result
                lost.discard(i)
        except _TIMEOUTS:
            logger.warning("timeout while waiting for the batches of populations %s", sorted(lost))
        except _WORKER_CRASHES as e:
            logger.warning(
                "worker process died while running the batches of populations %s: %s",
                sorted(lost),
                e,
            )
        pending = sorted(lost)
    if pending:
        logger.error(
            "giving up on populations %s for this iteration, keeping their last snapshot", pending
        )
    return results


def migrate(
    migrants: List[PopMember],
    pop: Population,
    fraction: float,
    random_state,
    recorder: Optional[Recorder] = None,
) -> int:
    """
    copy about `pop.n * fraction` random migrants (the count is Poisson
    distributed) into random slots of `pop`, returns the number of copies.
    Each copy is born with the migrant as parent, and kills the member it
    replaces
    """
    if not migrants or fraction <= 0:
        return 0
    num_replace = min(random_state.poisson(pop.n * fraction), pop.n)
    locations = random_state.randint(pop.n, size=num_replace)
    chosen = random_state.randint(len(migrants), size=num_replace)
    for loc, j in zip(locations, chosen):
        migrant = migrants[j].copy()
        migrant.parent, migrant.ref = migrant.ref, generate_reference()
        if recorder is not None:
            recorder.register(migrant)
            recorder.append(migrant.ref, make_event(EventType.BIRTH, detail="migration"))
            recorder.append(pop[loc].ref, make_event(EventType.DEATH))
        pop[loc] = migrant
    return num_replace


def migrate_populations(
    pops: List[Population],
    hof: HallOfFame,
    options,
    random_state,
    recorder: Optional[Recorder] = None,
) -> None:
    """migration from a snapshot of all populations, taken before any of them changes"""
    best_of_each = [m for pop in pops for m in pop.best_sub_pop(options.topn)]
    frontier = [m.copy() for _, m in calculate_pareto_frontier(hof)]
    for pop in pops:
        if options.migration:
            migrate(best_of_each, pop, options.fraction_replaced, random_state, recorder)
        if options.hof_migration:
            migrate(frontier, pop, options.fraction_replaced_hof, random_state, recorder)


def current_maxsize(iteration: int, niterations: int, options) -> int:
    """linear warmup of the maximum size, from 3 to maxsize"""
    if options.warmup_maxsize_by <= 0 or options.maxsize <= 3:
        return options.maxsize
    fraction_elapsed = iteration / niterations
    if fraction_elapsed >= options.warmup_maxsize_by:
        return options.maxsize
    return 3 + int((options.maxsize - 3) * fraction_elapsed / options.warmup_maxsize_by)


def equation_search(
    X,
    y,
    weights=None,
    options: Optional[Options] = None,
    niterations: int = 10,
    varnames=None,
    random_state=None,
    recorder: Optional[Recorder] = None,
) -> HallOfFame:
    """
    evolve `options.populations` populations on (X, y) and return the hall
    of fame of the search

    The search stops after `niterations` iterations, or earlier when
    `options.timeout_in_seconds`, `options.max_evals` or
    `options.early_stop_condition` is met. These are checked between
    iterations, running batches are never interrupted.
    """
    if options is None:
        options = Options()
    random_state = check_random_state(random_state)
    dataset = Dataset(X, y, weights, varnames, loss=options.loss)
    if recorder is None and options.recorder:
        recorder = Recorder()

    hof = HallOfFame(options)
    seed_maxsize = current_maxsize(0, niterations, options)
    pops = [
        Population.random(dataset, options, random_state, curmaxsize=seed_maxsize)
        for _ in range(options.populations)
    ]
    statistics = None
    if options.use_frequency or options.use_frequency_in_tournament:
        statistics = RunningSearchStatistics(options)
    total_evals = 0
    for pop in pops:
        total_evals += pop.n
        if statistics is not None:
            statistics.update_from((m.tree for m in pop), options)
        for member in pop:
            hof.update(member, options)
            if recorder is not None:
                recorder.register(member)
                recorder.append(member.ref, make_event(EventType.BIRTH))
    if statistics is not None:
        statistics.normalize()

    start = time.time()
    for iteration in range(niterations):
        curmaxsize = current_maxsize(iteration, niterations, options)
        results = run_iteration(
            pops,
            dataset,
            options,
            curmaxsize,
            random_state,
            record=recorder is not None,
            statistics=statistics,
        )
        for i, result in sorted(results.items()):
            pops[i] = result.pop
            hof.merge(result.best_seen)
            for member in result.pop:
                hof.update(member, options)
            total_evals += result.num_evals
            if recorder is not None and result.recorder is not None:
                recorder.merge(result.recorder)
            if statistics is not None:
                statistics.update_from((m.tree for m in result.pop), options)
        if statistics is not None:
            statistics.move_window()
            statistics.normalize()

        if (iteration + 1) % options.migration_period == 0:
            migrate_populations(pops, hof, options, random_state, recorder)

        elapsed = time.time() - start
        logger.info(
            "iteration %d/%d: best loss %.6g, %d evaluations, %.1fs",
            iteration + 1,
            niterations,
            hof.best_loss(),
            total_evals,
            elapsed,
        )
        if options.timeout_in_seconds is not None and elapsed > options.timeout_in_seconds:
            logger.info("stopping, timeout of %.1fs reached", options.timeout_in_seconds)
            break
        if options.max_evals is not None and total_evals >= options.max_evals:
            logger.info("stopping, %d evaluations reached", total_evals)
            break
        if options.early_stop_condition is not None and hof.best_loss() <= options.early_stop_condition:
            logger.info("stopping, loss below %.6g", options.early_stop_condition)
            break

    if recorder is not None and options.recorder_file is not None:
        recorder.dump(options.recorder_file, options, dataset.varnames)
    return hof
