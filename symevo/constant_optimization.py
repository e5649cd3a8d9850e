"""
Refinement of the constants of a tree, its structure being kept fixed
"""
import logging
import warnings
from typing import Tuple

import numpy as np
from scipy.optimize import minimize

from .evaluate import eval_loss, loss_to_score
from .expression import compute_complexity, constant_nodes

logger = logging.getLogger(__name__)


def _minimize(objective, x0, options):
    with warnings.catch_warnings(), np.errstate(all="ignore"):
        warnings.simplefilter("ignore", RuntimeWarning)
        return minimize(
            objective,
            x0,
            method=options.optimizer_algorithm,
            options=dict(maxiter=options.optimizer_iterations),
        )


def optimize_constants(dataset, member, options, random_state) -> Tuple[object, int]:
    """
    minimizes the loss of `member` with respect to its constants, with
    `options.optimizer_nrestarts` extra attempts from jittered starting points.

    The member is updated in place only if the loss strictly improves,
    otherwise its constants are left as they were.
    Returns the member and the number of loss evaluations.
    """
    nodes = constant_nodes(member.tree)
    if not nodes:
        return member, 0
    x0 = np.array([_.val for _ in nodes])

    def objective(values):
        for node, value in zip(nodes, values):
            node.val = float(value)
        return eval_loss(member.tree, dataset, options)

    num_evals = 0
    best_x, best_loss = x0, member.loss
    starts = [x0] + [
        x0 * (1 + 0.5 * random_state.randn(len(x0)))
        for _ in range(options.optimizer_nrestarts)
    ]
    for start in starts:
        try:
            result = _minimize(objective, start, options)
        except (ValueError, ArithmeticError, np.linalg.LinAlgError) as e:
            logger.debug("constant optimization failed: %s", e)
            continue
        num_evals += int(result.nfev)
        if np.isfinite(result.fun) and result.fun < best_loss:
            best_x, best_loss = np.array(result.x, dtype=float), float(result.fun)

    for node, value in zip(nodes, best_x):
        node.val = float(value)
    if best_x is not x0:
        # recompute the loss on the constants actually kept
        loss = eval_loss(member.tree, dataset, options)
        num_evals += 1
        if loss < member.loss:
            member.loss = loss
            complexity = compute_complexity(member.tree, options)
            member.score = loss_to_score(loss, complexity, dataset, options)
        else:
            for node, value in zip(nodes, x0):
                node.val = float(value)
    return member, num_evals
