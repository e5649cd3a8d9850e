"""
Evaluation of expression trees over a dataset
"""
from typing import Tuple

import numpy as np

from .expression import Node, compute_complexity, iter_postorder


def eval_tree_array(tree: Node, X: np.ndarray, operators) -> Tuple[np.ndarray, bool]:
    """
    evaluates `tree` on every row of `X`

    Returns the predictions and a flag, False as soon as an intermediate result
    holds a NaN or an infinite value (the predictions are then meaningless)
    """
    n_samples = X.shape[0]
    stack = list()
    with np.errstate(all="ignore"):
        for node in iter_postorder(tree):
            if node.degree == 0:
                if node.constant:
                    stack.append(np.full(n_samples, node.val))
                else:
                    stack.append(X[:, node.feature])
                continue
            if node.degree == 1:
                res = operators.unary[node.op].fn(stack.pop())
            else:
                right = stack.pop()
                res = operators.binary[node.op].fn(stack.pop(), right)
            if not np.isfinite(res).all():
                return np.full(n_samples, np.nan), False
            stack.append(res)
    res = stack.pop()
    if not np.isfinite(res).all():  # a lone constant can be inf
        return np.full(n_samples, np.nan), False
    return res, True


def eval_loss(tree: Node, dataset, options) -> float:
    """loss of `tree` on `dataset`, `inf` if the tree can not be evaluated"""
    preds, ok = eval_tree_array(tree, dataset.X, options.operators)
    if not ok:
        return np.inf
    loss = options.loss(preds, dataset.y, dataset.weights)
    return float(loss) if np.isfinite(loss) else np.inf


def loss_to_score(loss: float, complexity: int, dataset, options) -> float:
    return loss / dataset.baseline_loss + options.parsimony * complexity


def score_func(dataset, tree: Node, options) -> Tuple[float, float]:
    """(score, loss) of a tree, the score penalizing complex trees"""
    loss = eval_loss(tree, dataset, options)
    complexity = compute_complexity(tree, options)
    return loss_to_score(loss, complexity, dataset, options), loss
