"""
Cheap algebraic rewrites applied to trees during housekeeping.

Both functions work in place and return the tree; they never grow it.
"""
import numpy as np

from .expression import Node, iter_postorder


def _is_const(node: Node) -> bool:
    return node.degree == 0 and node.constant


def _apply(options, degree, op, *values) -> float:
    with np.errstate(all="ignore"):
        res = options.operators.get(degree, op).fn(*(np.array([_]) for _ in values))
    return float(np.asarray(res).reshape(-1)[0])


def simplify_tree(tree: Node, options) -> Node:
    """fold every operator whose arguments are all constants"""
    for node in iter_postorder(tree):
        if node.degree == 0 or not all(_is_const(_) for _ in node.children):
            continue
        value = _apply(options, node.degree, node.op, *(_.val for _ in node.children))
        if np.isfinite(value):
            node.set_from(Node.const(value))
    return tree


def _split_const(node: Node):
    if _is_const(node.l):
        return node.l, node.r
    if _is_const(node.r):
        return node.r, node.l
    return None, None


def combine_operators(tree: Node, options) -> Node:
    """
    merge constants across nested associative operators, eg.
    (x + 1) + 2 -> x + 3, 2 * (x * 3) -> 6 * x, (x - 1) - 2 -> x - 3
    """
    ops = options.operators
    add, mul, sub = (ops.find(name) for name in ("add", "mul", "sub"))
    for node in iter_postorder(tree):
        if node.degree != 2:
            continue
        if (2, node.op) in (add, mul):
            top, other = _split_const(node)
            if top is None or other.degree != 2 or other.op != node.op:
                continue
            inner, rest = _split_const(other)
            if inner is None:
                continue
            value = _apply(options, 2, node.op, top.val, inner.val)
            if np.isfinite(value):
                node.l, node.r = Node.const(value), rest
        elif (2, node.op) == sub and _is_const(node.r):
            left = node.l
            if left.degree != 2 or left.op != node.op:
                continue
            if _is_const(left.r):  # (x - c1) - c2 -> x - (c1 + c2)
                node.l, node.r = left.l, Node.const(left.r.val + node.r.val)
            elif _is_const(left.l):  # (c1 - x) - c2 -> (c1 - c2) - x
                node.l, node.r = Node.const(left.l.val - node.r.val), left.r
    return tree
