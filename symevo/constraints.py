from typing import Optional

from .expression import Node, compute_complexity, count_depth, count_nodes, iter_preorder


def _count_operator(tree: Node, degree: int, op: int) -> int:
    return sum(1 for _ in iter_preorder(tree) if _.degree == degree and _.op == op)


def _violates_size_constraint(node: Node, options) -> bool:
    limits = options.size_constraint(node.degree, node.op)
    if limits is None:
        return False
    for child, limit in zip(node.children, limits):
        if limit != -1 and compute_complexity(child, options) > limit:
            return True
    return False


def _violates_nested_constraint(node: Node, options) -> bool:
    for (degree, op), max_count in options.nested_constraint(node.degree, node.op):
        count = sum(_count_operator(child, degree, op) for child in node.children)
        if count > max_count:
            return True
    return False


def check_constraints(tree: Node, options, curmaxsize: Optional[int] = None) -> bool:
    """
    True if `tree` fits within the size and depth bounds and satisfies every
    per-operator constraint of `options`. A count equal to a limit passes,
    a count above it fails. This never modifies `tree`.
    """
    if curmaxsize is None:
        curmaxsize = options.maxsize
    if count_nodes(tree) > curmaxsize:
        return False
    if count_depth(tree) > options.maxdepth:
        return False
    for node in iter_preorder(tree):
        if node.degree == 0:
            continue
        if _violates_size_constraint(node, options):
            return False
        if _violates_nested_constraint(node, options):
            return False
    return True
