from typing import Optional, Sequence

import sympy as sp

from .expression import Node, iter_postorder


def _sympy_fn(op):
    if op.sympy_fn is not None:
        return op.sympy_fn
    return sp.Function(op.name)


def node_to_sympy(
    tree: Node, options, varnames: Optional[Sequence[str]] = None
) -> sp.Expr:
    """
    converts a tree to a sympy expression, with one symbol per variable

    sympy applies its own automatic simplifications on construction, eg.
    `x0 + x0` becomes `2*x0`
    """
    stack = list()
    for node in iter_postorder(tree):
        if node.degree == 0:
            if node.constant:
                stack.append(sp.Float(node.val))
            else:
                name = varnames[node.feature] if varnames else f"x{node.feature}"
                stack.append(sp.Symbol(name))
            continue
        fn = _sympy_fn(options.operators.get(node.degree, node.op))
        if node.degree == 1:
            stack.append(fn(stack.pop()))
        else:
            right = stack.pop()
            stack.append(fn(stack.pop(), right))
    return stack.pop()
