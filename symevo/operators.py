"""
A closed registry of the operators an expression tree can hold.

Operators are resolved once, when `Options` is built, into an `OperatorSet`.
Tree nodes only store an index into `OperatorSet.unary` or `OperatorSet.binary`.
"""
import operator
from typing import Callable, Dict, Iterable, Optional, Tuple

import numpy as np
import sympy as sp
from sympy import Abs, Function, S


def _pdiv(x, y):
    return np.where(np.abs(y) > 0.001, x / y, 1.0)


def _plog(x):
    _x = np.abs(x)
    return np.where(_x > 0.001, np.log(_x), 0.0)


class pdiv(Function):
    """protected division, returns 1 when the denominator is close to 0"""

    @classmethod
    def eval(cls, x, y):
        if y.is_Number:
            if Abs(y) > 0.001:
                return x / y
            return S.One
        if x == y:
            return S.One
        if x == S.Zero:
            return x
        if x.is_Mul and y in x.args:  # eg. pdiv(4 * a, a) --> 4
            return x / y


class plog(Function):
    """protected logarithm of the absolute value, 0 close to 0"""

    @classmethod
    def eval(cls, x):
        if x.is_Number:
            _x = Abs(x)
            if _x > 0.001:
                return sp.log(_x)
            return S.Zero
        if x.is_Pow and x.args[1].is_Integer:  # log(M ** k) = k * log(M)
            return x.args[1] * plog(x.args[0])


class Operator:
    """
    A named function of fixed arity, with a vectorized numpy implementation
    and a sympy counterpart used for display and symbolic export.
    """

    def __init__(
        self,
        name: str,
        arity: int,
        fn: Callable,
        sympy_fn: Optional[Callable] = None,
        infix: Optional[str] = None,
    ):
        if arity not in (1, 2):
            raise ValueError(f"operator {name} must be unary or binary, got {arity}")
        self.name = name
        self.arity = arity
        self.fn = fn
        self.sympy_fn = sympy_fn
        self.infix = infix

    def __call__(self, *args):
        return self.fn(*args)

    def __repr__(self):
        return f"Operator({self.name!r}, arity={self.arity})"


BUILTIN_OPERATORS: Dict[str, Operator] = {
    op.name: op
    for op in (
        Operator("add", 2, np.add, operator.add, infix="+"),
        Operator("sub", 2, np.subtract, operator.sub, infix="-"),
        Operator("mul", 2, np.multiply, operator.mul, infix="*"),
        Operator("div", 2, np.divide, operator.truediv, infix="/"),
        Operator("pdiv", 2, _pdiv, pdiv),
        Operator("pow", 2, np.power, operator.pow, infix="^"),
        Operator("max", 2, np.maximum, sp.Max),
        Operator("min", 2, np.minimum, sp.Min),
        Operator("neg", 1, np.negative, operator.neg),
        Operator("square", 1, np.square, lambda x: x ** 2),
        Operator("cube", 1, lambda x: x ** 3, lambda x: x ** 3),
        Operator("abs", 1, np.abs, sp.Abs),
        Operator("sqrt", 1, np.sqrt, sp.sqrt),
        Operator("cos", 1, np.cos, sp.cos),
        Operator("sin", 1, np.sin, sp.sin),
        Operator("tan", 1, np.tan, sp.tan),
        Operator("exp", 1, np.exp, sp.exp),
        Operator("log", 1, np.log, sp.log),
        Operator("plog", 1, _plog, plog),
        Operator("tanh", 1, np.tanh, sp.tanh),
    )
}

ALIASES = {"+": "add", "-": "sub", "*": "mul", "/": "div", "^": "pow", "**": "pow"}


def resolve_operator(op, arity: int) -> Operator:
    """
    returns the `Operator` registered under `op` (a name, an alias or an
    `Operator` instance), checking its arity
    """
    if isinstance(op, Operator):
        resolved = op
    elif isinstance(op, str):
        name = ALIASES.get(op, op)
        resolved = BUILTIN_OPERATORS.get(name)
        if resolved is None:
            raise ValueError(f"unknown operator {op!r}")
    else:
        raise ValueError(
            f"operators must be given by name or as an Operator instance, got {op!r}"
        )
    if resolved.arity != arity:
        raise ValueError(
            f"operator {resolved.name!r} has arity {resolved.arity}, expected {arity}"
        )
    return resolved


class OperatorSet:
    """fixed-arity function tables, indexed by the `op` field of tree nodes"""

    def __init__(self, binary: Iterable = (), unary: Iterable = ()):
        self.binary: Tuple[Operator, ...] = tuple(resolve_operator(_, 2) for _ in binary)
        self.unary: Tuple[Operator, ...] = tuple(resolve_operator(_, 1) for _ in unary)
        if not self.binary and not self.unary:
            raise ValueError("at least one operator is required")
        self._index = dict()
        for degree, table in ((2, self.binary), (1, self.unary)):
            names = [_.name for _ in table]
            if len(set(names)) != len(names):
                raise ValueError(f"duplicated operators in {names}")
            for idx, op in enumerate(table):
                self._index[op.name] = (degree, idx)

    @property
    def nbin(self):
        return len(self.binary)

    @property
    def nuna(self):
        return len(self.unary)

    def get(self, degree: int, op: int) -> Operator:
        return self.binary[op] if degree == 2 else self.unary[op]

    def index(self, name) -> Tuple[int, int]:
        """(degree, index) for an operator name, raises KeyError if not in the set"""
        if isinstance(name, Operator):
            name = name.name
        name = ALIASES.get(name, name)
        return self._index[name]

    def find(self, name) -> Optional[Tuple[int, int]]:
        try:
            return self.index(name)
        except KeyError:
            return None

    def __contains__(self, name):
        return self.find(name) is not None

    def __repr__(self):
        return (
            f"OperatorSet(binary={[_.name for _ in self.binary]}, "
            f"unary={[_.name for _ in self.unary]})"
        )
