"""
Expression trees, their traversal, complexity and random generation.

A tree is made of `Node` instances, each node being one of
 - a constant (`degree == 0`, `constant == True`, value in `val`)
 - a variable (`degree == 0`, `constant == False`, column index in `feature`)
 - a unary operator (`degree == 1`, child in `l`)
 - a binary operator (`degree == 2`, children in `l` and `r`)

Operator nodes store `op`, an index into `options.operators.unary` or
`options.operators.binary`. A tree is owned by a single holder, sharing nodes
between trees is never done: use `Node.copy`.
"""
from typing import Iterator, List, Optional, Sequence

import numpy as np


class Node:
    __slots__ = ("degree", "constant", "val", "feature", "op", "l", "r")

    def __init__(
        self,
        degree: int = 0,
        constant: bool = False,
        val: float = 0.0,
        feature: int = 0,
        op: int = 0,
        l: "Optional[Node]" = None,
        r: "Optional[Node]" = None,
    ):
        self.degree = degree
        self.constant = constant
        self.val = val
        self.feature = feature
        self.op = op
        self.l = l
        self.r = r

    @classmethod
    def const(cls, val: float) -> "Node":
        return cls(constant=True, val=float(val))

    @classmethod
    def var(cls, feature: int) -> "Node":
        return cls(feature=int(feature))

    @classmethod
    def unary(cls, op: int, child: "Node") -> "Node":
        return cls(degree=1, op=op, l=child)

    @classmethod
    def binary(cls, op: int, left: "Node", right: "Node") -> "Node":
        return cls(degree=2, op=op, l=left, r=right)

    @property
    def children(self):
        if self.degree == 0:
            return ()
        if self.degree == 1:
            return (self.l,)
        return (self.l, self.r)

    def copy(self) -> "Node":
        if self.degree == 0:
            return Node(constant=self.constant, val=self.val, feature=self.feature)
        if self.degree == 1:
            return Node(degree=1, op=self.op, l=self.l.copy())
        return Node(degree=2, op=self.op, l=self.l.copy(), r=self.r.copy())

    def set_from(self, other: "Node") -> None:
        """make this node hold the content of `other`, children are moved, not copied"""
        for attr in Node.__slots__:
            setattr(self, attr, getattr(other, attr))

    def same_node(self, other: "Node") -> bool:
        """compare the content of two nodes, ignoring their children"""
        if self.degree != other.degree:
            return False
        if self.degree == 0:
            if self.constant != other.constant:
                return False
            return self.val == other.val if self.constant else self.feature == other.feature
        return self.op == other.op

    def __eq__(self, other):
        if not isinstance(other, Node):
            return NotImplemented
        stack = [(self, other)]
        while stack:
            a, b = stack.pop()
            if not a.same_node(b):
                return False
            stack.extend(zip(a.children, b.children))
        return True

    __hash__ = None

    def __repr__(self):
        if self.degree == 0:
            return f"Node.const({self.val!r})" if self.constant else f"Node.var({self.feature})"
        if self.degree == 1:
            return f"Node.unary({self.op}, {self.l!r})"
        return f"Node.binary({self.op}, {self.l!r}, {self.r!r})"


def iter_preorder(tree: Node) -> Iterator[Node]:
    stack = [tree]
    while stack:
        node = stack.pop()
        yield node
        if node.degree == 2:
            stack.append(node.r)
        if node.degree >= 1:
            stack.append(node.l)


def iter_postorder(tree: Node) -> Iterator[Node]:
    """children before parents, left before right"""
    stack, out = [tree], []
    while stack:
        node = stack.pop()
        out.append(node)
        if node.degree >= 1:
            stack.append(node.l)
        if node.degree == 2:
            stack.append(node.r)
    return reversed(out)


def count_nodes(tree: Node) -> int:
    return sum(1 for _ in iter_preorder(tree))


def count_depth(tree: Node) -> int:
    depth = 0
    stack = [(tree, 1)]
    while stack:
        node, d = stack.pop()
        depth = max(depth, d)
        stack.extend((child, d + 1) for child in node.children)
    return depth


def constant_nodes(tree: Node) -> List[Node]:
    return [_ for _ in iter_preorder(tree) if _.degree == 0 and _.constant]


def count_constants(tree: Node) -> int:
    return len(constant_nodes(tree))


def get_constants(tree: Node) -> np.ndarray:
    return np.array([_.val for _ in constant_nodes(tree)], dtype=float)


def set_constants(tree: Node, values: Sequence[float]) -> None:
    nodes = constant_nodes(tree)
    if len(nodes) != len(values):
        raise ValueError(f"expected {len(nodes)} constants, got {len(values)}")
    for node, value in zip(nodes, values):
        node.val = float(value)


def compute_complexity(tree: Node, options) -> int:
    """weighted node count, computed from scratch on every call"""
    ctr = 0
    for node in iter_preorder(tree):
        if node.degree == 0:
            if node.constant:
                ctr += options.complexity_of_constants
            else:
                ctr += options.complexity_of_variables
        else:
            ctr += options.operator_complexity(node.degree, node.op)
    return ctr


def random_node(tree: Node, random_state) -> Node:
    """uniform pick among all nodes, the root being as likely as any leaf"""
    nodes = list(iter_preorder(tree))
    return nodes[random_state.randint(len(nodes))]


def make_random_leaf(nfeatures: int, random_state) -> Node:
    if random_state.rand() < 0.5:
        return Node.const(random_state.randn())
    return Node.var(random_state.randint(nfeatures))


def _pick_degree(options, random_state) -> int:
    nbin, nuna = options.operators.nbin, options.operators.nuna
    return 2 if random_state.rand() < nbin / (nbin + nuna) else 1


def _random_op_node(degree, options, nfeatures, random_state, child=None) -> Node:
    ops = options.operators
    if degree == 1:
        op = random_state.randint(ops.nuna)
        if child is None:
            child = make_random_leaf(nfeatures, random_state)
        return Node.unary(op, child)
    op = random_state.randint(ops.nbin)
    other = make_random_leaf(nfeatures, random_state)
    if child is None:
        return Node.binary(op, make_random_leaf(nfeatures, random_state), other)
    if random_state.rand() < 0.5:
        return Node.binary(op, child, other)
    return Node.binary(op, other, child)


def append_random_op(tree: Node, options, nfeatures: int, random_state, degree=None) -> Node:
    """turn a random leaf into an operator node with random leaves as arguments"""
    leaves = [_ for _ in iter_preorder(tree) if _.degree == 0]
    leaf = leaves[random_state.randint(len(leaves))]
    if degree is None:
        degree = _pick_degree(options, random_state)
    leaf.set_from(_random_op_node(degree, options, nfeatures, random_state))
    return tree


def prepend_random_op(tree: Node, options, nfeatures: int, random_state) -> Node:
    """a new root, with the old tree as one of its arguments"""
    degree = _pick_degree(options, random_state)
    return _random_op_node(degree, options, nfeatures, random_state, child=tree)


def insert_random_op(tree: Node, options, nfeatures: int, random_state) -> Node:
    """wrap a random node inside a new operator node"""
    node = random_node(tree, random_state)
    moved = Node()
    moved.set_from(node)
    degree = _pick_degree(options, random_state)
    node.set_from(_random_op_node(degree, options, nfeatures, random_state, child=moved))
    return tree


def gen_random_tree(length: int, options, nfeatures: int, random_state) -> Node:
    """grow method: start from a leaf, append `length` random operators"""
    tree = make_random_leaf(nfeatures, random_state)
    for _ in range(length):
        tree = append_random_op(tree, options, nfeatures, random_state)
    return tree


def gen_random_tree_fixed_size(node_count: int, options, nfeatures: int, random_state) -> Node:
    """full method: grow until the tree holds (up to) `node_count` nodes"""
    tree = make_random_leaf(nfeatures, random_state)
    cur_size = 1
    while cur_size < node_count:
        if cur_size == node_count - 1:
            if not options.operators.nuna:
                break
            tree = append_random_op(tree, options, nfeatures, random_state, degree=1)
        elif not options.operators.nbin:
            tree = append_random_op(tree, options, nfeatures, random_state, degree=1)
        else:
            tree = append_random_op(tree, options, nfeatures, random_state)
        cur_size = count_nodes(tree)
    return tree


def string_tree(tree: Node, options, varnames: Optional[Sequence[str]] = None) -> str:
    if tree.degree == 0:
        if tree.constant:
            return f"{tree.val:.6g}"
        if varnames is not None:
            return str(varnames[tree.feature])
        return f"x{tree.feature}"
    op = options.operators.get(tree.degree, tree.op)
    if tree.degree == 1:
        return f"{op.name}({string_tree(tree.l, options, varnames)})"
    left = string_tree(tree.l, options, varnames)
    right = string_tree(tree.r, options, varnames)
    if op.infix is not None:
        return f"({left} {op.infix} {right})"
    return f"{op.name}({left}, {right})"
