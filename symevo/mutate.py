"""
Stochastic transformations of expression trees: mutations and crossover.

Every function here works on trees it owns: callers hand in copies.
"""
import logging
from typing import Tuple

import numpy as np

from .constraints import check_constraints
from .expression import (
    Node,
    append_random_op,
    constant_nodes,
    count_nodes,
    gen_random_tree_fixed_size,
    insert_random_op,
    iter_preorder,
    make_random_leaf,
    prepend_random_op,
    random_node,
)
from .simplify import combine_operators, simplify_tree

logger = logging.getLogger(__name__)


def mutate_constant(tree: Node, temperature: float, options, random_state) -> Node:
    """scale a random constant by a factor, larger at high temperature"""
    nodes = constant_nodes(tree)
    if not nodes:
        return tree
    node = nodes[random_state.randint(len(nodes))]
    max_change = options.perturbation_factor * temperature + 1.1
    factor = max_change ** random_state.rand()
    if random_state.rand() < 0.5:
        factor = 1.0 / factor
    node.val *= factor
    if random_state.rand() < options.prob_negate:
        node.val *= -1
    return tree


def mutate_operator(tree: Node, options, random_state) -> Node:
    """swap a random operator for another one of the same arity"""
    nodes = [_ for _ in iter_preorder(tree) if _.degree > 0]
    if not nodes:
        return tree
    node = nodes[random_state.randint(len(nodes))]
    n_ops = options.operators.nbin if node.degree == 2 else options.operators.nuna
    node.op = random_state.randint(n_ops)
    return tree


def add_node(tree: Node, options, nfeatures, random_state) -> Node:
    if random_state.rand() < 0.5:
        return append_random_op(tree, options, nfeatures, random_state)
    return prepend_random_op(tree, options, nfeatures, random_state)


def delete_random_op(tree: Node, options, nfeatures, random_state) -> Node:
    """replace a random operator by one of its arguments; a lone leaf gets replaced"""
    nodes = [_ for _ in iter_preorder(tree) if _.degree > 0]
    if not nodes:
        return make_random_leaf(nfeatures, random_state)
    node = nodes[random_state.randint(len(nodes))]
    children = node.children
    node.set_from(children[random_state.randint(len(children))])
    return tree


def randomize_subtree(tree: Node, options, curmaxsize, nfeatures, random_state) -> Node:
    node = random_node(tree, random_state)
    room = curmaxsize - count_nodes(tree) + count_nodes(node)
    size = random_state.randint(1, max(room, 1) + 1)
    node.set_from(gen_random_tree_fixed_size(size, options, nfeatures, random_state))
    return tree


def _mutation_weights(tree: Node, options, curmaxsize) -> Tuple[Tuple[str, ...], np.ndarray]:
    weights = dict(options.mutation_weights)
    n = count_nodes(tree)
    if not constant_nodes(tree):
        weights["mutate_constant"] = 0.0
    if n == 1:
        weights["mutate_operator"] = 0.0
        weights["delete_node"] = 0.0
        weights["simplify"] = 0.0
    if n >= curmaxsize:
        weights["add_node"] = 0.0
        weights["insert_node"] = 0.0
    names = tuple(weights)
    return names, np.array([weights[_] for _ in names], dtype=float)


def _apply_mutation(mutation, tree, temperature, options, curmaxsize, nfeatures, random_state):
    if mutation == "mutate_constant":
        return mutate_constant(tree, temperature, options, random_state)
    if mutation == "mutate_operator":
        return mutate_operator(tree, options, random_state)
    if mutation == "add_node":
        return add_node(tree, options, nfeatures, random_state)
    if mutation == "insert_node":
        return insert_random_op(tree, options, nfeatures, random_state)
    if mutation == "delete_node":
        return delete_random_op(tree, options, nfeatures, random_state)
    if mutation == "simplify":
        return combine_operators(simplify_tree(tree, options), options)
    if mutation == "randomize":
        return randomize_subtree(tree, options, curmaxsize, nfeatures, random_state)
    return tree


def mutate_tree(
    tree: Node, temperature: float, options, curmaxsize: int, nfeatures: int, random_state
) -> Tuple[Node, str]:
    """
    returns a mutated copy of `tree` and the name of the applied mutation.

    A candidate breaking the size, depth or operator constraints is dropped
    and a new mutation is drawn, up to `options.max_mutation_attempts` times.
    After that, an unchanged copy is returned under the name "do_nothing",
    which is only valid if `tree` is.
    """
    names, weights = _mutation_weights(tree, options, curmaxsize)
    total = weights.sum()
    if total > 0:
        probs = weights / total
        for _ in range(options.max_mutation_attempts):
            mutation = names[random_state.choice(len(names), p=probs)]
            candidate = _apply_mutation(
                mutation, tree.copy(), temperature, options, curmaxsize, nfeatures, random_state
            )
            if check_constraints(candidate, options, curmaxsize):
                return candidate, mutation
        logger.debug(
            "no valid mutation after %d attempts, keeping the tree as is",
            options.max_mutation_attempts,
        )
    return tree.copy(), "do_nothing"


def crossover_trees(tree1: Node, tree2: Node, random_state) -> Tuple[Node, Node]:
    """
    swap a random subtree of `tree1` with a random subtree of `tree2`.
    Inputs are left untouched; identical parents yield two copies.
    """
    child1, child2 = tree1.copy(), tree2.copy()
    if tree1 == tree2:
        return child1, child2
    node1 = random_node(child1, random_state)
    node2 = random_node(child2, random_state)
    tmp = Node()
    tmp.set_from(node1)
    node1.set_from(node2)
    node2.set_from(tmp)
    return child1, child2


def crossover_generation(
    tree1: Node, tree2: Node, options, curmaxsize: int, random_state
) -> Tuple[Node, Node, bool, bool]:
    """
    crossover followed by validation of each child on its own. A child
    breaking the constraints is replaced by a copy of its parent.
    """
    child1, child2 = crossover_trees(tree1, tree2, random_state)
    ok1 = check_constraints(child1, options, curmaxsize)
    ok2 = check_constraints(child2, options, curmaxsize)
    if not ok1:
        child1 = tree1.copy()
    if not ok2:
        child2 = tree2.copy()
    return child1, child2, ok1, ok2
