"""
Scored individuals, fixed-size populations and tournament selection
"""
import uuid
from typing import Iterable, List

import numpy as np

from .constraints import check_constraints
from .evaluate import score_func
from .expression import Node, compute_complexity, gen_random_tree, make_random_leaf


def generate_reference() -> int:
    """a random 64 bits lineage id, unique across worker processes"""
    return uuid.uuid4().int >> 64


def gen_valid_random_tree(
    nlength: int, options, nfeatures: int, random_state, curmaxsize=None
) -> Node:
    """
    a random tree of at most `nlength` operators passing `check_constraints`.
    The length is lowered when no draw passes, down to a single leaf
    """
    for length in range(nlength, 0, -1):
        for _ in range(options.max_mutation_attempts):
            tree = gen_random_tree(length, options, nfeatures, random_state)
            if check_constraints(tree, options, curmaxsize):
                return tree
    return make_random_leaf(nfeatures, random_state)


class PopMember:
    def __init__(self, tree: Node, score: float, loss: float, ref=None, parent=-1):
        self.tree = tree
        self.score = score
        self.loss = loss
        self.ref = generate_reference() if ref is None else ref
        self.parent = parent

    @classmethod
    def from_tree(cls, tree: Node, dataset, options, parent=-1) -> "PopMember":
        score, loss = score_func(dataset, tree, options)
        return cls(tree, score, loss, parent=parent)

    def copy(self) -> "PopMember":
        """independent snapshot, lineage ids included"""
        return PopMember(self.tree.copy(), self.score, self.loss, self.ref, self.parent)

    def __repr__(self):
        return f"PopMember(score={self.score:.6g}, loss={self.loss:.6g}, ref={self.ref})"


class Population:
    """
    a fixed number `n` of members, addressed by slot. Members are replaced,
    never removed, so the size never changes
    """

    def __init__(self, members: Iterable[PopMember]):
        self.members: List[PopMember] = list(members)
        if not self.members:
            raise ValueError("a population can not be empty")

    @classmethod
    def random(
        cls, dataset, options, random_state, size=None, nlength=3, curmaxsize=None
    ) -> "Population":
        """`size` random members, each satisfying the constraints under `curmaxsize`"""
        size = options.population_size if size is None else size
        members = list()
        for _ in range(size):
            tree = gen_valid_random_tree(
                nlength, options, dataset.nfeatures, random_state, curmaxsize
            )
            members.append(PopMember.from_tree(tree, dataset, options))
        return cls(members)

    @property
    def n(self) -> int:
        return len(self.members)

    def __len__(self):
        return len(self.members)

    def __iter__(self):
        return iter(self.members)

    def __getitem__(self, idx) -> PopMember:
        return self.members[idx]

    def __setitem__(self, idx, member: PopMember):
        if not isinstance(member, PopMember):
            raise TypeError(f"expected a PopMember, got {type(member)}")
        if not -self.n <= idx < self.n:
            raise IndexError(f"slot {idx} out of a population of {self.n}")
        self.members[idx] = member

    def copy(self) -> "Population":
        return Population(_.copy() for _ in self.members)

    def best_sub_pop(self, topn: int) -> List[PopMember]:
        """copies of the `topn` best members"""
        scores = _scores(self.members)
        order = np.argsort(scores, kind="stable")[:topn]
        return [self.members[i].copy() for i in order]

    def __repr__(self):
        return f"Population(n={self.n}, best_loss={min(_.loss for _ in self.members):.6g})"


def _scores(members) -> np.ndarray:
    scores = np.array([_.score for _ in members], dtype=float)
    return np.where(np.isnan(scores), np.inf, scores)


def finalize_scores(dataset, pop: Population, options):
    """rescore every member from scratch, returns (pop, num_evals)"""
    for member in pop:
        member.score, member.loss = score_func(dataset, member.tree, options)
    return pop, pop.n


def _pick_rank(size: int, prob_pick_first: float, random_state) -> int:
    """rank k is picked with probability p * (1 - p) ** k, normalized"""
    if prob_pick_first >= 1.0:
        return 0
    probs = prob_pick_first * (1.0 - prob_pick_first) ** np.arange(size)
    probs /= probs.sum()
    return random_state.choice(size, p=probs)


def _sample(pop: Population, options, random_state) -> np.ndarray:
    return random_state.randint(pop.n, size=options.tournament_size)


def best_of_sample(pop: Population, options, random_state, statistics=None) -> PopMember:
    """
    tournament among `tournament_size` members drawn with replacement.
    With `statistics` and `options.use_frequency_in_tournament`, scores are
    scaled up by how common the complexity of each member is
    """
    idx = _sample(pop, options, random_state)
    scores = _scores(pop.members[i] for i in idx)
    if statistics is not None and options.use_frequency_in_tournament:
        frequencies = np.array(
            [statistics.frequency(compute_complexity(pop.members[i].tree, options)) for i in idx]
        )
        scores = scores * np.exp(options.adaptive_parsimony_scaling * frequencies)
    order = np.argsort(scores, kind="stable")
    rank = _pick_rank(len(idx), options.prob_pick_first, random_state)
    return pop.members[idx[order[rank]]]


def worst_of_sample(pop: Population, options, random_state) -> int:
    """inverted tournament, returns the slot of the member to evict"""
    idx = _sample(pop, options, random_state)
    order = np.argsort(-_scores(pop.members[i] for i in idx), kind="stable")
    rank = _pick_rank(len(idx), options.prob_pick_first, random_state)
    return int(idx[order[rank]])
