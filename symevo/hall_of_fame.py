"""
Best members ever seen, one per complexity
"""
from typing import Iterator, List, Optional, Tuple

import numpy as np
import pandas as pd
from river.misc import Skyline

from .expression import compute_complexity, string_tree


class HallOfFame:
    """
    `members[c]` holds a snapshot of the lowest scoring member of complexity
    `c` seen so far, for `1 <= c <= maxsize`. An entry is only replaced by a
    strictly better one, so the loss at each complexity never increases.
    """

    def __init__(self, options):
        self.maxsize = options.maxsize
        self.members = [None] * (self.maxsize + 1)
        self.exists = [False] * (self.maxsize + 1)

    def _update_at(self, complexity: int, member) -> bool:
        if not 1 <= complexity <= self.maxsize or not np.isfinite(member.loss):
            return False
        if self.exists[complexity] and not member.score < self.members[complexity].score:
            return False
        self.members[complexity] = member.copy()
        self.exists[complexity] = True
        return True

    def update(self, member, options) -> bool:
        """store a copy of `member` if it improves its slot, returns True if so"""
        return self._update_at(compute_complexity(member.tree, options), member)

    def merge(self, other: "HallOfFame") -> None:
        for complexity, member in other.items():
            self._update_at(complexity, member)

    def items(self) -> Iterator[Tuple[int, object]]:
        for complexity in range(1, self.maxsize + 1):
            if self.exists[complexity]:
                yield complexity, self.members[complexity]

    def __len__(self):
        return sum(self.exists)

    def best_loss(self) -> float:
        return min((m.loss for _, m in self.items()), default=np.inf)

    def __repr__(self):
        return f"HallOfFame(n_entries={len(self)}, best_loss={self.best_loss():.6g})"


def calculate_pareto_frontier(hof: HallOfFame) -> List[Tuple[int, object]]:
    """
    (complexity, member) pairs of the members no other one beats on both
    complexity and loss, by increasing complexity (and so decreasing loss)
    """
    pareto = Skyline(minimize=["complexity", "loss"])
    for complexity, member in hof.items():
        pareto.update(dict(complexity=complexity, loss=member.loss, member=member))
    frontier = sorted(pareto, key=lambda d: d["complexity"])
    return [(d["complexity"], d["member"]) for d in frontier]


def _frontier_scores(losses: np.ndarray, complexities: np.ndarray) -> np.ndarray:
    """negated derivative of the log-loss with respect to complexity"""
    scores = np.zeros(len(losses))
    for i in range(1, len(losses)):
        if losses[i] > 0:
            scores[i] = -np.log(losses[i] / losses[i - 1]) / (
                complexities[i] - complexities[i - 1]
            )
        else:
            scores[i] = np.inf
    return scores


def hall_of_fame_table(hof: HallOfFame, options, varnames: Optional[List[str]] = None) -> pd.DataFrame:
    frontier = calculate_pareto_frontier(hof)
    df = pd.DataFrame(
        dict(
            complexity=[c for c, _ in frontier],
            loss=[m.loss for _, m in frontier],
            equation=[string_tree(m.tree, options, varnames) for _, m in frontier],
            tree=[m.tree for _, m in frontier],
        )
    )
    df.insert(2, "score", _frontier_scores(df["loss"].values, df["complexity"].values))
    return df
