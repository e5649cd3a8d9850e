"""
Running histogram of the complexities found in the populations, used to
penalize crowded complexities in acceptance and tournaments
"""
import numpy as np

from .expression import Node, compute_complexity


class RunningSearchStatistics:
    """
    counts of members per complexity, from 1 to `options.maxsize`, kept over
    a sliding window of `window_size` observations. Every complexity starts
    with a count of one.
    """

    def __init__(self, options, window_size: int = 100000):
        self.window_size = window_size
        self.frequencies = np.ones(options.maxsize, dtype=float)
        self.normalized_frequencies = self.frequencies / self.frequencies.sum()

    @property
    def maxsize(self) -> int:
        return len(self.frequencies)

    def update(self, complexity: int) -> None:
        if 0 < complexity <= self.maxsize:
            self.frequencies[complexity - 1] += 1.0

    def update_from(self, trees, options) -> None:
        for tree in trees:
            self.update(compute_complexity(tree, options))

    def move_window(self, smallest_frequency_allowed: float = 1.0, max_loops: int = 1000) -> None:
        """shrink the counts evenly until they sum to `window_size`, none below the floor"""
        difference = self.frequencies.sum() - self.window_size
        for _ in range(max_loops):
            if difference <= 0:
                break
            above = self.frequencies > smallest_frequency_allowed
            if not above.any():
                break
            amount = min(
                difference / above.sum(),
                self.frequencies[above].min() - smallest_frequency_allowed,
            )
            self.frequencies[above] -= amount
            total = amount * above.sum()
            difference -= total
            if total < 1e-6:
                break

    def normalize(self) -> None:
        self.normalized_frequencies = self.frequencies / self.frequencies.sum()

    def frequency(self, complexity: int, default: float = 0.0) -> float:
        if 0 < complexity <= self.maxsize:
            return float(self.normalized_frequencies[complexity - 1])
        return default

    def frequency_ratio(self, old: Node, new: Node, options) -> float:
        """how much more crowded the complexity of `old` is, compared to the one of `new`"""
        old_frequency = self.frequency(compute_complexity(old, options), default=1e-6)
        new_frequency = self.frequency(compute_complexity(new, options), default=1e-6)
        return old_frequency / new_frequency

    def copy(self) -> "RunningSearchStatistics":
        clone = RunningSearchStatistics.__new__(RunningSearchStatistics)
        clone.window_size = self.window_size
        clone.frequencies = self.frequencies.copy()
        clone.normalized_frequencies = self.normalized_frequencies.copy()
        return clone

    def __repr__(self):
        return f"RunningSearchStatistics(maxsize={self.maxsize}, total={self.frequencies.sum():.6g})"
