from typing import Optional, Sequence

import numpy as np


class Dataset:
    """
    read-only training data, shared by every population and worker

    X is of shape (n_samples, n_features), as in scikit-learn
    """

    def __init__(
        self,
        X,
        y,
        weights=None,
        varnames: Optional[Sequence[str]] = None,
        loss=None,
    ):
        X = np.array(X, dtype=float)
        y = np.array(y, dtype=float)
        if X.ndim != 2:
            raise ValueError(f"X should be 2-dimensional, got shape {X.shape}")
        if y.shape != (X.shape[0],):
            raise ValueError(f"y should be of shape ({X.shape[0]},), got {y.shape}")
        if weights is not None:
            weights = np.asarray(weights, dtype=float)
            if weights.shape != y.shape:
                raise ValueError("weights and y should have the same shape")
        self.X = X
        self.y = y
        self.weights = weights
        self.nfeatures = X.shape[1]
        if varnames is None:
            varnames = [f"x{i}" for i in range(self.nfeatures)]
        if len(varnames) != self.nfeatures:
            raise ValueError("there should be one variable name per column of X")
        self.varnames = list(varnames)
        for arr in (self.X, self.y):
            arr.setflags(write=False)
        self.baseline_loss = 1.0
        if loss is not None:
            self.baseline_loss = self._compute_baseline(loss)

    def _compute_baseline(self, loss) -> float:
        if self.weights is None:
            mean = self.y.mean()
        else:
            mean = np.sum(self.y * self.weights) / np.sum(self.weights)
        baseline = loss(np.full_like(self.y, mean), self.y, self.weights)
        if not np.isfinite(baseline) or baseline <= 0:
            return 1.0
        return float(baseline)

    @property
    def n_samples(self):
        return self.X.shape[0]
