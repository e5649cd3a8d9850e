from typing import Dict, Optional

import numpy as np
import pandas as pd
import polars as pl
from sklearn.base import BaseEstimator, RegressorMixin
from sklearn.exceptions import NotFittedError
from sklearn.metrics import r2_score
from sklearn.utils import check_array, check_X_y

from .core import node_to_sympy
from .evaluate import eval_tree_array
from .hall_of_fame import hall_of_fame_table
from .options import Options
from .search import equation_search


def idx_model_selection(equations: pd.DataFrame, model_selection: str):
    """index of the chosen equation in the frontier table"""
    if model_selection == "accuracy":
        return equations["loss"].idxmin()
    if model_selection == "best":
        threshold = 1.5 * equations["loss"].min()
        filtered = equations[equations["loss"] <= threshold]
        return filtered["score"].idxmax()
    if model_selection == "score":
        return equations["score"].idxmax()
    raise ValueError(f"{model_selection} is not a valid model selection strategy")


class SymbolicRegression(RegressorMixin, BaseEstimator):
    """
    scikit-learn interface to `equation_search`

    After `fit`, `equations_` holds the loss / complexity frontier of the
    hall of fame, and `expression_` the sympy form of the selected equation
    (see `model_selection`: "best", "accuracy" or "score").
    Options not exposed as parameters can be passed in `extra_options`.
    """

    def __init__(
        self,
        binary_operators=("add", "sub", "mul", "div"),
        unary_operators=(),
        niterations: int = 10,
        populations: int = 15,
        population_size: int = 33,
        ncycles_per_iteration: int = 300,
        maxsize: int = 20,
        maxdepth: Optional[int] = None,
        parsimony: float = 0.0032,
        loss="mse",
        constraints: Optional[Dict] = None,
        nested_constraints: Optional[Dict] = None,
        annealing: bool = True,
        model_selection: str = "best",
        n_jobs: int = 1,
        extra_options: Optional[Dict] = None,
        random_state=None,
    ):
        self.binary_operators = binary_operators
        self.unary_operators = unary_operators
        self.niterations = niterations
        self.populations = populations
        self.population_size = population_size
        self.ncycles_per_iteration = ncycles_per_iteration
        self.maxsize = maxsize
        self.maxdepth = maxdepth
        self.parsimony = parsimony
        self.loss = loss
        self.constraints = constraints
        self.nested_constraints = nested_constraints
        self.annealing = annealing
        self.model_selection = model_selection
        self.n_jobs = n_jobs
        self.extra_options = extra_options
        self.random_state = random_state

    def _build_options(self) -> Options:
        return Options(
            binary_operators=self.binary_operators,
            unary_operators=self.unary_operators,
            populations=self.populations,
            population_size=self.population_size,
            ncycles_per_iteration=self.ncycles_per_iteration,
            maxsize=self.maxsize,
            maxdepth=self.maxdepth,
            parsimony=self.parsimony,
            loss=self.loss,
            constraints=self.constraints,
            nested_constraints=self.nested_constraints,
            annealing=self.annealing,
            n_jobs=self.n_jobs,
            **(self.extra_options or dict()),
        )

    def _check_input(self, X, y=None):
        varnames = None
        if isinstance(X, (pl.DataFrame, pd.DataFrame)):
            varnames = [str(_) for _ in X.columns]
            X = X.to_numpy()
        if isinstance(y, (pl.Series, pd.Series)):
            y = y.to_numpy()
        if y is not None:
            X, y = check_X_y(X, y, dtype=np.float64, y_numeric=True)
        else:
            X = check_array(X, dtype=np.float64)
        if varnames is None:
            varnames = [f"X{i}" for i in range(X.shape[1])]
        return X, y, varnames

    def fit(self, X, y, sample_weight=None):
        X, y, varnames = self._check_input(X, y)
        options = self._build_options()

        hof = equation_search(
            X,
            y,
            weights=sample_weight,
            options=options,
            niterations=self.niterations,
            varnames=varnames,
            random_state=self.random_state,
        )
        equations = hall_of_fame_table(hof, options, varnames)
        if equations.empty:
            raise RuntimeError("the search did not find any valid expression")
        equations["sympy_format"] = [node_to_sympy(t, options, varnames) for t in equations["tree"]]

        self.options_ = options
        self.varnames_ = varnames
        self.n_features_in_ = X.shape[1]
        self.hall_of_fame_ = hof
        self.equations_ = equations
        self.best_idx_ = idx_model_selection(equations, self.model_selection)
        self.tree_ = equations.loc[self.best_idx_, "tree"]
        self.expression_ = equations.loc[self.best_idx_, "sympy_format"]
        return self

    def predict(self, X):
        tree = getattr(self, "tree_", None)
        if tree is None:
            raise NotFittedError("call `fit` before `predict`")
        X, _, _ = self._check_input(X, y=None)
        if X.shape[1] != self.n_features_in_:
            raise ValueError(f"expected {self.n_features_in_} features, got {X.shape[1]}")
        preds, _ = eval_tree_array(tree, X, self.options_.operators)
        return np.asarray(preds, dtype=float)

    def score(self, X, y, sample_weight=None):
        X, y, _ = self._check_input(X, y)
        y_pred = self.predict(X)
        return r2_score(y, y_pred, sample_weight=sample_weight)
