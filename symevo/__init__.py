"""
symevo searches for closed-form expressions fitting a dataset, by evolving
populations of expression trees.

 - regularized evolution : each population keeps a fixed size, children replace
   members picked by an inverted tournament, worse children being accepted with
   an annealed probability
 - multi-objective : a hall of fame keeps the best expression of each complexity,
   from which the loss / complexity frontier is derived
 - constants are refined with scipy, expressions are exported to sympy
 - populations evolve in parallel (via joblib) and exchange members by migration

`symevo.sre.SymbolicRegression` is a scikit-learn estimator on top of
`symevo.search.equation_search`.
"""

__version__ = "0.1.0"
