# asv benchmarks, see "Writing benchmarks" in the asv docs

from sklearn.datasets import load_diabetes
from sklearn.metrics import r2_score
from sklearn.model_selection import train_test_split

from symevo.expression import compute_complexity
from symevo.sre import SymbolicRegression


class DiabetesSuite:
    params = [10, 33, 100]
    param_names = ["population_size"]
    X, y = load_diabetes(return_X_y=True)
    X_train, X_test, y_train, y_test = train_test_split(X, y, test_size=0.3, random_state=42)

    def _fit(self, population_size):
        sre = SymbolicRegression(
            unary_operators=["cos", "exp"],
            populations=4,
            population_size=population_size,
            ncycles_per_iteration=50,
            niterations=5,
            random_state=0,
        )
        return sre.fit(self.X_train, self.y_train)

    def time_fit(self, population_size):
        self._fit(population_size)

    def peakmem_fit(self, population_size):
        self._fit(population_size)

    def track_r2_score(self, population_size):
        sre = self._fit(population_size)
        return r2_score(self.y_test, sre.predict(self.X_test))

    def track_complexity(self, population_size):
        sre = self._fit(population_size)
        return compute_complexity(sre.tree_, sre.options_)
