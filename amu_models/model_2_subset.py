"""
model_2_subset.py
=================
Models 2-4: Subset selection (best, forward stepwise, backward stepwise)

For each model size s the search keeps the s-column subset with the
smallest training residual sum of squares (intercept always included).
One search yields the whole size path, so fit_path() fits once and the
CV Engine evaluates every size from that single search.

Ties keep the first subset met in canonical column order: combinations
are enumerated lexicographically and candidates are scanned by column
index, replacing the incumbent only on a strictly smaller RSS.
"""

import itertools
import logging
import warnings
from dataclasses import dataclass
from math import comb
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .base_model import BaseAMUModel
from .errors import ConfigurationError, NumericInstabilityWarning

logger = logging.getLogger(__name__)

TIE_RTOL = 1e-12


@dataclass(frozen=True)
class SubsetFit:
    """Least-squares fit on a column subset"""
    columns: Tuple[int, ...]
    intercept: float
    coef: np.ndarray
    rss: float


class _Gram:
    """Centered cross-products, so each candidate subset is an s x s solve"""

    def __init__(self, X: np.ndarray, y: np.ndarray):
        Xc = X - X.mean(axis=0)
        yc = y - y.mean()
        self.G = Xc.T @ Xc
        self.c = Xc.T @ yc
        self.yy = float(yc @ yc)

    def rss(self, columns: Sequence[int]) -> float:
        if len(columns) == 0:
            return self.yy
        idx = np.asarray(columns)
        beta = np.linalg.lstsq(self.G[np.ix_(idx, idx)], self.c[idx], rcond=None)[0]
        return self.yy - float(self.c[idx] @ beta)


def _improves(rss: float, best_rss: float) -> bool:
    """Strictly better than the incumbent, beyond rounding noise"""
    return best_rss == np.inf or rss < best_rss - TIE_RTOL * abs(best_rss)


def least_squares_fit(X: np.ndarray, y: np.ndarray, columns: Sequence[int]) -> SubsetFit:
    """Intercept + coefficients for the given columns"""
    columns = tuple(sorted(int(c) for c in columns))
    idx = list(columns)
    x_mean = X[:, idx].mean(axis=0)
    y_mean = y.mean()
    Xc = X[:, idx] - x_mean
    yc = y - y_mean
    coef = np.linalg.lstsq(Xc, yc, rcond=None)[0]
    residuals = yc - Xc @ coef
    return SubsetFit(columns=columns,
                     intercept=float(y_mean - x_mean @ coef),
                     coef=coef,
                     rss=float(residuals @ residuals))


class SubsetSelectionModel(BaseAMUModel):
    """Shared fit/predict for the three search directions"""

    tuning_name = 'size'
    has_importance = True
    coefficient_importance = True
    direction = 'none'

    def _search(self, X: np.ndarray, y: np.ndarray, sizes: Sequence[int]) -> Dict[int, Tuple[int, ...]]:
        """Selected columns for each requested size"""
        raise NotImplementedError

    def fit_path(self, X: np.ndarray, y: np.ndarray, grid: Sequence[Any]) -> List[SubsetFit]:
        X = np.asarray(X, dtype=float)
        y = np.asarray(y, dtype=float).ravel()
        sizes = [int(s) for s in grid]
        bad = [s for s in sizes if not self.param_feasible(s, X.shape[0], X.shape[1])]
        if bad:
            raise ConfigurationError(f"{self.model_name}: sizes {bad} infeasible for {X.shape[0]} rows")

        chosen = self._search(X, y, sizes)
        return [least_squares_fit(X, y, chosen[s]) for s in sizes]

    def _fit_core(self, X: np.ndarray, y: np.ndarray, param: Any) -> SubsetFit:
        return self.fit_path(X, y, [param])[0]

    def _predict_core(self, model: SubsetFit, X: np.ndarray) -> np.ndarray:
        return model.intercept + X[:, list(model.columns)] @ model.coef

    def max_size(self, n_rows: int, n_features: int) -> int:
        # s coefficients + intercept with at least one residual degree of freedom
        return min(n_features, n_rows - 2)

    def default_grid(self, X: np.ndarray, y: np.ndarray, n_rows: Optional[int] = None) -> List[Any]:
        n_rows = X.shape[0] if n_rows is None else n_rows
        return list(range(1, self.max_size(n_rows, X.shape[1]) + 1))

    def check_rows(self, n_rows: int, n_features: int) -> None:
        super().check_rows(n_rows, n_features)
        if self.max_size(n_rows, n_features) < 1:
            raise ConfigurationError(f"{self.model_name}: {n_rows} fitting rows cannot support any subset")

    def param_feasible(self, param: Any, n_rows: int, n_features: int) -> bool:
        return param is not None and 1 <= int(param) <= self.max_size(n_rows, n_features)

    def importance(self, model: SubsetFit, X: np.ndarray, y: np.ndarray,
                   feature_names: Sequence[str]) -> Dict[str, float]:
        return {feature_names[c]: float(b) for c, b in zip(model.columns, model.coef)}

    def describe(self, model: SubsetFit, X: np.ndarray, y: np.ndarray,
                 feature_names: Sequence[str]) -> Dict[str, Any]:
        coefficients = [{'name': feature_names[c], 'coefficient': float(b)}
                        for c, b in zip(model.columns, model.coef)]
        self.log_feature_importance(coefficients, model_type=self.model_name)
        return {
            'direction': self.direction,
            'n_selected': len(model.columns),
            'selected': [feature_names[c] for c in model.columns],
            'intercept': model.intercept,
            'rss_train': model.rss,
        }


class Model2BestSubset(SubsetSelectionModel):
    """
    Model 2: exhaustive best subset

    Enumerates every subset up to the largest requested size, scoring each
    size in vectorised batches from the centered Gram matrix. The number of
    subsets is checked against max_subsets before the search starts. The
    default grid stops at the largest size that fits the budget; a grid
    configured past it is refused.
    """

    key = 'best_subset'
    direction = 'exhaustive'

    def __init__(self, random_seed: int = 1, max_subsets: int = 250_000, batch_size: int = 50_000):
        super().__init__(model_id=2, model_name="Best Subset Selection", random_seed=random_seed)
        self.max_subsets = max_subsets
        self.batch_size = batch_size

    @staticmethod
    def n_subsets(n_features: int, max_size: int) -> int:
        return sum(comb(n_features, s) for s in range(1, max_size + 1))

    def budget_size(self, n_features: int) -> int:
        """Largest size whose cumulative subset count fits max_subsets (at least 1)"""
        size = 1
        while size < n_features and self.n_subsets(n_features, size + 1) <= self.max_subsets:
            size += 1
        return size

    def _check_budget(self, n_features: int, max_size: int) -> None:
        total = self.n_subsets(n_features, max_size)
        if total > self.max_subsets:
            raise ConfigurationError(
                f"Best subset over {n_features} columns up to size {max_size} means {total:,} fits "
                f"(max_subsets={self.max_subsets:,}); use forward/backward stepwise or a smaller grid"
            )

    def default_grid(self, X: np.ndarray, y: np.ndarray, n_rows: Optional[int] = None) -> List[Any]:
        self.grid_note = None
        grid = super().default_grid(X, y, n_rows)
        limit = self.budget_size(X.shape[1])
        if grid and grid[-1] > limit:
            self.grid_note = (f"sizes {limit + 1}-{grid[-1]} skipped: searching them means "
                              f"{self.n_subsets(X.shape[1], grid[-1]):,} fits "
                              f"(max_subsets={self.max_subsets:,})")
            self.logger.warning(f"{self.model_name}: {self.grid_note}")
            warnings.warn(f"{self.model_name}: {self.grid_note}", NumericInstabilityWarning)
            grid = grid[:limit]
        return grid

    def check_grid(self, grid: Sequence[Any], n_rows: int, n_features: int) -> None:
        super().check_grid(grid, n_rows, n_features)
        self._check_budget(n_features, max(int(s) for s in grid))

    def _best_of_size(self, gram: _Gram, n_features: int, size: int) -> Tuple[int, ...]:
        best_rss = np.inf
        best_cols = None
        combos = itertools.combinations(range(n_features), size)
        while True:
            batch = np.array(list(itertools.islice(combos, self.batch_size)), dtype=int)
            if batch.size == 0:
                break
            # Stacked s x s Gram blocks; rank-deficient blocks use their non-null eigenvectors
            G = gram.G[batch[:, :, None], batch[:, None, :]]
            c = gram.c[batch]
            w, V = np.linalg.eigh(G)
            proj = np.einsum('bij,bi->bj', V, c)
            tol = 1e-10 * np.maximum(w.max(axis=1, keepdims=True), np.finfo(float).tiny)
            keep = w > tol
            explained = np.where(keep, proj ** 2 / np.where(keep, w, 1.0), 0.0).sum(axis=1)
            rss = gram.yy - explained

            # First subset in lexicographic order within rounding of the batch minimum
            low = float(rss.min())
            if _improves(low, best_rss):
                first = int(np.flatnonzero(rss <= low + TIE_RTOL * abs(low))[0])
                best_rss = float(rss[first])
                best_cols = tuple(int(col) for col in batch[first])
        return best_cols

    def _search(self, X: np.ndarray, y: np.ndarray, sizes: Sequence[int]) -> Dict[int, Tuple[int, ...]]:
        n_features = X.shape[1]
        self._check_budget(n_features, max(sizes))
        gram = _Gram(X, y)
        return {size: self._best_of_size(gram, n_features, size) for size in sorted(set(sizes))}


class Model3ForwardStepwise(SubsetSelectionModel):
    """Model 3: greedy forward selection from the empty model"""

    key = 'forward_stepwise'
    direction = 'forward'

    def __init__(self, random_seed: int = 1):
        super().__init__(model_id=3, model_name="Forward Stepwise Selection", random_seed=random_seed)

    def _search(self, X: np.ndarray, y: np.ndarray, sizes: Sequence[int]) -> Dict[int, Tuple[int, ...]]:
        gram = _Gram(X, y)
        current: List[int] = []
        chosen = {}
        for size in range(1, max(sizes) + 1):
            best_rss = np.inf
            best_col = None
            for col in range(X.shape[1]):
                if col in current:
                    continue
                rss = gram.rss(current + [col])
                if _improves(rss, best_rss):
                    best_rss = rss
                    best_col = col
            current.append(best_col)
            chosen[size] = tuple(sorted(current))
        return chosen


class Model4BackwardStepwise(SubsetSelectionModel):
    """
    Model 4: greedy backward elimination from the full model

    Starts from all p columns, so the full model must be fittable:
    at least p + 2 rows.
    """

    key = 'backward_stepwise'
    direction = 'backward'

    def __init__(self, random_seed: int = 1):
        super().__init__(model_id=4, model_name="Backward Stepwise Selection", random_seed=random_seed)

    def check_rows(self, n_rows: int, n_features: int) -> None:
        super().check_rows(n_rows, n_features)
        if n_rows < n_features + 2:
            raise ConfigurationError(
                f"Backward stepwise starts from all {n_features} columns and needs at least "
                f"{n_features + 2} fitting rows, got {n_rows}"
            )

    def _search(self, X: np.ndarray, y: np.ndarray, sizes: Sequence[int]) -> Dict[int, Tuple[int, ...]]:
        n_rows, n_features = X.shape
        self.check_rows(n_rows, n_features)
        gram = _Gram(X, y)

        current = list(range(n_features))
        chosen = {n_features: tuple(current)}
        for size in range(n_features - 1, min(sizes) - 1, -1):
            best_rss = np.inf
            best_col = None
            for col in current:
                rss = gram.rss([c for c in current if c != col])
                if _improves(rss, best_rss):
                    best_rss = rss
                    best_col = col
            current.remove(best_col)
            chosen[size] = tuple(current)
        return chosen
