"""
cross_validation.py
===================
Generic k-fold engine shared by every model family.

For each fold the adapter fits the whole hyperparameter grid on the other
k-1 folds (adapter.fit_path, so subset selection searches once per fold),
predicts the held-out fold and records one MSE per grid value. Folds are
independent, so they run on a joblib worker pool; the per-fold rows are
then averaged into the ErrorCurve. Averaging happens only after every
fold has returned, so the curve does not depend on completion order.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from joblib import Parallel, delayed
from sklearn.metrics import mean_squared_error

from .base_model import BaseAMUModel
from .errors import ConfigurationError, FitAbortedError
from .partition import FoldAssignment, make_folds

logger = logging.getLogger(__name__)

TIE_RTOL = 1e-12


@dataclass(frozen=True)
class ErrorCurve:
    """Mean CV error per hyperparameter value, plus the per-fold errors behind it"""
    grid: tuple
    mean_errors: np.ndarray
    fold_errors: np.ndarray
    tuning_name: str = 'none'

    def select(self, rtol: float = TIE_RTOL) -> int:
        """
        Index of the minimum mean error. Values within rtol of the minimum
        count as ties and the earliest (simplest) grid value wins.
        """
        errors = np.where(np.isfinite(self.mean_errors), self.mean_errors, np.inf)
        best = errors.min()
        if not np.isfinite(best):
            raise FloatingPointError("Every hyperparameter produced a non-finite CV error")
        tied = np.flatnonzero(errors <= best + rtol * abs(best))
        return int(tied[0])

    @property
    def selected_index(self) -> int:
        return self.select()

    @property
    def selected_param(self) -> Any:
        return self.grid[self.selected_index]

    @property
    def selected_error(self) -> float:
        return float(self.mean_errors[self.selected_index])

    def at_boundary(self) -> bool:
        """True when the selected value is the first or last of a multi-point grid"""
        return len(self.grid) > 1 and self.selected_index in (0, len(self.grid) - 1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'tuning_name': self.tuning_name,
            'grid': [_jsonable(g) for g in self.grid],
            'mean_errors': [float(e) for e in self.mean_errors],
            'fold_errors': [[float(e) for e in row] for row in self.fold_errors],
            'selected_index': self.selected_index,
        }


def _jsonable(value: Any) -> Any:
    if isinstance(value, (np.integer,)):
        return int(value)
    if isinstance(value, (np.floating,)):
        return float(value)
    return value


def _check_deadline(deadline: Optional[float], adapter: BaseAMUModel, fold: int) -> None:
    if deadline is not None and time.time() > deadline:
        raise FitAbortedError(f"{adapter.model_name}: time budget exceeded at fold {fold}")


def _score_fold(adapter: BaseAMUModel, X: np.ndarray, y: np.ndarray,
                fold: int, fit_rows: np.ndarray, held_out: np.ndarray,
                grid: Sequence[Any], deadline: Optional[float]) -> np.ndarray:
    """MSE on the held-out fold for every grid value"""
    _check_deadline(deadline, adapter, fold)
    models = adapter.fit_path(X[fit_rows], y[fit_rows], grid)
    _check_deadline(deadline, adapter, fold)

    errors = np.empty(len(grid))
    for i, model in enumerate(models):
        errors[i] = mean_squared_error(y[held_out], adapter.predict(model, X[held_out]))
    logger.debug(f"{adapter.model_name} fold {fold}: fit on {len(fit_rows)}, "
                 f"scored {len(held_out)}, best fold MSE {errors.min():.4f}")
    return errors


def cross_validate(X: np.ndarray, y: np.ndarray, adapter: BaseAMUModel,
                   grid: Optional[Sequence[Any]] = None, k: int = 10, seed: int = 1,
                   folds: Optional[FoldAssignment] = None, n_jobs: int = 1,
                   deadline: Optional[float] = None) -> ErrorCurve:
    """
    k-fold cross-validation of one model family over a hyperparameter grid.

    Args:
        X, y: tuning rows (the training partition)
        adapter: model family
        grid: candidate values, simplest first; adapter.default_grid() if None
        k, seed: fold count and seed, used only when folds is None
        folds: a FoldAssignment over the rows of X, built once by the caller
        n_jobs: joblib workers across folds
        deadline: time.time() value after which the family is aborted

    Returns:
        ErrorCurve over the grid

    Raises:
        ConfigurationError: folds/grid the data cannot support (before any fit)
        FitAbortedError: deadline passed
    """
    X = np.asarray(X, dtype=float)
    y = np.asarray(y, dtype=float).ravel()
    if X.shape[0] != y.shape[0]:
        raise ConfigurationError(f"X has {X.shape[0]} rows but y has {y.shape[0]}")

    if folds is None:
        folds = make_folds(X.shape[0], k=k, seed=seed)
    elif folds.n_rows != X.shape[0]:
        raise ConfigurationError(f"Fold assignment covers {folds.n_rows} rows, data has {X.shape[0]}")

    n_fit = folds.min_train_size()
    if grid is None:
        adapter.check_rows(n_fit, X.shape[1])
        grid = adapter.default_grid(X, y, n_rows=n_fit)
    grid = list(grid)
    adapter.check_grid(grid, n_fit, X.shape[1])

    logger.info(f"CV {adapter.model_name}: {folds.k} folds, {len(grid)} {adapter.tuning_name} values, "
                f">= {n_fit} fitting rows per fold")

    rows: List[np.ndarray] = Parallel(n_jobs=n_jobs, backend="threading", prefer="threads")(
        delayed(_score_fold)(adapter, X, y, fold, fit_rows, held_out, grid, deadline)
        for fold, fit_rows, held_out in folds.splits()
    )

    fold_errors = np.vstack(rows)
    return ErrorCurve(grid=tuple(grid),
                      mean_errors=fold_errors.mean(axis=0),
                      fold_errors=fold_errors,
                      tuning_name=adapter.tuning_name)
