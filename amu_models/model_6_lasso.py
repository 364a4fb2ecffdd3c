"""
model_6_lasso.py
================
Model 6: Lasso Regression with L1 Regularization

Same standardized pipeline as ridge, but the L1 penalty drives some
coefficients to exactly zero, so the fit doubles as variable selection.
Only the surviving (non-zero) coefficients are reported as importance.
"""

import warnings
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from sklearn.exceptions import ConvergenceWarning
from sklearn.linear_model import Lasso
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler

from .base_model import BaseAMUModel


class Model6Lasso(BaseAMUModel):
    """
    Model 6: Lasso regression

    Key features:
    - L1 penalty on standardized predictors
    - 100-value penalty grid from 10 down to 1e-3
    - Embedded feature selection (exact zeros)
    """

    key = 'lasso'
    tuning_name = 'lambda'
    warn_on_boundary = True
    has_importance = True
    coefficient_importance = True

    def __init__(self, random_seed: int = 1, n_alphas: int = 100,
                 alpha_max: float = 10.0, alpha_min: float = 1e-3,
                 max_iter: int = 10000, tol: float = 1e-4):
        super().__init__(model_id=6, model_name="Lasso Regression", random_seed=random_seed)
        self.n_alphas = n_alphas
        self.alpha_max = alpha_max
        self.alpha_min = alpha_min
        self.max_iter = max_iter
        self.tol = tol

    def default_grid(self, X: np.ndarray, y: np.ndarray, n_rows: Optional[int] = None) -> List[Any]:
        return [float(a) for a in np.logspace(np.log10(self.alpha_max), np.log10(self.alpha_min), self.n_alphas)]

    def param_feasible(self, param: Any, n_rows: int, n_features: int) -> bool:
        return param is not None and float(param) > 0.0

    def _fit_core(self, X: np.ndarray, y: np.ndarray, param: Any) -> Pipeline:
        model = Pipeline([
            ('scaler', StandardScaler()),
            ('lasso', Lasso(alpha=float(param), max_iter=self.max_iter, tol=self.tol,
                            random_state=self.random_seed)),
        ])
        # Unconverged fits at small penalties are still scored
        with warnings.catch_warnings():
            warnings.simplefilter('ignore', ConvergenceWarning)
            model.fit(X, y)
        return model

    def _predict_core(self, model: Pipeline, X: np.ndarray) -> np.ndarray:
        return model.predict(X)

    def importance(self, model: Pipeline, X: np.ndarray, y: np.ndarray,
                   feature_names: Sequence[str]) -> Dict[str, float]:
        coef = model.named_steps['lasso'].coef_
        return {name: float(b) for name, b in zip(feature_names, coef) if b != 0.0}

    def describe(self, model: Pipeline, X: np.ndarray, y: np.ndarray,
                 feature_names: Sequence[str]) -> Dict[str, Any]:
        alpha = float(model.named_steps['lasso'].alpha)
        coef = model.named_steps['lasso'].coef_

        selected = [name for name, b in zip(feature_names, coef) if b != 0.0]
        dropped = [name for name, b in zip(feature_names, coef) if b == 0.0]

        self.logger.info(f"Optimal lambda: {alpha:.6f}")
        self.logger.info(f"Features selected: {len(selected)}/{len(feature_names)}")
        if dropped:
            self.logger.info(f"Features dropped: {', '.join(dropped)}")
        self.log_feature_importance(
            [{'name': n, 'coefficient': float(b)} for n, b in zip(feature_names, coef) if b != 0.0],
            model_type="Lasso",
        )

        return {
            'lambda': alpha,
            'n_selected': len(selected),
            'n_dropped': len(dropped),
            'dropped': dropped,
            'sparsity_percent': 100.0 * len(dropped) / max(len(feature_names), 1),
            'intercept': float(model.named_steps['lasso'].intercept_),
            'n_iter': int(model.named_steps['lasso'].n_iter_),
        }
