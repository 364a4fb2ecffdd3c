"""
model_5_ridge.py
================
Model 5: Ridge Regression with L2 Regularization

Predictors are standardized inside the fitted pipeline (scaler fit on the
fitting rows only), then Ridge shrinks every coefficient toward zero
without forcing any to exactly zero. Handles the heavy multicollinearity
of farm management attributes and still fits when p >= n.

Penalty strength is chosen by the CV Engine over a descending grid
(strongest penalty first, i.e. simplest model first).
"""

from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from sklearn.linear_model import Ridge
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler

from .base_model import BaseAMUModel


class Model5Ridge(BaseAMUModel):
    """
    Model 5: Ridge regression

    Key features:
    - L2 penalty on standardized predictors
    - 100-value penalty grid from 1e4 down to 1e-2
    - All features retained (no selection)
    """

    key = 'ridge'
    tuning_name = 'lambda'
    warn_on_boundary = True
    has_importance = True
    coefficient_importance = True

    def __init__(self, random_seed: int = 1, n_alphas: int = 100,
                 alpha_max: float = 1e4, alpha_min: float = 1e-2):
        super().__init__(model_id=5, model_name="Ridge Regression", random_seed=random_seed)
        self.n_alphas = n_alphas
        self.alpha_max = alpha_max
        self.alpha_min = alpha_min

    def default_grid(self, X: np.ndarray, y: np.ndarray, n_rows: Optional[int] = None) -> List[Any]:
        return [float(a) for a in np.logspace(np.log10(self.alpha_max), np.log10(self.alpha_min), self.n_alphas)]

    def param_feasible(self, param: Any, n_rows: int, n_features: int) -> bool:
        return param is not None and float(param) >= 0.0

    def _fit_core(self, X: np.ndarray, y: np.ndarray, param: Any) -> Pipeline:
        model = Pipeline([
            ('scaler', StandardScaler()),
            ('ridge', Ridge(alpha=float(param), fit_intercept=True)),
        ])
        model.fit(X, y)
        return model

    def _predict_core(self, model: Pipeline, X: np.ndarray) -> np.ndarray:
        return model.predict(X)

    def importance(self, model: Pipeline, X: np.ndarray, y: np.ndarray,
                   feature_names: Sequence[str]) -> Dict[str, float]:
        return dict(zip(feature_names, (float(b) for b in model.named_steps['ridge'].coef_)))

    def describe(self, model: Pipeline, X: np.ndarray, y: np.ndarray,
                 feature_names: Sequence[str]) -> Dict[str, Any]:
        alpha = float(model.named_steps['ridge'].alpha)
        coef = model.named_steps['ridge'].coef_
        X_scaled = model.named_steps['scaler'].transform(X)

        # Effective degrees of freedom: trace(X (X'X + lambda I)^-1 X')
        singular_values = np.linalg.svd(X_scaled, compute_uv=False)
        effective_dof = float(np.sum(singular_values ** 2 / (singular_values ** 2 + alpha)))

        XtX = X_scaled.T @ X_scaled
        condition_before = float(np.linalg.cond(XtX))
        condition_after = float(np.linalg.cond(XtX + alpha * np.eye(XtX.shape[0])))

        if alpha < 0.01:
            strength = "Weak"
        elif alpha < 1.0:
            strength = "Moderate"
        else:
            strength = "Strong"

        self.logger.info(f"Optimal lambda: {alpha:.6f} ({strength})")
        self.logger.info(f"Effective degrees of freedom: {effective_dof:.2f} (out of {len(coef)})")
        self.logger.info(f"Condition number before/after regularization: "
                         f"{condition_before:.2f} / {condition_after:.2f}")
        self.log_feature_importance(
            [{'name': n, 'coefficient': float(b)} for n, b in zip(feature_names, coef)],
            model_type="Ridge",
        )

        return {
            'lambda': alpha,
            'regularization_strength': strength,
            'effective_dof': effective_dof,
            'condition_number_before': condition_before,
            'condition_number_after': condition_after,
            'n_nonzero': int(np.sum(coef != 0)),
            'intercept': float(model.named_steps['ridge'].intercept_),
        }
