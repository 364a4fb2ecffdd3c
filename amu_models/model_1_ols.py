"""
model_1_ols.py
==============
Model 1: Ordinary Least Squares

Closed-form least squares with an intercept on the raw design matrix.
No hyperparameter. When the training rows cannot identify every
coefficient (p >= n - 1, or a collinear/zero column) the fit raises
RankDeficiencyError instead of returning minimum-norm coefficients.
"""

from typing import Any, Dict, Sequence

import numpy as np
import statsmodels.api as sm

from .base_model import BaseAMUModel
from .errors import RankDeficiencyError


class Model1OLS(BaseAMUModel):
    """
    Model 1: OLS via statsmodels

    The fitted model is a statsmodels RegressionResults, which also gives
    standard errors and p-values for the coefficient table.
    """

    key = 'ols'

    def __init__(self, random_seed: int = 1, rank_tol: float = None):
        super().__init__(model_id=1, model_name="Ordinary Least Squares", random_seed=random_seed)
        self.rank_tol = rank_tol

    def _fit_core(self, X: np.ndarray, y: np.ndarray, param: Any) -> Any:
        X_with_const = sm.add_constant(X, has_constant='add')
        n_rows, n_params = X_with_const.shape

        if n_rows - n_params < 1:
            raise RankDeficiencyError(
                f"OLS needs more rows than coefficients: {n_rows} rows, {n_params} coefficients "
                f"(residual degrees of freedom {n_rows - n_params})",
                n_rows=n_rows, n_columns=n_params,
            )

        rank = int(np.linalg.matrix_rank(X_with_const, tol=self.rank_tol))
        if rank < n_params:
            raise RankDeficiencyError(
                f"OLS design has rank {rank} < {n_params} coefficients (collinear or constant columns)",
                n_rows=n_rows, n_columns=n_params, rank=rank,
            )

        return sm.OLS(y, X_with_const).fit()

    def _predict_core(self, model: Any, X: np.ndarray) -> np.ndarray:
        return model.predict(sm.add_constant(X, has_constant='add'))

    def describe(self, model: Any, X: np.ndarray, y: np.ndarray,
                 feature_names: Sequence[str]) -> Dict[str, Any]:
        coefficients = []
        for i, name in enumerate(feature_names, 1):
            coefficients.append({
                'name': name,
                'coefficient': float(model.params[i]),
                'std_error': float(model.bse[i]),
                'p_value': float(model.pvalues[i]),
            })
        self.log_feature_importance(coefficients, model_type="OLS")
        return {
            'intercept': float(model.params[0]),
            'r2_train': float(model.rsquared),
            'df_resid': float(model.df_resid),
            'condition_number': float(model.condition_number),
            'aic': float(model.aic),
            'bic': float(model.bic),
        }
