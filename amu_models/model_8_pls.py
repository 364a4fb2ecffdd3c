"""
model_8_pls.py
==============
Model 8: Partial Least Squares Regression

Components are built to maximize covariance with y (supervised), unlike
PCR. Predictors are scaled inside PLSRegression.
"""

from typing import Any, Dict, Sequence

import numpy as np
from sklearn.cross_decomposition import PLSRegression

from .model_7_pcr import ComponentModel


class Model8PLS(ComponentModel):
    """Model 8: PLS regression on the first M latent components"""

    key = 'pls'

    def __init__(self, random_seed: int = 1, max_iter: int = 500):
        super().__init__(model_id=8, model_name="Partial Least Squares", random_seed=random_seed)
        self.max_iter = max_iter

    def _fit_core(self, X: np.ndarray, y: np.ndarray, param: Any) -> PLSRegression:
        model = PLSRegression(n_components=int(param), scale=True, max_iter=self.max_iter)
        model.fit(X, y)
        return model

    def _predict_core(self, model: PLSRegression, X: np.ndarray) -> np.ndarray:
        return model.predict(X)

    def describe(self, model: PLSRegression, X: np.ndarray, y: np.ndarray,
                 feature_names: Sequence[str]) -> Dict[str, Any]:
        # Share of y variance captured by each successive component
        y_centered = y - y.mean()
        total = float(y_centered @ y_centered)
        explained = []
        scores = model.x_scores_
        for m in range(1, model.n_components + 1):
            T = scores[:, :m]
            fitted = T @ np.linalg.lstsq(T, y_centered, rcond=None)[0]
            explained.append(float(fitted @ fitted) / total if total > 0 else 0.0)

        self.logger.info(f"Components: {model.n_components}")
        self.logger.info(f"Variance of y explained: {explained[-1] * 100:.1f}%")
        return {
            'n_components': int(model.n_components),
            'y_explained_by_components': explained,
            'r2_train': float(model.score(X, y)),
        }
