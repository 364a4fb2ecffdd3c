"""
model_7_pcr.py
==============
Model 7: Principal Component Regression

Standardize, project onto the first M principal components of X
(unsupervised), then regress y on those scores. M is chosen by CV error,
not by explained variance.
"""

from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from sklearn.decomposition import PCA
from sklearn.linear_model import LinearRegression
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler

from .base_model import BaseAMUModel
from .errors import ConfigurationError


class ComponentModel(BaseAMUModel):
    """Shared grid handling for the component-count families (PCR, PLS)"""

    tuning_name = 'components'

    def max_components(self, n_rows: int, n_features: int) -> int:
        return min(n_features, n_rows - 1)

    def default_grid(self, X: np.ndarray, y: np.ndarray, n_rows: Optional[int] = None) -> List[Any]:
        n_rows = X.shape[0] if n_rows is None else n_rows
        return list(range(1, self.max_components(n_rows, X.shape[1]) + 1))

    def check_rows(self, n_rows: int, n_features: int) -> None:
        super().check_rows(n_rows, n_features)
        if self.max_components(n_rows, n_features) < 1:
            raise ConfigurationError(f"{self.model_name}: no component count fits {n_rows} rows")

    def param_feasible(self, param: Any, n_rows: int, n_features: int) -> bool:
        return param is not None and 1 <= int(param) <= self.max_components(n_rows, n_features)


class Model7PCR(ComponentModel):
    """Model 7: PCA scores + least squares"""

    key = 'pcr'

    def __init__(self, random_seed: int = 1):
        super().__init__(model_id=7, model_name="Principal Component Regression", random_seed=random_seed)

    def _fit_core(self, X: np.ndarray, y: np.ndarray, param: Any) -> Pipeline:
        model = Pipeline([
            ('scaler', StandardScaler()),
            ('pca', PCA(n_components=int(param), svd_solver='full', random_state=self.random_seed)),
            ('regression', LinearRegression()),
        ])
        model.fit(X, y)
        return model

    def _predict_core(self, model: Pipeline, X: np.ndarray) -> np.ndarray:
        return model.predict(X)

    def describe(self, model: Pipeline, X: np.ndarray, y: np.ndarray,
                 feature_names: Sequence[str]) -> Dict[str, Any]:
        pca = model.named_steps['pca']
        explained = pca.explained_variance_ratio_
        self.logger.info(f"Components: {pca.n_components_}")
        self.logger.info(f"Variance of X explained: {explained.sum() * 100:.1f}%")
        for i, ratio in enumerate(explained, 1):
            self.logger.debug(f"  PC{i}: {ratio * 100:.2f}%")
        return {
            'n_components': int(pca.n_components_),
            'explained_variance_ratio': [float(r) for r in explained],
            'cumulative_explained_variance': float(explained.sum()),
            'r2_train': float(model.score(X, y)),
        }
