"""
model_12_boosting.py
====================
Model 12: Gradient Boosted Regression Trees

Shallow trees are fit in sequence to the residuals of the current
ensemble, each shrunk by the learning rate. Fixed number of rounds and
interaction depth; each round sees a random half of the fitting rows.
"""

from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from sklearn.ensemble import GradientBoostingRegressor

from .base_model import BaseAMUModel


class Model12Boosting(BaseAMUModel):
    """
    Model 12: boosting

    Importance is relative influence: the impurity reduction credited to
    each predictor, summed over trees and normalized.
    """

    key = 'boosting'
    tuning_name = 'n_estimators'
    has_importance = True

    def __init__(self, random_seed: int = 1, n_estimators: int = 1000,
                 learning_rate: float = 0.01, max_depth: int = 4, subsample: float = 0.5):
        super().__init__(model_id=12, model_name="Boosting", random_seed=random_seed)
        self.n_estimators = n_estimators
        self.learning_rate = learning_rate
        self.max_depth = max_depth
        self.subsample = subsample

    def default_grid(self, X: np.ndarray, y: np.ndarray, n_rows: Optional[int] = None) -> List[Any]:
        return [self.n_estimators]

    def param_feasible(self, param: Any, n_rows: int, n_features: int) -> bool:
        return param is None or int(param) >= 1

    def _fit_core(self, X: np.ndarray, y: np.ndarray, param: Any) -> GradientBoostingRegressor:
        model = GradientBoostingRegressor(
            loss='squared_error',
            n_estimators=self.n_estimators if param is None else int(param),
            learning_rate=self.learning_rate,
            max_depth=self.max_depth,
            subsample=self.subsample,
            random_state=self.random_seed,
        )
        model.fit(X, y)
        return model

    def _predict_core(self, model: GradientBoostingRegressor, X: np.ndarray) -> np.ndarray:
        return model.predict(X)

    def importance(self, model: GradientBoostingRegressor, X: np.ndarray, y: np.ndarray,
                   feature_names: Sequence[str]) -> Dict[str, float]:
        # Scaled to percent, as relative influence is usually reported
        return {name: float(v) * 100.0 for name, v in zip(feature_names, model.feature_importances_)}

    def describe(self, model: GradientBoostingRegressor, X: np.ndarray, y: np.ndarray,
                 feature_names: Sequence[str]) -> Dict[str, Any]:
        self.logger.info(f"Rounds: {model.n_estimators_}, learning rate: {self.learning_rate}, "
                         f"depth: {self.max_depth}, subsample: {self.subsample}")
        return {
            'n_estimators': int(model.n_estimators_),
            'learning_rate': self.learning_rate,
            'max_depth': self.max_depth,
            'subsample': self.subsample,
            'train_loss_final': float(model.train_score_[-1]),
        }
