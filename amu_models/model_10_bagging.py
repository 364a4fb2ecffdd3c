"""
model_10_bagging.py
===================
Model 10: Bagged Regression Trees

B unpruned trees, each grown on a bootstrap resample of the fitting rows
with every predictor available at every split; predictions are averaged.
Bagging is the max_features = p case of a random forest, so Model 11
reuses this adapter with a smaller default.

Importance:
- primary: permutation importance (mean increase in MSE when a column is shuffled)
- details: impurity importance (mean decrease in node RSS)
"""

from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from sklearn.ensemble import RandomForestRegressor
from sklearn.inspection import permutation_importance

from .base_model import BaseAMUModel


class Model10Bagging(BaseAMUModel):
    """
    Model 10: bagging

    Key features:
    - 500 full-depth trees on bootstrap resamples
    - All predictors considered at each split
    - Permutation and impurity importance
    """

    key = 'bagging'
    model_number = 10
    display_name = "Bagging"
    tuning_name = 'max_features'
    has_importance = True

    def __init__(self, random_seed: int = 1, n_estimators: int = 500,
                 n_repeats: int = 10, n_jobs: int = 1):
        super().__init__(model_id=self.model_number, model_name=self.display_name,
                         random_seed=random_seed)
        self.n_estimators = n_estimators
        self.n_repeats = n_repeats
        self.n_jobs = n_jobs

    def features_per_split(self, n_features: int) -> int:
        return n_features

    def default_grid(self, X: np.ndarray, y: np.ndarray, n_rows: Optional[int] = None) -> List[Any]:
        return [self.features_per_split(X.shape[1])]

    def param_feasible(self, param: Any, n_rows: int, n_features: int) -> bool:
        return param is None or 1 <= int(param) <= n_features

    def _fit_core(self, X: np.ndarray, y: np.ndarray, param: Any) -> RandomForestRegressor:
        max_features = self.features_per_split(X.shape[1]) if param is None else int(param)
        model = RandomForestRegressor(
            n_estimators=self.n_estimators,
            max_features=max_features,
            max_depth=None,
            min_samples_split=2,
            min_samples_leaf=1,
            bootstrap=True,
            random_state=self.random_seed,
            n_jobs=self.n_jobs,
        )
        model.fit(X, y)
        return model

    def _predict_core(self, model: RandomForestRegressor, X: np.ndarray) -> np.ndarray:
        return model.predict(X)

    def importance(self, model: RandomForestRegressor, X: np.ndarray, y: np.ndarray,
                   feature_names: Sequence[str]) -> Dict[str, float]:
        result = permutation_importance(
            model, X, y,
            scoring='neg_mean_squared_error',
            n_repeats=self.n_repeats,
            random_state=self.random_seed,
        )
        return {name: float(v) for name, v in zip(feature_names, result.importances_mean)}

    def describe(self, model: RandomForestRegressor, X: np.ndarray, y: np.ndarray,
                 feature_names: Sequence[str]) -> Dict[str, Any]:
        impurity = {name: float(v) for name, v in zip(feature_names, model.feature_importances_)}
        tree_depths = [tree.get_depth() for tree in model.estimators_]

        self.logger.info(f"Trees: {len(model.estimators_)}, predictors per split: {model.max_features}")
        self.logger.info(f"Mean tree depth: {np.mean(tree_depths):.1f}")
        self.log_feature_importance(impurity, model_type=f"{self.model_name} (impurity)", top_n=10)

        return {
            'n_estimators': len(model.estimators_),
            'max_features': int(model.max_features),
            'mean_tree_depth': float(np.mean(tree_depths)),
            'impurity_importance': impurity,
        }
