"""
model_9_tree.py
===============
Model 9: Regression Tree with Cost-Complexity Pruning

Greedy recursive binary splitting on residual sum of squares, stopped by
a minimum node size and a minimum deviance reduction, then pruned back
along the cost-complexity sequence. The CV Engine picks the pruning
strength; the grid runs from the largest alpha (root only) down to 0
(the full grown tree), so ties go to the smaller subtree.
"""

from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from sklearn.tree import DecisionTreeRegressor

from .base_model import BaseAMUModel


class Model9Tree(BaseAMUModel):
    """
    Model 9: single pruned regression tree

    Stopping rules:
    - min_samples_split: smallest node that may be split
    - min_samples_leaf: smallest allowed child
    - mindev: a split must reduce deviance by at least mindev x root deviance
    """

    key = 'tree'
    tuning_name = 'ccp_alpha'

    def __init__(self, random_seed: int = 1, min_samples_split: int = 10,
                 min_samples_leaf: int = 5, mindev: float = 0.01):
        super().__init__(model_id=9, model_name="Regression Tree", random_seed=random_seed)
        self.min_samples_split = min_samples_split
        self.min_samples_leaf = min_samples_leaf
        self.mindev = mindev

    def _grow(self, y: np.ndarray, ccp_alpha: float = 0.0) -> DecisionTreeRegressor:
        # sklearn weights the decrease by node share, so mindev x var(y) equals mindev x root deviance / n
        return DecisionTreeRegressor(
            criterion='squared_error',
            min_samples_split=self.min_samples_split,
            min_samples_leaf=self.min_samples_leaf,
            min_impurity_decrease=self.mindev * float(np.var(y)),
            ccp_alpha=ccp_alpha,
            random_state=self.random_seed,
        )

    def default_grid(self, X: np.ndarray, y: np.ndarray, n_rows: Optional[int] = None) -> List[Any]:
        path = self._grow(y).cost_complexity_pruning_path(X, y)
        alphas = np.unique(np.maximum(path.ccp_alphas, 0.0))
        return [float(a) for a in alphas[::-1]]

    def param_feasible(self, param: Any, n_rows: int, n_features: int) -> bool:
        return param is not None and float(param) >= 0.0

    def _fit_core(self, X: np.ndarray, y: np.ndarray, param: Any) -> DecisionTreeRegressor:
        model = self._grow(y, ccp_alpha=0.0 if param is None else float(param))
        model.fit(X, y)
        return model

    def _predict_core(self, model: DecisionTreeRegressor, X: np.ndarray) -> np.ndarray:
        return model.predict(X)

    def describe(self, model: DecisionTreeRegressor, X: np.ndarray, y: np.ndarray,
                 feature_names: Sequence[str]) -> Dict[str, Any]:
        tree = model.tree_
        used = sorted({feature_names[f] for f in tree.feature if f >= 0})
        self.logger.info(f"Pruned tree: {model.get_n_leaves()} leaves, depth {model.get_depth()}")
        self.logger.info(f"Variables used in splits: {', '.join(used) if used else '(none)'}")
        return {
            'n_leaves': int(model.get_n_leaves()),
            'depth': int(model.get_depth()),
            'variables_used': used,
            'ccp_alpha': float(model.ccp_alpha),
        }
