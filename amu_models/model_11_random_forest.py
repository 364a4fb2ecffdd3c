"""
model_11_random_forest.py
=========================
Model 11: Random Forest

Bagging with a random subset of about p/3 predictors tried at each split,
which decorrelates the trees.
"""

from .model_10_bagging import Model10Bagging


class Model11RandomForest(Model10Bagging):
    """Model 11: random forest, max_features = max(1, p // 3)"""

    key = 'random_forest'
    model_number = 11
    display_name = "Random Forest"

    def features_per_split(self, n_features: int) -> int:
        return max(1, n_features // 3)
