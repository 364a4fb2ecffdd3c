"""Shared synthetic farm tables and config builders for the harness tests."""

import numpy as np
import pandas as pd
import pytest

TARGET = "total_mg_pcu"


@pytest.fixture
def linear_table():
    """10 farms, 3 continuous predictors, y = 1 + 2 x1 - x2 + 0.5 x3 + N(0, 0.1^2), seed 0."""
    rng = np.random.RandomState(0)
    X = rng.normal(size=(10, 3))
    noise = rng.normal(scale=0.1, size=10)
    y = 1.0 + 2.0 * X[:, 0] - X[:, 1] + 0.5 * X[:, 2] + noise
    return pd.DataFrame({"x1": X[:, 0], "x2": X[:, 1], "x3": X[:, 2], TARGET: y})


@pytest.fixture
def collinear_table():
    """40 farms; x1_copy duplicates x1 exactly, noise_col carries no signal."""
    rng = np.random.RandomState(3)
    x1 = rng.normal(size=40)
    noise_col = rng.normal(size=40)
    y = 3.0 * x1 + rng.normal(scale=0.5, size=40)
    return pd.DataFrame({"x1": x1, "x1_copy": x1.copy(), "noise_col": noise_col, TARGET: y})


@pytest.fixture
def mixed_table():
    """40 farms with numeric and categorical management attributes."""
    rng = np.random.RandomState(7)
    n = 40
    herd_size = rng.randint(50, 500, size=n).astype(float)
    pig_share = rng.uniform(0, 1, size=n)
    system = np.array(["dairy", "beef", "mixed", "beef"] * 10)
    region = np.array([1, 2, 3, 4, 5] * 8)
    y = (0.01 * herd_size + 4.0 * pig_share + (system == "dairy") * 2.0
         + rng.normal(scale=0.5, size=n))
    return pd.DataFrame({
        "herd_size": herd_size,
        "pig_share": pig_share,
        "system": system,
        "region": region,
        TARGET: y,
    })


@pytest.fixture
def regression_data():
    """30 x 4 numeric design with a strong signal on column 0."""
    rng = np.random.RandomState(11)
    X = rng.normal(size=(30, 4))
    y = 5.0 * X[:, 0] - 1.0 * X[:, 2] + rng.normal(scale=0.3, size=30)
    return X, y


@pytest.fixture
def make_config(tmp_path):
    """Build an in-memory orchestrator config writing into tmp_path."""

    def _make(models, model_settings=None, pipeline_settings=None, **data_settings):
        data = {
            "target": TARGET,
            "categorical_fields": [],
            "train_fraction": 0.5,
            "random_seed": 1,
            "cv_folds": 5,
        }
        data.update(data_settings)
        pipeline = {"n_jobs": 1, "top_n_features": 10, "family_timeout_seconds": None,
                    "prediction_models": []}
        pipeline.update(pipeline_settings or {})
        return {
            "scenario_name": "test",
            "description": "synthetic",
            "data_settings": data,
            "models_to_run": list(models),
            "model_settings": model_settings or {},
            "pipeline_settings": pipeline,
            "output_settings": {"output_base_dir": str(tmp_path / "output"),
                                "log_dir": str(tmp_path / "logs")},
        }

    return _make
