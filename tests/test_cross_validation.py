"""Tests for the generic k-fold engine and error-curve selection."""

import time

import numpy as np
import pytest

from amu_models.base_model import BaseAMUModel
from amu_models.cross_validation import ErrorCurve, cross_validate
from amu_models.errors import ConfigurationError, FitAbortedError
from amu_models.model_2_subset import Model3ForwardStepwise
from amu_models.model_5_ridge import Model5Ridge
from amu_models.partition import make_folds


class ConstantModel(BaseAMUModel):
    """Predicts the grid value everywhere; records the rows each fit saw."""

    key = "constant"
    tuning_name = "level"

    def __init__(self):
        super().__init__(model_id=99, model_name="Constant")
        self.seen = []

    def default_grid(self, X, y, n_rows=None):
        return [0.0, 1.0, 2.0]

    def _fit_core(self, X, y, param):
        self.seen.append(X[:, 0].astype(int).tolist())
        return float(param)

    def _predict_core(self, model, X):
        return np.full(X.shape[0], model)


def curve(values):
    values = np.asarray(values, dtype=float)
    return ErrorCurve(grid=tuple(range(len(values))), mean_errors=values,
                      fold_errors=values.reshape(1, -1))


class TestErrorCurve:
    def test_selects_minimum(self):
        assert curve([5.0, 3.0, 1.0, 2.0, 4.0]).select() == 2

    def test_flat_curve_prefers_simplest(self):
        assert curve([2.0, 2.0, 2.0, 2.0]).select() == 0

    def test_tie_at_later_minimum(self):
        assert curve([3.0, 1.0, 1.0, 2.0]).select() == 1

    def test_rounding_noise_counts_as_tie(self):
        assert curve([1.0 + 1e-15, 1.0, 2.0]).select() == 0

    def test_non_finite_values_skipped(self):
        assert curve([np.nan, np.inf, 2.0, 3.0]).select() == 2

    def test_all_non_finite(self):
        with pytest.raises(FloatingPointError):
            curve([np.nan, np.inf]).select()

    def test_boundary(self):
        assert curve([1.0, 2.0, 3.0]).at_boundary()
        assert curve([3.0, 2.0, 1.0]).at_boundary()
        assert not curve([3.0, 1.0, 3.0]).at_boundary()
        assert not curve([1.0]).at_boundary()

    def test_selected_values(self):
        c = ErrorCurve(grid=(10, 20, 30), mean_errors=np.array([3.0, 1.0, 2.0]),
                       fold_errors=np.array([[3.0, 1.0, 2.0]]), tuning_name="size")
        assert c.selected_param == 20
        assert c.selected_error == 1.0
        assert c.to_dict()["selected_index"] == 1


class TestCrossValidate:
    @pytest.fixture
    def data(self):
        X = np.arange(20, dtype=float).reshape(-1, 1)
        y = np.full(20, 1.0) + np.linspace(-0.1, 0.1, 20)
        return X, y

    def test_mean_of_fold_errors(self, data):
        X, y = data
        folds = make_folds(20, k=4, seed=1)
        result = cross_validate(X, y, ConstantModel(), folds=folds)

        assert result.fold_errors.shape == (4, 3)
        expected = np.array([[np.mean((y[held] - level) ** 2) for level in (0.0, 1.0, 2.0)]
                             for _, _, held in folds.splits()])
        np.testing.assert_allclose(result.fold_errors, expected)
        np.testing.assert_allclose(result.mean_errors, expected.mean(axis=0))
        assert result.selected_param == 1.0

    def test_each_fit_excludes_its_fold(self, data):
        X, y = data
        folds = make_folds(20, k=5, seed=2)
        model = ConstantModel()
        cross_validate(X, y, model, grid=[1.0], folds=folds)

        assert len(model.seen) == 5
        for (fold, fit_rows, held_out), seen in zip(folds.splits(), model.seen):
            assert sorted(seen) == fit_rows.tolist()
            assert not set(seen) & set(held_out.tolist())

    def test_builds_folds_from_seed(self, data):
        X, y = data
        a = cross_validate(X, y, ConstantModel(), k=5, seed=3)
        b = cross_validate(X, y, ConstantModel(), folds=make_folds(20, k=5, seed=3))
        np.testing.assert_array_equal(a.fold_errors, b.fold_errors)

    def test_parallel_matches_serial(self, regression_data):
        X, y = regression_data
        folds = make_folds(len(y), k=5, seed=1)
        grid = [100.0, 10.0, 1.0, 0.1]
        serial = cross_validate(X, y, Model5Ridge(), grid=grid, folds=folds, n_jobs=1)
        parallel = cross_validate(X, y, Model5Ridge(), grid=grid, folds=folds, n_jobs=2)
        np.testing.assert_allclose(serial.mean_errors, parallel.mean_errors)

    def test_subset_path_curve(self, regression_data):
        X, y = regression_data
        result = cross_validate(X, y, Model3ForwardStepwise(), k=5, seed=1)
        assert result.grid == (1, 2, 3, 4)
        # y depends on columns 0 and 2; one column alone is clearly worse
        assert result.mean_errors[0] > result.mean_errors[1]

    def test_infeasible_grid_rejected_before_fitting(self, regression_data):
        X, y = regression_data
        model = Model3ForwardStepwise()
        with pytest.raises(ConfigurationError):
            cross_validate(X, y, model, grid=[1, 2, 50], k=5)

    def test_empty_grid(self, data):
        X, y = data
        with pytest.raises(ConfigurationError):
            cross_validate(X, y, ConstantModel(), grid=[], k=5)

    def test_fold_rows_mismatch(self, data):
        X, y = data
        with pytest.raises(ConfigurationError):
            cross_validate(X, y, ConstantModel(), folds=make_folds(10, k=5))

    def test_too_many_folds(self, data):
        X, y = data
        with pytest.raises(ConfigurationError):
            cross_validate(X[:5], y[:5], ConstantModel(), k=10)

    def test_deadline_aborts(self, data):
        X, y = data
        model = ConstantModel()
        with pytest.raises(FitAbortedError):
            cross_validate(X, y, model, k=5, deadline=time.time() - 1.0)
        assert model.seen == []
