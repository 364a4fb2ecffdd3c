"""Tests for the thirteen model-family adapters."""

import itertools

import numpy as np
import pytest
from scipy import stats

from amu_models.errors import ConfigurationError, NumericInstabilityWarning, RankDeficiencyError
from amu_models.model_1_ols import Model1OLS
from amu_models.model_2_subset import (Model2BestSubset, Model3ForwardStepwise,
                                       Model4BackwardStepwise, least_squares_fit)
from amu_models.model_5_ridge import Model5Ridge
from amu_models.model_6_lasso import Model6Lasso
from amu_models.model_7_pcr import Model7PCR
from amu_models.model_8_pls import Model8PLS
from amu_models.model_9_tree import Model9Tree
from amu_models.model_10_bagging import Model10Bagging
from amu_models.model_11_random_forest import Model11RandomForest
from amu_models.model_12_boosting import Model12Boosting
from amu_models.model_13_bart import Model13BART

FEATURES = ["a", "b", "c", "d"]


def fast_adapters():
    """One instance per family, with ensemble sizes cut down for test speed."""
    return [
        Model1OLS(),
        Model2BestSubset(),
        Model3ForwardStepwise(),
        Model4BackwardStepwise(),
        Model5Ridge(),
        Model6Lasso(),
        Model7PCR(),
        Model8PLS(),
        Model9Tree(),
        Model10Bagging(n_estimators=25, n_repeats=3),
        Model11RandomForest(n_estimators=25, n_repeats=3),
        Model12Boosting(n_estimators=60),
        Model13BART(n_trees=8, n_burn=20, n_draws=20),
    ]


@pytest.mark.parametrize("adapter", fast_adapters(), ids=lambda a: a.key)
def test_fit_predict_deterministic(adapter, regression_data):
    X, y = regression_data
    grid = adapter.default_grid(X, y)
    param = grid[len(grid) // 2]

    first = adapter.predict(adapter.fit(X, y, param), X)
    second = adapter.predict(adapter.fit(X, y, param), X)

    assert first.shape == (X.shape[0],)
    assert np.isfinite(first).all()
    np.testing.assert_array_equal(first, second)


@pytest.mark.parametrize("adapter", fast_adapters(), ids=lambda a: a.key)
def test_describe_and_importance(adapter, regression_data):
    X, y = regression_data
    grid = adapter.default_grid(X, y)
    model = adapter.fit(X, y, grid[-1])

    assert isinstance(adapter.describe(model, X, y, FEATURES), dict)
    scores = adapter.importance(model, X, y, FEATURES)
    if adapter.has_importance:
        assert set(scores) <= set(FEATURES)
    else:
        assert scores is None


def test_unique_keys_and_ids():
    adapters = fast_adapters()
    assert len({a.key for a in adapters}) == 13
    assert sorted(a.model_id for a in adapters) == list(range(1, 14))


def test_predict_requires_model():
    with pytest.raises(ValueError):
        Model1OLS().predict(None, np.zeros((2, 2)))


# ============================================================================
# OLS
# ============================================================================

class TestOLS:
    def test_recovers_coefficients(self):
        rng = np.random.RandomState(0)
        X = rng.normal(size=(50, 2))
        y = 1.0 + 2.0 * X[:, 0] - 3.0 * X[:, 1]
        model = Model1OLS().fit(X, y)
        np.testing.assert_allclose(model.params, [1.0, 2.0, -3.0], atol=1e-8)

    def test_more_columns_than_rows(self):
        X = np.random.RandomState(0).normal(size=(4, 4))
        with pytest.raises(RankDeficiencyError) as info:
            Model1OLS().fit(X, np.arange(4.0))
        assert info.value.n_rows == 4
        assert info.value.n_columns == 5

    def test_collinear_columns(self):
        x = np.random.RandomState(1).normal(size=20)
        X = np.column_stack([x, 2.0 * x])
        with pytest.raises(RankDeficiencyError) as info:
            Model1OLS().fit(X, x)
        assert info.value.rank == 2

    def test_describe_reports_fit(self, regression_data):
        X, y = regression_data
        ols = Model1OLS()
        details = ols.describe(ols.fit(X, y), X, y, FEATURES)
        assert details["df_resid"] == X.shape[0] - X.shape[1] - 1
        assert 0.9 < details["r2_train"] <= 1.0


# ============================================================================
# SUBSET SELECTION
# ============================================================================

class TestSubsetSelection:
    @pytest.fixture
    def sparse_data(self):
        rng = np.random.RandomState(5)
        X = rng.normal(size=(40, 5))
        y = 2.0 * X[:, 0] - 3.0 * X[:, 2] + rng.normal(scale=0.1, size=40)
        return X, y

    @pytest.mark.parametrize("cls", [Model2BestSubset, Model3ForwardStepwise, Model4BackwardStepwise])
    def test_finds_true_pair(self, cls, sparse_data):
        X, y = sparse_data
        model = cls().fit(X, y, 2)
        assert model.columns == (0, 2)
        np.testing.assert_allclose(model.coef, [2.0, -3.0], atol=0.1)

    def test_path_has_one_model_per_size(self, sparse_data):
        X, y = sparse_data
        adapter = Model2BestSubset()
        grid = adapter.default_grid(X, y)
        assert grid == [1, 2, 3, 4, 5]
        path = adapter.fit_path(X, y, grid)
        assert [len(m.columns) for m in path] == grid
        rss = [m.rss for m in path]
        assert all(a >= b - 1e-9 for a, b in zip(rss, rss[1:]))

    def test_tie_goes_to_first_column(self):
        rng = np.random.RandomState(2)
        x = rng.normal(size=30)
        X = np.column_stack([x, x, rng.normal(size=30)])
        y = x + rng.normal(scale=0.1, size=30)
        assert Model2BestSubset().fit(X, y, 1).columns == (0,)
        assert Model3ForwardStepwise().fit(X, y, 1).columns == (0,)

    def test_best_subset_budget(self):
        with pytest.raises(ConfigurationError):
            Model2BestSubset().check_grid(list(range(1, 29)), n_rows=100, n_features=28)

    def test_budget_size(self):
        # 28 + 378 + 3,276 + 20,475 + 98,280 = 122,437 subsets up to size 5
        assert Model2BestSubset().budget_size(28) == 5
        assert Model2BestSubset(max_subsets=5).budget_size(5) == 1
        assert Model2BestSubset().budget_size(4) == 4

    def test_default_grid_clipped_to_budget(self):
        rng = np.random.RandomState(8)
        X = rng.normal(size=(30, 10))
        y = X[:, 1] + rng.normal(size=30)
        adapter = Model2BestSubset(max_subsets=200)
        with pytest.warns(NumericInstabilityWarning):
            grid = adapter.default_grid(X, y)
        # 10 + 45 + 120 = 175 <= 200 < 385
        assert grid == [1, 2, 3]
        assert "sizes 4-10" in adapter.grid_note
        adapter.check_grid(grid, n_rows=30, n_features=10)

    def test_default_grid_within_budget_has_no_note(self, sparse_data):
        X, y = sparse_data
        adapter = Model2BestSubset()
        assert adapter.default_grid(X, y) == [1, 2, 3, 4, 5]
        assert adapter.grid_note is None

    def test_batches_match_single_pass(self):
        rng = np.random.RandomState(6)
        X = rng.normal(size=(25, 8))
        y = X[:, 2] - 2.0 * X[:, 5] + 0.5 * X[:, 7] + rng.normal(scale=0.5, size=25)
        sizes = [1, 2, 3, 4]
        whole = Model2BestSubset().fit_path(X, y, sizes)
        batched = Model2BestSubset(batch_size=7).fit_path(X, y, sizes)
        assert [m.columns for m in whole] == [m.columns for m in batched]

    def test_best_subset_matches_brute_force(self):
        rng = np.random.RandomState(12)
        X = rng.normal(size=(20, 6))
        y = X @ rng.normal(size=6) + rng.normal(size=20)
        for size in (1, 2, 3):
            fits = [least_squares_fit(X, y, cols) for cols in itertools.combinations(range(6), size)]
            expected = min(fits, key=lambda f: f.rss).columns
            assert Model2BestSubset().fit(X, y, size).columns == expected

    def test_backward_needs_full_model(self):
        with pytest.raises(ConfigurationError):
            Model4BackwardStepwise().check_grid([1, 2], n_rows=6, n_features=5)

    def test_size_infeasible_for_rows(self):
        with pytest.raises(ConfigurationError):
            Model3ForwardStepwise().check_grid([1, 2, 3, 4], n_rows=5, n_features=10)

    def test_least_squares_fit_matches_lstsq(self, sparse_data):
        X, y = sparse_data
        fit = least_squares_fit(X, y, [2, 0])
        design = np.column_stack([np.ones(len(y)), X[:, [0, 2]]])
        expected = np.linalg.lstsq(design, y, rcond=None)[0]
        assert fit.columns == (0, 2)
        np.testing.assert_allclose([fit.intercept, *fit.coef], expected, atol=1e-10)

    def test_importance_is_selected_coefficients(self, sparse_data):
        X, y = sparse_data
        adapter = Model3ForwardStepwise()
        scores = adapter.importance(adapter.fit(X, y, 2), X, y, ["v0", "v1", "v2", "v3", "v4"])
        assert set(scores) == {"v0", "v2"}


# ============================================================================
# RIDGE / LASSO
# ============================================================================

class TestRidgeLasso:
    def test_ridge_grid_descending(self, regression_data):
        X, y = regression_data
        grid = Model5Ridge().default_grid(X, y)
        assert len(grid) == 100
        assert grid[0] == pytest.approx(1e4)
        assert grid[-1] == pytest.approx(1e-2)
        assert all(a > b for a, b in zip(grid, grid[1:]))

    def test_lasso_grid_descending(self, regression_data):
        X, y = regression_data
        grid = Model6Lasso().default_grid(X, y)
        assert grid[0] == pytest.approx(10.0)
        assert grid[-1] == pytest.approx(1e-3)

    def test_ridge_keeps_every_coefficient(self, regression_data):
        X, y = regression_data
        ridge = Model5Ridge()
        coef = ridge.fit(X, y, 10.0).named_steps["ridge"].coef_
        assert (coef != 0).all()

    def test_ridge_duplicate_columns_share_weight(self, collinear_table):
        X = collinear_table[["x1", "x1_copy", "noise_col"]].to_numpy()
        y = collinear_table["total_mg_pcu"].to_numpy()
        coef = Model5Ridge().fit(X, y, 1.0).named_steps["ridge"].coef_
        assert coef[0] != 0 and coef[1] != 0
        assert coef[0] == pytest.approx(coef[1], rel=1e-6)

    def test_lasso_zeroes_coefficients(self, collinear_table):
        X = collinear_table[["x1", "x1_copy", "noise_col"]].to_numpy()
        y = collinear_table["total_mg_pcu"].to_numpy()
        lasso = Model6Lasso()
        coef = lasso.fit(X, y, 1.0).named_steps["lasso"].coef_
        assert (coef == 0).any()
        assert coef[2] == 0.0
        # The duplicate pair is not split evenly: one side carries the weight
        assert min(abs(coef[0]), abs(coef[1])) < 1e-8 * max(abs(coef[0]), abs(coef[1]))

    def test_lasso_importance_only_nonzero(self, collinear_table):
        X = collinear_table[["x1", "x1_copy", "noise_col"]].to_numpy()
        y = collinear_table["total_mg_pcu"].to_numpy()
        lasso = Model6Lasso()
        scores = lasso.importance(lasso.fit(X, y, 1.0), X, y, ["x1", "x1_copy", "noise_col"])
        assert "noise_col" not in scores
        assert all(v != 0 for v in scores.values())

    def test_lasso_large_penalty_drops_everything(self, regression_data):
        X, y = regression_data
        lasso = Model6Lasso()
        model = lasso.fit(X, y, 1e3)
        assert lasso.importance(model, X, y, FEATURES) == {}
        assert lasso.describe(model, X, y, FEATURES)["n_selected"] == 0

    def test_ridge_describe(self, regression_data):
        X, y = regression_data
        ridge = Model5Ridge()
        details = ridge.describe(ridge.fit(X, y, 1.0), X, y, FEATURES)
        assert 0 < details["effective_dof"] < X.shape[1]
        assert details["condition_number_after"] <= details["condition_number_before"]


# ============================================================================
# PCR / PLS
# ============================================================================

class TestComponents:
    @pytest.mark.parametrize("cls", [Model7PCR, Model8PLS])
    def test_grid_bounded_by_rows_and_columns(self, cls, regression_data):
        X, y = regression_data
        assert cls().default_grid(X, y) == [1, 2, 3, 4]
        assert cls().default_grid(X, y, n_rows=3) == [1, 2]

    @pytest.mark.parametrize("cls", [Model7PCR, Model8PLS])
    def test_infeasible_component_count(self, cls):
        with pytest.raises(ConfigurationError):
            cls().check_grid([1, 5], n_rows=20, n_features=4)

    def test_pcr_full_rank_equals_least_squares(self, regression_data):
        X, y = regression_data
        pcr = Model7PCR()
        pred = pcr.predict(pcr.fit(X, y, 4), X)
        ols = Model1OLS()
        expected = ols.predict(ols.fit(X, y), X)
        np.testing.assert_allclose(pred, expected, atol=1e-8)

    def test_pls_explained_variance_increases(self, regression_data):
        X, y = regression_data
        pls = Model8PLS()
        details = pls.describe(pls.fit(X, y, 3), X, y, FEATURES)
        explained = details["y_explained_by_components"]
        assert len(explained) == 3
        assert all(a <= b + 1e-12 for a, b in zip(explained, explained[1:]))


# ============================================================================
# TREES AND ENSEMBLES
# ============================================================================

class TestTree:
    @pytest.fixture
    def step_data(self):
        rng = np.random.RandomState(4)
        X = rng.uniform(-1, 1, size=(60, 3))
        y = np.where(X[:, 0] > 0, 10.0, 0.0) + rng.normal(scale=0.2, size=60)
        return X, y

    def test_grid_runs_from_root_to_full_tree(self, step_data):
        X, y = step_data
        tree = Model9Tree()
        grid = tree.default_grid(X, y)
        assert all(a > b for a, b in zip(grid, grid[1:]))
        assert grid[-1] == 0.0
        assert tree.fit(X, y, grid[0]).get_n_leaves() == 1
        assert tree.fit(X, y, grid[-1]).get_n_leaves() >= 2

    def test_first_split_on_signal(self, step_data):
        X, y = step_data
        tree = Model9Tree()
        model = tree.fit(X, y, 0.0)
        assert model.tree_.feature[0] == 0
        details = tree.describe(model, X, y, ["x0", "x1", "x2"])
        assert "x0" in details["variables_used"]

    def test_min_leaf_size(self, step_data):
        X, y = step_data
        model = Model9Tree().fit(X, y, 0.0)
        leaves = model.tree_.children_left == -1
        assert (model.tree_.n_node_samples[leaves] >= 5).all()


class TestEnsembles:
    def test_bagging_uses_all_predictors(self, regression_data):
        X, y = regression_data
        assert Model10Bagging().default_grid(X, y) == [4]
        assert Model11RandomForest().default_grid(X, y) == [1]

    def test_random_forest_identity(self):
        rf = Model11RandomForest()
        assert rf.model_id == 11
        assert rf.key == "random_forest"
        assert rf.model_name == "Random Forest"

    def test_max_features_bounds(self):
        with pytest.raises(ConfigurationError):
            Model10Bagging().check_grid([5], n_rows=20, n_features=4)

    @pytest.mark.parametrize("cls", [Model10Bagging, Model11RandomForest])
    def test_permutation_importance_finds_signal(self, cls, regression_data):
        X, y = regression_data
        adapter = cls(n_estimators=50, n_repeats=5)
        scores = adapter.importance(adapter.fit(X, y), X, y, FEATURES)
        assert max(scores, key=scores.get) == "a"

    def test_boosting_relative_influence(self, regression_data):
        X, y = regression_data
        adapter = Model12Boosting(n_estimators=100)
        scores = adapter.importance(adapter.fit(X, y), X, y, FEATURES)
        assert sum(scores.values()) == pytest.approx(100.0)
        assert max(scores, key=scores.get) == "a"


class TestBART:
    def test_tracks_signal(self, regression_data):
        X, y = regression_data
        bart = Model13BART(n_trees=10, n_burn=50, n_draws=50)
        model = bart.fit(X, y)
        pred = bart.predict(model, X)
        assert np.corrcoef(pred, y)[0, 1] > 0.5
        assert len(model.draws) == 50
        assert model.sigma.shape == (50,)

    def test_inclusion_proportions(self, regression_data):
        X, y = regression_data
        bart = Model13BART(n_trees=10, n_burn=50, n_draws=50)
        model = bart.fit(X, y)
        scores = bart.importance(model, X, y, FEATURES)
        assert all(0.0 <= v <= 1.0 for v in scores.values())
        assert sum(scores.values()) <= 1.0 + 1e-9
        assert max(scores, key=scores.get) == "a"

    def test_variance_prior_calibration(self, regression_data):
        X, y = regression_data
        bart = Model13BART()
        sigma_hat = 0.2
        lam = bart._lambda(sigma_hat)
        # P(sigma^2 < sigma_hat^2) = q under sigma^2 = nu * lambda / chi2_nu
        prob = 1.0 - stats.chi2.cdf(bart.nu * lam / sigma_hat ** 2, bart.nu)
        assert prob == pytest.approx(bart.q)

    def test_posterior_draws_on_original_scale(self, regression_data):
        X, y = regression_data
        bart = Model13BART(n_trees=5, n_burn=10, n_draws=10)
        model = bart.fit(X, y + 1000.0)
        assert bart.predict(model, X).mean() == pytest.approx((y + 1000.0).mean(), abs=0.1 * np.ptp(y))
