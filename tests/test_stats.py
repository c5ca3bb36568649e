"""
tests/test_stats.py

Unit tests for dexsim.stats.

The classical t is checked against scipy.stats.ttest_ind; the bundle is
checked for shape, provenance of each column, and the zero-variance
policies.
"""

import pytest
import numpy as np
import pandas as pd
from scipy.stats import ttest_ind
from dexsim import simulate
from dexsim.exceptions import (
    DegenerateVarianceError,
    DimensionMismatchError,
    InvalidDesignError,
)
from dexsim.fit import fit_model
from dexsim.stats import (
    BUNDLE_COLUMNS,
    assemble_bundle,
    classical_t,
    classical_t_all,
    log_fold_change,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(scope="module")
def sim():
    return simulate.simulate_expression(
        n_features=200, n_samples=8, diff_fraction=0.1, seed=1
    )


@pytest.fixture(scope="module")
def fitted(sim):
    matrix, groups, _ = sim
    return fit_model(matrix, groups)


@pytest.fixture
def degenerate():
    """Row 2 has identical values in group 0; row 4 is constant everywhere."""
    rng = np.random.default_rng(0)
    matrix = rng.normal(size=(6, 6))
    matrix[2, :3] = 1.5
    matrix[4, :] = 0.7
    groups = np.array([0, 0, 0, 1, 1, 1])
    return matrix, groups


# ---------------------------------------------------------------------------
# classical_t
# ---------------------------------------------------------------------------

class TestClassicalT:

    def test_matches_scipy_welch(self):
        row = np.array([1.0, 2.0, 1.5, 4.0, 5.5, 3.9, 4.2])
        groups = np.array([0, 0, 0, 1, 1, 1, 1])
        expected = ttest_ind(row[groups == 1], row[groups == 0], equal_var=False).statistic
        assert classical_t(row, groups) == pytest.approx(expected)

    def test_matches_scipy_pooled(self):
        row = np.array([1.0, 2.0, 1.5, 4.0, 5.5, 3.9, 4.2])
        groups = np.array([0, 0, 0, 1, 1, 1, 1])
        expected = ttest_ind(row[groups == 1], row[groups == 0], equal_var=True).statistic
        assert classical_t(row, groups, equal_var=True) == pytest.approx(expected)

    def test_sign_is_group_one_minus_group_zero(self):
        assert classical_t([5.0, 6.0, 1.0, 2.0], [0, 0, 1, 1]) < 0

    def test_returns_float(self):
        assert isinstance(classical_t([1.0, 2.0, 3.0, 5.0], [0, 0, 1, 1]), float)

    def test_zero_variance_raises(self):
        with pytest.raises(DegenerateVarianceError) as excinfo:
            classical_t([1.0, 1.0, 2.0, 3.0], [0, 0, 1, 1], feature_index=17)
        assert excinfo.value.feature_index == 17
        assert "17" in str(excinfo.value)

    def test_single_sample_group_raises(self):
        with pytest.raises(InvalidDesignError):
            classical_t([1.0, 2.0, 3.0], [0, 1, 1])

    def test_length_mismatch_raises(self):
        with pytest.raises(DimensionMismatchError):
            classical_t([1.0, 2.0, 3.0, 4.0], [0, 0, 1])

    def test_nan_raises(self):
        with pytest.raises(ValueError, match="non-finite"):
            classical_t([1.0, np.nan, 2.0, 3.0, 4.0, 5.0], [0, 0, 0, 1, 1, 1])


# ---------------------------------------------------------------------------
# classical_t_all
# ---------------------------------------------------------------------------

class TestClassicalTAll:

    def test_matches_row_by_row(self, sim):
        matrix, groups, _ = sim
        vec = classical_t_all(matrix, groups)
        rows = np.array([classical_t(matrix[i], groups) for i in range(matrix.shape[0])])
        np.testing.assert_allclose(vec, rows)

    def test_raise_reports_first_feature(self, degenerate):
        matrix, groups = degenerate
        with pytest.raises(DegenerateVarianceError) as excinfo:
            classical_t_all(matrix, groups)
        assert excinfo.value.feature_index == 2

    def test_exclude_gives_nan(self, degenerate):
        matrix, groups = degenerate
        t = classical_t_all(matrix, groups, on_degenerate="exclude")
        assert np.isnan(t[[2, 4]]).all()
        assert np.isfinite(np.delete(t, [2, 4])).all()

    def test_infinite_gives_signed_inf(self, degenerate):
        matrix, groups = degenerate
        t = classical_t_all(matrix, groups, on_degenerate="infinite")
        diff = matrix[2, 3:].mean() - matrix[2, :3].mean()
        assert t[2] == np.sign(diff) * np.inf
        # Row 4 has no mean difference either.
        assert t[4] == 0.0

    def test_unknown_policy(self, sim):
        matrix, groups, _ = sim
        with pytest.raises(ValueError, match="Unknown on_degenerate"):
            classical_t_all(matrix, groups, on_degenerate="ignore")

    @pytest.mark.parametrize("policy", ["raise", "exclude", "infinite"])
    def test_non_finite_raises_under_every_policy(self, sim, policy):
        matrix, groups, _ = sim
        bad = matrix.copy()
        bad[5, 1] = np.inf
        with pytest.raises(ValueError, match="non-finite"):
            classical_t_all(bad, groups, on_degenerate=policy)


# ---------------------------------------------------------------------------
# assemble_bundle
# ---------------------------------------------------------------------------

class TestAssembleBundle:

    def test_columns(self, sim, fitted):
        matrix, groups, _ = sim
        bundle = assemble_bundle(matrix, groups, fitted)
        assert list(bundle.columns) == BUNDLE_COLUMNS

    def test_one_row_per_feature(self, sim, fitted):
        matrix, groups, _ = sim
        bundle = assemble_bundle(matrix, groups, fitted)
        assert len(bundle) == 200
        assert bundle["feature"].tolist() == list(range(200))

    def test_columns_come_from_their_sources(self, sim, fitted):
        matrix, groups, _ = sim
        bundle = assemble_bundle(matrix, groups, fitted)
        np.testing.assert_allclose(bundle["classical_t"], classical_t_all(matrix, groups))
        np.testing.assert_allclose(bundle["moderated_t"], fitted["moderated_t"])
        np.testing.assert_allclose(bundle["p_value"], fitted["p_value"])
        np.testing.assert_allclose(bundle["log_fold_change"], log_fold_change(fitted))

    def test_adjusted_p_not_smaller_than_raw(self, sim, fitted):
        matrix, groups, _ = sim
        bundle = assemble_bundle(matrix, groups, fitted)
        assert (bundle["adj_p_value"] >= bundle["p_value"] - 1e-15).all()
        assert bundle["adj_p_value"].between(0, 1).all()

    def test_dataframe_index_names_features(self):
        df = simulate.simulate_expression_frame(seed=0, n_features=20, n_samples=6)
        groups = simulate.get_ground_truth(df)["groups"]
        bundle = assemble_bundle(df, groups, fit_model(df.values, groups))
        assert bundle["feature"].iloc[0] == "gene_0000"

    def test_fit_row_mismatch(self, sim, fitted):
        matrix, groups, _ = sim
        with pytest.raises(DimensionMismatchError):
            assemble_bundle(matrix[:100], groups, fitted)

    def test_group_mismatch(self, sim, fitted):
        matrix, _, _ = sim
        with pytest.raises(DimensionMismatchError):
            assemble_bundle(matrix, [0, 0, 1, 1], fitted)

    def test_degenerate_raise_is_default(self, degenerate):
        matrix, groups = degenerate
        fit = fit_model(matrix, groups)
        with pytest.raises(DegenerateVarianceError):
            assemble_bundle(matrix, groups, fit)

    def test_nan_cell_raises_instead_of_dropping(self, sim, fitted):
        matrix, groups, _ = sim
        bad = matrix.copy()
        bad[3, 0] = np.nan
        with pytest.raises(ValueError, match="non-finite"):
            assemble_bundle(bad, groups, fitted, on_degenerate="exclude")

    def test_degenerate_exclude_warns(self, degenerate):
        matrix, groups = degenerate
        fit = fit_model(matrix, groups)
        with pytest.warns(UserWarning, match="2 feature"):
            bundle = assemble_bundle(matrix, groups, fit, on_degenerate="exclude")
        assert bundle["classical_t"].isna().sum() == 2

    def test_does_not_mutate_fit(self, sim, fitted):
        matrix, groups, _ = sim
        before = fitted.copy()
        assemble_bundle(matrix, groups, fitted)
        pd.testing.assert_frame_equal(fitted, before)
