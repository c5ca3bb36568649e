"""
tests/test_fit.py

Unit tests for dexsim.fit.

Checks the least-squares fit against direct group summaries, the
equivalence of the ordinary t with the classical t, and the behaviour of
the empirical Bayes variance moderation.
"""

import pytest
import numpy as np
import pandas as pd
from scipy import special
from dexsim import simulate
from dexsim.exceptions import DimensionMismatchError, InvalidDesignError
from dexsim.fit import (
    design_matrix,
    ebayes,
    fit_f_dist,
    fit_model,
    lm_fit,
    squeeze_var,
    trigamma_inverse,
)
from dexsim.stats import classical_t, classical_t_all


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(scope="module")
def sim():
    return simulate.simulate_expression(
        n_features=500, n_samples=6, diff_fraction=0.1, true_fold_change=2.0, seed=0
    )


@pytest.fixture(scope="module")
def fitted(sim):
    matrix, groups, _ = sim
    return fit_model(matrix, groups)


# ---------------------------------------------------------------------------
# lm_fit
# ---------------------------------------------------------------------------

class TestLmFit:

    def test_design_has_intercept_and_indicator(self):
        design = design_matrix([0, 0, 1, 1])
        np.testing.assert_array_equal(design, [[1, 0], [1, 0], [1, 1], [1, 1]])

    def test_coefficient_is_group_mean_difference(self, sim):
        matrix, groups, _ = sim
        fit = lm_fit(matrix, groups)
        expected = matrix[:, groups == 1].mean(axis=1) - matrix[:, groups == 0].mean(axis=1)
        np.testing.assert_allclose(fit["coefficient"].values, expected, atol=1e-10)

    def test_intercept_is_group_zero_mean(self, sim):
        matrix, groups, _ = sim
        fit = lm_fit(matrix, groups)
        np.testing.assert_allclose(
            fit["intercept"].values, matrix[:, groups == 0].mean(axis=1), atol=1e-10
        )

    def test_stdev_unscaled(self, sim):
        matrix, groups, _ = sim
        fit = lm_fit(matrix, groups)
        np.testing.assert_allclose(fit["stdev_unscaled"].values, np.sqrt(1 / 3 + 1 / 3))

    def test_sigma_is_pooled_sd(self, sim):
        matrix, groups, _ = sim
        fit = lm_fit(matrix, groups)
        pooled = (
            matrix[:, groups == 0].var(axis=1, ddof=1)
            + matrix[:, groups == 1].var(axis=1, ddof=1)
        ) / 2
        np.testing.assert_allclose(fit["sigma"].values ** 2, pooled, rtol=1e-8)

    def test_df_residual(self, sim):
        matrix, groups, _ = sim
        fit = lm_fit(matrix, groups)
        assert (fit["df_residual"] == 4).all()


# ---------------------------------------------------------------------------
# Ordinary t ↔ classical t equivalence
# ---------------------------------------------------------------------------

class TestOrdinaryTEquivalence:

    def test_ordinary_t_matches_welch_for_equal_groups(self, sim, fitted):
        matrix, groups, _ = sim
        ct = classical_t_all(matrix, groups)
        assert np.max(np.abs(fitted["ordinary_t"].values - ct)) < 1e-6

    def test_ordinary_t_matches_single_row_classical_t(self, sim, fitted):
        matrix, groups, _ = sim
        for i in range(0, 500, 50):
            assert abs(fitted["ordinary_t"].iloc[i] - classical_t(matrix[i], groups)) < 1e-6

    def test_ordinary_t_matches_pooled_t_for_unequal_groups(self):
        rng = np.random.default_rng(4)
        matrix = rng.normal(size=(50, 7))
        groups = np.array([0, 0, 0, 0, 1, 1, 1])
        fit = fit_model(matrix, groups)
        ct = classical_t_all(matrix, groups, equal_var=True)
        assert np.max(np.abs(fit["ordinary_t"].values - ct)) < 1e-6

    def test_ordinary_t_derived_from_raw_outputs(self, fitted):
        derived = fitted["coefficient"] / (fitted["stdev_unscaled"] * fitted["sigma"])
        np.testing.assert_allclose(fitted["ordinary_t"].values, derived.values)


# ---------------------------------------------------------------------------
# ebayes / squeeze_var
# ---------------------------------------------------------------------------

class TestEbayes:

    def test_expected_columns(self, fitted):
        for col in ["coefficient", "stdev_unscaled", "sigma", "df_residual", "s2_prior",
                    "df_prior", "s2_post", "ordinary_t", "moderated_t", "df_total", "p_value"]:
            assert col in fitted.columns

    def test_one_row_per_feature(self, fitted):
        assert len(fitted) == 500

    def test_posterior_variance_between_raw_and_prior(self, fitted):
        s2 = fitted["sigma"].values ** 2
        prior = fitted["s2_prior"].iloc[0]
        post = fitted["s2_post"].values
        assert np.isfinite(fitted["df_prior"].iloc[0])
        assert (post >= np.minimum(s2, prior) - 1e-12).all()
        assert (post <= np.maximum(s2, prior) + 1e-12).all()

    def test_df_total_capped_at_pooled(self, fitted):
        pooled = fitted["df_residual"].sum()
        assert (fitted["df_total"] <= pooled).all()
        assert (fitted["df_total"] >= fitted["df_residual"]).all()

    def test_p_values_in_unit_interval(self, fitted):
        assert fitted["p_value"].between(0, 1).all()

    def test_moderated_t_sign_matches_coefficient(self, fitted):
        nonzero = fitted["coefficient"] != 0
        assert (
            np.sign(fitted.loc[nonzero, "moderated_t"])
            == np.sign(fitted.loc[nonzero, "coefficient"])
        ).all()

    def test_does_not_mutate_input(self, sim):
        matrix, groups, _ = sim
        fit = lm_fit(matrix, groups)
        before = fit.copy()
        ebayes(fit)
        pd.testing.assert_frame_equal(fit, before)

    def test_identical_variances_shrink_completely(self):
        s2 = np.full(100, 0.5)
        post, prior, df_prior = squeeze_var(s2, 4)
        assert np.isinf(df_prior)
        np.testing.assert_allclose(post, prior)

    def test_prior_recovered_from_scaled_f_draws(self):
        rng = np.random.default_rng(0)
        d, d0, s0_sq = 4.0, 4.0, 0.09
        sigma_sq = s0_sq * d0 / rng.chisquare(d0, size=20000)
        s2 = sigma_sq * rng.chisquare(d, size=20000) / d
        s2_prior, df_prior = fit_f_dist(s2, d)
        assert 2.5 < df_prior < 6.0
        assert s2_prior == pytest.approx(s0_sq, rel=0.2)

    def test_single_feature_is_not_moderated(self):
        s2_prior, df_prior = fit_f_dist(np.array([0.3]), 4)
        assert s2_prior == pytest.approx(0.3)
        assert df_prior == 0.0

    @pytest.mark.parametrize("x", [0.05, 0.5, 1.0, 10.0, 100.0])
    def test_trigamma_inverse(self, x):
        y = trigamma_inverse(x)
        assert float(special.polygamma(1, y)) == pytest.approx(x, rel=1e-6)

    def test_trigamma_inverse_rejects_non_positive(self):
        with pytest.raises(ValueError):
            trigamma_inverse(0.0)


# ---------------------------------------------------------------------------
# fit_model — validation and custom fitters
# ---------------------------------------------------------------------------

class TestFitModel:

    def test_group_length_mismatch(self, sim):
        matrix, _, _ = sim
        with pytest.raises(DimensionMismatchError):
            fit_model(matrix, [0, 0, 1, 1])

    def test_group_with_one_sample(self):
        matrix = np.random.default_rng(0).normal(size=(10, 5))
        with pytest.raises(InvalidDesignError):
            fit_model(matrix, [0, 1, 1, 1, 1])

    def test_non_binary_labels(self):
        matrix = np.random.default_rng(0).normal(size=(10, 6))
        with pytest.raises(InvalidDesignError):
            fit_model(matrix, [0, 0, 1, 1, 2, 2])

    def test_non_finite_matrix(self):
        matrix = np.random.default_rng(0).normal(size=(10, 6))
        matrix[3, 2] = np.nan
        with pytest.raises(ValueError, match="non-finite"):
            fit_model(matrix, [0, 0, 0, 1, 1, 1])

    def test_custom_fitter_gets_ordinary_t(self, sim):
        matrix, groups, _ = sim

        def fitter(m, g):
            fit = ebayes(lm_fit(m, g))
            return fit.drop(columns="ordinary_t")

        result = fit_model(matrix, groups, fitter=fitter)
        assert "ordinary_t" in result.columns
        ct = classical_t_all(matrix, groups)
        assert np.max(np.abs(result["ordinary_t"].values - ct)) < 1e-6

    def test_custom_fitter_missing_columns(self, sim):
        matrix, groups, _ = sim
        with pytest.raises(ValueError, match="missing columns"):
            fit_model(matrix, groups, fitter=lm_fit)

    def test_custom_fitter_wrong_rows(self, sim):
        matrix, groups, _ = sim

        def fitter(m, g):
            return ebayes(lm_fit(m, g)).iloc[:10]

        with pytest.raises(DimensionMismatchError):
            fit_model(matrix, groups, fitter=fitter)
