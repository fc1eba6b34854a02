"""Tests for LinearMixedModel: REML fit, coefficient/covariance alignment, registry."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from marginal_variance import get_effect_variances
from marginal_variance.exceptions import (
    DimensionMismatch,
    InvalidConfiguration,
    RefitFailure,
)
from marginal_variance.families import INTERCEPT, FittedModel, fit_model, resolve_model_class
from marginal_variance.families_mixed import RESIDUAL_VARIANCE, LinearMixedModel

# ------------------------------------------------------------------ #
# Fixtures
# ------------------------------------------------------------------ #


@pytest.fixture()
def rng():
    return np.random.default_rng(42)


@pytest.fixture()
def clustered_df(rng):
    """Generate clustered data with known structure.

    10 groups, n=200 total (20 obs per group).
    Group random intercepts ~ N(0, τ²=4.0).
    Residual σ²=1.0.
    True β = [1.0, 2.0, -1.0] (intercept, x1, x2).
    """
    n_groups = 10
    n_per_group = 20
    n = n_groups * n_per_group

    school = np.repeat(np.arange(n_groups), n_per_group)
    x1 = rng.standard_normal(n)
    x2 = rng.standard_normal(n)
    u = rng.normal(0, 2.0, size=n_groups)
    y = 1.0 + 2.0 * x1 - 1.0 * x2 + u[school] + rng.standard_normal(n)
    return pd.DataFrame({"y": y, "x1": x1, "x2": x2, "school": school})


@pytest.fixture()
def lmm(clustered_df):
    return LinearMixedModel.fit(clustered_df, "y", ["x1", "x2"], groups="school")


# ------------------------------------------------------------------ #
# Fitting
# ------------------------------------------------------------------ #


class TestFit:
    def test_isinstance_check(self, lmm):
        assert isinstance(lmm, FittedModel)

    def test_name(self, lmm):
        assert lmm.name == "linear_mixed"

    def test_registered(self):
        assert resolve_model_class("linear_mixed") is LinearMixedModel

    def test_fit_model_with_groups(self, clustered_df):
        model = fit_model("linear_mixed", clustered_df, "y", ["x1", "x2"], groups="school")
        assert isinstance(model, LinearMixedModel)

    def test_fixed_effects_recover_truth(self, lmm):
        beta = lmm.coefficients()
        np.testing.assert_allclose(
            beta[[INTERCEPT, "x1", "x2"]].to_numpy(), [1.0, 2.0, -1.0], atol=1.5
        )
        np.testing.assert_allclose(beta[["x1", "x2"]].to_numpy(), [2.0, -1.0], atol=0.3)

    def test_variance_components_positive(self, lmm):
        beta = lmm.coefficients()
        assert beta["school Var"] > 0
        assert beta[RESIDUAL_VARIANCE] > 0

    def test_groups_required(self, clustered_df):
        with pytest.raises(InvalidConfiguration, match="requires a 'groups' column"):
            LinearMixedModel.fit(clustered_df, "y", ["x1", "x2"])

    def test_single_group_fails(self, clustered_df):
        one = clustered_df[clustered_df["school"] == 0].reset_index(drop=True)
        with pytest.raises(RefitFailure, match="at least two groups"):
            LinearMixedModel.fit(one, "y", ["x1"], groups="school")

    def test_grouping_column_is_not_a_term(self, lmm):
        assert lmm.term_types == {"x1": "numeric", "x2": "numeric"}


# ------------------------------------------------------------------ #
# Coefficient/covariance alignment
# ------------------------------------------------------------------ #


class TestAlignment:
    def test_coefficients_include_variance_components(self, lmm):
        assert list(lmm.coefficients().index) == [
            INTERCEPT,
            "x1",
            "x2",
            "school Var",
            RESIDUAL_VARIANCE,
        ]

    def test_covariance_covers_fixed_effects_only(self, lmm):
        cov = lmm.covariance()
        assert list(cov.index) == [INTERCEPT, "x1", "x2"]
        assert list(cov.columns) == [INTERCEPT, "x1", "x2"]
        assert np.all(np.diag(cov.to_numpy()) > 0)

    def test_fixed_effects(self, lmm):
        assert lmm.fixed_effects == [INTERCEPT, "x1", "x2"]

    def test_delta_drops_variance_components(self, lmm, clustered_df):
        result = get_effect_variances(clustered_df, lmm)
        assert list(result.jacobian.columns) == [INTERCEPT, "x1", "x2"]
        # Population-level effects of a linear model are the slopes.
        cov = lmm.covariance()
        np.testing.assert_allclose(
            result.covariance.to_numpy(),
            cov.loc[["x1", "x2"], ["x1", "x2"]].to_numpy(),
            rtol=1e-3,
            atol=1e-5,
        )

    def test_unlabelled_fixed_effect_covariance(self, lmm, clustered_df):
        labelled = get_effect_variances(clustered_df, lmm)
        unlabelled = get_effect_variances(
            clustered_df, lmm, covariance=lmm.covariance().to_numpy()
        )
        pd.testing.assert_frame_equal(unlabelled.covariance, labelled.covariance)

    def test_unlabelled_covariance_of_other_size(self, lmm, clustered_df):
        with pytest.raises(DimensionMismatch, match="Unlabelled covariance of dimension 4"):
            get_effect_variances(clustered_df, lmm, covariance=np.eye(4))

    def test_with_coefficients_keeps_variance_components(self, lmm):
        view = lmm.with_coefficients(pd.Series({"x1": 0.0}))
        assert view.coefficients()["school Var"] == lmm.coefficients()["school Var"]
        assert view.coefficients()["x1"] == 0.0


# ------------------------------------------------------------------ #
# Refit
# ------------------------------------------------------------------ #


class TestRefit:
    def test_refit_same_labels(self, lmm, clustered_df):
        half = clustered_df.sample(frac=0.8, random_state=0).reset_index(drop=True)
        refitted = lmm.refit(half)
        assert list(refitted.coefficients().index) == list(lmm.coefficients().index)

    def test_predictions_are_population_level(self, lmm, clustered_df):
        beta = lmm.coefficients()
        expected = (
            beta[INTERCEPT]
            + beta["x1"] * clustered_df["x1"]
            + beta["x2"] * clustered_df["x2"]
        )
        np.testing.assert_allclose(lmm.predict(clustered_df), expected.to_numpy(), atol=1e-10)
