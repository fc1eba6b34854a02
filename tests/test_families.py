"""Tests for the FittedModel protocol, statsmodels adapters, and registry."""

import numpy as np
import pandas as pd
import pytest
import statsmodels.api as sm
from scipy.special import expit

from marginal_variance.exceptions import (
    DimensionMismatch,
    InvalidConfiguration,
    MissingCollaborator,
    RefitFailure,
)
from marginal_variance.families import (
    INTERCEPT,
    FittedModel,
    LinearModel,
    LogisticModel,
    ModelSpec,
    PoissonModel,
    design_matrix,
    fit_model,
    register_model,
    require_capability,
    resolve_model_class,
)

# ------------------------------------------------------------------ #
# Fixtures
# ------------------------------------------------------------------ #


@pytest.fixture()
def rng():
    return np.random.default_rng(42)


@pytest.fixture()
def mixed_df(rng):
    """Numeric, logical and factor regressors with a linear response."""
    n = 200
    x1 = rng.standard_normal(n)
    x2 = rng.standard_normal(n)
    treated = rng.random(n) < 0.5
    region = rng.choice(["north", "south", "west"], size=n)
    shift = np.select([region == "south", region == "west"], [0.3, -0.4], 0.0)
    y = 1.0 + 2.0 * x1 - 0.5 * x2 + 0.8 * treated + shift + rng.standard_normal(n) * 0.5
    return pd.DataFrame(
        {"y": y, "x1": x1, "x2": x2, "treated": treated, "region": region}
    )


@pytest.fixture()
def linear(mixed_df):
    return LinearModel.fit(mixed_df, "y", ["x1", "x2", "treated", "region"])


@pytest.fixture()
def binary_df(rng):
    n = 300
    x1 = rng.standard_normal(n)
    x2 = rng.standard_normal(n)
    p = expit(-0.3 + 1.0 * x1 - 0.7 * x2)
    y = (rng.random(n) < p).astype(int)
    return pd.DataFrame({"y": y, "x1": x1, "x2": x2})


@pytest.fixture()
def count_df(rng):
    n = 300
    x1 = rng.standard_normal(n)
    y = rng.poisson(np.exp(0.5 + 0.4 * x1))
    return pd.DataFrame({"y": y, "x1": x1})


# ------------------------------------------------------------------ #
# Protocol conformance
# ------------------------------------------------------------------ #


class TestProtocolConformance:
    def test_isinstance_check(self, linear):
        assert isinstance(linear, FittedModel)

    def test_name(self, linear):
        assert linear.name == "linear"

    def test_term_types(self, linear):
        assert linear.term_types == {
            "x1": "numeric",
            "x2": "numeric",
            "treated": "logical",
            "region": "factor",
        }

    def test_require_capability_passes(self, linear):
        require_capability(linear, "refit", "Bootstrap")

    def test_require_capability_raises(self):
        with pytest.raises(MissingCollaborator, match="Bootstrap requires .*'refit\\(\\)'"):
            require_capability(object(), "refit", "Bootstrap")


# ------------------------------------------------------------------ #
# ModelSpec and design matrices
# ------------------------------------------------------------------ #


class TestModelSpec:
    def test_kinds_and_levels(self, mixed_df):
        spec = ModelSpec.from_data(mixed_df, "y", ["x1", "treated", "region"])
        assert spec.kinds == {"x1": "numeric", "treated": "logical", "region": "factor"}
        assert spec.levels == {"region": ("north", "south", "west")}
        assert spec.columns == ["y", "x1", "treated", "region"]

    def test_categorical_levels_follow_categories(self):
        df = pd.DataFrame(
            {
                "y": [1.0, 2.0, 3.0],
                "g": pd.Categorical(["b", "a", "b"], categories=["b", "a"]),
            }
        )
        spec = ModelSpec.from_data(df, "y", ["g"])
        assert spec.levels["g"] == ("b", "a")

    def test_missing_column(self, mixed_df):
        with pytest.raises(InvalidConfiguration, match="not found"):
            ModelSpec.from_data(mixed_df, "y", ["x1", "age"])

    def test_response_as_regressor(self, mixed_df):
        with pytest.raises(InvalidConfiguration, match="cannot also be a regressor"):
            ModelSpec.from_data(mixed_df, "y", ["y", "x1"])

    def test_no_regressors(self, mixed_df):
        with pytest.raises(InvalidConfiguration, match="at least one regressor"):
            ModelSpec.from_data(mixed_df, "y", [])

    def test_single_level_factor(self):
        df = pd.DataFrame({"y": [1.0, 2.0], "g": ["a", "a"]})
        with pytest.raises(InvalidConfiguration, match="at least two levels"):
            ModelSpec.from_data(df, "y", ["g"])


class TestDesignMatrix:
    def test_columns(self, mixed_df):
        spec = ModelSpec.from_data(mixed_df, "y", ["x1", "treated", "region"])
        X = design_matrix(spec, mixed_df)
        assert list(X.columns) == [
            INTERCEPT,
            "x1",
            "treated[T.True]",
            "region[T.south]",
            "region[T.west]",
        ]
        np.testing.assert_array_equal(X[INTERCEPT], 1.0)
        np.testing.assert_array_equal(
            X["region[T.west]"], (mixed_df["region"] == "west").astype(float)
        )

    def test_no_intercept(self, mixed_df):
        spec = ModelSpec.from_data(mixed_df, "y", ["x1"], fit_intercept=False)
        assert list(design_matrix(spec, mixed_df).columns) == ["x1"]

    def test_missing_values_propagate(self):
        df = pd.DataFrame(
            {"y": [1.0, 2.0, 3.0], "x": [1.0, np.nan, 2.0], "g": ["a", "b", None]}
        )
        spec = ModelSpec.from_data(df, "y", ["x", "g"])
        X = design_matrix(spec, df)
        assert np.isnan(X.loc[1, "x"])
        assert np.isnan(X.loc[2, "g[T.b]"])
        assert X.loc[0, "g[T.b]"] == 0.0


# ------------------------------------------------------------------ #
# LinearModel
# ------------------------------------------------------------------ #


class TestLinearModel:
    def test_coefficient_labels(self, linear):
        assert list(linear.coefficients().index) == [
            INTERCEPT,
            "x1",
            "x2",
            "treated[T.True]",
            "region[T.south]",
            "region[T.west]",
        ]

    def test_coefficients_recover_truth(self, linear):
        beta = linear.coefficients()
        np.testing.assert_allclose(
            beta.to_numpy(), [1.0, 2.0, -0.5, 0.8, 0.3, -0.4], atol=0.25
        )

    def test_matches_statsmodels(self, mixed_df):
        model = LinearModel.fit(mixed_df, "y", ["x1", "x2"])
        X = sm.add_constant(mixed_df[["x1", "x2"]])
        ref = sm.OLS(mixed_df["y"], X).fit()
        np.testing.assert_allclose(model.coefficients().to_numpy(), ref.params.to_numpy())
        np.testing.assert_allclose(
            model.covariance().to_numpy(), ref.cov_params().to_numpy()
        )

    def test_covariance_labelled_and_symmetric(self, linear):
        cov = linear.covariance()
        names = list(linear.coefficients().index)
        assert list(cov.index) == names
        assert list(cov.columns) == names
        np.testing.assert_allclose(cov.to_numpy(), cov.to_numpy().T)

    def test_coefficients_returns_copy(self, linear):
        beta = linear.coefficients()
        beta.iloc[0] = 100.0
        assert linear.coefficients().iloc[0] != 100.0

    def test_link_equals_response(self, linear, mixed_df):
        np.testing.assert_array_equal(
            linear.predict(mixed_df, "link"), linear.predict(mixed_df, "response")
        )

    def test_predict_unknown_effect_type(self, linear, mixed_df):
        with pytest.raises(InvalidConfiguration, match="Unknown effect type"):
            linear.predict(mixed_df, "terms")

    def test_missing_rows_dropped_at_fit(self, mixed_df):
        df = mixed_df.copy()
        df.loc[:9, "x1"] = np.nan
        model = LinearModel.fit(df, "y", ["x1", "x2"])
        assert model.results.nobs == len(df) - 10
        assert np.isnan(model.predict(df)[:10]).all()

    def test_non_numeric_response(self, mixed_df):
        with pytest.raises(InvalidConfiguration, match="numeric response"):
            LinearModel.fit(mixed_df, "region", ["x1"])

    def test_no_complete_rows(self, mixed_df):
        df = mixed_df.copy()
        df["x1"] = np.nan
        with pytest.raises(RefitFailure, match="no complete rows"):
            LinearModel.fit(df, "y", ["x1"])


class TestWithCoefficients:
    def test_returns_new_view(self, linear):
        beta = linear.coefficients()
        view = linear.with_coefficients(beta + 1.0)
        assert view is not linear
        np.testing.assert_allclose(view.coefficients(), beta + 1.0)
        np.testing.assert_array_equal(linear.coefficients(), beta)

    def test_partial_substitution(self, linear):
        view = linear.with_coefficients(pd.Series({"x1": 10.0}))
        beta = linear.coefficients()
        assert view.coefficients()["x1"] == 10.0
        assert view.coefficients()["x2"] == beta["x2"]

    def test_predictions_follow_substitution(self, linear, mixed_df):
        view = linear.with_coefficients(pd.Series({"x1": 0.0}))
        diff = linear.predict(mixed_df) - view.predict(mixed_df)
        np.testing.assert_allclose(
            diff, linear.coefficients()["x1"] * mixed_df["x1"], atol=1e-12
        )

    def test_unknown_name(self, linear):
        with pytest.raises(DimensionMismatch, match="Unknown coefficient names"):
            linear.with_coefficients(pd.Series({"x9": 1.0}))

    def test_covariance_unchanged(self, linear):
        view = linear.with_coefficients(linear.coefficients() * 2)
        np.testing.assert_array_equal(view.covariance(), linear.covariance())


class TestRefit:
    def test_refit_same_labels(self, linear, mixed_df):
        refitted = linear.refit(mixed_df.iloc[:120].reset_index(drop=True))
        assert list(refitted.coefficients().index) == list(linear.coefficients().index)
        assert refitted.results.nobs == 120

    def test_refit_missing_level_keeps_labels(self, linear, mixed_df):
        subset = mixed_df[mixed_df["region"] != "west"].reset_index(drop=True)
        refitted = linear.refit(subset)
        assert "region[T.west]" in refitted.coefficients().index
        assert np.all(np.isfinite(refitted.coefficients()))

    def test_refit_does_not_touch_original(self, linear, mixed_df):
        before = linear.coefficients()
        linear.refit(mixed_df.iloc[:50].reset_index(drop=True))
        np.testing.assert_array_equal(linear.coefficients(), before)


# ------------------------------------------------------------------ #
# GLM families
# ------------------------------------------------------------------ #


class TestLogisticModel:
    def test_response_is_probability(self, binary_df):
        model = LogisticModel.fit(binary_df, "y", ["x1", "x2"])
        p = model.predict(binary_df, "response")
        assert np.all((p > 0) & (p < 1))
        np.testing.assert_allclose(p, expit(model.predict(binary_df, "link")))

    def test_matches_statsmodels(self, binary_df):
        model = LogisticModel.fit(binary_df, "y", ["x1", "x2"])
        X = sm.add_constant(binary_df[["x1", "x2"]])
        ref = sm.GLM(binary_df["y"], X, family=sm.families.Binomial()).fit()
        np.testing.assert_allclose(model.coefficients().to_numpy(), ref.params.to_numpy())

    def test_rejects_non_binary(self, count_df):
        with pytest.raises(InvalidConfiguration, match="binary response"):
            LogisticModel.fit(count_df, "y", ["x1"])


class TestPoissonModel:
    def test_response_is_exp_link(self, count_df):
        model = PoissonModel.fit(count_df, "y", ["x1"])
        np.testing.assert_allclose(
            model.predict(count_df, "response"), np.exp(model.predict(count_df, "link"))
        )
        np.testing.assert_allclose(model.coefficients().to_numpy(), [0.5, 0.4], atol=0.2)

    def test_rejects_negative(self, mixed_df):
        with pytest.raises(InvalidConfiguration, match="non-negative"):
            PoissonModel.fit(mixed_df.assign(y=-1.0), "y", ["x1"])


# ------------------------------------------------------------------ #
# Registry
# ------------------------------------------------------------------ #


class TestRegistry:
    def test_resolve_by_name(self):
        assert resolve_model_class("linear") is LinearModel
        assert resolve_model_class("logistic") is LogisticModel
        assert resolve_model_class("poisson") is PoissonModel

    def test_auto_binary(self):
        assert resolve_model_class("auto", np.array([0, 1, 1, 0])) is LogisticModel

    def test_auto_continuous(self):
        assert resolve_model_class("auto", np.array([0.1, 2.5, -1.0])) is LinearModel

    def test_auto_counts_warn(self):
        with pytest.warns(UserWarning, match="count data"):
            cls = resolve_model_class("auto", np.array([0, 1, 2, 5, 3]))
        assert cls is LinearModel

    def test_auto_requires_y(self):
        with pytest.raises(InvalidConfiguration, match="requires 'y'"):
            resolve_model_class("auto")

    def test_unknown_family(self):
        with pytest.raises(InvalidConfiguration, match="Unknown model family"):
            resolve_model_class("probit")

    def test_register_rejects_incomplete_class(self):
        class NotAModel:
            def fit(self):
                pass

        with pytest.raises(TypeError, match="missing"):
            register_model("broken", NotAModel)

    def test_register_custom_family(self):
        class Custom(LinearModel):
            name = "custom_linear"

        register_model("custom_linear", Custom)
        assert resolve_model_class("custom_linear") is Custom

    def test_fit_model_auto(self, binary_df):
        model = fit_model("auto", binary_df, "y", ["x1", "x2"])
        assert isinstance(model, LogisticModel)

    def test_fit_model_forwards_kwargs(self, mixed_df):
        model = fit_model("linear", mixed_df, "y", ["x1"], fit_intercept=False)
        assert list(model.coefficients().index) == ["x1"]

    def test_fit_model_missing_response(self, mixed_df):
        with pytest.raises(InvalidConfiguration, match="not found"):
            fit_model("auto", mixed_df, "outcome", ["x1"])
