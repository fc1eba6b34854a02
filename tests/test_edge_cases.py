"""Edge-case tests for input validation and boundary conditions.

Covers: empty and single-row data, rows with missing regressors,
effects that are missing everywhere, logical and factor regressors on
the link scale, count models, and weights that zero out rows.
"""

import numpy as np
import pandas as pd
import pytest

from marginal_variance import (
    LinearModel,
    LogisticModel,
    PoissonModel,
    get_effect_variances,
)
from marginal_variance.exceptions import InvalidConfiguration
from marginal_variance.families import dummy_name

# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #


def _mixed_data(n: int = 120, seed: int = 42) -> pd.DataFrame:
    """Numeric, logical and factor regressors with linear and binary outcomes."""
    rng = np.random.default_rng(seed)
    x = rng.standard_normal(n)
    flag = rng.random(n) < 0.4
    colour = rng.choice(["blue", "green", "red"], size=n)
    eta = 0.3 + 0.9 * x + 0.5 * flag - 0.4 * (colour == "red")
    return pd.DataFrame(
        {
            "y": eta + rng.standard_normal(n) * 0.5,
            "y_bin": (rng.random(n) < 1 / (1 + np.exp(-eta))).astype(int),
            "count": rng.poisson(np.exp(0.2 + 0.3 * x)),
            "x": x,
            "flag": flag,
            "colour": colour,
        }
    )


# ------------------------------------------------------------------ #
# 1. Degenerate row counts
# ------------------------------------------------------------------ #


class TestRowCounts:
    def test_zero_rows_raises(self) -> None:
        df = _mixed_data()
        model = LinearModel.fit(df, "y", ["x"])
        with pytest.raises(InvalidConfiguration, match="no rows"):
            get_effect_variances(df.iloc[:0], model)

    def test_zero_rows_allowed_for_none(self) -> None:
        result = get_effect_variances(_mixed_data().iloc[:0], object(), method="none")
        assert result.n_rows == 0

    def test_single_row(self) -> None:
        df = _mixed_data()
        model = LogisticModel.fit(df, "y_bin", ["x", "flag"])
        result = get_effect_variances(df.iloc[[5]], model)
        assert result.n_rows == 1
        assert all(len(v) == 1 for v in result.variances.values())
        assert np.all(np.isfinite(result.covariance.to_numpy()))


# ------------------------------------------------------------------ #
# 2. Missing values
# ------------------------------------------------------------------ #


class TestMissingValues:
    def test_rows_with_missing_regressor_excluded(self) -> None:
        df = _mixed_data()
        model = LogisticModel.fit(df, "y_bin", ["x", "flag"])
        holes = df.copy()
        holes.loc[[3, 17, 40], "x"] = np.nan
        with_nan = get_effect_variances(holes, model)
        dropped = get_effect_variances(holes.dropna(subset=["x"]), model)
        np.testing.assert_allclose(
            with_nan.covariance.to_numpy(), dropped.covariance.to_numpy(), rtol=1e-4
        )
        # Replicated to every row of the data, including the incomplete ones.
        assert with_nan.n_rows == len(df)

    def test_effect_missing_everywhere_warns(self) -> None:
        df = _mixed_data()
        model = LinearModel.fit(df, "y", ["x"])
        blank = df.assign(x=np.nan)
        with pytest.warns(UserWarning, match="No non-missing rows"):
            result = get_effect_variances(blank, model)
        # Reported as missing, never as a zero variance.
        assert np.isnan(result.variances["Var_dydx_x"]).all()


# ------------------------------------------------------------------ #
# 3. Regressor kinds on the link scale
# ------------------------------------------------------------------ #


class TestRegressorKinds:
    def test_logical_effect_is_its_coefficient(self) -> None:
        df = _mixed_data()
        model = LinearModel.fit(df, "y", ["x", "flag"])
        result = get_effect_variances(df, model, variables="flag")
        name = dummy_name("flag", True)
        np.testing.assert_allclose(
            result.covariance.iloc[0, 0], model.covariance().loc[name, name], rtol=1e-6
        )

    def test_factor_effects_are_their_coefficients(self) -> None:
        df = _mixed_data()
        model = LinearModel.fit(df, "y", ["x", "colour"])
        result = get_effect_variances(df, model, variables="colour")
        names = [dummy_name("colour", "green"), dummy_name("colour", "red")]
        assert result.effect_names == ["dydx_colourgreen", "dydx_colourred"]
        np.testing.assert_allclose(
            result.covariance.to_numpy(),
            model.covariance().loc[names, names].to_numpy(),
            rtol=1e-6,
        )

    def test_poisson_link_scale(self) -> None:
        df = _mixed_data()
        model = PoissonModel.fit(df, "count", ["x"])
        result = get_effect_variances(df, model, effect_type="link")
        np.testing.assert_allclose(
            result.covariance.iloc[0, 0], model.covariance().loc["x", "x"], rtol=1e-3
        )

    def test_categorical_dtype_levels(self) -> None:
        df = _mixed_data()
        df["colour"] = pd.Categorical(df["colour"], categories=["red", "green", "blue"])
        model = LinearModel.fit(df, "y", ["colour"])
        result = get_effect_variances(df, model)
        assert result.effect_names == ["dydx_colourgreen", "dydx_colourblue"]


# ------------------------------------------------------------------ #
# 4. Weights
# ------------------------------------------------------------------ #


class TestWeights:
    def test_zero_weights_drop_rows(self) -> None:
        df = _mixed_data()
        model = LogisticModel.fit(df, "y_bin", ["x"])
        w = np.ones(len(df))
        w[:20] = 0.0
        weighted = get_effect_variances(df, model, weights=w)
        subset = get_effect_variances(df.iloc[20:], model)
        np.testing.assert_allclose(
            weighted.covariance.to_numpy(), subset.covariance.to_numpy(), rtol=1e-4
        )

    @pytest.mark.parametrize(
        "weights, match",
        [
            (np.zeros(120), "positive sum"),
            (np.full(120, np.nan), "finite"),
            (np.ones((120, 1)), "one-dimensional"),
            (np.array(["a"] * 120), "numeric"),
        ],
    )
    def test_malformed(self, weights, match) -> None:
        df = _mixed_data()
        model = LinearModel.fit(df, "y", ["x"])
        with pytest.raises(InvalidConfiguration, match=match):
            get_effect_variances(df, model, weights=weights)
