"""
Example 1: Logistic Regression (Binary Outcome)
Simulated loan-default data with numeric, logical and factor regressors

Demonstrates:
- ``fit_model("auto", ...)`` — family auto-detection for a 0/1 response
- Delta-method, simulation and bootstrap variances of the average
  marginal effects on the response (probability) scale
- Link-scale effects, whose delta-method variances reproduce the
  coefficient variances
- ``on_refit_failure="skip"`` for resamples that cannot be refitted
"""

import numpy as np
import pandas as pd

from marginal_variance import fit_model, get_effect_variances

# ============================================================================
# Simulate data
# ============================================================================

rng = np.random.default_rng(2024)
n = 800
income = rng.lognormal(mean=3.5, sigma=0.4, size=n)
debt_ratio = rng.beta(2, 5, size=n)
homeowner = rng.random(n) < 0.45
region = rng.choice(["central", "coastal", "inland"], size=n, p=[0.5, 0.3, 0.2])

eta = (
    -0.5
    - 0.03 * (income - income.mean())
    + 3.0 * (debt_ratio - debt_ratio.mean())
    - 0.6 * homeowner
    + 0.4 * (region == "inland")
)
default = (rng.random(n) < 1 / (1 + np.exp(-eta))).astype(int)

df = pd.DataFrame(
    {
        "default": default,
        "income": income,
        "debt_ratio": debt_ratio,
        "homeowner": homeowner,
        "region": region,
    }
)
regressors = ["income", "debt_ratio", "homeowner", "region"]

# ============================================================================
# Fit — family="auto" resolves to logistic for a binary response
# ============================================================================

model = fit_model("auto", df, "default", regressors)
assert model.name == "logistic", f"Expected 'logistic', got {model.name!r}"
print(f"fit_model('auto', ...) → {model.name!r}")
print(model.coefficients().round(4).to_string())
print()

# ============================================================================
# Three estimators of the AME covariance
# ============================================================================

delta = get_effect_variances(df, model)
simulation = get_effect_variances(
    df, model, method="simulation", iterations=1000, random_state=1
)
bootstrap = get_effect_variances(
    df,
    model,
    method="bootstrap",
    iterations=200,
    random_state=1,
    on_refit_failure="skip",
    n_jobs=-1,
)

comparison = pd.DataFrame(
    {
        "delta": delta.standard_errors(),
        "simulation": simulation.standard_errors(),
        "bootstrap": bootstrap.standard_errors(),
    }
)
print("Standard errors of the average marginal effects (response scale)")
print(comparison.round(5).to_string())
print(f"bootstrap replicates used: {bootstrap.iterations_used}")
print()

# ============================================================================
# Link scale — AMEs are the coefficients themselves
# ============================================================================

link = get_effect_variances(df, model, variables=["income", "debt_ratio"], effect_type="link")
coef_var = np.diag(model.covariance().loc[["income", "debt_ratio"], ["income", "debt_ratio"]])
np.testing.assert_allclose(np.diag(link.covariance), coef_var, rtol=1e-3)
print("Link-scale delta variances match the coefficient variances:")
print(link.covariance.round(8).to_string())
print()

# ============================================================================
# Per-row variance columns, ready to bind to the effects frame
# ============================================================================

print(delta.to_frame().head().to_string())
