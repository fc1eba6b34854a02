"""
Example 2: Linear Multilevel Regression (Continuous Outcome, Clustered Data)
Simulated test scores of pupils nested in schools

Demonstrates:
- ``family="linear_mixed"`` — random-intercept linear mixed model
- Coefficient alignment: the variance components in ``coefficients()``
  have no entry in the fixed-effects covariance and are dropped
- Weighted average marginal effects
- Custom ``effects_fn`` collaborator (elasticities instead of slopes)

Dataset
-------
40 schools with 25 pupils each.  The school intercepts have standard
deviation 3, so pupils within a school are correlated:

    Level 2: Schools (n = 40)
    Level 1: Pupils within schools (25 each)
"""

import logging

import numpy as np
import pandas as pd

from marginal_variance import fit_model, get_effect_variances, marginal_effects

logging.basicConfig(level=logging.INFO)
logging.getLogger("marginal_variance").setLevel(logging.DEBUG)

# ============================================================================
# Simulate data
# ============================================================================

rng = np.random.default_rng(7)
n_schools, per_school = 40, 25
school = np.repeat(np.arange(n_schools), per_school)
school_effect = rng.normal(0, 3, n_schools)[school]
hours = rng.gamma(4, 1.5, size=school.size)
prior = rng.normal(50, 10, size=school.size)
score = 20 + 1.8 * hours + 0.5 * prior + school_effect + rng.normal(0, 4, school.size)

df = pd.DataFrame({"score": score, "hours": hours, "prior": prior, "school": school})

# ============================================================================
# Fit
# ============================================================================

model = fit_model("linear_mixed", df, "score", ["hours", "prior"], groups="school")
print(model.coefficients().round(4).to_string())
print()

# ============================================================================
# Delta method — slopes of a linear model have the coefficient variance
# ============================================================================

delta = get_effect_variances(df, model)
print(delta.covariance.to_string())
print()

# ============================================================================
# Weighted AMEs — up-weight pupils from small-effect schools
# ============================================================================

weights = np.where(school_effect < 0, 2.0, 1.0)
weighted = get_effect_variances(df, model, method="simulation", iterations=500,
                                weights=weights, random_state=3)
print(weighted.standard_errors().round(5).to_string())
print()

# ============================================================================
# Custom effects collaborator — elasticities at each row
# ============================================================================


def elasticities(model, data, variables=None, effect_type="response", terms=None,
                 step_size=1e-7):
    slopes = marginal_effects(model, data, variables, effect_type, terms, step_size)
    fitted = model.predict(data, effect_type)
    out = {}
    for column in slopes.columns:
        variable = column.removeprefix("dydx_")
        out[f"eyex_{variable}"] = slopes[column] * data[variable] / fitted
    return pd.DataFrame(out, index=data.index)


elastic = get_effect_variances(df, model, effects_fn=elasticities)
print(elastic.standard_errors().round(5).to_string())
