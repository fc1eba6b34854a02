"""Linear mixed-effects model adapter for clustered/grouped outcomes.

Implements the ``FittedModel`` protocol for continuous outcomes with a
random intercept per group:

    y = Xβ + Zu + ε,   u ~ N(0, τ²I),   ε ~ N(0, σ²I)

fitted by REML with ``statsmodels.MixedLM``.

Coefficient/covariance alignment
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
This is the family where the two capability methods deliberately
disagree:

* ``coefficients()`` returns the fixed effects β̂ **and** the variance
  components (``"<groups> Var"`` for τ̂² and ``"Residual Var"`` for
  σ̂²), mirroring the full parameter vector a mixed model reports.
* ``covariance()`` covers the fixed effects only — the Wald covariance
  of β̂ from the REML fit.

The estimation engine aligns coefficients to the covariance labels
before building a Jacobian or drawing simulated coefficients, so the
variance components are dropped there rather than being misaligned
against a covariance that has no rows for them.

Predictions are population-level (``Xβ``, random effects set to their
mean of zero): marginal effects then describe the average unit, not a
particular group.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from typing import Any, ClassVar

import numpy as np
import pandas as pd
import statsmodels.api as sm
from statsmodels.tools.sm_exceptions import (
    ConvergenceWarning as SmConvergenceWarning,
)

from .exceptions import InvalidConfiguration
from .families import ModelSpec, _RegressionModel, register_model

RESIDUAL_VARIANCE = "Residual Var"


@dataclass(frozen=True)
class LinearMixedModel(_RegressionModel):
    """Random-intercept linear mixed model via ``statsmodels.MixedLM``.

    Requires ``groups=<column>`` at fit time.  ``refit`` re-estimates
    both the fixed effects and the variance components on the new rows;
    a resample in which the optimiser fails to converge raises
    ``RefitFailure``.
    """

    name: ClassVar[str] = "linear_mixed"
    # MixedLM warns about boundary solutions (τ̂² ≈ 0) through
    # ConvergenceWarning even when the optimiser succeeded, so failure
    # detection relies on ``results.converged`` instead of warnings.
    _failure_warnings: ClassVar[tuple[type[Warning], ...]] = ()

    @classmethod
    def _fit_spec(cls, spec: ModelSpec, data: pd.DataFrame) -> LinearMixedModel:
        if spec.groups is None:
            msg = "linear_mixed model requires a 'groups' column."
            raise InvalidConfiguration(msg)
        return super()._fit_spec(spec, data)

    @classmethod
    def _fit_results(cls, endog, exog, data, spec: ModelSpec) -> Any:
        groups = data[spec.groups].to_numpy()
        if len(np.unique(groups)) < 2:
            msg = "linear_mixed model needs at least two groups."
            raise ValueError(msg)
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", SmConvergenceWarning)
            return sm.MixedLM(endog, exog, groups=groups).fit(reml=True)

    @classmethod
    def _extract_params(
        cls, results: Any, exog: pd.DataFrame, spec: ModelSpec
    ) -> pd.Series:
        fe = np.asarray(results.fe_params, dtype=float)
        tau2 = float(np.asarray(results.cov_re, dtype=float).ravel()[0])
        values = np.concatenate([fe, [tau2, float(results.scale)]])
        names = [*exog.columns, f"{spec.groups} Var", RESIDUAL_VARIANCE]
        return pd.Series(values, index=names)

    @property
    def fixed_effects(self) -> list[str]:
        """Names of the fixed-effect coefficients, in design order."""
        return [
            n
            for n in self.params.index
            if n not in (f"{self.spec.groups} Var", RESIDUAL_VARIANCE)
        ]

    def covariance(self) -> pd.DataFrame:
        """Covariance of the fixed effects only.

        ``MixedLMResults.cov_params()`` lists the fixed effects first,
        followed by the variance-component parameters; only the leading
        fixed-effect block is returned.
        """
        names = self.fixed_effects
        k = len(names)
        cov = np.asarray(self.results.cov_params(), dtype=float)[:k, :k]
        return pd.DataFrame(cov, index=names, columns=names)


register_model("linear_mixed", LinearMixedModel)
