"""Delta method — first-order linearisation of the average effects.

Let g(β) be the vector of average marginal effects as a function of
the coefficients, β̂ the estimate and Σ its covariance.  A first-order
Taylor expansion of g around β̂ gives

    Var[g(β̂)] ≈ J Σ Jᵀ,   J = ∂g/∂β evaluated at β̂.

Algorithm:

1. Restrict β̂ to the coefficients covered by Σ (variance components
   and other auxiliary parameters are dropped).
2. Build g with ``gradient_factory`` over the fixed data.
3. Compute J by central differences with the shared step size
   (2p evaluations of g).
4. Form J Σ Jᵀ and symmetrise it when rounding has left it
   measurably asymmetric.

The estimate is deterministic, and it is exact when g is linear in β
(e.g. response-scale effects of an OLS model).  For strongly
non-linear links it can understate the variance; the simulation and
bootstrap strategies do not rely on linearity.

References:
    Oehlert, G. W. (1992). A note on the delta method. *The American
    Statistician*, 46(1), 27–29.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import pandas as pd

from ..families import require_capability
from ..gradient import gradient_factory
from ..jacobian import jacobian
from . import StrategyResult
from ._common import align_coefficients, sandwich

if TYPE_CHECKING:
    from .._options import VarianceOptions
    from ..terms import TermClassification

logger = logging.getLogger(__name__)


class DeltaMethodStrategy:
    """Delta-method covariance ``J Σ Jᵀ``."""

    name: str = "delta"

    def execute(
        self,
        data: pd.DataFrame,
        model: Any,
        *,
        options: VarianceOptions,
        covariance: pd.DataFrame | None,
        terms: TermClassification,
        variables: list[str] | None,
        effects_fn: Callable[..., pd.DataFrame] | None,
    ) -> StrategyResult:
        """Linearise the average effects around the fitted coefficients.

        Returns:
            A :class:`StrategyResult` carrying the Jacobian; no
            iteration count.
        """
        require_capability(model, "coefficients", "The delta method")
        assert covariance is not None

        beta = align_coefficients(model.coefficients(), covariance)
        g = gradient_factory(
            data,
            model,
            variables=variables,
            effect_type=options.effect_type,
            terms=terms,
            weights=options.weights,
            step_size=options.step_size,
            effects_fn=effects_fn,
        )
        jac = jacobian(g, beta, options.step_size, n_jobs=options.n_jobs)
        logger.debug("Delta method: Jacobian of shape %s", jac.shape)
        return StrategyResult(covariance=sandwich(jac, covariance), jacobian=jac)
