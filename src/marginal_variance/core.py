"""Variance of average marginal effects.

A marginal effect summarises how a model's prediction responds to one
regressor; averaging the per-row effects over a dataset gives a vector
of average marginal effects (AMEs),

    g(β) = (1/n) Σᵢ effects(model(β), rowᵢ).

The AMEs are functions of the estimated coefficients β̂, so they
inherit its sampling uncertainty.  :func:`get_effect_variances`
estimates Var[g(β̂)] with one of three interchangeable strategies:

1. **delta** – First-order propagation, J Σ Jᵀ, with J the
   central-difference Jacobian of g at β̂.  Deterministic and fast
   (2p evaluations of g).

2. **simulation** – Draw β⁽ᵇ⁾ ~ N(β̂, Σ), evaluate g at each draw,
   take the sample covariance.  Captures curvature of g that the
   delta method linearises away.

3. **bootstrap** – Resample the rows, refit the model, recompute the
   AMEs, take the sample covariance.  Needs neither Σ nor normality,
   at the cost of ``iterations`` full refits.

``method="none"`` is a valid no-op that returns an empty result.

Every strategy receives its inputs from a
:class:`~marginal_variance.engine.VarianceEngine`, which validates and
resolves them once, and returns a raw covariance that is packaged here:
the diagonal becomes one ``Var_<effect>`` column per effect, repeated
once per data row so it lines up with the per-row effects frame.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Any

import numpy as np
import pandas as pd

from ._compat import DataFrameLike
from ._options import DEFAULT_ITERATIONS, DEFAULT_STEP_SIZE
from ._results import VARIANCE_PREFIX, EffectVarianceResult
from ._strategies import StrategyResult, resolve_strategy
from ._typing import CovarianceLike
from .engine import VarianceEngine
from .terms import TermClassification

logger = logging.getLogger(__name__)


def _package_result(raw: StrategyResult, method: str, n_rows: int) -> EffectVarianceResult:
    """Replicate each effect's variance to *n_rows* under a ``Var_`` name."""
    diag = np.diag(raw.covariance.to_numpy(dtype=float))
    variances = {
        f"{VARIANCE_PREFIX}{name}": np.full(n_rows, value, dtype=float)
        for name, value in zip(raw.covariance.index, diag)
    }
    return EffectVarianceResult(
        method=method,
        variances=variances,
        covariance=raw.covariance,
        jacobian=raw.jacobian,
        iterations_used=raw.iterations_used,
        n_rows=n_rows,
    )


def get_effect_variances(
    data: DataFrameLike,
    model: Any,
    variables: str | Iterable[str] | None = None,
    effect_type: str = "response",
    covariance: CovarianceLike = None,
    method: str = "delta",
    iterations: int = DEFAULT_ITERATIONS,
    weights: Any = None,
    step_size: float = DEFAULT_STEP_SIZE,
    terms: TermClassification | None = None,
    *,
    effects_fn: Callable[..., pd.DataFrame] | None = None,
    random_state: int | np.random.Generator | None = None,
    n_jobs: int | None = None,
    on_refit_failure: str = "raise",
) -> EffectVarianceResult:
    """Estimate the covariance of the average marginal effects of *model*.

    Args:
        data: Rows at which the effects are evaluated (pandas or
            Polars).  Never modified.
        model: Fitted model implementing the ``FittedModel``
            capabilities the chosen method needs.  Never modified.
        variables: Variables of interest.  ``None`` or empty means
            every regressor of the model.
        effect_type: ``"response"`` (inverse-link scale) or
            ``"link"``.
        covariance: Coefficient covariance Σ.  ``None`` uses
            ``model.covariance()``; a callable is called with the model;
            a DataFrame is used as-is; an unlabelled square array is
            read in the model's coefficient order.
        method: ``"delta"`` (default), ``"simulation"``,
            ``"bootstrap"`` or ``"none"`` (case-insensitive).
        iterations: Number of simulation draws or bootstrap replicates;
            at least 2 for those methods.
        weights: Optional non-negative per-row weights for the
            averages.  Resampled together with the rows by the
            bootstrap.
        step_size: Finite-difference step for the Jacobian and the
            default effects function.
        terms: Pre-computed term classification; derived from the
            model when absent.
        effects_fn: Per-row effects collaborator with the signature of
            :func:`~marginal_variance.effects.marginal_effects`.
        random_state: Seed or ``numpy.random.Generator`` for the
            simulation draws and bootstrap indices.
        n_jobs: Worker threads for the per-iteration loops; defaults
            to :func:`~marginal_variance.get_n_jobs`.
        on_refit_failure: ``"raise"`` (default) or ``"skip"`` failed
            bootstrap refits.

    Returns:
        An :class:`EffectVarianceResult`.  For ``method="none"`` its
        ``variances``, ``covariance`` and ``jacobian`` are ``None``.

    Raises:
        InvalidConfiguration: For an unknown method or effect type,
            malformed weights, variables, iterations or step size.
        DimensionMismatch: If the coefficients cannot be aligned with
            the covariance.
        NonPositiveSemiDefiniteCovariance: If the simulation cannot
            sample from the covariance.
        RefitFailure: If a bootstrap refit fails under the ``"raise"``
            policy, or too few replicates survive under ``"skip"``.
        MissingCollaborator: If the model lacks a capability the
            method needs.
    """
    engine = VarianceEngine(
        data,
        model,
        variables=variables,
        effect_type=effect_type,
        covariance=covariance,
        method=method,
        iterations=iterations,
        weights=weights,
        step_size=step_size,
        terms=terms,
        effects_fn=effects_fn,
        random_state=random_state,
        n_jobs=n_jobs,
        on_refit_failure=on_refit_failure,
    )
    resolved = engine.options.method
    n_rows = len(engine.data)

    if resolved == "none":
        return EffectVarianceResult(method=resolved, n_rows=n_rows)

    strategy = resolve_strategy(resolved)
    raw = engine.run(strategy)
    logger.debug("%s estimate for %d effects", resolved, raw.covariance.shape[0])
    return _package_result(raw, resolved, n_rows)
