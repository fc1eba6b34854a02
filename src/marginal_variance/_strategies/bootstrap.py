"""Nonparametric bootstrap over rows.

Neither Σ nor linearity is assumed.  Each replicate re-estimates the
whole pipeline on a resampled dataset:

1. Pre-generate a ``(B, n)`` matrix of row indices, sampled uniformly
   with replacement.
2. For replicate b, take the rows ``data.iloc[idx_b]`` (and the
   matching weights), refit the model on them, compute per-row
   effects with the refitted model on the *resampled* rows, and
   average them.
3. Return the sample covariance (ddof = 1) of the B effect vectors.

Refit failures
~~~~~~~~~~~~~~
A resample can make the model unestimable (a factor level missing,
perfect separation in a logit, a singular design).  The adapter
reports that as ``RefitFailure``.  With ``on_refit_failure="raise"``
(the default) the first failure aborts the estimate and names the
replicate.  With ``"skip"`` failed replicates are dropped, a
``UserWarning`` reports how many, and ``iterations_used`` on the
result records how many replicates remained.  Fewer than two
surviving replicates is always an error.  Any other exception from
the refit or the effects function propagates unchanged.

References:
    Efron, B. & Tibshirani, R. J. (1993). *An Introduction to the
    Bootstrap*. Chapman & Hall.
"""

from __future__ import annotations

import logging
import warnings
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import pandas as pd

from .._parallel import map_iterations
from ..effects import marginal_effects
from ..exceptions import RefitFailure
from ..families import require_capability
from ..gradient import average_effects
from ..resampling import generate_bootstrap_indices
from . import StrategyResult
from ._common import empirical_covariance

if TYPE_CHECKING:
    from .._options import VarianceOptions
    from ..terms import TermClassification

logger = logging.getLogger(__name__)


class BootstrapStrategy:
    """Covariance of the effects across row-resampled refits."""

    name: str = "bootstrap"

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
        """Refit on ``options.iterations`` resamples of *data*.

        *covariance* is ignored.

        Raises:
            MissingCollaborator: If *model* cannot be refitted.
            RefitFailure: On the first failed refit under the
                ``"raise"`` policy, or when fewer than two replicates
                survive under ``"skip"``.
        """
        require_capability(model, "refit", "The bootstrap method")
        fn = marginal_effects if effects_fn is None else effects_fn
        weights = options.weights
        skip = options.on_refit_failure == "skip"

        B = options.iterations
        indices = generate_bootstrap_indices(len(data), B, options.rng())

        def replicate(b: int) -> pd.Series | None:
            idx = indices[b]
            sample = data.iloc[idx].reset_index(drop=True)
            try:
                refitted = model.refit(sample)
            except RefitFailure as exc:
                if skip:
                    logger.debug("Bootstrap replicate %d skipped: %s", b, exc)
                    return None
                msg = f"Bootstrap replicate {b} failed to refit: {exc}"
                raise RefitFailure(msg, replicate=b) from exc
            effects = fn(
                refitted,
                sample,
                variables=variables,
                effect_type=options.effect_type,
                terms=terms,
                step_size=options.step_size,
            )
            return average_effects(effects, None if weights is None else weights[idx])

        results = map_iterations(replicate, range(B), options.n_jobs)
        rows = [row for row in results if row is not None]

        failed = B - len(rows)
        if failed:
            warnings.warn(
                f"{failed} of {B} bootstrap replicates failed to refit and were "
                f"skipped; the covariance uses {len(rows)} replicates.",
                UserWarning,
                stacklevel=2,
            )
        if len(rows) < 2:
            msg = (
                f"Only {len(rows)} of {B} bootstrap replicates could be refitted; "
                "at least 2 are needed for a covariance."
            )
            raise RefitFailure(msg)

        logger.debug("Bootstrap: %d of %d replicates used", len(rows), B)
        return StrategyResult(
            covariance=empirical_covariance(rows),
            iterations_used=len(rows),
        )
