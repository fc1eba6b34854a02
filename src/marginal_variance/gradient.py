"""Average marginal effects as a function of the coefficient vector.

The delta method and the simulation method both need the map

    g : β  ↦  AME(β)

that plugs a coefficient vector into the model, recomputes per-row
effects on fixed data, and averages them.  :func:`gradient_factory`
builds that map as a pure closure: every call goes through
``model.with_coefficients`` and therefore works on a fresh model view,
so ``g`` keeps no state between calls and may be evaluated from
several threads at once.

:func:`average_effects` is the reduction shared with the bootstrap
strategy, which calls it on effects computed from a refitted model.
"""

from __future__ import annotations

import logging
import warnings
from collections.abc import Callable, Iterable
from typing import Any

import numpy as np
import pandas as pd

from ._options import DEFAULT_STEP_SIZE
from ._typing import GradientFunction
from .effects import marginal_effects
from .families import require_capability
from .terms import TermClassification

logger = logging.getLogger(__name__)


def average_effects(
    effects: pd.DataFrame, weights: np.ndarray | None = None
) -> pd.Series:
    """Column means of per-row effects, ignoring missing values.

    Without weights this is the arithmetic mean over the non-missing
    rows of each column.  With weights it is

        Σᵢ wᵢ·eᵢ / Σᵢ wᵢ

    over the rows where eᵢ is present, so a missing effect drops both
    its value and its weight.

    Args:
        effects: ``(n, k)`` per-row effects.
        weights: Optional ``(n,)`` non-negative weights.

    Returns:
        Series of length ``k`` indexed by effect name.  A column with
        no usable rows averages to ``NaN`` and triggers a
        ``UserWarning``.
    """
    values = effects.to_numpy(dtype=float)
    present = ~np.isnan(values)
    filled = np.where(present, values, 0.0)
    if weights is None:
        denom = present.sum(axis=0).astype(float)
        numer = filled.sum(axis=0)
    else:
        w = np.asarray(weights, dtype=float)[:, np.newaxis]
        denom = (w * present).sum(axis=0)
        numer = (w * filled).sum(axis=0)
    safe = np.where(denom > 0, denom, 1.0)
    means = np.where(denom > 0, numer / safe, np.nan)
    empty = [name for name, d in zip(effects.columns, denom) if d <= 0]
    if empty:
        warnings.warn(
            f"No non-missing rows to average for effects {empty}; "
            "their average is NaN.",
            UserWarning,
            stacklevel=2,
        )
    return pd.Series(means, index=effects.columns, dtype=float)


def gradient_factory(
    data: pd.DataFrame,
    model: Any,
    variables: Iterable[str] | None = None,
    effect_type: str = "response",
    terms: TermClassification | None = None,
    weights: np.ndarray | None = None,
    step_size: float = DEFAULT_STEP_SIZE,
    effects_fn: Callable[..., pd.DataFrame] | None = None,
) -> GradientFunction:
    """Build ``g(β) → average effects`` over fixed *data*.

    Args:
        data: Rows at which effects are evaluated.  Not modified.
        model: Fitted model implementing ``with_coefficients``.  Not
            modified.
        variables: Variables of interest, forwarded to *effects_fn*.
        effect_type: ``"response"`` or ``"link"``.
        terms: Term classification forwarded to *effects_fn*.
        weights: Optional per-row weights for the average.
        step_size: Step forwarded to *effects_fn*.
        effects_fn: Per-row effects collaborator; defaults to
            :func:`~marginal_variance.effects.marginal_effects`.

    Returns:
        A function mapping a labelled coefficient vector (any subset of
        the model's coefficients) to a labelled effects vector.

    Raises:
        MissingCollaborator: If *model* cannot substitute coefficients.
    """
    require_capability(model, "with_coefficients", "Coefficient substitution")
    fn = marginal_effects if effects_fn is None else effects_fn
    variables = None if variables is None else list(variables)

    def g(coefficients: pd.Series) -> pd.Series:
        view = model.with_coefficients(coefficients)
        effects = fn(
            view,
            data,
            variables=variables,
            effect_type=effect_type,
            terms=terms,
            step_size=step_size,
        )
        return average_effects(effects, weights)

    logger.debug(
        "Gradient function over %d rows (effect_type=%s, weighted=%s)",
        len(data),
        effect_type,
        weights is not None,
    )
    return g
