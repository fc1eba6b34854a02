"""Default per-row marginal-effects computation.

For every observation and every variable of interest the effect is the
change in the model's prediction attributable to that variable:

* **numeric** — the derivative ∂ŷ/∂x by central difference,

      dydx = [ŷ(x + h) − ŷ(x − h)] / 2h,
      h    = max(max|x|, 1) · √step_size,

  one step for the whole column so every row is differenced on the
  same scale;
* **logical** — ŷ(x = True) − ŷ(x = False);
* **factor** — ŷ(x = level) − ŷ(x = baseline), one column per
  non-baseline level.

Columns are named ``dydx_<variable>`` (numeric and logical) and
``dydx_<variable><level>`` (factor).  The model enters only through
``predict(data, effect_type)``, so the function works unchanged on a
model whose coefficients have been substituted with
``with_coefficients``.

Any callable with the signature of :func:`marginal_effects` can be
passed as ``effects_fn=`` to the estimators instead.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from typing import Any, Protocol

import numpy as np
import pandas as pd

from ._options import DEFAULT_STEP_SIZE
from .families import _factor_levels
from .terms import TermClassification, classify_terms


class EffectsFunction(Protocol):
    """Callable contract for the effects-computation collaborator."""

    def __call__(
        self,
        model: Any,
        data: pd.DataFrame,
        variables: Iterable[str] | None = None,
        effect_type: str = "response",
        terms: TermClassification | None = None,
        step_size: float = DEFAULT_STEP_SIZE,
    ) -> pd.DataFrame: ...


def _numeric_step(x: np.ndarray, step_size: float) -> float:
    finite = np.abs(x[np.isfinite(x)])
    scale = max(float(finite.max()), 1.0) if finite.size else 1.0
    return scale * math.sqrt(step_size)


def _predict_with(
    model: Any, data: pd.DataFrame, variable: str, value: Any, effect_type: str
) -> np.ndarray:
    counterfactual = data.copy()
    counterfactual[variable] = value
    return np.asarray(model.predict(counterfactual, effect_type), dtype=float)


def _model_levels(model: Any, data: pd.DataFrame, variable: str) -> tuple[Any, ...]:
    spec = getattr(model, "spec", None)
    levels = getattr(spec, "levels", None) or {}
    if variable in levels:
        return tuple(levels[variable])
    return _factor_levels(data[variable])


def marginal_effects(
    model: Any,
    data: pd.DataFrame,
    variables: Iterable[str] | None = None,
    effect_type: str = "response",
    terms: TermClassification | None = None,
    step_size: float = DEFAULT_STEP_SIZE,
) -> pd.DataFrame:
    """Per-row marginal effects for the variables of interest.

    Args:
        model: A fitted model with ``predict(data, effect_type)``.
        data: Rows at which effects are evaluated.
        variables: Variables of interest; ignored when *terms* is
            given, otherwise passed to :func:`classify_terms`.
        effect_type: ``"response"`` or ``"link"``.
        terms: Pre-computed term classification.
        step_size: Base step for numeric derivatives.

    Returns:
        DataFrame indexed like *data* with one column per effect.
        Rows whose regressors are missing hold ``NaN``.
    """
    if terms is None:
        terms = classify_terms(model, variables)

    effects: dict[str, np.ndarray] = {}

    for var in terms.numeric:
        x = data[var].to_numpy(dtype=float)
        h = _numeric_step(x, step_size)
        upper = _predict_with(model, data, var, x + h, effect_type)
        lower = _predict_with(model, data, var, x - h, effect_type)
        effects[f"dydx_{var}"] = (upper - lower) / (2.0 * h)

    for var in terms.logical:
        on = _predict_with(model, data, var, True, effect_type)
        off = _predict_with(model, data, var, False, effect_type)
        effects[f"dydx_{var}"] = on - off

    for var in terms.factor:
        levels = _model_levels(model, data, var)
        base = _predict_with(model, data, var, levels[0], effect_type)
        for level in levels[1:]:
            shifted = _predict_with(model, data, var, level, effect_type)
            effects[f"dydx_{var}{level}"] = shifted - base

    return pd.DataFrame(effects, index=data.index)
