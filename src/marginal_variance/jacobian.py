"""Numerical Jacobian by central finite differences.

For a vector function g and a point x₀ with k coordinates, column j of
the Jacobian is

    J[:, j] = [g(x₀ + h·eⱼ) − g(x₀ − h·eⱼ)] / 2h

with one scalar step h shared by every coordinate.  There is no
per-coordinate scaling: the same h is used whether β̂ⱼ is 1e-4 or 1e4.
The truncation error of the central scheme is O(h²), so a linear g is
recovered exactly up to floating-point rounding.

Cost: 2k evaluations of g, each an O(n) pass over the data.  Columns
are independent and may be evaluated on several threads.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import numpy as np
import pandas as pd

from ._options import DEFAULT_STEP_SIZE
from ._parallel import map_iterations
from .exceptions import DimensionMismatch, InvalidConfiguration

logger = logging.getLogger(__name__)


def _as_point(x0: Any) -> pd.Series:
    """Coerce the evaluation point to a float Series with unique labels."""
    if isinstance(x0, pd.Series):
        point = x0.astype(float)
    else:
        values = np.atleast_1d(np.asarray(x0, dtype=float))
        if values.ndim != 1:
            msg = f"x0 must be one-dimensional, got shape {values.shape}."
            raise DimensionMismatch(msg)
        point = pd.Series(values, index=[f"x{i}" for i in range(values.size)])
    if point.size == 0:
        msg = "Cannot differentiate with respect to an empty coefficient vector."
        raise DimensionMismatch(msg)
    if not point.index.is_unique:
        msg = f"Coefficient names must be unique, got {list(point.index)}."
        raise DimensionMismatch(msg)
    return point


def _as_vector(value: Any) -> pd.Series:
    """Promote a scalar or array result of g to a labelled vector."""
    if isinstance(value, pd.Series):
        return value.astype(float)
    arr = np.asarray(value, dtype=float)
    if arr.ndim == 0:
        # Scalar-valued g: a single-effect vector, so J stays 2-D.
        return pd.Series([float(arr)], index=["value"])
    return pd.Series(arr.ravel())


def jacobian(
    fn: Callable[[pd.Series], Any],
    x0: pd.Series | np.ndarray,
    step_size: float = DEFAULT_STEP_SIZE,
    *,
    n_jobs: int = 1,
) -> pd.DataFrame:
    """Central-difference Jacobian of *fn* at *x0*.

    Args:
        fn: Function of a labelled coefficient vector returning a
            Series, array, or scalar.
        x0: Evaluation point.  Plain arrays are labelled
            ``x0, x1, …``.
        step_size: Scalar step h, shared by all coordinates.
        n_jobs: Worker threads for the column evaluations.

    Returns:
        DataFrame of shape ``(m, k)``: rows are the outputs of *fn*
        (a scalar output gives a single row), columns are the labels
        of *x0*.

    Raises:
        InvalidConfiguration: If *step_size* is not positive.
        DimensionMismatch: If *x0* is empty, or *fn* changes its output
            labels between evaluations.
    """
    point = _as_point(x0)
    h = float(step_size)
    if not np.isfinite(h) or h <= 0:
        msg = f"step_size must be a positive finite number, got {step_size!r}."
        raise InvalidConfiguration(msg)

    def column(j: int) -> pd.Series:
        upper = point.copy()
        lower = point.copy()
        upper.iloc[j] += h
        lower.iloc[j] -= h
        f_up = _as_vector(fn(upper))
        f_down = _as_vector(fn(lower))
        if not f_up.index.equals(f_down.index):
            msg = (
                "Function output labels changed between evaluations: "
                f"{list(f_up.index)} vs {list(f_down.index)}."
            )
            raise DimensionMismatch(msg)
        return (f_up - f_down) / (2.0 * h)

    logger.debug("Jacobian: %d coordinates, %d evaluations, h=%g", point.size, 2 * point.size, h)
    columns = map_iterations(column, range(point.size), n_jobs)

    rows = columns[0].index
    for col in columns[1:]:
        if not col.index.equals(rows):
            msg = "Function output labels changed between Jacobian columns."
            raise DimensionMismatch(msg)
    values = np.column_stack([col.to_numpy() for col in columns])
    return pd.DataFrame(values, index=rows, columns=point.index)
