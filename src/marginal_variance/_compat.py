"""Input compatibility layer for optional Polars support.

The estimation code works on :class:`pandas.DataFrame` rows.  When a
caller passes a ``polars.DataFrame`` (or ``polars.LazyFrame``) it is
converted at the boundary so that models, effects functions and the
bootstrap resampler only ever see pandas objects.

Polars is **not** a required dependency.  If it is not installed, the
converter simply passes pandas objects through untouched.

The module also normalises the optional per-row weight vector, which
arrives as a list, Series or array and must line up with the rows of
the dataset.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, TypeAlias

import numpy as np
import pandas as pd

from .exceptions import InvalidConfiguration

if TYPE_CHECKING:
    import polars as pl

    DataFrameLike: TypeAlias = pd.DataFrame | pl.DataFrame | pl.LazyFrame
else:
    DataFrameLike: TypeAlias = pd.DataFrame

# Runtime detection; Polars is optional.
try:
    import polars as pl

    _HAS_POLARS = True
except ImportError:
    _HAS_POLARS = False


def _ensure_pandas_df(obj: DataFrameLike, *, name: str = "data") -> pd.DataFrame:
    """Convert *obj* to a :class:`pandas.DataFrame` if necessary.

    Accepted types:
        * ``pandas.DataFrame`` — returned as-is.
        * ``polars.DataFrame`` — converted via ``.to_pandas()``.
        * ``polars.LazyFrame`` — collected then converted.

    Args:
        obj: A pandas or Polars DataFrame (or LazyFrame).
        name: Label used in error messages.

    Returns:
        A pandas ``DataFrame``.

    Raises:
        TypeError: If *obj* is not a recognised DataFrame type.
    """
    if isinstance(obj, pd.DataFrame):
        return obj

    if _HAS_POLARS:
        if isinstance(obj, pl.LazyFrame):
            return obj.collect().to_pandas()
        if isinstance(obj, pl.DataFrame):
            return obj.to_pandas()

    raise TypeError(
        f"'{name}' must be a pandas DataFrame"
        + (" or Polars DataFrame/LazyFrame" if _HAS_POLARS else "")
        + f", got {type(obj).__name__}."
    )


def _ensure_weights(weights: object, n_rows: int) -> np.ndarray | None:
    """Validate an optional weight vector against the row count.

    Weights must be one-dimensional, numeric, finite, non-negative and
    have a positive sum.  A pandas Series is taken by position, not by
    index label, mirroring how the rows of the dataset are addressed
    by the resampler.

    Args:
        weights: ``None`` or a 1-D array-like of length *n_rows*.
        n_rows: Number of rows in the dataset.

    Returns:
        A float64 array of shape ``(n_rows,)``, or ``None``.

    Raises:
        InvalidConfiguration: If the weights are malformed.
    """
    if weights is None:
        return None
    if _HAS_POLARS and isinstance(weights, pl.Series):
        weights = weights.to_numpy()
    try:
        w = np.asarray(weights, dtype=float)
    except (TypeError, ValueError):
        msg = "weights must be numeric."
        raise InvalidConfiguration(msg) from None
    if w.ndim != 1:
        msg = f"weights must be one-dimensional, got shape {w.shape}."
        raise InvalidConfiguration(msg)
    if w.shape[0] != n_rows:
        msg = f"weights has length {w.shape[0]} but data has {n_rows} rows."
        raise InvalidConfiguration(msg)
    if not np.all(np.isfinite(w)):
        msg = "weights must be finite (no NaN or Inf)."
        raise InvalidConfiguration(msg)
    if np.any(w < 0):
        msg = "weights must be non-negative."
        raise InvalidConfiguration(msg)
    if w.sum() <= 0:
        msg = "weights must have a positive sum."
        raise InvalidConfiguration(msg)
    return w
