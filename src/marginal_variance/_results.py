"""Typed result object for :func:`get_effect_variances`.

:class:`EffectVarianceResult` is a frozen dataclass with dict-style
access (``result["variances"]``, ``result.get(...)``, ``"key" in
result``) and :meth:`~_DictAccessMixin.to_dict` for plain-Python
export.  Variance columns follow the ``Var_<effect name>`` naming of
the per-row effects, each replicated to the dataset's row count so
they can be bound next to the effects frame.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, ClassVar

import numpy as np
import pandas as pd

VARIANCE_PREFIX = "Var_"


def _numpy_to_python(obj: Any) -> Any:
    """Recursively convert NumPy and pandas containers to Python-native types.

    DataFrames become ``{row: {column: value}}`` mappings and Series
    become ``{label: value}`` mappings, so :meth:`to_dict` returns a
    fully JSON-serialisable structure.
    """
    if isinstance(obj, pd.DataFrame):
        return {
            row: {col: _numpy_to_python(val) for col, val in values.items()}
            for row, values in obj.to_dict(orient="index").items()
        }
    if isinstance(obj, pd.Series):
        return {k: _numpy_to_python(v) for k, v in obj.items()}
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, (np.integer, np.bool_)):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, dict):
        return {k: _numpy_to_python(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        converted = [_numpy_to_python(item) for item in obj]
        return type(obj)(converted)
    return obj


# ------------------------------------------------------------------ #
# Dict-compatibility mixin
# ------------------------------------------------------------------ #


class _DictAccessMixin:
    """Dict-like access convenience for result dataclasses.

    Supports three access patterns:

    1. ``result["key"]``     — raises ``KeyError`` on miss
    2. ``result.get(key, d)`` — returns *d* on miss (default ``None``)
    3. ``"key" in result``   — membership test
    """

    _EXCLUDE_FROM_DICT: ClassVar[frozenset[str]] = frozenset()

    def __getitem__(self, key: str) -> Any:
        """Attribute lookup via bracket syntax."""
        try:
            return getattr(self, key)
        except AttributeError:
            raise KeyError(key) from None

    def get(self, key: str, default: Any = None) -> Any:
        """Attribute lookup with a fallback default."""
        return getattr(self, key, default)

    def __contains__(self, key: object) -> bool:
        """Membership test: ``"key" in result``."""
        if not isinstance(key, str):
            return False
        return key in {f.name for f in fields(self)}  # type: ignore[arg-type]

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary of Python-native values."""
        return {
            f.name: _numpy_to_python(getattr(self, f.name))
            for f in fields(self)  # type: ignore[arg-type]
            if f.name not in self._EXCLUDE_FROM_DICT
        }


# ------------------------------------------------------------------ #
# Effect variance result
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class EffectVarianceResult(_DictAccessMixin):
    """Variance estimates for a vector of average marginal effects.

    Attributes:
        method: Strategy that produced the estimate (``"none"``,
            ``"delta"``, ``"simulation"`` or ``"bootstrap"``).
        variances: ``{"Var_<effect>": array}``, each array the effect's
            variance repeated once per data row.  ``None`` for
            ``method="none"``.
        covariance: ``(k, k)`` effects covariance labelled by effect
            name, or ``None`` for ``method="none"``.
        jacobian: ``(k, p)`` Jacobian of the average effects with
            respect to the coefficients (delta method only).
        iterations_used: Draws or bootstrap replicates that entered
            the covariance; fewer than requested when replicates were
            skipped.  ``None`` for ``"none"`` and ``"delta"``.
        n_rows: Number of rows the variances are replicated to.
    """

    method: str
    variances: dict[str, np.ndarray] | None = None
    covariance: pd.DataFrame | None = None
    jacobian: pd.DataFrame | None = None
    iterations_used: int | None = None
    n_rows: int = 0

    @property
    def effect_names(self) -> list[str]:
        """Effect names in covariance order (empty for ``method="none"``)."""
        if self.covariance is None:
            return []
        return [str(name) for name in self.covariance.index]

    def standard_errors(self) -> pd.Series | None:
        """``sqrt(diag(V))`` indexed by effect name.

        Tiny negative diagonal entries left by floating-point rounding
        are clipped to zero.  Returns ``None`` for ``method="none"``.
        """
        if self.covariance is None:
            return None
        diag = np.clip(np.diag(self.covariance.to_numpy(dtype=float)), 0.0, None)
        return pd.Series(np.sqrt(diag), index=self.covariance.index, name="std_err")

    def to_frame(self) -> pd.DataFrame | None:
        """The replicated variances as a DataFrame with one row per data row."""
        if self.variances is None:
            return None
        return pd.DataFrame(self.variances)
