"""Helpers shared by the variance strategies."""

from __future__ import annotations

import logging
from collections.abc import Sequence

import numpy as np
import pandas as pd

from ..exceptions import DimensionMismatch
from ..families import INTERCEPT

logger = logging.getLogger(__name__)

# Relative asymmetry of J Σ Jᵀ above which it is symmetrised.
SYMMETRY_TOLERANCE = 1e-10


def align_coefficients(coefficients: pd.Series, covariance: pd.DataFrame) -> pd.Series:
    """Restrict *coefficients* to the labels of *covariance*.

    Keeps the coefficients whose names appear among the covariance
    columns, plus ``(Intercept)`` whenever the model has one, and
    orders them like the covariance columns.  Anything else (e.g. a
    mixed model's variance components) is dropped.

    The kept vector must cover the covariance exactly.  An intercept
    missing from the covariance, a covariance label with no matching
    coefficient, or no overlap at all raises ``DimensionMismatch``
    instead of producing a silently misaligned Jacobian.

    Raises:
        DimensionMismatch: If the labels cannot be aligned.
    """
    cov_labels = list(covariance.columns)
    if list(covariance.index) != cov_labels:
        msg = "Covariance matrix row and column labels differ."
        raise DimensionMismatch(msg)
    if covariance.shape[0] != covariance.shape[1]:
        msg = f"Covariance matrix must be square, got shape {covariance.shape}."
        raise DimensionMismatch(msg)

    names = list(coefficients.index)
    overlap = [label for label in cov_labels if label in names]
    if not overlap:
        msg = (
            f"No coefficient names {names} appear in the covariance labels "
            f"{cov_labels}."
        )
        raise DimensionMismatch(msg)

    kept = list(overlap)
    if INTERCEPT in names and INTERCEPT not in cov_labels:
        kept.insert(0, INTERCEPT)
    dropped = [n for n in names if n not in kept]
    if dropped:
        logger.debug("Dropping coefficients absent from the covariance: %s", dropped)

    if len(kept) != len(cov_labels):
        unmatched = [label for label in cov_labels if label not in names]
        extra = [n for n in kept if n not in cov_labels]
        msg = (
            f"{len(kept)} coefficients do not match the covariance dimension "
            f"{len(cov_labels)} (covariance labels without a coefficient: "
            f"{unmatched}; coefficients without a covariance entry: {extra})."
        )
        raise DimensionMismatch(msg)
    return coefficients[kept].astype(float)


def sandwich(jac: pd.DataFrame, covariance: pd.DataFrame) -> pd.DataFrame:
    """``J Σ Jᵀ``, symmetrised when rounding leaves it asymmetric.

    Raises:
        DimensionMismatch: If the Jacobian columns do not match the
            covariance labels.
    """
    if jac.shape[1] != covariance.shape[0] or list(jac.columns) != list(covariance.columns):
        msg = (
            f"Jacobian has {jac.shape[1]} columns {list(jac.columns)} but the "
            f"covariance has dimension {covariance.shape[0]} "
            f"{list(covariance.columns)}."
        )
        raise DimensionMismatch(msg)
    J = jac.to_numpy(dtype=float)
    V = J @ covariance.to_numpy(dtype=float) @ J.T
    asym = float(np.max(np.abs(V - V.T))) if V.size else 0.0
    scale = max(float(np.max(np.abs(V))) if V.size else 0.0, np.finfo(float).tiny)
    if asym > SYMMETRY_TOLERANCE * scale:
        logger.debug("Symmetrising effects covariance (max asymmetry %.3g)", asym)
        V = 0.5 * (V + V.T)
    return pd.DataFrame(V, index=jac.index, columns=jac.index)


def empirical_covariance(rows: Sequence[pd.Series]) -> pd.DataFrame:
    """Sample covariance (``ddof=1``) across stacked effect vectors.

    Each element of *rows* is one iteration's effects vector; all must
    carry the same labels.

    Raises:
        DimensionMismatch: If the rows carry different labels.
    """
    labels = rows[0].index
    for row in rows[1:]:
        if not row.index.equals(labels):
            msg = (
                "Effects vectors differ between iterations: "
                f"{list(labels)} vs {list(row.index)}."
            )
            raise DimensionMismatch(msg)
    stack = np.vstack([row.to_numpy(dtype=float) for row in rows])
    cov = np.atleast_2d(np.cov(stack, rowvar=False, ddof=1))
    return pd.DataFrame(cov, index=labels, columns=labels)
