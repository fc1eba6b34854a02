"""Random draws for the simulation and bootstrap strategies.

Both generators produce *all* of their draws up front from a single
``numpy.random.Generator``, returning one row per iteration.  The
strategies then consume the rows in any order, on any number of
threads, without touching the generator again, so a fixed seed gives
the same estimate for every worker count.

Coefficient draws
-----------------
:func:`draw_coefficients` samples from N(μ, Σ) through the symmetric
eigen-decomposition Σ = V Λ Vᵀ:

    β⁽ᵇ⁾ = μ + V Λ^{1/2} z⁽ᵇ⁾,   z⁽ᵇ⁾ ~ N(0, I)

Unlike a Cholesky factor, this handles positive *semi*-definite Σ
(e.g. a covariance with an aliased, zero-variance coefficient).  The
precondition is that no eigenvalue is materially negative:

    λ_min ≥ −tol · |λ_max|,   tol = 1e-6

Eigenvalues inside the tolerance band are rounding noise and are
clipped to zero; anything below it means Σ is not a covariance and
``NonPositiveSemiDefiniteCovariance`` is raised.

Bootstrap indices
-----------------
:func:`generate_bootstrap_indices` returns a ``(B, n)`` integer matrix
whose rows are independent uniform samples of ``0..n-1`` with
replacement, one resample of the dataset per row.
"""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd
from scipy import linalg

from .exceptions import (
    DimensionMismatch,
    InvalidConfiguration,
    NonPositiveSemiDefiniteCovariance,
)

logger = logging.getLogger(__name__)

PSD_TOLERANCE = 1e-6


def _check_count(value: int, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)) or value < 1:
        msg = f"{label} must be a positive integer, got {value!r}."
        raise InvalidConfiguration(msg)
    return int(value)


def draw_coefficients(
    mean: pd.Series,
    covariance: pd.DataFrame,
    n_draws: int,
    rng: np.random.Generator,
    *,
    tol: float = PSD_TOLERANCE,
) -> pd.DataFrame:
    """Draw coefficient vectors from N(*mean*, *covariance*).

    Args:
        mean: Coefficient vector; its labels must equal the
            covariance labels in the same order.
        covariance: Square covariance matrix.
        n_draws: Number of vectors to draw.
        rng: Source of randomness.
        tol: Relative tolerance for negative eigenvalues.

    Returns:
        DataFrame of shape ``(n_draws, k)`` with the coefficient
        labels as columns.

    Raises:
        DimensionMismatch: If *mean* and *covariance* are not aligned.
        NonPositiveSemiDefiniteCovariance: If *covariance* is not
            symmetric, not finite, or has materially negative
            eigenvalues.
    """
    n_draws = _check_count(n_draws, "n_draws")
    sigma = covariance.to_numpy(dtype=float)
    mu = mean.to_numpy(dtype=float)
    k = mu.size
    if sigma.shape != (k, k) or list(covariance.columns) != list(mean.index):
        msg = (
            f"Mean of length {k} with labels {list(mean.index)} does not match "
            f"covariance of shape {sigma.shape} with labels {list(covariance.columns)}."
        )
        raise DimensionMismatch(msg)
    if not np.all(np.isfinite(sigma)):
        msg = "Covariance matrix contains NaN or Inf entries."
        raise NonPositiveSemiDefiniteCovariance(msg)
    if not np.allclose(sigma, sigma.T, rtol=1e-8, atol=1e-12):
        msg = "Covariance matrix is not symmetric."
        raise NonPositiveSemiDefiniteCovariance(msg)

    try:
        eigvals, eigvecs = linalg.eigh(sigma)
    except linalg.LinAlgError as exc:
        msg = f"Eigen-decomposition of the covariance failed: {exc}"
        raise NonPositiveSemiDefiniteCovariance(msg) from exc

    # eigh returns eigenvalues in ascending order.
    largest = abs(eigvals[-1])
    if eigvals[0] < -tol * largest:
        msg = (
            f"Covariance matrix is not positive semi-definite "
            f"(smallest eigenvalue {eigvals[0]:.3g}, largest {eigvals[-1]:.3g})."
        )
        raise NonPositiveSemiDefiniteCovariance(msg)

    root = eigvecs * np.sqrt(np.clip(eigvals, 0.0, None))  # V Λ^{1/2}
    z = rng.standard_normal((n_draws, k))
    draws = mu + z @ root.T
    logger.debug("Drew %d coefficient vectors of length %d", n_draws, k)
    return pd.DataFrame(draws, columns=mean.index)


def generate_bootstrap_indices(
    n_samples: int,
    n_resamples: int,
    rng: np.random.Generator,
) -> np.ndarray:
    """Row indices for *n_resamples* bootstrap resamples of size *n_samples*.

    Returns:
        Integer array of shape ``(n_resamples, n_samples)``.
    """
    n_samples = _check_count(n_samples, "n_samples")
    n_resamples = _check_count(n_resamples, "n_resamples")
    return rng.integers(0, n_samples, size=(n_resamples, n_samples))
