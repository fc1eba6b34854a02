"""Exception hierarchy for effect-variance estimation.

Every failure the package reports derives from
:class:`VarianceEstimationError`, so callers can catch the whole family
with a single ``except`` clause.  Each concrete error also inherits
from the closest built-in exception (``ValueError``, ``TypeError``,
``RuntimeError``) so that code written against the standard library
conventions keeps working.

=====================================  ===================  ==========================================
Error                                  Built-in base        Raised when
=====================================  ===================  ==========================================
:class:`InvalidConfiguration`          ``ValueError``       unknown method / effect type, malformed
                                                            variable selection, bad weights or
                                                            iteration count
:class:`DimensionMismatch`             ``ValueError``       coefficient names and covariance labels
                                                            cannot be aligned
:class:`NonPositiveSemiDefiniteCovariance`  ``ValueError``  the covariance cannot drive
                                                            multivariate-normal sampling
:class:`RefitFailure`                  ``RuntimeError``     a bootstrap refit did not converge or
                                                            hit a singular design
:class:`MissingCollaborator`           ``TypeError``        the model lacks a capability that the
                                                            requested method needs
=====================================  ===================  ==========================================

None of these are ever downgraded to a default value such as a zero
variance.
"""

from __future__ import annotations


class VarianceEstimationError(Exception):
    """Base class for all errors raised by ``marginal_variance``."""


class InvalidConfiguration(VarianceEstimationError, ValueError):
    """An option or argument has an unrecognised or malformed value."""


class DimensionMismatch(VarianceEstimationError, ValueError):
    """Coefficient vector and covariance matrix do not line up."""


class NonPositiveSemiDefiniteCovariance(VarianceEstimationError, ValueError):
    """The covariance matrix has materially negative eigenvalues."""


class RefitFailure(VarianceEstimationError, RuntimeError):
    """Refitting the model on a resampled dataset failed.

    Attributes:
        replicate: Zero-based index of the bootstrap replicate whose
            refit failed, or ``None`` when the failure is not tied to
            a particular replicate.
    """

    def __init__(self, message: str, *, replicate: int | None = None) -> None:
        super().__init__(message)
        self.replicate = replicate


class MissingCollaborator(VarianceEstimationError, TypeError):
    """A required external capability was not supplied."""


__all__ = [
    "DimensionMismatch",
    "InvalidConfiguration",
    "MissingCollaborator",
    "NonPositiveSemiDefiniteCovariance",
    "RefitFailure",
    "VarianceEstimationError",
]
