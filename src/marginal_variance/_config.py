"""Parallelism configuration for the marginal_variance package.

Controls how many workers the per-iteration loops (Jacobian columns,
simulation draws, bootstrap replicates) may use when the caller does
not pass ``n_jobs`` explicitly.

Resolution order (first match wins):
    1. Programmatic override via :func:`set_n_jobs`.
    2. The ``MARGINAL_VARIANCE_N_JOBS`` environment variable.
    3. The default of ``1`` (serial execution).

Values follow the joblib convention: a positive integer is a worker
count and ``-1`` means "all cores".

Examples:
    Run bootstrap replicates on four threads from the shell::

        export MARGINAL_VARIANCE_N_JOBS=4

    Or programmatically::

        import marginal_variance
        marginal_variance.set_n_jobs(4)

    Restore the default resolution order::

        marginal_variance.set_n_jobs("auto")
"""

from __future__ import annotations

import logging
import os

from .exceptions import InvalidConfiguration

logger = logging.getLogger(__name__)

_ENV_VAR = "MARGINAL_VARIANCE_N_JOBS"
_DEFAULT_N_JOBS = 1

# Sentinel indicating "no programmatic override has been set".
_n_jobs_override: int | None = None


def _validate_n_jobs(value: int) -> int:
    """Return *value* if it is a valid joblib worker count."""
    if isinstance(value, bool) or not isinstance(value, int):
        msg = f"n_jobs must be an integer, got {type(value).__name__}."
        raise InvalidConfiguration(msg)
    if value == 0 or value < -1:
        msg = f"n_jobs must be a positive integer or -1, got {value}."
        raise InvalidConfiguration(msg)
    return value


def get_n_jobs() -> int:
    """Return the active default worker count.

    Resolution order:
        1. Value set by :func:`set_n_jobs` (unless ``"auto"``).
        2. ``MARGINAL_VARIANCE_N_JOBS`` environment variable.
        3. ``1``.

    An unparsable environment value is ignored with a debug log record
    rather than failing every estimation call.

    Returns:
        A positive integer or ``-1``.
    """
    # 1. Programmatic override
    if _n_jobs_override is not None:
        return _n_jobs_override

    # 2. Environment variable
    env = os.environ.get(_ENV_VAR, "").strip()
    if env:
        try:
            return _validate_n_jobs(int(env))
        except ValueError:
            logger.debug("Ignoring invalid %s=%r", _ENV_VAR, env)

    # 3. Default
    return _DEFAULT_N_JOBS


def set_n_jobs(value: int | str) -> None:
    """Override the default worker count.

    Args:
        value: A positive integer, ``-1`` for all cores, or ``"auto"``
            (case-insensitive) to restore the default resolution order.

    Raises:
        InvalidConfiguration: If *value* is not a recognised setting.
    """
    global _n_jobs_override
    if isinstance(value, str):
        if value.strip().lower() != "auto":
            msg = f"Unknown n_jobs setting '{value}'. Use an integer or 'auto'."
            raise InvalidConfiguration(msg)
        _n_jobs_override = None
        return
    _n_jobs_override = _validate_n_jobs(value)


def resolve_n_jobs(n_jobs: int | None) -> int:
    """Return *n_jobs* if given, otherwise the configured default."""
    if n_jobs is None:
        return get_n_jobs()
    return _validate_n_jobs(n_jobs)
