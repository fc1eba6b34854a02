"""Explicit option bundle passed by value through every strategy.

:class:`VarianceOptions` enumerates everything that changes how an
estimate is computed — the effect scale, the finite-difference step,
the iteration budget, weights, parallelism, seeding and the bootstrap
refit-failure policy.  Strategies read options from this object
instead of receiving an open-ended ``**kwargs`` bag, so a typo in an
option name fails at construction time rather than being silently
ignored three layers down.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

import numpy as np

from .exceptions import InvalidConfiguration

VALID_METHODS = ("none", "delta", "simulation", "bootstrap")
VALID_EFFECT_TYPES = ("response", "link")
VALID_REFIT_POLICIES = ("raise", "skip")

DEFAULT_STEP_SIZE = 1e-7
DEFAULT_ITERATIONS = 50


def _normalise_choice(value: object, valid: tuple[str, ...], label: str) -> str:
    """Lower-case *value* and check it against *valid*."""
    if not isinstance(value, str):
        msg = f"{label} must be a string, got {type(value).__name__}."
        raise InvalidConfiguration(msg)
    normalised = value.strip().lower()
    if normalised not in valid:
        msg = f"Invalid {label} '{value}'. Choose from: {', '.join(valid)}."
        raise InvalidConfiguration(msg)
    return normalised


@dataclass(frozen=True)
class VarianceOptions:
    """Validated configuration for a single estimation call.

    Attributes:
        method: ``"none"``, ``"delta"``, ``"simulation"`` or
            ``"bootstrap"``.
        effect_type: Scale on which effects are computed:
            ``"response"`` (inverse-link) or ``"link"``.  ``"terms"``
            is rejected.  Per-term predictions are a matrix with one
            column per model term rather than one value per row, so
            there is no single per-row prediction to differentiate
            and average.
        step_size: Finite-difference step shared by the Jacobian and
            the default effects function.
        iterations: Number of draws (simulation) or replicates
            (bootstrap).  Ignored by ``"delta"`` and ``"none"``.
        weights: Optional per-row weights, already validated against
            the dataset's row count.
        n_jobs: Worker count for the per-iteration loops.
        random_state: Seed or ``numpy.random.Generator`` for the
            simulation draws and the bootstrap indices.
        on_refit_failure: ``"raise"`` to abort on the first failed
            bootstrap refit, ``"skip"`` to drop the replicate.
    """

    method: str = "delta"
    effect_type: str = "response"
    step_size: float = DEFAULT_STEP_SIZE
    iterations: int = DEFAULT_ITERATIONS
    weights: np.ndarray | None = field(default=None, compare=False, repr=False)
    n_jobs: int = 1
    random_state: int | np.random.Generator | None = field(default=None, compare=False)
    on_refit_failure: str = "raise"

    def __post_init__(self) -> None:
        effect_type = self.effect_type
        if isinstance(effect_type, str) and effect_type.strip().lower() == "terms":
            msg = (
                "Invalid effect type 'terms': per-term predictions have no single "
                "value per row to differentiate. Choose from: "
                f"{', '.join(VALID_EFFECT_TYPES)}."
            )
            raise InvalidConfiguration(msg)
        # frozen=True blocks normal assignment; normalised strings are
        # written back through object.__setattr__.
        object.__setattr__(
            self, "method", _normalise_choice(self.method, VALID_METHODS, "method")
        )
        object.__setattr__(
            self,
            "effect_type",
            _normalise_choice(self.effect_type, VALID_EFFECT_TYPES, "effect type"),
        )
        object.__setattr__(
            self,
            "on_refit_failure",
            _normalise_choice(
                self.on_refit_failure, VALID_REFIT_POLICIES, "refit-failure policy"
            ),
        )

        try:
            step = float(self.step_size)
        except (TypeError, ValueError):
            step = math.nan
        if not math.isfinite(step) or step <= 0:
            msg = f"step_size must be a positive finite number, got {self.step_size!r}."
            raise InvalidConfiguration(msg)
        object.__setattr__(self, "step_size", step)

        if isinstance(self.iterations, bool) or not isinstance(
            self.iterations, (int, np.integer)
        ):
            msg = f"iterations must be an integer, got {type(self.iterations).__name__}."
            raise InvalidConfiguration(msg)
        object.__setattr__(self, "iterations", int(self.iterations))
        # An empirical covariance needs at least two replicates.
        if self.method in ("simulation", "bootstrap") and self.iterations < 2:
            msg = (
                f"method='{self.method}' needs iterations >= 2, "
                f"got {self.iterations}."
            )
            raise InvalidConfiguration(msg)

    @property
    def needs_covariance(self) -> bool:
        """Whether the method consumes the coefficient covariance."""
        return self.method in ("delta", "simulation")

    def rng(self) -> np.random.Generator:
        """Return a generator seeded from :attr:`random_state`.

        A ``Generator`` instance is returned as-is so that callers who
        thread their own stream keep control over it.
        """
        if isinstance(self.random_state, np.random.Generator):
            return self.random_state
        return np.random.default_rng(self.random_state)
