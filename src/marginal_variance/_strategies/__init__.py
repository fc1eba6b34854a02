"""Variance-estimation strategy registry and protocol.

Each strategy encapsulates one way of estimating the covariance of the
average marginal effects (delta method, parametric simulation,
nonparametric bootstrap) and exposes a uniform ``execute()`` interface
that :func:`~marginal_variance.core.get_effect_variances` calls after
the :class:`~marginal_variance.engine.VarianceEngine` has resolved the
data, options, covariance and term classification.

Every strategy returns a :class:`StrategyResult`: the effects
covariance matrix, the Jacobian when one was computed, and the number
of iterations that actually contributed.  Replicating variances to the
row count is the caller's job, not the strategy's.

Adding a new strategy
~~~~~~~~~~~~~~~~~~~~~
1. Create a module under ``_strategies/`` with a class that satisfies
   the :class:`VarianceStrategy` protocol.
2. Register it in the :data:`_STRATEGY_REGISTRY` mapping below.
3. ``get_effect_variances`` will pick it up automatically; the method
   name must also be added to ``_options.VALID_METHODS``.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import pandas as pd

from ..exceptions import InvalidConfiguration

if TYPE_CHECKING:
    from .._options import VarianceOptions
    from ..terms import TermClassification

# ------------------------------------------------------------------ #
# Strategy output
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class StrategyResult:
    """Raw output of a strategy, before row replication.

    Attributes:
        covariance: ``(k, k)`` effects covariance, labelled by effect
            name.
        jacobian: ``(k, p)`` effects-by-coefficients Jacobian, or
            ``None`` for the resampling strategies.
        iterations_used: Draws or replicates that entered the
            empirical covariance, or ``None`` for the delta method.
    """

    covariance: pd.DataFrame
    jacobian: pd.DataFrame | None = None
    iterations_used: int | None = None


# ------------------------------------------------------------------ #
# Strategy protocol
# ------------------------------------------------------------------ #


@runtime_checkable
class VarianceStrategy(Protocol):
    """Interface that every variance strategy must satisfy."""

    name: str
    """Method name the strategy is registered under."""

    def execute(
        self,
        data: pd.DataFrame,
        model: Any,
        *,
        options: VarianceOptions,
        covariance: pd.DataFrame | None,
        terms: TermClassification,
        variables: list[str] | None,
        effects_fn: Callable[..., pd.DataFrame] | None,
    ) -> StrategyResult:
        """Estimate the effects covariance.

        Args:
            data: Dataset at which effects are evaluated.
            model: Fitted model implementing the ``FittedModel``
                capabilities the strategy needs.
            options: Validated option bundle.
            covariance: Resolved coefficient covariance (``None`` for
                strategies that do not use it).
            terms: Term classification of the variables of interest.
            variables: Variables of interest as requested.
            effects_fn: Per-row effects collaborator, or ``None`` for
                the default.

        Returns:
            A :class:`StrategyResult`.
        """
        ...


# ------------------------------------------------------------------ #
# Registry
# ------------------------------------------------------------------ #

# Lazy imports to avoid circular dependencies at module load time.

_STRATEGY_REGISTRY: dict[str, type[VarianceStrategy]] = {}


def _ensure_registry() -> None:
    """Populate the registry on first access."""
    if _STRATEGY_REGISTRY:
        return

    from .bootstrap import BootstrapStrategy
    from .delta import DeltaMethodStrategy
    from .simulation import SimulationStrategy

    _STRATEGY_REGISTRY.update(
        {
            "delta": DeltaMethodStrategy,
            "simulation": SimulationStrategy,
            "bootstrap": BootstrapStrategy,
        }
    )


def resolve_strategy(method: str) -> VarianceStrategy:
    """Return a strategy instance for the given method string.

    Args:
        method: One of ``"delta"``, ``"simulation"``, ``"bootstrap"``.

    Raises:
        InvalidConfiguration: If *method* is not recognised.
    """
    _ensure_registry()
    cls = _STRATEGY_REGISTRY.get(method)
    if cls is None:
        valid = ", ".join(sorted(_STRATEGY_REGISTRY))
        raise InvalidConfiguration(f"Invalid method '{method}'. Choose from: {valid}.")
    return cls()


__all__ = [
    "StrategyResult",
    "VarianceStrategy",
    "resolve_strategy",
]
