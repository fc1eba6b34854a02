"""Variance engine — resolution of everything a strategy consumes.

The :class:`VarianceEngine` centralises the work that happens *before*
a strategy executes:

1. **Data coercion** — accept pandas or Polars input and convert it
   to a pandas ``DataFrame`` once, at the boundary.
2. **Option validation** — method, effect type, step size, iteration
   count, refit policy and weights are checked and frozen into a
   :class:`~marginal_variance._options.VarianceOptions`.
3. **Parallelism** — an explicit ``n_jobs`` wins, otherwise the
   package default from :mod:`marginal_variance._config`.
4. **Term classification** — the caller's ``terms`` or
   ``classify_terms(model, variables)``.
5. **Covariance resolution** — a callable is applied to the model,
   ``None`` asks the model, an unlabelled array borrows the model's
   coefficient names.

``method="none"`` stops after step 3: it must succeed without touching
the model, so neither the terms nor the covariance are resolved.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Any

import numpy as np
import pandas as pd

from ._compat import DataFrameLike, _ensure_pandas_df, _ensure_weights
from ._config import resolve_n_jobs
from ._options import DEFAULT_ITERATIONS, DEFAULT_STEP_SIZE, VarianceOptions
from ._strategies import StrategyResult, VarianceStrategy
from ._typing import CovarianceLike
from .exceptions import DimensionMismatch, InvalidConfiguration, MissingCollaborator
from .families import require_capability
from .terms import TermClassification, _normalise_variables, classify_terms

logger = logging.getLogger(__name__)


class VarianceEngine:
    """Builder that resolves data, options, terms and covariance.

    Construct an engine, then call :meth:`run` with a strategy.  The
    engine captures a snapshot of the resolved state and never
    modifies the data or the model it was given.

    Attributes:
        data: The dataset as a pandas ``DataFrame``.
        model: The fitted model, untouched.
        options: Validated :class:`VarianceOptions`.
        variables: Normalised variable selection (``None`` = all).
        terms: Resolved :class:`TermClassification` (``None`` for
            ``method="none"``).
        covariance: Resolved coefficient covariance (``None`` unless
            the method consumes one).
        effects_fn: Per-row effects collaborator, or ``None`` for the
            default.
    """

    def __init__(
        self,
        data: DataFrameLike,
        model: Any,
        *,
        variables: str | Iterable[str] | None = None,
        effect_type: str = "response",
        covariance: CovarianceLike = None,
        method: str = "delta",
        iterations: int = DEFAULT_ITERATIONS,
        weights: Any = None,
        step_size: float = DEFAULT_STEP_SIZE,
        terms: TermClassification | None = None,
        effects_fn: Callable[..., pd.DataFrame] | None = None,
        random_state: int | np.random.Generator | None = None,
        n_jobs: int | None = None,
        on_refit_failure: str = "raise",
    ) -> None:
        self.data: pd.DataFrame = _ensure_pandas_df(data)
        self.model = model

        self.options = VarianceOptions(
            method=method,
            effect_type=effect_type,
            step_size=step_size,
            iterations=iterations,
            weights=_ensure_weights(weights, len(self.data)),
            n_jobs=resolve_n_jobs(n_jobs),
            random_state=random_state,
            on_refit_failure=on_refit_failure,
        )
        self.variables = _normalise_variables(variables)

        if effects_fn is not None and not callable(effects_fn):
            msg = f"effects_fn must be callable, got {type(effects_fn).__name__}."
            raise MissingCollaborator(msg)
        self.effects_fn = effects_fn

        self.terms: TermClassification | None = None
        self.covariance: pd.DataFrame | None = None
        if self.options.method == "none":
            logger.debug("method='none': skipping term and covariance resolution")
            return

        if len(self.data) == 0:
            msg = "data has no rows; effects cannot be averaged."
            raise InvalidConfiguration(msg)

        self.terms = self._resolve_terms(terms)
        if self.options.needs_covariance:
            self.covariance = self._resolve_covariance(covariance)

        logger.debug(
            "Engine ready: method=%s, effect_type=%s, %d rows, %d variables, n_jobs=%d",
            self.options.method,
            self.options.effect_type,
            len(self.data),
            len(self.terms),
            self.options.n_jobs,
        )

    # ---- Resolution -------------------------------------------------

    def _resolve_terms(self, terms: TermClassification | None) -> TermClassification:
        if terms is None:
            return classify_terms(self.model, self.variables)
        if not isinstance(terms, TermClassification):
            msg = f"terms must be a TermClassification, got {type(terms).__name__}."
            raise InvalidConfiguration(msg)
        return terms

    def _resolve_covariance(self, covariance: CovarianceLike) -> pd.DataFrame:
        """Turn the ``covariance`` argument into a labelled square frame.

        Raises:
            MissingCollaborator: If the model has to supply the
                covariance but cannot.
            DimensionMismatch: If the matrix is not square, or an
                unlabelled matrix does not match the coefficient count.
        """
        if covariance is None:
            require_capability(self.model, "covariance", "Resolving the covariance")
            covariance = self.model.covariance()
        elif callable(covariance) and not isinstance(covariance, (pd.DataFrame, np.ndarray)):
            covariance = covariance(self.model)

        if isinstance(covariance, pd.DataFrame):
            frame = covariance.astype(float)
        else:
            values = np.asarray(covariance, dtype=float)
            if values.ndim != 2 or values.shape[0] != values.shape[1]:
                msg = f"Covariance matrix must be square, got shape {values.shape}."
                raise DimensionMismatch(msg)
            names = self._covariance_labels(values.shape[0])
            frame = pd.DataFrame(values, index=names, columns=names)

        if frame.shape[0] != frame.shape[1]:
            msg = f"Covariance matrix must be square, got shape {frame.shape}."
            raise DimensionMismatch(msg)
        return frame

    def _covariance_labels(self, size: int) -> list[str]:
        """Labels for an unlabelled covariance of dimension *size*.

        The model's coefficient order is tried first.  Models whose
        coefficient vector carries extra entries (the variance
        components of a mixed model) fall back to the labels of their
        own ``covariance()`` when that has the right size.
        """
        require_capability(self.model, "coefficients", "Labelling the covariance")
        names = list(self.model.coefficients().index)
        if len(names) == size:
            return names
        if callable(getattr(self.model, "covariance", None)):
            own = list(self.model.covariance().index)
            if len(own) == size:
                return own
        msg = (
            f"Unlabelled covariance of dimension {size} does not "
            f"match the model's {len(names)} coefficients."
        )
        raise DimensionMismatch(msg)

    # ---- Execution --------------------------------------------------

    def run(self, strategy: VarianceStrategy) -> StrategyResult:
        """Execute *strategy* on the resolved state."""
        if self.terms is None:
            msg = "method='none' has nothing to run."
            raise InvalidConfiguration(msg)
        logger.debug("Running %s strategy", strategy.name)
        return strategy.execute(
            self.data,
            self.model,
            options=self.options,
            covariance=self.covariance,
            terms=self.terms,
            variables=self.variables,
            effects_fn=self.effects_fn,
        )
