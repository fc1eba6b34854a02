"""Fitted-model capability protocol, adapters, and registry.

The ``FittedModel`` protocol is the only view the estimation code has
of a statistical model.  It replaces model-class type checks with four
capabilities that every supported model family implements directly:

* ``coefficients()`` — the named coefficient vector β̂.
* ``covariance()`` — the coefficient covariance matrix Σ̂.
* ``refit(data)`` — the same model specification fitted to new rows.
* ``with_coefficients(beta)`` — a new model view whose predictions use
  *beta*; the original object is never touched.

plus the two hooks consumed by the default effects and term
classification collaborators:

* ``predict(data, effect_type)`` — per-row predictions on the
  ``"response"`` or ``"link"`` scale.
* ``term_types`` — mapping of regressor name to ``"numeric"``,
  ``"logical"`` or ``"factor"``.

Concrete adapters are frozen dataclasses wrapping statsmodels fits.
``with_coefficients`` is a ``dataclasses.replace`` call, so every
coefficient substitution produces an independent object and Jacobian
columns, simulation draws and bootstrap replicates can be evaluated
concurrently without sharing a mutable model.

Architecture
~~~~~~~~~~~~
Each adapter is built from a :class:`ModelSpec` — response, regressors,
intercept flag, and the regressor kinds and factor levels frozen at the
first fit.  ``refit`` re-runs the statsmodels estimator on new rows with
the *same* spec, so a bootstrap resample that happens to miss a factor
level still produces a coefficient vector with the original labels (the
missing level's dummy column is all zeros).

Extensibility
~~~~~~~~~~~~~
New families are added by subclassing :class:`_RegressionModel` (or by
writing any class with the protocol's methods) and registering it with
:func:`register_model`.  The estimation engine programs against the
protocol, never against concrete classes.
"""

from __future__ import annotations

import logging
import threading
import warnings
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from typing import Any, ClassVar, Protocol, runtime_checkable

import numpy as np
import pandas as pd
import statsmodels.api as sm
from scipy.special import expit
from statsmodels.tools.sm_exceptions import (
    ConvergenceWarning as SmConvergenceWarning,
)
from statsmodels.tools.sm_exceptions import (
    HessianInversionWarning,
    PerfectSeparationWarning,
)
from typing_extensions import Self

from ._compat import DataFrameLike, _ensure_pandas_df
from .exceptions import (
    DimensionMismatch,
    InvalidConfiguration,
    MissingCollaborator,
    RefitFailure,
)

logger = logging.getLogger(__name__)

INTERCEPT = "(Intercept)"

# ``warnings.catch_warnings`` swaps the interpreter-wide filter list, so
# concurrent refits on joblib threads must enter it one at a time.
_FIT_WARNINGS_LOCK = threading.Lock()

# ------------------------------------------------------------------ #
# FittedModel protocol
# ------------------------------------------------------------------ #


@runtime_checkable
class FittedModel(Protocol):
    """Interface that every model adapter must implement.

    Attributes:
        name: Short family identifier (e.g. ``"linear"``,
            ``"logistic"``, ``"linear_mixed"``).
        term_types: Mapping of regressor name to its kind
            (``"numeric"``, ``"logical"`` or ``"factor"``).  Consumed
            by :func:`~marginal_variance.terms.classify_terms`.
    """

    @property
    def name(self) -> str: ...

    @property
    def term_types(self) -> dict[str, str]: ...

    def coefficients(self) -> pd.Series:
        """Return the named coefficient vector.

        May contain entries absent from :meth:`covariance` (e.g.
        variance components of a mixed model); the estimation code
        aligns the two by label before use.
        """
        ...

    def covariance(self) -> pd.DataFrame:
        """Return the coefficient covariance with matching row/column labels."""
        ...

    def refit(self, data: pd.DataFrame) -> FittedModel:
        """Fit the same model specification to *data*.

        Raises:
            RefitFailure: If the fit does not converge or the design
                is degenerate.
        """
        ...

    def with_coefficients(self, coefficients: pd.Series) -> FittedModel:
        """Return a new model view using *coefficients*.

        Entries of *coefficients* replace the same-named entries of
        :meth:`coefficients`; names not listed keep their fitted
        value.  The receiver is not modified.

        Raises:
            DimensionMismatch: If *coefficients* names a coefficient
                the model does not have.
        """
        ...

    def predict(
        self, data: pd.DataFrame, effect_type: str = "response"
    ) -> np.ndarray:
        """Return per-row predictions of shape ``(len(data),)``.

        Rows with missing regressor values predict ``NaN``.
        """
        ...


_CAPABILITIES = ("coefficients", "covariance", "refit", "with_coefficients", "predict")


def require_capability(model: Any, capability: str, purpose: str) -> None:
    """Raise ``MissingCollaborator`` unless *model* has *capability*.

    Args:
        model: Any object passed as the fitted model.
        capability: Method name that must be callable on *model*.
        purpose: Short description of what needs it, for the message.
    """
    if not callable(getattr(model, capability, None)):
        msg = (
            f"{purpose} requires the model to implement '{capability}()', "
            f"but {type(model).__name__} does not."
        )
        raise MissingCollaborator(msg)


# ------------------------------------------------------------------ #
# Model specification and design matrices
# ------------------------------------------------------------------ #


def _classify_column(values: pd.Series) -> str:
    """Map a column dtype to a regressor kind."""
    if pd.api.types.is_bool_dtype(values):
        return "logical"
    if isinstance(values.dtype, pd.CategoricalDtype) or not pd.api.types.is_numeric_dtype(
        values
    ):
        return "factor"
    return "numeric"


def _factor_levels(values: pd.Series) -> tuple[Any, ...]:
    """Sorted distinct levels; declared categories win for categoricals."""
    if isinstance(values.dtype, pd.CategoricalDtype):
        return tuple(values.cat.categories)
    return tuple(sorted(pd.unique(values.dropna()), key=str))


@dataclass(frozen=True)
class ModelSpec:
    """Everything needed to rebuild a design matrix and refit a model.

    Attributes:
        response: Name of the outcome column.
        regressors: Names of the predictor columns, in model order.
        fit_intercept: Whether an ``(Intercept)`` column is prepended.
        kinds: Regressor kind per name (``"numeric"``, ``"logical"``,
            ``"factor"``), frozen at the first fit.
        levels: Factor levels per factor regressor; the first level is
            the treatment-coding baseline.
        groups: Grouping column for mixed models, ``None`` otherwise.
    """

    response: str
    regressors: tuple[str, ...]
    fit_intercept: bool = True
    kinds: dict[str, str] = field(default_factory=dict)
    levels: dict[str, tuple[Any, ...]] = field(default_factory=dict)
    groups: str | None = None

    @classmethod
    def from_data(
        cls,
        data: pd.DataFrame,
        response: str,
        regressors: Sequence[str],
        *,
        fit_intercept: bool = True,
        groups: str | None = None,
    ) -> ModelSpec:
        """Infer regressor kinds and factor levels from *data*."""
        regressors = tuple(regressors)
        if not regressors:
            msg = "A model needs at least one regressor."
            raise InvalidConfiguration(msg)
        if response in regressors:
            msg = f"Response '{response}' cannot also be a regressor."
            raise InvalidConfiguration(msg)
        required = [response, *regressors] + ([groups] if groups else [])
        missing = [c for c in required if c not in data.columns]
        if missing:
            msg = f"Columns not found in data: {missing}."
            raise InvalidConfiguration(msg)

        kinds = {name: _classify_column(data[name]) for name in regressors}
        levels = {
            name: _factor_levels(data[name])
            for name, kind in kinds.items()
            if kind == "factor"
        }
        for name, lv in levels.items():
            if len(lv) < 2:
                msg = f"Factor '{name}' needs at least two levels, got {len(lv)}."
                raise InvalidConfiguration(msg)
        return cls(
            response=response,
            regressors=regressors,
            fit_intercept=fit_intercept,
            kinds=kinds,
            levels=levels,
            groups=groups,
        )

    @property
    def columns(self) -> list[str]:
        """Data columns the model reads, in a stable order."""
        cols = [self.response, *self.regressors]
        if self.groups is not None:
            cols.append(self.groups)
        return cols


def dummy_name(variable: str, level: Any) -> str:
    """Treatment-coded column label, e.g. ``"region[T.south]"``."""
    return f"{variable}[T.{level}]"


def design_matrix(spec: ModelSpec, data: pd.DataFrame) -> pd.DataFrame:
    """Build the design matrix for *data* under *spec*.

    Numeric regressors enter as-is, logical regressors as a single
    ``name[T.True]`` indicator, and factor regressors as one indicator
    per non-baseline level.  Values missing in the data stay ``NaN`` in
    every column they feed, so predictions for those rows are ``NaN``.
    Levels not seen at the first fit code as the baseline.
    """
    n = len(data)
    columns: dict[str, np.ndarray] = {}
    if spec.fit_intercept:
        columns[INTERCEPT] = np.ones(n)
    for var in spec.regressors:
        kind = spec.kinds.get(var, "numeric")
        values = data[var]
        missing = values.isna().to_numpy()
        if kind == "factor":
            obj = values.astype(object).to_numpy()
            for level in spec.levels[var][1:]:
                col = (obj == level).astype(float)
                col[missing] = np.nan
                columns[dummy_name(var, level)] = col
        elif kind == "logical":
            col = values.astype(float).to_numpy()
            columns[dummy_name(var, True)] = col
        else:
            columns[var] = values.astype(float).to_numpy()
    return pd.DataFrame(columns, index=data.index)


# ------------------------------------------------------------------ #
# Shared statsmodels adapter
# ------------------------------------------------------------------ #
#
# Fitting happens once for the observed data and once per bootstrap
# replicate.  statsmodels signals a failed fit in three ways:
#
#   1. Raising ``LinAlgError`` / ``ValueError`` (singular or empty
#      design, invalid response).
#   2. Emitting ``ConvergenceWarning``, ``PerfectSeparationWarning``
#      or ``HessianInversionWarning``.
#   3. Returning a results object with ``converged = False``.
#
# All three are normalised to ``RefitFailure`` so the bootstrap
# strategy can apply a single skip-or-abort policy.


@dataclass(frozen=True)
class _RegressionModel:
    """Base adapter: statsmodels fit + linear predictor ``η = Xβ``.

    Subclasses set :attr:`name`, implement :meth:`_fit_results` and
    :meth:`_inverse_link`, and may override :meth:`_validate_response`.
    """

    spec: ModelSpec
    params: pd.Series
    results: Any = field(default=None, compare=False, repr=False)

    name: ClassVar[str] = "regression"
    _failure_warnings: ClassVar[tuple[type[Warning], ...]] = (
        SmConvergenceWarning,
        PerfectSeparationWarning,
        HessianInversionWarning,
    )

    # ---- Construction ----------------------------------------------

    @classmethod
    def fit(
        cls,
        data: DataFrameLike,
        response: str,
        regressors: Sequence[str],
        *,
        fit_intercept: bool = True,
        **kwargs: Any,
    ) -> Self:
        """Fit the model to *data* and return the adapter.

        Rows with a missing response or regressor are dropped before
        fitting.

        Raises:
            InvalidConfiguration: If columns are missing or the
                response is unsuitable for the family.
            RefitFailure: If statsmodels fails to produce a fit.
        """
        data = _ensure_pandas_df(data)
        spec = ModelSpec.from_data(
            data, response, regressors, fit_intercept=fit_intercept, **kwargs
        )
        return cls._fit_spec(spec, data)

    @classmethod
    def _fit_spec(cls, spec: ModelSpec, data: pd.DataFrame) -> Self:
        complete = data.dropna(subset=spec.columns)
        if len(complete) == 0:
            msg = f"{cls.name} model: no complete rows to fit."
            raise RefitFailure(msg)
        endog = complete[spec.response]
        cls._validate_response(endog)
        exog = design_matrix(spec, complete)

        with _FIT_WARNINGS_LOCK, warnings.catch_warnings():
            for category in cls._failure_warnings:
                warnings.simplefilter("error", category)
            try:
                results = cls._fit_results(endog.astype(float), exog, complete, spec)
            except (np.linalg.LinAlgError, ValueError, *cls._failure_warnings) as exc:
                msg = f"{cls.name} model fit failed: {exc}"
                raise RefitFailure(msg) from exc

        if not getattr(results, "converged", True):
            msg = f"{cls.name} model fit did not converge."
            raise RefitFailure(msg)

        params = cls._extract_params(results, exog, spec)
        if not np.all(np.isfinite(params.to_numpy())):
            msg = f"{cls.name} model fit produced non-finite coefficients."
            raise RefitFailure(msg)
        return cls(spec=spec, params=params, results=results)

    @classmethod
    def _fit_results(
        cls,
        endog: pd.Series,
        exog: pd.DataFrame,
        data: pd.DataFrame,
        spec: ModelSpec,
    ) -> Any:
        raise NotImplementedError

    @classmethod
    def _extract_params(
        cls, results: Any, exog: pd.DataFrame, spec: ModelSpec
    ) -> pd.Series:
        return pd.Series(
            np.asarray(results.params, dtype=float), index=list(exog.columns)
        )

    @classmethod
    def _validate_response(cls, y: pd.Series) -> None:
        if not pd.api.types.is_numeric_dtype(y):
            msg = f"{cls.name} model requires a numeric response."
            raise InvalidConfiguration(msg)

    # ---- Capabilities ----------------------------------------------

    @property
    def term_types(self) -> dict[str, str]:
        return dict(self.spec.kinds)

    def coefficients(self) -> pd.Series:
        return self.params.copy()

    def covariance(self) -> pd.DataFrame:
        """Model-based covariance ``cov_params()`` of the original fit.

        Coefficient substitution does not change it: the covariance
        describes the sampling distribution of β̂, not of the values
        plugged in by :meth:`with_coefficients`.
        """
        cov = np.asarray(self.results.cov_params(), dtype=float)
        names = list(self.params.index)
        return pd.DataFrame(cov, index=names, columns=names)

    def refit(self, data: pd.DataFrame) -> Self:
        return type(self)._fit_spec(self.spec, data)

    def with_coefficients(self, coefficients: pd.Series) -> Self:
        coefficients = pd.Series(coefficients, dtype=float)
        unknown = coefficients.index.difference(self.params.index)
        if len(unknown) > 0:
            msg = f"Unknown coefficient names for {self.name} model: {list(unknown)}."
            raise DimensionMismatch(msg)
        params = self.params.copy()
        params.loc[coefficients.index] = coefficients.to_numpy()
        return replace(self, params=params)

    def linear_predictor(self, data: pd.DataFrame) -> np.ndarray:
        """``η = Xβ`` for each row of *data*."""
        X = design_matrix(self.spec, data)
        beta = self.params.reindex(X.columns).to_numpy()
        return X.to_numpy() @ beta

    def predict(
        self, data: pd.DataFrame, effect_type: str = "response"
    ) -> np.ndarray:
        eta = self.linear_predictor(data)
        if effect_type == "link":
            return eta
        if effect_type == "response":
            return self._inverse_link(eta)
        msg = f"Unknown effect type '{effect_type}'. Use 'response' or 'link'."
        raise InvalidConfiguration(msg)

    def _inverse_link(self, eta: np.ndarray) -> np.ndarray:
        return eta


# ------------------------------------------------------------------ #
# Concrete families
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class LinearModel(_RegressionModel):
    """Ordinary least squares via ``statsmodels.OLS``.

    The link is the identity, so ``"response"`` and ``"link"`` effects
    coincide.  OLS solves with a pseudoinverse and therefore never
    fails on a rank-deficient bootstrap resample; the aliased
    coefficients take their minimum-norm values.
    """

    name: ClassVar[str] = "linear"

    @classmethod
    def _fit_results(cls, endog, exog, data, spec):
        return sm.OLS(endog, exog).fit()


@dataclass(frozen=True)
class LogisticModel(_RegressionModel):
    """Binomial GLM with logit link via ``statsmodels.GLM``.

    Response-scale predictions are probabilities ``expit(η)``.
    Perfect separation in a resample surfaces as ``RefitFailure``.
    """

    name: ClassVar[str] = "logistic"

    @classmethod
    def _validate_response(cls, y: pd.Series) -> None:
        super()._validate_response(y)
        if not np.all(np.isin(y.to_numpy(), [0, 1])):
            msg = "logistic model requires a binary response coded 0/1."
            raise InvalidConfiguration(msg)

    @classmethod
    def _fit_results(cls, endog, exog, data, spec):
        return sm.GLM(endog, exog, family=sm.families.Binomial()).fit()

    def _inverse_link(self, eta: np.ndarray) -> np.ndarray:
        return expit(eta)


@dataclass(frozen=True)
class PoissonModel(_RegressionModel):
    """Poisson GLM with log link via ``statsmodels.GLM``."""

    name: ClassVar[str] = "poisson"

    @classmethod
    def _validate_response(cls, y: pd.Series) -> None:
        super()._validate_response(y)
        if np.any(y.to_numpy() < 0):
            msg = "poisson model requires a non-negative response."
            raise InvalidConfiguration(msg)

    @classmethod
    def _fit_results(cls, endog, exog, data, spec):
        return sm.GLM(endog, exog, family=sm.families.Poisson()).fit()

    def _inverse_link(self, eta: np.ndarray) -> np.ndarray:
        return np.exp(eta)


# ------------------------------------------------------------------ #
# Registry
# ------------------------------------------------------------------ #

_MODELS: dict[str, type] = {}


def register_model(name: str, cls: type) -> None:
    """Register a model adapter class under *name*.

    The class must expose a ``fit`` constructor and every capability
    of the :class:`FittedModel` protocol.

    Raises:
        TypeError: If *cls* lacks any of them.
    """
    missing = [
        attr for attr in ("fit", *_CAPABILITIES) if not callable(getattr(cls, attr, None))
    ]
    if missing:
        msg = f"{cls!r} does not implement the FittedModel protocol (missing {missing})."
        raise TypeError(msg)
    _MODELS[name] = cls


def resolve_model_class(family: str, y: np.ndarray | None = None) -> type:
    """Map a family string to a registered adapter class.

    ``"auto"`` picks ``"logistic"`` for a 0/1 response and
    ``"linear"`` otherwise, warning when the response looks like
    counts.

    Raises:
        InvalidConfiguration: If *family* is unknown, or ``"auto"``
            is requested without *y*.
    """
    if family == "auto":
        if y is None:
            msg = "resolve_model_class() requires 'y' when family='auto'."
            raise InvalidConfiguration(msg)
        y = np.asarray(y, dtype=float)
        y = y[~np.isnan(y)]
        unique_y = np.unique(y)
        is_binary = bool(len(unique_y) == 2 and np.all(np.isin(unique_y, [0, 1])))
        if is_binary:
            family = "logistic"
        else:
            family = "linear"
            _is_integer = np.all(np.equal(np.mod(y, 1), 0))
            if _is_integer and np.all(y >= 0) and len(unique_y) > 2:
                warnings.warn(
                    "Response looks like count data (non-negative integers with "
                    f"{len(unique_y)} unique values). Consider family='poisson'.",
                    UserWarning,
                    stacklevel=3,
                )
    if family not in _MODELS:
        available = ", ".join(sorted(_MODELS)) or "(none registered)"
        msg = f"Unknown model family {family!r}.  Available families: {available}."
        raise InvalidConfiguration(msg)
    return _MODELS[family]


def fit_model(
    family: str,
    data: DataFrameLike,
    response: str,
    regressors: Sequence[str],
    **kwargs: Any,
) -> FittedModel:
    """Fit a registered model family and return its adapter.

    Args:
        family: Registered family name, or ``"auto"``.
        data: Training data.
        response: Outcome column.
        regressors: Predictor columns.
        **kwargs: Forwarded to the adapter's ``fit`` (e.g.
            ``fit_intercept``, ``groups``).

    Returns:
        A fitted adapter implementing :class:`FittedModel`.
    """
    data = _ensure_pandas_df(data)
    y = None
    if family == "auto":
        if response not in data.columns:
            msg = f"Response column '{response}' not found in data."
            raise InvalidConfiguration(msg)
        y = data[response].to_numpy()
    cls = resolve_model_class(family, y)
    logger.debug("Fitting %s model for %r on %d rows", cls.name, response, len(data))
    return cls.fit(data, response, regressors, **kwargs)


register_model("linear", LinearModel)
register_model("logistic", LogisticModel)
register_model("poisson", PoissonModel)
