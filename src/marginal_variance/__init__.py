"""marginal_variance — Variance estimation for average marginal effects.

Estimates the variance-covariance matrix of average marginal effects
derived from a fitted regression model with the delta method,
parametric simulation from the asymptotic coefficient distribution, or
the nonparametric bootstrap.  Models enter through a small capability
protocol; statsmodels-backed adapters are provided for linear,
logistic, Poisson and random-intercept linear mixed models.

Public API:
    .. autosummary::
        get_effect_variances
        gradient_factory
        average_effects
        jacobian
        marginal_effects
        classify_terms
        draw_coefficients
        generate_bootstrap_indices
        get_n_jobs
        set_n_jobs
        FittedModel
        LinearModel
        LogisticModel
        PoissonModel
        LinearMixedModel
        ModelSpec
        fit_model
        register_model
        resolve_model_class
        VarianceEngine
        VarianceOptions
        TermClassification
        EffectVarianceResult
"""

from ._config import get_n_jobs, set_n_jobs
from ._options import VarianceOptions
from ._results import EffectVarianceResult
from .core import get_effect_variances
from .effects import marginal_effects
from .engine import VarianceEngine
from .exceptions import (
    DimensionMismatch,
    InvalidConfiguration,
    MissingCollaborator,
    NonPositiveSemiDefiniteCovariance,
    RefitFailure,
    VarianceEstimationError,
)
from .families import (
    FittedModel,
    LinearModel,
    LogisticModel,
    ModelSpec,
    PoissonModel,
    fit_model,
    register_model,
    resolve_model_class,
)
from .families_mixed import LinearMixedModel
from .gradient import average_effects, gradient_factory
from .jacobian import jacobian
from .resampling import draw_coefficients, generate_bootstrap_indices
from .terms import TermClassification, classify_terms

__all__ = [
    "EffectVarianceResult",
    "VarianceOptions",
    "VarianceEngine",
    "get_effect_variances",
    "gradient_factory",
    "average_effects",
    "jacobian",
    "marginal_effects",
    "classify_terms",
    "TermClassification",
    "draw_coefficients",
    "generate_bootstrap_indices",
    "get_n_jobs",
    "set_n_jobs",
    "FittedModel",
    "LinearModel",
    "LogisticModel",
    "PoissonModel",
    "LinearMixedModel",
    "ModelSpec",
    "fit_model",
    "register_model",
    "resolve_model_class",
    "VarianceEstimationError",
    "InvalidConfiguration",
    "DimensionMismatch",
    "NonPositiveSemiDefiniteCovariance",
    "RefitFailure",
    "MissingCollaborator",
]

__version__ = "0.1.0"
