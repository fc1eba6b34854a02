"""Term classification: which regressors get which kind of effect.

Numeric regressors get a derivative, logical regressors a
``False → True`` contrast, and factor regressors one contrast per
non-baseline level.  :func:`classify_terms` sorts the variables of
interest into those three buckets from the model's ``term_types``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from .exceptions import InvalidConfiguration, MissingCollaborator

_KINDS = ("numeric", "logical", "factor")


@dataclass(frozen=True)
class TermClassification:
    """Variables of interest grouped by kind, each in model order."""

    numeric: tuple[str, ...] = ()
    logical: tuple[str, ...] = ()
    factor: tuple[str, ...] = ()

    @property
    def variables(self) -> tuple[str, ...]:
        return self.numeric + self.logical + self.factor

    def __len__(self) -> int:
        return len(self.variables)


def _normalise_variables(variables: str | Iterable[str] | None) -> list[str] | None:
    if variables is None:
        return None
    if isinstance(variables, str):
        return [variables]
    try:
        names = list(variables)
    except TypeError:
        msg = f"variables must be a string or a list of strings, got {type(variables).__name__}."
        raise InvalidConfiguration(msg) from None
    bad = [v for v in names if not isinstance(v, str)]
    if bad:
        msg = f"variables must be strings, got {bad!r}."
        raise InvalidConfiguration(msg)
    if len(set(names)) != len(names):
        msg = f"variables contains duplicates: {names!r}."
        raise InvalidConfiguration(msg)
    return names or None


def classify_terms(
    model: Any, variables: str | Iterable[str] | None = None
) -> TermClassification:
    """Classify the variables of interest for *model*.

    Args:
        model: A fitted model exposing ``term_types``.
        variables: Regressor names to keep.  ``None`` or empty means
            every regressor of the model.

    Returns:
        A :class:`TermClassification` preserving the model's
        regressor order.

    Raises:
        MissingCollaborator: If *model* has no ``term_types``.
        InvalidConfiguration: If a requested variable is not a
            regressor of the model, or the selection is malformed.
    """
    term_types = getattr(model, "term_types", None)
    if term_types is None:
        msg = (
            f"{type(model).__name__} does not expose 'term_types'; "
            "pass a TermClassification explicitly via 'terms='."
        )
        raise MissingCollaborator(msg)

    selected = _normalise_variables(variables)
    if selected is not None:
        unknown = [v for v in selected if v not in term_types]
        if unknown:
            msg = (
                f"Variables not found in model: {unknown}. "
                f"Available: {list(term_types)}."
            )
            raise InvalidConfiguration(msg)

    buckets: dict[str, list[str]] = {kind: [] for kind in _KINDS}
    for name, kind in term_types.items():
        if selected is not None and name not in selected:
            continue
        if kind not in buckets:
            msg = f"Unknown term kind {kind!r} for variable {name!r}."
            raise InvalidConfiguration(msg)
        buckets[kind].append(name)
    return TermClassification(
        numeric=tuple(buckets["numeric"]),
        logical=tuple(buckets["logical"]),
        factor=tuple(buckets["factor"]),
    )
