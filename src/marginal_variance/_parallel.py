"""Ordered map over independent iterations, optionally on threads.

Jacobian columns, simulation draws and bootstrap replicates are
embarrassingly parallel.  ``map_iterations`` runs them in order on the
calling thread when ``n_jobs == 1`` and through
``joblib.Parallel(prefer="threads")`` otherwise.  Threads rather than
processes: the data and the original model are shared read-only, the
statsmodels/NumPy solvers release the GIL in their BLAS/LAPACK calls,
and nothing has to be pickled.

Results always come back in input order, and every random quantity is
drawn before the map starts, so the output does not depend on the
worker count.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import TypeVar

from joblib import Parallel, delayed

T = TypeVar("T")
R = TypeVar("R")


def map_iterations(func: Callable[[T], R], items: Iterable[T], n_jobs: int = 1) -> list[R]:
    """Apply *func* to every item, preserving order."""
    # Sequential path — avoids joblib overhead for the default case.
    if n_jobs == 1:
        return [func(item) for item in items]
    return list(Parallel(n_jobs=n_jobs, prefer="threads")(delayed(func)(item) for item in items))
