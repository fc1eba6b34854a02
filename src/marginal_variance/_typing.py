"""Shared type aliases for the marginal_variance package."""

from collections.abc import Callable
from typing import Any

import numpy as np
import pandas as pd

# Coefficient covariance as accepted by the public API: a labelled
# frame, an unlabelled square array, a callable of the model, or None.
CovarianceLike = pd.DataFrame | np.ndarray | Callable[[Any], Any] | None

# Labelled coefficient vector → labelled average effects.
GradientFunction = Callable[[pd.Series], pd.Series]
