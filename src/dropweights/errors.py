"""Exception hierarchy for weight inference."""
from __future__ import annotations


class WeightsError(ValueError):
    """Base class for every error raised by the inference engine."""


class InvalidInput(WeightsError):
    """Raised when the dataset collection is empty or structurally malformed."""


class InvalidMatrix(WeightsError):
    """Raised when a count matrix is empty, non-square or mismatches its item index."""


class InvalidOptions(WeightsError):
    """Raised when estimator options fall outside their valid range."""


__all__ = ["WeightsError", "InvalidInput", "InvalidMatrix", "InvalidOptions"]
