"""Inference of item drop weights from observed transformation datasets."""

from .errors import InvalidInput, InvalidMatrix, InvalidOptions, WeightsError
from .models import BayesianOptions, BayesianResult, CountMatrix, Dataset, MleOptions
from .count_matrix import build_count_matrix
from .mle import estimate_item_weights, estimate_weights_from_counts
from .bayesian import infer_weights, infer_weights_per_input_item
from .per_input import estimate_item_weights_per_input, estimate_per_input
from .posterior_stats import compute_statistics
from .api import WeightRequest, calculate_weights

__all__ = [
    "WeightsError",
    "InvalidInput",
    "InvalidMatrix",
    "InvalidOptions",
    "BayesianOptions",
    "BayesianResult",
    "CountMatrix",
    "Dataset",
    "MleOptions",
    "build_count_matrix",
    "estimate_item_weights",
    "estimate_weights_from_counts",
    "infer_weights",
    "infer_weights_per_input_item",
    "estimate_item_weights_per_input",
    "estimate_per_input",
    "compute_statistics",
    "WeightRequest",
    "calculate_weights",
]
