"""Maximum-likelihood estimation of item weights.

The model gives every item a latent score ``theta[i]``; the output distribution
for input row ``k`` is the softmax of ``theta`` restricted to ``i != k``.
Scores are fitted by batch gradient ascent on the multinomial log-likelihood
summed over all input rows.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

import numpy as np

from .count_matrix import build_count_matrix
from .errors import InvalidMatrix
from .models import CountMatrix, MleOptions

logger = logging.getLogger(__name__)

GRADIENT_CLAMP = 100.0
THETA_CLAMP = 50.0


def _coerce_count_matrix(count_matrix: Any) -> CountMatrix:
    if isinstance(count_matrix, CountMatrix):
        counts, item_index = count_matrix.counts, count_matrix.item_index
    elif isinstance(count_matrix, Mapping):
        counts = count_matrix.get("counts")
        item_index = count_matrix.get("item_index", count_matrix.get("itemIndex"))
    else:
        raise InvalidMatrix("Invalid count matrix: expected counts and an item index")

    if counts is None:
        raise InvalidMatrix("Invalid count matrix: counts must be an array")
    if isinstance(counts, np.ndarray):
        if counts.ndim == 1 and counts.size == 0:
            raise InvalidMatrix("Invalid count matrix: counts array is empty")
        if counts.ndim != 2:
            raise InvalidMatrix("Count matrix must be square")
        array = counts.astype(float, copy=True)
    else:
        rows = list(counts)
        if not rows:
            raise InvalidMatrix("Invalid count matrix: counts array is empty")
        n = len(rows)
        for row in rows:
            if not hasattr(row, "__len__") or len(row) != n:
                raise InvalidMatrix("Count matrix must be square")
        array = np.array(rows, dtype=float)

    n = array.shape[0]
    if n == 0:
        raise InvalidMatrix("Invalid count matrix: counts array is empty")
    if array.shape != (n, n):
        raise InvalidMatrix("Count matrix must be square")
    if item_index is None or len(item_index) != n:
        raise InvalidMatrix("Count matrix itemIndex size must match matrix dimensions")
    if not np.all(np.isfinite(array)) or np.any(array < 0):
        raise InvalidMatrix("Count matrix entries must be finite non-negative numbers")
    return CountMatrix(counts=array, item_index=dict(item_index))


def _off_diagonal_sums(exp_theta: np.ndarray, off_diagonal: np.ndarray) -> np.ndarray:
    return off_diagonal @ exp_theta


def _ascent_step(
    theta: np.ndarray,
    column_totals: np.ndarray,
    row_totals: np.ndarray,
    active: np.ndarray,
    off_diagonal: np.ndarray,
    learning_rate: float,
) -> Tuple[np.ndarray, np.ndarray, bool]:
    """Return ``(new_theta, gradient, was_reset)`` for one ascent iteration."""

    reset = False
    exp_theta = np.exp(theta)
    row_sums = _off_diagonal_sums(exp_theta, off_diagonal)
    watched = row_sums[active]
    if not np.all(np.isfinite(watched)) or np.any(watched <= 0):
        theta = np.zeros_like(theta)
        exp_theta = np.ones_like(theta)
        row_sums = _off_diagonal_sums(exp_theta, off_diagonal)
        reset = True

    # rate[k] = n_k / sum_{i != k} exp(theta[i]); the own-row term is removed per output
    rate = np.zeros_like(theta)
    np.divide(row_totals, row_sums, out=rate, where=active)
    gradient = column_totals - exp_theta * (rate.sum() - rate)

    step = learning_rate * np.clip(gradient, -GRADIENT_CLAMP, GRADIENT_CLAMP)
    new_theta = np.clip(theta + step, -THETA_CLAMP, THETA_CLAMP)
    return new_theta, gradient, reset


def softmax(theta: np.ndarray) -> np.ndarray:
    shifted = np.exp(theta - np.max(theta))
    return shifted / shifted.sum()


def restrict_to_support(weights: np.ndarray, support: np.ndarray) -> np.ndarray:
    """Zero out items no input row can produce, then renormalize."""
    if not support.any() or support.all():
        return weights
    restricted = np.where(support, weights, 0.0)
    total = restricted.sum()
    if total <= 0:
        return weights
    return restricted / total


def estimate_weights_from_counts(count_matrix: Any, options: MleOptions | Mapping[str, Any] | None = None) -> np.ndarray:
    """Fit normalized point weights (length N, non-negative, summing to 1)."""

    matrix = _coerce_count_matrix(count_matrix)
    opts = options if isinstance(options, MleOptions) else MleOptions.from_mapping(options)
    opts.validate()

    n = matrix.size
    if n == 1:
        return np.array([1.0])

    row_totals = matrix.row_totals()
    column_totals = matrix.column_totals()
    active = row_totals > 0
    off_diagonal = (~np.eye(n, dtype=bool)).astype(float)

    theta = np.zeros(n)
    resets = 0
    iterations_run = 0
    for iteration in range(opts.iterations):
        theta, gradient, reset = _ascent_step(
            theta, column_totals, row_totals, active, off_diagonal, opts.learning_rate
        )
        resets += int(reset)
        iterations_run = iteration + 1
        if opts.convergence_threshold is not None:
            if float(np.linalg.norm(gradient)) < opts.convergence_threshold:
                logger.debug("MLE converged after %d iterations", iterations_run)
                break

    if resets:
        logger.debug("MLE reset scores to uniform %d times after numerical overflow", resets)
    logger.debug("MLE finished %d iterations over %d items", iterations_run, n)
    return restrict_to_support(softmax(theta), matrix.support_mask())


def estimate_item_weights(
    datasets: Iterable[Any], options: MleOptions | Mapping[str, Any] | None = None
) -> Dict[str, float]:
    """Map each item id to its maximum-likelihood weight."""

    matrix = build_count_matrix(datasets)
    weights = estimate_weights_from_counts(matrix, options)
    return {item_id: float(weights[position]) for item_id, position in matrix.item_index.items()}


__all__ = [
    "GRADIENT_CLAMP",
    "THETA_CLAMP",
    "softmax",
    "restrict_to_support",
    "estimate_weights_from_counts",
    "estimate_item_weights",
]
