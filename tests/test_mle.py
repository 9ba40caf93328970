from __future__ import annotations

import numpy as np
import pytest

from dropweights.errors import InvalidInput, InvalidMatrix, InvalidOptions
from dropweights.mle import (
    GRADIENT_CLAMP,
    THETA_CLAMP,
    _ascent_step,
    estimate_item_weights,
    estimate_weights_from_counts,
)
from dropweights.models import CountMatrix, MleOptions


def test_single_known_input_recovers_observed_frequencies(single_input_datasets):
    weights = estimate_item_weights(single_input_datasets)
    assert weights["x"] == pytest.approx(0.8, abs=0.02)
    assert weights["y"] == pytest.approx(0.2, abs=0.02)
    assert weights["a"] == 0.0


def test_identical_counts_give_equal_weights():
    datasets = [
        {"inputItems": [{"id": "a"}], "items": [{"id": "x", "count": 25}, {"id": "y", "count": 25}]},
        {"inputItems": [{"id": "b"}], "items": [{"id": "x", "count": 7}, {"id": "y", "count": 7}]},
    ]
    weights = estimate_item_weights(datasets)
    assert abs(weights["x"] - weights["y"]) < 1e-3


def test_weights_are_non_negative_and_sum_to_one(mixed_datasets):
    weights = estimate_item_weights(mixed_datasets)
    values = np.array(list(weights.values()))
    assert (values >= 0).all()
    assert abs(values.sum() - 1.0) < 1e-6


def test_single_item_universe_has_weight_one():
    weights = estimate_item_weights([{"inputItems": [{"id": "x"}], "items": [{"id": "x", "count": 5}]}])
    assert weights == {"x": 1.0}


def test_weights_are_monotone_in_counts():
    datasets = [
        {"inputItems": [{"id": "a"}], "items": [{"id": "x", "count": 60}, {"id": "y", "count": 30}, {"id": "z", "count": 10}]},
        {"inputItems": [{"id": "b"}], "items": [{"id": "x", "count": 9}, {"id": "y", "count": 6}, {"id": "z", "count": 1}]},
    ]
    weights = estimate_item_weights(datasets)
    assert weights["x"] >= weights["y"] >= weights["z"]


def test_no_evidence_returns_uniform_weights():
    weights = estimate_weights_from_counts({"counts": [[0, 0], [0, 0]], "itemIndex": {"x": 0, "y": 1}})
    assert np.allclose(weights, [0.5, 0.5])


def test_self_transitions_do_not_change_the_fit():
    index = {"p": 0, "q": 1, "r": 2}
    base = np.array([[0.0, 20.0, 80.0], [0.0, 0.0, 0.0], [0.0, 0.0, 0.0]])
    with_diagonal = base.copy()
    with_diagonal[0, 0] = 5000.0
    expected = estimate_weights_from_counts(CountMatrix(counts=base, item_index=index))
    actual = estimate_weights_from_counts(CountMatrix(counts=with_diagonal, item_index=index))
    assert np.allclose(expected, actual)
    assert actual[0] == 0.0
    assert actual[2] == pytest.approx(0.8, abs=0.02)


def test_accepts_camel_case_options_and_early_stop(single_input_datasets):
    weights = estimate_item_weights(
        single_input_datasets, {"learningRate": 0.01, "iterations": 20000, "convergenceThreshold": 1e-6}
    )
    assert weights["x"] == pytest.approx(0.8, abs=1e-3)


def test_ascent_step_resets_on_overflow():
    theta = np.array([1000.0, 0.0, 0.0])
    off_diagonal = (~np.eye(3, dtype=bool)).astype(float)
    row_totals = np.array([10.0, 10.0, 10.0])
    column_totals = np.array([10.0, 10.0, 10.0])
    new_theta, _, reset = _ascent_step(
        theta, column_totals, row_totals, row_totals > 0, off_diagonal, learning_rate=0.001
    )
    assert reset
    assert np.all(np.isfinite(new_theta))
    assert np.abs(new_theta).max() <= 0.001 * GRADIENT_CLAMP + 1e-12


def test_ascent_step_clamps_gradient_and_scores():
    off_diagonal = (~np.eye(3, dtype=bool)).astype(float)
    row_totals = np.array([1e9, 0.0, 0.0])
    column_totals = np.array([0.0, 1e9, 0.0])
    active = row_totals > 0
    new_theta, gradient, reset = _ascent_step(np.zeros(3), column_totals, row_totals, active, off_diagonal, learning_rate=1.0)
    assert not reset
    assert np.abs(gradient).max() > GRADIENT_CLAMP
    assert np.abs(new_theta).max() <= THETA_CLAMP

    pushed, _, _ = _ascent_step(
        np.array([0.0, THETA_CLAMP, 0.0]), column_totals, row_totals, active, off_diagonal, learning_rate=1.0
    )
    assert np.abs(pushed).max() <= THETA_CLAMP


def test_empty_datasets_raise_invalid_input():
    with pytest.raises(InvalidInput):
        estimate_item_weights([])


def test_malformed_item_raises_invalid_input():
    with pytest.raises(InvalidInput, match="position 0"):
        estimate_item_weights([{"items": [{"id": "x", "count": -1}]}])


@pytest.mark.parametrize(
    "matrix",
    [
        {"counts": [], "itemIndex": {}},
        {"counts": [[1, 2]], "itemIndex": {"x": 0}},
        {"counts": [[0, 1], [1, 0]], "itemIndex": {"x": 0}},
        {"counts": [[0, -1], [1, 0]], "itemIndex": {"x": 0, "y": 1}},
        {"counts": [[0, float("nan")], [1, 0]], "itemIndex": {"x": 0, "y": 1}},
    ],
)
def test_invalid_matrices_raise(matrix):
    with pytest.raises(InvalidMatrix):
        estimate_weights_from_counts(matrix)


@pytest.mark.parametrize(
    "options",
    [
        MleOptions(learning_rate=0),
        MleOptions(iterations=0),
        MleOptions(iterations=2.5),
        MleOptions(convergence_threshold=-1.0),
        {"learningRate": -0.1},
    ],
)
def test_invalid_options_raise(single_input_datasets, options):
    with pytest.raises(InvalidOptions):
        estimate_item_weights(single_input_datasets, options)


def test_numpy_integer_options_are_accepted(single_input_datasets):
    weights = estimate_item_weights(single_input_datasets, {"iterations": np.int64(3000), "learningRate": np.float32(0.001)})
    assert weights["x"] == pytest.approx(0.8, abs=0.02)
