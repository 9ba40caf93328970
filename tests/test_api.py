from __future__ import annotations

import pytest

from dropweights.api import WeightRequest, calculate_weights
from dropweights.cache import MemoryWeightCache
from dropweights.errors import InvalidOptions
from dropweights.models import BayesianResult


def test_second_request_is_served_from_cache(single_input_datasets, monkeypatch):
    cache = MemoryWeightCache()
    request = WeightRequest(category_id="currency", method="mle", options={"iterations": 2000})
    first = calculate_weights(request, single_input_datasets, cache=cache)

    def fail(*args, **kwargs):
        raise AssertionError("estimator should not run on a cache hit")

    monkeypatch.setattr("dropweights.api.estimate_item_weights", fail)
    second = calculate_weights(request, single_input_datasets, cache=cache)
    assert second == pytest.approx(first)
    assert len(cache.keys()) == 1


def test_bayesian_request_without_cache(single_input_datasets, fast_bayesian_options):
    request = WeightRequest(category_id="currency", method="bayesian", options=fast_bayesian_options)
    result = calculate_weights(request, single_input_datasets)
    assert isinstance(result, BayesianResult)


def test_per_input_requests_bypass_cache(mixed_datasets):
    cache = MemoryWeightCache()
    request = WeightRequest(category_id="currency", per_input=True, options={"iterations": 500})
    results = calculate_weights(request, mixed_datasets, cache=cache)
    assert list(results) == ["a", "b", "unknown"]
    assert cache.keys() == []


def test_unknown_method_is_rejected(single_input_datasets):
    with pytest.raises(InvalidOptions):
        calculate_weights(WeightRequest(category_id="currency", method="median"), single_input_datasets)
