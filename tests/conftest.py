from __future__ import annotations

import pytest

from dropweights.models import BayesianOptions


@pytest.fixture
def single_input_datasets() -> list:
    return [{"inputItems": [{"id": "a"}], "items": [{"id": "x", "count": 80}, {"id": "y", "count": 20}]}]


@pytest.fixture
def mixed_datasets() -> list:
    return [
        {
            "name": "Chaos run",
            "inputItems": [{"id": "a"}],
            "items": [{"id": "x", "count": 40}, {"id": "y", "count": 10}],
        },
        {
            "inputItems": [{"id": "b"}],
            "items": [{"id": "x", "count": 12}, {"id": "z", "count": 30}],
        },
        {
            "inputItems": [{"id": "a"}, {"id": "b"}],
            "items": [{"id": "z", "count": 10}],
        },
        {
            "description": "Vendor recipe, input not recorded",
            "items": [{"id": "y", "count": 9}, {"id": "z", "count": 3}],
        },
    ]


@pytest.fixture
def fast_bayesian_options() -> BayesianOptions:
    return BayesianOptions(num_samples=300, num_chains=2, burn_in=200, seed=7)
