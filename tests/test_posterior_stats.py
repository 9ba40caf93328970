from __future__ import annotations

import numpy as np
import pytest

from dropweights.errors import InvalidInput, InvalidOptions
from dropweights.posterior_stats import (
    compute_convergence_diagnostics,
    compute_credible_interval,
    compute_map,
    compute_median,
    compute_statistics,
    effective_sample_size,
    split_rhat,
)


def _ar1(rng: np.random.Generator, phi: float, size: int) -> np.ndarray:
    series = np.empty(size)
    series[0] = rng.standard_normal()
    for t in range(1, size):
        series[t] = phi * series[t - 1] + rng.standard_normal()
    return series


def test_median_of_odd_sample():
    assert compute_median([0.3, 0.1, 0.2]) == pytest.approx(0.2)


def test_map_finds_the_mode_of_a_unimodal_sample():
    rng = np.random.default_rng(0)
    samples = rng.normal(0.3, 0.05, size=5000)
    assert compute_map(samples) == pytest.approx(0.3, abs=0.03)


def test_map_of_constant_samples_is_the_constant():
    assert compute_map([0.25] * 50) == 0.25


def test_credible_interval_uses_equal_tails():
    interval = compute_credible_interval(np.linspace(0.0, 1.0, 101), level=0.9)
    assert interval.lower == pytest.approx(0.05)
    assert interval.upper == pytest.approx(0.95)


def test_credible_interval_rejects_bad_level():
    with pytest.raises(InvalidOptions):
        compute_credible_interval([0.1, 0.2], level=1.0)


@pytest.mark.parametrize("func", [compute_median, compute_map, compute_credible_interval])
def test_empty_samples_raise(func):
    with pytest.raises(InvalidInput):
        func([])


def test_compute_statistics_summarizes_each_item():
    rng = np.random.default_rng(1)
    samples = {"x": rng.beta(8, 2, size=1000), "y": rng.beta(2, 8, size=1000).tolist()}
    stats = compute_statistics(samples)
    assert set(stats) == {"x", "y"}
    for summary in stats.values():
        assert summary.credible_interval.lower <= summary.median <= summary.credible_interval.upper
        assert 0.0 <= summary.map <= 1.0
    assert stats["x"].median > stats["y"].median


def test_compute_statistics_skips_empty_vectors_and_warns_on_small_ones(caplog):
    stats = compute_statistics({"x": [0.5, 0.6, 0.7], "y": []})
    assert list(stats) == ["x"]
    assert "Insufficient samples for x" in caplog.text


def test_compute_statistics_rejects_empty_mapping():
    with pytest.raises(InvalidInput):
        compute_statistics({})


def test_rhat_near_one_for_well_mixed_chains():
    rng = np.random.default_rng(2)
    chains = rng.standard_normal((4, 1000))
    assert split_rhat(chains) < 1.05


def test_rhat_flags_chains_stuck_in_different_places():
    rng = np.random.default_rng(3)
    chains = np.vstack([rng.standard_normal(500), rng.standard_normal(500) + 5.0])
    assert split_rhat(chains) > 1.5


def test_ess_close_to_draw_count_for_independent_draws():
    rng = np.random.default_rng(4)
    ess = effective_sample_size(rng.standard_normal((2, 1000)))
    assert 1000 < ess <= 2000


def test_ess_small_for_autocorrelated_draws():
    rng = np.random.default_rng(5)
    chains = np.vstack([_ar1(rng, 0.95, 1000), _ar1(rng, 0.95, 1000)])
    assert effective_sample_size(chains) < 400


def test_diagnostics_treat_constant_chains_as_converged():
    diagnostics = compute_convergence_diagnostics({"x": np.ones((2, 50)), "y": np.zeros((2, 50))})
    assert diagnostics["x"] == {"rhat": 1.0, "ess": 100.0, "converged": True}
    assert diagnostics["overall"] == {"converged": True, "warnings": []}


def test_diagnostics_warn_about_poor_mixing():
    rng = np.random.default_rng(6)
    chains = {"x": np.vstack([rng.standard_normal(200), rng.standard_normal(200) + 3.0])}
    diagnostics = compute_convergence_diagnostics(chains, min_ess=400, acceptance_rate=0.01)
    assert not diagnostics["x"]["converged"]
    overall = diagnostics["overall"]
    assert overall["converged"] is False
    assert overall["acceptanceRate"] == 0.01
    assert any("R-hat" in warning for warning in overall["warnings"])
    assert any("acceptance rate" in warning for warning in overall["warnings"])
