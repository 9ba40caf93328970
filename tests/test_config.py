from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

from dropweights.config import load_config
from dropweights.models import BayesianOptions, MleOptions


def test_defaults_without_environment(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    cfg = load_config({})
    assert cfg.mle_options() == MleOptions()
    assert cfg.bayesian_options() == BayesianOptions()
    assert cfg.cache_dir is None
    assert cfg.output_dir == (tmp_path / "outputs").resolve()
    assert cfg.workers is None
    assert cfg.verbose is False


def test_environment_overrides_defaults(tmp_path):
    env = {
        "MLE_LEARNING_RATE": "0.01",
        "MLE_ITERATIONS": "1500",
        "MLE_CONVERGENCE_THRESHOLD": "1e-5",
        "MCMC_NUM_SAMPLES": "800",
        "MCMC_NUM_CHAINS": "4",
        "MCMC_BURN_IN": "100",
        "MCMC_THIN": "2",
        "MCMC_PROPOSAL_SCALE": "0.25",
        "MCMC_PRIOR_CONCENTRATION": "0.5",
        "MCMC_CREDIBLE_LEVEL": "0.9",
        "MCMC_SEED": "123",
        "WEIGHT_CACHE_DIR": str(tmp_path / "cache"),
        "OUTPUT_DIR": str(tmp_path / "out"),
        "WEIGHTS_WORKERS": "3",
        "WEIGHTS_VERBOSE": "yes",
    }
    cfg = load_config(env)
    assert cfg.mle_options() == MleOptions(learning_rate=0.01, iterations=1500, convergence_threshold=1e-5)
    assert cfg.bayesian_options() == BayesianOptions(
        num_samples=800,
        num_chains=4,
        burn_in=100,
        thin=2,
        proposal_scale=0.25,
        prior_concentration=0.5,
        credible_level=0.9,
        seed=123,
    )
    assert cfg.cache_dir == (tmp_path / "cache").resolve()
    assert cfg.output_dir == (tmp_path / "out").resolve()
    assert cfg.workers == 3
    assert cfg.verbose is True


def test_blank_or_invalid_values_fall_back_to_defaults():
    cfg = load_config({"MLE_ITERATIONS": "lots", "MCMC_NUM_CHAINS": " ", "WEIGHT_CACHE_DIR": ""})
    assert cfg.iterations == 6000
    assert cfg.num_chains == 2
    assert cfg.cache_dir is None


def test_cli_options_win_over_environment(tmp_path):
    args = SimpleNamespace(
        iterations=10,
        seed=9,
        cache_dir=str(tmp_path / "cli-cache"),
        output_dir=None,
        workers=None,
        verbose=False,
    )
    cfg = load_config({"MLE_ITERATIONS": "500", "MCMC_SEED": "1", "OUTPUT_DIR": str(tmp_path)}, args)
    assert cfg.iterations == 10
    assert cfg.seed == 9
    assert cfg.cache_dir == Path(tmp_path / "cli-cache").resolve()
    assert cfg.output_dir == Path(tmp_path).resolve()
