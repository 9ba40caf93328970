from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from types import SimpleNamespace
from typing import Mapping, Optional

from .models import BayesianOptions, MleOptions

_BOOLEAN_TRUE = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Config:
    """Runtime configuration assembled from environment variables and CLI options."""

    learning_rate: float
    iterations: int
    convergence_threshold: Optional[float]
    num_samples: int
    num_chains: int
    burn_in: int
    thin: int
    proposal_scale: float
    prior_concentration: float
    credible_level: float
    seed: Optional[int]
    cache_dir: Optional[Path]
    output_dir: Path
    workers: Optional[int] = None
    verbose: bool = False

    def mle_options(self) -> MleOptions:
        return MleOptions(
            learning_rate=self.learning_rate,
            iterations=self.iterations,
            convergence_threshold=self.convergence_threshold,
        )

    def bayesian_options(self) -> BayesianOptions:
        return BayesianOptions(
            num_samples=self.num_samples,
            num_chains=self.num_chains,
            burn_in=self.burn_in,
            thin=self.thin,
            proposal_scale=self.proposal_scale,
            prior_concentration=self.prior_concentration,
            credible_level=self.credible_level,
            seed=self.seed,
        )


def _to_path(value: object | None) -> Optional[Path]:
    if value is None:
        return None
    if isinstance(value, Path):
        return value.expanduser().resolve()
    text = str(value).strip()
    if not text:
        return None
    return Path(text).expanduser().resolve()


def _to_int(value: object | None) -> Optional[int]:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        return int(float(text))
    except ValueError:
        return None


def _to_float(value: object | None) -> Optional[float]:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def _flag(value: object | None) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _BOOLEAN_TRUE


def _namespace(cli_args: object | None) -> SimpleNamespace:
    if cli_args is None:
        return SimpleNamespace()
    if isinstance(cli_args, SimpleNamespace):
        return cli_args
    if hasattr(cli_args, "__dict__"):
        return SimpleNamespace(**{k: v for k, v in vars(cli_args).items()})
    return SimpleNamespace()


def _first(*values):
    for value in values:
        if value is not None:
            return value
    return None


def load_config(env: Mapping[str, str], cli_args: object | None = None) -> Config:
    """Build a runtime :class:`Config` from environment variables and CLI options.

    Blank or unparsable environment values fall back to defaults; CLI options
    win over the environment. Range checks happen when the estimator options
    are validated, not here.
    """

    mle_defaults = MleOptions()
    mcmc_defaults = BayesianOptions()
    cli_ns = _namespace(cli_args)

    learning_rate = _first(
        getattr(cli_ns, "learning_rate", None), _to_float(env.get("MLE_LEARNING_RATE")), mle_defaults.learning_rate
    )
    iterations = _first(getattr(cli_ns, "iterations", None), _to_int(env.get("MLE_ITERATIONS")), mle_defaults.iterations)
    convergence_threshold = _first(
        getattr(cli_ns, "convergence_threshold", None), _to_float(env.get("MLE_CONVERGENCE_THRESHOLD"))
    )
    num_samples = _first(
        getattr(cli_ns, "num_samples", None), _to_int(env.get("MCMC_NUM_SAMPLES")), mcmc_defaults.num_samples
    )
    num_chains = _first(getattr(cli_ns, "num_chains", None), _to_int(env.get("MCMC_NUM_CHAINS")), mcmc_defaults.num_chains)
    burn_in = _first(getattr(cli_ns, "burn_in", None), _to_int(env.get("MCMC_BURN_IN")), mcmc_defaults.burn_in)
    thin = _first(getattr(cli_ns, "thin", None), _to_int(env.get("MCMC_THIN")), mcmc_defaults.thin)
    proposal_scale = _first(_to_float(env.get("MCMC_PROPOSAL_SCALE")), mcmc_defaults.proposal_scale)
    prior_concentration = _first(
        getattr(cli_ns, "prior_concentration", None),
        _to_float(env.get("MCMC_PRIOR_CONCENTRATION")),
        mcmc_defaults.prior_concentration,
    )
    credible_level = _first(_to_float(env.get("MCMC_CREDIBLE_LEVEL")), mcmc_defaults.credible_level)
    seed = _first(getattr(cli_ns, "seed", None), _to_int(env.get("MCMC_SEED")))

    cache_dir = _to_path(getattr(cli_ns, "cache_dir", None)) or _to_path(env.get("WEIGHT_CACHE_DIR"))
    output_dir = (
        _to_path(getattr(cli_ns, "output_dir", None))
        or _to_path(env.get("OUTPUT_DIR"))
        or (Path.cwd() / "outputs").resolve()
    )
    workers = _first(getattr(cli_ns, "workers", None), _to_int(env.get("WEIGHTS_WORKERS")))
    verbose = _flag(getattr(cli_ns, "verbose", None)) or _flag(env.get("WEIGHTS_VERBOSE"))

    return Config(
        learning_rate=learning_rate,
        iterations=iterations,
        convergence_threshold=convergence_threshold,
        num_samples=num_samples,
        num_chains=num_chains,
        burn_in=burn_in,
        thin=thin,
        proposal_scale=proposal_scale,
        prior_concentration=prior_concentration,
        credible_level=credible_level,
        seed=seed,
        cache_dir=cache_dir,
        output_dir=output_dir,
        workers=workers,
        verbose=verbose,
    )


__all__ = ["Config", "load_config"]
