"""Summary statistics and convergence diagnostics for posterior samples."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np

from .errors import InvalidInput, InvalidOptions
from .models import CredibleInterval, ItemSummary

logger = logging.getLogger(__name__)

MIN_RECOMMENDED_SAMPLES = 100
MAX_HISTOGRAM_BINS = 100
KDE_GRID_POINTS = 64
RHAT_THRESHOLD = 1.05


def _as_samples(samples: Sequence[float] | np.ndarray | None) -> np.ndarray:
    if samples is None:
        raise InvalidInput("Samples array cannot be empty")
    values = np.asarray(samples, dtype=float).ravel()
    if values.size == 0:
        raise InvalidInput("Samples array cannot be empty")
    return values


def compute_median(samples: Sequence[float] | np.ndarray) -> float:
    return float(np.median(_as_samples(samples)))


def _histogram_bins(values: np.ndarray) -> int:
    q75, q25 = np.quantile(values, [0.75, 0.25])
    spread = float(values.max() - values.min())
    iqr = float(q75 - q25)
    if iqr > 0:
        width = 2.0 * iqr / np.cbrt(values.size)
        bins = int(np.ceil(spread / width))
    else:
        bins = int(np.ceil(np.sqrt(values.size)))
    return max(1, min(MAX_HISTOGRAM_BINS, bins))


def compute_map(samples: Sequence[float] | np.ndarray) -> float:
    """Approximate the posterior mode.

    The densest histogram bin locates the mode; a Gaussian kernel density
    evaluated on a grid around that bin refines it.
    """

    values = _as_samples(samples)
    low, high = float(values.min()), float(values.max())
    if high <= low:
        return low

    counts, edges = np.histogram(values, bins=_histogram_bins(values))
    densest = int(np.argmax(counts))
    width = edges[1] - edges[0]
    grid = np.linspace(max(low, edges[densest] - width), min(high, edges[densest + 1] + width), KDE_GRID_POINTS)

    std = float(values.std(ddof=1)) if values.size > 1 else 0.0
    bandwidth = 1.06 * std * values.size ** (-1 / 5)
    if bandwidth <= 0:
        return float((edges[densest] + edges[densest + 1]) / 2)

    z = (grid[:, None] - values[None, :]) / bandwidth
    density = np.exp(-0.5 * z * z).sum(axis=1)
    return float(grid[int(np.argmax(density))])


def compute_credible_interval(samples: Sequence[float] | np.ndarray, level: float = 0.95) -> CredibleInterval:
    """Equal-tailed empirical interval containing ``level`` of the draws."""

    values = _as_samples(samples)
    if not 0 < level < 1:
        raise InvalidOptions("Level must be between 0 and 1")
    tail = (1.0 - level) / 2.0
    lower, upper = np.quantile(values, [tail, 1.0 - tail])
    return CredibleInterval(lower=float(lower), upper=float(upper))


def compute_statistics(
    posterior_samples: Mapping[str, Sequence[float] | np.ndarray] | None,
    level: float = 0.95,
) -> Dict[str, ItemSummary]:
    """Median, MAP and credible interval for every item's sample vector."""

    if not posterior_samples:
        raise InvalidInput("Posterior samples cannot be empty")

    statistics: Dict[str, ItemSummary] = {}
    for item_id, samples in posterior_samples.items():
        values = np.asarray(samples, dtype=float).ravel()
        if values.size == 0:
            logger.warning("No posterior samples for %s; skipping", item_id)
            continue
        if values.size < MIN_RECOMMENDED_SAMPLES:
            logger.warning(
                "Insufficient samples for %s: %d (minimum: %d)", item_id, values.size, MIN_RECOMMENDED_SAMPLES
            )
        statistics[item_id] = ItemSummary(
            median=compute_median(values),
            map=compute_map(values),
            credible_interval=compute_credible_interval(values, level),
        )
    return statistics


def split_rhat(chains: np.ndarray) -> float:
    """Gelman-Rubin potential scale reduction over split chains.

    ``chains`` has shape (num_chains, draws).
    """

    chains = np.atleast_2d(np.asarray(chains, dtype=float))
    draws = chains.shape[1]
    if draws >= 4:
        half = draws // 2
        chains = np.vstack([chains[:, :half], chains[:, draws - half:]])
    m, n = chains.shape
    if m < 2 or n < 2:
        return 1.0

    within = float(chains.var(axis=1, ddof=1).mean())
    chain_means = chains.mean(axis=1)
    between = float(n * chain_means.var(ddof=1))
    if within <= 0:
        return 1.0 if between <= 0 else float("inf")
    var_plus = (n - 1) / n * within + between / n
    return float(np.sqrt(var_plus / within))


def _autocovariance(series: np.ndarray) -> np.ndarray:
    n = series.size
    centered = series - series.mean()
    size = 1 << (2 * n - 1).bit_length()
    spectrum = np.fft.rfft(centered, n=size)
    acov = np.fft.irfft(spectrum * np.conjugate(spectrum), n=size)[:n]
    return acov / n


def effective_sample_size(chains: np.ndarray) -> float:
    """Multi-chain ESS using Geyer's initial positive sequence."""

    chains = np.atleast_2d(np.asarray(chains, dtype=float))
    m, n = chains.shape
    total = m * n
    if n < 4:
        return float(total)

    acov = np.stack([_autocovariance(chain) for chain in chains])
    chain_var = acov[:, 0] * n / (n - 1)
    within = float(chain_var.mean())
    var_plus = within * (n - 1) / n
    if m > 1:
        var_plus += float(chains.mean(axis=1).var(ddof=1))
    if var_plus <= 0:
        return float(total)

    rho = 1.0 - (within - acov.mean(axis=0)) / var_plus
    rho[0] = 1.0
    tau = -1.0
    for t in range(0, n - 1, 2):
        pair = rho[t] + rho[t + 1]
        if pair <= 0:
            break
        tau += 2.0 * pair
    if tau <= 0:
        return float(total)
    return float(min(total, total / tau))


def compute_convergence_diagnostics(
    chains: Mapping[str, np.ndarray],
    min_ess: float = 400.0,
    acceptance_rate: Optional[float] = None,
) -> Dict[str, Any]:
    """Per-item R-hat/ESS plus an ``overall`` verdict.

    ``chains`` maps item ids to arrays of shape (num_chains, draws). Items
    whose draws are constant (degenerate posteriors) are always converged.
    """

    diagnostics: Dict[str, Any] = {}
    warnings: List[str] = []
    for item_id, values in chains.items():
        values = np.atleast_2d(np.asarray(values, dtype=float))
        if values.size == 0:
            continue
        if np.ptp(values) == 0:
            diagnostics[item_id] = {"rhat": 1.0, "ess": float(values.size), "converged": True}
            continue
        rhat = split_rhat(values)
        ess = effective_sample_size(values)
        converged = bool(rhat < RHAT_THRESHOLD and ess >= min_ess)
        diagnostics[item_id] = {"rhat": rhat, "ess": ess, "converged": converged}
        if rhat >= RHAT_THRESHOLD:
            warnings.append(f"Parameter '{item_id}' has R-hat = {rhat:.3f} (recommended: <{RHAT_THRESHOLD})")
        if ess < min_ess:
            warnings.append(f"Parameter '{item_id}' has ESS = {ess:.0f} (recommended: >{min_ess:.0f})")

    overall: Dict[str, Any] = {
        "converged": all(entry["converged"] for entry in diagnostics.values()),
        "warnings": warnings,
    }
    if acceptance_rate is not None:
        overall["acceptanceRate"] = acceptance_rate
        if acceptance_rate < 0.05:
            warnings.append(f"Sampler acceptance rate is very low ({acceptance_rate:.3f})")
    diagnostics["overall"] = overall
    return diagnostics


__all__ = [
    "compute_median",
    "compute_map",
    "compute_credible_interval",
    "compute_statistics",
    "split_rhat",
    "effective_sample_size",
    "compute_convergence_diagnostics",
]
