"""Metropolis-within-Gibbs sampler for the categorical-Dirichlet weight model.

Weights are ``softmax(theta)`` where the latent scores are independent
log-Gamma(alpha, 1) variables a priori, which makes the weight vector
Dirichlet(alpha) distributed. The likelihood is the same per-row categorical
model used by the maximum-likelihood estimator: input row ``k`` produces
output ``m != k`` with probability ``w[m] / sum_{i != k} w[i]``.

Each sweep updates every score with a Gaussian random-walk proposal and then
proposes a common shift of all scores, which only the prior sees.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from .models import BayesianOptions, CountMatrix

logger = logging.getLogger(__name__)

TARGET_ACCEPTANCE = 0.44
ADAPT_BATCH = 25
_MIN_GAMMA_DRAW = 1e-300


@dataclass(frozen=True)
class SamplerModel:
    """Sufficient statistics of a count matrix restricted to the sampled items."""

    item_ids: List[str]
    sampled: np.ndarray  # positions (into item_ids) of items with free weights
    column_totals: np.ndarray  # per sampled item
    row_totals: np.ndarray  # per input row carrying evidence
    candidates: np.ndarray  # (sampled items, evidence rows) 0/1 membership
    concentration: float

    @property
    def dimension(self) -> int:
        return int(self.sampled.size)


@dataclass(frozen=True)
class McmcRun:
    chains: np.ndarray  # (num_chains, retained draws, num_items)
    item_ids: List[str]
    acceptance_rate: float
    chain_acceptance: List[float]
    seed: int


def build_sampler_model(matrix: CountMatrix, concentration: float) -> SamplerModel:
    """Restrict the matrix to identifiable items and the rows that carry evidence."""

    n = matrix.size
    row_totals = matrix.row_totals()
    active = np.flatnonzero(row_totals > 0)
    support = matrix.support_mask()
    sampled = np.flatnonzero(support) if support.any() else np.arange(n)

    off_diagonal = ~np.eye(n, dtype=bool)
    candidates = off_diagonal[np.ix_(active, sampled)].T.astype(float)
    return SamplerModel(
        item_ids=matrix.item_ids,
        sampled=sampled,
        column_totals=matrix.column_totals()[sampled],
        row_totals=row_totals[active],
        candidates=np.ascontiguousarray(candidates),
        concentration=float(concentration),
    )


def log_posterior(model: SamplerModel, theta: np.ndarray) -> float:
    """Unnormalized log density of the latent scores."""

    exp_theta = np.exp(theta)
    row_sums = exp_theta @ model.candidates
    with np.errstate(divide="ignore"):
        log_lik = float(theta @ model.column_totals - model.row_totals @ np.log(row_sums))
    log_prior = float(model.concentration * theta.sum() - exp_theta.sum())
    return log_lik + log_prior


def _initial_scores(model: SamplerModel, rng: np.random.Generator) -> np.ndarray:
    draws = rng.gamma(model.concentration, 1.0, size=model.dimension)
    return np.log(np.maximum(draws, _MIN_GAMMA_DRAW))


def _expand(model: SamplerModel, theta: np.ndarray) -> np.ndarray:
    weights = np.zeros(len(model.item_ids))
    shifted = np.exp(theta - theta.max())
    weights[model.sampled] = shifted / shifted.sum()
    return weights


def _row_sums(model: SamplerModel, exp_theta: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    row_sums = exp_theta @ model.candidates
    return row_sums, np.log(row_sums)


def _run_chain(
    model: SamplerModel,
    rng: np.random.Generator,
    options: BayesianOptions,
) -> tuple[np.ndarray, float]:
    d = model.dimension
    alpha = model.concentration
    theta = _initial_scores(model, rng)
    exp_theta = np.exp(theta)
    row_sums, log_row_sums = _row_sums(model, exp_theta)

    scales = np.full(d, float(options.proposal_scale))
    shift_scale = float(options.proposal_scale)
    batch_accepts = np.zeros(d)
    batch_count = 0
    batches = 0

    retained = np.empty((options.retained_per_chain, len(model.item_ids)))
    stored = 0
    accepted = 0
    proposed = 0

    total_sweeps = options.burn_in + options.num_samples
    for sweep in range(total_sweeps):
        burning = sweep < options.burn_in
        noise = rng.standard_normal(d)
        log_u = np.log1p(-rng.random(d + 1))

        for j in range(d):
            step = scales[j] * noise[j]
            proposal = theta[j] + step
            new_exp = math.exp(proposal) if proposal < 700 else math.inf
            delta_exp = new_exp - exp_theta[j]
            new_row_sums = row_sums + model.candidates[j] * delta_exp
            with np.errstate(divide="ignore", invalid="ignore"):
                new_log_row_sums = np.log(new_row_sums)
                delta = (
                    step * (model.column_totals[j] + alpha)
                    - float(model.row_totals @ (new_log_row_sums - log_row_sums))
                    - delta_exp
                )
            if math.isfinite(delta) and log_u[j] < delta and not (new_row_sums <= 0).any():
                theta[j] = proposal
                exp_theta[j] = new_exp
                row_sums = new_row_sums
                log_row_sums = new_log_row_sums
                if burning:
                    batch_accepts[j] += 1
                else:
                    accepted += 1
            if not burning:
                proposed += 1

        # common shift: likelihood is invariant, only the prior changes
        shift = shift_scale * rng.standard_normal()
        total_exp = float(exp_theta.sum())
        shift_delta = alpha * d * shift - total_exp * math.expm1(shift) if shift < 700 else -math.inf
        if math.isfinite(shift_delta) and log_u[d] < shift_delta:
            theta += shift
            exp_theta = np.exp(theta)

        # refresh cached sums every sweep so incremental round-off cannot accumulate
        row_sums, log_row_sums = _row_sums(model, exp_theta)

        if burning:
            batch_count += 1
            if batch_count == ADAPT_BATCH:
                batches += 1
                adjust = 1.0 / math.sqrt(batches)
                rates = batch_accepts / ADAPT_BATCH
                scales *= np.exp(np.where(rates > TARGET_ACCEPTANCE, adjust, -adjust))
                batch_accepts[:] = 0
                batch_count = 0
            continue

        sample_index = sweep - options.burn_in
        if sample_index % options.thin == 0:
            retained[stored] = _expand(model, theta)
            stored += 1

    acceptance = accepted / proposed if proposed else 0.0
    return retained[:stored], acceptance


def run_mcmc_sampling(
    model: SamplerModel,
    seed: Optional[int],
    options: BayesianOptions,
) -> McmcRun:
    """Run ``options.num_chains`` independent chains; pure in ``(model, seed, options)``.

    With ``seed=None`` fresh entropy is drawn and reported back in
    :attr:`McmcRun.seed` so the run can be reproduced.
    """

    sequence = np.random.SeedSequence(None if seed is None else int(seed))
    chains = []
    acceptance: List[float] = []
    for chain_number, child in enumerate(sequence.spawn(options.num_chains)):
        rng = np.random.default_rng(child)
        draws, rate = _run_chain(model, rng, options)
        chains.append(draws)
        acceptance.append(rate)
        logger.debug("Chain %d finished with acceptance rate %.3f", chain_number + 1, rate)

    return McmcRun(
        chains=np.stack(chains),
        item_ids=list(model.item_ids),
        acceptance_rate=float(np.mean(acceptance)) if acceptance else 0.0,
        chain_acceptance=acceptance,
        seed=int(sequence.entropy),
    )


__all__ = [
    "TARGET_ACCEPTANCE",
    "SamplerModel",
    "McmcRun",
    "build_sampler_model",
    "log_posterior",
    "run_mcmc_sampling",
]
