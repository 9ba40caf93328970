"""Bayesian inference of item weights via MCMC sampling."""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

import numpy as np

from .count_matrix import build_count_matrix
from .datasets import parse_datasets
from .mcmc import build_sampler_model, run_mcmc_sampling
from .models import BayesianOptions, BayesianResult, CountMatrix, Dataset
from .posterior_stats import compute_convergence_diagnostics, compute_statistics

logger = logging.getLogger(__name__)


def describe_model_assumptions(
    datasets: List[Dataset],
    options: BayesianOptions,
    excluded_items: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """Summarize how each dataset's input was modelled, plus the prior and likelihood."""

    summary: Dict[str, Any] = {
        "singleKnownInput": 0,
        "multipleKnownInputs": 0,
        "unknownInputs": 0,
        "assumptions": {},
        "prior": {"type": "dirichlet", "concentration": float(options.prior_concentration)},
        "likelihood": {
            "type": "multinomial",
            "selfTransitionsExcluded": True,
            "unknownInputPolicy": "uniform",
        },
        "excludedItems": list(excluded_items or []),
    }
    for position, ds in enumerate(datasets):
        ids = [entry.id for entry in ds.input_items]
        if not ids:
            summary["unknownInputs"] += 1
            summary["assumptions"][str(position)] = {
                "type": "unknown",
                "description": "Unknown input: uniform prior over all possible input items",
            }
        elif len(ids) == 1:
            summary["singleKnownInput"] += 1
            summary["assumptions"][str(position)] = {
                "type": "single",
                "description": f"Single known input: '{ids[0]}'",
                "inputItems": ids,
            }
        else:
            summary["multipleKnownInputs"] += 1
            summary["assumptions"][str(position)] = {
                "type": "multiple",
                "description": f"Multiple known inputs: {', '.join(ids)} (counts split evenly)",
                "inputItems": ids,
            }
    return summary


def _degenerate_result(
    matrix: CountMatrix,
    winner: int,
    datasets: List[Dataset],
    options: BayesianOptions,
) -> BayesianResult:
    draws = options.num_chains * options.retained_per_chain
    item_ids = matrix.item_ids
    samples = {item_id: [1.0 if pos == winner else 0.0] * draws for pos, item_id in enumerate(item_ids)}
    chains = {
        item_id: np.full((options.num_chains, options.retained_per_chain), 1.0 if pos == winner else 0.0)
        for pos, item_id in enumerate(item_ids)
    }
    excluded = [item_id for pos, item_id in enumerate(item_ids) if pos != winner]
    return BayesianResult(
        posterior_samples=samples,
        summary_statistics=compute_statistics(samples, options.credible_level),
        convergence_diagnostics=compute_convergence_diagnostics(chains, options.min_ess),
        model_assumptions=describe_model_assumptions(datasets, options, excluded),
        metadata=_metadata(len(item_ids), datasets, options, seed=options.seed, acceptance_rate=None),
    )


def _metadata(
    num_items: int,
    datasets: List[Dataset],
    options: BayesianOptions,
    seed: Optional[int],
    acceptance_rate: Optional[float],
) -> Dict[str, Any]:
    return {
        "numItems": num_items,
        "numDatasets": len(datasets),
        "numSamples": int(options.num_samples),
        "numChains": int(options.num_chains),
        "burnIn": int(options.burn_in),
        "thin": int(options.thin),
        "seed": None if seed is None else int(seed),
        "acceptanceRate": acceptance_rate,
    }


def infer_weights(
    datasets: Iterable[Any],
    options: BayesianOptions | Mapping[str, Any] | None = None,
) -> BayesianResult:
    """Sample the posterior over item weights and summarize it.

    A single-item universe, or one in which only a single item can ever be
    produced, short-circuits to a posterior concentrated at weight 1.0.
    """

    opts = options if isinstance(options, BayesianOptions) else BayesianOptions.from_mapping(options)
    opts.validate()
    parsed = parse_datasets(datasets)
    matrix = build_count_matrix(parsed)

    support = matrix.support_mask()
    if matrix.size == 1:
        return _degenerate_result(matrix, 0, parsed, opts)
    if support.sum() == 1:
        return _degenerate_result(matrix, int(np.flatnonzero(support)[0]), parsed, opts)

    model = build_sampler_model(matrix, opts.prior_concentration)
    logger.debug(
        "Sampling %d chains x %d iterations over %d items (%d free)",
        opts.num_chains,
        opts.burn_in + opts.num_samples,
        matrix.size,
        model.dimension,
    )
    run = run_mcmc_sampling(model, opts.seed, opts)

    item_ids = run.item_ids
    per_item_chains = {item_id: run.chains[:, :, pos] for pos, item_id in enumerate(item_ids)}
    posterior_samples = {item_id: chain.ravel().tolist() for item_id, chain in per_item_chains.items()}
    excluded = [item_ids[pos] for pos in np.flatnonzero(~support)] if support.any() else []

    diagnostics = compute_convergence_diagnostics(per_item_chains, opts.min_ess, run.acceptance_rate)
    if not diagnostics["overall"]["converged"]:
        logger.warning("Posterior sampling did not converge: %s", "; ".join(diagnostics["overall"]["warnings"]))

    return BayesianResult(
        posterior_samples=posterior_samples,
        summary_statistics=compute_statistics(posterior_samples, opts.credible_level),
        convergence_diagnostics=diagnostics,
        model_assumptions=describe_model_assumptions(parsed, opts, excluded),
        metadata=_metadata(matrix.size, parsed, opts, seed=run.seed, acceptance_rate=run.acceptance_rate),
    )


def infer_weights_per_input_item(
    datasets: Iterable[Any],
    options: BayesianOptions | Mapping[str, Any] | None = None,
    key=None,
    max_workers: Optional[int] = None,
) -> Dict[str, BayesianResult]:
    """Run :func:`infer_weights` independently for every input item."""

    from .per_input import estimate_per_input

    return estimate_per_input(datasets, method="bayesian", options=options, key=key, max_workers=max_workers)


__all__ = ["describe_model_assumptions", "infer_weights", "infer_weights_per_input_item"]
