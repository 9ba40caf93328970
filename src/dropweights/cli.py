import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Optional, Sequence

from dotenv import load_dotenv

from .api import WeightRequest, cache_from_config, calculate_weights
from .config import load_config
from .datasets import load_datasets
from .errors import WeightsError
from .models import BayesianResult
from .reporting import make_summary_text, write_outputs

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Infer item drop weights from transformation datasets")
    parser.add_argument("method", choices=("mle", "bayesian"), help="Estimator to run")
    parser.add_argument("datasets", nargs="+", help="Dataset JSON files (one object or a list per file)")
    parser.add_argument("--category", default="default", help="Category id used for cache keys")
    parser.add_argument("--per-input", action="store_true", help="Estimate a separate table per input item")
    parser.add_argument("--group-key", help="Dataset metadata field to group on instead of the input item")
    parser.add_argument("--output-dir", help="Directory for mle.json / bayesian.json")
    parser.add_argument("--cache-dir", help="Directory for the JSON weight cache")
    parser.add_argument("--xlsx", action="store_true", help="Also write weights.xlsx")
    parser.add_argument("--learning-rate", type=float, help="MLE learning rate")
    parser.add_argument("--iterations", type=int, help="MLE iterations")
    parser.add_argument("--convergence-threshold", type=float, help="Stop MLE once the gradient norm falls below this")
    parser.add_argument("--num-samples", type=int, help="MCMC samples per chain")
    parser.add_argument("--num-chains", type=int, help="Number of MCMC chains")
    parser.add_argument("--burn-in", type=int, help="MCMC burn-in iterations per chain")
    parser.add_argument("--thin", type=int, help="Keep every N-th MCMC sample")
    parser.add_argument("--prior-concentration", type=float, help="Symmetric Dirichlet prior concentration")
    parser.add_argument("--seed", type=int, help="Random seed for reproducible sampling")
    parser.add_argument("--workers", type=int, help="Worker processes for --per-input")
    parser.add_argument("-v", "--verbose", action="store_true", help="Increase logging verbosity")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    load_dotenv()
    config = load_config(os.environ, args)

    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.DEBUG if config.verbose else logging.INFO, format="%(message)s")

    stage_counter = 0

    def log_stage(message: str) -> None:
        nonlocal stage_counter
        stage_counter += 1
        logger.info("[weights:%02d] %s", stage_counter, message)

    try:
        log_stage(f"loading {len(args.datasets)} dataset file(s)")
        datasets = load_datasets([Path(p) for p in args.datasets])
        logger.info("           %d datasets", len(datasets))

        options = config.bayesian_options() if args.method == "bayesian" else config.mle_options()
        request = WeightRequest(
            category_id=args.category,
            method=args.method,
            options=options,
            per_input=bool(args.per_input or args.group_key),
            group_key=args.group_key,
            max_workers=config.workers,
        )
        cache = cache_from_config(config)
        log_stage(f"estimating {args.method} weights" + (" per input" if request.per_input else ""))
        result = calculate_weights(request, datasets, cache=cache)

        log_stage(f"writing outputs to {config.output_dir}")
        artifacts = write_outputs(result, config.output_dir, args.method, xlsx=args.xlsx)
    except WeightsError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    except OSError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    if request.per_input:
        for group, group_result in result.items():
            logger.info("\n=== %s ===\n%s", group, make_summary_text(group_result))
    else:
        logger.info("\n=== SUMMARY ===\n%s", make_summary_text(result))
        if isinstance(result, BayesianResult) and not result.converged:
            logger.warning("Posterior diagnostics flag the result as unreliable.")
    for label, path in artifacts.items():
        logger.info(" - %s: %s", label, path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
