from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Sequence

from .bayesian import infer_weights
from .cache import JsonDirectoryCache, WeightCache, get_cached_weights, set_cached_weights
from .config import Config
from .datasets import parse_datasets
from .errors import InvalidOptions
from .mle import estimate_item_weights
from .per_input import GroupKey, estimate_per_input

logger = logging.getLogger(__name__)


@dataclass
class WeightRequest:
    category_id: str
    method: str = "mle"
    options: Any = None
    per_input: bool = False
    group_key: GroupKey = None
    max_workers: Optional[int] = None
    last_updated: Optional[str] = None


def cache_from_config(config: Config) -> Optional[WeightCache]:
    if config.cache_dir is None:
        return None
    return JsonDirectoryCache(Path(config.cache_dir))


def calculate_weights(
    request: WeightRequest,
    datasets: Sequence[Any],
    cache: Optional[WeightCache] = None,
) -> Any:
    """Programmatic interface: consult the cache, compute on a miss, store the result.

    Per-input results are always recomputed; only single-table results are cached.
    """

    if request.method not in ("mle", "bayesian"):
        raise InvalidOptions(f"Unknown estimation method '{request.method}'")
    parsed = parse_datasets(datasets)

    if request.per_input:
        return estimate_per_input(
            parsed,
            method=request.method,
            options=request.options,
            key=request.group_key,
            max_workers=request.max_workers,
        )

    if cache is not None:
        cached = get_cached_weights(cache, request.category_id, parsed, request.method, request.last_updated)
        if cached is not None:
            logger.info("Cache hit for %s (%s)", request.category_id, request.method)
            return cached

    if request.method == "bayesian":
        result: Any = infer_weights(parsed, request.options)
    else:
        result = estimate_item_weights(parsed, request.options)

    if cache is not None:
        set_cached_weights(cache, request.category_id, parsed, request.method, result, request.last_updated)
    return result


__all__ = ["WeightRequest", "cache_from_config", "calculate_weights"]
