"""Independent weight estimation per input item (or caller-defined group)."""
from __future__ import annotations

import logging
from concurrent.futures import ProcessPoolExecutor
from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

import numpy as np

from .bayesian import infer_weights
from .datasets import parse_datasets
from .errors import InvalidInput, InvalidOptions
from .mle import estimate_item_weights
from .models import BayesianOptions, Dataset, MleOptions, OutputItem

logger = logging.getLogger(__name__)

UNKNOWN_INPUT_KEY = "unknown"
METHODS = ("mle", "bayesian")

GroupKey = Union[str, Callable[[Dataset], Any], None]


def _group_value(ds: Dataset, key: Union[str, Callable[[Dataset], Any]], position: int) -> str:
    if callable(key):
        value = key(ds)
    elif key in ds.extra:
        value = ds.extra[key]
    else:
        value = getattr(ds, key, None)
    if value is None or value == "":
        raise InvalidInput(f"Dataset at position {position} has no value for grouping key '{key}'")
    return str(value)


_NO_INPUT = object()


def _unknown_label(taken: Iterable[Any]) -> str:
    """``"unknown"``, or ``"unknown#2"``, ... when an input item already uses that id."""
    taken = set(taken)
    label = UNKNOWN_INPUT_KEY
    suffix = 1
    while label in taken:
        suffix += 1
        label = f"{UNKNOWN_INPUT_KEY}#{suffix}"
    return label


def partition_datasets(datasets: Iterable[Any], key: GroupKey = None) -> Dict[str, List[Dataset]]:
    """Split datasets into independent estimation groups.

    Without ``key`` datasets are grouped by input item. A dataset naming M
    input items contributes to each of their groups with counts scaled by
    1/M; datasets without input items form the ``"unknown"`` group, which is
    relabelled if an input item is itself called ``"unknown"``.
    """

    groups: Dict[Any, List[Dataset]] = {}
    for position, ds in enumerate(parse_datasets(datasets)):
        if key is not None:
            groups.setdefault(_group_value(ds, key, position), []).append(ds)
            continue
        if not ds.has_known_input:
            groups.setdefault(_NO_INPUT, []).append(ds)
            continue
        share = len(ds.input_items)
        for entry in ds.input_items:
            if share == 1:
                member = ds
            else:
                member = replace(
                    ds,
                    input_items=(entry,),
                    items=tuple(OutputItem(id=item.id, count=item.count / share) for item in ds.items),
                )
            groups.setdefault(entry.id, []).append(member)

    if _NO_INPUT not in groups:
        return groups
    label = _unknown_label(group for group in groups if group is not _NO_INPUT)
    return {label if group is _NO_INPUT else group: members for group, members in groups.items()}


def _run_partition(method: str, datasets: List[Dataset], options: Any) -> Any:
    if method == "bayesian":
        return infer_weights(datasets, options)
    return estimate_item_weights(datasets, options)


def _resolve_options(method: str, options: Any) -> Union[MleOptions, BayesianOptions]:
    if method not in METHODS:
        raise InvalidOptions(f"Unknown estimation method '{method}' (expected one of {', '.join(METHODS)})")
    if method == "bayesian":
        opts: Union[MleOptions, BayesianOptions] = (
            options if isinstance(options, BayesianOptions) else BayesianOptions.from_mapping(options)
        )
    else:
        opts = options if isinstance(options, MleOptions) else MleOptions.from_mapping(options)
    opts.validate()
    return opts


def estimate_per_input(
    datasets: Iterable[Any],
    method: str = "mle",
    options: Any = None,
    key: GroupKey = None,
    max_workers: Optional[int] = None,
) -> Dict[str, Any]:
    """Estimate weights separately for every partition; no pooling across partitions.

    Bayesian partitions receive child seeds spawned from ``options.seed`` so
    results do not depend on the order or process in which partitions run.
    """

    opts = _resolve_options(method, options)
    partitions = partition_datasets(datasets, key)
    groups = list(partitions)

    per_group: Dict[str, Any] = {}
    if isinstance(opts, BayesianOptions):
        children = np.random.SeedSequence(None if opts.seed is None else int(opts.seed)).spawn(len(groups))
        for group, child in zip(groups, children):
            per_group[group] = replace(opts, seed=int(child.generate_state(1, dtype=np.uint32)[0]))
    else:
        per_group = {group: opts for group in groups}

    logger.info("Estimating %s weights for %d input groups", method, len(groups))
    results: Dict[str, Any] = {}
    if max_workers is not None and max_workers > 1 and len(groups) > 1:
        with ProcessPoolExecutor(max_workers=max_workers) as pool:
            futures = {
                group: pool.submit(_run_partition, method, partitions[group], per_group[group]) for group in groups
            }
            for group in groups:
                results[group] = futures[group].result()
    else:
        for group in groups:
            results[group] = _run_partition(method, partitions[group], per_group[group])
            logger.debug("Finished group %s (%d datasets)", group, len(partitions[group]))
    return results


def estimate_item_weights_per_input(
    datasets: Iterable[Any],
    options: MleOptions | Mapping[str, Any] | None = None,
    key: GroupKey = None,
    max_workers: Optional[int] = None,
) -> Dict[str, Dict[str, float]]:
    return estimate_per_input(datasets, method="mle", options=options, key=key, max_workers=max_workers)


__all__ = [
    "UNKNOWN_INPUT_KEY",
    "METHODS",
    "partition_datasets",
    "estimate_per_input",
    "estimate_item_weights_per_input",
]
