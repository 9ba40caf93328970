"""Aggregation of transformation datasets into a dense count matrix."""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable

import numpy as np

from .datasets import parse_datasets
from .models import CountMatrix, Dataset

logger = logging.getLogger(__name__)


def build_item_index(datasets: Iterable[Dataset]) -> Dict[str, int]:
    """Assign dense positions: every output item first, then unseen input items."""

    datasets = list(datasets)
    item_index: Dict[str, int] = {}
    for ds in datasets:
        for item in ds.items:
            item_index.setdefault(item.id, len(item_index))
    for ds in datasets:
        for entry in ds.input_items:
            item_index.setdefault(entry.id, len(item_index))
    return item_index


def build_count_matrix(datasets: Iterable[Any]) -> CountMatrix:
    """Build the N x N matrix where ``counts[k][j]`` credits transformations k -> j.

    A dataset listing M input items credits each of them with ``count / M``.
    A dataset without input items treats the input as uniformly random over
    all N indexed items and credits every row with ``count / N``.
    Self-transition cells are filled like any other; estimators ignore them.
    """

    parsed = parse_datasets(datasets)
    item_index = build_item_index(parsed)
    n = len(item_index)
    counts = np.zeros((n, n), dtype=float)

    unknown_input = 0
    for ds in parsed:
        outputs = np.zeros(n, dtype=float)
        for item in ds.items:
            outputs[item_index[item.id]] += item.count

        if not ds.has_known_input:
            unknown_input += 1
            if n > 0:
                counts += outputs / n
            continue

        share = outputs / len(ds.input_items)
        for entry in ds.input_items:
            counts[item_index[entry.id]] += share

    if unknown_input:
        logger.debug("%d of %d datasets have no input items; spread uniformly over %d rows", unknown_input, len(parsed), n)
    return CountMatrix(counts=counts, item_index=item_index)


__all__ = ["build_item_index", "build_count_matrix"]
