"""Validation and loading of transformation datasets."""
from __future__ import annotations

import json
import logging
import math
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Sequence

from jsonschema import Draft7Validator

from .errors import InvalidInput
from .models import Dataset, InputItem, OutputItem, Source

LOGGER = logging.getLogger(__name__)

_KNOWN_KEYS = {"name", "date", "patch", "description", "sources", "inputItems", "items"}

DATASET_SCHEMA: dict = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "Transformation dataset",
    "type": "object",
    "required": ["items"],
    "properties": {
        "name": {"type": "string"},
        "date": {"type": "string"},
        "patch": {"type": "string"},
        "description": {"type": "string"},
        "sources": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "type": {"type": "string"},
                    "url": {"type": "string"},
                    "author": {"type": "string"},
                },
            },
        },
        "inputItems": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id"],
                "properties": {"id": {"type": "string", "minLength": 1}},
            },
        },
        "items": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "required": ["id", "count"],
                "properties": {
                    "id": {"type": "string", "minLength": 1},
                    "count": {"type": "number", "minimum": 0},
                },
            },
        },
    },
}

_VALIDATOR = Draft7Validator(DATASET_SCHEMA)


def _error_path(error) -> str:
    parts = [str(part) for part in error.absolute_path]
    return "/".join(parts) if parts else "<root>"


def parse_dataset(raw: Any, position: int = 0) -> Dataset:
    """Validate one raw dataset mapping and build a :class:`Dataset`.

    Raises :class:`InvalidInput` naming the dataset position and the offending
    field when the payload does not satisfy :data:`DATASET_SCHEMA` or carries a
    non-finite count.
    """

    if isinstance(raw, Dataset):
        return raw
    if not isinstance(raw, Mapping):
        raise InvalidInput(f"Invalid dataset at position {position}: expected an object")

    errors = sorted(_VALIDATOR.iter_errors(dict(raw)), key=lambda e: list(e.absolute_path))
    if errors:
        first = errors[0]
        raise InvalidInput(f"Invalid dataset at position {position}: {_error_path(first)}: {first.message}")

    items = []
    for item in raw["items"]:
        try:
            count = float(item["count"])
        except OverflowError as exc:
            raise InvalidInput(
                f"Invalid dataset at position {position}: item '{item['id']}' has a count too large to represent"
            ) from exc
        if not math.isfinite(count):
            raise InvalidInput(
                f"Invalid dataset at position {position}: item '{item['id']}' has a non-finite count"
            )
        items.append(OutputItem(id=item["id"], count=count))

    input_items = tuple(InputItem(id=entry["id"]) for entry in raw.get("inputItems") or [])
    sources = tuple(
        Source(type=str(entry.get("type", "")), url=entry.get("url"), author=entry.get("author"))
        for entry in raw.get("sources") or []
    )
    extra = {key: value for key, value in raw.items() if key not in _KNOWN_KEYS}
    return Dataset(
        items=tuple(items),
        input_items=input_items,
        name=raw.get("name"),
        date=raw.get("date"),
        patch=raw.get("patch"),
        description=raw.get("description"),
        sources=sources,
        extra=extra,
    )


def parse_datasets(raw_datasets: Iterable[Any] | None) -> List[Dataset]:
    """Validate a collection of datasets; an empty collection is :class:`InvalidInput`."""

    if raw_datasets is None or isinstance(raw_datasets, (str, bytes, Mapping)):
        raise InvalidInput("Datasets must be a non-empty sequence of dataset objects")
    datasets = [parse_dataset(raw, position) for position, raw in enumerate(raw_datasets)]
    if not datasets:
        raise InvalidInput("Datasets array cannot be empty")
    return datasets


def load_datasets(paths: Sequence[Path | str]) -> List[Dataset]:
    """Read dataset JSON files; each file holds one dataset object or a list of them."""

    raw: List[Any] = []
    for path in paths:
        file_path = Path(path).expanduser()
        try:
            with file_path.open("r", encoding="utf-8") as f:
                payload = json.load(f)
        except json.JSONDecodeError as exc:
            raise InvalidInput(f"Dataset file {file_path} is not valid JSON: {exc}") from exc
        if isinstance(payload, list):
            raw.extend(payload)
        else:
            raw.append(payload)
        LOGGER.debug("Loaded dataset file %s", file_path)
    return parse_datasets(raw)


__all__ = ["DATASET_SCHEMA", "parse_dataset", "parse_datasets", "load_datasets"]
