"""Keyed storage for computed weight results.

Entries are keyed by ``(category, dataset-set signature, method)``. The
inference engine never consults a cache itself; callers decide when to read
and write. Storage failures degrade to cache misses and are only logged.
"""
from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Union

from .datasets import parse_datasets
from .errors import InvalidOptions
from .models import BayesianResult

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "dropweights:weightCache:"
CACHED_SAMPLES_PER_ITEM = 200
CALCULATION_TYPES = ("mle", "bayesian")


class WeightCache(Protocol):
    def get(self, key: str) -> Optional[Dict[str, Any]]: ...

    def set(self, key: str, entry: Dict[str, Any]) -> bool: ...

    def delete(self, key: str) -> bool: ...

    def keys(self) -> List[str]: ...


class MemoryWeightCache:
    """Process-local cache; entries are stored as JSON text like any other medium."""

    def __init__(self) -> None:
        self._entries: Dict[str, str] = {}

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        text = self._entries.get(key)
        if text is None:
            return None
        return json.loads(text)

    def set(self, key: str, entry: Dict[str, Any]) -> bool:
        try:
            self._entries[key] = json.dumps(entry)
        except (TypeError, ValueError) as exc:
            logger.warning("Unable to serialize cache entry %s: %s", key, exc)
            return False
        return True

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def keys(self) -> List[str]:
        return list(self._entries)


class JsonDirectoryCache:
    """One JSON file per key inside ``root``."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).expanduser()

    def _path_for(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:12]
        readable = re.sub(r"[^A-Za-z0-9_.-]+", "_", key[len(CACHE_KEY_PREFIX):] if key.startswith(CACHE_KEY_PREFIX) else key)
        return self.root / f"{readable[:80]}-{digest}.json"

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        path = self._path_for(key)
        if not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as f:
                payload = json.load(f)
        except json.JSONDecodeError:
            logger.warning("Corrupted cache entry %s; deleting", path)
            self.delete(key)
            return None
        except OSError as exc:
            logger.warning("Unable to read cache entry %s: %s", path, exc)
            return None
        if not isinstance(payload, dict) or payload.get("key") != key:
            return None
        return payload.get("entry")

    def set(self, key: str, entry: Dict[str, Any]) -> bool:
        path = self._path_for(key)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.root, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump({"key": key, "entry": entry}, f)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Unable to write cache entry %s: %s", path, exc)
            return False
        return True

    def delete(self, key: str) -> bool:
        try:
            self._path_for(key).unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.warning("Unable to delete cache entry for %s: %s", key, exc)
            return False
        return True

    def keys(self) -> List[str]:
        found: List[str] = []
        if not self.root.is_dir():
            return found
        for path in sorted(self.root.glob("*.json")):
            try:
                with path.open("r", encoding="utf-8") as f:
                    payload = json.load(f)
            except (OSError, json.JSONDecodeError):
                logger.debug("Skipping unreadable cache file %s", path)
                continue
            if isinstance(payload, dict) and isinstance(payload.get("key"), str):
                found.append(payload["key"])
        return found


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def generate_dataset_signature(datasets: Iterable[Any], last_updated: Optional[str] = None) -> str:
    """Order-independent fingerprint of the dataset contents plus the index timestamp."""

    canonical = sorted(
        json.dumps(ds.to_dict(), sort_keys=True, separators=(",", ":"), default=str)
        for ds in parse_datasets(datasets)
    )
    digest = hashlib.sha256()
    for text in canonical:
        digest.update(text.encode("utf-8"))
        digest.update(b"\n")
    digest.update(f"lastUpdated={last_updated or ''}".encode("utf-8"))
    return digest.hexdigest()[:16]


def generate_cache_key(category_id: str, dataset_signature: str, calculation_type: str) -> str:
    if calculation_type not in CALCULATION_TYPES:
        raise InvalidOptions(f"Unknown calculation type '{calculation_type}'")
    return f"{CACHE_KEY_PREFIX}{category_id}:{dataset_signature}:{calculation_type}"


def downsample_posterior_samples(
    posterior_samples: Dict[str, List[float]], target_samples: int = CACHED_SAMPLES_PER_ITEM
) -> Dict[str, List[float]]:
    """Keep ``target_samples`` evenly spaced draws per item."""

    downsampled: Dict[str, List[float]] = {}
    for item_id, samples in posterior_samples.items():
        if len(samples) <= target_samples:
            downsampled[item_id] = list(samples)
            continue
        step = len(samples) / target_samples
        downsampled[item_id] = [samples[int(i * step)] for i in range(target_samples)]
    return downsampled


def _build_entry(
    category_id: str,
    signature: str,
    calculation_type: str,
    result: Union[Dict[str, float], BayesianResult],
    last_updated: Optional[str],
) -> Dict[str, Any]:
    now = _now()
    metadata: Dict[str, Any] = {
        "categoryId": category_id,
        "datasetSignature": signature,
        "calculationType": calculation_type,
        "calculatedAt": now,
        "lastAccessed": now,
        "indexLastUpdated": last_updated,
    }
    if isinstance(result, BayesianResult):
        payload = result.to_dict()
        original = len(next(iter(result.posterior_samples.values()), []))
        metadata.update(
            {
                "hasPosteriorSamples": True,
                "originalSampleCount": original,
                "downsampled": original > CACHED_SAMPLES_PER_ITEM,
            }
        )
        return {
            "weights": result.weights,
            "posteriorSamples": downsample_posterior_samples(result.posterior_samples),
            "summaryStatistics": payload["summaryStatistics"],
            "convergenceDiagnostics": payload["convergenceDiagnostics"],
            "modelAssumptions": payload["modelAssumptions"],
            "samplerMetadata": payload["metadata"],
            "metadata": metadata,
        }
    return {"weights": {k: float(v) for k, v in result.items()}, "metadata": metadata}


def get_cached_weights(
    cache: WeightCache,
    category_id: str,
    datasets: Iterable[Any],
    calculation_type: str,
    last_updated: Optional[str] = None,
) -> Union[Dict[str, float], BayesianResult, None]:
    """Return the cached result for this dataset set, or ``None`` on a miss.

    Entries whose signature no longer matches, or that are structurally
    invalid, are deleted. A hit refreshes ``lastAccessed``.
    """

    signature = generate_dataset_signature(datasets, last_updated)
    key = generate_cache_key(category_id, signature, calculation_type)
    entry = cache.get(key)
    if entry is None:
        return None

    metadata = entry.get("metadata") if isinstance(entry, dict) else None
    if not isinstance(metadata, dict) or not isinstance(entry.get("weights"), dict):
        logger.warning("Invalid cache entry structure for %s; deleting", key)
        cache.delete(key)
        return None
    if metadata.get("datasetSignature") != signature:
        logger.info("Cache invalid for %s: dataset_signature_mismatch", key)
        cache.delete(key)
        return None

    metadata["lastAccessed"] = _now()
    if not cache.set(key, entry):
        logger.warning("Failed to update lastAccessed for %s", key)

    if calculation_type == "bayesian" and "summaryStatistics" in entry:
        try:
            return BayesianResult.from_dict(
                {
                    "posteriorSamples": entry.get("posteriorSamples", {}),
                    "summaryStatistics": entry["summaryStatistics"],
                    "convergenceDiagnostics": entry.get("convergenceDiagnostics", {}),
                    "modelAssumptions": entry.get("modelAssumptions", {}),
                    "metadata": entry.get("samplerMetadata", {}),
                }
            )
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Corrupted Bayesian cache entry %s (%s); deleting", key, exc)
            cache.delete(key)
            return None
    return {k: float(v) for k, v in entry["weights"].items()}


def set_cached_weights(
    cache: WeightCache,
    category_id: str,
    datasets: Iterable[Any],
    calculation_type: str,
    result: Union[Dict[str, float], BayesianResult],
    last_updated: Optional[str] = None,
) -> bool:
    """Store a result; returns ``False`` when the medium refused the write."""

    signature = generate_dataset_signature(datasets, last_updated)
    key = generate_cache_key(category_id, signature, calculation_type)
    entry = _build_entry(category_id, signature, calculation_type, result, last_updated)
    if cache.set(key, entry):
        return True
    if isinstance(result, BayesianResult):
        logger.warning("Full Bayesian result could not be stored for %s; retrying without posterior samples", key)
        entry.pop("posteriorSamples", None)
        entry["metadata"]["hasPosteriorSamples"] = False
        entry["metadata"]["downsampled"] = False
        if cache.set(key, entry):
            return True
    logger.warning("Failed to store cache entry for %s", key)
    return False


def get_cache_stats(cache: WeightCache) -> Dict[str, Any]:
    total_size = 0
    by_category: Dict[str, int] = {}
    by_type = {name: 0 for name in CALCULATION_TYPES}
    oldest: Optional[str] = None
    newest: Optional[str] = None
    keys = cache.keys()
    for key in keys:
        entry = cache.get(key)
        if not isinstance(entry, dict):
            continue
        total_size += len(json.dumps(entry))
        metadata = entry.get("metadata") or {}
        category = metadata.get("categoryId")
        if category:
            by_category[category] = by_category.get(category, 0) + 1
        calc_type = metadata.get("calculationType")
        if calc_type in by_type:
            by_type[calc_type] += 1
        accessed = metadata.get("lastAccessed")
        if accessed:
            oldest = accessed if oldest is None or accessed < oldest else oldest
            newest = accessed if newest is None or accessed > newest else newest
    return {
        "totalEntries": len(keys),
        "totalSize": total_size,
        "entriesByCategory": by_category,
        "entriesByType": by_type,
        "oldestEntry": oldest,
        "newestEntry": newest,
    }


def clear_cache(
    cache: WeightCache,
    category_id: Optional[str] = None,
    calculation_type: Optional[str] = None,
) -> int:
    """Delete every entry, or only those of ``category_id`` and/or ``calculation_type``.

    Returns the number of entries removed.
    """

    if calculation_type is not None and calculation_type not in CALCULATION_TYPES:
        raise InvalidOptions(f"Unknown calculation type '{calculation_type}'")
    prefix = CACHE_KEY_PREFIX if category_id is None else f"{CACHE_KEY_PREFIX}{category_id}:"
    suffix = "" if calculation_type is None else f":{calculation_type}"
    removed = 0
    for key in cache.keys():
        if key.startswith(prefix) and key.endswith(suffix) and cache.delete(key):
            removed += 1
    logger.info("Cleared %d cache entries", removed)
    return removed


__all__ = [
    "CACHE_KEY_PREFIX",
    "WeightCache",
    "MemoryWeightCache",
    "JsonDirectoryCache",
    "generate_dataset_signature",
    "generate_cache_key",
    "downsample_posterior_samples",
    "get_cached_weights",
    "set_cached_weights",
    "get_cache_stats",
    "clear_cache",
]
