from __future__ import annotations

import math
import numbers
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

import numpy as np

from .errors import InvalidOptions


@dataclass(frozen=True)
class OutputItem:
    """One observed output class of a transformation and how often it appeared."""

    id: str
    count: float


@dataclass(frozen=True)
class InputItem:
    """A candidate input item consumed by a transformation."""

    id: str


@dataclass(frozen=True)
class Source:
    type: str
    url: Optional[str] = None
    author: Optional[str] = None


@dataclass(frozen=True)
class Dataset:
    """Validated transformation dataset.

    ``input_items`` is empty when the input that produced ``items`` is unknown.
    Top-level keys outside the known schema are preserved in ``extra`` so
    callers can group on their own metadata (contract type, job, ...).
    """

    items: Tuple[OutputItem, ...]
    input_items: Tuple[InputItem, ...] = ()
    name: Optional[str] = None
    date: Optional[str] = None
    patch: Optional[str] = None
    description: Optional[str] = None
    sources: Tuple[Source, ...] = ()
    extra: Mapping[str, Any] = field(default_factory=dict)

    @property
    def has_known_input(self) -> bool:
        return len(self.input_items) > 0

    @property
    def total_count(self) -> float:
        return float(sum(item.count for item in self.items))

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = dict(self.extra)
        if self.name is not None:
            payload["name"] = self.name
        if self.date is not None:
            payload["date"] = self.date
        if self.patch is not None:
            payload["patch"] = self.patch
        if self.description is not None:
            payload["description"] = self.description
        if self.sources:
            payload["sources"] = [
                {k: v for k, v in (("type", s.type), ("url", s.url), ("author", s.author)) if v is not None}
                for s in self.sources
            ]
        if self.input_items:
            payload["inputItems"] = [{"id": item.id} for item in self.input_items]
        payload["items"] = [{"id": item.id, "count": item.count} for item in self.items]
        return payload


@dataclass(frozen=True, eq=False)
class CountMatrix:
    """Dense N x N transformation counts plus the item-id -> position map."""

    counts: np.ndarray
    item_index: Dict[str, int]

    @property
    def size(self) -> int:
        return int(self.counts.shape[0]) if self.counts.ndim == 2 else 0

    @property
    def item_ids(self) -> List[str]:
        ordered = [""] * len(self.item_index)
        for item_id, position in self.item_index.items():
            ordered[position] = item_id
        return ordered

    def row_totals(self) -> np.ndarray:
        """Outgoing totals per input row, self-transitions excluded."""
        return self.counts.sum(axis=1) - np.diag(self.counts)

    def column_totals(self) -> np.ndarray:
        """Observed totals per output item, self-transitions excluded."""
        return self.counts.sum(axis=0) - np.diag(self.counts)

    def support_mask(self) -> np.ndarray:
        """Items that are a candidate output of at least one row carrying evidence.

        Returns an all-False mask when no row carries evidence.
        """
        n = self.size
        active = self.row_totals() > 0
        if not active.any():
            return np.zeros(n, dtype=bool)
        off_diagonal = ~np.eye(n, dtype=bool)
        return off_diagonal[active].any(axis=0)


def _is_number(value: object) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def _is_integer(value: object) -> bool:
    return isinstance(value, numbers.Integral) and not isinstance(value, bool)


def _pick(options: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        if name in options and options[name] is not None:
            return options[name]
    return None


@dataclass(frozen=True)
class MleOptions:
    learning_rate: float = 0.001
    iterations: int = 6000
    convergence_threshold: Optional[float] = None

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any] | None) -> "MleOptions":
        """Accept either snake_case or the camelCase option names of the JSON API."""
        if not options:
            return cls()
        defaults = cls()
        learning_rate = _pick(options, "learning_rate", "learningRate")
        iterations = _pick(options, "iterations")
        threshold = _pick(options, "convergence_threshold", "convergenceThreshold")
        return cls(
            learning_rate=defaults.learning_rate if learning_rate is None else learning_rate,
            iterations=defaults.iterations if iterations is None else iterations,
            convergence_threshold=threshold,
        )

    def validate(self) -> None:
        if not _is_number(self.learning_rate) or not math.isfinite(self.learning_rate) or self.learning_rate <= 0:
            raise InvalidOptions("Invalid learning rate: must be positive")
        if not _is_integer(self.iterations) or self.iterations <= 0:
            raise InvalidOptions("Invalid iterations: must be a positive integer")
        if self.convergence_threshold is not None:
            if not _is_number(self.convergence_threshold) or self.convergence_threshold < 0:
                raise InvalidOptions("Invalid convergence threshold: must be non-negative")


@dataclass(frozen=True)
class BayesianOptions:
    """Sampler configuration.

    ``num_samples`` is the number of post burn-in iterations per chain; with
    ``thin > 1`` only every ``thin``-th of them is retained.
    """

    num_samples: int = 2000
    num_chains: int = 2
    burn_in: int = 500
    thin: int = 1
    proposal_scale: float = 0.1
    prior_concentration: float = 1.0
    credible_level: float = 0.95
    seed: Optional[int] = None
    min_ess: float = 400.0

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any] | None) -> "BayesianOptions":
        if not options:
            return cls()
        defaults = cls()
        values: Dict[str, Any] = {}
        aliases = {
            "num_samples": ("num_samples", "numSamples"),
            "num_chains": ("num_chains", "numChains"),
            "burn_in": ("burn_in", "burnIn"),
            "thin": ("thin",),
            "proposal_scale": ("proposal_scale", "proposalScale"),
            "prior_concentration": ("prior_concentration", "priorConcentration"),
            "credible_level": ("credible_level", "credibleLevel"),
            "seed": ("seed",),
            "min_ess": ("min_ess", "minEss"),
        }
        for attr, names in aliases.items():
            value = _pick(options, *names)
            values[attr] = getattr(defaults, attr) if value is None else value
        return cls(**values)

    @property
    def retained_per_chain(self) -> int:
        return -(-self.num_samples // self.thin)

    def validate(self) -> None:
        for name in ("num_samples", "num_chains", "thin"):
            value = getattr(self, name)
            if not _is_integer(value) or value < 1:
                raise InvalidOptions(f"Invalid {name}: must be a positive integer")
        if not _is_integer(self.burn_in) or self.burn_in < 0:
            raise InvalidOptions("Invalid burn_in: must be a non-negative integer")
        if not _is_number(self.proposal_scale) or self.proposal_scale <= 0:
            raise InvalidOptions("Invalid proposal_scale: must be positive")
        if not _is_number(self.prior_concentration) or self.prior_concentration <= 0:
            raise InvalidOptions("Invalid prior_concentration: must be positive")
        if not _is_number(self.credible_level) or not 0 < self.credible_level < 1:
            raise InvalidOptions("Invalid credible_level: must be between 0 and 1")
        if self.seed is not None and (not _is_integer(self.seed) or self.seed < 0):
            raise InvalidOptions("Invalid seed: must be a non-negative integer")


@dataclass(frozen=True)
class CredibleInterval:
    lower: float
    upper: float

    def contains(self, value: float) -> bool:
        return self.lower <= value <= self.upper


@dataclass(frozen=True)
class ItemSummary:
    median: float
    map: float
    credible_interval: CredibleInterval

    def to_dict(self) -> Dict[str, Any]:
        return {
            "median": self.median,
            "map": self.map,
            "credibleInterval": {"lower": self.credible_interval.lower, "upper": self.credible_interval.upper},
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ItemSummary":
        interval = payload["credibleInterval"]
        return cls(
            median=float(payload["median"]),
            map=float(payload["map"]),
            credible_interval=CredibleInterval(float(interval["lower"]), float(interval["upper"])),
        )


@dataclass(frozen=True)
class BayesianResult:
    """Posterior over item weights plus derived summaries."""

    posterior_samples: Dict[str, List[float]]
    summary_statistics: Dict[str, ItemSummary]
    convergence_diagnostics: Dict[str, Any]
    model_assumptions: Dict[str, Any]
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def converged(self) -> bool:
        return bool(self.convergence_diagnostics.get("overall", {}).get("converged", False))

    @property
    def weights(self) -> Dict[str, float]:
        """Posterior medians renormalized to sum to one."""
        medians = {item_id: stats.median for item_id, stats in self.summary_statistics.items()}
        total = sum(medians.values())
        if total <= 0:
            return medians
        return {item_id: value / total for item_id, value in medians.items()}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "posteriorSamples": {k: list(v) for k, v in self.posterior_samples.items()},
            "summaryStatistics": {k: v.to_dict() for k, v in self.summary_statistics.items()},
            "convergenceDiagnostics": self.convergence_diagnostics,
            "modelAssumptions": self.model_assumptions,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "BayesianResult":
        return cls(
            posterior_samples={k: [float(x) for x in v] for k, v in payload.get("posteriorSamples", {}).items()},
            summary_statistics={
                k: ItemSummary.from_dict(v) for k, v in payload["summaryStatistics"].items()
            },
            convergence_diagnostics=dict(payload.get("convergenceDiagnostics", {})),
            model_assumptions=dict(payload.get("modelAssumptions", {})),
            metadata=dict(payload.get("metadata", {})),
        )


__all__ = [
    "OutputItem",
    "InputItem",
    "Source",
    "Dataset",
    "CountMatrix",
    "MleOptions",
    "BayesianOptions",
    "CredibleInterval",
    "ItemSummary",
    "BayesianResult",
]
