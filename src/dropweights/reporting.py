from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Union

import pandas as pd

from .models import BayesianResult

logger = logging.getLogger(__name__)

OUTPUT_FILENAMES = {"mle": "mle.json", "bayesian": "bayesian.json"}


def weights_frame(weights: Mapping[str, float]) -> pd.DataFrame:
    frame = pd.DataFrame({"item_id": list(weights.keys()), "weight": [float(v) for v in weights.values()]})
    return frame.sort_values("weight", ascending=False, kind="mergesort").reset_index(drop=True)


def summary_frame(result: BayesianResult) -> pd.DataFrame:
    """One row per item: posterior summaries next to their convergence diagnostics."""

    rows = []
    for item_id, stats in result.summary_statistics.items():
        diag = result.convergence_diagnostics.get(item_id, {})
        rows.append(
            {
                "item_id": item_id,
                "median": stats.median,
                "map": stats.map,
                "lower": stats.credible_interval.lower,
                "upper": stats.credible_interval.upper,
                "rhat": diag.get("rhat"),
                "ess": diag.get("ess"),
            }
        )
    frame = pd.DataFrame(rows, columns=["item_id", "median", "map", "lower", "upper", "rhat", "ess"])
    return frame.sort_values("median", ascending=False, kind="mergesort").reset_index(drop=True)


def make_summary_text(result: Union[Mapping[str, float], BayesianResult], top_n: int = 5) -> str:
    if isinstance(result, BayesianResult):
        frame = summary_frame(result)
        verdict = "converged" if result.converged else "NOT converged"
        top = frame.head(top_n)[["item_id", "median", "lower", "upper"]]
        return (
            f"Posterior over {len(frame)} items ({verdict}).\n"
            f"Highest posterior medians:\n{top.to_string(index=False)}\n"
        )
    frame = weights_frame(result)
    total = float(frame["weight"].sum())
    top = frame.head(top_n)
    return (
        f"MLE weights for {len(frame)} items (sum {total:.6f}).\n"
        f"Highest weights:\n{top.to_string(index=False)}\n"
    )


def _to_payload(result: Any) -> Any:
    if isinstance(result, BayesianResult):
        return result.to_dict()
    if isinstance(result, Mapping):
        return {key: _to_payload(value) for key, value in result.items()}
    return result


def write_outputs(result: Any, output_dir: Path, method: str, xlsx: bool = False) -> Dict[str, Path]:
    """Write ``mle.json`` / ``bayesian.json`` (and optionally ``weights.xlsx``)."""

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    artifacts: Dict[str, Path] = {}

    json_path = output_dir / OUTPUT_FILENAMES[method]
    with json_path.open("w", encoding="utf-8") as f:
        json.dump(_to_payload(result), f, indent=2)
    artifacts["json"] = json_path

    if xlsx:
        xlsx_path = output_dir / "weights.xlsx"
        groups = result if _is_per_input(result) else {"weights": result}
        with pd.ExcelWriter(xlsx_path, engine="openpyxl") as writer:
            for group, group_result in groups.items():
                frame = summary_frame(group_result) if isinstance(group_result, BayesianResult) else weights_frame(group_result)
                frame.to_excel(writer, sheet_name=_sheet_name(group), index=False)
        artifacts["xlsx"] = xlsx_path

    logger.debug("Wrote %s", ", ".join(str(p) for p in artifacts.values()))
    return artifacts


def _is_per_input(result: Any) -> bool:
    if isinstance(result, BayesianResult) or not isinstance(result, Mapping) or not result:
        return False
    return all(isinstance(v, (BayesianResult, Mapping)) for v in result.values())


def _sheet_name(group: str) -> str:
    cleaned = "".join(ch for ch in str(group) if ch not in "[]:*?/\\")
    return (cleaned or "weights")[:31]


__all__ = ["weights_frame", "summary_frame", "make_summary_text", "write_outputs"]
