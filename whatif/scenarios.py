"""Exit scenario definitions and target resolution."""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import pandas as pd

from core.market_metadata import WILDCARD_BUCKET, bucket_matches, normalize_bucket

from .models import is_blank, parse_number

TARGET_FIXED = "fixed"
TARGET_DIP_SCALED = "dip_scaled"
SUPPORTED_TARGET_MODELS = (TARGET_FIXED, TARGET_DIP_SCALED)

DEFAULT_DIP_MODEL = "rally_peak"


class ScenarioConfigError(ValueError):
    """Invalid scenario parameters; only the offending scenario is affected."""


@dataclass(frozen=True)
class Scenario:
    scenario_id: str
    bucket: str
    target_model: str
    dip_model: str = DEFAULT_DIP_MODEL
    pullback_pct: float = 0.0
    reclaim_pct: float = 0.0
    target_pct: Optional[float] = None
    k: Optional[float] = None
    shtf_pct: float = 0.0
    time_stop_days: Optional[float] = None
    errors: tuple[str, ...] = ()

    @property
    def time_stop_limit(self) -> Optional[int]:
        """Whole trading days before the time stop fires, or ``None`` when disabled."""
        if self.time_stop_days is None:
            return None
        limit = int(math.floor(self.time_stop_days))
        return limit if limit > 0 else None

    def applies_to(self, bucket: str) -> bool:
        return bucket_matches(self.bucket, bucket)

    def validate(self) -> None:
        if self.errors:
            raise ScenarioConfigError("; ".join(self.errors))
        if self.target_model not in SUPPORTED_TARGET_MODELS:
            raise ScenarioConfigError(
                f"Unknown target_model for scenario {self.scenario_id}: {self.target_model!r}"
            )

    def resolve_target_pct(self, dip_pct_at_entry: Optional[float]) -> float:
        """Target distance above average cost, fixed once per position."""
        if self.target_model == TARGET_FIXED:
            return self.target_pct or 0.0
        if self.target_model == TARGET_DIP_SCALED:
            return (self.k or 0.0) * (dip_pct_at_entry or 0.0)
        raise ScenarioConfigError(
            f"Unknown target_model for scenario {self.scenario_id}: {self.target_model!r}"
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "scenario_id": self.scenario_id,
            "bucket": self.bucket,
            "dip_model": self.dip_model,
            "pullback_pct": self.pullback_pct,
            "reclaim_pct": self.reclaim_pct,
            "target_model": self.target_model,
            "target_pct": self.target_pct,
            "k": self.k,
            "shtf_pct": self.shtf_pct,
            "time_stop_days": self.time_stop_days,
        }


_NUMERIC_FIELDS: tuple[str, ...] = (
    "pullback_pct",
    "reclaim_pct",
    "target_pct",
    "k",
    "shtf_pct",
    "time_stop_days",
)


def _parse_thresholds(row: Mapping[str, Any], scenario_id: str) -> tuple[dict[str, Optional[float]], list[str]]:
    values: dict[str, Optional[float]] = {}
    errors: list[str] = []
    for name in _NUMERIC_FIELDS:
        try:
            values[name] = parse_number(row.get(name))
        except ValueError:
            values[name] = None
            errors.append(f"{name} is not a number for scenario {scenario_id}: {row.get(name)!r}")
    return values, errors


def load_scenarios(rows: Iterable[Mapping[str, Any]]) -> list[Scenario]:
    """
    Parse scenario rows; blank thresholds default to zero.

    A missing or duplicate ``scenario_id`` aborts the load. A non-numeric
    threshold only marks that scenario invalid, so ``validate`` rejects it
    and the remaining scenarios still run.
    """
    scenarios: list[Scenario] = []
    seen: set[str] = set()
    for raw in rows:
        row = {str(key).strip().lower(): value for key, value in raw.items()}
        scenario_id = "" if is_blank(row.get("scenario_id")) else str(row["scenario_id"]).strip()
        if not scenario_id:
            raise ScenarioConfigError("scenario_id is required")
        if scenario_id in seen:
            raise ScenarioConfigError(f"Duplicate scenario_id: {scenario_id}")
        seen.add(scenario_id)

        values, errors = _parse_thresholds(row, scenario_id)
        dip_model = row.get("dip_model")
        scenarios.append(
            Scenario(
                scenario_id=scenario_id,
                bucket=normalize_bucket(row.get("bucket"), default=WILDCARD_BUCKET),
                dip_model=DEFAULT_DIP_MODEL if is_blank(dip_model) else str(dip_model).strip(),
                pullback_pct=values["pullback_pct"] or 0.0,
                reclaim_pct=values["reclaim_pct"] or 0.0,
                target_model=str(row.get("target_model") or "").strip(),
                target_pct=values["target_pct"],
                k=values["k"],
                shtf_pct=values["shtf_pct"] or 0.0,
                time_stop_days=values["time_stop_days"],
                errors=tuple(errors),
            )
        )
    return scenarios


def load_scenarios_csv(path: str | Path) -> list[Scenario]:
    frame = pd.read_csv(path, dtype=str, keep_default_na=False)
    return load_scenarios(frame.to_dict(orient="records"))
