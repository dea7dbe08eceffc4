"""Table schemas, value parsing helpers, and the run configuration."""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import pandas as pd

from core.market_metadata import bar_cache_label, normalize_timespan


REQUIRED_ORDER_COLUMNS: tuple[str, ...] = (
    "date",
    "order_id",
    "side",
    "symbol",
    "status",
)

ORDER_COLUMN_ALIASES: dict[str, str] = {
    "quantity": "qty",
    "execution_price": "exec_price",
    "executed_price": "exec_price",
}

POSITION_COLUMNS: tuple[str, ...] = (
    "position_id",
    "symbol",
    "bucket",
    "status_real",
    "open_date",
    "real_exit_date",
    "real_exit_price",
    "entry_orders",
    "add_orders",
    "exit_order",
    "avg_cost_real",
    "shares_open",
    "shares_exited",
    "as_of_date",
)

RESULT_COLUMNS: tuple[str, ...] = (
    "scenario_id",
    "position_id",
    "symbol",
    "bucket",
    "status_real",
    "open_date",
    "real_exit_date",
    "real_exit_price",
    "status_sim",
    "sim_exit_date",
    "sim_exit_price",
    "exit_reason",
    "target_model",
    "target_pct",
    "k",
    "shtf_pct",
    "time_stop_days",
    "avg_cost_start",
    "avg_cost_final",
    "qty_final",
    "target_price",
    "shtf_price",
    "hold_days",
    "return_pct",
    "mfe_pct",
    "mae_pct",
    "dip_anchor_peak",
    "dip_pct_at_initial_entry",
    "as_of_date",
    "as_of_price",
)

# Thousands separators, currency and footnote markers seen in broker exports.
_NUMBER_NOISE_RE = re.compile(r"[,$†‡*\s]")
_SLASH_DATE_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return str(value).strip() in ("", "nan", "NaN", "None")


def parse_number(value: Any) -> Optional[float]:
    """Parse a numeric cell, tolerating separators and footnote markers."""
    if is_blank(value):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = _NUMBER_NOISE_RE.sub("", str(value))
    if not cleaned:
        return None
    try:
        return float(cleaned)
    except ValueError as exc:
        raise ValueError(f"Invalid numeric value: {value!r}") from exc


def normalize_date(value: Any) -> str:
    """Canonicalize ``M/D/YYYY`` or ``YYYY-MM-DD`` into ``YYYY-MM-DD``."""
    text = str(value if value is not None else "").strip()
    match = _SLASH_DATE_RE.match(text)
    if match:
        month, day, year = match.groups()
    else:
        match = _ISO_DATE_RE.match(text)
        if not match:
            raise ValueError(f"Unrecognized date format: {text!r}")
        year, month, day = match.groups()
    month_i, day_i = int(month), int(day)
    if not (1 <= month_i <= 12 and 1 <= day_i <= 31):
        raise ValueError(f"Unrecognized date format: {text!r}")
    return f"{year}-{month_i:02d}-{day_i:02d}"


def round4(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    return round(float(value), 4)


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in {"1", "true", "yes", "y"}


def _optional_date(value: Any) -> Optional[str]:
    if is_blank(value):
        return None
    return normalize_date(value)


def _optional_path(value: Any) -> Optional[Path]:
    if is_blank(value):
        return None
    return Path(str(value).strip())


@dataclass
class RunConfig:
    """Inputs, outputs and bar parameters for one simulation run."""

    orders_csv: Path
    scenarios_csv: Path
    output_dir: Path
    buckets_csv: Optional[Path] = None
    bars_dir: Optional[Path] = None
    as_of_date: Optional[str] = None
    bars_start_date: Optional[str] = None
    bars_end_date: Optional[str] = None
    rth_only: bool = True
    bars_multiplier: int = 30
    bars_timespan: str = "minute"
    max_workers: int = 4
    notes: Optional[str] = None

    def __post_init__(self) -> None:
        self.bars_timespan = normalize_timespan(self.bars_timespan)
        self.bars_multiplier = int(self.bars_multiplier)
        self.max_workers = max(1, int(self.max_workers))
        if self.bars_dir is None:
            self.bars_dir = Path("cache") / "bars" / self.bar_label

    @property
    def bar_label(self) -> str:
        return bar_cache_label(self.bars_multiplier, self.bars_timespan)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "RunConfig":
        if not isinstance(payload, dict):
            raise ValueError("Run config must be a mapping")

        def required_path(key: str) -> Path:
            value = _optional_path(payload.get(key))
            if value is None:
                raise ValueError(f"{key} is required")
            return value

        multiplier = parse_number(payload.get("bars_multiplier"))
        workers = parse_number(payload.get("max_workers"))
        timespan = payload.get("bars_timespan")
        try:
            config = cls(
                orders_csv=required_path("orders_csv"),
                scenarios_csv=required_path("scenarios_csv"),
                output_dir=required_path("output_dir"),
                buckets_csv=_optional_path(payload.get("buckets_csv")),
                bars_dir=_optional_path(payload.get("bars_dir")),
                as_of_date=_optional_date(payload.get("as_of_date")),
                bars_start_date=_optional_date(payload.get("bars_start_date")),
                bars_end_date=_optional_date(payload.get("bars_end_date")),
                rth_only=True if is_blank(payload.get("rth_only")) else _parse_bool(payload.get("rth_only")),
                bars_multiplier=30 if multiplier is None else int(multiplier),
                bars_timespan="minute" if is_blank(timespan) else str(timespan),
                max_workers=4 if workers is None else int(workers),
                notes=None if is_blank(payload.get("notes")) else str(payload.get("notes")),
            )
        except ValueError as exc:
            raise ValueError(f"Invalid run config: {exc}") from exc
        return config

    @classmethod
    def from_path(cls, path: str | Path) -> "RunConfig":
        """Load a JSON object or a two-column ``key,value`` CSV."""
        config_path = Path(path)
        if config_path.suffix.lower() == ".json":
            payload = json.loads(config_path.read_text(encoding="utf-8"))
        else:
            frame = pd.read_csv(config_path, dtype=str, keep_default_na=False)
            if not {"key", "value"}.issubset(frame.columns):
                raise ValueError(f"Run config CSV needs key,value columns: {config_path}")
            payload = {str(k).strip(): str(v).strip() for k, v in zip(frame["key"], frame["value"])}

        config = cls.from_dict(payload)
        base = config_path.parent
        for name in ("orders_csv", "scenarios_csv", "output_dir", "buckets_csv", "bars_dir"):
            value = getattr(config, name)
            if value is not None and not value.is_absolute():
                setattr(config, name, (base / value).resolve())
        return config

    def to_dict(self) -> dict[str, Any]:
        return {
            "orders_csv": str(self.orders_csv),
            "scenarios_csv": str(self.scenarios_csv),
            "output_dir": str(self.output_dir),
            "buckets_csv": None if self.buckets_csv is None else str(self.buckets_csv),
            "bars_dir": None if self.bars_dir is None else str(self.bars_dir),
            "as_of_date": self.as_of_date,
            "bars_start_date": self.bars_start_date,
            "bars_end_date": self.bars_end_date,
            "rth_only": bool(self.rth_only),
            "bars_multiplier": int(self.bars_multiplier),
            "bars_timespan": self.bars_timespan,
            "max_workers": int(self.max_workers),
            "notes": self.notes,
        }
