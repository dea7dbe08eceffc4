"""Result tables, per-scenario summary metrics and markdown reports."""

from __future__ import annotations

import json
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Optional

import pandas as pd

from .models import POSITION_COLUMNS, RESULT_COLUMNS, RunConfig
from .positions import PositionRecord
from .simulator import (
    REASON_NO_BARS,
    REASON_NO_EXIT_ASOF,
    REASON_SHTF,
    REASON_TARGET,
    REASON_TIME_STOP,
    STATUS_SIM_CLOSED,
    SimulationArtifacts,
)

_EXIT_REASONS: tuple[str, ...] = (
    REASON_TARGET,
    REASON_SHTF,
    REASON_TIME_STOP,
    REASON_NO_EXIT_ASOF,
    REASON_NO_BARS,
)


def _json_default(value: Any) -> Any:
    if isinstance(value, pd.Timestamp):
        return value.isoformat()
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, (set, tuple)):
        return list(value)
    if hasattr(value, "item"):
        return value.item()
    return str(value)


def _safe_float(value: Any) -> Optional[float]:
    try:
        if pd.isna(value):
            return None
        return float(value)
    except (TypeError, ValueError):
        return None


def _profit_factor(series: pd.Series) -> Optional[float]:
    if series.empty:
        return None
    wins = float(series[series > 0].sum())
    losses = float(series[series < 0].sum())
    if losses == 0:
        return None if wins == 0 else float("inf")
    return float(wins / abs(losses))


def positions_frame(positions: Sequence[PositionRecord]) -> pd.DataFrame:
    return pd.DataFrame([item.to_record() for item in positions], columns=list(POSITION_COLUMNS))


def results_frame(artifacts: SimulationArtifacts) -> pd.DataFrame:
    return pd.DataFrame(artifacts.to_records(), columns=list(RESULT_COLUMNS))


def enrich_results(results_df: pd.DataFrame, positions_df: pd.DataFrame) -> pd.DataFrame:
    """Attach the realized return of each position for side-by-side comparison."""
    df = results_df.copy()
    real = positions_df[["position_id", "avg_cost_real"]].copy()
    df = df.merge(real, on="position_id", how="left")

    for col in ("real_exit_price", "avg_cost_real", "return_pct", "mfe_pct", "mae_pct", "hold_days"):
        df[col] = pd.to_numeric(df[col], errors="coerce")

    df["real_return_pct"] = (df["real_exit_price"] - df["avg_cost_real"]) / df["avg_cost_real"]
    df["return_delta_pct"] = df["return_pct"] - df["real_return_pct"]

    df["outcome"] = "OPEN"
    resolved = df["status_sim"] == STATUS_SIM_CLOSED
    df.loc[resolved & (df["return_pct"] > 0), "outcome"] = "WIN"
    df.loc[resolved & (df["return_pct"] < 0), "outcome"] = "LOSS"
    df.loc[resolved & (df["return_pct"] == 0), "outcome"] = "FLAT"
    df.loc[df["exit_reason"] == REASON_NO_BARS, "outcome"] = "NO_BARS"
    return df


def _scenario_metrics(df: pd.DataFrame) -> list[dict[str, Any]]:
    if df.empty:
        return []

    rows: list[dict[str, Any]] = []
    for scenario_id, grp in df.groupby("scenario_id", sort=True):
        resolved = grp[grp["outcome"].isin(["WIN", "LOSS", "FLAT"])]
        resolved_count = int(len(resolved))
        wins = int((resolved["outcome"] == "WIN").sum())
        with_bars = grp[grp["exit_reason"] != REASON_NO_BARS]
        real_closed = grp[grp["real_return_pct"].notna()]

        rows.append(
            {
                "scenario_id": str(scenario_id),
                "pairs": int(len(grp)),
                "resolved": resolved_count,
                "open_asof": int((grp["exit_reason"] == REASON_NO_EXIT_ASOF).sum()),
                "no_bars": int((grp["exit_reason"] == REASON_NO_BARS).sum()),
                "exits_by_reason": {reason: int((grp["exit_reason"] == reason).sum()) for reason in _EXIT_REASONS},
                "wins": wins,
                "losses": int((resolved["outcome"] == "LOSS").sum()),
                "win_rate_resolved": (wins / resolved_count) if resolved_count > 0 else None,
                "mean_return_pct_resolved": _safe_float(resolved["return_pct"].mean()) if resolved_count > 0 else None,
                "median_return_pct_resolved": _safe_float(resolved["return_pct"].median()) if resolved_count > 0 else None,
                "mean_return_pct_all": _safe_float(with_bars["return_pct"].mean()) if not with_bars.empty else None,
                "profit_factor_resolved": _profit_factor(resolved["return_pct"]) if resolved_count > 0 else None,
                "mean_hold_days": _safe_float(with_bars["hold_days"].mean()) if not with_bars.empty else None,
                "mean_mfe_pct": _safe_float(with_bars["mfe_pct"].mean()) if not with_bars.empty else None,
                "mean_mae_pct": _safe_float(with_bars["mae_pct"].mean()) if not with_bars.empty else None,
                "mean_real_return_pct": _safe_float(real_closed["real_return_pct"].mean()) if not real_closed.empty else None,
                "mean_return_delta_pct": _safe_float(real_closed["return_delta_pct"].mean()) if not real_closed.empty else None,
            }
        )
    return rows


def build_summary(
    artifacts: SimulationArtifacts,
    positions: Sequence[PositionRecord],
    run_config: Optional[RunConfig] = None,
    bars_manifest: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Build run-level and per-scenario metrics from simulation results."""
    positions_df = positions_frame(positions)
    enriched = enrich_results(results_frame(artifacts), positions_df)
    return _build_summary_from_enriched(enriched, positions, artifacts, run_config, bars_manifest)


def _build_summary_from_enriched(
    enriched: pd.DataFrame,
    positions: Sequence[PositionRecord],
    artifacts: SimulationArtifacts,
    run_config: Optional[RunConfig],
    bars_manifest: Optional[dict[str, Any]],
) -> dict[str, Any]:
    open_positions = sum(1 for item in positions if item.is_open)
    return {
        "run_config": run_config.to_dict() if run_config is not None else {},
        "as_of_date": artifacts.as_of_date,
        "positions": {
            "total": len(positions),
            "open": open_positions,
            "closed": len(positions) - open_positions,
            "symbols": len({item.symbol for item in positions}),
        },
        "pairs_total": int(len(enriched)),
        "rejected_scenarios": dict(artifacts.rejected_scenarios),
        "by_scenario": _scenario_metrics(enriched),
        "bars_manifest": bars_manifest or {},
    }


def _md_table(rows: list[dict[str, Any]], columns: list[str]) -> str:
    if not rows:
        return "_No rows_\n"
    header = "| " + " | ".join(columns) + " |"
    sep = "| " + " | ".join(["---"] * len(columns)) + " |"
    body: list[str] = []
    for row in rows:
        values: list[str] = []
        for col in columns:
            value = row.get(col)
            if isinstance(value, float):
                values.append(f"{value:.4g}")
            elif value is None:
                values.append("")
            else:
                values.append(str(value))
        body.append("| " + " | ".join(values) + " |")
    return "\n".join([header, sep, *body]) + "\n"


def _render_report(summary: dict[str, Any]) -> str:
    positions = summary.get("positions", {})
    scenario_rows = summary.get("by_scenario", [])
    reason_rows = [
        {"scenario_id": row["scenario_id"], **row.get("exits_by_reason", {})}
        for row in scenario_rows
    ]

    sections: list[str] = [
        "# What-If Exit Scenario Report",
        "",
        f"- As of: `{summary.get('as_of_date')}`",
        f"- Positions: `{positions.get('total')}` (open `{positions.get('open')}`, closed `{positions.get('closed')}`)",
        f"- Simulated pairs: `{summary.get('pairs_total')}`",
        "",
        "## Scenarios",
        "",
        _md_table(scenario_rows, [
            "scenario_id",
            "pairs",
            "resolved",
            "win_rate_resolved",
            "mean_return_pct_resolved",
            "mean_return_pct_all",
            "mean_real_return_pct",
            "mean_hold_days",
            "mean_mfe_pct",
            "mean_mae_pct",
        ]).rstrip(),
        "",
        "## Exit Reasons",
        "",
        _md_table(reason_rows, ["scenario_id", *_EXIT_REASONS]).rstrip(),
        "",
    ]

    rejected = summary.get("rejected_scenarios") or {}
    if rejected:
        sections.extend(["## Rejected Scenarios", ""])
        sections.extend(f"- `{scenario_id}`: {reason}" for scenario_id, reason in rejected.items())
        sections.append("")
    return "\n".join(sections)


def write_positions_csv(positions: Sequence[PositionRecord], path: str | Path) -> Path:
    out_path = Path(path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    positions_frame(positions).to_csv(out_path, index=False)
    return out_path


def write_simulation_artifacts(
    positions: Sequence[PositionRecord],
    artifacts: SimulationArtifacts,
    output_dir: str | Path,
    run_config: Optional[RunConfig] = None,
    bars_manifest: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Write position/result tables and summary/report artifacts."""
    out_dir = Path(output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    positions_df = positions_frame(positions)
    results_df = results_frame(artifacts)
    enriched = enrich_results(results_df, positions_df)
    summary = _build_summary_from_enriched(enriched, positions, artifacts, run_config, bars_manifest)

    positions_path = out_dir / "positions_reconstructed.csv"
    results_path = out_dir / "sim_trades.csv"
    summary_path = out_dir / "summary.json"
    report_path = out_dir / "report.md"
    manifest_path = out_dir / "bars_manifest.json"
    run_cfg_path = out_dir / "run_config.json"

    positions_df.to_csv(positions_path, index=False)
    results_df.to_csv(results_path, index=False)
    summary_path.write_text(json.dumps(summary, indent=2, default=_json_default), encoding="utf-8")
    manifest_path.write_text(json.dumps(bars_manifest or {}, indent=2, default=_json_default), encoding="utf-8")
    run_cfg_path.write_text(
        json.dumps(run_config.to_dict() if run_config is not None else {}, indent=2, default=_json_default),
        encoding="utf-8",
    )
    report_path.write_text(_render_report(summary), encoding="utf-8")

    return {
        "summary": summary,
        "paths": {
            "output_dir": str(out_dir),
            "positions_csv": str(positions_path),
            "sim_trades_csv": str(results_path),
            "summary_json": str(summary_path),
            "report_md": str(report_path),
            "bars_manifest_json": str(manifest_path),
            "run_config_json": str(run_cfg_path),
        },
    }
