"""End-to-end run: inputs -> positions -> bars -> simulations -> artifacts."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .bars import BarStore
from .models import RunConfig
from .orders import load_orders_csv, normalize_orders
from .positions import PositionRecord, load_buckets_csv, reconstruct_positions
from .reporting import write_simulation_artifacts
from .scenarios import load_scenarios_csv
from .simulator import SimulationArtifacts, run_simulations

logger = logging.getLogger(__name__)


@dataclass
class PipelineArtifacts:
    positions: list[PositionRecord]
    simulation: SimulationArtifacts
    summary: dict[str, Any]
    paths: dict[str, str]


def run_pipeline(config: RunConfig) -> PipelineArtifacts:
    """Run one what-if simulation from a run config and write its artifacts."""
    for label, path in (("orders_csv", config.orders_csv), ("scenarios_csv", config.scenarios_csv)):
        if not path.exists():
            raise FileNotFoundError(f"{label} does not exist: {path}")

    orders = normalize_orders(load_orders_csv(config.orders_csv))
    buckets = {}
    if config.buckets_csv is not None:
        if config.buckets_csv.exists():
            buckets = load_buckets_csv(config.buckets_csv)
        else:
            logger.warning("Bucket mapping not found, all symbols will be UNKNOWN: %s", config.buckets_csv)
    scenarios = load_scenarios_csv(config.scenarios_csv)
    logger.info("Loaded %s executed orders, %s bucket labels, %s scenarios", len(orders), len(buckets), len(scenarios))

    symbols = sorted({order.symbol for order in orders})
    store = BarStore.load(symbols, config.bars_dir, max_workers=config.max_workers)
    as_of_date = config.as_of_date or store.latest_date() or None
    logger.info("Loaded bars for %s symbols from %s; as-of date %s", len(store), config.bars_dir, as_of_date)

    positions = reconstruct_positions(orders, buckets, as_of_date)
    simulation = run_simulations(
        positions,
        scenarios,
        store,
        as_of_date=as_of_date,
        max_workers=config.max_workers,
    )
    written = write_simulation_artifacts(
        positions,
        simulation,
        config.output_dir,
        run_config=config,
        bars_manifest=store.build_manifest(),
    )
    return PipelineArtifacts(
        positions=positions,
        simulation=simulation,
        summary=written["summary"],
        paths=written["paths"],
    )
