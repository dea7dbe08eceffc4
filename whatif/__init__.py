"""What-if exit scenario simulation over reconstructed trade history."""

from .bars import Bar, BarDataError, BarSeries, BarStore, DayRange, day_range, latest_date, parse_bar_datetime
from .models import POSITION_COLUMNS, RESULT_COLUMNS, RunConfig
from .orders import Order, load_orders_csv, normalize_orders
from .peak_tracker import PeakPullbackTracker, TrackerPhase, TrackerState, step
from .pipeline import PipelineArtifacts, run_pipeline
from .positions import (
    BuyFill,
    PositionRecord,
    ReconstructionError,
    load_buckets,
    load_buckets_csv,
    reconstruct_positions,
)
from .reporting import build_summary, write_positions_csv, write_simulation_artifacts
from .scenarios import Scenario, ScenarioConfigError, load_scenarios, load_scenarios_csv
from .simulator import SimulationArtifacts, SimulationResult, run_simulations, simulate_position

__all__ = [
    "Bar",
    "BarDataError",
    "BarSeries",
    "BarStore",
    "DayRange",
    "day_range",
    "latest_date",
    "parse_bar_datetime",
    "POSITION_COLUMNS",
    "RESULT_COLUMNS",
    "RunConfig",
    "Order",
    "load_orders_csv",
    "normalize_orders",
    "PeakPullbackTracker",
    "TrackerPhase",
    "TrackerState",
    "step",
    "PipelineArtifacts",
    "run_pipeline",
    "BuyFill",
    "PositionRecord",
    "ReconstructionError",
    "load_buckets",
    "load_buckets_csv",
    "reconstruct_positions",
    "build_summary",
    "write_positions_csv",
    "write_simulation_artifacts",
    "Scenario",
    "ScenarioConfigError",
    "load_scenarios",
    "load_scenarios_csv",
    "SimulationArtifacts",
    "SimulationResult",
    "run_simulations",
    "simulate_position",
]
