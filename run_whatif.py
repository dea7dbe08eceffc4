"""CLI for what-if exit scenario simulation and position reconstruction."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

_HERE = Path(__file__).parent
if str(_HERE) not in sys.path:
    sys.path.insert(0, str(_HERE))

from core.logging_setup import setup_logging  # noqa: E402
from whatif import (  # noqa: E402
    BarDataError,
    ReconstructionError,
    RunConfig,
    load_buckets_csv,
    load_orders_csv,
    normalize_orders,
    reconstruct_positions,
    run_pipeline,
    write_positions_csv,
)
from whatif.models import normalize_date  # noqa: E402


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="What-if exit scenario simulator")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )
    parser.add_argument("--logs-dir", default=None, help="Directory for the rotating log file")

    subparsers = parser.add_subparsers(dest="command", required=True)

    sim_parser = subparsers.add_parser("simulate", help="Reconstruct positions and run all scenarios")
    sim_parser.add_argument("--config", required=True, help="Run config (JSON object or key,value CSV)")

    rec_parser = subparsers.add_parser("reconstruct", help="Write the reconstructed positions table only")
    rec_parser.add_argument("--orders", required=True, help="Raw orders CSV")
    rec_parser.add_argument("--buckets", help="Optional symbol,bucket CSV")
    rec_parser.add_argument("--as-of", help="As-of date stamped on each row (YYYY-MM-DD)")
    rec_parser.add_argument("--out", default="outputs", help="Output directory")

    return parser.parse_args(argv)


def _run_simulate(args: argparse.Namespace) -> int:
    logger = logging.getLogger(__name__)
    config_path = Path(args.config)
    if not config_path.exists():
        logger.error("config does not exist: %s", config_path)
        return 2

    try:
        config = RunConfig.from_path(config_path)
        artifacts = run_pipeline(config)
    except FileNotFoundError as exc:
        logger.error(str(exc))
        return 4
    except ReconstructionError as exc:
        logger.error(str(exc))
        return 3
    except (BarDataError, ValueError) as exc:
        logger.error(str(exc))
        return 6

    logger.info("Output dir: %s", artifacts.paths["output_dir"])
    logger.info("As-of date: %s", artifacts.simulation.as_of_date)
    logger.info("Positions: %s", len(artifacts.positions))
    logger.info("Simulated pairs: %s", len(artifacts.simulation.results))
    if artifacts.simulation.rejected_scenarios:
        logger.warning("Rejected scenarios: %s", sorted(artifacts.simulation.rejected_scenarios))
    return 0


def _run_reconstruct(args: argparse.Namespace) -> int:
    logger = logging.getLogger(__name__)
    orders_path = Path(args.orders)
    if not orders_path.exists():
        logger.error("orders does not exist: %s", orders_path)
        return 4

    try:
        orders = normalize_orders(load_orders_csv(orders_path))
        buckets = load_buckets_csv(args.buckets) if args.buckets else {}
        as_of = normalize_date(args.as_of) if args.as_of else None
        positions = reconstruct_positions(orders, buckets, as_of)
    except ReconstructionError as exc:
        logger.error(str(exc))
        return 3
    except ValueError as exc:
        logger.error(str(exc))
        return 6

    out_path = write_positions_csv(positions, Path(args.out) / "positions_reconstructed.csv")
    logger.info("Positions: %s -> %s", len(positions), out_path)
    return 0


def _run(args: argparse.Namespace) -> int:
    if args.command == "simulate":
        return _run_simulate(args)
    if args.command == "reconstruct":
        return _run_reconstruct(args)
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    setup_logging(log_level=args.log_level, logs_dir=args.logs_dir)
    raise SystemExit(_run(args))


if __name__ == "__main__":
    main()
