"""Shared fixtures for simulator tests.

Helper functions (make_series, make_position, etc.) are in tests/helpers.py.
"""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from whatif.scenarios import Scenario
from tests.helpers import make_series


@pytest.fixture(autouse=True)
def _quiet_logging():
    logging.getLogger("whatif").setLevel(logging.WARNING)
    yield


@pytest.fixture()
def fixed_scenario() -> Scenario:
    """5% stop below and 5% target above average cost."""
    return Scenario(
        scenario_id="FIX5",
        bucket="ALL",
        target_model="fixed",
        target_pct=0.05,
        shtf_pct=0.05,
    )


@pytest.fixture()
def two_day_series():
    """The first two days stay inside 95/105; the third spans both levels in one bar."""
    return make_series(
        {
            "2026-01-05": [(101.0, 99.0, 100.0)],
            "2026-01-06": [(104.0, 96.0, 100.0)],
            "2026-01-07": [(110.0, 94.0, 100.0)],
        }
    )


@pytest.fixture()
def inputs_dir(tmp_path: Path) -> Path:
    """Orders, buckets, scenarios and a bar cache laid out like a real run."""
    root = tmp_path / "inputs"
    bars_dir = tmp_path / "cache" / "bars" / "30m"
    root.mkdir()
    bars_dir.mkdir(parents=True)

    (root / "orders.csv").write_text(
        "date,order_id,asset_type,side,qty,symbol,price_type,term,order_price,exec_price,status\n"
        "1/5/2026,1,EQ,Bought,10,aaa,Market,Good for Day,,100.00,Executed\n"
        "1/6/2026,2,EQ,Bought,10,AAA,Limit,Good for Day,90,90.00,Executed\n"
        "1/8/2026,3,EQ,Sold,20,AAA,Market,Good for Day,,99.50,Executed\n"
        "1/5/2026,4,EQ,Bought,5,BBB,Market,Good for Day,,\"1,000.00\",Executed\n"
        "1/6/2026,5,EQ,Bought,5,BBB,Market,Good for Day,,990.00,Cancelled\n"
        "1/7/2026,6,EQ,Sold,3,CCC,Market,Good for Day,,10.00,Executed\n",
        encoding="utf-8",
    )
    (root / "ticker_buckets.csv").write_text("symbol,bucket\nAAA,tech\nBBB,energy\n", encoding="utf-8")
    (root / "scenarios.csv").write_text(
        "scenario_id,bucket,dip_model,pullback_pct,reclaim_pct,target_model,target_pct,k,shtf_pct,time_stop_days\n"
        "FIX5,ALL,rally_peak,0.05,0.02,fixed,0.05,,0.05,\n"
        "DIP,TECH,rally_peak,0.05,0.02,dip_scaled,,1.5,0.10,3\n"
        "BAD,ALL,rally_peak,0.05,0.02,moonshot,0.05,,0.05,\n",
        encoding="utf-8",
    )
    (bars_dir / "AAA.csv").write_text(
        "datetime,open,high,low,close,volume\n"
        "1/2/2026 9:30,110,112,108,110,1000\n"
        "1/5/2026 9:30,100,101,99,100,1000\n"
        "1/5/2026 10:00,100,102,98,101,1000\n"
        "1/6/2026 9:30,92,93,89,90,1000\n"
        "1/7/2026 9:30,96,97,94,96,1000\n"
        "1/8/2026 9:30,99,101,98,99.5,1000\n"
        "1/9/2026 9:30,100,104,99,103,1000\n",
        encoding="utf-8",
    )
    (root / "run_config.csv").write_text(
        "key,value\n"
        "orders_csv,orders.csv\n"
        "buckets_csv,ticker_buckets.csv\n"
        "scenarios_csv,scenarios.csv\n"
        f"bars_dir,{bars_dir}\n"
        f"output_dir,{tmp_path / 'outputs'}\n"
        "as_of_date,\n"
        "bars_start_date,2025-12-01\n"
        "bars_end_date,2026-01-31\n"
        "rth_only,true\n"
        "bars_multiplier,30\n"
        "bars_timespan,minute\n"
        "max_workers,2\n",
        encoding="utf-8",
    )
    return root
