"""Day-by-day replay of positions under alternative exit scenarios."""

from __future__ import annotations

import bisect
import logging
import math
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Optional

from .bars import BarSeries, BarStore, DayRange
from .models import round4
from .peak_tracker import scan
from .positions import BuyFill, PositionRecord, ReconstructionError, update_avg_cost
from .scenarios import Scenario, ScenarioConfigError

logger = logging.getLogger(__name__)

STATUS_SIM_CLOSED = "CLOSED"
STATUS_SIM_OPEN_ASOF = "OPEN_ASOF"

REASON_SHTF = "SHTF"
REASON_TARGET = "TARGET"
REASON_TIME_STOP = "TIME_STOP"
REASON_NO_EXIT_ASOF = "NO_EXIT_ASOF"
REASON_NO_BARS = "NO_BARS"


@dataclass(frozen=True)
class SimulationResult:
    """Realized and simulated outcome of one (position, scenario) pair."""

    scenario_id: str
    position_id: str
    symbol: str
    bucket: str
    status_real: str
    open_date: str
    real_exit_date: Optional[str]
    real_exit_price: Optional[float]
    status_sim: str
    sim_exit_date: Optional[str]
    exit_reason: str
    target_model: str
    target_pct: Optional[float]
    k: Optional[float]
    shtf_pct: Optional[float]
    time_stop_days: Optional[float]
    as_of_date: Optional[str]
    sim_exit_price: Optional[float] = None
    avg_cost_start: Optional[float] = None
    avg_cost_final: Optional[float] = None
    qty_final: Optional[float] = None
    target_price: Optional[float] = None
    shtf_price: Optional[float] = None
    hold_days: Optional[int] = None
    return_pct: Optional[float] = None
    mfe_pct: Optional[float] = None
    mae_pct: Optional[float] = None
    dip_anchor_peak: Optional[float] = None
    dip_pct_at_initial_entry: Optional[float] = None
    as_of_price: Optional[float] = None

    def to_record(self) -> dict[str, Any]:
        return {
            "scenario_id": self.scenario_id,
            "position_id": self.position_id,
            "symbol": self.symbol,
            "bucket": self.bucket,
            "status_real": self.status_real,
            "open_date": self.open_date,
            "real_exit_date": self.real_exit_date,
            "real_exit_price": self.real_exit_price,
            "status_sim": self.status_sim,
            "sim_exit_date": self.sim_exit_date,
            "sim_exit_price": round4(self.sim_exit_price),
            "exit_reason": self.exit_reason,
            "target_model": self.target_model,
            "target_pct": self.target_pct,
            "k": self.k,
            "shtf_pct": self.shtf_pct,
            "time_stop_days": self.time_stop_days,
            "avg_cost_start": round4(self.avg_cost_start),
            "avg_cost_final": round4(self.avg_cost_final),
            "qty_final": self.qty_final,
            "target_price": round4(self.target_price),
            "shtf_price": round4(self.shtf_price),
            "hold_days": self.hold_days,
            "return_pct": round4(self.return_pct),
            "mfe_pct": round4(self.mfe_pct),
            "mae_pct": round4(self.mae_pct),
            "dip_anchor_peak": round4(self.dip_anchor_peak),
            "dip_pct_at_initial_entry": round4(self.dip_pct_at_initial_entry),
            "as_of_date": self.as_of_date,
            "as_of_price": round4(self.as_of_price),
        }


@dataclass(frozen=True)
class ExitSignal:
    reason: str
    date_key: str
    price: float


@dataclass
class _Excursions:
    mfe: float = -math.inf
    mae: float = math.inf

    def update(self, high: float, low: float, avg_cost: float) -> None:
        if avg_cost <= 0:
            return
        self.mfe = max(self.mfe, (high - avg_cost) / avg_cost)
        self.mae = min(self.mae, (low - avg_cost) / avg_cost)

    @property
    def mfe_pct(self) -> Optional[float]:
        return self.mfe if math.isfinite(self.mfe) else None

    @property
    def mae_pct(self) -> Optional[float]:
        return self.mae if math.isfinite(self.mae) else None


@dataclass
class SimulationArtifacts:
    """In-memory results for one batch of (position, scenario) pairs."""

    results: list[SimulationResult]
    as_of_date: Optional[str]
    rejected_scenarios: dict[str, str] = field(default_factory=dict)

    def to_records(self) -> list[dict[str, Any]]:
        return [item.to_record() for item in self.results]


def scan_day(
    series: BarSeries,
    day: DayRange,
    date_key: str,
    avg_cost: float,
    target_price: float,
    stop_price: float,
    excursions: _Excursions,
) -> Optional[ExitSignal]:
    """
    Walk one day's bars in order and return the first exit trigger, if any.

    Inside a bar the stop is checked before the target, so a bar that spans
    both levels exits at the stop.
    """
    for position in range(day.start, day.end + 1):
        high = float(series.high[position])
        low = float(series.low[position])
        excursions.update(high, low, avg_cost)

        if low <= stop_price:
            return ExitSignal(REASON_SHTF, date_key, stop_price)
        if high >= target_price:
            return ExitSignal(REASON_TARGET, date_key, target_price)
    return None


def _hold_days(trading_days: Sequence[str], open_date: str, exit_date: Optional[str]) -> Optional[int]:
    if exit_date is None:
        return None
    count = bisect.bisect_right(trading_days, exit_date) - bisect.bisect_left(trading_days, open_date)
    return count if count > 0 else None


def _no_bars_result(position: PositionRecord, scenario: Scenario, as_of_date: Optional[str]) -> SimulationResult:
    return SimulationResult(
        scenario_id=scenario.scenario_id,
        position_id=position.position_id,
        symbol=position.symbol,
        bucket=position.bucket,
        status_real=position.status,
        open_date=position.open_date,
        real_exit_date=position.exit_date,
        real_exit_price=position.exit_price,
        status_sim=STATUS_SIM_OPEN_ASOF,
        sim_exit_date=as_of_date,
        exit_reason=REASON_NO_BARS,
        target_model=scenario.target_model,
        target_pct=scenario.target_pct,
        k=scenario.k,
        shtf_pct=scenario.shtf_pct,
        time_stop_days=scenario.time_stop_days,
        as_of_date=as_of_date,
    )


def simulate_position(
    position: PositionRecord,
    scenario: Scenario,
    series: BarSeries,
    as_of_date: Optional[str] = None,
) -> SimulationResult:
    """
    Replay one position under one scenario.

    Buy fills are queued by date and applied at the start of their trading
    day, before that day's bars are checked. The walk ends at the first
    trigger or at the last trading day on or before ``as_of_date``.
    """
    if not position.buy_fills:
        raise ReconstructionError(f"Position {position.position_id} has no buy fills")

    as_of = as_of_date or series.last_date
    open_day = series.day_range(position.open_date)
    if open_day is None:
        return _no_bars_result(position, scenario, as_of)

    fills: list[BuyFill] = sorted(position.buy_fills, key=lambda item: (item.date, item.order_id))
    entry_price = fills[0].price

    pre_entry = scan(series.bars_before(position.open_date), scenario.pullback_pct, scenario.reclaim_pct)
    anchor_peak = pre_entry.reference_peak
    if anchor_peak is None:
        anchor_peak = float(series.high[open_day.start])
    dip_pct = (anchor_peak - entry_price) / anchor_peak if anchor_peak else 0.0

    target_pct = scenario.resolve_target_pct(dip_pct)
    stop_pct = scenario.shtf_pct or 0.0
    time_stop = scenario.time_stop_limit

    qty = 0.0
    avg_cost = 0.0
    next_fill = 0

    def apply_fills_through(date_key: str) -> None:
        nonlocal qty, avg_cost, next_fill
        while next_fill < len(fills) and fills[next_fill].date <= date_key:
            fill = fills[next_fill]
            avg_cost = update_avg_cost(avg_cost, qty, fill.price, fill.qty)
            qty += fill.qty
            next_fill += 1

    apply_fills_through(position.open_date)
    avg_cost_start = avg_cost
    target_price = avg_cost * (1 + target_pct)
    stop_price = avg_cost * (1 - stop_pct)

    trading_days = series.trading_days
    start_idx = bisect.bisect_left(trading_days, position.open_date)
    final_idx = bisect.bisect_right(trading_days, as_of) - 1 if as_of else len(trading_days) - 1

    excursions = _Excursions()
    signal: Optional[ExitSignal] = None
    for day_idx in range(start_idx, final_idx + 1):
        day_key = trading_days[day_idx]
        day = series.day_index[day_key]

        apply_fills_through(day_key)
        target_price = avg_cost * (1 + target_pct)
        stop_price = avg_cost * (1 - stop_pct)

        signal = scan_day(series, day, day_key, avg_cost, target_price, stop_price, excursions)
        if signal is not None:
            break

        if time_stop is not None and (day_idx - start_idx + 1) >= time_stop:
            signal = ExitSignal(REASON_TIME_STOP, day_key, float(series.close[day.end]))
            break

    # An as-of date before the open date leaves nothing to price.
    as_of_price: Optional[float] = None
    if final_idx >= start_idx:
        as_of_price = float(series.close[series.day_index[trading_days[final_idx]].end])

    if signal is not None:
        status_sim = STATUS_SIM_CLOSED
        exit_reason = signal.reason
        exit_date: Optional[str] = signal.date_key
        exit_price: Optional[float] = signal.price
    else:
        status_sim = STATUS_SIM_OPEN_ASOF
        exit_reason = REASON_NO_EXIT_ASOF
        exit_date = as_of
        exit_price = as_of_price

    return_pct = None
    if exit_price is not None and avg_cost > 0:
        return_pct = (exit_price - avg_cost) / avg_cost

    return SimulationResult(
        scenario_id=scenario.scenario_id,
        position_id=position.position_id,
        symbol=position.symbol,
        bucket=position.bucket,
        status_real=position.status,
        open_date=position.open_date,
        real_exit_date=position.exit_date,
        real_exit_price=position.exit_price,
        status_sim=status_sim,
        sim_exit_date=exit_date,
        exit_reason=exit_reason,
        target_model=scenario.target_model,
        target_pct=scenario.target_pct,
        k=scenario.k,
        shtf_pct=scenario.shtf_pct,
        time_stop_days=scenario.time_stop_days,
        as_of_date=as_of,
        sim_exit_price=exit_price,
        avg_cost_start=avg_cost_start,
        avg_cost_final=avg_cost,
        qty_final=qty,
        target_price=target_price,
        shtf_price=stop_price,
        hold_days=_hold_days(trading_days, position.open_date, exit_date),
        return_pct=return_pct,
        mfe_pct=excursions.mfe_pct,
        mae_pct=excursions.mae_pct,
        dip_anchor_peak=anchor_peak,
        dip_pct_at_initial_entry=dip_pct,
        as_of_price=as_of_price,
    )


def _simulate_group(
    pairs: list[tuple[int, PositionRecord, Scenario]],
    series: BarSeries,
    as_of_date: Optional[str],
) -> list[tuple[int, SimulationResult]]:
    return [(slot, simulate_position(position, scenario, series, as_of_date)) for slot, position, scenario in pairs]


def run_simulations(
    positions: Sequence[PositionRecord],
    scenarios: Sequence[Scenario],
    store: BarStore,
    as_of_date: Optional[str] = None,
    max_workers: int = 4,
) -> SimulationArtifacts:
    """
    Simulate every position under every scenario whose bucket matches.

    Scenarios with invalid parameters are rejected and reported; the rest of
    the batch still runs. Results come back in position order, then scenario
    order.
    """
    as_of = as_of_date or store.latest_date() or None

    accepted: list[Scenario] = []
    rejected: dict[str, str] = {}
    for scenario in scenarios:
        try:
            scenario.validate()
        except ScenarioConfigError as exc:
            logger.error("Skipping scenario %s: %s", scenario.scenario_id, exc)
            rejected[scenario.scenario_id] = str(exc)
            continue
        accepted.append(scenario)

    grouped: dict[str, list[tuple[int, PositionRecord, Scenario]]] = {}
    slot_count = 0
    for position in positions:
        for scenario in accepted:
            if not scenario.applies_to(position.bucket):
                continue
            grouped.setdefault(position.symbol, []).append((slot_count, position, scenario))
            slot_count += 1

    if slot_count == 0:
        return SimulationArtifacts(results=[], as_of_date=as_of, rejected_scenarios=rejected)

    workers = min(max(1, int(max_workers)), len(grouped))
    ordered: list[Optional[SimulationResult]] = [None] * slot_count
    with ThreadPoolExecutor(max_workers=workers) as pool:
        future_map = {
            pool.submit(_simulate_group, batch, store.get(symbol), as_of): symbol
            for symbol, batch in grouped.items()
        }
        for future in as_completed(future_map):
            for slot, result in future.result():
                ordered[slot] = result

    results = [item for item in ordered if item is not None]
    no_bars = sum(1 for item in results if item.exit_reason == REASON_NO_BARS)
    logger.info(
        "Simulated %s pairs over %s positions and %s scenarios as of %s (%s without bars)",
        len(results),
        len(positions),
        len(accepted),
        as_of,
        no_bars,
    )
    return SimulationArtifacts(results=results, as_of_date=as_of, rejected_scenarios=rejected)
