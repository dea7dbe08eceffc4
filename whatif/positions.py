"""Replay of executed orders into an average-cost position ledger."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import pandas as pd

from core.market_metadata import DEFAULT_BUCKET, normalize_bucket, normalize_symbol

from .models import round4
from .orders import BUY, SELL, Order

logger = logging.getLogger(__name__)

STATUS_OPEN = "OPEN"
STATUS_CLOSED = "CLOSED"


class ReconstructionError(RuntimeError):
    """A position record violates the ledger invariants."""


@dataclass(frozen=True)
class BuyFill:
    date: str
    order_id: int
    qty: float
    price: float


@dataclass(frozen=True)
class PositionRecord:
    """Finalized position: a full close, or an open snapshot as of the run date."""

    position_id: str
    symbol: str
    bucket: str
    status: str
    open_date: str
    buy_fills: tuple[BuyFill, ...]
    entry_order_id: int
    avg_cost: float
    shares: float
    add_order_ids: tuple[int, ...] = ()
    exit_order_id: Optional[int] = None
    exit_date: Optional[str] = None
    exit_price: Optional[float] = None
    as_of_date: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.status == STATUS_OPEN

    @property
    def shares_open(self) -> float:
        return self.shares if self.is_open else 0.0

    def to_record(self) -> dict[str, Any]:
        return {
            "position_id": self.position_id,
            "symbol": self.symbol,
            "bucket": self.bucket,
            "status_real": self.status,
            "open_date": self.open_date,
            "real_exit_date": self.exit_date,
            "real_exit_price": self.exit_price,
            "entry_orders": str(self.entry_order_id),
            "add_orders": ";".join(str(item) for item in self.add_order_ids),
            "exit_order": None if self.exit_order_id is None else str(self.exit_order_id),
            "avg_cost_real": round4(self.avg_cost),
            "shares_open": self.shares_open,
            "shares_exited": None if self.is_open else self.shares,
            "as_of_date": self.as_of_date,
        }


@dataclass
class _OpenLot:
    """Mutable state of one open position while orders are replayed."""

    position_id: str
    open_date: str
    entry_order_id: int
    avg_cost: float = 0.0
    shares: float = 0.0
    add_order_ids: list[int] = field(default_factory=list)
    buy_fills: list[BuyFill] = field(default_factory=list)

    def apply_buy(self, order: Order) -> None:
        self.buy_fills.append(BuyFill(order.date, order.order_id, order.qty, order.exec_price))
        self.avg_cost = update_avg_cost(self.avg_cost, self.shares, order.exec_price, order.qty)
        self.shares += order.qty


@dataclass
class _SymbolLedger:
    symbol: str
    bucket: str
    sequence: int = 0
    lot: Optional[_OpenLot] = None

    def next_position_id(self) -> str:
        self.sequence += 1
        return f"{self.symbol}_{self.sequence:05d}"

    def freeze(self, status: str, as_of_date: Optional[str], exit_order: Optional[Order] = None) -> PositionRecord:
        lot = self.lot
        if lot is None:
            raise ReconstructionError(f"No open position to finalize for {self.symbol}")
        return PositionRecord(
            position_id=lot.position_id,
            symbol=self.symbol,
            bucket=self.bucket,
            status=status,
            open_date=lot.open_date,
            buy_fills=tuple(lot.buy_fills),
            entry_order_id=lot.entry_order_id,
            avg_cost=lot.avg_cost,
            shares=lot.shares,
            add_order_ids=tuple(lot.add_order_ids),
            exit_order_id=None if exit_order is None else exit_order.order_id,
            exit_date=None if exit_order is None else exit_order.date,
            exit_price=None if exit_order is None else exit_order.exec_price,
            as_of_date=as_of_date,
        )


def update_avg_cost(avg_cost: float, shares: float, fill_price: float, fill_qty: float) -> float:
    """Quantity-weighted average cost after adding one fill."""
    total = shares + fill_qty
    if total <= 0:
        raise ReconstructionError(f"Non-positive share count after fill: {total}")
    return (avg_cost * shares + fill_price * fill_qty) / total


def load_buckets(rows: Iterable[Mapping[str, Any]]) -> dict[str, str]:
    """Build the symbol -> bucket label mapping."""
    buckets: dict[str, str] = {}
    for row in rows:
        symbol = normalize_symbol(row.get("symbol"))
        if symbol:
            buckets[symbol] = normalize_bucket(row.get("bucket"))
    return buckets


def load_buckets_csv(path: str | Path) -> dict[str, str]:
    frame = pd.read_csv(path, dtype=str, keep_default_na=False)
    frame.columns = [str(col).strip().lower() for col in frame.columns]
    if not {"symbol", "bucket"}.issubset(frame.columns):
        raise ValueError(f"Bucket table needs symbol,bucket columns: {path}")
    return load_buckets(frame.to_dict(orient="records"))


def reconstruct_positions(
    orders: Iterable[Order],
    buckets: Mapping[str, str] | None = None,
    as_of_date: Optional[str] = None,
) -> list[PositionRecord]:
    """
    Replay normalized orders into closed and still-open positions.

    Orders must already be in ``(date, order_id)`` order. A SELL always closes
    the whole open position; a SELL with nothing open is ignored.
    """
    bucket_map = buckets or {}
    ledgers: dict[str, _SymbolLedger] = {}
    results: list[PositionRecord] = []
    orphan_sells = 0

    for order in orders:
        ledger = ledgers.get(order.symbol)
        if ledger is None:
            ledger = _SymbolLedger(order.symbol, bucket_map.get(order.symbol, DEFAULT_BUCKET))
            ledgers[order.symbol] = ledger

        if order.side == BUY:
            if ledger.lot is None:
                ledger.lot = _OpenLot(
                    position_id=ledger.next_position_id(),
                    open_date=order.date,
                    entry_order_id=order.order_id,
                )
            else:
                ledger.lot.add_order_ids.append(order.order_id)
            ledger.lot.apply_buy(order)
            continue

        if order.side == SELL:
            if ledger.lot is None or ledger.lot.shares <= 0:
                orphan_sells += 1
                logger.debug("Ignoring orphan sell %s for %s on %s", order.order_id, order.symbol, order.date)
                continue
            results.append(ledger.freeze(STATUS_CLOSED, as_of_date, exit_order=order))
            ledger.lot = None

    for ledger in ledgers.values():
        if ledger.lot is not None and ledger.lot.shares > 0:
            results.append(ledger.freeze(STATUS_OPEN, as_of_date))

    results.sort(key=lambda item: (item.symbol, item.open_date, item.position_id))
    logger.info(
        "Reconstructed %s positions (%s open) across %s symbols; %s orphan sells ignored",
        len(results),
        sum(1 for item in results if item.is_open),
        len(ledgers),
        orphan_sells,
    )
    return results
