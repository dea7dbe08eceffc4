"""Shared test helpers. Import in test files: from tests.helpers import make_series."""

from __future__ import annotations

from typing import Any

import pandas as pd

from whatif.bars import BarSeries, series_from_frame
from whatif.orders import Order
from whatif.positions import BuyFill, PositionRecord


def bar_rows(days: dict[str, list[tuple[float, float, float]]], start_minute: int = 570) -> list[dict[str, Any]]:
    """Build raw bar rows from ``{"YYYY-MM-DD": [(high, low, close), ...]}``.

    Bars within a day are spaced 30 minutes apart starting at 9:30.
    """
    rows: list[dict[str, Any]] = []
    for date_key, bars in days.items():
        year, month, day = date_key.split("-")
        for offset, (high, low, close) in enumerate(bars):
            minute = start_minute + 30 * offset
            rows.append(
                {
                    "datetime": f"{int(month)}/{int(day)}/{year} {minute // 60}:{minute % 60:02d}",
                    "open": str(close),
                    "high": str(high),
                    "low": str(low),
                    "close": str(close),
                    "volume": "1000",
                }
            )
    return rows


def make_series(days: dict[str, list[tuple[float, float, float]]], symbol: str = "AAA") -> BarSeries:
    return series_from_frame(symbol, pd.DataFrame(bar_rows(days)))


def make_order(date: str, order_id: int, side: str, qty: float, price: float, symbol: str = "AAA") -> Order:
    return Order(date=date, order_id=order_id, symbol=symbol, side=side, qty=qty, exec_price=price)


def make_position(
    fills: list[tuple[str, float, float]],
    symbol: str = "AAA",
    bucket: str = "TECH",
    **overrides: Any,
) -> PositionRecord:
    """Open position from ``[(date, qty, price), ...]`` buy fills."""
    buy_fills = tuple(BuyFill(date, 100 + idx, qty, price) for idx, (date, qty, price) in enumerate(fills))
    total = sum(fill.qty for fill in buy_fills)
    avg = sum(fill.qty * fill.price for fill in buy_fills) / total if total else 0.0
    payload: dict[str, Any] = {
        "position_id": f"{symbol}_00001",
        "symbol": symbol,
        "bucket": bucket,
        "status": "OPEN",
        "open_date": fills[0][0] if fills else "2026-01-05",
        "buy_fills": buy_fills,
        "entry_order_id": 100,
        "avg_cost": avg,
        "shares": total,
        "add_order_ids": tuple(fill.order_id for fill in buy_fills[1:]),
    }
    payload.update(overrides)
    return PositionRecord(**payload)


def raw_order(date: str, order_id: int, side: str, qty: str, price: str, symbol: str = "AAA", status: str = "Executed") -> dict[str, str]:
    return {
        "date": date,
        "order_id": str(order_id),
        "asset_type": "EQ",
        "side": side,
        "qty": qty,
        "symbol": symbol,
        "price_type": "Market",
        "term": "Good for Day",
        "order_price": "",
        "exec_price": price,
        "status": status,
    }
