"""Validation, canonicalization and deterministic ordering of raw trade orders."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import pandas as pd

from core.market_metadata import normalize_symbol

from .models import (
    ORDER_COLUMN_ALIASES,
    REQUIRED_ORDER_COLUMNS,
    is_blank,
    normalize_date,
    parse_number,
)

logger = logging.getLogger(__name__)

BUY = "BUY"
SELL = "SELL"

_SIDE_SYNONYMS: dict[str, str] = {
    "BUY": BUY,
    "BOUGHT": BUY,
    "SELL": SELL,
    "SOLD": SELL,
}


@dataclass(frozen=True)
class Order:
    """One executed order, canonicalized."""

    date: str
    order_id: int
    symbol: str
    side: str
    qty: float
    exec_price: float
    asset_type: Optional[str] = None
    price_type: Optional[str] = None
    term: Optional[str] = None
    order_price: Optional[str] = None

    @property
    def sort_key(self) -> tuple[str, int]:
        return (self.date, self.order_id)

    def to_record(self) -> dict[str, Any]:
        return {
            "date": self.date,
            "order_id": self.order_id,
            "asset_type": self.asset_type,
            "side": self.side,
            "qty": self.qty,
            "symbol": self.symbol,
            "price_type": self.price_type,
            "term": self.term,
            "order_price": self.order_price,
            "exec_price": self.exec_price,
        }


def normalize_side(value: Any) -> Optional[str]:
    """Map broker side wording onto BUY/SELL; ``None`` when unrecognized."""
    return _SIDE_SYNONYMS.get(str(value or "").strip().upper())


def _optional_text(row: Mapping[str, Any], field: str) -> Optional[str]:
    value = row.get(field)
    if is_blank(value):
        return None
    return str(value).strip()


def _canonical_row(row: Mapping[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in row.items():
        name = str(key).strip().lower()
        out[ORDER_COLUMN_ALIASES.get(name, name)] = value
    return out


def _parse_order_id(value: Any) -> int:
    number = parse_number(value)
    if number is None or not float(number).is_integer():
        raise ValueError(f"Invalid order_id: {value!r}")
    return int(number)


def _require_number(row: Mapping[str, Any], field: str) -> float:
    value = parse_number(row.get(field))
    if value is None:
        raise ValueError(f"{field} is required for order {row.get('order_id')!r}")
    return value


def normalize_orders(rows: Iterable[Mapping[str, Any]]) -> list[Order]:
    """
    Keep executed orders only, canonicalize their fields, and sort them.

    Rows without a symbol, with an unrecognized side, or with a quantity of
    zero or less are dropped. The result is ordered by ``(date, order_id)``;
    same-day fills replay in submission order because average cost depends
    on it.
    """
    orders: list[Order] = []
    skipped = 0
    skipped_qty = 0
    for raw in rows:
        row = _canonical_row(raw)
        if str(row.get("status") or "").strip().lower() != "executed":
            continue

        try:
            symbol = normalize_symbol(row.get("symbol"))
        except ValueError:
            symbol = ""
        side = normalize_side(row.get("side"))
        if not symbol or side is None:
            skipped += 1
            continue

        qty = _require_number(row, "qty")
        if qty <= 0:
            skipped_qty += 1
            continue

        term = _optional_text(row, "term")
        orders.append(
            Order(
                date=normalize_date(row.get("date")),
                order_id=_parse_order_id(row.get("order_id")),
                symbol=symbol,
                side=side,
                qty=qty,
                exec_price=_require_number(row, "exec_price"),
                asset_type=_optional_text(row, "asset_type"),
                price_type=_optional_text(row, "price_type"),
                term=None if term is None else term.replace(" ", "").upper(),
                order_price=_optional_text(row, "order_price"),
            )
        )

    if skipped:
        logger.debug("Dropped %s executed rows without symbol or recognized side", skipped)
    if skipped_qty:
        logger.debug("Dropped %s executed rows with non-positive quantity", skipped_qty)
    orders.sort(key=lambda order: order.sort_key)
    return orders


def load_orders_csv(path: str | Path) -> list[dict[str, Any]]:
    """Read the raw orders table as string records."""
    frame = pd.read_csv(path, dtype=str, keep_default_na=False)
    columns = [ORDER_COLUMN_ALIASES.get(str(col).strip().lower(), str(col).strip().lower()) for col in frame.columns]
    missing = [col for col in REQUIRED_ORDER_COLUMNS if col not in columns]
    if missing:
        raise ValueError(f"Missing required order columns: {missing}")
    return frame.to_dict(orient="records")
