"""Per-symbol bar series with a date-keyed contiguous day index."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Optional, Union

import numpy as np
import pandas as pd

from core.market_metadata import normalize_symbol

from .models import is_blank, parse_number

logger = logging.getLogger(__name__)

_ARRAY_COLUMNS: tuple[str, ...] = ("open", "high", "low", "close", "volume")
_REQUIRED_BAR_COLUMNS = {"datetime", "open", "high", "low", "close"}

_SLASH_DATETIME_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})\s+(\d{1,2}):(\d{2})(?::\d{2})?$")
_ISO_DATETIME_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})[T ](\d{2}):(\d{2})(?::\d{2}(?:\.\d+)?)?$")


class BarDataError(ValueError):
    """Malformed bar source data; fix upstream, never recoverable in-process."""


def parse_bar_datetime(value: Any) -> tuple[str, int]:
    """
    Split a bar timestamp into ``(date_key, minute_of_day)``.

    Accepts the cache format ``M/D/YYYY H:MM`` and ISO ``YYYY-MM-DD HH:MM``.
    Timestamps are taken as exchange-local wall time.

    Examples:
    - "11/28/2025 6:30" -> ("2025-11-28", 390)
    - "2025-11-28T15:30:00" -> ("2025-11-28", 930)
    """
    text = str(value if value is not None else "").strip()
    match = _SLASH_DATETIME_RE.match(text)
    if match:
        month, day, year, hour, minute = (int(part) for part in match.groups())
    else:
        match = _ISO_DATETIME_RE.match(text)
        if not match:
            raise BarDataError(f"Unrecognized datetime format: {text!r}")
        year, month, day, hour, minute = (int(part) for part in match.groups())

    if not (1 <= month <= 12 and 1 <= day <= 31 and hour < 24 and minute < 60):
        raise BarDataError(f"Unrecognized datetime format: {text!r}")
    return f"{year:04d}-{month:02d}-{day:02d}", hour * 60 + minute


@dataclass(frozen=True)
class Bar:
    date_key: str
    minute_of_day: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


@dataclass(frozen=True)
class DayRange:
    """Inclusive ``[start, end]`` positions of one trading day in a series."""

    start: int
    end: int

    @property
    def size(self) -> int:
        return self.end - self.start + 1


def build_day_index(date_keys: Iterable[str]) -> dict[str, DayRange]:
    """Map each date key to its contiguous range in an already-ordered series."""
    index: dict[str, DayRange] = {}
    current: Optional[str] = None
    start = 0
    position = -1
    for position, key in enumerate(date_keys):
        if current is None:
            current = key
            start = position
        elif key != current:
            if key in index or key < current:
                raise BarDataError(f"Bars are not grouped by ascending date at {key!r}")
            index[current] = DayRange(start, position - 1)
            current = key
            start = position
    if current is not None:
        index[current] = DayRange(start, position)
    return index


@dataclass(frozen=True)
class BarSeries:
    """Immutable columnar bars for one symbol, ordered by (date_key, minute_of_day)."""

    symbol: str
    date_key: np.ndarray
    minute_of_day: np.ndarray
    open: np.ndarray
    high: np.ndarray
    low: np.ndarray
    close: np.ndarray
    volume: np.ndarray
    day_index: Mapping[str, DayRange] = field(default_factory=dict)

    @property
    def rows(self) -> int:
        return int(self.date_key.size)

    @property
    def first_date(self) -> Optional[str]:
        return str(self.date_key[0]) if self.rows else None

    @property
    def last_date(self) -> Optional[str]:
        return str(self.date_key[-1]) if self.rows else None

    @property
    def trading_days(self) -> tuple[str, ...]:
        return tuple(sorted(self.day_index))

    def day_range(self, date_key: str) -> Optional[DayRange]:
        return self.day_index.get(date_key)

    def bar(self, position: int) -> Bar:
        return Bar(
            date_key=str(self.date_key[position]),
            minute_of_day=int(self.minute_of_day[position]),
            open=float(self.open[position]),
            high=float(self.high[position]),
            low=float(self.low[position]),
            close=float(self.close[position]),
            volume=float(self.volume[position]),
        )

    def iter_bars(self, start: int = 0, end: Optional[int] = None) -> Iterator[Bar]:
        """Yield bars in ``[start, end)``."""
        stop = self.rows if end is None else min(self.rows, int(end))
        for position in range(max(0, int(start)), stop):
            yield self.bar(position)

    def bars_before(self, date_key: str) -> Iterator[Bar]:
        """Yield every bar dated strictly before ``date_key``."""
        stop = int(np.searchsorted(self.date_key, date_key, side="left"))
        return self.iter_bars(0, stop)


def _readonly(series: BarSeries) -> BarSeries:
    for name in ("date_key", "minute_of_day", *_ARRAY_COLUMNS):
        getattr(series, name).setflags(write=False)
    return series


def _make_series(
    symbol: str,
    date_keys: np.ndarray,
    minutes: np.ndarray,
    values: dict[str, np.ndarray],
) -> BarSeries:
    return _readonly(
        BarSeries(
            symbol=symbol,
            date_key=date_keys,
            minute_of_day=minutes,
            open=values["open"],
            high=values["high"],
            low=values["low"],
            close=values["close"],
            volume=values["volume"],
            day_index=MappingProxyType(build_day_index(date_keys.tolist())),
        )
    )


def empty_series(symbol: str) -> BarSeries:
    empty_float = np.asarray([], dtype=np.float64)
    return _make_series(
        symbol,
        np.asarray([], dtype="<U10"),
        np.asarray([], dtype=np.int64),
        {name: empty_float.copy() for name in _ARRAY_COLUMNS},
    )


def _stable_sort_and_dedupe(
    date_keys: np.ndarray,
    minutes: np.ndarray,
    values: dict[str, np.ndarray],
) -> tuple[np.ndarray, np.ndarray, dict[str, np.ndarray]]:
    if date_keys.size <= 1:
        return date_keys, minutes, values

    sort_key = np.char.replace(date_keys, "-", "").astype(np.int64) * 10_000 + minutes
    order = np.argsort(sort_key, kind="mergesort")
    sort_key = sort_key[order]
    date_keys = date_keys[order]
    minutes = minutes[order]
    values = {name: array[order] for name, array in values.items()}

    # Duplicate timestamps keep the last row seen.
    keep_mask = np.ones(sort_key.size, dtype=bool)
    keep_mask[:-1] = sort_key[:-1] != sort_key[1:]
    if keep_mask.all():
        return date_keys, minutes, values
    return (
        date_keys[keep_mask],
        minutes[keep_mask],
        {name: array[keep_mask] for name, array in values.items()},
    )


def series_from_frame(symbol: str, frame: pd.DataFrame) -> BarSeries:
    """Validate a raw bar table and convert it into an indexed ``BarSeries``."""
    missing = sorted(_REQUIRED_BAR_COLUMNS.difference(frame.columns))
    if missing:
        raise BarDataError(f"Bar table for {symbol} is missing columns {missing}")

    date_keys: list[str] = []
    minutes: list[int] = []
    numeric_values: dict[str, list[float]] = {name: [] for name in _ARRAY_COLUMNS}
    has_volume = "volume" in frame.columns
    for row in frame.to_dict(orient="records"):
        if is_blank(row.get("datetime")):
            continue
        date_key, minute = parse_bar_datetime(row["datetime"])
        for column in _ARRAY_COLUMNS:
            raw = row.get(column) if (column != "volume" or has_volume) else None
            try:
                value = parse_number(raw)
            except ValueError as exc:
                raise BarDataError(f"Invalid {column} for {symbol} at {row['datetime']!r}: {raw!r}") from exc
            if value is None:
                if column == "volume":
                    value = 0.0
                else:
                    raise BarDataError(f"Missing {column} for {symbol} at {row['datetime']!r}")
            numeric_values[column].append(value)
        date_keys.append(date_key)
        minutes.append(minute)

    if not date_keys:
        return empty_series(symbol)

    keys_arr, minutes_arr, values = _stable_sort_and_dedupe(
        np.asarray(date_keys, dtype="<U10"),
        np.asarray(minutes, dtype=np.int64),
        {name: np.asarray(items, dtype=np.float64) for name, items in numeric_values.items()},
    )
    return _make_series(symbol, keys_arr, minutes_arr, values)


def read_bar_csv(path: str | Path, symbol: str) -> BarSeries:
    frame = pd.read_csv(path, dtype=str, keep_default_na=False)
    frame.columns = [str(col).strip().lower() for col in frame.columns]
    return series_from_frame(symbol, frame)


def day_range(source: BarSeries | Mapping[str, DayRange], date_key: str) -> Optional[DayRange]:
    """Look up one day's bar range; ``None`` means a non-trading day or a data gap."""
    index = source.day_index if isinstance(source, BarSeries) else source
    return index.get(date_key)


def latest_date(all_series: Iterable[BarSeries] | Mapping[str, BarSeries]) -> str:
    """Latest last-bar date across all series, or ``""`` when nothing is loaded."""
    items = all_series.values() if isinstance(all_series, Mapping) else all_series
    max_date = ""
    for series in items:
        last = series.last_date
        if last and last > max_date:
            max_date = last
    return max_date


BarSource = Union[str, Path, Mapping[str, Any]]


def _load_one(symbol: str, source: BarSource) -> BarSeries:
    if isinstance(source, Mapping):
        raw = source.get(symbol)
        if raw is None:
            logger.warning("No bars supplied for %s", symbol)
            return empty_series(symbol)
        if isinstance(raw, BarSeries):
            return raw
        frame = raw if isinstance(raw, pd.DataFrame) else pd.DataFrame(list(raw))
        return series_from_frame(symbol, frame)

    csv_path = Path(source) / f"{symbol}.csv"
    if not csv_path.exists():
        logger.warning("Bar cache not found for %s: %s", symbol, csv_path)
        return empty_series(symbol)
    series = read_bar_csv(csv_path, symbol)
    logger.debug("Loaded bars %s rows=%s days=%s", symbol, series.rows, len(series.day_index))
    return series


class BarStore:
    """Read-only collection of per-symbol bar series."""

    def __init__(self, series: Mapping[str, BarSeries] | None = None):
        self._series: dict[str, BarSeries] = dict(series or {})

    @classmethod
    def load(
        cls,
        symbols: Iterable[str],
        source: BarSource,
        max_workers: int = 4,
    ) -> "BarStore":
        """
        Load bars for each symbol from a cache directory or an in-memory mapping.

        Args:
            symbols: Tickers to load; blanks and duplicates are ignored.
            source: Directory holding ``<SYMBOL>.csv`` files, or a mapping of
                symbol to DataFrame, record list, or ready ``BarSeries``.
            max_workers: Thread count for per-symbol loading.
        """
        wanted: list[str] = []
        for item in symbols:
            symbol = normalize_symbol(item)
            if symbol and symbol not in wanted:
                wanted.append(symbol)
        if not wanted:
            return cls()

        workers = min(max(1, int(max_workers)), len(wanted))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            loaded = list(pool.map(lambda sym: _load_one(sym, source), wanted))
        return cls(dict(zip(wanted, loaded)))

    def __contains__(self, symbol: object) -> bool:
        return symbol in self._series

    def __len__(self) -> int:
        return len(self._series)

    @property
    def symbols(self) -> list[str]:
        return sorted(self._series)

    def get(self, symbol: str) -> BarSeries:
        """Return the series for ``symbol``; unknown symbols get an empty series."""
        series = self._series.get(symbol)
        return series if series is not None else empty_series(symbol)

    def latest_date(self) -> str:
        return latest_date(self._series)

    def build_manifest(self) -> dict[str, Any]:
        """Coverage summary for each loaded symbol."""
        symbols: dict[str, dict[str, Any]] = {}
        rows_total = 0
        for symbol in self.symbols:
            series = self._series[symbol]
            rows_total += series.rows
            symbols[symbol] = {
                "rows": series.rows,
                "trading_days": len(series.day_index),
                "first_date": series.first_date,
                "last_date": series.last_date,
                "missing": series.rows == 0,
            }
        return {
            "symbol_count": len(symbols),
            "missing_symbols": [sym for sym, entry in symbols.items() if entry["missing"]],
            "rows_total": rows_total,
            "latest_date": self.latest_date() or None,
            "symbols": symbols,
        }
