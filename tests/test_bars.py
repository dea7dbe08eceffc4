"""Tests for bar parsing, the day index and BarStore loading."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from whatif.bars import (
    BarDataError,
    BarStore,
    DayRange,
    build_day_index,
    day_range,
    latest_date,
    parse_bar_datetime,
    series_from_frame,
)
from tests.helpers import bar_rows, make_series


class TestParseBarDatetime:
    def test_cache_format(self):
        assert parse_bar_datetime("11/28/2025 6:30") == ("2025-11-28", 390)

    def test_iso_format(self):
        assert parse_bar_datetime("2025-11-28T15:30:00") == ("2025-11-28", 930)
        assert parse_bar_datetime("2025-11-28 09:30") == ("2025-11-28", 570)

    def test_malformed_carries_literal(self):
        with pytest.raises(BarDataError, match="28-11-2025 6:30"):
            parse_bar_datetime("28-11-2025 6:30")

    def test_out_of_range_fields_rejected(self):
        with pytest.raises(BarDataError):
            parse_bar_datetime("13/01/2025 9:30")


class TestDayIndex:
    def test_ranges_cover_series_exactly(self):
        series = make_series(
            {
                "2026-01-05": [(101, 99, 100), (102, 100, 101), (103, 101, 102)],
                "2026-01-06": [(104, 102, 103)],
                "2026-01-08": [(105, 103, 104), (106, 104, 105)],
            }
        )
        ranges = [series.day_index[key] for key in series.trading_days]

        assert series.trading_days == ("2026-01-05", "2026-01-06", "2026-01-08")
        assert ranges[0].start == 0
        assert ranges[-1].end == series.rows - 1
        for previous, current in zip(ranges, ranges[1:]):
            assert current.start == previous.end + 1

        rebuilt = np.concatenate([series.high[r.start : r.end + 1] for r in ranges])
        assert rebuilt.tolist() == series.high.tolist()
        assert sum(r.size for r in ranges) == series.rows

    def test_every_bar_belongs_to_its_day(self):
        series = make_series({"2026-01-05": [(1, 1, 1)] * 3, "2026-01-06": [(2, 2, 2)] * 2})
        for key, rng in series.day_index.items():
            assert set(series.date_key[rng.start : rng.end + 1].tolist()) == {key}

    def test_build_day_index_rejects_regrouped_dates(self):
        with pytest.raises(BarDataError):
            build_day_index(["2026-01-05", "2026-01-06", "2026-01-05"])

    def test_empty_index(self):
        assert build_day_index([]) == {}

    def test_missing_day_is_none(self):
        series = make_series({"2026-01-05": [(1, 1, 1)]})
        assert day_range(series, "2026-01-01") is None
        assert day_range(series.day_index, "2026-01-05") == DayRange(0, 0)


class TestSeriesFromFrame:
    def test_out_of_order_rows_are_sorted(self):
        rows = bar_rows({"2026-01-06": [(4, 3, 3.5)], "2026-01-05": [(2, 1, 1.5), (3, 2, 2.5)]})
        series = series_from_frame("AAA", pd.DataFrame(rows))

        assert series.date_key.tolist() == ["2026-01-05", "2026-01-05", "2026-01-06"]
        assert series.minute_of_day.tolist() == [570, 600, 570]
        assert series.close.tolist() == [1.5, 2.5, 3.5]

    def test_duplicate_timestamp_keeps_last(self):
        rows = bar_rows({"2026-01-05": [(2, 1, 1.5)]}) + bar_rows({"2026-01-05": [(9, 8, 8.5)]})
        series = series_from_frame("AAA", pd.DataFrame(rows))

        assert series.rows == 1
        assert series.close[0] == pytest.approx(8.5)

    def test_arrays_are_read_only(self):
        series = make_series({"2026-01-05": [(2, 1, 1.5)]})
        with pytest.raises(ValueError):
            series.close[0] = 99.0

    def test_missing_columns(self):
        with pytest.raises(BarDataError, match="missing columns"):
            series_from_frame("AAA", pd.DataFrame([{"datetime": "1/5/2026 9:30", "open": "1"}]))

    def test_bad_number_is_fatal(self):
        rows = bar_rows({"2026-01-05": [(2, 1, 1.5)]})
        rows[0]["high"] = "n/a"
        with pytest.raises(BarDataError, match="high"):
            series_from_frame("AAA", pd.DataFrame(rows))

    def test_bars_before(self):
        series = make_series({"2026-01-05": [(2, 1, 1.5)], "2026-01-06": [(3, 2, 2.5)]})
        assert [bar.date_key for bar in series.bars_before("2026-01-06")] == ["2026-01-05"]
        assert list(series.bars_before("2026-01-05")) == []


class TestBarStore:
    def test_load_from_directory(self, tmp_path: Path):
        (tmp_path / "AAA.csv").write_text(
            "datetime,open,high,low,close,volume\n"
            "1/5/2026 9:30,100,101,99,100,\"1,200\"\n"
            "1/6/2026 9:30,100,102†,98,101,900\n",
            encoding="utf-8",
        )
        store = BarStore.load(["aaa", "AAA"], tmp_path, max_workers=2)

        series = store.get("AAA")
        assert store.symbols == ["AAA"]
        assert series.volume[0] == pytest.approx(1200.0)
        assert series.high[1] == pytest.approx(102.0)

    def test_missing_cache_is_empty_not_error(self, tmp_path: Path):
        store = BarStore.load(["ZZZ"], tmp_path)

        assert "ZZZ" in store
        assert store.get("ZZZ").rows == 0
        assert store.get("ZZZ").day_range("2026-01-05") is None
        assert store.build_manifest()["missing_symbols"] == ["ZZZ"]

    def test_load_from_mapping(self):
        store = BarStore.load(
            ["AAA", "BBB"],
            {"AAA": pd.DataFrame(bar_rows({"2026-01-05": [(2, 1, 1.5)]})), "BBB": bar_rows({"2026-01-09": [(2, 1, 1.5)]})},
        )
        assert store.get("AAA").rows == 1
        assert store.latest_date() == "2026-01-09"

    def test_latest_date(self):
        series = [make_series({"2026-01-05": [(1, 1, 1)]}), make_series({"2026-02-02": [(1, 1, 1)]}, symbol="BBB")]
        assert latest_date(series) == "2026-02-02"
        assert latest_date([]) == ""

    def test_malformed_datetime_aborts_load(self, tmp_path: Path):
        (tmp_path / "AAA.csv").write_text(
            "datetime,open,high,low,close,volume\nyesterday,1,1,1,1,1\n",
            encoding="utf-8",
        )
        with pytest.raises(BarDataError, match="yesterday"):
            BarStore.load(["AAA"], tmp_path)
