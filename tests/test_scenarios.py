"""Tests for scenario parsing and target resolution."""

from __future__ import annotations

import pytest

from whatif.scenarios import Scenario, ScenarioConfigError, load_scenarios


def _row(**overrides):
    row = {
        "scenario_id": "S1",
        "bucket": "tech",
        "dip_model": "rally_peak",
        "pullback_pct": "0.05",
        "reclaim_pct": "0.02",
        "target_model": "fixed",
        "target_pct": "0.05",
        "k": "",
        "shtf_pct": "0.08",
        "time_stop_days": "",
    }
    row.update(overrides)
    return row


class TestLoadScenarios:
    def test_parses_row(self):
        (scenario,) = load_scenarios([_row()])
        assert scenario.bucket == "TECH"
        assert scenario.pullback_pct == pytest.approx(0.05)
        assert scenario.target_pct == pytest.approx(0.05)
        assert scenario.k is None
        assert scenario.time_stop_days is None
        assert scenario.time_stop_limit is None

    def test_blank_bucket_means_all(self):
        (scenario,) = load_scenarios([_row(bucket="")])
        assert scenario.bucket == "ALL"
        assert scenario.applies_to("ENERGY")

    def test_bucket_filter(self):
        (scenario,) = load_scenarios([_row()])
        assert scenario.applies_to("TECH")
        assert not scenario.applies_to("ENERGY")

    def test_duplicate_id_rejected(self):
        with pytest.raises(ScenarioConfigError, match="Duplicate"):
            load_scenarios([_row(), _row()])

    def test_missing_id_rejected(self):
        with pytest.raises(ScenarioConfigError, match="scenario_id"):
            load_scenarios([_row(scenario_id=" ")])

    def test_non_numeric_threshold_only_invalidates_its_scenario(self):
        good, bad = load_scenarios([_row(scenario_id="GOOD"), _row(scenario_id="BAD", shtf_pct="tight")])

        good.validate()
        assert bad.shtf_pct == 0.0
        with pytest.raises(ScenarioConfigError, match="shtf_pct.*'tight'"):
            bad.validate()

    def test_every_bad_threshold_is_reported(self):
        (scenario,) = load_scenarios([_row(k="x", time_stop_days="soon")])
        with pytest.raises(ScenarioConfigError) as exc:
            scenario.validate()
        assert "k is not a number" in str(exc.value)
        assert "time_stop_days is not a number" in str(exc.value)

    def test_unknown_model_parses_but_fails_validation(self):
        (scenario,) = load_scenarios([_row(target_model="moonshot")])
        with pytest.raises(ScenarioConfigError, match="moonshot"):
            scenario.validate()


class TestScenario:
    @pytest.mark.parametrize("days,expected", [(None, None), (0, None), (-1, None), (0.5, None), (2.9, 2), (5, 5)])
    def test_time_stop_limit(self, days, expected):
        scenario = Scenario(scenario_id="T", bucket="ALL", target_model="fixed", time_stop_days=days)
        assert scenario.time_stop_limit == expected

    def test_fixed_target_ignores_dip(self):
        scenario = Scenario(scenario_id="F", bucket="ALL", target_model="fixed", target_pct=0.07)
        assert scenario.resolve_target_pct(0.5) == pytest.approx(0.07)

    def test_fixed_target_blank_is_zero(self):
        scenario = Scenario(scenario_id="F", bucket="ALL", target_model="fixed")
        assert scenario.resolve_target_pct(None) == 0.0

    def test_dip_scaled_target(self):
        scenario = Scenario(scenario_id="D", bucket="ALL", target_model="dip_scaled", k=1.5)
        assert scenario.resolve_target_pct(0.1) == pytest.approx(0.15)
        assert scenario.resolve_target_pct(None) == 0.0

    def test_unknown_model_raises_on_resolve(self):
        scenario = Scenario(scenario_id="X", bucket="ALL", target_model="trailing")
        with pytest.raises(ScenarioConfigError):
            scenario.resolve_target_pct(0.1)
