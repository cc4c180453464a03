"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later
"""

import datetime as dt

import pytest

from persistence.repositories import PlannedWeeksRepo
from services.forecast_service import (
    ForecastService,
    LoadState,
    PlannedWeek,
    TaperWindowError,
    taper_fraction,
)
from services.ledger_service import LedgerService, NegativeStressError, advance_loads

TODAY = dt.date(2025, 3, 10)


def test_project_decay_strictly_decreases(storage, cfg, clock):
    points = ForecastService(storage, cfg, clock).project_decay(60.0, 80.0, 14)
    assert len(points) == 14
    assert points[0].date == TODAY + dt.timedelta(days=1)
    assert all(p.source == "decay" for p in points)
    longs = [60.0] + [p.projected_long_run_load for p in points]
    shorts = [80.0] + [p.projected_short_run_load for p in points]
    assert all(b < a for a, b in zip(longs, longs[1:]))
    assert all(b < a for a, b in zip(shorts, shorts[1:]))
    assert all(p.projected_long_run_load > 0 for p in points)


def test_project_planned_spreads_weekly_target(storage, cfg, clock):
    week = PlannedWeek(week_start=TODAY + dt.timedelta(days=1), target_stress=700.0)
    points = ForecastService(storage, cfg, clock).project_planned(50.0, 40.0, [week])
    assert len(points) == 7
    assert all(p.source == "planned" for p in points)
    expected = advance_loads(50.0, 40.0, 100.0)
    assert points[0].projected_long_run_load == pytest.approx(expected[0])
    assert points[0].projected_balance == pytest.approx(expected[2])


def test_project_planned_can_start_mid_week(storage, cfg, clock):
    week = PlannedWeek(week_start=TODAY - dt.timedelta(days=2), target_stress=350.0)
    points = ForecastService(storage, cfg, clock).project_planned(50.0, 40.0, [week], start_after=TODAY)
    assert [p.date for p in points] == [TODAY + dt.timedelta(days=i) for i in range(1, 5)]


def test_project_planned_rejects_negative_targets(storage, cfg, clock):
    week = PlannedWeek(week_start=TODAY, target_stress=-70.0)
    with pytest.raises(NegativeStressError):
        ForecastService(storage, cfg, clock).project_planned(50.0, 40.0, [week])


def test_project_with_overrides(storage, cfg, clock):
    service = ForecastService(storage, cfg, clock)
    override_day = TODAY + dt.timedelta(days=3)
    points = service.project_with_overrides(LoadState(40.0, 40.0), {override_day: 200.0}, days_ahead=5)

    assert [p.source for p in points] == ["estimated", "estimated", "planned", "estimated", "estimated"]
    # holding stress at the long-run load keeps a settled state constant
    assert points[1].projected_long_run_load == pytest.approx(40.0)
    assert points[1].projected_short_run_load == pytest.approx(40.0)
    assert points[2].projected_short_run_load > 40.0


def test_required_weekly_load_within_safe_ramp():
    result = ForecastService.required_weekly_load(40.0, 52.0, 4)
    assert result.achievable
    assert result.warnings == []
    assert result.average_ramp_rate == pytest.approx(3.0)
    assert len(result.weekly_stress) == 4
    assert result.weekly_stress[0] == 301.0
    assert result.weekly_stress[0] < result.weekly_stress[1] < result.weekly_stress[2]
    # every 4th week is a recovery week
    assert result.weekly_stress[3] < result.weekly_stress[2]


def test_required_weekly_load_warnings():
    aggressive = ForecastService.required_weekly_load(40.0, 68.0, 4)
    assert not aggressive.achievable
    assert len(aggressive.warnings) == 1

    dangerous = ForecastService.required_weekly_load(40.0, 80.0, 4)
    assert not dangerous.achievable
    assert len(dangerous.warnings) == 2


def test_required_weekly_load_needs_weeks():
    with pytest.raises(ValueError):
        ForecastService.required_weekly_load(40.0, 50.0, 0)


def test_taper_fraction_bands():
    assert taper_fraction(0) == 0.3
    assert taper_fraction(3) == 0.3
    assert taper_fraction(4) == 0.5
    assert taper_fraction(7) == 0.5
    assert taper_fraction(14) == 0.7
    assert taper_fraction(15) == 1.0


def test_simulate_taper_plan(storage, cfg, clock):
    service = ForecastService(storage, cfg, clock)
    state = LoadState(60.0, 80.0)
    plan = service.simulate_taper(state, TODAY + dt.timedelta(days=21))

    assert len(plan.days) == 21
    assert plan.days[0].suggested_stress == pytest.approx(60.0)
    assert plan.days[-1].date == TODAY + dt.timedelta(days=21)
    assert plan.days[-1].suggested_stress == pytest.approx(18.0)
    assert plan.projected_balance_on_race_day > state.balance
    assert plan.target_balance == 15.0


def test_simulate_taper_needs_a_week(storage, cfg, clock):
    service = ForecastService(storage, cfg, clock)
    with pytest.raises(TaperWindowError):
        service.simulate_taper(LoadState(60.0, 60.0), TODAY + dt.timedelta(days=6))


def test_forecast_from_plan_without_ledger(storage, cfg, clock):
    assert ForecastService(storage, cfg, clock).forecast_from_plan("ath-1") == []


def test_forecast_from_plan_decays_without_plan(storage, cfg, clock, add_activity):
    add_activity("a1", TODAY - dt.timedelta(days=2), 100)
    LedgerService(storage, cfg, clock).initialize("ath-1")

    service = ForecastService(storage, cfg, clock)
    before = storage.read_csv("ledger/ath-1.csv")
    points = service.forecast_from_plan("ath-1")
    assert len(points) == 28
    assert points[0].date == TODAY + dt.timedelta(days=1)
    assert all(p.source == "decay" for p in points)
    assert storage.read_csv("ledger/ath-1.csv").equals(before)


def test_forecast_from_plan_uses_planned_weeks(storage, cfg, clock, add_activity):
    add_activity("a1", TODAY - dt.timedelta(days=2), 100)
    LedgerService(storage, cfg, clock).initialize("ath-1")
    repo = PlannedWeeksRepo(storage)
    repo.create({"athleteId": "ath-1", "weekStart": "2025-03-03", "targetStress": 350, "weekType": "build"})
    repo.create({"athleteId": "ath-1", "weekStart": "2025-03-10", "targetStress": 420, "weekType": "build"})
    repo.create({"athleteId": "ath-2", "weekStart": "2025-03-10", "targetStress": 999, "weekType": "build"})

    service = ForecastService(storage, cfg, clock)
    points = service.forecast_from_plan("ath-1")
    assert len(points) == 6
    assert points[0].date == TODAY + dt.timedelta(days=1)
    state = service.current_state("ath-1")
    assert points[0].projected_long_run_load == pytest.approx(
        advance_loads(state.long_run_load, state.short_run_load, 60.0)[0]
    )
    assert points[0].to_dict()["source"] == "planned"
