import datetime as dt

import numpy as np
import pandas as pd
import pytest

from persistence.models import ActivitySummary
from services.activity_service import ActivityService
from services.duration_curve_service import (
    DurationCurve,
    DurationCurvePoint,
    DurationCurveService,
    classify_phenotype,
    compare_curves,
    estimate_ftp,
)
from services.metrics_calculator import peak_for_duration
from utils.config import config_for_dir

TODAY = dt.date(2025, 3, 10)


def _ride(service, activity_id, day, power):
    samples = pd.DataFrame({"offsetSec": range(len(power)), "power": power})
    summary = ActivitySummary(
        activity_id=activity_id,
        athlete_id="ath-1",
        sport="BIKE",
        start_time=f"{day.isoformat()}T09:00:00",
        moving_sec=len(power),
    )
    service.record_activity(summary, samples)


def _points(values):
    return [DurationCurvePoint(d, v, "a", TODAY) for d, v in values.items()]


def test_power_curve_is_non_increasing(storage, cfg, clock, athlete):
    rng = np.random.RandomState(11)
    activities = ActivityService(storage, cfg, clock)
    _ride(activities, "r1", TODAY - dt.timedelta(days=2), list(rng.uniform(120, 420, size=2400)))
    _ride(activities, "r2", TODAY - dt.timedelta(days=1), [600.0] * 12 + [180.0] * 1500)

    curve = DurationCurveService(storage, cfg, clock).build_power_curve("ath-1", days=30)
    assert curve.activity_count == 2
    values = [p.value for p in curve.points]
    assert values == sorted(values, reverse=True)
    assert curve.points[0].duration_sec == 5
    assert curve.points[0].activity_id == "r2"
    assert curve.value_at(5) == pytest.approx(600.0)


def test_curve_combines_cache_and_raw_scan(storage, cfg, clock, athlete):
    power = [200.0] * 600 + [350.0] * 120 + [220.0] * 1200
    activities = ActivityService(storage, cfg, clock)
    _ride(activities, "r1", TODAY, power)

    curve = DurationCurveService(storage, cfg, clock).build_power_curve("ath-1", days=7)
    # 120s is not cached per activity and comes from the raw stream
    assert curve.value_at(120) == pytest.approx(peak_for_duration(power, 120))
    assert curve.value_at(300) == pytest.approx(peak_for_duration(power, 300))
    assert curve.value_at(3600) is None


def test_curve_ignores_activities_outside_window(storage, cfg, clock, athlete):
    activities = ActivityService(storage, cfg, clock)
    _ride(activities, "old", TODAY - dt.timedelta(days=40), [500.0] * 120)
    _ride(activities, "new", TODAY, [300.0] * 120)

    curve = DurationCurveService(storage, cfg, clock).build_power_curve("ath-1", days=30)
    assert curve.activity_count == 1
    assert curve.value_at(60) == pytest.approx(300.0)


def test_raw_scan_is_limited_to_recent_activities(storage, tmp_path, clock, athlete):
    limited = config_for_dir(tmp_path, curve_scan_activity_limit=1)
    activities = ActivityService(storage, limited, clock)
    _ride(activities, "older", TODAY - dt.timedelta(days=3), [900.0] * 12 + [100.0] * 188)
    _ride(activities, "newer", TODAY, [250.0] * 200)

    # 10s is never cached, and only the newest stream is rescanned; the
    # value is lifted to the cached 30s best of the older ride
    curve = DurationCurveService(storage, limited, clock).build_power_curve("ath-1", days=30)
    assert curve.value_at(30) == pytest.approx(420.0)
    assert curve.value_at(10) == pytest.approx(420.0)
    assert curve.value_at(5) == pytest.approx(900.0)

    full = DurationCurveService(storage, config_for_dir(tmp_path), clock).build_power_curve(
        "ath-1", days=30
    )
    assert full.value_at(10) == pytest.approx(900.0)
    assert full.points[1].activity_id == "older"


def test_pace_curve_uses_speed(storage, cfg, clock, athlete):
    samples = pd.DataFrame({"offsetSec": range(400), "speed": [3.5] * 200 + [4.5] * 200})
    summary = ActivitySummary(
        activity_id="run",
        athlete_id="ath-1",
        sport="RUN",
        start_time=f"{TODAY.isoformat()}T06:00:00",
        moving_sec=400,
        distance_m=1600.0,
    )
    ActivityService(storage, cfg, clock).record_activity(summary, samples)

    curve = DurationCurveService(storage, cfg, clock).build_pace_curve("ath-1", days=7)
    assert curve.channel == "speed"
    assert curve.value_at(180) == pytest.approx(4.5)


def test_empty_curve(storage, cfg, clock):
    curve = DurationCurveService(storage, cfg, clock).build_curve("ath-1", "SWIM", days=30)
    assert curve.points == []
    assert curve.activity_count == 0
    with pytest.raises(ValueError):
        DurationCurveService(storage, cfg, clock).build_curve("ath-1", "STRENGTH")


def test_classify_phenotype():
    sprinter = classify_phenotype(_points({5: 1400.0, 60: 700.0, 300: 400.0, 1200: 320.0}))
    assert sprinter.kind == "sprinter"
    assert sprinter.sprint_score == 100
    assert sprinter.sustained_score == 0

    time_trialist = classify_phenotype(_points({5: 600.0, 60: 480.0, 300: 400.0, 1200: 380.0}))
    assert time_trialist.kind == "time_trialist"

    pursuiter = classify_phenotype(_points({5: 880.0, 60: 520.0, 300: 400.0, 1200: 360.0}))
    assert pursuiter.kind == "pursuiter"

    all_rounder = classify_phenotype(_points({5: 720.0, 60: 500.0, 300: 400.0, 1200: 340.0}))
    assert all_rounder.kind == "all_rounder"
    assert all_rounder.strengths


def test_classify_phenotype_without_enough_points():
    assert classify_phenotype(_points({5: 900.0, 300: 400.0})).kind == "all_rounder"
    missing_20min = classify_phenotype(_points({5: 900.0, 60: 500.0, 300: 400.0, 600: 380.0}))
    assert missing_20min.kind == "all_rounder"
    assert missing_20min.strengths == []


def test_compare_curves():
    current = DurationCurve("BIKE", "power", 90, 3, _points({5: 880.0, 300: 330.0, 1200: 300.0}))
    previous = DurationCurve("BIKE", "power", 90, 3, _points({5: 800.0, 300: 0.0}))
    rows = compare_curves(current, previous)
    assert [r["duration"] for r in rows] == [5, 300]
    assert rows[0]["change"] == pytest.approx(10.0)
    assert rows[1]["change"] == 0.0


def test_estimate_ftp():
    assert estimate_ftp(_points({300: 400.0, 1200: 300.0})) == 285.0
    assert estimate_ftp(_points({300: 400.0, 480: 350.0})) == 315.0
    assert estimate_ftp(_points({300: 400.0})) == 340.0
    assert estimate_ftp([]) == 0.0
