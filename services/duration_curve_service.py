"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later

Best-effort duration curves (power for rides, speed for runs and swims),
phenotype classification, curve comparison and FTP estimation.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from streamlit.logger import get_logger

from config import CURVE_SOURCES, duration_label
from persistence.csv_storage import CsvStorage
from persistence.models import ActivitySummary
from persistence.repositories import ActivitiesRepo, ActivityPeaksRepo, TimeseriesStore
from services.metrics_calculator import compute_peaks
from utils.coercion import safe_float, safe_str
from utils.config import Config, config_for_dir
from utils.constants import (
    PHENOTYPE_PROFILES,
    SPRINT_RATIO_BASE,
    SPRINT_RATIO_SPAN,
    SUSTAINED_RATIO_BASE,
    SUSTAINED_RATIO_SPAN,
)
from utils.time import local_date, today_local

logger = get_logger(__name__)


@dataclass
class DurationCurvePoint:
    duration_sec: int
    value: float
    activity_id: str
    date: Optional[dt.date]

    @property
    def label(self) -> str:
        return duration_label(self.duration_sec)

    def to_dict(self) -> Dict[str, object]:
        return {
            "duration": self.duration_sec,
            "label": self.label,
            "value": self.value,
            "activityId": self.activity_id,
            "date": self.date.isoformat() if self.date else None,
        }


@dataclass
class DurationCurve:
    sport: str
    channel: str
    period_days: int
    activity_count: int
    points: List[DurationCurvePoint] = field(default_factory=list)

    def value_at(self, duration_sec: int) -> Optional[float]:
        for point in self.points:
            if point.duration_sec == duration_sec:
                return point.value
        return None


@dataclass
class Phenotype:
    kind: str
    description: str
    strengths: List[str]
    weaknesses: List[str]
    sprint_score: int
    sustained_score: int


def _envelope(points: List[DurationCurvePoint]) -> List[DurationCurvePoint]:
    """Make values non-increasing with duration.

    Within one series a shorter best window is never below a longer one. The
    curve mixes cached peaks from every activity with a raw scan of only the
    most recent ones, so a duration beaten by a longer one takes that value
    and attribution.
    """
    result: List[DurationCurvePoint] = []
    carry: Optional[DurationCurvePoint] = None
    for point in sorted(points, key=lambda p: p.duration_sec, reverse=True):
        if carry is not None and carry.value > point.value:
            point = DurationCurvePoint(point.duration_sec, carry.value, carry.activity_id, carry.date)
        carry = point
        result.append(point)
    return list(reversed(result))


def classify_phenotype(points: Sequence[DurationCurvePoint]) -> Phenotype:
    """Classify a power curve from its 5s, 5min and 20min values.

    sprint = (5s/5min - 1.5) / 0.7 * 100, capped at 100
    sustained = (20min/5min - 0.80) / 0.12 * 100, capped at 100
    """
    if len(points) < 4:
        return Phenotype("all_rounder", "Not enough data to determine phenotype", [], [], 0, 0)
    by_duration = {p.duration_sec: p.value for p in points}
    peak_5s = by_duration.get(5, 0.0)
    peak_5min = by_duration.get(300, 0.0)
    peak_20min = by_duration.get(1200, 0.0)
    if not peak_5s or not peak_5min or not peak_20min:
        return Phenotype("all_rounder", "Insufficient data for phenotype analysis", [], [], 0, 0)

    sprint = min(100.0, (peak_5s / peak_5min - SPRINT_RATIO_BASE) / SPRINT_RATIO_SPAN * 100.0)
    sustained = min(
        100.0, (peak_20min / peak_5min - SUSTAINED_RATIO_BASE) / SUSTAINED_RATIO_SPAN * 100.0
    )
    if sprint > 70 and sustained < 40:
        kind = "sprinter"
    elif sprint < 40 and sustained > 70:
        kind = "time_trialist"
    elif sprint > 50 and sustained > 50:
        kind = "pursuiter"
    else:
        kind = "all_rounder"
    description, strengths, weaknesses = PHENOTYPE_PROFILES[kind]
    return Phenotype(
        kind,
        description,
        list(strengths),
        list(weaknesses),
        round(max(0.0, sprint)),
        round(max(0.0, sustained)),
    )


def compare_curves(current: DurationCurve, previous: DurationCurve) -> List[Dict[str, object]]:
    """Percent change per duration present in both curves (1 decimal)."""
    rows: List[Dict[str, object]] = []
    for point in current.points:
        before = previous.value_at(point.duration_sec)
        if before is None:
            continue
        change = round((point.value - before) / before * 100.0, 1) if before > 0 else 0.0
        rows.append(
            {
                "duration": point.duration_sec,
                "label": point.label,
                "current": point.value,
                "previous": before,
                "change": change,
            }
        )
    return rows


def estimate_ftp(points: Sequence[DurationCurvePoint]) -> float:
    """95% of 20-min power, else 90% of 8-min, else 85% of 5-min, else 0."""
    by_duration = {p.duration_sec: p.value for p in points}
    for duration, factor in ((1200, 0.95), (480, 0.90), (300, 0.85)):
        if duration in by_duration:
            return float(round(by_duration[duration] * factor))
    return 0.0


@dataclass
class DurationCurveService:
    storage: CsvStorage
    config: Optional[Config] = None
    clock: Callable[[], dt.date] = field(default=today_local)

    def __post_init__(self) -> None:
        if self.config is None:
            self.config = config_for_dir(self.storage.base_dir)
        self.activities = ActivitiesRepo(self.storage)
        self.activity_peaks = ActivityPeaksRepo(self.storage)
        self.timeseries = TimeseriesStore(self.storage)

    def build_power_curve(self, athlete_id: str, days: Optional[int] = None) -> DurationCurve:
        return self.build_curve(athlete_id, "BIKE", days)

    def build_pace_curve(self, athlete_id: str, days: Optional[int] = None) -> DurationCurve:
        return self.build_curve(athlete_id, "RUN", days)

    def build_curve(self, athlete_id: str, sport: str, days: Optional[int] = None) -> DurationCurve:
        """Best value per standard duration over the last ``days`` days.

        Cached per-activity peaks are used first. Durations an activity has no
        cached value for are scanned from raw samples, limited to the most
        recent activities with a stream.
        """
        if sport not in CURVE_SOURCES:
            raise ValueError(f"No duration curve for sport {sport!r}")
        channel, durations = CURVE_SOURCES[sport]
        days = days or self.config.curve_lookback_days
        activities = self._activities_in_window(athlete_id, sport, days)
        curve = DurationCurve(sport=sport, channel=channel, period_days=days, activity_count=len(activities))
        if not activities:
            return curve

        best: Dict[int, DurationCurvePoint] = {}

        def offer(duration: int, value: float, activity_id: str, day: dt.date) -> None:
            if value <= 0:
                return
            if duration not in best or value > best[duration].value:
                best[duration] = DurationCurvePoint(duration, value, activity_id, day)

        cached = self._cached_peaks(athlete_id, channel, {a.activity_id for a, _ in activities})
        for summary, day in activities:
            for duration, value in cached.get(summary.activity_id, {}).items():
                if duration in durations:
                    offer(duration, value, summary.activity_id, day)

        scanned = 0
        for summary, day in activities:
            if scanned >= self.config.curve_scan_activity_limit:
                break
            missing = [d for d in durations if d not in cached.get(summary.activity_id, {})]
            if not missing or not summary.has_timeseries:
                continue
            samples = self.timeseries.read(summary.activity_id)
            scanned += 1
            if channel not in samples.columns:
                continue
            for duration, value in compute_peaks(samples[channel], missing).items():
                offer(duration, value, summary.activity_id, day)

        logger.debug(
            "Curve %s/%s: %s activities, %s streams scanned", athlete_id, sport, len(activities), scanned
        )
        curve.points = _envelope([best[d] for d in durations if d in best])
        return curve

    # ------------------------------------------------------------------
    def _activities_in_window(
        self, athlete_id: str, sport: str, days: int
    ) -> List[Tuple[ActivitySummary, dt.date]]:
        since = self.clock() - dt.timedelta(days=days)
        result = []
        for row in self.activities.list(athleteId=athlete_id).to_dict("records"):
            summary = ActivitySummary.from_row(row)
            if summary.sport != sport:
                continue
            day = local_date(summary.start_time, self.config.local_timezone)
            if day is None or day < since:
                continue
            result.append((summary, day))
        # most recent first so the raw scan limit keeps the newest streams
        result.sort(key=lambda item: (item[1], item[0].start_time), reverse=True)
        return result

    def _cached_peaks(
        self, athlete_id: str, channel: str, activity_ids: Set[str]
    ) -> Dict[str, Dict[int, float]]:
        cached: Dict[str, Dict[int, float]] = {}
        df = self.activity_peaks.list(athleteId=athlete_id, channel=channel)
        for row in df.to_dict("records"):
            activity_id = safe_str(row.get("activityId"))
            if activity_id not in activity_ids:
                continue
            duration = int(safe_float(row.get("durationSec")))
            cached.setdefault(activity_id, {})[duration] = safe_float(row.get("value"))
        return cached
