"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later

Activity ingestion hooks.

Every create, update or delete of an activity re-derives its metrics,
refreshes its cached peaks, re-aggregates the affected ledger day(s) and
checks for new personal records.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import pandas as pd
from streamlit.logger import get_logger

from config import CACHED_PEAK_DURATIONS, CURVE_SOURCES
from persistence.csv_storage import CsvStorage
from persistence.models import ActivitySummary, AthleteThresholds
from persistence.repositories import (
    ActivitiesRepo,
    ActivityPeaksRepo,
    AthletesRepo,
    TimeseriesStore,
)
from services import metrics_calculator as calc
from services.ledger_service import LedgerService, NegativeStressError
from services.peak_tracker_service import PeakTrackerService
from utils.config import Config, config_for_dir
from utils.ids import new_id
from utils.time import local_date, today_local

logger = get_logger(__name__)


def _positive_mean(series: Optional[pd.Series]) -> Optional[float]:
    if series is None:
        return None
    values = pd.to_numeric(series, errors="coerce")
    values = values[values > 0]
    if values.empty:
        return None
    return float(values.mean())


def _positive_max(series: Optional[pd.Series]) -> Optional[float]:
    if series is None:
        return None
    values = pd.to_numeric(series, errors="coerce")
    values = values[values > 0]
    if values.empty:
        return None
    return float(values.max())


@dataclass
class ActivityService:
    storage: CsvStorage
    config: Optional[Config] = None
    clock: Callable[[], dt.date] = field(default=today_local)

    def __post_init__(self) -> None:
        if self.config is None:
            self.config = config_for_dir(self.storage.base_dir)
        self.activities = ActivitiesRepo(self.storage)
        self.athletes = AthletesRepo(self.storage)
        self.activity_peaks = ActivityPeaksRepo(self.storage)
        self.timeseries = TimeseriesStore(self.storage)
        self.ledger = LedgerService(self.storage, self.config, self.clock)
        self.peaks = PeakTrackerService(self.storage, self.config, self.clock)

    # ------------------------------------------------------------------
    def record_activity(
        self, summary: ActivitySummary, samples: Optional[pd.DataFrame] = None
    ) -> ActivitySummary:
        """Persist a new activity (and its stream) and run the processing chain."""
        if summary.stress_score is not None and summary.stress_score < 0:
            raise NegativeStressError(
                f"Activity {summary.activity_id or '<new>'} has negative stress {summary.stress_score}"
            )
        if not summary.activity_id:
            summary.activity_id = new_id()
        if summary.stress_score is not None and not summary.stress_source:
            summary.stress_source = "provided"
        if samples is not None and not samples.empty:
            self.timeseries.write(summary.activity_id, samples)
            summary.has_timeseries = True
        self.activities.create(summary.to_row())
        logger.debug("Recorded activity %s for %s", summary.activity_id, summary.athlete_id)
        return self.process_activity(summary.activity_id)

    def update_activity(self, activity_id: str, updates: Dict[str, Any]) -> ActivitySummary:
        """Apply column updates, then refresh the old and new ledger days."""
        current = self._require(activity_id)
        old_day = self._day_of(current)
        updates = dict(updates)
        if "stressScore" in updates:
            stress = updates["stressScore"]
            if stress is not None and stress != "" and float(stress) < 0:
                raise NegativeStressError(f"Activity {activity_id} has negative stress {stress}")
            updates.setdefault("stressSource", "provided" if stress not in (None, "") else "")
        self.activities.update(activity_id, updates)
        summary = self.process_activity(activity_id)
        new_day = self._day_of(summary)
        if old_day is not None and old_day != new_day:
            self.ledger.update_day(summary.athlete_id, old_day)
        return summary

    def delete_activity(self, activity_id: str) -> None:
        summary = self._require(activity_id)
        day = self._day_of(summary)
        self.activities.delete(activity_id)
        self.timeseries.delete(activity_id)
        self.activity_peaks.delete_where(activityId=activity_id)
        logger.info("Deleted activity %s", activity_id)
        if day is not None:
            self.ledger.update_day(summary.athlete_id, day)
        if self.config.invalidate_records_on_delete:
            self.peaks.invalidate_activity(summary.athlete_id, activity_id)

    def process_activity(self, activity_id: str) -> ActivitySummary:
        """Derive NP, IF, stress, EF, decoupling and VI; refresh caches and ledger."""
        summary = self._require(activity_id)
        thresholds = AthleteThresholds.from_row(
            self.athletes.get(summary.athlete_id), athlete_id=summary.athlete_id
        )
        samples = self.timeseries.read(activity_id) if summary.has_timeseries else pd.DataFrame()

        self._fill_stream_averages(summary, samples)
        power = samples["power"] if "power" in samples.columns else None
        if power is not None and _positive_mean(power) is not None:
            summary.normalized_power = calc.normalized_effort(power)
        else:
            summary.normalized_power = summary.avg_power

        result = calc.stress_for_activity(
            summary.sport,
            summary.duration_sec,
            ftp=thresholds.ftp,
            threshold_pace_min_km=thresholds.threshold_pace_min_km,
            css_m_s=thresholds.css_m_s,
            lthr=thresholds.lthr,
            normalized_power=summary.normalized_power,
            avg_power=summary.avg_power,
            avg_speed=summary.avg_speed,
            avg_hr=summary.avg_hr,
        )
        if summary.stress_source != "provided":
            summary.stress_score = result.stress
            summary.stress_source = result.source
        summary.intensity_factor = result.intensity_factor

        output = summary.normalized_power if summary.sport == "BIKE" else summary.avg_speed
        summary.efficiency_factor = None
        if output and summary.avg_hr:
            summary.efficiency_factor = calc.efficiency_factor(output, summary.avg_hr, summary.sport)
        summary.decoupling_pct = calc.decoupling(samples) if not samples.empty else None
        summary.variability_index = None
        if summary.sport == "BIKE" and summary.normalized_power and summary.avg_power:
            summary.variability_index = calc.variability_index(
                summary.normalized_power, summary.avg_power
            )

        self.activities.update(activity_id, summary.to_row())
        self._cache_peaks(summary, samples)

        day = self._day_of(summary)
        if day is not None:
            self.ledger.update_day(summary.athlete_id, day)
        self.peaks.check_activity(activity_id)
        logger.info(
            "Processed activity %s: stress=%.1f (%s)",
            activity_id,
            summary.stress_score or 0.0,
            summary.stress_source or "none",
        )
        return summary

    # ------------------------------------------------------------------
    def _require(self, activity_id: str) -> ActivitySummary:
        row = self.activities.get(activity_id)
        if row is None:
            raise ValueError(f"Unknown activity: {activity_id}")
        return ActivitySummary.from_row(row)

    def _day_of(self, summary: ActivitySummary) -> Optional[dt.date]:
        return local_date(summary.start_time, self.config.local_timezone)

    @staticmethod
    def _fill_stream_averages(summary: ActivitySummary, samples: pd.DataFrame) -> None:
        def column(name: str) -> Optional[pd.Series]:
            return samples[name] if name in samples.columns else None

        if summary.avg_power is None:
            summary.avg_power = _positive_mean(column("power"))
        if summary.avg_hr is None:
            summary.avg_hr = _positive_mean(column("hr"))
        if summary.max_hr is None:
            summary.max_hr = _positive_max(column("hr"))
        if summary.distance_m and summary.duration_sec > 0:
            summary.avg_speed = summary.distance_m / summary.duration_sec
        elif column("speed") is not None:
            summary.avg_speed = _positive_mean(column("speed"))

    def _cache_peaks(self, summary: ActivitySummary, samples: pd.DataFrame) -> None:
        self.activity_peaks.delete_where(activityId=summary.activity_id)
        source = CURVE_SOURCES.get(summary.sport)
        if source is None or samples.empty:
            return
        channel, _ = source
        if channel not in samples.columns:
            return
        peaks = calc.compute_peaks(samples[channel], CACHED_PEAK_DURATIONS)
        for duration, value in peaks.items():
            self.activity_peaks.create(
                {
                    "activityId": summary.activity_id,
                    "athleteId": summary.athlete_id,
                    "sportType": summary.sport,
                    "channel": channel,
                    "durationSec": duration,
                    "value": value,
                    "startTime": summary.start_time,
                }
            )
        logger.debug("Cached %s peaks for activity %s", len(peaks), summary.activity_id)
