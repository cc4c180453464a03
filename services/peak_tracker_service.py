"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later

All-time personal records per athlete, sport and metric bucket.

Records are append-only history: a new row is written only when a value
strictly beats the current best for its bucket, so the latest best is
always the maximum value stored for that bucket.
"""

from __future__ import annotations

import datetime as dt
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Tuple

import portalocker
from streamlit.logger import get_logger

from config import DURATION_LABELS, duration_label
from persistence.csv_storage import CsvStorage
from persistence.models import ActivitySummary, PeakRecord
from persistence.repositories import ActivitiesRepo, ActivityPeaksRepo, PeakRecordsRepo
from services.ledger_service import LedgerBusyError
from utils.coercion import safe_float
from utils.config import Config, config_for_dir
from utils.ids import new_id
from utils.time import to_date, today_local

logger = get_logger(__name__)

# sport -> bucket prefix for duration peaks
DURATION_BUCKET_PREFIX = {"BIKE": "POWER", "RUN": "PACE", "SWIM": "SWIM"}
LONGEST_BUCKETS = {"BIKE": "LONGEST_RIDE", "RUN": "LONGEST_RUN", "SWIM": "LONGEST_SWIM"}
STATIC_BUCKET_LABELS = {
    "MAX_HR": "Max Heart Rate",
    "LONGEST_RIDE": "Longest Ride",
    "LONGEST_RUN": "Longest Run",
    "LONGEST_SWIM": "Longest Swim",
    "HIGHEST_STRESS": "Highest Stress Score",
    "BEST_EF": "Best Efficiency Factor",
}
_PREFIX_NAMES = {"POWER": "Power", "PACE": "Pace", "SWIM": "Swim Speed"}
_LABEL_TO_DURATION = {label.upper(): sec for sec, label in DURATION_LABELS.items()}


def duration_bucket(sport: str, duration_sec: int) -> Optional[str]:
    prefix = DURATION_BUCKET_PREFIX.get(sport)
    if prefix is None:
        return None
    return f"{prefix}_{duration_label(duration_sec).upper()}"


def bucket_duration(bucket: str) -> Optional[int]:
    prefix, _, suffix = bucket.partition("_")
    if prefix not in _PREFIX_NAMES:
        return None
    return _LABEL_TO_DURATION.get(suffix)


def format_bucket(bucket: str) -> str:
    if bucket in STATIC_BUCKET_LABELS:
        return STATIC_BUCKET_LABELS[bucket]
    duration = bucket_duration(bucket)
    if duration is None:
        return bucket
    prefix = bucket.split("_", 1)[0]
    return f"{duration_label(duration)} {_PREFIX_NAMES[prefix]}"


def _min_sec(total_seconds: float) -> str:
    minutes, seconds = divmod(int(round(total_seconds)), 60)
    return f"{minutes}:{seconds:02d}"


def format_value(bucket: str, value: float) -> str:
    """Human readable value with its unit.

    Pace and swim buckets store speed in m/s and are shown as min/km and
    min/100m respectively.
    """
    if bucket.startswith("POWER_"):
        return f"{round(value)}W"
    if bucket.startswith("PACE_"):
        if value <= 0:
            return "-"
        return f"{_min_sec(1000.0 / value)}/km"
    if bucket.startswith("SWIM_"):
        if value <= 0:
            return "-"
        return f"{_min_sec(100.0 / value)}/100m"
    if bucket == "MAX_HR":
        return f"{round(value)} bpm"
    if bucket.startswith("LONGEST_"):
        return f"{value / 1000.0:.1f} km"
    if bucket == "HIGHEST_STRESS":
        return f"{round(value)} stress"
    if bucket == "BEST_EF":
        return f"{value:.3f}"
    return str(value)


@dataclass
class PeakTrackerService:
    storage: CsvStorage
    config: Optional[Config] = None
    clock: Callable[[], dt.date] = field(default=today_local)

    def __post_init__(self) -> None:
        if self.config is None:
            self.config = config_for_dir(self.storage.base_dir)
        self.activities = ActivitiesRepo(self.storage)
        self.activity_peaks = ActivityPeaksRepo(self.storage)
        self.records = PeakRecordsRepo(self.storage)

    # ------------------------------------------------------------------
    # Detection
    def candidates_for(self, summary: ActivitySummary) -> List[Tuple[str, float, Optional[int], Optional[float]]]:
        """(bucket, value, duration_sec, distance_m) for every applicable bucket."""
        result: List[Tuple[str, float, Optional[int], Optional[float]]] = []
        peaks = self.activity_peaks.list(activityId=summary.activity_id)
        for row in peaks.to_dict("records"):
            duration = int(safe_float(row.get("durationSec")))
            value = safe_float(row.get("value"))
            bucket = duration_bucket(summary.sport, duration)
            if bucket and value > 0:
                result.append((bucket, value, duration, None))
        longest = LONGEST_BUCKETS.get(summary.sport)
        if longest and summary.distance_m:
            result.append((longest, summary.distance_m, None, summary.distance_m))
        if summary.max_hr:
            result.append(("MAX_HR", summary.max_hr, None, None))
        if summary.stress_score:
            result.append(("HIGHEST_STRESS", summary.stress_score, None, None))
        if summary.efficiency_factor:
            result.append(("BEST_EF", summary.efficiency_factor, None, None))
        return result

    def check_activity(self, activity_id: str) -> List[PeakRecord]:
        """Record every bucket where the activity strictly beats the stored best.

        Bests are re-read under the athlete's record lock so that re-running
        the same activity never inserts a duplicate.
        """
        row = self.activities.get(activity_id)
        if row is None:
            logger.warning("Cannot check records: activity %s not found", activity_id)
            return []
        summary = ActivitySummary.from_row(row)
        candidates = self.candidates_for(summary)
        if not candidates:
            return []

        new_records: List[PeakRecord] = []
        with self._records_lock(summary.athlete_id):
            bests = {
                (sport, bucket): rec.value
                for (sport, bucket), rec in self._best_by_bucket(summary.athlete_id).items()
            }
            for bucket, value, duration, distance in candidates:
                previous = bests.get((summary.sport, bucket))
                if previous is not None and value <= previous:
                    continue
                improvement = None
                if previous:
                    improvement = round((value - previous) / previous * 100.0, 2)
                record = PeakRecord(
                    record_id=new_id(),
                    athlete_id=summary.athlete_id,
                    sport=summary.sport,
                    bucket=bucket,
                    value=value,
                    activity_id=summary.activity_id,
                    achieved_at=summary.start_time,
                    duration_sec=duration,
                    distance_m=distance,
                    previous_best=previous,
                    improvement_pct=improvement,
                )
                self.records.append(summary.athlete_id, record.to_row())
                bests[(summary.sport, bucket)] = value
                new_records.append(record)
                logger.info(
                    "New record for %s: %s %s = %s (previous %s)",
                    summary.athlete_id,
                    summary.sport,
                    bucket,
                    value,
                    previous,
                )
        return new_records

    def invalidate_activity(self, athlete_id: str, activity_id: str) -> int:
        """Drop the records sourced from ``activity_id``; earlier bests resurface."""
        with self._records_lock(athlete_id):
            df = self.records.list(athlete_id)
            if df.empty:
                return 0
            mask = df["activityId"].astype(str) == str(activity_id)
            removed = int(mask.sum())
            if removed:
                self.records.replace(athlete_id, df[~mask])
                logger.info("Invalidated %s records of activity %s", removed, activity_id)
        return removed

    # ------------------------------------------------------------------
    # Queries
    def list_records(self, athlete_id: str) -> List[PeakRecord]:
        return [PeakRecord.from_row(r) for r in self.records.list(athlete_id).to_dict("records")]

    def current_best(self, athlete_id: str, sport: str, bucket: str) -> Optional[PeakRecord]:
        return self._best_by_bucket(athlete_id).get((sport, bucket))

    def current_bests(self, athlete_id: str, sport: str) -> Dict[str, PeakRecord]:
        return {
            bucket: record
            for (rec_sport, bucket), record in self._best_by_bucket(athlete_id).items()
            if rec_sport == sport
        }

    def peak_performances(
        self, athlete_id: str, sport: Optional[str] = None
    ) -> List[Dict[str, object]]:
        """Record history grouped by sport, newest first within each bucket."""
        records = [r for r in self.list_records(athlete_id) if sport is None or r.sport == sport]
        records.sort(key=lambda r: r.achieved_at, reverse=True)
        records.sort(key=lambda r: (r.sport, r.bucket))
        grouped: Dict[str, List[PeakRecord]] = {}
        for record in records:
            grouped.setdefault(record.sport, []).append(record)
        return [{"sport": s, "peaks": peaks} for s, peaks in grouped.items()]

    def recent_records(self, athlete_id: str, days: int = 30) -> List[PeakRecord]:
        since = self.clock() - dt.timedelta(days=days)
        recent = []
        for record in self.list_records(athlete_id):
            achieved = to_date(record.achieved_at)
            if achieved is not None and achieved >= since:
                recent.append(record)
        recent.sort(key=lambda r: r.achieved_at, reverse=True)
        return recent

    def power_curve_from_records(self, athlete_id: str) -> Dict[int, float]:
        curve: Dict[int, float] = {}
        for bucket, record in self.current_bests(athlete_id, "BIKE").items():
            if not bucket.startswith("POWER_"):
                continue
            duration = record.duration_sec or bucket_duration(bucket)
            if duration:
                curve[duration] = record.value
        return dict(sorted(curve.items()))

    # ------------------------------------------------------------------
    def _best_by_bucket(self, athlete_id: str) -> Dict[Tuple[str, str], PeakRecord]:
        bests: Dict[Tuple[str, str], PeakRecord] = {}
        for record in self.list_records(athlete_id):
            key = (record.sport, record.bucket)
            if key not in bests or record.value > bests[key].value:
                bests[key] = record
        return bests

    @contextmanager
    def _records_lock(self, athlete_id: str) -> Iterator[None]:
        try:
            with self.storage.lock(
                f"locks/{athlete_id}.records.lock", timeout=self.config.ledger_lock_timeout_sec
            ):
                yield
        except portalocker.exceptions.LockException as exc:
            raise LedgerBusyError(f"Records for athlete {athlete_id} are locked") from exc
