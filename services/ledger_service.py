"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later

Daily fitness/fatigue ledger (long-run load, short-run load, balance).

Each athlete has one ledger row per calendar day from the first activity
(bounded by the lookback window) through today. Rows are fully derived:

    long[d]    = long[d-1]  + (stress[d] - long[d-1])  / 42
    short[d]   = short[d-1] + (stress[d] - short[d-1]) / 7
    balance[d] = long[d] - short[d]

Writes for one athlete are serialised with a file lock, and the forward
cascade is persisted in chunks so an interrupted run can simply be repeated.
"""

from __future__ import annotations

import datetime as dt
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, Iterator, List, Optional, Tuple

import portalocker
from streamlit.logger import get_logger

from persistence.csv_storage import CsvStorage
from persistence.models import ActivitySummary, DailyLedgerEntry
from persistence.repositories import ActivitiesRepo, DailyLedgerRepo
from utils.config import Config, config_for_dir
from utils.constants import (
    LONG_RUN_TIME_CONSTANT,
    SHORT_RUN_TIME_CONSTANT,
    SPORT_DURATION_COLUMNS,
    SPORT_STRESS_COLUMNS,
)
from utils.time import day_range, iso_week_start, local_date, today_local

logger = get_logger(__name__)


class NegativeStressError(ValueError):
    """A negative stress value reached the load model."""


class LedgerBusyError(RuntimeError):
    """Another cascade holds the athlete's ledger lock."""


def advance_loads(
    prev_long: float, prev_short: float, stress: float
) -> Tuple[float, float, float]:
    """Apply one day of the load recurrence; returns (long, short, balance)."""
    if stress < 0:
        raise NegativeStressError(f"Stress must be >= 0, got {stress}")
    long_load = prev_long + (stress - prev_long) / LONG_RUN_TIME_CONSTANT
    short_load = prev_short + (stress - prev_short) / SHORT_RUN_TIME_CONSTANT
    return long_load, short_load, long_load - short_load


@dataclass
class LedgerService:
    storage: CsvStorage
    config: Optional[Config] = None
    clock: Callable[[], dt.date] = field(default=today_local)

    def __post_init__(self) -> None:
        if self.config is None:
            self.config = config_for_dir(self.storage.base_dir)
        self.activities = ActivitiesRepo(self.storage)
        self.ledger = DailyLedgerRepo(self.storage)

    # ------------------------------------------------------------------
    # Public API
    def update_day(self, athlete_id: str, day: dt.date) -> Optional[DailyLedgerEntry]:
        """Re-aggregate ``day`` from its activities, then cascade to today."""
        if day < self.window_start():
            logger.warning(
                "Ignoring ledger update for %s on %s: outside the %s-day window",
                athlete_id,
                day,
                self.config.ledger_max_lookback_days,
            )
            return None
        with self._athlete_lock(athlete_id):
            entries = self._load(athlete_id)
            if not entries:
                self._initialize_unlocked(athlete_id)
                return self._load(athlete_id).get(day)

            entry = self._aggregate_day(athlete_id, day)

            # Close any hole between the stored tail and the day before ``day``
            previous_day = day - dt.timedelta(days=1)
            earlier = [d for d in entries if d < previous_day]
            if previous_day not in entries and earlier:
                self._cascade(athlete_id, entries, max(earlier), previous_day)

            prev = entries.get(previous_day)
            entry.long_run_load, entry.short_run_load, entry.balance = advance_loads(
                prev.long_run_load if prev else 0.0,
                prev.short_run_load if prev else 0.0,
                entry.stress,
            )
            self.ledger.upsert_many(athlete_id, [entry.to_row()])
            entries[day] = entry
            logger.debug("Ledger %s %s: stress=%.2f", athlete_id, day, entry.stress)

            self._cascade(athlete_id, entries, day, self._cascade_end(entries))
            return entry

    def propagate_forward(self, athlete_id: str, from_day: dt.date) -> int:
        """Recompute loads for every day after ``from_day`` from stored stress.

        Only loads are rewritten; stored stress values are reused. Missing days
        are created with zero stress. When ``from_day`` has no stored row the walk
        starts at the closest earlier row, so days past the stored tail are filled.
        Returns the number of rows written.
        """
        with self._athlete_lock(athlete_id):
            entries = self._load(athlete_id)
            return self._cascade(athlete_id, entries, from_day, self._cascade_end(entries))

    def initialize(self, athlete_id: str) -> int:
        """Rebuild the whole ledger from the athlete's activities."""
        with self._athlete_lock(athlete_id):
            return self._initialize_unlocked(athlete_id)

    def entries(self, athlete_id: str) -> List[DailyLedgerEntry]:
        entries = self._load(athlete_id)
        return [entries[d] for d in sorted(entries)]

    def latest_entry(self, athlete_id: str) -> Optional[DailyLedgerEntry]:
        entries = self._load(athlete_id)
        if not entries:
            return None
        return entries[max(entries)]

    def get_range(self, athlete_id: str, start: dt.date, end: dt.date) -> List[Dict[str, object]]:
        return [e.to_dict() for e in self.entries(athlete_id) if start <= e.date <= end]

    def current_metrics(self, athlete_id: str) -> Dict[str, object]:
        entries = self.entries(athlete_id)
        if not entries:
            return {
                "date": None,
                "longRunLoad": 0.0,
                "shortRunLoad": 0.0,
                "balance": 0.0,
                "longRunLoadChange": 0.0,
                "shortRunLoadChange": 0.0,
            }
        latest = entries[-1]
        week_ago = self._entry_on_or_before(entries, latest.date - dt.timedelta(days=7))
        return {
            "date": latest.date,
            "longRunLoad": latest.long_run_load,
            "shortRunLoad": latest.short_run_load,
            "balance": latest.balance,
            "longRunLoadChange": latest.long_run_load - (week_ago.long_run_load if week_ago else 0.0),
            "shortRunLoadChange": latest.short_run_load
            - (week_ago.short_run_load if week_ago else 0.0),
        }

    def ramp_rate(self, athlete_id: str) -> float:
        """Long-run load change over the 7 days ending at the latest row."""
        return float(self.current_metrics(athlete_id)["longRunLoadChange"])

    def week_summary(
        self, athlete_id: str, week_start: Optional[dt.date] = None
    ) -> Dict[str, object]:
        start = iso_week_start(week_start or self.clock())
        end = start + dt.timedelta(days=6)
        by_sport = {sport: {"duration": 0.0, "stress": 0.0} for sport in ("SWIM", "BIKE", "RUN", "STRENGTH")}
        summary: Dict[str, object] = {
            "weekStart": start,
            "totalStress": 0.0,
            "totalDurationSec": 0.0,
            "totalDistanceM": 0.0,
            "activityCount": 0,
            "bySport": by_sport,
        }
        for entry in self.entries(athlete_id):
            if not start <= entry.date <= end:
                continue
            summary["totalStress"] += entry.stress
            summary["totalDurationSec"] += entry.total_duration_sec
            summary["totalDistanceM"] += entry.total_distance_m
            summary["activityCount"] += entry.activity_count
            for sport, bucket in by_sport.items():
                bucket["duration"] += entry.sport_duration.get(sport, 0.0)
                bucket["stress"] += entry.sport_stress.get(sport, 0.0)
        return summary

    def window_start(self) -> dt.date:
        return self.clock() - dt.timedelta(days=self.config.ledger_max_lookback_days)

    # ------------------------------------------------------------------
    # Internal helpers
    @contextmanager
    def _athlete_lock(self, athlete_id: str) -> Iterator[None]:
        try:
            with self.storage.lock(
                f"locks/{athlete_id}.lock", timeout=self.config.ledger_lock_timeout_sec
            ):
                yield
        except portalocker.exceptions.LockException as exc:
            raise LedgerBusyError(
                f"Ledger for athlete {athlete_id} is locked by another cascade"
            ) from exc

    def _load(self, athlete_id: str) -> Dict[dt.date, DailyLedgerEntry]:
        df = self.ledger.list(athlete_id)
        entries: Dict[dt.date, DailyLedgerEntry] = {}
        for row in df.to_dict("records"):
            entry = DailyLedgerEntry.from_row(row)
            entries[entry.date] = entry
        return entries

    def _cascade_end(self, entries: Dict[dt.date, DailyLedgerEntry]) -> dt.date:
        today = self.clock()
        if entries:
            return max(today, max(entries))
        return today

    def _athlete_activities(self, athlete_id: str) -> List[Tuple[dt.date, ActivitySummary]]:
        df = self.activities.list(athleteId=athlete_id)
        result = []
        for row in df.to_dict("records"):
            summary = ActivitySummary.from_row(row)
            day = local_date(summary.start_time, self.config.local_timezone)
            if day is None:
                logger.warning("Activity %s has no usable start time", summary.activity_id)
                continue
            result.append((day, summary))
        return result

    def _aggregate(
        self, athlete_id: str, day: dt.date, activities: List[ActivitySummary]
    ) -> DailyLedgerEntry:
        entry = DailyLedgerEntry(
            athlete_id=athlete_id,
            date=day,
            sport_stress={s: 0.0 for s in SPORT_STRESS_COLUMNS},
            sport_duration={s: 0.0 for s in SPORT_DURATION_COLUMNS},
        )
        for activity in activities:
            stress = activity.stress_score or 0.0
            if stress < 0:
                raise NegativeStressError(
                    f"Activity {activity.activity_id} has negative stress {stress}"
                )
            entry.stress += stress
            entry.activity_count += 1
            entry.total_duration_sec += activity.moving_sec
            entry.total_distance_m += activity.distance_m or 0.0
            if activity.sport in entry.sport_stress:
                entry.sport_stress[activity.sport] += stress
            if activity.sport in entry.sport_duration:
                entry.sport_duration[activity.sport] += activity.moving_sec
        return entry

    def _aggregate_day(self, athlete_id: str, day: dt.date) -> DailyLedgerEntry:
        same_day = [a for d, a in self._athlete_activities(athlete_id) if d == day]
        return self._aggregate(athlete_id, day, same_day)

    def _cascade(
        self,
        athlete_id: str,
        entries: Dict[dt.date, DailyLedgerEntry],
        from_day: dt.date,
        end: dt.date,
    ) -> int:
        if from_day not in entries:
            earlier = [d for d in entries if d < from_day]
            if earlier:
                from_day = max(earlier)
        anchor = entries.get(from_day)
        prev_long = anchor.long_run_load if anchor else 0.0
        prev_short = anchor.short_run_load if anchor else 0.0
        batch: List[Dict[str, object]] = []
        written = 0
        try:
            for day in day_range(from_day + dt.timedelta(days=1), end):
                existing = entries.get(day)
                if existing is None:
                    existing = DailyLedgerEntry(athlete_id=athlete_id, date=day)
                long_load, short_load, balance = advance_loads(prev_long, prev_short, existing.stress)
                updated = replace(
                    existing, long_run_load=long_load, short_run_load=short_load, balance=balance
                )
                entries[day] = updated
                batch.append(updated.to_row())
                prev_long, prev_short = long_load, short_load
                if len(batch) >= self.config.ledger_batch_days:
                    self.ledger.upsert_many(athlete_id, batch)
                    written += len(batch)
                    batch = []
            if batch:
                self.ledger.upsert_many(athlete_id, batch)
                written += len(batch)
        except Exception:
            logger.error(
                "Ledger cascade for %s from %s failed after %s rows",
                athlete_id,
                from_day,
                written,
                exc_info=True,
            )
            raise
        if written:
            logger.info("Propagated ledger for %s: %s days after %s", athlete_id, written, from_day)
        return written

    def _initialize_unlocked(self, athlete_id: str) -> int:
        activities = self._athlete_activities(athlete_id)
        if not activities:
            logger.info("No activities found for athlete %s, skipping ledger init", athlete_id)
            return 0

        today = self.clock()
        first_day = min(d for d, _ in activities)
        start = max(first_day, self.window_start())
        end = max([today] + [d for d, _ in activities])
        by_day: Dict[dt.date, List[ActivitySummary]] = {}
        for day, summary in activities:
            if day >= start:
                by_day.setdefault(day, []).append(summary)

        rows: List[Dict[str, object]] = []
        prev_long = prev_short = 0.0
        for day in day_range(start, end):
            entry = self._aggregate(athlete_id, day, by_day.get(day, []))
            entry.long_run_load, entry.short_run_load, entry.balance = advance_loads(
                prev_long, prev_short, entry.stress
            )
            prev_long, prev_short = entry.long_run_load, entry.short_run_load
            rows.append(entry.to_row())

        self.ledger.clear(athlete_id)
        chunk = self.config.ledger_batch_days
        for i in range(0, len(rows), chunk):
            self.ledger.upsert_many(athlete_id, rows[i : i + chunk])
        logger.info("Initialized ledger for athlete %s: %s days processed", athlete_id, len(rows))
        return len(rows)

    @staticmethod
    def _entry_on_or_before(
        entries: List[DailyLedgerEntry], day: dt.date
    ) -> Optional[DailyLedgerEntry]:
        candidates = [e for e in entries if e.date <= day]
        return candidates[-1] if candidates else None
