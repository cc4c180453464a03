"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later

Typed views over the CSV rows handled by the repositories.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from config import SPORTS
from utils.coercion import (
    csv_optional,
    safe_bool,
    safe_float,
    safe_float_optional,
    safe_int,
    safe_str,
)
from utils.constants import SPORT_ALIASES, SPORT_DURATION_COLUMNS, SPORT_STRESS_COLUMNS
from utils.ids import daily_id
from utils.time import to_date


def normalize_sport(raw: object) -> str:
    value = safe_str(raw).strip()
    if not value:
        return "OTHER"
    if value.upper() in SPORTS:
        return value.upper()
    return SPORT_ALIASES.get(value.lower().replace(" ", ""), "OTHER")


@dataclass
class ActivitySummary:
    activity_id: str
    athlete_id: str
    sport: str
    start_time: str
    moving_sec: float
    elapsed_sec: float = 0.0
    distance_m: Optional[float] = None
    avg_power: Optional[float] = None
    avg_hr: Optional[float] = None
    max_hr: Optional[float] = None
    avg_speed: Optional[float] = None
    normalized_power: Optional[float] = None
    intensity_factor: Optional[float] = None
    stress_score: Optional[float] = None
    efficiency_factor: Optional[float] = None
    decoupling_pct: Optional[float] = None
    variability_index: Optional[float] = None
    has_timeseries: bool = False
    stress_source: str = ""
    name: str = ""

    @property
    def duration_sec(self) -> float:
        return self.moving_sec if self.moving_sec > 0 else self.elapsed_sec

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ActivitySummary":
        return cls(
            activity_id=safe_str(row.get("activityId")),
            athlete_id=safe_str(row.get("athleteId")),
            sport=normalize_sport(row.get("sportType")),
            start_time=safe_str(row.get("startTime")),
            moving_sec=safe_float(row.get("movingSec")),
            elapsed_sec=safe_float(row.get("elapsedSec")),
            distance_m=safe_float_optional(row.get("distanceM")),
            avg_power=safe_float_optional(row.get("avgPower")),
            avg_hr=safe_float_optional(row.get("avgHr")),
            max_hr=safe_float_optional(row.get("maxHr")),
            avg_speed=safe_float_optional(row.get("avgSpeed")),
            normalized_power=safe_float_optional(row.get("normalizedPower")),
            intensity_factor=safe_float_optional(row.get("intensityFactor")),
            stress_score=safe_float_optional(row.get("stressScore")),
            efficiency_factor=safe_float_optional(row.get("efficiencyFactor")),
            decoupling_pct=safe_float_optional(row.get("decouplingPct")),
            variability_index=safe_float_optional(row.get("variabilityIndex")),
            has_timeseries=safe_bool(row.get("hasTimeseries")),
            stress_source=safe_str(row.get("stressSource")),
            name=safe_str(row.get("name")),
        )

    def to_row(self) -> Dict[str, object]:
        return {
            "activityId": self.activity_id,
            "athleteId": self.athlete_id,
            "sportType": self.sport,
            "name": self.name,
            "startTime": self.start_time,
            "movingSec": self.moving_sec,
            "elapsedSec": self.elapsed_sec,
            "distanceM": csv_optional(self.distance_m),
            "avgPower": csv_optional(self.avg_power),
            "avgHr": csv_optional(self.avg_hr),
            "maxHr": csv_optional(self.max_hr),
            "avgSpeed": csv_optional(self.avg_speed),
            "normalizedPower": csv_optional(self.normalized_power),
            "intensityFactor": csv_optional(self.intensity_factor),
            "stressScore": csv_optional(self.stress_score),
            "efficiencyFactor": csv_optional(self.efficiency_factor),
            "decouplingPct": csv_optional(self.decoupling_pct),
            "variabilityIndex": csv_optional(self.variability_index),
            "hasTimeseries": bool(self.has_timeseries),
            "stressSource": self.stress_source,
        }


@dataclass
class AthleteThresholds:
    athlete_id: str
    ftp: float = 0.0
    lthr: float = 0.0
    threshold_pace_min_km: float = 0.0
    css_m_s: float = 0.0

    @classmethod
    def from_row(cls, row: Optional[Dict[str, Any]], athlete_id: str = "") -> "AthleteThresholds":
        if not row:
            return cls(athlete_id=athlete_id)
        return cls(
            athlete_id=safe_str(row.get("athleteId")) or athlete_id,
            ftp=safe_float(row.get("ftp")),
            lthr=safe_float(row.get("lthr")),
            threshold_pace_min_km=safe_float(row.get("thresholdPaceMinKm")),
            css_m_s=safe_float(row.get("cssMs")),
        )


@dataclass
class DailyLedgerEntry:
    athlete_id: str
    date: dt.date
    stress: float = 0.0
    long_run_load: float = 0.0
    short_run_load: float = 0.0
    balance: float = 0.0
    activity_count: int = 0
    total_duration_sec: float = 0.0
    total_distance_m: float = 0.0
    sport_stress: Dict[str, float] = field(default_factory=dict)
    sport_duration: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "DailyLedgerEntry":
        day = to_date(row.get("date"))
        if day is None:
            raise ValueError(f"Ledger row without a valid date: {row!r}")
        return cls(
            athlete_id=safe_str(row.get("athleteId")),
            date=day,
            stress=safe_float(row.get("stressScore")),
            long_run_load=safe_float(row.get("longRunLoad")),
            short_run_load=safe_float(row.get("shortRunLoad")),
            balance=safe_float(row.get("balance")),
            activity_count=safe_int(row.get("activityCount")),
            total_duration_sec=safe_float(row.get("totalDurationSec")),
            total_distance_m=safe_float(row.get("totalDistanceM")),
            sport_stress={s: safe_float(row.get(c)) for s, c in SPORT_STRESS_COLUMNS.items()},
            sport_duration={s: safe_float(row.get(c)) for s, c in SPORT_DURATION_COLUMNS.items()},
        )

    def to_row(self) -> Dict[str, object]:
        row: Dict[str, object] = {
            "dailyId": daily_id(self.athlete_id, self.date),
            "athleteId": self.athlete_id,
            "date": self.date.isoformat(),
            "stressScore": self.stress,
            "longRunLoad": self.long_run_load,
            "shortRunLoad": self.short_run_load,
            "balance": self.balance,
            "activityCount": self.activity_count,
            "totalDurationSec": self.total_duration_sec,
            "totalDistanceM": self.total_distance_m,
        }
        for sport, col in SPORT_STRESS_COLUMNS.items():
            row[col] = self.sport_stress.get(sport, 0.0)
        for sport, col in SPORT_DURATION_COLUMNS.items():
            row[col] = self.sport_duration.get(sport, 0.0)
        return row

    def to_dict(self) -> Dict[str, object]:
        return {
            "date": self.date.isoformat(),
            "stress": self.stress,
            "longRunLoad": self.long_run_load,
            "shortRunLoad": self.short_run_load,
            "balance": self.balance,
        }


@dataclass
class PeakRecord:
    record_id: str
    athlete_id: str
    sport: str
    bucket: str
    value: float
    activity_id: str
    achieved_at: str
    duration_sec: Optional[int] = None
    distance_m: Optional[float] = None
    previous_best: Optional[float] = None
    improvement_pct: Optional[float] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "PeakRecord":
        duration = safe_float_optional(row.get("durationSec"))
        return cls(
            record_id=safe_str(row.get("recordId")),
            athlete_id=safe_str(row.get("athleteId")),
            sport=normalize_sport(row.get("sportType")),
            bucket=safe_str(row.get("bucket")),
            value=safe_float(row.get("value")),
            activity_id=safe_str(row.get("activityId")),
            achieved_at=safe_str(row.get("achievedAt")),
            duration_sec=int(duration) if duration is not None else None,
            distance_m=safe_float_optional(row.get("distanceM")),
            previous_best=safe_float_optional(row.get("previousBest")),
            improvement_pct=safe_float_optional(row.get("improvementPct")),
        )

    def to_row(self) -> Dict[str, object]:
        return {
            "recordId": self.record_id,
            "athleteId": self.athlete_id,
            "sportType": self.sport,
            "bucket": self.bucket,
            "value": self.value,
            "durationSec": csv_optional(self.duration_sec),
            "distanceM": csv_optional(self.distance_m),
            "activityId": self.activity_id,
            "achievedAt": self.achieved_at,
            "previousBest": csv_optional(self.previous_best),
            "improvementPct": csv_optional(self.improvement_pct),
        }
