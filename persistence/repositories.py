"""Repository layer for CSV-backed storage."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import pandas as pd

from persistence.csv_storage import CsvStorage
from utils.ids import new_id


def _ensure_headers(df: pd.DataFrame, headers: List[str]) -> pd.DataFrame:
    for h in headers:
        if h not in df.columns:
            df[h] = pd.Series(dtype="object")
    return df[headers]


@dataclass
class BaseRepo:
    storage: CsvStorage
    file_name: str
    headers: List[str]
    id_column: str

    def _read(self) -> pd.DataFrame:
        df = self.storage.read_csv(
            self.file_name, dtypes={self.id_column: "str", "athleteId": "str"}
        )
        return _ensure_headers(df, self.headers)

    def list(self, **filters: Any) -> pd.DataFrame:
        df = self._read()
        for k, v in filters.items():
            if k in df.columns:
                df = df[df[k].astype(str) == str(v)]
        return df.reset_index(drop=True)

    def get(self, entity_id: str) -> Optional[Dict[str, Any]]:
        df = self._read()
        hit = df[df[self.id_column].astype(str) == str(entity_id)]
        if hit.empty:
            return None
        return hit.iloc[0].to_dict()

    def create(self, row: Dict[str, Any]) -> str:
        if self.id_column not in row or not row[self.id_column]:
            row[self.id_column] = new_id()
        df = _ensure_headers(pd.DataFrame([row]), self.headers)
        self.storage.append_row(self.file_name, df.iloc[0].to_dict(), self.headers)
        return str(row[self.id_column])

    def update(self, entity_id: str, updates: Dict[str, Any]) -> None:
        current = self.get(entity_id) or {}
        row = {h: current.get(h) for h in self.headers}
        row.update(updates)
        row[self.id_column] = entity_id
        self.storage.upsert_many(self.file_name, [self.id_column], [row], columns=self.headers)

    def delete(self, entity_id: str) -> None:
        df = self._read()
        if df.empty:
            return
        df = df[df[self.id_column].astype(str) != str(entity_id)]
        self.storage.write_csv(self.file_name, _ensure_headers(df, self.headers))

    def delete_where(self, **filters: Any) -> int:
        df = self._read()
        if df.empty:
            return 0
        mask = pd.Series([True] * len(df), index=df.index)
        for k, v in filters.items():
            mask &= df[k].astype(str) == str(v)
        removed = int(mask.sum())
        if removed:
            self.storage.write_csv(self.file_name, _ensure_headers(df[~mask], self.headers))
        return removed


@dataclass
class AthletePartitionedRepo:
    """One CSV file per athlete so that athletes never share a write target."""

    storage: CsvStorage
    folder: str
    headers: List[str]
    id_column: str

    def file_for(self, athlete_id: str) -> str:
        return f"{self.folder}/{athlete_id}.csv"

    def list(self, athlete_id: str) -> pd.DataFrame:
        df = self.storage.read_csv(self.file_for(athlete_id), dtypes={self.id_column: "str"})
        return _ensure_headers(df, self.headers).reset_index(drop=True)

    def upsert_many(self, athlete_id: str, rows: List[Dict[str, Any]]) -> None:
        self.storage.upsert_many(
            self.file_for(athlete_id), [self.id_column], rows, columns=self.headers
        )

    def append(self, athlete_id: str, row: Dict[str, Any]) -> str:
        if not row.get(self.id_column):
            row[self.id_column] = new_id()
        self.storage.append_row(self.file_for(athlete_id), row, self.headers)
        return str(row[self.id_column])

    def replace(self, athlete_id: str, df: pd.DataFrame) -> None:
        self.storage.write_csv(self.file_for(athlete_id), _ensure_headers(df, self.headers))

    def clear(self, athlete_id: str) -> None:
        self.storage.delete(self.file_for(athlete_id))


class ActivitiesRepo(BaseRepo):
    def __init__(self, storage: CsvStorage):
        super().__init__(
            storage,
            "activities.csv",
            [
                "activityId",
                "athleteId",
                "sportType",
                "name",
                "startTime",
                "movingSec",
                "elapsedSec",
                "distanceM",
                "avgPower",
                "avgHr",
                "maxHr",
                "avgSpeed",
                "normalizedPower",
                "intensityFactor",
                "stressScore",
                "efficiencyFactor",
                "decouplingPct",
                "variabilityIndex",
                "hasTimeseries",
                "stressSource",  # provided | power | pace | swim | hr
            ],
            id_column="activityId",
        )


class AthletesRepo(BaseRepo):
    def __init__(self, storage: CsvStorage):
        super().__init__(
            storage,
            "athlete.csv",
            [
                "athleteId",
                "name",
                "ftp",  # watts
                "lthr",  # bpm
                "thresholdPaceMinKm",  # minutes per km
                "cssMs",  # critical swim speed, m/s
            ],
            id_column="athleteId",
        )


class PlannedWeeksRepo(BaseRepo):
    def __init__(self, storage: CsvStorage):
        super().__init__(
            storage,
            "planned_weeks.csv",
            [
                "planWeekId",
                "athleteId",
                "weekStart",
                "targetStress",
                "weekType",
            ],
            id_column="planWeekId",
        )


class ActivityPeaksRepo(BaseRepo):
    def __init__(self, storage: CsvStorage):
        super().__init__(
            storage,
            "activity_peaks.csv",
            [
                "peakId",
                "activityId",
                "athleteId",
                "sportType",
                "channel",  # power | speed
                "durationSec",
                "value",
                "startTime",
            ],
            id_column="peakId",
        )


class DailyLedgerRepo(AthletePartitionedRepo):
    def __init__(self, storage: CsvStorage):
        super().__init__(
            storage,
            "ledger",
            [
                "dailyId",
                "athleteId",
                "date",
                "stressScore",
                "longRunLoad",
                "shortRunLoad",
                "balance",
                "activityCount",
                "totalDurationSec",
                "totalDistanceM",
                "swimStress",
                "bikeStress",
                "runStress",
                "swimDurationSec",
                "bikeDurationSec",
                "runDurationSec",
                "strengthDurationSec",
            ],
            id_column="dailyId",
        )


class PeakRecordsRepo(AthletePartitionedRepo):
    def __init__(self, storage: CsvStorage):
        super().__init__(
            storage,
            "peaks",
            [
                "recordId",
                "athleteId",
                "sportType",
                "bucket",
                "value",
                "durationSec",
                "distanceM",
                "activityId",
                "achievedAt",
                "previousBest",
                "improvementPct",
            ],
            id_column="recordId",
        )


TIMESERIES_COLUMNS = [
    "offsetSec",
    "hr",
    "power",
    "cadence",
    "speed",
    "altitude",
    "lat",
    "lon",
    "gctMs",
    "voCm",
    "strideM",
]


@dataclass
class TimeseriesStore:
    """Per-activity sample streams stored as ``timeseries/{activityId}.csv``."""

    storage: CsvStorage

    def path_for(self, activity_id: str) -> str:
        return f"timeseries/{activity_id}.csv"

    def exists(self, activity_id: str) -> bool:
        return self.storage.exists(self.path_for(activity_id))

    def read(self, activity_id: str) -> pd.DataFrame:
        df = self.storage.read_csv(self.path_for(activity_id))
        if df.empty:
            return pd.DataFrame(columns=TIMESERIES_COLUMNS)
        for col in TIMESERIES_COLUMNS:
            if col in df.columns:
                df[col] = pd.to_numeric(df[col], errors="coerce")
        if "offsetSec" in df.columns:
            df = df.sort_values("offsetSec", kind="stable")
        return df.reset_index(drop=True)

    def write(self, activity_id: str, samples: pd.DataFrame) -> None:
        known = [c for c in TIMESERIES_COLUMNS if c in samples.columns]
        self.storage.write_csv(self.path_for(activity_id), samples[known])

    def delete(self, activity_id: str) -> None:
        self.storage.delete(self.path_for(activity_id))
