import datetime as dt

import pandas as pd

from persistence.csv_storage import CsvStorage
from persistence.models import ActivitySummary, DailyLedgerEntry, PeakRecord, normalize_sport
from persistence.repositories import (
    ActivitiesRepo,
    DailyLedgerRepo,
    PlannedWeeksRepo,
    TimeseriesStore,
)
from utils.ids import new_id


def test_activities_repo_crud(tmp_path):
    storage = CsvStorage(base_dir=tmp_path)
    repo = ActivitiesRepo(storage)
    aid = new_id()
    repo.create(
        {
            "activityId": aid,
            "athleteId": "ath1",
            "sportType": "RUN",
            "startTime": "2025-10-06T10:00:00Z",
            "distanceM": 1000.0,
            "elapsedSec": 10,
            "movingSec": 10,
            "avgHr": 100,
            "maxHr": 120,
            "hasTimeseries": False,
        }
    )
    assert repo.get(aid)["activityId"] == aid
    repo.update(aid, {"avgHr": 101})
    assert repo.get(aid)["avgHr"] == 101
    assert repo.get(aid)["maxHr"] == 120
    repo.delete(aid)
    assert repo.get(aid) is None


def test_delete_where_counts_rows(tmp_path):
    storage = CsvStorage(base_dir=tmp_path)
    repo = PlannedWeeksRepo(storage)
    for week in ("2025-03-03", "2025-03-10"):
        repo.create({"athleteId": "ath1", "weekStart": week, "targetStress": 400})
    repo.create({"athleteId": "ath2", "weekStart": "2025-03-03", "targetStress": 300})
    assert repo.delete_where(athleteId="ath1") == 2
    assert len(repo.list()) == 1


def test_ledger_repo_keeps_one_file_per_athlete(tmp_path):
    storage = CsvStorage(base_dir=tmp_path)
    repo = DailyLedgerRepo(storage)
    day = dt.date(2025, 3, 10)
    repo.upsert_many("ath1", [DailyLedgerEntry("ath1", day, stress=50.0).to_row()])
    repo.upsert_many("ath2", [DailyLedgerEntry("ath2", day, stress=70.0).to_row()])
    repo.upsert_many("ath1", [DailyLedgerEntry("ath1", day, stress=55.0).to_row()])

    assert (tmp_path / "ledger" / "ath1.csv").exists()
    ath1 = repo.list("ath1")
    assert len(ath1) == 1
    assert DailyLedgerEntry.from_row(ath1.iloc[0].to_dict()).stress == 55.0
    assert DailyLedgerEntry.from_row(repo.list("ath2").iloc[0].to_dict()).stress == 70.0


def test_timeseries_store_sorts_and_coerces(tmp_path):
    storage = CsvStorage(base_dir=tmp_path)
    store = TimeseriesStore(storage)
    store.write("a1", pd.DataFrame({"offsetSec": [2, 0, 1], "power": ["210", "200", ""], "junk": [1, 2, 3]}))
    df = store.read("a1")
    assert list(df["offsetSec"]) == [0, 1, 2]
    assert "junk" not in df.columns
    assert pd.isna(df["power"].iloc[1])
    store.delete("a1")
    assert not store.exists("a1")
    assert store.read("a1").empty


def test_activity_summary_row_mapping():
    row = {
        "activityId": "a1",
        "athleteId": "ath1",
        "sportType": "Ride",
        "startTime": "2025-03-10T08:00:00",
        "movingSec": 0,
        "elapsedSec": 1800,
        "avgPower": float("nan"),
        "hasTimeseries": "True",
    }
    summary = ActivitySummary.from_row(row)
    assert summary.sport == "BIKE"
    assert summary.duration_sec == 1800
    assert summary.avg_power is None
    assert summary.has_timeseries is True
    assert summary.to_row()["avgPower"] == ""


def test_peak_record_round_trip_keeps_optional_fields():
    record = PeakRecord("r1", "ath1", "RUN", "LONGEST_RUN", 21097.5, "a1", "2025-03-10", distance_m=21097.5)
    again = PeakRecord.from_row(record.to_row())
    assert again.duration_sec is None
    assert again.distance_m == 21097.5


def test_normalize_sport():
    assert normalize_sport("VirtualRide") == "BIKE"
    assert normalize_sport("trail run") == "RUN"
    assert normalize_sport("swim") == "SWIM"
    assert normalize_sport(None) == "OTHER"
    assert normalize_sport("Yoga") == "OTHER"
