import datetime as dt
import sys
from pathlib import Path

import pytest


# Ensure project root is importable for tests
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


from persistence.csv_storage import CsvStorage
from persistence.repositories import ActivitiesRepo, AthletesRepo
from utils.config import config_for_dir

TODAY = dt.date(2025, 3, 10)


@pytest.fixture
def storage(tmp_path):
    return CsvStorage(base_dir=tmp_path)


@pytest.fixture
def cfg(tmp_path):
    return config_for_dir(tmp_path)


@pytest.fixture
def clock():
    return lambda: TODAY


@pytest.fixture
def add_activity(storage):
    """Insert an activity summary row directly, bypassing processing."""
    repo = ActivitiesRepo(storage)

    def _add(activity_id, day, stress, sport="RUN", athlete_id="ath-1", **extra):
        row = {
            "activityId": activity_id,
            "athleteId": athlete_id,
            "sportType": sport,
            "startTime": f"{day.isoformat()}T08:00:00",
            "movingSec": 3600,
            "elapsedSec": 3700,
            "stressScore": stress,
            "stressSource": "provided",
        }
        row.update(extra)
        repo.create(row)
        return activity_id

    return _add


@pytest.fixture
def athlete(storage):
    AthletesRepo(storage).create(
        {
            "athleteId": "ath-1",
            "name": "Test Athlete",
            "ftp": 250,
            "lthr": 170,
            "thresholdPaceMinKm": 4.0,
            "cssMs": 1.25,
        }
    )
    return "ath-1"
