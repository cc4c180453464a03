import portalocker
import pytest

from persistence.csv_storage import CsvStorage


def test_append_and_read(tmp_path):
    storage = CsvStorage(base_dir=tmp_path)
    cols = ["id", "name", "val"]
    storage.append_row("t.csv", {"id": "1", "name": "a", "val": 1}, cols)
    df = storage.read_csv("t.csv")
    assert list(df.columns) == cols
    assert len(df) == 1


def test_upsert(tmp_path):
    storage = CsvStorage(base_dir=tmp_path)
    storage.upsert("t.csv", ["id"], {"id": "1", "name": "a", "val": 1})
    storage.upsert("t.csv", ["id"], {"id": "1", "name": "b", "val": 2})
    df = storage.read_csv("t.csv")
    assert len(df) == 1
    assert df.iloc[0]["name"] == "b"
    assert df.iloc[0]["val"] == 2


def test_upsert_many_replaces_and_appends_in_one_write(tmp_path):
    storage = CsvStorage(base_dir=tmp_path)
    storage.upsert_many("t.csv", ["id"], [{"id": "1", "val": 1}, {"id": "2", "val": 2}])
    storage.upsert_many(
        "t.csv", ["id"], [{"id": "2", "val": 20}, {"id": "3", "val": 3}], columns=["id", "val", "extra"]
    )
    df = storage.read_csv("t.csv", dtypes={"id": "str"})
    assert list(df.columns) == ["id", "val", "extra"]
    assert dict(zip(df["id"], df["val"])) == {"1": 1, "2": 20, "3": 3}


def test_full_precision_floats_round_trip(tmp_path):
    storage = CsvStorage(base_dir=tmp_path)
    storage.upsert("t.csv", ["id"], {"id": "1", "val": 2.380952380952381})
    assert storage.read_csv("t.csv").iloc[0]["val"] == 2.380952380952381


def test_read_missing_file_has_typed_columns(tmp_path):
    storage = CsvStorage(base_dir=tmp_path)
    df = storage.read_csv("missing.csv", dtypes={"id": "str"})
    assert df.empty
    assert list(df.columns) == ["id"]


def test_lock_is_exclusive(tmp_path):
    storage = CsvStorage(base_dir=tmp_path)
    with storage.lock("locks/a.lock"):
        with pytest.raises(portalocker.exceptions.LockException):
            with storage.lock("locks/a.lock", timeout=0.1):
                pass
        # a different key is independent
        with storage.lock("locks/b.lock", timeout=0.1):
            pass
