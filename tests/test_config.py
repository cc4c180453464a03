from utils.config import config_for_dir, load_config


def test_load_config_creates_dirs(tmp_path, monkeypatch):
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    cfg = load_config()
    assert cfg.data_dir.exists()
    assert cfg.timeseries_dir.exists()
    assert cfg.ledger_dir.exists()
    assert cfg.locks_dir.exists()
    assert cfg.ledger_batch_days == 50
    assert cfg.ledger_max_lookback_days == 730


def test_load_config_reads_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("LEDGER_BATCH_DAYS", "100")
    monkeypatch.setenv("LEDGER_LOCK_TIMEOUT_SEC", "2.5")
    monkeypatch.setenv("LOCAL_TIMEZONE", "Europe/Paris")
    monkeypatch.setenv("INVALIDATE_RECORDS_ON_DELETE", "true")
    cfg = load_config()
    assert cfg.ledger_batch_days == 100
    assert cfg.ledger_lock_timeout_sec == 2.5
    assert cfg.local_timezone == "Europe/Paris"
    assert cfg.invalidate_records_on_delete is True


def test_invalid_numbers_fall_back_to_defaults(tmp_path, monkeypatch):
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("LEDGER_BATCH_DAYS", "lots")
    monkeypatch.setenv("CURVE_LOOKBACK_DAYS", "-5")
    cfg = load_config()
    assert cfg.ledger_batch_days == 50
    assert cfg.curve_lookback_days == 90


def test_config_for_dir_overrides(tmp_path):
    cfg = config_for_dir(tmp_path, ledger_batch_days=7)
    assert cfg.ledger_batch_days == 7
    assert (tmp_path / "peaks").exists()
