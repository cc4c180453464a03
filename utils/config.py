"""
Configuration loading utilities.

Loads environment variables from `.env`, applies defaults for the training
load engine and ensures data directories exist.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv, find_dotenv
from streamlit.logger import get_logger

from utils.constants import DEFAULT_BATCH_DAYS, DEFAULT_MAX_LOOKBACK_DAYS

logger = get_logger(__name__)


@dataclass(frozen=True)
class Config:
    data_dir: Path
    timeseries_dir: Path
    ledger_dir: Path
    peaks_dir: Path
    locks_dir: Path
    ledger_batch_days: int = DEFAULT_BATCH_DAYS
    ledger_max_lookback_days: int = DEFAULT_MAX_LOOKBACK_DAYS
    ledger_lock_timeout_sec: float = 30.0
    curve_lookback_days: int = 90
    curve_scan_activity_limit: int = 20
    local_timezone: Optional[str] = None
    invalidate_records_on_delete: bool = False


def _ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    try:
        value = int(raw)
    except (ValueError, TypeError):
        logger.warning("Ignoring invalid %s=%r, using %s", name, raw, default)
        return default
    return value if value > 0 else default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    try:
        value = float(raw)
    except (ValueError, TypeError):
        logger.warning("Ignoring invalid %s=%r, using %s", name, raw, default)
        return default
    return value if value > 0 else default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def load_config() -> Config:
    """Load configuration from environment and provision directories."""
    load_dotenv(find_dotenv(), override=False)

    data_dir = Path(os.getenv("DATA_DIR", "./data")).expanduser().resolve()
    timeseries_dir = data_dir / "timeseries"
    ledger_dir = data_dir / "ledger"
    peaks_dir = data_dir / "peaks"
    locks_dir = data_dir / "locks"

    for path in (data_dir, timeseries_dir, ledger_dir, peaks_dir, locks_dir):
        _ensure_dir(path)

    local_timezone = (os.getenv("LOCAL_TIMEZONE") or "").strip() or None
    logger.debug("DATA_DIR: %s, LOCAL_TIMEZONE: %s", data_dir, local_timezone)

    return Config(
        data_dir=data_dir,
        timeseries_dir=timeseries_dir,
        ledger_dir=ledger_dir,
        peaks_dir=peaks_dir,
        locks_dir=locks_dir,
        ledger_batch_days=_env_int("LEDGER_BATCH_DAYS", DEFAULT_BATCH_DAYS),
        ledger_max_lookback_days=_env_int("LEDGER_MAX_LOOKBACK_DAYS", DEFAULT_MAX_LOOKBACK_DAYS),
        ledger_lock_timeout_sec=_env_float("LEDGER_LOCK_TIMEOUT_SEC", 30.0),
        curve_lookback_days=_env_int("CURVE_LOOKBACK_DAYS", 90),
        curve_scan_activity_limit=_env_int("CURVE_SCAN_ACTIVITY_LIMIT", 20),
        local_timezone=local_timezone,
        invalidate_records_on_delete=_env_bool("INVALIDATE_RECORDS_ON_DELETE"),
    )


def config_for_dir(data_dir: Path, **overrides: object) -> Config:
    """Build a Config rooted at ``data_dir`` without reading the environment."""
    data_dir = Path(data_dir)
    values = dict(
        data_dir=data_dir,
        timeseries_dir=data_dir / "timeseries",
        ledger_dir=data_dir / "ledger",
        peaks_dir=data_dir / "peaks",
        locks_dir=data_dir / "locks",
    )
    values.update(overrides)
    cfg = Config(**values)  # type: ignore[arg-type]
    for path in (cfg.data_dir, cfg.timeseries_dir, cfg.ledger_dir, cfg.peaks_dir, cfg.locks_dir):
        _ensure_dir(path)
    return cfg
