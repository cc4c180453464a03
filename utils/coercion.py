"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later

Type coercion utilities for CSV cells.

pandas hands back ``NaN`` for empty cells and strings for mixed columns;
these helpers turn them into plain Python values.
"""

from __future__ import annotations

import math
from typing import Any, Optional


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() in ("", "NaN", "nan", "None")
    try:
        return math.isnan(value)
    except TypeError:
        return False


def safe_float(value: object, default: float = 0.0) -> float:
    """Convert a value to float, returning ``default`` for NaN, None or junk."""
    if _is_missing(value):
        return default
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default


def safe_int(value: object, default: int = 0) -> int:
    if _is_missing(value):
        return default
    try:
        return int(float(value))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default


def safe_float_optional(value: object) -> Optional[float]:
    """Convert a value to float, returning None when it is missing.

    Args:
        value: Cell value (None, "", "NaN", number or numeric string)

    Returns:
        Optional[float]: Converted value or None
    """
    if _is_missing(value):
        return None
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None


def safe_bool(value: object) -> bool:
    if _is_missing(value):
        return False
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes"}
    return bool(value)


def safe_str(value: object) -> str:
    if _is_missing(value):
        return ""
    return str(value)


def csv_optional(value: Optional[float]) -> object:
    """Render an optional number for a CSV cell (empty when None)."""
    return "" if value is None else value
