"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later

ID helpers.
"""

from __future__ import annotations

import datetime as dt
import uuid


def new_id() -> str:
    return str(uuid.uuid4())


def daily_id(athlete_id: str, day: dt.date) -> str:
    """Stable key of a ledger row: one per (athlete, calendar day)."""
    return f"{athlete_id}-{day.isoformat()}"
