"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later
"""

from __future__ import annotations

SPORTS = ["BIKE", "RUN", "SWIM", "STRENGTH", "OTHER"]

# Window sizes (in seconds) for power duration curves and power peak records
POWER_DURATIONS = [5, 10, 15, 30, 60, 120, 180, 300, 600, 1200, 1800, 3600, 5400, 7200]

# Window sizes (in seconds) for speed-based curves (run/swim)
PACE_DURATIONS = [5, 30, 60, 180, 300, 600, 1200, 1800, 3600]
SWIM_DURATIONS = [30, 60, 120, 300, 600, 1200, 1800]

# Durations stored per activity at processing time; the curve builder
# scans raw samples only for durations outside this list
CACHED_PEAK_DURATIONS = [5, 30, 60, 300, 1200, 3600]

# sport -> (sample column, durations)
CURVE_SOURCES = {
    "BIKE": ("power", POWER_DURATIONS),
    "RUN": ("speed", PACE_DURATIONS),
    "SWIM": ("speed", SWIM_DURATIONS),
}

DURATION_LABELS = {
    5: "5s",
    10: "10s",
    15: "15s",
    30: "30s",
    60: "1min",
    120: "2min",
    180: "3min",
    300: "5min",
    480: "8min",
    600: "10min",
    1200: "20min",
    1800: "30min",
    3600: "60min",
    5400: "90min",
    7200: "120min",
}


def duration_label(duration_sec: int) -> str:
    return DURATION_LABELS.get(int(duration_sec), f"{int(duration_sec)}s")
