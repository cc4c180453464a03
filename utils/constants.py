"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later
"""

from __future__ import annotations

# ==============================================================================
# FITNESS / FATIGUE LEDGER
# ==============================================================================

LONG_RUN_TIME_CONSTANT = 42  # days (CTL)
SHORT_RUN_TIME_CONSTANT = 7  # days (ATL)

DEFAULT_MAX_LOOKBACK_DAYS = 730
DEFAULT_BATCH_DAYS = 50

# ==============================================================================
# METRIC FORMULAS
# ==============================================================================

NORMALIZED_WINDOW_SAMPLES = 30
DECOUPLING_MIN_SAMPLES = 20

HR_STRESS_K = 1.67
HR_STRESS_B = 1.92
HR_STRESS_SCALE = 3.33
HR_STRESS_MAX_PER_HOUR = 150.0

# ==============================================================================
# SPORT BUCKETS
# ==============================================================================

SPORT_STRESS_COLUMNS = {
    "SWIM": "swimStress",
    "BIKE": "bikeStress",
    "RUN": "runStress",
}
SPORT_DURATION_COLUMNS = {
    "SWIM": "swimDurationSec",
    "BIKE": "bikeDurationSec",
    "RUN": "runDurationSec",
    "STRENGTH": "strengthDurationSec",
}

SPORT_ALIASES = {
    "bike": "BIKE",
    "ride": "BIKE",
    "cycling": "BIKE",
    "virtualride": "BIKE",
    "run": "RUN",
    "running": "RUN",
    "trailrun": "RUN",
    "trail_run": "RUN",
    "swim": "SWIM",
    "swimming": "SWIM",
    "strength": "STRENGTH",
    "weighttraining": "STRENGTH",
}

# ==============================================================================
# DURATION CURVE / PHENOTYPE
# ==============================================================================

SPRINT_RATIO_BASE = 1.5
SPRINT_RATIO_SPAN = 0.7
SUSTAINED_RATIO_BASE = 0.80
SUSTAINED_RATIO_SPAN = 0.12

PHENOTYPE_PROFILES = {
    "sprinter": (
        "Strong in short, explosive efforts",
        ["Sprint finishes", "Short climbs", "Attacks"],
        ["Time trials", "Long climbs", "Breakaways"],
    ),
    "time_trialist": (
        "Excels at sustained high power",
        ["Time trials", "Long climbs", "Solo breakaways"],
        ["Sprint finishes", "Punchy races", "Short attacks"],
    ),
    "pursuiter": (
        "Strong in 1-5 minute efforts",
        ["VO2max intervals", "Medium climbs", "Criteriums"],
        ["Pure sprints", "Very long TTs"],
    ),
    "all_rounder": (
        "Balanced power across all durations",
        ["Versatility", "Stage races", "Varied terrain"],
        ["No standout specialty"],
    ),
}

# ==============================================================================
# FORECAST
# ==============================================================================

SAFE_RAMP_PER_WEEK = 6.0
DANGER_RAMP_PER_WEEK = 8.0
RECOVERY_WEEK_EVERY = 4
RECOVERY_WEEK_FACTOR = 0.65
RAMP_REALISATION = 0.8
DEFAULT_DECAY_DAYS = 28
MIN_TAPER_DAYS = 7
DEFAULT_TARGET_BALANCE = 15.0

# (max days remaining, fraction of current long-run load), checked in order
TAPER_BANDS = [
    (3, 0.3),
    (7, 0.5),
    (14, 0.7),
]
