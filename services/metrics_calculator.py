"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later

Per-activity metric formulas: normalized effort, intensity factor, stress
scores, efficiency factor, aerobic decoupling and sliding-window peaks.

Every function here is pure. Missing data (zero thresholds, short or empty
streams) degrades to ``0.0`` or ``None``; nothing raises for it.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from utils.constants import (
    DECOUPLING_MIN_SAMPLES,
    HR_STRESS_B,
    HR_STRESS_K,
    HR_STRESS_MAX_PER_HOUR,
    HR_STRESS_SCALE,
    NORMALIZED_WINDOW_SAMPLES,
)


def _as_array(values: Iterable[float] | pd.Series | np.ndarray) -> np.ndarray:
    """Float array with missing samples counted as zero output."""
    series = values if isinstance(values, pd.Series) else pd.Series(list(values), dtype="object")
    arr = pd.to_numeric(series, errors="coerce").to_numpy(dtype=float)
    return np.nan_to_num(arr, nan=0.0)


def _window_means(arr: np.ndarray, width: int) -> np.ndarray:
    """Means of every full window of ``width`` samples, via a running sum."""
    csum = np.concatenate(([0.0], np.cumsum(arr)))
    return (csum[width:] - csum[:-width]) / float(width)


# ------------------------------------------------------------------
# Effort and intensity
def normalized_effort(samples: Sequence[float] | pd.Series | np.ndarray) -> float:
    """Quartic mean of the 30-sample rolling average (NP for power streams).

    Samples are assumed to be 1 Hz. Streams shorter than the window return
    their plain mean.
    """
    arr = _as_array(samples)
    if arr.size == 0:
        return 0.0
    if arr.size < NORMALIZED_WINDOW_SAMPLES:
        return float(arr.mean())
    rolling = _window_means(arr, NORMALIZED_WINDOW_SAMPLES)
    return float(np.mean(rolling**4) ** 0.25)


def intensity_factor(effort: float, threshold: float) -> float:
    if not threshold or threshold <= 0:
        return 0.0
    return float(effort) / float(threshold)


def variability_index(normalized: float, average: float) -> float:
    if not average or average <= 0:
        return 0.0
    return float(normalized) / float(average)


def run_intensity_factor(avg_speed_m_s: Optional[float], threshold_pace_min_km: float) -> float:
    """Threshold pace over actual pace, both in minutes per km."""
    if not avg_speed_m_s or avg_speed_m_s <= 0 or threshold_pace_min_km <= 0:
        return 0.0
    avg_pace_min_km = 1000.0 / avg_speed_m_s / 60.0
    return threshold_pace_min_km / avg_pace_min_km


def swim_intensity_factor(avg_speed_m_s: Optional[float], css_m_s: float) -> float:
    if not avg_speed_m_s or avg_speed_m_s <= 0:
        return 0.0
    return intensity_factor(avg_speed_m_s, css_m_s)


# ------------------------------------------------------------------
# Stress scores
def bike_stress_score(duration_sec: float, normalized: float, ftp: float) -> float:
    if not ftp or ftp <= 0:
        return 0.0
    factor = normalized / ftp
    return (duration_sec * normalized * factor) / (ftp * 3600.0) * 100.0


def run_stress_score(duration_sec: float, factor: float) -> float:
    return (duration_sec / 3600.0) * factor**2 * 100.0


def swim_stress_score(duration_sec: float, factor: float) -> float:
    return run_stress_score(duration_sec, factor)


def heart_rate_stress_score(duration_sec: float, avg_hr: float, threshold_hr: float) -> float:
    """Exponential HR model, capped at 150 points per hour."""
    if not threshold_hr or threshold_hr <= 0 or not avg_hr or avg_hr <= 0:
        return 0.0
    hours = duration_sec / 3600.0
    ratio = avg_hr / threshold_hr
    score = hours * HR_STRESS_K * math.exp(HR_STRESS_B * ratio) * HR_STRESS_SCALE
    return min(score, hours * HR_STRESS_MAX_PER_HOUR)


@dataclass
class StressResult:
    stress: float
    intensity_factor: Optional[float]
    source: str


def stress_for_activity(
    sport: str,
    duration_sec: float,
    *,
    ftp: float = 0.0,
    threshold_pace_min_km: float = 0.0,
    css_m_s: float = 0.0,
    lthr: float = 0.0,
    normalized_power: Optional[float] = None,
    avg_power: Optional[float] = None,
    avg_speed: Optional[float] = None,
    avg_hr: Optional[float] = None,
) -> StressResult:
    """Pick the stress model for a sport, falling back to heart rate.

    BIKE uses normalized power (or average power) against FTP, RUN uses pace
    against threshold pace and SWIM uses speed against critical swim speed.
    When the sport-specific model has no inputs the HR model is used.
    """
    if duration_sec <= 0:
        return StressResult(0.0, None, "")

    if sport == "BIKE":
        effort = normalized_power or avg_power
        if effort and ftp > 0:
            return StressResult(
                bike_stress_score(duration_sec, effort, ftp), intensity_factor(effort, ftp), "power"
            )
    elif sport == "RUN":
        factor = run_intensity_factor(avg_speed, threshold_pace_min_km)
        if factor > 0:
            return StressResult(run_stress_score(duration_sec, factor), factor, "pace")
    elif sport == "SWIM":
        factor = swim_intensity_factor(avg_speed, css_m_s)
        if factor > 0:
            return StressResult(swim_stress_score(duration_sec, factor), factor, "swim")

    if avg_hr and lthr > 0:
        return StressResult(heart_rate_stress_score(duration_sec, avg_hr, lthr), None, "hr")
    return StressResult(0.0, None, "")


# ------------------------------------------------------------------
# Efficiency
def efficiency_factor(output: float, avg_hr: float, sport: str) -> float:
    """Output per heartbeat: watts/bpm on the bike, (m/min)/bpm otherwise."""
    if not avg_hr or avg_hr <= 0:
        return 0.0
    if sport == "BIKE":
        return float(output) / float(avg_hr)
    return (float(output) * 60.0) / float(avg_hr)


def _output_series(samples: pd.DataFrame) -> pd.Series:
    power = pd.to_numeric(samples.get("power"), errors="coerce") if "power" in samples else None
    speed = pd.to_numeric(samples.get("speed"), errors="coerce") if "speed" in samples else None
    if power is None and speed is None:
        return pd.Series(np.nan, index=samples.index)
    if power is None:
        return speed.where(speed > 0)
    power = power.where(power > 0)
    if speed is None:
        return power
    return power.fillna(speed.where(speed > 0))


def _half_efficiency(hr: pd.Series, output: pd.Series) -> Optional[float]:
    usable = hr.notna() & (hr > 0) & output.notna()
    if not usable.any():
        return None
    avg_hr = float(hr[usable].mean())
    if avg_hr <= 0:
        return None
    return float(output[usable].mean()) / avg_hr


def decoupling(samples: pd.DataFrame) -> Optional[float]:
    """Percent drop of output:HR from the first half of the stream to the second.

    Args:
        samples: Stream with an ``hr`` column and ``power`` and/or ``speed``

    Returns:
        Optional[float]: ``100 * (EF_first - EF_second) / EF_first`` or None
        when fewer than 20 samples carry both HR and output, or when either
        half has no usable samples.
    """
    if samples is None or samples.empty or "hr" not in samples.columns:
        return None
    hr = pd.to_numeric(samples["hr"], errors="coerce").reset_index(drop=True)
    output = _output_series(samples).reset_index(drop=True)
    usable = hr.notna() & (hr > 0) & output.notna()
    if int(usable.sum()) < DECOUPLING_MIN_SAMPLES:
        return None

    midpoint = len(hr) // 2
    ef_first = _half_efficiency(hr.iloc[:midpoint], output.iloc[:midpoint])
    ef_second = _half_efficiency(hr.iloc[midpoint:], output.iloc[midpoint:])
    if not ef_first or ef_second is None:
        return None
    return 100.0 * (ef_first - ef_second) / ef_first


# ------------------------------------------------------------------
# Peaks
def peak_for_duration(
    values: Sequence[float] | pd.Series | np.ndarray, duration_samples: int
) -> float:
    """Best average over any window of ``duration_samples`` consecutive samples.

    O(n) per duration via a running sum. Returns 0 when the stream is shorter
    than the window.
    """
    width = int(duration_samples)
    arr = _as_array(values)
    if width <= 0 or arr.size < width:
        return 0.0
    return float(_window_means(arr, width).max())


def compute_peaks(
    values: Sequence[float] | pd.Series | np.ndarray, durations: Iterable[int]
) -> Dict[int, float]:
    arr = _as_array(values)
    peaks: Dict[int, float] = {}
    for duration in durations:
        peak = peak_for_duration(arr, duration)
        if peak > 0:
            peaks[int(duration)] = peak
    return peaks


def time_in_zones(
    values: Sequence[float] | pd.Series | np.ndarray, zones: List[Tuple[float, float]]
) -> List[int]:
    """Seconds spent in each ``[min, max)`` zone; samples of 0 are ignored."""
    arr = _as_array(values)
    arr = arr[arr > 0]
    counts = []
    for low, high in zones:
        counts.append(int(((arr >= low) & (arr < high)).sum()))
    return counts


def running_dynamics(samples: pd.DataFrame) -> Dict[str, Optional[float]]:
    def _mean(col: str) -> Optional[float]:
        if samples is None or col not in samples.columns:
            return None
        series = pd.to_numeric(samples[col], errors="coerce")
        series = series[series > 0]
        if series.empty:
            return None
        return float(series.mean())

    gct = _mean("gctMs")
    vo = _mean("voCm")
    stride = _mean("strideM")
    return {
        "avgGroundContactMs": round(gct) if gct is not None else None,
        "avgVerticalOscillationCm": round(vo, 1) if vo is not None else None,
        "avgStrideLengthM": round(stride, 2) if stride is not None else None,
    }
