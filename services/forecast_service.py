"""Copyright (C) 2025 Pierre Marrec
SPDX-License-Identifier: GPL-3.0-or-later

Forward projections of the fitness/fatigue ledger.

Projections apply the same daily recurrence as the ledger to hypothetical
stress inputs (planned weeks, rest, overrides, taper) starting from the
latest stored entry. Nothing here writes to storage.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from streamlit.logger import get_logger

from persistence.csv_storage import CsvStorage
from persistence.repositories import PlannedWeeksRepo
from services.ledger_service import LedgerService, advance_loads
from utils.coercion import safe_float, safe_str
from utils.config import Config, config_for_dir
from utils.constants import (
    DANGER_RAMP_PER_WEEK,
    DEFAULT_DECAY_DAYS,
    DEFAULT_TARGET_BALANCE,
    MIN_TAPER_DAYS,
    RAMP_REALISATION,
    RECOVERY_WEEK_EVERY,
    RECOVERY_WEEK_FACTOR,
    SAFE_RAMP_PER_WEEK,
    TAPER_BANDS,
)
from utils.time import to_date, today_local

logger = get_logger(__name__)


class TaperWindowError(ValueError):
    """Race is too close for a taper plan."""


@dataclass
class LoadState:
    long_run_load: float
    short_run_load: float
    date: Optional[dt.date] = None

    @property
    def balance(self) -> float:
        return self.long_run_load - self.short_run_load


@dataclass
class ForecastPoint:
    date: dt.date
    projected_long_run_load: float
    projected_short_run_load: float
    projected_balance: float
    source: str  # planned | estimated | decay

    def to_dict(self) -> Dict[str, object]:
        return {
            "date": self.date.isoformat(),
            "projectedLongRunLoad": round(self.projected_long_run_load, 1),
            "projectedShortRunLoad": round(self.projected_short_run_load, 1),
            "projectedBalance": round(self.projected_balance, 1),
            "source": self.source,
        }


@dataclass
class PlannedWeek:
    week_start: dt.date
    target_stress: float
    week_type: str = "build"


@dataclass
class RequiredLoadResult:
    weekly_stress: List[float]
    average_ramp_rate: float
    achievable: bool
    warnings: List[str] = field(default_factory=list)


@dataclass
class TaperDay:
    date: dt.date
    suggested_stress: float


@dataclass
class TaperPlan:
    days: List[TaperDay]
    projected_long_run_load: float
    projected_short_run_load: float
    projected_balance_on_race_day: float
    target_balance: float

    @property
    def meets_target(self) -> bool:
        return self.projected_balance_on_race_day >= self.target_balance


def taper_fraction(days_remaining: int) -> float:
    for max_days, fraction in TAPER_BANDS:
        if days_remaining <= max_days:
            return fraction
    return 1.0


@dataclass
class ForecastService:
    storage: CsvStorage
    config: Optional[Config] = None
    clock: Callable[[], dt.date] = field(default=today_local)

    def __post_init__(self) -> None:
        if self.config is None:
            self.config = config_for_dir(self.storage.base_dir)
        self.planned_weeks = PlannedWeeksRepo(self.storage)
        self.ledger = LedgerService(self.storage, self.config, self.clock)

    # ------------------------------------------------------------------
    # Pure projections
    def project_planned(
        self,
        current_long_run_load: float,
        current_short_run_load: float,
        planned_weeks: Sequence[PlannedWeek],
        start_after: Optional[dt.date] = None,
    ) -> List[ForecastPoint]:
        """Spread each week's target evenly over its 7 days.

        Days on or before ``start_after`` are skipped so a projection can
        begin in the middle of a planned week.
        """
        long_load, short_load = current_long_run_load, current_short_run_load
        points: List[ForecastPoint] = []
        for week in sorted(planned_weeks, key=lambda w: w.week_start):
            daily = week.target_stress / 7.0
            for offset in range(7):
                day = week.week_start + dt.timedelta(days=offset)
                if start_after is not None and day <= start_after:
                    continue
                long_load, short_load, balance = advance_loads(long_load, short_load, daily)
                points.append(ForecastPoint(day, long_load, short_load, balance, "planned"))
        return points

    def project_decay(
        self,
        current_long_run_load: float,
        current_short_run_load: float,
        days: int,
        start: Optional[dt.date] = None,
    ) -> List[ForecastPoint]:
        """Project complete rest for ``days`` days after ``start`` (default today)."""
        start = start or self.clock()
        long_load, short_load = current_long_run_load, current_short_run_load
        points: List[ForecastPoint] = []
        for offset in range(1, days + 1):
            long_load, short_load, balance = advance_loads(long_load, short_load, 0.0)
            points.append(
                ForecastPoint(start + dt.timedelta(days=offset), long_load, short_load, balance, "decay")
            )
        return points

    def project_with_overrides(
        self,
        state: LoadState,
        overrides: Dict[dt.date, float],
        days_ahead: int = 30,
    ) -> List[ForecastPoint]:
        """Overrides where given; elsewhere assume the current long-run load is held."""
        start = self.clock()
        maintain = state.long_run_load
        long_load, short_load = state.long_run_load, state.short_run_load
        points: List[ForecastPoint] = []
        for offset in range(1, days_ahead + 1):
            day = start + dt.timedelta(days=offset)
            if day in overrides:
                stress, source = overrides[day], "planned"
            else:
                stress, source = maintain, "estimated"
            long_load, short_load, balance = advance_loads(long_load, short_load, stress)
            points.append(ForecastPoint(day, long_load, short_load, balance, source))
        return points

    @staticmethod
    def required_weekly_load(
        current_long_run_load: float, target_long_run_load: float, weeks_to_target: int
    ) -> RequiredLoadResult:
        """Weekly stress needed to ramp long-run load to a target.

        Build weeks aim for ``min(remaining gap / weeks left, 6)`` points of
        ramp and are assumed to realise 80% of it. Every 4th week is a
        recovery week at 65% of the build load it replaces.
        """
        if weeks_to_target <= 0:
            raise ValueError("weeks_to_target must be positive")
        gap = target_long_run_load - current_long_run_load
        average_ramp = gap / weeks_to_target
        warnings: List[str] = []
        if average_ramp > SAFE_RAMP_PER_WEEK:
            warnings.append(
                f"Required ramp rate ({average_ramp:.1f}/week) exceeds the recommended "
                f"maximum ({SAFE_RAMP_PER_WEEK:g}/week)"
            )
        if average_ramp > DANGER_RAMP_PER_WEEK:
            warnings.append("High injury risk at this ramp rate. Consider extending your timeline.")

        weekly: List[float] = []
        projected = current_long_run_load
        for week in range(weeks_to_target):
            weeks_remaining = weeks_to_target - week
            ramp = min((target_long_run_load - projected) / weeks_remaining, SAFE_RAMP_PER_WEEK)
            build_load = (projected + ramp) * 7.0
            if (week + 1) % RECOVERY_WEEK_EVERY == 0:
                weekly.append(float(round(build_load * RECOVERY_WEEK_FACTOR)))
                continue
            weekly.append(float(round(build_load)))
            projected += ramp * RAMP_REALISATION
        return RequiredLoadResult(
            weekly_stress=weekly,
            average_ramp_rate=round(average_ramp, 1),
            achievable=average_ramp <= SAFE_RAMP_PER_WEEK,
            warnings=warnings,
        )

    def simulate_taper(
        self,
        state: LoadState,
        race_date: dt.date,
        target_balance: float = DEFAULT_TARGET_BALANCE,
    ) -> TaperPlan:
        today = self.clock()
        days_to_race = (race_date - today).days
        if days_to_race < MIN_TAPER_DAYS:
            raise TaperWindowError(
                f"Need at least {MIN_TAPER_DAYS} days to race for taper planning, got {days_to_race}"
            )
        long_load, short_load = state.long_run_load, state.short_run_load
        days: List[TaperDay] = []
        for offset in range(1, days_to_race + 1):
            stress = state.long_run_load * taper_fraction(days_to_race - offset)
            days.append(TaperDay(today + dt.timedelta(days=offset), stress))
            long_load, short_load, _ = advance_loads(long_load, short_load, stress)
        return TaperPlan(
            days=days,
            projected_long_run_load=long_load,
            projected_short_run_load=short_load,
            projected_balance_on_race_day=long_load - short_load,
            target_balance=target_balance,
        )

    # ------------------------------------------------------------------
    # Ledger-backed helpers
    def current_state(self, athlete_id: str) -> Optional[LoadState]:
        latest = self.ledger.latest_entry(athlete_id)
        if latest is None:
            return None
        return LoadState(latest.long_run_load, latest.short_run_load, latest.date)

    def load_planned_weeks(self, athlete_id: str) -> List[PlannedWeek]:
        weeks = []
        for row in self.planned_weeks.list(athleteId=athlete_id).to_dict("records"):
            start = to_date(row.get("weekStart"))
            if start is None:
                logger.warning("Skipping planned week without start date: %s", row.get("planWeekId"))
                continue
            weeks.append(
                PlannedWeek(
                    week_start=start,
                    target_stress=safe_float(row.get("targetStress")),
                    week_type=safe_str(row.get("weekType")) or "build",
                )
            )
        return sorted(weeks, key=lambda w: w.week_start)

    def forecast_from_plan(self, athlete_id: str) -> List[ForecastPoint]:
        """Project the stored plan from the ledger tail, or 28 days of rest."""
        state = self.current_state(athlete_id)
        if state is None:
            return []
        upcoming = [
            w
            for w in self.load_planned_weeks(athlete_id)
            if w.week_start + dt.timedelta(days=6) > state.date
        ]
        if not upcoming:
            return self.project_decay(
                state.long_run_load, state.short_run_load, DEFAULT_DECAY_DAYS, start=state.date
            )
        return self.project_planned(
            state.long_run_load, state.short_run_load, upcoming, start_after=state.date
        )
