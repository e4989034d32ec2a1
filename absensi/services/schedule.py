from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date

from absensi.errors import ConfigNotFound
from absensi.services.collaborators import (
    HolidayEntry,
    HolidaySource,
    ScheduleConfig,
    ScheduleConfigSource,
    WorkWindow,
    call_with_timeout,
)

logger = logging.getLogger("absensi.schedule")


@dataclass(frozen=True)
class ScheduleResolution:
    window: WorkWindow | None
    late_tolerance_minutes: int
    holiday_name: str | None = None

    @property
    def is_working_day(self) -> bool:
        return self.window is not None


class ScheduleResolver:
    """Resolves the work window of a branch on a date.

    One resolver lives for a single aggregation call: the schedule snapshot of
    each branch and the holiday calendar of each year are fetched once and
    reused for every date in the range.
    """

    def __init__(
        self,
        schedules: ScheduleConfigSource,
        holidays: HolidaySource,
        *,
        country_code: str = "ID",
        timeout_seconds: float = 10.0,
    ):
        self._schedules = schedules
        self._holidays = holidays
        self._country_code = country_code
        self._timeout_seconds = timeout_seconds
        self._configs: dict[int, ScheduleConfig] = {}
        self._holidays_by_year: dict[int, dict[date, str]] = {}

    def config_for(self, branch_id: int) -> ScheduleConfig:
        config = self._configs.get(branch_id)
        if config is None:
            config = call_with_timeout(
                "schedule_config",
                lambda: self._schedules.get_schedule_config(branch_id),
                self._timeout_seconds,
            )
            if config is None:
                raise ConfigNotFound(branch_id)
            self._configs[branch_id] = config
        return config

    def holidays_for(self, year: int) -> dict[date, str]:
        calendar = self._holidays_by_year.get(year)
        if calendar is None:
            entries: list[HolidayEntry] = list(
                call_with_timeout(
                    "holiday_calendar",
                    lambda: self._holidays.get_holidays(year, self._country_code),
                    self._timeout_seconds,
                )
            )
            calendar = {entry.day_date: entry.name for entry in entries}
            self._holidays_by_year[year] = calendar
        return calendar

    def resolve(self, branch_id: int, day_date: date) -> ScheduleResolution:
        # ConfigNotFound must surface even on holidays.
        config = self.config_for(branch_id)
        holiday_name = self.holidays_for(day_date.year).get(day_date)
        if holiday_name is not None:
            return ScheduleResolution(
                window=None,
                late_tolerance_minutes=config.late_tolerance_minutes,
                holiday_name=holiday_name,
            )
        return ScheduleResolution(
            window=config.weekly[day_date.weekday()],
            late_tolerance_minutes=config.late_tolerance_minutes,
        )
