"""Value types and interfaces of the systems the attendance engine reads from.

The engine never talks to storage directly: clock events, leave approvals,
the branch/employee directory, schedule configuration and the holiday
calendar all arrive through the protocols below. Every call that leaves the
process goes through :func:`call_with_timeout` so a slow collaborator fails
with ``UpstreamTimeout`` instead of hanging the request.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Callable, Protocol, Sequence, TypeVar

from absensi.errors import UpstreamTimeout
from absensi.models import LeaveKind

logger = logging.getLogger("absensi.collaborators")

T = TypeVar("T")

WEEKDAY_KEYS: tuple[str, ...] = ("senin", "selasa", "rabu", "kamis", "jumat", "sabtu", "minggu")


@dataclass(frozen=True)
class DateRange:
    start: date
    end: date

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError("end must not be before start")

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1


@dataclass(frozen=True)
class WorkWindow:
    start: time
    end: time

    @property
    def crosses_midnight(self) -> bool:
        return self.end <= self.start


@dataclass(frozen=True)
class ScheduleConfig:
    branch_id: int
    # Monday=0 .. Sunday=6; None is a day off.
    weekly: tuple[WorkWindow | None, ...]
    late_tolerance_minutes: int = 0

    def __post_init__(self) -> None:
        if len(self.weekly) != 7:
            raise ValueError("weekly schedule needs exactly 7 entries")
        if self.late_tolerance_minutes < 0:
            raise ValueError("late_tolerance_minutes must be >= 0")

    @classmethod
    def from_jam_kerja(
        cls,
        branch_id: int,
        jam_kerja: dict[str, dict[str, str] | None],
        late_tolerance_minutes: int,
    ) -> ScheduleConfig:
        """Build from the ``{"senin": {"mulai": "08:00", "selesai": "17:00"}, ...}`` shape."""
        weekly: list[WorkWindow | None] = []
        for key in WEEKDAY_KEYS:
            entry = jam_kerja.get(key)
            if not entry:
                weekly.append(None)
                continue
            weekly.append(
                WorkWindow(
                    start=time.fromisoformat(entry["mulai"]),
                    end=time.fromisoformat(entry["selesai"]),
                )
            )
        return cls(branch_id=branch_id, weekly=tuple(weekly), late_tolerance_minutes=late_tolerance_minutes)


@dataclass(frozen=True)
class ClockEvent:
    employee_id: int
    day_date: date
    clock_in: datetime | None = None
    clock_out: datetime | None = None
    clock_in_address: str | None = None
    clock_in_distance: float | None = None
    clock_in_photo: str | None = None
    clock_out_address: str | None = None
    clock_out_distance: float | None = None
    clock_out_photo: str | None = None
    keterangan: str | None = None
    nama_kantor: str | None = None


@dataclass(frozen=True)
class LeaveEntry:
    employee_id: int
    day_date: date
    kind: LeaveKind


@dataclass(frozen=True)
class HolidayEntry:
    day_date: date
    name: str


@dataclass(frozen=True)
class BranchSummary:
    id: int
    name: str
    timezone: str | None = None


@dataclass(frozen=True)
class EmployeeInfo:
    id: int
    nik: str
    full_name: str
    branch_id: int
    position: str | None = None
    divisi: str | None = None
    departemen: str | None = None


class ClockEventSource(Protocol):
    def get_clock_events(self, branch_id: int, date_range: DateRange) -> Sequence[ClockEvent]: ...


class LeaveSource(Protocol):
    def get_leave_records(self, branch_id: int, date_range: DateRange) -> Sequence[LeaveEntry]: ...


class BranchDirectory(Protocol):
    def list_branches(self) -> Sequence[BranchSummary]: ...

    def get_branch(self, branch_id: int) -> BranchSummary | None: ...

    def list_employees(self, branch_id: int) -> Sequence[EmployeeInfo]: ...


class ScheduleConfigSource(Protocol):
    def get_schedule_config(self, branch_id: int) -> ScheduleConfig | None: ...


class HolidaySource(Protocol):
    def get_holidays(self, year: int, country_code: str) -> Sequence[HolidayEntry]: ...


@dataclass(frozen=True)
class AttendanceSources:
    clock_events: ClockEventSource
    leaves: LeaveSource
    directory: BranchDirectory
    schedules: ScheduleConfigSource
    holidays: HolidaySource
    country_code: str = "ID"


def call_with_timeout(source: str, fn: Callable[[], T], timeout_seconds: float) -> T:
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"upstream-{source}")
    future = executor.submit(fn)
    try:
        return future.result(timeout=timeout_seconds)
    except FutureTimeoutError as exc:
        future.cancel()
        logger.warning(
            "upstream_timeout",
            extra={"source": source, "timeout_seconds": timeout_seconds},
        )
        raise UpstreamTimeout(source, timeout_seconds) from exc
    finally:
        executor.shutdown(wait=False)
