from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone, tzinfo

from absensi.models import AttendanceStatus, LeaveKind
from absensi.services.collaborators import ClockEvent, LeaveEntry, WorkWindow

_LEAVE_STATUS = {
    LeaveKind.IZIN: AttendanceStatus.IZIN,
    LeaveKind.CUTI: AttendanceStatus.CUTI,
}


@dataclass(frozen=True)
class ClassifiedRecord:
    employee_id: int
    day_date: date
    status: AttendanceStatus
    worked_minutes: int | None = None
    clock_in: datetime | None = None
    clock_out: datetime | None = None
    is_working_day: bool = True
    is_late: bool = False
    is_early_leave: bool = False
    late_minutes: int = 0
    early_leave_minutes: int = 0
    # Source event, kept so listings can show address, photo and notes.
    clock_event: ClockEvent | None = None


def to_local_minute(ts: datetime, tz: tzinfo) -> datetime:
    """Branch-local wall clock time truncated to the minute, without tzinfo."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(tz).replace(tzinfo=None, second=0, microsecond=0)


def _minutes_between(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() // 60)


def window_bounds(day_date: date, window: WorkWindow) -> tuple[datetime, datetime]:
    start = datetime.combine(day_date, window.start)
    end_day = day_date + timedelta(days=1) if window.crosses_midnight else day_date
    return start, datetime.combine(end_day, window.end)


def classify(
    clock_event: ClockEvent | None,
    window: WorkWindow | None,
    late_tolerance_minutes: int,
    leave: LeaveEntry | None,
    is_today: bool,
    *,
    employee_id: int,
    day_date: date,
    tz: tzinfo = timezone.utc,
) -> ClassifiedRecord:
    """Assign exactly one attendance status to one employee on one date.

    Decision order, first match wins: approved leave, non-working day,
    missing clock-in, then lateness and early departure. When an employee is
    both late and leaves early the record is reported as ``pulang_cepat``;
    ``is_late`` and ``is_early_leave`` keep both conditions for statistics.
    """
    clock_in = clock_event.clock_in if clock_event is not None else None
    clock_out = clock_event.clock_out if clock_event is not None else None
    local_in = to_local_minute(clock_in, tz) if clock_in is not None else None
    local_out = to_local_minute(clock_out, tz) if clock_out is not None else None

    worked_minutes: int | None = None
    if local_in is not None and local_out is not None:
        worked_minutes = max(0, _minutes_between(local_in, local_out))

    is_working_day = window is not None

    if leave is not None:
        return ClassifiedRecord(
            employee_id=employee_id,
            day_date=day_date,
            status=_LEAVE_STATUS[LeaveKind(leave.kind)],
            worked_minutes=None,
            clock_in=local_in,
            clock_out=local_out,
            is_working_day=is_working_day,
            clock_event=clock_event,
        )

    if window is None:
        return ClassifiedRecord(
            employee_id=employee_id,
            day_date=day_date,
            status=AttendanceStatus.NON_WORKING,
            worked_minutes=worked_minutes,
            clock_in=local_in,
            clock_out=local_out,
            is_working_day=False,
            clock_event=clock_event,
        )

    if local_in is None:
        return ClassifiedRecord(
            employee_id=employee_id,
            day_date=day_date,
            status=AttendanceStatus.BELUM_ABSEN if is_today else AttendanceStatus.TIDAK_HADIR,
            worked_minutes=None,
            clock_in=None,
            clock_out=local_out,
            clock_event=clock_event,
        )

    window_start, window_end = window_bounds(day_date, window)
    minutes_after_start = max(0, _minutes_between(window_start, local_in))
    is_late = minutes_after_start > max(0, late_tolerance_minutes)
    # Minutes inside the tolerance are not reported as lateness.
    late_minutes = minutes_after_start if is_late else 0

    early_leave_minutes = 0
    is_early_leave = False
    if local_out is not None and local_out < window_end:
        is_early_leave = True
        early_leave_minutes = _minutes_between(local_out, window_end)

    if is_early_leave:
        status = AttendanceStatus.PULANG_CEPAT
    elif is_late:
        status = AttendanceStatus.TELAT
    else:
        status = AttendanceStatus.HADIR

    return ClassifiedRecord(
        employee_id=employee_id,
        day_date=day_date,
        status=status,
        worked_minutes=worked_minutes,
        clock_in=local_in,
        clock_out=local_out,
        is_late=is_late,
        is_early_leave=is_early_leave,
        late_minutes=late_minutes,
        early_leave_minutes=early_leave_minutes,
        clock_event=clock_event,
    )


def format_duration(minutes: int | None) -> str | None:
    if minutes is None:
        return None
    hours, remainder = divmod(max(0, minutes), 60)
    return f"{hours:02d}:{remainder:02d}"
