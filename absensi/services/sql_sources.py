from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import date, timedelta
from typing import Sequence

from sqlalchemy import select, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, joinedload

from absensi.errors import UpstreamTimeout
from absensi.models import (
    Branch,
    BranchSchedule,
    ClockEventRecord,
    Employee,
    LeaveRecord,
    LeaveStatus,
)
from absensi.services.collaborators import (
    BranchSummary,
    ClockEvent,
    DateRange,
    EmployeeInfo,
    LeaveEntry,
    ScheduleConfig,
    WorkWindow,
)

logger = logging.getLogger("absensi.sql_sources")

SessionFactory = Callable[[], Session]

# PostgreSQL "query_canceled", raised when statement_timeout fires.
_QUERY_CANCELED = "57014"


class _SqlSource:
    """Base for the SQL adapters.

    Every call opens its own short-lived session, so a read abandoned by
    ``call_with_timeout`` never shares a connection with the request thread.
    On PostgreSQL the statement is also bounded server side with
    ``SET LOCAL statement_timeout``, which ends the query and frees the
    pooled connection once the budget is spent.
    """

    source_name = "database"

    def __init__(self, session_factory: SessionFactory, *, statement_timeout_seconds: float | None = None):
        self.session_factory = session_factory
        self.statement_timeout_seconds = statement_timeout_seconds

    @contextmanager
    def _session(self) -> Iterator[Session]:
        with self.session_factory() as db:
            timeout_ms = self._timeout_ms()
            if timeout_ms is not None and db.get_bind().dialect.name == "postgresql":
                db.execute(text(f"SET LOCAL statement_timeout = {timeout_ms}"))
            try:
                yield db
            except OperationalError as exc:
                if getattr(exc.orig, "sqlstate", None) != _QUERY_CANCELED:
                    raise
                logger.warning(
                    "statement_timeout",
                    extra={"source": self.source_name, "timeout_ms": timeout_ms},
                )
                raise UpstreamTimeout(self.source_name, self.statement_timeout_seconds or 0) from exc

    def _timeout_ms(self) -> int | None:
        if self.statement_timeout_seconds is None:
            return None
        return max(1, int(self.statement_timeout_seconds * 1000))


class SqlClockEventSource(_SqlSource):
    source_name = "clock_events"

    def get_clock_events(self, branch_id: int, date_range: DateRange) -> list[ClockEvent]:
        with self._session() as db:
            rows = db.scalars(
                select(ClockEventRecord)
                .options(joinedload(ClockEventRecord.location))
                .where(
                    ClockEventRecord.branch_id == branch_id,
                    ClockEventRecord.day_date >= date_range.start,
                    ClockEventRecord.day_date <= date_range.end,
                )
                .order_by(ClockEventRecord.day_date.asc(), ClockEventRecord.employee_id.asc())
            ).all()
            return [
                ClockEvent(
                    employee_id=row.employee_id,
                    day_date=row.day_date,
                    clock_in=row.clock_in_ts,
                    clock_out=row.clock_out_ts,
                    clock_in_address=row.clock_in_address,
                    clock_in_distance=row.clock_in_distance,
                    clock_in_photo=row.clock_in_photo,
                    clock_out_address=row.clock_out_address,
                    clock_out_distance=row.clock_out_distance,
                    clock_out_photo=row.clock_out_photo,
                    keterangan=row.keterangan,
                    nama_kantor=row.location.nama_kantor if row.location is not None else None,
                )
                for row in rows
            ]


class SqlLeaveSource(_SqlSource):
    source_name = "leave_records"

    def get_leave_records(self, branch_id: int, date_range: DateRange) -> list[LeaveEntry]:
        with self._session() as db:
            rows = db.scalars(
                select(LeaveRecord)
                .join(Employee, Employee.id == LeaveRecord.employee_id)
                .where(
                    Employee.branch_id == branch_id,
                    LeaveRecord.status == LeaveStatus.APPROVED,
                    LeaveRecord.start_date <= date_range.end,
                    LeaveRecord.end_date >= date_range.start,
                )
                .order_by(LeaveRecord.start_date.asc(), LeaveRecord.id.asc())
            ).all()

        # Expand each leave span into per-day entries; earliest approval wins on overlap.
        entries: dict[tuple[int, date], LeaveEntry] = {}
        for leave in rows:
            cursor = max(leave.start_date, date_range.start)
            last_day = min(leave.end_date, date_range.end)
            while cursor <= last_day:
                key = (leave.employee_id, cursor)
                if key not in entries:
                    entries[key] = LeaveEntry(employee_id=leave.employee_id, day_date=cursor, kind=leave.kind)
                cursor += timedelta(days=1)
        return list(entries.values())


class SqlBranchDirectory(_SqlSource):
    source_name = "branch_directory"

    @staticmethod
    def _to_summary(branch: Branch) -> BranchSummary:
        return BranchSummary(id=branch.id, name=branch.nama_cabang, timezone=branch.timezone)

    def list_branches(self) -> list[BranchSummary]:
        with self._session() as db:
            rows = db.scalars(
                select(Branch).where(Branch.status == "active").order_by(Branch.nama_cabang.asc(), Branch.id.asc())
            ).all()
            return [self._to_summary(branch) for branch in rows]

    def get_branch(self, branch_id: int) -> BranchSummary | None:
        with self._session() as db:
            branch = db.get(Branch, branch_id)
            if branch is None:
                return None
            return self._to_summary(branch)

    def list_employees(self, branch_id: int) -> Sequence[EmployeeInfo]:
        with self._session() as db:
            rows = db.scalars(
                select(Employee)
                .where(Employee.branch_id == branch_id, Employee.is_active.is_(True))
                .order_by(Employee.id.asc())
            ).all()
            return [
                EmployeeInfo(
                    id=employee.id,
                    nik=employee.nik,
                    full_name=employee.full_name,
                    branch_id=employee.branch_id,
                    position=employee.position,
                    divisi=employee.divisi,
                    departemen=employee.departemen,
                )
                for employee in rows
            ]


class SqlScheduleConfigSource(_SqlSource):
    source_name = "schedule_config"

    def get_schedule_config(self, branch_id: int) -> ScheduleConfig | None:
        with self._session() as db:
            # Header and weekday rows come from one statement so a concurrent
            # wholesale replace is never observed half-applied.
            schedule = (
                db.scalars(
                    select(BranchSchedule)
                    .options(joinedload(BranchSchedule.work_hours))
                    .where(BranchSchedule.branch_id == branch_id)
                )
                .unique()
                .first()
            )
            if schedule is None:
                return None

            weekly: list[WorkWindow | None] = [None] * 7
            for row in schedule.work_hours:
                if 0 <= row.weekday <= 6:
                    weekly[row.weekday] = WorkWindow(start=row.start_time_local, end=row.end_time_local)
            return ScheduleConfig(
                branch_id=branch_id,
                weekly=tuple(weekly),
                late_tolerance_minutes=max(0, schedule.late_tolerance_minutes),
            )
