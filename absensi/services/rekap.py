from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from math import ceil
from typing import Any, Callable, Literal, Sequence

from absensi.errors import InvalidSortDirection, InvalidSortField
from absensi.models import STATUS_ORDER, AttendanceStatus
from absensi.services.classifier import ClassifiedRecord, format_duration
from absensi.services.collaborators import ClockEvent, DateRange, EmployeeInfo

SortDirection = Literal["asc", "desc"]


@dataclass(frozen=True)
class RekapFilters:
    date_range: DateRange
    search: str | None = None
    status: AttendanceStatus | None = None
    flagged_only: bool = False
    divisi: str | None = None
    departemen: str | None = None
    position: str | None = None


@dataclass(frozen=True)
class RekapSort:
    field: str = "date"
    direction: SortDirection = "desc"


@dataclass(frozen=True)
class RekapRow:
    employee_id: int
    nik: str
    full_name: str
    position: str | None
    day_date: date
    status: AttendanceStatus
    clock_in: datetime | None
    clock_out: datetime | None
    worked_minutes: int | None
    duration: str | None
    is_late: bool
    is_early_leave: bool
    late_minutes: int
    early_leave_minutes: int
    divisi: str | None = None
    departemen: str | None = None
    clock_in_address: str | None = None
    clock_in_distance: float | None = None
    clock_in_photo: str | None = None
    clock_out_address: str | None = None
    clock_out_distance: float | None = None
    clock_out_photo: str | None = None
    keterangan: str | None = None
    nama_kantor: str | None = None


@dataclass(frozen=True)
class Pagination:
    page: int
    page_size: int
    total: int
    total_pages: int


@dataclass(frozen=True)
class RekapPage:
    rows: list[RekapRow]
    pagination: Pagination


_STATUS_RANK = {status: index for index, status in enumerate(STATUS_ORDER)}

SORT_KEYS: dict[str, Callable[[RekapRow], Any]] = {
    "nik": lambda row: row.nik.casefold(),
    "name": lambda row: row.full_name.casefold(),
    "date": lambda row: row.day_date,
    "duration": lambda row: row.worked_minutes,
    "status": lambda row: _STATUS_RANK[row.status],
    "clock_in": lambda row: row.clock_in,
}
SORT_FIELDS: tuple[str, ...] = tuple(SORT_KEYS)


def validate_sort(sort: RekapSort) -> None:
    if sort.field not in SORT_KEYS:
        raise InvalidSortField(sort.field, SORT_FIELDS)
    if sort.direction not in ("asc", "desc"):
        raise InvalidSortDirection(sort.direction)


def _to_row(record: ClassifiedRecord, employee: EmployeeInfo) -> RekapRow:
    event = record.clock_event or ClockEvent(employee_id=record.employee_id, day_date=record.day_date)
    return RekapRow(
        employee_id=employee.id,
        nik=employee.nik,
        full_name=employee.full_name,
        position=employee.position,
        day_date=record.day_date,
        status=record.status,
        clock_in=record.clock_in,
        clock_out=record.clock_out,
        worked_minutes=record.worked_minutes,
        duration=format_duration(record.worked_minutes),
        is_late=record.is_late,
        is_early_leave=record.is_early_leave,
        late_minutes=record.late_minutes,
        early_leave_minutes=record.early_leave_minutes,
        divisi=employee.divisi,
        departemen=employee.departemen,
        clock_in_address=event.clock_in_address,
        clock_in_distance=event.clock_in_distance,
        clock_in_photo=event.clock_in_photo,
        clock_out_address=event.clock_out_address,
        clock_out_distance=event.clock_out_distance,
        clock_out_photo=event.clock_out_photo,
        keterangan=event.keterangan,
        nama_kantor=event.nama_kantor,
    )


def _matches(row: RekapRow, filters: RekapFilters, needle: str | None) -> bool:
    if not (filters.date_range.start <= row.day_date <= filters.date_range.end):
        return False
    if filters.status is not None and row.status != filters.status:
        return False
    if filters.flagged_only and not (row.is_late or row.is_early_leave):
        return False
    if needle and needle not in row.full_name.casefold() and needle not in row.nik.casefold():
        return False
    for wanted, actual in (
        (filters.divisi, row.divisi),
        (filters.departemen, row.departemen),
        (filters.position, row.position),
    ):
        wanted = (wanted or "").strip().casefold()
        if wanted and (actual or "").casefold() != wanted:
            return False
    return True


def sort_rows(rows: list[RekapRow], sort: RekapSort) -> list[RekapRow]:
    validate_sort(sort)
    key = SORT_KEYS[sort.field]
    ordered = sorted(rows, key=lambda row: (row.day_date, row.nik, row.employee_id))
    # Rows without a value (no duration, no clock-in) trail in both directions.
    present = [row for row in ordered if key(row) is not None]
    missing = [row for row in ordered if key(row) is None]
    present.sort(key=key, reverse=sort.direction == "desc")
    return present + missing


def query_rekap(
    records: Sequence[ClassifiedRecord],
    employees: Sequence[EmployeeInfo],
    filters: RekapFilters,
    sort: RekapSort,
    *,
    page: int = 1,
    page_size: int = 25,
) -> RekapPage:
    """Filter, sort and paginate classified records for the rekap table.

    Pages are 1-indexed. ``total`` counts filtered rows before paging, and
    ``total_pages`` is at least 1. The export uses this same function with a
    large ``page_size`` so both always agree on filter semantics.
    """
    validate_sort(sort)
    page = max(1, page)
    page_size = max(1, page_size)
    needle = (filters.search or "").strip().casefold() or None

    employees_by_id = {employee.id: employee for employee in employees}
    rows = [
        row
        for row in (
            _to_row(record, employees_by_id[record.employee_id])
            for record in records
            if record.employee_id in employees_by_id
        )
        if _matches(row, filters, needle)
    ]
    rows = sort_rows(rows, sort)

    total = len(rows)
    offset = (page - 1) * page_size
    return RekapPage(
        rows=rows[offset : offset + page_size],
        pagination=Pagination(
            page=page,
            page_size=page_size,
            total=total,
            total_pages=max(1, ceil(total / page_size)),
        ),
    )
