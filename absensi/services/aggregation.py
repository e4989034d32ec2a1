from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Literal, Sequence

from absensi.errors import AggregationCancelled
from absensi.models import PRESENT_STATUSES, STATUS_ORDER, AttendanceStatus
from absensi.services.classifier import ClassifiedRecord
from absensi.services.collaborators import DateRange, EmployeeInfo

Granularity = Literal["day", "month"]

# Statuses that count toward totals and percentages; non-working days are tallied apart.
COUNTED_STATUSES: tuple[AttendanceStatus, ...] = tuple(
    status for status in STATUS_ORDER if status != AttendanceStatus.NON_WORKING
)


def _empty_counts() -> dict[AttendanceStatus, int]:
    return {status: 0 for status in STATUS_ORDER}


@dataclass(frozen=True)
class AggregateBucket:
    key: str
    counts: dict[AttendanceStatus, int]
    total: int
    late_flagged: int = 0
    early_leave_flagged: int = 0

    @property
    def non_working(self) -> int:
        return self.counts[AttendanceStatus.NON_WORKING]


@dataclass(frozen=True)
class DistributionItem:
    status: AttendanceStatus
    count: int
    percentage: float


@dataclass(frozen=True)
class Distribution:
    items: list[DistributionItem]
    total: int
    non_working: int
    late_flagged: int
    early_leave_flagged: int


@dataclass(frozen=True)
class EmployeeRollup:
    employee_id: int
    nik: str
    full_name: str
    position: str | None
    counts: dict[AttendanceStatus, int]
    total: int
    working_days: int
    attendance_percentage: float
    late_flagged: int = 0
    early_leave_flagged: int = 0
    worked_minutes_total: int = 0


@dataclass(frozen=True)
class StatisticsSummary:
    employee_count: int
    record_count: int
    totals: dict[AttendanceStatus, int]
    average_attendance_percentage: float
    average_worked_minutes: int | None


@dataclass(frozen=True)
class AggregationResult:
    granularity: Granularity
    date_range: DateRange
    trend: list[AggregateBucket]
    distribution: Distribution
    employee_rollups: list[EmployeeRollup]
    summary: StatisticsSummary


@dataclass(frozen=True)
class TodaySummary:
    day_date: date
    is_working_day: bool
    total_employees: int
    clocked_in: int
    counts: dict[AttendanceStatus, int] = field(default_factory=_empty_counts)
    attendance_percentage: float = 0.0

    @property
    def belum_absen(self) -> int:
        return self.counts[AttendanceStatus.BELUM_ABSEN]


def raise_if_cancelled(cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise AggregationCancelled()


def round_percentage(numerator: int, denominator: int) -> float:
    if denominator <= 0:
        return 0.0
    value = Decimal(numerator) * Decimal(100) / Decimal(denominator)
    return float(value.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def bucket_key(day_date: date, granularity: Granularity) -> str:
    if granularity == "month":
        return f"{day_date.year:04d}-{day_date.month:02d}"
    return day_date.isoformat()


def enumerate_bucket_keys(date_range: DateRange, granularity: Granularity) -> list[str]:
    keys: list[str] = []
    if granularity == "month":
        year, month = date_range.start.year, date_range.start.month
        while (year, month) <= (date_range.end.year, date_range.end.month):
            keys.append(f"{year:04d}-{month:02d}")
            month += 1
            if month > 12:
                year, month = year + 1, 1
        return keys

    cursor = date_range.start
    while cursor <= date_range.end:
        keys.append(cursor.isoformat())
        cursor += timedelta(days=1)
    return keys


def build_trend(
    records: Iterable[ClassifiedRecord],
    *,
    granularity: Granularity,
    date_range: DateRange,
    cancel: threading.Event | None = None,
) -> list[AggregateBucket]:
    grouped: dict[str, list[ClassifiedRecord]] = defaultdict(list)
    for record in records:
        if date_range.start <= record.day_date <= date_range.end:
            grouped[bucket_key(record.day_date, granularity)].append(record)

    buckets: list[AggregateBucket] = []
    for key in enumerate_bucket_keys(date_range, granularity):
        raise_if_cancelled(cancel)
        counts = _empty_counts()
        late_flagged = 0
        early_leave_flagged = 0
        for record in grouped.get(key, ()):
            counts[record.status] += 1
            late_flagged += int(record.is_late)
            early_leave_flagged += int(record.is_early_leave)
        buckets.append(
            AggregateBucket(
                key=key,
                counts=counts,
                total=sum(counts[status] for status in COUNTED_STATUSES),
                late_flagged=late_flagged,
                early_leave_flagged=early_leave_flagged,
            )
        )
    return buckets


def _largest_remainder_tenths(counts: dict[AttendanceStatus, int], total: int) -> dict[AttendanceStatus, int]:
    # Percentages in tenths of a percent that always add up to exactly 1000.
    floors: dict[AttendanceStatus, int] = {}
    remainders: list[tuple[int, int, AttendanceStatus]] = []
    for index, status in enumerate(COUNTED_STATUSES):
        scaled = counts[status] * 1000
        floors[status] = scaled // total
        remainders.append((-(scaled % total), index, status))
    deficit = 1000 - sum(floors.values())
    for _, _, status in sorted(remainders)[:deficit]:
        floors[status] += 1
    return floors


def build_distribution(records: Iterable[ClassifiedRecord]) -> Distribution:
    counts = _empty_counts()
    late_flagged = 0
    early_leave_flagged = 0
    for record in records:
        counts[record.status] += 1
        late_flagged += int(record.is_late)
        early_leave_flagged += int(record.is_early_leave)

    total = sum(counts[status] for status in COUNTED_STATUSES)
    if total > 0:
        tenths = _largest_remainder_tenths(counts, total)
    else:
        tenths = {status: 0 for status in COUNTED_STATUSES}

    items = [
        DistributionItem(status=status, count=counts[status], percentage=tenths[status] / 10)
        for status in COUNTED_STATUSES
    ]
    return Distribution(
        items=items,
        total=total,
        non_working=counts[AttendanceStatus.NON_WORKING],
        late_flagged=late_flagged,
        early_leave_flagged=early_leave_flagged,
    )


def build_employee_rollups(
    records: Iterable[ClassifiedRecord],
    employees: Sequence[EmployeeInfo],
    *,
    cancel: threading.Event | None = None,
) -> list[EmployeeRollup]:
    """Per-employee counts ranked by attendance percentage.

    The denominator is the employee's own working days, taken from the
    schedule of the employee's branch, so holidays and days off never count
    against anyone. Ties are ordered by employee id.
    """
    by_employee: dict[int, list[ClassifiedRecord]] = defaultdict(list)
    for record in records:
        by_employee[record.employee_id].append(record)

    rollups: list[EmployeeRollup] = []
    for employee in employees:
        raise_if_cancelled(cancel)
        counts = _empty_counts()
        working_days = 0
        late_flagged = 0
        early_leave_flagged = 0
        worked_minutes_total = 0
        for record in by_employee.get(employee.id, ()):
            counts[record.status] += 1
            working_days += int(record.is_working_day)
            late_flagged += int(record.is_late)
            early_leave_flagged += int(record.is_early_leave)
            worked_minutes_total += record.worked_minutes or 0

        present = sum(counts[status] for status in PRESENT_STATUSES)
        rollups.append(
            EmployeeRollup(
                employee_id=employee.id,
                nik=employee.nik,
                full_name=employee.full_name,
                position=employee.position,
                counts=counts,
                total=sum(counts[status] for status in COUNTED_STATUSES),
                working_days=working_days,
                attendance_percentage=min(100.0, round_percentage(present, working_days)),
                late_flagged=late_flagged,
                early_leave_flagged=early_leave_flagged,
                worked_minutes_total=worked_minutes_total,
            )
        )

    rollups.sort(key=lambda item: (-item.attendance_percentage, item.employee_id))
    return rollups


def top_rollups(rollups: Sequence[EmployeeRollup], top_n: int = 10) -> list[EmployeeRollup]:
    return list(rollups[: max(0, top_n)])


def build_summary(
    records: Sequence[ClassifiedRecord],
    distribution: Distribution,
    rollups: Sequence[EmployeeRollup],
) -> StatisticsSummary:
    totals = {item.status: item.count for item in distribution.items}
    durations = [
        record.worked_minutes
        for record in records
        if record.worked_minutes is not None and record.status in PRESENT_STATUSES
    ]
    average_worked_minutes = None
    if durations:
        average_worked_minutes = int(
            (Decimal(sum(durations)) / Decimal(len(durations))).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        )

    average_attendance = 0.0
    if rollups:
        mean = sum(Decimal(str(item.attendance_percentage)) for item in rollups) / Decimal(len(rollups))
        average_attendance = float(mean.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))

    return StatisticsSummary(
        employee_count=len(rollups),
        record_count=distribution.total,
        totals=totals,
        average_attendance_percentage=average_attendance,
        average_worked_minutes=average_worked_minutes,
    )


def aggregate(
    records: Sequence[ClassifiedRecord],
    granularity: Granularity,
    date_range: DateRange,
    employees: Sequence[EmployeeInfo],
    *,
    cancel: threading.Event | None = None,
) -> AggregationResult:
    in_range = [record for record in records if date_range.start <= record.day_date <= date_range.end]
    trend = build_trend(in_range, granularity=granularity, date_range=date_range, cancel=cancel)
    distribution = build_distribution(in_range)
    rollups = build_employee_rollups(in_range, employees, cancel=cancel)
    return AggregationResult(
        granularity=granularity,
        date_range=date_range,
        trend=trend,
        distribution=distribution,
        employee_rollups=rollups,
        summary=build_summary(in_range, distribution, rollups),
    )


def today_summary(
    records: Sequence[ClassifiedRecord],
    employees: Sequence[EmployeeInfo],
    today: date,
) -> TodaySummary:
    result = aggregate(records, "day", DateRange(today, today), employees)
    bucket = result.trend[0]
    todays = [record for record in records if record.day_date == today]
    working = sum(1 for record in todays if record.is_working_day)
    present = sum(bucket.counts[status] for status in PRESENT_STATUSES)
    return TodaySummary(
        day_date=today,
        is_working_day=working > 0,
        total_employees=len(employees),
        clocked_in=sum(1 for record in todays if record.clock_in is not None),
        counts=dict(bucket.counts),
        attendance_percentage=round_percentage(present, working),
    )
