from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from absensi.errors import InvalidDateRange
from absensi.models import AttendanceStatus
from absensi.services.aggregation import (
    AggregationResult,
    EmployeeRollup,
    Granularity,
    TodaySummary,
    aggregate,
    raise_if_cancelled,
    today_summary,
    top_rollups,
)
from absensi.services.classifier import ClassifiedRecord, classify
from absensi.services.collaborators import (
    AttendanceSources,
    BranchSummary,
    ClockEvent,
    DateRange,
    EmployeeInfo,
    LeaveEntry,
    call_with_timeout,
)
from absensi.services.rekap import RekapFilters, RekapPage, RekapSort, query_rekap, validate_sort
from absensi.services.schedule import ScheduleResolution, ScheduleResolver
from absensi.services.scope import NeedsSelection, TenantScope, require_branch
from absensi.settings import get_settings

logger = logging.getLogger("absensi.engine")


@dataclass(frozen=True)
class BranchDataset:
    branch: BranchSummary
    today: date
    date_range: DateRange
    employees: list[EmployeeInfo]
    records: list[ClassifiedRecord]


@dataclass(frozen=True)
class StatisticsView:
    branch: BranchSummary
    today: date
    result: AggregationResult
    top_employees: list[EmployeeRollup]


@dataclass(frozen=True)
class TodayView:
    branch: BranchSummary
    summary: TodaySummary


@dataclass(frozen=True)
class RekapView:
    branch: BranchSummary
    date_range: DateRange
    page: RekapPage


def branch_timezone(branch: BranchSummary) -> tzinfo:
    fallback = (get_settings().attendance_timezone or "").strip() or "Asia/Jakarta"
    for name in ((branch.timezone or "").strip(), fallback):
        if not name:
            continue
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("invalid_branch_timezone", extra={"branch_id": branch.id, "timezone": name})
    return ZoneInfo("Asia/Jakarta")


def local_today(branch: BranchSummary, now: datetime | None = None) -> date:
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(branch_timezone(branch)).date()


def resolve_date_range(
    start_date: date | None,
    end_date: date | None,
    *,
    today: date,
    default_days: int | None = None,
    max_days: int | None = None,
) -> DateRange:
    settings = get_settings()
    default_days = settings.default_range_days if default_days is None else default_days
    max_days = settings.max_range_days if max_days is None else max_days

    if (start_date is None) != (end_date is None):
        raise InvalidDateRange("start_date and end_date must be provided together.")
    if start_date is None or end_date is None:
        return DateRange(today - timedelta(days=max(0, default_days)), today)
    if end_date < start_date:
        raise InvalidDateRange("end_date must be greater than or equal to start_date.")
    if end_date > today:
        raise InvalidDateRange(f"end_date cannot be after the branch's current date ({today.isoformat()}).")
    date_range = DateRange(start_date, end_date)
    if date_range.days > max_days:
        raise InvalidDateRange(f"Date range cannot exceed {max_days} days.")
    return date_range


def _classify_employee(
    employee: EmployeeInfo,
    *,
    days: Sequence[date],
    resolutions: dict[date, ScheduleResolution],
    events: dict[tuple[int, date], ClockEvent],
    leaves: dict[tuple[int, date], LeaveEntry],
    today: date,
    tz: tzinfo,
    cancel: threading.Event | None,
) -> list[ClassifiedRecord]:
    records: list[ClassifiedRecord] = []
    for day_date in days:
        raise_if_cancelled(cancel)
        resolution = resolutions[day_date]
        records.append(
            classify(
                events.get((employee.id, day_date)),
                resolution.window,
                resolution.late_tolerance_minutes,
                leaves.get((employee.id, day_date)),
                day_date == today,
                employee_id=employee.id,
                day_date=day_date,
                tz=tz,
            )
        )
    return records


def classify_branch_range(
    sources: AttendanceSources,
    branch: BranchSummary,
    date_range: DateRange,
    *,
    today: date,
    timeout_seconds: float | None = None,
    workers: int | None = None,
    cancel: threading.Event | None = None,
) -> BranchDataset:
    """Classify every active employee of a branch on every date of the range.

    Produces exactly one record per (employee, date). Collaborator reads are
    bounded by ``timeout_seconds``; classification is scattered across a
    worker pool per employee and gathered back in directory order.
    """
    settings = get_settings()
    timeout_seconds = settings.upstream_timeout_seconds if timeout_seconds is None else timeout_seconds
    workers = max(1, settings.classification_workers if workers is None else workers)
    started = time.perf_counter()

    resolver = ScheduleResolver(
        sources.schedules,
        sources.holidays,
        country_code=sources.country_code,
        timeout_seconds=timeout_seconds,
    )
    resolver.config_for(branch.id)

    employees = list(
        call_with_timeout("branch_directory", lambda: sources.directory.list_employees(branch.id), timeout_seconds)
    )
    raw_events = call_with_timeout(
        "clock_events",
        lambda: sources.clock_events.get_clock_events(branch.id, date_range),
        timeout_seconds,
    )
    raw_leaves = call_with_timeout(
        "leave_records",
        lambda: sources.leaves.get_leave_records(branch.id, date_range),
        timeout_seconds,
    )

    days: list[date] = []
    resolutions: dict[date, ScheduleResolution] = {}
    cursor = date_range.start
    while cursor <= date_range.end:
        raise_if_cancelled(cancel)
        days.append(cursor)
        resolutions[cursor] = resolver.resolve(branch.id, cursor)
        cursor += timedelta(days=1)

    events = {(event.employee_id, event.day_date): event for event in raw_events}
    leaves = {(leave.employee_id, leave.day_date): leave for leave in raw_leaves}
    tz = branch_timezone(branch)

    records: list[ClassifiedRecord] = []
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="classify") as executor:
        futures = [
            executor.submit(
                _classify_employee,
                employee,
                days=days,
                resolutions=resolutions,
                events=events,
                leaves=leaves,
                today=today,
                tz=tz,
                cancel=cancel,
            )
            for employee in employees
        ]
        try:
            for future in futures:
                records.extend(future.result())
        except BaseException:
            for future in futures:
                future.cancel()
            raise

    logger.info(
        "branch_range_classified",
        extra={
            "branch_id": branch.id,
            "start_date": date_range.start.isoformat(),
            "end_date": date_range.end.isoformat(),
            "employees": len(employees),
            "records": len(records),
            "elapsed_ms": round((time.perf_counter() - started) * 1000, 2),
        },
    )
    return BranchDataset(
        branch=branch,
        today=today,
        date_range=date_range,
        employees=employees,
        records=records,
    )


def _gate(sources: AttendanceSources, scope: TenantScope, timeout_seconds: float | None) -> BranchSummary | NeedsSelection:
    settings = get_settings()
    timeout_seconds = settings.upstream_timeout_seconds if timeout_seconds is None else timeout_seconds
    return call_with_timeout("branch_directory", lambda: require_branch(scope, sources.directory), timeout_seconds)


def load_statistics(
    sources: AttendanceSources,
    scope: TenantScope,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
    granularity: Granularity = "day",
    top_n: int | None = None,
    timeout_seconds: float | None = None,
    cancel: threading.Event | None = None,
    now: datetime | None = None,
) -> StatisticsView | NeedsSelection:
    gate = _gate(sources, scope, timeout_seconds)
    if isinstance(gate, NeedsSelection):
        return gate

    today = local_today(gate, now)
    date_range = resolve_date_range(start_date, end_date, today=today)
    dataset = classify_branch_range(
        sources,
        gate,
        date_range,
        today=today,
        timeout_seconds=timeout_seconds,
        cancel=cancel,
    )
    result = aggregate(dataset.records, granularity, date_range, dataset.employees, cancel=cancel)
    top_n = get_settings().default_top_n if top_n is None else top_n
    logger.info(
        "statistics_computed",
        extra={
            "branch_id": gate.id,
            "granularity": granularity,
            "buckets": len(result.trend),
            "records": result.distribution.total,
        },
    )
    return StatisticsView(
        branch=gate,
        today=today,
        result=result,
        top_employees=top_rollups(result.employee_rollups, top_n),
    )


def load_today_summary(
    sources: AttendanceSources,
    scope: TenantScope,
    *,
    timeout_seconds: float | None = None,
    cancel: threading.Event | None = None,
    now: datetime | None = None,
) -> TodayView | NeedsSelection:
    gate = _gate(sources, scope, timeout_seconds)
    if isinstance(gate, NeedsSelection):
        return gate

    today = local_today(gate, now)
    dataset = classify_branch_range(
        sources,
        gate,
        DateRange(today, today),
        today=today,
        timeout_seconds=timeout_seconds,
        cancel=cancel,
    )
    return TodayView(branch=gate, summary=today_summary(dataset.records, dataset.employees, today))


def load_rekap(
    sources: AttendanceSources,
    scope: TenantScope,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
    search: str | None = None,
    status: AttendanceStatus | None = None,
    flagged_only: bool = False,
    divisi: str | None = None,
    departemen: str | None = None,
    position: str | None = None,
    sort: RekapSort | None = None,
    page: int = 1,
    page_size: int | None = None,
    timeout_seconds: float | None = None,
    cancel: threading.Event | None = None,
    now: datetime | None = None,
) -> RekapView | NeedsSelection:
    sort = sort or RekapSort()
    validate_sort(sort)
    page_size = get_settings().default_page_size if page_size is None else page_size

    gate = _gate(sources, scope, timeout_seconds)
    if isinstance(gate, NeedsSelection):
        return gate

    today = local_today(gate, now)
    date_range = resolve_date_range(start_date, end_date, today=today)
    dataset = classify_branch_range(
        sources,
        gate,
        date_range,
        today=today,
        timeout_seconds=timeout_seconds,
        cancel=cancel,
    )
    raise_if_cancelled(cancel)
    result = query_rekap(
        dataset.records,
        dataset.employees,
        RekapFilters(
            date_range=date_range,
            search=search,
            status=status,
            flagged_only=flagged_only,
            divisi=divisi,
            departemen=departemen,
            position=position,
        ),
        sort,
        page=page,
        page_size=page_size,
    )
    logger.info(
        "rekap_queried",
        extra={
            "branch_id": gate.id,
            "total": result.pagination.total,
            "page": result.pagination.page,
            "page_size": result.pagination.page_size,
        },
    )
    return RekapView(branch=gate, date_range=date_range, page=result)
