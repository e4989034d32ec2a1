import asyncio
import logging
import threading
from typing import Annotated, Any, Callable, TypeVar

from fastapi import APIRouter, Depends, Query, Request

from absensi.db import SessionLocal
from absensi.models import AttendanceStatus
from absensi.schemas import (
    BranchSummaryRead,
    DateRangeQuery,
    DistributionRead,
    DistributionResponse,
    EmployeeRollupRead,
    EmployeeRollupsResponse,
    MenuItemRead,
    NeedSelectionResponse,
    PaginationRead,
    RekapExportResponse,
    RekapFilterQuery,
    RekapQuery,
    RekapResponse,
    RekapRowRead,
    ScopeQuery,
    StatisticsQuery,
    StatisticsResponse,
    StatisticsSummaryRead,
    StatusCountsRead,
    TodaySummaryResponse,
    TrendBucketRead,
)
from absensi.security import require_user
from absensi.services.aggregation import AggregateBucket, Distribution, EmployeeRollup, StatisticsSummary
from absensi.services.classifier import format_duration
from absensi.services.collaborators import AttendanceSources, BranchSummary
from absensi.services.engine import (
    RekapView,
    StatisticsView,
    TodayView,
    load_rekap,
    load_statistics,
    load_today_summary,
)
from absensi.services.holidays import build_holiday_source
from absensi.services.rekap import RekapSort
from absensi.services.scope import (
    ActingUser,
    MenuItem,
    NeedsSelection,
    TenantScope,
    menu_for,
    resolve_scope,
    select_branch,
)
from absensi.services.sql_sources import (
    SqlBranchDirectory,
    SqlClockEventSource,
    SqlLeaveSource,
    SqlScheduleConfigSource,
)
from absensi.settings import get_settings

router = APIRouter(tags=["reports"])
logger = logging.getLogger("absensi.reports")

_DISCONNECT_POLL_SECONDS = 0.5

T = TypeVar("T")


def get_attendance_sources(
    timeout_seconds: Annotated[float | None, Query(gt=0, le=120)] = None,
) -> AttendanceSources:
    settings = get_settings()
    statement_timeout = settings.upstream_timeout_seconds if timeout_seconds is None else timeout_seconds
    return AttendanceSources(
        clock_events=SqlClockEventSource(SessionLocal, statement_timeout_seconds=statement_timeout),
        leaves=SqlLeaveSource(SessionLocal, statement_timeout_seconds=statement_timeout),
        directory=SqlBranchDirectory(SessionLocal, statement_timeout_seconds=statement_timeout),
        schedules=SqlScheduleConfigSource(SessionLocal, statement_timeout_seconds=statement_timeout),
        holidays=build_holiday_source(),
        country_code=settings.holiday_country_code,
    )


def _scope_for(user: ActingUser, cabang_id: int | None) -> TenantScope:
    return select_branch(resolve_scope(user), cabang_id)


async def _run_cancellable(request: Request, fn: Callable[..., T], **kwargs: Any) -> T:
    """Run blocking engine work off the event loop, cancelling it if the client goes away."""
    cancel = threading.Event()
    task = asyncio.ensure_future(asyncio.to_thread(fn, cancel=cancel, **kwargs))
    while True:
        done, _ = await asyncio.wait({task}, timeout=_DISCONNECT_POLL_SECONDS)
        if done:
            return task.result()
        if not cancel.is_set() and await request.is_disconnected():
            cancel.set()
            logger.info(
                "aggregation_cancelled",
                extra={"request_id": getattr(request.state, "request_id", None), "path": request.url.path},
            )


def _branch_read(branch: BranchSummary) -> BranchSummaryRead:
    return BranchSummaryRead(id=branch.id, name=branch.name)


def _need_selection(result: NeedsSelection) -> NeedSelectionResponse:
    return NeedSelectionResponse(branches=[_branch_read(branch) for branch in result.branches])


def _counts(counts: dict[AttendanceStatus, int]) -> dict[str, int]:
    return {status.value: value for status, value in counts.items()}


def _bucket_read(bucket: AggregateBucket) -> TrendBucketRead:
    return TrendBucketRead(
        key=bucket.key,
        total=bucket.total,
        late_flagged=bucket.late_flagged,
        early_leave_flagged=bucket.early_leave_flagged,
        **_counts(bucket.counts),
    )


def _distribution_read(distribution: Distribution) -> DistributionRead:
    return DistributionRead.model_validate(distribution)


def _rollup_read(rollup: EmployeeRollup) -> EmployeeRollupRead:
    return EmployeeRollupRead(
        employee_id=rollup.employee_id,
        nik=rollup.nik,
        full_name=rollup.full_name,
        position=rollup.position,
        total=rollup.total,
        working_days=rollup.working_days,
        attendance_percentage=rollup.attendance_percentage,
        late_flagged=rollup.late_flagged,
        early_leave_flagged=rollup.early_leave_flagged,
        worked_minutes_total=rollup.worked_minutes_total,
        **_counts(rollup.counts),
    )


def _summary_read(summary: StatisticsSummary) -> StatisticsSummaryRead:
    return StatisticsSummaryRead(
        employee_count=summary.employee_count,
        record_count=summary.record_count,
        totals=StatusCountsRead(**_counts(summary.totals)),
        average_attendance_percentage=summary.average_attendance_percentage,
        average_worked_minutes=summary.average_worked_minutes,
        average_duration=format_duration(summary.average_worked_minutes),
    )


def _menu_read(item: MenuItem) -> MenuItemRead:
    return MenuItemRead(
        name=item.name,
        path=item.path,
        sub_items=[_menu_read(sub_item) for sub_item in item.sub_items],
    )


def _rekap_response(view: RekapView) -> RekapResponse:
    return RekapResponse(
        branch=_branch_read(view.branch),
        start_date=view.date_range.start,
        end_date=view.date_range.end,
        rows=[RekapRowRead.model_validate(row) for row in view.page.rows],
        pagination=PaginationRead.model_validate(view.page.pagination),
    )


@router.get(
    "/api/statistik",
    response_model=StatisticsResponse | NeedSelectionResponse,
)
async def get_statistics(
    request: Request,
    params: Annotated[StatisticsQuery, Query()],
    user: ActingUser = Depends(require_user),
    sources: AttendanceSources = Depends(get_attendance_sources),
) -> StatisticsResponse | NeedSelectionResponse:
    scope = _scope_for(user, params.cabang_id)
    result = await _run_cancellable(
        request,
        load_statistics,
        sources=sources,
        scope=scope,
        start_date=params.start_date,
        end_date=params.end_date,
        granularity=params.granularity,
        top_n=params.top_n,
        timeout_seconds=params.timeout_seconds,
    )
    if isinstance(result, NeedsSelection):
        return _need_selection(result)

    view: StatisticsView = result
    return StatisticsResponse(
        branch=_branch_read(view.branch),
        start_date=view.result.date_range.start,
        end_date=view.result.date_range.end,
        today=view.today,
        granularity=view.result.granularity,
        trend=[_bucket_read(bucket) for bucket in view.result.trend],
        distribution=_distribution_read(view.result.distribution),
        top_employees=[_rollup_read(rollup) for rollup in view.top_employees],
        summary=_summary_read(view.result.summary),
    )


@router.get(
    "/api/statistik/distribution",
    response_model=DistributionResponse | NeedSelectionResponse,
)
async def get_status_distribution(
    request: Request,
    params: Annotated[DateRangeQuery, Query()],
    user: ActingUser = Depends(require_user),
    sources: AttendanceSources = Depends(get_attendance_sources),
) -> DistributionResponse | NeedSelectionResponse:
    scope = _scope_for(user, params.cabang_id)
    result = await _run_cancellable(
        request,
        load_statistics,
        sources=sources,
        scope=scope,
        start_date=params.start_date,
        end_date=params.end_date,
        timeout_seconds=params.timeout_seconds,
    )
    if isinstance(result, NeedsSelection):
        return _need_selection(result)
    return DistributionResponse(
        branch=_branch_read(result.branch),
        start_date=result.result.date_range.start,
        end_date=result.result.date_range.end,
        distribution=_distribution_read(result.result.distribution),
    )


@router.get(
    "/api/statistik/employees",
    response_model=EmployeeRollupsResponse | NeedSelectionResponse,
)
async def get_employee_rollups(
    request: Request,
    params: Annotated[DateRangeQuery, Query()],
    user: ActingUser = Depends(require_user),
    sources: AttendanceSources = Depends(get_attendance_sources),
) -> EmployeeRollupsResponse | NeedSelectionResponse:
    scope = _scope_for(user, params.cabang_id)
    result = await _run_cancellable(
        request,
        load_statistics,
        sources=sources,
        scope=scope,
        start_date=params.start_date,
        end_date=params.end_date,
        timeout_seconds=params.timeout_seconds,
    )
    if isinstance(result, NeedsSelection):
        return _need_selection(result)
    return EmployeeRollupsResponse(
        branch=_branch_read(result.branch),
        start_date=result.result.date_range.start,
        end_date=result.result.date_range.end,
        employees=[_rollup_read(rollup) for rollup in result.result.employee_rollups],
    )


@router.get(
    "/api/dashboard/today",
    response_model=TodaySummaryResponse | NeedSelectionResponse,
)
async def get_today_summary(
    request: Request,
    params: Annotated[ScopeQuery, Query()],
    user: ActingUser = Depends(require_user),
    sources: AttendanceSources = Depends(get_attendance_sources),
) -> TodaySummaryResponse | NeedSelectionResponse:
    scope = _scope_for(user, params.cabang_id)
    result = await _run_cancellable(
        request,
        load_today_summary,
        sources=sources,
        scope=scope,
        timeout_seconds=params.timeout_seconds,
    )
    if isinstance(result, NeedsSelection):
        return _need_selection(result)

    view: TodayView = result
    return TodaySummaryResponse(
        branch=_branch_read(view.branch),
        day_date=view.summary.day_date,
        is_working_day=view.summary.is_working_day,
        total_employees=view.summary.total_employees,
        clocked_in=view.summary.clocked_in,
        attendance_percentage=view.summary.attendance_percentage,
        **_counts(view.summary.counts),
    )


@router.get(
    "/api/rekap",
    response_model=RekapResponse | NeedSelectionResponse,
)
async def get_rekap(
    request: Request,
    params: Annotated[RekapQuery, Query()],
    user: ActingUser = Depends(require_user),
    sources: AttendanceSources = Depends(get_attendance_sources),
) -> RekapResponse | NeedSelectionResponse:
    scope = _scope_for(user, params.cabang_id)
    result = await _run_cancellable(
        request,
        load_rekap,
        sources=sources,
        scope=scope,
        start_date=params.start_date,
        end_date=params.end_date,
        search=params.search,
        status=params.status,
        divisi=params.divisi,
        departemen=params.departemen,
        position=params.position,
        sort=RekapSort(field=params.sort_by, direction=params.sort_order),
        page=params.page,
        page_size=params.page_size,
        timeout_seconds=params.timeout_seconds,
    )
    if isinstance(result, NeedsSelection):
        return _need_selection(result)
    return _rekap_response(result)


@router.get(
    "/api/rekap/export",
    response_model=RekapExportResponse | NeedSelectionResponse,
)
async def export_rekap(
    request: Request,
    params: Annotated[RekapFilterQuery, Query()],
    user: ActingUser = Depends(require_user),
    sources: AttendanceSources = Depends(get_attendance_sources),
) -> RekapExportResponse | NeedSelectionResponse:
    scope = _scope_for(user, params.cabang_id)
    result = await _run_cancellable(
        request,
        load_rekap,
        sources=sources,
        scope=scope,
        start_date=params.start_date,
        end_date=params.end_date,
        search=params.search,
        status=params.status,
        divisi=params.divisi,
        departemen=params.departemen,
        position=params.position,
        sort=RekapSort(field=params.sort_by, direction=params.sort_order),
        page=1,
        page_size=get_settings().export_max_rows,
        timeout_seconds=params.timeout_seconds,
    )
    if isinstance(result, NeedsSelection):
        return _need_selection(result)

    view: RekapView = result
    rows = [RekapRowRead.model_validate(row) for row in view.page.rows]
    return RekapExportResponse(
        branch=_branch_read(view.branch),
        start_date=view.date_range.start,
        end_date=view.date_range.end,
        total=view.page.pagination.total,
        truncated=view.page.pagination.total > len(rows),
        rows=rows,
    )


@router.get(
    "/api/laporan/telat-pulang-cepat",
    response_model=RekapResponse | NeedSelectionResponse,
)
async def get_late_early_report(
    request: Request,
    params: Annotated[RekapQuery, Query()],
    user: ActingUser = Depends(require_user),
    sources: AttendanceSources = Depends(get_attendance_sources),
) -> RekapResponse | NeedSelectionResponse:
    scope = _scope_for(user, params.cabang_id)
    result = await _run_cancellable(
        request,
        load_rekap,
        sources=sources,
        scope=scope,
        start_date=params.start_date,
        end_date=params.end_date,
        search=params.search,
        status=params.status,
        divisi=params.divisi,
        departemen=params.departemen,
        position=params.position,
        flagged_only=True,
        sort=RekapSort(field=params.sort_by, direction=params.sort_order),
        page=params.page,
        page_size=params.page_size,
        timeout_seconds=params.timeout_seconds,
    )
    if isinstance(result, NeedsSelection):
        return _need_selection(result)
    return _rekap_response(result)


@router.get("/api/menu", response_model=list[MenuItemRead])
def get_menu(user: ActingUser = Depends(require_user)) -> list[MenuItemRead]:
    scope = resolve_scope(user)
    return [_menu_read(item) for item in menu_for(scope.role)]
