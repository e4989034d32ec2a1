from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from absensi.models import AttendanceStatus


class BranchSummaryRead(BaseModel):
    id: int
    name: str

    model_config = ConfigDict(from_attributes=True)


class NeedSelectionResponse(BaseModel):
    need_selection: Literal[True] = Field(default=True, serialization_alias="needSelection")
    branches: list[BranchSummaryRead]

    model_config = ConfigDict(populate_by_name=True)


class StatusCountsRead(BaseModel):
    hadir: int = 0
    telat: int = 0
    pulang_cepat: int = 0
    tidak_hadir: int = 0
    izin: int = 0
    cuti: int = 0
    belum_absen: int = 0
    non_working: int = 0


class TrendBucketRead(StatusCountsRead):
    key: str
    total: int
    late_flagged: int
    early_leave_flagged: int


class DistributionItemRead(BaseModel):
    status: AttendanceStatus
    count: int
    percentage: float

    model_config = ConfigDict(from_attributes=True)


class DistributionRead(BaseModel):
    items: list[DistributionItemRead]
    total: int
    non_working: int
    late_flagged: int
    early_leave_flagged: int

    model_config = ConfigDict(from_attributes=True)


class EmployeeRollupRead(StatusCountsRead):
    employee_id: int
    nik: str
    full_name: str
    position: str | None
    total: int
    working_days: int
    attendance_percentage: float
    late_flagged: int
    early_leave_flagged: int
    worked_minutes_total: int


class StatisticsSummaryRead(BaseModel):
    employee_count: int
    record_count: int
    totals: StatusCountsRead
    average_attendance_percentage: float
    average_worked_minutes: int | None
    average_duration: str | None


class StatisticsResponse(BaseModel):
    branch: BranchSummaryRead
    start_date: date
    end_date: date
    today: date
    granularity: Literal["day", "month"]
    trend: list[TrendBucketRead]
    distribution: DistributionRead
    top_employees: list[EmployeeRollupRead]
    summary: StatisticsSummaryRead


class DistributionResponse(BaseModel):
    branch: BranchSummaryRead
    start_date: date
    end_date: date
    distribution: DistributionRead


class EmployeeRollupsResponse(BaseModel):
    branch: BranchSummaryRead
    start_date: date
    end_date: date
    employees: list[EmployeeRollupRead]


class TodaySummaryResponse(StatusCountsRead):
    branch: BranchSummaryRead
    day_date: date
    is_working_day: bool
    total_employees: int
    clocked_in: int
    attendance_percentage: float


class RekapRowRead(BaseModel):
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

    model_config = ConfigDict(from_attributes=True)


class PaginationRead(BaseModel):
    page: int
    page_size: int
    total: int
    total_pages: int

    model_config = ConfigDict(from_attributes=True)


class RekapResponse(BaseModel):
    branch: BranchSummaryRead
    start_date: date
    end_date: date
    rows: list[RekapRowRead]
    pagination: PaginationRead


class RekapExportResponse(BaseModel):
    branch: BranchSummaryRead
    start_date: date
    end_date: date
    total: int
    truncated: bool
    rows: list[RekapRowRead]


class MenuItemRead(BaseModel):
    name: str
    path: str | None = None
    sub_items: list[MenuItemRead] = Field(default_factory=list)


class ScopeQuery(BaseModel):
    cabang_id: int | None = Field(default=None, ge=1)
    timeout_seconds: float | None = Field(default=None, gt=0, le=120)

    model_config = ConfigDict(extra="forbid")


class DateRangeQuery(ScopeQuery):
    start_date: date | None = None
    end_date: date | None = None


class StatisticsQuery(DateRangeQuery):
    granularity: Literal["day", "month"] = "day"
    top_n: int | None = Field(default=None, ge=0, le=1000)


class RekapFilterQuery(DateRangeQuery):
    search: str | None = Field(default=None, max_length=255)
    status: AttendanceStatus | None = None
    divisi: str | None = Field(default=None, max_length=255)
    departemen: str | None = Field(default=None, max_length=255)
    position: str | None = Field(default=None, max_length=255)
    sort_by: str = Field(default="date", max_length=50)
    sort_order: Literal["asc", "desc"] = "desc"

    @field_validator("sort_order", mode="before")
    @classmethod
    def _normalize_sort_order(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class RekapQuery(RekapFilterQuery):
    page: int = Field(default=1, ge=1)
    page_size: int | None = Field(default=None, ge=1, le=10_000)
