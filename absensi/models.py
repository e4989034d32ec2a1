from __future__ import annotations

import enum
from datetime import date, datetime, time, timezone

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from absensi.db import Base


class AttendanceStatus(str, enum.Enum):
    HADIR = "hadir"
    TELAT = "telat"
    PULANG_CEPAT = "pulang_cepat"
    TIDAK_HADIR = "tidak_hadir"
    IZIN = "izin"
    CUTI = "cuti"
    BELUM_ABSEN = "belum_absen"
    NON_WORKING = "non_working"


# Display/sort order; also the tie-break order for distribution rounding.
STATUS_ORDER: tuple[AttendanceStatus, ...] = tuple(AttendanceStatus)
PRESENT_STATUSES = frozenset(
    {AttendanceStatus.HADIR, AttendanceStatus.TELAT, AttendanceStatus.PULANG_CEPAT}
)


class LeaveKind(str, enum.Enum):
    IZIN = "izin"
    CUTI = "cuti"


class LeaveStatus(str, enum.Enum):
    APPROVED = "APPROVED"
    PENDING = "PENDING"
    REJECTED = "REJECTED"


class Role(str, enum.Enum):
    SUPERADMIN = "superadmin"
    ADMIN = "admin"
    EMPLOYEE = "employee"


class Branch(Base):
    __tablename__ = "cabang"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    kode_cabang: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    nama_cabang: Mapped[str] = mapped_column(String(255), nullable=False)
    timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active", server_default=text("'active'"))

    employees: Mapped[list[Employee]] = relationship(back_populates="branch")
    schedule: Mapped[BranchSchedule | None] = relationship(back_populates="branch", uselist=False)


class BranchSchedule(Base):
    __tablename__ = "pengaturan_cabang"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    branch_id: Mapped[int] = mapped_column(
        ForeignKey("cabang.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    late_tolerance_minutes: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    branch: Mapped[Branch] = relationship(back_populates="schedule")
    work_hours: Mapped[list[BranchWorkHours]] = relationship(
        back_populates="schedule",
        cascade="all, delete-orphan",
        order_by="BranchWorkHours.weekday",
    )


class BranchWorkHours(Base):
    __tablename__ = "jam_kerja_cabang"
    __table_args__ = (
        UniqueConstraint("schedule_id", "weekday", name="uq_jam_kerja_cabang_schedule_weekday"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    schedule_id: Mapped[int] = mapped_column(
        ForeignKey("pengaturan_cabang.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Monday=0 .. Sunday=6, same as date.weekday(). A missing row is a day off.
    weekday: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time_local: Mapped[time] = mapped_column(Time(timezone=False), nullable=False)
    end_time_local: Mapped[time] = mapped_column(Time(timezone=False), nullable=False)

    schedule: Mapped[BranchSchedule] = relationship(back_populates="work_hours")


class Employee(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    nik: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    position: Mapped[str | None] = mapped_column(String(255), nullable=True)
    divisi: Mapped[str | None] = mapped_column(String(255), nullable=True)
    departemen: Mapped[str | None] = mapped_column(String(255), nullable=True)
    branch_id: Mapped[int] = mapped_column(
        ForeignKey("cabang.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))

    branch: Mapped[Branch] = relationship(back_populates="employees")


class OfficeLocation(Base):
    __tablename__ = "lokasi"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    branch_id: Mapped[int] = mapped_column(
        ForeignKey("cabang.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    nama_kantor: Mapped[str] = mapped_column(String(255), nullable=False)
    alamat_kantor: Mapped[str | None] = mapped_column(Text, nullable=True)


class ClockEventRecord(Base):
    __tablename__ = "absensi"
    __table_args__ = (
        UniqueConstraint("employee_id", "day_date", name="uq_absensi_employee_day"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    branch_id: Mapped[int] = mapped_column(
        ForeignKey("cabang.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    day_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    location_id: Mapped[int | None] = mapped_column(
        ForeignKey("lokasi.id", ondelete="SET NULL"),
        nullable=True,
    )
    clock_in_ts: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Address, geofence distance (meters) and photo URL are written by the clock-in app.
    clock_in_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    clock_in_distance: Mapped[float | None] = mapped_column(Float, nullable=True)
    clock_in_photo: Mapped[str | None] = mapped_column(String(500), nullable=True)
    clock_out_ts: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    clock_out_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    clock_out_distance: Mapped[float | None] = mapped_column(Float, nullable=True)
    clock_out_photo: Mapped[str | None] = mapped_column(String(500), nullable=True)
    keterangan: Mapped[str | None] = mapped_column(Text, nullable=True)

    location: Mapped[OfficeLocation | None] = relationship()


class LeaveRecord(Base):
    __tablename__ = "izin_cuti"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    kind: Mapped[LeaveKind] = mapped_column(Enum(LeaveKind, name="leave_kind"), nullable=False)
    status: Mapped[LeaveStatus] = mapped_column(
        Enum(LeaveStatus, name="leave_status"),
        nullable=False,
        default=LeaveStatus.PENDING,
        server_default=text("'PENDING'"),
    )
