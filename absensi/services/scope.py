from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace

from absensi.errors import BranchNotFound, ScopeForbidden, UnknownRole
from absensi.models import Role
from absensi.services.collaborators import BranchDirectory, BranchSummary

logger = logging.getLogger("absensi.scope")


@dataclass(frozen=True)
class ActingUser:
    user_id: str
    role: str
    branch_id: int | None = None


@dataclass(frozen=True)
class TenantScope:
    role: Role
    branch_id: int | None = None

    @property
    def is_selected(self) -> bool:
        return self.branch_id is not None


@dataclass(frozen=True)
class NeedsSelection:
    branches: list[BranchSummary]


def parse_role(raw: object) -> Role:
    try:
        return Role(str(raw).strip().lower())
    except ValueError as exc:
        raise UnknownRole(raw) from exc


def resolve_scope(user: ActingUser) -> TenantScope:
    role = parse_role(user.role)
    if role == Role.SUPERADMIN:
        return TenantScope(role=role, branch_id=None)
    if user.branch_id is None:
        raise ScopeForbidden(f"User {user.user_id} is not assigned to a branch.")
    return TenantScope(role=role, branch_id=user.branch_id)


def select_branch(scope: TenantScope, requested_branch_id: int | None) -> TenantScope:
    if scope.role == Role.SUPERADMIN:
        return replace(scope, branch_id=requested_branch_id)
    if requested_branch_id is not None and requested_branch_id != scope.branch_id:
        raise ScopeForbidden("Branch scope is fixed for this role.")
    return scope


def require_branch(scope: TenantScope, directory: BranchDirectory) -> BranchSummary | NeedsSelection:
    """Gate every read: no branch chosen means no aggregation at all."""
    if scope.branch_id is None:
        branches = list(directory.list_branches())
        logger.info("scope_needs_selection", extra={"role": scope.role.value, "branch_count": len(branches)})
        return NeedsSelection(branches=branches)
    branch = directory.get_branch(scope.branch_id)
    if branch is None:
        raise BranchNotFound(scope.branch_id)
    return branch


@dataclass(frozen=True)
class MenuItem:
    name: str
    path: str | None = None
    sub_items: tuple[MenuItem, ...] = field(default_factory=tuple)


_REPORT_MENU = MenuItem(
    name="Laporan Kehadiran",
    sub_items=(
        MenuItem(name="Rekap Harian/Bulanan", path="/laporan-rekap"),
        MenuItem(name="Grafik Statistik", path="/laporan-statistik"),
        MenuItem(name="Deteksi Telat & Pulang Cepat", path="/laporan-telat-pulangcepat"),
        MenuItem(name="Status Kehadiran Realtime", path="/laporan-realtime"),
    ),
)
_ADMIN_MAIN = (
    MenuItem(name="Dashboard", path="/"),
    MenuItem(name="Kalender", path="/calendar"),
    _REPORT_MENU,
    MenuItem(name="Manajemen Pengguna", sub_items=(MenuItem(name="Pengguna & Hak Akses", path="/manajemen-user"),)),
    MenuItem(name="Pengaturan Kantor", sub_items=(MenuItem(name="Tambah/Edit Lokasi", path="/manajemen-lokasi"),)),
    MenuItem(name="Izin & Cuti", sub_items=(MenuItem(name="Approval Izin & Cuti", path="/approval-izin-cuti"),)),
    MenuItem(name="Export Laporan", sub_items=(MenuItem(name="Export ke Excel/PDF", path="/export-laporan"),)),
)
_ADMIN_OTHERS = (
    MenuItem(name="Pengaturan Sistem", path="/pengaturan-sistem"),
    MenuItem(name="Log Aktivitas", path="/log-aktivitas"),
    MenuItem(name="Notifikasi", path="/notifikasi"),
    MenuItem(name="Backup Data", path="/backup-data"),
    MenuItem(name="Bantuan & Panduan", path="/bantuan"),
    MenuItem(name="Tentang Aplikasi", path="/tentang"),
)
_SUPERADMIN_EXTRA = (
    MenuItem(name="Manajemen Cabang", path="/manajemen-cabang"),
    MenuItem(name="Monitoring Pembayaran", path="/monitoring-pembayaran"),
)
_EMPLOYEE_MENU = (
    MenuItem(name="Dashboard", path="/"),
    MenuItem(name="Kalender", path="/calendar"),
    MenuItem(name="Izin & Cuti", sub_items=(MenuItem(name="Pengajuan Izin & Cuti", path="/izin-cuti"),)),
    MenuItem(name="Bantuan & Panduan", path="/bantuan"),
    MenuItem(name="Tentang Aplikasi", path="/tentang"),
)


def menu_for(role: Role | str) -> list[MenuItem]:
    resolved = role if isinstance(role, Role) else parse_role(role)
    if resolved == Role.EMPLOYEE:
        return list(_EMPLOYEE_MENU)
    items = [*_ADMIN_MAIN, *_ADMIN_OTHERS]
    if resolved == Role.SUPERADMIN:
        items.extend(_SUPERADMIN_EXTRA)
    return items
