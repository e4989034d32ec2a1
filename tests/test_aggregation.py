from __future__ import annotations

import threading
import unittest
from datetime import date

from absensi.errors import AggregationCancelled
from absensi.models import AttendanceStatus
from absensi.services.aggregation import (
    aggregate,
    build_distribution,
    build_employee_rollups,
    build_trend,
    round_percentage,
    today_summary,
    top_rollups,
)
from absensi.services.classifier import ClassifiedRecord
from absensi.services.collaborators import DateRange, EmployeeInfo

S = AttendanceStatus


def _record(
    employee_id: int,
    day_date: date,
    status: AttendanceStatus,
    *,
    worked_minutes: int | None = None,
    is_late: bool = False,
    is_early_leave: bool = False,
) -> ClassifiedRecord:
    return ClassifiedRecord(
        employee_id=employee_id,
        day_date=day_date,
        status=status,
        worked_minutes=worked_minutes,
        is_working_day=status != S.NON_WORKING,
        is_late=is_late,
        is_early_leave=is_early_leave,
    )


def _employee(employee_id: int) -> EmployeeInfo:
    return EmployeeInfo(id=employee_id, nik=f"NIK{employee_id:03d}", full_name=f"Pegawai {employee_id}", branch_id=1)


class TrendTests(unittest.TestCase):
    def test_daily_trend_has_a_bucket_for_every_date(self) -> None:
        records = [_record(1, date(2026, 3, 2), S.HADIR), _record(2, date(2026, 3, 2), S.TELAT, is_late=True)]

        trend = build_trend(records, granularity="day", date_range=DateRange(date(2026, 3, 1), date(2026, 3, 5)))

        self.assertEqual(
            [bucket.key for bucket in trend],
            ["2026-03-01", "2026-03-02", "2026-03-03", "2026-03-04", "2026-03-05"],
        )
        self.assertEqual(trend[0].total, 0)
        self.assertEqual(trend[1].total, 2)
        self.assertEqual(trend[1].counts[S.TELAT], 1)
        self.assertEqual(trend[1].late_flagged, 1)

    def test_monthly_trend_spans_empty_months(self) -> None:
        records = [_record(1, date(2026, 1, 15), S.HADIR)]

        trend = build_trend(records, granularity="month", date_range=DateRange(date(2025, 12, 20), date(2026, 2, 3)))

        self.assertEqual([bucket.key for bucket in trend], ["2025-12", "2026-01", "2026-02"])
        self.assertEqual([bucket.total for bucket in trend], [0, 1, 0])

    def test_non_working_records_do_not_count_toward_bucket_total(self) -> None:
        records = [_record(1, date(2026, 3, 8), S.NON_WORKING)]

        trend = build_trend(records, granularity="day", date_range=DateRange(date(2026, 3, 8), date(2026, 3, 8)))

        self.assertEqual(trend[0].total, 0)
        self.assertEqual(trend[0].non_working, 1)

    def test_cancellation_stops_between_buckets(self) -> None:
        cancel = threading.Event()
        cancel.set()

        with self.assertRaises(AggregationCancelled):
            build_trend([], granularity="day", date_range=DateRange(date(2026, 3, 1), date(2026, 3, 31)), cancel=cancel)


class DistributionTests(unittest.TestCase):
    def test_percentages_sum_to_exactly_one_hundred(self) -> None:
        records = [
            _record(1, date(2026, 3, 2), S.HADIR),
            _record(2, date(2026, 3, 2), S.TELAT),
            _record(3, date(2026, 3, 2), S.IZIN),
        ]

        distribution = build_distribution(records)
        percentages = {item.status: item.percentage for item in distribution.items}

        self.assertEqual(distribution.total, 3)
        self.assertEqual(round(sum(percentages.values()) * 10), 1000)
        self.assertEqual(percentages[S.HADIR], 33.4)
        self.assertEqual(percentages[S.TELAT], 33.3)
        self.assertEqual(percentages[S.IZIN], 33.3)
        self.assertEqual(percentages[S.CUTI], 0.0)

    def test_seven_way_split_still_sums_to_one_hundred(self) -> None:
        statuses = [S.HADIR, S.TELAT, S.PULANG_CEPAT, S.TIDAK_HADIR, S.IZIN, S.CUTI, S.BELUM_ABSEN]
        records = [_record(index, date(2026, 3, 2), status) for index, status in enumerate(statuses)]

        distribution = build_distribution(records)

        self.assertEqual(round(sum(item.percentage for item in distribution.items) * 10), 1000)
        self.assertTrue(all(0.0 <= item.percentage <= 100.0 for item in distribution.items))

    def test_empty_input_yields_all_zero(self) -> None:
        distribution = build_distribution([])

        self.assertEqual(distribution.total, 0)
        self.assertTrue(all(item.percentage == 0.0 for item in distribution.items))
        self.assertNotIn(S.NON_WORKING, [item.status for item in distribution.items])

    def test_only_non_working_days_yields_all_zero(self) -> None:
        distribution = build_distribution([_record(1, date(2026, 3, 8), S.NON_WORKING)])

        self.assertEqual(distribution.total, 0)
        self.assertEqual(distribution.non_working, 1)
        self.assertTrue(all(item.percentage == 0.0 for item in distribution.items))


class RollupTests(unittest.TestCase):
    def test_rollups_rank_by_percentage_then_employee_id(self) -> None:
        day1, day2 = date(2026, 3, 2), date(2026, 3, 3)
        records = [
            _record(3, day1, S.HADIR),
            _record(3, day2, S.TIDAK_HADIR),
            _record(2, day1, S.HADIR),
            _record(2, day2, S.TELAT),
            _record(1, day1, S.PULANG_CEPAT),
            _record(1, day2, S.HADIR),
        ]

        rollups = build_employee_rollups(records, [_employee(3), _employee(2), _employee(1)])

        self.assertEqual([item.employee_id for item in rollups], [1, 2, 3])
        self.assertEqual([item.attendance_percentage for item in rollups], [100.0, 100.0, 50.0])

    def test_percentage_uses_working_days_only(self) -> None:
        records = [
            _record(1, date(2026, 3, 6), S.HADIR),
            _record(1, date(2026, 3, 7), S.NON_WORKING),
            _record(1, date(2026, 3, 8), S.NON_WORKING),
            _record(1, date(2026, 3, 9), S.IZIN),
            _record(1, date(2026, 3, 10), S.TELAT),
        ]

        (rollup,) = build_employee_rollups(records, [_employee(1)])

        self.assertEqual(rollup.working_days, 3)
        self.assertEqual(rollup.attendance_percentage, 66.7)
        self.assertEqual(rollup.total, 3)

    def test_employee_without_working_days_is_zero_percent(self) -> None:
        (rollup,) = build_employee_rollups([_record(1, date(2026, 3, 8), S.NON_WORKING)], [_employee(1)])

        self.assertEqual(rollup.working_days, 0)
        self.assertEqual(rollup.attendance_percentage, 0.0)

    def test_top_rollups_limits_result(self) -> None:
        records = [_record(employee_id, date(2026, 3, 2), S.HADIR) for employee_id in range(1, 16)]
        rollups = build_employee_rollups(records, [_employee(employee_id) for employee_id in range(1, 16)])

        self.assertEqual(len(top_rollups(rollups)), 10)
        self.assertEqual(len(top_rollups(rollups, 3)), 3)
        self.assertEqual(top_rollups(rollups, 0), [])


class AggregateTests(unittest.TestCase):
    def test_aggregate_is_idempotent(self) -> None:
        records = [
            _record(1, date(2026, 3, 2), S.HADIR, worked_minutes=480),
            _record(1, date(2026, 3, 3), S.TELAT, worked_minutes=450, is_late=True),
            _record(2, date(2026, 3, 2), S.IZIN),
            _record(2, date(2026, 3, 3), S.TIDAK_HADIR),
        ]
        date_range = DateRange(date(2026, 3, 2), date(2026, 3, 3))
        employees = [_employee(1), _employee(2)]

        first = aggregate(records, "day", date_range, employees)
        second = aggregate(records, "day", date_range, employees)

        self.assertEqual(first, second)
        self.assertEqual(first.summary.record_count, 4)
        self.assertEqual(first.summary.average_worked_minutes, 465)
        self.assertEqual(first.summary.average_attendance_percentage, 50.0)
        self.assertEqual(first.distribution.late_flagged, 1)

    def test_late_and_early_record_counts_both_flags(self) -> None:
        records = [
            _record(1, date(2026, 3, 2), S.PULANG_CEPAT, worked_minutes=420, is_late=True, is_early_leave=True),
            _record(2, date(2026, 3, 2), S.HADIR, worked_minutes=540),
        ]
        date_range = DateRange(date(2026, 3, 2), date(2026, 3, 2))

        result = aggregate(records, "day", date_range, [_employee(1), _employee(2)])

        bucket = result.trend[0]
        self.assertEqual(bucket.counts[S.PULANG_CEPAT], 1)
        self.assertEqual(bucket.counts[S.TELAT], 0)
        self.assertEqual(bucket.late_flagged, 1)
        self.assertEqual(bucket.early_leave_flagged, 1)
        self.assertEqual(result.distribution.late_flagged, 1)
        self.assertEqual(result.distribution.early_leave_flagged, 1)
        rollup = next(item for item in result.employee_rollups if item.employee_id == 1)
        self.assertEqual((rollup.late_flagged, rollup.early_leave_flagged), (1, 1))

    def test_records_outside_range_are_ignored(self) -> None:
        records = [_record(1, date(2026, 2, 27), S.HADIR), _record(1, date(2026, 3, 2), S.HADIR)]

        result = aggregate(records, "day", DateRange(date(2026, 3, 2), date(2026, 3, 2)), [_employee(1)])

        self.assertEqual(result.distribution.total, 1)

    def test_today_summary_counts_pending_employees(self) -> None:
        today = date(2026, 3, 4)
        records = [
            _record(1, today, S.HADIR),
            _record(2, today, S.BELUM_ABSEN),
            _record(3, today, S.BELUM_ABSEN),
            _record(4, today, S.CUTI),
        ]

        summary = today_summary(records, [_employee(index) for index in range(1, 5)], today)

        self.assertTrue(summary.is_working_day)
        self.assertEqual(summary.total_employees, 4)
        self.assertEqual(summary.belum_absen, 2)
        self.assertEqual(summary.attendance_percentage, 25.0)

    def test_round_percentage_rounds_half_up(self) -> None:
        self.assertEqual(round_percentage(1, 16), 6.3)
        self.assertEqual(round_percentage(2, 3), 66.7)
        self.assertEqual(round_percentage(5, 0), 0.0)


if __name__ == "__main__":
    unittest.main()
