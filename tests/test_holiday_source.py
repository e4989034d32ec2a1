from __future__ import annotations

import socket
import unittest
from datetime import date
from unittest.mock import MagicMock, patch
from urllib import error as urllib_error

from absensi.errors import UpstreamTimeout, UpstreamUnavailable
from absensi.services.holidays import NagerDateHolidaySource, NoHolidaySource, build_holiday_source, parse_public_holidays
from absensi.settings import Settings


def _fake_response(body: bytes) -> MagicMock:
    response = MagicMock()
    response.read.return_value = body
    response.__enter__.return_value = response
    response.__exit__.return_value = False
    return response


class ParsePublicHolidaysTests(unittest.TestCase):
    def test_prefers_local_name_and_skips_bad_rows(self) -> None:
        entries = parse_public_holidays(
            [
                {"date": "2026-03-19", "localName": "Hari Suci Nyepi", "name": "Day of Silence"},
                {"date": "2026-01-01", "name": "New Year's Day"},
                {"date": "not-a-date", "localName": "Broken"},
                {"date": "2026-01-01", "localName": "Tahun Baru Masehi"},
                "garbage",
            ]
        )

        self.assertEqual([entry.day_date for entry in entries], [date(2026, 1, 1), date(2026, 3, 19)])
        self.assertEqual(entries[0].name, "New Year's Day")
        self.assertEqual(entries[1].name, "Hari Suci Nyepi")

    def test_non_list_payload_is_empty(self) -> None:
        self.assertEqual(parse_public_holidays({"status": 404}), [])


class NagerDateHolidaySourceTests(unittest.TestCase):
    def test_fetches_year_and_country(self) -> None:
        body = b'[{"date": "2026-08-17", "localName": "Hari Kemerdekaan"}]'
        source = NagerDateHolidaySource(base_url="https://holidays.example/api/v3/", timeout_seconds=5)

        with patch("absensi.services.holidays.urllib_request.urlopen", return_value=_fake_response(body)) as urlopen:
            entries = source.get_holidays(2026, "id")

        request = urlopen.call_args.args[0]
        self.assertEqual(request.full_url, "https://holidays.example/api/v3/PublicHolidays/2026/ID")
        self.assertEqual(urlopen.call_args.kwargs["timeout"], 5)
        self.assertEqual(entries[0].day_date, date(2026, 8, 17))
        self.assertEqual(entries[0].name, "Hari Kemerdekaan")

    def test_socket_timeout_becomes_upstream_timeout(self) -> None:
        source = NagerDateHolidaySource(base_url="https://holidays.example", timeout_seconds=2)

        with patch("absensi.services.holidays.urllib_request.urlopen", side_effect=socket.timeout("timed out")):
            with self.assertRaises(UpstreamTimeout):
                source.get_holidays(2026, "ID")

    def test_http_error_becomes_upstream_unavailable(self) -> None:
        source = NagerDateHolidaySource(base_url="https://holidays.example", timeout_seconds=2)
        http_error = urllib_error.HTTPError("https://holidays.example", 503, "Service Unavailable", None, None)

        with patch("absensi.services.holidays.urllib_request.urlopen", side_effect=http_error):
            with self.assertRaises(UpstreamUnavailable) as ctx:
                source.get_holidays(2026, "ID")

        self.assertTrue(ctx.exception.retryable)
        self.assertEqual(ctx.exception.status_code, 503)

    def test_malformed_body_becomes_upstream_unavailable(self) -> None:
        source = NagerDateHolidaySource(base_url="https://holidays.example", timeout_seconds=2)

        with patch("absensi.services.holidays.urllib_request.urlopen", return_value=_fake_response(b"<html>")):
            with self.assertRaises(UpstreamUnavailable):
                source.get_holidays(2026, "ID")

    def test_empty_body_means_no_holidays(self) -> None:
        source = NagerDateHolidaySource(base_url="https://holidays.example", timeout_seconds=2)

        with patch("absensi.services.holidays.urllib_request.urlopen", return_value=_fake_response(b"")):
            self.assertEqual(source.get_holidays(2026, "ID"), [])


class BuildHolidaySourceTests(unittest.TestCase):
    def test_disabled_source(self) -> None:
        with patch("absensi.services.holidays.get_settings", return_value=Settings(holiday_source="disabled")):
            source = build_holiday_source()

        self.assertIsInstance(source, NoHolidaySource)
        self.assertEqual(source.get_holidays(2026, "ID"), [])

    def test_nager_source_by_default(self) -> None:
        with patch("absensi.services.holidays.get_settings", return_value=Settings(holiday_source="nager")):
            source = build_holiday_source()

        self.assertIsInstance(source, NagerDateHolidaySource)


if __name__ == "__main__":
    unittest.main()
