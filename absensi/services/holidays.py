from __future__ import annotations

import json
import logging
import socket
from datetime import date
from typing import Any
from urllib import error as urllib_error
from urllib import request as urllib_request

from absensi.errors import UpstreamTimeout, UpstreamUnavailable
from absensi.services.collaborators import HolidayEntry
from absensi.settings import get_settings

logger = logging.getLogger("absensi.holidays")

_SOURCE_NAME = "holiday_calendar"


def parse_public_holidays(raw: Any) -> list[HolidayEntry]:
    if not isinstance(raw, list):
        return []
    entries: list[HolidayEntry] = []
    seen: set[date] = set()
    for item in raw:
        if not isinstance(item, dict):
            continue
        raw_date = str(item.get("date") or "").strip()
        try:
            day_date = date.fromisoformat(raw_date)
        except ValueError:
            continue
        if day_date in seen:
            continue
        seen.add(day_date)
        name = str(item.get("localName") or item.get("name") or "").strip()
        entries.append(HolidayEntry(day_date=day_date, name=name))
    entries.sort(key=lambda entry: entry.day_date)
    return entries


class NagerDateHolidaySource:
    """Public holidays from the Nager.Date API (``/PublicHolidays/{year}/{country}``)."""

    def __init__(self, *, base_url: str | None = None, timeout_seconds: float | None = None):
        settings = get_settings()
        self.base_url = (base_url or settings.holiday_api_base_url).rstrip("/")
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.upstream_timeout_seconds

    def get_holidays(self, year: int, country_code: str) -> list[HolidayEntry]:
        url = f"{self.base_url}/PublicHolidays/{int(year)}/{country_code.strip().upper()}"
        request = urllib_request.Request(url=url, method="GET", headers={"Accept": "application/json"})
        try:
            with urllib_request.urlopen(request, timeout=max(1, self.timeout_seconds)) as response:
                body = response.read().decode("utf-8")
        except (socket.timeout, TimeoutError) as exc:
            raise UpstreamTimeout(_SOURCE_NAME, self.timeout_seconds) from exc
        except urllib_error.HTTPError as exc:
            raise UpstreamUnavailable(_SOURCE_NAME, f"HTTP {exc.code}") from exc
        except urllib_error.URLError as exc:
            if isinstance(exc.reason, (socket.timeout, TimeoutError)):
                raise UpstreamTimeout(_SOURCE_NAME, self.timeout_seconds) from exc
            raise UpstreamUnavailable(_SOURCE_NAME, str(exc.reason)) from exc

        try:
            payload = json.loads(body) if body.strip() else []
        except json.JSONDecodeError as exc:
            raise UpstreamUnavailable(_SOURCE_NAME, "malformed response") from exc

        holidays = parse_public_holidays(payload)
        logger.info(
            "holidays_fetched",
            extra={"year": year, "country_code": country_code, "count": len(holidays)},
        )
        return holidays


class NoHolidaySource:
    def get_holidays(self, year: int, country_code: str) -> list[HolidayEntry]:
        return []


def build_holiday_source() -> NagerDateHolidaySource | NoHolidaySource:
    settings = get_settings()
    if settings.holiday_source == "disabled":
        return NoHolidaySource()
    return NagerDateHolidaySource()
