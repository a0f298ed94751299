"""Helpers for working with the clinic's configured timezone."""
from __future__ import annotations

from datetime import date, datetime
from zoneinfo import ZoneInfo

from .settings import get_settings

CLINIC_TIMEZONE = ZoneInfo(get_settings().clinic_timezone)


def clinic_now() -> datetime:
    """Return the current datetime in the clinic timezone."""
    return datetime.now(CLINIC_TIMEZONE)


def clinic_today() -> date:
    """Return today's calendar date as seen by the clinic."""
    return clinic_now().date()


def clinic_now_iso() -> str:
    """Return an ISO 8601 timestamp anchored to the clinic timezone."""
    return clinic_now().isoformat()
