# clinic_scheduler/utils/validators.py

import re
from datetime import date, datetime, time
from typing import Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

TIME_PATTERN = re.compile(r'^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$')
DATE_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$')


def validate_date_format(date_str: str) -> bool:
    """Validate date string format (YYYY-MM-DD)"""
    return bool(DATE_PATTERN.match(date_str))


def validate_time_format(time_str: str) -> bool:
    """Validate time string format (HH:MM)"""
    return bool(TIME_PATTERN.match(time_str))


def parse_date(date_str: str) -> date:
    """Parse YYYY-MM-DD, raising ValueError on anything else"""
    if not validate_date_format(date_str):
        raise ValueError(f"Invalid date format: {date_str}. Use YYYY-MM-DD")
    return datetime.strptime(date_str, "%Y-%m-%d").date()


def parse_shift_window(window: str) -> Tuple[time, time]:
    """Parse a "HH:MM-HH:MM" shift window into (start, end)"""
    try:
        start_str, end_str = window.split("-")
    except ValueError:
        raise ValueError(f"Invalid shift window {window!r}. Use HH:MM-HH:MM")

    start_str, end_str = start_str.strip(), end_str.strip()
    if not validate_time_format(start_str) or not validate_time_format(end_str):
        raise ValueError(f"Invalid shift window {window!r}. Use HH:MM-HH:MM")

    start = datetime.strptime(start_str, "%H:%M").time()
    end = datetime.strptime(end_str, "%H:%M").time()
    if end <= start:
        raise ValueError(f"Shift window {window!r} ends before it starts")
    return start, end


def normalize_weekday(name: str) -> str:
    day = name.strip().lower()
    if day not in WEEKDAYS:
        raise ValueError(f"Unknown weekday {name!r}")
    return day


def validate_timezone(name: str) -> str:
    """Reject timezone names the tz database does not know"""
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown timezone {name!r}")
    return name
