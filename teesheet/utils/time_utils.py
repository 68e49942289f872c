"""Minute-of-day helpers shared by window, slot and arrangement logic."""

from __future__ import annotations


def parse_hhmm_to_minutes(value: str | None) -> int | None:
    """Parse HH:MM into minutes after midnight."""
    if not value or ":" not in str(value):
        return None
    try:
        hh, mm = str(value).split(":", 1)
        h = int(hh)
        m = int(mm)
    except (TypeError, ValueError):
        return None
    if h < 0 or h > 23 or m < 0 or m > 59:
        return None
    return h * 60 + m


def format_minutes_hhmm(minutes: int) -> str:
    """Format minutes after midnight as zero-padded 24h HH:MM."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def format_minutes_12h(minutes: int) -> str:
    """Format minutes after midnight as ``9:00 AM``."""
    hours = (minutes // 60) % 24
    mins = minutes % 60
    hour12 = 12 if hours % 12 == 0 else hours % 12
    period = "AM" if hours < 12 else "PM"
    return f"{hour12}:{mins:02d} {period}"


def format_time_range(start_minutes: int, end_minutes: int) -> str:
    return f"{format_minutes_12h(start_minutes)} - {format_minutes_12h(end_minutes)}"
