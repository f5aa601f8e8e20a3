"""Human-readable rendering helpers for index metadata."""

from __future__ import annotations

from datetime import datetime


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'' if count == 1 else 's'} ago"


def format_timestamp(value: datetime, now: datetime | None = None) -> str:
    """Render *value* as ``"Jan 5, 2024, 3:07 PM (2 hours ago)"``.

    Timezone-aware values are shown in local time.  Naive values are
    assumed to already be local.

    Args:
        value: The moment to render.
        now: Reference point for the relative part; defaults to the
            current time.

    Returns:
        Absolute date and time followed by a relative description.
    """
    if value.tzinfo is not None:
        value = value.astimezone()
        now = (now or datetime.now(value.tzinfo)).astimezone()
    else:
        now = now or datetime.now()

    elapsed = (now - value).total_seconds()
    minutes = int(elapsed // 60)
    hours = int(elapsed // 3600)
    days = int(elapsed // 86400)

    if minutes < 1:
        relative = "just now"
    elif minutes < 60:
        relative = _plural(minutes, "minute")
    elif hours < 24:
        relative = _plural(hours, "hour")
    else:
        relative = _plural(days, "day")

    hour12 = value.hour % 12 or 12
    meridiem = "AM" if value.hour < 12 else "PM"
    absolute = f"{value:%b} {value.day}, {value.year}, {hour12}:{value:%M} {meridiem}"
    return f"{absolute} ({relative})"
