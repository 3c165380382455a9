from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> str:
    return str(uuid.uuid4())


def parse_datetime(value: Any) -> datetime | None:
    """Best-effort ISO-8601 parse; returns None for anything unusable.

    Naive values are taken as UTC so that differences between timestamps
    never mix aware and naive datetimes.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
