from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated

from pydantic import PlainSerializer


def utc_now_aware() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_naive() -> datetime:
    return utc_now_aware().astimezone(timezone.utc).replace(tzinfo=None)


def as_utc_datetime(value: datetime | str | None) -> datetime | None:
    """Coerce a stored (naive UTC) or serialized timestamp into an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        value = datetime.fromisoformat(text)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def as_naive_utc(value: datetime) -> datetime:
    aware = as_utc_datetime(value)
    assert aware is not None
    return aware.replace(tzinfo=None)


def isoformat_utc(value: datetime | None) -> str | None:
    aware = as_utc_datetime(value)
    return aware.isoformat() if aware is not None else None


UtcDatetime = Annotated[datetime, PlainSerializer(isoformat_utc, return_type=str)]
