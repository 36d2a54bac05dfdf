from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from neweyes.utils.time import as_utc_datetime, isoformat_utc, utc_now_aware, utc_now_naive


def test_utc_now_aware_returns_aware_utc() -> None:
    now = utc_now_aware()
    assert now.tzinfo is not None
    assert now.utcoffset() == timezone.utc.utcoffset(now)


def test_utc_now_naive_is_utc_naive_timestamp() -> None:
    before = utc_now_aware()
    naive = utc_now_naive()
    after = utc_now_aware()

    assert naive.tzinfo is None
    as_aware = naive.replace(tzinfo=timezone.utc)
    assert before <= as_aware <= after


def test_stored_naive_values_serialize_as_utc() -> None:
    stored = datetime(2026, 3, 1, 18, 0, 0)
    assert isoformat_utc(stored) == "2026-03-01T18:00:00+00:00"
    assert as_utc_datetime("2026-03-01T18:00:00Z") == stored.replace(tzinfo=timezone.utc)
    assert as_utc_datetime("") is None


def test_no_datetime_utcnow_in_app_code() -> None:
    banned = "datetime.utcnow("
    hits: list[str] = []
    root = Path(__file__).resolve().parents[1]
    for path in (root / "neweyes").rglob("*.py"):
        text = path.read_text(encoding="utf-8")
        if banned in text:
            hits.append(str(path))

    assert hits == []
