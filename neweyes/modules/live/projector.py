from __future__ import annotations

import logging
import math
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from threading import Lock
from typing import Any

from neweyes.utils.time import as_utc_datetime, utc_now_aware

logger = logging.getLogger(__name__)

Unsubscribe = Callable[[], None]


def live_remaining_seconds(
    status: str | None,
    remaining_seconds: int | float | None,
    updated_at: datetime | str | None,
    now: datetime,
) -> float:
    """Seconds left on the session clock as seen at ``now``; never negative."""
    remaining = max(0.0, float(remaining_seconds or 0))
    if status != "running":
        return remaining
    anchor = as_utc_datetime(updated_at)
    if anchor is None:
        return remaining
    elapsed = (as_utc_datetime(now) - anchor).total_seconds()
    return max(0.0, remaining - max(0.0, elapsed))


def format_clock(seconds: float) -> str:
    total = max(0, int(math.floor(seconds)))
    minutes, rest = divmod(total, 60)
    return f"{minutes}:{rest:02d}"


def encounter_percent(current: int | None, total: int | None) -> int | None:
    total_value = int(total or 0)
    if total_value <= 0:
        return None
    return round(100 * int(current or 0) / total_value)


def is_targeted(state: Mapping[str, Any], player_id: str) -> bool:
    target = str(state.get("roll_target") or "all")
    return target == "all" or target == str(player_id)


def current_round_entry(state: Mapping[str, Any], player_id: str) -> dict[str, Any] | None:
    round_id = state.get("roll_round_id")
    if not round_id:
        return None
    entry = (state.get("roll_results") or {}).get(str(player_id))
    if not isinstance(entry, dict) or entry.get("round_id") != round_id:
        return None
    return entry


@dataclass(frozen=True)
class RollView:
    status: str
    die: str | None = None
    prompt: str | None = None
    mode: str | None = None
    value: int | None = None
    source: str | None = None

    @property
    def accepts_input(self) -> bool:
        return self.status == "input"


def roll_view(state: Mapping[str, Any], player_id: str) -> RollView:
    """What one player should see for the roll request, recomputed from the current row only."""
    entry = current_round_entry(state, player_id)
    value = entry.get("value") if entry else None
    source = entry.get("source") if entry else None
    if not state.get("roll_open"):
        return RollView(status="closed", value=value, source=source)

    die = state.get("roll_die")
    prompt = state.get("roll_prompt")
    if not is_targeted(state, player_id):
        return RollView(status="not_targeted", die=die, prompt=prompt)

    mode = (state.get("roll_modes") or {}).get(str(player_id)) or "manual"
    if entry is not None:
        return RollView(status="submitted", die=die, prompt=prompt, mode=mode, value=value, source=source)
    if mode == "player":
        return RollView(status="input", die=die, prompt=prompt, mode=mode)
    if mode == "digital":
        return RollView(status="awaiting_digital", die=die, prompt=prompt, mode=mode)
    return RollView(status="awaiting_storyteller", die=die, prompt=prompt, mode=mode)


@dataclass(frozen=True)
class LiveDisplay:
    timer_status: str
    remaining_seconds: int
    clock: str
    encounter_current: int
    encounter_total: int
    encounter_percent: int | None
    roll: RollView | None
    presented_block: dict[str, Any] | None


def _unwrap(payload: Mapping[str, Any]) -> tuple[dict[str, Any], datetime | None]:
    if "new" in payload:
        row = payload.get("new")
    elif "state" in payload:
        row = payload.get("state")
    else:
        row = payload
    server_time = as_utc_datetime(payload.get("server_time")) if "server_time" in payload else None
    return dict(row or {}), server_time


class LiveStateMirror:
    """Client-side copy of one session's live state.

    Fetches the row once, then replaces the whole copy on every snapshot it is
    handed. ``now`` is injectable so the countdown can be tested without a clock.
    """

    def __init__(
        self,
        session_id: str,
        *,
        read_row: Callable[[str], Mapping[str, Any]],
        subscribe: Callable[[str, Callable[[Mapping[str, Any]], None]], Unsubscribe],
        lookup_block: Callable[[str], Mapping[str, Any] | None] | None = None,
        now: Callable[[], datetime] = utc_now_aware,
    ) -> None:
        self.session_id = str(session_id)
        self._read_row = read_row
        self._subscribe = subscribe
        self._lookup_block = lookup_block
        self._now = now
        self._lock = Lock()
        self._state: dict[str, Any] = {}
        self._skew = timedelta(0)
        self._presented_id: str | None = None
        self._presented_block: dict[str, Any] | None = None
        self._presented_resolved = True
        self._unsubscribe: Unsubscribe | None = None
        self.snapshots_seen = 0

    def start(self) -> "LiveStateMirror":
        self.on_snapshot(self._read_row(self.session_id))
        self._unsubscribe = self._subscribe(self.session_id, self.on_snapshot)
        return self

    def close(self) -> None:
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()

    @property
    def active(self) -> bool:
        return self._unsubscribe is not None

    def on_snapshot(self, payload: Mapping[str, Any]) -> None:
        row, server_time = _unwrap(payload)
        with self._lock:
            self._state = row
            self.snapshots_seen += 1
            if server_time is not None:
                self._skew = server_time - as_utc_datetime(self._now())
        self._refresh_presented(row.get("presented_block_id"))

    def _refresh_presented(self, block_id: object) -> None:
        next_id = str(block_id) if block_id else None
        with self._lock:
            if self._presented_resolved and next_id == self._presented_id:
                return
        block = None
        if next_id is not None and self._lookup_block is not None:
            try:
                found = self._lookup_block(next_id)
            except Exception:
                logger.warning("presented block lookup failed session=%s block=%s", self.session_id, next_id, exc_info=True)
                # Never show the previous block under the new id; the next render retries.
                with self._lock:
                    self._presented_id = next_id
                    self._presented_block = None
                    self._presented_resolved = False
                return
            block = dict(found) if found else None
        with self._lock:
            self._presented_id = next_id
            self._presented_block = block
            self._presented_resolved = True

    @property
    def state(self) -> dict[str, Any]:
        with self._lock:
            return dict(self._state)

    @property
    def presented_block(self) -> dict[str, Any] | None:
        with self._lock:
            return self._presented_block

    def server_now(self) -> datetime:
        return as_utc_datetime(self._now()) + self._skew

    def remaining_seconds(self) -> float:
        state = self.state
        return live_remaining_seconds(
            state.get("timer_status"),
            state.get("remaining_seconds"),
            state.get("updated_at"),
            self.server_now(),
        )

    def display(self, player_id: str | None = None) -> LiveDisplay:
        state = self.state
        self._refresh_presented(state.get("presented_block_id"))
        remaining = self.remaining_seconds()
        current = int(state.get("encounter_current") or 0)
        total = int(state.get("encounter_total") or 0)
        return LiveDisplay(
            timer_status=str(state.get("timer_status") or "stopped"),
            remaining_seconds=int(math.floor(remaining)),
            clock=format_clock(remaining),
            encounter_current=current,
            encounter_total=total,
            encounter_percent=encounter_percent(current, total),
            roll=roll_view(state, player_id) if player_id else None,
            presented_block=self.presented_block,
        )
