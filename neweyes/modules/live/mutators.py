"""Storyteller-side operations on a session's live state.

Every mutator is a pure function of a full-row snapshot (plain dict, as
produced by ``neweyes.modules.session.service.state_row``) and returns the
patch to apply. Persisting the patch, bumping ``revision`` and publishing the
new row is the caller's job.
"""

from __future__ import annotations

import math
import random
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from neweyes.modules.live.projector import current_round_entry, is_targeted, live_remaining_seconds
from neweyes.utils.ids import is_uuid
from neweyes.utils.time import as_naive_utc, isoformat_utc

TIMER_STATUSES = ("stopped", "running", "paused")
DIE_CHOICES = ("d4", "d6", "d8", "d10", "d12", "d20", "d100")
ROLL_SOURCES = ("manual", "digital", "player")
ROLL_MODES = ("manual", "digital", "player")
DEFAULT_ROLL_MODE = "manual"
ROLL_TARGET_ALL = "all"
MAX_DURATION_SECONDS = 24 * 60 * 60
MAX_PROMPT_LENGTH = 500

State = Mapping[str, Any]
Patch = dict[str, Any]


class LiveStateError(Exception):
    def __init__(self, code: str, message: str, *, status_code: int = 422) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code


@dataclass(frozen=True)
class RollSubmission:
    accepted: bool
    reason: str | None = None
    patch: Patch = field(default_factory=dict)
    entry: dict[str, Any] | None = None


def die_faces(die: str | None) -> int | None:
    if die not in DIE_CHOICES:
        return None
    return int(str(die)[1:])


def _settled_remaining(state: State, now: datetime) -> int:
    live = live_remaining_seconds(
        state.get("timer_status"),
        state.get("remaining_seconds"),
        state.get("updated_at"),
        now,
    )
    return int(math.floor(live))


def _require_int(value: object, *, code: str, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise LiveStateError(code, f"{label} must be a whole number.")
    return value


def initial_state(*, duration_seconds: int, encounter_total: int, now: datetime) -> Patch:
    return {
        "timer_status": "stopped",
        "duration_seconds": max(0, int(duration_seconds)),
        "remaining_seconds": max(0, int(duration_seconds)),
        "updated_at": as_naive_utc(now),
        "encounter_current": 0,
        "encounter_total": max(0, int(encounter_total)),
        "roll_open": False,
        "roll_die": None,
        "roll_prompt": None,
        "roll_target": ROLL_TARGET_ALL,
        "roll_round_id": None,
        "roll_results": {},
        "roll_modes": {},
        "presented_block_id": None,
    }


# -- timer ------------------------------------------------------------------


def start_timer(state: State, *, now: datetime) -> Patch:
    # Resume in place; an already running clock is settled so the new anchor does not rewind it.
    remaining = _settled_remaining(state, now) if state.get("timer_status") == "running" else int(
        state.get("remaining_seconds") or 0
    )
    return {"timer_status": "running", "remaining_seconds": max(0, remaining), "updated_at": as_naive_utc(now)}


def pause_timer(state: State, *, now: datetime) -> Patch:
    return {
        "timer_status": "paused",
        "remaining_seconds": max(0, _settled_remaining(state, now)),
        "updated_at": as_naive_utc(now),
    }


def reset_timer(state: State, *, now: datetime) -> Patch:
    return {
        "timer_status": "stopped",
        "remaining_seconds": max(0, int(state.get("duration_seconds") or 0)),
        "updated_at": as_naive_utc(now),
    }


def extend_timer(state: State, delta_seconds: int, *, now: datetime) -> Patch:
    delta = _require_int(delta_seconds, code="INVALID_DELTA", label="delta_seconds")
    if delta == 0:
        return {}
    base = _settled_remaining(state, now)
    return {"remaining_seconds": max(0, base + delta), "updated_at": as_naive_utc(now)}


def set_duration(state: State, seconds: int, *, now: datetime) -> Patch:
    value = _require_int(seconds, code="INVALID_DURATION", label="duration_seconds")
    if value < 0 or value > MAX_DURATION_SECONDS:
        raise LiveStateError("INVALID_DURATION", f"duration_seconds must be between 0 and {MAX_DURATION_SECONDS}.")
    return {
        "timer_status": "stopped",
        "duration_seconds": value,
        "remaining_seconds": value,
        "updated_at": as_naive_utc(now),
    }


# -- encounters -------------------------------------------------------------


def set_encounter_total(state: State, total: int) -> Patch:
    value = _require_int(total, code="INVALID_ENCOUNTER_TOTAL", label="encounter_total")
    if value < 0:
        raise LiveStateError("INVALID_ENCOUNTER_TOTAL", "encounter_total must be zero or more.")
    current = int(state.get("encounter_current") or 0)
    return {"encounter_total": value, "encounter_current": max(0, min(current, value))}


def advance_encounter(state: State, step: int) -> Patch:
    if step not in (1, -1):
        raise LiveStateError("INVALID_STEP", "step must be +1 or -1.")
    total = max(0, int(state.get("encounter_total") or 0))
    current = int(state.get("encounter_current") or 0) + step
    return {"encounter_current": max(0, min(current, total))}


# -- rolls ------------------------------------------------------------------


def new_round_id(previous: str | None, *, factory: Callable[[], str] | None = None) -> str:
    make = factory or (lambda: uuid.uuid4().hex)
    candidate = make()
    while candidate == previous:
        candidate = make()
    return candidate


def _clean_target(target: str | None) -> str:
    text = str(target or "").strip()
    if not text or text.lower() == ROLL_TARGET_ALL:
        return ROLL_TARGET_ALL
    if not is_uuid(text):
        raise LiveStateError("INVALID_ROLL_TARGET", "roll target must be 'all' or a player id.")
    return str(uuid.UUID(text))


def open_roll(
    state: State,
    die: str,
    prompt: str | None = None,
    target: str | None = ROLL_TARGET_ALL,
    *,
    round_id_factory: Callable[[], str] | None = None,
) -> Patch:
    if die not in DIE_CHOICES:
        raise LiveStateError("INVALID_DIE", f"die must be one of {', '.join(DIE_CHOICES)}.")
    prompt_text = str(prompt or "").strip() or None
    if prompt_text and len(prompt_text) > MAX_PROMPT_LENGTH:
        raise LiveStateError("INVALID_PROMPT", f"prompt must be at most {MAX_PROMPT_LENGTH} characters.")
    return {
        "roll_open": True,
        "roll_die": die,
        "roll_prompt": prompt_text,
        "roll_target": _clean_target(target),
        "roll_round_id": new_round_id(state.get("roll_round_id"), factory=round_id_factory),
    }


def close_roll(state: State) -> Patch:
    return {"roll_open": False, "roll_die": None, "roll_prompt": None}


def set_roll_mode(state: State, player_id: str, mode: str) -> Patch:
    if mode not in ROLL_MODES:
        raise LiveStateError("INVALID_ROLL_MODE", f"mode must be one of {', '.join(ROLL_MODES)}.")
    if not is_uuid(player_id):
        raise LiveStateError("INVALID_PLAYER_ID", "player id must be a UUID.")
    modes = dict(state.get("roll_modes") or {})
    modes[str(uuid.UUID(str(player_id)))] = mode
    return {"roll_modes": modes}


def roll_mode_for(state: State, player_id: str) -> str:
    modes = state.get("roll_modes") or {}
    mode = modes.get(str(player_id))
    return mode if mode in ROLL_MODES else DEFAULT_ROLL_MODE


def submit_roll_result(
    state: State,
    player_id: str,
    value: int,
    source: str,
    *,
    now: datetime,
    entered_by: str | None = None,
) -> RollSubmission:
    """Record ``player_id``'s result for the open round; the first submission per round wins."""
    if source not in ROLL_SOURCES:
        raise LiveStateError("INVALID_ROLL_SOURCE", f"source must be one of {', '.join(ROLL_SOURCES)}.")
    if not is_uuid(player_id):
        raise LiveStateError("INVALID_PLAYER_ID", "player id must be a UUID.")
    player_key = str(uuid.UUID(str(player_id)))
    number = _require_int(value, code="INVALID_ROLL_VALUE", label="value")

    if not state.get("roll_open") or not state.get("roll_round_id"):
        return RollSubmission(accepted=False, reason="ROLL_CLOSED")
    if not is_targeted(state, player_key):
        return RollSubmission(accepted=False, reason="NOT_TARGETED")
    if source == "player" and roll_mode_for(state, player_key) != "player":
        return RollSubmission(accepted=False, reason="MODE_MISMATCH")
    if current_round_entry(state, player_key) is not None:
        return RollSubmission(accepted=False, reason="ALREADY_SUBMITTED")

    faces = die_faces(state.get("roll_die"))
    if number < 1 or (faces is not None and number > faces):
        raise LiveStateError("INVALID_ROLL_VALUE", f"value must be between 1 and {faces or 'the die size'}.")

    entry = {
        "value": number,
        "source": source,
        "round_id": state.get("roll_round_id"),
        "submitted_at": isoformat_utc(now),
        "entered_by": entered_by or player_key,
    }
    results = dict(state.get("roll_results") or {})
    results[player_key] = entry
    return RollSubmission(accepted=True, patch={"roll_results": results}, entry=entry)


def roll_digital(
    state: State,
    player_id: str,
    *,
    now: datetime,
    entered_by: str | None = None,
    rng: random.Random | None = None,
) -> RollSubmission:
    faces = die_faces(state.get("roll_die"))
    if not state.get("roll_open") or faces is None:
        return RollSubmission(accepted=False, reason="ROLL_CLOSED")
    value = (rng or random).randint(1, faces)
    return submit_roll_result(state, player_id, value, "digital", now=now, entered_by=entered_by)


# -- presentation -----------------------------------------------------------


def present_block(
    state: State,
    block_id: str,
    *,
    block_episode_id: str | None,
    session_episode_id: str | None,
) -> Patch:
    if not session_episode_id:
        raise LiveStateError("NO_EPISODE_LOADED", "Load an episode before presenting blocks.", status_code=409)
    if block_episode_id is None or str(block_episode_id) != str(session_episode_id):
        raise LiveStateError("BLOCK_NOT_IN_EPISODE", "Block does not belong to the session's episode.")
    return {"presented_block_id": str(block_id)}


def clear_presented(state: State) -> Patch:
    return {"presented_block_id": None}


def load_episode(state: State, *, duration_seconds: int, encounter_total: int, now: datetime) -> Patch:
    patch = initial_state(duration_seconds=duration_seconds, encounter_total=encounter_total, now=now)
    # Prior round ids and modes stay so stale entries keep their history.
    patch.pop("roll_results")
    patch.pop("roll_modes")
    patch.pop("roll_round_id")
    return patch
