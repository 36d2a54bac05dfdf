from __future__ import annotations

import random
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from neweyes.modules.live import mutators
from neweyes.modules.live.mutators import LiveStateError
from neweyes.modules.live.projector import current_round_entry, live_remaining_seconds, roll_view
from neweyes.utils.time import isoformat_utc

T0 = datetime(2026, 3, 1, 18, 0, 0, tzinfo=timezone.utc)
PLAYER_A = str(uuid.uuid4())
PLAYER_B = str(uuid.uuid4())


def _row(**overrides) -> dict:
    row = mutators.initial_state(duration_seconds=600, encounter_total=4, now=T0)
    row["updated_at"] = isoformat_utc(row["updated_at"])
    row.update(overrides)
    return row


def _apply(row: dict, patch: dict) -> dict:
    merged = {**row, **patch}
    if isinstance(merged.get("updated_at"), datetime):
        merged["updated_at"] = isoformat_utc(merged["updated_at"])
    return merged


def _ids(*values: str):
    it = iter(values)
    return lambda: next(it)


def test_initial_state_is_stopped_with_full_duration() -> None:
    row = _row()
    assert row["timer_status"] == "stopped"
    assert row["remaining_seconds"] == row["duration_seconds"] == 600
    assert row["encounter_current"] == 0
    assert row["roll_open"] is False
    assert row["roll_target"] == "all"


def test_start_then_pause_settles_elapsed_time() -> None:
    row = _apply(_row(), mutators.start_timer(_row(), now=T0))
    assert row["timer_status"] == "running"

    paused = _apply(row, mutators.pause_timer(row, now=T0 + timedelta(seconds=42)))
    assert paused["timer_status"] == "paused"
    assert paused["remaining_seconds"] == 558


def test_start_while_running_does_not_rewind_the_clock() -> None:
    row = _apply(_row(), mutators.start_timer(_row(), now=T0))
    again = _apply(row, mutators.start_timer(row, now=T0 + timedelta(seconds=10)))
    assert again["remaining_seconds"] == 590
    later = T0 + timedelta(seconds=15)
    assert live_remaining_seconds(again["timer_status"], again["remaining_seconds"], again["updated_at"], later) == 585


def test_reset_restores_duration_and_stops() -> None:
    row = _row(timer_status="paused", remaining_seconds=12)
    patch = mutators.reset_timer(row, now=T0)
    assert patch["timer_status"] == "stopped"
    assert patch["remaining_seconds"] == 600


def test_extend_adds_to_live_remaining_and_clamps_at_zero() -> None:
    running = _apply(_row(), mutators.start_timer(_row(), now=T0))
    patch = mutators.extend_timer(running, 60, now=T0 + timedelta(seconds=100))
    assert patch["remaining_seconds"] == 560
    assert "timer_status" not in patch

    shrunk = mutators.extend_timer(_row(remaining_seconds=30), -300, now=T0)
    assert shrunk["remaining_seconds"] == 0


def test_extend_by_zero_is_a_no_op_and_non_integer_delta_is_rejected() -> None:
    running = _apply(_row(), mutators.start_timer(_row(), now=T0))
    assert mutators.extend_timer(running, 0, now=T0 + timedelta(seconds=100)) == {}
    with pytest.raises(LiveStateError) as exc:
        mutators.extend_timer(_row(), 1.5, now=T0)  # type: ignore[arg-type]
    assert exc.value.code == "INVALID_DELTA"


def test_set_duration_resets_clock_and_validates_range() -> None:
    patch = mutators.set_duration(_row(timer_status="running"), 900, now=T0)
    assert patch == {
        "timer_status": "stopped",
        "duration_seconds": 900,
        "remaining_seconds": 900,
        "updated_at": T0.replace(tzinfo=None),
    }
    with pytest.raises(LiveStateError):
        mutators.set_duration(_row(), -1, now=T0)
    with pytest.raises(LiveStateError):
        mutators.set_duration(_row(), mutators.MAX_DURATION_SECONDS + 1, now=T0)


def test_non_timer_mutators_leave_updated_at_alone() -> None:
    row = _row()
    for patch in (
        mutators.advance_encounter(row, 1),
        mutators.set_encounter_total(row, 3),
        mutators.open_roll(row, "d20"),
        mutators.close_roll(row),
        mutators.clear_presented(row),
        mutators.set_roll_mode(row, PLAYER_A, "player"),
    ):
        assert "updated_at" not in patch


def test_encounter_counter_stays_in_bounds_for_any_sequence() -> None:
    rng = random.Random(7)
    row = _row(encounter_total=3)
    for _ in range(200):
        row = _apply(row, mutators.advance_encounter(row, rng.choice((1, -1))))
        assert 0 <= row["encounter_current"] <= row["encounter_total"]


def test_advance_encounter_rejects_other_steps() -> None:
    with pytest.raises(LiveStateError) as exc:
        mutators.advance_encounter(_row(), 2)
    assert exc.value.code == "INVALID_STEP"


def test_lowering_encounter_total_clamps_current() -> None:
    patch = mutators.set_encounter_total(_row(encounter_current=4, encounter_total=4), 2)
    assert patch == {"encounter_total": 2, "encounter_current": 2}


def test_open_roll_validates_die_and_target() -> None:
    with pytest.raises(LiveStateError) as exc:
        mutators.open_roll(_row(), "d7")
    assert exc.value.code == "INVALID_DIE"
    with pytest.raises(LiveStateError) as exc:
        mutators.open_roll(_row(), "d20", target="somebody")
    assert exc.value.code == "INVALID_ROLL_TARGET"

    patch = mutators.open_roll(_row(), "d8", "  Perception  ", PLAYER_A.upper())
    assert patch["roll_target"] == PLAYER_A
    assert patch["roll_prompt"] == "Perception"


def test_open_roll_always_mints_a_new_round_id() -> None:
    row = _row(roll_round_id="r1")
    patch = mutators.open_roll(row, "d20", round_id_factory=_ids("r1", "r1", "r2"))
    assert patch["roll_round_id"] == "r2"


def test_manual_result_is_recorded_with_round_and_source() -> None:
    row = _apply(_row(), mutators.open_roll(_row(), "d20", round_id_factory=_ids("r1")))
    result = mutators.submit_roll_result(row, PLAYER_A, 17, "manual", now=T0, entered_by="storyteller-1")
    assert result.accepted is True
    assert result.entry == {
        "value": 17,
        "source": "manual",
        "round_id": "r1",
        "submitted_at": isoformat_utc(T0),
        "entered_by": "storyteller-1",
    }
    assert result.patch == {"roll_results": {PLAYER_A: result.entry}}


def test_second_submission_in_same_round_is_ignored() -> None:
    row = _apply(_row(), mutators.open_roll(_row(), "d20", round_id_factory=_ids("r1")))
    first = mutators.submit_roll_result(row, PLAYER_A, 4, "manual", now=T0)
    row = _apply(row, first.patch)

    second = mutators.submit_roll_result(row, PLAYER_A, 19, "manual", now=T0)
    assert second.accepted is False
    assert second.reason == "ALREADY_SUBMITTED"
    assert second.patch == {}
    assert row["roll_results"][PLAYER_A]["value"] == 4


def test_submission_rejections() -> None:
    closed = _row()
    assert mutators.submit_roll_result(closed, PLAYER_A, 3, "manual", now=T0).reason == "ROLL_CLOSED"

    targeted = _apply(_row(), mutators.open_roll(_row(), "d6", target=PLAYER_B))
    assert mutators.submit_roll_result(targeted, PLAYER_A, 3, "manual", now=T0).reason == "NOT_TARGETED"

    open_all = _apply(_row(), mutators.open_roll(_row(), "d6"))
    assert mutators.submit_roll_result(open_all, PLAYER_A, 3, "player", now=T0).reason == "MODE_MISMATCH"


def test_out_of_range_value_is_an_error() -> None:
    row = _apply(_row(), mutators.open_roll(_row(), "d6"))
    for bad in (0, 7):
        with pytest.raises(LiveStateError) as exc:
            mutators.submit_roll_result(row, PLAYER_A, bad, "manual", now=T0)
        assert exc.value.code == "INVALID_ROLL_VALUE"
    with pytest.raises(LiveStateError) as exc:
        mutators.submit_roll_result(row, PLAYER_A, 3, "psychic", now=T0)
    assert exc.value.code == "INVALID_ROLL_SOURCE"


def test_digital_roll_uses_the_open_die() -> None:
    row = _apply(_row(), mutators.open_roll(_row(), "d4"))
    result = mutators.roll_digital(row, PLAYER_A, now=T0, rng=random.Random(3))
    assert result.accepted is True
    assert result.entry["source"] == "digital"
    assert 1 <= result.entry["value"] <= 4

    assert mutators.roll_digital(_row(), PLAYER_A, now=T0).reason == "ROLL_CLOSED"


def test_roll_lifecycle_across_rounds() -> None:
    row = _apply(_row(), mutators.set_roll_mode(_row(), PLAYER_A, "player"))
    row = _apply(row, mutators.open_roll(row, "d20", "Roll now", "all", round_id_factory=_ids("R1")))
    assert row["roll_open"] is True and row["roll_round_id"] == "R1"

    row = _apply(row, mutators.submit_roll_result(row, PLAYER_A, 14, "player", now=T0).patch)
    row = _apply(row, mutators.close_roll(row))
    row = _apply(row, mutators.open_roll(row, "d6", None, "all", round_id_factory=_ids("R2")))

    assert row["roll_round_id"] == "R2"
    assert row["roll_results"][PLAYER_A]["round_id"] == "R1"
    assert row["roll_results"][PLAYER_A]["value"] == 14
    assert current_round_entry(row, PLAYER_A) is None
    assert roll_view(row, PLAYER_A).status == "input"

    resubmit = mutators.submit_roll_result(row, PLAYER_A, 5, "player", now=T0)
    assert resubmit.accepted is True


def test_set_roll_mode_validates_mode_and_player() -> None:
    with pytest.raises(LiveStateError):
        mutators.set_roll_mode(_row(), PLAYER_A, "telepathy")
    with pytest.raises(LiveStateError):
        mutators.set_roll_mode(_row(), "not-a-player", "digital")
    row = _apply(_row(), mutators.set_roll_mode(_row(), PLAYER_A, "digital"))
    assert mutators.roll_mode_for(row, PLAYER_A) == "digital"
    assert mutators.roll_mode_for(row, PLAYER_B) == "manual"


def test_present_block_requires_loaded_episode_and_matching_block() -> None:
    with pytest.raises(LiveStateError) as exc:
        mutators.present_block(_row(), "b1", block_episode_id="e1", session_episode_id=None)
    assert exc.value.code == "NO_EPISODE_LOADED"
    assert exc.value.status_code == 409

    with pytest.raises(LiveStateError) as exc:
        mutators.present_block(_row(), "b1", block_episode_id="e2", session_episode_id="e1")
    assert exc.value.code == "BLOCK_NOT_IN_EPISODE"

    assert mutators.present_block(_row(), "b1", block_episode_id="e1", session_episode_id="e1") == {
        "presented_block_id": "b1"
    }


def test_load_episode_resets_live_state_but_keeps_roll_history() -> None:
    row = _row(
        timer_status="running",
        encounter_current=3,
        roll_open=True,
        roll_die="d20",
        roll_round_id="r9",
        roll_results={PLAYER_A: {"value": 2, "round_id": "r9"}},
        roll_modes={PLAYER_A: "player"},
        presented_block_id="b1",
    )
    patch = mutators.load_episode(row, duration_seconds=1200, encounter_total=6, now=T0)
    assert patch["timer_status"] == "stopped"
    assert patch["remaining_seconds"] == 1200
    assert patch["encounter_total"] == 6 and patch["encounter_current"] == 0
    assert patch["roll_open"] is False
    assert patch["presented_block_id"] is None
    assert "roll_results" not in patch and "roll_modes" not in patch and "roll_round_id" not in patch
