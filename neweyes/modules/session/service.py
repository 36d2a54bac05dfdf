import logging
import secrets
import uuid
from collections.abc import Callable
from typing import Any

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from neweyes.config import settings
from neweyes.db.models import Episode, EpisodeBlock, Profile, SessionPlayer, SessionState
from neweyes.db.models import Session as LiveSession
from neweyes.modules.episodes import ordering
from neweyes.modules.live import mutators
from neweyes.modules.live.feed import get_change_feed
from neweyes.modules.live.mutators import LiveStateError, RollSubmission
from neweyes.modules.live.projector import current_round_entry, encounter_percent, format_clock, is_targeted
from neweyes.modules.live.projector import live_remaining_seconds, roll_view
from neweyes.modules.session.schemas import SessionOut
from neweyes.utils.ids import is_uuid
from neweyes.utils.time import isoformat_utc, utc_now_aware

logger = logging.getLogger(__name__)

JOIN_CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"


def _not_found(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=404, detail={"code": code, "message": message})


def _forbidden(message: str) -> HTTPException:
    return HTTPException(status_code=403, detail={"code": "FORBIDDEN", "message": message})


def _live_error(exc: LiveStateError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail={"code": exc.code, "message": exc.message})


def state_conflict(target: object, exc: StaleDataError) -> HTTPException:
    logger.warning("live state write lost a race target=%s: %s", target, exc)
    return HTTPException(
        status_code=409,
        detail={"code": "STATE_CONFLICT", "message": "Live state changed while this request was applied; retry."},
    )


def server_time() -> str:
    return isoformat_utc(utc_now_aware())


def state_row(state: SessionState) -> dict[str, Any]:
    return {
        "session_id": str(state.session_id),
        "timer_status": state.timer_status,
        "duration_seconds": int(state.duration_seconds or 0),
        "remaining_seconds": int(state.remaining_seconds or 0),
        "updated_at": isoformat_utc(state.updated_at),
        "encounter_current": int(state.encounter_current or 0),
        "encounter_total": int(state.encounter_total or 0),
        "roll_open": bool(state.roll_open),
        "roll_die": state.roll_die,
        "roll_prompt": state.roll_prompt,
        "roll_target": state.roll_target or mutators.ROLL_TARGET_ALL,
        "roll_round_id": state.roll_round_id,
        "roll_results": dict(state.roll_results or {}),
        "roll_modes": dict(state.roll_modes or {}),
        "presented_block_id": str(state.presented_block_id) if state.presented_block_id else None,
        "revision": int(state.revision or 0),
    }


def envelope(row: dict[str, Any]) -> dict[str, Any]:
    return {"state": row, "server_time": server_time()}


def generate_join_code(length: int | None = None) -> str:
    size = length or settings.join_code_length
    return "".join(secrets.choice(JOIN_CODE_ALPHABET) for _ in range(size))


def _require_session(db: Session, session_id: uuid.UUID) -> LiveSession:
    sess = db.get(LiveSession, session_id)
    if not sess:
        raise _not_found("SESSION_NOT_FOUND", "Session not found.")
    return sess


def _require_state(db: Session, session_id: uuid.UUID) -> SessionState:
    state = db.get(SessionState, session_id)
    if not state:
        raise _not_found("SESSION_STATE_NOT_FOUND", "Session state not found.")
    return state


def _is_owner(sess: LiveSession, profile: dict) -> bool:
    return sess.storyteller_id == profile["id"] or bool(profile.get("is_admin"))


def _require_owner(sess: LiveSession, profile: dict) -> None:
    if not _is_owner(sess, profile):
        raise _forbidden("Only the session's storyteller can do that.")


def _is_joined(db: Session, session_id: uuid.UUID, player_id: uuid.UUID) -> bool:
    stmt = select(SessionPlayer.id).where(SessionPlayer.session_id == session_id, SessionPlayer.player_id == player_id)
    return db.execute(stmt).first() is not None


def _require_participant(db: Session, sess: LiveSession, profile: dict) -> None:
    if _is_owner(sess, profile) or _is_joined(db, sess.id, profile["id"]):
        return
    raise _forbidden("Join the session first.")


def publish_session_state(db: Session, session_id: uuid.UUID) -> dict[str, Any] | None:
    with db.begin():
        state = db.get(SessionState, session_id)
        row = state_row(state) if state else None
    if row is not None:
        get_change_feed().publish(session_id, row)
    return row


def _apply(db: Session, state: SessionState, patch: dict[str, Any]) -> None:
    for name, value in patch.items():
        setattr(state, name, value)
    state.revision = int(state.revision or 0) + 1


def _commit_and_publish(db: Session, session_id: uuid.UUID, state: SessionState, changed: bool) -> dict[str, Any]:
    db.refresh(state)
    row = state_row(state)
    if changed:
        get_change_feed().publish(session_id, row)
    return row


def _storyteller_apply(
    db: Session,
    session_id: uuid.UUID,
    profile: dict,
    compute: Callable[[LiveSession, dict[str, Any]], dict[str, Any]],
) -> dict[str, Any]:
    try:
        with db.begin():
            sess = _require_session(db, session_id)
            _require_owner(sess, profile)
            state = _require_state(db, session_id)
            try:
                patch = compute(sess, state_row(state))
            except LiveStateError as exc:
                raise _live_error(exc) from exc
            if patch:
                _apply(db, state, patch)
    except StaleDataError as exc:
        raise state_conflict(session_id, exc) from exc
    row = _commit_and_publish(db, session_id, state, bool(patch))
    logger.info("live state patched session=%s fields=%s revision=%s", session_id, sorted(patch), row["revision"])
    return envelope(row)


# -- storyteller: sessions ---------------------------------------------------


def create_session(db: Session, profile: dict, *, name: str, episode_id: uuid.UUID | None = None) -> LiveSession:
    last_error: IntegrityError | None = None
    for attempt in range(1, settings.join_code_attempts + 1):
        try:
            with db.begin():
                episode = None
                if episode_id is not None:
                    episode = db.get(Episode, episode_id)
                    if not episode:
                        raise _not_found("EPISODE_NOT_FOUND", "Episode not found.")
                sess = LiveSession(
                    name=name.strip(),
                    join_code=generate_join_code(),
                    storyteller_id=profile["id"],
                    episode_id=episode.id if episode else None,
                    story_text=episode.story_text if episode else "",
                )
                db.add(sess)
                db.flush()
                defaults = mutators.initial_state(
                    duration_seconds=episode.default_duration_seconds if episode else settings.default_duration_seconds,
                    encounter_total=episode.default_encounter_total if episode else settings.default_encounter_total,
                    now=utc_now_aware(),
                )
                db.add(SessionState(session_id=sess.id, revision=0, **defaults))
        except IntegrityError as exc:
            last_error = exc
            logger.warning("join code collision on attempt %s/%s", attempt, settings.join_code_attempts)
            continue
        db.refresh(sess)
        logger.info("session created id=%s storyteller=%s code=%s", sess.id, profile["id"], sess.join_code)
        return sess
    raise HTTPException(
        status_code=409,
        detail={"code": "JOIN_CODE_EXHAUSTED", "message": "Could not allocate a unique join code, try again."},
    ) from last_error


def list_storyteller_sessions(db: Session, profile: dict) -> list[LiveSession]:
    stmt = select(LiveSession).order_by(LiveSession.created_at.desc())
    if not profile.get("is_admin"):
        stmt = stmt.where(LiveSession.storyteller_id == profile["id"])
    return list(db.execute(stmt).scalars().all())


def list_episode_choices(db: Session) -> list[dict[str, Any]]:
    rows = db.execute(select(Episode).order_by(Episode.created_at.desc(), Episode.title)).scalars().all()
    return [
        {
            "id": str(row.id),
            "title": row.title,
            "episode_code": row.episode_code,
            "default_duration_seconds": row.default_duration_seconds,
            "default_encounter_total": row.default_encounter_total,
        }
        for row in rows
    ]


def _block_payload(block: EpisodeBlock) -> dict[str, Any]:
    return {
        "id": str(block.id),
        "episode_id": str(block.episode_id),
        "sort_order": block.sort_order,
        "block_type": block.block_type,
        "audience": block.audience,
        "mode": block.mode,
        "title": block.title,
        "body": block.body,
        "image_url": block.image_url,
        "meta": dict(block.meta or {}),
    }


def _players(db: Session, session_id: uuid.UUID, row: dict[str, Any]) -> list[dict[str, Any]]:
    stmt = (
        select(SessionPlayer, Profile)
        .join(Profile, Profile.id == SessionPlayer.player_id)
        .where(SessionPlayer.session_id == session_id)
        .order_by(SessionPlayer.joined_at)
    )
    out = []
    for link, player in db.execute(stmt).all():
        key = str(player.id)
        entry = current_round_entry(row, key)
        if entry is not None:
            status = "submitted"
        elif not row["roll_open"]:
            status = "closed"
        elif not is_targeted(row, key):
            status = "not_targeted"
        else:
            status = "pending"
        out.append(
            {
                "player_id": key,
                "display_name": player.display_name or player.email,
                "joined_at": isoformat_utc(link.joined_at),
                "roll_mode": mutators.roll_mode_for(row, key),
                "roll_status": status,
                "roll_value": entry.get("value") if entry else None,
                "roll_source": entry.get("source") if entry else None,
            }
        )
    return out


def storyteller_dashboard(db: Session, session_id: uuid.UUID, profile: dict) -> dict[str, Any]:
    sess = _require_session(db, session_id)
    _require_owner(sess, profile)
    row = state_row(_require_state(db, session_id))
    episode = db.get(Episode, sess.episode_id) if sess.episode_id else None
    groups: list[dict[str, Any]] = []
    progression = 0
    if episode is not None:
        blocks = db.execute(
            select(EpisodeBlock)
            .where(EpisodeBlock.episode_id == episode.id)
            .order_by(EpisodeBlock.sort_order, EpisodeBlock.created_at)
        ).scalars().all()
        progression = ordering.progression_count(blocks)
        for group in ordering.group_blocks_by_scene(blocks):
            groups.append(
                {
                    "scene": _block_payload(group.scene) if group.scene is not None else None,
                    "blocks": [_block_payload(block) for block in group.blocks],
                }
            )
    return {
        "session": SessionOut.model_validate(sess).model_dump(mode="json"),
        "episode": {"id": str(episode.id), "title": episode.title, "episode_code": episode.episode_code}
        if episode
        else None,
        "state": row,
        "server_time": server_time(),
        "players": _players(db, session_id, row),
        "scene_groups": groups,
        "progression_count": progression,
    }


def update_story_text(db: Session, session_id: uuid.UUID, profile: dict, story_text: str) -> LiveSession:
    with db.begin():
        sess = _require_session(db, session_id)
        _require_owner(sess, profile)
        sess.story_text = story_text
    db.refresh(sess)
    return sess


def load_episode(db: Session, session_id: uuid.UUID, profile: dict, episode_id: uuid.UUID) -> dict[str, Any]:
    def _compute(sess: LiveSession, row: dict[str, Any]) -> dict[str, Any]:
        episode = db.get(Episode, episode_id)
        if not episode:
            raise _not_found("EPISODE_NOT_FOUND", "Episode not found.")
        sess.episode_id = episode.id
        sess.story_text = episode.story_text or ""
        return mutators.load_episode(
            row,
            duration_seconds=episode.default_duration_seconds,
            encounter_total=episode.default_encounter_total,
            now=utc_now_aware(),
        )

    return _storyteller_apply(db, session_id, profile, _compute)


# -- storyteller: live state -------------------------------------------------


def start_timer(db: Session, session_id: uuid.UUID, profile: dict) -> dict[str, Any]:
    return _storyteller_apply(db, session_id, profile, lambda _s, row: mutators.start_timer(row, now=utc_now_aware()))


def pause_timer(db: Session, session_id: uuid.UUID, profile: dict) -> dict[str, Any]:
    return _storyteller_apply(db, session_id, profile, lambda _s, row: mutators.pause_timer(row, now=utc_now_aware()))


def reset_timer(db: Session, session_id: uuid.UUID, profile: dict) -> dict[str, Any]:
    return _storyteller_apply(db, session_id, profile, lambda _s, row: mutators.reset_timer(row, now=utc_now_aware()))


def extend_timer(db: Session, session_id: uuid.UUID, profile: dict, delta_seconds: int | None) -> dict[str, Any]:
    delta = settings.timer_extend_seconds if delta_seconds is None else delta_seconds
    return _storyteller_apply(
        db, session_id, profile, lambda _s, row: mutators.extend_timer(row, delta, now=utc_now_aware())
    )


def set_duration(db: Session, session_id: uuid.UUID, profile: dict, seconds: int) -> dict[str, Any]:
    return _storyteller_apply(
        db, session_id, profile, lambda _s, row: mutators.set_duration(row, seconds, now=utc_now_aware())
    )


def set_encounter_total(db: Session, session_id: uuid.UUID, profile: dict, total: int) -> dict[str, Any]:
    return _storyteller_apply(db, session_id, profile, lambda _s, row: mutators.set_encounter_total(row, total))


def advance_encounter(db: Session, session_id: uuid.UUID, profile: dict, step: int) -> dict[str, Any]:
    return _storyteller_apply(db, session_id, profile, lambda _s, row: mutators.advance_encounter(row, step))


def open_roll(
    db: Session, session_id: uuid.UUID, profile: dict, *, die: str, prompt: str | None, target: str
) -> dict[str, Any]:
    def _compute(_sess: LiveSession, row: dict[str, Any]) -> dict[str, Any]:
        patch = mutators.open_roll(row, die, prompt, target)
        if patch["roll_target"] != mutators.ROLL_TARGET_ALL and not _is_joined(
            db, session_id, uuid.UUID(patch["roll_target"])
        ):
            raise LiveStateError("PLAYER_NOT_IN_SESSION", "Roll target has not joined this session.")
        return patch

    return _storyteller_apply(db, session_id, profile, _compute)


def close_roll(db: Session, session_id: uuid.UUID, profile: dict) -> dict[str, Any]:
    return _storyteller_apply(db, session_id, profile, lambda _s, row: mutators.close_roll(row))


def set_roll_mode(db: Session, session_id: uuid.UUID, profile: dict, player_id: uuid.UUID, mode: str) -> dict[str, Any]:
    def _compute(_sess: LiveSession, row: dict[str, Any]) -> dict[str, Any]:
        if not _is_joined(db, session_id, player_id):
            raise LiveStateError("PLAYER_NOT_IN_SESSION", "Player has not joined this session.")
        return mutators.set_roll_mode(row, str(player_id), mode)

    return _storyteller_apply(db, session_id, profile, _compute)


def present_block(db: Session, session_id: uuid.UUID, profile: dict, block_id: uuid.UUID) -> dict[str, Any]:
    def _compute(sess: LiveSession, row: dict[str, Any]) -> dict[str, Any]:
        block = db.get(EpisodeBlock, block_id)
        if not block:
            raise _not_found("BLOCK_NOT_FOUND", "Block not found.")
        return mutators.present_block(
            row,
            str(block.id),
            block_episode_id=str(block.episode_id),
            session_episode_id=str(sess.episode_id) if sess.episode_id else None,
        )

    return _storyteller_apply(db, session_id, profile, _compute)


def clear_presented(db: Session, session_id: uuid.UUID, profile: dict) -> dict[str, Any]:
    return _storyteller_apply(db, session_id, profile, lambda _s, row: mutators.clear_presented(row))


# -- roll submissions --------------------------------------------------------


def _submit(
    db: Session,
    session_id: uuid.UUID,
    authorize: Callable[[LiveSession], None],
    submit: Callable[[dict[str, Any]], RollSubmission],
) -> dict[str, Any]:
    try:
        with db.begin():
            sess = _require_session(db, session_id)
            authorize(sess)
            state = _require_state(db, session_id)
            try:
                result = submit(state_row(state))
            except LiveStateError as exc:
                raise _live_error(exc) from exc
            if result.accepted:
                _apply(db, state, result.patch)
    except StaleDataError as exc:
        raise state_conflict(session_id, exc) from exc
    row = _commit_and_publish(db, session_id, state, result.accepted)
    if not result.accepted:
        logger.info("roll submission rejected session=%s reason=%s", session_id, result.reason)
    return {
        "accepted": result.accepted,
        "reason": result.reason,
        "entry": result.entry,
        "state": row,
        "server_time": server_time(),
    }


def record_manual_roll(
    db: Session, session_id: uuid.UUID, profile: dict, player_id: uuid.UUID, value: int
) -> dict[str, Any]:
    def _authorize(sess: LiveSession) -> None:
        _require_owner(sess, profile)
        if not _is_joined(db, session_id, player_id):
            raise HTTPException(
                status_code=422,
                detail={"code": "PLAYER_NOT_IN_SESSION", "message": "Player has not joined this session."},
            )

    return _submit(
        db,
        session_id,
        _authorize,
        lambda row: mutators.submit_roll_result(
            row, str(player_id), value, "manual", now=utc_now_aware(), entered_by=str(profile["id"])
        ),
    )


def record_digital_roll(db: Session, session_id: uuid.UUID, profile: dict, player_id: uuid.UUID) -> dict[str, Any]:
    def _authorize(sess: LiveSession) -> None:
        _require_owner(sess, profile)
        if not _is_joined(db, session_id, player_id):
            raise HTTPException(
                status_code=422,
                detail={"code": "PLAYER_NOT_IN_SESSION", "message": "Player has not joined this session."},
            )

    return _submit(
        db,
        session_id,
        _authorize,
        lambda row: mutators.roll_digital(row, str(player_id), now=utc_now_aware(), entered_by=str(profile["id"])),
    )


def _require_joined_player(db: Session, session_id: uuid.UUID, profile: dict) -> Callable[[LiveSession], None]:
    def _authorize(_sess: LiveSession) -> None:
        if not _is_joined(db, session_id, profile["id"]):
            raise _forbidden("Join the session first.")

    return _authorize


def submit_player_roll(db: Session, session_id: uuid.UUID, profile: dict, value: int) -> dict[str, Any]:
    return _submit(
        db,
        session_id,
        _require_joined_player(db, session_id, profile),
        lambda row: mutators.submit_roll_result(row, str(profile["id"]), value, "player", now=utc_now_aware()),
    )


def player_digital_roll(db: Session, session_id: uuid.UUID, profile: dict) -> dict[str, Any]:
    player_key = str(profile["id"])

    def _roll(row: dict[str, Any]) -> RollSubmission:
        if row["roll_open"] and mutators.roll_mode_for(row, player_key) != "digital":
            return RollSubmission(accepted=False, reason="MODE_MISMATCH")
        return mutators.roll_digital(row, player_key, now=utc_now_aware())

    return _submit(db, session_id, _require_joined_player(db, session_id, profile), _roll)


# -- players -----------------------------------------------------------------


def _find_session_by_code(db: Session, code: str) -> LiveSession | None:
    text = code.strip()
    if is_uuid(text):
        return db.get(LiveSession, uuid.UUID(text))
    return db.execute(select(LiveSession).where(LiveSession.join_code == text.upper())).scalar_one_or_none()


def join_session(db: Session, profile: dict, code: str) -> dict[str, Any]:
    with db.begin():
        sess = _find_session_by_code(db, code)
        if sess is None:
            raise _not_found("SESSION_NOT_FOUND", "No session matches that code.")
        session_id, name = sess.id, sess.name
        already = _is_joined(db, session_id, profile["id"])
    if not already:
        try:
            with db.begin():
                db.add(SessionPlayer(session_id=session_id, player_id=profile["id"]))
        except IntegrityError:
            # Lost a race with a concurrent join for the same player.
            already = True
        else:
            logger.info("player joined session=%s player=%s", session_id, profile["id"])
    return {"session_id": session_id, "name": name, "already_joined": already}


def leave_session(db: Session, profile: dict, session_id: uuid.UUID) -> None:
    with db.begin():
        _require_session(db, session_id)
        link = db.execute(
            select(SessionPlayer).where(SessionPlayer.session_id == session_id, SessionPlayer.player_id == profile["id"])
        ).scalar_one_or_none()
        if link is not None:
            db.delete(link)


def list_player_sessions(db: Session, profile: dict) -> list[dict[str, Any]]:
    stmt = (
        select(SessionPlayer, LiveSession, Episode)
        .join(LiveSession, LiveSession.id == SessionPlayer.session_id)
        .outerjoin(Episode, Episode.id == LiveSession.episode_id)
        .where(SessionPlayer.player_id == profile["id"])
        .order_by(SessionPlayer.joined_at.desc())
    )
    return [
        {
            "id": sess.id,
            "name": sess.name,
            "episode_title": episode.title if episode else None,
            "joined_at": link.joined_at,
        }
        for link, sess, episode in db.execute(stmt).all()
    ]


def _visible_block(db: Session, block_id: str | None, *, include_storyteller: bool) -> dict[str, Any] | None:
    if not block_id:
        return None
    block = db.get(EpisodeBlock, uuid.UUID(block_id))
    if block is None:
        return None
    if block.audience == "storyteller" and not include_storyteller:
        return None
    return _block_payload(block)


def player_stage(db: Session, session_id: uuid.UUID, profile: dict) -> dict[str, Any]:
    sess = _require_session(db, session_id)
    _require_participant(db, sess, profile)
    row = state_row(_require_state(db, session_id))
    now = utc_now_aware()
    remaining = live_remaining_seconds(row["timer_status"], row["remaining_seconds"], row["updated_at"], now)
    view = roll_view(row, str(profile["id"]))
    return {
        "session": {"id": str(sess.id), "name": sess.name, "story_text": sess.story_text},
        "state": row,
        "server_time": isoformat_utc(now),
        "presented_block": _visible_block(db, row["presented_block_id"], include_storyteller=_is_owner(sess, profile)),
        "players": [
            {"player_id": p["player_id"], "display_name": p["display_name"]} for p in _players(db, session_id, row)
        ],
        "view": {
            "remaining_seconds": int(remaining),
            "clock": format_clock(remaining),
            "encounter_percent": encounter_percent(row["encounter_current"], row["encounter_total"]),
            "roll": {
                "status": view.status,
                "die": view.die,
                "prompt": view.prompt,
                "mode": view.mode,
                "value": view.value,
                "source": view.source,
            },
        },
    }


# -- shared reads ------------------------------------------------------------


def read_state(db: Session, session_id: uuid.UUID, profile: dict) -> dict[str, Any]:
    sess = _require_session(db, session_id)
    _require_participant(db, sess, profile)
    return envelope(state_row(_require_state(db, session_id)))


def presented_block(db: Session, session_id: uuid.UUID, profile: dict) -> dict[str, Any]:
    sess = _require_session(db, session_id)
    _require_participant(db, sess, profile)
    state = _require_state(db, session_id)
    block_id = str(state.presented_block_id) if state.presented_block_id else None
    return {
        "presented_block_id": block_id,
        "block": _visible_block(db, block_id, include_storyteller=_is_owner(sess, profile)),
    }
