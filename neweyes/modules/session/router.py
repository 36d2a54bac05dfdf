import asyncio
import json
import uuid

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from neweyes.config import settings
from neweyes.db import session as db_session
from neweyes.db.session import get_db
from neweyes.modules.auth.deps import get_current_profile, require_storyteller
from neweyes.modules.live.feed import get_change_feed
from neweyes.modules.session import service
from neweyes.modules.session.schemas import (
    DurationRequest,
    EncounterAdvanceRequest,
    EncounterTotalRequest,
    JoinOut,
    JoinRequest,
    LiveStateEnvelope,
    LoadEpisodeRequest,
    PlayerSessionOut,
    PresentRequest,
    RollModeRequest,
    RollOpenRequest,
    RollSubmitOut,
    RollValueRequest,
    SessionCreateRequest,
    SessionOut,
    StoryTextUpdate,
    TimerExtendRequest,
)

router = APIRouter(prefix="", tags=["sessions"])


def _sse_encode(event_name: str, payload: dict) -> str:
    return f"event: {event_name}\ndata: {json.dumps(payload, ensure_ascii=False)}\n\n"


# -- storyteller ---------------------------------------------------------------


@router.get("/storyteller/episodes")
def storyteller_episodes(_profile: dict = Depends(require_storyteller), db: Session = Depends(get_db)):
    return {"episodes": service.list_episode_choices(db)}


@router.post("/storyteller/sessions", response_model=SessionOut, status_code=201)
def create_session(
    payload: SessionCreateRequest,
    profile: dict = Depends(require_storyteller),
    db: Session = Depends(get_db),
):
    return service.create_session(db, profile, name=payload.name, episode_id=payload.episode_id)


@router.get("/storyteller/sessions", response_model=list[SessionOut])
def list_storyteller_sessions(profile: dict = Depends(require_storyteller), db: Session = Depends(get_db)):
    return service.list_storyteller_sessions(db, profile)


@router.get("/storyteller/sessions/{session_id}")
def storyteller_dashboard(
    session_id: uuid.UUID,
    profile: dict = Depends(require_storyteller),
    db: Session = Depends(get_db),
):
    return service.storyteller_dashboard(db, session_id, profile)


@router.put("/storyteller/sessions/{session_id}/story-text", response_model=SessionOut)
def update_story_text(
    session_id: uuid.UUID,
    payload: StoryTextUpdate,
    profile: dict = Depends(require_storyteller),
    db: Session = Depends(get_db),
):
    return service.update_story_text(db, session_id, profile, payload.story_text)


@router.put("/storyteller/sessions/{session_id}/episode", response_model=LiveStateEnvelope)
def load_episode(
    session_id: uuid.UUID,
    payload: LoadEpisodeRequest,
    profile: dict = Depends(require_storyteller),
    db: Session = Depends(get_db),
):
    return service.load_episode(db, session_id, profile, payload.episode_id)


@router.post("/storyteller/sessions/{session_id}/timer/start", response_model=LiveStateEnvelope)
def timer_start(session_id: uuid.UUID, profile: dict = Depends(require_storyteller), db: Session = Depends(get_db)):
    return service.start_timer(db, session_id, profile)


@router.post("/storyteller/sessions/{session_id}/timer/pause", response_model=LiveStateEnvelope)
def timer_pause(session_id: uuid.UUID, profile: dict = Depends(require_storyteller), db: Session = Depends(get_db)):
    return service.pause_timer(db, session_id, profile)


@router.post("/storyteller/sessions/{session_id}/timer/reset", response_model=LiveStateEnvelope)
def timer_reset(session_id: uuid.UUID, profile: dict = Depends(require_storyteller), db: Session = Depends(get_db)):
    return service.reset_timer(db, session_id, profile)


@router.post("/storyteller/sessions/{session_id}/timer/extend", response_model=LiveStateEnvelope)
def timer_extend(
    session_id: uuid.UUID,
    payload: TimerExtendRequest | None = None,
    profile: dict = Depends(require_storyteller),
    db: Session = Depends(get_db),
):
    delta = payload.delta_seconds if payload is not None else None
    return service.extend_timer(db, session_id, profile, delta)


@router.put("/storyteller/sessions/{session_id}/timer/duration", response_model=LiveStateEnvelope)
def timer_duration(
    session_id: uuid.UUID,
    payload: DurationRequest,
    profile: dict = Depends(require_storyteller),
    db: Session = Depends(get_db),
):
    return service.set_duration(db, session_id, profile, payload.duration_seconds)


@router.put("/storyteller/sessions/{session_id}/encounter/total", response_model=LiveStateEnvelope)
def encounter_total(
    session_id: uuid.UUID,
    payload: EncounterTotalRequest,
    profile: dict = Depends(require_storyteller),
    db: Session = Depends(get_db),
):
    return service.set_encounter_total(db, session_id, profile, payload.total)


@router.post("/storyteller/sessions/{session_id}/encounter/advance", response_model=LiveStateEnvelope)
def encounter_advance(
    session_id: uuid.UUID,
    payload: EncounterAdvanceRequest,
    profile: dict = Depends(require_storyteller),
    db: Session = Depends(get_db),
):
    return service.advance_encounter(db, session_id, profile, payload.step)


@router.post("/storyteller/sessions/{session_id}/roll/open", response_model=LiveStateEnvelope)
def roll_open(
    session_id: uuid.UUID,
    payload: RollOpenRequest,
    profile: dict = Depends(require_storyteller),
    db: Session = Depends(get_db),
):
    return service.open_roll(db, session_id, profile, die=payload.die, prompt=payload.prompt, target=payload.target)


@router.post("/storyteller/sessions/{session_id}/roll/close", response_model=LiveStateEnvelope)
def roll_close(session_id: uuid.UUID, profile: dict = Depends(require_storyteller), db: Session = Depends(get_db)):
    return service.close_roll(db, session_id, profile)


@router.put("/storyteller/sessions/{session_id}/roll/modes/{player_id}", response_model=LiveStateEnvelope)
def roll_mode(
    session_id: uuid.UUID,
    player_id: uuid.UUID,
    payload: RollModeRequest,
    profile: dict = Depends(require_storyteller),
    db: Session = Depends(get_db),
):
    return service.set_roll_mode(db, session_id, profile, player_id, payload.mode)


@router.post("/storyteller/sessions/{session_id}/roll/results/{player_id}", response_model=RollSubmitOut)
def roll_manual_result(
    session_id: uuid.UUID,
    player_id: uuid.UUID,
    payload: RollValueRequest,
    profile: dict = Depends(require_storyteller),
    db: Session = Depends(get_db),
):
    return service.record_manual_roll(db, session_id, profile, player_id, payload.value)


@router.post("/storyteller/sessions/{session_id}/roll/results/{player_id}/digital", response_model=RollSubmitOut)
def roll_digital_result(
    session_id: uuid.UUID,
    player_id: uuid.UUID,
    profile: dict = Depends(require_storyteller),
    db: Session = Depends(get_db),
):
    return service.record_digital_roll(db, session_id, profile, player_id)


@router.post("/storyteller/sessions/{session_id}/present", response_model=LiveStateEnvelope)
def present(
    session_id: uuid.UUID,
    payload: PresentRequest,
    profile: dict = Depends(require_storyteller),
    db: Session = Depends(get_db),
):
    return service.present_block(db, session_id, profile, payload.block_id)


@router.delete("/storyteller/sessions/{session_id}/present", response_model=LiveStateEnvelope)
def clear_present(session_id: uuid.UUID, profile: dict = Depends(require_storyteller), db: Session = Depends(get_db)):
    return service.clear_presented(db, session_id, profile)


# -- player --------------------------------------------------------------------


@router.post("/player/sessions/join", response_model=JoinOut)
def join_session(payload: JoinRequest, profile: dict = Depends(get_current_profile), db: Session = Depends(get_db)):
    return service.join_session(db, profile, payload.code)


@router.post("/player/sessions/{session_id}/leave", status_code=204)
def leave_session(session_id: uuid.UUID, profile: dict = Depends(get_current_profile), db: Session = Depends(get_db)):
    service.leave_session(db, profile, session_id)


@router.get("/player/sessions", response_model=list[PlayerSessionOut])
def list_player_sessions(profile: dict = Depends(get_current_profile), db: Session = Depends(get_db)):
    return service.list_player_sessions(db, profile)


@router.get("/player/sessions/{session_id}/stage")
def player_stage(session_id: uuid.UUID, profile: dict = Depends(get_current_profile), db: Session = Depends(get_db)):
    return service.player_stage(db, session_id, profile)


@router.post("/player/sessions/{session_id}/roll", response_model=RollSubmitOut)
def player_roll(
    session_id: uuid.UUID,
    payload: RollValueRequest,
    profile: dict = Depends(get_current_profile),
    db: Session = Depends(get_db),
):
    return service.submit_player_roll(db, session_id, profile, payload.value)


@router.post("/player/sessions/{session_id}/roll/digital", response_model=RollSubmitOut)
def player_roll_digital(
    session_id: uuid.UUID,
    profile: dict = Depends(get_current_profile),
    db: Session = Depends(get_db),
):
    return service.player_digital_roll(db, session_id, profile)


# -- shared live state ---------------------------------------------------------


@router.get("/sessions/{session_id}/state", response_model=LiveStateEnvelope)
def get_state(session_id: uuid.UUID, profile: dict = Depends(get_current_profile), db: Session = Depends(get_db)):
    return service.read_state(db, session_id, profile)


@router.get("/sessions/{session_id}/presented")
def get_presented(session_id: uuid.UUID, profile: dict = Depends(get_current_profile), db: Session = Depends(get_db)):
    return service.presented_block(db, session_id, profile)


def _read_state_once(session_id: uuid.UUID, profile: dict) -> dict:
    with db_session.SessionLocal() as db:
        return service.read_state(db, session_id, profile)


@router.get("/sessions/{session_id}/state/stream")
async def stream_state(
    session_id: uuid.UUID,
    request: Request,
    limit: int | None = Query(default=None, ge=1),
    profile: dict = Depends(get_current_profile),
):
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[dict] = asyncio.Queue()
    # Subscribe before the initial read so no change between the two is lost.
    unsubscribe = get_change_feed().subscribe(session_id, lambda row: loop.call_soon_threadsafe(queue.put_nowait, row))
    try:
        initial = await run_in_threadpool(_read_state_once, session_id, profile)
    except Exception:
        unsubscribe()
        raise

    async def _event_stream():
        sent = 0
        try:
            yield _sse_encode("snapshot", {"new": initial["state"], "server_time": initial["server_time"]})
            sent += 1
            while limit is None or sent < limit:
                if await request.is_disconnected():
                    break
                try:
                    row = await asyncio.wait_for(queue.get(), timeout=settings.live_stream_keepalive_s)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield _sse_encode("snapshot", {"new": row, "server_time": service.server_time()})
                sent += 1
        finally:
            unsubscribe()

    return StreamingResponse(
        _event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
