import logging
import uuid

from fastapi import HTTPException, UploadFile
from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from neweyes.db.models import Episode, EpisodeBlock, SessionState
from neweyes.modules.episodes import ordering
from neweyes.modules.episodes.schemas import BlockCreate, BlockUpdate, EpisodeCreate, EpisodeUpdate
from neweyes.modules.session import service as session_service
from neweyes.modules.storage.service import (
    EPISODE_ASSETS_BUCKET,
    BlobStorage,
    episode_map_path,
    put_object,
    validate_image_upload,
)
from neweyes.utils.forms import parse_meta_json

logger = logging.getLogger(__name__)

_EPISODE_FIELDS = (
    "title",
    "episode_code",
    "story_text",
    "summary",
    "default_duration_seconds",
    "default_encounter_total",
    "map_image_url",
    "npc_image_url",
    "tags",
)
_BLOCK_FIELDS = ("block_type", "audience", "mode", "title", "body", "image_url")
_NON_NULL_BLOCK_FIELDS = {"block_type", "audience", "mode"}


def _require_episode(db: Session, episode_id: uuid.UUID) -> Episode:
    episode = db.get(Episode, episode_id)
    if not episode:
        raise HTTPException(status_code=404, detail={"code": "EPISODE_NOT_FOUND", "message": "Episode not found."})
    return episode


def _require_block(db: Session, episode_id: uuid.UUID, block_id: uuid.UUID) -> EpisodeBlock:
    block = db.get(EpisodeBlock, block_id)
    if not block or block.episode_id != episode_id:
        raise HTTPException(status_code=404, detail={"code": "BLOCK_NOT_FOUND", "message": "Block not found."})
    return block


def list_episodes(db: Session) -> list[Episode]:
    return list(db.execute(select(Episode).order_by(Episode.created_at.desc(), Episode.title)).scalars().all())


def list_blocks(db: Session, episode_id: uuid.UUID) -> list[EpisodeBlock]:
    stmt = (
        select(EpisodeBlock)
        .where(EpisodeBlock.episode_id == episode_id)
        .order_by(EpisodeBlock.sort_order, EpisodeBlock.created_at)
    )
    return list(db.execute(stmt).scalars().all())


def episode_detail(db: Session, episode_id: uuid.UUID) -> dict:
    episode = _require_episode(db, episode_id)
    blocks = list_blocks(db, episode_id)
    return {
        **{name: getattr(episode, name) for name in _EPISODE_FIELDS},
        "id": episode.id,
        "tags": list(episode.tags or []),
        "created_at": episode.created_at,
        "updated_at": episode.updated_at,
        "blocks": blocks,
        "progression_count": ordering.progression_count(blocks),
    }


def create_episode(db: Session, payload: EpisodeCreate) -> Episode:
    with db.begin():
        episode = Episode(**payload.model_dump())
        db.add(episode)
    db.refresh(episode)
    logger.info("episode created id=%s title=%r", episode.id, episode.title)
    return episode


def update_episode(db: Session, episode_id: uuid.UUID, payload: EpisodeUpdate) -> Episode:
    changes = payload.model_dump(include=payload.model_fields_set)
    if "title" in changes and not changes["title"]:
        raise HTTPException(status_code=422, detail={"code": "TITLE_REQUIRED", "message": "Title is required."})
    for name in ("story_text", "default_duration_seconds", "default_encounter_total"):
        if name in changes and changes[name] is None:
            changes.pop(name)
    with db.begin():
        episode = _require_episode(db, episode_id)
        for name, value in changes.items():
            setattr(episode, name, value)
    db.refresh(episode)
    return episode


def delete_episode(db: Session, episode_id: uuid.UUID) -> None:
    try:
        with db.begin():
            episode = _require_episode(db, episode_id)
            block_ids = select(EpisodeBlock.id).where(EpisodeBlock.episode_id == episode_id)
            states = list(
                db.execute(select(SessionState).where(SessionState.presented_block_id.in_(block_ids))).scalars()
            )
            affected = [state.session_id for state in states]
            for state in states:
                state.presented_block_id = None
                state.revision = int(state.revision or 0) + 1
            db.delete(episode)
    except StaleDataError as exc:
        raise session_service.state_conflict(episode_id, exc) from exc
    logger.info("episode deleted id=%s", episode_id)
    for session_id in affected:
        session_service.publish_session_state(db, session_id)


def add_block(db: Session, episode_id: uuid.UUID, payload: BlockCreate) -> EpisodeBlock:
    with db.begin():
        _require_episode(db, episode_id)
        existing = db.execute(select(EpisodeBlock.sort_order).where(EpisodeBlock.episode_id == episode_id)).scalars()
        block = EpisodeBlock(
            episode_id=episode_id,
            sort_order=ordering.next_sort_order(existing),
            block_type=payload.block_type,
            audience=payload.audience,
            mode=payload.mode,
            title=(payload.title or "").strip() or None,
            body=payload.body,
            image_url=(payload.image_url or "").strip() or None,
            meta=parse_meta_json(payload.meta_json),
        )
        db.add(block)
    db.refresh(block)
    return block


def update_block(db: Session, episode_id: uuid.UUID, block_id: uuid.UUID, payload: BlockUpdate) -> EpisodeBlock:
    fields = payload.model_fields_set
    with db.begin():
        block = _require_block(db, episode_id, block_id)
        for name in _BLOCK_FIELDS:
            if name not in fields:
                continue
            value = getattr(payload, name)
            if name in _NON_NULL_BLOCK_FIELDS and value is None:
                continue
            if name in ("title", "image_url"):
                value = (value or "").strip() or None
            setattr(block, name, value)
        if "meta_json" in fields:
            block.meta = parse_meta_json(payload.meta_json)
    db.refresh(block)
    return block


def delete_block(db: Session, episode_id: uuid.UUID, block_id: uuid.UUID) -> None:
    try:
        with db.begin():
            block = _require_block(db, episode_id, block_id)
            states = list(db.execute(select(SessionState).where(SessionState.presented_block_id == block_id)).scalars())
            presenting = [state.session_id for state in states]
            for state in states:
                state.presented_block_id = None
                state.revision = int(state.revision or 0) + 1
            db.delete(block)
    except StaleDataError as exc:
        raise session_service.state_conflict(block_id, exc) from exc
    for session_id in presenting:
        session_service.publish_session_state(db, session_id)


def move_block(db: Session, episode_id: uuid.UUID, block_id: uuid.UUID, direction: str) -> dict:
    with db.begin():
        block = _require_block(db, episode_id, block_id)
        siblings = list_blocks(db, episode_id)
        neighbor = ordering.find_swap_neighbor(siblings, block, direction)
        if neighbor is not None:
            ordering.swap_sort_orders(block, neighbor)
    return {"moved": neighbor is not None, "blocks": list_blocks(db, episode_id)}


def upload_map(db: Session, storage: BlobStorage, episode_id: uuid.UUID, upload: UploadFile) -> Episode:
    data = upload.file.read()
    content_type = upload.content_type or "application/octet-stream"
    validate_image_upload(content_type, data)
    with db.begin():
        _require_episode(db, episode_id)
    path = put_object(storage, EPISODE_ASSETS_BUCKET, episode_map_path(episode_id, upload.filename), data, content_type=content_type)
    with db.begin():
        episode = _require_episode(db, episode_id)
        episode.map_image_url = storage.public_url(EPISODE_ASSETS_BUCKET, path)
    db.refresh(episode)
    return episode
