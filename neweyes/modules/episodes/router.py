import uuid

from fastapi import APIRouter, Depends, File, UploadFile
from sqlalchemy.orm import Session

from neweyes.db.session import get_db
from neweyes.modules.auth.deps import require_admin, require_storyteller
from neweyes.modules.episodes import service
from neweyes.modules.episodes.schemas import (
    BlockCreate,
    BlockMove,
    BlockMoveOut,
    BlockOut,
    BlockUpdate,
    EpisodeCreate,
    EpisodeDetailOut,
    EpisodeOut,
    EpisodeUpdate,
)
from neweyes.modules.storage.service import BlobStorage, get_storage

router = APIRouter(prefix="/admin/episodes", tags=["episodes"])


@router.get("", response_model=list[EpisodeOut])
def list_episodes(_profile: dict = Depends(require_storyteller), db: Session = Depends(get_db)):
    return service.list_episodes(db)


@router.post("", response_model=EpisodeOut, status_code=201)
def create_episode(payload: EpisodeCreate, _admin: dict = Depends(require_admin), db: Session = Depends(get_db)):
    return service.create_episode(db, payload)


@router.get("/{episode_id}", response_model=EpisodeDetailOut)
def get_episode(episode_id: uuid.UUID, _profile: dict = Depends(require_storyteller), db: Session = Depends(get_db)):
    return service.episode_detail(db, episode_id)


@router.patch("/{episode_id}", response_model=EpisodeOut)
def update_episode(
    episode_id: uuid.UUID,
    payload: EpisodeUpdate,
    _admin: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return service.update_episode(db, episode_id, payload)


@router.delete("/{episode_id}", status_code=204)
def delete_episode(episode_id: uuid.UUID, _admin: dict = Depends(require_admin), db: Session = Depends(get_db)):
    service.delete_episode(db, episode_id)


@router.post("/{episode_id}/map", response_model=EpisodeOut)
def upload_map(
    episode_id: uuid.UUID,
    file: UploadFile = File(...),
    _admin: dict = Depends(require_admin),
    storage: BlobStorage = Depends(get_storage),
    db: Session = Depends(get_db),
):
    return service.upload_map(db, storage, episode_id, file)


@router.post("/{episode_id}/blocks", response_model=BlockOut, status_code=201)
def add_block(
    episode_id: uuid.UUID,
    payload: BlockCreate,
    _profile: dict = Depends(require_storyteller),
    db: Session = Depends(get_db),
):
    return service.add_block(db, episode_id, payload)


@router.patch("/{episode_id}/blocks/{block_id}", response_model=BlockOut)
def update_block(
    episode_id: uuid.UUID,
    block_id: uuid.UUID,
    payload: BlockUpdate,
    _profile: dict = Depends(require_storyteller),
    db: Session = Depends(get_db),
):
    return service.update_block(db, episode_id, block_id, payload)


@router.delete("/{episode_id}/blocks/{block_id}", status_code=204)
def delete_block(
    episode_id: uuid.UUID,
    block_id: uuid.UUID,
    _profile: dict = Depends(require_storyteller),
    db: Session = Depends(get_db),
):
    service.delete_block(db, episode_id, block_id)


@router.post("/{episode_id}/blocks/{block_id}/move", response_model=BlockMoveOut)
def move_block(
    episode_id: uuid.UUID,
    block_id: uuid.UUID,
    payload: BlockMove,
    _profile: dict = Depends(require_storyteller),
    db: Session = Depends(get_db),
):
    return service.move_block(db, episode_id, block_id, payload.direction)
