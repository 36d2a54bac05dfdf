import uuid

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from sqlalchemy.orm import Session

from neweyes.db.session import get_db
from neweyes.modules.auth.deps import require_admin, require_storyteller
from neweyes.modules.designer import service
from neweyes.modules.designer.schemas import (
    ActionCreate,
    ActionOut,
    ActionUpdate,
    ItemCreate,
    ItemDetailOut,
    ItemEffectCreate,
    ItemEffectOut,
    ItemOut,
    ItemUpdate,
    LinkReplace,
    NpcArchive,
    NpcCreate,
    NpcOut,
    NpcUpdate,
    TraitCreate,
    TraitOut,
    TraitUpdate,
)
from neweyes.modules.storage.service import BlobStorage, get_storage

router = APIRouter(prefix="/admin", tags=["designer"])


# -- traits ------------------------------------------------------------------


@router.get("/traits", response_model=list[TraitOut])
def list_traits(
    q: str | None = Query(default=None, max_length=100),
    include_archived: bool = False,
    _profile: dict = Depends(require_storyteller),
    db: Session = Depends(get_db),
):
    return service.list_traits(db, q=q, include_archived=include_archived)


@router.post("/traits", response_model=TraitOut, status_code=201)
def create_trait(payload: TraitCreate, _admin: dict = Depends(require_admin), db: Session = Depends(get_db)):
    return service.create_trait(db, payload)


@router.get("/traits/{trait_id}", response_model=TraitOut)
def get_trait(trait_id: uuid.UUID, _profile: dict = Depends(require_storyteller), db: Session = Depends(get_db)):
    return service.get_trait(db, trait_id)


@router.patch("/traits/{trait_id}", response_model=TraitOut)
def update_trait(
    trait_id: uuid.UUID,
    payload: TraitUpdate,
    _admin: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return service.update_trait(db, trait_id, payload)


@router.delete("/traits/{trait_id}", status_code=204)
def delete_trait(trait_id: uuid.UUID, _admin: dict = Depends(require_admin), db: Session = Depends(get_db)):
    service.delete_trait(db, trait_id)


# -- actions -----------------------------------------------------------------


@router.get("/actions", response_model=list[ActionOut])
def list_actions(
    q: str | None = Query(default=None, max_length=100),
    include_archived: bool = False,
    _profile: dict = Depends(require_storyteller),
    db: Session = Depends(get_db),
):
    return service.list_actions(db, q=q, include_archived=include_archived)


@router.post("/actions", response_model=ActionOut, status_code=201)
def create_action(payload: ActionCreate, _admin: dict = Depends(require_admin), db: Session = Depends(get_db)):
    return service.create_action(db, payload)


@router.get("/actions/{action_id}", response_model=ActionOut)
def get_action(action_id: uuid.UUID, _profile: dict = Depends(require_storyteller), db: Session = Depends(get_db)):
    return service.get_action(db, action_id)


@router.patch("/actions/{action_id}", response_model=ActionOut)
def update_action(
    action_id: uuid.UUID,
    payload: ActionUpdate,
    _admin: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return service.update_action(db, action_id, payload)


@router.delete("/actions/{action_id}", status_code=204)
def delete_action(action_id: uuid.UUID, _admin: dict = Depends(require_admin), db: Session = Depends(get_db)):
    service.delete_action(db, action_id)


# -- npcs --------------------------------------------------------------------


@router.get("/npcs", response_model=list[NpcOut])
def list_npcs(
    include_archived: bool = False,
    _profile: dict = Depends(require_storyteller),
    storage: BlobStorage = Depends(get_storage),
    db: Session = Depends(get_db),
):
    return service.list_npcs(db, storage, include_archived=include_archived)


@router.post("/npcs", response_model=NpcOut, status_code=201)
def create_npc(
    payload: NpcCreate,
    _admin: dict = Depends(require_admin),
    storage: BlobStorage = Depends(get_storage),
    db: Session = Depends(get_db),
):
    npc = service.create_npc(db, payload)
    return service.npc_payload(db, npc, storage)


@router.get("/npcs/{npc_id}", response_model=NpcOut)
def get_npc(
    npc_id: uuid.UUID,
    _profile: dict = Depends(require_storyteller),
    storage: BlobStorage = Depends(get_storage),
    db: Session = Depends(get_db),
):
    return service.npc_payload(db, service.get_npc(db, npc_id), storage)


@router.patch("/npcs/{npc_id}", response_model=NpcOut)
def update_npc(
    npc_id: uuid.UUID,
    payload: NpcUpdate,
    _admin: dict = Depends(require_admin),
    storage: BlobStorage = Depends(get_storage),
    db: Session = Depends(get_db),
):
    npc = service.update_npc(db, npc_id, payload)
    return service.npc_payload(db, npc, storage)


@router.post("/npcs/{npc_id}/archive", response_model=NpcOut)
def archive_npc(
    npc_id: uuid.UUID,
    payload: NpcArchive,
    _admin: dict = Depends(require_admin),
    storage: BlobStorage = Depends(get_storage),
    db: Session = Depends(get_db),
):
    npc = service.set_npc_archived(db, npc_id, payload.archived)
    return service.npc_payload(db, npc, storage)


@router.put("/npcs/{npc_id}/traits", response_model=NpcOut)
def replace_npc_traits(
    npc_id: uuid.UUID,
    payload: LinkReplace,
    _admin: dict = Depends(require_admin),
    storage: BlobStorage = Depends(get_storage),
    db: Session = Depends(get_db),
):
    service.replace_npc_traits(db, npc_id, payload.ids)
    return service.npc_payload(db, service.get_npc(db, npc_id), storage)


@router.put("/npcs/{npc_id}/actions", response_model=NpcOut)
def replace_npc_actions(
    npc_id: uuid.UUID,
    payload: LinkReplace,
    _admin: dict = Depends(require_admin),
    storage: BlobStorage = Depends(get_storage),
    db: Session = Depends(get_db),
):
    service.replace_npc_actions(db, npc_id, payload.ids)
    return service.npc_payload(db, service.get_npc(db, npc_id), storage)


@router.get("/npcs/{npc_id}/sheet")
def npc_sheet(npc_id: uuid.UUID, _profile: dict = Depends(require_storyteller), db: Session = Depends(get_db)):
    return service.npc_sheet(db, npc_id)


@router.post("/npcs/{npc_id}/images", response_model=NpcOut)
def upload_npc_images(
    npc_id: uuid.UUID,
    portrait: UploadFile = File(...),
    medium: UploadFile = File(...),
    small: UploadFile = File(...),
    thumb: UploadFile = File(...),
    image_alt: str | None = Form(default=None),
    _admin: dict = Depends(require_admin),
    storage: BlobStorage = Depends(get_storage),
    db: Session = Depends(get_db),
):
    files = {"portrait": portrait, "medium": medium, "small": small, "thumb": thumb}
    npc = service.upload_npc_images(db, storage, npc_id, files, image_alt=image_alt)
    return service.npc_payload(db, npc, storage)


# -- items -------------------------------------------------------------------


@router.get("/items", response_model=list[ItemOut])
def list_items(
    q: str | None = Query(default=None, max_length=100),
    include_inactive: bool = True,
    _profile: dict = Depends(require_storyteller),
    db: Session = Depends(get_db),
):
    return service.list_items(db, q=q, include_inactive=include_inactive)


@router.post("/items", response_model=ItemOut, status_code=201)
def create_item(payload: ItemCreate, _admin: dict = Depends(require_admin), db: Session = Depends(get_db)):
    return service.create_item(db, payload)


@router.get("/items/{item_id}", response_model=ItemDetailOut)
def get_item(item_id: uuid.UUID, _profile: dict = Depends(require_storyteller), db: Session = Depends(get_db)):
    return service.item_detail(db, item_id)


@router.patch("/items/{item_id}", response_model=ItemOut)
def update_item(
    item_id: uuid.UUID,
    payload: ItemUpdate,
    _admin: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return service.update_item(db, item_id, payload)


@router.delete("/items/{item_id}", status_code=204)
def delete_item(item_id: uuid.UUID, _admin: dict = Depends(require_admin), db: Session = Depends(get_db)):
    service.delete_item(db, item_id)


@router.post("/items/{item_id}/effects", response_model=ItemEffectOut, status_code=201)
def add_item_effect(
    item_id: uuid.UUID,
    payload: ItemEffectCreate,
    _admin: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return service.add_item_effect(db, item_id, payload)


@router.delete("/items/{item_id}/effects/{effect_id}", status_code=204)
def delete_item_effect(
    item_id: uuid.UUID,
    effect_id: uuid.UUID,
    _admin: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    service.delete_item_effect(db, item_id, effect_id)


@router.post("/items/{item_id}/images", response_model=ItemOut)
def upload_item_images(
    item_id: uuid.UUID,
    portrait: UploadFile = File(...),
    medium: UploadFile = File(...),
    small: UploadFile = File(...),
    thumb: UploadFile = File(...),
    _admin: dict = Depends(require_admin),
    storage: BlobStorage = Depends(get_storage),
    db: Session = Depends(get_db),
):
    files = {"portrait": portrait, "medium": medium, "small": small, "thumb": thumb}
    return service.upload_item_images(db, storage, item_id, files)
