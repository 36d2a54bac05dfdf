import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from neweyes.db.session import get_db
from neweyes.modules.auth.deps import get_current_profile, require_storyteller
from neweyes.modules.player import service
from neweyes.modules.player.schemas import DropOut, EquipRequest, GrantRequest, InventoryEntryOut, PlayerHubOut

router = APIRouter(prefix="", tags=["player"])


@router.get("/player/hub", response_model=PlayerHubOut)
def player_hub(profile: dict = Depends(get_current_profile), db: Session = Depends(get_db)):
    return service.player_hub(db, profile)


@router.get("/player/inventory", response_model=list[InventoryEntryOut])
def list_inventory(
    q: str | None = Query(default=None),
    type_: str | None = Query(default=None, alias="type"),
    profile: dict = Depends(get_current_profile),
    db: Session = Depends(get_db),
):
    return service.list_inventory(db, profile, q=q, type_=type_)


@router.put("/player/inventory/{entry_id}/equipped", response_model=InventoryEntryOut)
def set_equipped(
    entry_id: uuid.UUID,
    payload: EquipRequest,
    profile: dict = Depends(get_current_profile),
    db: Session = Depends(get_db),
):
    return service.set_equipped(db, profile, entry_id, equipped=payload.equipped, slot=payload.slot)


@router.post("/player/inventory/{entry_id}/drop", response_model=DropOut)
def drop_one(entry_id: uuid.UUID, profile: dict = Depends(get_current_profile), db: Session = Depends(get_db)):
    return service.drop_one(db, profile, entry_id)


@router.post("/storyteller/players/{player_id}/inventory", response_model=InventoryEntryOut, status_code=201)
def grant_item(
    player_id: uuid.UUID,
    payload: GrantRequest,
    _storyteller: dict = Depends(require_storyteller),
    db: Session = Depends(get_db),
):
    return service.grant_item(db, player_id, payload.item_id, payload.quantity)
