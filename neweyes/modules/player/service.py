"""Player hub: the player's character card and inventory."""

import logging
import uuid
from typing import Any

from fastapi import HTTPException
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from neweyes.db.models import Character, InventoryItem, Item, Profile

logger = logging.getLogger(__name__)

DEFAULT_CHARACTER_NAME = "Neweyes Adventurer"
DEFAULT_CHARACTER_CLASS = "Pilgrim"
UNKNOWN_ITEM_NAME = "Unknown Item"
UNCATEGORIZED = "Uncategorized"
NO_DESCRIPTION = "No description yet."


def _error(status_code: int, code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"code": code, "message": message})


def _find_character(db: Session, user_id: uuid.UUID) -> Character | None:
    return db.execute(select(Character).where(Character.user_id == user_id)).scalar_one_or_none()


def get_or_create_character(db: Session, user_id: uuid.UUID) -> Character:
    with db.begin():
        character = _find_character(db, user_id)
    if character is not None:
        return character
    try:
        with db.begin():
            character = Character(user_id=user_id, name=DEFAULT_CHARACTER_NAME, char_class=DEFAULT_CHARACTER_CLASS, level=1)
            db.add(character)
            db.flush()
            logger.info("character created user=%s character=%s", user_id, character.id)
    except IntegrityError:
        # Another request created it first.
        with db.begin():
            character = _find_character(db, user_id)
        if character is None:
            raise
    return character


def entry_row(entry: InventoryItem, item: Item | None) -> dict[str, Any]:
    return {
        "id": entry.id,
        "character_id": entry.character_id,
        "item_id": entry.item_id,
        "name": (item.name if item else None) or entry.name or UNKNOWN_ITEM_NAME,
        "type": (item.category if item else None) or UNCATEGORIZED,
        "description": (item.summary if item else None) or NO_DESCRIPTION,
        # Rows without a catalog item can still be split.
        "stackable": bool(item.stackable) if item else True,
        "quantity": int(entry.quantity or 0),
        "equipped": bool(entry.equipped),
        "equipped_slot": entry.equipped_slot,
        "created_at": entry.created_at,
    }


def _inventory(db: Session, character_id: uuid.UUID) -> list[dict[str, Any]]:
    stmt = (
        select(InventoryItem, Item)
        .outerjoin(Item, Item.id == InventoryItem.item_id)
        .where(InventoryItem.character_id == character_id)
        .order_by(InventoryItem.created_at.desc())
    )
    return [entry_row(entry, item) for entry, item in db.execute(stmt).all()]


def inventory_types(rows: list[dict[str, Any]]) -> list[str]:
    return sorted({row["type"] for row in rows})


def list_inventory(db: Session, profile: dict, *, q: str | None = None, type_: str | None = None) -> list[dict]:
    character = get_or_create_character(db, profile["id"])
    rows = _inventory(db, character.id)
    query = (q or "").strip().lower()
    if query:
        rows = [row for row in rows if query in row["name"].lower()]
    if type_ and type_ != "All":
        rows = [row for row in rows if row["type"] == type_]
    return rows


def player_hub(db: Session, profile: dict) -> dict[str, Any]:
    character = get_or_create_character(db, profile["id"])
    rows = _inventory(db, character.id)
    return {"character": character, "inventory": rows, "types": inventory_types(rows)}


def _require_own_entry(db: Session, profile: dict, entry_id: uuid.UUID) -> tuple[InventoryItem, Item | None]:
    stmt = (
        select(InventoryItem, Item)
        .join(Character, Character.id == InventoryItem.character_id)
        .outerjoin(Item, Item.id == InventoryItem.item_id)
        .where(InventoryItem.id == entry_id, Character.user_id == profile["id"])
    )
    found = db.execute(stmt).first()
    if found is None:
        raise _error(404, "INVENTORY_ITEM_NOT_FOUND", "Inventory item not found.")
    return found[0], found[1]


def set_equipped(db: Session, profile: dict, entry_id: uuid.UUID, *, equipped: bool, slot: str | None) -> dict:
    with db.begin():
        entry, item = _require_own_entry(db, profile, entry_id)
        if equipped and slot:
            # A slot holds one entry at a time.
            db.execute(
                update(InventoryItem)
                .where(
                    InventoryItem.character_id == entry.character_id,
                    InventoryItem.equipped_slot == slot,
                    InventoryItem.id != entry.id,
                )
                .values(equipped=False, equipped_slot=None)
            )
        entry.equipped = equipped
        entry.equipped_slot = slot if equipped else None
    db.refresh(entry)
    logger.info("inventory equip entry=%s equipped=%s slot=%s", entry.id, entry.equipped, entry.equipped_slot)
    return entry_row(entry, item)


def drop_one(db: Session, profile: dict, entry_id: uuid.UUID) -> dict[str, Any]:
    with db.begin():
        entry, item = _require_own_entry(db, profile, entry_id)
        stackable = bool(item.stackable) if item else True
        if entry.quantity > 1 and stackable:
            entry.quantity -= 1
            removed = False
        else:
            db.delete(entry)
            removed = True
    if removed:
        logger.info("inventory entry removed entry=%s", entry_id)
        return {"removed": True, "entry": None}
    db.refresh(entry)
    return {"removed": False, "entry": entry_row(entry, item)}


def grant_item(db: Session, player_id: uuid.UUID, item_id: uuid.UUID, quantity: int) -> dict[str, Any]:
    with db.begin():
        if db.get(Profile, player_id) is None:
            raise _error(404, "PROFILE_NOT_FOUND", "Player not found.")
        item = db.get(Item, item_id)
        if item is None:
            raise _error(404, "ITEM_NOT_FOUND", "Item not found.")
        if not item.is_active:
            raise _error(422, "ITEM_INACTIVE", "Inactive items cannot be handed out.")
        if not item.stackable and quantity != 1:
            raise _error(422, "NOT_STACKABLE", "Non-stackable items are granted one at a time.")
    character = get_or_create_character(db, player_id)
    with db.begin():
        entry = None
        if item.stackable:
            entry = db.execute(
                select(InventoryItem).where(InventoryItem.character_id == character.id, InventoryItem.item_id == item.id)
            ).scalar_one_or_none()
        total = quantity + (entry.quantity if entry else 0)
        if item.max_stack is not None and total > item.max_stack:
            raise _error(422, "STACK_LIMIT", f"{item.name} stacks to at most {item.max_stack}.")
        if entry is None:
            entry = InventoryItem(character_id=character.id, item_id=item.id, name=item.name, quantity=quantity)
            db.add(entry)
        else:
            entry.quantity = total
    db.refresh(entry)
    logger.info("item granted player=%s item=%s quantity=%s", player_id, item.id, quantity)
    return entry_row(entry, item)
