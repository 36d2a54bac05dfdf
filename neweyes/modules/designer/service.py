import logging
import uuid
from typing import Any

from fastapi import HTTPException, UploadFile
from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from neweyes.db.models import Action, Item, ItemEffect, Npc, NpcActionLink, NpcTraitLink, Trait
from neweyes.modules.designer import stats
from neweyes.modules.designer.schemas import (
    ActionCreate,
    ActionUpdate,
    ItemCreate,
    ItemEffectCreate,
    ItemUpdate,
    NpcCreate,
    NpcUpdate,
    TraitCreate,
    TraitUpdate,
)
from neweyes.modules.storage.service import (
    ITEM_IMAGES_BUCKET,
    NPC_IMAGES_BUCKET,
    RENDITIONS,
    BlobStorage,
    put_object,
    rendition_path,
    validate_image_upload,
)
from neweyes.utils.forms import LIKE_ESCAPE, contains_pattern, safe_json_parse
from neweyes.utils.time import isoformat_utc, utc_now_naive

logger = logging.getLogger(__name__)

VALUE_REQUIRED_EFFECTS = {"ability", "ac", "speed", "skill", "save"}
VALUE_FORBIDDEN_EFFECTS = {"resistance", "immunity", "advantage", "special"}
_NOT_NULL = {
    "name",
    "category",
    "trait_type",
    "action_type",
    "npc_type",
    "default_role",
    "description",
    "is_active",
    "is_archived",
    "uses_attack_roll",
    "stackable",
    "is_weaponizable",
    "carry_behavior",
}


def _not_found(code: str, label: str) -> HTTPException:
    return HTTPException(status_code=404, detail={"code": code, "message": f"{label} not found."})


def _require(db: Session, model, row_id: uuid.UUID, code: str, label: str):
    row = db.get(model, row_id)
    if row is None:
        raise _not_found(code, label)
    return row


def _apply_changes(row, payload, *, skip: tuple[str, ...] = ()) -> None:
    for name in payload.model_fields_set:
        if name in skip:
            continue
        value = getattr(payload, name)
        if value is None and name in _NOT_NULL:
            continue
        setattr(row, name, value)


def _search(db: Session, model, *, q: str | None, include_archived: bool) -> list:
    stmt = select(model).order_by(model.name)
    if not include_archived:
        stmt = stmt.where(model.is_archived.is_(False))
    text = (q or "").strip()
    if text:
        stmt = stmt.where(func.lower(model.name).like(contains_pattern(text.lower()), escape=LIKE_ESCAPE))
    return list(db.execute(stmt).scalars().all())


# -- traits ------------------------------------------------------------------


def list_traits(db: Session, *, q: str | None = None, include_archived: bool = False) -> list[Trait]:
    return _search(db, Trait, q=q, include_archived=include_archived)


def get_trait(db: Session, trait_id: uuid.UUID) -> Trait:
    return _require(db, Trait, trait_id, "TRAIT_NOT_FOUND", "Trait")


def create_trait(db: Session, payload: TraitCreate) -> Trait:
    with db.begin():
        trait = Trait(**payload.model_dump())
        db.add(trait)
    db.refresh(trait)
    return trait


def update_trait(db: Session, trait_id: uuid.UUID, payload: TraitUpdate) -> Trait:
    with db.begin():
        trait = get_trait(db, trait_id)
        _apply_changes(trait, payload)
    db.refresh(trait)
    return trait


def delete_trait(db: Session, trait_id: uuid.UUID) -> None:
    with db.begin():
        db.delete(get_trait(db, trait_id))


# -- actions -----------------------------------------------------------------


def list_actions(db: Session, *, q: str | None = None, include_archived: bool = False) -> list[Action]:
    return _search(db, Action, q=q, include_archived=include_archived)


def get_action(db: Session, action_id: uuid.UUID) -> Action:
    return _require(db, Action, action_id, "ACTION_NOT_FOUND", "Action")


def create_action(db: Session, payload: ActionCreate) -> Action:
    data = payload.model_dump()
    if payload.action_type in ("melee", "ranged") and "uses_attack_roll" not in payload.model_fields_set:
        data["uses_attack_roll"] = True
    with db.begin():
        action = Action(**data)
        db.add(action)
    db.refresh(action)
    return action


def update_action(db: Session, action_id: uuid.UUID, payload: ActionUpdate) -> Action:
    with db.begin():
        action = get_action(db, action_id)
        _apply_changes(action, payload)
        if action.save_dc_override is not None and not action.save_ability:
            raise HTTPException(
                status_code=422,
                detail={"code": "SAVE_ABILITY_REQUIRED", "message": "save_dc_override requires save_ability."},
            )
    db.refresh(action)
    return action


def delete_action(db: Session, action_id: uuid.UUID) -> None:
    with db.begin():
        db.delete(get_action(db, action_id))


# -- npcs --------------------------------------------------------------------


def _image_urls(storage: BlobStorage | None, npc: Npc) -> dict[str, str] | None:
    if storage is None or not npc.image_base_path:
        return None
    version = isoformat_utc(npc.image_updated_at)
    return {r: storage.public_url(NPC_IMAGES_BUCKET, rendition_path(npc.id, r), version=version) for r in RENDITIONS}


def npc_payload(db: Session, npc: Npc, storage: BlobStorage | None = None) -> dict[str, Any]:
    trait_ids = db.execute(select(NpcTraitLink.trait_id).where(NpcTraitLink.npc_id == npc.id)).scalars().all()
    action_ids = db.execute(select(NpcActionLink.action_id).where(NpcActionLink.npc_id == npc.id)).scalars().all()
    return {
        "id": npc.id,
        "name": npc.name,
        "npc_type": npc.npc_type,
        "default_role": npc.default_role,
        "description": npc.description or "",
        "stat_block": dict(npc.stat_block or {}),
        "image_base_path": npc.image_base_path,
        "image_alt": npc.image_alt,
        "image_updated_at": npc.image_updated_at,
        "notes_storyteller": npc.notes_storyteller,
        "is_archived": bool(npc.is_archived),
        "updated_at": npc.updated_at,
        "image_urls": _image_urls(storage, npc),
        "trait_ids": list(trait_ids),
        "action_ids": list(action_ids),
    }


def list_npcs(db: Session, storage: BlobStorage, *, include_archived: bool = False) -> list[dict[str, Any]]:
    stmt = select(Npc).order_by(Npc.updated_at.desc())
    if not include_archived:
        stmt = stmt.where(Npc.is_archived.is_(False))
    return [npc_payload(db, npc, storage) for npc in db.execute(stmt).scalars().all()]


def get_npc(db: Session, npc_id: uuid.UUID) -> Npc:
    return _require(db, Npc, npc_id, "NPC_NOT_FOUND", "NPC")


def create_npc(db: Session, payload: NpcCreate) -> Npc:
    data = payload.model_dump(exclude={"stat_block_json"})
    data["stat_block"] = stats.normalize_stat_block(safe_json_parse(payload.stat_block_json))
    with db.begin():
        npc = Npc(**data)
        db.add(npc)
    db.refresh(npc)
    logger.info("npc created id=%s name=%r", npc.id, npc.name)
    return npc


def update_npc(db: Session, npc_id: uuid.UUID, payload: NpcUpdate) -> Npc:
    with db.begin():
        npc = get_npc(db, npc_id)
        _apply_changes(npc, payload, skip=("stat_block_json",))
        if "stat_block_json" in payload.model_fields_set:
            npc.stat_block = stats.normalize_stat_block(safe_json_parse(payload.stat_block_json))
    db.refresh(npc)
    return npc


def set_npc_archived(db: Session, npc_id: uuid.UUID, archived: bool) -> Npc:
    with db.begin():
        npc = get_npc(db, npc_id)
        npc.is_archived = archived
    db.refresh(npc)
    return npc


def _replace_links(db: Session, npc_id: uuid.UUID, ids: list[uuid.UUID], *, link_model, column: str, target_model, code: str):
    wanted = list(dict.fromkeys(ids))
    with db.begin():
        get_npc(db, npc_id)
        if wanted:
            found = set(db.execute(select(target_model.id).where(target_model.id.in_(wanted))).scalars().all())
            missing = [str(i) for i in wanted if i not in found]
            if missing:
                raise HTTPException(
                    status_code=422,
                    detail={"code": code, "message": f"Unknown ids: {', '.join(missing)}"},
                )
        db.execute(delete(link_model).where(link_model.npc_id == npc_id))
        for target_id in wanted:
            db.add(link_model(npc_id=npc_id, **{column: target_id}))


def replace_npc_traits(db: Session, npc_id: uuid.UUID, trait_ids: list[uuid.UUID]) -> None:
    _replace_links(db, npc_id, trait_ids, link_model=NpcTraitLink, column="trait_id", target_model=Trait, code="UNKNOWN_TRAIT")


def replace_npc_actions(db: Session, npc_id: uuid.UUID, action_ids: list[uuid.UUID]) -> None:
    _replace_links(
        db, npc_id, action_ids, link_model=NpcActionLink, column="action_id", target_model=Action, code="UNKNOWN_ACTION"
    )


def npc_sheet(db: Session, npc_id: uuid.UUID) -> dict[str, Any]:
    npc = get_npc(db, npc_id)
    block = stats.normalize_stat_block(npc.stat_block)
    traits = db.execute(
        select(Trait).join(NpcTraitLink, NpcTraitLink.trait_id == Trait.id).where(NpcTraitLink.npc_id == npc_id).order_by(Trait.name)
    ).scalars().all()
    actions = db.execute(
        select(Action)
        .join(NpcActionLink, NpcActionLink.action_id == Action.id)
        .where(NpcActionLink.npc_id == npc_id)
        .order_by(Action.name)
    ).scalars().all()
    return {
        "npc_id": str(npc.id),
        "name": npc.name,
        "sheet": stats.character_sheet(block),
        "traits": [
            {"id": str(t.id), "name": t.name, "trait_type": t.trait_type, "summary": t.summary}
            for t in traits
            if not t.is_archived
        ],
        "actions": [
            {
                "id": str(a.id),
                "name": a.name,
                "action_type": a.action_type,
                "attack_bonus": stats.attack_bonus(block, action_type=a.action_type, override=a.attack_bonus_override)
                if a.uses_attack_roll
                else None,
                "damage": f"{a.damage_dice}{stats.format_bonus(a.damage_bonus) if a.damage_bonus else ''}"
                if a.damage_dice
                else None,
                "damage_type": a.damage_type,
                "save_ability": a.save_ability,
                "save_dc": stats.save_dc(block, override=a.save_dc_override) if a.save_ability else None,
            }
            for a in actions
            if not a.is_archived
        ],
    }


def _read_renditions(files: dict[str, UploadFile]) -> dict[str, bytes]:
    out: dict[str, bytes] = {}
    for rendition in RENDITIONS:
        upload = files.get(rendition)
        if upload is None:
            raise HTTPException(
                status_code=422,
                detail={"code": "RENDITION_MISSING", "message": f"Missing {rendition} rendition."},
            )
        data = upload.file.read()
        if validate_image_upload(upload.content_type, data) != "webp":
            raise HTTPException(
                status_code=422,
                detail={"code": "INVALID_IMAGE_TYPE", "message": "Renditions must be image/webp."},
            )
        out[rendition] = data
    return out


def upload_npc_images(
    db: Session, storage: BlobStorage, npc_id: uuid.UUID, files: dict[str, UploadFile], *, image_alt: str | None
) -> Npc:
    renditions = _read_renditions(files)
    with db.begin():
        get_npc(db, npc_id)
    for rendition, data in renditions.items():
        put_object(storage, NPC_IMAGES_BUCKET, rendition_path(npc_id, rendition), data, content_type="image/webp")
    with db.begin():
        npc = get_npc(db, npc_id)
        npc.image_base_path = f"{npc_id}/"
        npc.image_updated_at = utc_now_naive()
        if image_alt is not None:
            npc.image_alt = image_alt.strip() or None
    db.refresh(npc)
    logger.info("npc images uploaded id=%s", npc_id)
    return npc


# -- items -------------------------------------------------------------------


def list_items(db: Session, *, q: str | None = None, include_inactive: bool = True) -> list[Item]:
    stmt = select(Item).order_by(Item.updated_at.desc())
    if not include_inactive:
        stmt = stmt.where(Item.is_active.is_(True))
    text = (q or "").strip()
    if text:
        stmt = stmt.where(func.lower(Item.name).like(contains_pattern(text.lower()), escape=LIKE_ESCAPE))
    return list(db.execute(stmt).scalars().all())


def get_item(db: Session, item_id: uuid.UUID) -> Item:
    return _require(db, Item, item_id, "ITEM_NOT_FOUND", "Item")


def item_detail(db: Session, item_id: uuid.UUID) -> dict[str, Any]:
    item = get_item(db, item_id)
    effects = db.execute(
        select(ItemEffect).where(ItemEffect.item_id == item_id).order_by(ItemEffect.sort_order, ItemEffect.effect_type)
    ).scalars().all()
    return {**{c.key: getattr(item, c.key) for c in Item.__table__.columns}, "effects": list(effects)}


def create_item(db: Session, payload: ItemCreate) -> Item:
    with db.begin():
        item = Item(**payload.model_dump())
        db.add(item)
    db.refresh(item)
    return item


def update_item(db: Session, item_id: uuid.UUID, payload: ItemUpdate) -> Item:
    with db.begin():
        item = get_item(db, item_id)
        _apply_changes(item, payload)
        if item.range_normal is not None and item.range_max is not None and item.range_max < item.range_normal:
            raise HTTPException(
                status_code=422,
                detail={"code": "INVALID_RANGE", "message": "range_max must be at least range_normal."},
            )
    db.refresh(item)
    return item


def delete_item(db: Session, item_id: uuid.UUID) -> None:
    with db.begin():
        db.delete(get_item(db, item_id))


def normalize_effect(payload: ItemEffectCreate) -> dict[str, Any]:
    value = payload.value
    notes = payload.notes
    if payload.effect_type in VALUE_REQUIRED_EFFECTS and value is None:
        raise HTTPException(
            status_code=422,
            detail={"code": "EFFECT_VALUE_REQUIRED", "message": f"{payload.effect_type} effects need a value."},
        )
    if payload.effect_type == "special" and not notes:
        raise HTTPException(
            status_code=422,
            detail={"code": "EFFECT_NOTES_REQUIRED", "message": "special effects need notes."},
        )
    if payload.effect_type in VALUE_FORBIDDEN_EFFECTS:
        value = None
    return {
        "effect_type": payload.effect_type,
        "effect_key": payload.effect_key,
        "mode": payload.mode,
        "value": value,
        "notes": notes,
        "sort_order": payload.sort_order,
    }


def add_item_effect(db: Session, item_id: uuid.UUID, payload: ItemEffectCreate) -> ItemEffect:
    data = normalize_effect(payload)
    with db.begin():
        get_item(db, item_id)
        effect = ItemEffect(item_id=item_id, **data)
        db.add(effect)
    db.refresh(effect)
    return effect


def delete_item_effect(db: Session, item_id: uuid.UUID, effect_id: uuid.UUID) -> None:
    with db.begin():
        effect = db.get(ItemEffect, effect_id)
        if effect is None or effect.item_id != item_id:
            raise _not_found("EFFECT_NOT_FOUND", "Effect")
        db.delete(effect)


def upload_item_images(db: Session, storage: BlobStorage, item_id: uuid.UUID, files: dict[str, UploadFile]) -> Item:
    renditions = _read_renditions(files)
    with db.begin():
        get_item(db, item_id)
    for rendition, data in renditions.items():
        put_object(storage, ITEM_IMAGES_BUCKET, rendition_path(item_id, rendition), data, content_type="image/webp")
    with db.begin():
        item = get_item(db, item_id)
        item.image_updated_at = utc_now_naive()
        item.image_url = storage.public_url(
            ITEM_IMAGES_BUCKET, rendition_path(item_id, "medium"), version=isoformat_utc(item.image_updated_at)
        )
    db.refresh(item)
    return item
