import uuid
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from neweyes.utils.forms import MAX_TAGS, clean_optional_text, parse_tags
from neweyes.utils.time import UtcDatetime

NpcType = Literal["human", "beast", "angel"]
NpcRole = Literal["enemy", "ally", "neutral", "guide"]
TraitType = Literal["calling", "affliction", "training", "nature", "office"]
ActionType = Literal["melee", "ranged", "other"]
Ability = Literal["str", "dex", "con", "int", "wis", "cha"]
EffectType = Literal["ability", "ac", "speed", "skill", "save", "resistance", "immunity", "advantage", "special"]

DICE_PATTERN = r"^\d{0,3}d\d{1,3}([+-]\d{1,3})?$"
_OPTIONAL_TEXT_FIELDS = (
    "summary",
    "rules_text",
    "trigger",
    "mechanical_effect",
    "narrative_signal",
    "growth_condition",
    "damage_type",
    "on_fail",
    "on_success",
    "rarity",
    "weapon_kind",
    "image_url",
    "image_alt",
    "notes_storyteller",
    "notes",
)


class _DesignerForm(BaseModel):
    model_config = ConfigDict(extra="forbid")

    @field_validator(*_OPTIONAL_TEXT_FIELDS, mode="before", check_fields=False)
    @classmethod
    def _optional_text(cls, value: Any) -> str | None:
        return clean_optional_text(value)

    @field_validator("damage_dice", "save_ability", mode="before", check_fields=False)
    @classmethod
    def _optional_token(cls, value: Any) -> str | None:
        cleaned = clean_optional_text(value)
        return cleaned.lower() if cleaned else None

    @field_validator("tags", "equip_slots", mode="before", check_fields=False)
    @classmethod
    def _tag_list(cls, value: Any) -> list[str] | None:
        if value is None:
            return None
        if isinstance(value, list) and len([v for v in value if str(v or "").strip()]) > MAX_TAGS:
            raise ValueError(f"at most {MAX_TAGS} entries")
        if isinstance(value, str) and len([v for v in value.split(",") if v.strip()]) > MAX_TAGS:
            raise ValueError(f"at most {MAX_TAGS} entries")
        return parse_tags(value)

    @field_validator("name", mode="before", check_fields=False)
    @classmethod
    def _strip_name(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


# -- traits ------------------------------------------------------------------


class TraitCreate(_DesignerForm):
    name: str = Field(min_length=1, max_length=255)
    trait_type: TraitType = "nature"
    summary: str | None = None
    trigger: str | None = None
    mechanical_effect: str | None = None
    narrative_signal: str | None = None
    growth_condition: str | None = None
    tags: list[str] | None = None
    is_active: bool = True


class TraitUpdate(_DesignerForm):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    trait_type: TraitType | None = None
    summary: str | None = None
    trigger: str | None = None
    mechanical_effect: str | None = None
    narrative_signal: str | None = None
    growth_condition: str | None = None
    tags: list[str] | None = None
    is_active: bool | None = None
    is_archived: bool | None = None


class TraitOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    trait_type: str
    summary: str | None = None
    trigger: str | None = None
    mechanical_effect: str | None = None
    narrative_signal: str | None = None
    growth_condition: str | None = None
    tags: list[str] | None = None
    is_active: bool
    is_archived: bool
    updated_at: UtcDatetime


# -- actions -----------------------------------------------------------------


class _ActionRules(_DesignerForm):
    @model_validator(mode="after")
    def _save_needs_ability(self):
        if getattr(self, "save_dc_override", None) is not None and not getattr(self, "save_ability", None):
            raise ValueError("save_dc_override requires save_ability")
        return self


class ActionCreate(_ActionRules):
    name: str = Field(min_length=1, max_length=255)
    action_type: ActionType = "other"
    summary: str | None = None
    rules_text: str | None = None
    tags: list[str] | None = None
    is_active: bool = True
    uses_attack_roll: bool = False
    attack_bonus_override: int | None = Field(default=None, ge=-20, le=30)
    damage_dice: str | None = Field(default=None, pattern=DICE_PATTERN)
    damage_bonus: int | None = Field(default=None, ge=-20, le=50)
    damage_type: str | None = Field(default=None, max_length=64)
    save_ability: Ability | None = None
    save_dc_override: int | None = Field(default=None, ge=1, le=40)
    on_fail: str | None = None
    on_success: str | None = None


class ActionUpdate(_ActionRules):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    action_type: ActionType | None = None
    summary: str | None = None
    rules_text: str | None = None
    tags: list[str] | None = None
    is_active: bool | None = None
    is_archived: bool | None = None
    uses_attack_roll: bool | None = None
    attack_bonus_override: int | None = Field(default=None, ge=-20, le=30)
    damage_dice: str | None = Field(default=None, pattern=DICE_PATTERN)
    damage_bonus: int | None = Field(default=None, ge=-20, le=50)
    damage_type: str | None = Field(default=None, max_length=64)
    save_ability: Ability | None = None
    save_dc_override: int | None = Field(default=None, ge=1, le=40)
    on_fail: str | None = None
    on_success: str | None = None


class ActionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    action_type: str
    summary: str | None = None
    rules_text: str | None = None
    tags: list[str] | None = None
    is_active: bool
    is_archived: bool
    uses_attack_roll: bool
    attack_bonus_override: int | None = None
    damage_dice: str | None = None
    damage_bonus: int | None = None
    damage_type: str | None = None
    save_ability: str | None = None
    save_dc_override: int | None = None
    on_fail: str | None = None
    on_success: str | None = None
    updated_at: UtcDatetime


# -- npcs --------------------------------------------------------------------


class NpcCreate(_DesignerForm):
    name: str = Field(min_length=1, max_length=255)
    npc_type: NpcType = "human"
    default_role: NpcRole = "neutral"
    description: str = ""
    stat_block_json: str | dict | None = None
    image_alt: str | None = Field(default=None, max_length=255)
    notes_storyteller: str | None = None


class NpcUpdate(_DesignerForm):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    npc_type: NpcType | None = None
    default_role: NpcRole | None = None
    description: str | None = None
    stat_block_json: str | dict | None = None
    image_alt: str | None = Field(default=None, max_length=255)
    notes_storyteller: str | None = None


class NpcArchive(BaseModel):
    archived: bool = True


class NpcOut(BaseModel):
    id: uuid.UUID
    name: str
    npc_type: str
    default_role: str
    description: str
    stat_block: dict = Field(default_factory=dict)
    image_base_path: str | None = None
    image_alt: str | None = None
    image_updated_at: UtcDatetime | None = None
    notes_storyteller: str | None = None
    is_archived: bool
    updated_at: UtcDatetime
    image_urls: dict[str, str] | None = None
    trait_ids: list[uuid.UUID] = Field(default_factory=list)
    action_ids: list[uuid.UUID] = Field(default_factory=list)


class LinkReplace(BaseModel):
    ids: list[uuid.UUID] = Field(default_factory=list, max_length=200)


# -- items -------------------------------------------------------------------


class _ItemRules(_DesignerForm):
    @model_validator(mode="after")
    def _ranges(self):
        normal = getattr(self, "range_normal", None)
        far = getattr(self, "range_max", None)
        if normal is not None and far is not None and far < normal:
            raise ValueError("range_max must be at least range_normal")
        if getattr(self, "stackable", None) is False and getattr(self, "max_stack", None) not in (None, 1):
            raise ValueError("max_stack only applies to stackable items")
        return self


class ItemCreate(_ItemRules):
    name: str = Field(min_length=1, max_length=255)
    category: str = Field(min_length=1, max_length=64)
    rarity: str | None = Field(default=None, max_length=32)
    weight_lb: float | None = Field(default=None, ge=0)
    summary: str | None = None
    rules_text: str | None = None
    image_url: str | None = None
    is_active: bool = True
    carry_behavior: str = Field(default="loose", min_length=1, max_length=32)
    stackable: bool = False
    max_stack: int | None = Field(default=None, ge=1)
    is_weaponizable: bool = False
    weapon_kind: str | None = Field(default=None, max_length=32)
    uses_attack_roll: bool = True
    attack_bonus_override: int | None = Field(default=None, ge=-20, le=30)
    damage_dice: str | None = Field(default=None, pattern=DICE_PATTERN)
    damage_bonus: int | None = Field(default=None, ge=-20, le=50)
    damage_type: str | None = Field(default=None, max_length=64)
    range_normal: int | None = Field(default=None, ge=0)
    range_max: int | None = Field(default=None, ge=0)
    save_ability: Ability | None = None
    save_dc_override: int | None = Field(default=None, ge=1, le=40)
    on_fail: str | None = None
    on_success: str | None = None
    equip_slots: list[str] | None = None
    tags: list[str] | None = None


class ItemUpdate(_ItemRules):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    category: str | None = Field(default=None, min_length=1, max_length=64)
    rarity: str | None = Field(default=None, max_length=32)
    weight_lb: float | None = Field(default=None, ge=0)
    summary: str | None = None
    rules_text: str | None = None
    image_url: str | None = None
    is_active: bool | None = None
    carry_behavior: str | None = Field(default=None, min_length=1, max_length=32)
    stackable: bool | None = None
    max_stack: int | None = Field(default=None, ge=1)
    is_weaponizable: bool | None = None
    weapon_kind: str | None = Field(default=None, max_length=32)
    uses_attack_roll: bool | None = None
    attack_bonus_override: int | None = Field(default=None, ge=-20, le=30)
    damage_dice: str | None = Field(default=None, pattern=DICE_PATTERN)
    damage_bonus: int | None = Field(default=None, ge=-20, le=50)
    damage_type: str | None = Field(default=None, max_length=64)
    range_normal: int | None = Field(default=None, ge=0)
    range_max: int | None = Field(default=None, ge=0)
    save_ability: Ability | None = None
    save_dc_override: int | None = Field(default=None, ge=1, le=40)
    on_fail: str | None = None
    on_success: str | None = None
    equip_slots: list[str] | None = None
    tags: list[str] | None = None


class ItemEffectCreate(_DesignerForm):
    effect_type: EffectType
    effect_key: str = Field(min_length=1, max_length=64)
    mode: str = Field(min_length=1, max_length=32)
    value: float | None = None
    notes: str | None = None
    sort_order: int = 0

    @field_validator("effect_key", "mode", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class ItemEffectOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    item_id: uuid.UUID
    effect_type: str
    effect_key: str
    mode: str
    value: float | None = None
    notes: str | None = None
    sort_order: int


class ItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    category: str
    rarity: str | None = None
    weight_lb: float | None = None
    summary: str | None = None
    rules_text: str | None = None
    image_url: str | None = None
    image_updated_at: UtcDatetime | None = None
    is_active: bool
    carry_behavior: str
    stackable: bool
    max_stack: int | None = None
    is_weaponizable: bool
    weapon_kind: str | None = None
    uses_attack_roll: bool
    attack_bonus_override: int | None = None
    damage_dice: str | None = None
    damage_bonus: int | None = None
    damage_type: str | None = None
    range_normal: int | None = None
    range_max: int | None = None
    save_ability: str | None = None
    save_dc_override: int | None = None
    on_fail: str | None = None
    on_success: str | None = None
    equip_slots: list[str] | None = None
    tags: list[str] | None = None
    updated_at: UtcDatetime


class ItemDetailOut(ItemOut):
    effects: list[ItemEffectOut] = Field(default_factory=list)
