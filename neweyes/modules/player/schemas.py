import uuid

from pydantic import BaseModel, ConfigDict, Field, field_validator

from neweyes.utils.time import UtcDatetime


class CharacterOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    name: str
    char_class: str = Field(serialization_alias="class")
    level: int
    created_at: UtcDatetime


class InventoryEntryOut(BaseModel):
    id: uuid.UUID
    character_id: uuid.UUID
    item_id: uuid.UUID | None = None
    name: str
    type: str
    description: str
    stackable: bool
    quantity: int
    equipped: bool
    equipped_slot: str | None = None
    created_at: UtcDatetime


class PlayerHubOut(BaseModel):
    character: CharacterOut
    inventory: list[InventoryEntryOut]
    types: list[str]


class EquipRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    equipped: bool
    slot: str | None = Field(default=None, max_length=32)

    @field_validator("slot")
    @classmethod
    def _blank_slot_is_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip().lower() or None


class DropOut(BaseModel):
    removed: bool
    entry: InventoryEntryOut | None = None


class GrantRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    item_id: uuid.UUID
    quantity: int = Field(default=1, ge=1, le=999)
