import uuid
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from neweyes.utils.forms import clean_optional_text, parse_tags
from neweyes.utils.time import UtcDatetime

BlockType = Literal[
    "scene",
    "objective",
    "map",
    "narrative",
    "note",
    "encounter",
    "npc",
    "loot",
    "monster",
    "hex_crawl",
]
Audience = Literal["both", "players", "storyteller"]
BlockMode = Literal["display", "read", "prompt", "encounter"]
MAX_DURATION_SECONDS = 24 * 60 * 60


class _EpisodeFields(BaseModel):
    model_config = ConfigDict(extra="forbid")

    @field_validator("episode_code", mode="before", check_fields=False)
    @classmethod
    def _upper_code(cls, value: Any) -> str | None:
        cleaned = clean_optional_text(value)
        return cleaned.upper() if cleaned else None

    @field_validator("summary", "map_image_url", "npc_image_url", mode="before", check_fields=False)
    @classmethod
    def _optional_text(cls, value: Any) -> str | None:
        return clean_optional_text(value)

    @field_validator("tags", mode="before", check_fields=False)
    @classmethod
    def _tags(cls, value: Any) -> list[str] | None:
        if value is None:
            return None
        return parse_tags(value)


class EpisodeCreate(_EpisodeFields):
    title: str = Field(min_length=1, max_length=255)
    episode_code: str | None = Field(default=None, max_length=64)
    story_text: str = ""
    summary: str | None = None
    default_duration_seconds: int = Field(default=2700, ge=0, le=MAX_DURATION_SECONDS)
    default_encounter_total: int = Field(default=5, ge=0, le=1000)
    map_image_url: str | None = None
    npc_image_url: str | None = None
    tags: list[str] | None = None

    @field_validator("title", mode="before")
    @classmethod
    def _strip_title(cls, value: Any) -> str:
        return str(value or "").strip()


class EpisodeUpdate(_EpisodeFields):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    episode_code: str | None = Field(default=None, max_length=64)
    story_text: str | None = None
    summary: str | None = None
    default_duration_seconds: int | None = Field(default=None, ge=0, le=MAX_DURATION_SECONDS)
    default_encounter_total: int | None = Field(default=None, ge=0, le=1000)
    map_image_url: str | None = None
    npc_image_url: str | None = None
    tags: list[str] | None = None

    @field_validator("title", mode="before")
    @classmethod
    def _strip_title(cls, value: Any) -> str | None:
        return None if value is None else str(value).strip()


class EpisodeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    title: str
    episode_code: str | None = None
    story_text: str
    summary: str | None = None
    default_duration_seconds: int
    default_encounter_total: int
    map_image_url: str | None = None
    npc_image_url: str | None = None
    tags: list[str] = Field(default_factory=list)
    created_at: UtcDatetime
    updated_at: UtcDatetime

    @field_validator("tags", mode="before")
    @classmethod
    def _none_tags(cls, value: Any) -> list[str]:
        return list(value or [])


class BlockCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    block_type: BlockType = "scene"
    audience: Audience = "both"
    mode: BlockMode = "display"
    title: str | None = Field(default=None, max_length=255)
    body: str | None = None
    image_url: str | None = None
    meta_json: str | dict | None = None


class BlockUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    block_type: BlockType | None = None
    audience: Audience | None = None
    mode: BlockMode | None = None
    title: str | None = Field(default=None, max_length=255)
    body: str | None = None
    image_url: str | None = None
    meta_json: str | dict | None = None


class BlockMove(BaseModel):
    direction: Literal["up", "down"]


class BlockOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    episode_id: uuid.UUID
    sort_order: int
    block_type: str
    audience: str
    mode: str
    title: str | None = None
    body: str | None = None
    image_url: str | None = None
    meta: dict = Field(default_factory=dict)
    created_at: UtcDatetime


class EpisodeDetailOut(EpisodeOut):
    blocks: list[BlockOut] = Field(default_factory=list)
    progression_count: int = 0


class BlockMoveOut(BaseModel):
    moved: bool
    blocks: list[BlockOut]
