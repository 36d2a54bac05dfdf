import uuid
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from neweyes.utils.time import UtcDatetime


class SessionCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=255)
    episode_id: uuid.UUID | None = None


class SessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    join_code: str
    storyteller_id: uuid.UUID
    episode_id: uuid.UUID | None = None
    story_text: str
    created_at: UtcDatetime


class LiveStateOut(BaseModel):
    session_id: str
    timer_status: str
    duration_seconds: int
    remaining_seconds: int
    updated_at: str | None = None
    encounter_current: int
    encounter_total: int
    roll_open: bool
    roll_die: str | None = None
    roll_prompt: str | None = None
    roll_target: str
    roll_round_id: str | None = None
    roll_results: dict[str, dict[str, Any]] = Field(default_factory=dict)
    roll_modes: dict[str, str] = Field(default_factory=dict)
    presented_block_id: str | None = None
    revision: int


class LiveStateEnvelope(BaseModel):
    state: LiveStateOut
    server_time: str


class StoryTextUpdate(BaseModel):
    story_text: str = Field(max_length=20000)


class LoadEpisodeRequest(BaseModel):
    episode_id: uuid.UUID


class TimerExtendRequest(BaseModel):
    delta_seconds: int | None = None


class DurationRequest(BaseModel):
    duration_seconds: int


class EncounterTotalRequest(BaseModel):
    total: int


class EncounterAdvanceRequest(BaseModel):
    step: int = 1


class RollOpenRequest(BaseModel):
    die: str
    prompt: str | None = None
    target: str = "all"


class RollModeRequest(BaseModel):
    mode: str


class RollValueRequest(BaseModel):
    value: int


class PresentRequest(BaseModel):
    block_id: uuid.UUID


class JoinRequest(BaseModel):
    code: str = Field(min_length=1, max_length=64)


class JoinOut(BaseModel):
    session_id: uuid.UUID
    name: str
    already_joined: bool


class RollSubmitOut(BaseModel):
    accepted: bool
    reason: str | None = None
    entry: dict[str, Any] | None = None
    state: LiveStateOut
    server_time: str


class PlayerSessionOut(BaseModel):
    id: uuid.UUID
    name: str
    episode_title: str | None = None
    joined_at: UtcDatetime
