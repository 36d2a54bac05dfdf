import uuid

from pydantic import BaseModel, ConfigDict

from neweyes.utils.time import UtcDatetime


class ProfileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    email: str
    display_name: str
    is_storyteller: bool
    is_admin: bool
    created_at: UtcDatetime


class ProfileRolesUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    is_storyteller: bool | None = None
    is_admin: bool | None = None
