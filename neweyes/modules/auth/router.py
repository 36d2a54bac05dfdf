from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from neweyes.config import settings
from neweyes.db.session import get_db
from neweyes.modules.auth.deps import get_current_profile
from neweyes.modules.auth.identity import create_access_token, upsert_dev_profile

router = APIRouter(prefix="/auth", tags=["auth"])


class DevTokenRequest(BaseModel):
    email: str = Field(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    display_name: str | None = Field(default=None, max_length=255)
    is_storyteller: bool | None = None
    is_admin: bool | None = None


def _profile_out(profile: dict) -> dict:
    return {**profile, "id": str(profile["id"])}


@router.get("/me")
def me(profile: dict = Depends(get_current_profile)):
    return {"profile": _profile_out(profile)}


@router.post("/dev/token")
def dev_token(payload: DevTokenRequest, db: Session = Depends(get_db)):
    if settings.env != "dev":
        raise HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": "Not available."})
    with db.begin():
        profile = upsert_dev_profile(
            db,
            email=payload.email,
            display_name=payload.display_name,
            is_storyteller=payload.is_storyteller,
            is_admin=payload.is_admin,
        )
        profile_id, email = profile.id, profile.email
    return {
        "access_token": create_access_token(profile_id, email),
        "token_type": "bearer",
        "profile_id": str(profile_id),
    }
