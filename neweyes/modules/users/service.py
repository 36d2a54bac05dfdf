import logging
import uuid

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from neweyes.db.models import Profile
from neweyes.modules.users.schemas import ProfileRolesUpdate

logger = logging.getLogger(__name__)


def list_profiles(db: Session) -> list[Profile]:
    return list(db.execute(select(Profile).order_by(Profile.created_at.desc(), Profile.email)).scalars().all())


def update_roles(db: Session, *, actor_id: uuid.UUID, profile_id: uuid.UUID, payload: ProfileRolesUpdate) -> Profile:
    with db.begin():
        profile = db.get(Profile, profile_id)
        if profile is None:
            raise HTTPException(status_code=404, detail={"code": "PROFILE_NOT_FOUND", "message": "Profile not found."})
        if profile.id == actor_id and payload.is_admin is False:
            raise HTTPException(
                status_code=409,
                detail={"code": "CANNOT_DEMOTE_SELF", "message": "You cannot remove your own admin role."},
            )
        if payload.is_storyteller is not None:
            profile.is_storyteller = payload.is_storyteller
        if payload.is_admin is not None:
            profile.is_admin = payload.is_admin
    db.refresh(profile)
    logger.info(
        "profile roles updated profile=%s storyteller=%s admin=%s by=%s",
        profile.id,
        profile.is_storyteller,
        profile.is_admin,
        actor_id,
    )
    return profile
