from __future__ import annotations

from fastapi import Depends, Header, HTTPException, status

from neweyes.config import settings
from neweyes.db import session as db_session
from neweyes.db.models import Profile
from neweyes.modules.auth.identity import decode_access_token, dev_fallback_profile, profile_payload


def get_current_profile(
    authorization: str | None = Header(default=None, alias="Authorization"),
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
) -> dict:
    if authorization and authorization.lower().startswith("bearer "):
        profile_id = decode_access_token(authorization.split(" ", 1)[1].strip())
        with db_session.SessionLocal() as db:
            profile = db.get(Profile, profile_id)
            if not profile:
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail={"code": "PROFILE_NOT_FOUND", "message": "Unknown profile."},
                )
            return profile_payload(profile)

    if settings.env == "dev":
        with db_session.SessionLocal() as db:
            profile = dev_fallback_profile(db, x_user_id)
            db.commit()
            return profile_payload(profile)

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "UNAUTHORIZED", "message": "Missing bearer token."},
    )


def _forbidden(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail={"code": "FORBIDDEN", "message": message})


def require_admin(profile: dict = Depends(get_current_profile)) -> dict:
    if not profile.get("is_admin"):
        raise _forbidden("Admin access required.")
    return profile


def require_storyteller(profile: dict = Depends(get_current_profile)) -> dict:
    if not (profile.get("is_storyteller") or profile.get("is_admin")):
        raise _forbidden("Storyteller access required.")
    return profile
