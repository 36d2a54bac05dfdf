import uuid
from datetime import datetime, timedelta, timezone

from fastapi import HTTPException
from jose import JWTError, jwt
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from neweyes.config import settings
from neweyes.db.models import Profile

DEV_DEFAULT_PROFILE_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")
JWT_ALGORITHM = "HS256"
JWT_LEEWAY_SECONDS = 60


def create_access_token(profile_id: uuid.UUID, email: str | None = None) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(profile_id),
        "email": email or "",
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=settings.jwt_exp_minutes)).timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> uuid.UUID:
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[JWT_ALGORITHM],
            options={"verify_aud": False, "verify_exp": False, "verify_iat": False},
        )
        now_ts = int(datetime.now(timezone.utc).timestamp())
        exp = int(payload.get("exp", 0))
        iat = int(payload.get("iat", 0))
        if exp and now_ts > exp + JWT_LEEWAY_SECONDS:
            raise HTTPException(status_code=401, detail={"code": "TOKEN_EXPIRED", "message": "Token expired."})
        if iat and now_ts + JWT_LEEWAY_SECONDS < iat:
            raise HTTPException(status_code=401, detail={"code": "INVALID_TOKEN", "message": "Token not yet valid."})
        return uuid.UUID(payload.get("sub", ""))
    except (JWTError, ValueError) as exc:
        raise HTTPException(status_code=401, detail={"code": "INVALID_TOKEN", "message": "Invalid token."}) from exc


def profile_payload(profile: Profile) -> dict:
    return {
        "id": profile.id,
        "email": profile.email,
        "display_name": profile.display_name,
        "is_storyteller": bool(profile.is_storyteller),
        "is_admin": bool(profile.is_admin),
    }


def dev_fallback_profile(db: Session, x_user_id: str | None) -> Profile:
    if not x_user_id:
        pid = DEV_DEFAULT_PROFILE_ID
    else:
        try:
            pid = uuid.UUID(x_user_id)
        except ValueError as exc:
            raise HTTPException(
                status_code=400, detail={"code": "INVALID_X_USER_ID", "message": "X-User-Id must be a UUID."}
            ) from exc
    profile = db.get(Profile, pid)
    if profile:
        return profile
    profile = Profile(id=pid, email=f"{pid}@dev.local", display_name="Dev User")
    db.add(profile)
    db.flush()
    return profile


def upsert_dev_profile(
    db: Session,
    *,
    email: str,
    display_name: str | None = None,
    is_storyteller: bool | None = None,
    is_admin: bool | None = None,
) -> Profile:
    normalized = email.strip().lower()
    profile = db.execute(select(Profile).where(func.lower(Profile.email) == normalized)).scalar_one_or_none()
    if profile is None:
        profile = Profile(email=normalized, display_name=display_name or normalized.split("@", 1)[0])
        db.add(profile)
    elif display_name:
        profile.display_name = display_name
    if is_storyteller is not None:
        profile.is_storyteller = is_storyteller
    if is_admin is not None:
        profile.is_admin = is_admin
    db.flush()
    return profile
