import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from neweyes.db.session import get_db
from neweyes.modules.auth.deps import require_admin
from neweyes.modules.users import service
from neweyes.modules.users.schemas import ProfileOut, ProfileRolesUpdate

router = APIRouter(prefix="/admin/users", tags=["admin"])


@router.get("", response_model=list[ProfileOut])
def list_users(_admin: dict = Depends(require_admin), db: Session = Depends(get_db)):
    return service.list_profiles(db)


@router.patch("/{profile_id}", response_model=ProfileOut)
def update_user(
    profile_id: uuid.UUID,
    payload: ProfileRolesUpdate,
    admin: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return service.update_roles(db, actor_id=admin["id"], profile_id=profile_id, payload=payload)
