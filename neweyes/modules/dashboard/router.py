from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from neweyes.db.session import get_db
from neweyes.modules.auth.deps import require_admin
from neweyes.modules.dashboard import service
from neweyes.modules.live.feed import get_change_feed

router = APIRouter(prefix="/admin/dashboard", tags=["admin"])


@router.get("")
def dashboard(_admin: dict = Depends(require_admin), db: Session = Depends(get_db)):
    return {
        "counts": service.table_counts(db),
        "live": {"published": get_change_feed().published_count},
    }
