import logging

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from neweyes.db.models import (
    Action,
    Character,
    Episode,
    InventoryItem,
    Item,
    Npc,
    Profile,
    Session as GameSession,
    SessionPlayer,
    Trait,
)

logger = logging.getLogger(__name__)

COUNTED_TABLES = {
    "profiles": Profile,
    "episodes": Episode,
    "npcs": Npc,
    "traits": Trait,
    "actions": Action,
    "items": Item,
    "sessions": GameSession,
    "session_players": SessionPlayer,
    "characters": Character,
    "inventory_items": InventoryItem,
}


def _count(db: Session, name: str, model) -> int:
    try:
        return int(db.execute(select(func.count()).select_from(model)).scalar_one() or 0)
    except SQLAlchemyError as exc:
        # Degraded read: a failing table reports 0.
        logger.warning("dashboard count failed table=%s: %s", name, exc)
        db.rollback()
        return 0


def table_counts(db: Session) -> dict[str, int]:
    return {name: _count(db, name, model) for name, model in COUNTED_TABLES.items()}
