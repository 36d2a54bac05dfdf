import sqlite3
from pathlib import Path

from sqlalchemy import create_engine, inspect

from neweyes.db import models  # noqa: F401
from neweyes.db.base import Base
from tests.support.db_runtime import run_alembic_upgrade

REQUIRED_TABLES = {
    "profiles",
    "episodes",
    "episode_blocks",
    "npcs",
    "traits",
    "actions",
    "npc_trait_links",
    "npc_action_links",
    "items",
    "item_effects",
    "sessions",
    "session_state",
    "session_players",
    "characters",
    "inventory_items",
    "alembic_version",
}


def test_alembic_upgrade_head_smoke(tmp_path: Path) -> None:
    db_path = tmp_path / "migration_smoke.db"
    proc = run_alembic_upgrade(db_path)

    assert proc.returncode == 0, proc.stderr
    assert db_path.exists()

    conn = sqlite3.connect(db_path)
    try:
        rows = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
    finally:
        conn.close()

    names = {r[0] for r in rows}
    missing = REQUIRED_TABLES - names
    assert not missing, f"Missing tables: {missing}"


def test_migration_columns_match_models(tmp_path: Path) -> None:
    db_path = tmp_path / "migration_columns.db"
    assert run_alembic_upgrade(db_path).returncode == 0

    engine = create_engine(f"sqlite:///{db_path}", future=True)
    try:
        inspector = inspect(engine)
        for table in Base.metadata.sorted_tables:
            migrated = {col["name"] for col in inspector.get_columns(table.name)}
            declared = {col.name for col in table.columns}
            assert declared == migrated, f"{table.name}: {declared ^ migrated}"
    finally:
        engine.dispose()
