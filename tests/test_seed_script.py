import os
import subprocess
import sys
from pathlib import Path

from sqlalchemy import func, select

from neweyes.db import session as db_session
from neweyes.db.models import Episode, EpisodeBlock, Profile
from tests.support.db_runtime import prepare_sqlite_db

ROOT = Path(__file__).resolve().parents[1]


def _run_seed(*args: str) -> subprocess.CompletedProcess:
    env = os.environ.copy()
    env["DATABASE_URL"] = str(db_session.engine.url)
    return subprocess.run(
        [sys.executable, "scripts/seed.py", *args],
        cwd=ROOT,
        env=env,
        capture_output=True,
        text=True,
    )


def test_seed_script_is_idempotent(tmp_path: Path) -> None:
    prepare_sqlite_db(tmp_path, "seed_script.db")

    first = _run_seed()
    assert first.returncode == 0, first.stderr
    second = _run_seed()
    assert second.returncode == 0, second.stderr
    assert "episode_code=LANTERN-01" in second.stdout

    with db_session.SessionLocal() as db:
        episodes = db.execute(select(Episode).where(Episode.episode_code == "LANTERN-01")).scalars().all()
        assert len(episodes) == 1
        orders = db.execute(
            select(EpisodeBlock.sort_order)
            .where(EpisodeBlock.episode_id == episodes[0].id)
            .order_by(EpisodeBlock.sort_order)
        ).scalars().all()
        assert orders == [10, 20, 30, 40, 50, 60]

        admin = db.execute(select(Profile).where(Profile.email == "admin@neweyes.local")).scalar_one()
        assert admin.is_admin is True and admin.is_storyteller is True
        assert db.execute(select(func.count()).select_from(Profile)).scalar_one() == 1


def test_seed_script_accepts_episode_file(tmp_path: Path) -> None:
    prepare_sqlite_db(tmp_path, "seed_file.db")
    episode_file = tmp_path / "episode.json"
    episode_file.write_text(
        '{"title": "Short Walk", "episode_code": "walk", "blocks": [{"block_type": "scene", "title": "Gate"}]}',
        encoding="utf-8",
    )

    proc = _run_seed("--episode-file", str(episode_file), "--admin-email", "gm@neweyes.test")
    assert proc.returncode == 0, proc.stderr

    with db_session.SessionLocal() as db:
        episode = db.execute(select(Episode).where(Episode.episode_code == "WALK")).scalar_one()
        assert episode.title == "Short Walk"
        count = db.execute(
            select(func.count()).select_from(EpisodeBlock).where(EpisodeBlock.episode_id == episode.id)
        ).scalar_one()
        assert count == 1
