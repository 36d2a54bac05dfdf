#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from sqlalchemy import delete, select

from neweyes.db.models import Episode, EpisodeBlock
from neweyes.db.session import SessionLocal
from neweyes.modules.auth.identity import upsert_dev_profile
from neweyes.modules.episodes import ordering
from neweyes.modules.episodes.schemas import BlockCreate, EpisodeCreate
from neweyes.utils.forms import parse_meta_json

DEMO_EPISODE: dict = {
    "title": "The Lantern Road",
    "episode_code": "lantern-01",
    "story_text": "Fog rolls over the pass. Somewhere ahead a lantern swings.",
    "summary": "A short introductory episode: one scene, one encounter, one reward.",
    "default_duration_seconds": 2700,
    "default_encounter_total": 3,
    "tags": ["intro", "one-shot"],
    "blocks": [
        {"block_type": "scene", "title": "The Pass"},
        {"block_type": "narrative", "title": "Arrival", "body": "The wind carries a bell from the valley below."},
        {"block_type": "objective", "title": "Find the lantern bearer", "audience": "players"},
        {
            "block_type": "encounter",
            "mode": "encounter",
            "title": "Wolves at the ridge",
            "meta_json": {"difficulty": "easy", "count": 3},
        },
        {"block_type": "note", "audience": "storyteller", "body": "The bearer is the missing ferryman."},
        {"block_type": "loot", "title": "Ferryman's token"},
    ],
}


def _load_episode_json(path: Path) -> dict:
    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError(f"episode file must contain a JSON object: {path}")
    return payload


def seed_demo(*, payload: dict, admin_email: str) -> dict:
    episode_in = EpisodeCreate.model_validate({k: v for k, v in payload.items() if k != "blocks"})
    blocks_in = [BlockCreate.model_validate(raw) for raw in payload.get("blocks") or []]

    with SessionLocal() as db:
        with db.begin():
            admin = upsert_dev_profile(db, email=admin_email, is_storyteller=True, is_admin=True)
            episode = None
            if episode_in.episode_code:
                episode = db.execute(
                    select(Episode).where(Episode.episode_code == episode_in.episode_code)
                ).scalar_one_or_none()
            if episode is None:
                episode = Episode(**episode_in.model_dump())
                db.add(episode)
                db.flush()
            else:
                for name, value in episode_in.model_dump().items():
                    setattr(episode, name, value)
                db.execute(delete(EpisodeBlock).where(EpisodeBlock.episode_id == episode.id))

            sort_order = 0
            for block in blocks_in:
                sort_order = ordering.next_sort_order([sort_order])
                db.add(
                    EpisodeBlock(
                        episode_id=episode.id,
                        sort_order=sort_order,
                        block_type=block.block_type,
                        audience=block.audience,
                        mode=block.mode,
                        title=block.title,
                        body=block.body,
                        image_url=block.image_url,
                        meta=parse_meta_json(block.meta_json),
                    )
                )
            result = {
                "admin_id": str(admin.id),
                "episode_id": str(episode.id),
                "episode_code": episode.episode_code,
                "blocks": len(blocks_in),
            }
    return result


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed an admin profile and a demo episode.")
    parser.add_argument("--episode-file", default=None, help="Optional episode JSON (same shape as the built-in demo).")
    parser.add_argument("--admin-email", default="admin@neweyes.local", help="Email of the admin profile to upsert.")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    payload = _load_episode_json(Path(args.episode_file)) if args.episode_file else DEMO_EPISODE
    result = seed_demo(payload=payload, admin_email=args.admin_email)
    print(
        "seeded "
        f"admin_id={result['admin_id']} episode_id={result['episode_id']} "
        f"episode_code={result['episode_code']} blocks={result['blocks']}"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
