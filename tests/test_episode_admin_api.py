from __future__ import annotations

from pathlib import Path

from fastapi.testclient import TestClient

from neweyes.main import app
from neweyes.modules.storage.service import LocalBlobStorage
from tests.support.auth import make_profile


def _admin() -> dict:
    _id, headers = make_profile("admin@neweyes.test", admin=True)
    return headers


def test_create_episode_normalizes_fields() -> None:
    client = TestClient(app)
    admin = _admin()
    resp = client.post(
        "/admin/episodes",
        json={"title": "  Lantern Road ", "episode_code": "ep-01", "tags": "intro, night, intro, ", "summary": "   "},
        headers=admin,
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["title"] == "Lantern Road"
    assert body["episode_code"] == "EP-01"
    assert body["tags"] == ["intro", "night"]
    assert body["summary"] is None
    assert body["default_duration_seconds"] == 2700
    assert body["created_at"].endswith("+00:00")


def test_episode_title_is_required() -> None:
    client = TestClient(app)
    admin = _admin()
    assert client.post("/admin/episodes", json={"title": "   "}, headers=admin).status_code == 422

    episode = client.post("/admin/episodes", json={"title": "Keep"}, headers=admin).json()
    resp = client.patch(f"/admin/episodes/{episode['id']}", json={"title": ""}, headers=admin)
    assert resp.status_code == 422


def test_episode_admin_requires_admin_role() -> None:
    client = TestClient(app)
    _gm_id, gm = make_profile("gm@neweyes.test", storyteller=True)
    _pid, player = make_profile("p@neweyes.test")

    assert client.post("/admin/episodes", json={"title": "Nope"}, headers=gm).status_code == 403
    assert client.get("/admin/episodes", headers=gm).status_code == 200
    assert client.get("/admin/episodes", headers=player).status_code == 403


def test_patch_only_touches_sent_fields() -> None:
    client = TestClient(app)
    admin = _admin()
    episode = client.post(
        "/admin/episodes", json={"title": "Tide", "summary": "Wet", "default_encounter_total": 7}, headers=admin
    ).json()

    updated = client.patch(f"/admin/episodes/{episode['id']}", json={"summary": "Dry"}, headers=admin).json()
    assert updated["summary"] == "Dry"
    assert updated["title"] == "Tide"
    assert updated["default_encounter_total"] == 7


def test_block_sequencing_and_moves() -> None:
    client = TestClient(app)
    admin = _admin()
    episode = client.post("/admin/episodes", json={"title": "Order"}, headers=admin).json()
    base = f"/admin/episodes/{episode['id']}/blocks"

    ids = []
    for title in ("a", "b", "c"):
        block = client.post(base, json={"block_type": "narrative", "title": title}, headers=admin).json()
        ids.append(block["id"])
    detail = client.get(f"/admin/episodes/{episode['id']}", headers=admin).json()
    assert [b["sort_order"] for b in detail["blocks"]] == [10, 20, 30]

    fourth = client.post(base, json={"block_type": "note"}, headers=admin).json()
    assert fourth["sort_order"] == 40

    moved = client.post(f"{base}/{ids[2]}/move", json={"direction": "up"}, headers=admin).json()
    assert moved["moved"] is True
    assert [b["title"] for b in moved["blocks"]] == ["a", "c", "b", None]
    order = {b["title"]: b["sort_order"] for b in moved["blocks"]}
    assert (order["b"], order["c"]) == (30, 20)

    top = client.post(f"{base}/{ids[0]}/move", json={"direction": "up"}, headers=admin).json()
    assert top["moved"] is False

    bad = client.post(f"{base}/{ids[0]}/move", json={"direction": "left"}, headers=admin)
    assert bad.status_code == 422


def test_block_enums_are_validated() -> None:
    client = TestClient(app)
    admin = _admin()
    episode = client.post("/admin/episodes", json={"title": "Enums"}, headers=admin).json()
    base = f"/admin/episodes/{episode['id']}/blocks"
    assert client.post(base, json={"block_type": "dragon"}, headers=admin).status_code == 422
    assert client.post(base, json={"audience": "everyone"}, headers=admin).status_code == 422
    assert client.post(base, json={"mode": "loud"}, headers=admin).status_code == 422


def test_block_meta_json_parse_or_wrap() -> None:
    client = TestClient(app)
    admin = _admin()
    episode = client.post("/admin/episodes", json={"title": "Meta"}, headers=admin).json()
    base = f"/admin/episodes/{episode['id']}/blocks"

    good = client.post(base, json={"block_type": "encounter", "meta_json": '{"cr": 2}'}, headers=admin).json()
    assert good["meta"] == {"cr": 2}

    broken = client.post(base, json={"block_type": "encounter", "meta_json": "{cr: 2"}, headers=admin).json()
    assert broken["meta"] == {"__meta_error": "Invalid JSON", "__raw": "{cr: 2"}

    retitled = client.patch(f"{base}/{good['id']}", json={"title": "Ambush"}, headers=admin).json()
    assert retitled["meta"] == {"cr": 2}
    cleared = client.patch(f"{base}/{good['id']}", json={"meta_json": ""}, headers=admin).json()
    assert cleared["meta"] == {}


def test_block_of_other_episode_is_not_found() -> None:
    client = TestClient(app)
    admin = _admin()
    first = client.post("/admin/episodes", json={"title": "One"}, headers=admin).json()
    second = client.post("/admin/episodes", json={"title": "Two"}, headers=admin).json()
    block = client.post(f"/admin/episodes/{first['id']}/blocks", json={}, headers=admin).json()

    resp = client.patch(f"/admin/episodes/{second['id']}/blocks/{block['id']}", json={"title": "x"}, headers=admin)
    assert resp.status_code == 404
    assert resp.json()["detail"]["code"] == "BLOCK_NOT_FOUND"


def test_progression_count_skips_scenes() -> None:
    client = TestClient(app)
    admin = _admin()
    episode = client.post("/admin/episodes", json={"title": "Count"}, headers=admin).json()
    for block_type in ("scene", "narrative", "encounter", "scene", "loot"):
        client.post(f"/admin/episodes/{episode['id']}/blocks", json={"block_type": block_type}, headers=admin)
    detail = client.get(f"/admin/episodes/{episode['id']}", headers=admin).json()
    assert detail["progression_count"] == 3


def test_delete_episode_detaches_sessions() -> None:
    client = TestClient(app)
    admin = _admin()
    episode = client.post("/admin/episodes", json={"title": "Gone"}, headers=admin).json()
    block = client.post(f"/admin/episodes/{episode['id']}/blocks", json={"block_type": "map"}, headers=admin).json()
    session = client.post("/storyteller/sessions", json={"name": "s", "episode_id": episode["id"]}, headers=admin).json()
    client.post(f"/storyteller/sessions/{session['id']}/present", json={"block_id": block["id"]}, headers=admin)

    assert client.delete(f"/admin/episodes/{episode['id']}", headers=admin).status_code == 204
    assert client.get(f"/admin/episodes/{episode['id']}", headers=admin).status_code == 404
    state = client.get(f"/sessions/{session['id']}/state", headers=admin).json()["state"]
    assert state["presented_block_id"] is None
    board = client.get(f"/storyteller/sessions/{session['id']}", headers=admin).json()
    assert board["episode"] is None


def test_map_upload_stores_object_and_sets_url(blob_storage: LocalBlobStorage) -> None:
    client = TestClient(app)
    admin = _admin()
    episode = client.post("/admin/episodes", json={"title": "Mapped"}, headers=admin).json()

    resp = client.post(
        f"/admin/episodes/{episode['id']}/map",
        files={"file": ("my map!.png", b"\x89PNG fake", "image/png")},
        headers=admin,
    )
    assert resp.status_code == 200, resp.text
    url = resp.json()["map_image_url"]
    assert url.startswith(f"/storage/episode-assets/episode-maps/{episode['id']}/")
    assert url.endswith("-my-map-.png")

    stored = list(Path(blob_storage.root, "episode-assets", "episode-maps", episode["id"]).iterdir())
    assert len(stored) == 1
    assert stored[0].read_bytes() == b"\x89PNG fake"


def test_map_upload_rejects_non_images(blob_storage: LocalBlobStorage) -> None:
    client = TestClient(app)
    admin = _admin()
    episode = client.post("/admin/episodes", json={"title": "Text"}, headers=admin).json()
    resp = client.post(
        f"/admin/episodes/{episode['id']}/map",
        files={"file": ("notes.txt", b"hello", "text/plain")},
        headers=admin,
    )
    assert resp.status_code == 422
    assert resp.json()["detail"]["code"] == "INVALID_IMAGE_TYPE"
