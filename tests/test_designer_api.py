from __future__ import annotations

import uuid
from pathlib import Path

from fastapi.testclient import TestClient

from neweyes.main import app
from neweyes.modules.storage.service import LocalBlobStorage
from tests.support.auth import make_profile


def _admin() -> dict:
    _id, headers = make_profile("designer@neweyes.test", admin=True)
    return headers


def _webp_files() -> dict:
    return {name: (f"{name}.webp", f"RIFF-{name}".encode(), "image/webp") for name in ("portrait", "medium", "small", "thumb")}


def test_trait_crud_and_search() -> None:
    client = TestClient(app)
    admin = _admin()
    created = client.post(
        "/admin/traits",
        json={"name": " Oathbound ", "trait_type": "calling", "summary": "  ", "tags": "vow, honor"},
        headers=admin,
    )
    assert created.status_code == 201
    trait = created.json()
    assert trait["name"] == "Oathbound"
    assert trait["summary"] is None
    assert trait["tags"] == ["vow", "honor"]
    client.post("/admin/traits", json={"name": "Cursed Blood", "trait_type": "affliction"}, headers=admin)

    found = client.get("/admin/traits", params={"q": "OATH"}, headers=admin).json()
    assert [t["name"] for t in found] == ["Oathbound"]

    archived = client.patch(f"/admin/traits/{trait['id']}", json={"is_archived": True}, headers=admin).json()
    assert archived["is_archived"] is True
    assert [t["name"] for t in client.get("/admin/traits", headers=admin).json()] == ["Cursed Blood"]
    everything = client.get("/admin/traits", params={"include_archived": "true"}, headers=admin).json()
    assert len(everything) == 2

    assert client.delete(f"/admin/traits/{trait['id']}", headers=admin).status_code == 204
    missing = client.get(f"/admin/traits/{trait['id']}", headers=admin)
    assert missing.status_code == 404
    assert missing.json()["detail"]["code"] == "TRAIT_NOT_FOUND"


def test_trait_type_is_validated() -> None:
    client = TestClient(app)
    resp = client.post("/admin/traits", json={"name": "Odd", "trait_type": "hobby"}, headers=_admin())
    assert resp.status_code == 422


def test_designer_writes_need_admin() -> None:
    client = TestClient(app)
    _gm_id, gm = make_profile("gm@neweyes.test", storyteller=True)
    assert client.post("/admin/traits", json={"name": "x"}, headers=gm).status_code == 403
    assert client.get("/admin/traits", headers=gm).status_code == 200


def test_action_defaults_and_save_rules() -> None:
    client = TestClient(app)
    admin = _admin()
    strike = client.post(
        "/admin/actions",
        json={"name": "Strike", "action_type": "melee", "damage_dice": "1D8", "damage_bonus": 2},
        headers=admin,
    ).json()
    assert strike["uses_attack_roll"] is True
    assert strike["damage_dice"] == "1d8"

    chant = client.post("/admin/actions", json={"name": "Chant"}, headers=admin).json()
    assert chant["uses_attack_roll"] is False

    bad = client.post("/admin/actions", json={"name": "Gaze", "save_dc_override": 14}, headers=admin)
    assert bad.status_code == 422

    bad_dice = client.post("/admin/actions", json={"name": "Claw", "damage_dice": "lots"}, headers=admin)
    assert bad_dice.status_code == 422

    ok = client.patch(
        f"/admin/actions/{chant['id']}", json={"save_ability": "WIS", "save_dc_override": 12}, headers=admin
    ).json()
    assert (ok["save_ability"], ok["save_dc_override"]) == ("wis", 12)

    resp = client.patch(f"/admin/actions/{chant['id']}", json={"save_ability": None}, headers=admin)
    assert resp.status_code == 422
    assert resp.json()["detail"]["code"] == "SAVE_ABILITY_REQUIRED"
    assert client.get(f"/admin/actions/{chant['id']}", headers=admin).json()["save_ability"] == "wis"


def test_npc_create_normalizes_stat_block() -> None:
    client = TestClient(app)
    admin = _admin()
    resp = client.post(
        "/admin/npcs",
        json={
            "name": "Warden Ilse",
            "npc_type": "human",
            "default_role": "guide",
            "stat_block_json": '{"hp": "22", "speed_ft": 30, "ability_scores": {"str": 16}}',
        },
        headers=admin,
    )
    assert resp.status_code == 201, resp.text
    npc = resp.json()
    block = npc["stat_block"]
    assert block["hp"] == 22
    assert block["speed"] == 6
    assert block["abilities"]["str"] == 16
    assert block["abilities"]["dex"] == 10
    assert npc["image_urls"] is None
    assert npc["trait_ids"] == [] and npc["action_ids"] == []


def test_npc_invalid_stat_json_falls_back_to_defaults() -> None:
    client = TestClient(app)
    npc = client.post("/admin/npcs", json={"name": "Blank", "stat_block_json": "{oops"}, headers=_admin()).json()
    assert npc["stat_block"]["hp"] == 10
    assert npc["stat_block"]["ac"] == 10


def test_npc_links_and_sheet() -> None:
    client = TestClient(app)
    admin = _admin()
    npc = client.post(
        "/admin/npcs",
        json={"name": "Brute", "stat_block_json": {"melee_attack_bonus": 5, "save_dc": 13, "abilities": {"str": 18}}},
        headers=admin,
    ).json()
    trait = client.post("/admin/traits", json={"name": "Thick Hide"}, headers=admin).json()
    smash = client.post(
        "/admin/actions",
        json={"name": "Smash", "action_type": "melee", "damage_dice": "2d6", "damage_bonus": 4},
        headers=admin,
    ).json()
    roar = client.post(
        "/admin/actions",
        json={"name": "Roar", "save_ability": "wis"},
        headers=admin,
    ).json()

    linked = client.put(f"/admin/npcs/{npc['id']}/traits", json={"ids": [trait["id"], trait["id"]]}, headers=admin)
    assert linked.status_code == 200
    assert linked.json()["trait_ids"] == [trait["id"]]
    client.put(f"/admin/npcs/{npc['id']}/actions", json={"ids": [smash["id"], roar["id"]]}, headers=admin)

    sheet = client.get(f"/admin/npcs/{npc['id']}/sheet", headers=admin).json()
    assert [t["name"] for t in sheet["traits"]] == ["Thick Hide"]
    actions = {a["name"]: a for a in sheet["actions"]}
    assert actions["Smash"]["attack_bonus"] == 5
    assert actions["Smash"]["damage"] == "2d6+4"
    assert actions["Roar"]["attack_bonus"] is None
    assert actions["Roar"]["save_dc"] == 13
    strength = next(a for a in sheet["sheet"]["abilities"] if a["key"] == "str")
    assert (strength["modifier"], strength["label"]) == (4, "+4")


def test_npc_link_replace_rejects_unknown_ids() -> None:
    client = TestClient(app)
    admin = _admin()
    npc = client.post("/admin/npcs", json={"name": "Lonely"}, headers=admin).json()
    trait = client.post("/admin/traits", json={"name": "Kept"}, headers=admin).json()
    client.put(f"/admin/npcs/{npc['id']}/traits", json={"ids": [trait["id"]]}, headers=admin)

    resp = client.put(f"/admin/npcs/{npc['id']}/traits", json={"ids": [str(uuid.uuid4())]}, headers=admin)
    assert resp.status_code == 422
    assert resp.json()["detail"]["code"] == "UNKNOWN_TRAIT"
    assert client.get(f"/admin/npcs/{npc['id']}", headers=admin).json()["trait_ids"] == [trait["id"]]

    cleared = client.put(f"/admin/npcs/{npc['id']}/traits", json={"ids": []}, headers=admin).json()
    assert cleared["trait_ids"] == []


def test_npc_archive_hides_from_default_list() -> None:
    client = TestClient(app)
    admin = _admin()
    npc = client.post("/admin/npcs", json={"name": "Ghost"}, headers=admin).json()
    client.post("/admin/npcs", json={"name": "Living"}, headers=admin)

    archived = client.post(f"/admin/npcs/{npc['id']}/archive", json={}, headers=admin).json()
    assert archived["is_archived"] is True
    assert [n["name"] for n in client.get("/admin/npcs", headers=admin).json()] == ["Living"]
    assert len(client.get("/admin/npcs", params={"include_archived": True}, headers=admin).json()) == 2

    restored = client.post(f"/admin/npcs/{npc['id']}/archive", json={"archived": False}, headers=admin).json()
    assert restored["is_archived"] is False


def test_npc_image_upload_writes_all_renditions(blob_storage: LocalBlobStorage) -> None:
    client = TestClient(app)
    admin = _admin()
    npc = client.post("/admin/npcs", json={"name": "Painted"}, headers=admin).json()

    resp = client.post(
        f"/admin/npcs/{npc['id']}/images",
        files=_webp_files(),
        data={"image_alt": "A painted face"},
        headers=admin,
    )
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["image_base_path"] == f"{npc['id']}/"
    assert body["image_alt"] == "A painted face"
    assert set(body["image_urls"]) == {"portrait", "medium", "small", "thumb"}
    assert body["image_urls"]["thumb"].startswith(f"/storage/npc-images/{npc['id']}/thumb.webp?v=")

    folder = Path(blob_storage.root, "npc-images", npc["id"])
    assert sorted(p.name for p in folder.iterdir()) == ["medium.webp", "portrait.webp", "small.webp", "thumb.webp"]


def test_npc_image_upload_requires_webp(blob_storage: LocalBlobStorage) -> None:
    client = TestClient(app)
    admin = _admin()
    npc = client.post("/admin/npcs", json={"name": "Sketch"}, headers=admin).json()
    files = _webp_files()
    files["small"] = ("small.png", b"png-bytes", "image/png")

    resp = client.post(f"/admin/npcs/{npc['id']}/images", files=files, headers=admin)
    assert resp.status_code == 422
    assert resp.json()["detail"]["code"] == "INVALID_IMAGE_TYPE"
    assert not Path(blob_storage.root, "npc-images").exists()


def test_item_crud_with_effects() -> None:
    client = TestClient(app)
    admin = _admin()
    item = client.post(
        "/admin/items",
        json={"name": "Longbow", "category": "weapon", "range_normal": 30, "range_max": 120, "equip_slots": "hands"},
        headers=admin,
    )
    assert item.status_code == 201
    item_id = item.json()["id"]
    assert item.json()["equip_slots"] == ["hands"]

    bonus = client.post(
        f"/admin/items/{item_id}/effects",
        json={"effect_type": "ability", "effect_key": "dex", "mode": "add", "value": 1},
        headers=admin,
    )
    assert bonus.status_code == 201
    resist = client.post(
        f"/admin/items/{item_id}/effects",
        json={"effect_type": "resistance", "effect_key": "fire", "mode": "grant", "value": 5, "sort_order": 1},
        headers=admin,
    ).json()
    assert resist["value"] is None

    detail = client.get(f"/admin/items/{item_id}", headers=admin).json()
    assert [e["effect_key"] for e in detail["effects"]] == ["dex", "fire"]

    assert client.delete(f"/admin/items/{item_id}/effects/{resist['id']}", headers=admin).status_code == 204
    again = client.delete(f"/admin/items/{item_id}/effects/{resist['id']}", headers=admin)
    assert again.status_code == 404
    assert again.json()["detail"]["code"] == "EFFECT_NOT_FOUND"

    assert client.delete(f"/admin/items/{item_id}", headers=admin).status_code == 204
    assert client.get(f"/admin/items/{item_id}", headers=admin).status_code == 404


def test_item_effect_rules() -> None:
    client = TestClient(app)
    admin = _admin()
    item_id = client.post("/admin/items", json={"name": "Charm", "category": "trinket"}, headers=admin).json()["id"]

    no_value = client.post(
        f"/admin/items/{item_id}/effects",
        json={"effect_type": "ac", "effect_key": "ac", "mode": "add"},
        headers=admin,
    )
    assert no_value.json()["detail"]["code"] == "EFFECT_VALUE_REQUIRED"

    no_notes = client.post(
        f"/admin/items/{item_id}/effects",
        json={"effect_type": "special", "effect_key": "glow", "mode": "note"},
        headers=admin,
    )
    assert no_notes.json()["detail"]["code"] == "EFFECT_NOTES_REQUIRED"


def test_item_range_rules() -> None:
    client = TestClient(app)
    admin = _admin()
    bad = client.post(
        "/admin/items", json={"name": "Sling", "category": "weapon", "range_normal": 30, "range_max": 10}, headers=admin
    )
    assert bad.status_code == 422

    sling = client.post(
        "/admin/items", json={"name": "Sling", "category": "weapon", "range_normal": 30, "range_max": 60}, headers=admin
    ).json()
    resp = client.patch(f"/admin/items/{sling['id']}", json={"range_max": 20}, headers=admin)
    assert resp.status_code == 422
    assert resp.json()["detail"]["code"] == "INVALID_RANGE"


def test_item_list_filters() -> None:
    client = TestClient(app)
    admin = _admin()
    client.post("/admin/items", json={"name": "Rope", "category": "gear"}, headers=admin)
    client.post("/admin/items", json={"name": "Old Rope", "category": "gear", "is_active": False}, headers=admin)
    client.post("/admin/items", json={"name": "Torch", "category": "gear"}, headers=admin)

    assert len(client.get("/admin/items", headers=admin).json()) == 3
    ropes = client.get("/admin/items", params={"q": "rope"}, headers=admin).json()
    assert sorted(i["name"] for i in ropes) == ["Old Rope", "Rope"]
    active = client.get("/admin/items", params={"include_inactive": False}, headers=admin).json()
    assert sorted(i["name"] for i in active) == ["Rope", "Torch"]


def test_name_search_treats_wildcards_literally() -> None:
    client = TestClient(app)
    admin = _admin()
    for name in ("Keen_Eye", "KeenXEye", "100% Fury", "1000 Fury"):
        client.post("/admin/traits", json={"name": name, "trait_type": "calling"}, headers=admin)
    underscore = client.get("/admin/traits", params={"q": "n_e"}, headers=admin).json()
    assert [t["name"] for t in underscore] == ["Keen_Eye"]
    percent = client.get("/admin/traits", params={"q": "0%"}, headers=admin).json()
    assert [t["name"] for t in percent] == ["100% Fury"]

    client.post("/admin/items", json={"name": "Rope_50", "category": "gear"}, headers=admin)
    client.post("/admin/items", json={"name": "Rope 50", "category": "gear"}, headers=admin)
    items = client.get("/admin/items", params={"q": "e_5"}, headers=admin).json()
    assert [i["name"] for i in items] == ["Rope_50"]


def test_item_image_upload_points_at_medium(blob_storage: LocalBlobStorage) -> None:
    client = TestClient(app)
    admin = _admin()
    item_id = client.post("/admin/items", json={"name": "Lantern", "category": "gear"}, headers=admin).json()["id"]

    resp = client.post(f"/admin/items/{item_id}/images", files=_webp_files(), headers=admin)
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["image_url"].startswith(f"/storage/item-images/{item_id}/medium.webp?v=")
    assert body["image_updated_at"] is not None
