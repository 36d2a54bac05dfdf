import uuid

from fastapi.testclient import TestClient

from neweyes.main import app
from tests.support.auth import make_profile


def test_admin_lists_profiles() -> None:
    client = TestClient(app)
    _admin_id, admin = make_profile("root@neweyes.test", admin=True)
    make_profile("p1@neweyes.test")

    resp = client.get("/admin/users", headers=admin)
    assert resp.status_code == 200
    assert {p["email"] for p in resp.json()} == {"root@neweyes.test", "p1@neweyes.test"}


def test_roles_update_only_touches_sent_flags() -> None:
    client = TestClient(app)
    _admin_id, admin = make_profile("root@neweyes.test", admin=True)
    player_id, player = make_profile("p1@neweyes.test")

    assert client.get("/storyteller/sessions", headers=player).status_code == 403
    promoted = client.patch(f"/admin/users/{player_id}", json={"is_storyteller": True}, headers=admin)
    assert promoted.status_code == 200
    assert promoted.json()["is_storyteller"] is True
    assert promoted.json()["is_admin"] is False
    assert client.get("/storyteller/sessions", headers=player).status_code == 200


def test_admin_cannot_demote_self() -> None:
    client = TestClient(app)
    admin_id, admin = make_profile("root@neweyes.test", admin=True)
    resp = client.patch(f"/admin/users/{admin_id}", json={"is_admin": False}, headers=admin)
    assert resp.status_code == 409
    assert resp.json()["detail"]["code"] == "CANNOT_DEMOTE_SELF"

    still = client.patch(f"/admin/users/{admin_id}", json={"is_storyteller": True}, headers=admin)
    assert still.json()["is_admin"] is True


def test_roles_update_unknown_profile_and_non_admin() -> None:
    client = TestClient(app)
    _admin_id, admin = make_profile("root@neweyes.test", admin=True)
    _gm_id, gm = make_profile("gm@neweyes.test", storyteller=True)

    missing = client.patch(f"/admin/users/{uuid.uuid4()}", json={"is_admin": True}, headers=admin)
    assert missing.status_code == 404
    assert client.get("/admin/users", headers=gm).status_code == 403
    assert client.patch(f"/admin/users/{_gm_id}", json={"bogus": True}, headers=admin).status_code == 422
