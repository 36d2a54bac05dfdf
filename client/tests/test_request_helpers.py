import httpx
import pytest

import neweyes_cli
from neweyes.modules.live.projector import LiveStateMirror
from neweyes_cli import DEFAULT_BACKEND_URL, PresentedBlockMoved, backend_url, fetch_presented_block, response_detail_code


def test_backend_url_default(monkeypatch) -> None:
    monkeypatch.delenv("BACKEND_URL", raising=False)
    assert backend_url() == DEFAULT_BACKEND_URL


def test_backend_url_env(monkeypatch) -> None:
    monkeypatch.setenv("BACKEND_URL", "http://localhost:9999/")
    assert backend_url() == "http://localhost:9999"


def test_response_detail_code_reads_structured_detail() -> None:
    request = httpx.Request("POST", "http://test/storyteller/sessions/x/present")
    response = httpx.Response(409, request=request, json={"detail": {"code": "NO_EPISODE_LOADED"}})
    assert response_detail_code(response) == "NO_EPISODE_LOADED"


def test_response_detail_code_ignores_plain_detail() -> None:
    request = httpx.Request("GET", "http://test/health")
    assert response_detail_code(httpx.Response(422, request=request, json={"detail": "bad"})) is None
    assert response_detail_code(httpx.Response(500, request=request, text="oops")) is None


def _presented_responder(monkeypatch, body: dict) -> None:
    def fake_request(method: str, endpoint: str, **_kwargs) -> httpx.Response:
        return httpx.Response(200, request=httpx.Request(method, f"http://test{endpoint}"), json=body)

    monkeypatch.setattr(neweyes_cli, "request", fake_request)


def test_fetch_presented_block_returns_block_for_matching_id(monkeypatch) -> None:
    _presented_responder(monkeypatch, {"presented_block_id": "b1", "block": {"id": "b1", "title": "Gate"}})
    assert fetch_presented_block("s1", "b1") == {"id": "b1", "title": "Gate"}


def test_fetch_presented_block_refuses_a_block_that_moved_on(monkeypatch) -> None:
    _presented_responder(monkeypatch, {"presented_block_id": "b3", "block": {"id": "b3", "title": "Later"}})
    with pytest.raises(PresentedBlockMoved):
        fetch_presented_block("s1", "b2")

    mirror = LiveStateMirror(
        "s1",
        read_row=lambda _sid: {"state": {"presented_block_id": "b2"}},
        subscribe=lambda _sid, _cb: (lambda: None),
        lookup_block=lambda block_id: fetch_presented_block("s1", block_id),
    ).start()
    assert mirror.presented_block is None
    mirror.close()
