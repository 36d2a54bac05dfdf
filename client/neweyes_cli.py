from __future__ import annotations

import json
import os
import threading
import time
from collections.abc import Callable, Iterable, Iterator
from pathlib import Path
from typing import Any

import httpx
import typer

from neweyes.modules.live.projector import LiveDisplay, LiveStateMirror

app = typer.Typer(help="Neweyes Online CLI")
session_app = typer.Typer(help="Storyteller session commands")
timer_app = typer.Typer(help="Session clock")
roll_app = typer.Typer(help="Roll requests")
player_app = typer.Typer(help="Player commands")
app.add_typer(session_app, name="session")
app.add_typer(timer_app, name="timer")
app.add_typer(roll_app, name="roll")
app.add_typer(player_app, name="player")

DEFAULT_BACKEND_URL = "http://127.0.0.1:8000"
STATE_PATH = Path(__file__).resolve().parent / ".state.json"
WATCH_INTERVAL_S = 0.25


def load_state(path: Path = STATE_PATH) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        return json.loads(path.read_text())
    except (json.JSONDecodeError, OSError):
        return {}


def save_state(data: dict[str, Any], path: Path = STATE_PATH) -> None:
    path.write_text(json.dumps(data, ensure_ascii=False, indent=2))


def backend_url() -> str:
    return os.getenv("BACKEND_URL", DEFAULT_BACKEND_URL).rstrip("/")


def auth_headers(state: dict[str, Any] | None = None) -> dict[str, str]:
    saved = load_state() if state is None else state
    token = saved.get("access_token")
    if token:
        return {"Authorization": f"Bearer {token}"}
    user_id = saved.get("user_id")
    if user_id:
        return {"X-User-Id": str(user_id)}
    return {}


def request(
    method: str,
    endpoint: str,
    *,
    json_body: dict[str, Any] | None = None,
    params: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> httpx.Response:
    url = f"{backend_url()}{endpoint}"
    merged = {**auth_headers(), **(headers or {})}
    with httpx.Client(timeout=20.0) as client:
        return client.request(method, url, json=json_body, params=params, headers=merged)


def response_detail_code(resp: httpx.Response) -> str | None:
    try:
        payload = resp.json()
    except ValueError:
        return None
    detail = payload.get("detail") if isinstance(payload, dict) else None
    if isinstance(detail, dict):
        code = detail.get("code")
        if isinstance(code, str) and code.strip():
            return code.strip()
    return None


def _resolve_session_id(session_id: str | None) -> str:
    if session_id:
        return session_id
    sid = load_state().get("session_id")
    if not sid:
        raise typer.BadParameter("No session_id provided and no saved session in client/.state.json")
    return str(sid)


def _remember(**values: Any) -> None:
    state = load_state()
    state.update(values)
    save_state(state)


def _handle_response(resp: httpx.Response, action: str) -> dict[str, Any] | None:
    if resp.status_code == 404:
        typer.echo(f"{action}: not found ({response_detail_code(resp) or resp.status_code}).")
        return None
    if resp.status_code >= 400:
        typer.echo(f"{action} failed ({resp.status_code}): {resp.text}")
        raise typer.Exit(code=1)
    if resp.status_code == 204 or not resp.content:
        return {}
    try:
        return resp.json()
    except ValueError:
        typer.echo(resp.text)
        return None


class PresentedBlockMoved(LookupError):
    """The session presented another block before the lookup answered."""


def fetch_presented_block(session_id: str, block_id: str) -> dict[str, Any] | None:
    body = _handle_response(request("GET", f"/sessions/{session_id}/presented"), "presented") or {}
    current = body.get("presented_block_id")
    if current != block_id:
        raise PresentedBlockMoved(f"asked for block {block_id}, session now presents {current}")
    return body.get("block")


def iter_sse_events(lines: Iterable[str]) -> Iterator[tuple[str, dict[str, Any]]]:
    """Turn raw ``text/event-stream`` lines into ``(event, data)`` pairs; comments are skipped."""
    event = "message"
    data: list[str] = []
    for raw in lines:
        line = raw.rstrip("\r\n")
        if not line:
            if data:
                try:
                    payload = json.loads("\n".join(data))
                except json.JSONDecodeError:
                    payload = None
                if isinstance(payload, dict):
                    yield event, payload
            event, data = "message", []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        value = value[1:] if value.startswith(" ") else value
        if field == "event":
            event = value
        elif field == "data":
            data.append(value)


def render_display(display: LiveDisplay) -> str:
    parts = [f"[{display.timer_status}] {display.clock}"]
    if display.encounter_total:
        parts.append(f"encounter {display.encounter_current}/{display.encounter_total} ({display.encounter_percent}%)")
    if display.roll is not None and display.roll.status != "closed":
        roll = f"roll {display.roll.die or '?'}: {display.roll.status}"
        if display.roll.value is not None:
            roll += f" = {display.roll.value}"
        parts.append(roll)
    if display.presented_block:
        parts.append(f"presenting: {display.presented_block.get('title') or display.presented_block.get('block_type')}")
    return " | ".join(parts)


def _print_state(body: dict[str, Any]) -> None:
    state = body.get("state") or {}
    typer.echo(f"timer: {state.get('timer_status')} remaining={state.get('remaining_seconds')}s")
    typer.echo(f"encounter: {state.get('encounter_current')}/{state.get('encounter_total')}")
    if state.get("roll_open"):
        typer.echo(f"roll: {state.get('roll_die')} target={state.get('roll_target')} prompt={state.get('roll_prompt')}")
    typer.echo(f"revision: {state.get('revision')}")


def _print_roll_result(body: dict[str, Any]) -> None:
    if body.get("accepted"):
        typer.echo(f"accepted: {body.get('entry')}")
    else:
        typer.echo(f"rejected: {body.get('reason')}")


def _stream_subscriber(base_url: str, headers: dict[str, str]) -> Callable[[str, Callable[[dict[str, Any]], None]], Callable[[], None]]:
    def subscribe(session_id: str, on_change: Callable[[dict[str, Any]], None]) -> Callable[[], None]:
        stop = threading.Event()

        def _run() -> None:
            url = f"{base_url}/sessions/{session_id}/state/stream"
            while not stop.is_set():
                try:
                    with httpx.stream("GET", url, headers=headers, timeout=None) as resp:
                        for event, payload in iter_sse_events(resp.iter_lines()):
                            if stop.is_set():
                                return
                            if event == "snapshot":
                                on_change(payload)
                except httpx.HTTPError as exc:
                    typer.echo(f"\nstream interrupted: {exc}; reconnecting", err=True)
                    stop.wait(1.0)

        threading.Thread(target=_run, name=f"sse-{session_id}", daemon=True).start()
        return stop.set

    return subscribe


@app.command()
def ping() -> None:
    resp = request("GET", "/health")
    body = _handle_response(resp, "ping")
    if body is not None:
        typer.echo(f"ok: {body}")


@app.command()
def login(
    email: str = typer.Option(..., "--email"),
    display_name: str = typer.Option("", "--name"),
    storyteller: bool = typer.Option(False, "--storyteller"),
    admin: bool = typer.Option(False, "--admin"),
) -> None:
    """Fetch a dev token (backend must run with ENV=dev)."""
    payload = {"email": email, "display_name": display_name, "is_storyteller": storyteller, "is_admin": admin}
    body = _handle_response(request("POST", "/auth/dev/token", json_body=payload), "login")
    if not body:
        return
    _remember(access_token=body.get("access_token"), profile_id=body.get("profile_id"))
    typer.echo(f"profile_id: {body.get('profile_id')}")


@session_app.command("create")
def session_create(
    name: str = typer.Option(..., "--name"),
    episode_id: str | None = typer.Option(None, "--episode-id"),
) -> None:
    body = _handle_response(
        request("POST", "/storyteller/sessions", json_body={"name": name, "episode_id": episode_id}),
        "session create",
    )
    if not body:
        return
    _remember(session_id=body.get("id"))
    typer.echo(f"session_id: {body.get('id')}")
    typer.echo(f"join_code: {body.get('join_code')}")


@session_app.command("list")
def session_list() -> None:
    body = _handle_response(request("GET", "/storyteller/sessions"), "session list")
    for row in body or []:
        typer.echo(f"{row.get('id')}  {row.get('join_code')}  {row.get('name')}")


@session_app.command("load")
def session_load(episode_id: str, session_id: str | None = typer.Option(None)) -> None:
    sid = _resolve_session_id(session_id)
    body = _handle_response(request("PUT", f"/storyteller/sessions/{sid}/episode", json_body={"episode_id": episode_id}), "load")
    if body:
        _print_state(body)


@session_app.command("encounter")
def session_encounter(
    step: int = typer.Option(1, "--step"),
    total: int | None = typer.Option(None, "--total"),
    session_id: str | None = typer.Option(None),
) -> None:
    sid = _resolve_session_id(session_id)
    if total is not None:
        resp = request("PUT", f"/storyteller/sessions/{sid}/encounter/total", json_body={"total": total})
    else:
        resp = request("POST", f"/storyteller/sessions/{sid}/encounter/advance", json_body={"step": step})
    body = _handle_response(resp, "encounter")
    if body:
        _print_state(body)


@session_app.command("present")
def session_present(
    block_id: str | None = typer.Argument(default=None),
    session_id: str | None = typer.Option(None),
) -> None:
    sid = _resolve_session_id(session_id)
    if block_id:
        resp = request("POST", f"/storyteller/sessions/{sid}/present", json_body={"block_id": block_id})
    else:
        resp = request("DELETE", f"/storyteller/sessions/{sid}/present")
    body = _handle_response(resp, "present")
    if body:
        typer.echo(f"presented_block_id: {body['state'].get('presented_block_id')}")


@timer_app.command("start")
def timer_start(session_id: str | None = typer.Option(None)) -> None:
    sid = _resolve_session_id(session_id)
    body = _handle_response(request("POST", f"/storyteller/sessions/{sid}/timer/start"), "timer start")
    if body:
        _print_state(body)


@timer_app.command("pause")
def timer_pause(session_id: str | None = typer.Option(None)) -> None:
    sid = _resolve_session_id(session_id)
    body = _handle_response(request("POST", f"/storyteller/sessions/{sid}/timer/pause"), "timer pause")
    if body:
        _print_state(body)


@timer_app.command("reset")
def timer_reset(session_id: str | None = typer.Option(None)) -> None:
    sid = _resolve_session_id(session_id)
    body = _handle_response(request("POST", f"/storyteller/sessions/{sid}/timer/reset"), "timer reset")
    if body:
        _print_state(body)


@timer_app.command("extend")
def timer_extend(
    seconds: int | None = typer.Option(None, "--seconds"),
    session_id: str | None = typer.Option(None),
) -> None:
    sid = _resolve_session_id(session_id)
    body = _handle_response(
        request("POST", f"/storyteller/sessions/{sid}/timer/extend", json_body={"delta_seconds": seconds}),
        "timer extend",
    )
    if body:
        _print_state(body)


@roll_app.command("open")
def roll_open(
    die: str = typer.Option("d20", "--die"),
    prompt: str | None = typer.Option(None, "--prompt"),
    target: str = typer.Option("all", "--target"),
    session_id: str | None = typer.Option(None),
) -> None:
    sid = _resolve_session_id(session_id)
    body = _handle_response(
        request("POST", f"/storyteller/sessions/{sid}/roll/open", json_body={"die": die, "prompt": prompt, "target": target}),
        "roll open",
    )
    if body:
        _print_state(body)


@roll_app.command("close")
def roll_close(session_id: str | None = typer.Option(None)) -> None:
    sid = _resolve_session_id(session_id)
    body = _handle_response(request("POST", f"/storyteller/sessions/{sid}/roll/close"), "roll close")
    if body:
        _print_state(body)


@roll_app.command("record")
def roll_record(
    player_id: str,
    value: int | None = typer.Option(None, "--value", help="Omit to let the server roll"),
    session_id: str | None = typer.Option(None),
) -> None:
    sid = _resolve_session_id(session_id)
    if value is None:
        resp = request("POST", f"/storyteller/sessions/{sid}/roll/results/{player_id}/digital")
    else:
        resp = request("POST", f"/storyteller/sessions/{sid}/roll/results/{player_id}", json_body={"value": value})
    body = _handle_response(resp, "roll record")
    if body:
        _print_roll_result(body)


@player_app.command("join")
def player_join(code: str) -> None:
    body = _handle_response(request("POST", "/player/sessions/join", json_body={"code": code}), "join")
    if not body:
        return
    _remember(session_id=body.get("session_id"))
    typer.echo(f"joined: {body.get('name')} ({body.get('session_id')}) already={body.get('already_joined')}")


@player_app.command("leave")
def player_leave(session_id: str | None = typer.Option(None)) -> None:
    sid = _resolve_session_id(session_id)
    if _handle_response(request("POST", f"/player/sessions/{sid}/leave"), "leave") is not None:
        typer.echo(f"left: {sid}")


@player_app.command("roll")
def player_roll(
    value: int | None = typer.Option(None, "--value", help="Omit for a digital roll"),
    session_id: str | None = typer.Option(None),
) -> None:
    sid = _resolve_session_id(session_id)
    if value is None:
        resp = request("POST", f"/player/sessions/{sid}/roll/digital")
    else:
        resp = request("POST", f"/player/sessions/{sid}/roll", json_body={"value": value})
    body = _handle_response(resp, "roll")
    if body:
        _print_roll_result(body)


@app.command()
def watch(
    session_id: str | None = typer.Option(None),
    once: bool = typer.Option(False, "--once", help="Print one frame and exit"),
) -> None:
    """Render the live clock, encounter bar and roll prompt until interrupted."""
    sid = _resolve_session_id(session_id)
    state = load_state()
    headers = auth_headers(state)
    base = backend_url()

    def read_row(session: str) -> dict[str, Any]:
        body = _handle_response(request("GET", f"/sessions/{session}/state"), "state")
        if body is None:
            raise typer.Exit(code=1)
        return body

    def lookup_block(block_id: str) -> dict[str, Any] | None:
        return fetch_presented_block(sid, block_id)

    mirror = LiveStateMirror(sid, read_row=read_row, subscribe=_stream_subscriber(base, headers), lookup_block=lookup_block)
    mirror.start()
    player_id = state.get("profile_id")
    try:
        while True:
            typer.echo("\r" + render_display(mirror.display(player_id)).ljust(100), nl=False)
            if once:
                typer.echo("")
                return
            time.sleep(WATCH_INTERVAL_S)
    except KeyboardInterrupt:
        typer.echo("")
    finally:
        mirror.close()


if __name__ == "__main__":
    app()
