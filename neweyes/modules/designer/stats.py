"""Stat-block arithmetic shared by the NPC sheet and player panels."""

from __future__ import annotations

import math
from typing import Any

ABILITIES = ("str", "dex", "con", "int", "wis", "cha")
DEFAULT_SCORE = 10
DEFAULT_STAT_BLOCK: dict[str, Any] = {
    "version": 1,
    "hp": 10,
    "ac": 10,
    "speed": 6,
    "abilities": {key: DEFAULT_SCORE for key in ABILITIES},
    "melee_attack_bonus": 2,
    "ranged_attack_bonus": 2,
    "save_dc": 10,
    "saves": {},
    "skills": {},
}


def ability_modifier(score: object) -> int:
    try:
        value = float(score) if score is not None else DEFAULT_SCORE
    except (TypeError, ValueError):
        value = DEFAULT_SCORE
    return math.floor((value - 10) / 2)


def format_bonus(value: int) -> str:
    return f"+{value}" if value >= 0 else str(value)


def _to_int(value: object, fallback: int) -> int:
    try:
        number = float(str(value).strip()) if not isinstance(value, (int, float)) else float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(number):
        return fallback
    return int(number)


def _as_dict(value: object) -> dict[str, Any]:
    return dict(value) if isinstance(value, dict) else {}


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def _speed_squares(raw: dict[str, Any]) -> int:
    speed = _to_int(raw.get("speed", raw.get("speed_ft")), DEFAULT_STAT_BLOCK["speed"])
    # Older blocks stored feet (30, 35, ...); squares are 5 ft.
    if 25 <= speed <= 120 and speed % 5 == 0:
        return _clamp(speed // 5, 0, 60)
    return _clamp(speed, 0, 60)


def normalize_stat_block(raw: dict[str, Any] | None) -> dict[str, Any]:
    raw = dict(raw or {})
    abilities_raw = _as_dict(raw.get("abilities") or raw.get("ability_scores"))
    out = dict(raw)
    out.update(
        {
            "version": 1,
            "hp": max(0, _to_int(raw.get("hp"), DEFAULT_STAT_BLOCK["hp"])),
            "ac": max(0, _to_int(raw.get("ac"), DEFAULT_STAT_BLOCK["ac"])),
            "speed": _speed_squares(raw),
            "abilities": {
                key: _clamp(_to_int(abilities_raw.get(key), DEFAULT_SCORE), 1, 30) for key in ABILITIES
            },
            "melee_attack_bonus": _to_int(raw.get("melee_attack_bonus"), DEFAULT_STAT_BLOCK["melee_attack_bonus"]),
            "ranged_attack_bonus": _to_int(raw.get("ranged_attack_bonus"), DEFAULT_STAT_BLOCK["ranged_attack_bonus"]),
            "save_dc": _to_int(raw.get("save_dc"), DEFAULT_STAT_BLOCK["save_dc"]),
            "saves": {k: _to_int(v, 0) for k, v in _as_dict(raw.get("saves")).items() if k in ABILITIES},
            "skills": {str(k): _to_int(v, 0) for k, v in _as_dict(raw.get("skills")).items() if str(k).strip()},
        }
    )
    out.pop("ability_scores", None)
    out.pop("speed_ft", None)
    return out


def attack_bonus(stat_block: dict[str, Any], *, action_type: str, override: int | None) -> int | None:
    if override is not None:
        return override
    if action_type == "melee":
        return int(stat_block.get("melee_attack_bonus") or 0)
    if action_type == "ranged":
        return int(stat_block.get("ranged_attack_bonus") or 0)
    return None


def save_dc(stat_block: dict[str, Any], *, override: int | None) -> int:
    return override if override is not None else int(stat_block.get("save_dc") or 10)


def character_sheet(stat_block: dict[str, Any] | None) -> dict[str, Any]:
    block = normalize_stat_block(stat_block)
    scores = block["abilities"]
    abilities = []
    saves = []
    for key in ABILITIES:
        modifier = ability_modifier(scores[key])
        abilities.append({"key": key, "score": scores[key], "modifier": modifier, "label": format_bonus(modifier)})
        total = modifier + int(block["saves"].get(key, 0))
        saves.append({"key": key, "bonus": total, "label": format_bonus(total)})
    skills = [
        {"name": name, "bonus": bonus, "label": format_bonus(bonus)}
        for name, bonus in sorted(block["skills"].items(), key=lambda item: item[0].lower())
    ]
    return {
        "hp": block["hp"],
        "ac": block["ac"],
        "speed_squares": block["speed"],
        "speed_feet": block["speed"] * 5,
        "abilities": abilities,
        "saves": saves,
        "skills": skills,
        "melee_attack_bonus": block["melee_attack_bonus"],
        "ranged_attack_bonus": block["ranged_attack_bonus"],
        "save_dc": block["save_dc"],
    }
