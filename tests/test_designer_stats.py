from __future__ import annotations

from neweyes.modules.designer.stats import (
    ability_modifier,
    attack_bonus,
    character_sheet,
    format_bonus,
    normalize_stat_block,
    save_dc,
)


def test_ability_modifier_floors_toward_negative() -> None:
    assert ability_modifier(10) == 0
    assert ability_modifier(11) == 0
    assert ability_modifier(9) == -1
    assert ability_modifier(18) == 4
    assert ability_modifier(1) == -5
    assert ability_modifier(None) == 0
    assert ability_modifier("junk") == 0


def test_format_bonus_signs() -> None:
    assert format_bonus(3) == "+3"
    assert format_bonus(0) == "+0"
    assert format_bonus(-2) == "-2"


def test_normalize_fills_defaults_and_converts_feet() -> None:
    block = normalize_stat_block({"hp": "22", "speed_ft": 30, "ability_scores": {"str": 16, "dex": 99}, "lore": "x"})
    assert block["hp"] == 22
    assert block["ac"] == 10
    assert block["speed"] == 6
    assert block["abilities"]["str"] == 16
    assert block["abilities"]["dex"] == 30
    assert block["abilities"]["wis"] == 10
    assert block["lore"] == "x"
    assert "ability_scores" not in block and "speed_ft" not in block


def test_normalize_tolerates_garbage_sections() -> None:
    block = normalize_stat_block({"saves": "nope", "skills": ["stealth"], "abilities": 7})
    assert block["saves"] == {}
    assert block["skills"] == {}
    assert block["abilities"]["cha"] == 10


def test_character_sheet_rolls_up_modifiers_saves_and_skills() -> None:
    sheet = character_sheet(
        {"abilities": {"dex": 14, "wis": 8}, "saves": {"dex": 2}, "skills": {"Stealth": 4, "athletics": -1}, "speed": 7}
    )
    dex = next(a for a in sheet["abilities"] if a["key"] == "dex")
    assert (dex["modifier"], dex["label"]) == (2, "+2")
    wis_save = next(s for s in sheet["saves"] if s["key"] == "wis")
    assert wis_save["bonus"] == -1
    dex_save = next(s for s in sheet["saves"] if s["key"] == "dex")
    assert dex_save["label"] == "+4"
    assert [s["name"] for s in sheet["skills"]] == ["athletics", "Stealth"]
    assert sheet["speed_squares"] == 7 and sheet["speed_feet"] == 35


def test_attack_bonus_and_save_dc_respect_overrides() -> None:
    block = normalize_stat_block({"melee_attack_bonus": 5, "ranged_attack_bonus": 3, "save_dc": 13})
    assert attack_bonus(block, action_type="melee", override=None) == 5
    assert attack_bonus(block, action_type="ranged", override=None) == 3
    assert attack_bonus(block, action_type="other", override=None) is None
    assert attack_bonus(block, action_type="melee", override=8) == 8
    assert save_dc(block, override=None) == 13
    assert save_dc(block, override=15) == 15
