from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

SORT_STEP = 10
MOVE_DIRECTIONS = ("up", "down")


class Ordered(Protocol):
    sort_order: int


def _order_of(block: Any) -> int:
    if isinstance(block, dict):
        return int(block.get("sort_order") or 0)
    return int(getattr(block, "sort_order", 0) or 0)


def _type_of(block: Any) -> str:
    if isinstance(block, dict):
        return str(block.get("block_type") or "")
    return str(getattr(block, "block_type", "") or "")


def next_sort_order(existing: Iterable[int | None]) -> int:
    values = [int(v) for v in existing if v is not None]
    return (max(values) if values else 0) + SORT_STEP


def sorted_blocks(blocks: Iterable[Any]) -> list[Any]:
    return sorted(blocks, key=_order_of)


def find_swap_neighbor(blocks: Sequence[Any], current: Any, direction: str) -> Any | None:
    """Nearest sibling strictly above (``up``) or below (``down``) ``current``; None at an end."""
    if direction not in MOVE_DIRECTIONS:
        raise ValueError(f"direction must be one of {MOVE_DIRECTIONS}")
    pivot = _order_of(current)
    best = None
    for block in blocks:
        if block is current:
            continue
        order = _order_of(block)
        if direction == "up" and order < pivot:
            if best is None or order > _order_of(best):
                best = block
        elif direction == "down" and order > pivot:
            if best is None or order < _order_of(best):
                best = block
    return best


def swap_sort_orders(first: Ordered, second: Ordered) -> None:
    first.sort_order, second.sort_order = second.sort_order, first.sort_order


@dataclass
class SceneGroup:
    scene: Any | None
    blocks: list[Any] = field(default_factory=list)


def group_blocks_by_scene(blocks: Iterable[Any]) -> list[SceneGroup]:
    """Split ordered blocks at each scene; blocks before the first scene land in a headless group."""
    groups: list[SceneGroup] = []
    for block in sorted_blocks(blocks):
        if _type_of(block) == "scene":
            groups.append(SceneGroup(scene=block))
            continue
        if not groups:
            groups.append(SceneGroup(scene=None))
        groups[-1].blocks.append(block)
    return groups


def progression_count(blocks: Iterable[Any]) -> int:
    return sum(1 for block in blocks if _type_of(block) != "scene")
