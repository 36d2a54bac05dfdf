import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from neweyes.db.base import Base
from neweyes.db.types import GUID, JSONType, TagList
from neweyes.utils.time import utc_now_naive


class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    display_name: Mapped[str] = mapped_column(String(255), default="")
    is_storyteller: Mapped[bool] = mapped_column(Boolean, default=False)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)


class Episode(Base):
    __tablename__ = "episodes"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(255))
    episode_code: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    story_text: Mapped[str] = mapped_column(Text, default="")
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    default_duration_seconds: Mapped[int] = mapped_column(Integer, default=2700)
    default_encounter_total: Mapped[int] = mapped_column(Integer, default=5)
    map_image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    npc_image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[list | None] = mapped_column(TagList(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, onupdate=utc_now_naive)


class EpisodeBlock(Base):
    __tablename__ = "episode_blocks"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    episode_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("episodes.id", ondelete="CASCADE"), index=True)
    # No uniqueness on (episode_id, sort_order): concurrent inserts may collide.
    sort_order: Mapped[int] = mapped_column(Integer, default=10)
    block_type: Mapped[str] = mapped_column(String(32), default="scene")
    audience: Mapped[str] = mapped_column(String(32), default="both")
    mode: Mapped[str] = mapped_column(String(32), default="display")
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    meta: Mapped[dict] = mapped_column(JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)


class Npc(Base):
    __tablename__ = "npcs"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), index=True)
    npc_type: Mapped[str] = mapped_column(String(32), default="human")
    default_role: Mapped[str] = mapped_column(String(32), default="neutral")
    description: Mapped[str] = mapped_column(Text, default="")
    stat_block: Mapped[dict] = mapped_column(JSONType, default=dict)
    image_base_path: Mapped[str | None] = mapped_column(String(255), nullable=True)
    image_alt: Mapped[str | None] = mapped_column(String(255), nullable=True)
    image_updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    notes_storyteller: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, onupdate=utc_now_naive, index=True)


class Trait(Base):
    __tablename__ = "traits"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), index=True)
    trait_type: Mapped[str] = mapped_column(String(32), default="nature")
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    trigger: Mapped[str | None] = mapped_column(Text, nullable=True)
    mechanical_effect: Mapped[str | None] = mapped_column(Text, nullable=True)
    narrative_signal: Mapped[str | None] = mapped_column(Text, nullable=True)
    growth_condition: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[list | None] = mapped_column(TagList(), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, onupdate=utc_now_naive)


class Action(Base):
    __tablename__ = "actions"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), index=True)
    action_type: Mapped[str] = mapped_column(String(32), default="other")
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    rules_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[list | None] = mapped_column(TagList(), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    uses_attack_roll: Mapped[bool] = mapped_column(Boolean, default=False)
    attack_bonus_override: Mapped[int | None] = mapped_column(Integer, nullable=True)
    damage_dice: Mapped[str | None] = mapped_column(String(64), nullable=True)
    damage_bonus: Mapped[int | None] = mapped_column(Integer, nullable=True)
    damage_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    save_ability: Mapped[str | None] = mapped_column(String(16), nullable=True)
    save_dc_override: Mapped[int | None] = mapped_column(Integer, nullable=True)
    on_fail: Mapped[str | None] = mapped_column(Text, nullable=True)
    on_success: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, onupdate=utc_now_naive)


class NpcTraitLink(Base):
    __tablename__ = "npc_trait_links"
    __table_args__ = (UniqueConstraint("npc_id", "trait_id", name="uq_npc_trait_links_npc_trait"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    npc_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("npcs.id", ondelete="CASCADE"), index=True)
    trait_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("traits.id", ondelete="CASCADE"), index=True)


class NpcActionLink(Base):
    __tablename__ = "npc_action_links"
    __table_args__ = (UniqueConstraint("npc_id", "action_id", name="uq_npc_action_links_npc_action"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    npc_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("npcs.id", ondelete="CASCADE"), index=True)
    action_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("actions.id", ondelete="CASCADE"), index=True)


class Item(Base):
    __tablename__ = "items"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), index=True)
    category: Mapped[str] = mapped_column(String(64))
    rarity: Mapped[str | None] = mapped_column(String(32), nullable=True)
    weight_lb: Mapped[float | None] = mapped_column(Float, nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    rules_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    carry_behavior: Mapped[str] = mapped_column(String(32), default="loose")
    stackable: Mapped[bool] = mapped_column(Boolean, default=False)
    max_stack: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_weaponizable: Mapped[bool] = mapped_column(Boolean, default=False)
    weapon_kind: Mapped[str | None] = mapped_column(String(32), nullable=True)
    uses_attack_roll: Mapped[bool] = mapped_column(Boolean, default=True)
    attack_bonus_override: Mapped[int | None] = mapped_column(Integer, nullable=True)
    damage_dice: Mapped[str | None] = mapped_column(String(64), nullable=True)
    damage_bonus: Mapped[int | None] = mapped_column(Integer, nullable=True)
    damage_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    range_normal: Mapped[int | None] = mapped_column(Integer, nullable=True)
    range_max: Mapped[int | None] = mapped_column(Integer, nullable=True)
    save_ability: Mapped[str | None] = mapped_column(String(16), nullable=True)
    save_dc_override: Mapped[int | None] = mapped_column(Integer, nullable=True)
    on_fail: Mapped[str | None] = mapped_column(Text, nullable=True)
    on_success: Mapped[str | None] = mapped_column(Text, nullable=True)
    equip_slots: Mapped[list | None] = mapped_column(TagList(), nullable=True)
    tags: Mapped[list | None] = mapped_column(TagList(), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, onupdate=utc_now_naive)


class ItemEffect(Base):
    __tablename__ = "item_effects"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    item_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("items.id", ondelete="CASCADE"), index=True)
    effect_type: Mapped[str] = mapped_column(String(32))
    effect_key: Mapped[str] = mapped_column(String(64))
    mode: Mapped[str] = mapped_column(String(32))
    value: Mapped[float | None] = mapped_column(Float, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)


class Character(Base):
    __tablename__ = "characters"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    # One character per player for now.
    user_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("profiles.id", ondelete="CASCADE"), unique=True, index=True
    )
    name: Mapped[str] = mapped_column(String(255))
    char_class: Mapped[str] = mapped_column("class", String(64))
    level: Mapped[int] = mapped_column(Integer, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)


class InventoryItem(Base):
    __tablename__ = "inventory_items"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    character_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("characters.id", ondelete="CASCADE"), index=True
    )
    item_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(), ForeignKey("items.id", ondelete="SET NULL"), nullable=True, index=True
    )
    # Label kept for rows whose catalog item was deleted.
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    equipped: Mapped[bool] = mapped_column(Boolean, default=False)
    equipped_slot: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, index=True)


class Session(Base):
    __tablename__ = "sessions"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255))
    join_code: Mapped[str] = mapped_column(String(16), unique=True, index=True)
    storyteller_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("profiles.id"), index=True)
    episode_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(), ForeignKey("episodes.id", ondelete="SET NULL"), nullable=True, index=True
    )
    story_text: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, index=True)


class SessionState(Base):
    __tablename__ = "session_state"

    session_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("sessions.id", ondelete="CASCADE"), primary_key=True)
    timer_status: Mapped[str] = mapped_column(String(16), default="stopped")
    duration_seconds: Mapped[int] = mapped_column(Integer, default=0)
    remaining_seconds: Mapped[int] = mapped_column(Integer, default=0)
    # Countdown anchor; deliberately no onupdate, only timer mutators move it.
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)
    encounter_current: Mapped[int] = mapped_column(Integer, default=0)
    encounter_total: Mapped[int] = mapped_column(Integer, default=0)
    roll_open: Mapped[bool] = mapped_column(Boolean, default=False)
    roll_die: Mapped[str | None] = mapped_column(String(8), nullable=True)
    roll_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    roll_target: Mapped[str] = mapped_column(String(64), default="all")
    roll_round_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    roll_results: Mapped[dict] = mapped_column(JSONType, default=dict)
    roll_modes: Mapped[dict] = mapped_column(JSONType, default=dict)
    presented_block_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(), ForeignKey("episode_blocks.id", ondelete="SET NULL"), nullable=True
    )
    revision: Mapped[int] = mapped_column(Integer, default=0)

    # Writers bump revision themselves; flushes carry WHERE revision = <read value>
    # and raise StaleDataError when another writer got there first.
    __mapper_args__ = {"version_id_col": revision, "version_id_generator": False}


class SessionPlayer(Base):
    __tablename__ = "session_players"
    __table_args__ = (UniqueConstraint("session_id", "player_id", name="uq_session_players_session_player"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("sessions.id", ondelete="CASCADE"), index=True)
    player_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("profiles.id", ondelete="CASCADE"), index=True)
    joined_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)


Index("ix_episode_blocks_episode_sort", EpisodeBlock.episode_id, EpisodeBlock.sort_order)
