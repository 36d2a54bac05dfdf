"""initial schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "profiles",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=False),
        sa.Column("is_storyteller", sa.Boolean(), nullable=False),
        sa.Column("is_admin", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_profiles_email", "profiles", ["email"], unique=True)

    op.create_table(
        "episodes",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("episode_code", sa.String(length=64), nullable=True),
        sa.Column("story_text", sa.Text(), nullable=False),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("default_duration_seconds", sa.Integer(), nullable=False),
        sa.Column("default_encounter_total", sa.Integer(), nullable=False),
        sa.Column("map_image_url", sa.Text(), nullable=True),
        sa.Column("npc_image_url", sa.Text(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_episodes_episode_code", "episodes", ["episode_code"])
    op.create_index("ix_episodes_created_at", "episodes", ["created_at"])

    op.create_table(
        "episode_blocks",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("episode_id", sa.String(length=36), sa.ForeignKey("episodes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=False),
        sa.Column("block_type", sa.String(length=32), nullable=False),
        sa.Column("audience", sa.String(length=32), nullable=False),
        sa.Column("mode", sa.String(length=32), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=True),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("meta", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_episode_blocks_episode_id", "episode_blocks", ["episode_id"])
    op.create_index("ix_episode_blocks_episode_sort", "episode_blocks", ["episode_id", "sort_order"])

    op.create_table(
        "npcs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("npc_type", sa.String(length=32), nullable=False),
        sa.Column("default_role", sa.String(length=32), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("stat_block", sa.JSON(), nullable=False),
        sa.Column("image_base_path", sa.String(length=255), nullable=True),
        sa.Column("image_alt", sa.String(length=255), nullable=True),
        sa.Column("image_updated_at", sa.DateTime(), nullable=True),
        sa.Column("notes_storyteller", sa.Text(), nullable=True),
        sa.Column("is_archived", sa.Boolean(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_npcs_name", "npcs", ["name"])
    op.create_index("ix_npcs_is_archived", "npcs", ["is_archived"])
    op.create_index("ix_npcs_updated_at", "npcs", ["updated_at"])

    op.create_table(
        "traits",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("trait_type", sa.String(length=32), nullable=False),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("trigger", sa.Text(), nullable=True),
        sa.Column("mechanical_effect", sa.Text(), nullable=True),
        sa.Column("narrative_signal", sa.Text(), nullable=True),
        sa.Column("growth_condition", sa.Text(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("is_archived", sa.Boolean(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_traits_name", "traits", ["name"])
    op.create_index("ix_traits_is_archived", "traits", ["is_archived"])

    op.create_table(
        "actions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("action_type", sa.String(length=32), nullable=False),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("rules_text", sa.Text(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("is_archived", sa.Boolean(), nullable=False),
        sa.Column("uses_attack_roll", sa.Boolean(), nullable=False),
        sa.Column("attack_bonus_override", sa.Integer(), nullable=True),
        sa.Column("damage_dice", sa.String(length=64), nullable=True),
        sa.Column("damage_bonus", sa.Integer(), nullable=True),
        sa.Column("damage_type", sa.String(length=64), nullable=True),
        sa.Column("save_ability", sa.String(length=16), nullable=True),
        sa.Column("save_dc_override", sa.Integer(), nullable=True),
        sa.Column("on_fail", sa.Text(), nullable=True),
        sa.Column("on_success", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_actions_name", "actions", ["name"])
    op.create_index("ix_actions_is_archived", "actions", ["is_archived"])

    op.create_table(
        "npc_trait_links",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("npc_id", sa.String(length=36), sa.ForeignKey("npcs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("trait_id", sa.String(length=36), sa.ForeignKey("traits.id", ondelete="CASCADE"), nullable=False),
        sa.UniqueConstraint("npc_id", "trait_id", name="uq_npc_trait_links_npc_trait"),
    )
    op.create_index("ix_npc_trait_links_npc_id", "npc_trait_links", ["npc_id"])
    op.create_index("ix_npc_trait_links_trait_id", "npc_trait_links", ["trait_id"])

    op.create_table(
        "npc_action_links",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("npc_id", sa.String(length=36), sa.ForeignKey("npcs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("action_id", sa.String(length=36), sa.ForeignKey("actions.id", ondelete="CASCADE"), nullable=False),
        sa.UniqueConstraint("npc_id", "action_id", name="uq_npc_action_links_npc_action"),
    )
    op.create_index("ix_npc_action_links_npc_id", "npc_action_links", ["npc_id"])
    op.create_index("ix_npc_action_links_action_id", "npc_action_links", ["action_id"])

    op.create_table(
        "items",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("category", sa.String(length=64), nullable=False),
        sa.Column("rarity", sa.String(length=32), nullable=True),
        sa.Column("weight_lb", sa.Float(), nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("rules_text", sa.Text(), nullable=True),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("image_updated_at", sa.DateTime(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("carry_behavior", sa.String(length=32), nullable=False),
        sa.Column("stackable", sa.Boolean(), nullable=False),
        sa.Column("max_stack", sa.Integer(), nullable=True),
        sa.Column("is_weaponizable", sa.Boolean(), nullable=False),
        sa.Column("weapon_kind", sa.String(length=32), nullable=True),
        sa.Column("uses_attack_roll", sa.Boolean(), nullable=False),
        sa.Column("attack_bonus_override", sa.Integer(), nullable=True),
        sa.Column("damage_dice", sa.String(length=64), nullable=True),
        sa.Column("damage_bonus", sa.Integer(), nullable=True),
        sa.Column("damage_type", sa.String(length=64), nullable=True),
        sa.Column("range_normal", sa.Integer(), nullable=True),
        sa.Column("range_max", sa.Integer(), nullable=True),
        sa.Column("save_ability", sa.String(length=16), nullable=True),
        sa.Column("save_dc_override", sa.Integer(), nullable=True),
        sa.Column("on_fail", sa.Text(), nullable=True),
        sa.Column("on_success", sa.Text(), nullable=True),
        sa.Column("equip_slots", sa.JSON(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_items_name", "items", ["name"])

    op.create_table(
        "item_effects",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("item_id", sa.String(length=36), sa.ForeignKey("items.id", ondelete="CASCADE"), nullable=False),
        sa.Column("effect_type", sa.String(length=32), nullable=False),
        sa.Column("effect_key", sa.String(length=64), nullable=False),
        sa.Column("mode", sa.String(length=32), nullable=False),
        sa.Column("value", sa.Float(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False),
    )
    op.create_index("ix_item_effects_item_id", "item_effects", ["item_id"])

    op.create_table(
        "sessions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("join_code", sa.String(length=16), nullable=False),
        sa.Column("storyteller_id", sa.String(length=36), sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("episode_id", sa.String(length=36), sa.ForeignKey("episodes.id", ondelete="SET NULL"), nullable=True),
        sa.Column("story_text", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_sessions_join_code", "sessions", ["join_code"], unique=True)
    op.create_index("ix_sessions_storyteller_id", "sessions", ["storyteller_id"])
    op.create_index("ix_sessions_episode_id", "sessions", ["episode_id"])
    op.create_index("ix_sessions_created_at", "sessions", ["created_at"])

    op.create_table(
        "session_state",
        sa.Column(
            "session_id",
            sa.String(length=36),
            sa.ForeignKey("sessions.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("timer_status", sa.String(length=16), nullable=False),
        sa.Column("duration_seconds", sa.Integer(), nullable=False),
        sa.Column("remaining_seconds", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("encounter_current", sa.Integer(), nullable=False),
        sa.Column("encounter_total", sa.Integer(), nullable=False),
        sa.Column("roll_open", sa.Boolean(), nullable=False),
        sa.Column("roll_die", sa.String(length=8), nullable=True),
        sa.Column("roll_prompt", sa.Text(), nullable=True),
        sa.Column("roll_target", sa.String(length=64), nullable=False),
        sa.Column("roll_round_id", sa.String(length=64), nullable=True),
        sa.Column("roll_results", sa.JSON(), nullable=False),
        sa.Column("roll_modes", sa.JSON(), nullable=False),
        sa.Column(
            "presented_block_id",
            sa.String(length=36),
            sa.ForeignKey("episode_blocks.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("revision", sa.Integer(), nullable=False),
    )

    op.create_table(
        "session_players",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("session_id", sa.String(length=36), sa.ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("player_id", sa.String(length=36), sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("joined_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("session_id", "player_id", name="uq_session_players_session_player"),
    )
    op.create_index("ix_session_players_session_id", "session_players", ["session_id"])
    op.create_index("ix_session_players_player_id", "session_players", ["player_id"])


def downgrade() -> None:
    op.drop_table("session_players")
    op.drop_table("session_state")
    op.drop_table("sessions")
    op.drop_table("item_effects")
    op.drop_table("items")
    op.drop_table("npc_action_links")
    op.drop_table("npc_trait_links")
    op.drop_table("actions")
    op.drop_table("traits")
    op.drop_table("npcs")
    op.drop_table("episode_blocks")
    op.drop_table("episodes")
    op.drop_table("profiles")
