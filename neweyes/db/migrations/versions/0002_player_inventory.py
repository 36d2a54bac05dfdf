"""player characters and inventory

Revision ID: 0002_player_inventory
Revises: 0001_initial
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "0002_player_inventory"
down_revision = "0001_initial"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "characters",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("class", sa.String(length=64), nullable=False),
        sa.Column("level", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_characters_user_id", "characters", ["user_id"], unique=True)

    op.create_table(
        "inventory_items",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "character_id",
            sa.String(length=36),
            sa.ForeignKey("characters.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("item_id", sa.String(length=36), sa.ForeignKey("items.id", ondelete="SET NULL"), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("equipped", sa.Boolean(), nullable=False),
        sa.Column("equipped_slot", sa.String(length=32), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_inventory_items_character_id", "inventory_items", ["character_id"])
    op.create_index("ix_inventory_items_item_id", "inventory_items", ["item_id"])
    op.create_index("ix_inventory_items_created_at", "inventory_items", ["created_at"])


def downgrade() -> None:
    op.drop_table("inventory_items")
    op.drop_table("characters")
