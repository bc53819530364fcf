"""initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- actions ---
    op.create_table(
        "actions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("provider", sa.String(64), nullable=False, server_default="default"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )
    op.create_index("ix_actions_id", "actions", ["id"])

    # --- reactions ---
    op.create_table(
        "reactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("provider", sa.String(64), nullable=False, server_default="default"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )
    op.create_index("ix_reactions_id", "reactions", ["id"])

    # --- areas ---
    op.create_table(
        "areas",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("action_id", sa.Integer(), sa.ForeignKey("actions.id"), nullable=False),
        sa.Column("reaction_id", sa.Integer(), sa.ForeignKey("reactions.id"), nullable=False),
        sa.Column("action_config", sa.Text(), nullable=True,
                  comment="JSON object passed to the action detector"),
        sa.Column("reaction_config", sa.Text(), nullable=True,
                  comment="JSON object, may contain {{PLACEHOLDER}} tokens"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_areas_user_id", "areas", ["user_id"])
    op.create_index("ix_areas_is_active", "areas", ["is_active"])

    # --- event_logs ---
    op.create_table(
        "event_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("area_id", sa.String(36), nullable=True),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("event_metadata", sa.Text(), nullable=True,
                  comment="JSON: actionResult, reactionResult, processedConfig"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_event_logs_id", "event_logs", ["id"])
    op.create_index("ix_event_logs_user_id", "event_logs", ["user_id"])
    op.create_index("ix_event_logs_area_id", "event_logs", ["area_id"])
    op.create_index("ix_event_logs_event_type", "event_logs", ["event_type"])

    # --- linked_accounts ---
    op.create_table(
        "linked_accounts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("provider", sa.String(64), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "provider", name="uq_linked_account_user_provider"),
    )
    op.create_index("ix_linked_accounts_id", "linked_accounts", ["id"])
    op.create_index("ix_linked_accounts_user_id", "linked_accounts", ["user_id"])

    # --- seed catalogue ---
    op.execute("""
        INSERT INTO actions (name, provider, description, is_active)
        VALUES
          ('spotify_has_likes',   'spotify', 'Check if user has liked songs on Spotify', true),
          ('gmail_new_email',     'google',  'Detect new incoming email in Gmail inbox', true),
          ('discord_new_message', 'discord', 'Detect new messages in Discord servers',   true)
    """)
    op.execute("""
        INSERT INTO reactions (name, provider, description, is_active)
        VALUES
          ('send_email',           'google',  'Send an email from your Gmail account', true),
          ('log_event',            'default', 'Log the event in your activity history', true),
          ('discord_send_message', 'default', 'Send a message to a Discord channel',   true)
    """)


def downgrade() -> None:
    op.drop_table("linked_accounts")
    op.drop_table("event_logs")
    op.drop_table("areas")
    op.drop_table("reactions")
    op.drop_table("actions")
