"""Initial schema for Groundwave.

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:  # noqa: PLR0915
    """Create all tables and constraints."""
    # =========================================================================
    # Enum Types
    # =========================================================================
    userrole = postgresql.ENUM("ADMIN", "MEMBER", name="userrole", create_type=False)
    chatplatform = postgresql.ENUM(
        "WHATSAPP", "SIGNAL", "SMS", "EMAIL", "OTHER", name="chatplatform", create_type=False
    )
    chatsender = postgresql.ENUM("ME", "THEM", name="chatsender", create_type=False)
    noteaccess = postgresql.ENUM(
        "PRIVATE", "HOME", "PUBLIC", name="noteaccess", create_type=False
    )

    connection = op.get_bind()
    userrole.create(connection, checkfirst=True)
    chatplatform.create(connection, checkfirst=True)
    chatsender.create(connection, checkfirst=True)
    noteaccess.create(connection, checkfirst=True)

    # =========================================================================
    # Identity
    # =========================================================================
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=False),
        sa.Column("is_admin", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "user_passkeys",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("credential_id", sa.LargeBinary(), nullable=False),
        sa.Column("public_key", sa.LargeBinary(), nullable=False),
        sa.Column("sign_count", sa.Integer(), nullable=False),
        sa.Column("transports", postgresql.ARRAY(sa.String()), nullable=False),
        sa.Column("label", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("last_used_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("credential_id"),
    )
    op.create_index("ix_user_passkeys_user_id", "user_passkeys", ["user_id"])

    op.create_table(
        "user_invites",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("token", sa.String(length=128), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("target_role", userrole, nullable=False),
        sa.Column("created_by", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("used_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_user_invites_token", "user_invites", ["token"], unique=True)

    op.create_table(
        "web_sessions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("token_hash", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=True),
        sa.Column("user_display_name", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("absolute_expires_at", sa.DateTime(), nullable=False),
        sa.Column("authenticated_expires_at", sa.DateTime(), nullable=True),
        sa.Column("last_activity_at", sa.DateTime(), nullable=False),
        sa.Column("device_label", sa.String(length=255), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("sensitive_access_expires_at", sa.DateTime(), nullable=True),
        sa.Column("break_glass_profile_ids", postgresql.ARRAY(sa.String()), nullable=False),
        sa.Column("break_glass_expires_at", sa.DateTime(), nullable=True),
        sa.Column("data", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_web_sessions_token_hash", "web_sessions", ["token_hash"], unique=True)
    op.create_index("ix_web_sessions_user_id", "web_sessions", ["user_id"])
    op.create_index(
        "ix_web_sessions_absolute_expires_at", "web_sessions", ["absolute_expires_at"]
    )

    # =========================================================================
    # Contacts
    # =========================================================================
    op.create_table(
        "contacts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("emails", postgresql.ARRAY(sa.String()), nullable=False),
        sa.Column("urls", postgresql.ARRAY(sa.String()), nullable=False),
        sa.Column("tags", postgresql.ARRAY(sa.String()), nullable=False),
        sa.Column("tier", sa.String(length=16), nullable=True),
        sa.Column("carddav_link", sa.String(length=2048), nullable=True),
        sa.Column("last_auto_contact_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_contacts_name", "contacts", ["name"])

    op.create_table(
        "contact_phones",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("contact_id", sa.Uuid(), nullable=False),
        sa.Column("phone", sa.String(length=64), nullable=False),
        sa.Column("normalized", sa.String(length=32), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["contact_id"], ["contacts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_contact_phones_contact_id", "contact_phones", ["contact_id"])
    op.create_index("ix_contact_phones_normalized", "contact_phones", ["normalized"])

    op.create_table(
        "contact_chats",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("contact_id", sa.Uuid(), nullable=False),
        sa.Column("platform", chatplatform, nullable=False),
        sa.Column("sender", chatsender, nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("sent_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["contact_id"], ["contacts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_contact_chats_contact_id", "contact_chats", ["contact_id"])

    # =========================================================================
    # Health
    # =========================================================================
    op.create_table(
        "health_profiles",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("is_primary", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "health_profile_shares",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("profile_id", sa.Uuid(), nullable=False),
        sa.Column("created_by", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["profile_id"], ["health_profiles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "profile_id", name="uq_health_share"),
    )
    op.create_index("ix_health_profile_shares_user_id", "health_profile_shares", ["user_id"])
    op.create_index(
        "ix_health_profile_shares_profile_id", "health_profile_shares", ["profile_id"]
    )

    # =========================================================================
    # Zettelkasten
    # =========================================================================
    op.create_table(
        "zettel_notes",
        sa.Column("id", sa.String(length=100), nullable=False),
        sa.Column("title", sa.String(length=512), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("access", noteaccess, nullable=False),
        sa.Column("date", sa.DateTime(), nullable=True),
        sa.Column("filename", sa.String(length=512), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "zettel_links",
        sa.Column("source_id", sa.String(length=100), nullable=False),
        sa.Column("target_id", sa.String(length=100), nullable=False),
        sa.PrimaryKeyConstraint("source_id", "target_id"),
    )
    op.create_index("ix_zettel_links_target_id", "zettel_links", ["target_id"])

    op.create_table(
        "zettel_backlinks",
        sa.Column("target_id", sa.String(length=100), nullable=False),
        sa.Column("source_id", sa.String(length=100), nullable=False),
        sa.PrimaryKeyConstraint("target_id", "source_id"),
    )

    # =========================================================================
    # WhatsApp
    # =========================================================================
    op.create_table(
        "whatsapp_devices",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("jid", sa.String(length=255), nullable=False),
        sa.Column("push_name", sa.String(length=255), nullable=True),
        sa.Column("paired_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("jid"),
    )

    # =========================================================================
    # Ham radio
    # =========================================================================
    qso_columns = [
        ("qso_date", 8),
        ("time_on", 6),
        ("qso_date_off", 8),
        ("time_off", 6),
        ("band", 16),
        ("mode", 32),
        ("freq", 32),
        ("rst_sent", 16),
        ("rst_rcvd", 16),
        ("qth", 255),
        ("name", 255),
    ]
    qso_trailing = [
        ("gridsquare", 16),
        ("country", 128),
        ("dxcc", 8),
        ("my_gridsquare", 16),
        ("station_callsign", 32),
        ("my_rig", 255),
        ("my_antenna", 255),
        ("tx_pwr", 16),
        ("qsl_sent", 1),
        ("qsl_rcvd", 1),
        ("lotw_qsl_sent", 1),
        ("lotw_qsl_rcvd", 1),
        ("eqsl_qsl_sent", 1),
        ("eqsl_qsl_rcvd", 1),
    ]
    op.create_table(
        "qsos",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("call", sa.String(length=32), nullable=False),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        *(sa.Column(name, sa.String(length=size), nullable=False) for name, size in qso_columns),
        sa.Column("comment", sa.Text(), nullable=False),
        *(sa.Column(name, sa.String(length=size), nullable=False) for name, size in qso_trailing),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("call", "timestamp", name="uq_qso_call_timestamp"),
    )
    op.create_index("ix_qsos_call", "qsos", ["call"])
    op.create_index("ix_qsos_timestamp", "qsos", ["timestamp"])


def downgrade() -> None:
    """Drop all tables and enum types."""
    op.drop_table("qsos")
    op.drop_table("whatsapp_devices")
    op.drop_table("zettel_backlinks")
    op.drop_table("zettel_links")
    op.drop_table("zettel_notes")
    op.drop_table("health_profile_shares")
    op.drop_table("health_profiles")
    op.drop_table("contact_chats")
    op.drop_table("contact_phones")
    op.drop_table("contacts")
    op.drop_table("web_sessions")
    op.drop_table("user_invites")
    op.drop_table("user_passkeys")
    op.drop_table("users")

    op.execute("DROP TYPE IF EXISTS noteaccess")
    op.execute("DROP TYPE IF EXISTS chatsender")
    op.execute("DROP TYPE IF EXISTS chatplatform")
    op.execute("DROP TYPE IF EXISTS userrole")
