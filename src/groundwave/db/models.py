"""SQLModel schemas for Groundwave.

Architecture:
- User / UserPasskey / UserInvite: WebAuthn-only identities
- WebSession: server-side session rows (cookie carries an opaque token)
- Contact / ContactPhone / ContactChat: address book and per-contact chat log
- HealthProfile / HealthProfileShare: auth contract for health records
- ZettelNote / ZettelLink / ZettelBacklink: org-mode notes and their link graph
- WhatsAppDevice: the single paired WhatsApp identity
- QSORecord: imported ham-radio contacts
"""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import UUID, uuid4

from pydantic import field_validator
from sqlalchemy import ARRAY, Column, Index, LargeBinary, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel


def utcnow_naive() -> datetime:
    """Get current UTC time as naive datetime (for TIMESTAMP WITHOUT TIME ZONE)."""
    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC, leaving naive values alone."""
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


# =============================================================================
# Enums
# =============================================================================


class UserRole(StrEnum):
    """Role granted to a user created from an invite."""

    ADMIN = "admin"
    MEMBER = "member"


class ChatPlatform(StrEnum):
    """Where a chat entry came from."""

    WHATSAPP = "whatsapp"
    SIGNAL = "signal"
    SMS = "sms"
    EMAIL = "email"
    OTHER = "other"


class ChatSender(StrEnum):
    """Direction of a chat entry."""

    ME = "me"
    THEM = "them"


class NoteAccess(StrEnum):
    """Visibility of a zettel."""

    PRIVATE = "private"
    HOME = "home"
    PUBLIC = "public"


# =============================================================================
# Base Model
# =============================================================================


class TimestampMixin(SQLModel):
    """Mixin for created/updated timestamps."""

    created_at: datetime = Field(
        default_factory=utcnow_naive,
        description="When this record was created",
    )
    updated_at: datetime = Field(
        default_factory=utcnow_naive,
        description="When this record was last updated",
        sa_column_kwargs={"onupdate": utcnow_naive},
    )


# =============================================================================
# Identity
# =============================================================================


class User(TimestampMixin, table=True):
    """A person allowed to sign in with a passkey."""

    __tablename__ = "users"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    display_name: str = Field(max_length=255, description="Name shown in the UI")
    is_admin: bool = Field(default=False, description="Administrators manage users and invites")

    def __repr__(self) -> str:
        return f"<User {self.display_name} admin={self.is_admin}>"


class UserPasskey(SQLModel, table=True):
    """A WebAuthn credential bound to a user."""

    __tablename__ = "user_passkeys"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", index=True, ondelete="CASCADE")
    credential_id: bytes = Field(
        sa_column=Column(LargeBinary, unique=True, nullable=False),
        description="Raw credential id from the authenticator",
    )
    public_key: bytes = Field(
        sa_column=Column(LargeBinary, nullable=False),
        description="COSE encoded credential public key",
    )
    sign_count: int = Field(default=0, ge=0, description="Last accepted signature counter")
    transports: list[str] = Field(
        default_factory=list,
        sa_type=ARRAY(String),
        description="Authenticator transports hint",
    )
    label: str | None = Field(default=None, max_length=255, description="Friendly name")
    created_at: datetime = Field(default_factory=utcnow_naive)
    last_used_at: datetime | None = Field(default=None)


class UserInvite(SQLModel, table=True):
    """One-shot signup token issued by an administrator."""

    __tablename__ = "user_invites"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    token: str = Field(max_length=128, unique=True, index=True)
    display_name: str | None = Field(default=None, max_length=255)
    target_role: UserRole = Field(default=UserRole.MEMBER)
    created_by: UUID | None = Field(default=None, foreign_key="users.id", ondelete="SET NULL")
    created_at: datetime = Field(default_factory=utcnow_naive)
    used_at: datetime | None = Field(default=None)

    @property
    def is_consumed(self) -> bool:
        return self.used_at is not None


class WebSession(SQLModel, table=True):
    """Server-side browser session.

    The cookie holds a random token; only its SHA256 hash is stored.
    ``data`` carries short-lived ceremony state (challenges, flash, setup flags).
    """

    __tablename__ = "web_sessions"  # type: ignore[assignment]
    __table_args__ = (Index("ix_web_sessions_absolute_expires_at", "absolute_expires_at"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    token_hash: str = Field(max_length=64, unique=True, index=True)
    user_id: UUID | None = Field(
        default=None, foreign_key="users.id", index=True, ondelete="CASCADE"
    )
    user_display_name: str | None = Field(default=None, max_length=255)
    created_at: datetime = Field(default_factory=utcnow_naive)
    absolute_expires_at: datetime = Field(description="Hard limit, never extended")
    authenticated_expires_at: datetime | None = Field(
        default=None, description="End of the sign-in window chosen at login"
    )
    last_activity_at: datetime = Field(default_factory=utcnow_naive)
    device_label: str | None = Field(default=None, max_length=255)
    ip_address: str | None = Field(default=None, max_length=64)
    sensitive_access_expires_at: datetime | None = Field(default=None)
    break_glass_profile_ids: list[str] = Field(
        default_factory=list,
        sa_type=ARRAY(String),
        description="Health profiles unlocked by break-glass",
    )
    break_glass_expires_at: datetime | None = Field(default=None)
    data: dict[str, Any] = Field(default_factory=dict, sa_type=JSONB)

    @field_validator(
        "absolute_expires_at",
        "authenticated_expires_at",
        "sensitive_access_expires_at",
        "break_glass_expires_at",
        mode="before",
    )
    @classmethod
    def strip_timezone(cls, v: datetime | None) -> datetime | None:
        """Ensure datetimes are naive (PostgreSQL TIMESTAMP WITHOUT TIME ZONE)."""
        if isinstance(v, datetime):
            return to_naive_utc(v)
        return v


# =============================================================================
# Contacts
# =============================================================================


class Contact(SQLModel, table=True):
    """Address book entry."""

    __tablename__ = "contacts"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    name: str = Field(max_length=255, index=True)
    emails: list[str] = Field(default_factory=list, sa_type=ARRAY(String))
    urls: list[str] = Field(default_factory=list, sa_type=ARRAY(String))
    tags: list[str] = Field(default_factory=list, sa_type=ARRAY(String))
    tier: str | None = Field(default=None, max_length=16)
    carddav_link: str | None = Field(default=None, max_length=2048)
    last_auto_contact_at: datetime | None = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow_naive)


class ContactPhone(SQLModel, table=True):
    """Phone number of a contact, stored raw and digit-normalised."""

    __tablename__ = "contact_phones"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    contact_id: UUID = Field(foreign_key="contacts.id", index=True, ondelete="CASCADE")
    phone: str = Field(max_length=64)
    normalized: str = Field(max_length=32, index=True)
    created_at: datetime = Field(default_factory=utcnow_naive)


class ContactChat(SQLModel, table=True):
    """One message in a contact's chat log."""

    __tablename__ = "contact_chats"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    contact_id: UUID = Field(foreign_key="contacts.id", index=True, ondelete="CASCADE")
    platform: ChatPlatform = Field(default=ChatPlatform.WHATSAPP)
    sender: ChatSender
    message: str = Field(sa_type=Text)
    sent_at: datetime
    created_at: datetime = Field(default_factory=utcnow_naive)


# =============================================================================
# Health (auth contract only)
# =============================================================================


class HealthProfile(SQLModel, table=True):
    """A person whose health records are tracked."""

    __tablename__ = "health_profiles"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    name: str = Field(max_length=255)
    is_primary: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow_naive)


class HealthProfileShare(SQLModel, table=True):
    """Grants a non-admin user read access to a health profile."""

    __tablename__ = "health_profile_shares"  # type: ignore[assignment]
    __table_args__ = (UniqueConstraint("user_id", "profile_id", name="uq_health_share"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", index=True, ondelete="CASCADE")
    profile_id: UUID = Field(foreign_key="health_profiles.id", index=True, ondelete="CASCADE")
    created_by: UUID | None = Field(default=None, foreign_key="users.id", ondelete="SET NULL")
    created_at: datetime = Field(default_factory=utcnow_naive)


# =============================================================================
# Zettelkasten
# =============================================================================


class ZettelNote(SQLModel, table=True):
    """An org-mode note identified by its ``:ID:`` property."""

    __tablename__ = "zettel_notes"  # type: ignore[assignment]

    id: str = Field(primary_key=True, max_length=100)
    title: str = Field(default="Untitled Note", max_length=512)
    body: str = Field(default="", sa_type=Text)
    access: NoteAccess = Field(default=NoteAccess.PRIVATE)
    date: datetime | None = Field(default=None, description="#+DATE directive, UTC midnight")
    filename: str | None = Field(default=None, max_length=512)
    updated_at: datetime = Field(default_factory=utcnow_naive)


class ZettelLink(SQLModel, table=True):
    """Forward edge: source note links to target note."""

    __tablename__ = "zettel_links"  # type: ignore[assignment]

    source_id: str = Field(primary_key=True, max_length=100)
    target_id: str = Field(primary_key=True, max_length=100, index=True)


class ZettelBacklink(SQLModel, table=True):
    """Inverse edge: target note is linked from source note."""

    __tablename__ = "zettel_backlinks"  # type: ignore[assignment]

    target_id: str = Field(primary_key=True, max_length=100)
    source_id: str = Field(primary_key=True, max_length=100)


# =============================================================================
# WhatsApp
# =============================================================================


class WhatsAppDevice(SQLModel, table=True):
    """The paired WhatsApp identity. At most one row is used."""

    __tablename__ = "whatsapp_devices"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    jid: str = Field(max_length=255, unique=True)
    push_name: str | None = Field(default=None, max_length=255)
    paired_at: datetime = Field(default_factory=utcnow_naive)


# =============================================================================
# Ham radio
# =============================================================================


class QSORecord(SQLModel, table=True):
    """A stored QSO imported from ADIF."""

    __tablename__ = "qsos"  # type: ignore[assignment]
    __table_args__ = (UniqueConstraint("call", "timestamp", name="uq_qso_call_timestamp"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    call: str = Field(max_length=32, index=True)
    timestamp: datetime = Field(index=True)
    qso_date: str = Field(default="", max_length=8)
    time_on: str = Field(default="", max_length=6)
    qso_date_off: str = Field(default="", max_length=8)
    time_off: str = Field(default="", max_length=6)
    band: str = Field(default="", max_length=16)
    mode: str = Field(default="", max_length=32)
    freq: str = Field(default="", max_length=32)
    rst_sent: str = Field(default="", max_length=16)
    rst_rcvd: str = Field(default="", max_length=16)
    qth: str = Field(default="", max_length=255)
    name: str = Field(default="", max_length=255)
    comment: str = Field(default="", sa_type=Text)
    gridsquare: str = Field(default="", max_length=16)
    country: str = Field(default="", max_length=128)
    dxcc: str = Field(default="", max_length=8)
    my_gridsquare: str = Field(default="", max_length=16)
    station_callsign: str = Field(default="", max_length=32)
    my_rig: str = Field(default="", max_length=255)
    my_antenna: str = Field(default="", max_length=255)
    tx_pwr: str = Field(default="", max_length=16)
    qsl_sent: str = Field(default="", max_length=1)
    qsl_rcvd: str = Field(default="", max_length=1)
    lotw_qsl_sent: str = Field(default="", max_length=1)
    lotw_qsl_rcvd: str = Field(default="", max_length=1)
    eqsl_qsl_sent: str = Field(default="", max_length=1)
    eqsl_qsl_rcvd: str = Field(default="", max_length=1)
    created_at: datetime = Field(default_factory=utcnow_naive)
