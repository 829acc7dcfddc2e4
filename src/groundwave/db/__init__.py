"""Groundwave database module - PostgreSQL via SQLModel and asyncpg.

Usage:
    from groundwave.db import get_session, Contact

    async with get_session() as session:
        session.add(Contact(name="Ada Lovelace"))
"""

from groundwave.db.connection import (
    close_db,
    get_engine,
    get_session,
    get_session_dependency,
    get_session_factory,
    init_db,
)
from groundwave.db.models import (
    ChatPlatform,
    ChatSender,
    Contact,
    ContactChat,
    ContactPhone,
    HealthProfile,
    HealthProfileShare,
    NoteAccess,
    QSORecord,
    User,
    UserInvite,
    UserPasskey,
    UserRole,
    WebSession,
    WhatsAppDevice,
    ZettelBacklink,
    ZettelLink,
    ZettelNote,
    utcnow_naive,
)

__all__ = [
    "ChatPlatform",
    "ChatSender",
    "Contact",
    "ContactChat",
    "ContactPhone",
    "HealthProfile",
    "HealthProfileShare",
    "NoteAccess",
    "QSORecord",
    "User",
    "UserInvite",
    "UserPasskey",
    "UserRole",
    "WebSession",
    "WhatsAppDevice",
    "ZettelBacklink",
    "ZettelLink",
    "ZettelNote",
    "close_db",
    "get_engine",
    "get_session",
    "get_session_dependency",
    "get_session_factory",
    "init_db",
    "utcnow_naive",
]
