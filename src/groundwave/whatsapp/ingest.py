"""Appending WhatsApp messages to contact chat logs."""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from groundwave.contacts.manager import ContactManager
from groundwave.db.models import ChatPlatform, ChatSender
from groundwave.whatsapp.jid import JID

log = structlog.get_logger()

SessionProvider = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class MessageIngestor:
    """MessageHandler that records chats for known contacts.

    Messages from numbers that match no contact are dropped silently.
    """

    def __init__(self, session_provider: SessionProvider) -> None:
        self._session_provider = session_provider

    async def __call__(self, jid: JID, timestamp: datetime, outgoing: bool, message: str) -> None:
        phone = jid.user
        async with self._session_provider() as session:
            contacts = ContactManager(session)
            contact_id = await contacts.find_contact_by_phone(phone)
            if contact_id is None:
                log.debug("WhatsApp message from unknown number dropped")
                return

            await contacts.touch_last_auto_contact(contact_id, timestamp)
            await contacts.add_chat(
                contact_id,
                sender=ChatSender.ME if outgoing else ChatSender.THEM,
                message=message,
                sent_at=timestamp,
                platform=ChatPlatform.WHATSAPP,
            )
        log.info("WhatsApp chat recorded", contact_id=str(contact_id), outgoing=outgoing)
