"""Contact lookup and chat log maintenance."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from groundwave.db.models import (
    ChatPlatform,
    ChatSender,
    Contact,
    ContactChat,
    ContactPhone,
    to_naive_utc,
)
from groundwave.errors import NotFoundError, ValidationError
from groundwave.whatsapp.phone import MIN_SUFFIX_DIGITS, normalize_phone, phone_matches

log = structlog.get_logger()


class ContactManager:
    """Manages contacts, their phone numbers and chat entries."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, contact_id: UUID) -> Contact:
        result = await self.session.execute(select(Contact).where(Contact.id == contact_id))
        contact = result.scalar_one_or_none()
        if contact is None:
            raise NotFoundError("Contact", str(contact_id))
        return contact

    async def create(self, name: str, phones: list[str] | None = None) -> Contact:
        name = name.strip()
        if not name:
            raise ValidationError("Contact name is required")
        contact = Contact(name=name)
        self.session.add(contact)
        await self.session.flush()
        for phone in phones or []:
            await self.add_phone(contact.id, phone)
        return contact

    async def add_phone(self, contact_id: UUID, phone: str) -> ContactPhone:
        normalized = normalize_phone(phone)
        if not normalized:
            raise ValidationError(f"Invalid phone number: {phone!r}")
        entry = ContactPhone(contact_id=contact_id, phone=phone.strip(), normalized=normalized)
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def find_contact_by_phone(self, phone: str) -> UUID | None:
        """Earliest-created contact with a number matching ``phone``."""
        normalized = normalize_phone(phone)
        if not normalized:
            return None

        query = select(ContactPhone.contact_id, ContactPhone.normalized).join(
            Contact, col(Contact.id) == col(ContactPhone.contact_id)
        )
        if len(normalized) >= MIN_SUFFIX_DIGITS:
            suffix = normalized[-MIN_SUFFIX_DIGITS:]
            query = query.where(col(ContactPhone.normalized).like(f"%{suffix}"))
        else:
            query = query.where(col(ContactPhone.normalized) == normalized)
        query = query.order_by(col(Contact.created_at), col(Contact.id))

        result = await self.session.execute(query)
        for contact_id, stored in result.all():
            if phone_matches(stored, normalized):
                return contact_id
        return None

    async def touch_last_auto_contact(self, contact_id: UUID, when: datetime) -> None:
        """Move ``last_auto_contact_at`` forward to ``when``, never backwards."""
        contact = await self.get(contact_id)
        when = to_naive_utc(when)
        if contact.last_auto_contact_at is None or when > contact.last_auto_contact_at:
            contact.last_auto_contact_at = when
            self.session.add(contact)

    async def add_chat(
        self,
        contact_id: UUID,
        *,
        sender: ChatSender,
        message: str,
        sent_at: datetime,
        platform: ChatPlatform = ChatPlatform.WHATSAPP,
    ) -> ContactChat:
        message = message.strip()
        if not message:
            raise ValidationError("Chat message is empty")
        chat = ContactChat(
            contact_id=contact_id,
            platform=platform,
            sender=sender,
            message=message,
            sent_at=to_naive_utc(sent_at),
        )
        self.session.add(chat)
        await self.session.flush()
        return chat

    async def list_chats(self, contact_id: UUID, limit: int = 100) -> list[ContactChat]:
        result = await self.session.execute(
            select(ContactChat)
            .where(ContactChat.contact_id == contact_id)
            .order_by(col(ContactChat.sent_at).desc())
            .limit(limit)
        )
        return list(result.scalars().all())
