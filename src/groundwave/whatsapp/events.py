"""Events raised by the WhatsApp protocol driver."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from groundwave.whatsapp.jid import EMPTY_JID, JID


@dataclass
class DeviceSentMeta:
    """Present on messages this account sent from another linked device."""

    destination_jid: str = ""


@dataclass
class MessageInfo:
    chat: JID = EMPTY_JID
    sender: JID = EMPTY_JID
    sender_alt: JID = EMPTY_JID
    recipient_alt: JID = EMPTY_JID
    is_from_me: bool = False
    is_group: bool = False
    id: str = ""
    push_name: str = ""
    timestamp: datetime | None = None
    device_sent_meta: DeviceSentMeta | None = None


@dataclass
class MessageContent:
    conversation: str = ""
    extended_text: str = ""
    image_caption: str = ""


@dataclass
class Connected:
    pass


@dataclass
class Disconnected:
    pass


@dataclass
class LoggedOut:
    reason: str = ""


@dataclass
class Message:
    info: MessageInfo = field(default_factory=MessageInfo)
    content: MessageContent = field(default_factory=MessageContent)


Event = Connected | Disconnected | LoggedOut | Message


@dataclass
class QRChannelItem:
    """One step of the pairing stream: ``code``, ``success``, ``timeout`` or ``error``."""

    event: str
    code: str = ""
    jid: JID | None = None
    push_name: str = ""
    error: str = ""
