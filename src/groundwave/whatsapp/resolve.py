"""Interpretation of message events: who the other party is and what was said."""

from __future__ import annotations

from groundwave.errors import ValidationError
from groundwave.whatsapp.events import MessageContent, MessageInfo
from groundwave.whatsapp.jid import JID

IMAGE_PREFIX = "<image> "


def extract_message_text(content: MessageContent | None) -> str:
    """Text of a message; only plain, extended and image-caption text count."""
    if content is None:
        return ""
    if text := content.conversation.strip():
        return text
    if text := content.extended_text.strip():
        return text
    if caption := content.image_caption.strip():
        return IMAGE_PREFIX + caption
    return ""


def prefer_phone_number_jid(primary: JID, alternate: JID) -> JID:
    """Pick the phone-number addressed JID of the two when there is one."""
    if primary.is_empty():
        return alternate
    if primary.is_phone_number():
        return primary
    if primary.is_hidden() and alternate.is_phone_number():
        return alternate
    return primary


def _parse_destination(raw: str) -> JID | None:
    if not raw:
        return None
    try:
        return JID.parse(raw)
    except ValidationError:
        return None


def resolve_other_party_jid(info: MessageInfo) -> JID:
    """Address of the contact on the other end, without the device part."""
    if info.is_from_me:
        meta = info.device_sent_meta
        destination = _parse_destination(meta.destination_jid) if meta else None
        if destination is not None and destination.is_phone_number():
            return destination.to_non_ad()
        return prefer_phone_number_jid(info.chat, info.recipient_alt).to_non_ad()

    jid = prefer_phone_number_jid(info.sender, info.sender_alt)
    if jid.is_empty():
        jid = info.chat
    else:
        jid = prefer_phone_number_jid(jid, info.chat)
    return jid.to_non_ad()


def is_outgoing_message(info: MessageInfo) -> bool:
    if info.is_from_me:
        return True
    return info.device_sent_meta is not None and bool(info.device_sent_meta.destination_jid)
