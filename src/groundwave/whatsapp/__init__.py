"""WhatsApp side-channel: pairing, reconnection and chat ingest."""

from groundwave.whatsapp.client import (
    ProtocolClient,
    Status,
    WhatsAppClient,
    get_client,
    initialize,
    shutdown,
)
from groundwave.whatsapp.events import (
    Connected,
    DeviceSentMeta,
    Disconnected,
    LoggedOut,
    Message,
    MessageContent,
    MessageInfo,
    QRChannelItem,
)
from groundwave.whatsapp.jid import JID
from groundwave.whatsapp.phone import jid_to_phone, normalize_phone, phone_matches
from groundwave.whatsapp.resolve import (
    extract_message_text,
    is_outgoing_message,
    prefer_phone_number_jid,
    resolve_other_party_jid,
)
from groundwave.whatsapp.store import (
    DeviceStore,
    SQLDeviceContainer,
    is_stale_device_store,
    refresh_stale_device_store,
)

__all__ = [
    "Connected",
    "DeviceSentMeta",
    "DeviceStore",
    "Disconnected",
    "JID",
    "LoggedOut",
    "Message",
    "MessageContent",
    "MessageInfo",
    "ProtocolClient",
    "QRChannelItem",
    "SQLDeviceContainer",
    "Status",
    "WhatsAppClient",
    "extract_message_text",
    "get_client",
    "initialize",
    "is_outgoing_message",
    "is_stale_device_store",
    "jid_to_phone",
    "normalize_phone",
    "phone_matches",
    "prefer_phone_number_jid",
    "refresh_stale_device_store",
    "resolve_other_party_jid",
    "shutdown",
]
