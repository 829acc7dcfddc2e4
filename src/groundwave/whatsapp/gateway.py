"""WAHA HTTP gateway transport.

Drives a WAHA (WhatsApp HTTP API) session with httpx: starting and
stopping the session, polling the pairing QR code, and translating
webhook deliveries into client events. Both the GOWS engine payload
(``_data.Info`` / ``_data.Message``, whatsmeow field names) and the plain
``from`` / ``fromMe`` / ``body`` payload are understood.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from typing import Any

import httpx
import structlog

from groundwave.config import settings
from groundwave.errors import ValidationError
from groundwave.whatsapp.client import EventHandler
from groundwave.whatsapp.events import (
    Connected,
    DeviceSentMeta,
    Disconnected,
    Event,
    LoggedOut,
    Message,
    MessageContent,
    MessageInfo,
    QRChannelItem,
)
from groundwave.whatsapp.jid import EMPTY_JID, JID
from groundwave.whatsapp.store import DeviceStore

# WAHA session states
STATE_WORKING = "WORKING"
STATE_SCAN_QR = "SCAN_QR_CODE"
STATE_FAILED = "FAILED"
STATE_STOPPED = "STOPPED"

MESSAGE_EVENTS = ("message", "message.any")


def _jid(raw: object) -> JID:
    if not isinstance(raw, str) or not raw:
        return EMPTY_JID
    try:
        return JID.parse(raw)
    except ValidationError:
        return EMPTY_JID


def _timestamp(raw: object) -> datetime | None:
    if isinstance(raw, (int, float)) and raw > 0:
        return datetime.fromtimestamp(raw, UTC)
    if isinstance(raw, str) and raw:
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return None


def _gows_message(payload: dict[str, Any], info_raw: dict[str, Any], data: dict[str, Any]) -> Message:
    meta_raw = info_raw.get("DeviceSentMeta")
    meta = None
    if isinstance(meta_raw, dict):
        meta = DeviceSentMeta(destination_jid=str(meta_raw.get("DestinationJID") or ""))

    info = MessageInfo(
        chat=_jid(info_raw.get("Chat")),
        sender=_jid(info_raw.get("Sender")),
        sender_alt=_jid(info_raw.get("SenderAlt")),
        recipient_alt=_jid(info_raw.get("RecipientAlt")),
        is_from_me=bool(info_raw.get("IsFromMe")),
        is_group=bool(info_raw.get("IsGroup")),
        id=str(info_raw.get("ID") or payload.get("id") or ""),
        push_name=str(info_raw.get("PushName") or ""),
        timestamp=_timestamp(payload.get("timestamp")) or _timestamp(info_raw.get("Timestamp")),
        device_sent_meta=meta,
    )

    msg = data.get("Message") or {}
    content = MessageContent(
        conversation=str(msg.get("conversation") or ""),
        extended_text=str((msg.get("extendedTextMessage") or {}).get("text") or ""),
        image_caption=str((msg.get("imageMessage") or {}).get("caption") or ""),
    )
    return Message(info=info, content=content)


def _plain_message(payload: dict[str, Any], data: dict[str, Any]) -> Message:
    from_me = bool(payload.get("fromMe"))
    chat = _jid(payload.get("to") if from_me else payload.get("from"))
    sender = EMPTY_JID
    if not from_me:
        sender = _jid(payload.get("participant"))
        if sender.is_empty():
            sender = chat

    info = MessageInfo(
        chat=chat,
        sender=sender,
        is_from_me=from_me,
        is_group=chat.is_group(),
        id=str(payload.get("id") or ""),
        push_name=str(data.get("notifyName") or ""),
        timestamp=_timestamp(payload.get("timestamp")),
    )

    body = str(payload.get("body") or "")
    mimetype = str((payload.get("media") or {}).get("mimetype") or "")
    content = MessageContent()
    if data.get("type") == "image" or mimetype.startswith("image/"):
        content.image_caption = body
    elif not payload.get("hasMedia"):
        content.conversation = body
    return Message(info=info, content=content)


def parse_webhook(body: dict[str, Any]) -> Event | None:
    """Translate a WAHA webhook body into a client event, or None to ignore."""
    kind = body.get("event")
    payload = body.get("payload") or {}
    if not isinstance(payload, dict):
        return None

    if kind == "session.status":
        state = payload.get("status")
        if state == STATE_WORKING:
            return Connected()
        if state == STATE_STOPPED:
            return Disconnected()
        if state == STATE_FAILED:
            return LoggedOut(reason="session failed")
        return None

    if kind in MESSAGE_EVENTS:
        data = payload.get("_data") or {}
        info_raw = data.get("Info") if isinstance(data, dict) else None
        if isinstance(info_raw, dict):
            return _gows_message(payload, info_raw, data)
        return _plain_message(payload, data if isinstance(data, dict) else {})

    return None


def verify_webhook_signature(raw_body: bytes, signature: str | None, key: str) -> bool:
    """Check WAHA's ``X-Webhook-Hmac`` (hex HMAC-SHA512 of the raw body).

    An empty key never verifies.
    """
    if not key or not signature:
        return False
    expected = hmac.new(key.encode(), raw_body, hashlib.sha512).hexdigest()
    return hmac.compare_digest(expected, signature.strip().lower())


class WAHAClient:
    """ProtocolClient speaking to a WAHA gateway session."""

    def __init__(
        self,
        device: DeviceStore,
        logger: structlog.stdlib.BoundLogger,
        *,
        base_url: str,
        api_key: str = "",
        session_name: str = "default",
        pairing_timeout: float = 120.0,
        poll_interval: float = 2.0,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self.device = device
        self.log = logger.bind(module="whatsapp/Client/WAHA")
        self.session_name = session_name
        self.pairing_timeout = pairing_timeout
        self.poll_interval = poll_interval
        self.enable_auto_reconnect = False
        self.auto_trust_identity = False
        self._handlers: list[EventHandler] = []

        headers = {"Accept": "application/json"}
        if api_key:
            headers["X-Api-Key"] = api_key
        self._http = http or httpx.AsyncClient(
            base_url=base_url.rstrip("/"), headers=headers, timeout=30.0
        )

    def add_event_handler(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    async def dispatch(self, event: Event) -> None:
        for handler in self._handlers:
            await handler(event)

    async def handle_webhook(self, body: dict[str, Any]) -> None:
        event = parse_webhook(body)
        if event is None:
            self.log.debug("Ignoring webhook", webhook_event=body.get("event"))
            return
        await self.dispatch(event)

    # -------------------------------------------------------------------------
    # Session control
    # -------------------------------------------------------------------------

    async def _post(self, path: str, json: dict[str, Any] | None = None) -> httpx.Response:
        response = await self._http.post(path, json=json)
        response.raise_for_status()
        return response

    async def session_info(self) -> dict[str, Any]:
        response = await self._http.get(f"/api/sessions/{self.session_name}")
        response.raise_for_status()
        return response.json()

    async def connect(self) -> None:
        path = f"/api/sessions/{self.session_name}/start"
        response = await self._http.post(path)
        # Already started
        if response.status_code in (409, 422):
            self.log.debug("WAHA session already running")
            return
        response.raise_for_status()
        self.log.info("WAHA session started", session=self.session_name)

    async def disconnect(self) -> None:
        await self._post(f"/api/sessions/{self.session_name}/stop")
        self.log.info("WAHA session stopped", session=self.session_name)

    async def logout(self) -> None:
        await self._post(f"/api/sessions/{self.session_name}/logout")
        self.device.id = None
        self.log.info("WAHA session logged out", session=self.session_name)

    async def _fetch_qr(self) -> str:
        response = await self._http.get(
            f"/api/{self.session_name}/auth/qr", params={"format": "raw"}
        )
        response.raise_for_status()
        return str(response.json().get("value") or "")

    async def get_qr_channel(self) -> AsyncIterator[QRChannelItem]:
        """Poll the session until it pairs, fails or the timeout passes."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.pairing_timeout
        last_code = ""

        while True:
            if loop.time() >= deadline:
                yield QRChannelItem(event="timeout")
                return

            try:
                info = await self.session_info()
                state = info.get("status")
                if state == STATE_WORKING:
                    me = info.get("me") or {}
                    yield QRChannelItem(
                        event="success",
                        jid=_jid(me.get("id")),
                        push_name=str(me.get("pushName") or ""),
                    )
                    return
                if state == STATE_FAILED:
                    yield QRChannelItem(event="error", error="session failed")
                    return
                if state == STATE_SCAN_QR:
                    code = await self._fetch_qr()
                    if code and code != last_code:
                        last_code = code
                        yield QRChannelItem(event="code", code=code)
            except httpx.HTTPError as e:
                yield QRChannelItem(event="error", error=str(e))
                return

            await asyncio.sleep(self.poll_interval)

    async def aclose(self) -> None:
        await self._http.aclose()


def waha_client_factory(device: DeviceStore, logger: structlog.stdlib.BoundLogger) -> WAHAClient:
    """ClientFactory bound to the configured gateway."""
    return WAHAClient(
        device,
        logger,
        base_url=settings.waha_base_url,
        api_key=settings.waha_api_key.get_secret_value(),
        session_name=settings.waha_session_name,
        pairing_timeout=float(settings.whatsapp_pairing_timeout_seconds),
    )
