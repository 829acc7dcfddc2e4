"""WhatsApp connection state machine.

One client per process owns the paired device. Status moves between
``disconnected``, ``connecting``, ``pairing`` and ``connected``; the QR
image is only exposed while pairing. The wire protocol itself lives
behind ``ProtocolClient`` (see ``groundwave.whatsapp.gateway``).
"""

from __future__ import annotations

import asyncio
import contextlib
import threading
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import UTC, datetime
from enum import StrEnum
from typing import Protocol

import structlog

from groundwave.errors import StateError
from groundwave.logging import bind_module
from groundwave.whatsapp.events import (
    Connected,
    Disconnected,
    Event,
    LoggedOut,
    Message,
    QRChannelItem,
)
from groundwave.whatsapp.jid import JID
from groundwave.whatsapp.qr import render_qr_base64
from groundwave.whatsapp.resolve import (
    extract_message_text,
    is_outgoing_message,
    resolve_other_party_jid,
)
from groundwave.whatsapp.store import (
    DeviceContainer,
    DeviceStore,
    refresh_stale_device_store,
)

log = structlog.get_logger()

RECONNECT_INITIAL_DELAY = 5.0
RECONNECT_MAX_DELAY = 300.0


class Status(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    PAIRING = "pairing"
    CONNECTED = "connected"


MessageHandler = Callable[[JID, datetime, bool, str], Awaitable[None]]
EventHandler = Callable[[Event], Awaitable[None]]


class ProtocolClient(Protocol):
    """Transport to the WhatsApp network for one device store."""

    enable_auto_reconnect: bool
    auto_trust_identity: bool

    def add_event_handler(self, handler: EventHandler) -> None: ...

    def get_qr_channel(self) -> AsyncIterator[QRChannelItem]: ...

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def logout(self) -> None: ...

    async def aclose(self) -> None: ...


ClientFactory = Callable[[DeviceStore, structlog.stdlib.BoundLogger], ProtocolClient]


class WhatsAppClient:
    """Pairing, reconnection and message dispatch for the single device."""

    def __init__(
        self,
        container: DeviceContainer,
        client_factory: ClientFactory,
        on_message: MessageHandler | None = None,
        device: DeviceStore | None = None,
    ) -> None:
        self.container = container
        self.device = device or DeviceStore()
        self.on_message = on_message
        self._client_factory = client_factory
        self._client: ProtocolClient | None = None

        # Guards status and QR; readers are request handlers.
        self._lock = threading.RLock()
        self._status = Status.DISCONNECTED
        self._qr_code = ""

        self._stop_reconnect = asyncio.Event()
        self._qr_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._disconnected = False

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def status(self) -> Status:
        with self._lock:
            return self._status

    @property
    def qr_code(self) -> str:
        """Base64 PNG of the pairing code, empty unless pairing."""
        with self._lock:
            return self._qr_code if self._status == Status.PAIRING else ""

    @property
    def is_connected(self) -> bool:
        return self.status == Status.CONNECTED

    @property
    def transport(self) -> ProtocolClient | None:
        """The protocol client of the current connection attempt."""
        return self._client

    def _set_status(self, status: Status) -> None:
        with self._lock:
            self._status = status
            if status != Status.PAIRING:
                self._qr_code = ""

    def _set_qr_code(self, qr_code: str) -> None:
        with self._lock:
            if self._status == Status.PAIRING:
                self._qr_code = qr_code

    def _new_protocol_client(self) -> ProtocolClient:
        client = self._client_factory(self.device, bind_module("whatsapp/Client"))
        client.add_event_handler(self.handle_event)
        client.enable_auto_reconnect = True
        client.auto_trust_identity = True
        return client

    async def _close_client(self) -> None:
        """Release the current transport, if any."""
        client, self._client = self._client, None
        if client is None:
            return
        try:
            await client.aclose()
        except Exception as e:
            log.warning("WhatsApp transport close failed", error=str(e))

    async def _forget_device(self) -> None:
        """Drop the stored credentials so the next connect pairs again."""
        try:
            await self.container.delete_device()
        except Exception as e:
            log.error("Failed to delete WhatsApp device", error=str(e))
        self.device = DeviceStore()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Connect with the stored device, or start pairing when unpaired.

        Raises:
            StateError: when the device store cannot be refreshed or the
                transport fails to connect; status returns to disconnected.
        """
        refreshed = await refresh_stale_device_store(self.device, self.container.get_first_device)
        self.device = refreshed or DeviceStore()
        self._stop_reconnect.clear()
        self._disconnected = False

        self._set_status(Status.CONNECTING)
        await self._cancel_task(self._qr_task)
        self._qr_task = None
        await self._close_client()
        self._client = self._new_protocol_client()

        if self.device.id is not None:
            try:
                await self._client.connect()
            except Exception as e:
                self._set_status(Status.DISCONNECTED)
                raise StateError(f"failed to connect: {e}") from e
            self._set_status(Status.CONNECTED)
            log.info("WhatsApp connected", jid=str(self.device.id))
            return

        # The pairing stream must exist before the socket opens.
        self._set_status(Status.PAIRING)
        qr_events = self._client.get_qr_channel()
        try:
            await self._client.connect()
        except Exception as e:
            self._set_status(Status.DISCONNECTED)
            with contextlib.suppress(Exception):
                await qr_events.aclose()  # type: ignore[attr-defined]
            raise StateError(f"failed to connect: {e}") from e

        self._qr_task = asyncio.create_task(self._consume_qr_events(qr_events))

    async def _consume_qr_events(self, qr_events: AsyncIterator[QRChannelItem]) -> None:
        try:
            async for item in qr_events:
                log.debug("WhatsApp QR event", qr_event=item.event)
                if item.event == "code":
                    try:
                        self._set_qr_code(render_qr_base64(item.code))
                    except (ValueError, OSError) as e:
                        log.warning("Failed to generate QR code", error=str(e))
                        continue
                    log.info("WhatsApp QR code generated")
                elif item.event == "success":
                    if item.jid is not None:
                        try:
                            self.device = await self.container.save_device(
                                item.jid, item.push_name
                            )
                        except Exception as e:
                            log.error("Failed to store paired device", error=str(e))
                    self._set_status(Status.CONNECTED)
                    log.info("WhatsApp pairing successful")
                    return
                elif item.event == "timeout":
                    self._set_status(Status.DISCONNECTED)
                    log.warning("WhatsApp QR code timeout")
                    return
                elif item.event == "error":
                    self._set_status(Status.DISCONNECTED)
                    log.warning("WhatsApp pairing error", error=item.error)
                    return
        finally:
            with contextlib.suppress(Exception):
                await qr_events.aclose()  # type: ignore[attr-defined]

    async def reconnect(self) -> None:
        """Connect again with existing credentials.

        Raises:
            StateError: when there is no paired device or the transport fails.
        """
        if self.device.id is None:
            raise StateError("no existing session to reconnect")

        self._set_status(Status.CONNECTING)
        await self._close_client()
        self._client = self._new_protocol_client()
        try:
            await self._client.connect()
        except Exception as e:
            self._set_status(Status.DISCONNECTED)
            raise StateError(f"failed to reconnect: {e}") from e

        self._set_status(Status.CONNECTED)
        log.info("WhatsApp reconnected successfully")

    async def _reconnect_loop(self) -> None:
        delay = RECONNECT_INITIAL_DELAY
        while not self._stop_reconnect.is_set():
            try:
                await self.reconnect()
                return
            except StateError as e:
                log.warning("WhatsApp reconnect failed", error=e.message, retry_in=delay)
                if self.device.id is None:
                    return

            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stop_reconnect.wait(), timeout=delay)
            delay = min(delay * 2, RECONNECT_MAX_DELAY)

    def start_reconnect(self) -> None:
        """Schedule background reconnection when a device is paired."""
        if self.device.id is None:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def disconnect(self) -> None:
        """Tear down the connection and stop any pending reconnect.

        Safe to call repeatedly; only the first call signals the
        reconnect loop.
        """
        if not self._disconnected:
            self._disconnected = True
            self._stop_reconnect.set()

        await self._cancel_task(self._reconnect_task)
        self._reconnect_task = None
        await self._cancel_task(self._qr_task)
        self._qr_task = None

        if self._client is not None:
            try:
                await self._client.disconnect()
            except Exception as e:
                log.warning("WhatsApp disconnect failed", error=str(e))
            await self._close_client()
        self._set_status(Status.DISCONNECTED)

    async def logout(self) -> None:
        """Unlink the device and start over with an empty store.

        Raises:
            StateError: when the transport logout fails.
        """
        if self._client is None:
            return

        await self._cancel_task(self._qr_task)
        self._qr_task = None
        try:
            await self._client.logout()
        except Exception as e:
            raise StateError(f"failed to logout: {e}") from e

        self._set_status(Status.DISCONNECTED)
        await self._forget_device()
        await self._close_client()
        log.info("WhatsApp logged out")

    @staticmethod
    async def _cancel_task(task: asyncio.Task[None] | None) -> None:
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    async def handle_event(self, event: Event) -> None:
        match event:
            case Connected():
                self._set_status(Status.CONNECTED)
                log.info("WhatsApp connected")
            case Disconnected():
                self._set_status(Status.DISCONNECTED)
                log.info("WhatsApp disconnected")
            case LoggedOut(reason=reason):
                self._set_status(Status.DISCONNECTED)
                self._stop_reconnect.set()
                log.warning("WhatsApp logged out", reason=reason)
                await self._forget_device()
            case Message():
                await self.handle_message(event)

    async def handle_message(self, event: Message) -> None:
        if event.info.is_group:
            return

        text = extract_message_text(event.content)
        if not text:
            return

        jid = resolve_other_party_jid(event.info)
        outgoing = is_outgoing_message(event.info)
        timestamp = event.info.timestamp or datetime.now(UTC)

        if self.on_message is None:
            return
        try:
            await self.on_message(jid, timestamp, outgoing, text)
        except Exception as e:
            log.exception("WhatsApp message handler failed", jid=str(jid), error=str(e))


# =============================================================================
# Process-wide instance
# =============================================================================

_client: WhatsAppClient | None = None
_init_lock = asyncio.Lock()


def get_client() -> WhatsAppClient | None:
    """The initialised client, or None when WhatsApp is disabled."""
    return _client


async def initialize(
    container: DeviceContainer,
    client_factory: ClientFactory,
    on_message: MessageHandler | None = None,
) -> WhatsAppClient:
    """Create the process-wide client once and reconnect a paired device.

    Later calls return the existing client unchanged.
    """
    global _client  # noqa: PLW0603
    async with _init_lock:
        if _client is not None:
            return _client
        try:
            device = await container.get_first_device()
        except Exception as e:
            raise StateError(f"failed to get device: {e}") from e

        client = WhatsAppClient(container, client_factory, on_message, device=device)
        _client = client

    if device.id is not None:
        client.start_reconnect()
    log.info("WhatsApp initialized", paired=device.id is not None)
    return client


async def shutdown() -> None:
    global _client  # noqa: PLW0603
    if _client is not None:
        await _client.disconnect()
        _client = None
