"""Device store for the single paired WhatsApp identity.

The store mirrors the ``whatsapp_devices`` table. A store that has been
used (``initialized``) but lost its JID, e.g. after a remote logout, is
stale and must be reloaded from the container before the next connect.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol

import structlog
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from groundwave.db.models import WhatsAppDevice, utcnow_naive
from groundwave.errors import StateError
from groundwave.whatsapp.jid import JID

log = structlog.get_logger()


@dataclass
class DeviceStore:
    id: JID | None = None
    push_name: str = ""
    initialized: bool = False


DeviceLoader = Callable[[], Awaitable[DeviceStore]]


class DeviceContainer(Protocol):
    async def get_first_device(self) -> DeviceStore: ...

    async def save_device(self, jid: JID, push_name: str = "") -> DeviceStore: ...

    async def delete_device(self) -> None: ...


def is_stale_device_store(device: DeviceStore | None) -> bool:
    return device is not None and device.initialized and device.id is None


async def refresh_stale_device_store(
    device: DeviceStore | None, loader: DeviceLoader | None
) -> DeviceStore | None:
    """Return ``device``, or a freshly loaded one when it is stale.

    Raises:
        StateError: when the store is stale and no loader is configured, or
            the loader fails (the loader error is the cause).
    """
    if not is_stale_device_store(device):
        return device
    if loader is None:
        raise StateError("device store loader is not configured")
    try:
        return await loader()
    except Exception as e:
        raise StateError(f"failed to reload device store: {e}") from e


class SQLDeviceContainer:
    """DeviceContainer persisted in PostgreSQL."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_first_device(self) -> DeviceStore:
        async with self._session_factory() as session:
            result = await session.execute(
                select(WhatsAppDevice).order_by(WhatsAppDevice.id).limit(1)  # type: ignore[arg-type]
            )
            row = result.scalar_one_or_none()
        if row is None:
            return DeviceStore()
        return DeviceStore(id=JID.parse(row.jid), push_name=row.push_name or "", initialized=True)

    async def save_device(self, jid: JID, push_name: str = "") -> DeviceStore:
        jid = jid.to_non_ad()
        async with self._session_factory() as session:
            await session.execute(delete(WhatsAppDevice))
            session.add(
                WhatsAppDevice(jid=str(jid), push_name=push_name or None, paired_at=utcnow_naive())
            )
            await session.commit()
        log.info("WhatsApp device stored", jid=str(jid))
        return DeviceStore(id=jid, push_name=push_name, initialized=True)

    async def delete_device(self) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(WhatsAppDevice))
            await session.commit()
        log.info("WhatsApp device removed")
