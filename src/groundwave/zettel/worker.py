"""Background rebuild of the zettel link cache.

At most one rebuild runs at a time. Requests that arrive while a rebuild
is running collapse into a single follow-up run.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from groundwave.db.connection import get_session
from groundwave.zettel.cache import LinkCache, link_cache
from groundwave.zettel.index import ZettelIndex

log = structlog.get_logger()

RebuildFn = Callable[[], Awaitable[None]]


class RebuildWorker:
    """Single-flight, coalescing runner for a rebuild coroutine."""

    def __init__(self, rebuild: RebuildFn) -> None:
        self._rebuild = rebuild
        self._pending = False
        self._wakeup = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._in_progress = False
        self._stats = {"requested": 0, "completed": 0, "failed": 0}

    def request(self) -> None:
        """Ask for a rebuild; returns immediately."""
        self._stats["requested"] += 1
        self._pending = True
        self._wakeup.set()

    async def _run(self) -> None:
        while self._running:
            await self._wakeup.wait()
            self._wakeup.clear()
            while self._pending:
                self._pending = False
                self._in_progress = True
                try:
                    await self._rebuild()
                    self._stats["completed"] += 1
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    self._stats["failed"] += 1
                    log.exception("Zettel cache rebuild failed", error=str(e))
                finally:
                    self._in_progress = False

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run())
        log.info("Zettel rebuild worker started")

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        log.info("Zettel rebuild worker stopped", stats=self._stats)

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    @property
    def stats(self) -> dict[str, int]:
        return dict(self._stats)


async def rebuild_link_cache(cache: LinkCache = link_cache) -> None:
    """Rebuild the link tables from the database and swap the cache."""
    async with get_session() as session:
        graph = await ZettelIndex(session).rebuild_all()
    cache.swap(graph)


# Global worker instance
_worker: RebuildWorker | None = None


def get_rebuild_worker() -> RebuildWorker:
    """Get or create the global rebuild worker."""
    global _worker  # noqa: PLW0603
    if _worker is None:
        _worker = RebuildWorker(rebuild_link_cache)
    return _worker


async def init_rebuild_worker() -> RebuildWorker:
    """Start the worker and queue the boot-time rebuild."""
    worker = get_rebuild_worker()
    await worker.start()
    worker.request()
    return worker


async def shutdown_rebuild_worker() -> None:
    global _worker  # noqa: PLW0603
    if _worker is not None:
        await _worker.stop()
        _worker = None
