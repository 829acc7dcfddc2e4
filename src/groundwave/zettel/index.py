"""Zettelkasten persistence and link graph maintenance."""

from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path

import structlog
from sqlalchemy import delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from groundwave.db.models import (
    NoteAccess,
    ZettelBacklink,
    ZettelLink,
    ZettelNote,
    to_naive_utc,
    utcnow_naive,
)
from groundwave.errors import NotFoundError, OrgParseError, ValidationError
from groundwave.org.directives import (
    extract_date_directive,
    extract_id,
    extract_links,
    extract_title,
    is_home_access,
    is_public_access,
    validate_uuid,
)
from groundwave.zettel.cache import LinkCache, LinkGraph, build_link_graph
from groundwave.zettel.chat import ChatNote

log = structlog.get_logger()


def note_access(body: str) -> NoteAccess:
    if is_public_access(body):
        return NoteAccess.PUBLIC
    if is_home_access(body):
        return NoteAccess.HOME
    return NoteAccess.PRIVATE


@dataclass
class NoteSummary:
    id: str
    title: str


@dataclass
class DirectoryImport:
    ingested: int = 0
    failed: int = 0


class ZettelIndex:
    """Stores org notes and their forward/back link tables."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def ingest(self, body: str, filename: str | None = None) -> ZettelNote:
        """Insert or update a note and replace its links in both directions.

        Raises:
            ValidationError: when the note has no usable ``:ID:``.
        """
        try:
            note_id = extract_id(body)
        except OrgParseError as e:
            raise ValidationError(e.message) from e
        validate_uuid(note_id)

        date = extract_date_directive(body)
        note = await self.session.get(ZettelNote, note_id)
        if note is None:
            note = ZettelNote(id=note_id)
        note.title = extract_title(body)
        note.body = body
        note.access = note_access(body)
        note.date = to_naive_utc(date) if date else None
        note.filename = filename or note.filename
        note.updated_at = utcnow_naive()
        self.session.add(note)

        targets = sorted(set(extract_links(body)))
        await self.session.execute(delete(ZettelLink).where(col(ZettelLink.source_id) == note_id))
        await self.session.execute(
            delete(ZettelBacklink).where(col(ZettelBacklink.source_id) == note_id)
        )
        for target in targets:
            self.session.add(ZettelLink(source_id=note_id, target_id=target))
            self.session.add(ZettelBacklink(target_id=target, source_id=note_id))

        await self.session.flush()
        log.debug("Note ingested", note_id=note_id, links=len(targets))
        return note

    async def ingest_directory(self, directory: Path) -> DirectoryImport:
        """Ingest every ``*.org`` file below ``directory``."""
        result = DirectoryImport()
        for path in sorted(directory.rglob("*.org")):
            try:
                body = path.read_text(encoding="utf-8")
                await self.ingest(body, filename=path.name)
            except (OSError, UnicodeDecodeError, ValidationError) as e:
                result.failed += 1
                log.warning("Skipping org file", path=str(path), error=str(e))
                continue
            result.ingested += 1
        log.info("Org directory ingested", ingested=result.ingested, failed=result.failed)
        return result

    async def rebuild_all(self) -> LinkGraph:
        """Re-derive every note's links and rewrite both link tables."""
        started = time.perf_counter()
        result = await self.session.execute(select(ZettelNote.body))
        graph = build_link_graph(result.scalars().all())

        await self.session.execute(delete(ZettelLink))
        await self.session.execute(delete(ZettelBacklink))
        for source, targets in graph.forward.items():
            for target in targets:
                self.session.add(ZettelLink(source_id=source, target_id=target))
        for target, sources in graph.back.items():
            for source in sources:
                self.session.add(ZettelBacklink(target_id=target, source_id=source))
        await self.session.flush()

        log.info(
            "Zettel link graph rebuilt",
            processed=graph.processed,
            skipped=graph.skipped,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return graph

    async def get(self, note_id: str) -> ZettelNote:
        validate_uuid(note_id)
        note = await self.session.get(ZettelNote, note_id)
        if note is None:
            raise NotFoundError("Note", note_id)
        return note

    async def random(self) -> ZettelNote:
        result = await self.session.execute(
            select(ZettelNote).order_by(func.random()).limit(1)
        )
        note = result.scalar_one_or_none()
        if note is None:
            raise NotFoundError("Note", "random")
        return note

    async def list_notes(self) -> list[ZettelNote]:
        result = await self.session.execute(select(ZettelNote).order_by(col(ZettelNote.title)))
        return list(result.scalars().all())

    async def summaries(self, note_ids: list[str]) -> list[NoteSummary]:
        """Id and title for each existing note, in the given order."""
        if not note_ids:
            return []
        result = await self.session.execute(
            select(ZettelNote.id, ZettelNote.title).where(col(ZettelNote.id).in_(note_ids))
        )
        titles = dict(result.all())
        return [NoteSummary(id=i, title=titles[i]) for i in note_ids if i in titles]

    async def chat_links(self, note_id: str, cache: LinkCache) -> list[NoteSummary]:
        validate_uuid(note_id)
        return await self.summaries(cache.forward(note_id))

    async def chat_backlinks(self, note_id: str, cache: LinkCache) -> list[NoteSummary]:
        validate_uuid(note_id)
        return await self.summaries(cache.back(note_id))

    async def chat_notes(self, note_ids: list[str]) -> list[ChatNote]:
        """Raw bodies for chat context, in request order.

        Raises:
            NotFoundError: naming the first id with no stored note.
        """
        notes: list[ChatNote] = []
        for note_id in note_ids:
            note = await self.session.get(ZettelNote, note_id)
            if note is None:
                raise NotFoundError("Note", note_id)
            notes.append(ChatNote(id=note.id, title=note.title, content=note.body))
        return notes
