"""Zettelkasten pages, ingestion, link lookups and note chat."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse, StreamingResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from groundwave.api.errors import json_error
from groundwave.auth.dependencies import require_admin, require_user
from groundwave.db.connection import get_session, get_session_dependency
from groundwave.db.models import NoteAccess, User, ZettelNote
from groundwave.errors import NotFoundError, ValidationError
from groundwave.org import build_preview, parse_to_html, validate_uuid
from groundwave.utils.sse import STREAM_HEADERS
from groundwave.zettel.cache import link_cache
from groundwave.zettel.chat import ChatNote, chat_event_stream, normalize_note_id
from groundwave.zettel.index import NoteSummary, ZettelIndex
from groundwave.zettel.worker import get_rebuild_worker

router = APIRouter(tags=["zettelkasten"])
log = structlog.get_logger()


class NoteIdRequest(BaseModel):
    note_id: str = ""


class ChatRequest(BaseModel):
    note_ids: list[str] = Field(default_factory=list)
    message: str = ""


def _summaries(items: list[NoteSummary]) -> list[dict[str, str]]:
    return [{"id": s.id, "title": s.title} for s in items]


async def _note_page(db: AsyncSession, note: ZettelNote, base_path: str) -> dict[str, Any]:
    index = ZettelIndex(db)
    return {
        "id": note.id,
        "title": note.title,
        "date": note.date,
        "access": str(note.access),
        "html": parse_to_html(note.body, base_path),
        "links": _summaries(await index.summaries(link_cache.forward(note.id))),
        "backlinks": _summaries(await index.summaries(link_cache.back(note.id))),
    }


# =============================================================================
# Pages
# =============================================================================


@router.get("/zk")
async def zettel_index(
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session_dependency),
) -> dict:
    notes = []
    for note in await ZettelIndex(db).list_notes():
        preview, truncated = build_preview(note.body)
        notes.append(
            {
                "id": note.id,
                "title": note.title,
                "access": str(note.access),
                "date": note.date,
                "preview": preview,
                "truncated": truncated,
            }
        )
    return {"notes": notes}


@router.get("/zk/random")
async def zettel_random(
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session_dependency),
) -> RedirectResponse:
    note = await ZettelIndex(db).random()
    return RedirectResponse(url=f"/zk/{note.id}", status_code=status.HTTP_303_SEE_OTHER)


@router.get("/zk/{note_id}")
async def zettel_note(
    note_id: str,
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session_dependency),
) -> dict:
    note = await ZettelIndex(db).get(note_id)
    return await _note_page(db, note, "/zk")


@router.get("/home/{note_id}")
async def home_note(
    note_id: str,
    _user: User = Depends(require_user),
    db: AsyncSession = Depends(get_session_dependency),
) -> dict:
    note = await ZettelIndex(db).get(note_id)
    if note.access not in (NoteAccess.HOME, NoteAccess.PUBLIC):
        raise NotFoundError("Note", note_id)
    return await _note_page(db, note, "/home")


@router.get("/note/{note_id}")
async def public_note(
    note_id: str,
    db: AsyncSession = Depends(get_session_dependency),
) -> dict:
    note = await ZettelIndex(db).get(note_id)
    if note.access != NoteAccess.PUBLIC:
        raise NotFoundError("Note", note_id)
    return await _note_page(db, note, "/note")


# =============================================================================
# Maintenance
# =============================================================================


@router.post("/zk/ingest")
async def ingest_note(
    request: Request,
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session_dependency),
) -> dict:
    """Store one org document posted as the raw request body."""
    raw = await request.body()
    try:
        body = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ValidationError("note must be UTF-8 text") from e
    filename = request.headers.get("x-filename") or None
    note = await ZettelIndex(db).ingest(body, filename=filename)
    # The rebuild reads the link table from its own session.
    await db.commit()
    get_rebuild_worker().request()
    return {"id": note.id, "title": note.title, "access": str(note.access)}


@router.post("/rebuild-cache", status_code=status.HTTP_202_ACCEPTED)
async def rebuild_cache(_admin: User = Depends(require_admin)) -> dict:
    worker = get_rebuild_worker()
    worker.request()
    return {"status": "queued", "in_progress": worker.in_progress, **worker.stats}


# =============================================================================
# Chat
# =============================================================================


def _chat_note_id(raw: str) -> str:
    note_id = normalize_note_id(raw)
    if not note_id:
        raise ValidationError("Note ID is required")
    try:
        validate_uuid(note_id)
    except ValidationError as e:
        raise ValidationError("Invalid note ID") from e
    return note_id


@router.post("/zk/chat/links", response_model=None)
async def chat_links(
    body: NoteIdRequest,
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session_dependency),
) -> Response:
    try:
        note_id = _chat_note_id(body.note_id)
    except ValidationError as e:
        return json_error(e.message, status.HTTP_400_BAD_REQUEST)
    links = await ZettelIndex(db).chat_links(note_id, link_cache)
    return JSONResponse({"links": _summaries(links)})


@router.post("/zk/chat/backlinks", response_model=None)
async def chat_backlinks(
    body: NoteIdRequest,
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session_dependency),
) -> Response:
    try:
        note_id = _chat_note_id(body.note_id)
    except ValidationError as e:
        return json_error(e.message, status.HTTP_400_BAD_REQUEST)
    backlinks = await ZettelIndex(db).chat_backlinks(note_id, link_cache)
    return JSONResponse({"backlinks": _summaries(backlinks)})


async def load_chat_notes(note_ids: list[str]) -> list[ChatNote]:
    # The stream outlives the request's database session.
    async with get_session() as session:
        return await ZettelIndex(session).chat_notes(note_ids)


@router.post("/zk/chat/stream")
async def chat_stream(
    body: ChatRequest,
    _admin: User = Depends(require_admin),
) -> StreamingResponse:
    return StreamingResponse(
        chat_event_stream(load_chat_notes, body.note_ids, body.message),
        media_type="text/event-stream",
        headers=STREAM_HEADERS,
    )
