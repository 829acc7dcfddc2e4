"""Note-grounded chat against an OpenAI compatible Ollama endpoint.

The selected notes are sent verbatim (raw org text) together with the
question; the answer is streamed back chunk by chunk and relayed to the
browser as server-sent events.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass

import httpx
import structlog

from groundwave.config import settings
from groundwave.errors import ConfigurationError, GroundwaveError, NotFoundError, ValidationError
from groundwave.org.directives import validate_uuid
from groundwave.utils.sse import format_sse, format_sse_comment

log = structlog.get_logger()

SYSTEM_PROMPT = (
    "You are a research assistant for a personal zettelkasten. "
    "Use the provided notes as primary sources. "
    "If details are missing, say so clearly. "
    "Cite note titles when referencing information. "
    "Provide structured, concise responses. "
    "Use markdown for emphasis and lists, but avoid headings."
)

KEEPALIVE_INTERVAL = 15.0


class ChatError(GroundwaveError):
    """Raised when the model endpoint rejects or aborts a completion."""


@dataclass
class ChatNote:
    id: str
    title: str
    content: str


NoteLoader = Callable[[list[str]], Awaitable[list[ChatNote]]]
Completion = Callable[[Sequence[ChatNote], str], AsyncIterator[str]]


def normalize_note_id(raw: str) -> str:
    """Strip surrounding whitespace and an optional ``id:`` prefix."""
    value = raw.strip()
    if value.startswith("id:"):
        value = value[3:]
    return value.strip()


def normalize_note_ids(raw_ids: Sequence[str]) -> list[str]:
    """Normalise ids, dropping blanks and duplicates.

    Raises:
        ValidationError: if a non-blank id is not a valid note id.
    """
    ids: list[str] = []
    for raw in raw_ids:
        note_id = normalize_note_id(raw)
        if not note_id or note_id in ids:
            continue
        validate_uuid(note_id)
        ids.append(note_id)
    return ids


def build_chat_prompt(notes: Sequence[ChatNote], message: str) -> str:
    parts = ["Use the following zettelkasten notes as context. Each note is raw org-mode text.\n\n"]
    for note in notes:
        parts.append(f"Note Title: {note.title}\nNote ID: {note.id}\nNote Content:\n")
        parts.append(note.content)
        if not note.content.endswith("\n"):
            parts.append("\n")
        parts.append("\n---\n\n")
    parts.append("User question:\n")
    parts.append(message)
    return "".join(parts)


def parse_stream_line(line: str) -> str | None:
    """Content delta carried by one ``data:`` line, if any.

    Returns None for lines that carry nothing (comments, blank lines,
    undecodable JSON, empty deltas).

    Raises:
        ChatError: when the endpoint reports an error inside the stream.
    """
    if not line.startswith("data: "):
        return None
    data = line[len("data: ") :].strip()
    if not data or data == "[DONE]":
        return None
    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None

    error = payload.get("error")
    if error:
        message = error.get("message") if isinstance(error, dict) else str(error)
        raise ChatError(f"Ollama error: {message}")

    choices = payload.get("choices") or []
    if not choices:
        return None
    content = (choices[0].get("delta") or {}).get("content") or ""
    return content or None


async def stream_chat_completion(
    notes: Sequence[ChatNote],
    message: str,
    *,
    http: httpx.AsyncClient | None = None,
) -> AsyncIterator[str]:
    """Yield answer fragments as the model produces them.

    Raises:
        ConfigurationError: when OLLAMA_URL or OLLAMA_MODEL is unset.
        ChatError: on a non-200 reply or an in-stream error.
    """
    if not settings.chat_enabled:
        raise ConfigurationError(
            "Ollama configuration incomplete: OLLAMA_URL and OLLAMA_MODEL must be set"
        )

    url = settings.ollama_url.strip().rstrip("/") + "/v1/chat/completions"
    body = {
        "model": settings.ollama_model.strip(),
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": build_chat_prompt(notes, message)},
        ],
        "stream": True,
    }

    owned = http is None
    client = http or httpx.AsyncClient(timeout=settings.ollama_timeout_seconds)
    try:
        async with client.stream("POST", url, json=body) as response:
            if response.status_code != httpx.codes.OK:
                detail = (await response.aread()).decode("utf-8", errors="replace")
                raise ChatError(f"Ollama returned status {response.status_code}: {detail}")

            async for line in response.aiter_lines():
                if line.strip() == "data: [DONE]":
                    break
                chunk = parse_stream_line(line)
                if chunk:
                    yield chunk
    except httpx.HTTPError as e:
        raise ChatError(f"failed to call Ollama: {e}") from e
    finally:
        if owned:
            await client.aclose()


_END = object()


async def _with_keepalive(
    source: AsyncIterator[str], interval: float
) -> AsyncIterator[str | None]:
    """Relay ``source``, yielding None whenever it stays quiet for ``interval``."""
    iterator = aiter(source)

    async def next_item() -> object:
        try:
            return await anext(iterator)
        except StopAsyncIteration:
            return _END

    pending: asyncio.Task[object] | None = None
    try:
        while True:
            if pending is None:
                pending = asyncio.create_task(next_item())
            done, _ = await asyncio.wait({pending}, timeout=interval)
            if not done:
                yield None
                continue
            item = pending.result()
            pending = None
            if item is _END:
                return
            yield item  # type: ignore[misc]
    finally:
        if pending is not None:
            pending.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await pending


async def chat_event_stream(
    load_notes: NoteLoader,
    note_ids: Sequence[str],
    message: str,
    *,
    keepalive_interval: float = KEEPALIVE_INTERVAL,
    completion: Completion | None = None,
) -> AsyncIterator[str]:
    """SSE frames for one chat request: ``chunk``\\* then ``done``, or ``error``."""
    message = message.strip()
    if not message:
        yield format_sse("error", {"message": "Message is required"})
        return
    if not note_ids:
        yield format_sse("error", {"message": "Select at least one note"})
        return

    try:
        ids = normalize_note_ids(note_ids)
    except ValidationError:
        yield format_sse("error", {"message": "Invalid note ID"})
        return

    try:
        notes = await load_notes(ids)
    except NotFoundError as e:
        log.warning("Chat note lookup failed", error=e.message)
        yield format_sse("error", {"message": f"Note not found: {e.details.get('identifier')}"})
        return
    if not notes:
        yield format_sse("error", {"message": "No valid notes selected"})
        return

    stream = (completion or stream_chat_completion)(notes, message)
    try:
        async for chunk in _with_keepalive(stream, keepalive_interval):
            if chunk is None:
                yield format_sse_comment()
                continue
            yield format_sse("chunk", {"text": chunk})
    except GroundwaveError as e:
        log.error("Zettelkasten chat failed", error=e.message)
        yield format_sse("error", {"message": f"Failed to generate response: {e.message}"})
        return

    yield format_sse("done", {})
