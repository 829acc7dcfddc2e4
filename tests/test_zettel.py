"""Tests for the zettel link cache, rebuild worker, index and chat."""

import asyncio
import json
from collections.abc import AsyncIterator, Sequence
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from groundwave.config import settings
from groundwave.db.models import NoteAccess, ZettelBacklink, ZettelLink, ZettelNote
from groundwave.errors import ConfigurationError, NotFoundError, ValidationError
from groundwave.zettel import (
    ChatError,
    ChatNote,
    LinkCache,
    ZettelIndex,
    build_chat_prompt,
    build_link_graph,
    chat_event_stream,
    normalize_note_id,
    normalize_note_ids,
    note_access,
    stream_chat_completion,
)
from groundwave.zettel.chat import parse_stream_line
from groundwave.zettel.worker import RebuildWorker

A = "aaaaaaaa-0001"
B = "bbbbbbbb-0002"
C = "cccccccc-0003"


def note(note_id: str, *targets: str) -> str:
    links = " ".join(f"[[id:{t}][{t}]]" for t in targets)
    return f":PROPERTIES:\n:ID: {note_id}\n:END:\n#+TITLE: {note_id}\n\n{links}\n"


async def collect(stream: AsyncIterator[str]) -> list[str]:
    return [frame async for frame in stream]


def events(frames: list[str]) -> list[tuple[str, dict]]:
    parsed = []
    for frame in frames:
        if frame.startswith(":"):
            continue
        event_line, data_line = frame.strip().split("\n")
        parsed.append((event_line[len("event: ") :], json.loads(data_line[len("data: ") :])))
    return parsed


# =============================================================================
# Link graph
# =============================================================================


class TestLinkGraph:
    """Tests for building and serving the link graph."""

    def test_forward_and_back(self) -> None:
        graph = build_link_graph([note(A, C, B, C), note(B, C), "no id here"])
        assert graph.forward == {A: (B, C), B: (C,)}
        assert graph.back == {B: (A,), C: (A, B)}
        assert graph.processed == 2
        assert graph.skipped == 1

    def test_cache_swap(self) -> None:
        cache = LinkCache()
        assert cache.forward(A) == []
        assert cache.snapshot.built_at is None

        cache.swap(build_link_graph([note(A, B)]))
        assert cache.forward(A) == [B]
        assert cache.back(B) == [A]
        assert cache.snapshot.built_at is not None

    def test_swap_replaces_whole_snapshot(self) -> None:
        cache = LinkCache()
        cache.swap(build_link_graph([note(A, B)]))
        before = cache.snapshot
        cache.swap(build_link_graph([note(B, C)]))
        assert cache.forward(A) == []
        assert before.forward == {A: (B,)}


# =============================================================================
# Rebuild worker
# =============================================================================


class TestRebuildWorker:
    """Tests for single-flight coalescing rebuilds."""

    @pytest.mark.asyncio
    async def test_requests_during_run_coalesce(self) -> None:
        calls = 0
        started = asyncio.Event()
        gate = asyncio.Event()

        async def rebuild() -> None:
            nonlocal calls
            calls += 1
            started.set()
            await gate.wait()

        worker = RebuildWorker(rebuild)
        await worker.start()
        try:
            worker.request()
            await asyncio.wait_for(started.wait(), timeout=1)
            assert worker.in_progress

            worker.request()
            worker.request()
            worker.request()
            gate.set()

            for _ in range(100):
                if worker.stats["completed"] == 2 and not worker.in_progress:
                    break
                await asyncio.sleep(0.01)
        finally:
            await worker.stop()

        assert calls == 2
        assert worker.stats == {"requested": 4, "completed": 2, "failed": 0}

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_worker(self) -> None:
        outcomes = [RuntimeError("db down"), None]

        async def rebuild() -> None:
            outcome = outcomes.pop(0)
            if outcome is not None:
                raise outcome

        worker = RebuildWorker(rebuild)
        await worker.start()
        try:
            worker.request()
            for _ in range(100):
                if worker.stats["failed"] == 1:
                    break
                await asyncio.sleep(0.01)
            worker.request()
            for _ in range(100):
                if worker.stats["completed"] == 1:
                    break
                await asyncio.sleep(0.01)
        finally:
            await worker.stop()

        assert worker.stats["failed"] == 1
        assert worker.stats["completed"] == 1

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self) -> None:
        worker = RebuildWorker(AsyncMock())
        await worker.stop()
        await worker.start()
        await worker.start()
        await worker.stop()
        await worker.stop()


# =============================================================================
# Index
# =============================================================================


@pytest.fixture
def mock_session() -> AsyncMock:
    session = AsyncMock()
    session.add = MagicMock()
    session.get = AsyncMock(return_value=None)
    return session


class TestZettelIndex:
    """Tests for note ingestion with a mocked session."""

    def test_note_access(self) -> None:
        assert note_access("#+access: public") == NoteAccess.PUBLIC
        assert note_access("#+access: home") == NoteAccess.HOME
        assert note_access("nothing") == NoteAccess.PRIVATE

    @pytest.mark.asyncio
    async def test_ingest_new_note(self, mock_session: AsyncMock) -> None:
        body = note(A, B, C) + "#+access: home\n#+DATE: 2024-03-01\n"
        stored = await ZettelIndex(mock_session).ingest(body, filename="a.org")

        assert stored.id == A
        assert stored.title == A
        assert stored.access == NoteAccess.HOME
        assert stored.filename == "a.org"
        assert stored.date is not None and stored.date.tzinfo is None

        added = [c.args[0] for c in mock_session.add.call_args_list]
        assert sum(isinstance(x, ZettelLink) for x in added) == 2
        assert sum(isinstance(x, ZettelBacklink) for x in added) == 2
        # Old edges of this source are deleted first
        assert mock_session.execute.await_count == 2
        mock_session.flush.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_ingest_updates_existing_note(self, mock_session: AsyncMock) -> None:
        existing = ZettelNote(id=A, title="old", body="old", filename="keep.org")
        mock_session.get.return_value = existing

        stored = await ZettelIndex(mock_session).ingest(note(A))
        assert stored is existing
        assert stored.title == A
        assert stored.filename == "keep.org"

    @pytest.mark.asyncio
    async def test_ingest_requires_id(self, mock_session: AsyncMock) -> None:
        with pytest.raises(ValidationError):
            await ZettelIndex(mock_session).ingest("#+TITLE: orphan")

    @pytest.mark.asyncio
    async def test_get_validates_id(self, mock_session: AsyncMock) -> None:
        with pytest.raises(ValidationError):
            await ZettelIndex(mock_session).get("../etc/passwd")
        with pytest.raises(NotFoundError):
            await ZettelIndex(mock_session).get(A)

    @pytest.mark.asyncio
    async def test_chat_notes_in_request_order(self, mock_session: AsyncMock) -> None:
        store = {
            A: ZettelNote(id=A, title="First", body="one"),
            B: ZettelNote(id=B, title="Second", body="two"),
        }
        mock_session.get.side_effect = lambda _model, key: store.get(key)

        notes = await ZettelIndex(mock_session).chat_notes([B, A])
        assert [n.title for n in notes] == ["Second", "First"]

        with pytest.raises(NotFoundError) as exc_info:
            await ZettelIndex(mock_session).chat_notes([A, C])
        assert exc_info.value.details["identifier"] == C


# =============================================================================
# Chat
# =============================================================================


class TestChatHelpers:
    """Tests for prompt construction and stream parsing."""

    def test_normalize_note_id(self) -> None:
        assert normalize_note_id("  id:abc ") == "abc"
        assert normalize_note_id("abc") == "abc"

    def test_normalize_note_ids(self) -> None:
        assert normalize_note_ids([A, f"id:{A}", " ", B]) == [A, B]
        with pytest.raises(ValidationError):
            normalize_note_ids(["not a note"])

    def test_build_prompt(self) -> None:
        prompt = build_chat_prompt(
            [ChatNote(id=A, title="First", content="body one")], "What is it?"
        )
        assert prompt.startswith("Use the following zettelkasten notes as context.")
        assert "Note Title: First\nNote ID: aaaaaaaa-0001\nNote Content:\nbody one\n\n---\n\n" in prompt
        assert prompt.endswith("User question:\nWhat is it?")

    def test_parse_stream_line(self) -> None:
        delta = {"choices": [{"delta": {"content": "Hi"}}]}
        assert parse_stream_line("data: " + json.dumps(delta)) == "Hi"
        assert parse_stream_line("data: [DONE]") is None
        assert parse_stream_line(": keepalive") is None
        assert parse_stream_line("data: {not json") is None
        assert parse_stream_line('data: {"choices": [{"delta": {}}]}') is None

    def test_parse_stream_line_error(self) -> None:
        with pytest.raises(ChatError, match="model not loaded"):
            parse_stream_line('data: {"error": {"message": "model not loaded"}}')


def fake_completion(*chunks: str, delay: float = 0.0):
    async def completion(notes: Sequence[ChatNote], message: str) -> AsyncIterator[str]:
        for chunk in chunks:
            if delay:
                await asyncio.sleep(delay)
            yield chunk

    return completion


class TestChatEventStream:
    """Tests for the SSE relay."""

    @pytest.mark.asyncio
    async def test_chunks_then_done(self) -> None:
        loader = AsyncMock(return_value=[ChatNote(id=A, title="A", content="x")])
        frames = await collect(
            chat_event_stream(loader, [f"id:{A}"], " hello ", completion=fake_completion("He", "llo"))
        )
        assert events(frames) == [
            ("chunk", {"text": "He"}),
            ("chunk", {"text": "llo"}),
            ("done", {}),
        ]
        loader.assert_awaited_once_with([A])

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("note_ids", "message", "expected"),
        [
            ([A], "  ", "Message is required"),
            ([], "hi", "Select at least one note"),
            (["bad id!"], "hi", "Invalid note ID"),
        ],
    )
    async def test_request_errors(self, note_ids: list[str], message: str, expected: str) -> None:
        loader = AsyncMock()
        frames = await collect(chat_event_stream(loader, note_ids, message))
        assert events(frames) == [("error", {"message": expected})]
        loader.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_note(self) -> None:
        loader = AsyncMock(side_effect=NotFoundError("Note", B))
        frames = await collect(chat_event_stream(loader, [B], "hi"))
        assert events(frames) == [("error", {"message": f"Note not found: {B}"})]

    @pytest.mark.asyncio
    async def test_no_notes(self) -> None:
        frames = await collect(chat_event_stream(AsyncMock(return_value=[]), [A], "hi"))
        assert events(frames) == [("error", {"message": "No valid notes selected"})]

    @pytest.mark.asyncio
    async def test_completion_error_after_chunks(self) -> None:
        async def completion(notes: Sequence[ChatNote], message: str) -> AsyncIterator[str]:
            yield "partial"
            raise ChatError("Ollama returned status 500: boom")

        loader = AsyncMock(return_value=[ChatNote(id=A, title="A", content="x")])
        frames = await collect(chat_event_stream(loader, [A], "hi", completion=completion))
        assert events(frames) == [
            ("chunk", {"text": "partial"}),
            ("error", {"message": "Failed to generate response: Ollama returned status 500: boom"}),
        ]

    @pytest.mark.asyncio
    async def test_keepalive_while_model_is_quiet(self) -> None:
        loader = AsyncMock(return_value=[ChatNote(id=A, title="A", content="x")])
        frames = await collect(
            chat_event_stream(
                loader,
                [A],
                "hi",
                keepalive_interval=0.01,
                completion=fake_completion("late", delay=0.1),
            )
        )
        assert ": keepalive\n\n" in frames
        assert events(frames) == [("chunk", {"text": "late"}), ("done", {})]


class TestStreamChatCompletion:
    """Tests for the Ollama streaming client."""

    @pytest.fixture(autouse=True)
    def ollama(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings, "ollama_url", "http://ollama:11434/")
        monkeypatch.setattr(settings, "ollama_model", " llama3 ")

    @pytest.mark.asyncio
    async def test_streams_deltas(self) -> None:
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            lines = [
                "data: " + json.dumps({"choices": [{"delta": {"content": "An"}}]}),
                "",
                "data: " + json.dumps({"choices": [{"delta": {"content": "swer"}}]}),
                "",
                "data: [DONE]",
                "",
            ]
            return httpx.Response(200, content="\n".join(lines).encode())

        notes = [ChatNote(id=A, title="A", content="x")]
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            chunks = [c async for c in stream_chat_completion(notes, "q", http=http)]

        assert chunks == ["An", "swer"]
        assert seen["url"] == "http://ollama:11434/v1/chat/completions"
        assert seen["body"]["model"] == "llama3"
        assert seen["body"]["stream"] is True
        assert seen["body"]["messages"][0]["role"] == "system"

    @pytest.mark.asyncio
    async def test_non_200(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(500, content=b"boom"))
        async with httpx.AsyncClient(transport=transport) as http:
            with pytest.raises(ChatError, match="status 500: boom"):
                async for _ in stream_chat_completion([], "q", http=http):
                    pass

    @pytest.mark.asyncio
    async def test_unconfigured(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings, "ollama_model", "")
        with pytest.raises(ConfigurationError):
            async for _ in stream_chat_completion([], "q"):
                pass
