"""Zettelkasten: org note storage, link graph cache and note chat."""

from groundwave.zettel.cache import LinkCache, LinkGraph, LinkSnapshot, build_link_graph, link_cache
from groundwave.zettel.chat import (
    SYSTEM_PROMPT,
    ChatError,
    ChatNote,
    build_chat_prompt,
    chat_event_stream,
    normalize_note_id,
    normalize_note_ids,
    stream_chat_completion,
)
from groundwave.zettel.index import DirectoryImport, NoteSummary, ZettelIndex, note_access

__all__ = [
    "SYSTEM_PROMPT",
    "ChatError",
    "ChatNote",
    "DirectoryImport",
    "LinkCache",
    "LinkGraph",
    "LinkSnapshot",
    "NoteSummary",
    "ZettelIndex",
    "build_chat_prompt",
    "build_link_graph",
    "chat_event_stream",
    "link_cache",
    "normalize_note_id",
    "normalize_note_ids",
    "note_access",
    "stream_chat_completion",
]
