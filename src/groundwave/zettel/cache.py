"""In-memory zettel link graph.

Readers always see one complete snapshot; a rebuild replaces the whole
snapshot in a single assignment.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from groundwave.errors import OrgParseError
from groundwave.org.directives import extract_id, extract_links


@dataclass(frozen=True)
class LinkSnapshot:
    forward: dict[str, tuple[str, ...]] = field(default_factory=dict)
    back: dict[str, tuple[str, ...]] = field(default_factory=dict)
    built_at: datetime | None = None


@dataclass
class LinkGraph:
    forward: dict[str, tuple[str, ...]]
    back: dict[str, tuple[str, ...]]
    processed: int = 0
    skipped: int = 0


def build_link_graph(bodies: Iterable[str]) -> LinkGraph:
    """Derive forward links from each body and invert them.

    Bodies without an ``:ID:`` are skipped. Link lists are deduplicated
    and sorted so rebuilds are deterministic.
    """
    forward: dict[str, tuple[str, ...]] = {}
    back_sets: dict[str, set[str]] = {}
    processed = skipped = 0

    for body in bodies:
        try:
            note_id = extract_id(body)
        except OrgParseError:
            skipped += 1
            continue
        targets = tuple(sorted(set(extract_links(body))))
        forward[note_id] = targets
        for target in targets:
            back_sets.setdefault(target, set()).add(note_id)
        processed += 1

    back = {target: tuple(sorted(sources)) for target, sources in back_sets.items()}
    return LinkGraph(forward=forward, back=back, processed=processed, skipped=skipped)


class LinkCache:
    """Forward and back link lookups served from the latest snapshot."""

    def __init__(self) -> None:
        self._snapshot = LinkSnapshot()

    @property
    def snapshot(self) -> LinkSnapshot:
        return self._snapshot

    def swap(self, graph: LinkGraph) -> None:
        self._snapshot = LinkSnapshot(
            forward=dict(graph.forward),
            back=dict(graph.back),
            built_at=datetime.now(UTC),
        )

    def forward(self, note_id: str) -> list[str]:
        return list(self._snapshot.forward.get(note_id, ()))

    def back(self, note_id: str) -> list[str]:
        return list(self._snapshot.back.get(note_id, ()))


# Process-wide cache read by request handlers
link_cache = LinkCache()
