"""Org-mode property and directive extraction.

These helpers only look at the raw org source; they never render it.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime

from groundwave.errors import OrgParseError, ValidationError

UNTITLED = "Untitled Note"

_ID_PROPERTY = re.compile(r"(?i):ID:\s+([a-f0-9\-]+)")
_TITLE_LINE = re.compile(r"(?i)^\s*#\+TITLE:\s+(.+)$")
_HEADING_LINE = re.compile(r"(?m)^\*+\s+(.+)$")
_PUBLIC_ACCESS = re.compile(r"(?im)^\s*#\+access:\s*public\s*$")
_HOME_ACCESS = re.compile(r"(?im)^\s*#\+access:\s*home\s*$")
_DATE_DIRECTIVE = re.compile(r"(?im)^\s*#\+DATE:\s*<?(\d{4}-\d{2}-\d{2})")
_UUID_CHARS = re.compile(r"[a-f0-9\-]+")
_ID_LINK = re.compile(r"\[\[id:([a-f0-9\-]+)\](?:\[([^\]]+)\])?\]")


def extract_id(body: str) -> str:
    """Return the first ``:ID:`` property value.

    Raises:
        OrgParseError: if the note carries no ID property.
    """
    match = _ID_PROPERTY.search(body)
    if match is None:
        raise OrgParseError("no ID property found in content")
    return match.group(1)


def extract_title(body: str) -> str:
    """First ``#+TITLE:`` wins, then the first heading, then a placeholder."""
    for line in body.splitlines():
        match = _TITLE_LINE.match(line)
        if match:
            return match.group(1).strip()

    match = _HEADING_LINE.search(body)
    if match:
        return match.group(1).strip()

    return UNTITLED


def is_public_access(body: str) -> bool:
    return _PUBLIC_ACCESS.search(body) is not None


def is_home_access(body: str) -> bool:
    return _HOME_ACCESS.search(body) is not None


def extract_date_directive(body: str) -> datetime | None:
    """Parse ``#+DATE: [<]YYYY-MM-DD`` as UTC midnight, or None."""
    match = _DATE_DIRECTIVE.search(body)
    if match is None:
        return None
    try:
        return datetime.strptime(match.group(1), "%Y-%m-%d").replace(tzinfo=UTC)
    except ValueError:
        return None


def validate_uuid(value: str) -> None:
    """Accept 10 to 100 characters of lowercase hex and hyphens.

    Raises:
        ValidationError: for anything else.
    """
    if len(value) < 10 or len(value) > 100:
        raise ValidationError("invalid ID length", details={"id": value[:120]})
    if not _UUID_CHARS.fullmatch(value):
        raise ValidationError("invalid ID format", details={"id": value})


def extract_links(body: str) -> list[str]:
    """Target ids of ``[[id:...]]`` links in first-seen order, without duplicates."""
    seen: dict[str, None] = {}
    for match in _ID_LINK.finditer(body):
        target = match.group(1)
        if target:
            seen.setdefault(target, None)
    return list(seen)


def build_preview(body: str, max_paragraphs: int = 2, max_chars: int = 480) -> tuple[str, bool]:
    """Leading paragraphs of a note for list views.

    Property drawers and the title line are skipped. Returns the preview
    source and whether anything was cut.
    """
    paragraphs: list[str] = []
    current: list[str] = []
    in_properties = False

    for line in body.split("\n"):
        trimmed = line.strip()
        if trimmed.upper() == ":PROPERTIES:":
            in_properties = True
            continue
        if in_properties:
            if trimmed.upper() == ":END:":
                in_properties = False
            continue
        if trimmed.upper().startswith("#+TITLE:"):
            continue
        if not trimmed:
            if current:
                paragraphs.append("\n".join(current))
                current = []
            continue
        current.append(line)

    if current:
        paragraphs.append("\n".join(current))

    has_more = len(paragraphs) > max_paragraphs
    preview = "\n\n".join(paragraphs[:max_paragraphs]).strip()
    if not preview:
        return "", False

    if len(preview) > max_chars:
        preview = preview[:max_chars].strip()
        has_more = True

    return preview, has_more
