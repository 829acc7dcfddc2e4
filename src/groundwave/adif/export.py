"""ADIF export.

Writes the same token grammar the parser reads: a header closed by
``<EOH>`` followed by one ``<EOR>``-terminated record per QSO. Lengths are
counted in UTF-8 bytes and empty fields are omitted.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime
from typing import TextIO

from groundwave import __version__
from groundwave.adif.qso import QSO, QSO_QSL_FIELDS, QSO_TEXT_FIELDS

ADIF_VERSION = "3.1.4"
PROGRAM_ID = "Groundwave"


def format_field(name: str, value: str) -> str:
    """Encode one ``<NAME:len>value`` fragment, or "" for an empty value."""
    if not value:
        return ""
    length = len(value.encode("utf-8"))
    return f"<{name.upper()}:{length}>{value}"


class ADIFExporter:
    """Serialises QSOs to ADIF text."""

    def __init__(self, created_at: datetime | None = None) -> None:
        self.created_at = created_at or datetime.now(UTC)

    def header(self) -> str:
        parts = [
            f"Generated by {PROGRAM_ID} {__version__}",
            "",
            format_field("adif_ver", ADIF_VERSION),
            format_field("programid", PROGRAM_ID),
            format_field("programversion", __version__),
            format_field("created_timestamp", self.created_at.strftime("%Y%m%d %H%M%S")),
            "<EOH>",
            "",
        ]
        return "\n".join(parts)

    def record(self, qso: QSO) -> str:
        fragments = [format_field(name, getattr(qso, name)) for name in QSO_TEXT_FIELDS]
        fragments.extend(format_field(name, str(getattr(qso, name))) for name in QSO_QSL_FIELDS)
        return " ".join(f for f in fragments if f) + " <EOR>\n"

    def export(self, qsos: Iterable[QSO]) -> str:
        return self.header() + "".join(self.record(q) for q in qsos)

    def write(self, qsos: Iterable[QSO], stream: TextIO) -> int:
        """Write a full document to ``stream``; returns the record count."""
        stream.write(self.header())
        count = 0
        for qso in qsos:
            stream.write(self.record(qso))
            count += 1
        return count
