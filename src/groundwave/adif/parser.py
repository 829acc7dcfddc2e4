"""ADIF log parsing.

ADIF is a sequence of ``<tag:len[:type]>value`` fragments. Records end at
``<eor>``; anything before ``<eoh>`` is a free-form header. A malformed
record is skipped with a debug log entry, never fatal for the file.
"""

from __future__ import annotations

import re
import sys
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import BinaryIO, TextIO

import structlog

from groundwave.adif.qso import QSO, QSO_QSL_FIELDS, QSO_TEXT_FIELDS, QSLStatus
from groundwave.errors import ADIFError

log = structlog.get_logger()

_EOR = re.compile(rb"<eor>", re.IGNORECASE)
_EOH = re.compile(rb"<eoh>", re.IGNORECASE)


def parse_timestamp(qso_date: str, time_on: str) -> datetime:
    """Combine ``YYYYMMDD`` and ``HHMMSS`` into an aware UTC datetime.

    Raises:
        ADIFError: when either part has the wrong length, contains a
            non-digit or names an impossible date.
    """
    if len(qso_date) != 8 or not (qso_date.isascii() and qso_date.isdigit()):
        raise ADIFError(f"invalid QSO_DATE {qso_date!r}")
    if len(time_on) != 6 or not (time_on.isascii() and time_on.isdigit()):
        raise ADIFError(f"invalid TIME_ON {time_on!r}")
    try:
        return datetime(
            int(qso_date[0:4]),
            int(qso_date[4:6]),
            int(qso_date[6:8]),
            int(time_on[0:2]),
            int(time_on[2:4]),
            int(time_on[4:6]),
            tzinfo=UTC,
        )
    except ValueError as e:
        raise ADIFError(f"failed to build timestamp: {e}") from e


def parse_fields(record: bytes) -> dict[str, str]:
    """Decode the tags of one record into a lower-case name -> value map.

    Bytes outside tags are ignored, as are tags without a length
    (``<eoh>``, stray markers).

    Raises:
        ADIFError: on a length that is not a number, does not fit a
            platform integer, or runs past the end of the record.
    """
    fields: dict[str, str] = {}
    pos = 0
    size = len(record)

    while True:
        start = record.find(b"<", pos)
        if start < 0:
            break
        end = record.find(b">", start + 1)
        if end < 0:
            break

        spec = record[start + 1 : end].decode("ascii", errors="replace")
        pos = end + 1
        parts = spec.split(":")
        if len(parts) < 2:
            continue

        name = parts[0].strip().lower()
        raw_len = parts[1].strip()
        if not raw_len.isdigit():
            raise ADIFError(f"invalid length {raw_len!r} for field {name}")
        length = int(raw_len)
        if length > sys.maxsize:
            raise ADIFError(f"length overflow for field {name}")
        if size - pos < length:
            raise ADIFError(
                f"field {name} declares {length} bytes but only {size - pos} remain"
            )

        fields[name] = record[pos : pos + length].decode("utf-8", errors="replace")
        pos += length

    return fields


def parse_record(record: bytes) -> QSO:
    """Build a QSO from one record.

    Raises:
        ADIFError: when fields are malformed, CALL or QSO_DATE is missing,
            or the timestamp cannot be parsed.
    """
    fields = parse_fields(record)

    call = fields.get("call", "").strip().upper()
    if not call:
        raise ADIFError("record has no CALL")
    qso_date = fields.get("qso_date", "").strip()
    if not qso_date:
        raise ADIFError("record has no QSO_DATE")

    time_on = fields.get("time_on", "").strip() or "000000"
    # HHMM is legal ADIF; seconds default to zero.
    if len(time_on) == 4:
        time_on += "00"

    qso = QSO()
    for name in QSO_TEXT_FIELDS:
        if name in fields:
            setattr(qso, name, fields[name].strip())
    for name in QSO_QSL_FIELDS:
        if name in fields:
            setattr(qso, name, QSLStatus.parse(fields[name]))

    qso.call = call
    qso.qso_date = qso_date
    qso.time_on = time_on
    qso.timestamp = parse_timestamp(qso_date, time_on)
    return qso


@dataclass
class ParseStats:
    records: int = 0
    skipped: int = 0


class ADIFParser:
    """Parses an ADIF log and answers queries over the decoded QSOs.

    Usage:
        parser = ADIFParser()
        parser.parse_file(open("log.adi", "rb"))
        latest = parser.get_latest_qsos(10)
    """

    def __init__(self) -> None:
        self.qsos: list[QSO] = []
        self.stats = ParseStats()

    # -------------------------------------------------------------------------
    # Parsing
    # -------------------------------------------------------------------------

    def parse_file(self, reader: BinaryIO | TextIO) -> None:
        """Read a whole stream and parse it.

        Raises:
            ADIFError: if the stream cannot be read.
        """
        try:
            data = reader.read()
        except (OSError, ValueError) as e:
            raise ADIFError(f"failed to read ADIF input: {e}") from e
        self.parse(data)

    def parse(self, data: bytes | str) -> None:
        """Parse ADIF content, appending accepted QSOs."""
        if isinstance(data, str):
            data = data.encode("utf-8")

        header = _EOH.search(data)
        if header is not None:
            data = data[header.end() :]

        for chunk in _EOR.split(data):
            if not chunk.strip():
                continue
            self.stats.records += 1
            try:
                qso = parse_record(chunk)
            except ADIFError as e:
                self.stats.skipped += 1
                log.debug("Skipping malformed ADIF record", error=e.message)
                continue
            self.qsos.append(qso)

        log.debug(
            "ADIF parsed",
            records=self.stats.records,
            accepted=len(self.qsos),
            skipped=self.stats.skipped,
        )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_total_qso_count(self) -> int:
        return len(self.qsos)

    def search_qso(self, call: str, when: datetime, tolerance_minutes: int = 15) -> list[QSO]:
        """QSOs with ``call`` within ``tolerance_minutes`` of ``when``.

        Matching is case-insensitive and the result is ordered closest first.
        Naive ``when`` values are taken as UTC.
        """
        if when.tzinfo is None:
            when = when.replace(tzinfo=UTC)
        wanted = call.strip().upper()
        tolerance = timedelta(minutes=tolerance_minutes)

        matches = [
            q
            for q in self.qsos
            if q.timestamp is not None
            and q.call.upper() == wanted
            and abs(q.timestamp - when) <= tolerance
        ]
        matches.sort(key=lambda q: abs(q.timestamp - when))  # type: ignore[operator]
        return matches

    def find_closest_qso(
        self, call: str, when: datetime, tolerance_minutes: int = 15
    ) -> QSO | None:
        matches = self.search_qso(call, when, tolerance_minutes)
        return matches[0] if matches else None

    def get_qsos_by_callsign(self, call: str) -> list[QSO]:
        wanted = call.strip().upper()
        return [q for q in self.qsos if q.call.upper() == wanted]

    def get_latest_qsos(self, limit: int) -> list[QSO]:
        """Newest first; QSOs without a timestamp sort last."""
        floor = datetime.min.replace(tzinfo=UTC)
        ordered = sorted(self.qsos, key=lambda q: q.timestamp or floor, reverse=True)
        return ordered[: max(limit, 0)]

    def get_latest_qso(self) -> QSO | None:
        stamped = [q for q in self.qsos if q.timestamp is not None]
        if not stamped:
            return None
        return max(stamped, key=lambda q: q.timestamp)  # type: ignore[arg-type,return-value]

    def get_unique_countries(self) -> list[str]:
        return sorted({q.country for q in self.qsos if q.country})

    def get_unique_countries_count(self) -> int:
        return len(self.get_unique_countries())

    def get_paper_qsl_hall_of_fame(self) -> list[QSO]:
        """One confirmed paper QSL per call, preferring records with a name."""
        best: dict[str, QSO] = {}
        for qso in self.qsos:
            if qso.qsl_rcvd != QSLStatus.YES:
                continue
            current = best.get(qso.call)
            if current is None or (not current.name and qso.name):
                best[qso.call] = qso
        return [best[call] for call in sorted(best)]
