"""Persistence of parsed QSOs."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from groundwave.adif.qso import QSO, QSO_QSL_FIELDS, QSO_TEXT_FIELDS, QSLStatus
from groundwave.db.models import QSORecord, to_naive_utc
from groundwave.errors import NotFoundError

log = structlog.get_logger()


def qso_to_record(qso: QSO) -> QSORecord:
    if qso.timestamp is None:
        raise ValueError("QSO has no timestamp")
    values = {name: getattr(qso, name) for name in QSO_TEXT_FIELDS}
    values.update({name: str(getattr(qso, name)) for name in QSO_QSL_FIELDS})
    return QSORecord(timestamp=to_naive_utc(qso.timestamp), **values)


def record_to_qso(record: QSORecord) -> QSO:
    qso = QSO(timestamp=record.timestamp.replace(tzinfo=UTC))
    for name in QSO_TEXT_FIELDS:
        setattr(qso, name, getattr(record, name))
    for name in QSO_QSL_FIELDS:
        setattr(qso, name, QSLStatus.parse(getattr(record, name)))
    return qso


@dataclass
class ImportResult:
    imported: int = 0
    duplicates: int = 0


class LogbookManager:
    """Stores and lists QSOs."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def import_qsos(self, qsos: list[QSO]) -> ImportResult:
        """Insert QSOs that are not stored yet (same call and timestamp)."""
        result = ImportResult()
        seen: set[tuple[str, object]] = set()

        for qso in qsos:
            if qso.timestamp is None:
                continue
            stamp = to_naive_utc(qso.timestamp)
            key = (qso.call, stamp)
            existing = await self.session.execute(
                select(QSORecord.id).where(
                    col(QSORecord.call) == qso.call,
                    col(QSORecord.timestamp) == stamp,
                )
            )
            if key in seen or existing.scalar_one_or_none() is not None:
                result.duplicates += 1
                continue
            seen.add(key)
            self.session.add(qso_to_record(qso))
            result.imported += 1

        await self.session.flush()
        log.info("QSOs imported", imported=result.imported, duplicates=result.duplicates)
        return result

    async def list_records(self) -> list[QSORecord]:
        result = await self.session.execute(
            select(QSORecord).order_by(col(QSORecord.timestamp).desc())
        )
        return list(result.scalars().all())

    async def list_qsos(self) -> list[QSO]:
        return [record_to_qso(r) for r in await self.list_records()]

    async def get_record(self, qso_id: UUID) -> QSORecord:
        result = await self.session.execute(select(QSORecord).where(QSORecord.id == qso_id))
        record = result.scalar_one_or_none()
        if record is None:
            raise NotFoundError("QSO", str(qso_id))
        return record
