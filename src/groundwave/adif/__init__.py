"""ADIF logbook parsing, export and storage."""

from groundwave.adif.export import ADIFExporter, format_field
from groundwave.adif.logbook import ImportResult, LogbookManager, qso_to_record, record_to_qso
from groundwave.adif.parser import ADIFParser, parse_fields, parse_record, parse_timestamp
from groundwave.adif.qso import COUNTRY_FLAG_CODES, QSO, QSLStatus

__all__ = [
    "ADIFExporter",
    "ADIFParser",
    "COUNTRY_FLAG_CODES",
    "ImportResult",
    "LogbookManager",
    "QSLStatus",
    "QSO",
    "format_field",
    "parse_fields",
    "parse_record",
    "parse_timestamp",
    "qso_to_record",
    "record_to_qso",
]
