"""Tests for ADIF parsing, queries and export."""

import io
from datetime import UTC, datetime

import pytest

from groundwave.adif import (
    ADIFExporter,
    ADIFParser,
    QSLStatus,
    QSO,
    format_field,
    parse_fields,
    parse_record,
    parse_timestamp,
)
from groundwave.errors import ADIFError

SAMPLE_LOG = """Log exported by some program
<ADIF_VER:5>3.1.4 <EOH>
<CALL:5>DL1AB <QSO_DATE:8>20240301 <TIME_ON:6>120000 <BAND:3>20m <MODE:3>SSB
<COUNTRY:7>Germany <QSL_RCVD:1>Y <NAME:4>Hans <EOR>
<call:5>dl1ab <qso_date:8>20240301 <time_on:4>1210 <band:3>20m <mode:2>CW <eor>
<CALL:4>K1XY <QSO_DATE:8>20240215 <TIME_ON:6>083000 <COUNTRY:24>United States of America
<QSL_RCVD:1>Y <EOR>
<CALL:4>K1XY <QSO_DATE:8>20240216 <TIME_ON:6>090000 <QSL_RCVD:1>y <NAME:3>Bob <EOR>
<CALL:4>G4ZZ <TIME_ON:6>090000 <EOR>
"""


@pytest.fixture
def parser() -> ADIFParser:
    p = ADIFParser()
    p.parse(SAMPLE_LOG)
    return p


class TestParseTimestamp:
    """Tests for QSO_DATE/TIME_ON combination."""

    def test_valid(self) -> None:
        assert parse_timestamp("20240301", "120530") == datetime(
            2024, 3, 1, 12, 5, 30, tzinfo=UTC
        )

    @pytest.mark.parametrize(
        ("qso_date", "time_on"),
        [
            ("2024031", "120000"),
            ("2024030a", "120000"),
            ("20240301", "1200"),
            ("20240301", "12000x"),
            ("20240230", "120000"),
            ("20240301", "250000"),
        ],
    )
    def test_invalid(self, qso_date: str, time_on: str) -> None:
        with pytest.raises(ADIFError):
            parse_timestamp(qso_date, time_on)


class TestParseFields:
    """Tests for tag decoding."""

    def test_names_are_lowercased_and_lengths_respected(self) -> None:
        fields = parse_fields(b"<CALL:4>K1XYjunk <Band:3>20m")
        assert fields == {"call": "K1XY", "band": "20m"}

    def test_type_suffix_is_ignored(self) -> None:
        assert parse_fields(b"<FREQ:6:N>14.200") == {"freq": "14.200"}

    def test_tags_without_length_are_skipped(self) -> None:
        assert parse_fields(b"<eoh> <CALL:2>AB") == {"call": "AB"}

    def test_length_counts_bytes(self) -> None:
        raw = "<NAME:6>Jürg".encode()
        assert len("Jürg".encode()) == 5
        assert parse_fields(raw + b"!") == {"name": "Jürg!"}

    def test_non_numeric_length(self) -> None:
        with pytest.raises(ADIFError, match="invalid length"):
            parse_fields(b"<CALL:x>AB")

    def test_length_past_end(self) -> None:
        with pytest.raises(ADIFError, match="declares 10 bytes"):
            parse_fields(b"<CALL:10>AB")


class TestParseRecord:
    """Tests for building one QSO."""

    def test_hhmm_time_gets_seconds(self) -> None:
        qso = parse_record(b"<CALL:4>K1XY <QSO_DATE:8>20240301 <TIME_ON:4>1210")
        assert qso.time_on == "121000"
        assert qso.timestamp == datetime(2024, 3, 1, 12, 10, tzinfo=UTC)

    def test_missing_time_defaults_to_midnight(self) -> None:
        qso = parse_record(b"<CALL:4>K1XY <QSO_DATE:8>20240301")
        assert qso.timestamp == datetime(2024, 3, 1, tzinfo=UTC)

    def test_call_is_uppercased(self) -> None:
        qso = parse_record(b"<call:4>k1xy <qso_date:8>20240301")
        assert qso.call == "K1XY"

    def test_qsl_flags(self) -> None:
        qso = parse_record(b"<CALL:4>K1XY <QSO_DATE:8>20240301 <QSL_RCVD:1>y <QSL_SENT:1>Q")
        assert qso.qsl_rcvd == QSLStatus.YES
        assert qso.qsl_sent == QSLStatus.UNSPECIFIED

    def test_missing_call(self) -> None:
        with pytest.raises(ADIFError, match="no CALL"):
            parse_record(b"<QSO_DATE:8>20240301")

    def test_missing_date(self) -> None:
        with pytest.raises(ADIFError, match="no QSO_DATE"):
            parse_record(b"<CALL:4>K1XY")


class TestADIFParser:
    """Tests for whole-file parsing and queries."""

    def test_malformed_records_are_skipped(self, parser: ADIFParser) -> None:
        assert parser.stats.records == 5
        assert parser.stats.skipped == 1
        assert parser.get_total_qso_count() == 4

    def test_parse_file_accepts_binary_stream(self) -> None:
        p = ADIFParser()
        p.parse_file(io.BytesIO(SAMPLE_LOG.encode()))
        assert p.get_total_qso_count() == 4

    def test_parse_file_read_error(self) -> None:
        class Broken(io.BytesIO):
            def read(self, *args: object) -> bytes:
                raise OSError("disk gone")

        with pytest.raises(ADIFError, match="failed to read"):
            ADIFParser().parse_file(Broken())

    def test_search_is_case_insensitive_and_closest_first(self, parser: ADIFParser) -> None:
        when = datetime(2024, 3, 1, 12, 9, tzinfo=UTC)
        matches = parser.search_qso("dl1ab", when)
        assert [q.mode for q in matches] == ["CW", "SSB"]

    def test_search_tolerance(self, parser: ADIFParser) -> None:
        when = datetime(2024, 3, 1, 12, 30)
        assert parser.search_qso("DL1AB", when, tolerance_minutes=5) == []
        assert parser.find_closest_qso("DL1AB", when, tolerance_minutes=30).mode == "CW"

    def test_by_callsign(self, parser: ADIFParser) -> None:
        assert len(parser.get_qsos_by_callsign("k1xy")) == 2

    def test_latest(self, parser: ADIFParser) -> None:
        latest = parser.get_latest_qsos(2)
        assert [q.time_on for q in latest] == ["121000", "120000"]
        assert parser.get_latest_qso() is latest[0]
        assert parser.get_latest_qsos(-1) == []

    def test_latest_of_empty_log(self) -> None:
        assert ADIFParser().get_latest_qso() is None

    def test_unique_countries(self, parser: ADIFParser) -> None:
        assert parser.get_unique_countries() == ["Germany", "United States of America"]
        assert parser.get_unique_countries_count() == 2

    def test_paper_qsl_hall_of_fame_prefers_named(self, parser: ADIFParser) -> None:
        fame = parser.get_paper_qsl_hall_of_fame()
        assert [q.call for q in fame] == ["DL1AB", "K1XY"]
        assert fame[1].name == "Bob"


class TestQSOHelpers:
    """Tests for display helpers."""

    def test_flag_code(self) -> None:
        assert QSO(country=" Germany ").flag_code() == "de"
        assert QSO(country="Atlantis").flag_code() == ""

    def test_formatting(self) -> None:
        qso = QSO(qso_date="20240301", time_on="121000")
        assert qso.format_date() == "2024-03-01"
        assert qso.format_time() == "12:10"
        assert qso.format_qso_time() == "20240301 121000 UTC"
        qso.timestamp = datetime(2024, 3, 1, 12, 10, tzinfo=UTC)
        assert qso.format_qso_time() == "2024-03-01 12:10:00 UTC"


class TestADIFExporter:
    """Tests for ADIF output."""

    def test_format_field(self) -> None:
        assert format_field("call", "K1XY") == "<CALL:4>K1XY"
        assert format_field("name", "Jürg") == "<NAME:5>Jürg"
        assert format_field("name", "") == ""

    def test_export_reparses(self, parser: ADIFParser) -> None:
        text = ADIFExporter(created_at=datetime(2024, 1, 1, tzinfo=UTC)).export(parser.qsos)
        assert "<EOH>" in text
        assert "<CREATED_TIMESTAMP:15>20240101 000000" in text

        again = ADIFParser()
        again.parse(text)
        assert again.stats.skipped == 0
        assert [(q.call, q.timestamp, q.qsl_rcvd) for q in again.qsos] == [
            (q.call, q.timestamp, q.qsl_rcvd) for q in parser.qsos
        ]

    def test_write_counts_records(self, parser: ADIFParser) -> None:
        out = io.StringIO()
        assert ADIFExporter().write(parser.qsos, out) == 4
        assert out.getvalue().count("<EOR>") == 4
