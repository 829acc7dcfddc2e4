"""QSO record type and display helpers."""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime
from enum import StrEnum


class QSLStatus(StrEnum):
    """QSL confirmation flag as carried in ADIF (Y, N, R or empty)."""

    YES = "Y"
    NO = "N"
    REQUESTED = "R"
    UNSPECIFIED = ""

    @classmethod
    def parse(cls, value: str) -> QSLStatus:
        try:
            return cls(value.strip().upper())
        except ValueError:
            return cls.UNSPECIFIED


# DXCC entity names as they appear in logbooks, mapped to ISO 3166 alpha-2.
COUNTRY_FLAG_CODES: dict[str, str] = {
    "afghanistan": "af",
    "albania": "al",
    "algeria": "dz",
    "andorra": "ad",
    "angola": "ao",
    "argentina": "ar",
    "armenia": "am",
    "australia": "au",
    "austria": "at",
    "azerbaijan": "az",
    "bahamas": "bs",
    "bahrain": "bh",
    "bangladesh": "bd",
    "belarus": "by",
    "belgium": "be",
    "bolivia": "bo",
    "bosnia-herzegovina": "ba",
    "brazil": "br",
    "bulgaria": "bg",
    "canada": "ca",
    "chile": "cl",
    "china": "cn",
    "colombia": "co",
    "costa rica": "cr",
    "croatia": "hr",
    "cuba": "cu",
    "cyprus": "cy",
    "czech republic": "cz",
    "denmark": "dk",
    "dominican republic": "do",
    "ecuador": "ec",
    "egypt": "eg",
    "england": "gb",
    "estonia": "ee",
    "ethiopia": "et",
    "federal republic of germany": "de",
    "finland": "fi",
    "france": "fr",
    "georgia": "ge",
    "germany": "de",
    "greece": "gr",
    "hong kong": "hk",
    "hungary": "hu",
    "iceland": "is",
    "india": "in",
    "indonesia": "id",
    "iran": "ir",
    "iraq": "iq",
    "ireland": "ie",
    "israel": "il",
    "italy": "it",
    "japan": "jp",
    "jordan": "jo",
    "kazakhstan": "kz",
    "kenya": "ke",
    "kuwait": "kw",
    "latvia": "lv",
    "lebanon": "lb",
    "lithuania": "lt",
    "luxembourg": "lu",
    "malaysia": "my",
    "malta": "mt",
    "mexico": "mx",
    "moldova": "md",
    "monaco": "mc",
    "morocco": "ma",
    "netherlands": "nl",
    "new zealand": "nz",
    "nigeria": "ng",
    "northern ireland": "gb",
    "norway": "no",
    "oman": "om",
    "pakistan": "pk",
    "peru": "pe",
    "philippines": "ph",
    "poland": "pl",
    "portugal": "pt",
    "qatar": "qa",
    "republic of korea": "kr",
    "romania": "ro",
    "russia": "ru",
    "european russia": "ru",
    "asiatic russia": "ru",
    "saudi arabia": "sa",
    "scotland": "gb",
    "serbia": "rs",
    "singapore": "sg",
    "slovak republic": "sk",
    "slovenia": "si",
    "south africa": "za",
    "spain": "es",
    "sri lanka": "lk",
    "sweden": "se",
    "switzerland": "ch",
    "taiwan": "tw",
    "thailand": "th",
    "tunisia": "tn",
    "turkey": "tr",
    "ukraine": "ua",
    "united arab emirates": "ae",
    "united kingdom": "gb",
    "united states": "us",
    "united states of america": "us",
    "uruguay": "uy",
    "venezuela": "ve",
    "vietnam": "vn",
    "wales": "gb",
    "yemen": "ye",
}


@dataclass
class QSO:
    """One ham-radio contact decoded from an ADIF record."""

    call: str = ""
    qso_date: str = ""
    time_on: str = ""
    qso_date_off: str = ""
    time_off: str = ""
    band: str = ""
    mode: str = ""
    freq: str = ""
    rst_sent: str = ""
    rst_rcvd: str = ""
    qth: str = ""
    name: str = ""
    comment: str = ""
    gridsquare: str = ""
    country: str = ""
    dxcc: str = ""
    my_gridsquare: str = ""
    station_callsign: str = ""
    my_rig: str = ""
    my_antenna: str = ""
    tx_pwr: str = ""
    qsl_sent: QSLStatus = QSLStatus.UNSPECIFIED
    qsl_rcvd: QSLStatus = QSLStatus.UNSPECIFIED
    lotw_qsl_sent: QSLStatus = QSLStatus.UNSPECIFIED
    lotw_qsl_rcvd: QSLStatus = QSLStatus.UNSPECIFIED
    eqsl_qsl_sent: QSLStatus = QSLStatus.UNSPECIFIED
    eqsl_qsl_rcvd: QSLStatus = QSLStatus.UNSPECIFIED
    timestamp: datetime | None = None

    def format_qso_time(self) -> str:
        if self.timestamp is not None:
            return self.timestamp.strftime("%Y-%m-%d %H:%M:%S UTC")
        return f"{self.qso_date} {self.time_on} UTC"

    def format_date(self) -> str:
        if len(self.qso_date) >= 8:
            return f"{self.qso_date[0:4]}-{self.qso_date[4:6]}-{self.qso_date[6:8]}"
        return self.qso_date

    def format_time(self) -> str:
        if len(self.time_on) >= 4:
            return f"{self.time_on[0:2]}:{self.time_on[2:4]}"
        return self.time_on

    def flag_code(self) -> str:
        """ISO country code for the flag icon, empty when unknown."""
        return COUNTRY_FLAG_CODES.get(self.country.strip().lower(), "")


# ADIF tag name -> QSO attribute; the attribute names follow the tags.
QSO_TEXT_FIELDS: tuple[str, ...] = tuple(
    f.name
    for f in fields(QSO)
    if f.name != "timestamp" and not f.name.startswith(("qsl_", "lotw_", "eqsl_"))
)
QSO_QSL_FIELDS: tuple[str, ...] = (
    "qsl_sent",
    "qsl_rcvd",
    "lotw_qsl_sent",
    "lotw_qsl_rcvd",
    "eqsl_qsl_sent",
    "eqsl_qsl_rcvd",
)
