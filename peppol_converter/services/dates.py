import re
from datetime import date, datetime, timedelta

from dateutil import parser as dateutil_parser

# Mapping from European month names to English for dateutil compatibility.
# Only months that differ from English are included.
_EUROPEAN_MONTHS: dict[str, str] = {
    # Dutch
    "januari": "January",
    "februari": "February",
    "maart": "March",
    "mei": "May",
    "juni": "June",
    "juli": "July",
    "augustus": "August",
    "oktober": "October",
    # German
    "januar": "January",
    "februar": "February",
    "märz": "March",
    "mai": "May",
    "dezember": "December",
    # French
    "janvier": "January",
    "février": "February",
    "mars": "March",
    "avril": "April",
    "juin": "June",
    "juillet": "July",
    "août": "August",
    "septembre": "September",
    "octobre": "October",
    "novembre": "November",
    "décembre": "December",
}

_MONTH_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\b" + re.escape(local) + r"\b", re.IGNORECASE), english)
    for local, english in _EUROPEAN_MONTHS.items()
]

NUMERIC_DATE = re.compile(r"\b(\d{1,4})[/.\-](\d{1,2})[/.\-](\d{2,4})\b")

_EXCEL_EPOCH = date(1899, 12, 30)
# 1970-01-01 as a serial; smaller numbers are too ambiguous to treat as dates.
_EXCEL_SERIAL_MIN = 25569


def _normalize_european_months(s: str) -> str:
    for pattern, english in _MONTH_PATTERNS:
        s = pattern.sub(english, s)
    return s


def _expand_year(year: int) -> int:
    return year + 2000 if year < 100 else year


def parse_numeric_date(raw: str) -> date | None:
    """Parse ``DD/MM/YYYY``, ``MM/DD/YYYY``, ``YYYY-MM-DD`` and 2-digit years.

    Day/month order: a first group above 12 can only be a day; a second group
    above 12 can only be a day too; otherwise the European DD/MM reading wins.
    """
    m = NUMERIC_DATE.search(raw)
    if not m:
        return None
    a, b, c = (int(g) for g in m.groups())
    if len(m.group(1)) == 4:
        year, month, day = a, b, c
    else:
        year = _expand_year(c)
        if a > 12:
            day, month = a, b
        elif b > 12:
            month, day = a, b
        else:
            day, month = a, b
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_excel_serial(value: float) -> date | None:
    if value <= _EXCEL_SERIAL_MIN:
        return None
    try:
        return _EXCEL_EPOCH + timedelta(days=int(value))
    except OverflowError:
        return None


def parse_loose_date(value: object) -> date | None:
    """Coerce a date-ish value to a date, or None when it cannot be read."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, int | float) and not isinstance(value, bool):
        return parse_excel_serial(value)
    if not isinstance(value, str) or not value.strip():
        return None
    s = value.strip()
    try:
        return date.fromisoformat(s[:10])
    except ValueError:
        pass
    parsed = parse_numeric_date(s)
    if parsed is not None:
        return parsed
    try:
        return dateutil_parser.parse(_normalize_european_months(s), dayfirst=True).date()
    except (ValueError, OverflowError):
        return None
