"""Ordered pattern strategies used to read invoice fields out of free text.

Every field has a list of named strategies. Each strategy looks at the text and
either returns a :class:`Match` or None; :func:`first_match` tries them in
order and the first hit wins.
"""

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any

from peppol_converter.services import confidence
from peppol_converter.services.amounts import parse_amount
from peppol_converter.services.dates import NUMERIC_DATE, parse_loose_date, parse_numeric_date


@dataclass(frozen=True)
class Match:
    value: Any
    confidence: float
    raw: str


@dataclass(frozen=True)
class Strategy:
    name: str
    find: Callable[[str], Match | None]


def first_match(strategies: Sequence[Strategy], text: str) -> Match | None:
    for strategy in strategies:
        match = strategy.find(text)
        if match is not None:
            return match
    return None


# --- invoice number ---

_NUMBER_TOKEN = r"([A-Za-z0-9][A-Za-z0-9\-/_.]*[A-Za-z0-9]|\d)"

_INVOICE_NUMBER_KEYWORD = re.compile(
    r"\b(?i:factuurnummer|factuur\s*(?:nr|no|nummer)\.?|invoice\s*(?:number|no|nr|#)\.?"
    r"|facture\s*(?:n°|no|nr)\.?|factuur|invoice|nummer|number|no\.?)"
    r"[ \t]*[:#]?[ \t]*" + _NUMBER_TOKEN
)
_INVOICE_NUMBER_LABEL = re.compile(r"(?:\b(?i:nr)\.?|#)[ \t]*:?[ \t]*" + _NUMBER_TOKEN)
_INVOICE_NUMBER_BARE = re.compile(r"^([A-Z]{2,}\d{4,})\b", re.MULTILINE)

# Labels whose number is not the invoice number.
_FOREIGN_NUMBER_CONTEXT = re.compile(
    r"(?i:btw|vat|tva|iban|kbo|ondernemings|enterprise|company|tel|phone|telefoon|gsm|fax"
    r"|klant|customer|order|bestel|rpr)[\w.\- ]{0,3}$"
)


def _is_invoice_number_token(token: str) -> bool:
    return any(ch.isdigit() for ch in token) and not NUMERIC_DATE.fullmatch(token)


def _keyworded_number(pattern: re.Pattern[str]) -> Callable[[str], Match | None]:
    def find(text: str) -> Match | None:
        for m in pattern.finditer(text):
            token = m.group(1).rstrip(".")
            prefix = text[max(0, m.start() - 16) : m.start()]
            if _FOREIGN_NUMBER_CONTEXT.search(prefix):
                continue
            if _is_invoice_number_token(token):
                return Match(token, confidence.KEYWORD_MATCH, m.group(0))
        return None

    return find


def _bare_number(text: str) -> Match | None:
    m = _INVOICE_NUMBER_BARE.search(text)
    if m:
        return Match(m.group(1), confidence.FALLBACK_MATCH, m.group(0))
    return None


INVOICE_NUMBER: list[Strategy] = [
    Strategy("keyword", _keyworded_number(_INVOICE_NUMBER_KEYWORD)),
    Strategy("nr-label", _keyworded_number(_INVOICE_NUMBER_LABEL)),
    Strategy("bare-prefix", _bare_number),
]


# --- dates ---

_DATE_TOKEN = (
    r"(\d{1,4}[/.\-]\d{1,2}[/.\-]\d{2,4}"
    r"|\d{1,2}\.?\s+[A-Za-zÀ-ÿ]{3,10}\.?\s+\d{4})"
)
_ANY_DATE = re.compile(_DATE_TOKEN)


def _parse_date_token(token: str) -> date | None:
    return parse_numeric_date(token) or parse_loose_date(token)


def _keyword_date(name: str, keyword: str) -> Strategy:
    pattern = re.compile(r"(?i:" + keyword + r")[ \t]*[:.]?[ \t]*" + _DATE_TOKEN)

    def find(text: str) -> Match | None:
        for m in pattern.finditer(text):
            parsed = _parse_date_token(m.group(1))
            if parsed is not None:
                return Match(parsed, confidence.KEYWORD_MATCH, m.group(0))
        return None

    return Strategy(name, find)


def _first_date_anywhere(text: str) -> Match | None:
    for m in _ANY_DATE.finditer(text):
        parsed = _parse_date_token(m.group(1))
        if parsed is not None:
            return Match(parsed, confidence.FALLBACK_MATCH, m.group(0))
    return None


ISSUE_DATE: list[Strategy] = [
    _keyword_date("factuurdatum", r"factuurdatum"),
    _keyword_date("invoice-date", r"invoice\s+date|date\s+of\s+issue|date\s+de\s+facture"),
    _keyword_date("datum", r"(?<![a-z])datum"),
    _keyword_date("date", r"(?<!due )(?<!payment )\bdate"),
    Strategy("first-date", _first_date_anywhere),
]

DUE_DATE: list[Strategy] = [
    _keyword_date("vervaldatum", r"vervaldatum|vervaldag"),
    _keyword_date("due-date", r"due\s+date|payment\s+date|date\s+d'échéance"),
    _keyword_date("betaaldatum", r"betaaldatum|te\s+betalen\s+(?:voor|tegen)"),
    Strategy("first-date", _first_date_anywhere),
]


# --- currency ---

KNOWN_CURRENCIES = (
    "EUR", "USD", "GBP", "CHF", "SEK", "NOK", "DKK", "PLN", "CZK", "HUF", "RON", "BGN",
)
_CURRENCY_CODE = re.compile(r"\b(" + "|".join(KNOWN_CURRENCIES) + r")\b")
_CURRENCY_SYMBOLS = {"€": "EUR", "£": "GBP", "$": "USD"}


def _currency_code(text: str) -> Match | None:
    m = _CURRENCY_CODE.search(text)
    if not m:
        return None
    code = m.group(1)
    level = confidence.EXPLICIT_PATTERN if code != "EUR" else confidence.DEFAULT_CURRENCY
    return Match(code, level, m.group(0))


def _currency_symbol(text: str) -> Match | None:
    for symbol, code in _CURRENCY_SYMBOLS.items():
        if symbol in text:
            level = confidence.EXPLICIT_PATTERN if code != "EUR" else confidence.DEFAULT_CURRENCY
            return Match(code, level, symbol)
    return None


CURRENCY: list[Strategy] = [
    Strategy("iso-code", _currency_code),
    Strategy("symbol", _currency_symbol),
]


# --- identifiers ---

def _regex_strategy(
    name: str,
    pattern: re.Pattern[str],
    level: float,
    clean: Callable[[str], str | None] = lambda s: s,
) -> Strategy:
    def find(text: str) -> Match | None:
        for m in pattern.finditer(text):
            value = clean(m.group(1))
            if value:
                return Match(value, level, m.group(0))
        return None

    return Strategy(name, find)


def _compact(value: str) -> str:
    return re.sub(r"[\s.\-]", "", value).upper()


def _compact_vat(value: str) -> str | None:
    compact = _compact(value)
    # Needs a country prefix and at least a handful of digits to be a VAT id.
    if len(compact) < 8 or sum(ch.isdigit() for ch in compact) < 6:
        return None
    return compact


VAT_NUMBER: list[Strategy] = [
    _regex_strategy(
        "be",
        re.compile(r"\b(BE[ \t]?0?\d{3}[ .]?\d{3}[ .]?\d{3})\b", re.IGNORECASE),
        confidence.EXPLICIT_PATTERN,
        _compact,
    ),
    _regex_strategy(
        "nl",
        re.compile(r"\b(NL[ \t]?\d{9}[ .]?B[ .]?\d{2})\b", re.IGNORECASE),
        confidence.EXPLICIT_PATTERN,
        _compact,
    ),
    _regex_strategy(
        "fr",
        re.compile(r"\b(FR[ \t]?[A-HJ-NP-Z0-9]{2}[ \t]?\d{9})\b", re.IGNORECASE),
        confidence.EXPLICIT_PATTERN,
        _compact,
    ),
    _regex_strategy(
        "keyword",
        re.compile(
            r"\b(?i:btw|vat|tva)(?:[ \t]*-?[ \t]*(?i:nr|nummer|number|no|id|n°))?\.?[ \t]*:?[ \t]*"
            r"([A-Z]{2}[ \t\-]?\d[\d .]{5,14}\d(?:B\d{2})?)"
        ),
        confidence.EXPLICIT_PATTERN,
        _compact_vat,
    ),
]

# Registered IBAN lengths for the countries this service mostly sees.
_IBAN_LENGTHS = {
    "AT": 20, "BE": 16, "CH": 21, "DE": 22, "DK": 18, "ES": 24, "FI": 18, "FR": 27,
    "GB": 22, "IE": 22, "IT": 27, "LU": 20, "NL": 18, "NO": 15, "PL": 28, "PT": 25,
    "SE": 24,
}


def _clean_iban(value: str) -> str | None:
    compact = re.sub(r"\s", "", value).upper()
    expected = _IBAN_LENGTHS.get(compact[:2])
    if expected is not None:
        if len(compact) < expected:
            return None
        compact = compact[:expected]
    if not 15 <= len(compact) <= 34:
        return None
    return compact


IBAN: list[Strategy] = [
    _regex_strategy(
        "keyword",
        re.compile(r"\b(?i:iban)[ \t]*:?[ \t]*([A-Z]{2}\d{2}(?:[ \t]?[A-Z0-9]{2,4}){3,8})"),
        confidence.EXPLICIT_PATTERN,
        _clean_iban,
    ),
    _regex_strategy(
        "generic",
        re.compile(r"\b([A-Z]{2}\d{2}(?:[ \t]?[A-Z0-9]{4}){3,7}(?:[ \t]?\d{1,3})?)\b"),
        confidence.EXPLICIT_PATTERN,
        _clean_iban,
    ),
]

BIC: list[Strategy] = [
    _regex_strategy(
        "keyword",
        re.compile(
            r"\b(?i:bic|swift)(?:[ \t]*/[ \t]*(?i:swift|bic))?(?:[ \t]*(?i:code))?[ \t]*:?[ \t]*"
            r"([A-Z]{4}[A-Z]{2}[A-Z0-9]{2}(?:[A-Z0-9]{3})?)\b"
        ),
        confidence.KEYWORD_MATCH,
    ),
]


def _has_digit(value: str) -> str | None:
    value = value.strip()
    return value if any(ch.isdigit() for ch in value) else None


PAYMENT_REFERENCE: list[Strategy] = [
    _regex_strategy(
        "structured",
        re.compile(r"(\+\+\+[ \t]*\d{3}[ \t]*/[ \t]*\d{4}[ \t]*/[ \t]*\d{5}[ \t]*\+\+\+)"),
        confidence.KEYWORD_MATCH,
        lambda s: re.sub(r"[ \t]", "", s),
    ),
    _regex_strategy(
        "keyword",
        re.compile(
            r"\b(?i:gestructureerde\s+mededeling|mededeling|communication|betalingskenmerk"
            r"|payment\s+reference|referentie|reference|kenmerk)"
            r"[ \t]*:?[ \t]*([A-Za-z0-9+/\-]{4,40})"
        ),
        confidence.KEYWORD_MATCH,
        _has_digit,
    ),
]

REGISTRATION_NUMBER: list[Strategy] = [
    _regex_strategy(
        "kbo",
        re.compile(
            r"\b(?i:kbo(?:[ \t]*-?[ \t]*(?:nr|nummer))?|ondernemingsnummer|enterprise\s+number"
            r"|company\s+number|rpr|kvk(?:[ \t]*-?[ \t]*(?:nr|nummer))?)\.?[ \t]*:?[ \t]*"
            r"((?:BE)?[ \t]?\d{4}[ .]?\d{3}[ .]?\d{3}|\d{8})\b"
        ),
        confidence.KEYWORD_MATCH,
        lambda s: re.sub(r"[^\d]", "", s),
    ),
]


# --- addresses ---

COUNTRY_NAMES = {
    "belgië": "BE",
    "belgie": "BE",
    "belgium": "BE",
    "belgique": "BE",
    "nederland": "NL",
    "netherlands": "NL",
    "the netherlands": "NL",
    "pays-bas": "NL",
    "france": "FR",
    "frankrijk": "FR",
    "deutschland": "DE",
    "germany": "DE",
    "duitsland": "DE",
    "allemagne": "DE",
    "luxembourg": "LU",
    "luxemburg": "LU",
}

_CITY = r"([A-ZÀ-Ý][A-Za-zÀ-ÿ'\-]+(?:[ \-][A-ZÀ-Ý(][A-Za-zÀ-ÿ'\-)]+)*)"
_POSTAL_CITY = [
    ("nl", re.compile(r"\b(\d{4}[ \t]?[A-Z]{2})[ \t]+" + _CITY)),
    ("eu", re.compile(r"\b(?:[A-Z]{1,2}-)?(\d{4,5})[ \t]+" + _CITY)),
]
_STREET = re.compile(
    r"^(?:([A-Za-zÀ-ÿ'.\-]+(?:[ \t][A-Za-zÀ-ÿ'.\-]+)*[ \t]+\d{1,5}[A-Za-z]?"
    r"(?:[ \t]*(?:bus|box|/)[ \t]*\w{1,4})?)"
    r"|(\d{1,5}[ \t]*,?[ \t]+(?:rue|avenue|boulevard|chemin|place|allée)\b.*))$",
    re.IGNORECASE,
)
_COUNTRY_CODE = re.compile(r"\b(BE|NL|FR|DE|LU)\b")


def find_postal_city(line: str) -> Match | None:
    for _, pattern in _POSTAL_CITY:
        m = pattern.search(line)
        if m:
            return Match((m.group(1), m.group(2).strip()), confidence.ADDRESS_MATCH, m.group(0))
    return None


def find_street(line: str) -> Match | None:
    m = _STREET.match(line.strip())
    if not m:
        return None
    street = (m.group(1) or m.group(2)).strip()
    return Match(street, confidence.STREET_MATCH, line.strip())


def find_country(text: str) -> Match | None:
    m = _COUNTRY_CODE.search(text)
    if m:
        return Match(m.group(1), confidence.COUNTRY_GUESS, m.group(0))
    lowered = text.lower()
    for name, code in COUNTRY_NAMES.items():
        if re.search(r"\b" + re.escape(name) + r"\b", lowered):
            return Match(code, confidence.COUNTRY_GUESS, name)
    return None


# --- line items ---

_LINE_ITEM = re.compile(
    r"^(?P<desc>\S.{1,58}?)[ \t]+(?P<qty>\d+(?:[.,]\d+)?)"
    r"[ \t]+(?:€[ \t]*)?(?P<price>\d[\d.,]*)"
    r"[ \t]+(?P<vat>\d{1,2}(?:[.,]\d{1,2})?)[ \t]*%?"
    r"[ \t]+(?:€[ \t]*)?(?P<total>\d[\d.,]*)[ \t]*$",
    re.MULTILINE,
)
TOTALS_LABEL = re.compile(
    r"^\s*(?i:sub\s*-?tota(?:a)?l|tota(?:a)?l|btw|vat|tva|te\s+betalen"
    r"|amount\s+due|grand\s+total)\b"
)
MAX_LINE_ITEMS = 20


@dataclass(frozen=True)
class LineItemMatch:
    description: str
    quantity: Decimal
    unit_price: Decimal
    vat_rate: Decimal
    line_total: Decimal
    raw: str


def find_line_items(text: str) -> list[LineItemMatch]:
    items: list[LineItemMatch] = []
    for m in _LINE_ITEM.finditer(text):
        if len(items) >= MAX_LINE_ITEMS:
            break
        description = m.group("desc").strip()
        if TOTALS_LABEL.match(description) or not any(ch.isalpha() for ch in description):
            continue
        quantity = parse_amount(m.group("qty"))
        unit_price = parse_amount(m.group("price"))
        vat_rate = parse_amount(m.group("vat"))
        line_total = parse_amount(m.group("total"))
        if quantity is None or unit_price is None or vat_rate is None or line_total is None:
            continue
        items.append(
            LineItemMatch(description, quantity, unit_price, vat_rate, line_total, m.group(0))
        )
    return items


# --- totals ---

_AMOUNT = re.compile(r"(-?(?:\d{1,3}(?:[., ]\d{3})+|\d+)[.,]\d{2})(?!\d)")

_SUBTOTAL_LABEL = re.compile(
    r"(?i:sub\s*-?tota(?:a)?l|(?:totaal|total)\s+excl|excl\.?\s*(?:btw|vat|tva)"
    r"|net\s+amount|maatstaf\s+van\s+heffing|total\s+ht)"
)
_TOTAL_EXPLICIT_LABEL = re.compile(
    r"(?i:(?:totaal|total)\s+incl|incl\.?\s*(?:btw|vat|tva)|te\s+betalen|amount\s+due"
    r"|grand\s+total|total\s+ttc|net\s+à\s+payer)"
)
_VAT_LABEL = re.compile(r"\b(?i:btw|vat|tva)\b")
_TOTAL_LABEL = re.compile(r"\b(?i:totaal|total)\b")
_NOT_A_TOTAL = re.compile(r"(?i:nummer|number|\bnr\b|\bno\b|\bid\b|iban)")


def _labelled_amount(
    name: str,
    label: re.Pattern[str],
    level: float,
    exclude: Sequence[re.Pattern[str]] = (),
) -> Strategy:
    def find(text: str) -> Match | None:
        for line in text.splitlines():
            if not label.search(line) or _NOT_A_TOTAL.search(line):
                continue
            if any(p.search(line) for p in exclude):
                continue
            amounts = _AMOUNT.findall(line)
            if not amounts:
                continue
            value = parse_amount(amounts[-1].replace(" ", ""))
            if value is not None:
                return Match(value, level, line.strip())
        return None

    return Strategy(name, find)


SUBTOTAL: list[Strategy] = [
    _labelled_amount("subtotal", _SUBTOTAL_LABEL, confidence.KEYWORD_MATCH),
]

VAT_TOTAL: list[Strategy] = [
    _labelled_amount(
        "vat",
        _VAT_LABEL,
        confidence.KEYWORD_MATCH,
        exclude=(_SUBTOTAL_LABEL, _TOTAL_EXPLICIT_LABEL),
    ),
]

GRAND_TOTAL: list[Strategy] = [
    _labelled_amount("total-incl", _TOTAL_EXPLICIT_LABEL, confidence.TOTAL_KEYWORD),
    _labelled_amount(
        "total",
        _TOTAL_LABEL,
        confidence.TOTAL_KEYWORD,
        exclude=(_SUBTOTAL_LABEL, _VAT_LABEL),
    ),
]
