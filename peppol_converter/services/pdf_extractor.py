import io
import re
from statistics import fmean
from typing import Any

import pdfplumber

from peppol_converter.api.v1.schemas import (
    Address,
    InvoiceLine,
    InvoiceNormalized,
    MappingField,
    Party,
)
from peppol_converter.services import confidence
from peppol_converter.services import pdf_patterns as patterns
from peppol_converter.services.pdf_patterns import Match, first_match

SOURCE = "pdf-text"

_SUPPLIER_KEYWORD = re.compile(
    r"^\s*(?:(?i:leverancier|supplier|verkoper|vendor|seller|fournisseur)\b[ \t]*:?"
    r"|(?i:van|from|de)[ \t]*:)[ \t]*(.*)$"
)
_CUSTOMER_KEYWORD = re.compile(
    r"^\s*(?:(?i:klant|customer|client|koper|buyer|bill\s+to|factuur\s+aan|invoice\s+to"
    r"|facturé\s+à)\b[ \t]*:?|(?i:aan|to|à)[ \t]*:)[ \t]*(.*)$"
)
_NOT_A_NAME = re.compile(
    r"^\s*(?i:factuur|invoice|facture|datum|btw|iban|swift|telef|phone|e-?mail|http"
    r"|ondernemings|enterprise|pagina|vervaldatum|totaal|subtota|omschrijving|description"
    r"|(?:date|vat|tva|bic|tel|gsm|fax|www|kbo|rpr|kvk|page|ref|order|due|total)\b)"
)
_LABELLED_VALUE = re.compile(r":.*\d")
_WINDOW_SIZE = 6
_HEADER_LINES = 8


def _mapping(field: str, match: Match, value: Any = None) -> MappingField:
    return MappingField(
        field=field,
        value=match.value if value is None else value,
        source=SOURCE,
        confidence=match.confidence,
        rawValue=match.raw,
    )


def _is_plausible_name(line: str) -> bool:
    stripped = line.strip()
    if len(stripped) < 2 or len(stripped) > 80:
        return False
    if not stripped[0].isalpha() or _NOT_A_NAME.match(stripped):
        return False
    if "@" in stripped or _LABELLED_VALUE.search(stripped):
        return False
    if patterns.find_postal_city(stripped) is not None:
        return False
    digits = sum(ch.isdigit() for ch in stripped)
    return digits <= len(stripped) // 3


def _find_window(
    lines: list[str], keyword: re.Pattern[str], stop: re.Pattern[str]
) -> list[str] | None:
    for index, line in enumerate(lines):
        m = keyword.match(line)
        if not m:
            continue
        window = [m.group(1)] if m.group(1).strip() else []
        for following in lines[index + 1 :]:
            if len(window) >= _WINDOW_SIZE or stop.match(following):
                break
            window.append(following)
        return window
    return None


def _extract_party(
    prefix: str,
    window: list[str],
    name_confidence: float,
    vat_text: str | None = None,
    exclude_vat: str | None = None,
) -> tuple[Party | None, list[MappingField]]:
    fields: list[MappingField] = []
    name: str | None = None
    street: str | None = None
    postal_code: str | None = None
    city: str | None = None
    country: str | None = None

    for line in window:
        if _is_plausible_name(line) and patterns.find_street(line) is None:
            name = line.strip()
            fields.append(
                _mapping(f"{prefix}.name", Match(name, name_confidence, line))
            )
            break

    for line in window:
        if line.strip() == name:
            continue
        if postal_code is None:
            postal = patterns.find_postal_city(line)
            if postal is not None:
                postal_code, city = postal.value
                fields.append(_mapping(f"{prefix}.address.postalCode", postal, postal_code))
                fields.append(_mapping(f"{prefix}.address.city", postal, city))
                continue
        if street is None:
            found = patterns.find_street(line)
            if found is not None:
                street = found.value
                fields.append(_mapping(f"{prefix}.address.street", found))

    window_text = "\n".join(window)
    vat_number: str | None = None
    vat_match = first_match(patterns.VAT_NUMBER, window_text)
    if vat_match is None and vat_text is not None:
        vat_match = _first_vat_except(vat_text, exclude_vat)
    if vat_match is not None:
        vat_number = vat_match.value
        fields.append(_mapping(f"{prefix}.vatNumber", vat_match))

    registration: str | None = None
    reg_match = first_match(patterns.REGISTRATION_NUMBER, window_text)
    if reg_match is not None:
        registration = reg_match.value
        fields.append(_mapping(f"{prefix}.registrationNumber", reg_match))

    country_match = patterns.find_country(window_text)
    if country_match is None and vat_number and vat_number[:2].isalpha():
        country_match = Match(vat_number[:2], confidence.COUNTRY_GUESS, vat_number)
    if country_match is not None:
        country = country_match.value
        fields.append(_mapping(f"{prefix}.address.countryCode", country_match))

    if not any((name, street, postal_code, city, country, vat_number, registration)):
        return None, []
    address = None
    if any((street, postal_code, city, country)):
        address = Address(street=street, city=city, postalCode=postal_code, countryCode=country)
    party = Party(
        name=name,
        address=address,
        vatNumber=vat_number,
        registrationNumber=registration,
    )
    return party, fields


def _first_vat_except(text: str, excluded: str | None) -> Match | None:
    for strategy in patterns.VAT_NUMBER:
        for line in text.splitlines():
            match = strategy.find(line)
            if match is not None and match.value != excluded:
                return match
    return None


def _scalar(
    field: str, strategies: list[patterns.Strategy], text: str
) -> tuple[Any, list[MappingField]]:
    match = first_match(strategies, text)
    if match is None:
        return None, []
    return match.value, [_mapping(field, match)]


def _lines(text: str) -> tuple[list[InvoiceLine], list[MappingField]]:
    lines: list[InvoiceLine] = []
    fields: list[MappingField] = []
    for index, item in enumerate(patterns.find_line_items(text)):
        lines.append(
            InvoiceLine(
                description=item.description,
                quantity=item.quantity,
                unitPrice=item.unit_price,
                vatRate=item.vat_rate,
                lineTotal=item.line_total,
                confidence=confidence.TABLE_ROW,
                source=SOURCE,
            )
        )
        for name, value in (
            ("description", item.description),
            ("quantity", item.quantity),
            ("unitPrice", item.unit_price),
            ("vatRate", item.vat_rate),
            ("lineTotal", item.line_total),
        ):
            fields.append(
                MappingField(
                    field=f"lines[{index}].{name}",
                    value=value,
                    source=SOURCE,
                    confidence=confidence.TABLE_ROW,
                    rawValue=item.raw,
                )
            )
    return lines, fields


class PlumberExtractor:
    """Text layer of a PDF, one string per page."""

    def page_texts(self, file_bytes: bytes) -> list[str]:
        if not file_bytes:
            raise ValueError("Empty PDF document")
        with pdfplumber.open(io.BytesIO(file_bytes)) as pdf:
            return [page.extract_text() or "" for page in pdf.pages]

    def extract_text(self, file_bytes: bytes) -> str:
        return "\n\n".join(self.page_texts(file_bytes))


class PDFInvoiceExtractor:
    """Reads an invoice out of the text layer of a PDF.

    Unreadable bytes raise (the pipeline turns that into an extraction
    failure). Anything the patterns cannot find is simply left empty.
    """

    def __init__(self, plumber: PlumberExtractor | None = None) -> None:
        self._plumber = plumber or PlumberExtractor()

    def read(self, file_bytes: bytes) -> str:
        return self._plumber.extract_text(file_bytes)

    def extract(
        self, file_bytes: bytes, filename: str
    ) -> tuple[InvoiceNormalized, list[MappingField]]:
        return self.extract_from_text(self.read(file_bytes), filename)

    def extract_from_text(
        self, text: str, filename: str
    ) -> tuple[InvoiceNormalized, list[MappingField]]:
        text_lines = [line for line in text.splitlines() if line.strip()]

        invoice_number, number_fields = _scalar("invoiceNumber", patterns.INVOICE_NUMBER, text)
        issue_date, issue_fields = _scalar("issueDate", patterns.ISSUE_DATE, text)
        due_date, due_fields = _scalar("dueDate", patterns.DUE_DATE, text)
        currency, currency_fields = _scalar("currency", patterns.CURRENCY, text)
        iban, iban_fields = _scalar("iban", patterns.IBAN, text)
        bic, bic_fields = _scalar("bic", patterns.BIC, text)
        reference, reference_fields = _scalar(
            "paymentReference", patterns.PAYMENT_REFERENCE, text
        )

        customer: Party | None = None
        customer_fields: list[MappingField] = []
        customer_window = _find_window(text_lines, _CUSTOMER_KEYWORD, _SUPPLIER_KEYWORD)
        if customer_window is not None:
            customer, customer_fields = _extract_party(
                "customer", customer_window, confidence.PARTY_NAME
            )

        supplier_window = _find_window(text_lines, _SUPPLIER_KEYWORD, _CUSTOMER_KEYWORD)
        supplier_name_confidence = confidence.PARTY_NAME
        if supplier_window is None:
            # Without a label the issuer is usually printed at the top.
            supplier_window = [
                line for line in text_lines[:_HEADER_LINES] if not _CUSTOMER_KEYWORD.match(line)
            ]
            supplier_name_confidence = confidence.FALLBACK_MATCH
        supplier, supplier_fields = _extract_party(
            "supplier",
            supplier_window,
            supplier_name_confidence,
            vat_text=text,
            exclude_vat=customer.vatNumber if customer else None,
        )

        lines, line_fields = _lines(text)
        subtotal, subtotal_fields = _scalar("subtotalExclVat", patterns.SUBTOTAL, text)
        vat_total, vat_fields = _scalar("vatTotal", patterns.VAT_TOTAL, text)
        total, total_fields = _scalar("totalInclVat", patterns.GRAND_TOTAL, text)

        fields = (
            number_fields
            + issue_fields
            + due_fields
            + currency_fields
            + supplier_fields
            + customer_fields
            + iban_fields
            + bic_fields
            + reference_fields
            + line_fields
            + subtotal_fields
            + vat_fields
            + total_fields
        )
        invoice = InvoiceNormalized(
            invoiceNumber=invoice_number,
            issueDate=issue_date,
            dueDate=due_date,
            currency=currency,
            supplier=supplier,
            customer=customer,
            paymentReference=reference,
            iban=iban,
            bic=bic,
            lines=lines,
            subtotalExclVat=subtotal,
            vatTotal=vat_total,
            totalInclVat=total,
            sourceType="pdf",
            sourceFile=filename,
            extractionConfidence=extraction_confidence(fields),
        )
        return invoice, fields


def extraction_confidence(fields: list[MappingField]) -> float | None:
    if not fields:
        return None
    return round(fmean(f.confidence for f in fields), 2)
