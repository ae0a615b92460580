import io
import re
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from openpyxl import load_workbook
from openpyxl.utils import get_column_letter

from peppol_converter.api.v1.schemas import InvoiceLine, InvoiceNormalized, MappingField, Party
from peppol_converter.services import confidence
from peppol_converter.services.amounts import parse_amount
from peppol_converter.services.dates import parse_excel_serial, parse_numeric_date
from peppol_converter.services.pdf_extractor import extraction_confidence

HEADER_KEYWORDS = ("factuur", "invoice", "nummer", "number", "datum", "date", "totaal", "total")
HEADER_SCAN_ROWS = 10
HEADER_AREA_ROWS = 5
TRAILING_ROWS = 5

# Declaration order breaks ties between equally long synonyms.
FIELD_SYNONYMS: dict[str, tuple[str, ...]] = {
    "invoiceNumber": (
        "factuurnummer", "factuur nr", "invoice number", "invoice no", "nummer", "number", "nr",
    ),
    "issueDate": ("factuurdatum", "invoice date", "issue date", "datum", "date"),
    "dueDate": ("vervaldatum", "due date", "payment date", "betaaldatum"),
    "currency": ("valuta", "currency", "munt"),
    "supplierName": ("leverancier", "supplier", "verkoper", "vendor", "from"),
    "supplierVat": ("leverancier btw", "supplier vat", "supplier btw", "btw leverancier"),
    "customerName": ("klant", "customer", "client", "aan", "to"),
    "customerVat": ("klant btw", "customer vat", "customer btw", "btw klant"),
    "description": ("omschrijving", "description", "product", "item", "artikel"),
    "quantity": ("aantal", "quantity", "qty", "hoeveelheid"),
    "unitPrice": ("eenheidsprijs", "unit price", "prijs excl", "prijs", "price"),
    "vatRate": ("btw percentage", "btw %", "vat %", "btw%", "vat%", "vat rate", "btw", "vat"),
    "lineTotal": ("totaal lijn", "line total", "lijn totaal", "regeltotaal", "totaal"),
    "subtotal": ("subtotaal", "subtotal", "excl btw", "excl vat"),
    "vatTotal": ("btw totaal", "vat total", "totaal btw"),
    "total": ("totaal incl", "total incl", "te betalen", "totaal", "total"),
}

_LINE_COLUMNS = ("description", "quantity", "unitPrice", "vatRate", "lineTotal")

# (field on the invoice, column key, confidence)
_HEADER_FIELDS: tuple[tuple[str, str, float], ...] = (
    ("invoiceNumber", "invoiceNumber", confidence.SPREADSHEET_HEADER),
    ("issueDate", "issueDate", confidence.SPREADSHEET_HEADER),
    ("dueDate", "dueDate", confidence.SPREADSHEET_HEADER),
    ("currency", "currency", confidence.SPREADSHEET_TYPED),
    ("supplier.name", "supplierName", confidence.SPREADSHEET_HEADER),
    ("supplier.vatNumber", "supplierVat", confidence.SPREADSHEET_HEADER),
    ("customer.name", "customerName", confidence.SPREADSHEET_HEADER),
    ("customer.vatNumber", "customerVat", confidence.SPREADSHEET_HEADER),
)

_TOTAL_FIELDS: tuple[tuple[str, str, float], ...] = (
    ("subtotalExclVat", "subtotal", confidence.SPREADSHEET_HEADER),
    ("vatTotal", "vatTotal", confidence.SPREADSHEET_HEADER),
    ("totalInclVat", "total", confidence.SPREADSHEET_TYPED),
)

_TOTAL_ROW_LABELS: tuple[tuple[str, re.Pattern[str]], ...] = (
    (
        "subtotalExclVat",
        re.compile(
            r"^\s*(?:sub\s*-?tota(?:a)?l|(?:totaal|total)\s+excl|excl\.?\s*(?:btw|vat))",
            re.IGNORECASE,
        ),
    ),
    (
        "vatTotal",
        re.compile(r"^\s*(?:(?:totaal|total)\s+)?(?:btw|vat|tva)\b(?!\s*%)", re.IGNORECASE),
    ),
    (
        "totalInclVat",
        re.compile(
            r"^\s*(?:(?:totaal|total)(?:\s+incl.*)?|te\s+betalen|amount\s+due|grand\s+total)"
            r"\s*:?\s*$",
            re.IGNORECASE,
        ),
    ),
)
_TOTALS_LABEL = re.compile(
    r"^\s*(?:sub\s*-?tota(?:a)?l|tota(?:a)?l|btw|vat|te\s+betalen)\b", re.IGNORECASE
)

_SHEET_NAME = re.compile(r"invoice|factuur", re.IGNORECASE)


@dataclass(frozen=True)
class Cell:
    value: Any
    number_format: str | None
    address: str


def cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, datetime):
        return value.date().isoformat()
    return str(value).strip()


def _synonym_matches(synonym: str, header: str) -> bool:
    if len(synonym) <= 3:
        return re.search(r"(?<![a-z])" + re.escape(synonym) + r"(?![a-z])", header) is not None
    return synonym in header


def build_header_map(header_row: Sequence[Any]) -> dict[str, int]:
    """Map field keys to column indexes.

    The field with the longest matching synonym claims a column, so a
    ``Vervaldatum`` header is a due date rather than an issue date. The first
    column claimed by a field keeps it.
    """
    mapping: dict[str, int] = {}
    for col, raw in enumerate(header_row):
        header = cell_text(raw).lower()
        if not header:
            continue
        best: tuple[int, str] | None = None
        for field, synonyms in FIELD_SYNONYMS.items():
            length = max((len(s) for s in synonyms if _synonym_matches(s, header)), default=0)
            if length and (best is None or length > best[0]):
                best = (length, field)
        if best is not None and best[1] not in mapping:
            mapping[best[1]] = col
    return mapping


def find_header_row(rows: Sequence[Sequence[Any]]) -> int:
    candidates = list(rows[:HEADER_SCAN_ROWS])
    for index, row in enumerate(candidates):
        mapped = build_header_map(row)
        if sum(1 for key in _LINE_COLUMNS if key in mapped) >= 2:
            return index
    for index, row in enumerate(candidates):
        text = " ".join(cell_text(v) for v in row).lower()
        if any(keyword in text for keyword in HEADER_KEYWORDS):
            return index
    return 0


def parse_cell_date(cell: Cell) -> date | None:
    value = cell.value
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, int | float) and not isinstance(value, bool):
        return parse_excel_serial(value)
    if isinstance(value, str):
        return parse_numeric_date(value)
    return None


def parse_cell_amount(cell: Cell) -> Decimal | None:
    if isinstance(cell.value, bool):
        return None
    return parse_amount(cell.value)


def parse_cell_rate(cell: Cell) -> Decimal | None:
    rate = parse_cell_amount(cell)
    # A cell formatted as a percentage stores 21% as 0.21.
    percent_format = (cell.number_format or "").endswith("%")
    if rate is not None and isinstance(cell.value, int | float) and percent_format:
        rate = rate * 100
    return rate


def _field_value(key: str, cell: Cell) -> Any:
    if key in ("issueDate", "dueDate"):
        return parse_cell_date(cell)
    if key == "currency":
        text = cell_text(cell.value).upper()
        return text if re.fullmatch(r"[A-Z]{3}", text) else None
    if key in ("quantity", "unitPrice", "lineTotal", "subtotal", "vatTotal", "total"):
        return parse_cell_amount(cell)
    if key == "vatRate":
        return parse_cell_rate(cell)
    if key in ("supplierVat", "customerVat"):
        return re.sub(r"[\s.]", "", cell_text(cell.value)).upper() or None
    return cell_text(cell.value) or None


def _at(row: Sequence[Cell], col: int | None) -> Cell | None:
    if col is None or col >= len(row):
        return None
    return row[col]


def _is_blank(cell: Cell | None) -> bool:
    return cell is None or cell_text(cell.value) == ""


def _source(cell: Cell) -> str:
    return f"xlsx-cell-{cell.address}"


def _is_line_row(row: Sequence[Cell], columns: dict[str, int]) -> bool:
    description = _at(row, columns.get("description"))
    quantity = _at(row, columns.get("quantity"))
    if _is_blank(description) and _is_blank(quantity):
        return False
    if description is not None and _TOTALS_LABEL.match(cell_text(description.value)):
        return not _is_blank(quantity)
    return True


def read_rows(file_bytes: bytes) -> list[list[Cell]]:
    """Cells of the invoice sheet: the first one named like an invoice, else the first."""
    workbook = load_workbook(io.BytesIO(file_bytes), data_only=True)
    try:
        sheet = next(
            (ws for ws in workbook.worksheets if _SHEET_NAME.search(ws.title)),
            workbook.worksheets[0],
        )
        return [
            [
                Cell(c.value, c.number_format, f"{get_column_letter(col + 1)}{row + 1}")
                for col, c in enumerate(cells)
            ]
            for row, cells in enumerate(sheet.iter_rows())
        ]
    finally:
        workbook.close()


class SpreadsheetInvoiceExtractor:
    def read(self, file_bytes: bytes) -> list[list[Cell]]:
        return read_rows(file_bytes)

    def extract(
        self, file_bytes: bytes, filename: str
    ) -> tuple[InvoiceNormalized, list[MappingField]]:
        return self.extract_from_rows(self.read(file_bytes), filename)

    def extract_from_rows(
        self, rows: list[list[Cell]], filename: str
    ) -> tuple[InvoiceNormalized, list[MappingField]]:
        if not rows:
            return InvoiceNormalized(sourceType="xlsx", sourceFile=filename), []

        header_index = find_header_row([[c.value for c in row] for row in rows])
        columns = build_header_map([c.value for c in rows[header_index]])

        header, header_fields = self._header_fields(rows, header_index, columns)
        lines, line_fields = self._lines(rows, header_index, columns)
        totals, total_fields = self._totals(rows, header_index, columns)

        fields = header_fields + line_fields + total_fields
        supplier = self._party(header.get("supplier.name"), header.get("supplier.vatNumber"))
        customer = self._party(header.get("customer.name"), header.get("customer.vatNumber"))
        invoice = InvoiceNormalized(
            invoiceNumber=header.get("invoiceNumber"),
            issueDate=header.get("issueDate"),
            dueDate=header.get("dueDate"),
            currency=header.get("currency"),
            supplier=supplier,
            customer=customer,
            lines=lines,
            subtotalExclVat=totals.get("subtotalExclVat"),
            vatTotal=totals.get("vatTotal"),
            totalInclVat=totals.get("totalInclVat"),
            sourceType="xlsx",
            sourceFile=filename,
            extractionConfidence=extraction_confidence(fields),
        )
        return invoice, fields

    @staticmethod
    def _party(name: str | None, vat_number: str | None) -> Party | None:
        if name is None and vat_number is None:
            return None
        return Party(name=name, vatNumber=vat_number)

    def _header_fields(
        self, rows: list[list[Cell]], header_index: int, columns: dict[str, int]
    ) -> tuple[dict[str, Any], list[MappingField]]:
        values: dict[str, Any] = {}
        fields: list[MappingField] = []
        last = min(len(rows), header_index + HEADER_AREA_ROWS + 1)
        for row_index in range(last):
            if row_index == header_index:
                continue
            row = rows[row_index]
            for field, key, level in _HEADER_FIELDS:
                if field in values:
                    continue
                found = self._labelled_cell(row, key) or _at(row, columns.get(key))
                if _is_blank(found):
                    continue
                value = _field_value(key, found)
                if value is None:
                    continue
                values[field] = value
                fields.append(
                    MappingField(
                        field=field,
                        value=value,
                        source=_source(found),
                        confidence=level,
                        rawValue=cell_text(found.value),
                    )
                )
        return values, fields

    @staticmethod
    def _labelled_cell(row: list[Cell], key: str) -> Cell | None:
        """Value to the right of a ``Label:`` cell, for key/value style sheets."""
        synonyms = FIELD_SYNONYMS[key]
        for index, cell in enumerate(row[:-1]):
            label = cell_text(cell.value).lower().rstrip(":").strip()
            if label and label in synonyms and build_header_map([label]).get(key) == 0:
                following = row[index + 1]
                if not _is_blank(following):
                    return following
        return None

    def _lines(
        self, rows: list[list[Cell]], header_index: int, columns: dict[str, int]
    ) -> tuple[list[InvoiceLine], list[MappingField]]:
        lines: list[InvoiceLine] = []
        fields: list[MappingField] = []
        if "description" not in columns and "quantity" not in columns:
            return lines, fields

        for row_index in range(header_index + 1, len(rows)):
            row = rows[row_index]
            if not _is_line_row(row, columns):
                continue

            index = len(lines)
            values: dict[str, Any] = {}
            for key in _LINE_COLUMNS:
                cell = _at(row, columns.get(key))
                if _is_blank(cell):
                    continue
                value = _field_value(key, cell)
                if value is None:
                    continue
                values[key] = value
                fields.append(
                    MappingField(
                        field=f"lines[{index}].{key}",
                        value=value,
                        source=_source(cell),
                        confidence=confidence.SPREADSHEET_CELL,
                        rawValue=cell_text(cell.value),
                    )
                )
            lines.append(
                InvoiceLine(
                    **values,
                    confidence=confidence.SPREADSHEET_CELL,
                    source=f"xlsx-row-{row_index + 1}",
                )
            )
        return lines, fields

    def _totals(
        self, rows: list[list[Cell]], header_index: int, columns: dict[str, int]
    ) -> tuple[dict[str, Decimal], list[MappingField]]:
        values: dict[str, Decimal] = {}
        fields: list[MappingField] = []
        start = max(header_index + 1, len(rows) - TRAILING_ROWS)
        trailing = [row for row in rows[start:] if not _is_line_row(row, columns)]

        def record(field: str, cell: Cell, level: float) -> None:
            amount = parse_cell_amount(cell)
            if field in values or amount is None:
                return
            values[field] = amount
            fields.append(
                MappingField(
                    field=field,
                    value=amount,
                    source=_source(cell),
                    confidence=level,
                    rawValue=cell_text(cell.value),
                )
            )

        for row in trailing:
            for field, key, level in _TOTAL_FIELDS:
                cell = _at(row, columns.get(key))
                if not _is_blank(cell):
                    record(field, cell, level)

        levels = {field: level for field, _, level in _TOTAL_FIELDS}
        for row in trailing:
            for index, cell in enumerate(row):
                label = cell_text(cell.value)
                if not label or not isinstance(cell.value, str):
                    continue
                for field, pattern in _TOTAL_ROW_LABELS:
                    if not pattern.match(label):
                        continue
                    numeric = [c for c in row[index + 1 :] if parse_cell_amount(c) is not None]
                    if numeric:
                        record(field, numeric[-1], levels[field])
                    break
        return values, fields
