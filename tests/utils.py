import io
from collections.abc import Sequence
from typing import Any

from openpyxl import Workbook


def _pdf_string(text: str) -> str:
    return text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


def make_pdf_bytes(*lines: str) -> bytes:
    """Create a minimal valid single-page PDF with one line of ASCII text per argument."""
    if not lines:
        lines = ("test",)
    parts = [
        f"BT /F1 11 Tf 50 {750 - 16 * i} Td ({_pdf_string(line)}) Tj ET"
        for i, line in enumerate(lines)
    ]
    content = ("\n".join(parts) + "\n").encode()

    obj1 = b"1 0 obj\n<</Type /Catalog /Pages 2 0 R>>\nendobj\n"
    obj2 = b"2 0 obj\n<</Type /Pages /Kids [3 0 R] /Count 1>>\nendobj\n"
    obj3 = (
        b"3 0 obj\n<</Type /Page /Parent 2 0 R /MediaBox [0 0 612 792]"
        b" /Contents 4 0 R /Resources <</Font <</F1 5 0 R>>>>>>\nendobj\n"
    )
    obj4 = (
        f"4 0 obj\n<</Length {len(content)}>>\nstream\n".encode()
        + content
        + b"endstream\nendobj\n"
    )
    obj5 = b"5 0 obj\n<</Type /Font /Subtype /Type1 /BaseFont /Helvetica>>\nendobj\n"

    header = b"%PDF-1.4\n"
    objects = [obj1, obj2, obj3, obj4, obj5]
    body = b""
    offsets: list[int] = []
    for obj in objects:
        offsets.append(len(header) + len(body))
        body += obj

    xref_offset = len(header) + len(body)
    xref = "xref\n0 6\n0000000000 65535 f \n"
    for off in offsets:
        xref += f"{off:010d} 00000 n \n"
    trailer = f"trailer\n<</Size 6 /Root 1 0 R>>\nstartxref\n{xref_offset}\n%%EOF\n"

    return header + body + xref.encode() + trailer.encode()


def make_xlsx_bytes(
    rows: Sequence[Sequence[Any]],
    title: str = "Factuur",
    number_formats: dict[str, str] | None = None,
) -> bytes:
    """Build an in-memory workbook with a single sheet holding ``rows``."""
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = title
    for row in rows:
        sheet.append(list(row))
    for address, number_format in (number_formats or {}).items():
        sheet[address].number_format = number_format
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


INVOICE_TEXT = "\n".join(
    [
        "Factuur",
        "Leverancier: Acme Consulting BV",
        "Kerkstraat 12",
        "1000 Brussel",
        "BTW: BE0123456789",
        "Klant: Globex NV",
        "Marktplein 5",
        "9000 Gent",
        "Factuurnummer: INV-2024-001",
        "Factuurdatum: 15/03/2024",
        "Omschrijving Aantal Prijs BTW Totaal",
        "Consulting 10 100.00 21% 1000.00",
    ]
)

INVOICE_ROWS: list[list[Any]] = [
    ["Factuurnummer", "F-2024-17"],
    ["Factuurdatum", "15/03/2024"],
    ["Leverancier", "Acme BV"],
    ["Klant", "Globex NV"],
    [],
    ["Omschrijving", "Aantal", "Prijs", "BTW %", "Totaal"],
    ["Consulting", 10, 100, 21, 1000],
    ["Licentie", 2, 50, 21, 100],
    [],
    [None, None, None, "Subtotaal", 1100],
    [None, None, None, "BTW", 231],
    [None, None, None, "Totaal", 1331],
]
