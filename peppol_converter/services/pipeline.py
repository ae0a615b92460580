"""Runs one document through extraction, enhancement, normalization, UBL
generation and validation.

Only unreadable input raises. Every other problem ends up in the validation
report next to a generated document.
"""

import logging
import threading
import zipfile
from collections.abc import Iterator
from contextlib import contextmanager

from pdfminer.pdfparser import PDFSyntaxError
from pdfplumber.utils.exceptions import PdfminerException

from peppol_converter.api.v1.schemas import (
    ConversionResult,
    InvoiceNormalized,
    MappingField,
    MappingReport,
    ValidationError,
    build_validation_report,
)
from peppol_converter.core.logging import log_stage
from peppol_converter.services.ai_enhancer import AIEnhancer
from peppol_converter.services.data_quality import DataQualityValidator
from peppol_converter.services.normalizer import normalize
from peppol_converter.services.pdf_extractor import PDFInvoiceExtractor
from peppol_converter.services.rules import BusinessRuleValidator
from peppol_converter.services.ubl import check_xml, to_ubl
from peppol_converter.services.upload import PDF_MIME, XLSX_MIME
from peppol_converter.services.xlsx_extractor import SpreadsheetInvoiceExtractor

logger = logging.getLogger(__name__)

AI_APPLIED_NOTE = "AI enhancement applied"

# Raised by pdfplumber/pdfminer and openpyxl when opening bytes that are not what they claim.
_UNREADABLE = (
    PdfminerException,
    PDFSyntaxError,
    zipfile.BadZipFile,
    KeyError,
    OSError,
    ValueError,
)


class ExtractionError(Exception):
    pass


class UnsupportedMimeTypeError(ExtractionError):
    pass


class PipelineAbortedError(Exception):
    pass


def missing_required(findings: list[ValidationError]) -> list[str]:
    return [
        f.fieldPath
        for f in findings
        if f.fieldPath and f.code.startswith(("WARN_MISSING_", "ERR_MISSING_"))
    ]


@contextmanager
def _reading(filename: str, mime_type: str) -> Iterator[None]:
    """Turn a library failure while opening the document into an ExtractionError."""
    try:
        yield
    except _UNREADABLE as exc:
        raise ExtractionError(f"Could not read {filename} as {mime_type}: {exc}") from exc


def _check_abort(abort: threading.Event | None, stage: str) -> None:
    if abort is not None and abort.is_set():
        raise PipelineAbortedError(f"Conversion aborted before {stage}")


class Pipeline:
    def __init__(
        self,
        pdf: PDFInvoiceExtractor | None = None,
        xlsx: SpreadsheetInvoiceExtractor | None = None,
        enhancer: AIEnhancer | None = None,
        rules: BusinessRuleValidator | None = None,
        quality: DataQualityValidator | None = None,
    ) -> None:
        self._pdf = pdf or PDFInvoiceExtractor()
        self._xlsx = xlsx or SpreadsheetInvoiceExtractor()
        self._enhancer = enhancer
        self._rules = rules or BusinessRuleValidator()
        self._quality = quality or DataQualityValidator()

    def run(
        self,
        file_bytes: bytes,
        mime_type: str,
        filename: str,
        abort: threading.Event | None = None,
    ) -> ConversionResult:
        with log_stage(logger, "extract", mime_type=mime_type) as stage:
            invoice, fields = self._extract(file_bytes, mime_type, filename)
            stage["field_count"] = len(fields)
            stage["line_count"] = len(invoice.lines)

        ai_used = False
        if self._enhancer is not None:
            _check_abort(abort, "enhance")
            with log_stage(logger, "enhance") as stage:
                invoice, fields, ai_used = self._enhancer.enhance(
                    file_bytes, filename, mime_type, invoice, fields
                )
                stage["ai_used"] = ai_used

        _check_abort(abort, "normalize")
        with log_stage(logger, "normalize"):
            invoice = normalize(invoice)

        _check_abort(abort, "serialize")
        with log_stage(logger, "serialize"):
            xml = to_ubl(invoice)

        _check_abort(abort, "validate")
        with log_stage(logger, "validate") as stage:
            rule_findings = self._rules.validate(invoice)
            quality_findings = self._quality.validate(invoice, fields)
            findings = rule_findings + quality_findings + check_xml(xml)
            report = build_validation_report(findings)
            stage["error_count"] = len(report.errors)
            stage["warning_count"] = len(report.warnings)

        mapping = MappingReport(
            fields=fields,
            missingRequired=missing_required(findings),
            warnings=[AI_APPLIED_NOTE] if ai_used else [],
            dataQuality=self._quality.score(invoice, fields, findings),
        )
        return ConversionResult(
            ublXml=xml,
            validationReport=report,
            mappingReport=mapping,
            normalizedInvoice=invoice,
            aiUsed=ai_used,
        )

    def render(self, invoice: InvoiceNormalized) -> ConversionResult:
        """Regenerate the document for an invoice the user corrected by hand."""
        with log_stage(logger, "render") as stage:
            invoice = normalize(invoice)
            xml = to_ubl(invoice)
            findings = self._rules.validate(invoice) + check_xml(xml)
            report = build_validation_report(findings)
            stage["error_count"] = len(report.errors)
        return ConversionResult(
            ublXml=xml,
            validationReport=report,
            mappingReport=MappingReport(),
            normalizedInvoice=invoice,
            aiUsed=False,
        )

    def _extract(
        self, file_bytes: bytes, mime_type: str, filename: str
    ) -> tuple[InvoiceNormalized, list[MappingField]]:
        if mime_type == PDF_MIME:
            with _reading(filename, mime_type):
                text = self._pdf.read(file_bytes)
            return self._pdf.extract_from_text(text, filename)
        if mime_type == XLSX_MIME:
            with _reading(filename, mime_type):
                rows = self._xlsx.read(file_bytes)
            return self._xlsx.extract_from_rows(rows, filename)
        raise UnsupportedMimeTypeError(f"Unsupported file type: {mime_type}")
