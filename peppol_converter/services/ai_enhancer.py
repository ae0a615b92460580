"""Second-pass extraction through an external multimodal completion service.

The enhancer never fails the conversion: every error is logged and turns the
call into a no-op that hands back the candidate invoice untouched.
"""

import base64
import json
import logging
import re
from datetime import date
from decimal import Decimal
from typing import Annotated, Any

import httpx
from pydantic import BaseModel, BeforeValidator, model_validator
from pydantic import ValidationError as PydanticValidationError

from peppol_converter.api.v1.schemas import InvoiceNormalized, MappingField
from peppol_converter.core.config import Settings
from peppol_converter.services import confidence
from peppol_converter.services.amounts import parse_amount
from peppol_converter.services.dates import parse_loose_date
from peppol_converter.services.pdf_extractor import PlumberExtractor
from peppol_converter.services.upload import PDF_MIME, XLSX_MIME
from peppol_converter.services.xlsx_extractor import cell_text, read_rows

logger = logging.getLogger(__name__)

AI_SOURCE = "ai-gemini"

_PLACEHOLDERS = frozenset({"", "null", "none", "n/a", "na", "unknown", "-"})
_CODE_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)

_SCHEMA = """{
  "invoiceNumber": "string",
  "issueDate": "YYYY-MM-DD",
  "dueDate": "YYYY-MM-DD or null",
  "currency": "ISO 4217 code, e.g. EUR",
  "supplier": {
    "name": "string",
    "address": {"street": "street and number", "city": "string", "postalCode": "string", "countryCode": "2 letters"},
    "vatNumber": "string",
    "registrationNumber": "company registry number or null"
  },
  "customer": {
    "name": "string",
    "address": {"street": "street and number", "city": "string", "postalCode": "string", "countryCode": "2 letters"},
    "vatNumber": "string",
    "registrationNumber": "company registry number or null"
  },
  "lines": [
    {"description": "string", "quantity": number, "unitPrice": number, "vatRate": number, "lineTotal": number}
  ],
  "subtotalExclVat": number,
  "vatTotal": number,
  "totalInclVat": number,
  "iban": "string or null",
  "bic": "string or null",
  "paymentReference": "string or null"
}"""

_INSTRUCTIONS = """Rules:
- Use ONLY values that actually appear in the document. Use null for anything that is not there.
- Dates must be formatted as YYYY-MM-DD.
- VAT rates are percentages (21 for 21%, not 0.21).
- Amounts are plain numbers without currency symbols or thousands separators.
- Country codes are ISO 3166-1 alpha-2 (BE, NL, DE, FR, ...).
- Copy the invoice number exactly as printed.
Return only the JSON object."""


class AIResponseError(Exception):
    pass


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and value.strip().lower() in _PLACEHOLDERS:
        return None
    return value


def _to_amount(value: Any) -> Decimal | None:
    value = _blank_to_none(value)
    return None if value is None else parse_amount(value)


def _to_date(value: Any) -> date | None:
    return parse_loose_date(_blank_to_none(value))


def _to_text(value: Any) -> str | None:
    value = _blank_to_none(value)
    if value is None or isinstance(value, dict | list):
        return None
    return str(value).strip()


Amount = Annotated[Decimal | None, BeforeValidator(_to_amount)]
LooseDate = Annotated[date | None, BeforeValidator(_to_date)]
Text = Annotated[str | None, BeforeValidator(_to_text)]


class _Lenient(BaseModel):
    @model_validator(mode="before")
    @classmethod
    def _null_placeholders(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {key: _blank_to_none(value) for key, value in data.items()}
        return data


class AIAddress(_Lenient):
    street: Text = None
    city: Text = None
    postalCode: Text = None
    countryCode: Text = None


class AIParty(_Lenient):
    name: Text = None
    address: AIAddress | None = None
    vatNumber: Text = None
    registrationNumber: Text = None


class AILine(_Lenient):
    description: Text = None
    quantity: Amount = None
    unitPrice: Amount = None
    vatRate: Amount = None
    lineTotal: Amount = None


class AIInvoicePayload(_Lenient):
    invoiceNumber: Text = None
    issueDate: LooseDate = None
    dueDate: LooseDate = None
    currency: Text = None
    supplier: AIParty | None = None
    customer: AIParty | None = None
    lines: list[AILine] = []
    subtotalExclVat: Amount = None
    vatTotal: Amount = None
    totalInclVat: Amount = None
    iban: Text = None
    bic: Text = None
    paymentReference: Text = None


_DECODER = json.JSONDecoder()


def _first_json_object(text: str) -> dict[str, Any] | None:
    """First ``{`` in the text that starts a complete JSON object."""
    start = text.find("{")
    while start != -1:
        try:
            obj, _ = _DECODER.raw_decode(text, start)
        except json.JSONDecodeError:
            obj = None
        if isinstance(obj, dict):
            return obj
        start = text.find("{", start + 1)
    return None


def parse_response_text(raw: str) -> dict[str, Any]:
    text = raw.strip()
    fenced = _CODE_FENCE.match(text)
    if fenced:
        text = fenced.group(1)
    try:
        obj: Any = json.loads(text)
    except json.JSONDecodeError:
        obj = _first_json_object(text)
        if obj is None:
            raise AIResponseError("Completion service did not return JSON") from None
    if not isinstance(obj, dict):
        raise AIResponseError("Completion service did not return a JSON object")
    return obj


def coerce_payload(data: dict[str, Any]) -> AIInvoicePayload:
    try:
        return AIInvoicePayload.model_validate(data)
    except PydanticValidationError as exc:
        cleaned = dict(data)
        for error in exc.errors():
            if error["loc"]:
                cleaned.pop(str(error["loc"][0]), None)
        return AIInvoicePayload.model_validate(cleaned)


def merge_values(current: dict[str, Any], incoming: dict[str, Any]) -> dict[str, Any]:
    """Overlay ``incoming`` on ``current``.

    A non-null incoming value wins; nested objects merge key by key; an empty
    list leaves the current value alone, a non-empty one replaces it whole.
    """
    merged = dict(current)
    for key, value in incoming.items():
        if value is None or value == []:
            continue
        existing = merged.get(key)
        if isinstance(value, dict) and isinstance(existing, dict):
            merged[key] = merge_values(existing, value)
        else:
            merged[key] = value
    return merged


def _leaves(value: Any, path: str) -> list[tuple[str, Any]]:
    if isinstance(value, dict):
        found: list[tuple[str, Any]] = []
        for key, item in value.items():
            found.extend(_leaves(item, f"{path}.{key}" if path else key))
        return found
    if isinstance(value, list):
        found = []
        for index, item in enumerate(value):
            found.extend(_leaves(item, f"{path}[{index}]"))
        return found
    return [] if value is None else [(path, value)]


def merge_ai_result(
    invoice: InvoiceNormalized,
    fields: list[MappingField],
    payload: AIInvoicePayload,
    source: str = AI_SOURCE,
) -> tuple[InvoiceNormalized, list[MappingField]]:
    ai_data = payload.model_dump(exclude_none=True)
    if ai_data.get("lines"):
        ai_data["lines"] = [
            {**line, "confidence": confidence.AI_RESULT, "source": source}
            for line in ai_data["lines"]
        ]
    merged = InvoiceNormalized.model_validate(merge_values(invoice.model_dump(), ai_data))

    ai_fields = [
        MappingField(
            field=path,
            value=value,
            source=source,
            confidence=confidence.AI_RESULT,
            rawValue=str(value),
        )
        for path, value in _leaves(payload.model_dump(exclude_none=True), "")
    ]
    covered = {f.field for f in ai_fields}
    lines_replaced = bool(payload.lines)
    kept = [
        f
        for f in fields
        if f.field not in covered and not (lines_replaced and f.field.startswith("lines["))
    ]
    return merged, ai_fields + kept


class AIEnhancer:
    def __init__(
        self,
        settings: Settings,
        client: httpx.Client | None = None,
        text_extractor: PlumberExtractor | None = None,
    ) -> None:
        self._settings = settings
        self._client = client or httpx.Client(timeout=settings.ai_timeout_seconds)
        self._plumber = text_extractor or PlumberExtractor()

    @property
    def enabled(self) -> bool:
        return self._settings.ai_enabled

    def close(self) -> None:
        self._client.close()

    def enhance(
        self,
        file_bytes: bytes,
        filename: str,
        mime_type: str,
        invoice: InvoiceNormalized,
        fields: list[MappingField],
    ) -> tuple[InvoiceNormalized, list[MappingField], bool]:
        if not self.enabled:
            logger.info("ai enhancement disabled", extra={"source_file": filename})
            return invoice, fields, False
        try:
            text = self._document_text(file_bytes, mime_type)
            data = self._complete(file_bytes, mime_type, text, invoice)
            payload = coerce_payload(data)
            merged, merged_fields = merge_ai_result(invoice, fields, payload)
        except Exception:
            logger.exception(
                "ai enhancement failed, keeping first-pass extraction",
                extra={"source_file": filename, "mime_type": mime_type},
            )
            return invoice, fields, False
        logger.info(
            "ai enhancement applied",
            extra={
                "source_file": filename,
                "model": self._settings.gemini_model,
                "ai_fields": len(merged_fields) - len(fields),
                "line_count": len(merged.lines),
            },
        )
        return merged, merged_fields, True

    def _document_text(self, file_bytes: bytes, mime_type: str) -> str:
        try:
            if mime_type == PDF_MIME:
                return self._plumber.extract_text(file_bytes)
            if mime_type == XLSX_MIME:
                rows = read_rows(file_bytes)
                return "\n".join(" | ".join(cell_text(c.value) for c in row) for row in rows)
        except Exception:
            logger.warning("could not extract text for ai prompt", exc_info=True)
        return ""

    def _complete(
        self, file_bytes: bytes, mime_type: str, text: str, invoice: InvoiceNormalized
    ) -> dict[str, Any]:
        settings = self._settings
        if mime_type != PDF_MIME:
            prompt = build_prompt(invoice, text[: settings.ai_spreadsheet_text_limit])
            return parse_response_text(self._generate([{"text": prompt}]))

        attachment = {
            "inlineData": {
                "mimeType": PDF_MIME,
                "data": base64.b64encode(file_bytes).decode("ascii"),
            }
        }
        prompt = build_prompt(invoice, text[: settings.ai_prompt_text_limit])
        try:
            return parse_response_text(self._generate([attachment, {"text": prompt}]))
        except (httpx.HTTPError, AIResponseError) as exc:
            if not text.strip():
                raise
            logger.warning(
                "ai call with attachment failed, retrying with extracted text",
                extra={"error": str(exc)},
            )
        prompt = build_prompt(invoice, text[: settings.ai_fallback_text_limit])
        return parse_response_text(self._generate([{"text": prompt}]))

    def _generate(self, parts: list[dict[str, Any]]) -> str:
        settings = self._settings
        response = self._client.post(
            f"{settings.gemini_base_url}/models/{settings.gemini_model}:generateContent",
            headers={"x-goog-api-key": settings.gemini_api_key or ""},
            json={
                "contents": [{"parts": parts}],
                "generationConfig": {
                    "responseMimeType": "application/json",
                    "temperature": settings.ai_temperature,
                },
            },
        )
        response.raise_for_status()
        body = response.json()
        candidates = body.get("candidates") or []
        if not candidates:
            raise AIResponseError("Completion service returned no candidates")
        parts_out = (candidates[0].get("content") or {}).get("parts") or []
        text = "".join(str(p.get("text", "")) for p in parts_out if isinstance(p, dict))
        if not text.strip():
            raise AIResponseError("Completion service returned an empty answer")
        return text


def build_prompt(invoice: InvoiceNormalized, text: str) -> str:
    hints = [
        f"Invoice number found so far: {invoice.invoiceNumber}"
        if invoice.invoiceNumber
        else "The invoice number was not found yet.",
        f"Issue date found so far: {invoice.issueDate}"
        if invoice.issueDate
        else "The issue date was not found yet; look for it carefully.",
        f"Supplier found so far: {invoice.supplier.name}"
        if invoice.supplier and invoice.supplier.name
        else "The supplier was not found yet.",
        f"Customer found so far: {invoice.customer.name}"
        if invoice.customer and invoice.customer.name
        else "The customer was not found yet.",
    ]
    sections = [
        "Extract all data from this invoice and answer with a JSON object of this shape:",
        _SCHEMA,
        _INSTRUCTIONS,
        "\n".join(hints),
    ]
    if text.strip():
        sections.append(f"Text extracted from the document:\n\n{text}")
    return "\n\n".join(sections)
