from datetime import date
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

Severity = Literal["error", "warning"]
QualityLevel = Literal["excellent", "good", "fair", "poor"]


class Address(BaseModel):
    street: str | None = None
    city: str | None = None
    postalCode: str | None = None
    countryCode: str | None = None


class Party(BaseModel):
    name: str | None = None
    address: Address | None = None
    vatNumber: str | None = None
    registrationNumber: str | None = None
    taxRegistrationId: str | None = None


class InvoiceLine(BaseModel):
    description: str | None = None
    quantity: Decimal | None = None
    unitPrice: Decimal | None = None
    unitOfMeasure: str | None = None
    vatRate: Decimal | None = None
    vatCategory: str | None = None
    lineTotal: Decimal | None = None
    confidence: float | None = None
    source: str | None = None


class InvoiceNormalized(BaseModel):
    invoiceNumber: str | None = None
    # A date that is still a string after normalization could not be parsed.
    issueDate: date | str | None = None
    dueDate: date | str | None = None
    currency: str | None = None
    supplier: Party | None = None
    customer: Party | None = None
    paymentReference: str | None = None
    iban: str | None = None
    bic: str | None = None
    lines: list[InvoiceLine] = []
    subtotalExclVat: Decimal | None = None
    vatTotal: Decimal | None = None
    totalInclVat: Decimal | None = None
    sourceType: Literal["pdf", "xlsx"] | None = None
    sourceFile: str | None = None
    extractionConfidence: float | None = None


class MappingField(BaseModel):
    field: str
    value: Any = None
    source: str
    confidence: float
    rawValue: str | None = None


class LocalizedMessage(BaseModel):
    nl: str
    en: str


class ValidationError(BaseModel):
    """A single finding produced by a validator. Never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    code: str
    severity: Severity
    message: LocalizedMessage
    fieldPath: str | None = None
    suggestedFix: str | None = None


class ValidationReport(BaseModel):
    errors: list[ValidationError]
    warnings: list[ValidationError]
    isValid: bool


def build_validation_report(findings: list[ValidationError]) -> ValidationReport:
    errors = [f for f in findings if f.severity == "error"]
    warnings = [f for f in findings if f.severity == "warning"]
    return ValidationReport(errors=errors, warnings=warnings, isValid=not errors)


class DataQualityScore(BaseModel):
    score: float
    level: QualityLevel
    issues: list[str] = []


class MappingReport(BaseModel):
    fields: list[MappingField] = []
    missingRequired: list[str] = []
    warnings: list[str] = []
    dataQuality: DataQualityScore | None = None


class ConversionResult(BaseModel):
    ublXml: str
    validationReport: ValidationReport
    mappingReport: MappingReport
    normalizedInvoice: InvoiceNormalized
    aiUsed: bool = False
