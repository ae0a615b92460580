PDF_MIME = "application/pdf"
XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

_MAGIC_BYTES = {
    PDF_MIME: b"%PDF",
    # xlsx files are zip containers
    XLSX_MIME: b"PK\x03\x04",
}


class UploadValidationError(Exception):
    pass


class InvalidContentTypeError(UploadValidationError):
    pass


class FileTooLargeError(UploadValidationError):
    pass


class InvalidMagicBytesError(UploadValidationError):
    pass


def validate_upload(
    content_type: str | None,
    file_bytes: bytes,
    max_size_mb: int,
) -> None:
    if content_type not in _MAGIC_BYTES:
        raise InvalidContentTypeError("File must be a PDF or an Excel (.xlsx) workbook")
    if len(file_bytes) > max_size_mb * 1024 * 1024:
        raise FileTooLargeError(f"File exceeds maximum size of {max_size_mb} MB")
    magic = _MAGIC_BYTES[content_type]
    if file_bytes[: len(magic)] != magic:
        raise InvalidMagicBytesError(f"File content does not match {content_type}")
