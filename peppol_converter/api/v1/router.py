import logging
import time
import uuid

from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from peppol_converter.api.v1.schemas import InvoiceNormalized
from peppol_converter.core.config import get_settings
from peppol_converter.core.security import verify_api_key
from peppol_converter.services.pipeline import ExtractionError
from peppol_converter.services.upload import (
    FileTooLargeError,
    InvalidContentTypeError,
    InvalidMagicBytesError,
    UploadValidationError,
    validate_upload,
)

logger = logging.getLogger(__name__)

_UPLOAD_STATUS = {
    InvalidContentTypeError: 415,
    FileTooLargeError: 413,
    InvalidMagicBytesError: 400,
}

router = APIRouter(dependencies=[Depends(verify_api_key)])


@router.post("/convert")
async def convert(file: UploadFile, request: Request) -> JSONResponse:
    request_id = str(uuid.uuid4())
    start = time.monotonic()
    status_code = 500
    file_size_bytes: int | None = None
    source_type: str | None = None
    ai_used = False
    error_count: int | None = None
    warning_count: int | None = None

    try:
        settings = get_settings()
        file_bytes = await file.read()
        file_size_bytes = len(file_bytes)
        try:
            validate_upload(file.content_type, file_bytes, settings.max_file_size_mb)
        except UploadValidationError as e:
            status_code = _UPLOAD_STATUS[type(e)]
            raise HTTPException(status_code=status_code, detail=str(e)) from e

        pipeline = request.app.state.pipeline
        try:
            result = await run_in_threadpool(
                pipeline.run, file_bytes, file.content_type, file.filename or "upload"
            )
        except ExtractionError as e:
            status_code = 422
            raise HTTPException(status_code=422, detail=str(e)) from e

        source_type = result.normalizedInvoice.sourceType
        ai_used = result.aiUsed
        error_count = len(result.validationReport.errors)
        warning_count = len(result.validationReport.warnings)
        status_code = 200
        return JSONResponse(
            result.model_dump(mode="json"),
            status_code=200,
            headers={"X-Request-Id": request_id},
        )
    finally:
        duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "convert complete",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": str(request.url.path),
                "status_code": status_code,
                "file_size_bytes": file_size_bytes,
                "source_type": source_type,
                "ai_used": ai_used,
                "error_count": error_count,
                "warning_count": warning_count,
                "duration_ms": duration_ms,
            },
        )


@router.post("/render")
async def render(invoice: InvoiceNormalized, request: Request) -> JSONResponse:
    request_id = str(uuid.uuid4())
    result = await run_in_threadpool(request.app.state.pipeline.render, invoice)
    logger.info(
        "render complete",
        extra={
            "request_id": request_id,
            "error_count": len(result.validationReport.errors),
            "warning_count": len(result.validationReport.warnings),
        },
    )
    return JSONResponse(
        result.model_dump(mode="json"),
        status_code=200,
        headers={"X-Request-Id": request_id},
    )
