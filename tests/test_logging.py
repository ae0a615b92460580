import json
import logging
from datetime import date
from decimal import Decimal

import pytest
from conftest import TEST_API_KEY
from httpx import AsyncClient

from peppol_converter.core.logging import JsonFormatter, configure_logging, log_stage
from peppol_converter.services.upload import PDF_MIME
from tests.utils import make_pdf_bytes


def _record(msg: str = "test message", level: int = logging.INFO) -> logging.LogRecord:
    return logging.LogRecord(
        name="test",
        level=level,
        pathname="",
        lineno=0,
        msg=msg,
        args=(),
        exc_info=None,
    )


def test_json_formatter_emits_valid_json() -> None:
    parsed = json.loads(JsonFormatter().format(_record()))

    assert parsed["message"] == "test message"
    assert parsed["level"] == "INFO"
    assert parsed["logger"] == "test"
    assert "timestamp" in parsed


def test_json_formatter_includes_extra_fields() -> None:
    record = _record("request complete")
    record.__dict__["request_id"] = "abc123"
    record.__dict__["status_code"] = 200

    parsed = json.loads(JsonFormatter().format(record))

    assert parsed["request_id"] == "abc123"
    assert parsed["status_code"] == 200
    assert "lineno" not in parsed


def test_json_formatter_stringifies_non_json_values() -> None:
    record = _record()
    record.__dict__["amount"] = Decimal("12.50")
    record.__dict__["issue_date"] = date(2024, 3, 15)

    parsed = json.loads(JsonFormatter().format(record))

    assert parsed["amount"] == "12.50"
    assert parsed["issue_date"] == "2024-03-15"


def test_json_formatter_renders_exception_info() -> None:
    import sys

    try:
        raise ValueError("boom")
    except ValueError:
        exc_info = sys.exc_info()

    record = _record("something failed", logging.ERROR)
    record.exc_info = exc_info
    parsed = json.loads(JsonFormatter().format(record))

    assert "ValueError" in parsed["exception"]
    assert "boom" in parsed["exception"]
    assert "Traceback" in parsed["exception"]


def test_configure_logging_sets_log_level(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    from peppol_converter.core.config import get_settings

    monkeypatch.setenv("API_KEY", "test")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    get_settings.cache_clear()
    try:
        settings = get_settings()
        configure_logging(settings.log_level)
        root_logger = logging.getLogger()
        assert root_logger.level == logging.WARNING
    finally:
        get_settings.cache_clear()
        configure_logging("INFO")


def test_configure_logging_installs_one_json_handler() -> None:
    configure_logging("INFO")
    configure_logging("INFO")

    json_handlers = [
        h for h in logging.getLogger().handlers if isinstance(h.formatter, JsonFormatter)
    ]
    assert len(json_handlers) == 1


def test_log_stage_logs_duration_and_fields(caplog: pytest.LogCaptureFixture) -> None:
    logger = logging.getLogger("test.stage")

    with caplog.at_level(logging.INFO, logger="test.stage"):
        with log_stage(logger, "extract", mime_type=PDF_MIME) as stage:
            stage["line_count"] = 3

    record = next(r for r in caplog.records if r.name == "test.stage")
    assert record.getMessage() == "extract complete"
    assert record.stage == "extract"
    assert record.mime_type == PDF_MIME
    assert record.line_count == 3
    assert record.duration_ms >= 0


def test_log_stage_logs_nothing_when_body_raises(caplog: pytest.LogCaptureFixture) -> None:
    logger = logging.getLogger("test.stage")

    with caplog.at_level(logging.INFO, logger="test.stage"):
        with pytest.raises(RuntimeError):
            with log_stage(logger, "extract"):
                raise RuntimeError("boom")

    assert not [r for r in caplog.records if r.name == "test.stage"]


async def test_convert_logs_request_summary(
    client: AsyncClient, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level(logging.INFO, logger="peppol_converter.api.v1.router"):
        response = await client.post(
            "/api/v1/convert",
            headers={"X-API-Key": TEST_API_KEY},
            files={"file": ("invoice.pdf", make_pdf_bytes("Factuurnummer: A-1"), PDF_MIME)},
        )

    record = next(r for r in caplog.records if r.getMessage() == "convert complete")
    assert record.request_id == response.headers["X-Request-Id"]
    assert record.status_code == 200
    assert record.source_type == "pdf"
    assert record.ai_used is False
    assert record.error_count == 0
    assert record.path == "/api/v1/convert"


async def test_convert_logs_rejected_upload(
    client: AsyncClient, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level(logging.INFO, logger="peppol_converter.api.v1.router"):
        await client.post(
            "/api/v1/convert",
            headers={"X-API-Key": TEST_API_KEY},
            files={"file": ("invoice.txt", b"hello", "text/plain")},
        )

    record = next(r for r in caplog.records if r.getMessage() == "convert complete")
    assert record.status_code == 415
    assert record.source_type is None
