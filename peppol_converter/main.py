import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from peppol_converter.api.v1.router import router
from peppol_converter.core.config import get_settings
from peppol_converter.core.logging import configure_logging
from peppol_converter.services.ai_enhancer import AIEnhancer
from peppol_converter.services.pipeline import Pipeline

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncGenerator[None, None]:
    settings = get_settings()
    configure_logging(settings.log_level)
    enhancer = AIEnhancer(settings)
    application.state.pipeline = Pipeline(enhancer=enhancer)
    application.state.ai_enabled = settings.ai_enabled
    logger.info(
        "converter ready",
        extra={"ai_enabled": settings.ai_enabled, "model": settings.gemini_model},
    )
    yield
    enhancer.close()


app = FastAPI(title="Peppol Converter", lifespan=lifespan)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse({"error": str(exc)}, status_code=422)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse({"error": "Internal processing failure"}, status_code=500)


app.include_router(router, prefix="/api/v1")


@app.get("/health")
async def health() -> JSONResponse:
    return JSONResponse(
        {"status": "ok", "ai_enabled": getattr(app.state, "ai_enabled", False)}
    )
