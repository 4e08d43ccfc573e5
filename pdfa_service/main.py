from __future__ import annotations

import threading
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Final

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from loguru import logger

from pdfa_service.api.middleware import CorrelationIdMiddleware, RequestSizeLimitMiddleware
from pdfa_service.api.routes import router as api_router
from pdfa_service.api.routes import validation_error_handler
from pdfa_service.core.config import get_settings
from pdfa_service.core.startup import ResolvedToolConfig, StartupResolver
from pdfa_service.services.converter import ConversionOrchestrator
from pdfa_service.services.executor import Executor, ProcessExecutor
from pdfa_service.services.files import TempFileManager


GRACEFUL_SHUTDOWN_SEC = 30


def create_app(
    tool_config: ResolvedToolConfig | None = None,
    executor: Executor | None = None,
    max_request_bytes: int | None = None,
) -> FastAPI:
    """Build the API.

    Ghostscript is resolved during startup unless ``tool_config`` is given; a
    failed resolution aborts startup instead of failing the first request.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        process_executor = executor or ProcessExecutor()
        config = tool_config or StartupResolver(process_executor).resolve(get_settings())
        files = TempFileManager(config.temp_directory)

        app.state.tool_config = config
        app.state.shutdown_event = threading.Event()
        app.state.orchestrator = ConversionOrchestrator(config, files, process_executor)
        logger.info("PDF/A conversion service ready")
        try:
            yield
        finally:
            # conversions still running in worker threads kill their Ghostscript
            app.state.shutdown_event.set()
            logger.info("PDF/A conversion service stopped")

    app = FastAPI(
        title="PDF/A Conversion API",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.add_middleware(RequestSizeLimitMiddleware, max_bytes=max_request_bytes)
    app.add_middleware(CorrelationIdMiddleware)
    app.add_exception_handler(RequestValidationError, validation_error_handler)  # type: ignore[arg-type]

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(api_router, prefix="/v1/pdfa")
    # path served by the previous implementation of this service
    app.include_router(api_router, prefix="/api/PdfaConversion", include_in_schema=False)
    return app


app: Final[FastAPI] = create_app()


def run() -> None:
    """Run the API using Uvicorn.

    Configuration errors (bad port, bad timeout, missing Ghostscript) stop the
    process before it starts listening.
    """
    import uvicorn

    from pdfa_service.core.logging import setup_logging

    settings = get_settings()
    setup_logging(settings.log_level, settings.log_dir)
    uvicorn.run(
        "pdfa_service.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        log_config=None,
        timeout_graceful_shutdown=GRACEFUL_SHUTDOWN_SEC,
    )
