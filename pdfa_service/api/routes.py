from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger

from pdfa_service.models.schemas import ConversionRequest, ConversionResponse
from pdfa_service.services.converter import (
    ConversionFailure,
    ConversionOrchestrator,
    ConversionSuccess,
    ErrorKind,
)


router = APIRouter()

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.INVALID_INPUT: status.HTTP_400_BAD_REQUEST,
    ErrorKind.TIMEOUT: status.HTTP_504_GATEWAY_TIMEOUT,
    ErrorKind.CANCELLED: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.TOOL_FAILURE: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorKind.OUTPUT_MISSING: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorKind.UNEXPECTED: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def get_orchestrator(request: Request) -> ConversionOrchestrator:
    return request.app.state.orchestrator


def _response(status_code: int, body: ConversionResponse) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True))


@router.post("/convert", response_model=ConversionResponse, status_code=status.HTTP_200_OK)
def convert(
    req: ConversionRequest,
    request: Request,
    orchestrator: ConversionOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    """Convert a base64 PDF to PDF/A-1b.

    Runs synchronously on the server's worker threads; each request gets its
    own Ghostscript process and scratch files.
    """
    logger.info("Processing PDF conversion request")
    outcome = orchestrator.convert(req.base64_pdf, cancel_event=request.app.state.shutdown_event)

    if isinstance(outcome, ConversionSuccess):
        return _response(
            status.HTTP_200_OK,
            ConversionResponse(success=True, base64_pdfa=outcome.base64_output),
        )

    return _failure_response(outcome)


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "Healthy", "timestamp": datetime.now(timezone.utc).isoformat()}


def _failure_response(failure: ConversionFailure) -> JSONResponse:
    if failure.kind is ErrorKind.INVALID_INPUT:
        logger.warning("Invalid conversion request: {}", failure.message)
    else:
        logger.error("Conversion failed ({}): {}", failure.kind.value, failure.message)
    return _response(
        STATUS_BY_KIND[failure.kind],
        ConversionResponse(success=False, error_message=failure.message),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = []
    for error in exc.errors():
        message = str(error.get("msg", "Invalid request"))
        messages.append(message.removeprefix("Value error, "))
    logger.warning("Rejected conversion request: {}", "; ".join(messages))
    return _response(
        status.HTTP_400_BAD_REQUEST,
        ConversionResponse(success=False, error_message="; ".join(messages)),
    )
