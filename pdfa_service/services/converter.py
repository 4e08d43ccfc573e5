from __future__ import annotations

import base64
import binascii
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Union

from loguru import logger

from pdfa_service.core.config import DEFAULT_BASE_PARAMETERS
from pdfa_service.core.startup import ResolvedToolConfig
from pdfa_service.services.executor import ExecutionResult, Executor, ProcessLaunchError
from pdfa_service.services.files import ScratchFile, TempFileManager


UNEXPECTED_ERROR_MESSAGE = (
    "An unexpected error occurred during conversion. Please retry or contact support."
)


class ErrorKind(str, Enum):
    INVALID_INPUT = "invalid_input"
    TIMEOUT = "timeout"
    TOOL_FAILURE = "tool_failure"
    OUTPUT_MISSING = "output_missing"
    CANCELLED = "cancelled"
    UNEXPECTED = "unexpected"


@dataclass(frozen=True, slots=True)
class ConversionSuccess:
    output_bytes: bytes

    @property
    def base64_output(self) -> str:
        return base64.b64encode(self.output_bytes).decode("ascii")


@dataclass(frozen=True, slots=True)
class ConversionFailure:
    kind: ErrorKind
    message: str


ConversionOutcome = Union[ConversionSuccess, ConversionFailure]


def build_arguments(base_parameters: str, input_path: str, output_path: str) -> str:
    """Append the output and input paths the way Ghostscript expects them.

    ``-sOutputFile`` must precede the input file; both paths are quoted.
    """
    base = base_parameters if base_parameters.strip() else DEFAULT_BASE_PARAMETERS
    return f'{base.rstrip()} -sOutputFile="{output_path}" "{input_path}"'


def decode_base64(data: str) -> bytes:
    # line-wrapped payloads (MIME, `base64` CLI) are accepted; anything else non-alphabet is not
    try:
        return base64.b64decode("".join(data.split()), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("invalid base64 format") from exc


class ConversionOrchestrator:
    """Turn a base64 PDF into a base64 PDF/A via the external tool.

    Every call owns two scratch files (input and output) which are deleted on
    every exit path before ``convert`` returns. Failures come back as a
    :class:`ConversionFailure`; no exception escapes ``convert``.
    """

    def __init__(
        self,
        config: ResolvedToolConfig,
        files: TempFileManager,
        executor: Executor,
    ) -> None:
        self._config = config
        self._files = files
        self._executor = executor

    def convert(
        self,
        base64_input: str | None,
        cancel_event: threading.Event | None = None,
    ) -> ConversionOutcome:
        if not base64_input:
            return ConversionFailure(ErrorKind.INVALID_INPUT, "Base64 PDF string cannot be null or empty")

        try:
            pdf_bytes = decode_base64(base64_input)
        except ValueError as exc:
            return ConversionFailure(ErrorKind.INVALID_INPUT, str(exc))
        if not pdf_bytes:
            return ConversionFailure(ErrorKind.INVALID_INPUT, "Decoded PDF is empty")

        input_file = self._files.create_scratch_file(".pdf")
        output_file = self._files.create_scratch_file(".pdf")
        try:
            logger.info("Starting PDF conversion. Input size: {} KB", len(pdf_bytes) // 1024)
            return self._run(pdf_bytes, input_file, output_file, cancel_event)
        except Exception:
            logger.exception("Unexpected error during PDF conversion")
            return ConversionFailure(ErrorKind.UNEXPECTED, UNEXPECTED_ERROR_MESSAGE)
        finally:
            self._files.delete_if_exists(input_file)
            self._files.delete_if_exists(output_file)

    def _run(
        self,
        pdf_bytes: bytes,
        input_file: ScratchFile,
        output_file: ScratchFile,
        cancel_event: threading.Event | None,
    ) -> ConversionOutcome:
        self._files.write_bytes(input_file, pdf_bytes)

        arguments = build_arguments(self._config.base_parameters, str(input_file), str(output_file))
        logger.info("Executing Ghostscript with timeout: {} seconds", self._config.timeout_seconds)
        try:
            result = self._executor.run(
                self._config.executable_path,
                arguments,
                self._config.timeout_seconds,
                cancel_event,
            )
        except ProcessLaunchError:
            logger.exception("Ghostscript could not be run")
            return ConversionFailure(ErrorKind.UNEXPECTED, UNEXPECTED_ERROR_MESSAGE)
        logger.info("Ghostscript finished in {}ms. Exit code: {}", result.duration_ms, result.exit_code)

        failure = self._check_result(result, output_file)
        if failure is not None:
            return failure

        converted = self._files.read_bytes(output_file)
        logger.info("PDF conversion completed. Output size: {} KB", len(converted) // 1024)
        return ConversionSuccess(output_bytes=converted)

    def _check_result(self, result: ExecutionResult, output_file: ScratchFile) -> ConversionFailure | None:
        # timed_out wins over any exit code; the sentinel is not a real status.
        if result.timed_out:
            return ConversionFailure(
                ErrorKind.TIMEOUT,
                f"Ghostscript conversion exceeded timeout of {self._config.timeout_seconds} seconds",
            )
        if result.cancelled:
            return ConversionFailure(ErrorKind.CANCELLED, "Conversion was cancelled before completion")
        if result.exit_code != 0:
            logger.error(
                "Ghostscript failed with exit code {}. Error: {}", result.exit_code, result.stderr
            )
            return ConversionFailure(
                ErrorKind.TOOL_FAILURE,
                f"Ghostscript conversion failed with exit code {result.exit_code}: {result.stderr.strip()}",
            )
        if not self._files.exists(output_file):
            return ConversionFailure(
                ErrorKind.OUTPUT_MISSING, "Conversion completed but output file was not created"
            )
        if result.stdout.strip():
            logger.debug("Ghostscript output: {}", result.stdout)
        return None
