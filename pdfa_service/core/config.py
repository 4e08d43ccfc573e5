from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from functools import lru_cache


DEFAULT_BASE_PARAMETERS = (
    "-dNOPAUSE -dBATCH -dSAFER -sDEVICE=pdfwrite "
    "-dPDFA=1 -dPDFACompatibilityPolicy=1 -dCompatibilityLevel=1.4 "
    "-dEmbedAllFonts=true -dSubsetFonts=true "
    "-sColorConversionStrategy=UseDeviceIndependentColor -sProcessColorModel=DeviceRGB "
    "-dDownsampleColorImages=false -dDownsampleGrayImages=false -dDownsampleMonoImages=false "
    "-dColorImageFilter=/FlateEncode -dGrayImageFilter=/FlateEncode -dMonoImageFilter=/CCITTFaxEncode"
)


class ConfigurationError(RuntimeError):
    """Invalid configuration; the service must not start."""


def _str_from_env(name: str) -> str | None:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return None
    return raw.strip()


def _int_from_env(*names: str, default: int) -> int:
    for name in names:
        raw = _str_from_env(name)
        if raw is None:
            continue
        try:
            return int(raw)
        except ValueError:
            raise ConfigurationError(f"Invalid {name} '{raw}'. Must be an integer.") from None
    return default


@dataclass(frozen=True, slots=True)
class Settings:
    executable_path: str | None = None
    version: str | None = None
    base_parameters: str = DEFAULT_BASE_PARAMETERS
    timeout_seconds: int = 300
    temp_directory: str = os.path.join(tempfile.gettempdir(), "PdfaConversion")
    host: str = "127.0.0.1"
    port: int = 7015
    log_level: str = "INFO"
    log_dir: str | None = None
    max_input_bytes: int = 100 * 1024 * 1024  # decoded PDF size
    max_request_bytes: int = 120 * 1024 * 1024  # raw HTTP body, base64 overhead included

    def __post_init__(self) -> None:
        if self.timeout_seconds <= 0:
            raise ConfigurationError(
                f"Invalid GHOSTSCRIPT_TIMEOUT_SECONDS '{self.timeout_seconds}'. Must be a positive integer."
            )
        if not 1 <= self.port <= 65535:
            raise ConfigurationError(f"Invalid PORT '{self.port}'. Must be 1-65535.")
        if self.max_input_bytes <= 0:
            raise ConfigurationError(f"Invalid MAX_INPUT_BYTES '{self.max_input_bytes}'. Must be positive.")
        if self.max_request_bytes <= 0:
            raise ConfigurationError(f"Invalid MAX_REQUEST_BYTES '{self.max_request_bytes}'. Must be positive.")

    @staticmethod
    def from_env() -> "Settings":
        defaults = Settings()
        return Settings(
            executable_path=_str_from_env("GHOSTSCRIPT_EXECUTABLE_PATH"),
            version=_str_from_env("GHOSTSCRIPT_VERSION"),
            base_parameters=_str_from_env("GHOSTSCRIPT_BASE_PARAMETERS") or defaults.base_parameters,
            timeout_seconds=_int_from_env(
                "GHOSTSCRIPT_TIMEOUT_SECONDS",
                "GHOSTSCRIPT_GHOSTSCRIPT_TIMEOUT_SECONDS",
                default=defaults.timeout_seconds,
            ),
            temp_directory=_str_from_env("GHOSTSCRIPT_TEMP_DIRECTORY") or defaults.temp_directory,
            host=_str_from_env("HOST") or defaults.host,
            port=_int_from_env("PORT", default=defaults.port),
            log_level=(_str_from_env("LOG_LEVEL") or defaults.log_level).upper(),
            log_dir=_str_from_env("LOG_DIR"),
            max_input_bytes=_int_from_env("MAX_INPUT_BYTES", default=defaults.max_input_bytes),
            max_request_bytes=_int_from_env("MAX_REQUEST_BYTES", default=defaults.max_request_bytes),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
