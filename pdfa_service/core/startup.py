"""Locate the Ghostscript executable before the service accepts traffic.

Resolution order, first existing file wins:

1. ``GHOSTSCRIPT_EXECUTABLE_PATH``
2. the platform's versioned install path built from ``GHOSTSCRIPT_VERSION``
3. the platform's default install path
4. an OS search (``where`` on Windows, ``which -a`` elsewhere)

Nothing found means the service refuses to start.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from pdfa_service.core.config import ConfigurationError, Settings
from pdfa_service.services.executor import Executor, ProcessLaunchError


DEFAULT_VERSION = "10.06.0"
SEARCH_TIMEOUT_SEC = 30


class GhostscriptNotFoundError(ConfigurationError):
    pass


@dataclass(frozen=True, slots=True)
class PlatformDefaults:
    versioned_path: str
    fallback_path: str
    search_command: str
    search_arguments: str

    def path_for_version(self, version: str) -> str:
        return self.versioned_path.format(version=version)


WINDOWS_DEFAULTS = PlatformDefaults(
    versioned_path=r"C:\Program Files\gs\gs{version}\bin\gswin64c.exe",
    fallback_path=rf"C:\Program Files\gs\gs{DEFAULT_VERSION}\bin\gswin64c.exe",
    search_command="where",
    search_arguments="gswin64c.exe",
)

POSIX_DEFAULTS = PlatformDefaults(
    versioned_path="/opt/homebrew/Cellar/ghostscript/{version}/bin/gs",
    fallback_path="/usr/bin/gs",
    search_command="which",
    search_arguments="-a gs",
)


def platform_defaults(os_name: str | None = None) -> PlatformDefaults:
    return WINDOWS_DEFAULTS if (os_name or os.name) == "nt" else POSIX_DEFAULTS


@dataclass(frozen=True, slots=True)
class ResolvedToolConfig:
    executable_path: str
    base_parameters: str
    timeout_seconds: int
    temp_directory: str


class StartupResolver:
    def __init__(self, executor: Executor, *, defaults: PlatformDefaults | None = None) -> None:
        self._executor = executor
        self._defaults = defaults or platform_defaults()

    def resolve(self, settings: Settings) -> ResolvedToolConfig:
        executable = self.locate_executable(settings)
        if settings.timeout_seconds <= 0:
            raise ConfigurationError(
                f"Invalid GHOSTSCRIPT_TIMEOUT_SECONDS '{settings.timeout_seconds}'. Must be a positive integer."
            )
        config = ResolvedToolConfig(
            executable_path=executable,
            base_parameters=settings.base_parameters,
            timeout_seconds=settings.timeout_seconds,
            temp_directory=settings.temp_directory,
        )
        logger.info(
            "Resolved Ghostscript at {} (timeout {}s, scratch {})",
            config.executable_path,
            config.timeout_seconds,
            config.temp_directory,
        )
        return config

    def locate_executable(self, settings: Settings) -> str:
        checked: list[str] = []
        candidates: list[str] = []
        if settings.executable_path:
            candidates.append(settings.executable_path)
        if settings.version:
            candidates.append(self._defaults.path_for_version(settings.version))
        candidates.append(self._defaults.fallback_path)

        for candidate in candidates:
            checked.append(candidate)
            if Path(candidate).is_file():
                return candidate
            logger.debug("Ghostscript not found at {}", candidate)

        for candidate in self._search_path():
            checked.append(candidate)
            if Path(candidate).is_file():
                return candidate

        raise GhostscriptNotFoundError(
            f"Ghostscript executable not found. Checked {', '.join(repr(p) for p in checked)}. "
            "Set GHOSTSCRIPT_EXECUTABLE_PATH or install Ghostscript."
        )

    def _search_path(self) -> list[str]:
        try:
            result = self._executor.run(
                self._defaults.search_command,
                self._defaults.search_arguments,
                SEARCH_TIMEOUT_SEC,
            )
        except ProcessLaunchError as exc:
            logger.warning("Executable search via {} failed: {}", self._defaults.search_command, exc)
            return []
        if result.timed_out or result.exit_code != 0:
            return []
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]
