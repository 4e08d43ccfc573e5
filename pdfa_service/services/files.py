from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

from loguru import logger


class ScratchDirectoryError(RuntimeError):
    """The managed scratch directory could not be created."""


@dataclass(slots=True)
class ScratchFile:
    path: Path
    exists_on_disk: bool = False

    def __str__(self) -> str:
        return str(self.path)


class TempFileManager:
    """Hands out uniquely named scratch files under one managed directory.

    Paths are only reserved, never created, by ``create_scratch_file``. Deletion
    is best-effort: a failure is logged and swallowed so that cleanup can never
    replace the outcome of the operation that owned the file.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.error("Failed to create temp directory: {}", self.directory)
            raise ScratchDirectoryError(f"Failed to create temp directory: {self.directory}") from exc
        logger.info("Temp directory initialized: {}", self.directory)

    def create_scratch_file(self, extension: str = ".pdf") -> ScratchFile:
        scratch = ScratchFile(path=self.directory / f"{uuid4()}{extension}")
        logger.debug("Reserved scratch path: {}", scratch.path)
        return scratch

    def write_bytes(self, scratch: ScratchFile, data: bytes) -> None:
        try:
            scratch.path.write_bytes(data)
        except OSError:
            logger.error("Failed to write bytes to file: {}", scratch.path)
            raise
        scratch.exists_on_disk = True
        logger.debug("Wrote {} bytes to file: {}", len(data), scratch.path)

    def read_bytes(self, scratch: ScratchFile) -> bytes:
        try:
            data = scratch.path.read_bytes()
        except OSError:
            logger.error("Failed to read bytes from file: {}", scratch.path)
            raise
        logger.debug("Read {} bytes from file: {}", len(data), scratch.path)
        return data

    def exists(self, scratch: ScratchFile) -> bool:
        try:
            scratch.exists_on_disk = scratch.path.is_file()
        except OSError:
            scratch.exists_on_disk = False
        return scratch.exists_on_disk

    def delete_if_exists(self, scratch: ScratchFile) -> None:
        try:
            scratch.path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Failed to delete file: {} ({})", scratch.path, exc)
            return
        scratch.exists_on_disk = False
        logger.debug("Deleted file: {}", scratch.path)
