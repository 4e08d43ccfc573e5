from __future__ import annotations

import os
import shlex
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import IO, Protocol

from loguru import logger


TIMEOUT_EXIT_CODE = -1
_POLL_INTERVAL_SEC = 0.1


class ProcessLaunchError(RuntimeError):
    """The external process could not be started or monitored."""


@dataclass(frozen=True, slots=True)
class ExecutionRequest:
    executable_path: str
    arguments: str
    timeout_seconds: int

    def __post_init__(self) -> None:
        if self.timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be positive, got {self.timeout_seconds}")


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    exit_code: int
    stdout: str
    stderr: str
    timed_out: bool
    duration_ms: int
    cancelled: bool = False


class Executor(Protocol):
    def run(
        self,
        executable_path: str,
        arguments: str,
        timeout_seconds: int,
        cancel_event: threading.Event | None = None,
    ) -> ExecutionResult: ...


def _build_command(request: ExecutionRequest) -> str | list[str]:
    # Windows hands the argument blob to the tool's own parser untouched.
    if os.name == "nt":
        return f"{subprocess.list2cmdline([request.executable_path])} {request.arguments}".rstrip()
    return [request.executable_path, *shlex.split(request.arguments)]


def _pump_lines(stream: IO[str], sink: list[str]) -> None:
    try:
        for line in iter(stream.readline, ""):
            sink.append(line)
    except (OSError, ValueError):  # pipe closed underneath us during a kill
        pass
    finally:
        stream.close()


def _kill_process_tree(proc: subprocess.Popen[str]) -> None:
    if os.name == "nt":
        subprocess.run(  # nosec: B603 B607 (fixed argv)
            ["taskkill", "/F", "/T", "/PID", str(proc.pid)],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=10,
            check=False,
        )
    else:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
    if proc.poll() is None:
        proc.kill()


class ProcessExecutor:
    """Run one external process under a deadline.

    stdout and stderr are drained line by line on two reader threads so that a
    chatty tool never blocks on a full pipe. The child is started in its own
    session (POSIX) so that a timeout or cancellation can kill every helper it
    spawned, not just the top-level pid.
    """

    def __init__(self, *, kill_grace_seconds: float = 3.0, reader_join_seconds: float = 2.0) -> None:
        self._kill_grace_seconds = kill_grace_seconds
        self._reader_join_seconds = reader_join_seconds

    def run(
        self,
        executable_path: str,
        arguments: str,
        timeout_seconds: int,
        cancel_event: threading.Event | None = None,
    ) -> ExecutionResult:
        request = ExecutionRequest(
            executable_path=executable_path,
            arguments=arguments,
            timeout_seconds=timeout_seconds,
        )
        return self.execute(request, cancel_event=cancel_event)

    def execute(
        self,
        request: ExecutionRequest,
        *,
        cancel_event: threading.Event | None = None,
    ) -> ExecutionResult:
        start = time.perf_counter()
        deadline = start + request.timeout_seconds
        out_lines: list[str] = []
        err_lines: list[str] = []
        readers: list[threading.Thread] = []
        proc: subprocess.Popen[str] | None = None

        logger.info("Starting process: {} {}", request.executable_path, request.arguments)
        try:
            proc = subprocess.Popen(  # nosec: B603 (no shell)
                _build_command(request),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                start_new_session=os.name == "posix",
                creationflags=getattr(subprocess, "CREATE_NO_WINDOW", 0),
            )
            for stream, sink in ((proc.stdout, out_lines), (proc.stderr, err_lines)):
                reader = threading.Thread(target=_pump_lines, args=(stream, sink), daemon=True)
                reader.start()
                readers.append(reader)

            exit_code: int | None = None
            stopped_by: str | None = None
            while exit_code is None:
                # an expired deadline is reported as a timeout even if the caller cancelled too
                remaining = deadline - time.perf_counter()
                if remaining <= 0:
                    stopped_by = "timeout"
                    break
                if cancel_event is not None and cancel_event.is_set():
                    stopped_by = "cancelled"
                    break
                try:
                    exit_code = proc.wait(timeout=min(_POLL_INTERVAL_SEC, remaining))
                except subprocess.TimeoutExpired:
                    continue

            if stopped_by is not None:
                if stopped_by == "timeout":
                    logger.warning(
                        "Process exceeded timeout of {} seconds: {}",
                        request.timeout_seconds,
                        request.executable_path,
                    )
                else:
                    logger.warning("Process cancelled by caller: {}", request.executable_path)
                self._terminate(proc)
                self._join_readers(readers)
                return ExecutionResult(
                    exit_code=TIMEOUT_EXIT_CODE,
                    stdout="".join(out_lines),
                    stderr="".join(err_lines),
                    timed_out=stopped_by == "timeout",
                    cancelled=stopped_by == "cancelled",
                    duration_ms=int((time.perf_counter() - start) * 1000),
                )

            self._join_readers(readers)
            duration_ms = int((time.perf_counter() - start) * 1000)
            logger.info("Process completed with exit code {} in {}ms", exit_code, duration_ms)
            return ExecutionResult(
                exit_code=exit_code,
                stdout="".join(out_lines),
                stderr="".join(err_lines),
                timed_out=False,
                duration_ms=duration_ms,
            )
        except Exception as exc:
            logger.opt(exception=exc).error("Error executing process: {}", request.executable_path)
            if proc is not None:
                self._terminate(proc)
            raise ProcessLaunchError(f"Process execution failed: {exc}") from exc
        finally:
            if proc is not None and proc.poll() is None:
                self._terminate(proc)

    def _terminate(self, proc: subprocess.Popen[str]) -> None:
        if proc.poll() is not None:
            return
        try:
            _kill_process_tree(proc)
        except (OSError, subprocess.SubprocessError) as exc:
            logger.warning("Error while killing process {}: {}", proc.pid, exc)
        try:
            proc.wait(timeout=self._kill_grace_seconds)
        except subprocess.TimeoutExpired:
            logger.warning("Process {} still running {}s after kill", proc.pid, self._kill_grace_seconds)

    def _join_readers(self, readers: list[threading.Thread]) -> None:
        for reader in readers:
            reader.join(timeout=self._reader_join_seconds)
