"""Package-manager subprocesses for generated projects."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import sys
from collections import deque
from typing import TypeAlias
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

from carecanvas.config import (
    DEFAULT_DEV_COMMAND,
    DEFAULT_INSTALL_COMMAND,
    DEFAULT_STARTUP_TIMEOUT_SECONDS,
)
from carecanvas.core.errors import DevServerExited, InstallFailed, StartupTimeout

logger = logging.getLogger(__name__)

ReadinessCheck: TypeAlias = Callable[[str], bool]
ReadinessFactory: TypeAlias = Callable[[int], ReadinessCheck]

READY_MARKERS = ("Ready in", "Local:")
_EXIT_DETAIL_LINES = 20


def default_readiness(port: int) -> ReadinessCheck:
    """Match the lines Next.js-style dev servers print once they listen.

    This is a heuristic over free-form output. A server that is up but words
    its banner differently is only caught by the startup timeout.
    """
    markers = (*READY_MARKERS, f"localhost:{port}")

    def check(line: str) -> bool:
        return any(marker in line for marker in markers)

    return check


@dataclass(slots=True)
class LogRead:
    """Dev server log read payload with cursor metadata."""

    logs: list[str]
    cursor: int
    start_cursor: int
    end_cursor: int
    truncated: bool
    has_more: bool


class DevServerHandle:
    """A launched dev server whose output is drained into a bounded buffer."""

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        *,
        name: str,
        ready: ReadinessCheck,
        max_log_lines: int = 1000,
        kill_group: bool = False,
    ) -> None:
        self._process = process
        self._name = name
        self._ready_check = ready
        self._ready = asyncio.Event()
        self._kill_group = kill_group
        self._logs: deque[str] = deque(maxlen=max_log_lines)
        self._next_log_cursor = 0
        self._readers = [
            asyncio.create_task(self._drain(stream))
            for stream in (process.stdout, process.stderr)
            if stream is not None
        ]

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    @property
    def running(self) -> bool:
        return self._process.returncode is None

    @property
    def ready(self) -> bool:
        return self._ready.is_set()

    async def wait_until_ready(self, timeout_seconds: float) -> None:
        """Return once output matches the readiness check.

        Raises `StartupTimeout` (after killing the process) or `DevServerExited`.
        A cancelled wait kills the process before the cancellation propagates.
        """
        ready_waiter = asyncio.ensure_future(self._ready.wait())
        exit_waiter = asyncio.ensure_future(self._process.wait())
        try:
            await asyncio.wait(
                {ready_waiter, exit_waiter},
                timeout=timeout_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            await self.kill()
            raise
        finally:
            ready_waiter.cancel()
            exit_waiter.cancel()

        if self._ready.is_set():
            return
        if self._process.returncode is not None:
            if self._kill_group:
                # The launcher is gone but the server it forked may still hold the port.
                self._signal_group()
            await self._join_readers()
            detail = "\n".join(list(self._logs)[-_EXIT_DETAIL_LINES:])
            raise DevServerExited(self._process.returncode, detail=detail)
        await self.kill()
        raise StartupTimeout(timeout_seconds)

    async def kill(self) -> int | None:
        """Force-kill the server. Safe to call on an already exited process."""
        if self._process.returncode is None:
            self._signal_kill()
            await self._process.wait()
        await self._join_readers()
        return self._process.returncode

    async def wait(self) -> int:
        returncode = await self._process.wait()
        await self._join_readers()
        return returncode

    def logs(self, *, limit: int | None = None) -> list[str]:
        return self.read_logs(limit=limit).logs

    def read_logs(self, *, cursor: int | None = None, limit: int | None = None) -> LogRead:
        entries = list(self._logs)
        end_cursor = self._next_log_cursor
        first_cursor = end_cursor - len(entries)

        if cursor is None:
            if limit is None or limit <= 0:
                logs = entries
                start_cursor = first_cursor
            else:
                logs = entries[-limit:]
                start_cursor = end_cursor - len(logs)
            return LogRead(
                logs=logs,
                cursor=end_cursor,
                start_cursor=start_cursor,
                end_cursor=end_cursor,
                truncated=False,
                has_more=False,
            )

        requested_cursor = max(0, cursor)
        truncated = requested_cursor < first_cursor
        effective_cursor = min(max(requested_cursor, first_cursor), end_cursor)
        logs = entries[effective_cursor - first_cursor :]
        if limit is not None and limit > 0:
            logs = logs[:limit]
        next_cursor = effective_cursor + len(logs)

        return LogRead(
            logs=logs,
            cursor=next_cursor,
            start_cursor=effective_cursor,
            end_cursor=end_cursor,
            truncated=truncated,
            has_more=next_cursor < end_cursor,
        )

    async def _drain(self, stream: asyncio.StreamReader) -> None:
        async for raw in stream:
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            self._logs.append(line)
            self._next_log_cursor += 1
            logger.debug("[%s] %s", self._name, line)
            if not self._ready.is_set() and self._ready_check(line):
                self._ready.set()

    async def _join_readers(self) -> None:
        if not self._readers:
            return
        _, pending = await asyncio.wait(self._readers, timeout=1.0)
        for reader in pending:
            reader.cancel()
        self._readers = []

    def _signal_kill(self) -> None:
        if self._kill_group and self._signal_group():
            return
        with contextlib.suppress(ProcessLookupError):
            self._process.kill()

    def _signal_group(self) -> bool:
        # npm forks the real server; kill the whole session when we own it.
        if sys.platform == "win32":
            return False
        try:
            os.killpg(self._process.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            return False
        return True


class ProcessRunner:
    """Run dependency installs and dev servers inside a project directory."""

    def __init__(
        self,
        *,
        install_command: Sequence[str] = DEFAULT_INSTALL_COMMAND,
        dev_command: Sequence[str] = DEFAULT_DEV_COMMAND,
        startup_timeout_seconds: float = DEFAULT_STARTUP_TIMEOUT_SECONDS,
        readiness: ReadinessFactory | None = None,
        max_log_lines: int = 1000,
        new_session: bool = sys.platform != "win32",
    ) -> None:
        self._install_command = tuple(install_command)
        self._dev_command = tuple(dev_command)
        self._startup_timeout_seconds = startup_timeout_seconds
        self._readiness = readiness or default_readiness
        self._max_log_lines = max_log_lines
        self._new_session = new_session

    async def install(self, project_path: Path) -> str:
        command = " ".join(self._install_command)
        try:
            process = await asyncio.create_subprocess_exec(
                *self._install_command,
                cwd=str(project_path),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            msg = f"{command} failed to start: {exc}"
            raise InstallFailed(msg, output=str(exc)) from exc

        stdout, stderr = await process.communicate()
        out = stdout.decode("utf-8", errors="replace")
        err = stderr.decode("utf-8", errors="replace")
        if process.returncode != 0:
            output = (err or out).strip()
            msg = f"{command} failed: {output}"
            raise InstallFailed(msg, output=output, returncode=process.returncode)
        return out

    async def launch(self, project_path: Path, port: int) -> DevServerHandle:
        command = [part.format(port=port) for part in self._dev_command]
        env = {**os.environ, "PORT": str(port)}
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=str(project_path),
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=self._new_session,
            )
        except OSError as exc:
            raise DevServerExited(None, detail=str(exc)) from exc

        handle = DevServerHandle(
            process,
            name=project_path.name,
            ready=self._readiness(port),
            max_log_lines=self._max_log_lines,
            kill_group=self._new_session,
        )
        await handle.wait_until_ready(self._startup_timeout_seconds)
        logger.info("Dev server for %s ready on port %d (pid %d)", project_path.name, port, handle.pid)
        return handle
