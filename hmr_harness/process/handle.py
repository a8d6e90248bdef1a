"""
HMR Harness Process Handles

Capability interface over a spawned OS process, plus the asyncio-backed
implementation used for real dev servers.
"""

from __future__ import annotations

import asyncio
import os
import signal
import sys
from typing import AsyncIterator, Optional, Protocol, runtime_checkable

import structlog

logger = structlog.get_logger(__name__)


@runtime_checkable
class ProcessHandle(Protocol):
    """What the orchestrator needs from a running process."""

    @property
    def pid(self) -> Optional[int]: ...

    @property
    def returncode(self) -> Optional[int]: ...

    def stdout_lines(self) -> AsyncIterator[str]: ...

    def stderr_lines(self) -> AsyncIterator[str]: ...

    def terminate(self) -> None: ...

    def kill(self) -> None: ...

    async def wait(self) -> int: ...


async def _read_lines(stream: Optional[asyncio.StreamReader]) -> AsyncIterator[str]:
    if stream is None:
        return
    while True:
        line = await stream.readline()
        if not line:
            # EOF - process closed the pipe
            break
        yield line.decode("utf-8", errors="replace").rstrip("\r\n")


class AsyncioProcessHandle:
    """
    ProcessHandle over ``asyncio.subprocess.Process``.

    The process is expected to run in its own session (``start_new_session``)
    so that signals reach the package-manager wrapper and the actual dev
    server it forks.
    """

    def __init__(self, process: asyncio.subprocess.Process, process_group: bool = True):
        self._process = process
        self._process_group = process_group and sys.platform != "win32"

    @classmethod
    async def spawn(
        cls,
        command: str,
        args: list[str],
        cwd: Optional[str] = None,
        env: Optional[dict[str, str]] = None,
    ) -> "AsyncioProcessHandle":
        """
        Start a process with piped stdout/stderr.

        Raises:
            FileNotFoundError: If the command does not exist
            PermissionError: If the command is not executable
        """
        full_env = os.environ.copy()
        full_env.update(env or {})

        kwargs = {}
        if sys.platform != "win32":
            kwargs["start_new_session"] = True

        process = await asyncio.create_subprocess_exec(
            command,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env=full_env,
            **kwargs,
        )
        return cls(process)

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode

    def stdout_lines(self) -> AsyncIterator[str]:
        return _read_lines(self._process.stdout)

    def stderr_lines(self) -> AsyncIterator[str]:
        return _read_lines(self._process.stderr)

    def terminate(self) -> None:
        self._signal(signal.SIGTERM)

    def kill(self) -> None:
        self._signal(signal.SIGKILL if sys.platform != "win32" else signal.SIGTERM)

    async def wait(self) -> int:
        return await self._process.wait()

    def _signal(self, sig: int) -> None:
        if self._process.returncode is not None:
            return

        if self._process_group:
            try:
                os.killpg(os.getpgid(self._process.pid), sig)
                return
            except (ProcessLookupError, PermissionError):
                # Group already gone or not ours; fall back to the direct child
                pass

        try:
            self._process.send_signal(sig)
        except ProcessLookupError:
            pass
