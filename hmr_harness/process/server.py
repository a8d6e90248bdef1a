"""
HMR Harness Server Process

A running dev server: its output streams and the single-resolution
ready signal driven by scanning stdout lines.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Optional

import structlog

from hmr_harness.errors import ReadyTimeoutError, ServerExitedError
from hmr_harness.process.handle import ProcessHandle
from hmr_harness.process.logstream import LogStream
from hmr_harness.registry import IntegrationConfig

logger = structlog.get_logger(__name__)


class ServerState(Enum):
    """
    Server lifecycle.

    STARTING -> READY -> STOPPED
        |                  ^
        v                  |
      EXITED --------------+
    """
    STARTING = "starting"
    READY = "ready"
    EXITED = "exited"    # Exited on its own
    STOPPED = "stopped"  # Stopped by the harness


class ServerProcess:
    """
    Dev server bound to one workspace.

    Output pumps start as soon as the object is started, so no early line
    is lost. ``ready`` resolves exactly once, with the first stdout line
    matching the integration's ready pattern; later matching lines are
    ignored. Stderr is relayed but never satisfies readiness.
    """

    def __init__(self, integration: IntegrationConfig, handle: ProcessHandle):
        self.integration = integration
        self.handle = handle
        self.stdout = LogStream(f"{integration.id}:stdout")
        self.stderr = LogStream(f"{integration.id}:stderr")
        self.state = ServerState.STARTING

        loop = asyncio.get_running_loop()
        self.ready: asyncio.Future[str] = loop.create_future()
        self._pumps: list[asyncio.Task] = []

    def start(self) -> None:
        """Begin consuming stdout and stderr."""
        if self._pumps:
            return
        self._pumps = [
            asyncio.create_task(self._pump_stdout()),
            asyncio.create_task(self._pump_stderr()),
        ]

    @property
    def pid(self) -> Optional[int]:
        return self.handle.pid

    @property
    def returncode(self) -> Optional[int]:
        return self.handle.returncode

    @property
    def running(self) -> bool:
        return self.handle.returncode is None and self.state not in (
            ServerState.EXITED,
            ServerState.STOPPED,
        )

    @property
    def ready_line(self) -> Optional[str]:
        if self.ready.done() and not self.ready.cancelled() and self.ready.exception() is None:
            return self.ready.result()
        return None

    async def wait_ready(self, timeout: float) -> str:
        """
        Wait for the ready line.

        Raises:
            ReadyTimeoutError: If no stdout line matched within ``timeout``
            ServerExitedError: If the process exited before matching
        """
        try:
            return await asyncio.wait_for(asyncio.shield(self.ready), timeout=timeout)
        except asyncio.TimeoutError:
            raise ReadyTimeoutError(
                self.integration.id,
                self.integration.ready_pattern.pattern,
                timeout,
            ) from None

    def detach_listeners(self) -> None:
        self.stdout.clear()
        self.stderr.clear()

    async def stop(self, grace_period: float = 2.0) -> Optional[int]:
        """
        Terminate the process, force-killing after ``grace_period`` seconds.

        Returns:
            The exit code, if the process could be reaped
        """
        if self.state == ServerState.STOPPED:
            return self.handle.returncode

        logger.debug("server_stopping", integration=self.integration.id, pid=self.pid)

        returncode = self.handle.returncode
        if returncode is None:
            self.handle.terminate()
            try:
                returncode = await asyncio.wait_for(self.handle.wait(), timeout=grace_period)
            except asyncio.TimeoutError:
                logger.warning(
                    "server_kill_after_grace",
                    integration=self.integration.id,
                    grace_period=grace_period,
                )
                self.handle.kill()
                returncode = await self.handle.wait()

        await self._cancel_pumps()

        if not self.ready.done():
            self.ready.cancel()
        elif not self.ready.cancelled():
            # Mark an unobserved ServerExitedError as retrieved
            self.ready.exception()

        self.state = ServerState.STOPPED
        logger.debug(
            "server_stopped",
            integration=self.integration.id,
            returncode=returncode,
        )
        return returncode

    async def _cancel_pumps(self) -> None:
        for task in self._pumps:
            if not task.done():
                task.cancel()
        for task in self._pumps:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._pumps = []

    def _scan(self, line: str) -> None:
        if self.ready.done():
            return
        if self.integration.ready_pattern.search(line):
            self.state = ServerState.READY
            self.ready.set_result(line)
            logger.info(
                "server_ready",
                integration=self.integration.id,
                port=self.integration.listen_port,
            )

    async def _pump_stdout(self) -> None:
        async for line in self.handle.stdout_lines():
            self.stdout.publish(line)
            self._scan(line)

        # stdout closed: the server is gone or about to be
        returncode = await self.handle.wait()
        if self.state != ServerState.STOPPED:
            self.state = ServerState.EXITED
        if not self.ready.done():
            self.ready.set_exception(ServerExitedError(self.integration.id, returncode))
        logger.info(
            "server_exited",
            integration=self.integration.id,
            returncode=returncode,
        )

    async def _pump_stderr(self) -> None:
        async for line in self.handle.stderr_lines():
            self.stderr.publish(line)
