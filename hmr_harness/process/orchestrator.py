"""
HMR Harness Process Orchestrator

Spawns an integration's dev server inside its workspace, wires verbose
log relaying, and stops it again without blocking teardown.
"""

from __future__ import annotations

import socket
from pathlib import Path
from typing import Awaitable, Callable, Optional, Union

import structlog

from hmr_harness.config import HarnessSettings, get_settings
from hmr_harness.errors import PortInUseError, ServerStartError
from hmr_harness.process.handle import AsyncioProcessHandle, ProcessHandle
from hmr_harness.process.server import ServerProcess
from hmr_harness.registry import IntegrationConfig

logger = structlog.get_logger(__name__)

Spawner = Callable[[str, list[str], str], Awaitable[ProcessHandle]]


async def _default_spawner(command: str, args: list[str], cwd: str) -> ProcessHandle:
    return await AsyncioProcessHandle.spawn(command, args, cwd=cwd)


def is_port_in_use(port: int, host: str = "localhost") -> bool:
    """Check whether something already accepts connections on ``port``."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.settimeout(0.5)
        return sock.connect_ex((host, port)) == 0


class ProcessOrchestrator:
    """
    Starts and stops dev servers.

    Usage::

        orchestrator = ProcessOrchestrator(settings)
        server = await orchestrator.start(integration, workspace.path)
        await server.wait_ready(settings.ready_timeout)
        ...
        await orchestrator.stop(server)
    """

    def __init__(
        self,
        settings: Optional[HarnessSettings] = None,
        spawner: Optional[Spawner] = None,
        check_port: bool = True,
    ):
        self.settings = settings or get_settings()
        self._spawner = spawner or _default_spawner
        self._check_port = check_port

    async def start(
        self,
        integration: IntegrationConfig,
        working_directory: Union[str, Path],
    ) -> ServerProcess:
        """
        Spawn the dev server for ``integration`` with ``working_directory``
        as its current directory.

        Returns as soon as the process is running and its output is being
        consumed; await ``ServerProcess.wait_ready`` for the ready line.

        Raises:
            PortInUseError: If the integration's port is already taken
            ServerStartError: If the process cannot be spawned
        """
        cwd = str(working_directory)

        if self._check_port and is_port_in_use(integration.listen_port, self.settings.host):
            raise PortInUseError(integration.listen_port)

        command = integration.resolve_command(cwd)
        args = list(integration.launch_args)

        logger.info(
            "server_starting",
            integration=integration.id,
            command=command,
            args=args,
            cwd=cwd,
        )

        try:
            handle = await self._spawner(command, args, cwd)
        except FileNotFoundError as e:
            raise ServerStartError(f"Command not found: {command}", cause=e)
        except PermissionError as e:
            raise ServerStartError(f"Permission denied: {command}", cause=e)
        except OSError as e:
            raise ServerStartError(f"Failed to start {command}: {e}", cause=e)

        server = ServerProcess(integration, handle)
        if self.settings.debug:
            self.attach_relay(server)
        server.start()

        logger.debug("server_spawned", integration=integration.id, pid=server.pid)
        return server

    def attach_relay(self, server: ServerProcess) -> None:
        """Relay server output to the harness log."""
        relay = logger.bind(integration=server.integration.id)
        server.stdout.subscribe(lambda line: relay.info("server_log", line=line))
        server.stderr.subscribe(lambda line: relay.warning("server_error_log", line=line))

    async def stop(self, server: ServerProcess) -> Optional[int]:
        """
        Stop a dev server: detach relays, SIGTERM, then SIGKILL after the
        configured grace period.
        """
        server.detach_listeners()
        return await server.stop(grace_period=self.settings.stop_grace_period)
