"""
HMR Harness Fixture Workspaces

Isolated, writable copies of fixture projects:
- One deterministic temp directory per integration (reruns clear leftovers)
- Build output and dependency caches are never copied
- Dependencies are installed fresh inside the copy
- Removal is best-effort; failures are logged, never raised
"""

from __future__ import annotations

import asyncio
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import structlog

from hmr_harness.config import HarnessSettings, get_settings
from hmr_harness.errors import DependencyInstallError, WorkspaceError
from hmr_harness.process.handle import AsyncioProcessHandle
from hmr_harness.registry import IntegrationConfig

logger = structlog.get_logger(__name__)

# Directories regenerated inside the workspace, never copied from the fixture
COPY_EXCLUDE_DIRS = {
    "node_modules",
    "dist",
    "build",
    ".next",
    ".cache",
    ".parcel-cache",
    ".vite",
}

# Characters of install output kept on the error
INSTALL_OUTPUT_TAIL = 2000


@dataclass
class WorkspaceHandle:
    """A temporary fixture copy owned by one suite run."""
    integration_id: str
    path: Path
    source_fixture_path: Path

    def resolve(self, relative_path: str) -> Path:
        """
        Resolve a fixture-relative path inside the workspace.

        Raises:
            WorkspaceError: If the path escapes the workspace
        """
        target = (self.path / relative_path).resolve()
        if target != self.path and self.path not in target.parents:
            raise WorkspaceError(f"Path escapes workspace: {relative_path}")
        return target

    @property
    def exists(self) -> bool:
        return self.path.exists()


def _ignore(directory: str, contents: list[str]) -> set[str]:
    return {item for item in contents if item in COPY_EXCLUDE_DIRS}


class WorkspaceManager:
    """
    Materializes and destroys fixture workspaces.

    Usage::

        manager = WorkspaceManager(settings)
        handle = await manager.materialize(integration)
        ...
        await manager.destroy(handle)
    """

    def __init__(self, settings: Optional[HarnessSettings] = None):
        self.settings = settings or get_settings()

    async def materialize(self, integration: IntegrationConfig) -> WorkspaceHandle:
        """
        Copy the integration's fixture to its temp path and install
        dependencies there.

        Raises:
            WorkspaceError: If the fixture is missing or the copy fails
            DependencyInstallError: If installation fails
        """
        source = self.settings.fixture_path(integration.fixture)
        target = self.settings.workspace_path(integration.id)

        if not source.is_dir():
            raise WorkspaceError(f"Fixture not found for {integration.id!r}: {source}")

        # Leftovers from an earlier, interrupted run
        await self._remove_tree(target)

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(shutil.copytree, source, target, ignore=_ignore)
        except OSError as e:
            raise WorkspaceError(f"Failed to copy fixture {source} to {target}: {e}", cause=e)

        handle = WorkspaceHandle(
            integration_id=integration.id,
            path=target,
            source_fixture_path=source,
        )
        logger.info("workspace_copied", integration=integration.id, path=str(target))

        try:
            await self.install(handle, integration.install_command)
        except BaseException:
            # The caller never receives the handle on failure
            await self._remove_tree(target)
            raise
        return handle

    async def install(self, handle: WorkspaceHandle, command: tuple[str, ...]) -> None:
        """
        Run the dependency installer inside the workspace.

        Raises:
            DependencyInstallError: On a missing installer, non-zero exit or timeout
        """
        if not command:
            return

        logger.info("dependencies_installing", integration=handle.integration_id, command=list(command))

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=str(handle.path),
                start_new_session=sys.platform != "win32",
            )
        except FileNotFoundError as e:
            raise DependencyInstallError(f"Installer not found: {command[0]}", cause=e)
        except OSError as e:
            raise DependencyInstallError(f"Failed to start installer {command[0]}: {e}", cause=e)

        try:
            stdout, _ = await asyncio.wait_for(
                process.communicate(),
                timeout=self.settings.install_timeout,
            )
        except asyncio.TimeoutError:
            AsyncioProcessHandle(process).kill()
            await process.wait()
            raise DependencyInstallError(
                f"Dependency installation timed out after {self.settings.install_timeout:.0f}s",
                returncode=process.returncode,
            )
        except BaseException:
            # Cancelled from outside; the installer must not outlive the run
            if process.returncode is None:
                AsyncioProcessHandle(process).kill()
                await process.wait()
            raise

        output = stdout.decode("utf-8", errors="replace")
        if process.returncode != 0:
            raise DependencyInstallError(
                f"Dependency installation failed (exit {process.returncode}): "
                f"{output[-500:].strip()}",
                returncode=process.returncode,
                output=output[-INSTALL_OUTPUT_TAIL:],
            )

        logger.info("dependencies_installed", integration=handle.integration_id)

    async def destroy(self, handle: WorkspaceHandle) -> bool:
        """
        Remove a workspace. Never raises.

        Returns:
            True if the directory is gone afterwards
        """
        removed = await self._remove_tree(handle.path)
        if removed:
            logger.info("workspace_removed", integration=handle.integration_id)
        return removed

    async def _remove_tree(self, path: Path) -> bool:
        if not path.exists():
            return True
        try:
            await asyncio.to_thread(shutil.rmtree, path)
        except OSError as e:
            logger.warning("workspace_cleanup_failed", path=str(path), error=str(e))
            return False
        return True
