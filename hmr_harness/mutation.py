"""
HMR Harness File Mutations

The in-test equivalent of a developer editing a source file: read the
workspace copy as UTF-8, transform it, write it back.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Callable

import structlog

from hmr_harness.workspace import WorkspaceHandle

logger = structlog.get_logger(__name__)

MutationOp = Callable[[str], str]


def replace(old: str, new: str) -> MutationOp:
    """Replace the first occurrence of ``old`` with ``new``."""
    def op(content: str) -> str:
        return content.replace(old, new, 1)
    return op


def prepend(text: str) -> MutationOp:
    def op(content: str) -> str:
        return text + content
    return op


def chain(*ops: MutationOp) -> MutationOp:
    """Apply several mutations in order as one edit."""
    def op(content: str) -> str:
        for each in ops:
            content = each(content)
        return content
    return op


def _read(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def _write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


async def read_file(workspace: WorkspaceHandle, relative_path: str) -> str:
    return await asyncio.to_thread(_read, workspace.resolve(relative_path))


async def write_file(workspace: WorkspaceHandle, relative_path: str, content: str) -> Path:
    """Create or overwrite a file in the workspace."""
    path = workspace.resolve(relative_path)
    await asyncio.to_thread(_write, path, content)
    logger.debug("file_written", integration=workspace.integration_id, file=relative_path)
    return path


async def update_file(
    workspace: WorkspaceHandle,
    relative_path: str,
    op: MutationOp,
) -> bool:
    """
    Apply ``op`` to a workspace file.

    Returns:
        True if the content changed. An unchanged file is still written
        (a touch still triggers the watcher) and logged as a no-op.
    """
    path = workspace.resolve(relative_path)
    content = await asyncio.to_thread(_read, path)
    updated = op(content)
    await asyncio.to_thread(_write, path, updated)

    changed = updated != content
    if changed:
        logger.debug("file_updated", integration=workspace.integration_id, file=relative_path)
    else:
        logger.warning("mutation_noop", integration=workspace.integration_id, file=relative_path)
    return changed
