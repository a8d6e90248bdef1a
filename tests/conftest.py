"""
Shared fixtures for the HMR harness tests.
"""

from __future__ import annotations

import asyncio
import re
import sys
from typing import AsyncIterator, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from hmr_harness.config import HarnessSettings, set_settings
from hmr_harness.registry import IntegrationConfig


class FakeProcessHandle:
    """ProcessHandle whose output and exit are driven by the test."""

    def __init__(self, ignore_terminate: bool = False):
        self.pid = 4242
        self.returncode: Optional[int] = None
        self.signals: list[str] = []
        self.ignore_terminate = ignore_terminate
        self._stdout: asyncio.Queue = asyncio.Queue()
        self._stderr: asyncio.Queue = asyncio.Queue()
        self._exited = asyncio.Event()

    def emit(self, line: str) -> None:
        self._stdout.put_nowait(line)

    def emit_stderr(self, line: str) -> None:
        self._stderr.put_nowait(line)

    def exit(self, code: int = 0) -> None:
        if self.returncode is not None:
            return
        self.returncode = code
        self._stdout.put_nowait(None)
        self._stderr.put_nowait(None)
        self._exited.set()

    async def _lines(self, queue: asyncio.Queue) -> AsyncIterator[str]:
        while True:
            line = await queue.get()
            if line is None:
                return
            yield line

    def stdout_lines(self) -> AsyncIterator[str]:
        return self._lines(self._stdout)

    def stderr_lines(self) -> AsyncIterator[str]:
        return self._lines(self._stderr)

    def terminate(self) -> None:
        self.signals.append("SIGTERM")
        if not self.ignore_terminate:
            self.exit(-15)

    def kill(self) -> None:
        self.signals.append("SIGKILL")
        self.exit(-9)

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode


def make_fake_page() -> MagicMock:
    """A Playwright-like page with async DOM methods."""
    page = MagicMock()
    page.goto = AsyncMock(return_value=None)
    page.query_selector = AsyncMock(return_value=None)
    page.query_selector_all = AsyncMock(return_value=[])
    page.eval_on_selector = AsyncMock(return_value="")
    page.is_closed = MagicMock(return_value=False)
    return page


# ==================== Fixtures ====================

@pytest.fixture(autouse=True)
def reset_global_settings():
    """Keep the module-level settings singleton out of test interactions."""
    set_settings(None)
    yield
    set_settings(None)


@pytest.fixture
def settings(tmp_path):
    """Fast settings rooted in a temp directory."""
    return HarnessSettings(
        debug=False,
        fixtures_dir=tmp_path / "fixtures",
        temp_root=tmp_path / "workspaces",
        poll_interval=0.01,
        poll_timeout=0.5,
        settle_delay=0,
        long_settle_delay=0,
        setup_delay=0,
        ready_timeout=2.0,
        install_timeout=30.0,
        stop_grace_period=0.5,
        suite_timeout=10.0,
    )


@pytest.fixture
def integration():
    """Integration whose install step is a no-op Python call."""
    return IntegrationConfig(
        id="fake",
        launch_command="node_modules/.bin/fake-dev-server",
        listen_port=45123,
        ready_pattern=re.compile(r"ready in \d+ms"),
        install_command=(sys.executable, "-c", "pass"),
    )


@pytest.fixture
def fake_handle_factory():
    """Create FakeProcessHandle instances."""
    return FakeProcessHandle


@pytest.fixture
def fake_page():
    return make_fake_page()
