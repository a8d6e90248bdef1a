"""
HMR Harness Errors

Failure taxonomy for harness runs:
- SetupFailure: a suite cannot reach PAGE_LOADED (fatal to that suite only)
- AssertionTimeout: a polling assertion never converged
- TeardownFailure: a cleanup step errored (recorded, never raised)
"""

from __future__ import annotations

from typing import Any, Optional


class HarnessError(Exception):
    """Base exception for harness errors."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        self.cause = cause
        super().__init__(message)


class UnknownIntegrationError(HarnessError, KeyError):
    """No integration is registered under the requested id."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class DuplicateIntegrationError(HarnessError):
    """Integration id or listen port already registered."""
    pass


# ==================== Setup ====================


class SetupFailure(HarnessError):
    """A suite could not be brought up. Remaining scenarios are not run."""

    step: str = "setup"

    def __init__(
        self,
        message: str,
        cause: Optional[Exception] = None,
        step: Optional[str] = None,
    ):
        if step is not None:
            self.step = step
        super().__init__(message, cause=cause)


class WorkspaceError(SetupFailure):
    """Fixture copy failed or the fixture does not exist."""

    step = "workspace"


class DependencyInstallError(SetupFailure):
    """Dependency installation inside the workspace failed."""

    step = "install"

    def __init__(
        self,
        message: str,
        returncode: Optional[int] = None,
        output: str = "",
        cause: Optional[Exception] = None,
    ):
        self.returncode = returncode
        self.output = output
        super().__init__(message, cause=cause)


class ServerStartError(SetupFailure):
    """The dev-server process could not be spawned."""

    step = "server_start"


class PortInUseError(ServerStartError):
    """Something is already listening on the integration's port."""

    def __init__(self, port: int):
        self.port = port
        super().__init__(f"Port {port} is already in use")


class ServerExitedError(SetupFailure):
    """The dev server exited before printing its ready line."""

    step = "server_ready"

    def __init__(self, integration_id: str, returncode: Optional[int]):
        self.integration_id = integration_id
        self.returncode = returncode
        super().__init__(
            f"Dev server for {integration_id!r} exited with code {returncode} "
            "before signalling ready"
        )


class ReadyTimeoutError(SetupFailure):
    """The ready pattern never matched within the allowed time."""

    step = "server_ready"

    def __init__(self, integration_id: str, pattern: str, timeout: float):
        self.integration_id = integration_id
        self.pattern = pattern
        self.timeout = timeout
        super().__init__(
            f"Dev server for {integration_id!r} did not print a line matching "
            f"{pattern!r} within {timeout:.1f}s"
        )


class BrowserError(SetupFailure):
    """Browser launch or initial navigation failed."""

    step = "browser"


# ==================== Assertions ====================


class AssertionTimeout(AssertionError):
    """A polled value did not match the expected value in time."""

    def __init__(
        self,
        expected: Any,
        last_value: Any,
        elapsed: float,
        attempts: int,
        matcher: str = "equals",
        last_error: Optional[BaseException] = None,
    ):
        self.expected = expected
        self.last_value = last_value
        self.elapsed = elapsed
        self.attempts = attempts
        self.matcher = matcher
        self.last_error = last_error

        message = (
            f"Expected value to {matcher.replace('_', ' ')} {expected!r}, "
            f"last observed {last_value!r} after {elapsed:.2f}s "
            f"({attempts} attempts)"
        )
        if last_error is not None:
            message += f"; last producer error: {last_error!r}"
        super().__init__(message)


# ==================== Teardown ====================


class TeardownFailure(HarnessError):
    """A cleanup step failed. Logged and reported, never raised to the caller."""

    def __init__(self, step: str, cause: Exception):
        self.step = step
        super().__init__(f"Teardown step {step!r} failed: {cause}", cause=cause)
