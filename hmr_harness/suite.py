"""
HMR Harness Integration Suites

Runs the scenario catalog against one integration:

    UNINITIALIZED -> WORKSPACE_READY -> SERVER_READY -> PAGE_LOADED
        -> SCENARIO_RUNNING (xN) -> TORN_DOWN

TORN_DOWN is reachable from every state. Teardown always attempts every
step (detach listeners, close browser, stop server, destroy workspace);
a failing step is recorded and logged, never raised.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Optional

import structlog

from hmr_harness import mutation
from hmr_harness.browser import BrowserDriver, BrowserSession, close_browser, launch_browser
from hmr_harness.config import HarnessSettings, get_settings
from hmr_harness.errors import BrowserError, SetupFailure, TeardownFailure
from hmr_harness.polling import Matcher, PollResult, equals, expect_eventually, settle
from hmr_harness.process import ProcessOrchestrator, ServerProcess
from hmr_harness.registry import IntegrationConfig
from hmr_harness.scenarios import SCENARIOS, Scenario
from hmr_harness.workspace import WorkspaceHandle, WorkspaceManager

logger = structlog.get_logger(__name__)

BrowserLauncher = Callable[[HarnessSettings], Awaitable[BrowserSession]]
BrowserCloser = Callable[[BrowserSession], Awaitable[None]]


class SuiteState(Enum):
    """Suite lifecycle states."""
    UNINITIALIZED = "uninitialized"
    WORKSPACE_READY = "workspace_ready"
    SERVER_READY = "server_ready"
    PAGE_LOADED = "page_loaded"
    SCENARIO_RUNNING = "scenario_running"
    TORN_DOWN = "torn_down"

    def can_transition_to(self, target: "SuiteState") -> bool:
        """Validate state transition."""
        if target == SuiteState.TORN_DOWN:
            return self != SuiteState.TORN_DOWN
        valid_transitions = {
            SuiteState.UNINITIALIZED: {SuiteState.WORKSPACE_READY},
            SuiteState.WORKSPACE_READY: {SuiteState.SERVER_READY},
            SuiteState.SERVER_READY: {SuiteState.PAGE_LOADED},
            SuiteState.PAGE_LOADED: {SuiteState.SCENARIO_RUNNING},
            SuiteState.SCENARIO_RUNNING: {SuiteState.SCENARIO_RUNNING},
            SuiteState.TORN_DOWN: set(),
        }
        return target in valid_transitions[self]


class ScenarioStatus(Enum):
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    ABORTED = "aborted"  # Not run: setup failed, suite timed out, or page/server died


@dataclass
class ScenarioResult:
    """Outcome of one scenario."""
    scenario_id: str
    status: ScenarioStatus
    elapsed: float = 0.0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status in (ScenarioStatus.PASSED, ScenarioStatus.SKIPPED)


@dataclass
class SuiteReport:
    """Outcome of one integration suite run."""
    integration_id: str
    results: list[ScenarioResult] = field(default_factory=list)
    setup_error: Optional[SetupFailure] = None
    timed_out: bool = False
    teardown_errors: list[TeardownFailure] = field(default_factory=list)
    elapsed: float = 0.0

    @property
    def passed(self) -> bool:
        """Teardown errors never fail a run."""
        return (
            self.setup_error is None
            and not self.timed_out
            and all(r.ok for r in self.results)
        )

    def result_for(self, scenario_id: str) -> Optional[ScenarioResult]:
        for result in self.results:
            if result.scenario_id == scenario_id:
                return result
        return None

    def failures(self) -> list[ScenarioResult]:
        return [r for r in self.results if not r.ok]

    def summary(self) -> str:
        """Human-readable multi-line summary for test output."""
        lines = [f"[{self.integration_id}] {'PASSED' if self.passed else 'FAILED'} in {self.elapsed:.1f}s"]
        if self.setup_error is not None:
            lines.append(f"  setup failed at {self.setup_error.step}: {self.setup_error}")
        if self.timed_out:
            lines.append("  suite timed out")
        for r in self.results:
            line = f"  {r.status.value:8} {r.scenario_id} ({r.elapsed:.2f}s)"
            if r.error:
                line += f": {r.error}"
            lines.append(line)
        for e in self.teardown_errors:
            lines.append(f"  teardown warning: {e}")
        return "\n".join(lines)


@dataclass
class SuiteContext:
    """
    Everything one suite run owns, handed to every scenario.

    Scenarios reach the page, workspace and timing knobs only through
    this object.
    """
    integration: IntegrationConfig
    settings: HarnessSettings
    state: SuiteState = SuiteState.UNINITIALIZED
    workspace: Optional[WorkspaceHandle] = None
    server: Optional[ServerProcess] = None
    browser: Optional[BrowserSession] = None
    driver: Optional[BrowserDriver] = None

    def transition(self, target: SuiteState) -> None:
        if not self.state.can_transition_to(target):
            raise RuntimeError(
                f"Invalid suite transition {self.state.value} -> {target.value}"
            )
        if target != self.state:
            logger.debug(
                "suite_state_changed",
                integration=self.integration.id,
                from_state=self.state.value,
                to_state=target.value,
            )
        self.state = target

    @property
    def url(self) -> str:
        return self.integration.url_for(self.settings.host)

    # ----- file mutations -----

    def _require_workspace(self) -> WorkspaceHandle:
        if self.workspace is None:
            raise RuntimeError("Suite has no workspace")
        return self.workspace

    async def update_file(self, relative_path: str, op: mutation.MutationOp) -> bool:
        return await mutation.update_file(self._require_workspace(), relative_path, op)

    async def write_file(self, relative_path: str, content: str) -> None:
        await mutation.write_file(self._require_workspace(), relative_path, content)

    async def read_file(self, relative_path: str) -> str:
        return await mutation.read_file(self._require_workspace(), relative_path)

    # ----- waiting and assertions -----

    async def settle(self, long: bool = False) -> None:
        await settle(self.settings.long_settle_delay if long else self.settings.settle_delay)

    async def expect(
        self,
        producer: Callable[[], Any],
        expected: Any,
        matcher: Matcher = equals,
        timeout: Optional[float] = None,
    ) -> PollResult:
        return await expect_eventually(
            producer,
            expected,
            interval=self.settings.poll_interval,
            timeout=self.settings.poll_timeout if timeout is None else timeout,
            matcher=matcher,
        )

    async def expect_text(self, target: Any, expected: str, matcher: Matcher = equals) -> PollResult:
        return await self.expect(lambda: self.driver.text_of(target), expected, matcher=matcher)

    async def expect_tag_name(self, target: Any, expected: str) -> PollResult:
        return await self.expect(lambda: self.driver.tag_name_of(target), expected)


class IntegrationSuite:
    """
    One integration's suite run.

    Usage::

        suite = IntegrationSuite(registry.get("vite"), settings)
        report = await suite.run()
        assert report.passed, report.summary()
    """

    def __init__(
        self,
        integration: IntegrationConfig,
        settings: Optional[HarnessSettings] = None,
        scenarios: Optional[Iterable[Scenario]] = None,
        workspace_manager: Optional[WorkspaceManager] = None,
        orchestrator: Optional[ProcessOrchestrator] = None,
        browser_launcher: Optional[BrowserLauncher] = None,
        browser_closer: Optional[BrowserCloser] = None,
    ):
        self.settings = settings or get_settings()
        self.integration = integration
        self.scenarios = list(scenarios) if scenarios is not None else list(SCENARIOS)
        self.workspaces = workspace_manager or WorkspaceManager(self.settings)
        self.orchestrator = orchestrator or ProcessOrchestrator(self.settings)
        self._launch_browser = browser_launcher or launch_browser
        self._close_browser = browser_closer or close_browser

        self.context = SuiteContext(integration=integration, settings=self.settings)
        self._teardown_errors: list[TeardownFailure] = []

    # ----- lifecycle -----

    async def setup(self) -> SuiteContext:
        """
        Bring the suite to PAGE_LOADED.

        Raises:
            SetupFailure: At the first failing step
        """
        ctx = self.context
        integration = self.integration

        await settle(self.settings.setup_delay)

        ctx.workspace = await self.workspaces.materialize(integration)
        ctx.transition(SuiteState.WORKSPACE_READY)

        ctx.browser = await self._launch_browser(self.settings)

        ctx.server = await self.orchestrator.start(integration, ctx.workspace.path)
        await ctx.server.wait_ready(self.settings.ready_timeout)
        ctx.transition(SuiteState.SERVER_READY)

        try:
            page = await ctx.browser.browser.new_page()
        except Exception as e:
            raise BrowserError(f"Failed to open page: {e}", cause=e)
        ctx.browser.page = page
        ctx.driver = BrowserDriver(page, navigation_timeout=self.settings.navigation_timeout)
        if self.settings.debug:
            ctx.driver.attach_console_relay(integration.id)

        await ctx.driver.navigate(ctx.url)
        ctx.transition(SuiteState.PAGE_LOADED)

        logger.info("suite_ready", integration=integration.id, url=ctx.url)
        return ctx

    async def teardown(self) -> list[TeardownFailure]:
        """Release everything the suite holds. Never raises."""
        ctx = self.context
        if ctx.state == SuiteState.TORN_DOWN:
            return self._teardown_errors

        if ctx.driver is not None or ctx.server is not None:
            await self._teardown_step("detach_listeners", self._detach_listeners)

        if ctx.browser is not None:
            await self._teardown_step("close_browser", self._close_browser, ctx.browser)
        if ctx.server is not None:
            await self._teardown_step("stop_server", self.orchestrator.stop, ctx.server)
        if ctx.workspace is not None:
            await self._teardown_step("destroy_workspace", self.workspaces.destroy, ctx.workspace)

        ctx.transition(SuiteState.TORN_DOWN)
        logger.info(
            "suite_torn_down",
            integration=self.integration.id,
            teardown_errors=len(self._teardown_errors),
        )
        return self._teardown_errors

    async def _detach_listeners(self) -> None:
        ctx = self.context
        if ctx.driver is not None:
            ctx.driver.detach_console_relay()
        if ctx.server is not None:
            ctx.server.detach_listeners()

    async def _teardown_step(self, step: str, fn: Callable[..., Awaitable[Any]], *args: Any) -> None:
        try:
            await fn(*args)
        except Exception as e:
            failure = TeardownFailure(step, e)
            self._teardown_errors.append(failure)
            logger.warning(
                "teardown_step_failed",
                integration=self.integration.id,
                step=step,
                error=str(e),
            )

    async def __aenter__(self) -> SuiteContext:
        try:
            return await self.setup()
        except BaseException:
            await self.teardown()
            raise

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.teardown()
        return False  # never suppress exceptions

    # ----- scenarios -----

    async def run_scenario(self, scenario: Scenario) -> ScenarioResult:
        """Run one scenario; assertion and runtime errors become a failed result."""
        ctx = self.context
        if self.integration.is_excluded(scenario.id):
            logger.info("scenario_skipped", integration=self.integration.id, scenario=scenario.id)
            return ScenarioResult(scenario.id, ScenarioStatus.SKIPPED)

        ctx.transition(SuiteState.SCENARIO_RUNNING)
        logger.info("scenario_started", integration=self.integration.id, scenario=scenario.id)

        start = time.monotonic()
        try:
            await scenario.run(ctx)
        except AssertionError as e:
            result = ScenarioResult(
                scenario.id, ScenarioStatus.FAILED, time.monotonic() - start, str(e)
            )
        except Exception as e:
            result = ScenarioResult(
                scenario.id,
                ScenarioStatus.FAILED,
                time.monotonic() - start,
                f"{type(e).__name__}: {e}",
            )
        else:
            result = ScenarioResult(scenario.id, ScenarioStatus.PASSED, time.monotonic() - start)

        log = logger.info if result.status == ScenarioStatus.PASSED else logger.warning
        log(
            "scenario_finished",
            integration=self.integration.id,
            scenario=scenario.id,
            status=result.status.value,
            elapsed=round(result.elapsed, 3),
            error=result.error,
        )
        return result

    def _unusable_reason(self) -> Optional[str]:
        """Why the shared page/server can no longer serve scenarios, if so."""
        ctx = self.context
        if ctx.server is not None and ctx.server.returncode is not None:
            return f"dev server exited with code {ctx.server.returncode}"
        if ctx.driver is not None and ctx.driver.is_closed:
            return "page was closed"
        return None

    async def _run_scenarios(self, report: SuiteReport) -> None:
        for index, scenario in enumerate(self.scenarios):
            result = await self.run_scenario(scenario)
            report.results.append(result)

            if result.status == ScenarioStatus.FAILED:
                reason = self._unusable_reason()
                if reason is not None:
                    logger.error(
                        "suite_aborted",
                        integration=self.integration.id,
                        scenario=scenario.id,
                        reason=reason,
                    )
                    self._abort_remaining(report, self.scenarios[index + 1:], reason)
                    return

    def _abort_remaining(self, report: SuiteReport, scenarios: Iterable[Scenario], reason: str) -> None:
        done = {r.scenario_id for r in report.results}
        for scenario in scenarios:
            if scenario.id not in done:
                report.results.append(
                    ScenarioResult(scenario.id, ScenarioStatus.ABORTED, error=reason)
                )

    async def run(self) -> SuiteReport:
        """
        Set up, run every scenario serially, tear down.

        Setup failures are recorded with their step and cause. The scenario
        phase is bounded by ``suite_timeout``. Teardown happens before the
        report is returned in every case.
        """
        report = SuiteReport(integration_id=self.integration.id)
        start = time.monotonic()
        structlog.contextvars.bind_contextvars(integration=self.integration.id)

        try:
            # Setup steps carry their own timeouts; suite_timeout bounds the scenarios
            await self.setup()
            await asyncio.wait_for(self._run_scenarios(report), timeout=self.settings.suite_timeout)
        except SetupFailure as e:
            report.setup_error = e
            logger.error(
                "suite_setup_failed",
                integration=self.integration.id,
                step=e.step,
                error=str(e),
            )
            self._abort_remaining(report, self.scenarios, f"setup failed: {e}")
        except asyncio.TimeoutError:
            report.timed_out = True
            logger.error(
                "suite_timed_out",
                integration=self.integration.id,
                timeout=self.settings.suite_timeout,
                state=self.context.state.value,
            )
            self._abort_remaining(
                report, self.scenarios, f"suite timed out after {self.settings.suite_timeout:g}s"
            )
        finally:
            report.teardown_errors = await self.teardown()
            report.elapsed = time.monotonic() - start
            structlog.contextvars.unbind_contextvars("integration")

        return report


async def run_suites(
    integrations: Iterable[IntegrationConfig],
    settings: Optional[HarnessSettings] = None,
    parallel: bool = True,
) -> list[SuiteReport]:
    """
    Run one suite per integration.

    Suites own disjoint ports, workspaces and browsers, so they can run
    concurrently.
    """
    settings = settings or get_settings()
    suites = [IntegrationSuite(integration, settings) for integration in integrations]

    if parallel:
        return list(await asyncio.gather(*(suite.run() for suite in suites)))

    reports = []
    for suite in suites:
        reports.append(await suite.run())
    return reports
