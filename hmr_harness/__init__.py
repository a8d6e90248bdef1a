"""
HMR Harness - Hot-Module-Replacement regression harness

Boots each dev-server integration against a fixture copy, drives a
headless browser against the served page, edits fixture sources and
asserts the DOM converges:
- Integration registry (commands, ports, ready patterns)
- Fixture workspaces (isolated copies with fresh dependencies)
- Process orchestration (spawn, ready detection, bounded shutdown)
- Browser driver (live DOM queries)
- Polling assertions (eventual consistency with bounded timeouts)
- Scenario suites (serial, cumulative HMR checks per integration)
"""

__version__ = "1.0.0"

from hmr_harness.config import HarnessSettings, get_settings, set_settings
from hmr_harness.polling import PollResult, contains, equals, expect_eventually
from hmr_harness.registry import IntegrationConfig, IntegrationRegistry, get_registry
from hmr_harness.suite import IntegrationSuite, SuiteContext, SuiteReport, run_suites

__all__ = [
    "HarnessSettings",
    "IntegrationConfig",
    "IntegrationRegistry",
    "IntegrationSuite",
    "PollResult",
    "SuiteContext",
    "SuiteReport",
    "__version__",
    "contains",
    "equals",
    "expect_eventually",
    "get_registry",
    "get_settings",
    "run_suites",
    "set_settings",
]
