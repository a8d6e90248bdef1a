"""
HMR Harness Scenarios

The ordered catalog of HMR checks run by every integration suite.
"""

from hmr_harness.scenarios.base import Scenario, ScenarioCatalog, ScenarioFn
from hmr_harness.scenarios.catalog import SCENARIOS

__all__ = ["SCENARIOS", "Scenario", "ScenarioCatalog", "ScenarioFn"]
