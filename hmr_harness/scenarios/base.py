"""
HMR Harness Scenario Definitions

A scenario is one mutate -> settle -> assert sequence run against a
suite's shared page and server.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, Iterator, Optional

if TYPE_CHECKING:
    from hmr_harness.suite import SuiteContext

ScenarioFn = Callable[["SuiteContext"], Awaitable[None]]


@dataclass(frozen=True)
class Scenario:
    """A named HMR check."""
    id: str
    description: str
    run: ScenarioFn


class ScenarioCatalog:
    """Ordered collection of scenarios. Order is execution order."""

    def __init__(self) -> None:
        self._scenarios: dict[str, Scenario] = {}

    def scenario(self, scenario_id: str, description: str = "") -> Callable[[ScenarioFn], ScenarioFn]:
        """Decorator registering a scenario function under ``scenario_id``."""
        def decorator(fn: ScenarioFn) -> ScenarioFn:
            if scenario_id in self._scenarios:
                raise ValueError(f"Duplicate scenario id: {scenario_id}")
            self._scenarios[scenario_id] = Scenario(
                id=scenario_id,
                description=description or (fn.__doc__ or "").strip(),
                run=fn,
            )
            return fn
        return decorator

    def get(self, scenario_id: str) -> Optional[Scenario]:
        return self._scenarios.get(scenario_id)

    def ids(self) -> list[str]:
        return list(self._scenarios)

    def select(self, scenario_ids: list[str]) -> list[Scenario]:
        """
        Scenarios by id, in catalog order.

        Raises:
            KeyError: For an unknown id
        """
        unknown = [s for s in scenario_ids if s not in self._scenarios]
        if unknown:
            raise KeyError(f"Unknown scenarios: {', '.join(unknown)}")
        wanted = set(scenario_ids)
        return [s for s in self._scenarios.values() if s.id in wanted]

    def __iter__(self) -> Iterator[Scenario]:
        return iter(list(self._scenarios.values()))

    def __len__(self) -> int:
        return len(self._scenarios)
