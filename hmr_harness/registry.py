"""
HMR Harness Integration Registry

Static configuration for every dev-server integration under test:
- Launch command and arguments
- Listening port
- Ready-line pattern
- Scenarios known to be incompatible with the integration
"""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Optional, Union

import structlog

from hmr_harness.errors import DuplicateIntegrationError, UnknownIntegrationError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class IntegrationConfig:
    """Configuration for one bundler/framework integration."""
    id: str
    launch_command: str
    listen_port: int
    ready_pattern: re.Pattern
    launch_args: tuple[str, ...] = ()
    excluded_scenarios: frozenset[str] = frozenset()

    # Fixture directory name under the fixtures root; defaults to the id
    fixture: Optional[str] = None
    install_command: tuple[str, ...] = ("yarn",)
    description: Optional[str] = None

    def __post_init__(self) -> None:
        if isinstance(self.ready_pattern, str):
            object.__setattr__(self, "ready_pattern", re.compile(self.ready_pattern))
        object.__setattr__(self, "launch_args", tuple(self.launch_args))
        object.__setattr__(self, "install_command", tuple(self.install_command))
        object.__setattr__(
            self, "excluded_scenarios", frozenset(self.excluded_scenarios)
        )
        if self.fixture is None:
            object.__setattr__(self, "fixture", self.id)
        if not 0 < self.listen_port < 65536:
            raise ValueError(f"Invalid listen port for {self.id!r}: {self.listen_port}")

    @property
    def url(self) -> str:
        return f"http://localhost:{self.listen_port}"

    def url_for(self, host: str) -> str:
        return f"http://{host}:{self.listen_port}"

    def resolve_command(self, working_directory: Union[str, Path]) -> str:
        """
        Resolve the launch command against a workspace.

        Commands containing a path separator (``node_modules/.bin/vite``)
        point into the workspace; bare names are left for PATH lookup.
        """
        command = self.launch_command
        if os.path.isabs(command) or ("/" not in command and os.sep not in command):
            return command
        return str(Path(working_directory) / command)

    def is_excluded(self, scenario_id: str) -> bool:
        return scenario_id in self.excluded_scenarios

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "launch_command": self.launch_command,
            "launch_args": list(self.launch_args),
            "listen_port": self.listen_port,
            "ready_pattern": self.ready_pattern.pattern,
            "excluded_scenarios": sorted(self.excluded_scenarios),
            "fixture": self.fixture,
            "install_command": list(self.install_command),
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "IntegrationConfig":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            launch_command=data["launch_command"],
            launch_args=tuple(data.get("launch_args", [])),
            listen_port=int(data["listen_port"]),
            ready_pattern=re.compile(data["ready_pattern"]),
            excluded_scenarios=frozenset(data.get("excluded_scenarios", [])),
            fixture=data.get("fixture"),
            install_command=tuple(data.get("install_command", ["yarn"])),
            description=data.get("description"),
        )


# Only webpack-based integrations reload JSX defined outside a component module
_NO_EXTERNAL_JSX = frozenset({"externally-defined-jsx"})

DEFAULT_INTEGRATIONS = [
    IntegrationConfig(
        id="vite",
        launch_command="node_modules/.bin/vite",
        launch_args=("--port", "3000", "--strictPort"),
        listen_port=3000,
        ready_pattern=re.compile(r"ready in|Local:"),
        excluded_scenarios=_NO_EXTERNAL_JSX,
        description="Vite with @prefresh/vite",
    ),
    IntegrationConfig(
        id="webpack",
        launch_command="node_modules/.bin/webpack",
        launch_args=("serve", "--port", "8080"),
        listen_port=8080,
        ready_pattern=re.compile(r"compiled successfully", re.IGNORECASE),
        description="webpack-dev-server with @prefresh/webpack",
    ),
    IntegrationConfig(
        id="snowpack",
        launch_command="node_modules/.bin/snowpack",
        launch_args=("dev", "--port", "8081"),
        listen_port=8081,
        ready_pattern=re.compile(r"Server started"),
        excluded_scenarios=_NO_EXTERNAL_JSX,
        description="Snowpack with @prefresh/snowpack",
    ),
    IntegrationConfig(
        id="nollup",
        launch_command="node_modules/.bin/nollup",
        launch_args=("-c", "--hot", "--port", "8082"),
        listen_port=8082,
        ready_pattern=re.compile(r"Compiled in"),
        excluded_scenarios=_NO_EXTERNAL_JSX,
        description="Nollup with @prefresh/nollup",
    ),
    IntegrationConfig(
        id="web-dev-server",
        launch_command="node_modules/.bin/wds",
        launch_args=("--config", "wds.config.mjs", "--port", "8000"),
        listen_port=8000,
        ready_pattern=re.compile(r"Web Dev Server started"),
        excluded_scenarios=_NO_EXTERNAL_JSX,
        description="@web/dev-server with @prefresh/web-dev-server",
    ),
    IntegrationConfig(
        id="next",
        launch_command="node_modules/.bin/next",
        launch_args=("dev", "-p", "3001"),
        listen_port=3001,
        ready_pattern=re.compile(r"compiled successfully", re.IGNORECASE),
        description="Next.js (webpack 4) with @prefresh/next",
    ),
    IntegrationConfig(
        id="next-webpack5",
        launch_command="node_modules/.bin/next",
        launch_args=("dev", "-p", "3002"),
        listen_port=3002,
        ready_pattern=re.compile(r"compiled successfully", re.IGNORECASE),
        # Adding a module at runtime does not apply under next + webpack 5
        excluded_scenarios=_NO_EXTERNAL_JSX | {"add-file-and-import"},
        description="Next.js (webpack 5) with @prefresh/next",
    ),
]


class IntegrationRegistry:
    """
    Registry of integration configurations.

    Manages:
    - Default integrations
    - Runtime registration (ids and ports must be unique)
    - Loading and saving JSON registry files
    """

    def __init__(
        self,
        integrations: Optional[Iterable[IntegrationConfig]] = None,
        include_defaults: bool = True,
    ):
        self._integrations: dict[str, IntegrationConfig] = {}

        if include_defaults:
            for config in DEFAULT_INTEGRATIONS:
                self.register(config)

        for config in integrations or []:
            self.register(config)

    def register(self, config: IntegrationConfig) -> None:
        """
        Register an integration.

        Raises:
            DuplicateIntegrationError: If the id or the listen port is taken
        """
        if config.id in self._integrations:
            raise DuplicateIntegrationError(f"Integration already registered: {config.id}")

        for existing in self._integrations.values():
            if existing.listen_port == config.listen_port:
                raise DuplicateIntegrationError(
                    f"Port {config.listen_port} of {config.id!r} is already "
                    f"used by {existing.id!r}"
                )

        self._integrations[config.id] = config
        logger.debug("integration_registered", integration=config.id, port=config.listen_port)

    def unregister(self, integration_id: str) -> bool:
        """Remove an integration; returns True if it was registered."""
        if integration_id in self._integrations:
            del self._integrations[integration_id]
            logger.debug("integration_unregistered", integration=integration_id)
            return True
        return False

    def get(self, integration_id: str) -> IntegrationConfig:
        """Look up an integration by id."""
        try:
            return self._integrations[integration_id]
        except KeyError:
            raise UnknownIntegrationError(
                f"Unknown integration {integration_id!r}; "
                f"known: {', '.join(self.ids())}"
            ) from None

    def get_all(self) -> list[IntegrationConfig]:
        return list(self._integrations.values())

    def ids(self) -> list[str]:
        return list(self._integrations)

    def __contains__(self, integration_id: object) -> bool:
        return integration_id in self._integrations

    def __iter__(self) -> Iterator[IntegrationConfig]:
        return iter(self.get_all())

    def __len__(self) -> int:
        return len(self._integrations)

    def load_file(self, path: Union[str, Path]) -> int:
        """
        Register every integration listed in a JSON registry file.

        The file holds ``{"integrations": [{...}, ...]}``. Entries whose id
        is already registered replace the existing entry.

        Returns:
            Number of integrations loaded
        """
        path = Path(path)
        with open(path, encoding="utf-8") as f:
            data = json.load(f)

        entries = data.get("integrations", [])
        for entry in entries:
            config = IntegrationConfig.from_dict(entry)
            self.unregister(config.id)
            self.register(config)

        logger.info("registry_loaded", path=str(path), count=len(entries))
        return len(entries)

    def save_file(self, path: Union[str, Path]) -> None:
        """Write all registered integrations to a JSON registry file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)

        logger.info("registry_saved", path=str(path), count=len(self))

    def to_dict(self) -> dict:
        """Convert registry to dictionary."""
        return {"integrations": [c.to_dict() for c in self._integrations.values()]}


# Global registry instance (lazy loaded)
_registry: Optional[IntegrationRegistry] = None


def get_registry() -> IntegrationRegistry:
    """Get the global integration registry."""
    global _registry
    if _registry is None:
        _registry = IntegrationRegistry()
    return _registry
