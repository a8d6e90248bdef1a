"""
HMR Harness Configuration

Centralized settings for harness runs with:
- Environment-based configuration (HMR_ prefix, plus the bare DEBUG toggle)
- Type-safe settings with Pydantic
- Timing knobs for polling, settle delays and process lifecycle
"""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings

_FALSEY = {"", "0", "false", "no", "off"}


class HarnessSettings(BaseSettings):
    """
    Main harness configuration.

    Loads from environment variables prefixed with HMR_
    (e.g., HMR_POLL_TIMEOUT=20). Verbose relaying of dev-server and
    browser console output is switched on by DEBUG.
    """

    # Verbose diagnostics
    debug: bool = Field(
        default=False,
        validation_alias=AliasChoices("debug", "DEBUG", "HMR_DEBUG"),
    )
    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "console"

    # Paths
    fixtures_dir: Path = Field(default=Path("./fixtures"))
    temp_root: Path = Field(
        default_factory=lambda: Path(tempfile.gettempdir()) / "hmr-harness"
    )
    host: str = "localhost"

    # Polling assertion
    poll_interval: float = 0.5  # seconds between polls
    poll_timeout: float = 10.0

    # Fixed first-order waits after a file edit
    settle_delay: float = 1.0
    long_settle_delay: float = 2.0  # new files need a module graph update
    setup_delay: float = 2.0  # before copying, lets a previous server release the port

    # Process lifecycle
    install_timeout: float = 300.0
    ready_timeout: float = 60.0
    stop_grace_period: float = 2.0
    suite_timeout: float = 100.0  # scenario phase; setup steps have their own timeouts

    # Browser
    headless: bool = True
    browser_args: list[str] = Field(
        default_factory=lambda: ["--no-sandbox", "--disable-setuid-sandbox"]
    )
    navigation_timeout: float = 30.0

    model_config = {
        "env_prefix": "HMR_",
        "case_sensitive": False,
        "populate_by_name": True,
    }

    @field_validator("debug", mode="before")
    @classmethod
    def parse_debug(cls, v: Any) -> Any:
        """Treat any non-empty, non-falsey string as on."""
        if isinstance(v, str):
            return v.strip().lower() not in _FALSEY
        return v

    @field_validator("fixtures_dir", "temp_root", mode="before")
    @classmethod
    def ensure_path(cls, v: Any) -> Path:
        """Ensure value is converted to Path."""
        if isinstance(v, str):
            return Path(v)
        return v

    def fixture_path(self, fixture: str) -> Path:
        """Canonical (never mutated) location of a fixture project."""
        return (self.fixtures_dir / fixture).resolve()

    def workspace_path(self, integration_id: str) -> Path:
        """Deterministic temp location for an integration's workspace."""
        return (self.temp_root / integration_id).resolve()


# Global settings instance (lazy loaded)
_settings: Optional[HarnessSettings] = None


def get_settings() -> HarnessSettings:
    """Get the global harness settings instance."""
    global _settings
    if _settings is None:
        _settings = HarnessSettings()
    return _settings


def set_settings(settings: Optional[HarnessSettings]) -> None:
    """Set (or reset with None) the global harness settings instance."""
    global _settings
    _settings = settings
