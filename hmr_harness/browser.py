"""
HMR Harness Browser Driver

Thin query layer over a live Playwright page. Every read goes to the
live DOM; nothing is cached between calls, because polling relies on
observing the page change over time.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

import structlog
from playwright.async_api import (
    Browser,
    ConsoleMessage,
    ElementHandle,
    Page,
    Playwright,
    async_playwright,
)

from hmr_harness.config import HarnessSettings, get_settings
from hmr_harness.errors import BrowserError

logger = structlog.get_logger(__name__)

SelectorOrHandle = Union[str, ElementHandle]

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def css_property_name(name: str) -> str:
    """``backgroundColor`` -> ``background-color``; kebab-case passes through."""
    if "-" in name:
        return name
    return _CAMEL_BOUNDARY.sub("-", name).lower()


@dataclass
class BrowserSession:
    """Browser owned by one suite run."""
    playwright: Optional[Playwright]
    browser: Browser
    page: Optional[Page] = None


async def launch_browser(settings: Optional[HarnessSettings] = None) -> BrowserSession:
    """
    Start Playwright and a headless Chromium.

    Raises:
        BrowserError: If Playwright or the browser cannot start
    """
    settings = settings or get_settings()

    playwright = None
    try:
        playwright = await async_playwright().start()
        browser = await playwright.chromium.launch(
            headless=settings.headless,
            args=list(settings.browser_args),
        )
    except Exception as e:
        if playwright is not None:
            await playwright.stop()
        raise BrowserError(f"Failed to launch browser: {e}", cause=e)

    logger.debug("browser_launched", headless=settings.headless)
    return BrowserSession(playwright=playwright, browser=browser)


async def close_browser(session: BrowserSession) -> None:
    """Close the browser, then stop Playwright (even if closing failed)."""
    try:
        await session.browser.close()
    finally:
        if session.playwright is not None:
            await session.playwright.stop()
            session.playwright = None
    logger.debug("browser_closed")


class BrowserDriver:
    """
    DOM queries against a page.

    Operations accept either a CSS selector (resolved on every call) or
    an element handle obtained earlier. "Not found" yields None rather
    than an exception.
    """

    def __init__(self, page: Page, navigation_timeout: float = 30.0):
        self.page = page
        self.navigation_timeout = navigation_timeout
        self._console_listener: Optional[Callable[[ConsoleMessage], Any]] = None

    async def navigate(self, url: str) -> None:
        """
        Load ``url`` in the page.

        Raises:
            BrowserError: If navigation fails
        """
        logger.debug("page_navigating", url=url)
        try:
            await self.page.goto(url, timeout=self.navigation_timeout * 1000)
        except Exception as e:
            raise BrowserError(f"Failed to navigate to {url}: {e}", cause=e)

    async def resolve_element(self, target: SelectorOrHandle) -> Optional[ElementHandle]:
        if isinstance(target, str):
            return await self.page.query_selector(target)
        return target

    async def query_all(
        self,
        selector: str,
        within: Optional[SelectorOrHandle] = None,
    ) -> list[ElementHandle]:
        """All matches of ``selector``, optionally below another element."""
        if within is None:
            return await self.page.query_selector_all(selector)
        root = await self.resolve_element(within)
        if root is None:
            return []
        return await root.query_selector_all(selector)

    async def text_of(self, target: SelectorOrHandle) -> Optional[str]:
        el = await self.resolve_element(target)
        if el is None:
            return None
        return await el.evaluate("el => el.textContent")

    async def tag_name_of(self, target: SelectorOrHandle) -> Optional[str]:
        el = await self.resolve_element(target)
        if el is None:
            return None
        return await el.evaluate("el => el.tagName")

    async def computed_style_property(self, selector: str, prop: str) -> str:
        """
        Read a computed style value, e.g. ``backgroundColor`` or
        ``background-color`` -> ``rgb(0, 0, 0)``.
        """
        return await self.page.eval_on_selector(
            selector,
            "(el, prop) => getComputedStyle(el).getPropertyValue(prop)",
            css_property_name(prop),
        )

    async def click(self, target: SelectorOrHandle) -> None:
        """
        Click an element.

        Raises:
            LookupError: If a selector matches nothing
        """
        el = await self.resolve_element(target)
        if el is None:
            raise LookupError(f"No element matches {target!r}")
        await el.click()

    @property
    def is_closed(self) -> bool:
        return self.page.is_closed()

    def attach_console_relay(self, integration_id: str) -> None:
        """Relay browser console messages to the harness log."""
        if self._console_listener is not None:
            return
        relay = logger.bind(integration=integration_id)

        def listener(msg: ConsoleMessage) -> None:
            relay.info("browser_log", type=msg.type, text=msg.text)

        self._console_listener = listener
        self.page.on("console", listener)

    def detach_console_relay(self) -> None:
        if self._console_listener is None:
            return
        self.page.remove_listener("console", self._console_listener)
        self._console_listener = None
