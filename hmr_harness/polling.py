"""
HMR Harness Polling Assertions

Eventually-consistent assertions for state that converges asynchronously:
file-watch debounce, rebuild time and in-browser patch application are
all unknown, so values are polled until they match or a timeout elapses.
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar, Union

import structlog

from hmr_harness.errors import AssertionTimeout

logger = structlog.get_logger(__name__)

T = TypeVar("T")

Producer = Callable[[], Union[T, Awaitable[T]]]


# ==================== Matchers ====================


class Matcher:
    """Named comparison between an observed and an expected value."""

    name = "match"

    def __call__(self, actual: Any, expected: Any) -> bool:
        raise NotImplementedError


class _Equals(Matcher):
    name = "equal"

    def __call__(self, actual: Any, expected: Any) -> bool:
        return actual == expected


class _Contains(Matcher):
    name = "contain"

    def __call__(self, actual: Any, expected: Any) -> bool:
        if actual is None:
            return False
        return expected in actual


equals = _Equals()
contains = _Contains()


@dataclass
class PollResult(Generic[T]):
    """Outcome of one polling assertion."""
    matched: bool
    value: T
    expected: T
    attempts: int
    elapsed: float


async def _produce(producer: Producer) -> Any:
    value = producer()
    if inspect.isawaitable(value):
        value = await value
    return value


async def expect_eventually(
    producer: Producer,
    expected: Any,
    *,
    interval: float = 0.5,
    timeout: float = 10.0,
    matcher: Matcher = equals,
    retry_on_error: bool = True,
) -> PollResult:
    """
    Poll ``producer`` until its value matches ``expected``.

    Returns on the first matching poll without further delay. Between
    non-matching polls it waits the full ``interval``. Once ``timeout``
    seconds have elapsed without a match it raises, so the total wall
    time of a failure lies between ``timeout`` and ``timeout + interval``
    (plus one producer call).

    Args:
        producer: Sync or async callable returning the current value
        expected: Value to wait for
        interval: Seconds between polls
        timeout: Seconds before giving up
        matcher: ``equals`` or ``contains``
        retry_on_error: Treat producer exceptions as non-matches

    Raises:
        AssertionTimeout: With expected and last observed values
    """
    loop = asyncio.get_running_loop()
    start = loop.time()
    attempts = 0
    last_value: Any = None
    last_error: BaseException | None = None

    while True:
        attempts += 1
        try:
            last_value = await _produce(producer)
            last_error = None
        except Exception as e:
            if not retry_on_error:
                raise
            last_error = e
        else:
            if matcher(last_value, expected):
                elapsed = loop.time() - start
                logger.debug(
                    "poll_matched",
                    expected=expected,
                    attempts=attempts,
                    elapsed=round(elapsed, 3),
                )
                return PollResult(
                    matched=True,
                    value=last_value,
                    expected=expected,
                    attempts=attempts,
                    elapsed=elapsed,
                )

        elapsed = loop.time() - start
        if elapsed >= timeout:
            logger.debug(
                "poll_timed_out",
                expected=expected,
                last_value=last_value,
                attempts=attempts,
                elapsed=round(elapsed, 3),
            )
            raise AssertionTimeout(
                expected=expected,
                last_value=last_value,
                elapsed=elapsed,
                attempts=attempts,
                matcher=matcher.name,
                last_error=last_error,
            )

        await asyncio.sleep(interval)


async def settle(delay: float) -> None:
    """Coarse first-order wait after an edit, before polling confirms."""
    if delay > 0:
        await asyncio.sleep(delay)
