"""
Bounded polling.

Assertions and locator resolution re-check the page until a condition holds
or a deadline passes, backing off between probes like Playwright's own
``expect`` does.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Sequence

DEFAULT_INTERVALS_MS = (100, 250, 500, 1000)

# Minimum time a single probe may take, even at the deadline
PROBE_GRACE_MS = 100


@dataclass(frozen=True)
class PollOutcome:
    """Result of a poll: whether the condition held and the last value seen."""

    satisfied: bool
    value: Any
    attempts: int


async def poll(
    probe: Callable[[], Awaitable[Any]],
    predicate: Callable[[Any], bool],
    timeout_ms: int,
    intervals_ms: Sequence[int] = DEFAULT_INTERVALS_MS,
) -> PollOutcome:
    """
    Probe repeatedly until the predicate accepts a value or time runs out.

    The probe always runs at least once, and once more at the deadline. A
    probe that outlives the remaining time is cancelled, and the outcome
    then carries the last value observed, or None.
    Exceptions raised by the probe or the predicate propagate immediately.

    Args:
        probe: Coroutine function observing the current value
        predicate: Condition the observed value must satisfy
        timeout_ms: Time budget in milliseconds
        intervals_ms: Delays between probes; the last one repeats

    Returns:
        Outcome with the last observed value
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_ms / 1000
    attempts = 0
    value = None

    while True:
        budget = max(deadline - loop.time(), PROBE_GRACE_MS / 1000)
        try:
            value = await asyncio.wait_for(probe(), timeout=budget)
        except asyncio.TimeoutError:
            return PollOutcome(False, value, attempts)
        attempts += 1
        if predicate(value):
            return PollOutcome(True, value, attempts)

        remaining = deadline - loop.time()
        if remaining <= 0:
            return PollOutcome(False, value, attempts)

        interval = intervals_ms[min(attempts - 1, len(intervals_ms) - 1)] / 1000
        await asyncio.sleep(min(interval, remaining))
