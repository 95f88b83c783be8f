"""
Bounded polling shared by the lock wait and the OTP wait.
"""
import time
from typing import Callable, Optional, TypeVar

from harness_errors import WaitTimeoutError


T = TypeVar('T')


class SystemClock:
    """Wall clock. Swapped for a fake in tests."""

    def time(self) -> float:
        return time.time()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


def poll_until(
    attempt: Callable[[], Optional[T]],
    timeout: float,
    interval: float,
    clock=None,
    on_wait: Optional[Callable[[float], None]] = None
) -> T:
    """
    Call attempt() until it returns something other than None.

    Args:
        attempt: Zero-argument callable; None means "not yet"
        timeout: Seconds to keep trying
        interval: Seconds to sleep between attempts
        clock: Object with time() and sleep(); defaults to SystemClock
        on_wait: Called with elapsed seconds after every miss

    Returns:
        The first non-None value returned by attempt()

    Raises:
        WaitTimeoutError: timeout elapsed without a result
    """
    clock = clock or SystemClock()
    started = clock.time()

    while True:
        result = attempt()
        if result is not None:
            return result

        elapsed = clock.time() - started
        if elapsed >= timeout:
            raise WaitTimeoutError(elapsed, timeout)

        if on_wait:
            on_wait(elapsed)

        clock.sleep(min(interval, max(timeout - elapsed, 0)))
