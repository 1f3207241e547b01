"""Single-shot countdown that force-concludes a suite.

Armed once at suite start on the running asyncio loop. Fires at most
once; disarming after the suite concludes turns a pending fire into a
no-op.
"""

import asyncio
import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)


class Watchdog:
    """Asyncio-based global deadline timer."""

    def __init__(self, timeout_seconds: float, on_expire: Callable[[], None]):
        """Initialize watchdog.

        Args:
            timeout_seconds: Countdown duration in seconds.
            on_expire: Called once, on the loop thread, when the countdown ends.
        """
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        self.timeout_seconds = timeout_seconds
        self.on_expire = on_expire
        self.fired = False
        self._handle: asyncio.TimerHandle | None = None
        self._deadline: float | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self.disarmed = False

    @property
    def armed(self) -> bool:
        return self._handle is not None and not (self.fired or self.disarmed)

    @property
    def remaining(self) -> float:
        """Seconds until the watchdog fires (0 unless armed)."""
        if self._deadline is None or self._loop is None or not self.armed:
            return 0.0
        return max(0.0, self._deadline - self._loop.time())

    def arm(self) -> None:
        """Start the countdown. Must be called from a running loop.

        Raises:
            RuntimeError: If the watchdog was already armed.
        """
        if self._handle is not None:
            raise RuntimeError("Watchdog can only be armed once")
        self._loop = asyncio.get_running_loop()
        self._deadline = self._loop.time() + self.timeout_seconds
        self._handle = self._loop.call_later(self.timeout_seconds, self._fire)
        logger.debug(f"Watchdog armed for {self.timeout_seconds}s")

    def disarm(self) -> None:
        """Cancel a pending fire; no-op if already fired or never armed."""
        if self._handle is not None and not self.fired:
            self._handle.cancel()
            self.disarmed = True
            logger.debug("Watchdog disarmed")

    def _fire(self) -> None:
        if self.fired or self.disarmed:
            return
        self.fired = True
        logger.warning(f"Watchdog expired after {self.timeout_seconds}s")
        self.on_expire()
