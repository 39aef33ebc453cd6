"""Per-key debounced trigger.

Turns a noisy stream of raw filesystem notifications into one settle signal
per quiet period. ``arm(key)`` implicitly cancels the timer previously armed
for the same key; keys never affect each other's timers.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Dict, Hashable, List, Optional

from livebuild._internal.logging import get_logger, log_failure

logger = get_logger(__name__)

DEFAULT_QUIET_PERIOD = 0.3

TimerFactory = Callable[..., Any]


class Debouncer:
    """Fires ``callback(key)`` once a key has been quiet for ``quiet_period`` seconds.

    Arming is atomic per key: every arm bumps a generation counter under a
    lock, and a timer only fires if its generation is still current. A timer
    that was already running when it got cancelled therefore cannot produce a
    second settle signal.

    Example:
        debouncer = Debouncer(0.3, orchestrator.handle_settle)
        debouncer.arm(InputKind.SCHEMA_FILE)  # safe to call from watchdog threads
    """

    def __init__(
        self,
        quiet_period: float = DEFAULT_QUIET_PERIOD,
        callback: Optional[Callable[[Hashable], None]] = None,
        timer_factory: TimerFactory = threading.Timer,
    ):
        if quiet_period < 0:
            raise ValueError(f"quiet_period must be >= 0, got {quiet_period}")
        self.quiet_period = quiet_period
        self.callback = callback
        self._timer_factory = timer_factory
        self._timers: Dict[Hashable, Any] = {}
        self._generations: Dict[Hashable, int] = {}
        self._lock = threading.Lock()
        self._closed = False

    def arm(self, key: Hashable) -> None:
        """Reset the quiet-period timer for ``key``."""
        with self._lock:
            if self._closed:
                logger.debug("debouncer_closed_arm_ignored", key=str(key))
                return
            generation = self._generations.get(key, 0) + 1
            self._generations[key] = generation
            previous = self._timers.pop(key, None)
            if previous is not None:
                previous.cancel()
            timer = self._timer_factory(self.quiet_period, self._fire, args=(key, generation))
            timer.daemon = True
            self._timers[key] = timer
            timer.start()

    def _fire(self, key: Hashable, generation: int) -> None:
        with self._lock:
            if self._closed or self._generations.get(key) != generation:
                return
            self._timers.pop(key, None)
        logger.debug("settle_signal", key=str(getattr(key, "value", key)))
        if self.callback is None:
            return
        try:
            self.callback(key)
        except Exception as e:
            log_failure(logger, "settle_callback_failed", e, key=str(getattr(key, "value", key)))

    def cancel(self, key: Hashable) -> bool:
        """Cancel the armed timer for ``key``; returns True if one was pending."""
        with self._lock:
            self._generations[key] = self._generations.get(key, 0) + 1
            timer = self._timers.pop(key, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def pending(self) -> List[Hashable]:
        """Keys with an armed timer that has not fired yet."""
        with self._lock:
            return list(self._timers)

    def cancel_all(self) -> None:
        for key in self.pending():
            self.cancel(key)

    def close(self) -> None:
        """Cancel all timers and ignore further arms."""
        with self._lock:
            self._closed = True
        self.cancel_all()
