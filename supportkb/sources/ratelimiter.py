"""Fixed-delay pacing for messaging platform calls.

The collector inserts a small constant pause between successive paginated
history requests and between thread-reply fetches to stay under the
platform's per-method rate ceilings. Failed calls are not retried here.

Intended usage:
    pacer = FixedDelayPacer(
        delays={
            "conversations.history": 0.2,
            "conversations.replies": 0.1,
        }
    )
    # perform API call
    ...
    pacer.pause("conversations.history")
"""

import logging
import threading
import time
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


class FixedDelayPacer:
    """Per-method constant delay between calls.

    Args:
        delays: Mapping of method -> seconds to pause after each call.
        default_delay: Pause for methods missing from `delays`.
        sleep: Sleep function, injectable for tests.
    """

    def __init__(
        self,
        delays: Optional[Dict[str, float]] = None,
        default_delay: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the pacer with per-method delays."""
        self._delays: Dict[str, float] = {m: max(0.0, float(d)) for m, d in (delays or {}).items()}
        self._default = max(0.0, float(default_delay))
        self._sleep = sleep
        self._lock = threading.Lock()
        self.total_paused = 0.0

    def delay_for(self, method: str) -> float:
        """Return the configured delay for `method`."""
        return self._delays.get(method, self._default)

    def pause(self, method: str) -> None:
        r"""Sleep the fixed delay configured for `method`.

        Args:
            method: API method name (e.g., \"conversations.history\").
        """
        delay = self.delay_for(method)
        if delay <= 0:
            return
        logger.debug(f"[{method}] pacing: sleeping {delay:.3f}s")
        self._sleep(delay)
        with self._lock:
            self.total_paused += delay
