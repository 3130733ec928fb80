import threading
import time
from typing import Optional


class Clock:
    """Wall clock used for attribute expiry and flush backoff."""

    def now(self) -> float:
        return time.time()

    def sleep(self, seconds: float, cancel: Optional[threading.Event] = None) -> bool:
        """
        Wait for *seconds*, waking early if *cancel* is set.

        Returns:
            bool: True if the wait was cancelled.
        """
        if cancel is None:
            time.sleep(seconds)
            return False
        return cancel.wait(seconds)
