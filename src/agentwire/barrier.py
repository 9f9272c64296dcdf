"""One-shot result barrier

Lets the input-streaming thread wait until the first terminal ``result``
message has been read before it closes the input side of the transport.
The barrier goes from unset to set at most once; later signals are no-ops.
"""

import threading
from typing import Optional


class ResultBarrier:
    """Signal-once gate built on a condition variable"""

    def __init__(self):
        self._cond = threading.Condition()
        self._set = False

    def is_set(self) -> bool:
        with self._cond:
            return self._set

    def signal(self) -> bool:
        """Set the barrier and wake all waiters

        Returns:
            True if this call set the barrier, False if it was already set
        """
        with self._cond:
            if self._set:
                return False
            self._set = True
            self._cond.notify_all()
            return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the barrier is set or ``timeout`` seconds elapse

        An expired wait is not an error.

        Returns:
            True if the barrier is set
        """
        with self._cond:
            return self._cond.wait_for(lambda: self._set, timeout=timeout)
