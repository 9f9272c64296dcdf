"""Control request correlation

Outbound control requests are multiplexed onto the single output stream and
answered asynchronously by ``control_response`` frames on the input stream.
The correlator pairs the two by request id:

- ``request()`` registers a single-slot wait handle, writes the request and
  blocks until it is resolved or times out
- ``resolve()`` is called by the read path for every control response
- ``fail_all()`` is called when the stream fails or the session closes

Each pending request is resolved exactly once. A response arriving after
its request timed out finds no entry and is dropped.
"""

import queue
import secrets
import threading
from typing import Any, Dict, Optional

from agentwire.errors import ControlRequestError, ControlRequestTimeoutError
from agentwire.frame import RESPONSE_ERROR, control_request
from agentwire.json_io import FrameWriter


DEFAULT_CONTROL_TIMEOUT = 60.0


class PendingRequest:
    """Single-slot wait handle for one outstanding control request"""

    def __init__(self, request_id: str, subtype: Optional[str]):
        self.request_id = request_id
        self.subtype = subtype
        # Receives exactly one item: a response dict or an exception
        self.slot: queue.Queue = queue.Queue(maxsize=1)

    def deliver(self, item: Any) -> None:
        self.slot.put_nowait(item)


class ControlCorrelator:
    """Assigns request ids, tracks pending requests and matches responses"""

    def __init__(self, writer: FrameWriter):
        self._writer = writer
        self._pending: Dict[str, PendingRequest] = {}
        self._lock = threading.Lock()
        self._counter = 0
        self._closed_error: Optional[BaseException] = None

    def next_request_id(self) -> str:
        """Generate a fresh id: monotonic counter plus a random component"""
        with self._lock:
            self._counter += 1
            counter = self._counter
        return f"req_{counter}_{secrets.token_hex(4)}"

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def is_pending(self, request_id: str) -> bool:
        with self._lock:
            return request_id in self._pending

    def request(self, payload: Dict[str, Any], timeout: float = DEFAULT_CONTROL_TIMEOUT) -> Dict[str, Any]:
        """Send a control request and wait for its response

        Args:
            payload: Request body, including its ``subtype``
            timeout: Seconds to wait for the response

        Returns:
            The response's data payload (empty dict if absent)

        Raises:
            ControlRequestTimeoutError: If no response arrives in time
            ControlRequestError: If the peer answered with an error
            CLIConnectionError: If the request could not be written
            AgentWireError: If the stream failed while waiting
                or before the request was registered
        """
        request_id = self.next_request_id()
        pending = PendingRequest(request_id, payload.get("subtype"))

        with self._lock:
            if self._closed_error is not None:
                raise self._closed_error
            self._pending[request_id] = pending

        try:
            self._writer.write(control_request(request_id, payload))
        except Exception:
            with self._lock:
                self._pending.pop(request_id, None)
            raise

        try:
            item = pending.slot.get(timeout=timeout)
        except queue.Empty:
            with self._lock:
                removed = self._pending.pop(request_id, None)
            if removed is None:
                # Claimed by resolve()/fail_all() concurrently; delivery follows
                item = pending.slot.get()
            else:
                raise ControlRequestTimeoutError(pending.subtype, timeout)

        if isinstance(item, BaseException):
            raise item

        data = item.get("response")
        return data if isinstance(data, dict) else {}

    def resolve(self, response: Dict[str, Any]) -> bool:
        """Resolve the pending request matching ``response["request_id"]``

        Args:
            response: The inner ``response`` object of a control_response frame

        Returns:
            True if a waiter was resolved, False for unknown or late ids
        """
        request_id = response.get("request_id")
        if not isinstance(request_id, str):
            return False

        with self._lock:
            pending = self._pending.pop(request_id, None)
        if pending is None:
            return False

        if response.get("subtype") == RESPONSE_ERROR:
            pending.deliver(ControlRequestError(response.get("error") or "Unknown error"))
        else:
            pending.deliver(response)
        return True

    def fail_all(self, error: BaseException) -> int:
        """Force-resolve every pending request with ``error``

        Returns:
            Number of requests failed
        """
        with self._lock:
            failed = list(self._pending.values())
            self._pending.clear()
        for pending in failed:
            pending.deliver(error)
        return len(failed)

    def shutdown(self, error: BaseException) -> int:
        """Fail every pending request and refuse all later ones with ``error``

        The first shutdown error sticks; later calls only fail what is pending.

        Returns:
            Number of requests failed
        """
        with self._lock:
            if self._closed_error is None:
                self._closed_error = error
        return self.fail_all(error)
