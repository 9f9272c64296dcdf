"""Shared fixtures: an in-memory transport standing in for the agent process"""

import json
import queue
import threading
import time

import pytest

from agentwire.errors import CLIConnectionError
from agentwire.json_io import encode_frame
from agentwire.transport import Transport


_EOF = object()


class FakeTransport(Transport):
    """In-memory transport

    Frames the session writes are decoded into ``written``; ``responder`` (if
    set) is called with each one and may push replies with ``feed``. Lines
    pushed with ``feed``/``feed_raw`` are what the session reads.
    """

    def __init__(self, responder=None):
        self.responder = responder
        self.written = []
        self.connected = False
        self.closed = False
        self.input_ended = False
        self.connect_calls = 0
        self._inbound = queue.Queue()
        self._lock = threading.Lock()

    # Peer side

    def feed(self, frame):
        self._inbound.put(encode_frame(frame))

    def feed_raw(self, text):
        self._inbound.put(text)

    def finish(self, error=None):
        self._inbound.put(error if error is not None else _EOF)

    def frames_of(self, frame_type):
        with self._lock:
            return [f for f in self.written if f.get("type") == frame_type]

    def wait_for(self, predicate, timeout=5.0):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(0.005)
        return False

    # Transport side

    def connect(self):
        self.connect_calls += 1
        self.connected = True

    def write(self, data):
        if not self.connected or self.closed:
            raise CLIConnectionError("Transport is not ready for writing")
        for line in data.splitlines():
            frame = json.loads(line)
            with self._lock:
                self.written.append(frame)
            if self.responder is not None:
                self.responder(self, frame)

    def read_lines(self):
        while True:
            item = self._inbound.get()
            if item is _EOF:
                return
            if isinstance(item, BaseException):
                raise item
            yield item

    def close(self):
        if not self.closed:
            self.closed = True
            self.connected = False
            self._inbound.put(_EOF)

    def is_ready(self):
        return self.connected and not self.closed

    def end_input(self):
        self.input_ended = True


def answer_control_requests(responses=None):
    """Responder answering our control requests with success

    ``responses`` maps a subtype to the data payload (or to an error string
    wrapped in ``("error", message)``).
    """
    responses = responses or {}

    def responder(transport, frame):
        if frame.get("type") != "control_request":
            return
        subtype = frame["request"].get("subtype")
        reply = responses.get(subtype, {})
        if isinstance(reply, tuple) and reply[0] == "error":
            inner = {"subtype": "error", "request_id": frame["request_id"], "error": reply[1]}
        else:
            inner = {"subtype": "success", "request_id": frame["request_id"], "response": reply}
        transport.feed({"type": "control_response", "response": inner})

    return responder


@pytest.fixture
def transport():
    t = FakeTransport(responder=answer_control_requests({"initialize": {"commands": ["compact"]}}))
    yield t
    t.close()


def assistant_frame(text="hello"):
    return {
        "type": "assistant",
        "message": {"model": "agent-large", "content": [{"type": "text", "text": text}]},
        "parent_tool_use_id": None,
    }


def result_frame(is_error=False):
    return {
        "type": "result",
        "subtype": "error_during_execution" if is_error else "success",
        "duration_ms": 12,
        "duration_api_ms": 10,
        "is_error": is_error,
        "num_turns": 1,
        "session_id": "default",
    }
