"""Session controller - lifecycle and composition of the protocol engine

The Session owns one transport and everything layered on it:

- a reader thread decoding frames and classifying each one
- the ControlCorrelator for requests we send (handshake, interrupt, ...)
- the InboundDispatcher for requests the peer sends (one thread each)
- the ResultBarrier used to sequence input teardown
- the delivery queue of application messages consumed by the caller

Lifecycle:

```
CREATED --start()--> CONNECTED --initialize()--> INITIALIZING --> READY
                                                                    |
                      any state ------------close()-------------> CLOSED
```

Non-streaming sessions skip INITIALIZING (no handshake) and cannot send
control requests.

Usage:
```python
session = Session(transport, hooks={"PreToolUse": [HookMatcher("Bash", [check])]})
session.start()
session.initialize()
session.start_input_stream(prompt_messages)
for message in session.receive_messages():
    ...
session.close()
```
"""

import os
import queue
import sys
import threading
from collections.abc import Iterable
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional

from agentwire.barrier import ResultBarrier
from agentwire.correlator import DEFAULT_CONTROL_TIMEOUT, ControlCorrelator
from agentwire.dispatcher import InboundDispatcher
from agentwire.errors import CLIConnectionError, ControlProtocolError
from agentwire.frame import ControlSubtype, FrameType, frame_type, is_result
from agentwire.json_io import encode_frame
from agentwire.mcp import SdkMcpServer
from agentwire.transport import Transport


DEFAULT_STREAM_CLOSE_TIMEOUT_MS = 60_000
STREAM_CLOSE_TIMEOUT_ENV = "AGENTWIRE_STREAM_CLOSE_TIMEOUT"
MIN_INITIALIZE_TIMEOUT = 60.0

# How long close() waits for the reader thread before abandoning it
READER_JOIN_GRACE = 0.1


def stream_close_timeout_from_env() -> float:
    """Barrier wait in seconds, from AGENTWIRE_STREAM_CLOSE_TIMEOUT (milliseconds)"""
    raw = os.environ.get(STREAM_CLOSE_TIMEOUT_ENV, str(DEFAULT_STREAM_CLOSE_TIMEOUT_MS))
    try:
        return float(raw) / 1000.0
    except ValueError:
        return DEFAULT_STREAM_CLOSE_TIMEOUT_MS / 1000.0


class SessionState(Enum):
    CREATED = "created"
    CONNECTED = "connected"
    INITIALIZING = "initializing"
    READY = "ready"
    CLOSED = "closed"


# Terminal delivery-queue entry for a clean end of stream
_END = object()


class _TransportSink:
    """Frame-level view of a transport's write()"""

    def __init__(self, transport: Transport):
        self._transport = transport

    def write(self, frame: Dict[str, Any]) -> None:
        self._transport.write(encode_frame(frame))


def _matcher_field(matcher: Any, name: str) -> Any:
    if isinstance(matcher, dict):
        return matcher.get(name)
    return getattr(matcher, name, None)


class Session:
    """One control-plane session with an agent process"""

    def __init__(
        self,
        transport: Transport,
        streaming: bool = True,
        can_use_tool: Optional[Callable] = None,
        hooks: Optional[Dict[str, List[Any]]] = None,
        mcp_servers: Optional[Dict[str, SdkMcpServer]] = None,
        initialize_timeout: float = MIN_INITIALIZE_TIMEOUT,
        stream_close_timeout: Optional[float] = None,
    ):
        """Create a session over a transport

        Args:
            transport: Connected or connectable transport
            streaming: Whether the session performs the handshake and may
                send control requests
            can_use_tool: Optional permission callback
            hooks: ``{event: [HookMatcher or dict]}``
            mcp_servers: Embedded tool servers by name
            initialize_timeout: Seconds to wait for the handshake response
                (never less than MIN_INITIALIZE_TIMEOUT)
            stream_close_timeout: Seconds the input stream waits for the first
                result before ending input (defaults from the environment)
        """
        self.transport = transport
        self.streaming = streaming
        self.hooks = hooks or {}
        self.mcp_servers = dict(mcp_servers or {})
        self.initialize_timeout = initialize_timeout
        self.stream_close_timeout = (
            stream_close_timeout if stream_close_timeout is not None else stream_close_timeout_from_env()
        )
        self.initialization_result: Optional[Dict[str, Any]] = None

        sink = _TransportSink(transport)
        self._hook_callbacks: Dict[str, Callable] = {}
        self._callbacks_lock = threading.Lock()
        self._next_callback_id = 0

        self._correlator = ControlCorrelator(sink)
        self._dispatcher = InboundDispatcher(
            sink,
            can_use_tool=can_use_tool,
            hook_callbacks=self._hook_callbacks,
            mcp_servers=self.mcp_servers,
        )
        self._barrier = ResultBarrier()

        self._messages: queue.Queue = queue.Queue()
        self._delivery_lock = threading.Lock()
        self._finished = False
        self._terminal: Any = None

        self._state = SessionState.CREATED
        self._state_lock = threading.Lock()
        self._fatal_error: Optional[BaseException] = None
        self._stream_ended = False
        self._reader: Optional[threading.Thread] = None
        self._input_thread: Optional[threading.Thread] = None

    # =====================================================================
    # State
    # =====================================================================

    @property
    def state(self) -> SessionState:
        with self._state_lock:
            return self._state

    def is_closed(self) -> bool:
        return self.state is SessionState.CLOSED

    @property
    def result_barrier(self) -> ResultBarrier:
        return self._barrier

    @property
    def correlator(self) -> ControlCorrelator:
        return self._correlator

    @property
    def dispatcher(self) -> InboundDispatcher:
        return self._dispatcher

    def _transition(self, expected: SessionState, new: SessionState) -> bool:
        with self._state_lock:
            if self._state is not expected:
                return False
            self._state = new
            return True

    # =====================================================================
    # Lifecycle
    # =====================================================================

    def start(self) -> None:
        """Connect the transport if needed and start the reader thread"""
        with self._state_lock:
            if self._state is not SessionState.CREATED:
                if self._state is SessionState.CLOSED:
                    raise ControlProtocolError("Session is closed")
                return

            if not self.transport.is_ready():
                self.transport.connect()
            self._state = SessionState.CONNECTED

        self._reader = threading.Thread(target=self._read_loop, daemon=True)
        self._reader.start()

    def initialize(self) -> Optional[Dict[str, Any]]:
        """Perform the protocol handshake (streaming sessions only)

        Registers every hook callback under a fresh id and sends them to the
        peer grouped by event and matcher.

        Returns:
            The peer's initialization response, None for non-streaming sessions

        Raises:
            ControlProtocolError: If the session is not connected
            ControlRequestTimeoutError: If the peer does not answer in time
        """
        if not self.streaming:
            self._transition(SessionState.CONNECTED, SessionState.READY)
            return None

        if not self._transition(SessionState.CONNECTED, SessionState.INITIALIZING):
            raise ControlProtocolError(f"Cannot initialize session in state {self.state.value}")

        hooks_config = self._build_hooks_config()
        request = {
            "subtype": ControlSubtype.INITIALIZE.value,
            "hooks": hooks_config if hooks_config else None,
        }

        timeout = max(self.initialize_timeout, MIN_INITIALIZE_TIMEOUT)
        response = self._correlator.request(request, timeout=timeout)
        self.initialization_result = response
        self._transition(SessionState.INITIALIZING, SessionState.READY)
        return response

    def close(self) -> None:
        """Close the session; safe to call repeatedly and from any thread"""
        with self._state_lock:
            if self._state is SessionState.CLOSED:
                return
            self._state = SessionState.CLOSED

        self._correlator.shutdown(ControlProtocolError("Session closed"))
        self.transport.close()

        reader = self._reader
        if reader is not None and reader is not threading.current_thread():
            reader.join(READER_JOIN_GRACE)
        # Threads cannot be killed; a reader still blocked in the transport is
        # a daemon and stops at its next frame. Consumers see the end now.
        self._finish(_END)

    # =====================================================================
    # Hooks
    # =====================================================================

    def _register_hook_callback(self, callback: Callable) -> str:
        with self._callbacks_lock:
            callback_id = f"hook_{self._next_callback_id}"
            self._next_callback_id += 1
            self._hook_callbacks[callback_id] = callback
        return callback_id

    def _build_hooks_config(self) -> Dict[str, List[Dict[str, Any]]]:
        config: Dict[str, List[Dict[str, Any]]] = {}
        for event, matchers in self.hooks.items():
            entries = config.setdefault(str(event), [])
            if matchers is None:
                continue
            if not isinstance(matchers, (list, tuple)):
                matchers = [matchers]

            for matcher in matchers:
                callbacks = _matcher_field(matcher, "hooks") or []
                callback_ids = [self._register_hook_callback(cb) for cb in callbacks]

                entry: Dict[str, Any] = {
                    "matcher": _matcher_field(matcher, "matcher"),
                    "hookCallbackIds": callback_ids,
                }
                timeout = _matcher_field(matcher, "timeout")
                if timeout is not None:
                    entry["timeout"] = timeout
                entries.append(entry)
        return config

    # =====================================================================
    # Control requests
    # =====================================================================

    def send_control_request(self, request: Dict[str, Any], timeout: float = DEFAULT_CONTROL_TIMEOUT) -> Dict[str, Any]:
        """Send a control request through the correlator

        Raises:
            ControlProtocolError: If the session is not streaming, not past
                the handshake, or closed
        """
        if not self.streaming:
            raise ControlProtocolError("Control requests require streaming mode")

        state = self.state
        if state is SessionState.CLOSED:
            raise ControlProtocolError("Session is closed")
        if state is not SessionState.READY:
            raise ControlProtocolError(f"Control requests require a ready session (state: {state.value})")
        if self._fatal_error is not None:
            raise CLIConnectionError(f"Session failed: {self._fatal_error}")
        if self._stream_ended:
            raise CLIConnectionError("Stream ended; the agent can no longer answer control requests")

        return self._correlator.request(request, timeout=timeout)

    def interrupt(self) -> Dict[str, Any]:
        return self.send_control_request({"subtype": ControlSubtype.INTERRUPT.value})

    def set_permission_mode(self, mode: str) -> Dict[str, Any]:
        return self.send_control_request({"subtype": ControlSubtype.SET_PERMISSION_MODE.value, "mode": mode})

    def set_model(self, model: Optional[str] = None) -> Dict[str, Any]:
        return self.send_control_request({"subtype": ControlSubtype.SET_MODEL.value, "model": model})

    def rewind_files(self, user_message_id: str) -> Dict[str, Any]:
        return self.send_control_request({
            "subtype": ControlSubtype.REWIND_FILES.value,
            "user_message_id": user_message_id,
        })

    # =====================================================================
    # Input
    # =====================================================================

    def write_message(self, message: Dict[str, Any], session_id: str = "default") -> None:
        """Write an application frame, stamping ``session_id`` if absent"""
        if self.is_closed():
            raise CLIConnectionError("Session is closed")
        if self._fatal_error is not None:
            raise CLIConnectionError(f"Session failed: {self._fatal_error}")
        if self._stream_ended:
            raise CLIConnectionError("Stream ended; cannot write to the agent")
        if message.get("session_id") is None:
            message = dict(message, session_id=session_id)
        self.transport.write(encode_frame(message))

    def _needs_result_barrier(self) -> bool:
        return bool(self.hooks) or bool(self.mcp_servers)

    def stream_input(self, messages: Iterable) -> None:
        """Write every message, then end input on the transport

        With hooks or embedded servers registered, the peer still needs the
        control channel until the first result, so input is ended only after
        the result barrier is set (or its wait times out).
        """
        try:
            for message in messages:
                if self.is_closed():
                    break
                self.write_message(message)

            if self._needs_result_barrier() and not self.is_closed():
                self._barrier.wait(self.stream_close_timeout)

            self.transport.end_input()
        except Exception as e:
            print(f"[Session] Input stream stopped: {e}", file=sys.stderr)

    def start_input_stream(self, messages: Any) -> Optional[threading.Thread]:
        """Stream ``messages`` on a daemon thread if it is an open-ended iterable

        Single values (str, bytes, dict) are not streamed.
        """
        if isinstance(messages, (str, bytes, dict)) or not isinstance(messages, Iterable):
            return None
        self._input_thread = threading.Thread(target=self.stream_input, args=(messages,), daemon=True)
        self._input_thread.start()
        return self._input_thread

    # =====================================================================
    # Reading
    # =====================================================================

    def _read_loop(self) -> None:
        """Reader thread - decodes frames and routes them by type"""
        terminal: Any = _END
        try:
            for message in self.transport.read_messages():
                if self.is_closed():
                    break

                kind = frame_type(message)
                if kind is FrameType.CONTROL_RESPONSE:
                    response = message.get("response")
                    if isinstance(response, dict):
                        self._correlator.resolve(response)
                    continue
                if kind is FrameType.CONTROL_REQUEST:
                    self._dispatcher.dispatch(message)
                    continue
                if kind is FrameType.CONTROL_CANCEL_REQUEST:
                    continue

                if not self._deliver(message):
                    break
                if is_result(message):
                    self._barrier.signal()
        except Exception as e:
            self._fatal_error = e
            self._correlator.shutdown(e)
            terminal = e
        finally:
            # Nothing can answer requests once the stream is gone
            self._stream_ended = True
            self._correlator.shutdown(CLIConnectionError("Stream ended before a control response arrived"))
            self._finish(terminal)

    def _deliver(self, message: Dict[str, Any]) -> bool:
        with self._delivery_lock:
            if self._finished:
                return False
            self._messages.put(message)
            return True

    def _finish(self, terminal: Any) -> None:
        """Enqueue the single terminal entry (end marker or error)"""
        with self._delivery_lock:
            if self._finished:
                return
            self._finished = True
            self._messages.put(terminal)

    def receive_messages(self) -> Iterator[Dict[str, Any]]:
        """Yield application frames in stream order

        Ends on the end marker; raises if the stream failed.
        """
        while True:
            if self._terminal is not None:
                item = self._terminal
            else:
                item = self._messages.get()
                if item is _END or isinstance(item, BaseException):
                    self._terminal = item
                    # Wake any other consumer blocked on the queue
                    self._messages.put(item)

            if item is _END:
                return
            if isinstance(item, BaseException):
                raise item
            yield item
