"""Tests for session module - lifecycle, handshake, delivery and input streaming

Uses an in-memory FakeTransport (see conftest.py) to play the agent process.
"""

import threading
import time

import pytest

from agentwire.errors import (
    CLIConnectionError,
    CLIJSONDecodeError,
    ControlProtocolError,
    ControlRequestError,
)
from agentwire.mcp import SdkMcpServer
from agentwire.session import (
    DEFAULT_STREAM_CLOSE_TIMEOUT_MS,
    MIN_INITIALIZE_TIMEOUT,
    STREAM_CLOSE_TIMEOUT_ENV,
    Session,
    SessionState,
    stream_close_timeout_from_env,
)
from agentwire.types import HookMatcher, PermissionResultAllow

from conftest import FakeTransport, answer_control_requests, assistant_frame, result_frame


def ready_session(transport, **kwargs):
    session = Session(transport, **kwargs)
    session.start()
    session.initialize()
    return session


def user(text):
    return {"type": "user", "message": {"role": "user", "content": text}}


# TEST140: The handshake registers hook callbacks and sends them grouped by event
def test_handshake_sends_hooks_config(transport):
    hooks = {
        "PreToolUse": [HookMatcher("Bash", [lambda i, t, c: {}, lambda i, t, c: {}], timeout=30)],
        "Stop": [{"matcher": None, "hooks": [lambda i, t, c: {}]}],
    }
    session = ready_session(transport, hooks=hooks)

    assert session.state is SessionState.READY
    assert session.initialization_result == {"commands": ["compact"]}

    request = transport.frames_of("control_request")[0]["request"]
    assert request == {
        "subtype": "initialize",
        "hooks": {
            "PreToolUse": [{"matcher": "Bash", "hookCallbackIds": ["hook_0", "hook_1"], "timeout": 30}],
            "Stop": [{"matcher": None, "hookCallbackIds": ["hook_2"]}],
        },
    }
    session.close()


# TEST141: Without hooks the handshake sends hooks: null
def test_handshake_without_hooks(transport):
    session = ready_session(transport)
    assert transport.frames_of("control_request")[0]["request"] == {"subtype": "initialize", "hooks": None}
    session.close()


# TEST142: A non-streaming session skips the handshake and refuses control requests
def test_non_streaming_session(transport):
    session = ready_session(transport, streaming=False)
    assert session.state is SessionState.READY
    assert session.initialization_result is None
    assert transport.frames_of("control_request") == []

    with pytest.raises(ControlProtocolError, match="streaming mode"):
        session.interrupt()
    session.close()


# TEST143: Control requests before the handshake completes are refused
def test_control_request_before_initialize(transport):
    session = Session(transport)
    session.start()
    assert session.state is SessionState.CONNECTED
    with pytest.raises(ControlProtocolError, match="ready session"):
        session.set_model("agent-small")
    session.close()


# TEST144: Control operations send their subtype-specific payloads
def test_control_operations_payloads(transport):
    session = ready_session(transport)
    session.interrupt()
    session.set_permission_mode("acceptEdits")
    session.set_model(None)
    session.rewind_files("msg_42")

    requests = [f["request"] for f in transport.frames_of("control_request")[1:]]
    assert requests == [
        {"subtype": "interrupt"},
        {"subtype": "set_permission_mode", "mode": "acceptEdits"},
        {"subtype": "set_model", "model": None},
        {"subtype": "rewind_files", "user_message_id": "msg_42"},
    ]
    session.close()


# TEST145: A peer error response surfaces as ControlRequestError
def test_control_error_response():
    transport = FakeTransport(responder=answer_control_requests({"set_model": ("error", "Unknown model")}))
    session = ready_session(transport)
    with pytest.raises(ControlRequestError, match="Unknown model"):
        session.set_model("nope")
    session.close()


# TEST146: Application messages are delivered in order, then the end marker; the barrier is set once
def test_delivery_end_to_end(transport):
    session = ready_session(transport)
    transport.feed(assistant_frame("hi"))
    transport.feed(result_frame())
    transport.finish()

    delivered = list(session.receive_messages())
    assert [m["type"] for m in delivered] == ["assistant", "result"]
    assert session.result_barrier.is_set()
    assert session.result_barrier.signal() is False, "barrier must already be set"

    # The end marker is sticky
    assert list(session.receive_messages()) == []
    session.close()


# TEST147: Control frames are consumed by the engine, never delivered
def test_control_frames_not_delivered(transport):
    session = ready_session(transport, can_use_tool=lambda n, i, c: PermissionResultAllow())
    transport.feed({"type": "control_cancel_request", "request_id": "req_9_00000000"})
    transport.feed({
        "type": "control_request",
        "request_id": "peer_1",
        "request": {"subtype": "can_use_tool", "tool_name": "Read", "input": {"path": "x"}},
    })
    transport.feed(result_frame())

    assert transport.wait_for(lambda: len(transport.frames_of("control_response")) == 1)
    transport.finish()

    delivered = list(session.receive_messages())
    assert [m["type"] for m in delivered] == ["result"]

    reply = transport.frames_of("control_response")[0]["response"]
    assert reply == {
        "subtype": "success",
        "request_id": "peer_1",
        "response": {"behavior": "allow", "updatedInput": {"path": "x"}},
    }
    session.close()


# TEST148: Hook callbacks registered in the handshake answer peer hook requests
def test_hook_callback_after_handshake(transport):
    def block_rm(hook_input, tool_use_id, context):
        return {"decision": "block", "continue_": False}

    session = ready_session(transport, hooks={"PreToolUse": [HookMatcher("Bash", [block_rm])]})
    transport.feed({
        "type": "control_request",
        "request_id": "peer_2",
        "request": {"subtype": "hook_callback", "callback_id": "hook_0", "input": {}, "tool_use_id": "t1"},
    })

    assert transport.wait_for(lambda: len(transport.frames_of("control_response")) == 1)
    reply = transport.frames_of("control_response")[0]["response"]
    assert reply["response"] == {"decision": "block", "continue": False}
    session.close()


# TEST149: A framing error becomes the terminal entry after earlier messages
def test_fatal_error_is_terminal(transport):
    session = ready_session(transport)
    transport.feed(assistant_frame())
    transport.feed_raw("this is not json\n")
    transport.finish()

    messages = session.receive_messages()
    assert next(messages)["type"] == "assistant"
    with pytest.raises(CLIJSONDecodeError):
        next(messages)

    # Later consumers see the same error, and control requests are refused
    with pytest.raises(CLIJSONDecodeError):
        list(session.receive_messages())
    with pytest.raises(CLIConnectionError, match="Session failed"):
        session.interrupt()
    session.close()


# TEST150: A stream ending while a request is pending fails that request
def test_eof_fails_pending_requests():
    transport = FakeTransport(responder=lambda t, f: (
        answer_control_requests()(t, f) if f.get("request", {}).get("subtype") == "initialize" else None
    ))
    session = ready_session(transport)
    errors = []

    def interrupt():
        try:
            session.interrupt()
        except CLIConnectionError as e:
            errors.append(e)

    thread = threading.Thread(target=interrupt)
    thread.start()
    assert transport.wait_for(lambda: session.correlator.pending_count() == 1)
    transport.finish()
    thread.join(5)

    assert len(errors) == 1
    session.close()


# TEST151: close() is idempotent, fails pending requests and ends delivery
def test_close_idempotent():
    transport = FakeTransport(responder=lambda t, f: (
        answer_control_requests()(t, f) if f.get("request", {}).get("subtype") == "initialize" else None
    ))
    session = ready_session(transport)
    errors = []

    def interrupt():
        try:
            session.interrupt()
        except ControlProtocolError as e:
            errors.append(e)

    thread = threading.Thread(target=interrupt)
    thread.start()
    assert transport.wait_for(lambda: session.correlator.pending_count() == 1)

    closers = [threading.Thread(target=session.close) for _ in range(3)]
    for t in closers:
        t.start()
    for t in closers:
        t.join(5)
    session.close()
    thread.join(5)

    assert session.is_closed()
    assert transport.closed
    assert [str(e) for e in errors] == ["Session closed"]
    assert list(session.receive_messages()) == []
    with pytest.raises(ControlProtocolError, match="closed"):
        session.interrupt()


# TEST152: With hooks registered, input ends only after the first result
def test_stream_input_waits_for_result(transport):
    session = ready_session(
        transport,
        hooks={"PreToolUse": [HookMatcher(None, [lambda i, t, c: {}])]},
        stream_close_timeout=5.0,
    )
    thread = session.start_input_stream([user("one"), dict(user("two"), session_id="s2")])

    assert transport.wait_for(lambda: len(transport.frames_of("user")) == 2)
    users = transport.frames_of("user")
    assert users[0]["session_id"] == "default"
    assert users[1]["session_id"] == "s2"
    assert not transport.input_ended, "input must stay open until the first result"

    transport.feed(result_frame(is_error=True))
    thread.join(5)
    assert transport.input_ended
    session.close()


# TEST153: With embedded servers registered and no result, input ends after the timeout
def test_stream_input_barrier_timeout(transport):
    session = ready_session(
        transport,
        mcp_servers={"calc": SdkMcpServer("calc")},
        stream_close_timeout=0.05,
    )
    thread = session.start_input_stream(iter([user("go")]))
    thread.join(5)
    assert transport.input_ended
    assert not session.result_barrier.is_set()
    session.close()


# TEST154: Without hooks or servers, input ends as soon as the messages are written
def test_stream_input_without_barrier(transport):
    session = ready_session(transport, stream_close_timeout=30.0)
    thread = session.start_input_stream([user("go")])
    thread.join(5)
    assert not thread.is_alive()
    assert transport.input_ended
    session.close()


# TEST155: Single values are not treated as input streams
def test_start_input_stream_ignores_single_values(transport):
    session = ready_session(transport)
    assert session.start_input_stream("hello") is None
    assert session.start_input_stream(user("hello")) is None
    assert session.start_input_stream(b"hello") is None
    session.close()


# TEST156: start() connects a transport that is not ready, and a closed session cannot restart
def test_start_connects_and_closed_cannot_restart(transport):
    session = Session(transport, streaming=False)
    session.start()
    session.start()
    assert transport.connect_calls == 1
    session.close()
    with pytest.raises(ControlProtocolError):
        session.start()


# TEST157: The stream close timeout comes from the environment in milliseconds
def test_stream_close_timeout_from_env(monkeypatch):
    monkeypatch.delenv(STREAM_CLOSE_TIMEOUT_ENV, raising=False)
    assert stream_close_timeout_from_env() == DEFAULT_STREAM_CLOSE_TIMEOUT_MS / 1000.0

    monkeypatch.setenv(STREAM_CLOSE_TIMEOUT_ENV, "2500")
    assert stream_close_timeout_from_env() == 2.5
    assert Session(FakeTransport()).stream_close_timeout == 2.5

    monkeypatch.setenv(STREAM_CLOSE_TIMEOUT_ENV, "soon")
    assert stream_close_timeout_from_env() == 60.0


# TEST158: Malformed control responses are ignored and later frames still arrive
def test_malformed_control_response_ignored(transport):
    session = ready_session(transport)
    transport.feed({"type": "control_response", "response": "garbage"})
    transport.feed({"type": "control_response", "response": {"subtype": "success", "request_id": ["x"]}})
    transport.feed(assistant_frame("still here"))
    transport.finish()

    delivered = list(session.receive_messages())
    assert [m["type"] for m in delivered] == ["assistant"]
    assert delivered[0]["message"]["content"][0]["text"] == "still here"
    session.close()


# TEST159: After the stream ends, control requests and writes fail at once
def test_requests_after_stream_end_fail_fast():
    transport = FakeTransport(responder=lambda t, f: (
        answer_control_requests()(t, f) if f.get("request", {}).get("subtype") == "initialize" else None
    ))
    session = ready_session(transport)
    transport.finish()
    assert list(session.receive_messages()) == []

    start = time.monotonic()
    with pytest.raises(CLIConnectionError, match="Stream ended"):
        session.send_control_request({"subtype": "interrupt"}, timeout=5.0)
    assert time.monotonic() - start < 1.0
    assert session.correlator.pending_count() == 0

    with pytest.raises(CLIConnectionError, match="Stream ended"):
        session.write_message(user("late"))
    session.close()


# TEST160: The handshake waits at least the minimum initialize timeout
def test_handshake_timeout_floor(transport):
    session = Session(transport, initialize_timeout=0.3)
    session.start()
    timeouts = []

    def record_request(payload, timeout):
        timeouts.append(timeout)
        return {}

    session.correlator.request = record_request
    session.initialize()
    assert timeouts == [MIN_INITIALIZE_TIMEOUT]

    longer = Session(FakeTransport(), initialize_timeout=90.0)
    longer.start()
    longer.correlator.request = record_request
    longer.initialize()
    assert timeouts[-1] == 90.0

    session.close()
    longer.close()


# TEST161: Input streaming on a closed session ends input without waiting for a result
def test_stream_input_after_close_skips_barrier(transport):
    session = ready_session(
        transport,
        hooks={"PreToolUse": [HookMatcher(None, [lambda i, t, c: {}])]},
        stream_close_timeout=30.0,
    )
    session.close()

    start = time.monotonic()
    session.stream_input([user("ignored")])
    assert time.monotonic() - start < 5.0
    assert transport.input_ended
    assert transport.frames_of("user") == []
