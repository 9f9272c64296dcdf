"""One-shot query - run a prompt to completion and yield typed messages"""

from typing import Any, Dict, Iterable, Iterator, Optional, Union

from agentwire.client import build_transport, validate_options
from agentwire.frame import user_message
from agentwire.mcp import sdk_servers_from_config
from agentwire.message_parser import parse_message
from agentwire.messages import Message
from agentwire.session import Session
from agentwire.transport import Transport
from agentwire.types import SessionOptions


def query(
    prompt: Union[str, Iterable[Dict[str, Any]]],
    options: Optional[SessionOptions] = None,
    transport: Optional[Transport] = None,
) -> Iterator[Message]:
    """Start a session for one prompt and return an iterator of its messages

    A string prompt runs a non-streaming session (no handshake, no control
    requests); any other iterable of messages runs a streaming session.
    Options are validated and the session is started before this returns;
    the session is closed when the iterator is exhausted or closed.

    Raises:
        ValueError: If prompt is None or the options are inconsistent
    """
    if prompt is None:
        raise ValueError("prompt is required")

    options = options or SessionOptions()
    validate_options(options, prompt)

    streaming = not isinstance(prompt, str)
    session = Session(
        transport or build_transport(options),
        streaming=streaming,
        can_use_tool=options.can_use_tool,
        hooks=options.hooks,
        mcp_servers=sdk_servers_from_config(options.mcp_servers),
        initialize_timeout=options.initialize_timeout,
        stream_close_timeout=options.stream_close_timeout,
    )

    try:
        session.start()
        session.initialize()
    except Exception:
        session.close()
        raise

    if streaming:
        session.start_input_stream(prompt)
    else:
        session.start_input_stream([user_message(prompt)])

    return _iterate(session)


def _iterate(session: Session) -> Iterator[Message]:
    try:
        for data in session.receive_messages():
            yield parse_message(data)
    finally:
        session.close()
