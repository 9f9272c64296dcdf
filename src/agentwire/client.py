"""Interactive client - a long-lived streaming session with typed messages

Usage:
```python
from agentwire import AgentClient, SessionOptions

with AgentClient(SessionOptions(argv=["my-agent", "--input-format", "stream-json"])) as client:
    client.query("List the files in this directory")
    for message in client.receive_response():
        print(message)
```
"""

from typing import Any, Dict, Iterable, Iterator, Optional, Union

from agentwire.errors import CLIConnectionError
from agentwire.frame import user_message
from agentwire.mcp import sdk_servers_from_config
from agentwire.message_parser import parse_message
from agentwire.messages import Message, ResultMessage
from agentwire.session import MIN_INITIALIZE_TIMEOUT, Session, stream_close_timeout_from_env
from agentwire.transport import SubprocessTransport, Transport
from agentwire.types import SessionOptions


def validate_options(options: SessionOptions, prompt: Any) -> None:
    """Reject option combinations that cannot work

    Raises:
        ValueError: If a permission callback is combined with a plain string prompt
    """
    if options.can_use_tool is not None and isinstance(prompt, str):
        raise ValueError(
            "can_use_tool callback requires streaming mode. "
            "Please provide prompt as an iterable of messages instead of a string."
        )


def build_transport(options: SessionOptions) -> Transport:
    return SubprocessTransport(
        options.argv,
        cwd=options.cwd,
        env=options.env,
        max_buffer_size=options.max_buffer_size,
        stderr=options.stderr,
    )


class AgentClient:
    """Bidirectional client over a streaming session"""

    def __init__(self, options: Optional[SessionOptions] = None, transport: Optional[Transport] = None):
        self.options = options or SessionOptions()
        self._custom_transport = transport
        self._transport: Optional[Transport] = None
        self._session: Optional[Session] = None

    def connect(self, prompt: Optional[Union[str, Iterable[Dict[str, Any]]]] = None) -> "AgentClient":
        """Start the agent, perform the handshake and optionally send a prompt

        A string prompt is sent as one user message. Any other iterable is
        streamed on a background thread.

        Raises:
            ValueError: If the options are inconsistent
            CLIConnectionError: If the transport cannot connect
            ControlRequestTimeoutError: If the handshake is not answered
        """
        validate_options(self.options, prompt)

        transport = self._custom_transport or build_transport(self.options)

        stream_close_timeout = self.options.stream_close_timeout
        if stream_close_timeout is None:
            stream_close_timeout = stream_close_timeout_from_env()
        initialize_timeout = max(self.options.initialize_timeout, stream_close_timeout, MIN_INITIALIZE_TIMEOUT)

        session = Session(
            transport,
            streaming=True,
            can_use_tool=self.options.can_use_tool,
            hooks=self.options.hooks,
            mcp_servers=sdk_servers_from_config(self.options.mcp_servers),
            initialize_timeout=initialize_timeout,
            stream_close_timeout=stream_close_timeout,
        )

        try:
            session.start()
            session.initialize()
        except Exception:
            session.close()
            raise

        self._transport = transport
        self._session = session

        if isinstance(prompt, str):
            self.query(prompt)
        elif prompt is not None:
            session.start_input_stream(prompt)

        return self

    def _require_session(self) -> Session:
        if self._session is None:
            raise CLIConnectionError("Not connected. Call connect() first.")
        return self._session

    def query(self, prompt: Union[str, Iterable[Dict[str, Any]]], session_id: str = "default") -> "AgentClient":
        """Send a prompt string, or each message of an iterable, to the agent"""
        session = self._require_session()
        if isinstance(prompt, str):
            session.write_message(user_message(prompt, session_id=session_id))
        else:
            for message in prompt:
                session.write_message(message, session_id=session_id)
        return self

    def receive_messages(self) -> Iterator[Message]:
        """Yield every typed message until the stream ends"""
        session = self._require_session()
        for data in session.receive_messages():
            yield parse_message(data)

    def receive_response(self) -> Iterator[Message]:
        """Yield typed messages up to and including the next ResultMessage"""
        for message in self.receive_messages():
            yield message
            if isinstance(message, ResultMessage):
                return

    def interrupt(self) -> Dict[str, Any]:
        return self._require_session().interrupt()

    def set_permission_mode(self, mode: str) -> Dict[str, Any]:
        return self._require_session().set_permission_mode(mode)

    def set_model(self, model: Optional[str] = None) -> Dict[str, Any]:
        return self._require_session().set_model(model)

    def rewind_files(self, user_message_id: str) -> Dict[str, Any]:
        return self._require_session().rewind_files(user_message_id)

    def get_server_info(self) -> Optional[Dict[str, Any]]:
        """The peer's response to the handshake"""
        return self._require_session().initialization_result

    def is_connected(self) -> bool:
        return self._session is not None

    def disconnect(self) -> None:
        session = self._session
        self._session = None
        self._transport = None
        if session is not None:
            session.close()

    close = disconnect

    def __enter__(self) -> "AgentClient":
        if self._session is None:
            self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.disconnect()
        return False
