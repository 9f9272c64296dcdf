"""Error types for the agentwire session engine

Every error carries a human-readable ``message`` attribute. The classes map
onto the failure kinds the engine distinguishes:

- Framing errors (``CLIJSONDecodeError``, ``FrameOverflowError``) are fatal
  to the session and end the delivery queue.
- Correlation errors (``ControlRequestTimeoutError``, ``ControlRequestError``)
  are local to one control request.
- Transport errors (``CLIConnectionError``, ``ProcessError``) are raised to
  writers, or delivered as the terminal queue entry when the peer exits.
"""

from typing import Any, Optional


class AgentWireError(Exception):
    """Base error for the agentwire engine"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class CLIConnectionError(AgentWireError):
    """Transport is not connected, not writable, or the peer is gone"""
    pass


class CLINotFoundError(CLIConnectionError):
    """Agent executable could not be started because it does not exist"""

    def __init__(self, message: str = "Agent executable not found", cli_path: Optional[str] = None):
        if cli_path:
            message = f"{message}: {cli_path}"
        super().__init__(message)
        self.cli_path = cli_path


class ProcessError(AgentWireError):
    """Agent process exited with a non-zero status"""

    def __init__(self, message: str, exit_code: Optional[int] = None, stderr: Optional[str] = None):
        full = message
        if exit_code is not None:
            full = f"{full} (exit code: {exit_code})"
        if stderr:
            full = f"{full}\nError output: {stderr}"
        super().__init__(full)
        self.exit_code = exit_code
        self.stderr = stderr


class CLIJSONDecodeError(AgentWireError):
    """Output from the agent could not be framed as JSON"""

    def __init__(self, line: str, original_error: Optional[BaseException] = None):
        preview = line[:100]
        super().__init__(f"Failed to decode JSON: {preview}...")
        self.line = line
        self.original_error = original_error


class FrameOverflowError(CLIJSONDecodeError):
    """Accumulated frame exceeds the configured maximum buffer size"""

    def __init__(self, size: int, max_size: int):
        super().__init__(
            f"JSON message exceeded maximum buffer size of {max_size} bytes",
            ValueError(f"Buffer size {size} exceeds limit {max_size}"),
        )
        self.message = f"JSON message exceeded maximum buffer size of {max_size} bytes"
        self.args = (self.message,)
        self.size = size
        self.max = max_size


class MessageParseError(AgentWireError):
    """Decoded application frame does not have the expected shape"""

    def __init__(self, message: str, data: Any = None):
        super().__init__(message)
        self.data = data


class ControlProtocolError(AgentWireError):
    """Control request issued outside an active protocol state"""
    pass


class ControlRequestTimeoutError(AgentWireError):
    """No control response arrived before the request timed out"""

    def __init__(self, subtype: Optional[str], timeout: float):
        super().__init__(f"Control request timeout: {subtype}")
        self.subtype = subtype
        self.timeout = timeout


class ControlRequestError(AgentWireError):
    """Peer answered a control request with an error response"""
    pass
