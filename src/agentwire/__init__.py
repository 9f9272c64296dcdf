"""agentwire - client-side control protocol for agent processes

This library talks to an agent process over newline-delimited JSON on its
stdin/stdout. Application messages stream to the caller while a control
channel multiplexed on the same pipes carries request/response exchanges
in both directions: the handshake, interrupts and mode changes we send,
and permission checks, hook callbacks and embedded tool calls the agent
sends back.
"""

from agentwire.errors import (
    AgentWireError,
    CLIConnectionError,
    CLINotFoundError,
    ProcessError,
    CLIJSONDecodeError,
    FrameOverflowError,
    MessageParseError,
    ControlProtocolError,
    ControlRequestTimeoutError,
    ControlRequestError,
)

from agentwire.frame import FrameType, ControlSubtype
from agentwire.json_io import FrameDecoder, FrameWriter, encode_frame, DEFAULT_MAX_BUFFER_SIZE
from agentwire.correlator import ControlCorrelator, DEFAULT_CONTROL_TIMEOUT
from agentwire.dispatcher import InboundDispatcher
from agentwire.barrier import ResultBarrier

from agentwire.types import (
    PermissionRuleValue,
    PermissionUpdate,
    ToolPermissionContext,
    PermissionResultAllow,
    PermissionResultDeny,
    HookMatcher,
    SessionOptions,
)

from agentwire.mcp import (
    SdkMcpTool,
    SdkMcpServer,
    tool,
    create_sdk_mcp_server,
)

from agentwire.messages import (
    TextBlock,
    ThinkingBlock,
    ToolUseBlock,
    ToolResultBlock,
    UserMessage,
    AssistantMessage,
    SystemMessage,
    ResultMessage,
    StreamEvent,
)
from agentwire.message_parser import parse_message

from agentwire.transport import Transport, SubprocessTransport
from agentwire.session import Session, SessionState
from agentwire.client import AgentClient
from agentwire.query import query

__version__ = "0.1.0"

__all__ = [
    # Errors
    "AgentWireError",
    "CLIConnectionError",
    "CLINotFoundError",
    "ProcessError",
    "CLIJSONDecodeError",
    "FrameOverflowError",
    "MessageParseError",
    "ControlProtocolError",
    "ControlRequestTimeoutError",
    "ControlRequestError",
    # Framing
    "FrameType",
    "ControlSubtype",
    "FrameDecoder",
    "FrameWriter",
    "encode_frame",
    "DEFAULT_MAX_BUFFER_SIZE",
    # Control plane
    "ControlCorrelator",
    "DEFAULT_CONTROL_TIMEOUT",
    "InboundDispatcher",
    "ResultBarrier",
    # Types
    "PermissionRuleValue",
    "PermissionUpdate",
    "ToolPermissionContext",
    "PermissionResultAllow",
    "PermissionResultDeny",
    "HookMatcher",
    "SessionOptions",
    # Embedded tool servers
    "SdkMcpTool",
    "SdkMcpServer",
    "tool",
    "create_sdk_mcp_server",
    # Messages
    "TextBlock",
    "ThinkingBlock",
    "ToolUseBlock",
    "ToolResultBlock",
    "UserMessage",
    "AssistantMessage",
    "SystemMessage",
    "ResultMessage",
    "StreamEvent",
    "parse_message",
    # Sessions
    "Transport",
    "SubprocessTransport",
    "Session",
    "SessionState",
    "AgentClient",
    "query",
]
