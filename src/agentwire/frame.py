"""Wire frame types for the agent control channel

Every frame on the wire is a single JSON object terminated by a newline.
The ``type`` field discriminates:

- ``control_request``: a correlated request, either sent by us (handshake,
  interrupt, mode/model changes) or by the peer (permission checks, hook
  callbacks, embedded tool calls)
- ``control_response``: the reply to a control request, matched by
  ``response.request_id``
- ``control_cancel_request``: accepted and ignored
- anything else: an application message passed through to the consumer;
  ``result`` additionally marks the end of a turn

## Control frames

```
{"type": "control_request", "request_id": "req_1_ab12cd34",
 "request": {"subtype": "interrupt"}}

{"type": "control_response",
 "response": {"subtype": "success", "request_id": "req_1_ab12cd34",
              "response": {...}}}

{"type": "control_response",
 "response": {"subtype": "error", "request_id": "req_1_ab12cd34",
              "error": "message"}}
```
"""

from enum import Enum
from typing import Any, Dict, Optional


class FrameType(str, Enum):
    """Frame type discriminator for frames the engine interprets"""
    CONTROL_REQUEST = "control_request"
    CONTROL_RESPONSE = "control_response"
    CONTROL_CANCEL_REQUEST = "control_cancel_request"
    RESULT = "result"  # Terminal application message, arms the result barrier

    @classmethod
    def from_str(cls, value: Any) -> Optional["FrameType"]:
        """Convert a wire type string to FrameType, None for application types"""
        try:
            return cls(value)
        except ValueError:
            return None


class ControlSubtype(str, Enum):
    """Control request subtypes, in both directions"""
    # Sent by us
    INITIALIZE = "initialize"
    INTERRUPT = "interrupt"
    SET_PERMISSION_MODE = "set_permission_mode"
    SET_MODEL = "set_model"
    REWIND_FILES = "rewind_files"
    # Sent by the peer
    CAN_USE_TOOL = "can_use_tool"
    HOOK_CALLBACK = "hook_callback"
    MCP_MESSAGE = "mcp_message"

    @classmethod
    def from_str(cls, value: Any) -> Optional["ControlSubtype"]:
        try:
            return cls(value)
        except ValueError:
            return None


RESPONSE_SUCCESS = "success"
RESPONSE_ERROR = "error"


def frame_type(frame: Dict[str, Any]) -> Optional[FrameType]:
    """Classify a decoded frame; None means an opaque application message"""
    return FrameType.from_str(frame.get("type"))


def is_result(frame: Dict[str, Any]) -> bool:
    """Check whether a frame is a terminal result message (by type only)"""
    return frame.get("type") == FrameType.RESULT.value


def control_request(request_id: str, request: Dict[str, Any]) -> Dict[str, Any]:
    """Build an outbound control_request frame"""
    return {
        "type": FrameType.CONTROL_REQUEST.value,
        "request_id": request_id,
        "request": request,
    }


def control_success(request_id: Optional[str], response: Dict[str, Any]) -> Dict[str, Any]:
    """Build a success control_response frame"""
    return {
        "type": FrameType.CONTROL_RESPONSE.value,
        "response": {
            "subtype": RESPONSE_SUCCESS,
            "request_id": request_id,
            "response": response,
        },
    }


def control_error(request_id: Optional[str], error: str) -> Dict[str, Any]:
    """Build an error control_response frame"""
    return {
        "type": FrameType.CONTROL_RESPONSE.value,
        "response": {
            "subtype": RESPONSE_ERROR,
            "request_id": request_id,
            "error": error,
        },
    }


def user_message(content: Any, session_id: str = "default") -> Dict[str, Any]:
    """Build a user application frame from plain prompt content"""
    return {
        "type": "user",
        "message": {"role": "user", "content": content},
        "parent_tool_use_id": None,
        "session_id": session_id,
    }
