"""Typed application messages delivered to the consumer"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union


@dataclass
class TextBlock:
    text: str


@dataclass
class ThinkingBlock:
    thinking: str
    signature: str


@dataclass
class ToolUseBlock:
    id: str
    name: str
    input: Dict[str, Any]


@dataclass
class ToolResultBlock:
    tool_use_id: str
    content: Any = None
    is_error: Optional[bool] = None


ContentBlock = Union[TextBlock, ThinkingBlock, ToolUseBlock, ToolResultBlock]


@dataclass
class UserMessage:
    content: Union[str, List[ContentBlock]]
    uuid: Optional[str] = None
    parent_tool_use_id: Optional[str] = None


@dataclass
class AssistantMessage:
    content: List[ContentBlock]
    model: str
    parent_tool_use_id: Optional[str] = None
    error: Any = None


@dataclass
class SystemMessage:
    subtype: str
    data: Dict[str, Any]


@dataclass
class ResultMessage:
    """Terminal message of a turn"""
    subtype: str
    duration_ms: int
    duration_api_ms: int
    is_error: bool
    num_turns: int
    session_id: str
    total_cost_usd: Optional[float] = None
    usage: Optional[Dict[str, Any]] = None
    result: Optional[str] = None
    structured_output: Any = None


@dataclass
class StreamEvent:
    """Partial-message stream event"""
    uuid: str
    session_id: str
    event: Dict[str, Any]
    parent_tool_use_id: Optional[str] = None


Message = Union[UserMessage, AssistantMessage, SystemMessage, ResultMessage, StreamEvent]
