"""Map decoded application frames to typed messages"""

from typing import Any, Dict, Optional

from agentwire.errors import MessageParseError
from agentwire.messages import (
    AssistantMessage,
    ContentBlock,
    Message,
    ResultMessage,
    StreamEvent,
    SystemMessage,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage,
)


def parse_message(data: Any) -> Message:
    """Parse one decoded application frame

    Raises:
        MessageParseError: If the frame is not a dict, has no or an unknown
            ``type``, or is missing a required field
    """
    if not isinstance(data, dict):
        raise MessageParseError(
            f"Invalid message data type (expected dict, got {type(data).__name__})",
            data=data,
        )

    message_type = data.get("type")
    if not message_type:
        raise MessageParseError("Message missing 'type' field", data=data)

    try:
        if message_type == "user":
            return _parse_user_message(data)
        if message_type == "assistant":
            return _parse_assistant_message(data)
        if message_type == "system":
            return SystemMessage(subtype=data["subtype"], data=data)
        if message_type == "result":
            return ResultMessage(
                subtype=data["subtype"],
                duration_ms=data["duration_ms"],
                duration_api_ms=data["duration_api_ms"],
                is_error=data["is_error"],
                num_turns=data["num_turns"],
                session_id=data["session_id"],
                total_cost_usd=data.get("total_cost_usd"),
                usage=data.get("usage"),
                result=data.get("result"),
                structured_output=data.get("structured_output"),
            )
        if message_type == "stream_event":
            return StreamEvent(
                uuid=data["uuid"],
                session_id=data["session_id"],
                event=data["event"],
                parent_tool_use_id=data.get("parent_tool_use_id"),
            )
    except KeyError as e:
        raise MessageParseError(
            f"Missing required field in {message_type} message: {e}", data=data
        ) from e
    except (TypeError, AttributeError) as e:
        raise MessageParseError(f"Invalid {message_type} message: {e}", data=data) from e

    raise MessageParseError(f"Unknown message type: {message_type}", data=data)


def _parse_user_message(data: Dict[str, Any]) -> UserMessage:
    content = data["message"]["content"]
    if isinstance(content, list):
        content = [b for b in (parse_content_block(block) for block in content) if b is not None]
    return UserMessage(
        content=content,
        uuid=data.get("uuid"),
        parent_tool_use_id=data.get("parent_tool_use_id"),
    )


def _parse_assistant_message(data: Dict[str, Any]) -> AssistantMessage:
    message = data["message"]
    blocks = [parse_content_block(block) for block in message["content"]]
    return AssistantMessage(
        content=[b for b in blocks if b is not None],
        model=message["model"],
        parent_tool_use_id=data.get("parent_tool_use_id"),
        error=message.get("error"),
    )


def parse_content_block(block: Dict[str, Any]) -> Optional[ContentBlock]:
    """Parse a content block; unknown block types are dropped (None)

    Raises:
        MessageParseError: If the block is not a JSON object
    """
    if not isinstance(block, dict):
        raise MessageParseError(
            f"Invalid content block (expected dict, got {type(block).__name__})", data=block
        )
    block_type = block.get("type")
    if block_type == "text":
        return TextBlock(text=block["text"])
    if block_type == "thinking":
        return ThinkingBlock(thinking=block["thinking"], signature=block["signature"])
    if block_type == "tool_use":
        return ToolUseBlock(id=block["id"], name=block["name"], input=block["input"])
    if block_type == "tool_result":
        return ToolResultBlock(
            tool_use_id=block["tool_use_id"],
            content=block.get("content"),
            is_error=block.get("is_error"),
        )
    return None
