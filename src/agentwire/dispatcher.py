"""Inbound control request dispatcher

The peer sends ``control_request`` frames to ask for local decisions. Each
one is handled on its own daemon thread so a slow callback never stalls the
read loop, and every request gets exactly one ``control_response``:
success with the handler's payload, or error with its message.

Supported subtypes:

- ``can_use_tool``: ask the permission callback whether a tool may run
- ``hook_callback``: run a hook registered during the handshake
- ``mcp_message``: forward a JSON-RPC message to an embedded tool server
"""

import sys
import threading
from typing import Any, Callable, Dict, Optional

from agentwire.frame import ControlSubtype, control_error, control_success
from agentwire.json_io import FrameWriter
from agentwire.mcp import SdkMcpServer, server_not_found
from agentwire.types import PermissionResultAllow, PermissionResultDeny, ToolPermissionContext


# Local hook-output names that would clash with Python keywords -> wire names
HOOK_OUTPUT_RENAMES = {
    "async_": "async",
    "continue_": "continue",
}


def convert_hook_output(hook_output: Dict[str, Any]) -> Dict[str, Any]:
    """Rename reserved hook output fields to the peer's field names"""
    converted = {}
    for key, value in hook_output.items():
        key = str(key)
        converted[HOOK_OUTPUT_RENAMES.get(key, key)] = value
    return converted


class InboundDispatcher:
    """Routes inbound control requests to permission, hook and tool handlers"""

    def __init__(
        self,
        writer: FrameWriter,
        can_use_tool: Optional[Callable] = None,
        hook_callbacks: Optional[Dict[str, Callable]] = None,
        mcp_servers: Optional[Dict[str, SdkMcpServer]] = None,
    ):
        self._writer = writer
        self.can_use_tool = can_use_tool
        # Shared with the session, which fills it during the handshake
        self.hook_callbacks = hook_callbacks if hook_callbacks is not None else {}
        self.mcp_servers = mcp_servers if mcp_servers is not None else {}

    def dispatch(self, frame: Dict[str, Any]) -> threading.Thread:
        """Handle a control request on a new daemon thread"""
        thread = threading.Thread(target=self.handle, args=(frame,), daemon=True)
        thread.start()
        return thread

    def handle(self, frame: Dict[str, Any]) -> None:
        """Run the handler for one control request and write its reply

        Never raises: handler failures become error replies, and a reply
        that cannot be written is reported on stderr.
        """
        request_id = frame.get("request_id")
        request = frame.get("request") or {}

        try:
            payload = self._route(request)
            reply = control_success(request_id, payload)
        except Exception as e:
            reply = control_error(request_id, str(e) or type(e).__name__)

        try:
            self._writer.write(reply)
        except Exception as e:
            print(f"[Dispatcher] Failed to write control response for {request_id}: {e}", file=sys.stderr)

    def _route(self, request: Dict[str, Any]) -> Dict[str, Any]:
        subtype = ControlSubtype.from_str(request.get("subtype"))

        if subtype == ControlSubtype.CAN_USE_TOOL:
            return self._handle_can_use_tool(request)
        elif subtype == ControlSubtype.HOOK_CALLBACK:
            return self._handle_hook_callback(request)
        elif subtype == ControlSubtype.MCP_MESSAGE:
            return self._handle_mcp_message(request)
        else:
            raise ValueError(f"Unsupported control request subtype: {request.get('subtype')}")

    def _handle_can_use_tool(self, request: Dict[str, Any]) -> Dict[str, Any]:
        if self.can_use_tool is None:
            raise ValueError("canUseTool callback is not provided")

        original_input = request.get("input")
        context = ToolPermissionContext(
            signal=None,
            suggestions=request.get("permission_suggestions") or [],
        )

        result = self.can_use_tool(request.get("tool_name"), original_input, context)

        if isinstance(result, PermissionResultAllow):
            response: Dict[str, Any] = {
                "behavior": "allow",
                "updatedInput": result.updated_input if result.updated_input is not None else original_input,
            }
            if result.updated_permissions is not None:
                response["updatedPermissions"] = [
                    p.to_dict() if hasattr(p, "to_dict") else p
                    for p in result.updated_permissions
                ]
            return response

        if isinstance(result, PermissionResultDeny):
            response = {"behavior": "deny", "message": result.message}
            if result.interrupt:
                response["interrupt"] = True
            return response

        raise TypeError(
            "Tool permission callback must return PermissionResultAllow or PermissionResultDeny, "
            f"got {type(result).__name__}"
        )

    def _handle_hook_callback(self, request: Dict[str, Any]) -> Dict[str, Any]:
        callback_id = request.get("callback_id")
        callback = self.hook_callbacks.get(callback_id)
        if callback is None:
            raise LookupError(f"No hook callback found for ID: {callback_id}")

        hook_output = callback(request.get("input"), request.get("tool_use_id"), {"signal": None})
        return convert_hook_output(hook_output or {})

    def _handle_mcp_message(self, request: Dict[str, Any]) -> Dict[str, Any]:
        server_name = request.get("server_name")
        message = request.get("message")
        if not server_name or not message:
            raise ValueError("Missing server_name or message for MCP request")

        server = self.mcp_servers.get(server_name)
        if server is None:
            return {"mcp_response": server_not_found(server_name, message)}

        return {"mcp_response": server.handle_message(message)}
