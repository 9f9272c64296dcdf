"""Embedded tool server - in-process tools reachable through the control channel

The peer addresses an embedded server by name in an ``mcp_message`` control
request and carries a JSON-RPC message inside it. ``SdkMcpServer`` answers
the small method surface the peer uses:

- ``initialize``: protocol metadata and server name/version
- ``tools/list``: registered tools with JSON Schema input descriptors
- ``tools/call``: validate arguments, run the handler, normalize its result
- ``notifications/initialized``: empty acknowledgement

Unknown methods and unknown tools answer with ``-32601``; unexpected
failures with ``-32603``. A tool handler that raises is reported as a tool
result with ``is_error`` set, never as a protocol failure.

Usage:
```python
from agentwire.mcp import tool, create_sdk_mcp_server

@tool("add", "Add two numbers", {"a": int, "b": int})
def add(args):
    return {"content": [{"type": "text", "text": str(args["a"] + args["b"])}]}

calculator = create_sdk_mcp_server("calc", tools=[add])
```
"""

import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from jsonschema import Draft7Validator


MCP_PROTOCOL_VERSION = "2024-11-05"

JSONRPC_METHOD_NOT_FOUND = -32601
JSONRPC_INTERNAL_ERROR = -32603

_TYPE_NAMES = {
    "string": "string",
    "str": "string",
    "integer": "integer",
    "int": "integer",
    "number": "number",
    "float": "number",
    "boolean": "boolean",
    "bool": "boolean",
}


@dataclass
class SdkMcpTool:
    """A tool definition: name, description, input schema and handler"""
    name: str
    description: str
    input_schema: Any
    handler: Callable[[Dict[str, Any]], Any]


def tool(name: str, description: str, input_schema: Any) -> Callable[[Callable], SdkMcpTool]:
    """Decorator turning a handler function into an SdkMcpTool

    Args:
        name: Tool name as the peer will call it
        description: Human-readable description
        input_schema: Full JSON Schema object, or flat ``{param: type}`` mapping
    """
    def decorator(handler: Callable[[Dict[str, Any]], Any]) -> SdkMcpTool:
        if not callable(handler):
            raise TypeError("tool requires a callable handler")
        return SdkMcpTool(name=name, description=description, input_schema=input_schema, handler=handler)

    return decorator


def type_to_json(param_type: Any) -> str:
    """Map a Python type or type name to a JSON Schema primitive type

    Unrecognized types map to ``string``.
    """
    # bool is a subclass of int, check it first
    if param_type is bool:
        return "boolean"
    if param_type is str:
        return "string"
    if param_type is int:
        return "integer"
    if param_type is float:
        return "number"
    if isinstance(param_type, str):
        return _TYPE_NAMES.get(param_type.lower(), "string")
    return "string"


def _stringify_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _stringify_keys(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_stringify_keys(v) for v in value]
    return value


def schema_for(input_schema: Any) -> Dict[str, Any]:
    """Normalize a tool's declared input schema to JSON Schema object form

    A mapping that already has both ``type`` and ``properties`` is passed
    through (keys stringified recursively). Any other mapping is treated as
    ``{param: type}`` and every parameter becomes required.
    """
    if input_schema is None:
        return {}

    if isinstance(input_schema, dict):
        schema = _stringify_keys(input_schema)
        if "type" in schema and "properties" in schema:
            return schema

        properties = {
            str(name): {"type": type_to_json(param_type)}
            for name, param_type in input_schema.items()
        }
        return {
            "type": "object",
            "properties": properties,
            "required": list(properties.keys()),
        }

    return {"type": "object", "properties": {}}


def _jsonrpc_result(message_id: Any, result: Dict[str, Any]) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": message_id, "result": result}


def _jsonrpc_error(message_id: Any, code: int, message: str) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": message_id, "error": {"code": code, "message": message}}


def server_not_found(server_name: str, message: Dict[str, Any]) -> Dict[str, Any]:
    """JSON-RPC error for a message addressed to an unregistered server"""
    return _jsonrpc_error(message.get("id"), JSONRPC_METHOD_NOT_FOUND, f"Server '{server_name}' not found")


def _normalize_content(result: Any) -> Dict[str, Any]:
    """Normalize a handler's return value into a tools/call result"""
    if isinstance(result, str):
        return {"content": [{"type": "text", "text": result}]}

    content: List[Dict[str, Any]] = []
    if not isinstance(result, dict):
        return {"content": content}

    for item in result.get("content") or []:
        if not isinstance(item, dict):
            continue
        item_type = item.get("type")
        if item_type == "text":
            content.append({"type": "text", "text": item.get("text")})
        elif item_type == "image":
            content.append({"type": "image", "data": item.get("data"), "mimeType": item.get("mimeType")})

    normalized: Dict[str, Any] = {"content": content}
    if result.get("is_error"):
        normalized["is_error"] = True
    return normalized


def _error_content(text: str) -> Dict[str, Any]:
    return {"content": [{"type": "text", "text": text}], "is_error": True}


class SdkMcpServer:
    """Named, immutable collection of in-process tools"""

    def __init__(self, name: str, version: str = "1.0.0", tools: Optional[List[SdkMcpTool]] = None):
        self.name = name
        self.version = version
        self.tools: List[SdkMcpTool] = list(tools or [])
        self._tool_map = {t.name: t for t in self.tools}
        self._validators: Dict[str, Draft7Validator] = {}
        self._validators_lock = threading.Lock()

    def list_tools(self) -> List[Dict[str, Any]]:
        return [
            {
                "name": t.name,
                "description": t.description,
                "inputSchema": schema_for(t.input_schema),
            }
            for t in self.tools
        ]

    def tool_for(self, name: str) -> Optional[SdkMcpTool]:
        return self._tool_map.get(name)

    def _validator_for(self, t: SdkMcpTool) -> Draft7Validator:
        """Compiled validator for a tool's schema, cached per tool"""
        with self._validators_lock:
            validator = self._validators.get(t.name)
            if validator is None:
                schema = schema_for(t.input_schema)
                Draft7Validator.check_schema(schema)
                validator = Draft7Validator(schema)
                self._validators[t.name] = validator
            return validator

    def call_tool(self, name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
        """Validate arguments and run a tool, always returning a tools/call result

        Raises:
            KeyError: If no tool with this name is registered
        """
        t = self.tool_for(name)
        if t is None:
            raise KeyError(name)

        errors = sorted(self._validator_for(t).iter_errors(arguments), key=lambda e: list(e.path))
        if errors:
            details = "\n".join(f"  - {e.message}" for e in errors)
            return _error_content(f"Invalid arguments for tool '{name}':\n{details}")

        try:
            result = t.handler(arguments)
        except Exception as e:
            return _error_content(f"Error: {e}")

        return _normalize_content(result)

    def handle_message(self, message: Dict[str, Any]) -> Dict[str, Any]:
        """Answer one JSON-RPC message addressed to this server"""
        message_id = message.get("id")
        method = message.get("method")
        params = message.get("params") or {}

        try:
            if method == "initialize":
                return _jsonrpc_result(message_id, {
                    "protocolVersion": MCP_PROTOCOL_VERSION,
                    "capabilities": {"tools": {}},
                    "serverInfo": {"name": self.name, "version": self.version or "1.0.0"},
                })

            if method == "tools/list":
                return _jsonrpc_result(message_id, {"tools": self.list_tools()})

            if method == "tools/call":
                tool_name = params.get("name")
                if self.tool_for(tool_name) is None:
                    return _jsonrpc_error(message_id, JSONRPC_METHOD_NOT_FOUND, f"Tool '{tool_name}' not found")
                arguments = params.get("arguments") or {}
                return _jsonrpc_result(message_id, self.call_tool(tool_name, arguments))

            if method == "notifications/initialized":
                return {"jsonrpc": "2.0", "result": {}}

            return _jsonrpc_error(message_id, JSONRPC_METHOD_NOT_FOUND, f"Method '{method}' not found")

        except Exception as e:
            return _jsonrpc_error(message_id, JSONRPC_INTERNAL_ERROR, str(e))

    def __repr__(self):
        return f"SdkMcpServer({self.name!r}, tools={[t.name for t in self.tools]!r})"


def create_sdk_mcp_server(name: str, version: str = "1.0.0", tools: Optional[List[SdkMcpTool]] = None) -> Dict[str, Any]:
    """Create an embedded server config for ``SessionOptions.mcp_servers``"""
    server = SdkMcpServer(name, version=version, tools=tools or [])
    return {"type": "sdk", "name": name, "instance": server}


def sdk_servers_from_config(mcp_servers: Optional[Dict[str, Any]]) -> Dict[str, SdkMcpServer]:
    """Collect the embedded (``type == "sdk"``) servers from a server config map"""
    servers: Dict[str, SdkMcpServer] = {}
    for name, config in (mcp_servers or {}).items():
        if isinstance(config, dict) and config.get("type") == "sdk":
            servers[name] = config["instance"]
    return servers
