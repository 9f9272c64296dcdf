"""Callback, permission and option types

These are the values user code hands to a session (permission callback,
hook matchers, session options) and the values permission callbacks return.
Types that travel on the wire expose ``to_dict()`` producing the peer's
field names.
"""

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional


@dataclass
class PermissionRuleValue:
    """A single permission rule"""
    tool_name: str
    rule_content: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"toolName": self.tool_name, "ruleContent": self.rule_content}


@dataclass
class PermissionUpdate:
    """A permission-policy update returned alongside an allow decision

    Only the fields relevant to ``type`` are serialized:
    rule updates carry ``rules``/``behavior``, ``setMode`` carries ``mode``,
    directory updates carry ``directories``.
    """
    type: str
    rules: Optional[List[PermissionRuleValue]] = None
    behavior: Optional[str] = None
    mode: Optional[str] = None
    directories: Optional[List[str]] = None
    destination: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"type": self.type}
        if self.destination:
            result["destination"] = self.destination

        if self.type in ("addRules", "replaceRules", "removeRules"):
            if self.rules is not None:
                result["rules"] = [
                    rule.to_dict() if hasattr(rule, "to_dict") else rule
                    for rule in self.rules
                ]
            if self.behavior:
                result["behavior"] = self.behavior
        elif self.type == "setMode":
            if self.mode:
                result["mode"] = self.mode
        elif self.type in ("addDirectories", "removeDirectories"):
            if self.directories is not None:
                result["directories"] = self.directories

        return result


@dataclass
class ToolPermissionContext:
    """Context passed to a permission callback"""
    signal: Any = None
    suggestions: List[Any] = field(default_factory=list)


@dataclass
class PermissionResultAllow:
    """Allow the tool call, optionally rewriting its input"""
    updated_input: Optional[Dict[str, Any]] = None
    updated_permissions: Optional[List[PermissionUpdate]] = None
    behavior: str = field(default="allow", init=False)


@dataclass
class PermissionResultDeny:
    """Deny the tool call, optionally interrupting the whole run"""
    message: str = ""
    interrupt: bool = False
    behavior: str = field(default="deny", init=False)


# (tool_name, tool_input, context) -> PermissionResultAllow | PermissionResultDeny
CanUseTool = Callable[[str, Dict[str, Any], ToolPermissionContext], Any]

# (hook_input, tool_use_id, context) -> dict
HookCallback = Callable[[Any, Optional[str], Dict[str, Any]], Optional[Dict[str, Any]]]


@dataclass
class HookMatcher:
    """Group of hook callbacks registered for one event and tool matcher"""
    matcher: Optional[str] = None
    hooks: List[HookCallback] = field(default_factory=list)
    timeout: Optional[float] = None


@dataclass
class SessionOptions:
    """Configuration for a session and the transport it runs over

    ``argv`` is the complete command for the agent process; building it is
    the caller's job.
    """
    argv: List[str] = field(default_factory=list)
    cwd: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)
    max_buffer_size: Optional[int] = None
    stderr: Optional[Callable[[str], None]] = None
    can_use_tool: Optional[CanUseTool] = None
    hooks: Optional[Dict[str, List[Any]]] = None
    mcp_servers: Dict[str, Any] = field(default_factory=dict)
    initialize_timeout: float = 60.0
    stream_close_timeout: Optional[float] = None

    def with_overrides(self, **kwargs: Any) -> "SessionOptions":
        """Return a copy with the given fields replaced"""
        return dataclasses.replace(self, **kwargs)
