"""
ollama_session.tools
====================

Tool functions for tool-calling capable models.

A :class:`Tool` couples a Python callable with the JSON-schema description the
model sees. A :class:`ToolRegistry` groups uniquely named tools and executes
the tool calls found in an assistant reply::

    add = Tool("add", "Add two integers", lambda a, b: a + b)
    add.add_parameter("a", "integer", "first operand")
    add.add_parameter("b", "integer", "second operand")

    registry = ToolRegistry(add)
    registry.dispatch({"function": {"name": "add", "arguments": {"a": 1, "b": 2}}})
    # -> [ToolOutput(result='3', name='add')]
"""
from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Iterator, List, Mapping, NamedTuple, Optional, Sequence

from .errors import UnknownToolError, ValidationError

__all__ = ["Tool", "ToolRegistry", "ToolOutput", "parse_tool_calls"]

LOGGER = logging.getLogger(__name__)

_CALL_KEYS = {"type", "function"}


class ToolOutput(NamedTuple):
    """Stringified result of one tool call and the name of the tool."""

    result: str
    name: str


def _require_text(value: Any, what: str) -> str:
    if not isinstance(value, str) or not value:
        raise ValidationError(f"{what} must be a non-empty string.", field=what)
    return value


def _stringify(result: Any) -> str:
    if isinstance(result, str):
        return result
    if isinstance(result, (dict, list, tuple)):
        return json.dumps(result)
    return str(result)


def parse_tool_calls(payload: Any) -> List[Dict[str, Any]]:
    """
    Normalise a tool-call payload into a list of ``{"function": {...}}`` dicts.

    *payload* is a single call, a sequence of calls, or the JSON text of either.
    Argument objects sent as JSON strings are decoded as well.
    """
    if isinstance(payload, str):
        if not payload:
            raise ValidationError("tool call payload is empty.", field="tool_calls")
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise ValidationError(
                f"invalid JSON tool call payload: {exc.msg}.", field="tool_calls"
            ) from exc

    calls = [payload] if isinstance(payload, Mapping) else payload
    if not isinstance(calls, Sequence):
        raise ValidationError("invalid tool call payload.", field="tool_calls")

    parsed: List[Dict[str, Any]] = []
    for call in calls:
        if not isinstance(call, Mapping) or not set(call) <= _CALL_KEYS:
            raise ValidationError("invalid tool call structure.", field="tool_calls")
        function = call.get("function")
        if not isinstance(function, Mapping) or "name" not in function:
            raise ValidationError(
                "tool call lacks a 'function.name' entry.", field="tool_calls"
            )
        arguments = function.get("arguments") or {}
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments)
            except json.JSONDecodeError as exc:
                raise ValidationError(
                    f"invalid JSON tool call arguments: {exc.msg}.", field="tool_calls"
                ) from exc
        if not isinstance(arguments, Mapping):
            raise ValidationError(
                "tool call arguments must be an object.", field="tool_calls"
            )
        parsed.append({"function": {"name": function["name"], "arguments": dict(arguments)}})
    return parsed


class Tool:
    """A Python callable exposed to the model as a function tool."""

    def __init__(self, name: str, description: str, handle: Callable[..., Any]) -> None:
        self.name = _require_text(name, "name")
        self.description = _require_text(description, "description")
        if not callable(handle):
            raise ValidationError("handle must be callable.", field="handle")
        self.handle = handle
        self.parameters: Dict[str, Dict[str, Any]] = {}

    def add_parameter(
        self,
        name: str,
        type: str,
        description: str,
        enum: Optional[Sequence[Any]] = None,
    ) -> "Tool":
        """Declare the next positional argument of :attr:`handle`."""
        spec: Dict[str, Any] = {
            "type": _require_text(type, "type"),
            "description": _require_text(description, "description"),
        }
        if enum is not None:
            if (
                isinstance(enum, str)
                or not isinstance(enum, Sequence)
                or not enum
                or any(
                    item is None or item == "" or not isinstance(item, (str, int, float, bool))
                    for item in enum
                )
            ):
                raise ValidationError(
                    "enum must be a sequence of non-empty strings, numbers or booleans.",
                    field="enum",
                )
            spec["enum"] = list(enum)
        self.parameters[_require_text(name, "parameter name")] = spec
        return self

    def to_wire(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": dict(self.parameters),
                    "required": list(self.parameters),
                },
            },
        }

    def call(self, payload: Any) -> List[ToolOutput]:
        """
        Run the calls of *payload* that name this tool.

        Calls naming another tool, and calls whose argument names differ from
        the declared parameters, produce no output.
        """
        outputs: List[ToolOutput] = []
        for call in parse_tool_calls(payload):
            function = call["function"]
            if function["name"] != self.name:
                continue
            arguments = function["arguments"]
            if set(arguments) != set(self.parameters):
                LOGGER.warning(
                    "Ignoring call to tool '%s': got arguments %s, expected %s",
                    self.name,
                    sorted(arguments),
                    list(self.parameters),
                )
                continue
            args = [arguments[param] for param in self.parameters]
            LOGGER.debug("Calling tool '%s' with %r", self.name, args)
            outputs.append(ToolOutput(_stringify(self.handle(*args)), self.name))
        return outputs

    def __repr__(self) -> str:
        return f"Tool({self.name!r}, parameters={list(self.parameters)})"


class ToolRegistry:
    """Uniquely named tools made available to a chat session."""

    def __init__(self, *tools: Tool) -> None:
        if any(not isinstance(tool, Tool) for tool in tools):
            raise ValidationError("all registry entries must be Tool objects.", field="tools")
        names = [tool.name for tool in tools]
        if len(names) != len(set(names)):
            raise ValidationError("tools must have unique names.", field="tools")
        self._tools: Dict[str, Tool] = {tool.name: tool for tool in tools}

    @property
    def names(self) -> List[str]:
        return list(self._tools)

    def to_wire(self) -> List[Dict[str, Any]]:
        return [tool.to_wire() for tool in self._tools.values()]

    def dispatch(self, payload: Any) -> List[ToolOutput]:
        """Run every call of *payload* in order and concatenate the outputs."""
        calls = parse_tool_calls(payload)
        for call in calls:
            if call["function"]["name"] not in self._tools:
                raise UnknownToolError(call["function"]["name"])

        outputs: List[ToolOutput] = []
        for call in calls:
            outputs.extend(self._tools[call["function"]["name"]].call(call))
        return outputs

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __getitem__(self, name: str) -> Tool:
        return self._tools[name]

    def __iter__(self) -> Iterator[Tool]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)

    def __repr__(self) -> str:
        return f"ToolRegistry({self.names})"
