"""Mapping helpers between runbridge tool definitions and provider schemas."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
import json
from typing import Any

from ..errors import AdapterError, MalformedThread
from ..message import (
    ToolCall,
    ToolDefinition,
    ensure_json_compatible,
    freeze_json_structure,
    thaw_json_structure,
)


def tool_definitions_to_openai(tools: Sequence[ToolDefinition]) -> list[dict[str, Any]]:
    """Convert tool definitions to OpenAI's chat tools schema."""

    if isinstance(tools, (str, bytes, bytearray)):
        msg = "tools must be provided as a sequence of ToolDefinition instances"
        raise AdapterError(msg)

    normalized_tools: list[dict[str, Any]] = []
    seen_names: set[str] = set()

    for index, tool in enumerate(tools):
        if not isinstance(tool, ToolDefinition):
            msg = f"tools[{index}] must be a ToolDefinition"
            raise AdapterError(msg)
        if tool.name in seen_names:
            msg = f"duplicate tool name '{tool.name}'"
            raise AdapterError(msg)
        seen_names.add(tool.name)

        function_payload: dict[str, Any] = {
            "name": tool.name,
            "parameters": thaw_json_structure(tool.parameters),
        }
        if tool.description:
            function_payload["description"] = tool.description

        normalized_tools.append({"type": "function", "function": function_payload})

    return normalized_tools


def tool_definitions_from_payload(payload: Sequence[Mapping[str, Any] | Any]) -> tuple[ToolDefinition, ...]:
    """Build tool definitions from ``{name, description, parameters}`` mappings."""

    definitions: list[ToolDefinition] = []
    for index, item in enumerate(payload):
        mapping = _coerce_mapping(item, path=f"tools[{index}]")
        parameters = mapping.get("parameters", mapping.get("parameterSchema"))
        if parameters is None:
            parameters = {"type": "object", "properties": {}}
        definitions.append(
            ToolDefinition(
                name=mapping.get("name", ""),
                description=mapping.get("description") or "",
                parameters=parameters,
            )
        )
    return tuple(definitions)


def normalize_tool_calls(tool_calls: Sequence[Mapping[str, Any] | Any]) -> tuple[ToolCall, ...]:
    """Normalize provider tool call payloads into ToolCall instances."""

    if isinstance(tool_calls, (str, bytes, bytearray)):
        msg = "tool_calls payload must be a sequence"
        raise MalformedThread(msg)

    normalized: list[ToolCall] = []
    for index, item in enumerate(tool_calls):
        mapping = _coerce_mapping(item, path=f"tool_calls[{index}]")

        call_id = mapping.get("id")
        if not isinstance(call_id, str) or not call_id:
            msg = f"tool call at index {index} is missing a valid id"
            raise MalformedThread(msg)

        call_type = mapping.get("type", "function")
        if call_type != "function":
            msg = f"tool call at index {index} must have type 'function'"
            raise MalformedThread(msg)

        function_mapping = _coerce_mapping(mapping.get("function"), path=f"tool_calls[{index}].function")

        name = function_mapping.get("name")
        if not isinstance(name, str) or not name:
            msg = f"tool call at index {index} is missing a valid function name"
            raise MalformedThread(msg)

        raw_arguments = function_mapping.get("arguments", "{}")
        arguments = _coerce_arguments(raw_arguments, path=f"tool_calls[{index}].function.arguments")

        normalized.append(ToolCall(id=call_id, name=name, arguments=arguments))

    return tuple(normalized)


def tool_call_to_openai(tool_call: ToolCall) -> dict[str, Any]:
    """Convert a ToolCall into the provider representation."""

    arguments_json = json.dumps(thaw_json_structure(tool_call.arguments), allow_nan=False)
    return {
        "id": tool_call.id,
        "type": "function",
        "function": {
            "name": tool_call.name,
            "arguments": arguments_json,
        },
    }


def _coerce_mapping(value: Mapping[str, Any] | Any, *, path: str) -> Mapping[str, Any]:
    if isinstance(value, Mapping):
        return value

    if hasattr(value, "model_dump"):
        dumped = value.model_dump()
        if isinstance(dumped, Mapping):
            return dumped

    msg = f"{path} must be a mapping"
    raise MalformedThread(msg)


def _coerce_arguments(raw: Any, *, path: str) -> Mapping[str, Any]:
    if isinstance(raw, Mapping):
        mapping = dict(raw)
    elif isinstance(raw, str):
        try:
            parsed = json.loads(raw or "{}")
        except json.JSONDecodeError as exc:
            msg = f"{path} must contain valid JSON"
            raise MalformedThread(msg) from exc
        if not isinstance(parsed, Mapping):
            msg = f"{path} must decode to a JSON object"
            raise MalformedThread(msg)
        mapping = dict(parsed)
    else:
        msg = f"{path} must be a mapping or JSON string"
        raise MalformedThread(msg)

    ensure_json_compatible(mapping, path=path)
    return freeze_json_structure(json.loads(json.dumps(mapping, allow_nan=False)))


__all__ = [
    "normalize_tool_calls",
    "tool_call_to_openai",
    "tool_definitions_from_payload",
    "tool_definitions_to_openai",
]
