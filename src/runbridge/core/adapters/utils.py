"""Pure conversion helpers shared by adapter implementations."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from ..errors import MalformedThread
from ..message import Message, MessageRole
from .toolbridge import normalize_tool_calls, tool_call_to_openai

_ROLE_VALUES = {role.value for role in MessageRole}
_ALLOWED_KEYS = {"role", "content", "tool_calls", "tool_call_id", "name", "refusal"}


def messages_to_openai(messages: Sequence[Message]) -> list[dict[str, Any]]:
    """Convert canonical messages into the OpenAI Chat API format."""

    converted: list[dict[str, Any]] = []
    for message in messages:
        payload: dict[str, Any] = {
            "role": message.role.value,
            "content": message.content,
        }
        if message.tool_calls:
            payload["tool_calls"] = [tool_call_to_openai(call) for call in message.tool_calls]
        if message.role is MessageRole.TOOL:
            payload["tool_call_id"] = message.tool_call_id
            if payload["content"] is None:
                payload["content"] = ""
        converted.append(payload)

    return converted


def openai_to_messages(payload: Sequence[Mapping[str, Any] | Any]) -> list[Message]:
    """Normalize OpenAI Chat API messages into the canonical schema."""

    normalized: list[Message] = []
    for item in payload:
        mapping = _coerce_mapping(item)

        extra = set(mapping) - _ALLOWED_KEYS
        if extra:
            joined = ", ".join(sorted(extra))
            msg = f"unexpected fields in OpenAI payload: {joined}"
            raise MalformedThread(msg)

        raw_role = mapping.get("role")
        if not isinstance(raw_role, str):
            msg = "message role must be a string"
            raise MalformedThread(msg)
        normalized_role = raw_role.strip().lower()
        if normalized_role not in _ROLE_VALUES:
            msg = f"unsupported role '{raw_role}'"
            raise MalformedThread(msg)

        raw_content = mapping.get("content")
        if raw_content is not None and not isinstance(raw_content, str):
            msg = "message content must be a string"
            raise MalformedThread(msg)

        tool_calls = None
        tool_calls_payload = mapping.get("tool_calls")
        if tool_calls_payload is not None:
            if not isinstance(tool_calls_payload, Sequence) or isinstance(
                tool_calls_payload, (str, bytes, bytearray)
            ):
                msg = "tool_calls must be provided as a sequence"
                raise MalformedThread(msg)
            tool_calls = normalize_tool_calls(tool_calls_payload) or None

        normalized.append(
            Message(
                role=MessageRole(normalized_role),
                content=raw_content,
                tool_calls=tool_calls,
                tool_call_id=mapping.get("tool_call_id"),
            )
        )

    return normalized


def _coerce_mapping(item: Mapping[str, Any] | Any) -> Mapping[str, Any]:
    if isinstance(item, Mapping):
        return item

    if hasattr(item, "model_dump"):
        result = item.model_dump(exclude_none=True)
        if isinstance(result, Mapping):
            return result

    msg = "OpenAI payload entries must be mappings"
    raise MalformedThread(msg)
