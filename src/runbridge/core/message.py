"""Canonical conversation model supplied to a run."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
import json
import math
import re
from types import MappingProxyType
from typing import Any

from .errors import MalformedThread

_TOOL_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{1,64}$")


class MessageRole(str, Enum):
    """Canonical role names supported by runbridge."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True, slots=True)
class ToolCall:
    """A tool invocation recorded on an assistant message."""

    id: str
    name: str
    arguments: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id:
            msg = "tool call id must be a non-empty string"
            raise MalformedThread(msg)
        if not isinstance(self.name, str) or not self.name:
            msg = "tool call name must be a non-empty string"
            raise MalformedThread(msg)
        if not isinstance(self.arguments, Mapping):
            msg = "tool call arguments must be a mapping"
            raise MalformedThread(msg)

        plain_arguments = thaw_json_structure(dict(self.arguments))
        ensure_json_compatible(plain_arguments, path="ToolCall.arguments")

        sanitized = json.loads(json.dumps(plain_arguments, allow_nan=False))
        object.__setattr__(self, "arguments", freeze_json_structure(sanitized))


@dataclass(frozen=True, slots=True)
class Message:
    """A single conversation turn.

    ``tool_call_id`` is only meaningful for :attr:`MessageRole.TOOL` messages
    and ``tool_calls`` only for assistant messages; :func:`validate_thread`
    enforces both rules across a whole thread.
    """

    role: MessageRole
    content: str | None = None
    tool_calls: tuple[ToolCall, ...] | None = None
    tool_call_id: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.role, MessageRole):
            try:
                role = MessageRole(self.role)
            except ValueError as exc:
                msg = f"unsupported role {self.role!r}"
                raise MalformedThread(msg) from exc
            object.__setattr__(self, "role", role)

        if self.content is not None and not isinstance(self.content, str):
            msg = "message content must be a string"
            raise MalformedThread(msg)

        if self.tool_call_id is not None and (
            not isinstance(self.tool_call_id, str) or not self.tool_call_id
        ):
            msg = "tool_call_id must be a non-empty string when provided"
            raise MalformedThread(msg)

        if self.tool_calls is not None:
            if not isinstance(self.tool_calls, Sequence) or isinstance(
                self.tool_calls, (str, bytes, bytearray)
            ):
                msg = "tool_calls must be a sequence of ToolCall instances"
                raise MalformedThread(msg)
            candidates = tuple(self.tool_calls)
            for call in candidates:
                if not isinstance(call, ToolCall):
                    msg = "tool_calls must contain ToolCall instances"
                    raise MalformedThread(msg)
            object.__setattr__(self, "tool_calls", candidates or None)


@dataclass(frozen=True, slots=True)
class ToolDefinition:
    """A tool the backend may call during a run."""

    name: str
    description: str
    parameters: Mapping[str, Any]

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not _TOOL_NAME_PATTERN.fullmatch(self.name):
            msg = "tool name must match ^[a-zA-Z0-9_-]{1,64}$"
            raise MalformedThread(msg)

        if not isinstance(self.description, str):
            msg = "tool description must be a string"
            raise MalformedThread(msg)
        object.__setattr__(self, "description", self.description.strip())

        if not isinstance(self.parameters, Mapping):
            msg = "tool parameters must be a mapping"
            raise MalformedThread(msg)

        raw_parameters = thaw_json_structure(dict(self.parameters))
        ensure_json_compatible(raw_parameters, path=f"ToolDefinition('{self.name}').parameters")
        sanitized = json.loads(json.dumps(raw_parameters, allow_nan=False))

        if sanitized.get("type") != "object":
            msg = "tool parameters must describe a JSON object"
            raise MalformedThread(msg)

        properties = sanitized.setdefault("properties", {})
        if not isinstance(properties, dict):
            msg = "tool parameters 'properties' must be a mapping"
            raise MalformedThread(msg)

        required = sanitized.get("required")
        if required is not None:
            if not isinstance(required, list):
                msg = "tool parameter 'required' must be a list of strings"
                raise MalformedThread(msg)
            for index, item in enumerate(required):
                if not isinstance(item, str) or not item:
                    msg = f"required parameter names must be non-empty strings (index {index})"
                    raise MalformedThread(msg)
                if item not in properties:
                    msg = f"required parameter '{item}' is not defined"
                    raise MalformedThread(msg)

        object.__setattr__(self, "parameters", freeze_json_structure(sanitized))


@dataclass(frozen=True, slots=True)
class RunInput:
    """Everything the harness supplies for one run invocation."""

    thread_id: str
    run_id: str
    messages: tuple[Message, ...]
    tools: tuple[ToolDefinition, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "messages", tuple(self.messages))
        object.__setattr__(self, "tools", tuple(self.tools or ()))

    def validate(self) -> None:
        """Raise :class:`MalformedThread` unless the input can start a run."""

        for label, value in (("thread_id", self.thread_id), ("run_id", self.run_id)):
            if not isinstance(value, str) or not value:
                msg = f"{label} must be a non-empty string"
                raise MalformedThread(msg)

        validate_thread(self.messages)

        seen: set[str] = set()
        for index, tool in enumerate(self.tools):
            if not isinstance(tool, ToolDefinition):
                msg = f"tools[{index}] must be a ToolDefinition"
                raise MalformedThread(msg)
            if tool.name in seen:
                msg = f"duplicate tool name '{tool.name}'"
                raise MalformedThread(msg)
            seen.add(tool.name)


def validate_thread(thread: Sequence[Message]) -> None:
    """Check the relational rules of a message thread.

    Every tool message must carry a ``tool_call_id`` answering a tool call
    announced by an earlier assistant message.
    """

    if isinstance(thread, (str, bytes, bytearray)) or not isinstance(thread, Sequence):
        msg = "thread must be a sequence of Message instances"
        raise MalformedThread(msg)
    if not thread:
        msg = "thread must contain at least one message"
        raise MalformedThread(msg)

    announced: set[str] = set()
    for index, message in enumerate(thread):
        if not isinstance(message, Message):
            msg = f"thread[{index}] must be a Message"
            raise MalformedThread(msg)

        if message.role is MessageRole.TOOL:
            if message.tool_call_id is None:
                msg = f"thread[{index}] is a tool message without tool_call_id"
                raise MalformedThread(msg)
            if message.tool_call_id not in announced:
                msg = (
                    f"thread[{index}] answers tool call '{message.tool_call_id}' "
                    "which no earlier assistant message requested"
                )
                raise MalformedThread(msg)
            continue

        if message.tool_call_id is not None:
            msg = f"thread[{index}] carries tool_call_id but has role '{message.role.value}'"
            raise MalformedThread(msg)

        if message.tool_calls:
            if message.role is not MessageRole.ASSISTANT:
                msg = f"thread[{index}] carries tool_calls but has role '{message.role.value}'"
                raise MalformedThread(msg)
            announced.update(call.id for call in message.tool_calls)
        elif message.content is None:
            msg = f"thread[{index}] has neither content nor tool calls"
            raise MalformedThread(msg)


def ensure_json_compatible(value: Any, *, path: str) -> None:
    if isinstance(value, Mapping):
        for key, inner in value.items():
            if not isinstance(key, str) or not key:
                msg = f"{path} keys must be non-empty strings"
                raise MalformedThread(msg)
            ensure_json_compatible(inner, path=f"{path}.{key}")
        return

    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        for index, item in enumerate(value):
            ensure_json_compatible(item, path=f"{path}[{index}]")
        return

    if isinstance(value, (bool, type(None), str)):
        return

    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            msg = f"{path} contains non-finite float values"
            raise MalformedThread(msg)
        return

    msg = f"{path} contains unsupported value type {type(value).__name__}"
    raise MalformedThread(msg)


def freeze_json_structure(value: Any) -> Any:
    if isinstance(value, dict):
        frozen_dict = {key: freeze_json_structure(inner) for key, inner in value.items()}
        return MappingProxyType(frozen_dict)

    if isinstance(value, list):
        return tuple(freeze_json_structure(inner) for inner in value)

    return value


def thaw_json_structure(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: thaw_json_structure(inner) for key, inner in value.items()}

    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [thaw_json_structure(inner) for inner in value]

    return value
