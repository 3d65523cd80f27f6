"""Wire-level run input accepted from frontends."""

from __future__ import annotations

from typing import Any, Dict, List, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from ..core.errors import MalformedThread
from ..core.message import Message, MessageRole, RunInput
from ..core.adapters.toolbridge import normalize_tool_calls, tool_definitions_from_payload


class _WireModel(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class FunctionCallPayload(_WireModel):
    name: str = Field(..., description="Name of the tool the assistant called.")
    arguments: str = Field("{}", description="JSON-encoded call arguments.")


class ToolCallPayload(_WireModel):
    id: str = Field(..., description="Identifier of the tool call.")
    type: Literal["function"] = "function"
    function: FunctionCallPayload


class MessagePayload(_WireModel):
    id: str | None = Field(None, description="Frontend-assigned message identifier.")
    role: MessageRole
    content: str | None = None
    name: str | None = None
    tool_calls: List[ToolCallPayload] | None = None
    tool_call_id: str | None = None

    def to_message(self) -> Message:
        tool_calls = None
        if self.tool_calls:
            tool_calls = normalize_tool_calls([call.model_dump() for call in self.tool_calls])
        return Message(
            role=self.role,
            content=self.content,
            tool_calls=tool_calls,
            tool_call_id=self.tool_call_id,
        )


class ToolPayload(_WireModel):
    name: str
    description: str = ""
    parameters: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        description="JSON schema describing the tool arguments.",
    )


class RunAgentInputPayload(_WireModel):
    """JSON body describing one run: ``{threadId, runId, messages, tools}``."""

    thread_id: str
    run_id: str
    messages: List[MessagePayload] = Field(default_factory=list)
    tools: List[ToolPayload] = Field(default_factory=list)
    state: Any = None
    context: List[Any] = Field(default_factory=list)
    forwarded_props: Any = None

    def to_run_input(self) -> RunInput:
        return RunInput(
            thread_id=self.thread_id,
            run_id=self.run_id,
            messages=tuple(message.to_message() for message in self.messages),
            tools=tool_definitions_from_payload([tool.model_dump() for tool in self.tools]),
        )


def parse_run_input(payload: str | bytes | Dict[str, Any]) -> RunInput:
    """Parse and validate a wire payload into a :class:`RunInput`."""

    try:
        if isinstance(payload, (str, bytes)):
            model = RunAgentInputPayload.model_validate_json(payload)
        else:
            model = RunAgentInputPayload.model_validate(payload)
    except ValidationError as exc:
        msg = f"invalid run input: {exc.error_count()} validation error(s)"
        raise MalformedThread(msg) from exc

    run_input = model.to_run_input()
    run_input.validate()
    return run_input


__all__ = [
    "FunctionCallPayload",
    "MessagePayload",
    "RunAgentInputPayload",
    "ToolCallPayload",
    "ToolPayload",
    "parse_run_input",
]
