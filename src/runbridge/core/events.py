"""Protocol events emitted for a run and the framing rules they obey.

Events form a closed, discriminated union keyed by ``type``. Every model is
frozen and rejects unknown fields, so a payload can only ever carry the
identifiers and deltas that belong to its kind. Wire names are camelCase.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from .errors import ProtocolViolation


class EventType(str, Enum):
    """Event kinds defined by the protocol."""

    RUN_STARTED = "RUN_STARTED"
    TEXT_MESSAGE_START = "TEXT_MESSAGE_START"
    TEXT_MESSAGE_CONTENT = "TEXT_MESSAGE_CONTENT"
    TEXT_MESSAGE_END = "TEXT_MESSAGE_END"
    TOOL_CALL_START = "TOOL_CALL_START"
    TOOL_CALL_ARGS = "TOOL_CALL_ARGS"
    TOOL_CALL_END = "TOOL_CALL_END"
    RUN_FINISHED = "RUN_FINISHED"
    RUN_ERROR = "RUN_ERROR"


class BaseEvent(BaseModel):
    """Shared configuration for every protocol event."""

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    type: EventType

    def to_wire(self) -> dict[str, Any]:
        """Return the JSON-compatible payload sent to frontends."""

        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class RunStartedEvent(BaseEvent):
    type: Literal[EventType.RUN_STARTED] = EventType.RUN_STARTED
    thread_id: str = Field(..., min_length=1)
    run_id: str = Field(..., min_length=1)


class TextMessageStartEvent(BaseEvent):
    type: Literal[EventType.TEXT_MESSAGE_START] = EventType.TEXT_MESSAGE_START
    message_id: str = Field(..., min_length=1)
    role: Literal["assistant"] = "assistant"


class TextMessageContentEvent(BaseEvent):
    type: Literal[EventType.TEXT_MESSAGE_CONTENT] = EventType.TEXT_MESSAGE_CONTENT
    message_id: str = Field(..., min_length=1)
    delta: str = Field(..., min_length=1, description="Non-empty text fragment.")


class TextMessageEndEvent(BaseEvent):
    type: Literal[EventType.TEXT_MESSAGE_END] = EventType.TEXT_MESSAGE_END
    message_id: str = Field(..., min_length=1)


class ToolCallStartEvent(BaseEvent):
    type: Literal[EventType.TOOL_CALL_START] = EventType.TOOL_CALL_START
    tool_call_id: str = Field(..., min_length=1)
    tool_call_name: str = Field(..., min_length=1)
    parent_message_id: str = Field(..., min_length=1)


class ToolCallArgsEvent(BaseEvent):
    type: Literal[EventType.TOOL_CALL_ARGS] = EventType.TOOL_CALL_ARGS
    tool_call_id: str = Field(..., min_length=1)
    delta: str = Field(..., min_length=1, description="Raw JSON argument fragment.")


class ToolCallEndEvent(BaseEvent):
    type: Literal[EventType.TOOL_CALL_END] = EventType.TOOL_CALL_END
    tool_call_id: str = Field(..., min_length=1)


class RunFinishedEvent(BaseEvent):
    type: Literal[EventType.RUN_FINISHED] = EventType.RUN_FINISHED
    thread_id: str = Field(..., min_length=1)
    run_id: str = Field(..., min_length=1)


class RunErrorEvent(BaseEvent):
    type: Literal[EventType.RUN_ERROR] = EventType.RUN_ERROR
    message: str
    code: str | None = None


Event = Annotated[
    Union[
        RunStartedEvent,
        TextMessageStartEvent,
        TextMessageContentEvent,
        TextMessageEndEvent,
        ToolCallStartEvent,
        ToolCallArgsEvent,
        ToolCallEndEvent,
        RunFinishedEvent,
        RunErrorEvent,
    ],
    Field(discriminator="type"),
]

EVENT_ADAPTER: TypeAdapter[Event] = TypeAdapter(Event)

TERMINAL_EVENT_TYPES = frozenset({EventType.RUN_FINISHED, EventType.RUN_ERROR})


def parse_event(payload: Mapping[str, Any] | str | bytes) -> Event:
    """Parse a wire payload (mapping or JSON text) into a typed event."""

    try:
        if isinstance(payload, (str, bytes)):
            return EVENT_ADAPTER.validate_json(payload)
        return EVENT_ADAPTER.validate_python(dict(payload))
    except ValidationError as exc:
        msg = f"invalid event payload: {exc.error_count()} validation error(s)"
        raise ProtocolViolation(msg) from exc


class EventSequenceValidator:
    """Incrementally check that a stream of events is well framed.

    Call :meth:`observe` for every event in emission order and
    :meth:`finish` once the stream has ended.
    """

    def __init__(self) -> None:
        self._started = False
        self._terminal: EventType | None = None
        self._open_message: str | None = None
        self._open_tool_call: str | None = None
        self._seen_messages: set[str] = set()
        self._seen_tool_calls: set[str] = set()
        self.count = 0

    @property
    def terminated(self) -> bool:
        return self._terminal is not None

    def observe(self, event: BaseEvent) -> None:
        position = self.count
        self.count += 1

        if self._terminal is not None:
            msg = f"event #{position} ({event.type.value}) follows terminal {self._terminal.value}"
            raise ProtocolViolation(msg)

        if isinstance(event, RunStartedEvent):
            if self._started:
                msg = f"event #{position} is a second RUN_STARTED"
                raise ProtocolViolation(msg)
            self._started = True
            return

        if not self._started:
            msg = f"event #{position} ({event.type.value}) precedes RUN_STARTED"
            raise ProtocolViolation(msg)

        if isinstance(event, TextMessageStartEvent):
            self._require_no_open_unit(position, event)
            if event.message_id in self._seen_messages:
                msg = f"message '{event.message_id}' was started twice"
                raise ProtocolViolation(msg)
            self._seen_messages.add(event.message_id)
            self._open_message = event.message_id
        elif isinstance(event, (TextMessageContentEvent, TextMessageEndEvent)):
            if self._open_message != event.message_id:
                msg = f"event #{position} ({event.type.value}) references message '{event.message_id}' which is not open"
                raise ProtocolViolation(msg)
            if isinstance(event, TextMessageEndEvent):
                self._open_message = None
        elif isinstance(event, ToolCallStartEvent):
            self._require_no_open_unit(position, event)
            if event.tool_call_id in self._seen_tool_calls:
                msg = f"tool call '{event.tool_call_id}' was started twice"
                raise ProtocolViolation(msg)
            self._seen_tool_calls.add(event.tool_call_id)
            self._open_tool_call = event.tool_call_id
        elif isinstance(event, (ToolCallArgsEvent, ToolCallEndEvent)):
            if self._open_tool_call != event.tool_call_id:
                msg = f"event #{position} ({event.type.value}) references tool call '{event.tool_call_id}' which is not open"
                raise ProtocolViolation(msg)
            if isinstance(event, ToolCallEndEvent):
                self._open_tool_call = None
        elif isinstance(event, RunFinishedEvent):
            if self._open_message is not None or self._open_tool_call is not None:
                msg = "RUN_FINISHED emitted while a message or tool call is still open"
                raise ProtocolViolation(msg)
            self._terminal = event.type
        elif isinstance(event, RunErrorEvent):
            # open units are abandoned on error
            self._terminal = event.type
        else:  # pragma: no cover - closed union
            msg = f"unsupported event type {type(event).__name__}"
            raise ProtocolViolation(msg)

    def finish(self) -> None:
        if not self._started:
            msg = "event stream never emitted RUN_STARTED"
            raise ProtocolViolation(msg)
        if self._terminal is None:
            msg = "event stream ended without RUN_FINISHED or RUN_ERROR"
            raise ProtocolViolation(msg)

    def _require_no_open_unit(self, position: int, event: BaseEvent) -> None:
        if self._open_message is not None:
            msg = f"event #{position} ({event.type.value}) opened while message '{self._open_message}' is open"
            raise ProtocolViolation(msg)
        if self._open_tool_call is not None:
            msg = f"event #{position} ({event.type.value}) opened while tool call '{self._open_tool_call}' is open"
            raise ProtocolViolation(msg)


def validate_event_sequence(events: Iterable[BaseEvent]) -> None:
    """Raise :class:`ProtocolViolation` unless ``events`` form one well-framed run."""

    validator = EventSequenceValidator()
    for event in events:
        validator.observe(event)
    validator.finish()


__all__ = [
    "BaseEvent",
    "EVENT_ADAPTER",
    "Event",
    "EventSequenceValidator",
    "EventType",
    "RunErrorEvent",
    "RunFinishedEvent",
    "RunStartedEvent",
    "TERMINAL_EVENT_TYPES",
    "TextMessageContentEvent",
    "TextMessageEndEvent",
    "TextMessageStartEvent",
    "ToolCallArgsEvent",
    "ToolCallEndEvent",
    "ToolCallStartEvent",
    "parse_event",
    "validate_event_sequence",
]
