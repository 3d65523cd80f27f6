"""Bridge streaming chat backends to a framed agent event protocol.

The package translates a backend's loosely ordered stream of text and tool
call fragments into a strictly framed sequence of run events: one
``RUN_STARTED``, properly nested text messages and tool calls, and exactly one
terminal ``RUN_FINISHED`` or ``RUN_ERROR``. Adapters, sinks, and identifier
generators are injectable so runs can be replayed deterministically.
"""

from __future__ import annotations

from .config import BridgeConfig
from .core.adapters import BackendAdapter, OpenAIAdapter, ScriptedAdapter
from .core.errors import (
    AlreadyStarted,
    AlreadyTerminated,
    BackendFault,
    BridgeError,
    MalformedThread,
    ProtocolViolation,
    SinkFailure,
)
from .core.events import EventType, validate_event_sequence
from .core.message import Message, MessageRole, RunInput, ToolDefinition
from .io import CollectingSink, EventEncoder, QueueEventSink, parse_run_input
from .runtime import RunResult, RunStateMachine, run_agent, stream_events

__all__ = [
    "AlreadyStarted",
    "AlreadyTerminated",
    "BackendAdapter",
    "BackendFault",
    "BridgeConfig",
    "BridgeError",
    "CollectingSink",
    "EventEncoder",
    "EventType",
    "MalformedThread",
    "Message",
    "MessageRole",
    "OpenAIAdapter",
    "ProtocolViolation",
    "QueueEventSink",
    "RunInput",
    "RunResult",
    "RunStateMachine",
    "ScriptedAdapter",
    "SinkFailure",
    "ToolDefinition",
    "parse_run_input",
    "run_agent",
    "stream_events",
    "validate_event_sequence",
]

__version__ = "0.1.0"
