"""Core data structures, events, and adapter interfaces for runbridge."""

from __future__ import annotations

from .errors import (
    AdapterError,
    AlreadyStarted,
    AlreadyTerminated,
    BackendFault,
    BridgeError,
    MalformedThread,
    ProtocolViolation,
    RunCancelled,
    SinkFailure,
)
from .message import Message, MessageRole, RunInput, ToolCall, ToolDefinition, validate_thread

__all__ = [
    "AdapterError",
    "AlreadyStarted",
    "AlreadyTerminated",
    "BackendFault",
    "BridgeError",
    "MalformedThread",
    "Message",
    "MessageRole",
    "ProtocolViolation",
    "RunCancelled",
    "RunInput",
    "SinkFailure",
    "ToolCall",
    "ToolDefinition",
    "validate_thread",
]
