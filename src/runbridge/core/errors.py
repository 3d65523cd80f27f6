"""Custom exception types raised by the runbridge core."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .adapters.stream import Fault


class BridgeError(RuntimeError):
    """Base class for every error raised by runbridge."""

    code = "bridge_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class AdapterError(BridgeError):
    """Raised when an adapter cannot be configured or cannot build a request."""

    code = "adapter_error"


class MalformedThread(BridgeError, ValueError):
    """Raised when a run input fails validation before the run starts."""

    code = "malformed_thread"


class ProtocolViolation(BridgeError):
    """Raised when fragments or events break the framing rules."""

    code = "protocol_violation"


class BackendFault(BridgeError):
    """Raised when an adapter's fragment sequence terminated with a fault."""

    code = "backend_fault"

    def __init__(self, fault: Fault) -> None:
        super().__init__(fault.description)
        self.fault = fault


class SinkFailure(BridgeError):
    """Raised when the consumer cancelled or the sink rejected delivery."""

    code = "sink_failure"


class RunCancelled(SinkFailure):
    """Raised when the consumer cancelled the run before it finished."""

    code = "cancelled"


class AlreadyStarted(BridgeError):
    """Raised when ``start`` is called on a state machine that is running."""

    code = "already_started"


class AlreadyTerminated(BridgeError):
    """Raised when ``start`` is called on a state machine that has finished."""

    code = "already_terminated"


__all__ = [
    "AdapterError",
    "AlreadyStarted",
    "AlreadyTerminated",
    "BackendFault",
    "BridgeError",
    "MalformedThread",
    "ProtocolViolation",
    "RunCancelled",
    "SinkFailure",
]
