"""Run state machine translating backend fragments into protocol events."""

from .ids import IdGenerator, sequential_ids, uuid_ids
from .machine import RunResult, RunStateMachine, run_agent, stream_events
from .state import RunPhase, RunState

__all__ = [
    "IdGenerator",
    "RunPhase",
    "RunResult",
    "RunState",
    "RunStateMachine",
    "run_agent",
    "sequential_ids",
    "stream_events",
    "uuid_ids",
]
