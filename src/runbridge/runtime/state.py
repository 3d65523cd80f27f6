"""State primitives tracked while a run is streaming."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class RunPhase(str, Enum):
    """Lifecycle phase of a single run."""

    IDLE = "idle"
    STARTED = "started"
    STREAMING = "streaming"
    FINISHED = "finished"
    ERRORED = "errored"

    @property
    def terminal(self) -> bool:
        return self in (RunPhase.FINISHED, RunPhase.ERRORED)


@dataclass(slots=True)
class RunState:
    """Mutable framing state owned by one run state machine."""

    phase: RunPhase = RunPhase.IDLE
    active_message_id: str | None = None
    active_tool_call_id: str | None = None
    # id of the current turn's message; reused as parent of tool calls
    current_message_id: str | None = None
    current_message_used: bool = False
    closed_tool_call_ids: set[str] = field(default_factory=set)
    fragments_consumed: int = 0
    events_emitted: int = 0

    def reset(self) -> None:
        """Drop framing data once the run is terminal; the phase is kept."""

        self.active_message_id = None
        self.active_tool_call_id = None
        self.current_message_id = None
        self.current_message_used = False
        self.closed_tool_call_ids = set()
