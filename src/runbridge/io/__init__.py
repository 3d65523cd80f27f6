"""Event sinks, encoders, and wire schemas for runbridge."""

from .encoder import EventEncoder
from .interfaces import EventSink
from .schema import RunAgentInputPayload, parse_run_input
from .sinks import BaseEventSink, CollectingSink, JsonLinesSink, QueueEventSink

__all__ = [
    "BaseEventSink",
    "CollectingSink",
    "EventEncoder",
    "EventSink",
    "JsonLinesSink",
    "QueueEventSink",
    "RunAgentInputPayload",
    "parse_run_input",
]
