"""Wire encodings for protocol events."""

from __future__ import annotations

from typing import Literal

from ..core.events import BaseEvent

EncodingFormat = Literal["sse", "jsonl"]

SSE_CONTENT_TYPE = "text/event-stream"
JSONL_CONTENT_TYPE = "application/x-ndjson"


class EventEncoder:
    """Encode events as Server-Sent Events or JSON lines.

    Payloads use camelCase keys and omit unset optional fields.
    """

    def __init__(self, format: EncodingFormat = "sse") -> None:
        if format not in ("sse", "jsonl"):
            raise ValueError(f"unsupported encoding format {format!r}")
        self.format: EncodingFormat = format

    @classmethod
    def for_accept(cls, accept: str | None) -> EventEncoder:
        """Pick an encoding from an HTTP ``Accept`` header, defaulting to SSE."""

        if accept and JSONL_CONTENT_TYPE in accept and SSE_CONTENT_TYPE not in accept:
            return cls("jsonl")
        return cls("sse")

    @property
    def content_type(self) -> str:
        return SSE_CONTENT_TYPE if self.format == "sse" else JSONL_CONTENT_TYPE

    def encode(self, event: BaseEvent) -> str:
        payload = event.model_dump_json(by_alias=True, exclude_none=True)
        if self.format == "sse":
            return f"data: {payload}\n\n"
        return f"{payload}\n"


__all__ = ["EncodingFormat", "EventEncoder", "JSONL_CONTENT_TYPE", "SSE_CONTENT_TYPE"]
