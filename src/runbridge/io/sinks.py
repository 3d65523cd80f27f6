"""Concrete event sinks."""

from __future__ import annotations

import asyncio
import logging
from abc import abstractmethod
from typing import AsyncIterator, TextIO

from ..core.errors import SinkFailure
from ..core.events import BaseEvent, EventType
from .encoder import EncodingFormat, EventEncoder
from .interfaces import EventSink

LOGGER = logging.getLogger(__name__)


class BaseEventSink(EventSink):
    """Sink enforcing the push/complete/fail contract.

    Subclasses implement :meth:`_deliver` and optionally the termination
    hooks. Pushing after termination, or terminating twice, raises
    :class:`SinkFailure`.
    """

    def __init__(self) -> None:
        self._closed = False
        self._cancelled = False
        self.completed = False
        self.error: BaseException | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def push(self, event: BaseEvent) -> None:
        if self._closed:
            msg = f"cannot push {event.type.value} to a closed sink"
            raise SinkFailure(msg)
        await self._deliver(event)

    async def complete(self) -> None:
        self._close("complete")
        self.completed = True
        await self._on_complete()

    async def fail(self, error: BaseException) -> None:
        self._close("fail")
        self.error = error
        await self._on_fail(error)

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        LOGGER.debug("sink %s cancelled by consumer", type(self).__name__)

    def _close(self, operation: str) -> None:
        if self._closed:
            msg = f"cannot {operation} a sink that is already closed"
            raise SinkFailure(msg)
        self._closed = True

    @abstractmethod
    async def _deliver(self, event: BaseEvent) -> None:
        """Hand one event to the underlying transport."""

    async def _on_complete(self) -> None:
        """Hook invoked after normal termination."""

    async def _on_fail(self, error: BaseException) -> None:
        """Hook invoked after abnormal termination."""


class CollectingSink(BaseEventSink):
    """Record events in memory; used by tests and synchronous harnesses."""

    def __init__(self, *, cancel_after: int | None = None) -> None:
        super().__init__()
        self.events: list[BaseEvent] = []
        self._cancel_after = cancel_after

    @property
    def types(self) -> list[EventType]:
        return [event.type for event in self.events]

    async def _deliver(self, event: BaseEvent) -> None:
        self.events.append(event)
        if self._cancel_after is not None and len(self.events) >= self._cancel_after:
            self.cancel()


_END = object()


class QueueEventSink(BaseEventSink):
    """Bounded queue between the run and an async consumer.

    Consumers iterate the sink with ``async for``; iteration ends after the
    run terminates and :attr:`error` holds the failure, if any. Calling
    :meth:`aclose` abandons the stream: it cancels the run and discards
    anything pushed afterwards so the producer never blocks on a full queue.
    """

    def __init__(self, maxsize: int = 0) -> None:
        super().__init__()
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=maxsize)
        self._abandoned = False
        self._drained = False

    async def _deliver(self, event: BaseEvent) -> None:
        if self._abandoned:
            LOGGER.debug("dropping %s for abandoned consumer", event.type.value)
            return
        await self._queue.put(event)

    async def _on_complete(self) -> None:
        await self._put_end()

    async def _on_fail(self, error: BaseException) -> None:
        await self._put_end()

    async def _put_end(self) -> None:
        if self._abandoned:
            return
        await self._queue.put(_END)

    def __aiter__(self) -> AsyncIterator[BaseEvent]:
        return self

    async def __anext__(self) -> BaseEvent:
        if self._drained or self._abandoned:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _END:
            self._drained = True
            raise StopAsyncIteration
        return item  # type: ignore[return-value]

    async def aclose(self) -> None:
        """Stop consuming and cancel the run."""

        self._abandoned = True
        self.cancel()
        while not self._queue.empty():
            self._queue.get_nowait()


class JsonLinesSink(BaseEventSink):
    """Write each event to a text stream using an :class:`EventEncoder`."""

    def __init__(self, stream: TextIO, *, format: EncodingFormat = "jsonl") -> None:
        super().__init__()
        self._stream = stream
        self._encoder = EventEncoder(format)

    async def _deliver(self, event: BaseEvent) -> None:
        try:
            self._stream.write(self._encoder.encode(event))
        except OSError as exc:
            msg = f"failed to write {event.type.value} event"
            raise SinkFailure(msg) from exc

    async def _on_complete(self) -> None:
        self._flush()

    async def _on_fail(self, error: BaseException) -> None:
        self._flush()

    def _flush(self) -> None:
        try:
            self._stream.flush()
        except OSError as exc:
            msg = "failed to flush the event stream"
            raise SinkFailure(msg) from exc


__all__ = ["BaseEventSink", "CollectingSink", "JsonLinesSink", "QueueEventSink"]
