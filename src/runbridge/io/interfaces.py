"""Abstract interfaces for runbridge I/O components."""

from __future__ import annotations

from abc import ABC, abstractmethod

from ..core.events import BaseEvent


class EventSink(ABC):
    """Push-based channel delivering one run's events to a consumer.

    The producer calls :meth:`push` for every event and then exactly one of
    :meth:`complete` or :meth:`fail`, exactly once. The consumer may call
    :meth:`cancel` at any time; the producer observes :attr:`cancelled` at the
    next fragment boundary and still terminates the run through this sink.
    """

    @abstractmethod
    async def push(self, event: BaseEvent) -> None:
        """Deliver one event."""

    @abstractmethod
    async def complete(self) -> None:
        """Signal normal termination."""

    @abstractmethod
    async def fail(self, error: BaseException) -> None:
        """Signal abnormal termination."""

    @abstractmethod
    def cancel(self) -> None:
        """Request cancellation from the consumer side."""

    @property
    @abstractmethod
    def cancelled(self) -> bool:
        """Whether the consumer requested cancellation."""


__all__ = ["EventSink"]
