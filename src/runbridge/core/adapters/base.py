"""Capability interface implemented by every backend adapter."""

from __future__ import annotations

from typing import AsyncIterator, Protocol, runtime_checkable

from ..message import RunInput
from .stream import Fragment


@runtime_checkable
class BackendAdapter(Protocol):
    """Open a lazy fragment sequence for a run.

    Implementations translate the run's thread and tool definitions into a
    backend request and yield :data:`Fragment` values in backend emission
    order. Failures are reported as one terminal ``Fault`` rather than raised.
    Adapters deal only in fragments and never in protocol events.
    """

    def open(self, run_input: RunInput) -> AsyncIterator[Fragment]:
        """Return the fragment sequence for ``run_input``."""
