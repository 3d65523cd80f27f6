"""Backend fragment schema and base iterator primitives."""

from __future__ import annotations

import abc
import asyncio
import inspect
import logging
from collections import deque
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, AsyncIterator, Deque, Dict, List, Optional, Protocol, Union

from ..errors import AdapterError
from ..message import RunInput

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TextDelta:
    """Incremental assistant text produced by the backend."""

    text: str

    def __post_init__(self) -> None:
        if not isinstance(self.text, str):
            msg = "text delta must be a string"
            raise AdapterError(msg)


@dataclass(frozen=True, slots=True)
class ToolCallDelta:
    """Partial tool invocation; ``name`` is only required on the first delta."""

    tool_call_id: str
    tool_call_name: Optional[str] = None
    args_delta: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.tool_call_id, str) or not self.tool_call_id:
            msg = "tool call delta requires a non-empty tool_call_id"
            raise AdapterError(msg)
        if self.tool_call_name is not None and not isinstance(self.tool_call_name, str):
            msg = "tool call name must be a string when provided"
            raise AdapterError(msg)
        if self.args_delta is not None and not isinstance(self.args_delta, str):
            msg = "tool call arguments must be a string fragment"
            raise AdapterError(msg)


@dataclass(frozen=True, slots=True)
class Fault:
    """Terminal value marking a backend-side failure."""

    description: str
    error: Optional[BaseException] = None

    @classmethod
    def from_exception(cls, exc: BaseException) -> Fault:
        description = str(exc).strip() or type(exc).__name__
        return cls(description=description, error=exc)


Fragment = Union[TextDelta, ToolCallDelta, Fault]


class FragmentNormalizer(Protocol):
    async def normalize_chunk(self, chunk: Dict[str, Any]) -> List[Fragment]:
        """Map a provider-specific chunk into canonical fragments."""


class FragmentStream(AsyncIterator[Fragment], metaclass=abc.ABCMeta):
    """Shared async iterator driving provider-specific fragment sequences.

    Subclasses source raw provider chunks by implementing
    :meth:`_get_next_chunk`. Each chunk is normalized into zero or more
    :data:`Fragment` values by a :class:`FragmentNormalizer` and buffered so
    consumers receive a linear sequence regardless of how providers batch
    their updates.

    Any exception raised while fetching or normalizing a chunk, including a
    chunk timeout, is converted into a single :class:`Fault` which is always
    the last value produced. ``asyncio.CancelledError`` is never converted.
    """

    def __init__(
        self,
        normalizer: FragmentNormalizer,
        *,
        chunk_timeout: float | None = None,
    ) -> None:
        if chunk_timeout is not None and chunk_timeout <= 0:
            msg = "chunk_timeout must be positive when provided"
            raise AdapterError(msg)
        self._normalizer = normalizer
        self._chunk_timeout = chunk_timeout
        self._buffer: Deque[Fragment] = deque()
        self._closed = False
        self._terminated = False
        self._close_lock = asyncio.Lock()

    def __aiter__(self) -> FragmentStream:
        return self

    async def __anext__(self) -> Fragment:
        buffered = self._pop_buffered()
        if buffered is not None:
            return await self._finalize_if_needed(buffered)

        while True:
            if self._closed or self._terminated:
                raise StopAsyncIteration

            try:
                chunk = await self._consume_chunk()
            except StopAsyncIteration:
                await self.aclose()
                raise
            except asyncio.CancelledError:
                await self.aclose()
                raise
            except asyncio.TimeoutError:
                msg = f"backend produced no output within {self._chunk_timeout:g}s"
                return await self._finalize_if_needed(Fault(description=msg))
            except Exception as exc:
                LOGGER.debug("backend stream raised %s", type(exc).__name__, exc_info=True)
                return await self._finalize_if_needed(Fault.from_exception(exc))

            try:
                fragments = await self._normalizer.normalize_chunk(chunk)
            except Exception as exc:
                LOGGER.debug("normalizer raised %s", type(exc).__name__, exc_info=True)
                return await self._finalize_if_needed(Fault.from_exception(exc))

            if not fragments:
                continue

            self._buffer.extend(fragments)
            buffered = self._pop_buffered()
            if buffered is not None:
                return await self._finalize_if_needed(buffered)

    @property
    def closed(self) -> bool:
        """Whether provider resources have been released."""

        return self._closed

    async def aclose(self) -> None:
        """Release provider resources and prevent additional iteration."""

        async with self._close_lock:
            if self._closed:
                return

            self._closed = True
            self._buffer.clear()
            await self._on_close()

    async def _consume_chunk(self) -> Dict[str, Any]:
        if self._chunk_timeout is None:
            return await self._get_next_chunk()
        return await asyncio.wait_for(self._get_next_chunk(), self._chunk_timeout)

    async def _finalize_if_needed(self, fragment: Fragment) -> Fragment:
        if isinstance(fragment, Fault):
            self._terminated = True
            self._buffer.clear()
            try:
                await self.aclose()
            except Exception:
                LOGGER.warning(
                    "closing the backend stream after a fault failed", exc_info=True
                )
        return fragment

    def _pop_buffered(self) -> Fragment | None:
        if not self._buffer:
            return None
        return self._buffer.popleft()

    @abc.abstractmethod
    async def _get_next_chunk(self) -> Dict[str, Any]:
        """Retrieve the next raw chunk from the provider stream."""

    async def _on_close(self) -> None:
        """Allow subclasses to dispose provider resources when closing."""


class _IdentityNormalizer(FragmentNormalizer):
    async def normalize_chunk(self, chunk: Dict[str, Any]) -> List[Fragment]:
        return list(chunk.get("fragments", []))


class ScriptedFragmentStream(FragmentStream):
    """Deterministic in-memory stream replaying a fixed fragment script.

    Items that are exceptions are raised from the transport, which lets tests
    exercise the conversion of transport failures into a :class:`Fault`.
    """

    def __init__(
        self,
        items: Sequence[Fragment | BaseException],
        *,
        delay: float = 0.0,
        chunk_timeout: float | None = None,
    ) -> None:
        self._items: Deque[Fragment | BaseException] = deque(items)
        self._delay = delay
        self.pulled = 0
        super().__init__(_IdentityNormalizer(), chunk_timeout=chunk_timeout)

    async def _get_next_chunk(self) -> Dict[str, Any]:
        await asyncio.sleep(self._delay)
        if not self._items:
            raise StopAsyncIteration
        item = self._items.popleft()
        self.pulled += 1
        if isinstance(item, BaseException):
            raise item
        return {"fragments": [item]}


class ScriptedAdapter:
    """Backend adapter that replays the same fragment script for every run."""

    def __init__(
        self,
        items: Sequence[Fragment | BaseException],
        *,
        delay: float = 0.0,
        chunk_timeout: float | None = None,
    ) -> None:
        self._items = tuple(items)
        self._delay = delay
        self._chunk_timeout = chunk_timeout
        self.inputs: list[RunInput] = []
        self.streams: list[ScriptedFragmentStream] = []

    def open(self, run_input: RunInput) -> ScriptedFragmentStream:
        self.inputs.append(run_input)
        stream = ScriptedFragmentStream(
            self._items,
            delay=self._delay,
            chunk_timeout=self._chunk_timeout,
        )
        self.streams.append(stream)
        return stream


def fragments_from_script(payload: Sequence[Mapping[str, Any]]) -> list[Fragment]:
    """Build fragments from a JSON script.

    Each entry is one of ``{"type": "text", "text": ...}``,
    ``{"type": "tool_call", "id": ..., "name": ..., "args": ...}`` or
    ``{"type": "fault", "message": ...}``.
    """

    if isinstance(payload, (str, bytes, bytearray)) or not isinstance(payload, Sequence):
        msg = "fragment script must be a JSON array"
        raise AdapterError(msg)

    fragments: list[Fragment] = []
    for index, entry in enumerate(payload):
        if not isinstance(entry, Mapping):
            msg = f"script[{index}] must be an object"
            raise AdapterError(msg)
        kind = entry.get("type")
        if kind == "text":
            fragments.append(TextDelta(text=entry.get("text", "")))
        elif kind == "tool_call":
            fragments.append(
                ToolCallDelta(
                    tool_call_id=entry.get("id", ""),
                    tool_call_name=entry.get("name"),
                    args_delta=entry.get("args"),
                )
            )
        elif kind == "fault":
            message = entry.get("message")
            if not isinstance(message, str) or not message:
                msg = f"script[{index}] fault requires a non-empty message"
                raise AdapterError(msg)
            fragments.append(Fault(description=message))
        else:
            msg = f"script[{index}] has unsupported type {kind!r}"
            raise AdapterError(msg)
    return fragments


async def collect_fragments(stream: AsyncIterator[Fragment]) -> List[Fragment]:
    """Drain a fragment sequence, closing it afterwards."""

    fragments: List[Fragment] = []
    try:
        async for fragment in stream:
            fragments.append(fragment)
    finally:
        closer = getattr(stream, "aclose", None)
        if closer is not None:
            result = closer()
            if inspect.isawaitable(result):
                await result
    return fragments


__all__ = [
    "Fault",
    "Fragment",
    "FragmentNormalizer",
    "FragmentStream",
    "ScriptedAdapter",
    "ScriptedFragmentStream",
    "TextDelta",
    "ToolCallDelta",
    "collect_fragments",
    "fragments_from_script",
]
