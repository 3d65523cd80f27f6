"""Run state machine turning backend fragments into framed protocol events."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass

from runbridge.core.adapters import BackendAdapter
from runbridge.core.adapters.stream import Fault, Fragment, TextDelta, ToolCallDelta
from runbridge.core.errors import (
    AlreadyStarted,
    AlreadyTerminated,
    BackendFault,
    BridgeError,
    MalformedThread,
    ProtocolViolation,
    RunCancelled,
    SinkFailure,
)
from runbridge.core.events import (
    BaseEvent,
    RunErrorEvent,
    RunFinishedEvent,
    RunStartedEvent,
    TextMessageContentEvent,
    TextMessageEndEvent,
    TextMessageStartEvent,
    ToolCallArgsEvent,
    ToolCallEndEvent,
    ToolCallStartEvent,
)
from runbridge.core.message import RunInput
from runbridge.io.interfaces import EventSink
from runbridge.io.sinks import QueueEventSink

from .ids import IdGenerator, uuid_ids
from .state import RunPhase, RunState


LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RunResult:
    """Outcome of one run: the terminal phase and the error that ended it."""

    phase: RunPhase
    error: BridgeError | None = None

    @property
    def ok(self) -> bool:
        return self.phase is RunPhase.FINISHED and self.error is None


class RunStateMachine:
    """Drive one run from a backend adapter into an event sink.

    The machine owns all framing: it opens and closes text messages and tool
    calls, draws message identifiers, and guarantees the sink sees exactly one
    ``RUN_STARTED`` followed by exactly one terminal event. Failures after the
    run started are reported through the sink and never raised from
    :meth:`start`; only ``MalformedThread`` and re-entry errors escape.
    """

    def __init__(
        self,
        adapter: BackendAdapter,
        sink: EventSink,
        /,
        *,
        id_generator: IdGenerator | None = None,
    ) -> None:
        self._adapter = adapter
        self._sink = sink
        self._next_id = id_generator or uuid_ids()
        self._stream: AsyncIterator[Fragment] | None = None

        self.state = RunState()

    @property
    def phase(self) -> RunPhase:
        return self.state.phase

    async def start(self, run_input: RunInput) -> RunResult:
        """Run ``run_input`` to completion and report the terminal phase."""

        self._check_reentry()
        try:
            run_input.validate()
        except MalformedThread as exc:
            LOGGER.warning("rejecting malformed run input: %s", exc)
            self.state.phase = RunPhase.ERRORED
            await self._sink.fail(exc)
            raise

        self.state.phase = RunPhase.STARTED
        LOGGER.info(
            "run started thread_id=%s run_id=%s",
            run_input.thread_id,
            run_input.run_id,
        )

        try:
            await self._emit(
                RunStartedEvent(thread_id=run_input.thread_id, run_id=run_input.run_id)
            )
            self.state.phase = RunPhase.STREAMING
            self._reserve_message_id()
            self._stream = self._open_stream(run_input)
            await self._consume()
            await self._close_open_units()
            await self._emit(
                RunFinishedEvent(thread_id=run_input.thread_id, run_id=run_input.run_id)
            )
        except BridgeError as exc:
            await self._close_stream()
            return await self._abort(exc)
        except asyncio.CancelledError:
            await self._close_stream()
            await self._abort(RunCancelled("run task was cancelled"))
            raise

        await self._close_stream()
        return await self._finish()

    def _check_reentry(self) -> None:
        phase = self.state.phase
        if phase.terminal:
            msg = f"run already terminated in phase {phase.value}"
            raise AlreadyTerminated(msg)
        if phase is not RunPhase.IDLE:
            msg = f"run already in progress in phase {phase.value}"
            raise AlreadyStarted(msg)

    def _open_stream(self, run_input: RunInput) -> AsyncIterator[Fragment]:
        try:
            return self._adapter.open(run_input)
        except Exception as exc:
            raise BackendFault(Fault.from_exception(exc)) from exc

    async def _consume(self) -> None:
        assert self._stream is not None
        iterator = self._stream.__aiter__()
        while True:
            if self._sink.cancelled:
                LOGGER.warning(
                    "consumer cancelled run after %s fragments",
                    self.state.fragments_consumed,
                )
                raise RunCancelled("run cancelled by consumer")
            try:
                fragment = await iterator.__anext__()
            except StopAsyncIteration:
                return
            except Exception as exc:
                # adapters not built on FragmentStream may still raise
                raise BackendFault(Fault.from_exception(exc)) from exc

            self.state.fragments_consumed += 1
            LOGGER.debug("fragment %s: %r", self.state.fragments_consumed, fragment)
            await self._apply(fragment)

    async def _apply(self, fragment: Fragment) -> None:
        if isinstance(fragment, TextDelta):
            await self._on_text(fragment)
        elif isinstance(fragment, ToolCallDelta):
            await self._on_tool_call(fragment)
        elif isinstance(fragment, Fault):
            raise BackendFault(fragment)
        else:
            msg = f"unsupported fragment type {type(fragment).__name__}"
            raise ProtocolViolation(msg)

    async def _on_text(self, fragment: TextDelta) -> None:
        if not fragment.text:
            return
        if self.state.active_tool_call_id is not None:
            await self._end_tool_call()
        if self.state.active_message_id is None:
            await self._start_message()
        await self._emit(
            TextMessageContentEvent(
                message_id=self.state.active_message_id,
                delta=fragment.text,
            )
        )

    async def _on_tool_call(self, fragment: ToolCallDelta) -> None:
        state = self.state
        call_id = fragment.tool_call_id
        opening = state.active_tool_call_id != call_id
        if opening:
            if call_id in state.closed_tool_call_ids:
                msg = (
                    f"tool call {call_id!r} resumed after it was closed; "
                    "interleaved tool calls are not supported"
                )
                raise ProtocolViolation(msg)
            if not fragment.tool_call_name:
                msg = f"first delta for tool call {call_id!r} carries no tool name"
                raise ProtocolViolation(msg)

        if state.active_message_id is not None:
            await self._end_message()
        if opening:
            if state.active_tool_call_id is not None:
                await self._end_tool_call()
            await self._start_tool_call(call_id, fragment.tool_call_name)
        if fragment.args_delta:
            await self._emit(ToolCallArgsEvent(tool_call_id=call_id, delta=fragment.args_delta))

    def _reserve_message_id(self) -> None:
        self.state.current_message_id = self._next_id()
        self.state.current_message_used = False

    async def _start_message(self) -> None:
        if self.state.current_message_used:
            self._reserve_message_id()
        message_id = self.state.current_message_id
        self.state.current_message_used = True
        self.state.active_message_id = message_id
        await self._emit(TextMessageStartEvent(message_id=message_id))

    async def _end_message(self) -> None:
        message_id = self.state.active_message_id
        self.state.active_message_id = None
        await self._emit(TextMessageEndEvent(message_id=message_id))

    async def _start_tool_call(self, call_id: str, name: str) -> None:
        self.state.active_tool_call_id = call_id
        LOGGER.info("tool call started id=%s name=%s", call_id, name)
        await self._emit(
            ToolCallStartEvent(
                tool_call_id=call_id,
                tool_call_name=name,
                parent_message_id=self.state.current_message_id,
            )
        )

    async def _end_tool_call(self) -> None:
        call_id = self.state.active_tool_call_id
        self.state.active_tool_call_id = None
        self.state.closed_tool_call_ids.add(call_id)
        await self._emit(ToolCallEndEvent(tool_call_id=call_id))

    async def _close_open_units(self) -> None:
        if self.state.active_message_id is not None:
            await self._end_message()
        if self.state.active_tool_call_id is not None:
            await self._end_tool_call()

    async def _emit(self, event: BaseEvent) -> None:
        try:
            await self._sink.push(event)
        except SinkFailure:
            raise
        except Exception as exc:
            msg = f"sink rejected {event.type.value} event"
            raise SinkFailure(msg) from exc
        self.state.events_emitted += 1
        LOGGER.debug("emitted %s", event.type.value)

    async def _finish(self) -> RunResult:
        self.state.phase = RunPhase.FINISHED
        self.state.reset()
        LOGGER.info(
            "run finished events=%s fragments=%s",
            self.state.events_emitted,
            self.state.fragments_consumed,
        )
        try:
            await self._sink.complete()
        except SinkFailure as exc:
            LOGGER.error("sink could not be completed", exc_info=True)
            return RunResult(RunPhase.FINISHED, exc)
        return RunResult(RunPhase.FINISHED)

    async def _abort(self, error: BridgeError) -> RunResult:
        self.state.phase = RunPhase.ERRORED
        self.state.reset()
        if isinstance(error, SinkFailure) and not isinstance(error, RunCancelled):
            LOGGER.error("sink failure ended run: %s", error, exc_info=error)
        else:
            LOGGER.warning("run errored code=%s: %s", error.code, error)

        try:
            await self._sink.push(RunErrorEvent(message=str(error), code=error.code))
        except Exception:
            LOGGER.error("could not deliver RUN_ERROR", exc_info=True)
        else:
            self.state.events_emitted += 1

        try:
            await self._sink.fail(error)
        except SinkFailure:
            LOGGER.error("sink could not be failed", exc_info=True)
        return RunResult(RunPhase.ERRORED, error)

    async def _close_stream(self) -> None:
        stream = self._stream
        self._stream = None
        if stream is None:
            return
        closer = getattr(stream, "aclose", None)
        if closer is None:
            return
        try:
            result = closer()
            if inspect.isawaitable(result):
                await result
        except Exception:
            LOGGER.error("closing the adapter stream failed", exc_info=True)


async def run_agent(
    adapter: BackendAdapter,
    run_input: RunInput,
    sink: EventSink,
    *,
    id_generator: IdGenerator | None = None,
) -> RunResult:
    """Run ``run_input`` through ``adapter`` and deliver events to ``sink``."""

    machine = RunStateMachine(adapter, sink, id_generator=id_generator)
    return await machine.start(run_input)


async def stream_events(
    adapter: BackendAdapter,
    run_input: RunInput,
    *,
    id_generator: IdGenerator | None = None,
    maxsize: int = 0,
) -> AsyncIterator[BaseEvent]:
    """Yield the events of a run as they are produced.

    Closing the generator early cancels the run; the machine observes the
    cancellation at the next fragment boundary. ``MalformedThread`` is raised
    before any event is yielded.
    """

    sink = QueueEventSink(maxsize)
    machine = RunStateMachine(adapter, sink, id_generator=id_generator)
    task = asyncio.create_task(machine.start(run_input))
    try:
        async for event in sink:
            yield event
    finally:
        await sink.aclose()
        await task


__all__ = ["RunResult", "RunStateMachine", "run_agent", "stream_events"]
