from __future__ import annotations

import asyncio

import pytest

from runbridge.core.adapters.stream import ScriptedAdapter, TextDelta, ToolCallDelta
from runbridge.core.errors import AlreadyStarted, AlreadyTerminated, MalformedThread
from runbridge.core.events import (
    EventType,
    RunFinishedEvent,
    RunStartedEvent,
    TextMessageContentEvent,
    TextMessageEndEvent,
    TextMessageStartEvent,
    ToolCallArgsEvent,
    ToolCallEndEvent,
    ToolCallStartEvent,
)
from runbridge.core.message import Message, MessageRole, RunInput
from runbridge.io.sinks import CollectingSink
from runbridge.runtime.ids import sequential_ids
from runbridge.runtime.machine import RunStateMachine
from runbridge.runtime.state import RunPhase
from tests.harness import build_run_input, run


def test_text_only_run_is_framed_as_one_message() -> None:
    outcome = run([TextDelta("Hello "), TextDelta("world!")], prompt="hi")

    assert outcome.events == [
        RunStartedEvent(thread_id="thread-1", run_id="run-1"),
        TextMessageStartEvent(message_id="msg-1"),
        TextMessageContentEvent(message_id="msg-1", delta="Hello "),
        TextMessageContentEvent(message_id="msg-1", delta="world!"),
        TextMessageEndEvent(message_id="msg-1"),
        RunFinishedEvent(thread_id="thread-1", run_id="run-1"),
    ]
    assert outcome.result.phase is RunPhase.FINISHED
    assert outcome.result.ok
    assert outcome.sink.completed
    outcome.assert_well_framed()


def test_streamed_tool_call_is_framed_with_parent_message() -> None:
    outcome = run(
        [
            ToolCallDelta("t1", tool_call_name="lookup", args_delta='{"q":'),
            ToolCallDelta("t1", args_delta='"x"}'),
        ]
    )

    assert outcome.events == [
        RunStartedEvent(thread_id="thread-1", run_id="run-1"),
        ToolCallStartEvent(tool_call_id="t1", tool_call_name="lookup", parent_message_id="msg-1"),
        ToolCallArgsEvent(tool_call_id="t1", delta='{"q":'),
        ToolCallArgsEvent(tool_call_id="t1", delta='"x"}'),
        ToolCallEndEvent(tool_call_id="t1"),
        RunFinishedEvent(thread_id="thread-1", run_id="run-1"),
    ]
    outcome.assert_well_framed()


def test_text_then_tool_call_closes_message_and_reuses_its_id() -> None:
    outcome = run(
        [
            TextDelta("Let me check."),
            ToolCallDelta("call_1", tool_call_name="get_weather", args_delta='{"city": "Paris"}'),
        ]
    )

    assert outcome.types == [
        EventType.RUN_STARTED,
        EventType.TEXT_MESSAGE_START,
        EventType.TEXT_MESSAGE_CONTENT,
        EventType.TEXT_MESSAGE_END,
        EventType.TOOL_CALL_START,
        EventType.TOOL_CALL_ARGS,
        EventType.TOOL_CALL_END,
        EventType.RUN_FINISHED,
    ]
    start = outcome.events[4]
    assert isinstance(start, ToolCallStartEvent)
    assert start.parent_message_id == "msg-1"
    outcome.assert_well_framed()


def test_text_after_tool_call_opens_a_fresh_message() -> None:
    outcome = run(
        [
            TextDelta("First."),
            ToolCallDelta("call_1", tool_call_name="lookup"),
            TextDelta("Second."),
            ToolCallDelta("call_2", tool_call_name="lookup", args_delta="{}"),
        ]
    )

    starts = [event for event in outcome.events if isinstance(event, TextMessageStartEvent)]
    assert [event.message_id for event in starts] == ["msg-1", "msg-2"]

    tool_starts = [event for event in outcome.events if isinstance(event, ToolCallStartEvent)]
    assert [event.parent_message_id for event in tool_starts] == ["msg-1", "msg-2"]

    # text closes the open tool call before the new message starts
    assert outcome.types[4:7] == [
        EventType.TOOL_CALL_END,
        EventType.TEXT_MESSAGE_START,
        EventType.TEXT_MESSAGE_CONTENT,
    ]
    outcome.assert_well_framed()


def test_sequential_tool_calls_close_each_other() -> None:
    outcome = run(
        [
            ToolCallDelta("a", tool_call_name="lookup", args_delta='{"q": "a"}'),
            ToolCallDelta("b", tool_call_name="lookup", args_delta='{"q": "b"}'),
        ]
    )

    assert outcome.wire[1:-1] == [
        {"type": "TOOL_CALL_START", "toolCallId": "a", "toolCallName": "lookup", "parentMessageId": "msg-1"},
        {"type": "TOOL_CALL_ARGS", "toolCallId": "a", "delta": '{"q": "a"}'},
        {"type": "TOOL_CALL_END", "toolCallId": "a"},
        {"type": "TOOL_CALL_START", "toolCallId": "b", "toolCallName": "lookup", "parentMessageId": "msg-1"},
        {"type": "TOOL_CALL_ARGS", "toolCallId": "b", "delta": '{"q": "b"}'},
        {"type": "TOOL_CALL_END", "toolCallId": "b"},
    ]
    outcome.assert_well_framed()


def test_tool_call_without_arguments_emits_no_args_event() -> None:
    outcome = run([ToolCallDelta("t1", tool_call_name="ping"), ToolCallDelta("t1", args_delta="")])

    assert outcome.types == [
        EventType.RUN_STARTED,
        EventType.TOOL_CALL_START,
        EventType.TOOL_CALL_END,
        EventType.RUN_FINISHED,
    ]


def test_empty_text_deltas_are_ignored() -> None:
    outcome = run([TextDelta(""), TextDelta(""), TextDelta("ok"), TextDelta("")])

    contents = [event for event in outcome.events if isinstance(event, TextMessageContentEvent)]
    assert [event.delta for event in contents] == ["ok"]


def test_run_without_fragments_only_frames_the_run() -> None:
    outcome = run([])

    assert outcome.types == [EventType.RUN_STARTED, EventType.RUN_FINISHED]
    assert outcome.result.ok


def test_fragments_are_never_split_or_merged() -> None:
    text = "a long fragment with\nnewlines and unicode: éè"
    outcome = run([TextDelta(text), TextDelta("!")])

    contents = [event.delta for event in outcome.events if isinstance(event, TextMessageContentEvent)]
    assert contents == [text, "!"]


def test_same_fragments_and_ids_produce_identical_events() -> None:
    fragments = [
        TextDelta("Checking"),
        ToolCallDelta("t1", tool_call_name="lookup", args_delta="{}"),
        TextDelta("Done"),
    ]

    first = run(fragments)
    second = run(fragments)

    assert first.wire == second.wire


def test_id_prefix_is_used_for_generated_message_ids() -> None:
    outcome = run([TextDelta("hi")], prefix="turn")

    start = outcome.events[1]
    assert isinstance(start, TextMessageStartEvent)
    assert start.message_id == "turn-1"


def test_run_started_and_finished_echo_input_ids() -> None:
    run_input = build_run_input(prompt="hi", thread_id="t-42", run_id="r-7")

    outcome = run([TextDelta("x")], run_input=run_input)

    assert outcome.wire[0] == {"type": "RUN_STARTED", "threadId": "t-42", "runId": "r-7"}
    assert outcome.wire[-1] == {"type": "RUN_FINISHED", "threadId": "t-42", "runId": "r-7"}


def test_adapter_receives_the_run_input() -> None:
    adapter = ScriptedAdapter([TextDelta("x")])
    run_input = build_run_input(prompt="What is up?")

    run(adapter, run_input=run_input)

    assert adapter.inputs == [run_input]
    assert adapter.streams[0].closed


def test_malformed_thread_is_rejected_before_any_event() -> None:
    adapter = ScriptedAdapter([TextDelta("never")])
    sink = CollectingSink()
    machine = RunStateMachine(adapter, sink, id_generator=sequential_ids())
    run_input = RunInput(thread_id="thread-1", run_id="run-1", messages=())

    with pytest.raises(MalformedThread):
        asyncio.run(machine.start(run_input))

    assert sink.events == []
    assert isinstance(sink.error, MalformedThread)
    assert adapter.inputs == []
    assert machine.phase is RunPhase.ERRORED


def test_unanswered_tool_message_is_malformed() -> None:
    thread = [
        Message(role=MessageRole.USER, content="hi"),
        Message(role=MessageRole.TOOL, content="42", tool_call_id="missing"),
    ]
    run_input = build_run_input(messages=thread)

    with pytest.raises(MalformedThread):
        run([TextDelta("x")], run_input=run_input)


def test_start_after_termination_raises_already_terminated() -> None:
    async def scenario() -> None:
        sink = CollectingSink()
        machine = RunStateMachine(ScriptedAdapter([TextDelta("x")]), sink)
        await machine.start(build_run_input(prompt="hi"))
        with pytest.raises(AlreadyTerminated):
            await machine.start(build_run_input(prompt="again"))
        assert sink.types.count(EventType.RUN_FINISHED) == 1

    asyncio.run(scenario())


def test_start_while_running_raises_already_started() -> None:
    async def scenario() -> None:
        adapter = ScriptedAdapter([TextDelta("a"), TextDelta("b")], delay=0.01)
        sink = CollectingSink()
        machine = RunStateMachine(adapter, sink, id_generator=sequential_ids())
        task = asyncio.create_task(machine.start(build_run_input(prompt="hi")))
        await asyncio.sleep(0)

        assert machine.phase is RunPhase.STREAMING
        with pytest.raises(AlreadyStarted):
            await machine.start(build_run_input(prompt="again"))

        result = await task
        assert result.ok
        assert sink.types.count(EventType.RUN_STARTED) == 1

    asyncio.run(scenario())


def test_state_is_cleared_once_terminal() -> None:
    outcome = run([TextDelta("hi"), ToolCallDelta("t1", tool_call_name="x")])

    state = outcome.machine.state
    assert state.phase is RunPhase.FINISHED
    assert state.active_message_id is None
    assert state.active_tool_call_id is None
    assert state.closed_tool_call_ids == set()
    assert state.fragments_consumed == 2
    assert state.events_emitted == len(outcome.events)
