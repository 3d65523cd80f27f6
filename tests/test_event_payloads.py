from __future__ import annotations

import json

import pytest

from runbridge.core.adapters.openai import OpenAIAdapter
from runbridge.core.adapters.stream import ScriptedAdapter, TextDelta, ToolCallDelta
from runbridge.core.events import (
    BaseEvent,
    TextMessageContentEvent,
    ToolCallArgsEvent,
    ToolCallStartEvent,
)
from runbridge.core.message import ToolDefinition
from tests.fixtures import openai_fake
from tests.harness import RunOutcome, build_run_input, run

WEATHER_TOOL = ToolDefinition(
    name="get_weather",
    description="Current weather for a city",
    parameters={
        "type": "object",
        "properties": {"city": {"type": "string"}, "unit": {"type": "string"}},
        "required": ["city"],
    },
)

LOOKUP_TOOL = ToolDefinition(
    name="lookup",
    description="Search the knowledge base",
    parameters={"type": "object", "properties": {"q": {"type": "string"}}},
)


def _joined_arguments(events: list[BaseEvent]) -> dict[str, str]:
    joined: dict[str, str] = {}
    for event in events:
        if isinstance(event, ToolCallStartEvent):
            joined[event.tool_call_id] = ""
        elif isinstance(event, ToolCallArgsEvent):
            joined[event.tool_call_id] += event.delta
    return joined


def _joined_text(events: list[BaseEvent]) -> dict[str, str]:
    joined: dict[str, str] = {}
    for event in events:
        if isinstance(event, TextMessageContentEvent):
            joined[event.message_id] = joined.get(event.message_id, "") + event.delta
    return joined


def _tool_names(events: list[BaseEvent]) -> dict[str, str]:
    return {
        event.tool_call_id: event.tool_call_name
        for event in events
        if isinstance(event, ToolCallStartEvent)
    }


def _assert_arguments_match_tools(outcome: RunOutcome, tools: list[ToolDefinition]) -> None:
    by_name = {tool.name: tool for tool in tools}
    names = _tool_names(outcome.events)
    arguments = _joined_arguments(outcome.events)

    assert arguments
    for call_id, raw in arguments.items():
        decoded = json.loads(raw)
        tool = by_name[names[call_id]]
        assert isinstance(decoded, dict)
        assert set(decoded) <= set(tool.parameters["properties"])
        assert set(tool.parameters.get("required", ())) <= set(decoded)


def _openai_adapter(chunks: list) -> OpenAIAdapter:
    client, _ = openai_fake.build_streaming_client(chunks)
    return OpenAIAdapter(client, default_model="gpt-4o-mini")


def test_openai_tool_arguments_join_into_declared_shape() -> None:
    run_input = build_run_input(prompt="Weather in Paris?", tools=[WEATHER_TOOL])

    outcome = run(_openai_adapter(openai_fake.tool_call_chunks()), run_input=run_input)

    assert outcome.result.ok
    assert _joined_arguments(outcome.events) == {"call_1": '{"city":"Paris"}'}
    _assert_arguments_match_tools(outcome, [WEATHER_TOOL])


def test_openai_parallel_tool_arguments_are_kept_apart() -> None:
    run_input = build_run_input(prompt="Look up a and b", tools=[LOOKUP_TOOL])

    outcome = run(_openai_adapter(openai_fake.parallel_tool_call_chunks()), run_input=run_input)

    assert {call_id: json.loads(raw) for call_id, raw in _joined_arguments(outcome.events).items()} == {
        "call_a": {"q": "a"},
        "call_b": {"q": "b"},
    }
    _assert_arguments_match_tools(outcome, [LOOKUP_TOOL])


@pytest.mark.parametrize(
    "pieces",
    [
        pytest.param(['{"city": "Oslo", "unit": "celsius"}'], id="single-delta"),
        pytest.param(['{"ci', 'ty": "Os', 'lo"', "}"], id="split-keys"),
        pytest.param(["", '{"city"', "", ': "Oslo"}'], id="empty-pieces"),
    ],
)
def test_scripted_tool_arguments_join_into_declared_shape(pieces: list[str]) -> None:
    fragments = [TextDelta("Let me check.")]
    fragments.append(ToolCallDelta("call_w", tool_call_name="get_weather", args_delta=pieces[0]))
    fragments.extend(ToolCallDelta("call_w", args_delta=piece) for piece in pieces[1:])
    run_input = build_run_input(prompt="Weather in Oslo?", tools=[WEATHER_TOOL])

    outcome = run(ScriptedAdapter(fragments), run_input=run_input)

    assert outcome.result.ok
    assert json.loads(_joined_arguments(outcome.events)["call_w"])["city"] == "Oslo"
    _assert_arguments_match_tools(outcome, [WEATHER_TOOL])


def test_openai_text_deltas_join_into_the_full_reply() -> None:
    outcome = run(_openai_adapter(openai_fake.token_only_chunks()))

    assert _joined_text(outcome.events) == {"msg-1": "Hello, world"}


def test_scripted_text_deltas_join_per_message() -> None:
    outcome = run(
        [
            TextDelta("The weather "),
            TextDelta(""),
            TextDelta("is sunny"),
            ToolCallDelta("call_w", tool_call_name="get_weather", args_delta='{"city": "Rome"}'),
            TextDelta("Anything "),
            TextDelta("else?"),
        ]
    )

    assert list(_joined_text(outcome.events).values()) == ["The weather is sunny", "Anything else?"]
