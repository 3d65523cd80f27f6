from __future__ import annotations

import asyncio

import pytest

from runbridge.core.adapters.stream import (
    Fault,
    FragmentStream,
    ScriptedAdapter,
    ScriptedFragmentStream,
    TextDelta,
    ToolCallDelta,
    collect_fragments,
    fragments_from_script,
)
from runbridge.core.errors import AdapterError


def test_scripted_stream_replays_fragments_in_order() -> None:
    items = [TextDelta("a"), ToolCallDelta("t1", tool_call_name="x"), TextDelta("b")]
    stream = ScriptedFragmentStream(items)

    fragments = asyncio.run(collect_fragments(stream))

    assert fragments == items
    assert stream.closed


def test_fault_is_always_the_last_fragment() -> None:
    stream = ScriptedFragmentStream([TextDelta("a"), Fault("boom"), TextDelta("b")])

    fragments = asyncio.run(collect_fragments(stream))

    assert fragments == [TextDelta("a"), Fault("boom")]
    assert stream.pulled == 2


def test_exceptions_are_converted_to_a_single_fault() -> None:
    error = ValueError("bad chunk")
    stream = ScriptedFragmentStream([TextDelta("a"), error, TextDelta("b")])

    fragments = asyncio.run(collect_fragments(stream))

    assert fragments[:-1] == [TextDelta("a")]
    assert fragments[-1] == Fault("bad chunk", error=error)


def test_exception_without_message_uses_type_name() -> None:
    fragments = asyncio.run(collect_fragments(ScriptedFragmentStream([ConnectionError()])))

    assert fragments == [Fault("ConnectionError", error=fragments[0].error)]


def test_chunk_timeout_produces_fault() -> None:
    stream = ScriptedFragmentStream([TextDelta("late")], delay=0.2, chunk_timeout=0.01)

    fragments = asyncio.run(collect_fragments(stream))

    assert len(fragments) == 1
    assert isinstance(fragments[0], Fault)
    assert "0.01s" in fragments[0].description


def test_non_positive_chunk_timeout_is_rejected() -> None:
    with pytest.raises(AdapterError):
        ScriptedFragmentStream([], chunk_timeout=0)


def test_cancellation_is_not_converted_to_fault() -> None:
    async def scenario() -> None:
        stream = ScriptedFragmentStream([TextDelta("a")], delay=1.0)
        task = asyncio.create_task(stream.__anext__())
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert stream.closed

    asyncio.run(scenario())


def test_aclose_is_idempotent_and_calls_hook_once() -> None:
    class _CountingStream(ScriptedFragmentStream):
        def __init__(self) -> None:
            super().__init__([TextDelta("a")])
            self.close_calls = 0

        async def _on_close(self) -> None:
            self.close_calls += 1

    async def scenario() -> _CountingStream:
        stream = _CountingStream()
        await asyncio.gather(stream.aclose(), stream.aclose())
        await stream.aclose()
        return stream

    stream = asyncio.run(scenario())

    assert stream.close_calls == 1


def test_normalizer_batches_are_flattened() -> None:
    class _BatchStream(FragmentStream):
        def __init__(self) -> None:
            super().__init__(_SplitNormalizer())
            self._chunks = [{"text": "ab"}, {"text": ""}, {"text": "c"}]

        async def _get_next_chunk(self) -> dict:
            if not self._chunks:
                raise StopAsyncIteration
            return self._chunks.pop(0)

    class _SplitNormalizer:
        async def normalize_chunk(self, chunk: dict) -> list:
            return [TextDelta(char) for char in chunk["text"]]

    fragments = asyncio.run(collect_fragments(_BatchStream()))

    assert fragments == [TextDelta("a"), TextDelta("b"), TextDelta("c")]


def test_scripted_adapter_opens_a_fresh_stream_per_run() -> None:
    adapter = ScriptedAdapter([TextDelta("a")])

    first = asyncio.run(collect_fragments(adapter.open(object())))  # type: ignore[arg-type]
    second = asyncio.run(collect_fragments(adapter.open(object())))  # type: ignore[arg-type]

    assert first == second == [TextDelta("a")]
    assert len(adapter.streams) == 2


def test_fragments_from_script_builds_each_kind() -> None:
    fragments = fragments_from_script(
        [
            {"type": "text", "text": "Hello"},
            {"type": "tool_call", "id": "t1", "name": "lookup", "args": "{}"},
            {"type": "tool_call", "id": "t1", "args": "{}"},
            {"type": "fault", "message": "rate limited"},
        ]
    )

    assert fragments == [
        TextDelta("Hello"),
        ToolCallDelta("t1", tool_call_name="lookup", args_delta="{}"),
        ToolCallDelta("t1", args_delta="{}"),
        Fault("rate limited"),
    ]


@pytest.mark.parametrize(
    "script",
    [
        pytest.param({"type": "text"}, id="not-a-list"),
        pytest.param([{"type": "audio"}], id="unknown-type"),
        pytest.param([{"type": "fault"}], id="fault-without-message"),
        pytest.param([{"type": "tool_call", "name": "x"}], id="tool-call-without-id"),
        pytest.param(["text"], id="entry-not-object"),
    ],
)
def test_fragments_from_script_rejects_bad_entries(script: object) -> None:
    with pytest.raises(AdapterError):
        fragments_from_script(script)  # type: ignore[arg-type]


def test_fragment_types_validate_their_fields() -> None:
    with pytest.raises(AdapterError):
        TextDelta(123)  # type: ignore[arg-type]
    with pytest.raises(AdapterError):
        ToolCallDelta("")
    with pytest.raises(AdapterError):
        ToolCallDelta("t1", args_delta={"a": 1})  # type: ignore[arg-type]


class _ChunkStream(FragmentStream):
    def __init__(self, normalizer: object, chunks: list) -> None:
        super().__init__(normalizer)  # type: ignore[arg-type]
        self._chunks = list(chunks)

    async def _get_next_chunk(self) -> dict:
        if not self._chunks:
            raise StopAsyncIteration
        return self._chunks.pop(0)


def test_unexpected_normalizer_errors_become_a_fault() -> None:
    class _KeyedNormalizer:
        async def normalize_chunk(self, chunk: dict) -> list:
            return [TextDelta(chunk["text"])]

    stream = _ChunkStream(_KeyedNormalizer(), [{"text": "a"}, {"content": "b"}, {"text": "c"}])

    fragments = asyncio.run(collect_fragments(stream))

    assert fragments[0] == TextDelta("a")
    assert len(fragments) == 2
    assert isinstance(fragments[1], Fault)
    assert isinstance(fragments[1].error, KeyError)
    assert stream.closed


def test_fault_survives_a_failing_close() -> None:
    class _LeakyStream(ScriptedFragmentStream):
        async def _on_close(self) -> None:
            raise OSError("socket already gone")

    stream = _LeakyStream([TextDelta("a"), Fault("rate limited")])

    fragments = asyncio.run(collect_fragments(stream))

    assert fragments == [TextDelta("a"), Fault("rate limited")]
    assert stream.closed
