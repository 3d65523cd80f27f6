"""OpenAI-compatible chat completion adapter producing backend fragments."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..errors import AdapterError
from ..message import RunInput
from .stream import Fault, Fragment, FragmentNormalizer, FragmentStream, TextDelta, ToolCallDelta
from .toolbridge import tool_definitions_to_openai
from .utils import messages_to_openai

if TYPE_CHECKING:
    from ...config import BridgeConfig

LOGGER = logging.getLogger(__name__)

_RESERVED_KEYS = frozenset({"messages", "stream", "tools"})

StreamFactory = Callable[[Any, Mapping[str, Any]], Any]


def create_openai_stream(client: Any, payload: Mapping[str, Any]) -> Any:
    """Create a streaming iterator using the provided OpenAI client."""

    return client.chat.completions.create(**payload)


class OpenAIAdapter:
    """Translate runs into streaming OpenAI chat completion requests.

    ``client`` is any object exposing ``chat.completions.create``; both the
    synchronous return style and the awaitable style of ``AsyncOpenAI`` are
    accepted.
    """

    def __init__(
        self,
        client: Any,
        *,
        default_model: str | None = None,
        default_params: Mapping[str, Any] | None = None,
        chunk_timeout: float | None = None,
        stream_factory: StreamFactory | None = None,
    ) -> None:
        self._client = client
        self._default_params = dict(default_params or {})
        self._chunk_timeout = chunk_timeout
        self._stream_factory = stream_factory

        if default_model is None and "model" in self._default_params:
            default_model = str(self._default_params.pop("model"))
        self._default_params.pop("model", None)
        if not default_model:
            msg = "a model name must be provided"
            raise AdapterError(msg)
        self._default_model = default_model

        conflict = _RESERVED_KEYS.intersection(self._default_params)
        if conflict:
            joined = ", ".join(sorted(conflict))
            msg = f"default parameters cannot include reserved keys: {joined}"
            raise AdapterError(msg)

    @classmethod
    def from_config(
        cls,
        client: Any,
        config: BridgeConfig,
        *,
        stream_factory: StreamFactory | None = None,
    ) -> OpenAIAdapter:
        """Build an adapter from the model, temperature and timeout in ``config``."""

        return cls(client, stream_factory=stream_factory, **config.adapter_options())

    @property
    def model(self) -> str:
        return self._default_model

    def open(self, run_input: RunInput) -> OpenAIFragmentStream:
        payload = self.build_request(run_input)
        LOGGER.debug(
            "opening OpenAI stream run_id=%s model=%s messages=%d tools=%d",
            run_input.run_id,
            payload["model"],
            len(payload["messages"]),
            len(payload.get("tools", ())),
        )
        return OpenAIFragmentStream(
            self._client,
            payload,
            stream_factory=self._stream_factory,
            chunk_timeout=self._chunk_timeout,
        )

    def build_request(self, run_input: RunInput) -> dict[str, Any]:
        """Return the chat completion request for ``run_input``."""

        request_payload: dict[str, Any] = {"model": self._default_model, **self._default_params}
        request_payload.setdefault("temperature", 0)
        request_payload["messages"] = messages_to_openai(run_input.messages)
        if run_input.tools:
            request_payload["tools"] = tool_definitions_to_openai(run_input.tools)
        request_payload["stream"] = True
        return request_payload


class OpenAIFragmentStream(FragmentStream):
    """Fragment stream that lazily opens an OpenAI stream and normalizes chunks.

    The provider stream is created on the first pull so that request failures
    surface as a :class:`Fault` like any other transport failure.
    """

    def __init__(
        self,
        client: Any,
        payload: Mapping[str, Any],
        *,
        stream_factory: StreamFactory | None = None,
        chunk_timeout: float | None = None,
        normalizer: FragmentNormalizer | None = None,
    ) -> None:
        self._client = client
        self._payload = dict(payload)
        self._stream_factory = stream_factory
        self._stream: Any = None
        self._iterator: Any = None
        super().__init__(normalizer or OpenAIFragmentNormalizer(), chunk_timeout=chunk_timeout)

    async def _get_next_chunk(self) -> dict[str, Any]:
        if self._iterator is None:
            await self._open_stream()
        raw_chunk = await self._iterator.__anext__()
        return _ensure_mapping(raw_chunk, path="chunk")

    async def _open_stream(self) -> None:
        factory = self._stream_factory or create_openai_stream
        stream = factory(self._client, self._payload)
        if inspect.isawaitable(stream):
            stream = await stream
        self._stream = stream
        self._iterator = _coerce_async_iterator(stream)

    async def _on_close(self) -> None:
        stream = self._stream
        self._stream = None
        if stream is None:
            return

        for closer_name in ("aclose", "close"):
            closer = getattr(stream, closer_name, None)
            if closer is None:
                continue
            result = closer()
            if inspect.isawaitable(result):
                await result
            return


@dataclass
class _ToolCallState:
    """Track identity of a tool call streamed under one provider index."""

    call_id: str | None = None
    name: str | None = None
    announced: bool = False


class OpenAIFragmentNormalizer(FragmentNormalizer):
    """Normalize OpenAI streaming chunks into fragments."""

    def __init__(self) -> None:
        self._tool_states: dict[int, _ToolCallState] = {}

    async def normalize_chunk(self, chunk: Mapping[str, Any]) -> list[Fragment]:
        mapping = _ensure_mapping(chunk, path="chunk")

        error_payload = mapping.get("error")
        if error_payload is not None:
            return [Fault(description=_describe_error(error_payload))]

        choice = self._extract_choice(mapping)
        if choice is None:
            return []

        delta = choice.get("delta")
        fragments = [] if delta is None else self._normalize_delta(_ensure_mapping(delta, path="choices[0].delta"))

        finish_reason = choice.get("finish_reason")
        if finish_reason is not None:
            LOGGER.debug("OpenAI stream finish_reason=%s", finish_reason)
        return fragments

    def _normalize_delta(self, delta: Mapping[str, Any]) -> list[Fragment]:
        fragments: list[Fragment] = []

        content_fragment = delta.get("content")
        if content_fragment is not None:
            if not isinstance(content_fragment, str):
                msg = "OpenAI delta content fragments must be strings"
                raise AdapterError(msg)
            if content_fragment:
                fragments.append(TextDelta(text=content_fragment))

        tool_calls_payload = delta.get("tool_calls")
        if tool_calls_payload is not None:
            fragments.extend(self._normalize_tool_calls(tool_calls_payload))

        return fragments

    def _normalize_tool_calls(self, payload: Any) -> list[ToolCallDelta]:
        if isinstance(payload, (str, bytes, bytearray)) or not isinstance(payload, Sequence):
            msg = "OpenAI delta tool_calls payload must be a sequence"
            raise AdapterError(msg)

        fragments: list[ToolCallDelta] = []
        for position, item in enumerate(payload):
            mapping = _ensure_mapping(item, path=f"choices[0].delta.tool_calls[{position}]")

            raw_index = mapping.get("index", position)
            if isinstance(raw_index, bool) or not isinstance(raw_index, int):
                msg = f"tool call delta has a non-integer index at position {position}"
                raise AdapterError(msg)

            state = self._tool_states.setdefault(raw_index, _ToolCallState())
            arguments = self._update_state(state, mapping, index=raw_index)

            if state.announced and arguments is None:
                continue
            if state.call_id is None:
                msg = f"tool call at index {raw_index} is missing an id"
                raise AdapterError(msg)

            fragments.append(
                ToolCallDelta(
                    tool_call_id=state.call_id,
                    tool_call_name=None if state.announced else state.name,
                    args_delta=arguments,
                )
            )
            state.announced = True

        return fragments

    def _update_state(self, state: _ToolCallState, payload: Mapping[str, Any], *, index: int) -> str | None:
        call_id = payload.get("id")
        if call_id is not None:
            if not isinstance(call_id, str) or not call_id:
                msg = f"tool call at index {index} is missing a valid id"
                raise AdapterError(msg)
            if state.call_id is not None and state.call_id != call_id:
                msg = f"tool call at index {index} changed id from '{state.call_id}' to '{call_id}'"
                raise AdapterError(msg)
            state.call_id = call_id

        call_type = payload.get("type")
        if call_type is not None and call_type != "function":
            msg = f"tool call at index {index} must have type 'function'"
            raise AdapterError(msg)

        function_payload = payload.get("function")
        if function_payload is None:
            return None
        function_mapping = _ensure_mapping(function_payload, path=f"tool_calls[{index}].function")

        name_value = function_mapping.get("name")
        if name_value:
            if not isinstance(name_value, str):
                msg = f"tool call at index {index} has a non-string function name"
                raise AdapterError(msg)
            state.name = name_value

        fragment = function_mapping.get("arguments")
        if fragment is None:
            return None
        if not isinstance(fragment, str):
            msg = f"tool call at index {index} arguments must be a string fragment"
            raise AdapterError(msg)
        return fragment or None

    def _extract_choice(self, chunk: Mapping[str, Any]) -> Mapping[str, Any] | None:
        choices = chunk.get("choices")
        if choices is None:
            return None
        if isinstance(choices, (str, bytes, bytearray)) or not isinstance(choices, Sequence):
            msg = "OpenAI stream chunk choices must be a sequence"
            raise AdapterError(msg)
        if not choices:
            return None
        return _ensure_mapping(choices[0], path="choices[0]")


def _describe_error(payload: Any) -> str:
    if isinstance(payload, str) and payload:
        return payload
    if isinstance(payload, Mapping):
        message = payload.get("message")
        if isinstance(message, str) and message:
            return message
    return "OpenAI stream reported an error"


def _coerce_async_iterator(stream: Any) -> Any:
    iterator_factory = getattr(stream, "__aiter__", None)
    if iterator_factory is None or not callable(iterator_factory):
        msg = "OpenAI stream must support async iteration"
        raise AdapterError(msg)
    iterator = iterator_factory()
    if not hasattr(iterator, "__anext__"):
        msg = "OpenAI stream iterator must define '__anext__'"
        raise AdapterError(msg)
    return iterator


def _ensure_mapping(value: Any, *, path: str) -> Mapping[str, Any]:
    if isinstance(value, Mapping):
        return value

    if hasattr(value, "model_dump"):
        mapping = value.model_dump()
        if isinstance(mapping, Mapping):
            return mapping

    if hasattr(value, "__dict__"):
        return vars(value)

    msg = f"{path} must be a mapping"
    raise AdapterError(msg)
