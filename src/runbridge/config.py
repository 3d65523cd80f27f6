"""Configuration helpers shared by the run bridge and CLI."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import TYPE_CHECKING, Any, AsyncIterator, Mapping

from .io.encoder import EventEncoder
from .runtime.ids import IdGenerator, sequential_ids, uuid_ids
from .runtime.machine import stream_events

if TYPE_CHECKING:
    from .core.adapters import BackendAdapter
    from .core.events import BaseEvent
    from .core.message import RunInput

ENV_PREFIX = "RUNBRIDGE_"

_ENCODINGS = ("sse", "jsonl")


@dataclass(slots=True)
class BridgeConfig:
    """Settings for wiring an adapter, a state machine, and a sink together.

    Attributes
    ----------
    model:
        Default backend model name passed to the OpenAI adapter. Optional
        because scripted adapters do not need one.
    temperature:
        Sampling temperature forwarded with every backend request.
    id_prefix:
        Prefix used for generated message identifiers.
    chunk_timeout:
        Seconds to wait for a backend chunk before the stream is faulted.
        ``None`` disables the timeout.
    queue_maxsize:
        Bound of the queue used by :func:`runbridge.runtime.stream_events`;
        ``0`` means unbounded.
    encoding:
        Wire framing for encoded events, ``"sse"`` or ``"jsonl"``.
    """

    model: str | None = None
    temperature: float = 0.0
    id_prefix: str = "msg"
    chunk_timeout: float | None = None
    queue_maxsize: int = 0
    encoding: str = "sse"

    def __post_init__(self) -> None:
        if self.model is not None and not self.model.strip():
            raise ValueError("model must not be blank")
        if not self.id_prefix.strip():
            raise ValueError("id_prefix must not be empty")
        if self.chunk_timeout is not None and self.chunk_timeout <= 0:
            raise ValueError("chunk_timeout must be positive")
        if self.queue_maxsize < 0:
            raise ValueError("queue_maxsize must not be negative")
        if self.encoding not in _ENCODINGS:
            raise ValueError(f"encoding must be one of {', '.join(_ENCODINGS)}")

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "BridgeConfig":
        """Build a config from loosely typed values such as parsed JSON.

        Unknown keys are rejected so typos do not silently fall back to the
        defaults.
        """

        known = {item.name for item in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ValueError(f"unknown configuration keys: {', '.join(unknown)}")

        options: dict[str, Any] = {}
        for key, value in values.items():
            if value is None or value == "":
                continue
            options[key] = _coerce(key, value)
        return cls(**options)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "BridgeConfig":
        """Read ``RUNBRIDGE_*`` variables, e.g. ``RUNBRIDGE_MODEL``."""

        env = os.environ if environ is None else environ
        values = {}
        for item in fields(cls):
            name = ENV_PREFIX + item.name.upper()
            if name in env:
                values[item.name] = env[name]
        return cls.from_mapping(values)

    def id_generator(self, *, deterministic: bool = False) -> IdGenerator:
        """Return the identifier generator implied by :attr:`id_prefix`."""

        if deterministic:
            return sequential_ids(prefix=self.id_prefix)
        return uuid_ids(prefix=self.id_prefix)

    def adapter_options(self) -> dict[str, Any]:
        """Keyword arguments for :class:`runbridge.core.adapters.OpenAIAdapter`."""

        return {
            "default_model": self.model,
            "default_params": {"temperature": self.temperature},
            "chunk_timeout": self.chunk_timeout,
        }

    def encoder(self) -> EventEncoder:
        return EventEncoder(self.encoding)  # type: ignore[arg-type]

    def stream_run(
        self, adapter: BackendAdapter, run_input: RunInput
    ) -> AsyncIterator[BaseEvent]:
        """Stream the events of one run using the configured queue bound and ids."""

        return stream_events(
            adapter,
            run_input,
            id_generator=self.id_generator(),
            maxsize=self.queue_maxsize,
        )


def _coerce(key: str, value: Any) -> Any:
    try:
        if key == "temperature":
            return float(value)
        if key == "chunk_timeout":
            return float(value)
        if key == "queue_maxsize":
            if isinstance(value, bool):
                raise TypeError(key)
            return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"invalid value for {key}: {value!r}") from exc
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string")
    return value
