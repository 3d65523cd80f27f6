"""Backend adapter interface and provider implementations."""

from __future__ import annotations

from .base import BackendAdapter
from .openai import OpenAIAdapter, OpenAIFragmentNormalizer, OpenAIFragmentStream
from .stream import (
    Fault,
    Fragment,
    FragmentStream,
    ScriptedAdapter,
    TextDelta,
    ToolCallDelta,
    collect_fragments,
    fragments_from_script,
)
from .toolbridge import tool_definitions_to_openai
from .utils import messages_to_openai, openai_to_messages

__all__ = [
    "BackendAdapter",
    "Fault",
    "Fragment",
    "FragmentStream",
    "OpenAIAdapter",
    "OpenAIFragmentNormalizer",
    "OpenAIFragmentStream",
    "ScriptedAdapter",
    "TextDelta",
    "ToolCallDelta",
    "collect_fragments",
    "fragments_from_script",
    "messages_to_openai",
    "openai_to_messages",
    "tool_definitions_to_openai",
]
