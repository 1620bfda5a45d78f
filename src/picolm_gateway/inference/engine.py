"""Inference engine abstraction — protocol and shared types."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol

FINISH_STOP = "stop"
FINISH_TOOL_CALLS = "tool_calls"


@dataclass
class ToolCall:
    """A tool call requested by the model.

    ``arguments`` is the JSON-encoded argument string exactly as the model
    produced it; it is forwarded, never parsed.
    """

    id: str
    name: str
    arguments: str = ""
    type: str = "function"


@dataclass
class Message:
    """One turn of the conversation."""

    role: str  # "system", "user", "assistant" or "tool"
    content: str = ""
    tool_call_id: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)


@dataclass
class ToolSpec:
    """A function the model may call."""

    name: str
    description: str = ""
    parameters: dict[str, Any] = field(default_factory=dict)  # JSON Schema object
    type: str = "function"


@dataclass
class InferenceRequest:
    """Normalized unit of work for the bridge.

    Zero or None overrides mean "use the configured default".
    """

    messages: list[Message]
    tools: list[ToolSpec] = field(default_factory=list)
    max_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None


@dataclass
class Usage:
    """Approximate token counts (character-based estimates, not real tokens)."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class InferenceResult:
    """Result of a one-shot completion."""

    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    finish_reason: str = FINISH_STOP
    usage: Usage = field(default_factory=Usage)


@dataclass
class SamplingParams:
    """Fully resolved engine arguments for one run."""

    max_tokens: int
    threads: int
    temperature: float
    top_p: float
    json_mode: bool = False


@dataclass
class EngineInfo:
    """Metadata about the configured engine."""

    model_name: str
    model_path: str = ""
    binary: str = ""
    context_length: int = 0


# Called once per content increment with finish_reason="", then exactly once
# more with content="" and a non-empty finish_reason. Raising aborts the run.
StreamSink = Callable[[str, str], Awaitable[None]]


class InferenceEngine(Protocol):
    """What the HTTP layer needs from an inference backend."""

    async def chat(
        self,
        request: InferenceRequest,
        cancel: asyncio.Event | None = None,
    ) -> InferenceResult: ...

    async def stream_chat(
        self,
        request: InferenceRequest,
        sink: StreamSink,
        cancel: asyncio.Event | None = None,
    ) -> None: ...

    def engine_info(self) -> EngineInfo: ...

    def validate(self) -> None: ...
