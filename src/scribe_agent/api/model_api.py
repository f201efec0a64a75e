from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol

from ..tools.base import ToolCall
from ..tools.registry import ToolDefinition

StreamCallback = Callable[[str], None]


class ModelApiError(RuntimeError):
    """Transport or protocol failure talking to the model backend."""


@dataclass(frozen=True)
class ModelRequest:
    """One request to the model.

    ``conversation_history`` uses the Gemini turn shape::

        {"role": "user" | "model", "parts": [{"text": ...} | {"functionCall": ...} | {"functionResponse": ...}]}
    """

    prompt: str = ""
    user_message: str = ""
    conversation_history: list[dict[str, Any]] = field(default_factory=list)
    model: str | None = None
    temperature: float | None = None
    top_p: float | None = None
    available_tools: list[ToolDefinition] = field(default_factory=list)
    custom_prompt: str | None = None


@dataclass(frozen=True)
class ModelResponse:
    markdown: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    rendered: str = ""


@dataclass(frozen=True)
class StreamingModelResponse:
    complete: Awaitable[ModelResponse]
    cancel: Callable[[], None]


class ModelApi(Protocol):
    async def generate_model_response(self, request: ModelRequest) -> ModelResponse:
        ...

    def generate_streaming_response(
        self, request: ModelRequest, on_chunk: StreamCallback
    ) -> StreamingModelResponse:
        """Start a stream; must be called with a running event loop.

        Once ``cancel`` is called, ``complete`` resolves with the text received
        so far instead of raising.
        """
        ...
