from __future__ import annotations

import asyncio
import json
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

import structlog
from pydantic import BaseModel, ValidationError

from ..config import Settings, settings as default_settings
from ..tools.base import ToolCall
from .model_api import ModelApiError, ModelRequest, ModelResponse, StreamCallback, StreamingModelResponse

logger = structlog.get_logger(__name__)


class _FunctionPayload(BaseModel):
    name: str
    arguments: str = "{}"


class _ToolCallPayload(BaseModel):
    id: str | None = None
    type: str = "function"
    function: _FunctionPayload


class _MessagePayload(BaseModel):
    content: str | None = None
    tool_calls: list[_ToolCallPayload] | None = None


class _ChoicePayload(BaseModel):
    message: _MessagePayload


class ChatCompletionPayload(BaseModel):
    choices: list[_ChoicePayload]


def _call_id(part: dict[str, Any], fallback: str) -> str:
    return str(part.get("id") or fallback)


def history_to_messages(history: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Translate Gemini-style turns into chat-completions messages."""
    messages: list[dict[str, Any]] = []
    # ids of the latest model tool-call turn, per name, in order
    open_calls: dict[str, list[str]] = {}

    for turn_index, turn in enumerate(history):
        role = turn.get("role")
        parts = turn.get("parts")
        if parts is None:
            text = turn.get("text") or turn.get("message") or ""
            parts = [{"text": text}]

        calls = [part["functionCall"] for part in parts if "functionCall" in part]
        responses = [part["functionResponse"] for part in parts if "functionResponse" in part]
        text = "".join(str(part.get("text") or "") for part in parts if "text" in part)

        if calls:
            open_calls = {}
            tool_calls = []
            for index, call in enumerate(calls):
                call_id = _call_id(call, f"call_{turn_index}_{index}")
                open_calls.setdefault(call["name"], []).append(call_id)
                tool_calls.append(
                    {
                        "id": call_id,
                        "type": "function",
                        "function": {
                            "name": call["name"],
                            "arguments": json.dumps(call.get("args") or {}, ensure_ascii=False),
                        },
                    }
                )
            messages.append({"role": "assistant", "content": text or None, "tool_calls": tool_calls})
        elif responses:
            for index, response in enumerate(responses):
                pending = open_calls.get(response["name"]) or []
                call_id = response.get("id") or (pending.pop(0) if pending else f"call_{turn_index}_{index}")
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": call_id,
                        "content": json.dumps(response.get("response"), ensure_ascii=False, default=str),
                    }
                )
        else:
            messages.append({"role": "assistant" if role == "model" else "user", "content": text})

    return messages


class OpenAICompatibleClient:
    """Model client for any OpenAI-compatible ``/chat/completions`` endpoint."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or default_settings

    def _build_body(self, request: ModelRequest, model: str) -> dict[str, Any]:
        system_prompt = request.prompt
        if request.custom_prompt:
            system_prompt = f"{system_prompt}\n\n{request.custom_prompt}".strip()

        messages: list[dict[str, Any]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.extend(history_to_messages(request.conversation_history))
        if request.user_message.strip():
            messages.append({"role": "user", "content": request.user_message})

        body: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": request.temperature
            if request.temperature is not None
            else self.settings.temperature,
            "top_p": request.top_p if request.top_p is not None else self.settings.top_p,
        }
        if request.available_tools:
            body["tools"] = [
                {"type": "function", "function": tool.to_dict()} for tool in request.available_tools
            ]
        return body

    def _post(self, body: dict[str, Any]) -> dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self.settings.llm_api_key:
            headers["Authorization"] = f"Bearer {self.settings.llm_api_key}"

        request = Request(
            f"{self.settings.llm_base_url.rstrip('/')}/chat/completions",
            data=json.dumps(body).encode("utf-8"),
            headers=headers,
            method="POST",
        )
        try:
            with urlopen(request, timeout=self.settings.llm_timeout_seconds) as response:
                return json.loads(response.read().decode("utf-8"))
        except HTTPError as exc:
            raise ModelApiError(f"Model endpoint returned HTTP {exc.code}") from exc
        except (URLError, TimeoutError) as exc:
            raise ModelApiError(f"Model endpoint unreachable: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise ModelApiError("Model endpoint returned invalid JSON") from exc

    @staticmethod
    def parse_response(raw: dict[str, Any]) -> ModelResponse:
        try:
            payload = ChatCompletionPayload.model_validate(raw)
        except ValidationError as exc:
            raise ModelApiError(f"Unexpected chat completion payload: {exc}") from exc
        if not payload.choices:
            raise ModelApiError("Chat completion contained no choices")

        message = payload.choices[0].message
        tool_calls = []
        for call in message.tool_calls or []:
            try:
                arguments = json.loads(call.function.arguments or "{}")
            except json.JSONDecodeError as exc:
                raise ModelApiError(f"Malformed arguments for tool call {call.function.name}") from exc
            if not isinstance(arguments, dict):
                raise ModelApiError(f"Arguments for tool call {call.function.name} are not an object")
            tool_calls.append(ToolCall(name=call.function.name, arguments=arguments, id=call.id))

        return ModelResponse(markdown=message.content or "", tool_calls=tool_calls)

    def _complete(self, request: ModelRequest) -> ModelResponse:
        models = (request.model,) if request.model else self.settings.llm_models
        if not models:
            raise ModelApiError("No models configured")

        last_error: ModelApiError | None = None
        for model in models:
            try:
                return self.parse_response(self._post(self._build_body(request, model)))
            except ModelApiError as exc:
                logger.warning("model_fallback", model=model, error=str(exc))
                last_error = exc
        assert last_error is not None
        raise last_error

    async def generate_model_response(self, request: ModelRequest) -> ModelResponse:
        return await asyncio.to_thread(self._complete, request)

    def generate_streaming_response(
        self, request: ModelRequest, on_chunk: StreamCallback
    ) -> StreamingModelResponse:
        # Single-chunk fallback: the endpoint is called without stream=true.
        call = asyncio.ensure_future(self.generate_model_response(request))

        async def complete() -> ModelResponse:
            try:
                response = await call
            except asyncio.CancelledError:
                if not call.cancelled():
                    raise
                return ModelResponse()
            if response.markdown:
                on_chunk(response.markdown)
            return response

        return StreamingModelResponse(complete=asyncio.ensure_future(complete()), cancel=call.cancel)
