from __future__ import annotations

import asyncio
import dataclasses
from dataclasses import dataclass, field
from typing import Any, Sequence

import structlog

from ..api.model_api import ModelApi, ModelRequest, ModelResponse, StreamingModelResponse
from ..config import Settings, settings as default_settings
from ..logging_setup import bind_session, unbind_session
from ..session import ChatSession
from ..session_manager import SessionManager
from ..tools.base import ToolCall, ToolExecutionContext, ToolResult
from ..tools.execution_engine import ToolExecutionEngine
from ..tools.memory_tool import AgentsMemory
from ..tools.registry import ToolRegistry
from .prompts import FOLLOW_UP_INSTRUCTION, SUMMARY_PROMPT, PromptBuilder

logger = structlog.get_logger(__name__)

# Lower runs first: reads, then listings and searches, web, writes, deletes.
TOOL_PRIORITY: dict[str, int] = {
    "read_file": 1,
    "list_files": 2,
    "search_files": 3,
    "web_search": 4,
    "web_fetch": 5,
    "write_file": 6,
    "create_folder": 7,
    "move_file": 8,
    "delete_file": 9,
}
DEFAULT_TOOL_PRIORITY = 10


def sort_tool_calls_by_priority(calls: Sequence[ToolCall]) -> list[ToolCall]:
    # sorted() is stable, ties keep the model's order
    return sorted(calls, key=lambda call: TOOL_PRIORITY.get(call.name, DEFAULT_TOOL_PRIORITY))


class AgentObserver:
    """Receives progress events for one turn. Override what you need."""

    def on_chunk(self, chunk: str) -> None:
        pass

    def on_tool_start(self, call: ToolCall) -> None:
        pass

    def on_tool_result(self, call: ToolCall, result: ToolResult) -> None:
        pass

    def on_warning(self, message: str) -> None:
        pass


@dataclass
class TurnResult:
    text: str = ""
    rounds: int = 0
    tool_results: list[tuple[ToolCall, ToolResult]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    error: str | None = None
    cancelled: bool = False
    max_rounds_exceeded: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.max_rounds_exceeded


def _text_turn(role: str, text: str) -> dict[str, Any]:
    return {"role": role, "parts": [{"text": text}]}


class AgentOrchestrator:
    """Runs one user turn: model, tools, model again, until a text answer.

    ``model_api`` is expected to already carry retries (see
    :func:`scribe_agent.agent.factory.create_agent`); an error it raises ends
    the turn. Several sessions may run turns at once; cancel state is kept
    per session id.
    """

    def __init__(
        self,
        model_api: ModelApi,
        registry: ToolRegistry,
        engine: ToolExecutionEngine,
        settings: Settings | None = None,
        prompt_builder: PromptBuilder | None = None,
        memory: AgentsMemory | None = None,
        observer: AgentObserver | None = None,
        sessions: SessionManager | None = None,
    ) -> None:
        self.model_api = model_api
        self.registry = registry
        self.engine = engine
        self.settings = settings or default_settings
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.memory = memory
        self.observer = observer or AgentObserver()
        self.sessions = sessions
        self._streams: dict[str, StreamingModelResponse] = {}
        self._cancelled: set[str] = set()

    def cancel(self, session_id: str) -> None:
        """Stop the running turn of one session; other sessions keep going."""
        self._cancelled.add(session_id)
        handle = self._streams.get(session_id)
        if handle is not None:
            handle.cancel()

    async def send_message(
        self,
        session: ChatSession,
        message: str,
        custom_prompt: str | None = None,
        stream: bool = False,
    ) -> TurnResult:
        self._cancelled.discard(session.id)
        result = TurnResult()
        history = list(session.history)
        bind_session(session.id)
        try:
            await self._run(session, history, message, custom_prompt, stream, result)
        except Exception as exc:
            logger.error("turn_failed", session_id=session.id, rounds=result.rounds, error=str(exc))
            result.error = str(exc) or type(exc).__name__
        finally:
            session.history[:] = history
            self._cancelled.discard(session.id)
            self._streams.pop(session.id, None)
            unbind_session()
        if result.error is None:
            await self._record_turn(session, message, result)
        return result

    async def _run(
        self,
        session: ChatSession,
        history: list[dict[str, Any]],
        user_message: str,
        custom_prompt: str | None,
        stream: bool,
        result: TurnResult,
    ) -> None:
        max_rounds = self.settings.max_tool_rounds
        while True:
            if max_rounds and result.rounds >= max_rounds:
                result.max_rounds_exceeded = True
                self._warn(result, f"Maximum tool rounds exceeded ({max_rounds}); stopping.")
                return

            result.rounds += 1
            request = await self._build_request(
                session, history, user_message, custom_prompt, result
            )
            response = await self._call_model(session, request, stream)
            if session.id in self._cancelled:
                result.cancelled = True
                self._finish(history, user_message, response.markdown, result)
                return

            if response.tool_calls:
                calls = [
                    call if call.id else dataclasses.replace(call, id=f"call_{result.rounds}_{index}")
                    for index, call in enumerate(response.tool_calls)
                ]
                executed = await self._execute_tool_calls(session, calls)
                result.tool_results.extend(executed)
                self._splice_tool_round(history, user_message, response.markdown, calls, executed)
                user_message = ""
                continue

            if response.markdown.strip():
                self._finish(history, user_message, response.markdown, result)
                return

            if result.rounds == 1:
                if user_message.strip():
                    history.append(_text_turn("user", user_message))
                self._warn(
                    result,
                    "Model returned an empty response. Try rephrasing your question.",
                )
                return

            await self._summarize_after_empty_response(session, history, result)
            return

    async def _build_request(
        self,
        session: ChatSession,
        history: list[dict[str, Any]],
        user_message: str,
        custom_prompt: str | None,
        result: TurnResult,
    ) -> ModelRequest:
        tools = self.registry.tool_definitions(session.policy)
        memory = None
        if self.memory is not None:
            try:
                memory = await asyncio.to_thread(self.memory.read)
            except (OSError, ValueError) as exc:
                warning = f"Could not read {self.memory.path}: {exc}"
                if warning not in result.warnings:
                    self._warn(result, warning)
        context_files = []
        if self.sessions is not None and session.context_files:
            context_files = await asyncio.to_thread(self.sessions.context_files, session)
        prompt = self.prompt_builder.system_prompt(
            tools,
            memory=memory,
            template=session.model_config.prompt_template,
            context_files=context_files,
        )
        if result.rounds > 1:
            prompt = f"{prompt}\n\n{FOLLOW_UP_INSTRUCTION}"

        config = session.model_config
        return ModelRequest(
            prompt=prompt,
            user_message=user_message,
            conversation_history=list(history),
            model=config.model,
            temperature=config.temperature if config.temperature is not None else self.settings.temperature,
            top_p=config.top_p if config.top_p is not None else self.settings.top_p,
            available_tools=tools,
            custom_prompt=custom_prompt,
        )

    async def _call_model(
        self, session: ChatSession, request: ModelRequest, stream: bool
    ) -> ModelResponse:
        if not stream:
            return await self.model_api.generate_model_response(request)

        handle = self.model_api.generate_streaming_response(request, self.observer.on_chunk)
        self._streams[session.id] = handle
        if session.id in self._cancelled:
            handle.cancel()
        try:
            return await handle.complete
        finally:
            self._streams.pop(session.id, None)

    async def _record_turn(self, session: ChatSession, message: str, result: TurnResult) -> None:
        if self.sessions is None:
            return
        tools = list(dict.fromkeys(call.name for call, _ in result.tool_results))
        try:
            await asyncio.to_thread(self.sessions.record_turn, session, message, result.text, tools)
        except (OSError, ValueError) as exc:
            self._warn(result, f"Could not save session history: {exc}")

    async def _execute_tool_calls(
        self, session: ChatSession, calls: Sequence[ToolCall]
    ) -> list[tuple[ToolCall, ToolResult]]:
        context = ToolExecutionContext(session=session)
        executed = []
        for call in sort_tool_calls_by_priority(calls):
            self.observer.on_tool_start(call)
            tool_result = await self.engine.execute_one(call, context)
            self.observer.on_tool_result(call, tool_result)
            executed.append((call, tool_result))
        return executed

    def _splice_tool_round(
        self,
        history: list[dict[str, Any]],
        user_message: str,
        text: str,
        calls: Sequence[ToolCall],
        executed: Sequence[tuple[ToolCall, ToolResult]],
    ) -> None:
        if user_message.strip():
            history.append(_text_turn("user", user_message))

        model_parts: list[dict[str, Any]] = [{"text": text}] if text.strip() else []
        model_parts.extend(
            {"functionCall": {"name": call.name, "args": dict(call.arguments), "id": call.id}}
            for call in calls
        )
        history.append({"role": "model", "parts": model_parts})
        history.append(
            {
                "role": "user",
                "parts": [
                    {
                        "functionResponse": {
                            "name": call.name,
                            "id": call.id,
                            "response": tool_result.to_dict(),
                        }
                    }
                    for call, tool_result in executed
                ],
            }
        )

    def _finish(
        self,
        history: list[dict[str, Any]],
        user_message: str,
        text: str,
        result: TurnResult,
    ) -> None:
        if user_message.strip():
            history.append(_text_turn("user", user_message))
        if text.strip():
            history.append(_text_turn("model", text))
        result.text = text

    async def _summarize_after_empty_response(
        self, session: ChatSession, history: list[dict[str, Any]], result: TurnResult
    ) -> None:
        logger.warning("empty_model_response", session_id=session.id, rounds=result.rounds)
        config = session.model_config
        retry = await self.model_api.generate_model_response(
            ModelRequest(
                prompt=SUMMARY_PROMPT,
                user_message=SUMMARY_PROMPT,
                conversation_history=list(history),
                model=config.model,
                temperature=config.temperature if config.temperature is not None else self.settings.temperature,
                top_p=config.top_p if config.top_p is not None else self.settings.top_p,
            )
        )
        if retry.markdown.strip():
            self._finish(history, "", retry.markdown, result)
            return
        self._warn(result, "Model returned an empty response after tool execution.")

    def _warn(self, result: TurnResult, message: str) -> None:
        result.warnings.append(message)
        logger.warning("turn_warning", message=message)
        self.observer.on_warning(message)
