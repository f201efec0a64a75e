from __future__ import annotations

import json
from typing import Sequence

import structlog

from ..config import Settings, settings as default_settings
from .base import AgentTool, SessionToolPolicy, ToolCall, ToolExecution, ToolExecutionContext, ToolResult
from .confirmation import ConfirmationPort, ConfirmationRequest
from .loop_detector import LoopDetector
from .registry import ToolRegistry

logger = structlog.get_logger(__name__)


class ToolExecutionEngine:
    """Runs tool calls on behalf of the model.

    Each call goes through: lookup, parameter validation, loop detection,
    session enablement, confirmation, execution and history recording. Tool
    errors never escape; they come back as failed :class:`ToolResult`.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        confirmation_port: ConfirmationPort,
        settings: Settings | None = None,
        loop_detector: LoopDetector | None = None,
    ) -> None:
        self.registry = registry
        self.confirmation_port = confirmation_port
        self.settings = settings or default_settings
        self.loop_detector = loop_detector or LoopDetector(
            self.settings.loop_detection_threshold,
            self.settings.loop_detection_window_seconds,
        )
        self._history: dict[str, list[ToolExecution]] = {}

    async def execute_one(self, call: ToolCall, context: ToolExecutionContext) -> ToolResult:
        session = context.session
        tool = self.registry.get(call.name)
        if tool is None:
            return ToolResult.fail(f"Tool {call.name} not found")

        validation = self.registry.validate(call.name, call.arguments)
        if not validation.valid:
            return ToolResult.fail(f"Invalid parameters: {', '.join(validation.errors)}")

        if self.settings.loop_detection_enabled:
            self.loop_detector.update_config(
                self.settings.loop_detection_threshold,
                self.settings.loop_detection_window_seconds,
            )
            loop_info = self.loop_detector.info(session.id, call)
            if loop_info.is_loop:
                logger.warning(
                    "tool_loop_detected",
                    tool_name=call.name,
                    session_id=session.id,
                    identical_call_count=loop_info.identical_call_count,
                    consecutive_call_count=loop_info.consecutive_call_count,
                )
                return ToolResult.fail(
                    f"Execution loop detected: {call.name} has been called "
                    f"{loop_info.identical_call_count} times with the same parameters in the last "
                    f"{loop_info.window_ms / 1000:g} seconds. Please try a different approach."
                )

        if not self.registry.is_enabled(call.name, session.policy):
            return ToolResult.fail(f"Tool {call.name} is not enabled for this session")

        requires_confirmation = self.registry.requires_confirmation(call.name, session.policy)
        if requires_confirmation and not session.is_tool_allowed_without_confirmation(call.name):
            response = await self.confirmation_port.request_confirmation(
                self._confirmation_request(tool, call)
            )
            if not response.confirmed:
                logger.info("tool_declined", tool_name=call.name, session_id=session.id)
                return ToolResult.fail("User declined tool execution")
            if response.allow_without_confirmation:
                session.allow_tool_without_confirmation(call.name)

        self.loop_detector.record(session.id, call)

        try:
            result = await tool.execute(call.arguments, context)
        except Exception as exc:
            logger.warning(
                "tool_execution_failed", tool_name=call.name, session_id=session.id, error=str(exc)
            )
            result = ToolResult.fail(str(exc) or type(exc).__name__)

        self._history.setdefault(session.id, []).append(
            ToolExecution(
                tool_name=tool.name,
                parameters=dict(call.arguments),
                result=result,
                confirmed=requires_confirmation,
            )
        )
        logger.debug(
            "tool_executed", tool_name=call.name, session_id=session.id, success=result.success
        )
        return result

    async def execute_many(
        self,
        calls: Sequence[ToolCall],
        context: ToolExecutionContext,
        stop_on_error: bool | None = None,
    ) -> list[ToolResult]:
        if stop_on_error is None:
            stop_on_error = self.settings.stop_on_tool_error

        results: list[ToolResult] = []
        for call in calls:
            result = await self.execute_one(call, context)
            results.append(result)
            if not result.success and stop_on_error:
                break
        return results

    def get_history(self, session_id: str) -> list[ToolExecution]:
        return list(self._history.get(session_id, ()))

    def clear_history(self, session_id: str) -> None:
        self._history.pop(session_id, None)
        self.loop_detector.clear(session_id)

    def format_result(self, execution: ToolExecution) -> str:
        icon, status = ("✓", "Success") if execution.result.success else ("✗", "Failed")
        formatted = f"### Tool Execution: {execution.tool_name}\n\n"
        formatted += f"**Status:** {icon} {status}\n\n"
        if execution.result.data is not None:
            data = json.dumps(execution.result.data, indent=2, ensure_ascii=False, default=str)
            formatted += f"**Result:**\n```json\n{data}\n```\n"
        if execution.result.error:
            formatted += f"**Error:** {execution.result.error}\n"
        return formatted

    def describe_available_tools(self, policy: SessionToolPolicy) -> str:
        tools = self.registry.list_enabled(policy)
        if not tools:
            return "No tools are currently available."

        description = "## Available Tools\n\n"
        for tool in tools:
            description += f"### {tool.name}\n{tool.description}\n\n"
            properties = tool.parameters.get("properties") or {}
            if properties:
                required = set(tool.parameters.get("required") or [])
                description += "**Parameters:**\n"
                for param, schema in properties.items():
                    marker = " (required)" if param in required else ""
                    description += (
                        f"- `{param}` ({schema.get('type')}){marker}: "
                        f"{schema.get('description', '')}\n"
                    )
                description += "\n"
        return description

    def _confirmation_request(self, tool: AgentTool, call: ToolCall) -> ConfirmationRequest:
        build_message = getattr(tool, "confirmation_message", None)
        return ConfirmationRequest(
            tool_name=tool.name,
            description=tool.description,
            arguments=dict(call.arguments),
            message=build_message(call.arguments) if callable(build_message) else None,
            display_name=getattr(tool, "display_name", None),
        )
