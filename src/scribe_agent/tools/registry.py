from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

import structlog

from .base import CATEGORY_ACTIONS, AgentTool, SessionToolPolicy, ToolCategory

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    errors: tuple[str, ...] = ()


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, Mapping):
        return "object"
    return type(value).__name__


def _matches_type(expected: str, value: Any) -> bool:
    actual = _type_name(value)
    if expected == "number":
        return actual in {"number", "integer"}
    return actual == expected


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: dict[str, AgentTool] = {}

    def register(self, tool: AgentTool) -> None:
        if tool.name in self._tools:
            logger.warning("tool_overwritten", tool_name=tool.name)
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    def get(self, name: str) -> AgentTool | None:
        return self._tools.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def all(self) -> list[AgentTool]:
        return list(self._tools.values())

    def by_category(self, category: ToolCategory) -> list[AgentTool]:
        return [tool for tool in self._tools.values() if tool.category == category]

    def list_enabled(self, policy: SessionToolPolicy) -> list[AgentTool]:
        return [
            tool for tool in self._tools.values() if tool.category in policy.enabled_categories
        ]

    def is_enabled(self, name: str, policy: SessionToolPolicy) -> bool:
        tool = self._tools.get(name)
        return tool is not None and tool.category in policy.enabled_categories

    def requires_confirmation(self, name: str, policy: SessionToolPolicy) -> bool:
        tool = self._tools.get(name)
        if tool is None:
            return False
        if getattr(tool, "requires_confirmation", False):
            return True
        action = CATEGORY_ACTIONS.get(tool.category)
        return action is not None and action in policy.require_confirmation_for

    def tool_definitions(self, policy: SessionToolPolicy) -> list[ToolDefinition]:
        return [
            ToolDefinition(
                name=tool.name,
                description=tool.description,
                parameters={
                    "type": "object",
                    "properties": dict(tool.parameters.get("properties") or {}),
                    "required": list(tool.parameters.get("required") or []),
                },
            )
            for tool in self.list_enabled(policy)
        ]

    def validate(self, name: str, args: Mapping[str, Any]) -> ValidationResult:
        """Check ``args`` against the tool's parameter schema.

        Every violation is reported, not only the first one.
        """
        tool = self._tools.get(name)
        if tool is None:
            return ValidationResult(valid=False, errors=(f"Tool {name} not found",))

        schema = tool.parameters or {}
        properties: Mapping[str, Any] = schema.get("properties") or {}
        errors: list[str] = []

        for required in schema.get("required") or []:
            if required not in args:
                errors.append(f"Missing required parameter: {required}")

        for key, value in args.items():
            prop = properties.get(key)
            if prop is None:
                errors.append(f"Unknown parameter: {key}")
                continue

            expected = prop.get("type")
            if expected and not _matches_type(expected, value):
                errors.append(
                    f"Parameter {key} should be {expected} but got {_type_name(value)}"
                )

            allowed = prop.get("enum")
            if allowed and value not in allowed:
                options = ", ".join(str(option) for option in allowed)
                errors.append(f"Parameter {key} must be one of: {options}")

        return ValidationResult(valid=not errors, errors=tuple(errors))
