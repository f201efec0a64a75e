from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping, Protocol

if TYPE_CHECKING:
    from ..session import ChatSession


class ToolCategory(str, Enum):
    READ_ONLY = "read_only"
    VAULT_OPERATIONS = "vault_ops"
    EXTERNAL_MCP = "external_mcp"
    SYSTEM = "system"


class DestructiveAction(str, Enum):
    MODIFY_FILES = "modify_files"
    CREATE_FILES = "create_files"
    DELETE_FILES = "delete_files"
    EXTERNAL_API_CALLS = "external_calls"


# Categories whose tools need confirmation when the mapped action is listed
# in the session policy.
CATEGORY_ACTIONS: dict[ToolCategory, DestructiveAction] = {
    ToolCategory.VAULT_OPERATIONS: DestructiveAction.MODIFY_FILES,
    ToolCategory.EXTERNAL_MCP: DestructiveAction.EXTERNAL_API_CALLS,
}


@dataclass(frozen=True)
class ToolCall:
    name: str
    arguments: Mapping[str, Any] = field(default_factory=dict)
    # protocol-level correlation id, not part of the call's identity
    id: str | None = field(default=None, compare=False)


@dataclass(frozen=True)
class ToolResult:
    success: bool
    data: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, data: Any = None) -> ToolResult:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> ToolResult:
        return cls(success=False, error=error)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success}
        if self.data is not None:
            payload["data"] = self.data
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass(frozen=True)
class ToolExecution:
    tool_name: str
    parameters: Mapping[str, Any]
    result: ToolResult
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    confirmed: bool = False


@dataclass(frozen=True)
class SessionToolPolicy:
    enabled_categories: frozenset[ToolCategory] = frozenset({ToolCategory.READ_ONLY})
    require_confirmation_for: frozenset[DestructiveAction] = frozenset()

    @classmethod
    def note_chat(cls) -> SessionToolPolicy:
        return cls()

    @classmethod
    def agent_session(cls) -> SessionToolPolicy:
        return cls(
            enabled_categories=frozenset(
                {ToolCategory.READ_ONLY, ToolCategory.VAULT_OPERATIONS}
            ),
            require_confirmation_for=frozenset(
                {
                    DestructiveAction.MODIFY_FILES,
                    DestructiveAction.CREATE_FILES,
                    DestructiveAction.DELETE_FILES,
                }
            ),
        )


@dataclass(frozen=True)
class ToolExecutionContext:
    session: ChatSession


class AgentTool(Protocol):
    """Contract every tool exposed to the model satisfies.

    ``parameters`` is a JSON-schema style object::

        {"type": "object",
         "properties": {"path": {"type": "string", "description": "..."}},
         "required": ["path"]}

    Tools may additionally define ``requires_confirmation`` (bool),
    ``display_name`` (str) and ``confirmation_message(args) -> str``.
    """

    name: str
    category: ToolCategory
    description: str
    parameters: dict[str, Any]

    async def execute(self, args: Mapping[str, Any], context: ToolExecutionContext) -> ToolResult:
        ...
