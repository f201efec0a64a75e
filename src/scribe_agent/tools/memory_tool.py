from __future__ import annotations

import asyncio
from typing import Any, Mapping

from ..vault.storage import VaultStorage
from .base import ToolCategory, ToolExecutionContext, ToolResult

DEFAULT_MEMORY_FILE = "AGENTS.md"


class AgentsMemory:
    """Persistent notes about the vault kept in a markdown file."""

    def __init__(self, storage: VaultStorage, path: str = DEFAULT_MEMORY_FILE) -> None:
        self.storage = storage
        self.path = path

    def read(self) -> str | None:
        if not self.storage.exists(self.path):
            return None
        return self.storage.read_text(self.path)

    def append(self, content: str) -> None:
        existing = self.read()
        if existing is None:
            self.storage.write_text(self.path, f"# Agent Memory\n\n{content}\n")
            return
        separator = "" if existing.endswith("\n") else "\n"
        self.storage.append_text(self.path, f"{separator}\n{content}\n")


class UpdateMemoryTool:
    name = "update_memory"
    display_name = "Update Memory"
    category = ToolCategory.VAULT_OPERATIONS
    description = (
        "Append information to the AGENTS.md memory file. Use this when the user asks you to "
        "remember something or when you learn how the vault is organized."
    )
    requires_confirmation = True
    parameters = {
        "type": "object",
        "properties": {
            "content": {
                "type": "string",
                "description": "Concise markdown text to append to AGENTS.md",
            },
        },
        "required": ["content"],
    }

    def __init__(self, memory: AgentsMemory) -> None:
        self.memory = memory

    def confirmation_message(self, args: Mapping[str, Any]) -> str:
        content = str(args.get("content", ""))
        suffix = "..." if len(content) > 200 else ""
        return f"Add the following to {self.memory.path} memory:\n\n{content[:200]}{suffix}"

    async def execute(self, args: Mapping[str, Any], context: ToolExecutionContext) -> ToolResult:
        content = str(args.get("content") or "").strip()
        if not content:
            return ToolResult.fail("Content is required and must be a non-empty string")
        try:
            await asyncio.to_thread(self.memory.append, content)
        except OSError as exc:
            return ToolResult.fail(f"Failed to update memory: {exc}")
        return ToolResult.ok({"path": self.memory.path, "message": "Memory updated successfully"})


class ReadMemoryTool:
    name = "read_memory"
    display_name = "Read Memory"
    category = ToolCategory.READ_ONLY
    description = "Read the AGENTS.md memory file to see what has been remembered about this vault."
    parameters = {"type": "object", "properties": {}, "required": []}

    def __init__(self, memory: AgentsMemory) -> None:
        self.memory = memory

    async def execute(self, args: Mapping[str, Any], context: ToolExecutionContext) -> ToolResult:
        try:
            content = await asyncio.to_thread(self.memory.read)
        except (OSError, ValueError) as exc:
            return ToolResult.fail(f"Failed to read memory: {exc}")
        if not content:
            return ToolResult.ok(
                {
                    "content": "",
                    "exists": False,
                    "message": f"{self.memory.path} does not exist yet. Use update_memory to create it.",
                }
            )
        return ToolResult.ok({"path": self.memory.path, "content": content, "exists": True})


def memory_tools(memory: AgentsMemory) -> list[UpdateMemoryTool | ReadMemoryTool]:
    return [UpdateMemoryTool(memory), ReadMemoryTool(memory)]
