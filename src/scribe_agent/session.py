from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .tools.base import SessionToolPolicy


class SessionType(str, Enum):
    NOTE_CHAT = "note-chat"
    AGENT_SESSION = "agent-session"


# (max_context_chars, max_chars_per_file)
CONTEXT_LIMITS = {
    SessionType.NOTE_CHAT: (50_000, 10_000),
    SessionType.AGENT_SESSION: (100_000, 15_000),
}


@dataclass(frozen=True)
class SessionModelConfig:
    model: str | None = None
    temperature: float | None = None
    top_p: float | None = None
    prompt_template: str | None = None


@dataclass
class ChatSession:
    """One conversation.

    ``history`` holds turns in the model's native shape
    (``{"role": ..., "parts": [...]}``). The pre-approved tool set lives here
    so it dies with the session. ``context_files`` are vault paths whose
    contents go into the system prompt.
    """

    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    title: str = "New session"
    policy: SessionToolPolicy = field(default_factory=SessionToolPolicy.agent_session)
    type: SessionType = SessionType.AGENT_SESSION
    model_config: SessionModelConfig = field(default_factory=SessionModelConfig)
    history: list[dict[str, Any]] = field(default_factory=list)
    allowed_without_confirmation: set[str] = field(default_factory=set)
    created: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_active: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    context_files: list[str] = field(default_factory=list)
    history_path: str | None = None
    source_note_path: str | None = None

    @property
    def max_context_chars(self) -> int:
        return CONTEXT_LIMITS[self.type][0]

    @property
    def max_chars_per_file(self) -> int:
        return CONTEXT_LIMITS[self.type][1]

    def is_tool_allowed_without_confirmation(self, tool_name: str) -> bool:
        return tool_name in self.allowed_without_confirmation

    def allow_tool_without_confirmation(self, tool_name: str) -> None:
        self.allowed_without_confirmation.add(tool_name)

    def reset(self) -> None:
        self.history.clear()
        self.allowed_without_confirmation.clear()
