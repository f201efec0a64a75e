from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Sequence

import structlog

from .config import Settings, settings as default_settings
from .session import ChatSession, SessionModelConfig, SessionType
from .session_history import SessionHistory, sanitize_file_name
from .tools.base import SessionToolPolicy
from .vault.storage import VaultStorage, normalize_path

logger = structlog.get_logger(__name__)

DEFAULT_RECENT_LIMIT = 10


class SessionNotFoundError(LookupError):
    pass


@dataclass(frozen=True)
class ContextFile:
    path: str
    content: str
    truncated: bool = False


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SessionManager:
    """Creates, tracks and persists chat sessions.

    Note chats are bound to one source note and only get read-only tools.
    Agent sessions get vault operations with confirmation and carry a list of
    context files. With ``persist`` off nothing is written to the vault.
    """

    def __init__(
        self,
        storage: VaultStorage,
        history: SessionHistory | None = None,
        settings: Settings | None = None,
        persist: bool | None = None,
    ) -> None:
        self.settings = settings or default_settings
        self.storage = storage
        self.history = history or SessionHistory(storage, self.settings.history_folder)
        self.persist = self.settings.chat_history if persist is None else persist
        self._sessions: dict[str, ChatSession] = {}

    def create_note_chat_session(self, source_note_path: str) -> ChatSession:
        source = normalize_path(source_note_path)
        title = _note_chat_title(source)
        session = ChatSession(
            title=title,
            type=SessionType.NOTE_CHAT,
            policy=SessionToolPolicy.note_chat(),
            context_files=[source],
            history_path=self.history.path_for(SessionType.NOTE_CHAT, title),
            source_note_path=source,
        )
        self._sessions[session.id] = session
        logger.info("session_created", session_id=session.id, type=session.type.value, title=title)
        return session

    def create_agent_session(
        self,
        title: str | None = None,
        context_files: Iterable[str] = (),
        model_config: SessionModelConfig | None = None,
        policy: SessionToolPolicy | None = None,
    ) -> ChatSession:
        title = sanitize_file_name(title or f"Agent Session {_now():%Y-%m-%d}")
        session = ChatSession(
            title=title,
            type=SessionType.AGENT_SESSION,
            policy=policy or SessionToolPolicy.agent_session(),
            model_config=model_config or SessionModelConfig(),
            context_files=_dedupe(normalize_path(path) for path in context_files),
        )
        if self.persist:
            session.history_path = self.history.unique_path(SessionType.AGENT_SESSION, title)
            self.history.update_metadata(session)
        self._sessions[session.id] = session
        logger.info("session_created", session_id=session.id, type=session.type.value, title=title)
        return session

    def get_note_chat_session(self, source_note_path: str) -> ChatSession:
        """Reuse the open chat for a note, else its saved transcript, else a new chat."""
        source = normalize_path(source_note_path)
        for session in self._sessions.values():
            if session.type is SessionType.NOTE_CHAT and session.source_note_path == source:
                session.last_active = _now()
                return session

        path = self.history.path_for(SessionType.NOTE_CHAT, _note_chat_title(source))
        if self.storage.exists(path):
            loaded = self.load_session(path)
            if loaded is not None:
                return loaded
        return self.create_note_chat_session(source)

    def get_session(self, session_id: str) -> ChatSession | None:
        return self._sessions.get(session_id)

    def load_session(self, history_path: str) -> ChatSession | None:
        try:
            session = self.history.load(history_path)
        except (OSError, ValueError) as exc:
            logger.warning("session_load_failed", path=history_path, error=str(exc))
            return None
        self._sessions[session.id] = session
        return session

    def recent_agent_sessions(self, limit: int = DEFAULT_RECENT_LIMIT) -> list[ChatSession]:
        sessions = []
        for entry in self.history.list_files(SessionType.AGENT_SESSION):
            if len(sessions) >= limit:
                break
            session = self.load_session(entry.path)
            if session is not None:
                sessions.append(session)
        return sessions

    def update_model_config(self, session_id: str, model_config: SessionModelConfig | None) -> ChatSession:
        session = self._require(session_id)
        session.model_config = model_config or SessionModelConfig()
        return self._touch(session)

    def update_policy(self, session_id: str, policy: SessionToolPolicy) -> ChatSession:
        session = self._require(session_id)
        session.policy = policy
        return self._touch(session)

    def add_context_files(self, session_id: str, paths: Iterable[str]) -> ChatSession:
        session = self._require(session_id)
        session.context_files = _dedupe([*session.context_files, *(normalize_path(path) for path in paths)])
        return self._touch(session)

    def remove_context_files(self, session_id: str, paths: Iterable[str]) -> ChatSession:
        session = self._require(session_id)
        removed = {normalize_path(path) for path in paths}
        session.context_files = [path for path in session.context_files if path not in removed]
        return self._touch(session)

    def promote_to_agent_session(self, session_id: str, title: str | None = None) -> ChatSession:
        """Continue a note chat as an agent session with the same context and history."""
        note_chat = self._sessions.get(session_id)
        if note_chat is None or note_chat.type is not SessionType.NOTE_CHAT:
            raise SessionNotFoundError("Session not found or not a note chat")

        agent = self.create_agent_session(
            title or f"{note_chat.title} (Agent)",
            context_files=note_chat.context_files,
            model_config=note_chat.model_config,
        )
        agent.history = [dict(turn) for turn in note_chat.history]
        if self.persist:
            for turn in agent.history:
                text = "".join(part.get("text", "") for part in turn.get("parts", []))
                if text:
                    self.history.append_entry(agent, turn["role"], text)
        logger.info("session_promoted", session_id=agent.id, source_session_id=note_chat.id)
        return agent

    def delete_session(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        if self.persist:
            self.history.delete(session)
        return True

    def record_turn(
        self,
        session: ChatSession,
        user_message: str,
        reply: str,
        tools: Sequence[str] = (),
    ) -> None:
        """Append one exchange to the session transcript."""
        session.last_active = _now()
        if not self.persist:
            return
        model = session.model_config.model or (self.settings.llm_models[0] if self.settings.llm_models else None)
        if user_message.strip():
            self.history.append_entry(session, "user", user_message)
        if reply.strip():
            self.history.append_entry(session, "model", reply, model=model, tools=tools)

    def context_files(self, session: ChatSession) -> list[ContextFile]:
        """Read the session's context files within its size limits.

        Each file is cut at ``max_chars_per_file``; files stop being added once
        ``max_context_chars`` is used up. Missing or unreadable files are skipped.
        """
        budget = session.max_context_chars
        files = []
        for path in session.context_files:
            if budget <= 0:
                logger.info("context_budget_exhausted", session_id=session.id, skipped=path)
                break
            try:
                content = self.storage.read_text(path)
            except (OSError, ValueError) as exc:
                logger.warning("context_file_unreadable", session_id=session.id, path=path, error=str(exc))
                continue
            limit = min(session.max_chars_per_file, budget)
            files.append(ContextFile(path, content[:limit], truncated=len(content) > limit))
            budget -= min(len(content), limit)
        return files

    def _require(self, session_id: str) -> ChatSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session not found: {session_id}")
        return session

    def _touch(self, session: ChatSession) -> ChatSession:
        session.last_active = _now()
        if self.persist and session.type is SessionType.AGENT_SESSION:
            self.history.update_metadata(session)
        return session


def _note_chat_title(source: str) -> str:
    basename = source.rsplit("/", 1)[-1].removesuffix(".md")
    return sanitize_file_name(f"{basename} Chat")


def _dedupe(paths: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(path for path in paths if path))
