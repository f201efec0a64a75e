"""Session transcripts kept as markdown notes inside the vault.

A transcript is YAML frontmatter with the session metadata, a title heading,
then one ``---`` separated section per message::

    ---
    session_id: 3f2a9c...
    title: Plan review
    context_files:
    - Projects/Plan.md
    ---
    # Plan review

    ---
    ## User

    > [!user]+
    > What is left on the plan?

    > [!metadata]- Message Info
    > | Property | Value |
    > | -------- | ----- |
    > | Time | 2026-10-19T09:12:44+00:00 |

Message lines are quoted, so a ``---`` line inside a message never splits a
section.
"""

from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from typing import Any, Sequence

import structlog
import yaml
from jinja2 import Environment, StrictUndefined

from .session import ChatSession, SessionModelConfig, SessionType
from .tools.base import DestructiveAction, SessionToolPolicy, ToolCategory
from .vault.storage import VaultEntry, VaultStorage, normalize_path

logger = structlog.get_logger(__name__)

FRONTMATTER_RE = re.compile(r"^---\s*\n(.*?)\n---\s*\n(.*)$", re.DOTALL)
SECTION_RE = re.compile(r"^---\s*$", re.MULTILINE)
HEADING_RE = re.compile(r"^## (User|Model)\s*$")
CALLOUT_RE = re.compile(r"^> \[!(user|assistant)\]\+\s*$")
UNSAFE_FILE_NAME_RE = re.compile(r'[\\/:*?"<>|]')

NOTE_CHAT_FOLDER = "History"
AGENT_SESSION_FOLDER = "Agent-Sessions"

HEADER_TEMPLATE = """\
---
{{ frontmatter }}
---
# {{ title }}
"""

ENTRY_TEMPLATE = """\

---
## {{ heading }}

> [!{{ callout }}]+
{% for line in lines %}
{{ line }}
{% endfor %}

> [!metadata]- Message Info
> | Property | Value |
> | -------- | ----- |
> | Time | {{ time }} |
{% if model %}
> | Model | {{ model }} |
{% endif %}
{% if tools %}
> | Tools | {{ tools }} |
{% endif %}
"""


def sanitize_file_name(name: str) -> str:
    cleaned = UNSAFE_FILE_NAME_RE.sub("-", name)
    return re.sub(r"\s+", " ", cleaned).strip() or "Untitled"


def parse_frontmatter(content: str) -> tuple[dict[str, Any], str]:
    """Split a note into its frontmatter mapping and body.

    Raises ``ValueError`` when the frontmatter is missing or not a mapping.
    """
    match = FRONTMATTER_RE.match(content)
    if not match:
        raise ValueError("Session file must start with YAML frontmatter (--- ... ---)")

    try:
        frontmatter = yaml.safe_load(match.group(1))
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML frontmatter: {exc}") from exc

    if not isinstance(frontmatter, dict):
        raise ValueError("Frontmatter must be a YAML dictionary")
    return frontmatter, match.group(2)


def parse_entries(body: str) -> list[dict[str, Any]]:
    """Turn the message sections of a transcript back into text turns."""
    turns = []
    # the first section is the title heading
    for section in SECTION_RE.split(body)[1:]:
        lines = section.strip("\n").splitlines()
        if not lines:
            continue
        heading = HEADING_RE.match(lines[0])
        if not heading:
            continue

        message: list[str] | None = None
        for line in lines[1:]:
            if message is None:
                if CALLOUT_RE.match(line):
                    message = []
                continue
            if not line.startswith(">"):
                break
            message.append(line[2:] if line.startswith("> ") else line[1:])

        if message is None:
            continue
        role = "user" if heading.group(1) == "User" else "model"
        turns.append({"role": role, "parts": [{"text": "\n".join(message)}]})
    return turns


def _datetime(value: Any, default: datetime) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return default
    return default


class SessionHistory:
    """Reads and writes session transcripts under ``folder`` in the vault."""

    def __init__(self, storage: VaultStorage, folder: str = "scribe") -> None:
        self.storage = storage
        self.folder = normalize_path(folder)
        self.env = Environment(
            undefined=StrictUndefined, trim_blocks=True, lstrip_blocks=True, keep_trailing_newline=True
        )

    def folder_for(self, session_type: SessionType) -> str:
        sub = AGENT_SESSION_FOLDER if session_type is SessionType.AGENT_SESSION else NOTE_CHAT_FOLDER
        return f"{self.folder}/{sub}" if self.folder else sub

    def path_for(self, session_type: SessionType, title: str) -> str:
        return f"{self.folder_for(session_type)}/{sanitize_file_name(title)}.md"

    def unique_path(self, session_type: SessionType, title: str) -> str:
        path = self.path_for(session_type, title)
        suffix = 2
        while self.storage.exists(path):
            path = self.path_for(session_type, f"{title} {suffix}")
            suffix += 1
        return path

    def frontmatter(self, session: ChatSession) -> dict[str, Any]:
        data: dict[str, Any] = {
            "session_id": session.id,
            "title": session.title,
            "type": session.type.value,
            "created": session.created.isoformat(),
            "last_active": session.last_active.isoformat(),
            "context_files": list(session.context_files),
            "enabled_tools": sorted(category.value for category in session.policy.enabled_categories),
            "require_confirmation": sorted(
                action.value for action in session.policy.require_confirmation_for
            ),
        }
        config = session.model_config
        for key in ("model", "temperature", "top_p", "prompt_template"):
            value = getattr(config, key)
            if value is not None:
                data[key] = value
        if session.source_note_path:
            data["source_note_path"] = session.source_note_path
        return data

    def render_header(self, session: ChatSession) -> str:
        frontmatter = yaml.safe_dump(
            self.frontmatter(session), sort_keys=False, allow_unicode=True
        ).rstrip("\n")
        return self.env.from_string(HEADER_TEMPLATE).render(
            frontmatter=frontmatter, title=session.title
        )

    def render_entry(
        self,
        role: str,
        text: str,
        time: datetime | None = None,
        model: str | None = None,
        tools: Sequence[str] = (),
    ) -> str:
        user = role == "user"
        return self.env.from_string(ENTRY_TEMPLATE).render(
            heading="User" if user else "Model",
            callout="user" if user else "assistant",
            lines=[f"> {line}" if line else ">" for line in text.split("\n")],
            time=(time or datetime.now(timezone.utc)).isoformat(timespec="seconds"),
            model=model or "",
            tools=", ".join(tools),
        )

    def append_entry(
        self,
        session: ChatSession,
        role: str,
        text: str,
        model: str | None = None,
        tools: Sequence[str] = (),
    ) -> None:
        path = self._ensure_file(session)
        self.storage.append_text(path, self.render_entry(role, text, model=model, tools=tools))

    def update_metadata(self, session: ChatSession) -> None:
        path = session.history_path
        if path is None or not self.storage.exists(path):
            self._ensure_file(session)
            return
        _, body = parse_frontmatter(self.storage.read_text(path))
        header = self.render_header(session)
        # the stored body starts with the old title line
        _, _, rest = body.partition("\n")
        self.storage.write_text(path, header + rest)

    def load(self, path: str) -> ChatSession:
        """Rebuild a session from its transcript.

        The session type comes from the folder the file lives in.
        """
        path = normalize_path(path)
        frontmatter, body = parse_frontmatter(self.storage.read_text(path))
        agent_folder = self.folder_for(SessionType.AGENT_SESSION)
        session_type = (
            SessionType.AGENT_SESSION if path.startswith(f"{agent_folder}/") else SessionType.NOTE_CHAT
        )
        now = datetime.now(timezone.utc)
        created = _datetime(frontmatter.get("created"), now)

        session = ChatSession(
            id=str(frontmatter.get("session_id") or uuid.uuid4().hex),
            title=str(frontmatter.get("title") or path.rsplit("/", 1)[-1].removesuffix(".md")),
            type=session_type,
            policy=self._policy(frontmatter, session_type),
            model_config=SessionModelConfig(
                model=frontmatter.get("model"),
                temperature=frontmatter.get("temperature"),
                top_p=frontmatter.get("top_p"),
                prompt_template=frontmatter.get("prompt_template"),
            ),
            history=parse_entries(body),
            created=created,
            last_active=_datetime(frontmatter.get("last_active"), created),
            context_files=[str(item) for item in frontmatter.get("context_files") or []],
            history_path=path,
            source_note_path=frontmatter.get("source_note_path"),
        )
        logger.debug("session_loaded", session_id=session.id, path=path, turns=len(session.history))
        return session

    def delete(self, session: ChatSession) -> bool:
        path = session.history_path
        if path is None or not self.storage.exists(path):
            return False
        self.storage.delete(path)
        return True

    def list_files(self, session_type: SessionType) -> list[VaultEntry]:
        """Transcripts of one session type, most recently modified first."""
        folder = self.folder_for(session_type)
        if not self.storage.is_dir(folder):
            return []
        entries = [
            entry
            for entry in self.storage.list_dir(folder)
            if entry.type == "file" and entry.name.endswith(".md")
        ]
        return sorted(entries, key=lambda entry: entry.modified, reverse=True)

    def _ensure_file(self, session: ChatSession) -> str:
        if session.history_path is None:
            session.history_path = self.unique_path(session.type, session.title)
        if not self.storage.exists(session.history_path):
            self.storage.write_text(session.history_path, self.render_header(session))
            logger.info("session_history_created", session_id=session.id, path=session.history_path)
        return session.history_path

    @staticmethod
    def _policy(frontmatter: dict[str, Any], session_type: SessionType) -> SessionToolPolicy:
        default = (
            SessionToolPolicy.agent_session()
            if session_type is SessionType.AGENT_SESSION
            else SessionToolPolicy.note_chat()
        )
        enabled = frontmatter.get("enabled_tools")
        confirm = frontmatter.get("require_confirmation")
        try:
            return SessionToolPolicy(
                enabled_categories=(
                    frozenset(ToolCategory(value) for value in enabled)
                    if enabled is not None
                    else default.enabled_categories
                ),
                require_confirmation_for=(
                    frozenset(DestructiveAction(value) for value in confirm)
                    if confirm is not None
                    else default.require_confirmation_for
                ),
            )
        except (TypeError, ValueError):
            logger.warning("session_policy_invalid", enabled_tools=enabled, require_confirmation=confirm)
            return default
