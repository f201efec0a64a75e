"""Shared fakes and fixtures for the test suite."""

from __future__ import annotations

import asyncio
from typing import Any, Mapping

import pytest

from scribe_agent.api.model_api import ModelRequest, ModelResponse, StreamingModelResponse
from scribe_agent.config import Settings
from scribe_agent.session import ChatSession
from scribe_agent.tools.base import ToolCategory, ToolExecutionContext, ToolResult
from scribe_agent.tools.confirmation import ConfirmationRequest, ConfirmationResponse
from scribe_agent.vault.storage import VaultEntry, normalize_path


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InMemoryVaultStorage:
    """Dict-backed vault; folders are tracked explicitly."""

    def __init__(self, files: Mapping[str, str] | None = None) -> None:
        self.files: dict[str, str] = {}
        self.folders: set[str] = set()
        for path, content in (files or {}).items():
            self.write_text(path, content)

    def _add_parents(self, path: str) -> None:
        parts = path.split("/")[:-1]
        for index in range(1, len(parts) + 1):
            self.folders.add("/".join(parts[:index]))

    def exists(self, path: str) -> bool:
        path = normalize_path(path)
        return path == "" or path in self.files or path in self.folders

    def is_dir(self, path: str) -> bool:
        path = normalize_path(path)
        return path == "" or path in self.folders

    def read_text(self, path: str) -> str:
        path = normalize_path(path)
        if path not in self.files:
            raise FileNotFoundError(path)
        return self.files[path]

    def write_text(self, path: str, content: str) -> bool:
        path = normalize_path(path)
        created = path not in self.files
        self._add_parents(path)
        self.files[path] = content
        return created

    def append_text(self, path: str, content: str) -> None:
        path = normalize_path(path)
        self._add_parents(path)
        self.files[path] = self.files.get(path, "") + content

    def list_dir(self, path: str, recursive: bool = False) -> list[VaultEntry]:
        path = normalize_path(path)
        if not self.is_dir(path):
            raise NotADirectoryError(path)
        prefix = f"{path}/" if path else ""
        entries = []
        for name in sorted(self.folders | set(self.files)):
            if not name.startswith(prefix):
                continue
            rest = name[len(prefix):]
            if not rest or (not recursive and "/" in rest):
                continue
            kind = "folder" if name in self.folders else "file"
            size = len(self.files.get(name, "")) if kind == "file" else 0
            entries.append(VaultEntry(name=name.rsplit("/", 1)[-1], path=name, type=kind, size=size))
        return entries

    def iter_files(self) -> list[VaultEntry]:
        return [entry for entry in self.list_dir("", recursive=True) if entry.type == "file"]

    def make_dir(self, path: str) -> None:
        path = normalize_path(path)
        if self.exists(path):
            raise FileExistsError(path)
        self._add_parents(f"{path}/x")

    def move(self, source: str, target: str) -> None:
        source, target = normalize_path(source), normalize_path(target)
        if self.exists(target):
            raise FileExistsError(target)
        if source not in self.files:
            raise FileNotFoundError(source)
        self._add_parents(target)
        self.files[target] = self.files.pop(source)

    def delete(self, path: str) -> str:
        path = normalize_path(path)
        if path in self.folders:
            self.folders = {f for f in self.folders if f != path and not f.startswith(f"{path}/")}
            self.files = {f: c for f, c in self.files.items() if not f.startswith(f"{path}/")}
            return "folder"
        if path not in self.files:
            raise FileNotFoundError(path)
        del self.files[path]
        return "file"


class ScriptedModelApi:
    """Replays a list of responses (or exceptions) and records every request."""

    def __init__(self, script: list[ModelResponse | Exception], chunk_size: int = 0) -> None:
        self.script = list(script)
        self.requests: list[ModelRequest] = []
        self.chunk_size = chunk_size

    def _next(self, request: ModelRequest) -> ModelResponse:
        self.requests.append(request)
        if not self.script:
            raise AssertionError("model called more often than scripted")
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def generate_model_response(self, request: ModelRequest) -> ModelResponse:
        return self._next(request)

    def generate_streaming_response(self, request, on_chunk) -> StreamingModelResponse:
        async def complete() -> ModelResponse:
            response = self._next(request)
            text = response.markdown
            size = self.chunk_size or len(text) or 1
            for start in range(0, len(text), size):
                on_chunk(text[start:start + size])
                await asyncio.sleep(0)
            return response

        return StreamingModelResponse(complete=asyncio.ensure_future(complete()), cancel=lambda: None)


class RecordingConfirmationPort:
    def __init__(self, *answers: ConfirmationResponse) -> None:
        self.answers = list(answers)
        self.requests: list[ConfirmationRequest] = []

    async def request_confirmation(self, request: ConfirmationRequest) -> ConfirmationResponse:
        self.requests.append(request)
        if self.answers:
            return self.answers.pop(0)
        return ConfirmationResponse(confirmed=True)


class EchoTool:
    name = "echo"
    category = ToolCategory.READ_ONLY
    description = "Echo the text back"
    parameters = {
        "type": "object",
        "properties": {
            "text": {"type": "string", "description": "Text to echo"},
            "mode": {"type": "string", "enum": ["plain", "loud"]},
            "times": {"type": "number"},
        },
        "required": ["text"],
    }

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []

    async def execute(self, args: Mapping[str, Any], context: ToolExecutionContext) -> ToolResult:
        self.calls.append(dict(args))
        return ToolResult.ok({"echo": args["text"]})


class ExplodingTool:
    name = "explode"
    category = ToolCategory.READ_ONLY
    description = "Always raises"
    parameters = {"type": "object", "properties": {}, "required": []}

    async def execute(self, args: Mapping[str, Any], context: ToolExecutionContext) -> ToolResult:
        raise RuntimeError("boom")


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        max_retries=2,
        initial_backoff_ms=100,
        loop_detection_threshold=3,
        loop_detection_window_seconds=60,
        max_tool_rounds=5,
    )


@pytest.fixture
def session() -> ChatSession:
    return ChatSession()


@pytest.fixture
def context(session: ChatSession) -> ToolExecutionContext:
    return ToolExecutionContext(session=session)


@pytest.fixture
def storage() -> InMemoryVaultStorage:
    return InMemoryVaultStorage(
        {
            "Welcome.md": "# Welcome\n\nHello vault",
            "Projects/Plan.md": "# Plan\n\nShip it",
            "Projects/Notes.txt": "loose notes",
        }
    )
