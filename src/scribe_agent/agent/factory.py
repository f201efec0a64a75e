from __future__ import annotations

from dataclasses import dataclass

from ..api.model_api import ModelApi
from ..api.openai_client import OpenAICompatibleClient
from ..api.retry import RetryDecorator, RetryPolicy
from ..config import Settings, settings as default_settings
from ..session_manager import SessionManager
from ..tools.confirmation import ConfirmationPort
from ..tools.execution_engine import ToolExecutionEngine
from ..tools.memory_tool import AgentsMemory, memory_tools
from ..tools.registry import ToolRegistry
from ..tools.vault_tools import vault_tools
from ..tools.web_tools import HttpFetcher, UrllibFetcher, web_tools
from ..vault.storage import VaultStorage
from .orchestrator import AgentObserver, AgentOrchestrator


@dataclass
class Agent:
    orchestrator: AgentOrchestrator
    registry: ToolRegistry
    engine: ToolExecutionEngine
    memory: AgentsMemory
    sessions: SessionManager


def build_registry(
    storage: VaultStorage,
    memory: AgentsMemory,
    fetcher: HttpFetcher | None = None,
    web_timeout: float = 8,
) -> ToolRegistry:
    registry = ToolRegistry()
    for tool in vault_tools(storage):
        registry.register(tool)
    for tool in memory_tools(memory):
        registry.register(tool)
    if fetcher is not None:
        for tool in web_tools(fetcher, web_timeout):
            registry.register(tool)
    return registry


def create_agent(
    confirmation_port: ConfirmationPort,
    storage: VaultStorage,
    settings: Settings | None = None,
    fetcher: HttpFetcher | None = None,
    model_api: ModelApi | None = None,
    observer: AgentObserver | None = None,
    enable_web: bool = True,
    persist_history: bool | None = None,
) -> Agent:
    """Wire registry, engine, retrying model client and orchestrator together.

    ``model_api`` defaults to the OpenAI-compatible client; whatever is passed
    gets wrapped in a :class:`RetryDecorator`. ``persist_history`` overrides
    ``settings.chat_history`` for writing transcripts into the vault.
    """
    settings = settings or default_settings
    memory = AgentsMemory(storage, settings.memory_file)
    if enable_web and fetcher is None:
        fetcher = UrllibFetcher()
    registry = build_registry(
        storage, memory, fetcher if enable_web else None, settings.web_timeout_seconds
    )
    engine = ToolExecutionEngine(registry, confirmation_port, settings=settings)
    retrying = RetryDecorator(
        model_api or OpenAICompatibleClient(settings), RetryPolicy.from_settings(settings)
    )
    sessions = SessionManager(storage, settings=settings, persist=persist_history)
    orchestrator = AgentOrchestrator(
        retrying,
        registry,
        engine,
        settings=settings,
        memory=memory,
        observer=observer,
        sessions=sessions,
    )
    return Agent(
        orchestrator=orchestrator,
        registry=registry,
        engine=engine,
        memory=memory,
        sessions=sessions,
    )
