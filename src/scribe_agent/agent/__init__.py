from .factory import Agent, build_registry, create_agent
from .orchestrator import (
    TOOL_PRIORITY,
    AgentObserver,
    AgentOrchestrator,
    TurnResult,
    sort_tool_calls_by_priority,
)
from .prompts import FOLLOW_UP_INSTRUCTION, SUMMARY_PROMPT, PromptBuilder

__all__ = [
    "Agent",
    "AgentObserver",
    "AgentOrchestrator",
    "FOLLOW_UP_INSTRUCTION",
    "PromptBuilder",
    "SUMMARY_PROMPT",
    "TOOL_PRIORITY",
    "TurnResult",
    "build_registry",
    "create_agent",
    "sort_tool_calls_by_priority",
]
