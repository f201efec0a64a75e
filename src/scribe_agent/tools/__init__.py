from .base import (
    AgentTool,
    DestructiveAction,
    SessionToolPolicy,
    ToolCall,
    ToolCategory,
    ToolExecution,
    ToolExecutionContext,
    ToolResult,
)
from .confirmation import (
    AutoApproveConfirmationPort,
    ConfirmationPort,
    ConfirmationRequest,
    ConfirmationResponse,
    ConsoleConfirmationPort,
    QueueConfirmationPort,
)
from .execution_engine import ToolExecutionEngine
from .loop_detector import LoopDetector, LoopInfo, fingerprint
from .memory_tool import AgentsMemory, ReadMemoryTool, UpdateMemoryTool, memory_tools
from .registry import ToolDefinition, ToolRegistry, ValidationResult
from .vault_tools import (
    CreateFolderTool,
    DeleteFileTool,
    ListFilesTool,
    MoveFileTool,
    ReadFileTool,
    SearchFilesTool,
    WriteFileTool,
    vault_tools,
)
from .web_tools import HttpFetcher, UrllibFetcher, WebFetchTool, WebSearchTool, web_tools

__all__ = [
    "AgentTool",
    "AgentsMemory",
    "AutoApproveConfirmationPort",
    "ConfirmationPort",
    "ConfirmationRequest",
    "ConfirmationResponse",
    "ConsoleConfirmationPort",
    "CreateFolderTool",
    "DeleteFileTool",
    "DestructiveAction",
    "HttpFetcher",
    "ListFilesTool",
    "LoopDetector",
    "LoopInfo",
    "MoveFileTool",
    "QueueConfirmationPort",
    "ReadFileTool",
    "ReadMemoryTool",
    "SearchFilesTool",
    "SessionToolPolicy",
    "ToolCall",
    "ToolCategory",
    "ToolDefinition",
    "ToolExecution",
    "ToolExecutionContext",
    "ToolExecutionEngine",
    "ToolRegistry",
    "ToolResult",
    "UpdateMemoryTool",
    "UrllibFetcher",
    "ValidationResult",
    "WebFetchTool",
    "WebSearchTool",
    "WriteFileTool",
    "fingerprint",
    "memory_tools",
    "vault_tools",
    "web_tools",
]
