from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _csv_env(name: str, default: str = "") -> tuple[str, ...]:
    raw = os.getenv(name, default)
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def _bool_env(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() == "true"


@dataclass(frozen=True)
class Settings:
    vault_path: Path = Path(os.getenv("SCRIBE_VAULT_PATH", "."))
    memory_file: str = os.getenv("SCRIBE_MEMORY_FILE", "AGENTS.md")
    # note chats go to <history_folder>/History, agent sessions to <history_folder>/Agent-Sessions
    history_folder: str = os.getenv("SCRIBE_HISTORY_FOLDER", "scribe")
    chat_history: bool = _bool_env("SCRIBE_CHAT_HISTORY", "true")

    llm_base_url: str = os.getenv("SCRIBE_LLM_BASE_URL", "https://api.openai.com/v1")
    llm_api_key: str | None = os.getenv("SCRIBE_LLM_API_KEY")
    llm_models: tuple[str, ...] = _csv_env("SCRIBE_LLM_MODELS", "gpt-4o-mini")
    llm_timeout_seconds: float = float(os.getenv("SCRIBE_LLM_TIMEOUT_SECONDS", "60"))
    temperature: float = float(os.getenv("SCRIBE_TEMPERATURE", "0.7"))
    top_p: float = float(os.getenv("SCRIBE_TOP_P", "1"))

    max_retries: int = int(os.getenv("SCRIBE_MAX_RETRIES", "3"))
    initial_backoff_ms: int = int(os.getenv("SCRIBE_INITIAL_BACKOFF_MS", "1000"))

    stop_on_tool_error: bool = _bool_env("SCRIBE_STOP_ON_TOOL_ERROR", "true")
    loop_detection_enabled: bool = _bool_env("SCRIBE_LOOP_DETECTION_ENABLED", "true")
    loop_detection_threshold: int = int(os.getenv("SCRIBE_LOOP_DETECTION_THRESHOLD", "3"))
    loop_detection_window_seconds: float = float(
        os.getenv("SCRIBE_LOOP_DETECTION_WINDOW_SECONDS", "30")
    )
    # 0 disables the cap
    max_tool_rounds: int = int(os.getenv("SCRIBE_MAX_TOOL_ROUNDS", "20"))

    web_timeout_seconds: float = float(os.getenv("SCRIBE_WEB_TIMEOUT_SECONDS", "8"))

    log_level: str = os.getenv("SCRIBE_LOG_LEVEL", "INFO")
    log_format: str = os.getenv("SCRIBE_LOG_FORMAT", "console").strip().lower()


settings = Settings()
