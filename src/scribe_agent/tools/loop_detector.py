from __future__ import annotations

import json
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable

from .base import ToolCall

MAX_HISTORY_SIZE = 100


def fingerprint(call: ToolCall) -> str:
    """Stable key for a call: tool name plus its arguments with keys sorted.

    ``None`` values serialize as ``null`` while absent keys are simply not
    present, so the two never collide.
    """
    try:
        serialized = json.dumps(call.arguments, sort_keys=True, ensure_ascii=False, default=repr)
    except TypeError:
        # mixed-type keys cannot be sorted
        serialized = repr(sorted(call.arguments.items(), key=lambda item: str(item[0])))
    return f"{call.name}:{serialized}"


@dataclass(frozen=True)
class LoopWindowEntry:
    fingerprint: str
    timestamp: float


@dataclass(frozen=True)
class LoopInfo:
    is_loop: bool
    identical_call_count: int
    consecutive_call_count: int
    window_ms: float
    last_timestamp: float | None = None


class LoopDetector:
    def __init__(
        self,
        threshold: int = 3,
        window_seconds: float = 30,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._sessions: dict[str, deque[LoopWindowEntry]] = {}
        self.update_config(threshold, window_seconds)

    @property
    def threshold(self) -> int:
        return self._threshold

    @property
    def window_seconds(self) -> float:
        return self._window

    def update_config(self, threshold: int, window_seconds: float) -> None:
        if threshold < 1:
            raise ValueError("loop threshold must be at least 1")
        if window_seconds <= 0:
            raise ValueError("loop window must be positive")
        self._threshold = threshold
        self._window = float(window_seconds)

    def record(self, session_id: str, call: ToolCall) -> None:
        entries = self._sessions.setdefault(session_id, deque(maxlen=MAX_HISTORY_SIZE))
        entries.append(LoopWindowEntry(fingerprint=fingerprint(call), timestamp=self._clock()))
        self._prune(session_id)

    def is_loop(self, session_id: str, call: ToolCall) -> bool:
        return len(self._recent_matches(session_id, fingerprint(call))) >= self._threshold

    def info(self, session_id: str, call: ToolCall) -> LoopInfo:
        key = fingerprint(call)
        recent = self._recent_matches(session_id, key)

        consecutive = 0
        for entry in reversed(self._sessions.get(session_id, ())):
            if entry.fingerprint != key:
                break
            consecutive += 1

        return LoopInfo(
            is_loop=len(recent) >= self._threshold,
            identical_call_count=len(recent),
            consecutive_call_count=consecutive,
            window_ms=self._window * 1000,
            last_timestamp=recent[-1].timestamp if recent else None,
        )

    def clear(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def entries(self, session_id: str) -> list[LoopWindowEntry]:
        return list(self._sessions.get(session_id, ()))

    def _recent_matches(self, session_id: str, key: str) -> list[LoopWindowEntry]:
        now = self._clock()
        return [
            entry
            for entry in self._sessions.get(session_id, ())
            if entry.fingerprint == key and now - entry.timestamp < self._window
        ]

    def _prune(self, session_id: str) -> None:
        entries = self._sessions.get(session_id)
        if not entries:
            return
        now = self._clock()
        kept = [entry for entry in entries if now - entry.timestamp < self._window * 2]
        self._sessions[session_id] = deque(kept, maxlen=MAX_HISTORY_SIZE)
