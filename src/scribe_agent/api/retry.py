from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable

import structlog

from ..config import Settings
from .model_api import ModelApi, ModelRequest, ModelResponse, StreamCallback, StreamingModelResponse

logger = structlog.get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    initial_backoff_ms: int = 1000

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must not be negative")
        if self.initial_backoff_ms < 0:
            raise ValueError("initial_backoff_ms must not be negative")

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(max_retries=settings.max_retries, initial_backoff_ms=settings.initial_backoff_ms)

    def backoff_seconds(self, attempt: int) -> float:
        return self.initial_backoff_ms * 2**attempt / 1000


class RetryDecorator:
    """Adds exponential-backoff retries to any :class:`ModelApi`.

    A failed stream cannot be resumed, so a retry replays it from the start
    with the same ``on_chunk`` callback and callers may see leading chunks
    twice.
    """

    def __init__(self, wrapped: ModelApi, policy: RetryPolicy, sleep: Sleep = asyncio.sleep) -> None:
        self.wrapped = wrapped
        self.policy = policy
        self._sleep = sleep

    async def generate_model_response(self, request: ModelRequest) -> ModelResponse:
        attempts = self.policy.max_retries + 1
        for attempt in range(attempts):
            try:
                return await self.wrapped.generate_model_response(request)
            except Exception as exc:
                if attempt == self.policy.max_retries:
                    logger.error("model_call_failed", attempts=attempts, error=str(exc))
                    raise
                delay = self.policy.backoff_seconds(attempt)
                logger.warning(
                    "model_call_retry",
                    attempt=attempt + 1,
                    attempts=attempts,
                    retry_in_ms=delay * 1000,
                    error=str(exc),
                )
                await self._sleep(delay)
        raise AssertionError("unreachable")

    def generate_streaming_response(
        self, request: ModelRequest, on_chunk: StreamCallback
    ) -> StreamingModelResponse:
        start_stream = getattr(self.wrapped, "generate_streaming_response", None)
        if start_stream is None:
            raise NotImplementedError("Wrapped API does not support streaming")

        cancelled = asyncio.Event()
        current: list[StreamingModelResponse] = []
        partial: list[str] = []

        def collect(chunk: str) -> None:
            partial.append(chunk)
            on_chunk(chunk)

        def partial_response() -> ModelResponse:
            return ModelResponse(markdown="".join(partial))

        async def run() -> ModelResponse:
            attempts = self.policy.max_retries + 1
            for attempt in range(attempts):
                if cancelled.is_set():
                    return partial_response()
                partial.clear()
                try:
                    stream = start_stream(request, collect)
                    current[:] = [stream]
                    response = await stream.complete
                    return partial_response() if cancelled.is_set() else response
                except Exception as exc:
                    if cancelled.is_set():
                        return partial_response()
                    if attempt == self.policy.max_retries:
                        logger.error("model_stream_failed", attempts=attempts, error=str(exc))
                        raise
                    delay = self.policy.backoff_seconds(attempt)
                    logger.warning(
                        "model_stream_retry",
                        attempt=attempt + 1,
                        attempts=attempts,
                        retry_in_ms=delay * 1000,
                        error=str(exc),
                    )
                    await self._sleep_unless_cancelled(delay, cancelled)
            return partial_response()

        def cancel() -> None:
            cancelled.set()
            if current:
                current[0].cancel()

        return StreamingModelResponse(complete=asyncio.ensure_future(run()), cancel=cancel)

    async def _sleep_unless_cancelled(self, delay: float, cancelled: asyncio.Event) -> None:
        sleeper = asyncio.ensure_future(self._sleep(delay))
        waiter = asyncio.ensure_future(cancelled.wait())
        _, pending = await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
