from .model_api import (
    ModelApi,
    ModelApiError,
    ModelRequest,
    ModelResponse,
    StreamCallback,
    StreamingModelResponse,
)
from .openai_client import OpenAICompatibleClient, history_to_messages
from .retry import RetryDecorator, RetryPolicy

__all__ = [
    "ModelApi",
    "ModelApiError",
    "ModelRequest",
    "ModelResponse",
    "OpenAICompatibleClient",
    "RetryDecorator",
    "RetryPolicy",
    "StreamCallback",
    "StreamingModelResponse",
    "history_to_messages",
]
