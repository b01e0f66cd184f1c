"""Wire models for the OpenAI-compatible surface and the upstream API."""

from context_proxy.models.models import (
    MessageRole,
    Message,
    ChatCompletionRequest,
    UpstreamChatRequest,
    DeltaMessage,
    ResponseMessage,
    Choice,
    Usage,
    ChatCompletionChunk,
    ChatCompletionResponse,
    ModelCard,
    ModelList,
    ErrorDetail,
    ErrorResponse,
)

__all__ = [
    "MessageRole",
    "Message",
    "ChatCompletionRequest",
    "UpstreamChatRequest",
    "DeltaMessage",
    "ResponseMessage",
    "Choice",
    "Usage",
    "ChatCompletionChunk",
    "ChatCompletionResponse",
    "ModelCard",
    "ModelList",
    "ErrorDetail",
    "ErrorResponse",
]
