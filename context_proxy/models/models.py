from enum import Enum
from typing import Any, List, Optional, Union

from pydantic import BaseModel, field_validator


class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class Message(BaseModel):
    role: MessageRole
    # Plain text, or a list of structured content parts
    content: Optional[Union[str, List[Any]]] = None
    name: Optional[str] = None


class ChatCompletionRequest(BaseModel):
    messages: List[Message]
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None
    stop: Optional[Union[str, List[str]]] = None
    stream: Optional[bool] = False

    @field_validator("messages")
    @classmethod
    def _messages_not_empty(cls, value: List[Message]) -> List[Message]:
        if not value:
            raise ValueError("messages must be a non-empty array")
        return value


class UpstreamChatRequest(BaseModel):
    model: str
    messages: List[Message]
    temperature: float
    max_tokens: int
    stream: bool = False
    top_p: Optional[float] = None
    stop: Optional[Union[str, List[str]]] = None


class DeltaMessage(BaseModel):
    role: Optional[str] = None
    content: Optional[str] = None
    reasoning_content: Optional[str] = None


class ResponseMessage(BaseModel):
    role: str = MessageRole.ASSISTANT.value
    content: Optional[str] = None
    reasoning_content: Optional[str] = None


class Choice(BaseModel):
    index: int = 0
    delta: Optional[DeltaMessage] = None
    message: Optional[ResponseMessage] = None
    finish_reason: Optional[str] = None


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatCompletionChunk(BaseModel):
    id: str
    object: str = "chat.completion.chunk"
    created: int
    model: str
    choices: List[Choice]
    usage: Optional[Usage] = None


class ChatCompletionResponse(BaseModel):
    id: str
    object: str = "chat.completion"
    created: int
    model: str
    choices: List[Choice]
    usage: Usage


class ModelCard(BaseModel):
    id: str
    object: str = "model"
    created: int
    owned_by: str = "nvidia-nim-proxy"


class ModelList(BaseModel):
    object: str = "list"
    data: List[ModelCard]


class ErrorDetail(BaseModel):
    message: str
    type: str = "invalid_request_error"
    code: Union[int, str]


class ErrorResponse(BaseModel):
    error: ErrorDetail
