"""
Reshapes inbound requests for the upstream API and upstream responses back
into the OpenAI chat-completion shape.
"""

import time
import uuid
from typing import Any, Dict, List, Optional, Sequence

from context_proxy.config import ProxyConfig
from context_proxy.models import (
    ChatCompletionRequest,
    ChatCompletionResponse,
    Choice,
    Message,
    ResponseMessage,
    UpstreamChatRequest,
    Usage,
)

THINK_OPEN = "<think>\n"
THINK_CLOSE = "\n</think>\n\n"


def create_completion_id() -> str:
    return f"chatcmpl-{uuid.uuid4().hex[:29]}"


def merge_reasoning(reasoning: Optional[str], content: Optional[str]) -> Optional[str]:
    """Fold a reasoning side-channel into the visible text."""
    if not reasoning:
        return content
    return f"{THINK_OPEN}{reasoning}{THINK_CLOSE}{content or ''}"


def to_upstream_request(
    request: ChatCompletionRequest,
    messages: Sequence[Message],
    internal_model: str,
    config: ProxyConfig,
) -> UpstreamChatRequest:
    return UpstreamChatRequest(
        model=internal_model,
        messages=list(messages),
        temperature=(
            request.temperature
            if request.temperature is not None
            else config.default_temperature
        ),
        max_tokens=request.max_tokens or config.default_max_tokens,
        stream=bool(request.stream),
        top_p=request.top_p,
        stop=request.stop,
    )


def choice_index(raw: Dict[str, Any], position: int) -> int:
    """Upstream choice index, or the list position when it is missing or null."""
    index = raw.get("index")
    return index if isinstance(index, int) else position


def _reshape_choices(raw_choices: Any, show_reasoning: bool) -> List[Choice]:
    choices = []
    for position, raw in enumerate(raw_choices or []):
        if not isinstance(raw, dict):
            continue
        raw_message = raw.get("message") or {}
        content = raw_message.get("content")
        if show_reasoning:
            content = merge_reasoning(raw_message.get("reasoning_content"), content)
        choices.append(
            Choice(
                index=choice_index(raw, position),
                message=ResponseMessage(
                    role=raw_message.get("role") or "assistant",
                    content=content,
                ),
                finish_reason=raw.get("finish_reason"),
            )
        )
    return choices


def to_external_response(
    upstream: Dict[str, Any],
    external_model: str,
    show_reasoning: bool = False,
) -> ChatCompletionResponse:
    usage = upstream.get("usage") if isinstance(upstream, dict) else None
    return ChatCompletionResponse(
        id=create_completion_id(),
        created=int(time.time()),
        model=external_model,
        choices=_reshape_choices(upstream.get("choices"), show_reasoning),
        usage=(
            Usage(**{k: v for k, v in usage.items() if v is not None})
            if isinstance(usage, dict)
            else Usage()
        ),
    )
