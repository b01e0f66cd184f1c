"""
Streaming relay: re-frames upstream server-sent events as OpenAI
``chat.completion.chunk`` events for the caller.

Each upstream line is processed and forwarded before the next one is read.
A ``data: [DONE]`` terminator is sent when the upstream finishes; when the
upstream stream breaks, the downstream stream is closed without one.
"""

import json
import logging
import time
from typing import Any, AsyncGenerator, Dict, List, Optional

from context_proxy.clients.llm_client import UpstreamStream
from context_proxy.models import ChatCompletionChunk, Choice, DeltaMessage, Usage
from context_proxy.transcoder.transcoder import (
    THINK_CLOSE,
    THINK_OPEN,
    choice_index,
    create_completion_id,
)
from context_proxy.utils import preview
from context_proxy.utils.exception_logging import format_exception_message

logger = logging.getLogger("uvicorn.error")

DONE_FRAME = "data: [DONE]\n\n"


class UpstreamStreamError(Exception):
    """The upstream reported an error inside the event stream."""


def sse_frame(chunk: ChatCompletionChunk) -> str:
    return f"data: {chunk.model_dump_json(exclude_none=True)}\n\n"


class StreamRelay:
    def __init__(self, external_model: str, show_reasoning: bool = False):
        self.logger = logger
        self.external_model = external_model
        self.show_reasoning = show_reasoning
        self.completion_id = create_completion_id()
        self.created = int(time.time())
        self._reasoning_open = False

    def _chunk(self, choices: List[Choice], usage: Optional[Usage] = None):
        return ChatCompletionChunk(
            id=self.completion_id,
            created=self.created,
            model=self.external_model,
            choices=choices,
            usage=usage,
        )

    def _visible_text(self, delta: Dict[str, Any], finishing: bool) -> Optional[str]:
        content = delta.get("content")
        if not self.show_reasoning:
            return content

        text = ""
        reasoning = delta.get("reasoning_content")
        if reasoning:
            if not self._reasoning_open:
                text += THINK_OPEN
                self._reasoning_open = True
            text += reasoning
        if self._reasoning_open and (content or finishing):
            text += THINK_CLOSE
            self._reasoning_open = False
        if content:
            text += content
        return text or None

    def reframe(self, event: Dict[str, Any]) -> Optional[ChatCompletionChunk]:
        """Convert one upstream event; returns None when nothing is worth forwarding."""
        if "error" in event:
            raise UpstreamStreamError(str(event["error"]))

        choices = []
        for position, raw in enumerate(event.get("choices") or []):
            if not isinstance(raw, dict):
                continue
            delta = raw.get("delta") or {}
            finish_reason = raw.get("finish_reason")
            choices.append(
                Choice(
                    index=choice_index(raw, position),
                    delta=DeltaMessage(
                        role=delta.get("role"),
                        content=self._visible_text(delta, finish_reason is not None),
                    ),
                    finish_reason=finish_reason,
                )
            )

        usage = event.get("usage")
        usage_model = (
            Usage(**{k: v for k, v in usage.items() if v is not None})
            if isinstance(usage, dict)
            else None
        )
        if not choices and usage_model is None:
            return None
        return self._chunk(choices, usage_model)

    def _close_reasoning(self) -> Optional[ChatCompletionChunk]:
        if not self._reasoning_open:
            return None
        self._reasoning_open = False
        return self._chunk([Choice(index=0, delta=DeltaMessage(content=THINK_CLOSE))])

    async def relay(self, stream: UpstreamStream) -> AsyncGenerator[str, None]:
        chunk_count = 0
        try:
            async for line in stream.lines():
                if not line.startswith("data:"):
                    # SSE comments, event names and keep-alives
                    continue
                data = line[5:].strip()
                if data == "[DONE]":
                    break
                try:
                    event = json.loads(data)
                except json.JSONDecodeError:
                    self.logger.debug(f"[StreamRelay] Skipping malformed event: {preview(data)}")
                    continue
                if not isinstance(event, dict):
                    continue

                chunk = self.reframe(event)
                if chunk is not None:
                    chunk_count += 1
                    yield sse_frame(chunk)

            closing = self._close_reasoning()
            if closing is not None:
                yield sse_frame(closing)
            self.logger.info(
                f"[StreamRelay] Stream completed, forwarded {chunk_count} chunks"
            )
            yield DONE_FRAME
        except Exception as e:
            # No [DONE] after a broken upstream stream
            self.logger.error(
                f"[StreamRelay] Upstream stream failed after {chunk_count} chunks: "
                f"{format_exception_message(e)}"
            )
        finally:
            await stream.close()
