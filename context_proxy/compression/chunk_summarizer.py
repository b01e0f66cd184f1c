"""
Chunk summarization for context compression.

A chunk is a contiguous slice of older conversation turns. It is condensed by
asking the upstream model for a short extraction of salient facts. Any failure
of that call is absorbed here and replaced by a deterministic excerpt so that
compression as a whole never fails because of a summary.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from opentelemetry import trace

from context_proxy.clients.llm_client import LLMClient
from context_proxy.compression.token_estimator import content_as_text
from context_proxy.config import CompressionConfig
from context_proxy.models import Message, MessageRole, UpstreamChatRequest
from context_proxy.utils.exception_logging import format_exception_message

logger = logging.getLogger("uvicorn.error")
tracer = trace.get_tracer(__name__)

FALLBACK_SEPARATOR = " | "


class SummaryKind(str, Enum):
    SUMMARIZED = "summarized"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class SummaryResult:
    kind: SummaryKind
    text: str
    chunk_index: int = 1
    total_chunks: int = 1
    message_count: int = 0

    @property
    def is_fallback(self) -> bool:
        return self.kind == SummaryKind.FALLBACK


class SummarizationError(Exception):
    """The upstream produced no usable summary."""


def render_transcript(chunk: Sequence[Message]) -> str:
    return "\n\n".join(
        f"{message.role.value.upper()}: {content_as_text(message.content)}"
        for message in chunk
    )


def fallback_summary(chunk: Sequence[Message], preview_chars: int = 100) -> str:
    """
    Deterministic degraded summary: role and a fixed-length content prefix
    for each message, joined by a separator.
    """
    if not chunk:
        return "(no earlier messages)"
    return FALLBACK_SEPARATOR.join(
        f"{message.role.value}: {content_as_text(message.content)[:preview_chars]}"
        for message in chunk
    )


class ChunkSummarizer:
    """Summarizes one chunk of older messages through the upstream API."""

    def __init__(self, llm_client: Optional[LLMClient], config: CompressionConfig):
        self.logger = logger
        self.llm_client = llm_client
        self.config = config

    def build_prompt(self, transcript: str, chunk_index: int, total_chunks: int) -> str:
        position = ""
        if total_chunks > 1:
            position = f" This is part {chunk_index} of {total_chunks} of the earlier conversation."

        return f"""You are compressing the early part of a long conversation so it can continue within a limited context window.{position}

Extract the facts a writer would need to continue seamlessly, in at most {self.config.summary_max_words} words:
- Characters and entities introduced, with their defining traits
- Decisions made and promises given
- Relationships and how they changed
- Plot events and changes of location, time or state
- Open threads that are still unresolved

Do not write a generic summary, do not comment on the conversation, and do not invent anything.

Conversation excerpt:
{transcript}

Salient facts:"""

    def _extract_text(self, response: dict) -> str:
        choices = response.get("choices") if isinstance(response, dict) else None
        if not choices:
            raise SummarizationError("upstream response has no choices")
        message = choices[0].get("message") or {}
        text = message.get("content")
        if not isinstance(text, str) or not text.strip():
            raise SummarizationError("upstream returned an empty summary")
        return text.strip()

    async def _request_summary(
        self, prompt: str, access_token: Optional[str]
    ) -> str:
        request = UpstreamChatRequest(
            model=self.config.summary_model,
            messages=[Message(role=MessageRole.USER, content=prompt)],
            temperature=self.config.summary_temperature,
            max_tokens=self.config.summary_max_tokens,
            stream=False,
        )
        response = await self.llm_client.non_stream_completion(request, access_token)
        return self._extract_text(response)

    async def summarize(
        self,
        chunk: Sequence[Message],
        chunk_index: int = 1,
        total_chunks: int = 1,
        access_token: Optional[str] = None,
    ) -> SummaryResult:
        """
        Summarize a chunk of messages.

        Returns a SUMMARIZED result with the model's text, or a FALLBACK
        result built from literal excerpts when the upstream call fails or
        times out. Only cancellation propagates.
        """
        with tracer.start_as_current_span("summarize_chunk") as span:
            span.set_attribute("summary.chunk_index", chunk_index)
            span.set_attribute("summary.total_chunks", total_chunks)
            span.set_attribute("summary.messages", len(chunk))

            if not self.config.smart_compression or self.llm_client is None:
                span.set_attribute("summary.kind", SummaryKind.FALLBACK.value)
                span.set_attribute("summary.reason", "smart_compression_disabled")
                return self._fallback(chunk, chunk_index, total_chunks)

            prompt = self.build_prompt(
                render_transcript(chunk), chunk_index, total_chunks
            )
            try:
                text = await asyncio.wait_for(
                    self._request_summary(prompt, access_token),
                    timeout=self.config.summary_timeout_seconds,
                )
            except asyncio.TimeoutError:
                self.logger.warning(
                    f"[ChunkSummarizer] Chunk {chunk_index}/{total_chunks} timed out after "
                    f"{self.config.summary_timeout_seconds}s, using excerpt fallback"
                )
                span.set_attribute("summary.kind", SummaryKind.FALLBACK.value)
                span.set_attribute("summary.reason", "timeout")
                return self._fallback(chunk, chunk_index, total_chunks)
            except Exception as e:
                self.logger.warning(
                    f"[ChunkSummarizer] Chunk {chunk_index}/{total_chunks} failed: "
                    f"{format_exception_message(e)}, using excerpt fallback"
                )
                span.set_attribute("summary.kind", SummaryKind.FALLBACK.value)
                span.set_attribute("summary.reason", type(e).__name__)
                return self._fallback(chunk, chunk_index, total_chunks)

            self.logger.info(
                f"[ChunkSummarizer] Chunk {chunk_index}/{total_chunks}: "
                f"{len(chunk)} messages -> {len(text)} characters"
            )
            span.set_attribute("summary.kind", SummaryKind.SUMMARIZED.value)
            span.set_attribute("summary.length", len(text))
            return SummaryResult(
                kind=SummaryKind.SUMMARIZED,
                text=text,
                chunk_index=chunk_index,
                total_chunks=total_chunks,
                message_count=len(chunk),
            )

    def _fallback(
        self, chunk: Sequence[Message], chunk_index: int, total_chunks: int
    ) -> SummaryResult:
        return SummaryResult(
            kind=SummaryKind.FALLBACK,
            text=fallback_summary(chunk, self.config.fallback_preview_chars),
            chunk_index=chunk_index,
            total_chunks=total_chunks,
            message_count=len(chunk),
        )
