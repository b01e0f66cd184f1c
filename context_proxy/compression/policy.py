"""
Context compression policy for long conversations.

Decides, per request, between four outcomes:
- no-op: the conversation is within the message and token limits
- trim: a modest message-count overflow is cut to the newest turns
- standard: all older turns are condensed into one summary message
- aggressive: older turns are split into chunks summarized concurrently

The most recent turns are always forwarded verbatim. The pinned system
prompt (when kept) comes first, followed by the synthetic summary, followed
by the preserved recent turns.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from opentelemetry import trace

from context_proxy.compression.chunk_summarizer import ChunkSummarizer, SummaryResult
from context_proxy.compression.conversation import Conversation
from context_proxy.compression.token_estimator import (
    TokenEstimator,
    default_estimator,
)
from context_proxy.config import CompressionConfig
from context_proxy.models import Message, MessageRole

logger = logging.getLogger("uvicorn.error")
tracer = trace.get_tracer(__name__)


class CompressionStrategy(str, Enum):
    NONE = "none"
    TRIM = "trim"
    STANDARD = "standard"
    AGGRESSIVE = "aggressive"


@dataclass
class CompressionStats:
    """Before/after figures of one compression pass."""

    strategy: CompressionStrategy
    original_messages: int
    compressed_messages: int
    original_tokens: int
    compressed_tokens: int
    summarized_messages: int = 0
    chunks: int = 0
    fallback_chunks: int = 0

    @property
    def token_reduction(self) -> float:
        if not self.original_tokens:
            return 0.0
        return 1 - self.compressed_tokens / self.original_tokens

    def summary(self) -> str:
        return (
            f"[{self.strategy.value}] "
            f"Messages: {self.original_messages} → {self.compressed_messages}, "
            f"Tokens: ~{self.original_tokens} → ~{self.compressed_tokens} "
            f"({self.token_reduction:.1%} reduction), "
            f"Summarized: {self.summarized_messages} in {self.chunks} chunk(s), "
            f"Fallbacks: {self.fallback_chunks}"
        )


@dataclass
class CompressionResult:
    messages: List[Message]
    stats: CompressionStats
    # Position of the pinned system prompt in ``messages``, if it was kept
    system_index: Optional[int] = None
    summaries: List[SummaryResult] = field(default_factory=list)

    @property
    def compressed(self) -> bool:
        return self.stats.strategy != CompressionStrategy.NONE


def chunk_messages(messages: Sequence[Message], chunk_size: int) -> List[List[Message]]:
    return [
        list(messages[i : i + chunk_size]) for i in range(0, len(messages), chunk_size)
    ]


class CompressionPolicy:
    """Produces a bounded replacement for an arbitrarily long conversation."""

    def __init__(
        self,
        config: CompressionConfig,
        summarizer: ChunkSummarizer,
        estimator: Optional[TokenEstimator] = None,
    ):
        self.logger = logger
        self.config = config
        self.summarizer = summarizer
        self.estimator = estimator or default_estimator

    def choose_strategy(self, total: int, older: int, count_overflow: bool):
        if total > self.config.aggressive_threshold:
            return CompressionStrategy.AGGRESSIVE
        if count_overflow and older <= self.config.summarization_trigger:
            return CompressionStrategy.TRIM
        return CompressionStrategy.STANDARD

    async def compress(
        self,
        messages: Sequence[Message],
        access_token: Optional[str] = None,
        reserve_system: bool = False,
    ) -> CompressionResult:
        """
        Compress a conversation to fit the configured context bounds.

        ``reserve_system`` keeps one slot free for a system message the caller
        adds afterwards when the conversation has no pinned one.

        The input sequence is never modified; a new list is always returned.
        """
        with tracer.start_as_current_span("compress_conversation") as span:
            conversation = Conversation.from_messages(
                messages, pin_system=self.config.preserve_system_prompt
            )
            total = len(conversation)
            tokens = self.estimator.estimate_conversation(conversation.messages)
            span.set_attribute("compression.original_messages", total)
            span.set_attribute("compression.original_tokens", tokens)

            self.logger.info(
                f"[CompressionPolicy] Context analysis: {total} messages, ~{tokens} tokens"
            )

            count_overflow = total > self.config.max_context_messages
            if not count_overflow and tokens < self.config.emergency_token_limit:
                self.logger.debug(
                    "[CompressionPolicy] Under limits, no compression needed"
                )
                span.set_attribute("compression.strategy", CompressionStrategy.NONE.value)
                return CompressionResult(
                    messages=list(conversation.messages),
                    stats=CompressionStats(
                        strategy=CompressionStrategy.NONE,
                        original_messages=total,
                        compressed_messages=total,
                        original_tokens=tokens,
                        compressed_tokens=tokens,
                    ),
                    system_index=conversation.system_index,
                )

            recent, older = self._split(conversation.turns)
            strategy = self.choose_strategy(total, len(older), count_overflow)
            summaries: List[SummaryResult] = []

            if not older:
                body = list(recent)
            elif strategy == CompressionStrategy.TRIM:
                has_system = conversation.system is not None or reserve_system
                keep = self.config.max_context_messages - (1 if has_system else 0)
                body = list(conversation.turns[-keep:])
            elif strategy == CompressionStrategy.AGGRESSIVE:
                summary_message, summaries = await self._aggressive_summary(
                    older, access_token
                )
                body = [summary_message] + list(recent)
            else:
                summary_message, summaries = await self._standard_summary(
                    older, access_token
                )
                body = [summary_message] + list(recent)

            result_messages: List[Message] = []
            system_index = None
            if conversation.system is not None:
                result_messages.append(conversation.system)
                system_index = 0
            result_messages.extend(body)

            compressed_tokens = self.estimator.estimate_conversation(result_messages)
            stats = CompressionStats(
                strategy=strategy if older else CompressionStrategy.TRIM,
                original_messages=total,
                compressed_messages=len(result_messages),
                original_tokens=tokens,
                compressed_tokens=compressed_tokens,
                summarized_messages=sum(s.message_count for s in summaries),
                chunks=len(summaries),
                fallback_chunks=sum(1 for s in summaries if s.is_fallback),
            )
            self.logger.info(f"[CompressionPolicy] {stats.summary()}")
            span.set_attribute("compression.strategy", stats.strategy.value)
            span.set_attribute("compression.compressed_messages", len(result_messages))
            span.set_attribute("compression.compressed_tokens", compressed_tokens)
            span.set_attribute("compression.chunks", stats.chunks)
            span.set_attribute("compression.fallback_chunks", stats.fallback_chunks)

            return CompressionResult(
                messages=result_messages,
                stats=stats,
                system_index=system_index,
                summaries=summaries,
            )

    def _split(
        self, turns: Sequence[Message]
    ) -> Tuple[List[Message], List[Message]]:
        keep = self.config.preserve_recent_messages
        recent = list(turns[-keep:])
        older = list(turns[: max(0, len(turns) - keep)])
        self.logger.debug(
            f"[CompressionPolicy] Preserving {len(recent)} recent messages, "
            f"{len(older)} older messages eligible for compression"
        )
        return recent, older

    async def _standard_summary(
        self, older: List[Message], access_token: Optional[str]
    ) -> Tuple[Message, List[SummaryResult]]:
        result = await self.summarizer.summarize(older, 1, 1, access_token)
        content = f"[Summary of {len(older)} earlier messages]\n{result.text}"
        return Message(role=MessageRole.SYSTEM, content=content), [result]

    async def _aggressive_summary(
        self, older: List[Message], access_token: Optional[str]
    ) -> Tuple[Message, List[SummaryResult]]:
        chunks = chunk_messages(older, self.config.chunk_size)
        total_chunks = len(chunks)
        self.logger.info(
            f"[CompressionPolicy] Aggressive compression: {len(older)} messages "
            f"in {total_chunks} chunks of up to {self.config.chunk_size}"
        )
        # Each summarize call resolves to a real or fallback summary on its
        # own, so the join never raises except on cancellation.
        results = await asyncio.gather(
            *(
                self.summarizer.summarize(chunk, index, total_chunks, access_token)
                for index, chunk in enumerate(chunks, start=1)
            )
        )
        sections = "\n\n".join(
            f"[Section {r.chunk_index}/{r.total_chunks}]\n{r.text}" for r in results
        )
        content = (
            f"[{len(older)} earlier messages compressed into "
            f"{total_chunks} sections]\n\n{sections}"
        )
        return Message(role=MessageRole.SYSTEM, content=content), list(results)
