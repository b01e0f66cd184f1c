"""Context compression: token estimation, chunk summarization and the policy."""

from context_proxy.compression.chunk_summarizer import (
    ChunkSummarizer,
    SummaryKind,
    SummaryResult,
    fallback_summary,
)
from context_proxy.compression.conversation import Conversation
from context_proxy.compression.policy import (
    CompressionPolicy,
    CompressionResult,
    CompressionStats,
    CompressionStrategy,
)
from context_proxy.compression.token_estimator import (
    CharacterRatioEstimator,
    TokenEstimator,
    estimate_conversation_tokens,
    estimate_tokens,
)

__all__ = [
    "ChunkSummarizer",
    "SummaryKind",
    "SummaryResult",
    "fallback_summary",
    "Conversation",
    "CompressionPolicy",
    "CompressionResult",
    "CompressionStats",
    "CompressionStrategy",
    "CharacterRatioEstimator",
    "TokenEstimator",
    "estimate_conversation_tokens",
    "estimate_tokens",
]
