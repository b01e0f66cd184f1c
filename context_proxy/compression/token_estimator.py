"""
Heuristic token estimation.

The estimate is intentionally approximate (about four characters per token)
and is only used to decide when compression is warranted. Callers depend on
the ``TokenEstimator`` interface so an exact tokenizer can be dropped in.
"""

import json
import math
from abc import ABC, abstractmethod
from typing import Any, Iterable, Optional

from context_proxy.models import Message


def content_as_text(content: Any) -> str:
    """Render message content as text, serializing structured parts as JSON."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    try:
        return json.dumps(content, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(content)


class TokenEstimator(ABC):
    @abstractmethod
    def estimate(self, text: Optional[str]) -> int:
        """Approximate token count of a piece of text."""

    def estimate_message(self, message: Message) -> int:
        return self.estimate(content_as_text(message.content))

    def estimate_conversation(self, messages: Iterable[Message]) -> int:
        return sum(self.estimate_message(m) for m in messages)


class CharacterRatioEstimator(TokenEstimator):
    """ceil(len(text) / chars_per_token); empty text is zero tokens."""

    def __init__(self, chars_per_token: int = 4):
        if chars_per_token <= 0:
            raise ValueError("chars_per_token must be positive")
        self.chars_per_token = chars_per_token

    def estimate(self, text: Optional[str]) -> int:
        if not text:
            return 0
        return math.ceil(len(text) / self.chars_per_token)


default_estimator = CharacterRatioEstimator()


def estimate_tokens(text: Optional[str]) -> int:
    return default_estimator.estimate(text)


def estimate_conversation_tokens(messages: Iterable[Message]) -> int:
    return default_estimator.estimate_conversation(messages)
