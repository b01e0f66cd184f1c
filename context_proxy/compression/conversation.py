"""
Conversation view with an explicit pinned system slot.

The first ``system`` message of a request is the pinned system prompt. Any
later ``system`` messages are treated as ordinary turns: they are neither
moved to the front nor protected from summarization.
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from context_proxy.models import Message, MessageRole


@dataclass(frozen=True)
class Conversation:
    messages: Tuple[Message, ...]
    system: Optional[Message] = None
    system_index: Optional[int] = None

    @classmethod
    def from_messages(
        cls, messages: Sequence[Message], pin_system: bool = True
    ) -> "Conversation":
        messages = tuple(messages)
        if pin_system:
            for idx, message in enumerate(messages):
                if message.role == MessageRole.SYSTEM:
                    return cls(messages=messages, system=message, system_index=idx)
        return cls(messages=messages)

    @property
    def turns(self) -> Tuple[Message, ...]:
        """Every message except the pinned system prompt, in order."""
        if self.system_index is None:
            return self.messages
        return (
            self.messages[: self.system_index] + self.messages[self.system_index + 1 :]
        )

    def __len__(self) -> int:
        return len(self.messages)
