"""
Format enforcement for role-play conversations.

When recent user turns mix *asterisk actions* with "quoted dialogue", a
steering instruction is appended to the system prompt so the model answers
in the same convention.
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence

from context_proxy.compression.token_estimator import content_as_text
from context_proxy.config import FormatStrictness
from context_proxy.models import Message, MessageRole

logger = logging.getLogger("uvicorn.error")

ACTION_PATTERN = re.compile(r"\*[^*]+\*")
DIALOGUE_PATTERN = re.compile(r'"[^"]+"')

DEFAULT_SYSTEM_PROMPT = "You are a creative writing assistant."

STRICTNESS_PREFIX = {
    FormatStrictness.LOW: "Try to match",
    FormatStrictness.MEDIUM: "Please match",
    FormatStrictness.HIGH: "You MUST strictly match",
}


@dataclass(frozen=True)
class StyleProfile:
    uses_convention: bool = False
    example: str = ""


def _example_line(text: str) -> str:
    for line in text.split("\n"):
        if "*" in line and '"' in line:
            return line.strip()
    return ""


def detect_style(messages: Sequence[Message], window: int = 5) -> StyleProfile:
    """Scan the last ``window`` user turns for the action/dialogue convention."""
    user_turns = [m for m in messages if m.role == MessageRole.USER][-window:]
    for message in user_turns:
        text = content_as_text(message.content)
        if ACTION_PATTERN.search(text) and DIALOGUE_PATTERN.search(text):
            return StyleProfile(uses_convention=True, example=_example_line(text))
    return StyleProfile()


def build_instruction(style: StyleProfile, strictness: FormatStrictness) -> str:
    if not style.uses_convention:
        return ""

    prefix = STRICTNESS_PREFIX.get(strictness, STRICTNESS_PREFIX[FormatStrictness.MEDIUM])
    parts = [
        "\n\n[CRITICAL FORMATTING REQUIREMENT]:",
        f"{prefix} this exact writing style:",
        "• Actions/descriptions: *Use asterisks* like this: *character leans forward*",
        '• Dialogue: "Use quotation marks" like this: "Hello there"',
        '• Mix them naturally: *Sarah smiles.* "I\'ve been waiting for you." '
        "*She gestures to a chair.*",
    ]
    if style.example:
        parts.append(f"\nUser's style example:\n{style.example}")
    if strictness == FormatStrictness.HIGH:
        parts.extend(
            [
                "\n❌ DO NOT use these formats:",
                "- Plain prose without asterisks",
                "- (Parentheses for actions)",
                "- Mixed formats or inconsistent styling",
                '\n✅ ALWAYS use *asterisks* for actions and "quotes" for dialogue '
                "throughout your entire response.",
            ]
        )
    return "\n".join(parts) + "\n"


def apply_instruction(
    messages: Sequence[Message],
    instruction: str,
    system_index: Optional[int] = None,
) -> List[Message]:
    """
    Append ``instruction`` to the pinned system message at ``system_index``,
    or prepend a new system message when there is none. Returns a new list.
    """
    result = list(messages)
    if not instruction:
        return result

    if system_index is not None and 0 <= system_index < len(result):
        pinned = result[system_index]
        result[system_index] = pinned.model_copy(
            update={"content": content_as_text(pinned.content) + instruction}
        )
    else:
        result.insert(
            0,
            Message(
                role=MessageRole.SYSTEM, content=f"{DEFAULT_SYSTEM_PROMPT}{instruction}"
            ),
        )
    return result


class StyleAdapter:
    """Detects the user's formatting convention and steers the model toward it."""

    def __init__(self, strictness: FormatStrictness, window: int = 5):
        self.logger = logger
        self.strictness = strictness
        self.window = window

    def instruction_for(self, messages: Sequence[Message]) -> str:
        style = detect_style(messages, self.window)
        if not style.uses_convention:
            return ""
        self.logger.info(
            f"[StyleAdapter] Format enforcement active ({self.strictness.value})"
        )
        return build_instruction(style, self.strictness)
