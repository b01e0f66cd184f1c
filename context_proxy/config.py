"""
Immutable runtime configuration.

Values are read from the environment once (see ``context_proxy.vars``) and
frozen into dataclasses that are passed explicitly to the services, so the
compression policy can be exercised with arbitrary settings in tests.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Mapping

from context_proxy import vars as env


class FormatStrictness(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def parse(cls, value: str) -> "FormatStrictness":
        try:
            return cls((value or "").lower())
        except ValueError:
            return cls.MEDIUM


@dataclass(frozen=True)
class CompressionConfig:
    """Tunables of the compression policy and chunk summarizer."""

    max_context_messages: int = 30
    preserve_recent_messages: int = 20
    preserve_system_prompt: bool = True
    summarization_trigger: int = 10
    chunk_size: int = 30
    aggressive_threshold: int = 100
    emergency_token_limit: int = 50000
    smart_compression: bool = True
    summary_model: str = "deepseek-ai/deepseek-r1-distill-qwen-7b"
    summary_max_tokens: int = 400
    summary_temperature: float = 0.3
    summary_timeout_seconds: float = 15.0
    summary_max_words: int = 300
    fallback_preview_chars: int = 100

    def __post_init__(self):
        for name in (
            "max_context_messages",
            "preserve_recent_messages",
            "chunk_size",
            "aggressive_threshold",
            "emergency_token_limit",
            "summary_max_tokens",
            "fallback_preview_chars",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.summarization_trigger < 0:
            raise ValueError("summarization_trigger must not be negative")
        if self.summary_timeout_seconds <= 0:
            raise ValueError("summary_timeout_seconds must be positive")
        # pinned system + one summary message + the preserved suffix
        if self.preserve_recent_messages + 2 > self.max_context_messages:
            raise ValueError(
                "max_context_messages must leave room for the system prompt and "
                f"a summary (got max={self.max_context_messages}, "
                f"preserve_recent={self.preserve_recent_messages})"
            )


@dataclass(frozen=True)
class StyleConfig:
    enforce_format: bool = True
    strictness: FormatStrictness = FormatStrictness.HIGH
    window: int = 5


@dataclass(frozen=True)
class ProxyConfig:
    """Process-wide settings, fixed at startup."""

    upstream_base_url: str = "https://integrate.api.nvidia.com/v1"
    upstream_api_key: str = ""
    service_name: str = "nim-context-proxy"
    host: str = "0.0.0.0"
    port: int = 3000
    default_model: str = "deepseek-ai/deepseek-v3.1"
    model_mapping: Mapping[str, str] = field(
        default_factory=lambda: dict(env.DEFAULT_MODEL_MAPPING)
    )
    probe_unknown_models: bool = True
    show_reasoning: bool = False
    default_temperature: float = 0.7
    default_max_tokens: int = 4096
    upstream_timeout_seconds: float = 300.0
    probe_timeout_seconds: float = 10.0
    compression: CompressionConfig = field(default_factory=CompressionConfig)
    style: StyleConfig = field(default_factory=StyleConfig)

    @classmethod
    def from_env(cls) -> "ProxyConfig":
        compression = CompressionConfig(
            max_context_messages=env.MAX_CONTEXT_MESSAGES,
            preserve_recent_messages=env.PRESERVE_RECENT_MESSAGES,
            preserve_system_prompt=env.PRESERVE_SYSTEM_PROMPT,
            summarization_trigger=env.SUMMARIZATION_TRIGGER,
            chunk_size=env.CHUNK_SIZE,
            aggressive_threshold=env.AGGRESSIVE_THRESHOLD,
            emergency_token_limit=env.EMERGENCY_TOKEN_LIMIT,
            smart_compression=env.SMART_COMPRESSION,
            summary_model=env.SUMMARY_MODEL,
            summary_max_tokens=env.SUMMARY_MAX_TOKENS,
            summary_timeout_seconds=env.SUMMARY_TIMEOUT_SECONDS,
        )
        style = StyleConfig(
            enforce_format=env.ENFORCE_FORMAT,
            strictness=FormatStrictness.parse(env.FORMAT_STRICTNESS),
        )
        return cls(
            upstream_base_url=env.NIM_API_BASE,
            upstream_api_key=env.NIM_API_KEY,
            service_name=env.SERVICE_NAME,
            host=env.HOST,
            port=env.PORT,
            default_model=env.DEFAULT_MODEL,
            model_mapping=dict(env.MODEL_MAPPING),
            probe_unknown_models=env.PROBE_UNKNOWN_MODELS,
            show_reasoning=env.SHOW_REASONING,
            default_temperature=env.DEFAULT_TEMPERATURE,
            default_max_tokens=env.DEFAULT_MAX_TOKENS,
            upstream_timeout_seconds=env.UPSTREAM_TIMEOUT_SECONDS,
            probe_timeout_seconds=env.PROBE_TIMEOUT_SECONDS,
            compression=compression,
            style=style,
        )

    def health_flags(self) -> Dict[str, object]:
        return {
            "format_enforcement": self.style.enforce_format,
            "format_strictness": self.style.strictness.value,
            "max_context_messages": self.compression.max_context_messages,
            "preserve_recent": self.compression.preserve_recent_messages,
            "smart_compression": self.compression.smart_compression,
            "show_reasoning": self.show_reasoning,
        }
