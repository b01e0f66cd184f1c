"""
Maps external (OpenAI-style) model identifiers to upstream model identifiers.

Resolution order:
1. the static mapping table
2. optionally, a probe asking the upstream whether it accepts the id as-is
3. a tiered heuristic keyed on hints in the id, then the default model
"""

import logging
from typing import Mapping, Optional, Sequence, Tuple

from opentelemetry import trace

from context_proxy.clients.llm_client import LLMClient

logger = logging.getLogger("uvicorn.error")
tracer = trace.get_tracer(__name__)

# First matching tier wins; hints are matched as lowercase substrings.
HEURISTIC_TIERS: Sequence[Tuple[Tuple[str, ...], str]] = (
    (("reason", "-r1", "think"), "deepseek-ai/deepseek-r1"),
    (("32b", "34b", "medium", "sonnet"), "deepseek-ai/deepseek-r1-distill-qwen-32b"),
    (("14b", "13b"), "deepseek-ai/deepseek-r1-distill-qwen-14b"),
    (("8b", "7b", "mini", "small", "haiku", "flash", "3.5-turbo"), "deepseek-ai/deepseek-r1-distill-qwen-7b"),
    (("405b", "70b", "72b", "large", "opus", "ultra", "gpt-4"), "deepseek-ai/deepseek-v3.1"),
    (("llama", "meta"), "meta/llama-3.1-70b-instruct"),
    (("qwen",), "qwen/qwen2.5-coder-32b-instruct"),
    (("mistral", "mixtral"), "mistralai/mixtral-8x22b-instruct-v0.1"),
)


def heuristic_model(external_id: str, default_model: str) -> str:
    lowered = external_id.lower()
    for hints, model in HEURISTIC_TIERS:
        if any(hint in lowered for hint in hints):
            return model
    return default_model


class ModelResolver:
    def __init__(
        self,
        mapping: Mapping[str, str],
        default_model: str,
        llm_client: Optional[LLMClient] = None,
        probe_unknown: bool = True,
    ):
        self.logger = logger
        self.mapping = dict(mapping)
        self.default_model = default_model
        self.llm_client = llm_client
        self.probe_unknown = probe_unknown

    def external_models(self) -> list:
        return list(self.mapping.keys())

    async def resolve(
        self, external_id: Optional[str], access_token: Optional[str] = None
    ) -> str:
        with tracer.start_as_current_span("resolve_model") as span:
            span.set_attribute("model.external", external_id or "")

            if not external_id:
                span.set_attribute("model.source", "default")
                return self.default_model

            mapped = self.mapping.get(external_id)
            if mapped:
                span.set_attribute("model.source", "mapping")
                span.set_attribute("model.internal", mapped)
                return mapped

            if self.probe_unknown and self.llm_client is not None:
                if await self.llm_client.probe_model(external_id, access_token):
                    self.logger.info(
                        f"[ModelResolver] Upstream accepts '{external_id}' directly"
                    )
                    span.set_attribute("model.source", "probe")
                    span.set_attribute("model.internal", external_id)
                    return external_id

            resolved = heuristic_model(external_id, self.default_model)
            self.logger.info(
                f"[ModelResolver] '{external_id}' not mapped, using heuristic choice '{resolved}'"
            )
            span.set_attribute("model.source", "heuristic")
            span.set_attribute("model.internal", resolved)
            return resolved
