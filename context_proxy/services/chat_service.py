import logging
from dataclasses import dataclass
from typing import AsyncGenerator, Optional, Union

from opentelemetry import trace

from context_proxy.clients.llm_client import LLMClient
from context_proxy.compression.chunk_summarizer import ChunkSummarizer
from context_proxy.compression.policy import CompressionPolicy, CompressionResult
from context_proxy.config import ProxyConfig
from context_proxy.formatting.style_adapter import StyleAdapter, apply_instruction
from context_proxy.models import (
    ChatCompletionRequest,
    ChatCompletionResponse,
    UpstreamChatRequest,
)
from context_proxy.transcoder.model_resolver import ModelResolver
from context_proxy.transcoder.stream_relay import StreamRelay
from context_proxy.transcoder.transcoder import (
    to_external_response,
    to_upstream_request,
)

logger = logging.getLogger("uvicorn.error")
tracer = trace.get_tracer(__name__)


@dataclass
class PreparedRequest:
    upstream: UpstreamChatRequest
    external_model: str
    compression: CompressionResult
    format_enforced: bool = False


class ChatCompletionService:
    """Compresses, steers and forwards one chat completion request."""

    def __init__(self, config: ProxyConfig, llm_client: Optional[LLMClient] = None):
        self.logger = logger
        self.config = config
        self.llm_client = llm_client or LLMClient.from_config(config)
        self.policy = CompressionPolicy(
            config.compression, ChunkSummarizer(self.llm_client, config.compression)
        )
        self.style_adapter = (
            StyleAdapter(config.style.strictness, config.style.window)
            if config.style.enforce_format
            else None
        )
        self.model_resolver = ModelResolver(
            mapping=config.model_mapping,
            default_model=config.default_model,
            llm_client=self.llm_client,
            probe_unknown=config.probe_unknown_models,
        )

    async def prepare(
        self, request: ChatCompletionRequest, access_token: Optional[str] = None
    ) -> PreparedRequest:
        with tracer.start_as_current_span("prepare_request") as span:
            instruction = ""
            if self.style_adapter is not None:
                instruction = self.style_adapter.instruction_for(request.messages)

            compression = await self.policy.compress(
                request.messages, access_token, reserve_system=bool(instruction)
            )
            messages = apply_instruction(
                compression.messages, instruction, compression.system_index
            )

            internal_model = await self.model_resolver.resolve(
                request.model, access_token
            )
            self.logger.info(f"[ChatService] Using upstream model: {internal_model}")

            span.set_attribute("chat.format_enforced", bool(instruction))
            span.set_attribute("chat.upstream_model", internal_model)
            span.set_attribute("chat.forwarded_messages", len(messages))

            return PreparedRequest(
                upstream=to_upstream_request(
                    request, messages, internal_model, self.config
                ),
                external_model=request.model or internal_model,
                compression=compression,
                format_enforced=bool(instruction),
            )

    async def chat_completion(
        self, request: ChatCompletionRequest, access_token: Optional[str] = None
    ) -> Union[ChatCompletionResponse, AsyncGenerator[str, None]]:
        """
        Run a chat completion against the upstream.

        Returns the reshaped response, or for streaming requests an async
        generator of SSE frames. Upstream failures raise HTTPException with the
        upstream status code.
        """
        prepared = await self.prepare(request, access_token)

        if prepared.upstream.stream:
            stream = await self.llm_client.open_stream(prepared.upstream, access_token)
            relay = StreamRelay(prepared.external_model, self.config.show_reasoning)
            return relay.relay(stream)

        upstream_response = await self.llm_client.non_stream_completion(
            prepared.upstream, access_token
        )
        self.logger.info("[ChatService] Request completed")
        return to_external_response(
            upstream_response, prepared.external_model, self.config.show_reasoning
        )
