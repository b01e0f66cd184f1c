"""
Client for the upstream OpenAI-shaped inference API.
"""

import asyncio
import json
import logging
from typing import AsyncGenerator, Optional

import aiohttp
from fastapi import HTTPException
from opentelemetry import trace

from context_proxy.config import ProxyConfig
from context_proxy.models import Message, MessageRole, UpstreamChatRequest
from context_proxy.utils import mask_token

logger = logging.getLogger("uvicorn.error")
tracer = trace.get_tracer(__name__)


class UpstreamStream:
    """
    An open streaming response from the upstream API.

    Owns its HTTP session; ``close`` must be called once the stream has been
    consumed or abandoned.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        response: aiohttp.ClientResponse,
    ):
        self.session = session
        self.response = response
        self.closed = False

    async def lines(self) -> AsyncGenerator[str, None]:
        """Yield decoded lines one at a time as they arrive."""
        async for raw_line in self.response.content:
            line = raw_line.decode("utf-8").rstrip("\r\n")
            if line:
                yield line

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self.response.release()
        finally:
            await self.session.close()


class LLMClient:
    """Client for communicating with the upstream completion API."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout_seconds: float = 300.0,
        probe_timeout_seconds: float = 10.0,
    ):
        self.logger = logger
        # Strip the trailing slash for consistent URL building
        self.base_url = base_url[:-1] if base_url.endswith("/") else base_url
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.probe_timeout_seconds = probe_timeout_seconds

        self.logger.info(f"[LLMClient] Initialized with URL: {self.base_url}")
        if self.api_key:
            self.logger.info(
                mask_token(
                    f"[LLMClient] Using API key: {self.api_key[:10]}...",
                    self.api_key[:10],
                )
            )
        else:
            self.logger.info(
                "[LLMClient] No API key configured, forwarding caller credentials"
            )

    @classmethod
    def from_config(cls, config: ProxyConfig) -> "LLMClient":
        return cls(
            base_url=config.upstream_base_url,
            api_key=config.upstream_api_key,
            timeout_seconds=config.upstream_timeout_seconds,
            probe_timeout_seconds=config.probe_timeout_seconds,
        )

    @property
    def completions_url(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _get_headers(self, access_token: Optional[str] = None) -> dict[str, str]:
        """Get headers for API requests."""
        headers = {
            "Content-Type": "application/json",
            "User-Agent": "nim-context-proxy/1.0",
        }
        token = self.api_key or access_token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _serialize_payload(self, request: UpstreamChatRequest) -> str:
        payload = request.model_dump(mode="json", exclude_none=True)
        return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))

    def _timeout(self, seconds: Optional[float] = None) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=seconds or self.timeout_seconds)

    async def _raise_for_status(self, response: aiohttp.ClientResponse, span) -> None:
        if response.ok:
            return
        error_text = await response.text()
        error_msg = f"Upstream API error: {response.status} {error_text}"
        self.logger.error(f"[LLMClient] {error_msg}")
        if response.status == 413 or "too large" in error_text.lower():
            self.logger.error(
                "[LLMClient] Payload too large, try lowering MAX_CONTEXT_MESSAGES "
                "or PRESERVE_RECENT_MESSAGES"
            )
        if span is not None:
            span.set_attribute("error", True)
            span.set_attribute("error.message", error_msg)
        raise HTTPException(status_code=response.status, detail=error_msg)

    async def non_stream_completion(
        self,
        request: UpstreamChatRequest,
        access_token: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ) -> dict:
        """Get a non-streaming completion; returns the upstream JSON body."""
        with tracer.start_as_current_span("non_stream_llm_completion") as span:
            span.set_attribute("llm.url", self.base_url)
            span.set_attribute("llm.model", request.model)
            span.set_attribute("llm.messages", len(request.messages))

            serialized_payload = self._serialize_payload(
                request.model_copy(update={"stream": False})
            )
            try:
                async with aiohttp.ClientSession(
                    timeout=self._timeout(timeout_seconds)
                ) as session:
                    async with session.post(
                        self.completions_url,
                        headers=self._get_headers(access_token),
                        data=serialized_payload,
                    ) as response:
                        await self._raise_for_status(response, span)
                        return await response.json()
            except HTTPException:
                raise
            except Exception as e:
                error_msg = f"Error calling upstream API: {str(e) or type(e).__name__}"
                self.logger.error(f"[LLMClient] {error_msg}", exc_info=True)
                span.set_attribute("error", True)
                span.set_attribute("error.message", error_msg)
                raise HTTPException(status_code=500, detail=error_msg)

    async def open_stream(
        self,
        request: UpstreamChatRequest,
        access_token: Optional[str] = None,
    ) -> UpstreamStream:
        """
        Start a streaming completion.

        Status errors are raised here, before any byte is relayed, so the
        caller can still answer with the upstream status code.
        """
        with tracer.start_as_current_span("open_llm_stream") as span:
            span.set_attribute("llm.url", self.base_url)
            span.set_attribute("llm.model", request.model)

            serialized_payload = self._serialize_payload(
                request.model_copy(update={"stream": True})
            )
            session = aiohttp.ClientSession(timeout=self._timeout())
            try:
                response = await session.post(
                    self.completions_url,
                    headers=self._get_headers(access_token),
                    data=serialized_payload,
                )
                self.logger.debug(
                    f"[LLMClient] Stream opened, status={response.status}"
                )
                try:
                    await self._raise_for_status(response, span)
                except BaseException:
                    response.release()
                    raise
            except HTTPException:
                await session.close()
                raise
            except asyncio.CancelledError:
                await session.close()
                raise
            except Exception as e:
                await session.close()
                error_msg = f"Error opening upstream stream: {str(e) or type(e).__name__}"
                self.logger.error(f"[LLMClient] {error_msg}", exc_info=True)
                span.set_attribute("error", True)
                span.set_attribute("error.message", error_msg)
                raise HTTPException(status_code=500, detail=error_msg)

            return UpstreamStream(session, response)

    async def probe_model(
        self, model_id: str, access_token: Optional[str] = None
    ) -> bool:
        """Check whether the upstream accepts ``model_id`` with a 1-token request."""
        request = UpstreamChatRequest(
            model=model_id,
            messages=[Message(role=MessageRole.USER, content="ping")],
            temperature=0.0,
            max_tokens=1,
        )
        try:
            await self.non_stream_completion(
                request, access_token, timeout_seconds=self.probe_timeout_seconds
            )
        except HTTPException as e:
            self.logger.debug(
                f"[LLMClient] Probe for model '{model_id}' rejected: {e.status_code}"
            )
            return False
        return True
