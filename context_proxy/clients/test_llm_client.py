import json
from unittest.mock import patch

import aiohttp
import pytest
from fastapi import HTTPException

from context_proxy.clients.llm_client import LLMClient, UpstreamStream
from context_proxy.config import ProxyConfig
from context_proxy.models import Message, MessageRole, UpstreamChatRequest

SESSION_PATH = "context_proxy.clients.llm_client.aiohttp.ClientSession"


@pytest.fixture
def llm_client():
    return LLMClient("https://api.test-llm.com/v1/", api_key="nvapi-test-key-123")


@pytest.fixture
def request_model():
    return UpstreamChatRequest(
        model="deepseek-ai/deepseek-v3.1",
        messages=[Message(role=MessageRole.USER, content="Hello")],
        temperature=0.7,
        max_tokens=64,
    )


class MockContent:
    def __init__(self, chunks):
        self.chunks = chunks

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for chunk in self.chunks:
            yield chunk


class MockResponse:
    def __init__(self, status=200, body=None, text="", chunks=None):
        self.status = status
        self.ok = status < 400
        self.body = body
        self._text = text
        self.content = MockContent(chunks or [])
        self.released = False

    async def json(self):
        return self.body

    async def text(self):
        return self._text

    def release(self):
        self.released = True

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        pass


def session_class(response, calls=None, error=None):
    """Build a ClientSession stand-in that hands out ``response``."""

    class MockSession:
        instances = []

        def __init__(self, **kwargs):
            self.kwargs = kwargs
            self.closed = False
            MockSession.instances.append(self)

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc_val, exc_tb):
            self.closed = True

        async def close(self):
            self.closed = True

        def post(self, url, headers, data=None):
            if calls is not None:
                calls.append({"url": url, "headers": headers, "data": data})
            if error is not None:
                raise error
            return _Posted(response)

    return MockSession


class _Posted:
    """Usable both as ``async with session.post(...)`` and ``await session.post(...)``."""

    def __init__(self, response):
        self.response = response

    def __await__(self):
        async def resolve():
            return self.response

        return resolve().__await__()

    async def __aenter__(self):
        return self.response

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        pass


class TestLLMClient:
    def test_init_strips_trailing_slash(self, llm_client):
        assert llm_client.base_url == "https://api.test-llm.com/v1"
        assert llm_client.completions_url == "https://api.test-llm.com/v1/chat/completions"

    def test_from_config(self):
        client = LLMClient.from_config(
            ProxyConfig(upstream_base_url="http://nim.local/v1", upstream_timeout_seconds=42)
        )
        assert client.base_url == "http://nim.local/v1"
        assert client.timeout_seconds == 42

    def test_configured_key_wins_over_forwarded_token(self, llm_client):
        headers = llm_client._get_headers("caller-token")

        assert headers["Authorization"] == "Bearer nvapi-test-key-123"
        assert headers["Content-Type"] == "application/json"
        assert "User-Agent" in headers

    def test_forwards_caller_token_without_key(self):
        client = LLMClient("http://nim.local/v1")

        assert client._get_headers("caller-token")["Authorization"] == "Bearer caller-token"
        assert "Authorization" not in client._get_headers(None)

    def test_payload_omits_unset_fields(self, llm_client, request_model):
        payload = json.loads(llm_client._serialize_payload(request_model))

        assert payload["model"] == "deepseek-ai/deepseek-v3.1"
        assert payload["messages"] == [{"role": "user", "content": "Hello"}]
        assert "top_p" not in payload
        assert "stop" not in payload

    @pytest.mark.asyncio
    async def test_non_stream_completion_success(self, llm_client, request_model):
        body = {"id": "x", "choices": [{"message": {"content": "Hi"}}]}
        calls = []
        with patch(SESSION_PATH, session_class(MockResponse(body=body), calls)):
            result = await llm_client.non_stream_completion(request_model)

        assert result == body
        assert calls[0]["url"] == "https://api.test-llm.com/v1/chat/completions"
        assert json.loads(calls[0]["data"])["stream"] is False

    @pytest.mark.asyncio
    async def test_non_stream_completion_mirrors_upstream_status(
        self, llm_client, request_model
    ):
        response = MockResponse(status=429, text="rate limited")
        with patch(SESSION_PATH, session_class(response)):
            with pytest.raises(HTTPException) as exc_info:
                await llm_client.non_stream_completion(request_model)

        assert exc_info.value.status_code == 429
        assert "rate limited" in exc_info.value.detail

    @pytest.mark.asyncio
    async def test_non_stream_completion_connection_error_is_500(
        self, llm_client, request_model
    ):
        error = aiohttp.ClientConnectionError("connection refused")
        with patch(SESSION_PATH, session_class(None, error=error)):
            with pytest.raises(HTTPException) as exc_info:
                await llm_client.non_stream_completion(request_model)

        assert exc_info.value.status_code == 500
        assert "connection refused" in exc_info.value.detail

    @pytest.mark.asyncio
    async def test_open_stream_yields_lines(self, llm_client, request_model):
        response = MockResponse(
            chunks=[
                b'data: {"choices":[{"delta":{"content":"Hel"}}]}\n',
                b"\n",
                b"data: [DONE]\r\n",
            ]
        )
        calls = []
        session_cls = session_class(response, calls)
        with patch(SESSION_PATH, session_cls):
            stream = await llm_client.open_stream(request_model)

        lines = [line async for line in stream.lines()]
        await stream.close()

        assert lines == [
            'data: {"choices":[{"delta":{"content":"Hel"}}]}',
            "data: [DONE]",
        ]
        assert json.loads(calls[0]["data"])["stream"] is True
        assert response.released
        assert session_cls.instances[0].closed

    @pytest.mark.asyncio
    async def test_open_stream_error_status_closes_session(
        self, llm_client, request_model
    ):
        response = MockResponse(status=413, text="payload too large")
        session_cls = session_class(response)
        with patch(SESSION_PATH, session_cls):
            with pytest.raises(HTTPException) as exc_info:
                await llm_client.open_stream(request_model)

        assert exc_info.value.status_code == 413
        assert response.released
        assert session_cls.instances[0].closed

    @pytest.mark.asyncio
    async def test_probe_model(self, llm_client):
        with patch(SESSION_PATH, session_class(MockResponse(body={"choices": []}))):
            assert await llm_client.probe_model("meta/llama-3.1-8b-instruct")

        with patch(SESSION_PATH, session_class(MockResponse(status=404, text="no"))):
            assert not await llm_client.probe_model("made-up/model")


@pytest.mark.asyncio
async def test_upstream_stream_close_is_idempotent():
    response = MockResponse()
    session = session_class(response)()
    stream = UpstreamStream(session, response)

    await stream.close()
    await stream.close()

    assert stream.closed
    assert session.closed
