from unittest.mock import AsyncMock, MagicMock

import pytest

from context_proxy.clients.llm_client import LLMClient
from context_proxy.transcoder.model_resolver import ModelResolver, heuristic_model

DEFAULT = "deepseek-ai/deepseek-v3.1"


@pytest.fixture
def mock_llm_client():
    client = MagicMock(spec=LLMClient)
    client.probe_model = AsyncMock(return_value=False)
    return client


@pytest.mark.parametrize(
    "external_id,expected",
    [
        ("o1-reasoning", "deepseek-ai/deepseek-r1"),
        ("claude-3-sonnet", "deepseek-ai/deepseek-r1-distill-qwen-32b"),
        ("some-14b-chat", "deepseek-ai/deepseek-r1-distill-qwen-14b"),
        ("gpt-4o-mini", "deepseek-ai/deepseek-r1-distill-qwen-7b"),
        ("gemini-flash", "deepseek-ai/deepseek-r1-distill-qwen-7b"),
        ("gpt-4-turbo", "deepseek-ai/deepseek-v3.1"),
        ("Llama-Custom", "meta/llama-3.1-70b-instruct"),
        ("totally-unknown", DEFAULT),
    ],
)
def test_heuristic_tiers(external_id, expected):
    assert heuristic_model(external_id, DEFAULT) == expected


def test_external_models_lists_mapping_keys():
    resolver = ModelResolver({"gpt-4": "a", "gpt-3.5-turbo": "b"}, DEFAULT)
    assert resolver.external_models() == ["gpt-4", "gpt-3.5-turbo"]


@pytest.mark.asyncio
async def test_missing_model_uses_default(mock_llm_client):
    resolver = ModelResolver({}, DEFAULT, mock_llm_client)

    assert await resolver.resolve(None) == DEFAULT
    mock_llm_client.probe_model.assert_not_called()


@pytest.mark.asyncio
async def test_mapping_wins_without_probe(mock_llm_client):
    resolver = ModelResolver({"gpt-4": "deepseek-ai/deepseek-r1"}, DEFAULT, mock_llm_client)

    assert await resolver.resolve("gpt-4") == "deepseek-ai/deepseek-r1"
    mock_llm_client.probe_model.assert_not_called()


@pytest.mark.asyncio
async def test_accepted_probe_passes_id_through(mock_llm_client):
    mock_llm_client.probe_model.return_value = True
    resolver = ModelResolver({}, DEFAULT, mock_llm_client)

    assert await resolver.resolve("nvidia/custom-model", "tok") == "nvidia/custom-model"
    mock_llm_client.probe_model.assert_awaited_once_with("nvidia/custom-model", "tok")


@pytest.mark.asyncio
async def test_rejected_probe_falls_back_to_heuristic(mock_llm_client):
    resolver = ModelResolver({}, DEFAULT, mock_llm_client)

    assert await resolver.resolve("my-70b-model") == "deepseek-ai/deepseek-v3.1"
    mock_llm_client.probe_model.assert_awaited_once()


@pytest.mark.asyncio
async def test_probe_disabled(mock_llm_client):
    resolver = ModelResolver({}, DEFAULT, mock_llm_client, probe_unknown=False)

    assert await resolver.resolve("claude-3-haiku") == (
        "deepseek-ai/deepseek-r1-distill-qwen-7b"
    )
    mock_llm_client.probe_model.assert_not_called()
