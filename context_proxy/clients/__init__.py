from context_proxy.clients.llm_client import LLMClient, UpstreamStream

__all__ = ["LLMClient", "UpstreamStream"]
