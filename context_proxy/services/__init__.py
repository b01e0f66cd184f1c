from context_proxy.services.chat_service import ChatCompletionService, PreparedRequest

__all__ = ["ChatCompletionService", "PreparedRequest"]
