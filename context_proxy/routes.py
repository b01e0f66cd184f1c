import logging
import time
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from opentelemetry import trace

from context_proxy.models import ChatCompletionRequest, ModelCard, ModelList
from context_proxy.services.chat_service import ChatCompletionService
from context_proxy.utils.exception_logging import (
    find_exception_in_exception_groups,
    log_exception_with_details,
)
from context_proxy.utils.traced_requests import traced_request

router = APIRouter()
tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return authorization.strip() or None


def _chat_service(request: Request) -> ChatCompletionService:
    return request.app.state.chat_service


@router.get("/health")
async def health(request: Request):
    config = _chat_service(request).config
    return {
        "status": "ok",
        "service": config.service_name,
        **config.health_flags(),
    }


@router.get("/v1/models")
async def list_models(request: Request) -> ModelList:
    resolver = _chat_service(request).model_resolver
    created = int(time.time())
    return ModelList(
        data=[ModelCard(id=model, created=created) for model in resolver.external_models()]
    )


@router.post("/v1/chat/completions")
async def chat_completions(
    request: Request,
    chat_request: ChatCompletionRequest,
    authorization: Optional[str] = Header(None),
):
    """
    OpenAI-compatible chat completions endpoint with context compression.
    """
    access_token = _bearer_token(authorization)
    service = _chat_service(request)
    try:
        with traced_request(
            tracer=tracer,
            operation="chat_completions",
            start_message=f"[Proxy] New request: {chat_request.model} | "
            f"{len(chat_request.messages)} messages | stream={bool(chat_request.stream)}",
            credential=access_token,
            extra_attrs={
                "chat.model": chat_request.model or "",
                "chat.streaming": bool(chat_request.stream),
                "chat.messages_count": len(chat_request.messages),
            },
        ):
            result = await service.chat_completion(chat_request, access_token)

        if hasattr(result, "__aiter__"):
            return StreamingResponse(
                result,
                media_type="text/event-stream",
                headers={
                    "Cache-Control": "no-cache",
                    "Connection": "keep-alive",
                    "X-Accel-Buffering": "no",
                },
            )
        return JSONResponse(content=result.model_dump(mode="json", exclude_none=True))

    except HTTPException:
        raise
    except Exception as e:
        log_exception_with_details(logger, "[Proxy]", e)
        child_http_exception = find_exception_in_exception_groups(e, HTTPException)
        if child_http_exception:
            raise child_http_exception
        raise HTTPException(status_code=500, detail=f"Internal server error: {e}")
