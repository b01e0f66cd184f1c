import logging
from typing import Optional, Sequence

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SpanExporter,
    SpanExportResult,
)
from prometheus_client import Info
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.exceptions import HTTPException as StarletteHTTPException

from context_proxy.clients.llm_client import LLMClient
from context_proxy.config import ProxyConfig
from context_proxy.models import ErrorDetail, ErrorResponse
from context_proxy.routes import router
from context_proxy.services.chat_service import ChatCompletionService
from context_proxy.vars import OTLP_ENDPOINT, OTLP_HEADERS, SERVICE_NAME

logger = logging.getLogger("uvicorn.error")


class StreamingBodySpanFilter(SpanExporter):
    """Drops the per-chunk ASGI body spans that streaming responses produce."""

    def __init__(self, exporter: SpanExporter):
        self.exporter = exporter

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        kept = [
            span
            for span in spans
            if not (
                span.attributes
                and span.attributes.get("asgi.event.type") == "http.response.body"
            )
        ]
        if kept:
            return self.exporter.export(kept)
        return SpanExportResult.SUCCESS

    def shutdown(self):
        return self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000):
        return self.exporter.force_flush(timeout_millis)


def configure_tracing() -> None:
    trace.set_tracer_provider(
        TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
    )
    if OTLP_ENDPOINT:
        exporter = OTLPSpanExporter(
            endpoint=OTLP_ENDPOINT,
            headers=(OTLP_HEADERS.split(",") if OTLP_HEADERS else None),
        )
        trace.get_tracer_provider().add_span_processor(
            BatchSpanProcessor(StreamingBodySpanFilter(exporter))
        )


configure_tracing()

app_info = Info("fastapi_app_info", "Application Info")
app_info.info({"app_name": SERVICE_NAME})


def _error_response(status_code: int, message: str) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(message=message, code=status_code))
    return JSONResponse(status_code=status_code, content=body.model_dump())


async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
    # Unknown paths and unsupported methods are both reported as not found
    if exc.status_code in (404, 405):
        return _error_response(404, f"Endpoint {request.url.path} not found")
    return _error_response(exc.status_code, str(exc.detail))


async def _validation_exception_handler(request: Request, exc: RequestValidationError):
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        problems.append(f"{location}: {error.get('msg')}" if location else error.get("msg"))
    message = "; ".join(problems) or "Invalid request"
    logger.warning(f"[Proxy] Rejected request: {message}")
    return _error_response(400, message)


async def _unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"[Proxy] Unhandled error: {exc}", exc_info=exc)
    return _error_response(500, str(exc) or "Internal server error")


def create_app(
    config: Optional[ProxyConfig] = None,
    llm_client: Optional[LLMClient] = None,
) -> FastAPI:
    config = config or ProxyConfig.from_env()
    application = FastAPI(title=config.service_name)
    application.state.chat_service = ChatCompletionService(config, llm_client)

    Instrumentator().instrument(application).expose(application)
    FastAPIInstrumentor.instrument_app(application)

    application.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    application.add_exception_handler(
        RequestValidationError, _validation_exception_handler
    )
    application.add_exception_handler(Exception, _unhandled_exception_handler)
    application.include_router(router)
    return application


app = create_app()
