from context_proxy.transcoder.model_resolver import ModelResolver, heuristic_model
from context_proxy.transcoder.stream_relay import StreamRelay
from context_proxy.transcoder.transcoder import (
    create_completion_id,
    merge_reasoning,
    to_external_response,
    to_upstream_request,
)

__all__ = [
    "ModelResolver",
    "heuristic_model",
    "StreamRelay",
    "create_completion_id",
    "merge_reasoning",
    "to_external_response",
    "to_upstream_request",
]
