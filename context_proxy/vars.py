import json
import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "nim-context-proxy")
HOST = os.environ.get("HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "3000"))

NIM_API_BASE = os.getenv("NIM_API_BASE", "https://integrate.api.nvidia.com/v1")
NIM_API_KEY = os.getenv("NIM_API_KEY", "")

DEFAULT_MODEL = os.getenv("DEFAULT_MODEL", "deepseek-ai/deepseek-v3.1")
PROBE_UNKNOWN_MODELS = os.getenv("PROBE_UNKNOWN_MODELS", "true").lower() == "true"
SHOW_REASONING = os.getenv("SHOW_REASONING", "false").lower() == "true"

DEFAULT_TEMPERATURE = float(os.getenv("DEFAULT_TEMPERATURE", "0.7"))
DEFAULT_MAX_TOKENS = int(os.getenv("DEFAULT_MAX_TOKENS", "4096"))
UPSTREAM_TIMEOUT_SECONDS = float(os.getenv("UPSTREAM_TIMEOUT_SECONDS", "300"))
PROBE_TIMEOUT_SECONDS = float(os.getenv("PROBE_TIMEOUT_SECONDS", "10"))

# Context compression
MAX_CONTEXT_MESSAGES = int(os.getenv("MAX_CONTEXT_MESSAGES", "30"))
PRESERVE_RECENT_MESSAGES = int(os.getenv("PRESERVE_RECENT_MESSAGES", "20"))
PRESERVE_SYSTEM_PROMPT = os.getenv("PRESERVE_SYSTEM_PROMPT", "true").lower() == "true"
SUMMARIZATION_TRIGGER = int(os.getenv("SUMMARIZATION_TRIGGER", "10"))
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", "30"))
AGGRESSIVE_THRESHOLD = int(os.getenv("AGGRESSIVE_THRESHOLD", "100"))
EMERGENCY_TOKEN_LIMIT = int(os.getenv("EMERGENCY_TOKEN_LIMIT", "50000"))
SMART_COMPRESSION = os.getenv("SMART_COMPRESSION", "true").lower() == "true"
SUMMARY_MODEL = os.getenv(
    "SUMMARY_MODEL", "deepseek-ai/deepseek-r1-distill-qwen-7b"
)
SUMMARY_MAX_TOKENS = int(os.getenv("SUMMARY_MAX_TOKENS", "400"))
SUMMARY_TIMEOUT_SECONDS = float(os.getenv("SUMMARY_TIMEOUT_SECONDS", "15"))

# Format enforcement
ENFORCE_FORMAT = os.getenv("ENFORCE_FORMAT", "true").lower() == "true"
FORMAT_STRICTNESS = os.getenv("FORMAT_STRICTNESS", "high").lower()

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")

DEFAULT_MODEL_MAPPING = {
    "gpt-3.5-turbo": "deepseek-ai/deepseek-r1-distill-qwen-7b",
    "gpt-4": "deepseek-ai/deepseek-v3.1",
    "gpt-4-turbo": "deepseek-ai/deepseek-v3.1",
    "gpt-4o": "deepseek-ai/deepseek-v3.1",
    "claude-3-opus": "deepseek-ai/deepseek-r1-distill-qwen-32b",
    "claude-3-sonnet": "deepseek-ai/deepseek-r1-distill-qwen-14b",
    "gemini-pro": "deepseek-ai/deepseek-r1-distill-qwen-7b",
}


def _parse_model_mapping(raw: str) -> dict:
    """Parse a JSON object of external -> upstream ids, merged over the defaults."""
    mapping = dict(DEFAULT_MODEL_MAPPING)
    if not raw:
        return mapping
    try:
        overrides = json.loads(raw)
    except json.JSONDecodeError:
        return mapping
    if isinstance(overrides, dict):
        for key, val in overrides.items():
            if isinstance(key, str) and isinstance(val, str) and key and val:
                mapping[key.strip()] = val.strip()
    return mapping


MODEL_MAPPING = _parse_model_mapping(os.getenv("MODEL_MAPPING", ""))
