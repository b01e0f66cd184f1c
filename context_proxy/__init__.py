"""OpenAI-compatible proxy with context compression for long conversations."""

__version__ = "0.3.0"
