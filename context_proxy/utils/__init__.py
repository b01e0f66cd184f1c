from typing import Optional


def mask_token(text: str, token: Optional[str]) -> str:
    return text.replace(token, f"{token[:4]}****") if token else text


def preview(text: str, limit: int = 100) -> str:
    """Single-line, length-capped rendering of text for log lines."""
    flat = " ".join((text or "").split())
    return flat if len(flat) <= limit else f"{flat[:limit]}..."
