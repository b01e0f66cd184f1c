from context_proxy.formatting.style_adapter import (
    StyleAdapter,
    StyleProfile,
    apply_instruction,
    build_instruction,
    detect_style,
)

__all__ = [
    "StyleAdapter",
    "StyleProfile",
    "apply_instruction",
    "build_instruction",
    "detect_style",
]
