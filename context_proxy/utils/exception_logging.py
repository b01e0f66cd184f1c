"""
Helpers for logging exceptions and for locating HTTP errors inside
exception groups raised by concurrent upstream calls.
"""

import logging
from typing import Optional, Type, TypeVar

import aiohttp
from fastapi import HTTPException

E = TypeVar("E", bound=BaseException)


def _safe_str(obj) -> str:
    try:
        return str(obj)
    except Exception:
        try:
            return repr(obj)
        except Exception:
            return f"<{type(obj).__name__} object (string conversion failed)>"


def _sub_exceptions(exception: BaseException) -> list:
    try:
        return list(getattr(exception, "exceptions", None) or [])
    except Exception:
        return []


def _convert_upstream_status_error(
    exception: BaseException, target_type: type
) -> Optional[HTTPException]:
    """
    Turn an aiohttp status error into an HTTPException so the upstream status
    code reaches the client instead of a generic 500.
    """
    if target_type is not HTTPException:
        return None
    if not isinstance(exception, aiohttp.ClientResponseError):
        return None
    if not isinstance(exception.status, int) or exception.status < 400:
        return None
    return HTTPException(
        status_code=exception.status,
        detail=f"Upstream error: {exception.status} {exception.message}",
    )


def find_exception_in_exception_groups(
    exception: BaseException, target_type: Type[E]
) -> Optional[E]:
    """
    Recursively search an exception and its sub-exceptions for one of the
    target type. Returns the first match or None.
    """
    if isinstance(exception, target_type):
        return exception

    converted = _convert_upstream_status_error(exception, target_type)
    if converted is not None:
        return converted

    for sub_exc in _sub_exceptions(exception):
        found = find_exception_in_exception_groups(sub_exc, target_type)
        if found is not None:
            return found
    return None


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: BaseException,
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception, expanding exception groups into one line per
    sub-exception. Never raises.
    """
    try:
        sub_exceptions = _sub_exceptions(exception)
        if sub_exceptions:
            logger.log(
                level,
                f"{prefix} Exception with {len(sub_exceptions)} sub-exceptions: "
                f"{_safe_str(exception)}",
            )
            for i, sub_exc in enumerate(sub_exceptions, start=1):
                logger.log(
                    level,
                    f"{prefix} Sub-exception {i}: {type(sub_exc).__name__}: "
                    f"{_safe_str(sub_exc)}",
                    exc_info=sub_exc,
                )
        else:
            logger.log(
                level,
                f"{prefix} Exception: {_safe_str(exception)}",
                exc_info=exception,
            )
    except Exception:
        try:
            logger.log(logging.ERROR, f"{prefix} Exception logging failed")
        except Exception:
            pass


def format_exception_message(exception: BaseException) -> str:
    """Render an exception (and any sub-exceptions) as a single line."""
    sub_exceptions = _sub_exceptions(exception)
    if not sub_exceptions:
        return _safe_str(exception)
    parts = [f"{type(sub).__name__}: {_safe_str(sub)}" for sub in sub_exceptions]
    return f"{_safe_str(exception)} ({'; '.join(parts)})"
