"""Wrapper for best-effort side operations that must never fail a request."""

import logging
from collections.abc import Awaitable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def noncritical(action: str, awaitable: Awaitable[T], default: T | None = None) -> T | None:
    """Await ``awaitable``; on any error log it and return ``default``.

    Used for cache writes, notification fan-out and training-data logging.
    """
    try:
        return await awaitable
    except Exception:
        logger.exception("Non-critical operation failed: %s", action)
        return default
