"""
Correlation ids for log lines emitted while handling one command or message.

The id lives in a contextvar so it follows the asyncio task that set it:
every inbound MQTT message and every host command gets its own id, and all
log lines produced while handling it carry that id.
"""

from __future__ import annotations

import contextvars
import uuid
from collections.abc import Generator
from contextlib import contextmanager

__all__ = [
    "correlation_context",
    "ensure_correlation_id",
    "get_correlation_id",
    "new_correlation_id",
]

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "neolink_correlation_id",
    default=None,
)


def new_correlation_id() -> str:
    """Return a fresh 32-char hex id."""
    return uuid.uuid4().hex


def get_correlation_id() -> str | None:
    return _correlation_id.get()


@contextmanager
def correlation_context(correlation_id: str | None = None) -> Generator[str]:
    """
    Scope a correlation id, restoring the previous one on exit.

    Args:
        correlation_id: Id to use; a new one is generated when None

    Yields:
        The id in effect inside the block
    """
    token = _correlation_id.set(correlation_id or new_correlation_id())
    try:
        yield _correlation_id.get() or ""
    finally:
        _correlation_id.reset(token)


def ensure_correlation_id() -> str:
    """Return the current id, setting a new one for this context if none is set."""
    current = _correlation_id.get()
    if current is None:
        current = new_correlation_id()
        _ = _correlation_id.set(current)
    return current
