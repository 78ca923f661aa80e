"""
Timing decorator for broker round-trips.

Logs how long an awaited operation took and warns past a threshold. Disabled
with NEOLINK_PERF_TRACKING=false.
"""

from __future__ import annotations

import functools
import time
from collections.abc import Callable, Coroutine
from typing import Any, ParamSpec, TypeVar

__all__ = ["timed_async"]

P = ParamSpec("P")
T = TypeVar("T")


def timed_async(
    operation_name: str | None = None,
) -> Callable[[Callable[P, Coroutine[Any, Any, T]]], Callable[P, Coroutine[Any, Any, T]]]:
    """
    Decorate a coroutine function so each call logs its duration.

    Args:
        operation_name: Name used in the log line (defaults to the function name)

    Example:
        @timed_async("mqtt_connect")
        async def _establish(self): ...
    """

    def decorator(func: Callable[P, Coroutine[Any, Any, T]]) -> Callable[P, Coroutine[Any, Any, T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            from neolink_mqtt.const import NEOLINK_PERF_THRESHOLD_MS, NEOLINK_PERF_TRACKING  # noqa: PLC0415
            from neolink_mqtt.logging_abstraction import get_logger  # noqa: PLC0415

            if not NEOLINK_PERF_TRACKING:
                return await func(*args, **kwargs)

            op_name = operation_name or func.__name__
            start = time.perf_counter()
            try:
                return await func(*args, **kwargs)
            finally:
                elapsed_ms = (time.perf_counter() - start) * 1000
                logger = get_logger(__name__)
                context = {"operation": op_name, "duration_ms": round(elapsed_ms, 2)}
                if elapsed_ms > NEOLINK_PERF_THRESHOLD_MS:
                    logger.warning(
                        "[%s] took %.1fms (threshold: %dms)",
                        op_name,
                        elapsed_ms,
                        NEOLINK_PERF_THRESHOLD_MS,
                        extra=context,
                    )
                else:
                    logger.debug("[%s] took %.1fms", op_name, elapsed_ms, extra=context)

        return wrapper

    return decorator
