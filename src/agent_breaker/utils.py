"""agent_breaker.utils

Hook helpers.
"""

from __future__ import annotations

import functools
import inspect
import logging
from typing import Any, Callable, TypeVar

from .errors import CircuitOpenError, HookError

logger = logging.getLogger("agent_breaker")

F = TypeVar("F", bound=Callable[..., Any])


def safe_hook(fn: F) -> F:
    """Log and absorb any exception raised by `fn`; return None instead.

    For bookkeeping hooks (outcome recorder, message annotator) whose failure
    must never break the host. Do not wrap the event gate with this: its
    CircuitOpenError has to reach the host, and is re-raised here as well.
    """
    name = getattr(fn, "__qualname__", None) or getattr(fn, "__name__", "unknown")

    def _report(exc: Exception) -> None:
        err = HookError(f"Hook '{name}' failed: {exc}")
        logger.warning("%s [%s]", err, err.code, exc_info=True)

    if inspect.iscoroutinefunction(fn):
        @functools.wraps(fn)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return await fn(*args, **kwargs)
            except CircuitOpenError:
                raise
            except Exception as exc:
                _report(exc)
                return None

        return async_wrapper  # type: ignore[return-value]

    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return fn(*args, **kwargs)
        except CircuitOpenError:
            raise
        except Exception as exc:
            _report(exc)
            return None

    return wrapper  # type: ignore[return-value]
