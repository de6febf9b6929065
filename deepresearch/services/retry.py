"""Bounded retry with exponential backoff for external provider calls.

Every provider client goes through `retry_with_backoff`. Exhausted attempts
return None instead of raising, so one failed item contributes nothing and
the research round carries on.
"""
from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx
from loguru import logger

T = TypeVar("T")

# 4xx except 429: retrying will not fix these.
_DEFAULT_NON_RETRYABLE_STATUSES: frozenset[int] = frozenset({400, 401, 402, 403, 404, 405, 410, 422})


def _name_of(func: Callable[..., Any]) -> str:
    return getattr(func, "__qualname__", None) or getattr(func, "__name__", None) or repr(func)


async def retry_with_backoff(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    max_attempts: int = 2,
    base_delay: float = 1.0,
    max_delay: float = 8.0,
    timeout: float | None = None,
    non_retryable_statuses: frozenset[int] = _DEFAULT_NON_RETRYABLE_STATUSES,
    **kwargs: Any,
) -> T | None:
    """Call `func` up to `max_attempts` times; return None when all attempts fail.

    `timeout` bounds each individual attempt. Cancellation is never swallowed.
    """
    name = _name_of(func)
    attempts = max(int(max_attempts), 1)

    for attempt in range(1, attempts + 1):
        try:
            if timeout is not None:
                return await asyncio.wait_for(func(*args, **kwargs), timeout=timeout)
            return await func(*args, **kwargs)
        except asyncio.CancelledError:
            raise
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            if status_code in non_retryable_statuses:
                logger.warning(f"retry.non_retryable func={name} status={status_code} error={e}")
                return None
            error_text = f"HTTP {status_code}: {e}"
        except asyncio.TimeoutError:
            error_text = f"timed out after {timeout}s"
        except Exception as e:
            error_text = f"{type(e).__name__}: {e}"

        if attempt >= attempts:
            logger.error(f"retry.exhausted func={name} attempts={attempt} error={error_text}")
            return None

        delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
        logger.warning(
            f"retry.attempt func={name} attempt={attempt}/{attempts} delay={delay}s error={error_text}"
        )
        await asyncio.sleep(delay)

    return None
