from __future__ import annotations

import asyncio
import json
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from ai_responder.errors import ResponderError

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_s: float = 0.2
    max_delay_s: float = 2.0
    jitter: float = 0.2  # 20%


def backoff_delay(attempt: int, policy: RetryPolicy) -> float:
    # exponential backoff with jitter
    delay = min(policy.max_delay_s, policy.base_delay_s * (2 ** (attempt - 1)))
    jitter = delay * policy.jitter * (random.random() * 2 - 1)
    return max(0.0, delay + jitter)


async def with_retries(
    fn: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    op: str | None = None,
) -> T:
    """Runs `fn` up to `policy.max_attempts` times.

    ResponderError subclasses are retried only when `retryable`; unknown
    exceptions are retried until the budget is spent.
    """
    last_exc: Exception | None = None
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await fn()
        except ResponderError as e:
            last_exc = e
            if not e.retryable or attempt == policy.max_attempts:
                raise
        except Exception as e:
            last_exc = e
            if attempt == policy.max_attempts:
                raise
        delay = backoff_delay(attempt, policy)
        logging.info(
            json.dumps(
                {
                    "event": "retry_scheduled",
                    "op": op,
                    "attempt": attempt,
                    "delay_s": round(delay, 3),
                    "error": type(last_exc).__name__,
                },
                ensure_ascii=False,
            )
        )
        await asyncio.sleep(delay)
    assert last_exc is not None
    raise last_exc
