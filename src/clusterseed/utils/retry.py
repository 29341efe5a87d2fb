# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/clusterseed/utils/retry.py

from __future__ import annotations

import functools
import logging
import time
from typing import Callable

log = logging.getLogger("clusterseed")


class RetryError(RuntimeError):
    pass


def _log_attempt(fn_name: str) -> Callable[[int, Exception], None]:
    def _cb(attempt: int, exc: Exception) -> None:
        log.debug("%s attempt %d failed: %s", fn_name, attempt, exc)
    return _cb


def retry(
    *,
    retries: int,
    delay: float,
    backoff: float = 1.0,
    retry_on: tuple[type[Exception], ...] = (Exception,),
    on_retry: Callable[[int, Exception], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
):
    """
    Retry decorator for idempotent reads (metadata lookups, inventory queries).

    retries: number of attempts (>= 1)
    delay: seconds before the second attempt
    backoff: multiplier applied to delay after each failed attempt
    retry_on: exception types to retry; anything else propagates immediately
    on_retry: callback(attempt, exception), defaults to a debug log line
    """
    if retries < 1:
        raise ValueError("retries must be >= 1")

    def decorator(fn):
        callback = on_retry or _log_attempt(fn.__name__)

        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            last_exc = None
            wait = delay
            for attempt in range(1, retries + 1):
                try:
                    return fn(*args, **kwargs)
                except retry_on as exc:
                    last_exc = exc
                    callback(attempt, exc)
                    if attempt == retries:
                        break
                    sleep(wait)
                    wait *= backoff
            raise RetryError(f"{fn.__name__} failed after {retries} attempts") from last_exc
        return wrapper
    return decorator
