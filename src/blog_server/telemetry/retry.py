from __future__ import annotations

from typing import Any

from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from blog_server.logging import get_logger
from blog_server.telemetry.errors import TransientCostFetchError


def create_fetch_with_retry(
    max_attempts: int = 3,
    min_wait: int = 2,
    max_wait: int = 30,
    logger: Any = None,
):
    """Create a retrying wrapper for cost source fetches.

    Returns an async function that wraps source.fetch(days) with exponential
    backoff retry on transient errors (connection, timeout).
    """
    log = logger or get_logger("telemetry")

    @retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type((TransientCostFetchError, ConnectionError, TimeoutError)),
        reraise=True,
        before_sleep=lambda retry_state: log.warning(
            "cost_fetch_retry",
            attempt=retry_state.attempt_number,
            error=str(retry_state.outcome.exception()) if retry_state.outcome else "unknown",
        ),
    )
    async def fetch_with_retry(source: Any, days: int) -> list[tuple[str, float]]:
        return await source.fetch(days)

    return fetch_with_retry
