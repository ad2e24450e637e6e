"""Backoff policy for blocking Google API calls made from the event loop."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, TypeVar

from google.auth.exceptions import TransportError
from googleapiclient.errors import HttpError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_HTTP_CODES = {429, 500, 502, 503, 504}


def is_transient(exc: BaseException) -> bool:
    """Rate limits, Google 5xx and network failures are worth another attempt."""
    if isinstance(exc, HttpError):
        return exc.status_code in TRANSIENT_HTTP_CODES
    return isinstance(exc, (TransportError, ConnectionError, TimeoutError))


@dataclass
class RetryPolicy:
    max_retries: int = 2
    base_delay: float = 0.5  # seconds, doubled per attempt
    max_delay: float = 8.0

    def delay(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    async def run(self, fn: Callable[[], T], label: str) -> T:
        """Run blocking `fn` in a worker thread, retrying transient failures.

        Anything else, and the last transient failure, propagates to the caller.
        """
        attempt = 0
        while True:
            try:
                return await asyncio.to_thread(fn)
            except Exception as exc:
                if attempt >= self.max_retries or not is_transient(exc):
                    raise
                wait = self.delay(attempt)
                attempt += 1
                logger.warning(
                    "%s failed (attempt %d/%d): %s. Retrying in %.1fs",
                    label, attempt, self.max_retries + 1, exc, wait,
                )
                await asyncio.sleep(wait)
