"""Deadline-bounded readiness polling."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleeper = Callable[[float], None]


class Deadline:
    """Monotonic deadline shared by every step of one stage."""

    def __init__(self, seconds: float, *, clock: Clock = time.monotonic):
        self.seconds = seconds
        self._clock = clock
        self._expires_at = clock() + seconds

    def remaining(self) -> float:
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0


@dataclass(frozen=True)
class PollResult:
    ready: bool
    attempts: int
    last_error: str = ""


def poll_until_ready(
    url: str,
    *,
    deadline: Deadline,
    client: httpx.Client | None = None,
    sleep: Sleeper = time.sleep,
    initial_delay: float = 1.0,
    max_delay: float = 15.0,
    request_timeout: float = 10.0,
) -> PollResult:
    """GET ``url`` until it answers below 400 or the deadline passes.

    Connection errors and error statuses are retried with capped exponential
    backoff. Never sleeps past the deadline.
    """
    owns_client = client is None
    http = client or httpx.Client(follow_redirects=False)
    attempts = 0
    last_error = "no attempt made"
    delay = initial_delay
    try:
        while not deadline.expired:
            attempts += 1
            try:
                response = http.get(url, timeout=min(request_timeout, max(deadline.remaining(), 0.1)))
            except httpx.HTTPError as exc:
                last_error = f"{type(exc).__name__}: {exc}"
            else:
                if response.status_code < 400:
                    logger.debug("ready after %d attempt(s): %s -> %d", attempts, url, response.status_code)
                    return PollResult(ready=True, attempts=attempts)
                last_error = f"HTTP {response.status_code}"

            logger.debug("not ready (%s), attempt %d: %s", last_error, attempts, url)
            pause = min(delay, deadline.remaining())
            if pause <= 0:
                break
            sleep(pause)
            delay = min(delay * 2, max_delay)
    finally:
        if owns_client:
            http.close()

    return PollResult(ready=False, attempts=attempts, last_error=last_error)
