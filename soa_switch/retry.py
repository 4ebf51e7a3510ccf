"""Bounded retry with capped exponential backoff for remote mailbox calls."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Iterator, TypeVar

import requests

from .errors import MailboxNotFound, RetryExhausted, RunCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_STATUS_CODES = frozenset({408, 429, 502, 503, 504})

# Fallback for errors that carry no status code.
TRANSIENT_MESSAGE_SIGNATURES = (
    "throttl",
    "rate limit",
    "timeout",
    "timed out",
    "503",
    "429",
    "temporarily unavailable",
    "server is busy",
)


@dataclass(frozen=True)
class RetryPolicy:
    """How hard to try before giving up on a remote call. Delays are in seconds."""

    max_attempts: int = 4
    initial_delay: float = 2.0
    max_delay: float = 30.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay < 0:
            raise ValueError("initial_delay must not be negative")
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be greater than or equal to initial_delay")

    def delays(self) -> Iterator[float]:
        """Yield the waits between attempts: initial, doubled each time, capped."""
        delay = self.initial_delay
        for _ in range(self.max_attempts - 1):
            yield delay
            delay = min(delay * 2, self.max_delay)


def is_transient(exc: BaseException) -> bool:
    """Return True when the failure is expected to clear up on its own."""
    if isinstance(exc, MailboxNotFound):
        return False
    status_code = getattr(exc, "status_code", None)
    if status_code is None:
        response = getattr(exc, "response", None)
        status_code = getattr(response, "status_code", None)
    if status_code is not None:
        return status_code in TRANSIENT_STATUS_CODES

    if isinstance(exc, (requests.Timeout, requests.ConnectionError, TimeoutError)):
        return True

    message = str(exc).lower()
    return any(signature in message for signature in TRANSIENT_MESSAGE_SIGNATURES)


def call_with_retry(
    operation: Callable[[], T],
    operation_name: str,
    policy: RetryPolicy,
    *,
    cancel_event: threading.Event | None = None,
    classify: Callable[[BaseException], bool] = is_transient,
) -> T:
    """Run ``operation`` until it succeeds, fails fatally or runs out of attempts.

    Backend exceptions never escape: every failure is reported as
    :class:`RetryExhausted` chained from the last error. Waiting between
    attempts happens on ``cancel_event`` so an operator can abort the run;
    in that case :class:`RunCancelled` is raised.
    """
    waiter = cancel_event or threading.Event()
    delays = policy.delays()
    attempt = 0

    while True:
        attempt += 1
        try:
            return operation()
        except Exception as exc:
            last_error = str(exc) or exc.__class__.__name__
            if not classify(exc):
                logger.debug("%s failed with a non-transient error: %s", operation_name, last_error)
                raise RetryExhausted(operation_name, attempt, last_error) from exc

            delay = next(delays, None)
            if delay is None:
                logger.error(
                    "%s still failing after %s attempt(s): %s", operation_name, attempt, last_error
                )
                raise RetryExhausted(operation_name, attempt, last_error) from exc

            logger.warning(
                "%s hit a transient error (attempt %s/%s), retrying in %.1fs: %s",
                operation_name,
                attempt,
                policy.max_attempts,
                delay,
                last_error,
            )
            if waiter.wait(delay):
                raise RunCancelled(f"{operation_name} cancelled during backoff") from exc
