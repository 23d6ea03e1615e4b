"""Bounded retry with exponential backoff."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field, replace
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry configuration.

    An empty retryable_errors tuple retries on any exception; otherwise only
    errors matching one of the listed signatures are retried.
    """

    max_attempts: int
    initial_delay_ms: int
    max_delay_ms: int
    backoff_multiplier: float = 2.0
    retryable_errors: tuple[str, ...] = field(default_factory=tuple)

    def delay_ms(self, attempt: int) -> float:
        """Backoff before the attempt following `attempt` (1-based)."""
        return min(
            self.initial_delay_ms * self.backoff_multiplier ** (attempt - 1),
            self.max_delay_ms,
        )

    def with_retryable(self, *signature_lists: Iterable[str]) -> "RetryPolicy":
        """Copy of this policy restricted to the given error signatures."""
        signatures: list[str] = []
        for signature_list in signature_lists:
            signatures.extend(signature_list)
        return replace(self, retryable_errors=tuple(signatures))


RETRY_POLICIES: dict[str, RetryPolicy] = {
    "FAST": RetryPolicy(max_attempts=2, initial_delay_ms=500, max_delay_ms=5_000),
    "STANDARD": RetryPolicy(max_attempts=3, initial_delay_ms=1_000, max_delay_ms=30_000),
    "AGGRESSIVE": RetryPolicy(max_attempts=5, initial_delay_ms=2_000, max_delay_ms=60_000),
}

FAST = RETRY_POLICIES["FAST"]
STANDARD = RETRY_POLICIES["STANDARD"]
AGGRESSIVE = RETRY_POLICIES["AGGRESSIVE"]

# Curated signatures for callers that want selective retry
RETRYABLE_ERRORS: dict[str, tuple[str, ...]] = {
    "NETWORK": (
        "ECONNRESET",
        "ETIMEDOUT",
        "ENOTFOUND",
        "ECONNREFUSED",
        "ConnectError",
        "ConnectTimeout",
        "ReadTimeout",
        "WriteTimeout",
        "PoolTimeout",
        "RemoteProtocolError",
    ),
    "HTTP": ("429", "500", "502", "503", "504"),
    "CRM": ("rate_limit_exceeded", "too_many_requests"),
    "MESSAGING": ("rate_limit", "temporarily_unavailable"),
}


def is_retryable_error(error: BaseException, retryable_errors: Iterable[str]) -> bool:
    """Check an error against signatures, case-insensitively."""
    # Authorization failures are never transient, whatever their text contains
    if getattr(error, "is_authorization_error", False):
        return False

    error_string = str(error).lower()
    code = getattr(error, "code", None)
    error_code = str(code).lower() if code is not None else ""
    message = getattr(error, "message", None)
    error_message = str(message).lower() if message is not None else ""
    error_type = type(error).__name__.lower()

    for signature in retryable_errors:
        needle = signature.lower()
        if (
            needle in error_string
            or needle in error_code
            or needle in error_message
            or needle in error_type
        ):
            return True
    return False


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy = STANDARD,
) -> T:
    """
    Run `fn` up to policy.max_attempts times.

    Raises the last error once attempts are exhausted, or immediately when the
    policy has an allow-list and the error matches none of it.
    """
    if policy.max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    attempt = 1
    while True:
        try:
            return await fn()
        except Exception as e:
            if attempt >= policy.max_attempts:
                raise
            if policy.retryable_errors and not is_retryable_error(e, policy.retryable_errors):
                raise

            delay_ms = policy.delay_ms(attempt)
            logger.warning(
                f"Attempt {attempt}/{policy.max_attempts} failed: {e!r}. "
                f"Retrying in {delay_ms:.0f}ms"
            )
            await asyncio.sleep(delay_ms / 1000)
            attempt += 1
