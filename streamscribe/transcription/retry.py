"""
Retry with exponential backoff for remote transcription providers.

Transient failures are absorbed here:
- 408 Request Timeout
- 429 Rate Limited (longer waits)
- 500/502/503/504 Server Errors
- Timeouts, connection failures and protocol errors

tenacity drives the attempts. ``RetryState`` keeps the per-request
bookkeeping and ``RetryConfig.delay_for_attempt`` supplies each wait, so
the backoff schedule stays independent of the retry library. The sleep
function is injectable for tests.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Awaitable, Callable, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    Retrying,
    retry_if_exception,
    retry_if_result,
    stop_after_attempt,
)

from ..exceptions import APIError, NetworkError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


@dataclass(frozen=True)
class RetryConfig:
    """
    Backoff parameters.

    Attributes:
        max_retries: Retries after the first attempt.
        base_delay_ms: Delay before the first retry; doubles per retry.
        max_delay_ms: Cap applied before the rate-limit multiplier.
        rate_limit_multiplier: Extra factor for 429 responses.
    """

    max_retries: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 16000
    rate_limit_multiplier: float = 2.0

    def delay_for_attempt(self, attempt: int, rate_limited: bool = False) -> int:
        """
        Delay in milliseconds before retry number ``attempt`` (0-based).

        Example:
            >>> RetryConfig().delay_for_attempt(2)
            4000
            >>> RetryConfig().delay_for_attempt(3, rate_limited=True)
            16000
        """
        delay_ms = min(self.base_delay_ms * 2 ** attempt, self.max_delay_ms)
        if rate_limited:
            return int(delay_ms * self.rate_limit_multiplier)
        return delay_ms


def is_retryable_status(status_code: int) -> bool:
    return status_code in RETRYABLE_STATUS_CODES


def is_rate_limited(status_code: int) -> bool:
    return status_code == 429


def is_retryable_error(error: Exception) -> bool:
    """Timeouts, connect/read/write failures and request framing errors."""
    return isinstance(error, (httpx.TimeoutException, httpx.NetworkError, httpx.ProtocolError))


class RetryPhase(Enum):
    ATTEMPTING = auto()
    WAITING = auto()
    FAILED = auto()
    SUCCEEDED = auto()


@dataclass
class RetryState:
    """
    Retry bookkeeping for one request.

    ``attempt`` counts retries already scheduled and never exceeds
    ``config.max_retries``.
    """

    config: RetryConfig = field(default_factory=RetryConfig)
    attempt: int = 0
    phase: RetryPhase = RetryPhase.ATTEMPTING
    delay_ms: int = 0

    @property
    def can_retry(self) -> bool:
        return self.attempt < self.config.max_retries

    def record_success(self) -> RetryPhase:
        self.phase = RetryPhase.SUCCEEDED
        return self.phase

    def record_failure(self, retryable: bool, rate_limited: bool = False) -> RetryPhase:
        """Move to WAITING with a computed delay, or to FAILED."""
        if retryable and self.can_retry:
            self.delay_ms = self.config.delay_for_attempt(self.attempt, rate_limited)
            self.phase = RetryPhase.WAITING
        else:
            self.phase = RetryPhase.FAILED
        return self.phase

    def resume(self) -> None:
        """Leave WAITING after the delay has elapsed."""
        if self.phase != RetryPhase.WAITING:
            raise RuntimeError(f"Cannot resume from {self.phase.name}")
        self.attempt += 1
        self.phase = RetryPhase.ATTEMPTING


def _retryable_response(response: httpx.Response) -> bool:
    return not response.is_success and is_retryable_status(response.status_code)


def _outcome_rate_limited(retry_state: RetryCallState) -> bool:
    outcome = retry_state.outcome
    return not outcome.failed and is_rate_limited(outcome.result().status_code)


def _retrying_options(state: RetryState, provider: str) -> dict:
    """Keyword arguments shared by the blocking and awaitable drivers."""

    def wait_backoff(retry_state: RetryCallState) -> float:
        state.record_failure(retryable=True, rate_limited=_outcome_rate_limited(retry_state))
        return state.delay_ms / 1000

    def log_before_sleep(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        if outcome.failed:
            reason = f"network error: {outcome.exception()}"
        else:
            reason = f"status {outcome.result().status_code}"
        logger.warning(
            f"{provider} request failed with {reason} "
            f"(attempt {state.attempt + 1}/{state.config.max_retries}), "
            f"retrying in {state.delay_ms}ms"
        )

    return dict(
        stop=stop_after_attempt(state.config.max_retries + 1),
        wait=wait_backoff,
        retry=retry_if_result(_retryable_response) | retry_if_exception(is_retryable_error),
        before_sleep=log_before_sleep,
        # Hand back the last response or re-raise the last error once attempts run out.
        retry_error_callback=lambda retry_state: retry_state.outcome.result(),
    )


def _begin_attempt(state: RetryState) -> None:
    if state.phase == RetryPhase.WAITING:
        state.resume()


def _final_response(state: RetryState, provider: str, response: httpx.Response) -> httpx.Response:
    if response.is_success:
        state.record_success()
        return response
    state.record_failure(retryable=False)
    body = response.text or "Unknown error"
    raise APIError(provider, response.status_code, body)


def _network_error(state: RetryState, provider: str, error: httpx.RequestError) -> NetworkError:
    state.record_failure(retryable=False)
    return NetworkError(f"Failed to send request to {provider}: {error}", provider)


def send_with_retry(
    send: Callable[[], httpx.Response],
    provider: str,
    config: Optional[RetryConfig] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> httpx.Response:
    """
    Run a blocking request until it succeeds or retries are exhausted.

    Args:
        send: Performs one request attempt.
        provider: Provider name for logs and errors.
        config: Backoff parameters.
        sleep: Sleep function taking seconds.

    Returns:
        The first successful response.

    Raises:
        NetworkError: Transport failure that is not retryable or persisted.
        APIError: Non-success status that is not retryable or persisted.
    """
    state = RetryState(config or RetryConfig())

    def attempt() -> httpx.Response:
        _begin_attempt(state)
        return send()

    retrying = Retrying(sleep=sleep, **_retrying_options(state, provider))
    try:
        response = retrying(attempt)
    except httpx.RequestError as e:
        raise _network_error(state, provider, e) from e
    return _final_response(state, provider, response)


async def send_with_retry_async(
    send: Callable[[], Awaitable[httpx.Response]],
    provider: str,
    config: Optional[RetryConfig] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> httpx.Response:
    """Awaitable counterpart of `send_with_retry`; sleeping yields to other chunks."""
    state = RetryState(config or RetryConfig())

    async def attempt() -> httpx.Response:
        _begin_attempt(state)
        return await send()

    retrying = AsyncRetrying(sleep=sleep, **_retrying_options(state, provider))
    try:
        response = await retrying(attempt)
    except httpx.RequestError as e:
        raise _network_error(state, provider, e) from e
    return _final_response(state, provider, response)
