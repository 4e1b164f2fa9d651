"""
Retry strategy for chat-completion requests.

This module provides retry logic with jittered exponential backoff for
transient failures: network errors where no response arrived, rate limiting
(HTTP 429) and server errors (HTTP 5xx). Client-side timeouts are never
retried.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import TYPE_CHECKING, Awaitable, Callable, TypeVar

import httpx

from gptchat.constants import (
    DEFAULT_RETRY_EXPONENTIAL_BASE,
    DEFAULT_RETRY_INITIAL_DELAY,
    DEFAULT_RETRY_JITTER,
)
from gptchat.exceptions import APIError, ConnectionError, RequestTimeoutError

if TYPE_CHECKING:
    from gptchat.config.schema import RetryConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryStrategy:
    """
    Strategy for retrying failed requests with exponential backoff.

    Parameters
    ----------
    max_retries : int | None, default=None
        Maximum number of retries after the first attempt. ``None`` retries
        without limit, ``0`` disables retrying.
    initial_delay : float, default=0.5
        Delay scale in seconds.
    exponential_base : float, default=2.0
        Growth factor applied per retry.
    jitter : float, default=0.5
        Maximum random fraction added on top of each delay.

    Examples
    --------
    >>> strategy = RetryStrategy(max_retries=3, initial_delay=0.5)
    >>> result = await strategy.execute(send_request)
    """

    def __init__(
        self,
        max_retries: int | None = None,
        initial_delay: float = DEFAULT_RETRY_INITIAL_DELAY,
        exponential_base: float = DEFAULT_RETRY_EXPONENTIAL_BASE,
        jitter: float = DEFAULT_RETRY_JITTER,
    ) -> None:
        self.max_retries: int | None = max_retries
        self.initial_delay: float = initial_delay
        self.exponential_base: float = exponential_base
        self.jitter: float = jitter

    @classmethod
    def from_config(cls, config: RetryConfig) -> RetryStrategy:
        """
        Build a strategy from the ``retry`` configuration section.

        Parameters
        ----------
        config : RetryConfig
            Retry configuration.

        Returns
        -------
        RetryStrategy
            Configured strategy.
        """
        return cls(
            max_retries=config.max_retries,
            initial_delay=config.initial_delay,
            exponential_base=config.exponential_base,
            jitter=config.jitter,
        )

    def calculate_delay(self, attempt: int) -> float:
        """
        Calculate the delay before a retry.

        Parameters
        ----------
        attempt : int
            The retry number, starting at 1 for the first retry.

        Returns
        -------
        float
            Delay in seconds.
        """
        delay: float = self.initial_delay * (self.exponential_base**attempt)
        return delay * (1.0 + random.random() * self.jitter)

    def _can_retry(self, retries_done: int) -> bool:
        return self.max_retries is None or retries_done < self.max_retries

    def _describe_limit(self) -> str:
        return "unlimited" if self.max_retries is None else str(self.max_retries)

    async def execute(self, func: Callable[[], Awaitable[T]]) -> T:
        """
        Execute a request function with retry logic.

        Parameters
        ----------
        func : Callable[[], Awaitable[T]]
            Async function performing one attempt. It raises ``httpx``
            transport exceptions for network failures and :class:`APIError`
            for non-success responses.

        Returns
        -------
        T
            Result of the first successful attempt.

        Raises
        ------
        RequestTimeoutError
            If an attempt hit the client-side timeout.
        ConnectionError
            If transport failures exhausted the retries.
        APIError
            If the response status is not retryable, or retries ran out.
        """
        retries_done: int = 0

        while True:
            try:
                return await func()
            except httpx.TimeoutException as e:
                logger.error(f"Request timed out: {e}")
                raise RequestTimeoutError(
                    f"Request timed out: {e}",
                    cause=e,
                ) from e
            except httpx.TransportError as e:
                if not self._can_retry(retries_done):
                    logger.error(
                        f"Connection failed after {retries_done} retries: {e}",
                    )
                    raise ConnectionError(
                        f"Connection failed after {retries_done} retries: {e}",
                        endpoint=str(e.request.url) if _has_request(e) else None,
                        cause=e,
                    ) from e
                reason: str = f"Connection error: {e}"
            except APIError as e:
                if not e.is_retryable:
                    logger.error(f"API error: {e}")
                    raise
                if not self._can_retry(retries_done):
                    logger.error(
                        f"API error after {retries_done} retries: {e}",
                    )
                    raise
                reason = f"HTTP {e.status_code}"

            retries_done += 1
            wait_time: float = self.calculate_delay(retries_done)
            logger.warning(
                f"{reason} (retry {retries_done}/{self._describe_limit()}), "
                f"retrying in {wait_time:.2f}s",
            )
            await asyncio.sleep(wait_time)


def _has_request(error: httpx.TransportError) -> bool:
    try:
        error.request
    except RuntimeError:
        return False
    return True
