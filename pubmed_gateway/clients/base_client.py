"""
Base API client with rate limiting, retries and error handling.

This base class provides common functionality for upstream API clients:
- Shared minimum-interval rate limiting (one RateLimiter per gateway)
- Exponential backoff for transient failures (429, 5xx, timeouts)
- Non-success responses surfaced as UpstreamError once retries are spent
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import requests

from ..cancellation import CancellationToken
from ..exceptions import UpstreamError
from ..rate_limit import RateLimiter

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


@dataclass
class APIConfig:
    """Base configuration for API clients."""
    # Retry configuration
    max_retries: int = 3
    initial_retry_delay: float = 1.0
    max_retry_delay: float = 60.0
    retry_backoff_factor: float = 2.0

    # Request configuration
    timeout: int = 30

    # Parameters sent with every request
    default_params: Dict[str, Any] = field(default_factory=dict)


class BaseAPIClient(ABC):
    """
    Base class for API clients sharing one rate limiter.

    Subclasses must implement:
    - _setup_session(): Session headers
    """

    def __init__(
        self,
        config: APIConfig,
        rate_limiter: Optional[RateLimiter] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.rate_limiter = rate_limiter or RateLimiter()
        self.session = session or requests.Session()
        self._sleep = sleep
        self.request_count = 0
        self._setup_session()

    @abstractmethod
    def _setup_session(self):
        """Setup session headers. Must be implemented by subclass."""
        pass

    def _backoff(self, retry_count: int, factor: float = 1.0) -> float:
        return min(
            self.config.initial_retry_delay * (self.config.retry_backoff_factor ** retry_count) * factor,
            self.config.max_retry_delay * factor,
        )

    def _make_request(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> requests.Response:
        """
        GET `url` through the rate limiter, retrying transient failures.

        Returns:
            The successful response

        Raises:
            UpstreamError: On a non-retryable status or once retries are spent
            CancelledError: If the token is cancelled while waiting
        """
        merged = {**self.config.default_params, **(params or {})}
        retry_count = 0

        while True:
            self.rate_limiter.acquire(cancel_token)
            timeout = self.config.timeout
            if cancel_token is not None:
                timeout = max(0.1, cancel_token.bound_timeout(timeout))

            error: str
            status: Optional[int] = None
            try:
                self.request_count += 1
                response = self.session.get(url, params=merged, timeout=timeout)
                if response.ok:
                    return response

                status = response.status_code
                error = f"HTTP {status} from {url}"
                logger.debug(f"Request failed: {status} - URL: {url[:100]} - {response.text[:200]}")
                if status not in RETRYABLE_STATUS:
                    logger.error(f"Upstream rejected request ({status}): {url[:100]}")
                    raise UpstreamError(error, status_code=status, url=url)

            except requests.Timeout:
                error = f"Timeout after {timeout}s from {url}"
                logger.warning(f"Request timeout. Retry {retry_count + 1}/{self.config.max_retries}")
            except requests.RequestException as e:
                error = f"Request to {url} failed: {e}"
                logger.warning(f"Request exception: {e}")

            if retry_count >= self.config.max_retries:
                logger.error(f"Max retries ({self.config.max_retries}) reached for {url[:100]}")
                raise UpstreamError(error, status_code=status, url=url)

            # 503 means the service is overloaded, wait longer
            delay = self._backoff(retry_count, factor=2.0 if status == 503 else 1.0)
            logger.info(f"Retrying in {delay:.1f}s...")
            if cancel_token is not None:
                if cancel_token.wait(delay):
                    cancel_token.raise_if_cancelled("upstream request")
            else:
                self._sleep(delay)
            retry_count += 1

    def _get_json(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Dict[str, Any]:
        response = self._make_request(url, params, cancel_token)
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(f"Invalid JSON response from {url}: {e}", url=url)
