"""
Base class for market data provider feeds.

Each feed wraps one HTTP API behind an aiohttp session and converts every
failure into a ProviderError subclass, so the builder can decide whether to
retry or fall back.
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import aiohttp

from ...config.settings import FeedConfig
from ...core.errors import (
    FeedAuthError,
    FeedDisabled,
    FeedMalformedResponse,
    FeedNetworkError,
    FeedRateLimited,
    FeedRequestError,
    FeedServerError,
    FeedTimeout,
    ProviderError,
)


def classify_status(provider: str, status: int, body: str = "") -> Optional[ProviderError]:
    """
    Map an HTTP status to the provider error it represents.

    Returns:
        None for 2xx/3xx, otherwise the matching ProviderError
    """
    if status < 400:
        return None
    message = f"HTTP {status}" + (f": {body[:200]}" if body else "")
    if status in (401, 403):
        return FeedAuthError(provider, message, status)
    if status == 429:
        return FeedRateLimited(provider, message, status)
    if status >= 500:
        return FeedServerError(provider, message, status)
    return FeedRequestError(provider, message, status)


class MarketFeed(ABC):
    """
    Base class for one external market data provider.

    Subclasses implement fetch(symbol) and return a frozen value type.
    """

    provider: str = "feed"

    def __init__(self, config: FeedConfig, session: Optional[aiohttp.ClientSession] = None):
        self.config = config
        self.name = self.provider
        self.logger = logging.getLogger(f"{__name__}.{self.name}")
        self._session = session
        self._owns_session = session is None

        if config.enabled and not os.getenv(config.api_key_env):
            self.logger.warning(f"{config.api_key_env} not set; {self.provider} requests will likely fail")

    # ------------------------------------------------------------------
    # Retry policy (read by the builder)
    # ------------------------------------------------------------------

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @property
    def timeout_s(self) -> float:
        return self.config.timeout_ms / 1000.0

    @property
    def max_retries(self) -> int:
        return self.config.max_retries

    def backoff_delay(self, attempt: int) -> float:
        """Exponential backoff in seconds before retry number `attempt` (1-based)."""
        return (self.config.backoff_ms / 1000.0) * (self.config.backoff_factor ** (attempt - 1))

    @property
    def attempt_timeout_s(self) -> float:
        """
        Timeout for one HTTP attempt.

        Every attempt plus the backoff between them fits inside timeout_s, so a
        slow first attempt still leaves room for the retries.
        """
        attempts = self.max_retries + 1
        backoff = sum(self.backoff_delay(n) for n in range(1, attempts))
        remaining = self.timeout_s - backoff
        if remaining <= 0:
            return self.timeout_s / attempts
        return remaining / attempts

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def headers(self) -> Dict[str, str]:
        return {"Accept": "application/json"}

    def api_key(self) -> str:
        return os.getenv(self.config.api_key_env, "")

    def api_secret(self) -> str:
        if not self.config.api_secret_env:
            return ""
        return os.getenv(self.config.api_secret_env, "")

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.attempt_timeout_s)
            self._session = aiohttp.ClientSession(headers=self.headers(), timeout=timeout)
            self._owns_session = True
        return self._session

    async def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        GET a JSON document from the provider.

        Raises:
            ProviderError: Classified failure (timeout, network, status, body)
        """
        session = await self._ensure_session()
        url = f"{self.config.base_url.rstrip('/')}/{path.lstrip('/')}"
        timeout = aiohttp.ClientTimeout(total=self.attempt_timeout_s)

        try:
            async with session.get(url, params=params, headers=self.headers(), timeout=timeout) as response:
                if response.status >= 400:
                    body = await response.text()
                    raise classify_status(self.provider, response.status, body)
                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    raise FeedMalformedResponse(self.provider, f"Invalid JSON from {path}") from e
        except ProviderError:
            raise
        except asyncio.TimeoutError as e:
            raise FeedTimeout(self.provider, f"Request timeout on {path}") from e
        except aiohttp.ClientError as e:
            raise FeedNetworkError(self.provider, f"{type(e).__name__}: {e}") from e

    async def fetch(self, symbol: str):
        """Fetch and parse the provider's data for one symbol."""
        if not self.enabled:
            raise FeedDisabled(self.provider, "Feed disabled by configuration")
        return await self._fetch(symbol)

    @abstractmethod
    async def _fetch(self, symbol: str):
        pass

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
