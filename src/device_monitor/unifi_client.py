"""
HTTP transport for the network controller API.

Provides an aiohttp client with:
- Cookie-based controller sessions (IP hosts allowed)
- Optional certificate verification (controllers ship self-signed certs)
- Automatic retries with exponential backoff on transport errors
- ApiResponse results instead of raw HTTP responses
"""

import asyncio
import logging
import ssl
from typing import Any, Optional

import aiohttp

from ._types import ApiResponse
from .config import MonitorConfig
from .errors import OperationError
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


class UnifiClient:
    """
    HTTP client for controller communication.

    Status codes are not interpreted here; the session manager and
    gateway classify them. Only transport failures raise.

    Every attempt, retries included, takes a slot from the rate limiter.
    """

    def __init__(
        self,
        config: MonitorConfig,
        ssl_context: Optional[ssl.SSLContext] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        """
        Initialize controller client.

        Args:
            config: Monitor configuration
            ssl_context: Custom SSL context (default: derived from config)
            rate_limiter: Process-wide rate limiter awaited before each attempt
        """
        self.config = config
        self.max_retries = config.max_retries
        self.retry_backoff = config.retry_backoff
        self.timeout = aiohttp.ClientTimeout(total=config.request_timeout)
        self.ssl_context = ssl_context
        self.rate_limiter = rate_limiter

        self._csrf_token: Optional[str] = None
        self._session: Optional[aiohttp.ClientSession] = None

    def _ssl_option(self) -> Any:
        if self.ssl_context is not None:
            return self.ssl_context
        return bool(self.config.verify_ssl)

    async def _get_session(self) -> aiohttp.ClientSession:
        """
        Get or create aiohttp session.

        Returns:
            Active client session
        """
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(ssl=self._ssl_option())
            self._session = aiohttp.ClientSession(
                connector=connector,
                timeout=self.timeout,
                cookie_jar=aiohttp.CookieJar(unsafe=True),
                headers={'User-Agent': 'device-monitor'},
            )
            logger.debug("Created new aiohttp session")

        return self._session

    async def close(self):
        """Close the client session."""
        if self._session and not self._session.closed:
            await self._session.close()
            logger.debug("Closed aiohttp session")
        self._session = None

    def reset_cookies(self) -> None:
        """Drop the controller session cookie and CSRF token."""
        self._csrf_token = None
        if self._session and not self._session.closed:
            self._session.cookie_jar.clear()

    async def request(
        self,
        method: str,
        path: str,
        payload: Optional[dict[str, Any]] = None,
    ) -> ApiResponse:
        """
        Make HTTP request with retry logic.

        Args:
            method: HTTP method (GET, POST, etc.)
            path: API path including any /proxy/network prefix
            payload: JSON body

        Returns:
            ApiResponse with status and decoded payload

        Raises:
            OperationError: If all retries fail at the transport level
        """
        url = f"{self.config.base_url}{path}"
        session = await self._get_session()

        headers = {}
        if self._csrf_token:
            headers['X-CSRF-Token'] = self._csrf_token

        last_error: Optional[BaseException] = None

        for attempt in range(self.max_retries):
            if self.rate_limiter is not None:
                await self.rate_limiter.wait()

            try:
                logger.debug(f"Attempting {method} {path} (attempt {attempt + 1}/{self.max_retries})")

                async with session.request(method, url, json=payload, headers=headers) as response:
                    try:
                        response_data = await response.json(content_type=None)
                    except (aiohttp.ContentTypeError, ValueError):
                        response_data = {"error": await response.text()}

                    token = response.headers.get('X-CSRF-Token')
                    if token:
                        self._csrf_token = token

                    logger.debug(f"{method} {path} returned {response.status}")

                    return ApiResponse(
                        status=response.status,
                        payload=response_data,
                        headers=dict(response.headers),
                    )

            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = e
                logger.warning(
                    f"Request {method} {path} failed (attempt {attempt + 1}/{self.max_retries}): {e!r}"
                )

                # Exponential backoff
                if attempt < self.max_retries - 1:
                    backoff = self.retry_backoff * (2 ** attempt)
                    logger.debug(f"Backing off {backoff} seconds")
                    await asyncio.sleep(backoff)

        raise OperationError(
            f"Controller unreachable after {self.max_retries} attempts: {last_error!r}"
        )

    async def login(self, username: str, password: str) -> ApiResponse:
        """Post credentials to the controller login endpoint."""
        self.reset_cookies()
        return await self.request(
            'POST',
            self.config.login_path,
            payload={'username': username, 'password': password, 'remember': False},
        )

    async def logout(self) -> ApiResponse:
        """End the controller session."""
        response = await self.request('POST', self.config.logout_path)
        self.reset_cookies()
        return response
