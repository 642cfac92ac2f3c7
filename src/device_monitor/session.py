"""
Controller login session management.

The SessionManager is the single owner of session state. Gateways ask it
for a valid session before each call and invalidate it when the
controller answers with an authorization failure, so the next caller
logs in again.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

from .config import MonitorConfig
from .errors import AuthenticationError, ConfigurationError, OperationError, RateLimitedError
from .rate_limiter import RateLimiter
from .unifi_client import UnifiClient

logger = logging.getLogger(__name__)


class SessionManager:
    """Owns the authenticated session with the controller."""

    def __init__(
        self,
        config: MonitorConfig,
        client: UnifiClient,
        rate_limiter: RateLimiter,
        validity_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.client = client
        self.rate_limiter = rate_limiter
        if client.rate_limiter is None:
            client.rate_limiter = rate_limiter
        self.validity_seconds = (
            validity_seconds if validity_seconds is not None else config.session_validity
        )
        self._clock = clock
        self._login_lock = asyncio.Lock()

        self.is_logged_in = False
        self.last_login: Optional[float] = None
        self.login_count = 0

    def is_valid(self) -> bool:
        """True when a session exists and is inside the validity window."""
        if not self.is_logged_in or self.last_login is None:
            return False
        return (self._clock() - self.last_login) < self.validity_seconds

    def invalidate(self) -> None:
        """Force the next caller to re-authenticate."""
        if self.is_logged_in:
            logger.info("Controller session invalidated")
        self.is_logged_in = False
        self.last_login = None
        self.client.reset_cookies()

    async def ensure_authenticated(self) -> None:
        """Guarantee a valid session before returning."""
        if self.is_valid():
            return

        async with self._login_lock:
            # Another task may have logged in while we waited
            if self.is_valid():
                return
            await self.login()

    async def login(self) -> None:
        """
        Log in to the controller.

        Raises:
            ConfigurationError: Connection parameters are missing
            AuthenticationError: Credentials were rejected
            RateLimitedError: Controller throttled the login (after backoff)
            OperationError: Transport failure or unexpected response
        """
        missing = self.config.missing_fields()
        if missing:
            raise ConfigurationError(
                f"Controller not configured, missing: {', '.join(missing)}"
            )

        self.is_logged_in = False

        try:
            response = await self.client.login(self.config.username, self.config.password)
        except OperationError:
            logger.error(f"Login to {self.config.base_url} failed: controller unreachable")
            raise

        if response.status == 429:
            delay = await self.rate_limiter.backoff()
            raise RateLimitedError("Controller throttled login", retry_after=delay)

        if response.status in (400, 401, 403) or response.rc == "error":
            logger.error(f"Login as {self.config.username} rejected: {response.message}")
            raise AuthenticationError(f"Authentication failed: {response.message}")

        if response.status != 200:
            raise OperationError(f"Login failed: {response.status} - {response.message}")

        self.rate_limiter.record_success()
        self.is_logged_in = True
        self.last_login = self._clock()
        self.login_count += 1
        logger.info(f"Logged in to controller {self.config.base_url} (site={self.config.site})")

    async def logout(self) -> None:
        """Best-effort logout; the session is dropped either way."""
        if not self.is_logged_in:
            return
        try:
            await self.client.logout()
        except OperationError as e:
            logger.warning(f"Logout failed: {e}")
        finally:
            self.is_logged_in = False
            self.last_login = None
