"""
Controller gateway.

Typed operations on the network controller built on the SessionManager
and the process-wide RateLimiter:
- fetch_clients: currently connected clients
- fetch_blocked_clients: hardware addresses blocked at the controller
- block / unblock: station-manager commands
- run_diagnostics: connectivity report
"""

import logging
from typing import Any, Optional

from ._types import ApiResponse, CommandAction, CommandConfirmation, normalize_mac, now_utc
from .config import MonitorConfig
from .errors import (
    AuthenticationError,
    ConfigurationError,
    DeviceMonitorError,
    OperationError,
    PermissionDeniedError,
    RateLimitedError,
)
from .rate_limiter import RateLimiter
from .session import SessionManager
from .unifi_client import UnifiClient

logger = logging.getLogger(__name__)

LOGIN_REQUIRED = "api.err.LoginRequired"
NO_PERMISSION = "api.err.NoPermission"

# One year, the longest window the controller accepts for user history
BLOCKED_LOOKBACK_HOURS = 8760


class ControllerGateway:
    """
    Gateway to the network controller.

    All gateways of a process must share one RateLimiter instance.
    """

    def __init__(
        self,
        config: MonitorConfig,
        rate_limiter: RateLimiter,
        client: Optional[UnifiClient] = None,
        session: Optional[SessionManager] = None,
    ):
        """
        Initialize gateway.

        Args:
            config: Monitor configuration
            rate_limiter: Process-wide rate limiter, shared by reference
            client: HTTP transport (default: built from config)
            session: Session manager (default: built on client)
        """
        self.config = config
        self.rate_limiter = rate_limiter
        self.client = client or UnifiClient(config, rate_limiter=rate_limiter)
        if self.client.rate_limiter is None:
            self.client.rate_limiter = rate_limiter
        self.session = session or SessionManager(config, self.client, rate_limiter)

    @property
    def is_configured(self) -> bool:
        return self.config.is_configured

    def _require_configured(self) -> None:
        missing = self.config.missing_fields()
        if missing:
            raise ConfigurationError(
                f"Controller not configured, missing: {', '.join(missing)}"
            )

    async def _call(
        self,
        method: str,
        endpoint: str,
        payload: Optional[dict[str, Any]] = None,
    ) -> ApiResponse:
        """Authenticated, rate-limited request with typed error mapping."""
        self._require_configured()
        await self.session.ensure_authenticated()

        response = await self.client.request(method, self.config.site_path(endpoint), payload)
        self._raise_for_response(response, endpoint)
        self.rate_limiter.record_success()
        return response

    def _raise_for_response(self, response: ApiResponse, endpoint: str) -> None:
        """Translate a failed controller response into the error taxonomy."""
        if response.ok:
            return

        message = response.message

        if response.status == 401 or message == LOGIN_REQUIRED:
            self.session.invalidate()
            raise AuthenticationError(f"Controller session rejected on {endpoint}: {message}")

        if response.status == 403 or message == NO_PERMISSION:
            raise PermissionDeniedError(
                f"Access denied on {endpoint}; the controller account may need "
                f"full management permissions ({message})"
            )

        if response.status == 429:
            delay = self.rate_limiter.record_throttle()
            raise RateLimitedError(f"Controller throttled {endpoint}", retry_after=delay)

        raise OperationError(f"Controller request {endpoint} failed: {response.status} - {message}")

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def fetch_clients(self) -> list[dict[str, Any]]:
        """
        Fetch currently connected clients.

        Returns:
            Raw client records in controller order; empty when none
        """
        response = await self._call('GET', 'stat/sta')
        clients = [c for c in response.data if isinstance(c, dict) and c.get('mac')]
        logger.debug(f"Controller reported {len(clients)} online clients")
        return clients

    async def fetch_blocked_clients(self) -> list[str]:
        """
        Fetch blocked hardware addresses.

        Best effort: controller or transport failures return an empty
        list. A missing configuration still raises ConfigurationError.
        """
        self._require_configured()
        try:
            response = await self._call(
                'POST',
                'stat/alluser',
                {'type': 'blocked', 'conn': 'all', 'within': BLOCKED_LOOKBACK_HOURS},
            )
        except ConfigurationError:
            raise
        except DeviceMonitorError as e:
            logger.warning(f"Could not fetch blocked clients: {e}")
            return []

        return [
            normalize_mac(entry['mac'])
            for entry in response.data
            if isinstance(entry, dict) and entry.get('mac') and entry.get('blocked', True)
        ]

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    async def block(self, mac: str) -> CommandConfirmation:
        """Block a device at the controller."""
        return await self._station_command(CommandAction.BLOCK, mac)

    async def unblock(self, mac: str) -> CommandConfirmation:
        """Unblock a device at the controller."""
        return await self._station_command(CommandAction.UNBLOCK, mac)

    async def _station_command(self, action: CommandAction, mac: str) -> CommandConfirmation:
        """
        Send a station-manager command.

        The controller confirms a mutation by echoing the affected client
        in data. An empty confirmation is treated as failure.

        Raises:
            PermissionDeniedError: Account lacks device management rights
            AuthenticationError: Session rejected (session invalidated)
            RateLimitedError: Controller throttled the command
            OperationError: Any other failure, including empty confirmation
        """
        mac = normalize_mac(mac)
        logger.info(f"Sending {action.value} for {mac}")

        response = await self._call('POST', 'cmd/stamgr', {'cmd': action.value, 'mac': mac})

        if not response.data:
            raise OperationError(
                f"Controller returned an empty confirmation for {action.value} {mac}"
            )

        logger.info(f"Controller confirmed {action.value} for {mac}")
        return CommandConfirmation(mac=mac, action=action, data=response.data)

    # -------------------------------------------------------------------------
    # Diagnostics
    # -------------------------------------------------------------------------

    async def run_diagnostics(self) -> dict[str, Any]:
        """Check connectivity, authentication and data access. Never raises."""
        diagnostics: dict[str, Any] = {
            'timestamp': now_utc().isoformat(),
            'api_connection': {'status': 'unknown', 'message': 'Not tested'},
            'authentication': {'status': 'unknown', 'message': 'Not tested'},
            'data_access': {'status': 'unknown', 'message': 'Not tested'},
            'connection_details': None,
        }

        if not self.is_configured:
            diagnostics['api_connection'] = {
                'status': 'error',
                'message': 'Controller not configured',
                'missing': self.config.missing_fields(),
            }
            return diagnostics

        diagnostics['connection_details'] = {
            'controller_url': self.config.base_url,
            'site': self.config.site,
            'username': self.config.username,
            'unifi_os': self.config.unifi_os,
            'ssl_verification': 'enabled' if self.config.verify_ssl else 'disabled',
        }

        try:
            self.session.invalidate()
            await self.session.ensure_authenticated()
            diagnostics['api_connection'] = {'status': 'success', 'message': 'API endpoint reachable'}
            diagnostics['authentication'] = {
                'status': 'success',
                'message': 'Authentication successful',
                'username': self.config.username,
                'site': self.config.site,
            }

            clients = await self.fetch_clients()
            diagnostics['data_access'] = {
                'status': 'success',
                'message': 'Successfully retrieved client data',
                'client_count': len(clients),
                'sample': [
                    {
                        'mac': c.get('mac'),
                        'hostname': c.get('hostname') or 'Unknown',
                        'ip': c.get('ip') or 'N/A',
                    }
                    for c in clients[:2]
                ],
            }

        except AuthenticationError as e:
            diagnostics['api_connection'] = {'status': 'success', 'message': 'API endpoint reachable'}
            diagnostics['authentication'] = {'status': 'error', 'message': 'Authentication failed', 'error': str(e)}
        except PermissionDeniedError as e:
            diagnostics['data_access'] = {'status': 'error', 'message': 'Access denied', 'error': str(e)}
        except DeviceMonitorError as e:
            logger.error(f"Diagnostics failed: {e}")
            if diagnostics['authentication']['status'] == 'success':
                diagnostics['data_access'] = {'status': 'error', 'message': 'Client fetch failed', 'error': str(e)}
            else:
                diagnostics['api_connection'] = {'status': 'error', 'message': 'API connection failed', 'error': str(e)}

        return diagnostics

    async def close(self) -> None:
        """Log out and close the transport."""
        if self.is_configured:
            await self.session.logout()
        await self.client.close()
