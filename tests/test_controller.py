"""
Tests for the controller gateway against a mock controller.
"""

import asyncio

import pytest

from device_monitor._types import CommandAction
from device_monitor.config import MonitorConfig
from device_monitor.controller import ControllerGateway
from device_monitor.errors import (
    AuthenticationError,
    ConfigurationError,
    OperationError,
    PermissionDeniedError,
    RateLimitedError,
)
from device_monitor.rate_limiter import RateLimiter

from conftest import sample_client


class TestFetchClients:
    """Client list retrieval."""

    @pytest.mark.asyncio
    async def test_fetch_clients(self, gateway, controller):
        """Returns the raw client records in controller order."""
        controller.clients = [
            sample_client("aa:bb:cc:dd:ee:01"),
            sample_client("aa:bb:cc:dd:ee:02"),
        ]

        clients = await gateway.fetch_clients()

        assert [c["mac"] for c in clients] == ["aa:bb:cc:dd:ee:01", "aa:bb:cc:dd:ee:02"]
        assert controller.login_count == 1

    @pytest.mark.asyncio
    async def test_fetch_clients_empty(self, gateway, controller):
        """No online clients is an empty list, not an error."""
        assert await gateway.fetch_clients() == []

    @pytest.mark.asyncio
    async def test_records_without_mac_dropped(self, gateway, controller):
        """Malformed records are filtered out."""
        controller.clients = [sample_client("aa:bb:cc:dd:ee:01"), {"hostname": "ghost"}]

        clients = await gateway.fetch_clients()

        assert len(clients) == 1

    @pytest.mark.asyncio
    async def test_session_reused(self, gateway, controller):
        """Consecutive calls share one login."""
        await gateway.fetch_clients()
        await gateway.fetch_clients()

        assert controller.login_count == 1


class TestSessionInvalidation:
    """401-equivalent responses."""

    @pytest.mark.asyncio
    async def test_401_invalidates_and_next_call_relogs(self, gateway, controller):
        """A rejected session forces a fresh login on the very next call."""
        await gateway.fetch_clients()
        controller.expire_sessions()

        with pytest.raises(AuthenticationError):
            await gateway.fetch_clients()

        assert gateway.session.is_logged_in is False

        controller.clients = [sample_client("aa:bb:cc:dd:ee:01")]
        clients = await gateway.fetch_clients()

        assert len(clients) == 1
        assert controller.login_count == 2
        # The login precedes the retried request
        paths = [path for _, path, _ in controller.requests]
        assert paths[-2:] == ["/api/login", "/api/s/default/stat/sta"]


class TestCommands:
    """Block and unblock."""

    @pytest.mark.asyncio
    async def test_block(self, gateway, controller):
        """Block sends block-sta with the lower-cased MAC."""
        confirmation = await gateway.block("AA:BB:CC:DD:EE:01")

        assert confirmation.mac == "aa:bb:cc:dd:ee:01"
        assert confirmation.action == CommandAction.BLOCK
        assert confirmation.data
        assert controller.commands == [{"cmd": "block-sta", "mac": "aa:bb:cc:dd:ee:01"}]
        assert "aa:bb:cc:dd:ee:01" in controller.blocked

    @pytest.mark.asyncio
    async def test_unblock(self, gateway, controller):
        """Unblock sends unblock-sta."""
        controller.blocked.add("aa:bb:cc:dd:ee:01")

        confirmation = await gateway.unblock("AA-BB-CC-DD-EE-01")

        assert confirmation.action == CommandAction.UNBLOCK
        assert controller.commands[-1] == {"cmd": "unblock-sta", "mac": "aa:bb:cc:dd:ee:01"}
        assert controller.blocked == set()

    @pytest.mark.asyncio
    async def test_permission_denied(self, gateway, controller):
        """403 maps to PermissionDeniedError and keeps the session."""
        controller.forbidden_macs.add("aa:bb:cc:dd:ee:02")

        with pytest.raises(PermissionDeniedError):
            await gateway.block("aa:bb:cc:dd:ee:02")

        assert gateway.session.is_logged_in is True

    @pytest.mark.asyncio
    async def test_empty_confirmation_is_failure(self, gateway, controller):
        """An empty data list is not treated as success."""
        controller.empty_confirmation_macs.add("aa:bb:cc:dd:ee:03")

        with pytest.raises(OperationError):
            await gateway.block("aa:bb:cc:dd:ee:03")

    @pytest.mark.asyncio
    async def test_throttled_command(self, gateway, controller, rate_limiter):
        """429 raises RateLimitedError and escalates the shared backoff."""
        await gateway.fetch_clients()
        controller.throttle_next = 1

        with pytest.raises(RateLimitedError):
            await gateway.block("aa:bb:cc:dd:ee:01")

        assert rate_limiter.current_backoff > 0

        await gateway.block("aa:bb:cc:dd:ee:01")
        assert rate_limiter.current_backoff == 0.0


class TestBlockedClients:
    """Best-effort blocked list."""

    @pytest.mark.asyncio
    async def test_fetch_blocked(self, gateway, controller):
        controller.blocked = {"aa:bb:cc:dd:ee:01", "aa:bb:cc:dd:ee:02"}

        blocked = await gateway.fetch_blocked_clients()

        assert sorted(blocked) == ["aa:bb:cc:dd:ee:01", "aa:bb:cc:dd:ee:02"]

    @pytest.mark.asyncio
    async def test_fetch_blocked_failure_returns_empty(self, gateway, controller):
        """Controller failures degrade to an empty list."""
        controller.fail_alluser = True

        assert await gateway.fetch_blocked_clients() == []


class TestNotConfigured:
    """Gateway without connection parameters."""

    @pytest.fixture
    def unconfigured(self, tmp_path):
        config = MonitorConfig(config_dir=tmp_path)
        return ControllerGateway(config, RateLimiter(min_interval=0.0))

    @pytest.mark.asyncio
    async def test_operations_fail_fast(self, unconfigured):
        """Every controller operation raises ConfigurationError."""
        assert unconfigured.is_configured is False

        with pytest.raises(ConfigurationError):
            await unconfigured.fetch_clients()
        with pytest.raises(ConfigurationError):
            await unconfigured.fetch_blocked_clients()
        with pytest.raises(ConfigurationError):
            await unconfigured.block("aa:bb:cc:dd:ee:01")

        await unconfigured.close()

    @pytest.mark.asyncio
    async def test_diagnostics_report_missing_fields(self, unconfigured):
        diagnostics = await unconfigured.run_diagnostics()

        assert diagnostics["api_connection"]["status"] == "error"
        assert "host" in diagnostics["api_connection"]["missing"]
        await unconfigured.close()


class TestDiagnostics:
    """Connectivity report."""

    @pytest.mark.asyncio
    async def test_diagnostics_success(self, gateway, controller):
        controller.clients = [sample_client("aa:bb:cc:dd:ee:01")]

        diagnostics = await gateway.run_diagnostics()

        assert diagnostics["api_connection"]["status"] == "success"
        assert diagnostics["authentication"]["status"] == "success"
        assert diagnostics["data_access"]["client_count"] == 1
        assert diagnostics["connection_details"]["site"] == "default"

    @pytest.mark.asyncio
    async def test_diagnostics_bad_credentials(self, gateway, controller):
        """Authentication failures are reported, not raised."""
        gateway.config.password = "wrong"

        diagnostics = await gateway.run_diagnostics()

        assert diagnostics["authentication"]["status"] == "error"
        assert diagnostics["data_access"]["status"] == "unknown"


def _gaps(requests):
    stamps = sorted(stamp for _, _, stamp in requests)
    return [later - earlier for earlier, later in zip(stamps, stamps[1:])]


class TestSharedRateLimit:
    """Every request of every gateway goes through one limiter."""

    # Server-side arrival times jitter by a few milliseconds on loopback
    SLACK = 0.8

    @pytest.mark.asyncio
    async def test_two_gateways_share_spacing(self, config, controller):
        """Logins, fetches and commands from two gateways stay spaced."""
        limiter = RateLimiter(min_interval=0.1, max_backoff=0.05, base_backoff=0.01)
        first = ControllerGateway(config, limiter)
        second = ControllerGateway(config, limiter)
        controller.clients = [sample_client("aa:bb:cc:dd:ee:01")]

        try:
            await asyncio.gather(
                first.fetch_clients(),
                first.block("aa:bb:cc:dd:ee:01"),
                second.fetch_clients(),
                second.block("aa:bb:cc:dd:ee:02"),
            )
        finally:
            await first.close()
            await second.close()

        assert controller.login_count == 2
        paths = {path for _, path, _ in controller.requests}
        assert {"/api/login", "/api/s/default/stat/sta", "/api/s/default/cmd/stamgr"} <= paths
        gaps = _gaps(controller.requests)
        assert len(gaps) >= 5
        assert min(gaps) >= 0.1 * self.SLACK

    @pytest.mark.asyncio
    async def test_transport_retry_waits_for_slot(self, config, controller):
        """A retry after a timeout is spaced like any other request."""
        config.request_timeout = 0.2
        config.max_retries = 2
        config.retry_backoff = 0.0
        controller.stall_next = 1
        controller.clients = [sample_client("aa:bb:cc:dd:ee:01")]

        limiter = RateLimiter(min_interval=0.5)
        gw = ControllerGateway(config, limiter)
        try:
            clients = await gw.fetch_clients()
        finally:
            await gw.close()

        assert len(clients) == 1
        fetches = [r for r in controller.requests if r[1] == "/api/s/default/stat/sta"]
        assert len(fetches) == 2
        assert min(_gaps(fetches)) >= 0.5 * self.SLACK
        assert min(_gaps(controller.requests)) >= 0.5 * self.SLACK
