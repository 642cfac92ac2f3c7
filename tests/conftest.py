"""
Shared fixtures: a mock network controller and temporary stores.
"""

import asyncio
import time
import uuid
from pathlib import Path

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import unused_port

from device_monitor.config import MonitorConfig
from device_monitor.controller import ControllerGateway
from device_monitor.device_db import DeviceDatabase
from device_monitor.rate_limiter import RateLimiter


SESSION_COOKIE = "unifises"


def sample_client(mac: str, **overrides) -> dict:
    """Client record shaped like a controller stat/sta entry."""
    client = {
        "mac": mac,
        "ip": "192.168.1.50",
        "hostname": f"host-{mac[-2:]}",
        "oui": "Apple",
        "first_seen": 1700000000,
        "last_seen": 1700000600,
        "is_wired": False,
        "ap_mac": "78:8a:20:00:00:01",
        "essid": "home",
        "signal": -55,
        "tx_bytes": 1000,
        "rx_bytes": 2000,
    }
    client.update(overrides)
    return client


class MockUnifiController:
    """Mock network controller for testing."""

    def __init__(self, username: str = "admin", password: str = "secret", site: str = "default"):
        self.app = web.Application()
        self.runner = None
        self.site_handle = None
        self.port = None

        self.username = username
        self.password = password
        self.site = site

        # Test data
        self.clients: list[dict] = []
        self.blocked: set[str] = set()
        self.tokens: set[str] = set()
        self.login_count = 0
        self.logout_count = 0
        self.requests: list[tuple[str, str, float]] = []
        self.commands: list[dict] = []

        # Failure knobs
        self.forbidden_macs: set[str] = set()
        self.empty_confirmation_macs: set[str] = set()
        self.throttle_next = 0
        self.throttle_login = 0
        self.fail_alluser = False
        self.stall_next = 0
        self.stall_seconds = 0.5

        # Setup routes
        self.app.router.add_post('/api/login', self.login)
        self.app.router.add_post('/api/logout', self.logout)
        self.app.router.add_get('/api/s/{site}/stat/sta', self.stat_sta)
        self.app.router.add_post('/api/s/{site}/stat/alluser', self.stat_alluser)
        self.app.router.add_post('/api/s/{site}/cmd/stamgr', self.stamgr)

    @staticmethod
    def _error(status: int, msg: str) -> web.Response:
        return web.json_response({'meta': {'rc': 'error', 'msg': msg}, 'data': []}, status=status)

    @staticmethod
    def _ok(data: list) -> web.Response:
        return web.json_response({'meta': {'rc': 'ok'}, 'data': data})

    def _record(self, request: web.Request) -> None:
        self.requests.append((request.method, request.path, time.monotonic()))

    def _authorized(self, request: web.Request) -> bool:
        return request.cookies.get(SESSION_COOKIE) in self.tokens

    def _check(self, request: web.Request):
        """Common auth/throttle gate for site endpoints."""
        if not self._authorized(request):
            return self._error(401, 'api.err.LoginRequired')
        if self.throttle_next > 0:
            self.throttle_next -= 1
            return self._error(429, 'api.err.RateLimited')
        return None

    async def login(self, request):
        """Login endpoint."""
        self._record(request)
        if self.throttle_login > 0:
            self.throttle_login -= 1
            return self._error(429, 'api.err.RateLimited')

        body = await request.json()
        if body.get('username') != self.username or body.get('password') != self.password:
            return self._error(400, 'api.err.Invalid')

        token = uuid.uuid4().hex
        self.tokens.add(token)
        self.login_count += 1

        response = self._ok([])
        response.set_cookie(SESSION_COOKIE, token)
        return response

    async def logout(self, request):
        """Logout endpoint."""
        self._record(request)
        self.tokens.discard(request.cookies.get(SESSION_COOKIE))
        self.logout_count += 1
        return self._ok([])

    async def stat_sta(self, request):
        """Connected clients endpoint."""
        self._record(request)
        if self.stall_next > 0:
            self.stall_next -= 1
            await asyncio.sleep(self.stall_seconds)
        rejected = self._check(request)
        if rejected is not None:
            return rejected
        return self._ok(self.clients)

    async def stat_alluser(self, request):
        """Known users endpoint, filtered by type."""
        self._record(request)
        rejected = self._check(request)
        if rejected is not None:
            return rejected
        if self.fail_alluser:
            return self._error(500, 'api.err.Internal')

        body = await request.json()
        if body.get('type') != 'blocked':
            return self._ok([])
        return self._ok([{'mac': mac, 'blocked': True} for mac in sorted(self.blocked)])

    async def stamgr(self, request):
        """Station manager command endpoint."""
        self._record(request)
        rejected = self._check(request)
        if rejected is not None:
            return rejected

        body = await request.json()
        self.commands.append(body)
        mac = body.get('mac')

        if mac in self.forbidden_macs:
            return self._error(403, 'api.err.NoPermission')
        if mac in self.empty_confirmation_macs:
            return self._ok([])

        if body.get('cmd') == 'block-sta':
            self.blocked.add(mac)
        elif body.get('cmd') == 'unblock-sta':
            self.blocked.discard(mac)
        else:
            return self._error(400, 'api.err.UnknownCommand')

        return self._ok([{'mac': mac, 'blocked': mac in self.blocked}])

    def expire_sessions(self) -> None:
        """Invalidate every issued session cookie (for testing)."""
        self.tokens.clear()

    def site_requests(self) -> list[tuple[str, str, float]]:
        """Requests that hit site-scoped endpoints."""
        return [r for r in self.requests if r[1].startswith('/api/s/')]

    async def start(self, port: int) -> None:
        """Start mock server."""
        self.port = port
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        self.site_handle = web.TCPSite(self.runner, '127.0.0.1', port)
        await self.site_handle.start()

    async def stop(self) -> None:
        """Stop mock server."""
        if self.site_handle:
            await self.site_handle.stop()
        if self.runner:
            await self.runner.cleanup()


@pytest_asyncio.fixture
async def controller():
    """Create and start mock controller."""
    server = MockUnifiController()
    await server.start(unused_port())
    yield server
    await server.stop()


@pytest.fixture
def config(tmp_path, controller) -> MonitorConfig:
    """Monitor configuration pointing at the mock controller."""
    return MonitorConfig(
        host='127.0.0.1',
        port=controller.port,
        username='admin',
        password='secret',
        use_tls=False,
        config_dir=tmp_path,
        min_request_interval=0.0,
        batch_item_delay=0.0,
        request_timeout=5.0,
        max_retries=1,
        retry_backoff=0.0,
    )


@pytest.fixture
def rate_limiter() -> RateLimiter:
    """Rate limiter with tiny intervals so tests stay fast."""
    return RateLimiter(min_interval=0.0, max_backoff=0.05, base_backoff=0.01)


@pytest_asyncio.fixture
async def gateway(config, rate_limiter):
    """Gateway connected to the mock controller."""
    gw = ControllerGateway(config, rate_limiter)
    yield gw
    await gw.close()


@pytest.fixture
def db(tmp_path: Path) -> DeviceDatabase:
    """Create a temporary device database."""
    return DeviceDatabase(tmp_path / "devices.db")
