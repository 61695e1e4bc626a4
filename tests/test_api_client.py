"""Tests for ApiClient — per-instance refresh state, and end-to-end against a local aiohttp server."""

import asyncio
from contextlib import asynccontextmanager

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from api_client import ApiClient
from auth.refresh import RefreshCoordinator
from auth.token_store import Credential, TokenStore
from errors import ClientClosed, HttpError, NetworkError, RefreshFailed
from transport import Transport


def test_each_client_owns_its_coordinator():
    """Refresh state is per instance, never shared between clients."""
    a = ApiClient("http://localhost:3000/api", TokenStore())
    b = ApiClient("http://localhost:3000/api", TokenStore())
    assert isinstance(a.coordinator, RefreshCoordinator)
    assert a.coordinator is not b.coordinator


def test_server_url_trailing_slash():
    """Trailing slash is stripped from server URL."""
    t = Transport("http://localhost:3000/api/")
    assert t.base_url == "http://localhost:3000/api"


# ── end-to-end ─────────────────────────────────────────────


class Backend:
    def __init__(self):
        self.access = "T2"
        self.refresh_calls = 0
        self.seen_headers: list[dict] = []
        self.login_bodies: list[dict] = []
        self.vehicles_status = 200
        self.vehicle_paths: list[str] = []

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/api/auth/refresh-token", self.refresh)
        app.router.add_post("/api/auth/login", self.login)
        app.router.add_get("/api/users/profile", self.profile)
        app.router.add_get("/api/orders", self.orders)
        app.router.add_get("/api/vehicles/types", self.vehicle_types)
        app.router.add_get("/api/vehicles/types/active", self.active_vehicle_types)
        return app

    async def refresh(self, request):
        self.refresh_calls += 1
        body = await request.json()
        await asyncio.sleep(0.05)
        if body.get("refreshToken") != "R1":
            return web.json_response({"error": "invalid refresh token"}, status=400)
        return web.json_response({"token": self.access, "refreshToken": "R2"})

    async def login(self, request):
        body = await request.json()
        self.login_bodies.append(body)
        if body.get("password") != "secret":
            return web.json_response({"error": "invalid credentials"}, status=401)
        return web.json_response({
            "token": self.access,
            "refreshToken": "R1",
            "user": {"id": "u42", "role": "customer"},
        })

    async def profile(self, request):
        self.seen_headers.append(dict(request.headers))
        if request.headers.get("Authorization") != f"Bearer {self.access}":
            return web.json_response({"error": "token expired"}, status=401)
        return web.json_response({"id": "u1", "name": "Ada"})

    async def orders(self, request):
        return web.json_response({"error": "database unavailable"}, status=500)

    async def vehicle_types(self, request):
        self.vehicle_paths.append(request.path_qs)
        if self.vehicles_status != 200:
            return web.json_response({"error": "unavailable"}, status=self.vehicles_status)
        return web.json_response({"types": ["bike", "van"], "active": request.query.get("active")})

    async def active_vehicle_types(self, request):
        self.vehicle_paths.append(request.path_qs)
        return web.json_response({"types": ["bike"]})


@asynccontextmanager
async def running(backend: Backend, store: TokenStore):
    server = TestServer(backend.app())
    await server.start_server()
    client = ApiClient(str(server.make_url("/api")), store)
    try:
        yield client
    finally:
        await client.close()
        await server.close()


def _store(access="T1", refresh="R1") -> TokenStore:
    ts = TokenStore()
    ts.replace(Credential(access, refresh, "u1"))
    return ts


@pytest.mark.asyncio
async def test_concurrent_profile_fetches_refresh_once():
    backend = Backend()
    store = _store()
    async with running(backend, store) as client:
        results = await asyncio.gather(*(client.get_profile() for _ in range(5)))
    assert results == [{"id": "u1", "name": "Ada"}] * 5
    assert backend.refresh_calls == 1
    assert store.snapshot() == Credential("T2", "R2", "u1")


@pytest.mark.asyncio
async def test_rejected_refresh_signs_out():
    backend = Backend()
    store = _store(refresh="stale")
    async with running(backend, store) as client:
        with pytest.raises(RefreshFailed):
            await client.get_profile()
    assert store.snapshot() is None


@pytest.mark.asyncio
async def test_platform_headers_sent():
    backend = Backend()
    async with running(backend, _store(access="T2")) as client:
        await client.get_profile()
    headers = backend.seen_headers[0]
    assert headers["X-Platform"] == "mobile-customer"
    assert headers["Authorization"] == "Bearer T2"


@pytest.mark.asyncio
async def test_login_stores_credential():
    backend = Backend()
    store = TokenStore()
    async with running(backend, store) as client:
        data = await client.login("ada@example.com", "secret")
    assert data["user"]["id"] == "u42"
    assert backend.login_bodies[0] == {
        "email": "ada@example.com",
        "password": "secret",
        "platform": "mobile",
    }
    assert store.snapshot() == Credential("T2", "R1", "u42")


@pytest.mark.asyncio
async def test_bad_login_raises_http_error_without_refresh():
    backend = Backend()
    store = TokenStore()
    async with running(backend, store) as client:
        with pytest.raises(HttpError) as exc_info:
            await client.login("+3531234567", "wrong", is_email=False)
    assert exc_info.value.status == 401
    assert backend.refresh_calls == 0
    assert backend.login_bodies[0]["phone"] == "+3531234567"


@pytest.mark.asyncio
async def test_server_error_raises_http_error():
    backend = Backend()
    async with running(backend, _store(access="T2")) as client:
        with pytest.raises(HttpError) as exc_info:
            await client.get_orders()
    assert exc_info.value.status == 500
    assert backend.refresh_calls == 0


@pytest.mark.asyncio
async def test_connection_refused_is_network_error():
    server = TestServer(web.Application())
    await server.start_server()
    url = str(server.make_url("/api"))
    await server.close()

    store = _store()
    async with ApiClient(url, store, timeout=2.0) as client:
        with pytest.raises(NetworkError):
            await client.get_profile()
    assert store.access_token == "T1"


@pytest.mark.asyncio
async def test_closed_client_rejects_requests():
    client = ApiClient("http://localhost:3000/api", _store())
    await client.close()
    with pytest.raises(ClientClosed):
        await client.request("GET", "/orders")


@pytest.mark.asyncio
async def test_logout_clears_store():
    store = _store()
    client = ApiClient("http://localhost:3000/api", store)
    assert await client.logout() == {"success": True}
    assert store.snapshot() is None
    await client.close()


@pytest.mark.asyncio
async def test_active_vehicles_uses_filter_query():
    backend = Backend()
    async with running(backend, _store(access="T2")) as client:
        data = await client.get_active_vehicles()
    assert data == {"types": ["bike", "van"], "active": "true"}
    assert backend.vehicle_paths == ["/api/vehicles/types?active=true"]


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [404, 502])
async def test_active_vehicles_falls_back_to_dedicated_route(status):
    backend = Backend()
    backend.vehicles_status = status
    async with running(backend, _store(access="T2")) as client:
        data = await client.get_active_vehicles()
    assert data == {"types": ["bike"]}
    assert backend.vehicle_paths == [
        "/api/vehicles/types?active=true",
        "/api/vehicles/types/active",
    ]


@pytest.mark.asyncio
async def test_active_vehicles_other_errors_raise():
    backend = Backend()
    backend.vehicles_status = 500
    async with running(backend, _store(access="T2")) as client:
        with pytest.raises(HttpError) as exc_info:
            await client.get_active_vehicles()
    assert exc_info.value.status == 500
    assert backend.vehicle_paths == ["/api/vehicles/types?active=true"]
