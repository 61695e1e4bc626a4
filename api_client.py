"""Central HTTP client for the delivery API. Bearer auth with single-flight refresh."""

import logging

from pydantic import BaseModel, ValidationError

from auth.gate import ResponseGate
from auth.refresh import RefreshCoordinator
from auth.token_store import USER_ID, Credential, TokenStore
from config import Settings
from errors import ClientClosed, HttpError, NetworkError, RefreshFailed
from transport import ApiRequest, ApiResponse, Transport

log = logging.getLogger(__name__)


class RefreshResponse(BaseModel):
    token: str
    refreshToken: str | None = None


class LoginUser(BaseModel):
    id: str

    model_config = {"extra": "allow", "coerce_numbers_to_str": True}


class LoginResponse(BaseModel):
    token: str
    refreshToken: str
    user: LoginUser

    model_config = {"extra": "allow"}


class ApiClient:
    def __init__(
        self,
        server_url: str,
        token_store: TokenStore,
        *,
        platform: str = "mobile",
        client_platform: str = "mobile-customer",
        refresh_path: str = "/auth/refresh-token",
        timeout: float = 15.0,
        transport: Transport | None = None,
    ):
        self._tokens = token_store
        self._platform = platform
        self._refresh_path = refresh_path
        self._transport = transport or Transport(
            server_url,
            timeout=timeout,
            default_headers={
                "Content-Type": "application/json",
                "X-Platform": client_platform,
            },
        )
        self._coordinator = RefreshCoordinator(token_store, self._exchange_refresh)
        self._gate = ResponseGate(token_store, self._transport, self._coordinator)
        self._closed = False

    @classmethod
    def from_settings(cls, settings: Settings, token_store: TokenStore | None = None) -> "ApiClient":
        if token_store is None:
            token_store = TokenStore(settings.credentials_path)
        return cls(
            settings.api_url,
            token_store,
            platform=settings.platform,
            client_platform=settings.client_platform,
            refresh_path=settings.refresh_path,
            timeout=settings.request_timeout,
        )

    @property
    def token_store(self) -> TokenStore:
        return self._tokens

    @property
    def coordinator(self) -> RefreshCoordinator:
        return self._coordinator

    async def close(self):
        self._closed = True
        self._coordinator.shutdown()
        await self._transport.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.close()

    # ── Core ───────────────────────────────────────────────

    async def request(
        self, method: str, path: str, *,
        headers: dict | None = None, json=None, params=None, auth: bool = True,
    ) -> ApiResponse:
        """Issue a request. Token attach, refresh and replay are handled here.

        Returns the response for any status except a 401 that could not be
        recovered. Raises NetworkError, RefreshFailed, RetryExhausted or
        ClientClosed.
        """
        if self._closed:
            raise ClientClosed("Client is closed")
        return await self._gate.dispatch(ApiRequest(
            method=method.upper(),
            path=path,
            headers=dict(headers or {}),
            json=json,
            params=params,
            auth=auth,
        ))

    async def _request_json(self, method: str, path: str, *, json=None, params=None, auth=True):
        resp = await self.request(method, path, json=json, params=params, auth=auth)
        if not resp.ok:
            log.error("API %s %s → %d: %s", method, path, resp.status, resp.text[:200])
        resp.raise_for_status()
        return resp.json()

    async def _exchange_refresh(self, refresh_token: str) -> tuple[str, str | None]:
        # Bypasses the gate: no bearer header, no recursion into refresh
        try:
            resp = await self._transport.send(ApiRequest(
                method="POST",
                path=self._refresh_path,
                json={"refreshToken": refresh_token, "platform": self._platform},
                auth=False,
            ))
        except NetworkError as e:
            raise RefreshFailed(f"Token refresh failed: {e}") from e
        if not resp.ok:
            raise RefreshFailed("Token refresh rejected", status=resp.status)
        try:
            data = RefreshResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise RefreshFailed("Token refresh failed: malformed response", status=resp.status) from e
        return data.token, data.refreshToken

    # ── Auth ───────────────────────────────────────────────

    async def login(self, identifier: str, password: str, *, is_email: bool = True) -> dict:
        payload = {"password": password, "platform": self._platform}
        payload["email" if is_email else "phone"] = identifier
        data = await self._request_json("POST", "/auth/login", json=payload, auth=False)
        try:
            parsed = LoginResponse.model_validate(data)
        except ValidationError:
            log.warning("Login response carried no token")
            return data
        self._tokens.replace(Credential(
            access_token=parsed.token,
            refresh_token=parsed.refreshToken,
            user_id=parsed.user.id,
        ))
        return data

    async def register(self, user_data: dict, *, role: str = "customer") -> dict:
        return await self._request_json("POST", "/auth/register", json={
            **user_data,
            "role": role,
            "platform": self._platform,
        }, auth=False)

    async def logout(self) -> dict:
        self._tokens.clear()
        return {"success": True}

    async def refresh_token(self) -> str:
        """Force a refresh now. Shares the in-flight exchange if there is one."""
        return await self._coordinator.fresh_token(force=True)

    @property
    def user_id(self) -> str | None:
        return self._tokens.get(USER_ID)

    # ── Profile ────────────────────────────────────────────

    async def get_profile(self) -> dict:
        return await self._request_json("GET", "/users/profile")

    async def update_profile(self, profile_data: dict) -> dict:
        return await self._request_json("PUT", "/users/profile", json=profile_data)

    # ── Orders ─────────────────────────────────────────────

    async def create_order(self, order_data: dict) -> dict:
        return await self._request_json("POST", "/orders", json=order_data)

    async def get_orders(self) -> dict:
        return await self._request_json("GET", "/orders")

    async def get_order(self, order_id: str) -> dict:
        return await self._request_json("GET", f"/orders/{order_id}")

    async def cancel_order(self, order_id: str) -> dict:
        return await self._request_json("POST", f"/orders/{order_id}/cancel")

    # ── Vehicles ───────────────────────────────────────────

    async def get_vehicle_types(self) -> dict:
        return await self._request_json("GET", "/vehicles/types")

    async def get_active_vehicles(self) -> dict:
        try:
            return await self._request_json("GET", "/vehicles/types", params={"active": "true"})
        except HttpError as e:
            # Older backends only expose the dedicated route
            if e.status not in (404, 502):
                raise
            log.info("Active vehicle filter unavailable (%d), trying /vehicles/types/active", e.status)
            return await self._request_json("GET", "/vehicles/types/active")

    # ── Payments ───────────────────────────────────────────

    async def add_payment_method(self, payment_method_id: str) -> dict:
        return await self._request_json("POST", "/payment/methods", json={
            "paymentMethodId": payment_method_id,
        })

    async def get_payment_methods(self) -> dict:
        return await self._request_json("GET", "/payment/methods")

    async def remove_payment_method(self, payment_method_id: str) -> dict:
        return await self._request_json("DELETE", f"/payment/methods/{payment_method_id}")

    async def create_payment_intent(self, order_id: str, payment_method_id: str, tip_amount: float = 0) -> dict:
        return await self._request_json("POST", "/payment/intents", json={
            "orderId": order_id,
            "paymentMethodId": payment_method_id,
            "tipAmount": tip_amount,
        })

    async def record_cash_payment(self, order_id: str, tip_amount: float = 0) -> dict:
        return await self._request_json("POST", "/payment/cash-payments", json={
            "orderId": order_id,
            "tipAmount": tip_amount,
        })

    async def add_tip(self, order_id: str, payment_intent_id: str, tip_amount: float) -> dict:
        return await self._request_json("POST", f"/payment/intents/{payment_intent_id}/tip", json={
            "orderId": order_id,
            "tipAmount": tip_amount,
        })
