"""Signed-in state on top of the token store.

A refresh failure clears the store; the session reports that as signed out
on its next check and fires ``on_signed_out`` so the app can route back to
sign-in.
"""

import asyncio
import logging
from collections.abc import Callable

from auth.token_store import USER_ID, Credential, TokenStore
from errors import ApiError, RefreshFailed, RetryExhausted

log = logging.getLogger(__name__)


class AuthSession:
    def __init__(self, api_client, on_signed_out: Callable[[], None] | None = None):
        self._client = api_client
        self._tokens: TokenStore = api_client.token_store
        self._on_signed_out = on_signed_out
        self.user_info: dict | None = None
        self.is_authenticated: bool = False
        self.check_auth_status()

    @property
    def user_id(self) -> str | None:
        return self._tokens.get(USER_ID)

    def check_auth_status(self) -> bool:
        """Signed in only when both an access token and a user id are stored."""
        was = self.is_authenticated
        self.is_authenticated = self._tokens.access_token is not None and self.user_id is not None
        if was and not self.is_authenticated:
            self.user_info = None
            log.info("Session ended")
            if self._on_signed_out:
                self._on_signed_out()
        return self.is_authenticated

    def sign_in_with(self, token: str, refresh_token: str, user_id: str):
        self._tokens.replace(Credential(token, refresh_token, user_id))
        self.check_auth_status()

    async def sign_in(self, identifier: str, password: str, *, is_email: bool = True) -> bool:
        await self._client.login(identifier, password, is_email=is_email)
        return self.check_auth_status()

    async def sign_out(self):
        await self._client.logout()
        self.check_auth_status()

    async def refresh_user(self) -> dict | None:
        """Fetch the profile; a failed refresh ends the session."""
        if not self.check_auth_status():
            return None
        try:
            self.user_info = await self._client.get_profile()
        except (RefreshFailed, RetryExhausted):
            log.warning("Session rejected by server")
        except ApiError as e:
            log.error("Profile fetch failed: %s", e)
        self.check_auth_status()
        return self.user_info

    async def check_loop(self, interval: float = 30.0):
        """Periodically re-check auth status and refresh user info."""
        while True:
            await asyncio.sleep(interval)
            await self.refresh_user()
