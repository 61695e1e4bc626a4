"""Single-flight token refresh.

One coordinator per client. When a request fails authentication the gate
asks the coordinator for a fresh access token. The first caller of an
episode becomes the driver and runs the refresh exchange; everyone who asks
while that exchange is in flight is queued behind it. When the exchange
settles, the queue (driver included) is released in arrival order, either
all with the new token or all with the same ``RefreshFailed``.

State transitions happen under a ``threading.Lock`` that is never held
across an ``await``, so callers may live on different event loops in
different threads. Waiters are ``concurrent.futures.Future`` objects and are
awaited through ``asyncio.wrap_future``.
"""

import asyncio
import enum
import logging
import threading
from collections import deque
from collections.abc import Awaitable, Callable
from concurrent.futures import Future

from auth.token_store import USER_ID, Credential, TokenStore
from errors import ClientClosed, RefreshFailed

log = logging.getLogger(__name__)

# refresh_token -> (access_token, rotated refresh_token or None)
Exchange = Callable[[str], Awaitable[tuple[str, str | None]]]


class RefreshState(enum.Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"


class RefreshCoordinator:
    def __init__(self, store: TokenStore, exchange: Exchange):
        self._store = store
        self._exchange = exchange
        self._lock = threading.Lock()
        self._state = RefreshState.IDLE
        self._waiters: deque[Future] = deque()
        self._closed = False

    @property
    def state(self) -> RefreshState:
        with self._lock:
            return self._state

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._waiters)

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    async def fresh_token(self, sent_with: str | None = None, *, force: bool = False) -> str:
        """Return an access token newer than ``sent_with``.

        If the store already holds a different token than the one the failed
        request carried, that token is returned without a new exchange.
        ``force=True`` always joins or starts an exchange.
        """
        waiter: Future = Future()
        with self._lock:
            if self._closed:
                raise ClientClosed("Client is closed")
            if not force and self._state is RefreshState.IDLE:
                current = self._store.access_token
                if current is not None and current != sent_with:
                    return current
            self._waiters.append(waiter)
            is_driver = self._state is RefreshState.IDLE
            if is_driver:
                self._state = RefreshState.REFRESHING
                refresh_token = self._store.refresh_token
                user_id = self._store.get(USER_ID)
                generation = self._store.generation

        # Wrap before driving so wake-ups follow queue order, driver first
        result = asyncio.wrap_future(waiter)
        if is_driver:
            log.info("Access token expired, refreshing")
            try:
                await self._drive(refresh_token, user_id, generation)
            except asyncio.CancelledError:
                result.cancel()
                raise
        else:
            log.debug("Refresh in flight, waiting (%d queued)", self.pending)
        return await result

    def shutdown(self):
        """Reject every outstanding waiter with ClientClosed and refuse new ones."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            waiters = self._take_waiters()
        if waiters:
            log.info("Client closed, rejecting %d waiter(s)", len(waiters))
        error = ClientClosed("Client closed while waiting for token refresh")
        for waiter in waiters:
            _settle(waiter, error=error)

    # ── driver ─────────────────────────────────────────────

    async def _drive(self, refresh_token: str | None, user_id: str | None, generation: int):
        try:
            if not refresh_token:
                raise RefreshFailed("No refresh token available")
            access, rotated = await self._exchange(refresh_token)
        except RefreshFailed as e:
            self._fail(e, generation, clear=True)
        except asyncio.CancelledError:
            # Exchange outcome unknown; release waiters but keep credentials
            self._fail(RefreshFailed("Token refresh cancelled"), generation, clear=False)
            raise
        except Exception as e:
            log.exception("Token refresh raised unexpectedly")
            error = RefreshFailed(f"Token refresh failed: {e}")
            error.__cause__ = e
            self._fail(error, generation, clear=True)
        else:
            self._succeed(Credential(
                access_token=access,
                refresh_token=rotated or refresh_token,
                user_id=user_id,
            ), generation)

    def _succeed(self, credential: Credential, generation: int):
        with self._lock:
            self._state = RefreshState.IDLE
            waiters = self._take_waiters()
            if self._store.generation != generation:
                # Signed out or signed in again mid-exchange: that wins
                current = self._store.access_token
            else:
                # Persisted even after close: the server may have rotated the refresh token
                self._store.replace(credential)
                current = credential.access_token
                if self._closed:
                    log.info("Token refreshed after close, credentials saved")
        if current is None:
            log.info("Signed out during token refresh, rejecting %d waiter(s)", len(waiters))
            error = RefreshFailed("Signed out during token refresh")
            for waiter in waiters:
                _settle(waiter, error=error)
            return
        log.info("Token refreshed, releasing %d waiter(s)", len(waiters))
        for waiter in waiters:
            _settle(waiter, token=current)

    def _fail(self, error: RefreshFailed, generation: int, *, clear: bool):
        with self._lock:
            self._state = RefreshState.IDLE
            waiters = self._take_waiters()
            if clear and self._store.generation == generation:
                self._store.clear()
        log.warning("Token refresh failed: %s; rejecting %d waiter(s)", error, len(waiters))
        for waiter in waiters:
            _settle(waiter, error=error)

    def _take_waiters(self) -> list[Future]:
        waiters = list(self._waiters)
        self._waiters.clear()
        return waiters


def _settle(waiter: Future, *, token: str | None = None, error: BaseException | None = None):
    # False means the waiting task was cancelled; nothing to deliver
    if not waiter.set_running_or_notify_cancel():
        return
    if error is not None:
        waiter.set_exception(error)
    else:
        waiter.set_result(token)
