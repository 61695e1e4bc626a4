"""Refresh-and-retry policy around a single request."""

import logging

from auth.interceptor import attach_bearer, attach_token, token_of
from auth.refresh import RefreshCoordinator
from auth.token_store import TokenStore
from errors import RetryExhausted
from transport import ApiRequest, ApiResponse, Transport

log = logging.getLogger(__name__)


class ResponseGate:
    """Send a request; on a first-attempt 401, refresh once and replay it.

    Anything other than a 401 on an authenticated request comes back
    unchanged, and NetworkError from the transport propagates untouched.
    A failed refresh reaches the caller as the coordinator's RefreshFailed,
    in place of the 401. The gate reads the store but never writes it.
    """

    def __init__(self, store: TokenStore, transport: Transport, coordinator: RefreshCoordinator):
        self._store = store
        self._transport = transport
        self._coordinator = coordinator

    async def dispatch(self, request: ApiRequest) -> ApiResponse:
        outgoing = attach_token(request, self._store.snapshot())
        response = await self._transport.send(outgoing)
        if not request.auth or response.status != 401:
            return response
        if request.retried:
            raise _exhausted(request, response)

        log.info("API %s %s → 401, waiting for fresh token", request.method, request.path)
        token = await self._coordinator.fresh_token(token_of(outgoing))
        retry = request.mark_retried()
        response = await self._transport.send(attach_bearer(retry, token))
        if response.status == 401:
            raise _exhausted(retry, response)
        return response


def _exhausted(request: ApiRequest, response: ApiResponse) -> RetryExhausted:
    log.error("API %s %s → 401 after refresh, giving up", request.method, request.path)
    return RetryExhausted(response.text, method=request.method, path=request.path)
