"""HTTP transport over aiohttp. Surfaces statuses as responses and connection failures as NetworkError."""

import asyncio
import json as jsonlib
import logging
from dataclasses import dataclass, field, replace

import aiohttp

from errors import HttpError, NetworkError

log = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ApiRequest:
    method: str
    path: str
    headers: dict[str, str] = field(default_factory=dict)
    json: object = None
    params: dict | None = None
    auth: bool = True        # False: never attach a token, never refresh
    retried: bool = False    # already replayed once after a refresh

    def with_headers(self, **extra: str) -> "ApiRequest":
        return replace(self, headers={**self.headers, **extra})

    def without_header(self, name: str) -> "ApiRequest":
        headers = {k: v for k, v in self.headers.items() if k.lower() != name.lower()}
        return replace(self, headers=headers)

    def mark_retried(self) -> "ApiRequest":
        return replace(self, retried=True)


@dataclass(slots=True, frozen=True)
class ApiResponse:
    status: int
    headers: dict[str, str]
    body: bytes
    method: str = ""
    path: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self):
        if not self.body:
            return None
        return jsonlib.loads(self.body)

    def raise_for_status(self):
        if not self.ok:
            raise HttpError(self.status, self.text, method=self.method, path=self.path)


class Transport:
    def __init__(self, base_url: str, *, timeout: float = 15.0, default_headers: dict | None = None):
        self._base = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._default_headers = dict(default_headers or {})
        self._session: aiohttp.ClientSession | None = None

    @property
    def base_url(self) -> str:
        return self._base

    async def _ensure_session(self):
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    async def send(self, request: ApiRequest) -> ApiResponse:
        await self._ensure_session()
        url = f"{self._base}{request.path}"
        headers = {**self._default_headers, **request.headers}
        try:
            async with self._session.request(
                request.method, url,
                json=request.json, params=request.params, headers=headers,
            ) as resp:
                body = await resp.read()
                log.debug("HTTP %s %s → %d", request.method, request.path, resp.status)
                return ApiResponse(
                    status=resp.status,
                    headers=dict(resp.headers),
                    body=body,
                    method=request.method,
                    path=request.path,
                )
        except aiohttp.ClientError as e:
            log.error("API %s %s error: %s", request.method, request.path, e)
            raise NetworkError(f"{request.method} {request.path}: {e}") from e
        except asyncio.TimeoutError as e:
            log.error("API %s %s timed out", request.method, request.path)
            raise NetworkError(f"{request.method} {request.path}: timed out") from e
