"""Error taxonomy for the delivery API client."""


class ApiError(Exception):
    """Base class for every error the client raises."""


class NetworkError(ApiError):
    """Transport failure (connection, DNS, timeout). Never triggers refresh."""


class HttpError(ApiError):
    def __init__(self, status: int, body: str = "", *, method: str = "", path: str = ""):
        self.status = status
        self.body = body
        self.method = method
        self.path = path
        super().__init__(f"{method} {path} → {status}".strip())


class AuthExpired(HttpError):
    """401 on a first attempt. Recovered locally by refresh-and-retry."""

    def __init__(self, body: str = "", *, method: str = "", path: str = ""):
        super().__init__(401, body, method=method, path=path)


class RetryExhausted(AuthExpired):
    """401 again after a successful refresh. Terminal."""


class RefreshFailed(ApiError):
    """The refresh exchange failed. Every waiter of the episode gets the same instance."""

    def __init__(self, reason: str, status: int | None = None):
        self.reason = reason
        self.status = status
        msg = reason if status is None else f"{reason} (HTTP {status})"
        super().__init__(msg)


class ClientClosed(ApiError):
    """The client was shut down while the caller was waiting on it."""
