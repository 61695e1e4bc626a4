"""Attach the bearer credential to outbound requests."""

from auth.token_store import Credential
from transport import ApiRequest


def bearer(token: str) -> str:
    return f"Bearer {token}"


def attach_bearer(request: ApiRequest, token: str) -> ApiRequest:
    return request.without_header("Authorization").with_headers(Authorization=bearer(token))


def attach_token(request: ApiRequest, credential: Credential | None) -> ApiRequest:
    """Return a copy of ``request`` carrying ``Authorization: Bearer <token>``.

    Requests marked ``auth=False``, or sent while signed out, go out with no
    Authorization header at all.
    """
    if not request.auth or credential is None:
        return request.without_header("Authorization")
    return attach_bearer(request, credential.access_token)


def token_of(request: ApiRequest) -> str | None:
    """Access token a request was sent with, if any."""
    for name, value in request.headers.items():
        if name.lower() == "authorization" and value.startswith("Bearer "):
            return value[len("Bearer "):]
    return None
