"""Per-request bearer token resolution and the authorization dependency built on it."""

from __future__ import annotations

import logging

from fastapi import Request
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from ..domain.errors import AuthenticationError, TokenInvalidError
from ..domain.users import Principal
from ..repository import UserRepository
from .tokens import TokenAuthority

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


def extract_bearer(authorization: str | None) -> str | None:
    """Return the token of an ``Authorization: Bearer <token>`` header, if well formed."""
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        return None
    token = authorization[len(BEARER_PREFIX):].strip()
    return token or None


class RequestGatekeeper:
    """Resolves a bearer credential to a principal, or to nothing.

    Never rejects a call itself; enforcement is left to ``require_principal``.
    """

    def __init__(self, tokens: TokenAuthority, users: UserRepository) -> None:
        self._tokens = tokens
        self._users = users

    def resolve(self, authorization: str | None) -> Principal | None:
        token = extract_bearer(authorization)
        if token is None:
            return None
        try:
            identity = self._tokens.verify(token)
        except TokenInvalidError as exc:
            logger.debug("rejected bearer token: %s", exc)
            return None
        user = self._users.find_by_identity(identity)
        if user is None:
            logger.info("token subject %s has no matching user", identity)
            return None
        return Principal(user=user)


class GatekeeperMiddleware(BaseHTTPMiddleware):
    """Binds the resolved principal (or ``None``) to ``request.state.principal``."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        gatekeeper: RequestGatekeeper = request.app.state.gatekeeper
        # credential lookups hit the database, keep them off the event loop
        request.state.principal = await run_in_threadpool(
            gatekeeper.resolve, request.headers.get("Authorization")
        )
        return await call_next(request)


def require_principal(request: Request) -> Principal:
    """FastAPI dependency rejecting calls that reached a protected route anonymously."""
    principal: Principal | None = getattr(request.state, "principal", None)
    if principal is None:
        raise AuthenticationError("authentication required")
    return principal
