"""Issuing and validating the service's signed access tokens."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from ..config import TokenSettings
from ..domain.errors import TokenCreationError, TokenInvalidError

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
USER_ID_CLAIM = "userId"


class TokenAuthority:
    """Issues and verifies HMAC-signed JWTs bound to a user identity.

    Holds no state beyond the immutable ``TokenSettings`` given at construction.
    """

    def __init__(self, settings: TokenSettings) -> None:
        self._settings = settings
        self._zone = timezone(timedelta(hours=settings.tz_offset_hours))

    @property
    def ttl_seconds(self) -> int:
        return self._settings.ttl_seconds

    def expires_at(self) -> datetime:
        """Expiry for a token minted now, computed in the fixed reference offset."""
        return datetime.now(self._zone) + timedelta(seconds=self._settings.ttl_seconds)

    def issue(self, identity: str, user_id: int) -> str:
        """Create a signed token for ``identity`` carrying the ``userId`` claim.

        Raises
        ------
        TokenCreationError
            When no signing key is configured or the encoder rejects the payload.
        """
        if not self._settings.secret:
            raise TokenCreationError("token signing key is not configured")
        payload: dict[str, Any] = {
            "iss": self._settings.issuer,
            "sub": identity,
            USER_ID_CLAIM: user_id,
            "exp": self.expires_at(),
        }
        try:
            return jwt.encode(payload, self._settings.secret, algorithm=ALGORITHM)
        except (jwt.PyJWTError, TypeError, ValueError) as exc:
            logger.error("failed to sign token for %s: %s", identity, exc)
            raise TokenCreationError("failed to sign token") from exc

    def verify(self, token: str) -> str:
        """Validate signature, issuer and expiry and return the token subject."""
        subject = self._decode(token).get("sub")
        if not isinstance(subject, str) or not subject:
            raise TokenInvalidError("token has no subject")
        return subject

    def claim(self, token: str, name: str) -> Any:
        """Return the named claim of a valid token."""
        claims = self._decode(token)
        if name not in claims:
            raise TokenInvalidError(f"token has no {name} claim")
        return claims[name]

    def _decode(self, token: str) -> dict[str, Any]:
        if not self._settings.secret:
            raise TokenInvalidError("token signing key is not configured")
        try:
            return jwt.decode(
                token,
                self._settings.secret,
                algorithms=[ALGORITHM],
                issuer=self._settings.issuer,
                options={"require": ["exp", "iss", "sub"]},
            )
        except jwt.PyJWTError as exc:
            raise TokenInvalidError("invalid or expired token") from exc
