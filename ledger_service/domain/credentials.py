"""Credential workflows: password login and first-run user bootstrap."""

from __future__ import annotations

import logging

from .errors import InvalidCredentialsError, TooManyAttemptsError
from .users import User
from ..repository import UserRepository
from ..security.passwords import PasswordHasher
from ..security.rate_limiter import SlidingWindowLoginThrottle
from ..security.redis_rate_limiter import RedisLoginThrottle
from ..security.tokens import TokenAuthority

logger = logging.getLogger(__name__)


class CredentialService:
    """Checks passwords against the credential store and issues access tokens."""

    def __init__(
        self,
        users: UserRepository,
        hasher: PasswordHasher,
        tokens: TokenAuthority,
        throttle: SlidingWindowLoginThrottle | RedisLoginThrottle,
    ) -> None:
        self._users = users
        self._hasher = hasher
        self._tokens = tokens
        self._throttle = throttle

    def authenticate(self, identity: str, secret: str) -> str:
        """Return a signed token when ``secret`` matches the stored hash for ``identity``.

        Unknown identities and wrong passwords fail the same way so callers cannot
        probe which logins exist.
        """
        if self._throttle.is_blocked(identity):
            logger.info("login throttled for %s", identity)
            raise TooManyAttemptsError(identity)

        user = self._users.find_by_identity(identity)
        if user is None or not self._hasher.verify(secret, user.secret_hash):
            self._throttle.record_failure(identity)
            logger.info("login failed for %s", identity)
            raise InvalidCredentialsError("invalid login or password")

        self._throttle.reset(identity)
        token = self._tokens.issue(user.identity, user.user_id)
        logger.info("issued token for %s", identity)
        return token

    def register(self, identity: str, secret: str) -> User:
        """Hash ``secret`` and persist a new user."""
        return self._users.save(User(identity=identity, secret_hash=self._hasher.hash(secret)))

    def ensure_bootstrap_user(self, identity: str, secret: str) -> User | None:
        """Create the configured first user when the credential store is empty."""
        if not identity or not secret:
            return None
        if self._users.count() > 0 or self._users.exists(identity):
            return None
        user = self.register(identity, secret)
        logger.info("created bootstrap user %s", identity)
        return user
