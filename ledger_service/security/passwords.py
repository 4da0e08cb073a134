from __future__ import annotations

from typing import Protocol

from passlib.context import CryptContext


class PasswordHasher(Protocol):
    def hash(self, secret: str) -> str: ...

    def verify(self, secret: str, secret_hash: str) -> bool: ...


class PasslibHasher:
    """One-way password hashing backed by a passlib ``CryptContext``."""

    def __init__(self, schemes: list[str] | None = None) -> None:
        self._context = CryptContext(schemes=schemes or ["pbkdf2_sha256"], deprecated="auto")

    def hash(self, secret: str) -> str:
        return self._context.hash(secret)

    def verify(self, secret: str, secret_hash: str) -> bool:
        try:
            return self._context.verify(secret, secret_hash)
        except ValueError:
            # unrecognised or corrupt hash
            return False
