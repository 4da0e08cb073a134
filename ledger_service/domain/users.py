from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Role(str, Enum):
    USER = "ROLE_USER"


@dataclass(slots=True)
class User:
    """Credential record; ``user_id`` is ``None`` until first saved."""

    identity: str
    secret_hash: str
    user_id: int | None = None


@dataclass(frozen=True, slots=True)
class Principal:
    """Resolved caller bound to a request once its bearer token checks out."""

    user: User
    roles: frozenset[Role] = field(default_factory=lambda: frozenset({Role.USER}))

    @property
    def identity(self) -> str:
        return self.user.identity

    def has_role(self, role: Role) -> bool:
        return role in self.roles
