"""Exception taxonomy shared by the ledger engine, the credential flow and the API layer."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True, slots=True)
class FieldIssue:
    """A single field-level validation message."""

    field: str
    message: str


class LedgerServiceError(Exception):
    """Base class for every error the service knows how to translate for callers."""


class ValidationError(LedgerServiceError):
    """Malformed or missing input, reported as a list of field messages."""

    def __init__(self, issues: list[FieldIssue]) -> None:
        self.issues = issues
        super().__init__("; ".join(f"{issue.field}: {issue.message}" for issue in issues))


class InvalidFieldError(ValidationError):
    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__([FieldIssue(field=field, message=message)])


class NotFoundError(LedgerServiceError):
    def __init__(self, entity: str, entity_id: object | None = None) -> None:
        self.entity = entity
        self.entity_id = entity_id
        suffix = f" {entity_id}" if entity_id is not None else ""
        super().__init__(f"{entity}{suffix} not found")


class DuplicateTaxIdError(LedgerServiceError):
    def __init__(self, tax_id: str) -> None:
        self.tax_id = tax_id
        super().__init__(f"tax id already registered: {tax_id}")


class InsufficientFundsError(LedgerServiceError):
    """Raised when a withdrawal exceeds the current balance."""

    def __init__(self, account_id: int, requested: Decimal, balance: Decimal) -> None:
        self.account_id = account_id
        self.requested = requested
        self.balance = balance
        super().__init__(f"insufficient funds, current balance: {balance:.2f}")


class AuthenticationError(LedgerServiceError):
    """Missing, invalid or expired credential."""


class TokenInvalidError(AuthenticationError):
    pass


class InvalidCredentialsError(AuthenticationError):
    pass


class TokenCreationError(LedgerServiceError):
    """Signing a token failed, typically because no key is configured."""


class TooManyAttemptsError(LedgerServiceError):
    def __init__(self, identity: str) -> None:
        self.identity = identity
        super().__init__("too many failed login attempts")


class StoreError(Exception):
    """Persistence failure raised by repository implementations."""
