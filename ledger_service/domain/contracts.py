"""Domain-level request contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping

from .errors import InvalidFieldError


@dataclass(slots=True)
class CreateAccountInput:
    """Validated inputs required to open an account for a new client."""

    name: str
    tax_id: str
    initial_balance: Decimal


@dataclass(slots=True)
class AccountPatch:
    """Subset of account fields to change; ``None`` means "leave as is"."""

    balance: Decimal | None = None
    titular: str | None = None

    @classmethod
    def from_mapping(cls, fields: Mapping[str, Any]) -> "AccountPatch":
        """Build a patch from an untyped payload, rejecting malformed values."""
        return cls(
            balance=_coerce_balance(fields.get("balance")),
            titular=_coerce_titular(fields.get("titular")),
        )


def _coerce_balance(value: Any) -> Decimal | None:
    if value is None:
        return None
    # bool is an int subclass but never a valid amount
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise InvalidFieldError("balance", "balance must be numeric")
    amount = Decimal(str(value)) if isinstance(value, float) else Decimal(value)
    if not amount.is_finite():
        raise InvalidFieldError("balance", "balance must be numeric")
    if amount < 0:
        raise InvalidFieldError("balance", "balance cannot be negative")
    return amount


def _coerce_titular(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidFieldError("titular", "titular must be a string")
    return value
