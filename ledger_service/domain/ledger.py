from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum

TAX_ID_LABEL = "CPF"
NAME_MAX_LENGTH = 100


class MovementKind(str, Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"


@dataclass(slots=True)
class Client:
    """Account holder identified by a unique 11-digit tax id."""

    client_id: int
    name: str
    tax_id: str
    registered_at: datetime


@dataclass(slots=True)
class Account:
    """Aggregate root whose balance is the authoritative running total."""

    account_id: int
    client_id: int
    balance: Decimal


@dataclass(frozen=True, slots=True)
class Movement:
    """Immutable ledger entry recording one deposit or withdrawal."""

    movement_id: int
    account_id: int
    kind: MovementKind
    amount: Decimal
    created_at: datetime


@dataclass(frozen=True, slots=True)
class AccountView:
    """Account annotated with the display label of its client."""

    account_id: int
    client_id: int
    titular: str
    balance: Decimal


def titular_label(client: Client | None) -> str:
    if client is None:
        return "Client not found"
    return f"{client.name} ({TAX_ID_LABEL}: {client.tax_id})"


def parse_titular_name(label: str) -> str:
    """Return the bare client name from a label such as ``"Ana (CPF: 12345678901)"``."""
    marker = f"({TAX_ID_LABEL}:"
    if marker in label:
        label = label[: label.index(marker)]
    return label.strip()
