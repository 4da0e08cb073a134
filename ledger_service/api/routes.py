"""HTTP route definitions for the ledger service."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, Request, Response, status
from pydantic import AfterValidator, BaseModel, Field, field_validator

from ..domain.contracts import AccountPatch, CreateAccountInput
from ..domain.credentials import CredentialService
from ..domain.ledger import NAME_MAX_LENGTH, AccountView, Movement, MovementKind, parse_titular_name
from ..domain.service import LedgerService
from ..security.gatekeeper import require_principal

auth_router = APIRouter(tags=["authentication"])
router = APIRouter(
    prefix="/accounts",
    tags=["accounts"],
    dependencies=[Depends(require_principal)],
)


class LoginRequest(BaseModel):
    """Credentials exchanged for an access token."""

    login: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class TokenResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    expires_in: int


class AccountResponse(BaseModel):
    """Serialised representation of an account and its holder label."""

    id: int
    client_id: int
    titular: str
    balance: Decimal

    @classmethod
    def from_domain(cls, account: AccountView) -> "AccountResponse":
        """Build a response model from the domain view."""
        return cls(
            id=account.account_id,
            client_id=account.client_id,
            titular=account.titular,
            balance=account.balance,
        )


class MovementResponse(BaseModel):
    """Serialised ledger entry."""

    id: int
    account_id: int
    kind: MovementKind
    amount: Decimal
    timestamp: datetime

    @classmethod
    def from_domain(cls, movement: Movement) -> "MovementResponse":
        return cls(
            id=movement.movement_id,
            account_id=movement.account_id,
            kind=movement.kind,
            amount=movement.amount,
            timestamp=movement.created_at,
        )


class CreateAccountRequest(BaseModel):
    """Payload accepted when opening an account for a new client."""

    name: str = Field(..., min_length=1, max_length=NAME_MAX_LENGTH)
    tax_id: str = Field(..., pattern=r"^[0-9]{11}$", description="11-digit CPF")
    initial_balance: Decimal = Field(..., ge=0, max_digits=15, decimal_places=2)

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("name must not be blank")
        return value.strip()


def _check_titular(value: str | None) -> str | None:
    if value is not None and len(parse_titular_name(value)) > NAME_MAX_LENGTH:
        raise ValueError(f"name must be at most {NAME_MAX_LENGTH} characters")
    return value


Titular = Annotated[Optional[str], AfterValidator(_check_titular)]


class UpdateAccountRequest(BaseModel):
    """Full replacement of the mutable account fields."""

    balance: Decimal = Field(..., ge=0, max_digits=15, decimal_places=2)
    titular: Titular = None


class PatchAccountRequest(BaseModel):
    """Partial update; omitted or null fields are left untouched."""

    balance: Decimal | None = Field(default=None, ge=0, max_digits=15, decimal_places=2)
    titular: Titular = None

    @field_validator("balance", mode="before")
    @classmethod
    def _balance_is_number(cls, value: Any) -> Any:
        # lax Decimal parsing would accept "12.5"
        if isinstance(value, (str, bool)):
            raise ValueError("balance must be a number")
        return value


class AmountRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=15, decimal_places=2)


def get_service(request: Request) -> LedgerService:
    """Resolve the `LedgerService` stored on the FastAPI application state."""
    service: LedgerService = request.app.state.ledger_service
    return service


def get_credentials(request: Request) -> CredentialService:
    service: CredentialService = request.app.state.credential_service
    return service


@auth_router.post("/login", response_model=TokenResponse)
def login(
    payload: LoginRequest,
    request: Request,
    credentials: CredentialService = Depends(get_credentials),
) -> TokenResponse:
    """Exchange a login and password for a bearer token valid for two hours."""
    token = credentials.authenticate(payload.login, payload.password)
    return TokenResponse(token=token, expires_in=request.app.state.token_authority.ttl_seconds)


@router.get("", response_model=list[AccountResponse])
def list_accounts(service: LedgerService = Depends(get_service)) -> list[AccountResponse]:
    """List every account with its holder label and current balance."""
    return [AccountResponse.from_domain(account) for account in service.list_accounts()]


@router.get("/{account_id}", response_model=AccountResponse)
def get_account(
    account_id: int,
    service: LedgerService = Depends(get_service),
) -> AccountResponse:
    return AccountResponse.from_domain(service.get_account(account_id))


@router.post("", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
def create_account(
    payload: CreateAccountRequest,
    service: LedgerService = Depends(get_service),
) -> AccountResponse:
    """Register a client and open its account; the tax id must be unused."""
    account = service.create_account_with_client(
        CreateAccountInput(
            name=payload.name,
            tax_id=payload.tax_id,
            initial_balance=payload.initial_balance,
        )
    )
    return AccountResponse.from_domain(account)


@router.delete("/{account_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_account(
    account_id: int,
    service: LedgerService = Depends(get_service),
) -> Response:
    """Delete an account, its movements and, when possible, its client."""
    service.delete_account(account_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/{account_id}", response_model=AccountResponse)
def update_account(
    account_id: int,
    payload: UpdateAccountRequest,
    service: LedgerService = Depends(get_service),
) -> AccountResponse:
    """Overwrite the balance (no movement is recorded) and optionally rename the holder."""
    account = service.update_account_full(account_id, payload.balance, payload.titular)
    return AccountResponse.from_domain(account)


@router.patch("/{account_id}", response_model=AccountResponse)
def patch_account(
    account_id: int,
    payload: PatchAccountRequest,
    service: LedgerService = Depends(get_service),
) -> AccountResponse:
    account = service.update_account_partial(
        account_id,
        AccountPatch(balance=payload.balance, titular=payload.titular),
    )
    return AccountResponse.from_domain(account)


@router.get("/{account_id}/statement", response_model=list[MovementResponse])
def statement(
    account_id: int,
    service: LedgerService = Depends(get_service),
) -> list[MovementResponse]:
    """Return the account's movements, most recent first."""
    return [MovementResponse.from_domain(movement) for movement in service.statement(account_id)]


@router.post(
    "/{account_id}/withdrawals",
    response_model=MovementResponse,
    status_code=status.HTTP_201_CREATED,
)
def withdraw(
    account_id: int,
    payload: AmountRequest,
    service: LedgerService = Depends(get_service),
) -> MovementResponse:
    """Debit the account; fails when the amount exceeds the balance."""
    return MovementResponse.from_domain(service.withdraw(account_id, payload.amount))


@router.post(
    "/{account_id}/deposits",
    response_model=MovementResponse,
    status_code=status.HTTP_201_CREATED,
)
def deposit(
    account_id: int,
    payload: AmountRequest,
    service: LedgerService = Depends(get_service),
) -> MovementResponse:
    return MovementResponse.from_domain(service.deposit(account_id, payload.amount))
