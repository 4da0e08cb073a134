"""Ledger service orchestrating clients, accounts and their movement log."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Mapping

from .contracts import AccountPatch, CreateAccountInput
from .errors import (
    DuplicateTaxIdError,
    InsufficientFundsError,
    InvalidFieldError,
    NotFoundError,
    StoreError,
)
from .ledger import (
    NAME_MAX_LENGTH,
    Account,
    AccountView,
    Movement,
    MovementKind,
    parse_titular_name,
    titular_label,
)
from ..repository import LedgerRepository, PostgresLedgerUnitOfWork

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LedgerService:
    """Sole authority over client, account and movement invariants.

    Every public operation runs as a single unit of work obtained from the
    repository; an exception anywhere inside it rolls back all of its writes.
    """

    def __init__(
        self,
        repository: LedgerRepository,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Store the repository and the clock used to timestamp movements."""
        self._repository = repository
        self._clock = clock

    def list_accounts(self) -> list[AccountView]:
        """Return every account labelled with its client's name and tax id."""

        def work(uow: PostgresLedgerUnitOfWork) -> list[AccountView]:
            accounts = uow.list_accounts()
            clients = uow.get_clients(sorted({account.client_id for account in accounts}))
            return [
                AccountView(
                    account_id=account.account_id,
                    client_id=account.client_id,
                    titular=titular_label(clients.get(account.client_id)),
                    balance=account.balance,
                )
                for account in accounts
            ]

        return self._repository.run_in_transaction(work)

    def get_account(self, account_id: int) -> AccountView:
        """Fetch one labelled account or raise ``NotFoundError``."""

        def work(uow: PostgresLedgerUnitOfWork) -> AccountView:
            return self._view(uow, self._require_account(uow, account_id))

        return self._repository.run_in_transaction(work)

    def create_account_with_client(self, payload: CreateAccountInput) -> AccountView:
        """Register a client and open its account in one transaction."""

        def work(uow: PostgresLedgerUnitOfWork) -> AccountView:
            if uow.tax_id_exists(payload.tax_id):
                raise DuplicateTaxIdError(payload.tax_id)
            client = uow.insert_client(payload.name, payload.tax_id, self._clock())
            account = uow.insert_account(client.client_id, payload.initial_balance)
            logger.info("opened account %s for client %s", account.account_id, client.client_id)
            return AccountView(
                account_id=account.account_id,
                client_id=client.client_id,
                titular=titular_label(client),
                balance=account.balance,
            )

        return self._repository.run_in_transaction(work)

    def delete_account(self, account_id: int) -> None:
        """Remove an account with its movements, then try to remove its client.

        Movements go first, then the account. The client is deleted last inside a
        savepoint; if that fails the account deletion still stands.
        """

        def work(uow: PostgresLedgerUnitOfWork) -> None:
            account = self._require_account(uow, account_id, for_update=True)
            purged = uow.delete_movements(account.account_id)
            uow.delete_account(account.account_id)
            try:
                with uow.savepoint():
                    uow.delete_client(account.client_id)
            except StoreError as exc:
                logger.warning(
                    "account %s deleted but client %s was kept: %s",
                    account.account_id,
                    account.client_id,
                    exc,
                )
            logger.info("deleted account %s and %s movements", account.account_id, purged)

        self._repository.run_in_transaction(work)

    def update_account_full(
        self,
        account_id: int,
        balance: Decimal,
        titular: str | None = None,
    ) -> AccountView:
        """Overwrite the balance and optionally rename the client.

        This is an administrative correction: no movement is recorded.
        """
        return self._apply_patch(account_id, AccountPatch(balance=balance, titular=titular))

    def update_account_partial(
        self,
        account_id: int,
        fields: AccountPatch | Mapping[str, Any],
    ) -> AccountView:
        """Apply only the fields present in ``fields``."""
        patch = fields if isinstance(fields, AccountPatch) else AccountPatch.from_mapping(fields)
        return self._apply_patch(account_id, patch)

    def statement(self, account_id: int) -> list[Movement]:
        """Return the account's movements, most recent first."""

        def work(uow: PostgresLedgerUnitOfWork) -> list[Movement]:
            self._require_account(uow, account_id)
            return uow.list_movements(account_id)

        return self._repository.run_in_transaction(work)

    def withdraw(self, account_id: int, amount: Decimal) -> Movement:
        """Debit the account; withdrawing the whole balance is allowed."""
        _require_positive(amount)

        def work(uow: PostgresLedgerUnitOfWork) -> Movement:
            account = self._require_account(uow, account_id, for_update=True)
            if amount > account.balance:
                raise InsufficientFundsError(account.account_id, amount, account.balance)
            movement = uow.insert_movement(
                account.account_id, MovementKind.WITHDRAWAL, amount, self._clock()
            )
            uow.update_balance(account.account_id, account.balance - amount)
            return movement

        return self._repository.run_in_transaction(work)

    def deposit(self, account_id: int, amount: Decimal) -> Movement:
        """Credit the account."""
        _require_positive(amount)

        def work(uow: PostgresLedgerUnitOfWork) -> Movement:
            account = self._require_account(uow, account_id, for_update=True)
            movement = uow.insert_movement(
                account.account_id, MovementKind.DEPOSIT, amount, self._clock()
            )
            uow.update_balance(account.account_id, account.balance + amount)
            return movement

        return self._repository.run_in_transaction(work)

    def _apply_patch(self, account_id: int, patch: AccountPatch) -> AccountView:
        def work(uow: PostgresLedgerUnitOfWork) -> AccountView:
            account = self._require_account(uow, account_id, for_update=True)
            if patch.balance is not None:
                uow.update_balance(account.account_id, patch.balance)
                account.balance = patch.balance
            if patch.titular is not None and patch.titular.strip():
                name = parse_titular_name(patch.titular)
                if not name:
                    raise InvalidFieldError("titular", "titular must contain a name")
                if len(name) > NAME_MAX_LENGTH:
                    raise InvalidFieldError(
                        "titular", f"name must be at most {NAME_MAX_LENGTH} characters"
                    )
                if uow.get_client(account.client_id) is not None:
                    uow.rename_client(account.client_id, name)
            return self._view(uow, account)

        return self._repository.run_in_transaction(work)

    def _require_account(
        self,
        uow: PostgresLedgerUnitOfWork,
        account_id: int,
        *,
        for_update: bool = False,
    ) -> Account:
        account = uow.get_account(account_id, for_update=for_update)
        if account is None:
            raise NotFoundError("account", account_id)
        return account

    def _view(self, uow: PostgresLedgerUnitOfWork, account: Account) -> AccountView:
        return AccountView(
            account_id=account.account_id,
            client_id=account.client_id,
            titular=titular_label(uow.get_client(account.client_id)),
            balance=account.balance,
        )


def _require_positive(amount: Decimal) -> None:
    if not amount.is_finite() or amount <= 0:
        raise InvalidFieldError("amount", "amount must be greater than zero")
    # stored as NUMERIC(15, 2)
    if amount.as_tuple().exponent < -2:
        raise InvalidFieldError("amount", "amount must have at most 2 decimal places")
