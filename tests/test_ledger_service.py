from __future__ import annotations

import logging
from decimal import Decimal

import pytest

from ledger_service.domain.contracts import AccountPatch, CreateAccountInput
from ledger_service.domain.errors import (
    DuplicateTaxIdError,
    InsufficientFundsError,
    InvalidFieldError,
    NotFoundError,
)
from ledger_service.domain.ledger import MovementKind


def _open(ledger, name="Ana", tax_id="12345678901", balance="100.00"):
    return ledger.create_account_with_client(
        CreateAccountInput(name=name, tax_id=tax_id, initial_balance=Decimal(balance))
    )


def _replay(initial: Decimal, movements) -> Decimal:
    balance = initial
    for movement in sorted(movements, key=lambda m: (m.created_at, m.movement_id)):
        if movement.kind is MovementKind.DEPOSIT:
            balance += movement.amount
        else:
            balance -= movement.amount
    return balance


def test_create_account_then_deposit_updates_balance_and_logs_movement(ledger):
    account = _open(ledger)

    movement = ledger.deposit(account.account_id, Decimal("50.00"))

    assert movement.kind is MovementKind.DEPOSIT
    assert movement.amount == Decimal("50.00")
    assert ledger.get_account(account.account_id).balance == Decimal("150.00")
    statement = ledger.statement(account.account_id)
    assert [(m.kind, m.amount) for m in statement] == [(MovementKind.DEPOSIT, Decimal("50.00"))]


def test_created_account_carries_titular_label(ledger):
    account = _open(ledger, name="Maria Silva", tax_id="98765432100", balance="1000.00")

    assert account.titular == "Maria Silva (CPF: 98765432100)"
    assert account.balance == Decimal("1000.00")


def test_withdraw_more_than_balance_is_rejected_without_side_effects(ledger, ledger_repository):
    account = _open(ledger, balance="30.00")

    with pytest.raises(InsufficientFundsError) as excinfo:
        ledger.withdraw(account.account_id, Decimal("50.00"))

    assert excinfo.value.balance == Decimal("30.00")
    assert "30.00" in str(excinfo.value)
    assert ledger.get_account(account.account_id).balance == Decimal("30.00")
    assert ledger.statement(account.account_id) == []


def test_withdraw_exact_balance_leaves_zero(ledger):
    account = _open(ledger, balance="30.00")

    movement = ledger.withdraw(account.account_id, Decimal("30.00"))

    assert movement.kind is MovementKind.WITHDRAWAL
    assert ledger.get_account(account.account_id).balance == Decimal("0.00")


def test_duplicate_tax_id_creates_nothing(ledger, ledger_repository):
    _open(ledger, name="Ana", tax_id="12345678901")

    with pytest.raises(DuplicateTaxIdError):
        _open(ledger, name="Bruno", tax_id="12345678901")

    assert len(ledger_repository.state.clients) == 1
    assert len(ledger_repository.state.accounts) == 1


def test_create_rolls_back_client_when_account_insert_fails(ledger, ledger_repository):
    ledger_repository.fail_on = "insert_account"

    with pytest.raises(RuntimeError):
        _open(ledger)

    assert ledger_repository.state.clients == {}
    assert ledger_repository.state.accounts == {}


def test_delete_account_purges_movements_before_account_and_client(ledger, ledger_repository):
    account = _open(ledger)
    ledger.deposit(account.account_id, Decimal("10.00"))
    ledger.deposit(account.account_id, Decimal("20.00"))
    ledger.withdraw(account.account_id, Decimal("5.00"))

    ledger.delete_account(account.account_id)

    with pytest.raises(NotFoundError):
        ledger.statement(account.account_id)
    assert ledger_repository.state.movements == {}
    assert ledger_repository.deletion_log == [
        ("account", account.account_id),
        ("client", account.client_id),
    ]


def test_delete_account_tolerates_client_deletion_failure(ledger, ledger_repository, caplog):
    caplog.set_level(logging.WARNING)
    account = _open(ledger)
    ledger.deposit(account.account_id, Decimal("10.00"))
    ledger_repository.fail_on = "delete_client"

    ledger.delete_account(account.account_id)

    assert account.account_id not in ledger_repository.state.accounts
    assert ledger_repository.state.movements == {}
    # savepoint restored the client row
    assert account.client_id in ledger_repository.state.clients
    assert "was kept" in caplog.text


def test_delete_missing_account_raises_not_found(ledger):
    with pytest.raises(NotFoundError) as excinfo:
        ledger.delete_account(404)
    assert excinfo.value.entity == "account"


def test_deposit_is_rolled_back_when_balance_write_fails(ledger, ledger_repository):
    account = _open(ledger)
    ledger_repository.fail_on = "update_balance"

    with pytest.raises(RuntimeError):
        ledger.deposit(account.account_id, Decimal("25.00"))

    ledger_repository.fail_on = None
    assert ledger.get_account(account.account_id).balance == Decimal("100.00")
    assert ledger.statement(account.account_id) == []


def test_replaying_movements_reproduces_stored_balance(ledger):
    account = _open(ledger, balance="100.00")
    for amount in ("10.00", "0.01", "99.99"):
        ledger.deposit(account.account_id, Decimal(amount))
    for amount in ("50.00", "160.00"):
        ledger.withdraw(account.account_id, Decimal(amount))
    with pytest.raises(InsufficientFundsError):
        ledger.withdraw(account.account_id, Decimal("1000.00"))

    stored = ledger.get_account(account.account_id).balance
    assert stored == Decimal("0.00")
    assert _replay(Decimal("100.00"), ledger.statement(account.account_id)) == stored


def test_statement_is_newest_first_and_stable(ledger):
    account = _open(ledger)
    first = ledger.deposit(account.account_id, Decimal("1.00"))
    second = ledger.withdraw(account.account_id, Decimal("2.00"))
    third = ledger.deposit(account.account_id, Decimal("3.00"))

    statement = ledger.statement(account.account_id)

    assert [m.movement_id for m in statement] == [
        third.movement_id,
        second.movement_id,
        first.movement_id,
    ]
    assert ledger.statement(account.account_id) == statement


def test_operations_on_missing_account_raise_not_found(ledger):
    for call in (
        lambda: ledger.get_account(1),
        lambda: ledger.statement(1),
        lambda: ledger.deposit(1, Decimal("1.00")),
        lambda: ledger.withdraw(1, Decimal("1.00")),
        lambda: ledger.update_account_full(1, Decimal("1.00")),
        lambda: ledger.update_account_partial(1, AccountPatch(balance=Decimal("1.00"))),
    ):
        with pytest.raises(NotFoundError):
            call()


def test_non_positive_amounts_are_rejected(ledger):
    account = _open(ledger)

    with pytest.raises(InvalidFieldError):
        ledger.deposit(account.account_id, Decimal("0"))
    with pytest.raises(InvalidFieldError):
        ledger.withdraw(account.account_id, Decimal("-5"))


def test_full_update_replaces_balance_and_renames_client(ledger):
    account = _open(ledger)

    updated = ledger.update_account_full(
        account.account_id, Decimal("7.50"), "Ana Souza (CPF: 12345678901)"
    )

    assert updated.balance == Decimal("7.50")
    assert updated.titular == "Ana Souza (CPF: 12345678901)"
    # administrative correction, not a movement
    assert ledger.statement(account.account_id) == []


def test_full_update_ignores_blank_titular(ledger):
    account = _open(ledger)

    updated = ledger.update_account_full(account.account_id, Decimal("1.00"), "   ")

    assert updated.titular == "Ana (CPF: 12345678901)"


def test_titular_reduced_to_annotation_only_is_rejected(ledger):
    account = _open(ledger)

    with pytest.raises(InvalidFieldError):
        ledger.update_account_full(account.account_id, Decimal("1.00"), "(CPF: 12345678901)")
    assert ledger.get_account(account.account_id).balance == Decimal("100.00")


def test_partial_update_touches_only_present_fields(ledger):
    account = _open(ledger)

    renamed = ledger.update_account_partial(account.account_id, {"titular": "Ana Lima"})
    assert renamed.titular == "Ana Lima (CPF: 12345678901)"
    assert renamed.balance == Decimal("100.00")

    rebalanced = ledger.update_account_partial(account.account_id, AccountPatch(balance=Decimal("3")))
    assert rebalanced.balance == Decimal("3")
    assert rebalanced.titular == "Ana Lima (CPF: 12345678901)"


@pytest.mark.parametrize("value", ["12.5", True, [1], float("nan")])
def test_partial_update_rejects_malformed_balance(ledger, value):
    account = _open(ledger)

    with pytest.raises(InvalidFieldError) as excinfo:
        ledger.update_account_partial(account.account_id, {"balance": value})

    assert excinfo.value.field == "balance"


def test_partial_update_rejects_negative_balance():
    with pytest.raises(InvalidFieldError):
        AccountPatch.from_mapping({"balance": -1})


def test_list_accounts_labels_each_account(ledger, ledger_repository):
    _open(ledger, name="Ana", tax_id="12345678901")
    second = _open(ledger, name="Bruno", tax_id="10987654321", balance="5.00")
    del ledger_repository.state.clients[second.client_id]

    views = ledger.list_accounts()

    assert [view.titular for view in views] == ["Ana (CPF: 12345678901)", "Client not found"]


def test_titular_longer_than_name_column_is_rejected(ledger):
    account = _open(ledger)

    with pytest.raises(InvalidFieldError) as excinfo:
        ledger.update_account_full(account.account_id, Decimal("1.00"), "A" * 101)

    assert excinfo.value.field == "titular"
    assert ledger.get_account(account.account_id).balance == Decimal("100.00")


def test_titular_label_of_maximum_name_is_accepted(ledger):
    account = _open(ledger)

    updated = ledger.update_account_partial(
        account.account_id, {"titular": "A" * 100 + " (CPF: 12345678901)"}
    )

    assert updated.titular == "A" * 100 + " (CPF: 12345678901)"


@pytest.mark.parametrize("amount", ["0.005", "1.001", "NaN", "Infinity"])
def test_amounts_beyond_cents_are_rejected(ledger, amount):
    account = _open(ledger, balance="1.00")

    with pytest.raises(InvalidFieldError) as excinfo:
        ledger.withdraw(account.account_id, Decimal(amount))
    with pytest.raises(InvalidFieldError):
        ledger.deposit(account.account_id, Decimal(amount))

    assert excinfo.value.field == "amount"
    assert ledger.get_account(account.account_id).balance == Decimal("1.00")
    assert ledger.statement(account.account_id) == []


def test_whole_cent_amounts_keep_replay_consistent(ledger):
    account = _open(ledger, balance="1.00")

    ledger.withdraw(account.account_id, Decimal("0.01"))
    ledger.deposit(account.account_id, Decimal("2.5"))

    stored = ledger.get_account(account.account_id).balance
    assert stored == Decimal("3.49")
    assert _replay(Decimal("1.00"), ledger.statement(account.account_id)) == stored
