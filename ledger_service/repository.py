"""Postgres repositories for ledger and credential data."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterator, TypeVar

from psycopg import Connection, IsolationLevel, errors
from psycopg.rows import tuple_row
from psycopg_pool import ConnectionPool

from .domain.errors import DuplicateTaxIdError, StoreError
from .domain.ledger import Account, Client, Movement, MovementKind
from .domain.users import User

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PostgresLedgerUnitOfWork:
    """Statements executed inside one open transaction."""

    def __init__(self, conn: Connection) -> None:
        self._conn = conn

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        """Scope whose failure rolls back only the statements issued inside it."""
        with self._conn.transaction():
            yield

    def list_accounts(self) -> list[Account]:
        with self._conn.cursor(row_factory=tuple_row) as cur:
            cur.execute("SELECT account_id, client_id, balance FROM accounts ORDER BY account_id")
            return [Account(*row) for row in cur.fetchall()]

    def get_account(self, account_id: int, *, for_update: bool = False) -> Account | None:
        query = "SELECT account_id, client_id, balance FROM accounts WHERE account_id = %s"
        if for_update:
            query += " FOR UPDATE"
        with self._conn.cursor(row_factory=tuple_row) as cur:
            cur.execute(query, (account_id,))
            row = cur.fetchone()
        return Account(*row) if row else None

    def get_client(self, client_id: int) -> Client | None:
        with self._conn.cursor(row_factory=tuple_row) as cur:
            cur.execute(
                "SELECT client_id, name, tax_id, registered_at FROM clients WHERE client_id = %s",
                (client_id,),
            )
            row = cur.fetchone()
        return Client(*row) if row else None

    def get_clients(self, client_ids: list[int]) -> dict[int, Client]:
        if not client_ids:
            return {}
        with self._conn.cursor(row_factory=tuple_row) as cur:
            cur.execute(
                """
                SELECT client_id, name, tax_id, registered_at
                FROM clients
                WHERE client_id = ANY(%s)
                """,
                (client_ids,),
            )
            return {row[0]: Client(*row) for row in cur.fetchall()}

    def tax_id_exists(self, tax_id: str) -> bool:
        with self._conn.cursor() as cur:
            cur.execute("SELECT 1 FROM clients WHERE tax_id = %s", (tax_id,))
            return cur.fetchone() is not None

    def insert_client(self, name: str, tax_id: str, registered_at: datetime) -> Client:
        try:
            with self._conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    """
                    INSERT INTO clients (name, tax_id, registered_at)
                    VALUES (%s, %s, %s)
                    RETURNING client_id, name, tax_id, registered_at
                    """,
                    (name, tax_id, registered_at),
                )
                row = cur.fetchone()
        except errors.UniqueViolation as exc:
            raise DuplicateTaxIdError(tax_id) from exc
        return Client(*row)

    def insert_account(self, client_id: int, balance: Decimal) -> Account:
        with self._conn.cursor(row_factory=tuple_row) as cur:
            cur.execute(
                """
                INSERT INTO accounts (client_id, balance)
                VALUES (%s, %s)
                RETURNING account_id, client_id, balance
                """,
                (client_id, balance),
            )
            return Account(*cur.fetchone())

    def update_balance(self, account_id: int, balance: Decimal) -> None:
        with self._conn.cursor() as cur:
            cur.execute(
                "UPDATE accounts SET balance = %s WHERE account_id = %s",
                (balance, account_id),
            )

    def rename_client(self, client_id: int, name: str) -> None:
        with self._conn.cursor() as cur:
            cur.execute("UPDATE clients SET name = %s WHERE client_id = %s", (name, client_id))

    def insert_movement(
        self,
        account_id: int,
        kind: MovementKind,
        amount: Decimal,
        created_at: datetime,
    ) -> Movement:
        with self._conn.cursor(row_factory=tuple_row) as cur:
            cur.execute(
                """
                INSERT INTO movements (account_id, kind, amount, created_at)
                VALUES (%s, %s, %s, %s)
                RETURNING movement_id, account_id, kind, amount, created_at
                """,
                (account_id, kind.value, amount, created_at),
            )
            return self._map_movement(cur.fetchone())

    def list_movements(self, account_id: int) -> list[Movement]:
        """Return the account's movements, most recent first."""
        with self._conn.cursor(row_factory=tuple_row) as cur:
            cur.execute(
                """
                SELECT movement_id, account_id, kind, amount, created_at
                FROM movements
                WHERE account_id = %s
                ORDER BY created_at DESC, movement_id DESC
                """,
                (account_id,),
            )
            return [self._map_movement(row) for row in cur.fetchall()]

    def delete_movements(self, account_id: int) -> int:
        with self._conn.cursor() as cur:
            cur.execute("DELETE FROM movements WHERE account_id = %s", (account_id,))
            return cur.rowcount

    def delete_account(self, account_id: int) -> None:
        with self._conn.cursor() as cur:
            cur.execute("DELETE FROM accounts WHERE account_id = %s", (account_id,))

    def delete_client(self, client_id: int) -> None:
        try:
            with self._conn.cursor() as cur:
                cur.execute("DELETE FROM clients WHERE client_id = %s", (client_id,))
        except errors.IntegrityError as exc:
            raise StoreError(f"could not delete client {client_id}: {exc}") from exc

    def _map_movement(self, row: tuple) -> Movement:
        return Movement(
            movement_id=row[0],
            account_id=row[1],
            kind=MovementKind(row[2]),
            amount=row[3],
            created_at=row[4],
        )


class LedgerRepository:
    """Runs ledger work inside serializable Postgres transactions."""

    def __init__(self, pool: ConnectionPool, *, max_attempts: int = 3) -> None:
        self._pool = pool
        self._max_attempts = max(1, max_attempts)

    def run_in_transaction(self, work: Callable[[PostgresLedgerUnitOfWork], T]) -> T:
        """Execute ``work`` atomically, retrying on serialization conflicts.

        Any exception raised by ``work`` rolls the whole transaction back and
        propagates unchanged.
        """
        last_error: Exception | None = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                with self._pool.connection() as conn:
                    conn.isolation_level = IsolationLevel.SERIALIZABLE
                    with conn.transaction():
                        return work(PostgresLedgerUnitOfWork(conn))
            except errors.SerializationFailure as exc:
                logger.warning("serialization conflict on attempt %s/%s", attempt, self._max_attempts)
                last_error = exc
            except errors.IntegrityError as exc:
                raise StoreError(str(exc)) from exc
        raise StoreError("transaction aborted after repeated serialization conflicts") from last_error


class UserRepository:
    """Postgres-backed credential store."""

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    def exists(self, identity: str) -> bool:
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1 FROM users WHERE login = %s", (identity,))
                return cur.fetchone() is not None

    def find_by_identity(self, identity: str) -> User | None:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    "SELECT user_id, login, password_hash FROM users WHERE login = %s",
                    (identity,),
                )
                row = cur.fetchone()
        if not row:
            return None
        return User(user_id=row[0], identity=row[1], secret_hash=row[2])

    def count(self) -> int:
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT COUNT(*) FROM users")
                return int(cur.fetchone()[0])

    def save(self, user: User) -> User:
        """Insert a new user or replace the stored hash of an existing one."""
        try:
            with self._pool.connection() as conn:
                with conn.cursor() as cur:
                    if user.user_id is None:
                        cur.execute(
                            "INSERT INTO users (login, password_hash) VALUES (%s, %s) RETURNING user_id",
                            (user.identity, user.secret_hash),
                        )
                        user.user_id = cur.fetchone()[0]
                    else:
                        cur.execute(
                            "UPDATE users SET password_hash = %s WHERE user_id = %s",
                            (user.secret_hash, user.user_id),
                        )
                conn.commit()
        except errors.UniqueViolation as exc:
            raise StoreError(f"user already exists: {user.identity}") from exc
        return user
