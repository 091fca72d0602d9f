"""Database repositories for accounts, roles and password-recovery state."""

from __future__ import annotations

from datetime import datetime

from psycopg import errors
from psycopg.rows import tuple_row
from psycopg_pool import ConnectionPool

from .domain.account import Account, PasswordRecovery, Role
from .domain.cpf import CPF
from .domain.errors import AccountIdConflict, ConflictError, CPFConflict, EmailConflict

_ACCOUNT_COLUMNS = """
    u.id, u.cpf, u.email, u.password, u.created_at, u.updated_at,
    u.fullname, u.birth_date, u.complete, u.deleted_at,
    COALESCE(array_agg(r.name ORDER BY r.name) FILTER (WHERE r.name IS NOT NULL), '{}')
"""

_ACCOUNT_FROM = """
    FROM users u
    LEFT JOIN users_roles ur ON ur.users_id = u.id
    LEFT JOIN roles r ON r.id = ur.roles_id
"""

_CONFLICTS_BY_CONSTRAINT: dict[str, type[ConflictError]] = {
    "users_pkey": AccountIdConflict,
    "users_cpf_key": CPFConflict,
    "users_email_key": EmailConflict,
}


class AccountRepository:
    """Postgres-backed account store.

    ``find_active_*`` and ``list_all_active`` only see rows whose
    ``deleted_at`` is NULL. ``exists_by_*`` and ``find_by_id`` look at every
    row so identifiers of deleted accounts can never be reused.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    def _fetch_accounts(self, where_sql: str, params: tuple) -> list[Account]:
        query = f"""
            SELECT {_ACCOUNT_COLUMNS}
            {_ACCOUNT_FROM}
            WHERE {where_sql}
            GROUP BY u.id
            ORDER BY u.created_at, u.id
        """
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(query, params)
                rows = cur.fetchall()
        return [self._map_record(row) for row in rows]

    def _fetch_one(self, where_sql: str, params: tuple) -> Account | None:
        accounts = self._fetch_accounts(where_sql, params)
        return accounts[0] if accounts else None

    def find_active_by_email(self, email: str) -> Account | None:
        return self._fetch_one("u.email = %s AND u.deleted_at IS NULL", (email,))

    def find_active_by_id(self, account_id: str) -> Account | None:
        return self._fetch_one("u.id = %s AND u.deleted_at IS NULL", (account_id,))

    def find_active_by_cpf(self, cpf: CPF) -> Account | None:
        return self._fetch_one("u.cpf = %s AND u.deleted_at IS NULL", (cpf.value,))

    def find_by_id(self, account_id: str) -> Account | None:
        """Return the row regardless of its soft-delete state."""
        return self._fetch_one("u.id = %s", (account_id,))

    def list_all_active(self) -> list[Account]:
        return self._fetch_accounts("u.deleted_at IS NULL", ())

    def _exists(self, where_sql: str, params: tuple) -> bool:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(f"SELECT EXISTS (SELECT 1 FROM users WHERE {where_sql})", params)
                row = cur.fetchone()
        return bool(row and row[0])

    def exists_by_cpf(self, cpf: CPF) -> bool:
        return self._exists("cpf = %s", (cpf.value,))

    def exists_by_email(self, email: str) -> bool:
        return self._exists("email = %s", (email,))

    def exists_by_id(self, account_id: str) -> bool:
        return self._exists("id = %s", (account_id,))

    def insert(self, account: Account) -> Account:
        """Persist a new account and its role links.

        The table's unique constraints are the final uniqueness gate: a
        concurrent registration that slipped past the service's pre-checks
        surfaces here as the matching conflict error.
        """
        try:
            with self._pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        INSERT INTO users (id, cpf, email, password, fullname, birth_date,
                                           complete, created_at, updated_at, deleted_at)
                        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                        """,
                        (
                            account.account_id,
                            account.cpf.value,
                            account.email,
                            account.password_hash,
                            account.fullname,
                            account.birth_date,
                            account.complete,
                            account.created_at,
                            account.updated_at,
                            account.deleted_at,
                        ),
                    )
                    cur.execute(
                        """
                        INSERT INTO users_roles (users_id, roles_id)
                        SELECT %s, id FROM roles WHERE name = ANY(%s)
                        """,
                        (account.account_id, sorted(account.roles)),
                    )
                conn.commit()
        except errors.UniqueViolation as exc:
            conflict = _CONFLICTS_BY_CONSTRAINT.get(exc.diag.constraint_name or "", ConflictError)
            raise conflict() from exc
        return account

    def save(self, account: Account) -> Account:
        """Write back the mutable fields of an existing account."""
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE users
                    SET fullname = %s, birth_date = %s, complete = %s, password = %s,
                        updated_at = %s, deleted_at = %s
                    WHERE id = %s
                    """,
                    (
                        account.fullname,
                        account.birth_date,
                        account.complete,
                        account.password_hash,
                        account.updated_at,
                        account.deleted_at,
                        account.account_id,
                    ),
                )
            conn.commit()
        return account

    def delete(self, account_id: str, deleted_at: datetime) -> None:
        """Soft-delete: stamp ``deleted_at`` once and leave the row in place."""
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE users
                    SET deleted_at = COALESCE(deleted_at, %s), updated_at = %s
                    WHERE id = %s
                    """,
                    (deleted_at, deleted_at, account_id),
                )
            conn.commit()

    def get_recovery(self, account_id: str) -> PasswordRecovery | None:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    """
                    SELECT account_id, code_hash, code_expires_at, attempts,
                           reset_token_hash, reset_expires_at
                    FROM password_recovery
                    WHERE account_id = %s
                    """,
                    (account_id,),
                )
                row = cur.fetchone()
        if not row:
            return None
        return PasswordRecovery(*row)

    def save_recovery(self, recovery: PasswordRecovery) -> None:
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO password_recovery (account_id, code_hash, code_expires_at, attempts,
                                                   reset_token_hash, reset_expires_at)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    ON CONFLICT (account_id) DO UPDATE
                    SET code_hash = EXCLUDED.code_hash,
                        code_expires_at = EXCLUDED.code_expires_at,
                        attempts = EXCLUDED.attempts,
                        reset_token_hash = EXCLUDED.reset_token_hash,
                        reset_expires_at = EXCLUDED.reset_expires_at
                    """,
                    (
                        recovery.account_id,
                        recovery.code_hash,
                        recovery.code_expires_at,
                        recovery.attempts,
                        recovery.reset_token_hash,
                        recovery.reset_expires_at,
                    ),
                )
            conn.commit()

    def claim_recovery_attempt(
        self, account_id: str, max_attempts: int, now: datetime
    ) -> PasswordRecovery | None:
        """Atomically spend one attempt on a live recovery code.

        Returns the state after the increment, or ``None`` when no unexpired
        code with attempts left exists.
        """
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    """
                    UPDATE password_recovery
                    SET attempts = attempts + 1
                    WHERE account_id = %s AND attempts < %s AND code_expires_at > %s
                    RETURNING account_id, code_hash, code_expires_at, attempts,
                              reset_token_hash, reset_expires_at
                    """,
                    (account_id, max_attempts, now),
                )
                row = cur.fetchone()
            conn.commit()
        if not row:
            return None
        return PasswordRecovery(*row)

    def clear_recovery(self, account_id: str) -> None:
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM password_recovery WHERE account_id = %s", (account_id,))
            conn.commit()

    def _map_record(self, row: tuple) -> Account:
        """Convert a raw database tuple into the domain ``Account`` dataclass."""
        return Account(
            account_id=row[0].strip(),
            cpf=CPF(row[1]),
            email=row[2],
            password_hash=row[3],
            created_at=row[4],
            updated_at=row[5],
            fullname=row[6],
            birth_date=row[7],
            complete=row[8],
            deleted_at=row[9],
            roles=frozenset(row[10] or ()),
        )


class RoleRepository:
    """Read-only access to the ``roles`` reference table."""

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    def find_by_name(self, name: str) -> Role | None:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute("SELECT id, name FROM roles WHERE name = %s", (name,))
                row = cur.fetchone()
        if not row:
            return None
        return Role(role_id=row[0], name=row[1])
