from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi import FastAPI
from fastapi.testclient import TestClient

from user_service.api import routes
from user_service.api.errors import register_error_handlers
from user_service.domain.account import ROLE_ADMIN, ROLE_USER, Account, PasswordRecovery, Role
from user_service.domain.authentication import AuthService
from user_service.domain.contracts import RegisterAccountInput
from user_service.domain.cpf import CPF
from user_service.domain.errors import AccountIdConflict, CPFConflict, EmailConflict
from user_service.domain.service import AccountService
from user_service.security.throttling import MemoryLoginThrottle
from user_service.security.tokens import TokenIssuer

TEST_BCRYPT_ROUNDS = 4

VALID_CPFS = ["52998224725", "11144477735", "12345678909", "39053344705"]


class FakeAccountRepository:
    """In-memory store mimicking the Postgres-backed behaviours, unique constraints included."""

    def __init__(self) -> None:
        self._rows: dict[str, Account] = {}
        self._recoveries: dict[str, PasswordRecovery] = {}

    def _active(self):
        return [row for row in self._rows.values() if row.deleted_at is None]

    def find_active_by_email(self, email: str):
        return next((replace(a) for a in self._active() if a.email == email), None)

    def find_active_by_id(self, account_id: str):
        row = self._rows.get(account_id)
        return replace(row) if row and row.deleted_at is None else None

    def find_active_by_cpf(self, cpf: CPF):
        return next((replace(a) for a in self._active() if a.cpf == cpf), None)

    def find_by_id(self, account_id: str):
        row = self._rows.get(account_id)
        return replace(row) if row else None

    def list_all_active(self):
        return [replace(a) for a in sorted(self._active(), key=lambda a: (a.created_at, a.account_id))]

    def exists_by_cpf(self, cpf: CPF) -> bool:
        return any(a.cpf == cpf for a in self._rows.values())

    def exists_by_email(self, email: str) -> bool:
        return any(a.email == email for a in self._rows.values())

    def exists_by_id(self, account_id: str) -> bool:
        return account_id in self._rows

    def insert(self, account: Account) -> Account:
        if account.account_id in self._rows:
            raise AccountIdConflict()
        if self.exists_by_cpf(account.cpf):
            raise CPFConflict()
        if self.exists_by_email(account.email):
            raise EmailConflict()
        self._rows[account.account_id] = replace(account)
        return account

    def save(self, account: Account) -> Account:
        self._rows[account.account_id] = replace(account)
        return account

    def delete(self, account_id: str, deleted_at: datetime) -> None:
        row = self._rows[account_id]
        if row.deleted_at is None:
            row.deleted_at = deleted_at
        row.updated_at = deleted_at

    def get_recovery(self, account_id: str):
        recovery = self._recoveries.get(account_id)
        return replace(recovery) if recovery else None

    def save_recovery(self, recovery: PasswordRecovery) -> None:
        self._recoveries[recovery.account_id] = replace(recovery)

    def claim_recovery_attempt(self, account_id: str, max_attempts: int, now: datetime):
        recovery = self._recoveries.get(account_id)
        if recovery is None or recovery.attempts >= max_attempts or recovery.code_expires_at <= now:
            return None
        recovery.attempts += 1
        return replace(recovery)

    def clear_recovery(self, account_id: str) -> None:
        self._recoveries.pop(account_id, None)

    def grant_role(self, account_id: str, role: str) -> None:
        row = self._rows[account_id]
        row.roles = row.roles | {role}


class FakeRoleRepository:
    def __init__(self, names: tuple[str, ...] = (ROLE_USER, ROLE_ADMIN)) -> None:
        self._roles = {name: Role(role_id=idx, name=name) for idx, name in enumerate(names, start=1)}

    def find_by_name(self, name: str):
        return self._roles.get(name)


class CapturingNotifier:
    def __init__(self) -> None:
        self.codes: dict[str, str] = {}

    def send_recovery_code(self, account: Account, code: str) -> None:
        self.codes[account.email] = code


@pytest.fixture(scope="session")
def private_key_pem() -> str:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")


@pytest.fixture
def token_issuer(private_key_pem) -> TokenIssuer:
    return TokenIssuer(private_key_pem, ttl_ms=3_600_000)


@pytest.fixture
def repository() -> FakeAccountRepository:
    return FakeAccountRepository()


@pytest.fixture
def notifier() -> CapturingNotifier:
    return CapturingNotifier()


@pytest.fixture
def account_service(repository) -> AccountService:
    return AccountService(repository, FakeRoleRepository(), bcrypt_rounds=TEST_BCRYPT_ROUNDS)


@pytest.fixture
def auth_service(repository, token_issuer, notifier) -> AuthService:
    return AuthService(repository, token_issuer, notifier=notifier, bcrypt_rounds=TEST_BCRYPT_ROUNDS)


@pytest.fixture
def register(account_service):
    """Register an account with sensible defaults; keyword arguments override them."""

    counter = iter(range(len(VALID_CPFS)))

    def _register(**overrides) -> Account:
        idx = next(counter)
        fields = {
            "cpf": VALID_CPFS[idx],
            "fullname": f"User {idx}",
            "email": f"user{idx}@example.com",
            "password": "s3cret-pass",
            "birth_date": date(1990, 1, 1),
        }
        fields.update(overrides)
        return account_service.register(RegisterAccountInput(**fields))

    return _register


@pytest.fixture
def api_client(account_service, auth_service):
    """Provide a FastAPI test client with isolated state."""
    app = FastAPI()
    register_error_handlers(app)
    app.include_router(routes.router)
    app.state.account_service = account_service
    app.state.auth_service = auth_service

    original_throttle = routes.login_throttle
    routes.login_throttle = MemoryLoginThrottle(max_attempts=3, window_seconds=60)

    with TestClient(app) as client:
        yield client

    routes.login_throttle = original_throttle
