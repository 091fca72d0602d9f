"""Account service orchestrating authorization, uniqueness and persistence."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable

from .account import ROLE_USER, Account, normalize_email
from .contracts import RegisterAccountInput, SyncAccountInput, UpdateProfileInput
from .cpf import CPF
from .errors import AccountIdConflict, ConfigurationFault, CPFConflict, EmailConflict, NotFound
from ..metrics import ACCOUNTS_CREATED
from ..repository import AccountRepository, RoleRepository
from ..security.authorization import RequesterRoles, check_is_admin, check_ownership_or_admin
from ..security.passwords import hash_password, placeholder_hash

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AccountService:
    """Account lifecycle workflows.

    Every operation on an existing account runs the ownership-or-admin check
    before the store is touched.
    """

    def __init__(
        self,
        accounts: AccountRepository,
        roles: RoleRepository,
        *,
        bcrypt_rounds: int | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._accounts = accounts
        self._roles = roles
        self._bcrypt_rounds = bcrypt_rounds
        self._clock = clock

    def register(self, payload: RegisterAccountInput) -> Account:
        """Create a complete account with the default role."""
        cpf = CPF.parse(payload.cpf)
        email = normalize_email(payload.email)
        self._ensure_unique(cpf, email)
        now = self._clock()
        account = Account(
            account_id=payload.account_id or str(uuid.uuid4()),
            cpf=cpf,
            email=email,
            password_hash=hash_password(payload.password, rounds=self._bcrypt_rounds),
            created_at=now,
            updated_at=now,
            fullname=payload.fullname,
            birth_date=payload.birth_date,
            roles=self._default_roles(),
        )
        account.refresh_completeness()
        self._accounts.insert(account)
        ACCOUNTS_CREATED.labels(kind="register").inc()
        logger.info("account registered id=%s", account.account_id)
        return account

    def sync(self, payload: SyncAccountInput) -> Account:
        """Create a partial account on behalf of an internal system.

        The account gets a placeholder credential and stays incomplete until
        the profile is filled in.
        """
        cpf = CPF.parse(payload.cpf)
        email = normalize_email(payload.email)
        self._ensure_unique(cpf, email)
        if self._accounts.exists_by_id(payload.account_id):
            raise AccountIdConflict()
        account = Account(
            account_id=payload.account_id,
            cpf=cpf,
            email=email,
            password_hash=placeholder_hash(rounds=self._bcrypt_rounds),
            created_at=payload.created_at,
            updated_at=self._clock(),
            fullname=payload.fullname,
            complete=False,
            roles=self._default_roles(),
        )
        self._accounts.insert(account)
        ACCOUNTS_CREATED.labels(kind="sync").inc()
        logger.info("account synced id=%s", account.account_id)
        return account

    def get(self, target_id: str, requester_id: str | None, requester_roles: RequesterRoles) -> Account:
        check_ownership_or_admin(target_id, requester_id, requester_roles)
        return self._require_active(target_id)

    def list_active(self, requester_roles: RequesterRoles) -> list[Account]:
        check_is_admin(requester_roles)
        return self._accounts.list_all_active()

    def find_by_cpf(self, raw_cpf: str) -> Account:
        """Look up an active account by CPF (used for in-person check-in)."""
        account = self._accounts.find_active_by_cpf(CPF.parse(raw_cpf))
        if account is None:
            raise NotFound("Usuário não encontrado com esse CPF.")
        return account

    def update(
        self,
        target_id: str,
        payload: UpdateProfileInput,
        requester_id: str | None,
        requester_roles: RequesterRoles,
    ) -> Account:
        check_ownership_or_admin(target_id, requester_id, requester_roles)
        account = self._require_active(target_id)
        account.apply_profile_update(
            fullname=payload.fullname,
            birth_date=payload.birth_date,
            now=self._clock(),
        )
        return self._accounts.save(account)

    def delete(self, target_id: str, requester_id: str | None, requester_roles: RequesterRoles) -> None:
        """Soft-delete an account; the row and its identifiers stay reserved."""
        check_ownership_or_admin(target_id, requester_id, requester_roles)
        account = self._accounts.find_by_id(target_id)
        if account is None:
            raise NotFound("Usuário não encontrado.")
        account.mark_deleted(self._clock())
        self._accounts.delete(account.account_id, account.deleted_at)
        logger.info("account soft-deleted id=%s by=%s", target_id, requester_id)

    def _require_active(self, account_id: str) -> Account:
        account = self._accounts.find_active_by_id(account_id)
        if account is None:
            raise NotFound(f"Usuário com ID {account_id} não encontrado.")
        return account

    def _ensure_unique(self, cpf: CPF, email: str) -> None:
        # soft-deleted rows count too
        if self._accounts.exists_by_cpf(cpf):
            raise CPFConflict()
        if self._accounts.exists_by_email(email):
            raise EmailConflict()

    def _default_roles(self) -> frozenset[str]:
        role = self._roles.find_by_name(ROLE_USER)
        if role is None:
            raise ConfigurationFault(f"Role '{ROLE_USER}' não encontrada no banco.")
        return frozenset({role.name})
