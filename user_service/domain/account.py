from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime

from .cpf import CPF

ROLE_USER = "ROLE_USER"
ROLE_ADMIN = "ROLE_ADMIN"


def normalize_email(email: str) -> str:
    """Canonical form used for storage, lookups and uniqueness: trimmed and lowercased."""
    return email.strip().lower()


@dataclass(frozen=True, slots=True)
class Role:
    """Static reference data naming a permission level."""

    role_id: int
    name: str


@dataclass(slots=True)
class Account:
    """Aggregate root for a user's identity, credential hash and roles."""

    account_id: str
    cpf: CPF
    email: str
    password_hash: str = field(repr=False)
    created_at: datetime
    updated_at: datetime
    fullname: str | None = None
    birth_date: date | None = None
    complete: bool = False
    roles: frozenset[str] = frozenset()
    deleted_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.deleted_at is None

    def refresh_completeness(self) -> bool:
        """Set ``complete`` from the current profile fields and return it."""
        self.complete = bool(self.fullname and self.fullname.strip()) and self.birth_date is not None
        return self.complete

    def apply_profile_update(
        self, *, fullname: str | None, birth_date: date | None, now: datetime
    ) -> None:
        """Apply the non-blank fields of a partial profile update."""
        if fullname is not None and fullname.strip():
            self.fullname = fullname
        if birth_date is not None:
            self.birth_date = birth_date
        self.refresh_completeness()
        self.updated_at = now

    def replace_password_hash(self, password_hash: str, now: datetime) -> None:
        self.password_hash = password_hash
        self.updated_at = now

    def mark_deleted(self, now: datetime) -> None:
        """Soft-delete the account; an existing deletion timestamp is kept."""
        if self.deleted_at is None:
            self.deleted_at = now
        self.updated_at = now


@dataclass(slots=True)
class PasswordRecovery:
    """Per-account recovery state; only digests of codes and tokens are kept."""

    account_id: str
    code_hash: str
    code_expires_at: datetime
    attempts: int = 0
    reset_token_hash: str | None = None
    reset_expires_at: datetime | None = None
