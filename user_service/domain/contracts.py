"""Domain-level request contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime


@dataclass(slots=True)
class RegisterAccountInput:
    """Inputs required to register a complete account."""

    cpf: str
    fullname: str
    email: str
    password: str
    birth_date: date
    account_id: str | None = None


@dataclass(slots=True)
class SyncAccountInput:
    """Partial account pushed by an internal system (e.g. offline mobile sign-up)."""

    account_id: str
    cpf: str
    email: str
    created_at: datetime
    fullname: str | None = None


@dataclass(slots=True)
class UpdateProfileInput:
    """Partial profile update; ``None`` or blank fields are left untouched."""

    fullname: str | None = None
    birth_date: date | None = None
