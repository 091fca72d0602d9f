"""HTTP route definitions for the user service."""

from __future__ import annotations

import logging
from datetime import date, datetime

from fastapi import APIRouter, Depends, Header, Query, Request, Response, status
from pydantic import BaseModel, EmailStr, Field

from ..config import get_settings
from ..domain.account import Account
from ..domain.authentication import AuthService
from ..domain.contracts import RegisterAccountInput, SyncAccountInput, UpdateProfileInput
from ..domain.service import AccountService
from ..security.throttling import build_login_throttle
from ..security.tokens import ALGORITHM

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1")


class AccountResponse(BaseModel):
    """Serialised representation of an `Account`; the credential hash is never included."""

    id: str
    roles: list[str]
    cpf: str
    cpf_formatted: str
    fullname: str | None
    email: str
    birth_date: date | None
    complete: bool
    created_at: datetime

    @classmethod
    def from_domain(cls, account: Account) -> "AccountResponse":
        """Build a response model from the domain aggregate."""
        return cls(
            id=account.account_id,
            roles=sorted(account.roles),
            cpf=account.cpf.value,
            cpf_formatted=account.cpf.formatted,
            fullname=account.fullname,
            email=account.email,
            birth_date=account.birth_date,
            complete=account.complete,
            created_at=account.created_at,
        )


class RegisterRequest(BaseModel):
    """Payload accepted when registering a complete account."""

    cpf: str
    fullname: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=1)
    birth_date: date


class SyncRequest(BaseModel):
    """Partial account pushed by an internal system."""

    id: str = Field(..., min_length=1, max_length=36)
    cpf: str
    fullname: str | None = None
    email: EmailStr
    created_at: datetime


class UpdateRequest(BaseModel):
    fullname: str | None = None
    birth_date: date | None = None


class LoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    """Token issuance response containing the bearer token and metadata."""

    access_token: str
    token_type: str = "bearer"
    expires_in_ms: int


class PublicKeyResponse(BaseModel):
    public_key: str
    algorithm: str
    issuer: str


class RecoveryRequest(BaseModel):
    email: str


class VerifyRecoveryRequest(BaseModel):
    email: str
    code: str


class RecoveryTokenResponse(BaseModel):
    reset_token: str


class ResetPasswordRequest(BaseModel):
    email: str
    token: str
    new_password: str = Field(..., min_length=1)


settings = get_settings()

login_throttle = build_login_throttle(settings)


def get_account_service(request: Request) -> AccountService:
    """Resolve the `AccountService` stored on the FastAPI application state."""
    service: AccountService = request.app.state.account_service
    return service


def get_auth_service(request: Request) -> AuthService:
    service: AuthService = request.app.state.auth_service
    return service


@router.post("/auth/register", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
def register(
    payload: RegisterRequest,
    service: AccountService = Depends(get_account_service),
) -> AccountResponse:
    """Register a complete account with the default role."""
    account = service.register(
        RegisterAccountInput(
            cpf=payload.cpf,
            fullname=payload.fullname,
            email=payload.email,
            password=payload.password,
            birth_date=payload.birth_date,
        )
    )
    return AccountResponse.from_domain(account)


@router.post("/auth/login", response_model=TokenResponse)
def login(
    payload: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> TokenResponse:
    """Exchange email and password for a signed bearer token."""
    key = login_throttle.guard("login", payload.email)
    issued = service.login(payload.email, payload.password)
    login_throttle.succeeded(key)
    return TokenResponse(access_token=issued.token, expires_in_ms=issued.expires_in_ms)


@router.get("/auth/public-key", response_model=PublicKeyResponse)
def public_key(service: AuthService = Depends(get_auth_service)) -> PublicKeyResponse:
    """Expose the verification key used by the gateway."""
    issuer = service.token_issuer
    return PublicKeyResponse(public_key=issuer.public_key_pem(), algorithm=ALGORITHM, issuer=issuer.issuer)


@router.post("/auth/password-recovery", status_code=status.HTTP_202_ACCEPTED)
def request_password_recovery(
    payload: RecoveryRequest,
    service: AuthService = Depends(get_auth_service),
) -> Response:
    login_throttle.guard("recovery", payload.email)
    service.request_recovery(payload.email)
    return Response(status_code=status.HTTP_202_ACCEPTED)


@router.post("/auth/password-recovery/verify", response_model=RecoveryTokenResponse)
def verify_recovery_code(
    payload: VerifyRecoveryRequest,
    service: AuthService = Depends(get_auth_service),
) -> RecoveryTokenResponse:
    login_throttle.guard("recovery-verify", payload.email)
    return RecoveryTokenResponse(reset_token=service.verify_recovery_code(payload.email, payload.code))


@router.post("/auth/password-reset", status_code=status.HTTP_204_NO_CONTENT)
def reset_password(
    payload: ResetPasswordRequest,
    service: AuthService = Depends(get_auth_service),
) -> Response:
    service.reset_password(payload.email, payload.token, payload.new_password)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/users/me", response_model=AccountResponse)
def get_current_account(
    requester_id: str = Header(..., alias="X-User-Id"),
    requester_roles: str = Header("", alias="X-User-Roles"),
    service: AccountService = Depends(get_account_service),
) -> AccountResponse:
    """Return the account identified by the gateway-asserted requester id."""
    return AccountResponse.from_domain(service.get(requester_id, requester_id, requester_roles))


@router.get("/users/search", response_model=AccountResponse)
def search_by_cpf(
    cpf: str = Query(...),
    service: AccountService = Depends(get_account_service),
) -> AccountResponse:
    """Find an active account by CPF for in-person check-in."""
    return AccountResponse.from_domain(service.find_by_cpf(cpf))


@router.get("/users", response_model=list[AccountResponse])
def list_accounts(
    requester_roles: str = Header("", alias="X-User-Roles"),
    service: AccountService = Depends(get_account_service),
) -> list[AccountResponse]:
    """List every active account; admins only."""
    return [AccountResponse.from_domain(account) for account in service.list_active(requester_roles)]


@router.post("/users/sync", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
def sync_account(
    payload: SyncRequest,
    service: AccountService = Depends(get_account_service),
) -> AccountResponse:
    """Create a partial account captured offline by another system."""
    account = service.sync(
        SyncAccountInput(
            account_id=payload.id,
            cpf=payload.cpf,
            email=payload.email,
            created_at=payload.created_at,
            fullname=payload.fullname,
        )
    )
    return AccountResponse.from_domain(account)


@router.get("/users/{account_id}", response_model=AccountResponse)
def get_account(
    account_id: str,
    requester_id: str = Header(..., alias="X-User-Id"),
    requester_roles: str = Header("", alias="X-User-Roles"),
    service: AccountService = Depends(get_account_service),
) -> AccountResponse:
    return AccountResponse.from_domain(service.get(account_id, requester_id, requester_roles))


@router.put("/users/{account_id}", response_model=AccountResponse)
def update_account(
    account_id: str,
    payload: UpdateRequest,
    requester_id: str = Header(..., alias="X-User-Id"),
    requester_roles: str = Header("", alias="X-User-Roles"),
    service: AccountService = Depends(get_account_service),
) -> AccountResponse:
    """Apply a partial profile update; blank fields are ignored."""
    account = service.update(
        account_id,
        UpdateProfileInput(fullname=payload.fullname, birth_date=payload.birth_date),
        requester_id,
        requester_roles,
    )
    return AccountResponse.from_domain(account)


@router.delete("/users/{account_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_account(
    account_id: str,
    requester_id: str = Header(..., alias="X-User-Id"),
    requester_roles: str = Header("", alias="X-User-Roles"),
    service: AccountService = Depends(get_account_service),
) -> Response:
    """Soft-delete an account."""
    service.delete(account_id, requester_id, requester_roles)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
