"""Login and password-recovery workflows."""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

from .account import Account, PasswordRecovery, normalize_email
from .errors import InvalidCredentials, InvalidRecoveryCode, NotFound
from ..metrics import LOGIN_ATTEMPTS
from ..repository import AccountRepository
from ..security.passwords import hash_password, verify_password
from ..security.tokens import IssuedToken, TokenIssuer

logger = logging.getLogger(__name__)

MAX_RECOVERY_ATTEMPTS = 5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _digest(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


class RecoveryNotifier(Protocol):
    def send_recovery_code(self, account: Account, code: str) -> None: ...


class LoggingRecoveryNotifier:
    """Placeholder delivery channel: records that a code went out, never the code."""

    def send_recovery_code(self, account: Account, code: str) -> None:
        logger.info("password recovery code dispatched account_id=%s", account.account_id)


class AuthService:
    """Credential checks and token issuance.

    Login is stateless: nothing is written on success or failure. Recovery
    state lives in the account store, keyed by account id, with explicit
    expiry timestamps.
    """

    def __init__(
        self,
        accounts: AccountRepository,
        token_issuer: TokenIssuer,
        *,
        notifier: RecoveryNotifier | None = None,
        recovery_code_ttl: timedelta = timedelta(minutes=10),
        reset_token_ttl: timedelta = timedelta(minutes=15),
        bcrypt_rounds: int | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._accounts = accounts
        self._token_issuer = token_issuer
        self._notifier = notifier or LoggingRecoveryNotifier()
        self._recovery_code_ttl = recovery_code_ttl
        self._reset_token_ttl = reset_token_ttl
        self._bcrypt_rounds = bcrypt_rounds
        self._clock = clock

    @property
    def token_issuer(self) -> TokenIssuer:
        return self._token_issuer

    def login(self, email: str, password: str) -> IssuedToken:
        """Return a signed token for valid credentials.

        Unknown emails and wrong passwords raise the same
        :class:`InvalidCredentials` so callers cannot probe for accounts.
        """
        account = self._accounts.find_active_by_email(normalize_email(email))
        if account is None or not verify_password(password, account.password_hash):
            LOGIN_ATTEMPTS.labels(outcome="rejected").inc()
            logger.info("login rejected")
            raise InvalidCredentials()

        issued = self._token_issuer.issue(account)
        LOGIN_ATTEMPTS.labels(outcome="success").inc()
        logger.info("login succeeded account_id=%s", account.account_id)
        return issued

    def request_recovery(self, email: str) -> None:
        """Generate a six-digit recovery code for an active account and dispatch it."""
        account = self._require_active(email)
        code = f"{secrets.randbelow(1_000_000):06d}"
        self._accounts.save_recovery(
            PasswordRecovery(
                account_id=account.account_id,
                code_hash=_digest(code),
                code_expires_at=self._clock() + self._recovery_code_ttl,
            )
        )
        self._notifier.send_recovery_code(account, code)

    def verify_recovery_code(self, email: str, code: str) -> str:
        """Exchange a valid recovery code for a one-time reset token."""
        account = self._accounts.find_active_by_email(normalize_email(email))
        if account is None:
            raise InvalidRecoveryCode()
        now = self._clock()
        # every guess spends an attempt before the code is compared
        recovery = self._accounts.claim_recovery_attempt(account.account_id, MAX_RECOVERY_ATTEMPTS, now)
        if recovery is None:
            raise InvalidRecoveryCode()
        if not hmac.compare_digest(recovery.code_hash, _digest(code)):
            raise InvalidRecoveryCode()

        reset_token = secrets.token_urlsafe(32)
        recovery.reset_token_hash = _digest(reset_token)
        recovery.reset_expires_at = now + self._reset_token_ttl
        # the code is single-use once it has produced a token
        recovery.code_expires_at = now
        self._accounts.save_recovery(recovery)
        return reset_token

    def reset_password(self, email: str, reset_token: str, new_password: str) -> None:
        """Replace the credential hash when ``reset_token`` is valid."""
        account = self._require_active(email)
        recovery = self._accounts.get_recovery(account.account_id)
        now = self._clock()
        if (
            recovery is None
            or recovery.reset_token_hash is None
            or recovery.reset_expires_at is None
            or recovery.reset_expires_at <= now
            or not hmac.compare_digest(recovery.reset_token_hash, _digest(reset_token))
        ):
            raise InvalidRecoveryCode("O token não é válido.")

        account.replace_password_hash(hash_password(new_password, rounds=self._bcrypt_rounds), now)
        self._accounts.save(account)
        self._accounts.clear_recovery(account.account_id)
        logger.info("password reset account_id=%s", account.account_id)

    def _require_active(self, email: str) -> Account:
        account = self._accounts.find_active_by_email(normalize_email(email))
        if account is None:
            raise NotFound("Usuário não encontrado com esse e-mail.")
        return account
