"""Error taxonomy raised by the domain and security layers.

Each error carries the HTTP status and the message the transport layer is
allowed to expose. Handlers in :mod:`user_service.api.errors` map them onto
responses; nothing in the core catches them.
"""

from __future__ import annotations


class UserServiceError(Exception):
    """Base class for every failure the service reports to callers."""

    status_code: int = 500
    public_message: str = "internal server error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.public_message)
        self.message = message or self.public_message


class InvalidCPF(UserServiceError, ValueError):
    """Raised when a raw string fails CPF format or check-digit validation."""

    status_code = 400

    def __init__(self, raw: object) -> None:
        super().__init__(f"CPF inválido, {raw}")
        self.raw = raw


class InvalidCredentials(UserServiceError):
    """Login failure; never says whether the email or the password was wrong."""

    status_code = 401
    public_message = "Email ou senha inválidos"

    def __init__(self) -> None:
        super().__init__(self.public_message)


class AccessDenied(UserServiceError):
    status_code = 403
    public_message = "access denied"


class NotFound(UserServiceError):
    status_code = 404
    public_message = "user not found"


class ConflictError(UserServiceError):
    status_code = 409
    public_message = "user already exists"


class CPFConflict(ConflictError):
    public_message = "O CPF já está cadastrado."


class EmailConflict(ConflictError):
    public_message = "O e-mail já está cadastrado."


class AccountIdConflict(ConflictError):
    public_message = "user id already exists"


class InvalidRecoveryCode(UserServiceError):
    status_code = 400
    public_message = "invalid or expired recovery code"


class ConfigurationFault(UserServiceError):
    """Unusable configuration (signing key, reference data). Fatal at startup."""

    status_code = 500


class TooManyAttempts(UserServiceError):
    """Login or recovery attempts for one email exceeded the throttle window."""

    status_code = 429
    public_message = "Muitas tentativas. Tente novamente mais tarde."
