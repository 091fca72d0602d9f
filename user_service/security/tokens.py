"""Issuing and validating RS256 access tokens."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

import jwt
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from ..domain.account import Account
from ..domain.errors import ConfigurationFault

DEFAULT_ISSUER = "servico-usuarios"
ALGORITHM = "RS256"


@dataclass(frozen=True, slots=True)
class IssuedToken:
    """Encoded JWT and its lifetime in milliseconds."""

    token: str
    expires_in_ms: int


class TokenIssuer:
    """Signs access tokens with a private key loaded once at startup.

    Parameters
    ----------
    private_key_pem:
        PEM-encoded RSA private key (PKCS#8 or PKCS#1).
    ttl_ms:
        Token lifetime in milliseconds.
    issuer:
        Value of the ``iss`` claim.

    Raises
    ------
    ConfigurationFault
        When the key material is missing, malformed or not an RSA key.
    """

    def __init__(self, private_key_pem: str, ttl_ms: int, issuer: str = DEFAULT_ISSUER) -> None:
        if not private_key_pem or not private_key_pem.strip():
            raise ConfigurationFault("JWT private key is not configured")
        try:
            key = serialization.load_pem_private_key(private_key_pem.encode("utf-8"), password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            raise ConfigurationFault("Erro ao carregar chave privada") from exc
        if not isinstance(key, RSAPrivateKey):
            raise ConfigurationFault("JWT private key must be an RSA key")
        if ttl_ms <= 0:
            raise ConfigurationFault("JWT expiration must be positive")
        self._private_key = key
        self._ttl_ms = ttl_ms
        self._issuer = issuer

    @property
    def issuer(self) -> str:
        return self._issuer

    def issue(self, account: Account) -> IssuedToken:
        """Create a signed JWT for ``account``.

        ``userRoles`` is a snapshot of the roles held now; later role changes
        do not affect tokens already issued.
        """
        now_ms = int(time.time() * 1000)
        payload: dict[str, Any] = {
            "sub": account.email,
            "iss": self._issuer,
            "iat": now_ms // 1000,
            "exp": (now_ms + self._ttl_ms) // 1000,
            "userId": account.account_id,
            "userRoles": sorted(account.roles),
        }
        token = jwt.encode(payload, self._private_key, algorithm=ALGORITHM)
        return IssuedToken(token=token, expires_in_ms=self._ttl_ms)

    def public_key_pem(self) -> str:
        """Return the SubjectPublicKeyInfo PEM that verifiers need."""
        return (
            self._private_key.public_key()
            .public_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PublicFormat.SubjectPublicKeyInfo,
            )
            .decode("utf-8")
        )

    def decode(self, token: str) -> dict[str, Any]:
        """Verify signature, expiry and issuer of ``token`` and return its claims.

        Raises
        ------
        jwt.PyJWTError
            Propagated when the token is invalid, expired, or signed by another issuer.
        """
        return jwt.decode(
            token,
            self._private_key.public_key(),
            algorithms=[ALGORITHM],
            issuer=self._issuer,
        )


def build_token_issuer(settings) -> TokenIssuer:
    """Construct the process-wide issuer from settings; fails fast on bad keys."""
    try:
        pem = settings.load_private_key_pem()
    except OSError as exc:
        raise ConfigurationFault("JWT private key file is unreadable") from exc
    return TokenIssuer(pem, settings.jwt_expiration_ms, issuer=settings.jwt_issuer)
