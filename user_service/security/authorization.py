"""Ownership-or-admin authorization decisions.

The gateway verifies the caller's token and forwards the identity and roles as
plain header values. These functions trust that assertion and only decide
allow or deny; they raise :class:`AccessDenied` on deny and return ``None``
otherwise.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional, Union

from ..domain.account import ROLE_ADMIN
from ..domain.errors import AccessDenied

RequesterRoles = Optional[Union[str, Iterable[str]]]

_ROLE_SEPARATORS = re.compile(r"[,;\s]+")


def parse_roles(requester_roles: RequesterRoles) -> frozenset[str]:
    """Normalise a delimited role header (``"ROLE_USER,ROLE_ADMIN"``) or iterable into a set."""
    if requester_roles is None:
        return frozenset()
    if isinstance(requester_roles, str):
        raw = requester_roles.strip().strip("[]")
        parts: Iterable[str] = _ROLE_SEPARATORS.split(raw)
    else:
        parts = requester_roles
    return frozenset(part.strip() for part in parts if part and part.strip())


def is_admin(requester_roles: RequesterRoles) -> bool:
    return ROLE_ADMIN in parse_roles(requester_roles)


def check_ownership_or_admin(
    target_id: str, requester_id: str | None, requester_roles: RequesterRoles
) -> None:
    """Allow when the requester is the target account or holds the admin role."""
    if requester_id and requester_id == target_id:
        return
    if is_admin(requester_roles):
        return
    raise AccessDenied("Acesso negado: você só pode acessar os seus próprios dados.")


def check_is_admin(requester_roles: RequesterRoles) -> None:
    if not is_admin(requester_roles):
        raise AccessDenied("Acesso negado: operação restrita a administradores.")
