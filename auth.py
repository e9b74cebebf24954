"""
Identity and authorization.

The login flow (Discord OAuth) issues an HS256 token carrying
``{id, username, roles, avatar}``. Here we only read it back. Whether a
principal is an administrator is decided by a policy object handed to the
service, never by module-level id lists.
"""

import logging
from typing import Callable, Iterable, Optional

import jwt
import pydantic

from schemas import Principal

logger = logging.getLogger(__name__)

AuthorizationPolicy = Callable[[Principal], bool]


def principal_from_header(authorization: Optional[str], secret: Optional[str]) -> Optional[Principal]:
    """Decode a ``Bearer`` header; anything missing or invalid means anonymous."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    if not secret:
        logger.error("JWT_SECRET is not set, bearer tokens cannot be verified")
        return None
    try:
        claims = jwt.decode(token.strip(), secret, algorithms=["HS256"])
        return Principal.model_validate(claims)
    except jwt.PyJWTError as e:
        logger.warning("Rejected bearer token: %s", e)
    except pydantic.ValidationError as e:
        logger.warning("Bearer token is missing identity claims: %s", e.errors()[0]["loc"])
    return None


class RolePolicy:
    """Administrator when the principal holds at least one of the admin roles."""

    def __init__(self, admin_role_ids: Iterable[str]):
        self.admin_role_ids = frozenset(str(r) for r in admin_role_ids)
        if not self.admin_role_ids:
            logger.warning("No admin role ids configured, administrative routes are closed")

    def __call__(self, principal: Principal) -> bool:
        allowed = any(role in self.admin_role_ids for role in principal.roles)
        if not allowed:
            logger.warning(
                "Access denied: user %s (ID: %s) lacks an admin role. Roles: %s",
                principal.username, principal.id, ", ".join(principal.roles),
            )
        return allowed
