# Overview: Role and ownership checks shared by every admin-only or owner-only operation.

"""
Authorization capability

Authentication is done upstream; services receive the acting user's id and
resolve it here. Every admin-only operation goes through verify_admin_role(),
every owner-scoped one through require_owner_or_admin(). Fail closed: an
unknown or deactivated actor is never authorized.
"""

from __future__ import annotations

from typing import Iterable

from ..config import get_settings
from ..errors import AuthenticationRequired, AuthorizationFailed
from ..extensions import db
from ..models import User


def load_actor(user_id: int | None) -> User:
    if user_id is None:
        raise AuthenticationRequired("Authentication required")
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        raise AuthenticationRequired("Unknown or inactive user", context={"user_id": user_id})
    return user


def is_admin(user: User) -> bool:
    return user.role in get_settings().admin_roles


def require_role(actor: User, allowed_roles: Iterable[str]) -> User:
    allowed = tuple(allowed_roles)
    if actor.role not in allowed:
        raise AuthorizationFailed(
            "Insufficient role for this operation",
            context={"user_id": actor.id, "role": actor.role, "allowed_roles": list(allowed)},
        )
    return actor


def verify_admin_role(actor_or_id) -> User:
    """Resolve the actor (User or id) and require one of the configured admin roles."""
    actor = actor_or_id if isinstance(actor_or_id, User) else load_actor(actor_or_id)
    return require_role(actor, get_settings().admin_roles)


def require_owner_or_admin(actor_or_id, owner_id: int) -> User:
    actor = actor_or_id if isinstance(actor_or_id, User) else load_actor(actor_or_id)
    if actor.id == owner_id or is_admin(actor):
        return actor
    raise AuthorizationFailed(
        "Not allowed to access this resource",
        context={"user_id": actor.id, "owner_id": owner_id},
    )


def require_owner(actor_or_id, owner_id: int) -> User:
    actor = actor_or_id if isinstance(actor_or_id, User) else load_actor(actor_or_id)
    if actor.id != owner_id:
        raise AuthorizationFailed(
            "Only the owner can perform this operation",
            context={"user_id": actor.id, "owner_id": owner_id},
        )
    return actor
