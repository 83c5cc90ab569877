# app/core/capabilities.py
import enum
from typing import FrozenSet

from app.models.user import User, UserRole


class Capability(str, enum.Enum):
    """What a user may do"""
    VIEW = "view"
    VOTE = "vote"
    BE_NOMINATED = "be_nominated"
    MANAGE = "manage"        # categories, nominees, users
    RECONCILE = "reconcile"  # payment reconciliation


_BASE = frozenset({Capability.VIEW, Capability.VOTE})

_ROLE_CAPABILITIES = {
    UserRole.VOTER: _BASE,
    UserRole.STUDENT: _BASE | {Capability.BE_NOMINATED},
    UserRole.ADMIN: _BASE | {Capability.MANAGE, Capability.RECONCILE},
}


def resolve_capabilities(user: User | None) -> FrozenSet[Capability]:
    """Single source of role -> capability resolution"""
    if user is None or not user.is_active:
        return frozenset()
    return _ROLE_CAPABILITIES.get(UserRole(user.role), _BASE)


def has_capability(user: User | None, capability: Capability) -> bool:
    return capability in resolve_capabilities(user)
