"""
Access resolution over an explicit :class:`Actor`.

None of these functions raise on bad input; anything malformed resolves to
"no access".
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import FrozenSet, Optional

from django.conf import settings

from apps.core.users.permissions import Permission, Role, normalize_permissions, to_permission


logger = logging.getLogger(__name__)


DASHBOARD_CAPABILITIES = {
    'finance': (
        Permission.VIEW_FEES,
        Permission.MANAGE_FEES,
        Permission.VIEW_WALLET,
        Permission.MANAGE_WALLET,
    ),
    'students': (Permission.VIEW_STUDENTS, Permission.MANAGE_STUDENTS),
    'teachers': (Permission.VIEW_TEACHERS, Permission.MANAGE_TEACHERS),
    'classes': (Permission.MANAGE_CLASSES,),
    'subjects': (Permission.MANAGE_SUBJECTS,),
    'results': (Permission.VIEW_RESULTS,),
}


def _is_normalized(permissions):
    return isinstance(permissions, frozenset) and all(
        isinstance(key, Permission) for key in permissions
    )


def _resolve_permissions(permissions):
    if permissions is None or _is_normalized(permissions):
        return permissions
    return normalize_permissions(permissions)


def _primary_admin_full_access_enabled():
    return bool(getattr(settings, 'EDUIT_PRIMARY_ADMIN_FULL_ACCESS', True))


@dataclass(frozen=True)
class Actor:
    role: Optional[str]
    # None means no permissions were ever configured for this user.
    permissions: Optional[FrozenSet[Permission]] = None
    user_id: Optional[int] = None
    school_id: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, 'permissions', _resolve_permissions(self.permissions))

    @classmethod
    def anonymous(cls):
        return cls(role=None, permissions=frozenset())

    @classmethod
    def from_user(cls, user):
        if user is None or not getattr(user, 'is_authenticated', False):
            return cls.anonymous()
        return cls(
            role=getattr(user, 'role', None),
            permissions=normalize_permissions(getattr(user, 'permissions', None)),
            user_id=user.pk,
            school_id=getattr(user, 'school_id', None),
        )

    @property
    def is_authenticated(self):
        return self.role is not None

    @property
    def is_super_admin(self):
        return self.role == Role.SUPER_ADMIN

    @property
    def is_primary_admin(self):
        """School admin whose permission set was never configured."""
        return self.role == Role.SCHOOL_ADMIN and self.permissions is None

    @property
    def has_full_access(self):
        return has_full_access(self)

    def can(self, *keys):
        if has_full_access(self):
            return True
        return any(has_permission(self.permissions, key, self.role) for key in keys)

    def capabilities(self):
        return dashboard_capabilities(self)


def has_full_access(actor):
    role = getattr(actor, 'role', None)
    if role == Role.SUPER_ADMIN:
        return True

    permissions = _resolve_permissions(getattr(actor, 'permissions', frozenset()))
    if role == Role.SCHOOL_ADMIN and permissions is None:
        # Fail-open: an unconfigured school admin is the school's primary admin.
        if not _primary_admin_full_access_enabled():
            return False
        logger.debug(
            'Granting full access to unconfigured school admin user_id=%s school_id=%s',
            getattr(actor, 'user_id', None),
            getattr(actor, 'school_id', None),
        )
        return True

    return False


def has_permission(permissions, key, role=None):
    if role == Role.SUPER_ADMIN:
        return True

    permission = to_permission(key)
    if permission is None:
        return False

    permissions = _resolve_permissions(permissions)
    if not permissions:
        return False
    return permission in permissions


def dashboard_capabilities(actor):
    full_access = has_full_access(actor)
    return {
        name: full_access or any(
            has_permission(actor.permissions, key, actor.role) for key in keys
        )
        for name, keys in DASHBOARD_CAPABILITIES.items()
    }
