"""
Role and permission catalog.

Stored permission blobs arrive in several shapes (a mapping of key to bool, a
list of granted keys, a JSON string of either, or nothing at all).
``normalize_permissions`` turns any of them into one of two values:

* ``None`` when nothing is configured (absent, ``""``, ``null``, ``{}``, ``[]``)
* a ``frozenset`` of :class:`Permission` when something is configured

Unparseable blobs count as configured with no grants, so they deny.
"""
from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass

from django.db import models


logger = logging.getLogger(__name__)


class Role(models.TextChoices):
    SUPER_ADMIN = 'superadmin', 'Super Admin'
    SCHOOL_ADMIN = 'schooladmin', 'School Admin'
    TEACHER = 'teacher', 'Teacher'
    STUDENT = 'student', 'Student'
    PARENT = 'parent', 'Parent'


class Permission(models.TextChoices):
    MANAGE_WALLET = 'manage_wallet', 'Manage Wallet'
    VIEW_WALLET = 'view_wallet', 'View Wallet'
    MANAGE_FEES = 'manage_fees', 'Manage Fees'
    VIEW_FEES = 'view_fees', 'View Fees'
    MANAGE_TEACHERS = 'manage_teachers', 'Manage Teachers'
    VIEW_TEACHERS = 'view_teachers', 'View Teachers'
    MANAGE_STUDENTS = 'manage_students', 'Manage Students'
    VIEW_STUDENTS = 'view_students', 'View Students'
    MANAGE_PARENTS = 'manage_parents', 'Manage Parents'
    VIEW_PARENTS = 'view_parents', 'View Parents'
    MANAGE_CLASSES = 'manage_classes', 'Manage Classes'
    MANAGE_SUBJECTS = 'manage_subjects', 'Manage Subjects'
    MANAGE_DEPARTMENTS = 'manage_departments', 'Manage Departments'
    MANAGE_LEVELS = 'manage_levels', 'Manage Levels'
    MANAGE_SESSIONS = 'manage_sessions', 'Manage Sessions'
    VIEW_RESULTS = 'view_results', 'View Results'
    ENTER_RESULTS = 'enter_results', 'Enter Results'
    APPROVE_RESULTS = 'approve_results', 'Approve Results'
    PUBLISH_RESULTS = 'publish_results', 'Publish Results'
    MANAGE_CALENDAR = 'manage_calendar', 'Manage Calendar'
    MANAGE_EVENTS = 'manage_events', 'Manage Events'
    MANAGE_SETTINGS = 'manage_settings', 'Manage Settings'
    MANAGE_ADMINS = 'manage_admins', 'Manage Admins'


@dataclass(frozen=True)
class PermissionEntry:
    key: Permission
    description: str

    @property
    def label(self):
        return self.key.label


@dataclass(frozen=True)
class PermissionGroup:
    name: str
    entries: tuple


PERMISSION_GROUPS = (
    PermissionGroup('Finance', (
        PermissionEntry(Permission.MANAGE_WALLET, 'Can credit/debit and view full wallet history.'),
        PermissionEntry(Permission.VIEW_WALLET, 'Can only view wallet balance and history.'),
        PermissionEntry(Permission.MANAGE_FEES, 'Can create bills and process payments.'),
        PermissionEntry(Permission.VIEW_FEES, 'Can view fee status and payment history.'),
    )),
    PermissionGroup('People', (
        PermissionEntry(Permission.MANAGE_TEACHERS, 'Can add, edit, and assign teachers.'),
        PermissionEntry(Permission.VIEW_TEACHERS, 'Can view teacher profiles and assignments.'),
        PermissionEntry(Permission.MANAGE_STUDENTS, 'Can enroll, edit, and promote students.'),
        PermissionEntry(Permission.VIEW_STUDENTS, 'Can view student profiles and records.'),
        PermissionEntry(Permission.MANAGE_PARENTS, 'Can add and link parents to students.'),
        PermissionEntry(Permission.VIEW_PARENTS, 'Can view parent contact information.'),
    )),
    PermissionGroup('Academics', (
        PermissionEntry(Permission.MANAGE_CLASSES, 'Can create and manage school classes.'),
        PermissionEntry(Permission.MANAGE_SUBJECTS, 'Can create and manage subjects.'),
        PermissionEntry(Permission.MANAGE_DEPARTMENTS, 'Can manage school departments.'),
        PermissionEntry(Permission.MANAGE_LEVELS, 'Can manage school grade levels.'),
        PermissionEntry(Permission.MANAGE_SESSIONS, 'Can open/close academic sessions and terms.'),
    )),
    PermissionGroup('Examinations', (
        PermissionEntry(Permission.VIEW_RESULTS, 'Can view all student results.'),
        PermissionEntry(Permission.ENTER_RESULTS, 'Can input marks for any student/subject.'),
        PermissionEntry(Permission.APPROVE_RESULTS, 'Can approve results pending review.'),
        PermissionEntry(Permission.PUBLISH_RESULTS, 'Can make results visible to parents/students.'),
    )),
    PermissionGroup('Engagement', (
        PermissionEntry(Permission.MANAGE_CALENDAR, 'Can manage the school academic calendar.'),
        PermissionEntry(Permission.MANAGE_EVENTS, 'Can create and edit school events.'),
    )),
    PermissionGroup('System', (
        PermissionEntry(Permission.MANAGE_SETTINGS, 'Can change school profile and appearance.'),
        PermissionEntry(Permission.MANAGE_ADMINS, 'Can add and set permissions for other admins.'),
    )),
)


def permission_choices():
    """Grouped ``(group, ((key, label), ...))`` choices for form widgets."""
    return [
        (group.name, [(entry.key.value, entry.label) for entry in group.entries])
        for group in PERMISSION_GROUPS
    ]


def to_permission(key):
    """Return the matching Permission, or None for unknown keys."""
    if isinstance(key, Permission):
        return key
    if not isinstance(key, str):
        return None
    try:
        return Permission(key.strip())
    except ValueError:
        return None


def _decode(raw):
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode('utf-8')
    text = raw.strip()
    if not text:
        return None
    return json.loads(text)


def normalize_permissions(raw):
    if raw is None:
        return None

    data = raw
    if isinstance(raw, (str, bytes, bytearray)):
        try:
            data = _decode(raw)
        except (ValueError, UnicodeDecodeError, RecursionError):
            logger.warning('Unparseable permission blob treated as no permissions')
            return frozenset()
        if data is None:
            return None

    if isinstance(data, Mapping):
        if not data:
            return None
        keys = (key for key, granted in data.items() if granted is True)
    elif isinstance(data, (list, tuple, set, frozenset)):
        if not data:
            return None
        keys = data
    else:
        return frozenset()

    granted = set()
    for key in keys:
        permission = to_permission(key)
        if permission is not None:
            granted.add(permission)
    return frozenset(granted)


def serialize_permissions(permissions):
    """
    Mapping of every catalog key to its grant, for the JSON column.

    Every key is written so an explicitly empty grant set stays configured.
    None stays None (unconfigured).
    """
    if permissions is None:
        return None
    granted = {to_permission(key) for key in permissions}
    return {permission.value: permission in granted for permission in Permission}
