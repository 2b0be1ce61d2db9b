from django.contrib.auth.signals import user_logged_in, user_logged_out
from django.dispatch import receiver

from apps.core.users.access import Actor
from apps.core.users.audit import log_audit_event


def _access_mode(actor):
    if actor.is_super_admin:
        return 'platform'
    if actor.is_primary_admin and actor.has_full_access:
        return 'primary'
    return 'restricted'


def _session_details(user):
    actor = Actor.from_user(user)
    details = f"Role={actor.role}; Access={_access_mode(actor)}"
    if actor.permissions:
        details += f"; Permissions={len(actor.permissions)}"
    return details


@receiver(user_logged_in)
def log_login(sender, request, user, **kwargs):
    log_audit_event(
        request=request,
        action='user.login',
        school=getattr(user, 'school', None),
        target=user,
        details=_session_details(user),
    )


@receiver(user_logged_out)
def log_logout(sender, request, user, **kwargs):
    if user is None:
        return

    log_audit_event(
        request=request,
        action='user.logout',
        school=getattr(user, 'school', None),
        target=user,
        details=_session_details(user),
    )
