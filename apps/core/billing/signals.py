from django.conf import settings
from django.db.models.signals import post_save
from django.dispatch import receiver

from apps.core.users.permissions import Role

from .services import update_onboarding_activity


@receiver(post_save, sender=settings.AUTH_USER_MODEL)
def track_student_onboarding(sender, instance, created, **kwargs):
    if not created or instance.role != Role.STUDENT or instance.school_id is None:
        return

    update_onboarding_activity(school=instance.school)
