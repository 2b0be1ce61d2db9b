from django.shortcuts import redirect
from django.urls import reverse

from apps.core.users.permissions import Role


class BillingLockMiddleware:
    """
    Sends members of a BLOCKED school to the paywall page.

    Uses the stored status; views that mutate data re-evaluate it with
    ``billing_active_required``.
    """

    exempt_url_names = ('login', 'logout', 'billing_locked', 'billing_status', 'billing_quote', 'payment_webhook')

    def __init__(self, get_response):
        self.get_response = get_response
        self._exempt_paths = None

    def _is_exempt(self, path):
        if self._exempt_paths is None:
            self._exempt_paths = tuple(reverse(name) for name in self.exempt_url_names)
        return path in self._exempt_paths or path.startswith(reverse('admin:index'))

    def __call__(self, request):
        user = getattr(request, 'user', None)
        if (
            user is not None
            and user.is_authenticated
            and user.role != Role.SUPER_ADMIN
            and getattr(user, 'school', None) is not None
            and user.school.is_billing_blocked
            and not self._is_exempt(request.path)
        ):
            return redirect('billing_locked')

        return self.get_response(request)
