from functools import wraps

from django.http import JsonResponse
from django.shortcuts import render

from apps.core.users.permissions import Role

from .services import check_and_enforce_billing


def billing_active_required(view_func):
    """Re-evaluate the billing gate server-side and refuse blocked schools."""

    @wraps(view_func)
    def wrapper(request, *args, **kwargs):
        user = request.user
        school = getattr(user, 'school', None)
        if user.is_authenticated and user.role != Role.SUPER_ADMIN and school is not None:
            snapshot = check_and_enforce_billing(school=school)
            if snapshot.is_blocked:
                if request.headers.get('accept', '').startswith('application/json'):
                    return JsonResponse(
                        {'error': 'School access is restricted pending payment.', 'billing': snapshot.as_dict()},
                        status=402,
                    )
                return render(request, 'billing/locked.html', {'billing': snapshot}, status=402)

        return view_func(request, *args, **kwargs)

    return wrapper
