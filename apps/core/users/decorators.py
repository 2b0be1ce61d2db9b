from functools import wraps

from django.shortcuts import redirect, render

from apps.core.users.access import Actor


def _normalize_roles(allowed_roles):
    if isinstance(allowed_roles, str):
        allowed_roles = [allowed_roles]
    return {getattr(role, 'value', role) for role in allowed_roles}


def _request_actor(request):
    actor = getattr(request, 'actor', None)
    if actor is None:
        actor = Actor.from_user(request.user)
        request.actor = actor
    return actor


def forbidden(request, message=''):
    return render(request, 'users/forbidden.html', {'message': message}, status=403)


def role_required(allowed_roles):
    normalized_roles = _normalize_roles(allowed_roles)

    def decorator(view_func):
        @wraps(view_func)
        def wrapper(request, *args, **kwargs):
            if not request.user.is_authenticated:
                return redirect('login')

            if request.user.role not in normalized_roles:
                return forbidden(request)

            return view_func(request, *args, **kwargs)

        return wrapper

    return decorator


def permission_required(*permission_keys):
    """Allow the view when the actor has full access or any listed permission."""

    def decorator(view_func):
        @wraps(view_func)
        def wrapper(request, *args, **kwargs):
            if not request.user.is_authenticated:
                return redirect('login')

            if not _request_actor(request).can(*permission_keys):
                return forbidden(request, 'You do not have permission to access this page.')

            return view_func(request, *args, **kwargs)

        return wrapper

    return decorator
