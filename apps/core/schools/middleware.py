from apps.core.schools.services import resolve_school_by_host
from apps.core.users.access import Actor


class CurrentSchoolMiddleware:
    """
    Resolves tenant and actor context for every request.
    School priority:
    1) authenticated user school
    2) host/domain mapping
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        request.current_school = None

        user = getattr(request, 'user', None)
        if user and user.is_authenticated and getattr(user, 'school_id', None):
            request.current_school = user.school
        else:
            request.current_school = resolve_school_by_host(request.get_host())

        request.actor = Actor.from_user(user)

        return self.get_response(request)
