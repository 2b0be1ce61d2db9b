def tenant_context(request):
    actor = getattr(request, 'actor', None)
    return {
        'current_school': getattr(request, 'current_school', None),
        'actor': actor,
        'capabilities': actor.capabilities() if actor is not None else {},
    }
