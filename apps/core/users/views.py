from django.contrib import messages
from django.contrib.auth import get_user_model
from django.contrib.auth.decorators import login_required
from django.shortcuts import get_object_or_404, redirect, render

from apps.core.billing.decorators import billing_active_required
from apps.core.billing.services import get_billing_snapshot
from apps.core.users.audit import log_audit_event
from apps.core.users.decorators import permission_required, role_required
from apps.core.users.forms import AdminPermissionsForm
from apps.core.users.permissions import PERMISSION_GROUPS, Permission, Role


SCHOOL_ROLES = (Role.SCHOOL_ADMIN, Role.TEACHER, Role.STUDENT, Role.PARENT)


@login_required
def role_redirect(request):

    role = request.user.role

    if role == Role.SUPER_ADMIN:
        return redirect('school_list')

    elif role in SCHOOL_ROLES:
        return redirect('dashboard')

    else:
        return redirect('/login/')


@login_required
@role_required(SCHOOL_ROLES)
def dashboard(request):
    school = request.user.school
    actor = request.actor
    capabilities = actor.capabilities()

    user_model = get_user_model()
    members = user_model.objects.filter(school=school, is_active=True)

    stat_cards = []
    if capabilities['students']:
        stat_cards.append({'title': 'Students', 'value': members.filter(role=Role.STUDENT).count()})
    if capabilities['teachers']:
        stat_cards.append({'title': 'Teachers', 'value': members.filter(role=Role.TEACHER).count()})
    if actor.can(Permission.VIEW_PARENTS, Permission.MANAGE_PARENTS):
        stat_cards.append({'title': 'Parents', 'value': members.filter(role=Role.PARENT).count()})

    billing = None
    if capabilities['finance']:
        billing = get_billing_snapshot(school=school)
        stat_cards.append({'title': 'Paid Seats', 'value': billing.paid_students})

    return render(request, 'users/dashboard.html', {
        'school': school,
        'stat_cards': stat_cards,
        'billing': billing,
        'capabilities': capabilities,
    })


@login_required
@role_required(Role.SCHOOL_ADMIN)
@permission_required(Permission.MANAGE_ADMINS)
def admin_list(request):
    admins = get_user_model().objects.filter(
        school=request.user.school,
        role=Role.SCHOOL_ADMIN,
    ).order_by('username')
    rows = [
        {
            'user': admin_user,
            'unrestricted': admin_user.granted_permissions is None,
            'granted': sorted(key.label for key in admin_user.granted_permissions or ()),
        }
        for admin_user in admins
    ]
    return render(request, 'users/admin_list.html', {'rows': rows})


@login_required
@role_required(Role.SCHOOL_ADMIN)
@permission_required(Permission.MANAGE_ADMINS)
@billing_active_required
def admin_permissions(request, user_id):
    admin_user = get_object_or_404(
        get_user_model(),
        id=user_id,
        school=request.user.school,
        role=Role.SCHOOL_ADMIN,
    )

    if request.method == 'POST':
        form = AdminPermissionsForm(request.POST)
        if form.is_valid():
            granted = form.granted_permissions()
            if admin_user.pk == request.user.pk and granted is not None and Permission.MANAGE_ADMINS not in granted:
                messages.error(request, 'You cannot remove your own admin management permission.')
                return redirect('admin_permissions', user_id=admin_user.id)

            admin_user.set_permissions(granted)
            admin_user.save(update_fields=['permissions'])
            log_audit_event(
                request=request,
                action='user.permissions_updated',
                target=admin_user,
                details='unrestricted' if granted is None else ','.join(sorted(key.value for key in granted)),
            )
            messages.success(request, f'Permissions updated for {admin_user.username}.')
            return redirect('admin_list')
    else:
        form = AdminPermissionsForm.for_user(admin_user)

    return render(request, 'users/admin_permissions.html', {
        'form': form,
        'admin_user': admin_user,
        'permission_groups': PERMISSION_GROUPS,
    })
