from django.contrib import messages
from django.contrib.auth import get_user_model
from django.contrib.auth.decorators import login_required
from django.db import transaction
from django.db.models import Count, Q
from django.shortcuts import redirect, render

from apps.core.users.audit import log_audit_event
from apps.core.users.decorators import role_required
from apps.core.users.permissions import Role

from .forms import SchoolOnboardingForm
from .models import School, SchoolDomain


@login_required
@role_required(Role.SUPER_ADMIN)
def school_list(request):
    schools = School.objects.prefetch_related('domains').annotate(
        total_users=Count('users', distinct=True),
        total_students=Count('users', filter=Q(users__role=Role.STUDENT, users__is_active=True), distinct=True),
    ).order_by('name')
    return render(request, 'schools/school_list.html', {
        'schools': schools,
        'blocked_count': sum(1 for school in schools if school.is_billing_blocked),
    })


@login_required
@role_required(Role.SUPER_ADMIN)
def school_onboard(request):
    if request.method == 'POST':
        form = SchoolOnboardingForm(request.POST)
        if form.is_valid():
            user_model = get_user_model()

            with transaction.atomic():
                school = School.objects.create(
                    name=form.cleaned_data['school_name'],
                    code=form.cleaned_data['school_code'] or None,
                    subdomain=form.cleaned_data['school_subdomain'] or None,
                    address=form.cleaned_data['school_address'],
                    phone=form.cleaned_data['school_phone'],
                    email=form.cleaned_data['school_email'],
                )

                # No stored permissions: the first admin is the primary admin.
                admin_user = user_model.objects.create_user(
                    username=form.cleaned_data['admin_username'],
                    email=form.cleaned_data['admin_email'],
                    password=form.cleaned_data['admin_password'],
                    role=Role.SCHOOL_ADMIN,
                    school=school,
                )

                if form.cleaned_data['school_domain']:
                    SchoolDomain.objects.create(
                        school=school,
                        domain=form.cleaned_data['school_domain'],
                        is_primary=True,
                        is_active=True,
                    )

            log_audit_event(
                request=request,
                action='school.onboarded',
                school=school,
                target=school,
                details=f"School admin created: {admin_user.username}",
            )
            messages.success(request, 'School onboarded successfully.')
            return redirect('school_list')
    else:
        form = SchoolOnboardingForm()

    return render(request, 'schools/school_onboard.html', {'form': form})
