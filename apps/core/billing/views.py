import json
import logging

from django.contrib import messages
from django.contrib.auth.decorators import login_required
from django.core.exceptions import ValidationError
from django.http import JsonResponse
from django.shortcuts import get_object_or_404, redirect, render
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from apps.core.schools.models import School
from apps.core.users.audit import log_audit_event
from apps.core.users.decorators import permission_required, role_required
from apps.core.users.permissions import Permission, Role

from .models import UsagePayment
from .services import (
    get_billing_snapshot,
    handle_payment_event,
    set_billing_status,
    usage_payment_quote,
    verify_webhook_signature,
)


logger = logging.getLogger(__name__)

FINANCE_PERMISSIONS = (
    Permission.VIEW_FEES,
    Permission.MANAGE_FEES,
    Permission.VIEW_WALLET,
    Permission.MANAGE_WALLET,
)


@login_required
@role_required(Role.SCHOOL_ADMIN)
@permission_required(*FINANCE_PERMISSIONS)
def billing_status(request):
    school = request.user.school
    snapshot = get_billing_snapshot(school=school)

    if request.GET.get('format') == 'json':
        return JsonResponse({'school': school.code, 'billing': snapshot.as_dict()})

    payments = UsagePayment.objects.filter(school=school)[:10]
    return render(request, 'billing/status.html', {
        'school': school,
        'billing': snapshot,
        'payments': payments,
    })


@login_required
@role_required(Role.SCHOOL_ADMIN)
@permission_required(Permission.MANAGE_FEES, Permission.MANAGE_WALLET)
def billing_quote(request):
    quote = usage_payment_quote(school=request.user.school)
    if quote['student_count'] == 0:
        return JsonResponse({'error': 'No unpaid students to bill.'}, status=400)
    quote['amount'] = str(quote['amount'])
    return JsonResponse(quote)


@login_required
def billing_locked(request):
    school = getattr(request.user, 'school', None)
    if school is None or not school.is_billing_blocked:
        return redirect('role_redirect')
    return render(request, 'billing/locked.html', {'school': school})


@csrf_exempt
@require_POST
def payment_webhook(request):
    signature = request.headers.get('x-squad-signature', '')
    if not signature:
        return JsonResponse({'error': 'No signature provided'}, status=400)
    if not verify_webhook_signature(request.body, signature):
        logger.warning('Rejected payment webhook with invalid signature')
        return JsonResponse({'error': 'Invalid signature'}, status=401)

    try:
        event = json.loads(request.body)
    except ValueError:
        return JsonResponse({'error': 'Invalid payload'}, status=400)

    try:
        payment = handle_payment_event(event)
    except ValidationError as exc:
        logger.error('Payment webhook rejected: %s', '; '.join(exc.messages))
        return JsonResponse({'error': '; '.join(exc.messages)}, status=400)

    if payment is None:
        return JsonResponse({'status': 'ignored'})

    log_audit_event(
        request=None,
        action='billing.usage_payment',
        school=payment.school,
        target=payment,
        details=f"Seats={payment.student_count} Amount={payment.amount}",
    )
    return JsonResponse({'status': 'success', 'reference': payment.reference})


@login_required
@role_required(Role.SUPER_ADMIN)
@require_POST
def toggle_billing_status(request, school_id):
    school = get_object_or_404(School, id=school_id)
    new_status = School.BILLING_ACTIVE if school.is_billing_blocked else School.BILLING_BLOCKED

    try:
        set_billing_status(school=school, status=new_status)
    except ValidationError as exc:
        messages.error(request, '; '.join(exc.messages))
        return redirect('school_list')

    log_audit_event(
        request=request,
        action='billing.status_changed',
        school=school,
        target=school,
        details=f"Status={new_status}",
    )
    messages.success(request, f'{school.name} billing status set to {new_status}.')
    return redirect('school_list')
