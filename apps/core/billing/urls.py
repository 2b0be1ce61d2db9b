from django.urls import path

from .views import (
    billing_locked,
    billing_quote,
    billing_status,
    payment_webhook,
    toggle_billing_status,
)

urlpatterns = [
    path('', billing_status, name='billing_status'),
    path('quote/', billing_quote, name='billing_quote'),
    path('locked/', billing_locked, name='billing_locked'),
    path('webhook/', payment_webhook, name='payment_webhook'),
    path('schools/<int:school_id>/toggle/', toggle_billing_status, name='toggle_billing_status'),
]
