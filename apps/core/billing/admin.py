from django.contrib import admin

from .models import UsagePayment


@admin.register(UsagePayment)
class UsagePaymentAdmin(admin.ModelAdmin):
    list_display = ('reference', 'school', 'student_count', 'amount', 'status', 'paid_at')
    list_filter = ('status', 'school')
    search_fields = ('reference', 'school__name', 'school__code')
