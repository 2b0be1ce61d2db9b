from django.db import models

from apps.core.schools.models import School


class UsagePayment(models.Model):
    STATUS_PENDING = 'pending'
    STATUS_SUCCESS = 'success'
    STATUS_FAILED = 'failed'

    STATUS_CHOICES = (
        (STATUS_PENDING, 'Pending'),
        (STATUS_SUCCESS, 'Success'),
        (STATUS_FAILED, 'Failed'),
    )

    school = models.ForeignKey(
        School,
        on_delete=models.CASCADE,
        related_name='usage_payments',
    )
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    student_count = models.PositiveIntegerField()
    reference = models.CharField(max_length=100, unique=True)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=STATUS_PENDING)
    paid_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['school', '-created_at'], name='usagepayment_school_idx'),
            models.Index(fields=['status'], name='usagepayment_status_idx'),
        ]

    def __str__(self):
        return f"{self.reference} - {self.school_id} ({self.student_count} seats)"
