from django.conf import settings  # To access global project settings
from django.db import models
from ..managers import TenantManager
from .company import Company


# ---------- Audit / Event log ----------
class AuditLog(
    models.Model
):  # Gives accountability and traceability across whole system
    # Associate log entry with a tenant (multi-company setup)
    company = models.ForeignKey(
        Company,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )
    # Which user performed the action
    # (Nullable in case the action was automated
    # (e.g., Celery task, statement import))
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True, blank=True, on_delete=models.SET_NULL
    )
    # Type of event being logged
    action = models.CharField(
        max_length=50
    )  # e.g. post, approve, pay, void, match, import
    # What kind of object was affected
    object_type = models.CharField(
        max_length=100
    )  # (e.g., "Invoice", "JournalEntry", "BankTransaction")
    # The primary key (or identifier) of the object
    object_id = models.CharField(max_length=100)
    # Store details of what changed, in JSON format
    changes = models.JSONField(null=True, blank=True)
    # Timestamp when the event was logged
    created_at = models.DateTimeField(auto_now_add=True)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        # Filter logs quickly
        indexes = [
            models.Index(fields=["company", "created_at"], name="audit_company_created_idx"),
            models.Index(fields=["company", "object_type", "object_id"],
                         name="audit_company_object_idx"),
        ]

    def __str__(self):
        time = self.created_at
        return f"[{time:%Y-%m-%d %H:%M}] {self.user} {self.action} {self.object_type}({self.object_id})"

    def save(self, *args, **kwargs):
        self.full_clean()  # run validations before saving
        return super().save(*args, **kwargs)
