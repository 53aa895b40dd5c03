from typing import Optional
from ..models import AuditLog, Company


def log_action(
    *,
    action: str,
    instance,
    user=None,
    company: Optional[Company] = None,
    changes: dict | None = None,
):
    """
    Central audit logger.
    Writes inside the caller's transaction, so a rolled back
    operation leaves no audit row behind.
    """

    if not company:
        company = getattr(instance, "company", None)

    # Anonymous request users are not real rows
    if user is not None and not getattr(user, "pk", None):
        user = None

    return AuditLog.objects.create(
        company=company,
        user=user,
        action=action,
        object_type=instance.__class__.__name__,
        object_id=str(instance.pk),
        changes=changes,
    )
