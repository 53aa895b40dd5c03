import logging
from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task  # register this function as a Celery task
def recompute_account_balances(company_id):
    """Rebuild cached balances of one company; returns how many were corrected."""
    # import lazily to avoid circular imports at module import time
    from .models import Company
    from .services.ledger import recompute_account_balances as recompute

    company = Company.objects.get(pk=company_id)
    corrections = recompute(company)
    if corrections:
        logger.warning("Corrected %s account balances for company %s",
                       len(corrections), company_id)
    return len(corrections)


@shared_task
def recompute_all_balances():
    """Nightly consistency sweep over every company."""
    from .models import Company

    total = 0
    for company_id in Company.objects.values_list("pk", flat=True):
        # Run inline; each company is its own transaction
        total += recompute_account_balances(company_id)
    return total


@shared_task
def mark_overdue_documents(as_of=None):
    """Flag past-due invoices and bills of every company as overdue."""
    from django.utils.dateparse import parse_date
    from .models import Company
    from .services.documents import mark_overdue

    # Celery serializes arguments as JSON, dates travel as ISO strings
    if isinstance(as_of, str):
        as_of = parse_date(as_of)

    changed = 0
    for company in Company.objects.all():
        changed += mark_overdue(company, as_of=as_of)
    return changed
