from django.core.exceptions import ValidationError
from django.db.models.signals import post_delete, post_save, pre_delete
from django.dispatch import receiver

from .exceptions import AccountInUseError, InvalidStateTransition
from .models import (Account, BankTransaction, Bill, BillLine, Invoice,
                     InvoiceLine, JournalEntry, JournalLine)

""" Block deletion of posted journal entries.
    Covers queryset .delete() calls that bypass JournalEntry.delete(). """


# pre_delete signal auto-fires just before Django deletes a model instance
@receiver(pre_delete, sender=JournalEntry)
def prevent_delete_posted_journal(sender, instance, **kwargs):
    if instance.status == "posted":
        raise ValidationError("Cannot delete a posted journal entry.")


"""Block deletion if account has ever been used in a journal line."""


@receiver(pre_delete, sender=Account)
def prevent_delete_account_with_journal_lines(sender, instance, **kwargs):
    if JournalLine.objects.filter(account=instance).exists():
        raise AccountInUseError("Cannot delete account used in journal lines.")


"""Only draft invoices and bills can be removed."""


@receiver(pre_delete, sender=Invoice)
@receiver(pre_delete, sender=Bill)
def prevent_delete_approved_document(sender, instance, **kwargs):
    if instance.status != "draft":
        raise InvalidStateTransition(
            f"Cannot delete a {sender.__name__.lower()} that is not in draft status")


"""Matched bank transactions are part of the reconciled record."""


@receiver(pre_delete, sender=BankTransaction)
def prevent_delete_matched_bank_transaction(sender, instance, **kwargs):
    if instance.status == "matched":
        raise InvalidStateTransition("Cannot delete matched transaction")


"""
    Recalculate document totals when a line is added/updated/removed.
    Use update via model methods to keep validation/consistency.
"""


@receiver((post_save, post_delete), sender=InvoiceLine)
@receiver((post_save, post_delete), sender=BillLine)
def document_line_changed(sender, instance, **kwargs):
    parent = instance.parent()
    doc = type(parent).objects.filter(pk=parent.pk).first() if parent else None
    # parent already gone (cascade delete)
    if doc is None:
        return
    doc.recalc_total()
    # save totals only, to reduce churn
    doc.save(update_fields=["total_amount", "updated_at"])
