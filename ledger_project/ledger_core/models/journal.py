import logging
from collections import defaultdict
from decimal import Decimal
from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models, transaction
from django.db.models import F
from django.utils import timezone
from ..amounts import BALANCE_TOLERANCE, ZERO
from ..exceptions import (InsufficientLines, InvalidStateTransition,
                          UnbalancedEntryError)
from ..managers import JournalLineManager, TenantManager
from .account import Account
from .company import Company

logger = logging.getLogger(__name__)

JOURNAL_STATUS = [
    ("draft", "Draft"),  # still editable, may be unbalanced
    ("posted", "Posted"),  # finalized, immutable
    ("archived", "Archived"),  # discarded draft, kept for audit
]

# Where an entry came from (reference_type)
REF_MANUAL = "MANUAL"
REF_INVOICE = "INVOICE"
REF_INVOICE_PAYMENT = "INVOICE_PAYMENT"
REF_INVOICE_REVERSAL = "INVOICE_REVERSAL"
REF_BILL = "BILL"
REF_BILL_PAYMENT = "BILL_PAYMENT"
REF_BILL_REVERSAL = "BILL_REVERSAL"
REF_BANK_TX = "BANK_TX"


def apply_lines_to_balances(lines):
    """
    Add each line's (debit − credit) to its account's current_balance.

    Accounts are locked in primary-key order so two postings touching
    the same accounts can't deadlock, then updated with F() expressions
    so concurrent postings never lose an update.
    Must run inside the posting transaction.
    """
    deltas = defaultdict(lambda: Decimal("0.00"))
    for line in lines:
        deltas[line.account_id] += line.net

    account_ids = sorted(deltas)
    # Row locks; evaluated for the side effect
    list(
        Account.objects.select_for_update()
        .filter(pk__in=account_ids)
        .order_by("pk")
        .values_list("pk", flat=True)
    )
    for account_id in account_ids:
        Account.objects.filter(pk=account_id).update(
            current_balance=F("current_balance") + deltas[account_id]
        )


# ---------- Journal (Header) & JournalLine ----------
class JournalEntry(models.Model):  # Represents one accounting transaction
    # Multi-tenant: every entry belongs to a company
    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    # Per-company sequence, assigned from Company.last_entry_number
    entry_number = models.PositiveBigIntegerField()
    # Business metadata
    date = models.DateField()
    description = models.TextField(blank=True, default="")
    # Free text such as a cheque or payment reference
    reference = models.CharField(max_length=200, blank=True, default="")
    status = models.CharField(
        max_length=10,
        choices=JOURNAL_STATUS,
        default="draft",
    )
    posted_at = models.DateTimeField(null=True, blank=True)
    # Track user who created it
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True, blank=True, on_delete=models.SET_NULL
    )
    # optional polymorphic source info
    # (invoice, bill, payment, bank txn)
    reference_type = models.CharField(
        max_length=32, blank=True, default=REF_MANUAL
    )  # Helps trace back where the JE originated
    reference_id = models.BigIntegerField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        # Speed up listing & filtering
        # (e.g. show all posted entries this month)
        indexes = [
            models.Index(fields=["company", "date", "status"],
                         name="je_company_date_status_idx"),
            models.Index(fields=["company", "reference_type", "reference_id"],
                         name="je_company_reference_idx"),
        ]

        constraints = [
            # Within one company, each entry number is used once
            models.UniqueConstraint(
                fields=["company", "entry_number"], name="uq_je_company_number"
            )
        ]

    def __str__(self):
        return f"JE-{self.entry_number:06d} {self.date} [{self.status}]"

    # Aggregate all debit and credit amounts across entry’s lines
    def compute_totals(self):
        """Return debits, credits sums for lines"""
        aggs = self.lines.aggregate(
            total_debit=models.Sum("debit"),
            total_credit=models.Sum("credit"),
        )
        return (
            aggs["total_debit"] or ZERO,
            aggs["total_credit"] or ZERO,
        )

    # True if double-entry rule holds: total debits = total credits
    def is_balanced(self):
        debit, credit = self.compute_totals()
        return abs(debit - credit) < BALANCE_TOLERANCE

    # Post the entry safely inside a database transaction
    @transaction.atomic
    def post(self, user=None):
        """
        Move a draft entry to posted and apply its lines to account balances.
        """
        # Lock row to prevent concurrent posting of the same draft
        je = JournalEntry.objects.select_for_update().get(pk=self.pk)
        if je.status != "draft":
            raise InvalidStateTransition(
                f"Cannot post a journal entry in status {je.status}")

        lines = list(je.lines.select_related("account").all())

        """ Business validations """
        if len(lines) < 2:  # a single-leg entry cannot balance
            raise InsufficientLines(
                "A journal entry needs at least two lines.")

        # Recompute totals fresh from DB & ignore any stale cached values
        total_debit, total_credit = je.compute_totals()
        if abs(total_debit - total_credit) >= BALANCE_TOLERANCE:
            raise UnbalancedEntryError(
                f"Debits must equal Credits: debits={total_debit}, credits={total_credit}"
            )

        # Enforce tenant consistency
        # every line's account must belong to same company as journal
        if any(line.account.company_id != je.company_id for line in lines):
            raise ValidationError(
                "All journal lines must use accounts of the journal's company."
            )

        apply_lines_to_balances(lines)

        """ Update state """
        je.status = "posted"  # Mark journal as posted
        je.posted_at = timezone.now()  # Timestamp
        if user and not je.created_by_id:
            je.created_by = user
        je.save(update_fields=["status", "posted_at", "created_by"])

        # keep caller's instance in sync
        self.status = je.status
        self.posted_at = je.posted_at
        logger.info(
            "Posted journal entry %s for company %s (%s lines, %s)",
            je.entry_number, je.company_id, len(lines), total_debit,
        )
        return je

    def save(self, *args, **kwargs):
        if self.pk:  # Does this row already exist in DB?
            # Fetch "original" row to update
            orig = JournalEntry.objects.filter(pk=self.pk).first()
            # Check if journal was already posted
            if orig and orig.status == "posted":
                if self.status != "posted":
                    # disallow toggling posted flag
                    raise ValidationError("Cannot unpost a posted journal")
                for f in ("date", "description", "company_id", "entry_number"):
                    if getattr(orig, f) != getattr(self, f):
                        raise ValidationError(
                            "Cannot modify a posted JournalEntry. It is immutable."
                        )

        # If validation passes, continue with normal save
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        if self.pk and JournalEntry.objects.filter(
            pk=self.pk, status="posted"
        ).exists():
            raise ValidationError("Cannot delete a posted journal entry.")
        return super().delete(*args, **kwargs)

    # Control status changes
    def transition_to(self, new_status, user=None):
        allowed = {
            "draft": ["posted", "archived"],
            "posted": [],
            "archived": [],
        }

        # prevent skipping validations
        if new_status not in allowed.get(self.status, []):
            raise InvalidStateTransition(
                f"Cannot go from {self.status} to {new_status}")

        if new_status == "posted":
            # call posting logic (validations, balances)
            return self.post(user=user)
        # just update the status
        self.status = new_status
        self.save(update_fields=["status"])
        return self


class JournalLine(models.Model):  # Stores Lines ( credits / debits )
    """
    Each line belongs to a journal entry and to a GL account.
    Exactly one of debit/credit is non-zero.
    """

    # Belongs to company & a journal entry
    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    journal = models.ForeignKey(
        JournalEntry,
        on_delete=models.CASCADE,
        related_name="lines",
    )
    # Keeps lines in the order they were entered
    line_no = models.PositiveIntegerField(default=1)

    # Must point to one Account (can’t delete account if lines exist → PROTECT)
    account = models.ForeignKey(
        Account, on_delete=models.PROTECT, related_name="journal_lines")

    description = models.CharField(max_length=400, blank=True, default="")

    debit = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00"))
    credit = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00"))

    # Custom manager with posted()/dated_between() helpers for reports
    objects = JournalLineManager()

    class Meta:
        ordering = ("journal", "line_no", "id")
        # For fast queries like “all lines for this account” /
        # “all lines in this JE.”
        indexes = [
            models.Index(fields=["company", "account"], name="jl_company_account_idx"),
            models.Index(fields=["company", "journal"], name="jl_company_journal_idx"),
        ]

        constraints = [
            models.CheckConstraint(
                condition=(
                    models.Q(debit__gte=0) &
                    models.Q(credit__gte=0)
                ),
                name="jl_non_negative_amounts",
            ),
            # no void rows in the ledger
            models.CheckConstraint(
                condition=~(models.Q(debit=0) & models.Q(credit=0)),
                name="jl_debit_or_credit_nonzero",
            ),
            models.CheckConstraint(
                condition=models.Q(debit=0) | models.Q(credit=0),
                name="jl_single_sided",
            ),
        ]

    # Show journal, account, and amounts in debug logs
    def __str__(self):
        return f"{self.journal_id} | {self.account_id} | D:{self.debit} C:{self.credit}"

    @property
    def net(self):
        return self.debit - self.credit

    def clean(self):
        # Ensure no negative values sneak in
        # (redundant with CheckConstraint but useful at app-level)
        if self.debit < 0 or self.credit < 0:
            raise ValidationError("Debit and credit must be >= 0")
        if (self.debit > 0) and (self.credit > 0):
            raise ValidationError(
                "JournalLine should not have both debit and credit > 0"
            )
        if (self.debit == 0) and (self.credit == 0):
            raise ValidationError(
                "JournalLine requires a non-0 amount on either debit or credit"
            )

        # Company consistency
        # Every line must belong to same company as its parent journal
        if self.journal_id and self.company_id != self.journal.company_id:
            raise ValidationError(
                "JournalLine.company must equal JournalEntry.company"
            )
        if self.account_id and self.company_id and (
            self.account.company_id != self.company_id
        ):
            raise ValidationError(
                "JournalLine.account must belong to the same company.")

        # Lines of a posted journal are frozen
        if self.journal_id and JournalEntry.objects.filter(
            pk=self.journal_id, status="posted"
        ).exists():
            if not self.pk:
                raise ValidationError(
                    "Cannot add JournalLine: parent journal is posted."
                )
            orig = JournalLine.objects.get(pk=self.pk)
            changed = (
                orig.debit != self.debit
                or orig.credit != self.credit
                or orig.account_id != self.account_id
            )
            if changed:
                raise ValidationError(
                    "Cannot modify JournalLine: parent JournalEntry is posted."
                )

    def delete(self, *args, **kwargs):
        # Prevent deletion if parent journal is posted
        if self.journal_id and JournalEntry.objects.filter(
            pk=self.journal_id, status="posted"
        ).exists():
            raise ValidationError(
                "Cannot delete JournalLine: parent JournalEntry is posted."
            )
        return super().delete(*args, **kwargs)

    def save(self, *args, **kwargs):
        # If company not set but JE is known, get company_id from JE
        if not self.company_id and self.journal_id:
            self.company_id = self.journal.company_id

        # clean()+field validation always run whenever
        # you save a JournalLine programmatically
        self.full_clean()
        return super().save(*args, **kwargs)
