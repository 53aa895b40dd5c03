from django.core.exceptions import ValidationError
from django.db import models
from ..exceptions import InvalidStateTransition
from ..managers import TenantManager
from .account import Account
from .company import Company
from .journal import JournalEntry

BT_STATUS_CHOICES = [
    ("unmatched", "Unmatched"),
    ("matched", "Matched"),  # linked to a posted journal entry, terminal
    ("excluded", "Excluded"),  # ignored for reconciliation
]


# ---------- Banking ----------
class BankTransaction(
    models.Model
):  # Represents single inflow/outflow on a bank statement
    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    # The bank's ledger account
    # prevent Account deletion if transactions exist
    account = models.ForeignKey(
        Account, on_delete=models.PROTECT, related_name="bank_transactions")
    date = models.DateField()  # when it cleared
    # amount: positive = inflow (deposit), negative = outflow (withdrawal)
    amount = models.DecimalField(max_digits=18, decimal_places=2)
    description = models.TextField(blank=True, default="")
    # Bank's own transaction id, used to skip re-imports
    external_id = models.CharField(max_length=200, null=True, blank=True)
    status = models.CharField(
        max_length=20, choices=BT_STATUS_CHOICES, default="unmatched"
    )
    matched_journal_entry = models.ForeignKey(
        JournalEntry,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="bank_transactions",
    )
    matched_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        # Optimizes queries for reconciliation
        # (find all txns for a bank account or in a status)
        indexes = [
            models.Index(fields=["company", "account", "status"],
                         name="bt_company_account_status_idx"),
            models.Index(fields=["company", "date"], name="bt_company_date_idx"),
        ]

        constraints = [
            # Within one bank account, each external id is imported once
            models.UniqueConstraint(
                fields=["account", "external_id"],
                condition=models.Q(external_id__isnull=False),
                name="uq_bt_account_external_id",
            ),
            # matched ⇔ has a matched journal entry
            models.CheckConstraint(
                condition=(
                    models.Q(status="matched",
                             matched_journal_entry__isnull=False)
                    | (~models.Q(status="matched")
                       & models.Q(matched_journal_entry__isnull=True))
                ),
                name="bt_matched_has_entry",
            ),
        ]

    def clean(self):  # auto-runs when you call full_clean() before saving
        # Tenancy check
        # Ensure bank account chosen belongs to the same company
        if self.account_id and self.account.company_id != self.company_id:
            raise ValidationError(
                "Bank account must belong to the same company.")

        entry = self.matched_journal_entry
        if entry is not None:
            if entry.company_id != self.company_id:
                raise ValidationError(
                    "Matched journal entry must belong to the same company.")
            if entry.status != "posted":
                raise ValidationError(
                    "Only posted journal entries can be matched.")

    def save(self, *args, **kwargs):
        self.full_clean()  # run validations before saving
        return super().save(*args, **kwargs)

    # Show something human-readable in debug logs
    def __str__(self):
        return f"{self.account_id} - {self.date} - {self.amount} ({self.status})"

    @property
    def is_deposit(self):
        return self.amount > 0

    def transition_to(self, new_status):
        # Current state vs. allowed next states
        allowed = {
            "unmatched": ["matched", "excluded"],
            "excluded": ["unmatched"],
            "matched": [],  # "matched" → (no further transitions)
        }
        # Look up what states are allowed from current self.status
        if new_status not in allowed.get(self.status, []):
            # If requested new_status isn’t allowed → block it
            raise InvalidStateTransition(
                f"Cannot go from {self.status} to {new_status}")

        # If valid, update self.status and persist with .save()
        self.status = new_status
        self.save()
        return self
