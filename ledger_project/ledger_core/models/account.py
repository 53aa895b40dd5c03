from decimal import Decimal
from django.core.exceptions import ValidationError
from django.db import models
from ..managers import TenantManager
from .company import Company

# Choice Lists
AC_TYPES = [
    # Used in Account model to classify general ledger accounts
    ("asset", "Asset"),
    ("liability", "Liability"),
    ("equity", "Equity"),
    ("revenue", "Revenue"),
    ("expense", "Expense"),
]

# Define whether the account normally increases
# on the debit side or credit side
DEBIT_NORMAL_TYPES = ("asset", "expense")
CREDIT_NORMAL_TYPES = ("liability", "equity", "revenue")

BALANCE_SHEET_TYPES = ("asset", "liability", "equity")
PROFIT_LOSS_TYPES = ("revenue", "expense")


class Account(models.Model):
    """
    Actual ledger account entry in Chart of Accounts.
    - code should be unique per company
    - ac_type: determines reporting -BS vs P&L
    - current_balance: cached Σ(debit − credit) of posted lines,
      written only by the posting service
    """

    company = models.ForeignKey(  # Each account belongs to one company
        Company,  # All reports must filter by company_id to prevent data leaks
        on_delete=models.CASCADE,
    )
    # Every account has a code
    # which lets you sort/group accounts consistently in reports.
    code = models.CharField(
        max_length=32
    )
    name = models.CharField(
        max_length=200
    )  # Human-readable name → "Cash on Hand", "Accounts Payable".

    # Classify account into one of the 5 basic accounting types
    ac_type = models.CharField(
        max_length=10,
        choices=AC_TYPES,
        # This tells system whether the account
        # goes on the Balance Sheet or P&L
    )

    # Optional hierarchy for subtotal rollups
    # (e.g. 1000 Cash, 1001 Petty Cash, 1002 Bank Account)
    parent = models.ForeignKey(
        "self",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="children",
        # you can’t delete a parent if children exist
    )

    # Seed accounts the app relies on (AR, AP, bank ...) can't be deleted
    is_system = models.BooleanField(default=False)

    # “soft deactivate” accounts (hide in UI, stop new postings)
    # without deleting history
    is_active = models.BooleanField(
        default=True
    )

    # Uniform storage sign: debit − credit
    current_balance = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )

    created_at = models.DateTimeField(
        auto_now_add=True
    )  # Track when the account was created.

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        indexes = [  # Optimize queries
            # For reports grouped by ac_type
            # (Trial Balance, P&L, Balance Sheet)
            models.Index(
                fields=["company", "ac_type"], name="acct_company_type_idx"
            ),
            # For looking up accounts by code
            models.Index(fields=["company", "code"],
                         name="acct_company_code_idx"),
            models.Index(
                fields=["company", "parent"], name="acct_company_parent_idx"
            ),  # Sub-accounts by parent account
        ]

        """ Each company defines its own chart of accounts.
               Codes repeat across companies but must be unique within one. """
        constraints = [
            models.UniqueConstraint(
                fields=["company", "code"], name="uq_company_account_code"
            )
        ]
        ordering = ("company", "code")

    def __str__(self):
        # Example: "1000 – Cash on Hand".
        return f"{self.code} – {self.name}"

    @property
    def normal_balance(self):
        # Assets/Expenses → Debit, Liabilities/Equity/Revenue → Credit.
        return "debit" if self.ac_type in DEBIT_NORMAL_TYPES else "credit"

    @property
    def natural_balance(self):
        """current_balance signed so the account's normal side is positive"""
        if self.normal_balance == "debit":
            return self.current_balance
        return -self.current_balance

    def clean(self):
        """Enforce company consistency (multi-tenancy)"""
        # Check if parent account belongs to same company
        if self.parent_id and self.parent.company_id != self.company_id:
            raise ValidationError(
                "Parent & child accounts must belong to the same company"
            )
        if self.parent_id and self.pk and self.parent_id == self.pk:
            raise ValidationError("An account cannot be its own parent")

    def save(self, *args, **kwargs):
        """Enforce business immutability
        (can’t disable accounts used in journal lines)"""
        if not self.pk:
            # If no primary key → this is a new object →
            # just save (no need for checks)
            return super().save(*args, **kwargs)
        # Fetch the previous version of account from DB
        old = Account.objects.filter(pk=self.pk).first()

        # If account was active before, but now being set to inactive
        if old and old.is_active and not self.is_active:
            from .journal import JournalLine

            # check usage (referenced in transactions)
            used = JournalLine.objects.filter(account=self).exists()
            if used:  # if referenced prevent from deactivating account
                raise ValidationError(
                    "Cannot disable an account that is used in journal lines."
                )
        return super().save(*args, **kwargs)
