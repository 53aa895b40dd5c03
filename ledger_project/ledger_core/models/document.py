from decimal import Decimal
from django.core.exceptions import ValidationError
from django.db import models
from ..amounts import BALANCE_TOLERANCE, ZERO, quantize_money
from ..exceptions import InvalidStateTransition
from .account import Account
from .company import Company
from .journal import JournalEntry


class Document(models.Model):
    """
    Shared shape of invoices (AR) and bills (AP).

    Workflow:
        draft    = editable, nothing in the ledger
        sent/open = approved, approval entry posted against the contra account
        partial  = some payments recorded
        paid     = fully settled (terminal)
        overdue  = approved, past due date, still outstanding
        void     = cancelled (terminal)
    """

    # Set on concrete classes
    NUMBER_FIELD = None
    NUMBER_PREFIX = None
    APPROVED_STATUS = None

    # Document belongs to one company (multi-tenant)
    company = models.ForeignKey(Company, on_delete=models.CASCADE)

    date = models.DateField()  # issue date
    # payment deadline (defaults from the counterparty's payment terms)
    due_date = models.DateField(null=True, blank=True)
    currency_code = models.CharField(max_length=10, default="USD")

    # Sum of all line totals, always recomputed server-side
    total_amount = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )
    # Cumulative recorded payments
    amount_paid = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )

    # AR (invoice) or AP (bill) account used when the document was approved
    contra_account = models.ForeignKey(
        Account,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="+",
    )
    # Journal entry posted on approval (None while draft)
    approval_entry = models.ForeignKey(
        JournalEntry,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="+",
    )
    approved_at = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True

    @classmethod
    def transitions(cls):
        # Current state vs. allowed next states
        approved = cls.APPROVED_STATUS
        return {
            "draft": [approved, "void"],
            approved: ["partial", "paid", "overdue", "void", "draft"],
            "partial": ["paid", "overdue", "void"],
            "overdue": ["partial", "paid", "void", "draft"],
            "paid": [],  # terminal
            "void": [],  # terminal
        }

    @property
    def number(self):
        return getattr(self, self.NUMBER_FIELD)

    @property
    def outstanding(self):
        return self.total_amount - self.amount_paid

    @property
    def is_settled(self):
        return abs(self.outstanding) < BALANCE_TOLERANCE

    @property
    def counterparty(self):
        raise NotImplementedError

    def recalc_total(self):
        """Recompute total_amount from the stored lines"""
        # guard if no pk: there are no lines yet
        if not self.pk:
            self.total_amount = ZERO
            return self.total_amount
        total = sum((line.line_total for line in self.lines.all()), ZERO)
        self.total_amount = quantize_money(total)
        return self.total_amount

    def can_transition(self, new_status):
        return new_status in self.transitions().get(self.status, [])

    def transition_to(self, new_status):
        # Look up what states are allowed from current self.status
        if not self.can_transition(new_status):
            # If requested new_status isn’t allowed → block it
            raise InvalidStateTransition(
                f"Cannot go from {self.status} to {new_status}")

        # If valid, update self.status and persist with .save()
        self.status = new_status
        self.save()
        return self

    def clean(self):
        # Counterparty must belong to the same company
        party = self.counterparty
        if party is not None and party.company_id != self.company_id:
            raise ValidationError(
                f"{party.__class__.__name__} must belong to the same company.")

        if self.contra_account_id and (
            self.contra_account.company_id != self.company_id
        ):
            raise ValidationError(
                "Contra account must belong to the same company.")

        if self.amount_paid < 0:
            raise ValidationError("Amount paid cannot be negative")

        # Make settled / voided documents immutable in all code paths
        if self.pk:
            orig = type(self).objects.filter(pk=self.pk).first()
            if orig and orig.status in ("paid", "void"):
                changed_fields = [
                    f for f in (self.NUMBER_FIELD, "total_amount", "company_id")
                    if getattr(orig, f) != getattr(self, f)
                ]
                if changed_fields:
                    raise ValidationError(
                        f"Cannot modify {changed_fields} on a {orig.status} document."
                    )

    def save(self, *args, **kwargs):
        self.full_clean()  # run validations before saving
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        # Void a document instead of deleting it once it left draft
        if self.status != "draft":
            raise InvalidStateTransition(
                f"Only draft documents can be deleted (status is {self.status}).")
        return super().delete(*args, **kwargs)


class DocumentLine(models.Model):
    """One priced line; line_total = quantity × unit_price"""

    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    # Keeps lines in the order they were entered
    line_no = models.PositiveIntegerField(default=1)
    description = models.TextField(blank=True, default="")

    # Core pricing logic: quantity × unit_price = line_total
    quantity = models.DecimalField(
        max_digits=14, decimal_places=4, default=Decimal("1")
    )
    unit_price = models.DecimalField(
        max_digits=18, decimal_places=4, default=Decimal("0.00")
    )
    line_total = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )

    # Revenue (invoice) or expense (bill) account for this line
    account = models.ForeignKey(
        Account,
        # You can’t delete an account if lines still point to it
        on_delete=models.PROTECT,
        related_name="+",
    )

    class Meta:
        abstract = True

    def parent(self):
        raise NotImplementedError

    def clean(self):
        if self.quantity is not None and self.quantity < 0:
            raise ValidationError("Quantity must be >= 0")
        if self.unit_price is not None and self.unit_price < 0:
            raise ValidationError("Unit price must be >= 0")

        # Tenant safety
        if self.company_id and self.account_id and (
            self.account.company_id != self.company_id
        ):
            raise ValidationError(
                f"{self.__class__.__name__}.company must match Account.company")
        parent = self.parent()
        if parent is not None and parent.company_id != self.company_id:
            raise ValidationError(
                f"{self.__class__.__name__}.company must match document company")

    def save(self, *args, **kwargs):
        parent = self.parent()
        # copy company_id from the parent document
        if not self.company_id and parent is not None:
            self.company_id = parent.company_id
        # compute line_total always
        self.line_total = quantize_money(
            (self.quantity or Decimal("0")) * (self.unit_price or Decimal("0"))
        )
        self.full_clean()
        return super().save(*args, **kwargs)


class DocumentPayment(models.Model):
    """A cash receipt (invoice) or disbursement (bill) against a document"""

    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    amount = models.DecimalField(max_digits=18, decimal_places=2)
    date = models.DateField()
    # Cash / bank account the money moved through
    payment_account = models.ForeignKey(
        Account, on_delete=models.PROTECT, related_name="+")
    # Posted entry for this payment
    journal_entry = models.ForeignKey(
        JournalEntry, on_delete=models.PROTECT, related_name="+")
    reference = models.CharField(max_length=200, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        abstract = True

    def clean(self):
        # You can’t record a negative or empty payment
        if self.amount is not None and self.amount <= 0:
            raise ValidationError("Payment amount must be positive")
        if self.payment_account_id and (
            self.payment_account.company_id != self.company_id
        ):
            raise ValidationError(
                "Payment account must belong to the same company.")

    def save(self, *args, **kwargs):
        self.full_clean()  # run validations before saving
        return super().save(*args, **kwargs)
