from django.db import models
from ..managers import TenantManager
from .customer import Customer
from .document import Document, DocumentLine, DocumentPayment

INV_STATUS_CHOICES = [
    ("draft", "Draft"),
    ("sent", "Sent"),
    ("partial", "Partially paid"),
    ("paid", "Paid"),
    ("overdue", "Overdue"),
    ("void", "Void"),
]


class Invoice(Document):  # Represents a customer invoice (AR)
    NUMBER_FIELD = "invoice_number"
    NUMBER_PREFIX = "INV"
    APPROVED_STATUS = "sent"

    # Optionally linked to a Customer
    customer = models.ForeignKey(
        Customer,
        null=True,
        blank=True,
        # prevent deleting customer who has an invoice
        on_delete=models.PROTECT,
        related_name="invoices",
    )

    # human-readable (e.g. "INV-2025-0001")
    invoice_number = models.CharField(max_length=64)

    status = models.CharField(
        max_length=10, choices=INV_STATUS_CHOICES, default="draft"
    )

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        # Optimize for fast lookups by invoice number or customer
        indexes = [
            models.Index(fields=["company", "status", "due_date"],
                         name="inv_company_status_due_idx"),
            models.Index(fields=["company", "customer"], name="inv_company_customer_idx"),
        ]

        constraints = [
            # Within one company, each invoice number must be unique
            # Across companies, duplicates are allowed
            models.UniqueConstraint(
                fields=["company", "invoice_number"],
                name="uq_invoice_company_number"
            ),
            models.CheckConstraint(
                condition=models.Q(amount_paid__gte=0),
                name="inv_non_negative_paid",
            ),
        ]

    def __str__(self):
        # If no invoice number, fall back to database ID
        return f"Inv {self.invoice_number or self.pk}"

    @property
    def counterparty(self):
        return self.customer


class InvoiceLine(DocumentLine):  # product/service sold on the invoice
    invoice = models.ForeignKey(
        Invoice, on_delete=models.CASCADE, related_name="lines")

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        ordering = ("invoice", "line_no", "id")
        # Speed up queries like “all lines for this invoice.”
        indexes = [
            models.Index(fields=["company", "invoice"], name="invl_company_invoice_idx"),
        ]

        # Ensure quantity & unit_price are never negative
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gte=0) &
                models.Q(unit_price__gte=0),
                name="invl_non_negative_amounts",
            ),
        ]

    def __str__(self):
        return f"Invoice: {self.invoice_id} - Line {self.line_no} - Total: {self.line_total}"

    def parent(self):
        return self.invoice if self.invoice_id else None


class InvoicePayment(DocumentPayment):  # customer receipt applied to an invoice
    invoice = models.ForeignKey(
        Invoice, on_delete=models.PROTECT, related_name="payments")

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        indexes = [models.Index(fields=["company", "invoice"],
                                name="invpay_company_invoice_idx")]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount__gt=0),
                name="invpay_positive_amount",
            ),
        ]

    def __str__(self):
        return f"Payment {self.amount} → Inv {self.invoice_id}"
