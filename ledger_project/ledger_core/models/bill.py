from django.db import models
from ..managers import TenantManager
from .document import Document, DocumentLine, DocumentPayment
from .vendor import Vendor

# Same lifecycle as invoices, approved state is called "open"
BILL_STATUS_CHOICES = [
    ("draft", "Draft"),
    ("open", "Open"),
    ("partial", "Partially paid"),
    ("paid", "Paid"),
    ("overdue", "Overdue"),
    ("void", "Void"),
]


class Bill(Document):  # Vendor bill (AP side)
    NUMBER_FIELD = "bill_number"
    NUMBER_PREFIX = "BILL"
    APPROVED_STATUS = "open"

    vendor = models.ForeignKey(
        Vendor,
        null=True,
        blank=True,
        # prevent deleting vendor who has a bill
        on_delete=models.PROTECT,
        related_name="bills",
    )
    bill_number = models.CharField(max_length=64)
    status = models.CharField(
        max_length=10, choices=BILL_STATUS_CHOICES, default="draft"
    )

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        indexes = [
            models.Index(fields=["company", "status", "due_date"],
                         name="bill_company_status_due_idx"),
            models.Index(fields=["company", "vendor"], name="bill_company_vendor_idx"),
        ]

        constraints = [
            # Bill numbers are unique within a company
            models.UniqueConstraint(
                fields=["company", "bill_number"], name="uq_bill_company_number"
            ),
            models.CheckConstraint(
                condition=models.Q(amount_paid__gte=0),
                name="bill_non_negative_paid",
            ),
        ]

    def __str__(self):
        return f"Bill {self.bill_number or self.pk}"

    @property
    def counterparty(self):
        return self.vendor


class BillLine(DocumentLine):  # goods/services purchased on the bill
    bill = models.ForeignKey(
        Bill, on_delete=models.CASCADE, related_name="lines")

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        ordering = ("bill", "line_no", "id")
        indexes = [
            models.Index(fields=["company", "bill"], name="bl_company_bill_idx"),
        ]

        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gte=0) &
                models.Q(unit_price__gte=0),
                name="bl_non_negative_amounts",
            ),
        ]

    def __str__(self):
        return f"Bill: {self.bill_id} - Line {self.line_no} - Total: {self.line_total}"

    def parent(self):
        return self.bill if self.bill_id else None


class BillPayment(DocumentPayment):  # vendor payment applied to a bill
    bill = models.ForeignKey(
        Bill, on_delete=models.PROTECT, related_name="payments")

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        indexes = [models.Index(fields=["company", "bill"],
                                name="billpay_company_bill_idx")]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount__gt=0),
                name="billpay_positive_amount",
            ),
        ]

    def __str__(self):
        return f"Payment {self.amount} → Bill {self.bill_id}"
