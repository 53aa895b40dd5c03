from django.core.exceptions import ValidationError
from django.db import models
from ..managers import TenantManager
from .account import Account
from .company import Company


class Vendor(models.Model):  # Mirrors Customer but for Accounts Payable (AP)

    # Multi-tenant
    company = models.ForeignKey(Company, on_delete=models.CASCADE)

    # Same fields as Customer, but now for suppliers/vendors
    name = models.CharField(max_length=200)
    email = models.EmailField(null=True, blank=True)
    payment_terms_days = models.IntegerField(default=30)

    # FK to the Accounts Payable account in Chart of Accounts
    """ If set: approving a Bill for this vendor without an explicit
    contra account credits this AP account. """
    default_ap_account = models.ForeignKey(
        Account,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="vendors_default_ap",
        help_text="Default AP account used for this vendor",
    )

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        indexes = [
            models.Index(fields=["company", "name"], name="vendor_company_name_idx"),
        ]

        # Vendor names must be unique per company
        constraints = [
            models.UniqueConstraint(
                fields=["company", "name"], name="uq_company_vendor_name"
            ),
        ]

    def __str__(self):
        return self.name

    def clean(self):
        # Ensure AP account belongs to the same company
        dap = self.default_ap_account
        if dap and dap.company_id != self.company_id:
            raise ValidationError(
                "Default AP account and vendor must belong to same company"
            )

        # Payables are liabilities
        if dap and dap.ac_type != "liability":
            raise ValidationError(
                "Default AP account must be a liability account")
        return super().clean()

    def save(self, *args, **kwargs):
        self.full_clean()  # run validations before saving
        return super().save(*args, **kwargs)
