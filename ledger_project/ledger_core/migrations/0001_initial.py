"""
Initial schema for the ledger core.

Creates companies, the chart of accounts, journal entries and lines,
customers/vendors, invoices and bills with lines and payments,
bank transactions and the audit log.
"""
from decimal import Decimal

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models

MONEY = {"decimal_places": 2, "max_digits": 18}

INV_STATUS_CHOICES = [
    ("draft", "Draft"),
    ("sent", "Sent"),
    ("partial", "Partially paid"),
    ("paid", "Paid"),
    ("overdue", "Overdue"),
    ("void", "Void"),
]

BILL_STATUS_CHOICES = [
    ("draft", "Draft"),
    ("open", "Open"),
    ("partial", "Partially paid"),
    ("paid", "Paid"),
    ("overdue", "Overdue"),
    ("void", "Void"),
]


def _id():
    return ("id", models.BigAutoField(
        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"))


def _company():
    return ("company", models.ForeignKey(
        on_delete=django.db.models.deletion.CASCADE, to="ledger_core.company"))


def _document_fields():
    return [
        _id(),
        ("date", models.DateField()),
        ("due_date", models.DateField(blank=True, null=True)),
        ("currency_code", models.CharField(default="USD", max_length=10)),
        ("total_amount", models.DecimalField(default=Decimal("0.00"), **MONEY)),
        ("amount_paid", models.DecimalField(default=Decimal("0.00"), **MONEY)),
        ("approved_at", models.DateTimeField(blank=True, null=True)),
        ("notes", models.TextField(blank=True, default="")),
        ("created_at", models.DateTimeField(auto_now_add=True)),
        ("updated_at", models.DateTimeField(auto_now=True)),
        _company(),
        ("contra_account", models.ForeignKey(
            blank=True, null=True,
            on_delete=django.db.models.deletion.PROTECT,
            related_name="+", to="ledger_core.account")),
        ("approval_entry", models.ForeignKey(
            blank=True, null=True,
            on_delete=django.db.models.deletion.PROTECT,
            related_name="+", to="ledger_core.journalentry")),
    ]


def _line_fields():
    return [
        _id(),
        ("line_no", models.PositiveIntegerField(default=1)),
        ("description", models.TextField(blank=True, default="")),
        ("quantity", models.DecimalField(
            decimal_places=4, default=Decimal("1"), max_digits=14)),
        ("unit_price", models.DecimalField(
            decimal_places=4, default=Decimal("0.00"), max_digits=18)),
        ("line_total", models.DecimalField(default=Decimal("0.00"), **MONEY)),
        _company(),
        ("account", models.ForeignKey(
            on_delete=django.db.models.deletion.PROTECT,
            related_name="+", to="ledger_core.account")),
    ]


def _payment_fields():
    return [
        _id(),
        ("amount", models.DecimalField(**MONEY)),
        ("date", models.DateField()),
        ("reference", models.CharField(blank=True, default="", max_length=200)),
        ("created_at", models.DateTimeField(auto_now_add=True)),
        _company(),
        ("payment_account", models.ForeignKey(
            on_delete=django.db.models.deletion.PROTECT,
            related_name="+", to="ledger_core.account")),
        ("journal_entry", models.ForeignKey(
            on_delete=django.db.models.deletion.PROTECT,
            related_name="+", to="ledger_core.journalentry")),
    ]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Company",
            fields=[
                _id(),
                ("name", models.CharField(max_length=200)),
                ("slug", models.SlugField(max_length=80, unique=True)),
                ("currency_code", models.CharField(default="USD", max_length=10)),
                ("last_entry_number", models.PositiveBigIntegerField(default=0)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "verbose_name_plural": "companies",
            },
        ),
        migrations.CreateModel(
            name="Account",
            fields=[
                _id(),
                ("code", models.CharField(max_length=32)),
                ("name", models.CharField(max_length=200)),
                ("ac_type", models.CharField(
                    choices=[
                        ("asset", "Asset"),
                        ("liability", "Liability"),
                        ("equity", "Equity"),
                        ("revenue", "Revenue"),
                        ("expense", "Expense"),
                    ],
                    max_length=10,
                )),
                ("is_system", models.BooleanField(default=False)),
                ("is_active", models.BooleanField(default=True)),
                ("current_balance", models.DecimalField(
                    default=Decimal("0.00"), **MONEY)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                _company(),
                ("parent", models.ForeignKey(
                    blank=True, null=True,
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name="children", to="ledger_core.account")),
            ],
            options={
                "ordering": ("company", "code"),
                "indexes": [
                    models.Index(fields=["company", "ac_type"],
                                 name="acct_company_type_idx"),
                    models.Index(fields=["company", "code"],
                                 name="acct_company_code_idx"),
                    models.Index(fields=["company", "parent"],
                                 name="acct_company_parent_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("company", "code"), name="uq_company_account_code"),
                ],
            },
        ),
        migrations.CreateModel(
            name="JournalEntry",
            fields=[
                _id(),
                ("entry_number", models.PositiveBigIntegerField()),
                ("date", models.DateField()),
                ("description", models.TextField(blank=True, default="")),
                ("reference", models.CharField(blank=True, default="", max_length=200)),
                ("status", models.CharField(
                    choices=[
                        ("draft", "Draft"),
                        ("posted", "Posted"),
                        ("archived", "Archived"),
                    ],
                    default="draft",
                    max_length=10,
                )),
                ("posted_at", models.DateTimeField(blank=True, null=True)),
                ("reference_type", models.CharField(
                    blank=True, default="MANUAL", max_length=32)),
                ("reference_id", models.BigIntegerField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                _company(),
                ("created_by", models.ForeignKey(
                    blank=True, null=True,
                    on_delete=django.db.models.deletion.SET_NULL,
                    to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "indexes": [
                    models.Index(fields=["company", "date", "status"],
                                 name="je_company_date_status_idx"),
                    models.Index(fields=["company", "reference_type", "reference_id"],
                                 name="je_company_reference_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("company", "entry_number"), name="uq_je_company_number"),
                ],
            },
        ),
        migrations.CreateModel(
            name="JournalLine",
            fields=[
                _id(),
                ("line_no", models.PositiveIntegerField(default=1)),
                ("description", models.CharField(blank=True, default="", max_length=400)),
                ("debit", models.DecimalField(default=Decimal("0.00"), **MONEY)),
                ("credit", models.DecimalField(default=Decimal("0.00"), **MONEY)),
                _company(),
                ("journal", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="lines", to="ledger_core.journalentry")),
                ("account", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name="journal_lines", to="ledger_core.account")),
            ],
            options={
                "ordering": ("journal", "line_no", "id"),
                "indexes": [
                    models.Index(fields=["company", "account"],
                                 name="jl_company_account_idx"),
                    models.Index(fields=["company", "journal"],
                                 name="jl_company_journal_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("debit__gte", 0), ("credit__gte", 0)),
                        name="jl_non_negative_amounts"),
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(("debit", 0), ("credit", 0)), _negated=True),
                        name="jl_debit_or_credit_nonzero"),
                    models.CheckConstraint(
                        condition=models.Q(("debit", 0), ("credit", 0), _connector="OR"),
                        name="jl_single_sided"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Customer",
            fields=[
                _id(),
                ("name", models.CharField(max_length=200)),
                ("email", models.EmailField(blank=True, max_length=254, null=True)),
                ("payment_terms_days", models.IntegerField(default=30)),
                _company(),
                ("default_ar_account", models.ForeignKey(
                    blank=True, null=True,
                    help_text="Default AR account used for this customer",
                    on_delete=django.db.models.deletion.SET_NULL,
                    related_name="customers_default_ar", to="ledger_core.account")),
            ],
            options={
                "indexes": [
                    models.Index(fields=["company", "name"], name="cust_company_name_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("company", "name"), name="uq_company_customer_name"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Vendor",
            fields=[
                _id(),
                ("name", models.CharField(max_length=200)),
                ("email", models.EmailField(blank=True, max_length=254, null=True)),
                ("payment_terms_days", models.IntegerField(default=30)),
                _company(),
                ("default_ap_account", models.ForeignKey(
                    blank=True, null=True,
                    help_text="Default AP account used for this vendor",
                    on_delete=django.db.models.deletion.SET_NULL,
                    related_name="vendors_default_ap", to="ledger_core.account")),
            ],
            options={
                "indexes": [
                    models.Index(fields=["company", "name"], name="vendor_company_name_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("company", "name"), name="uq_company_vendor_name"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Invoice",
            fields=_document_fields() + [
                ("customer", models.ForeignKey(
                    blank=True, null=True,
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name="invoices", to="ledger_core.customer")),
                ("invoice_number", models.CharField(max_length=64)),
                ("status", models.CharField(
                    choices=INV_STATUS_CHOICES, default="draft", max_length=10)),
            ],
            options={
                "indexes": [
                    models.Index(fields=["company", "status", "due_date"],
                                 name="inv_company_status_due_idx"),
                    models.Index(fields=["company", "customer"],
                                 name="inv_company_customer_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("company", "invoice_number"),
                        name="uq_invoice_company_number"),
                    models.CheckConstraint(
                        condition=models.Q(("amount_paid__gte", 0)),
                        name="inv_non_negative_paid"),
                ],
            },
        ),
        migrations.CreateModel(
            name="InvoiceLine",
            fields=_line_fields() + [
                ("invoice", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="lines", to="ledger_core.invoice")),
            ],
            options={
                "ordering": ("invoice", "line_no", "id"),
                "indexes": [
                    models.Index(fields=["company", "invoice"],
                                 name="invl_company_invoice_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("quantity__gte", 0), ("unit_price__gte", 0)),
                        name="invl_non_negative_amounts"),
                ],
            },
        ),
        migrations.CreateModel(
            name="InvoicePayment",
            fields=_payment_fields() + [
                ("invoice", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name="payments", to="ledger_core.invoice")),
            ],
            options={
                "indexes": [
                    models.Index(fields=["company", "invoice"],
                                 name="invpay_company_invoice_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount__gt", 0)),
                        name="invpay_positive_amount"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Bill",
            fields=_document_fields() + [
                ("vendor", models.ForeignKey(
                    blank=True, null=True,
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name="bills", to="ledger_core.vendor")),
                ("bill_number", models.CharField(max_length=64)),
                ("status", models.CharField(
                    choices=BILL_STATUS_CHOICES, default="draft", max_length=10)),
            ],
            options={
                "indexes": [
                    models.Index(fields=["company", "status", "due_date"],
                                 name="bill_company_status_due_idx"),
                    models.Index(fields=["company", "vendor"],
                                 name="bill_company_vendor_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("company", "bill_number"), name="uq_bill_company_number"),
                    models.CheckConstraint(
                        condition=models.Q(("amount_paid__gte", 0)),
                        name="bill_non_negative_paid"),
                ],
            },
        ),
        migrations.CreateModel(
            name="BillLine",
            fields=_line_fields() + [
                ("bill", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="lines", to="ledger_core.bill")),
            ],
            options={
                "ordering": ("bill", "line_no", "id"),
                "indexes": [
                    models.Index(fields=["company", "bill"], name="bl_company_bill_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("quantity__gte", 0), ("unit_price__gte", 0)),
                        name="bl_non_negative_amounts"),
                ],
            },
        ),
        migrations.CreateModel(
            name="BillPayment",
            fields=_payment_fields() + [
                ("bill", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name="payments", to="ledger_core.bill")),
            ],
            options={
                "indexes": [
                    models.Index(fields=["company", "bill"],
                                 name="billpay_company_bill_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount__gt", 0)),
                        name="billpay_positive_amount"),
                ],
            },
        ),
        migrations.CreateModel(
            name="BankTransaction",
            fields=[
                _id(),
                ("date", models.DateField()),
                ("amount", models.DecimalField(**MONEY)),
                ("description", models.TextField(blank=True, default="")),
                ("external_id", models.CharField(blank=True, max_length=200, null=True)),
                ("status", models.CharField(
                    choices=[
                        ("unmatched", "Unmatched"),
                        ("matched", "Matched"),
                        ("excluded", "Excluded"),
                    ],
                    default="unmatched",
                    max_length=20,
                )),
                ("matched_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                _company(),
                ("account", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name="bank_transactions", to="ledger_core.account")),
                ("matched_journal_entry", models.ForeignKey(
                    blank=True, null=True,
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name="bank_transactions", to="ledger_core.journalentry")),
            ],
            options={
                "indexes": [
                    models.Index(fields=["company", "account", "status"],
                                 name="bt_company_account_status_idx"),
                    models.Index(fields=["company", "date"], name="bt_company_date_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("external_id__isnull", False)),
                        fields=("account", "external_id"),
                        name="uq_bt_account_external_id"),
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(("status", "matched"),
                                     ("matched_journal_entry__isnull", False)),
                            models.Q(
                                models.Q(("status", "matched"), _negated=True),
                                ("matched_journal_entry__isnull", True)),
                            _connector="OR"),
                        name="bt_matched_has_entry"),
                ],
            },
        ),
        migrations.CreateModel(
            name="AuditLog",
            fields=[
                _id(),
                ("action", models.CharField(max_length=50)),
                ("object_type", models.CharField(max_length=100)),
                ("object_id", models.CharField(max_length=100)),
                ("changes", models.JSONField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("company", models.ForeignKey(
                    blank=True, null=True,
                    on_delete=django.db.models.deletion.SET_NULL,
                    to="ledger_core.company")),
                ("user", models.ForeignKey(
                    blank=True, null=True,
                    on_delete=django.db.models.deletion.SET_NULL,
                    to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "indexes": [
                    models.Index(fields=["company", "created_at"],
                                 name="audit_company_created_idx"),
                    models.Index(fields=["company", "object_type", "object_id"],
                                 name="audit_company_object_idx"),
                ],
            },
        ),
    ]
