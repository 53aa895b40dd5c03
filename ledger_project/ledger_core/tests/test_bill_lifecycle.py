import datetime

from django.core.exceptions import ValidationError
from django.db import transaction
from django.test import TestCase
from django.utils import timezone

from ..exceptions import (CounterpartyNotFound, InvalidStateTransition,
                          OverpaymentError)
from ..models import Bill, BillPayment, JournalEntry, Vendor
from ..models.journal import REF_BILL, REF_BILL_PAYMENT, REF_BILL_REVERSAL
from ..services import documents
from .helpers import MARCH_1, D, LedgerFixtureMixin


class BillLifecycleTests(LedgerFixtureMixin, TestCase):

    def setUp(self):
        super().setUp()
        self.vendor = Vendor.objects.create(
            company=self.company,
            name="Initech Supplies",
            payment_terms_days=30,
            default_ap_account=self.ap,
        )

    def make_bill(self, *prices, **extra):
        data = {
            "vendor_id": self.vendor.pk,
            "date": MARCH_1,
            "lines": [
                {"account_id": self.expense.pk, "unit_price": price}
                for price in prices
            ],
        }
        data.update(extra)
        return documents.save_draft("bill", self.company, data)

    def test_draft_bill_numbering_and_due_date(self):
        bill = self.make_bill("80.00", "20.00")
        self.assertEqual(bill.status, "draft")
        self.assertEqual(bill.bill_number, f"BILL-{timezone.localdate().year}-0001")
        self.assertEqual(bill.total_amount, D("100.00"))
        self.assertEqual(bill.due_date, datetime.date(2024, 3, 31))

    def test_explicit_due_date_is_kept(self):
        bill = self.make_bill("1.00", due_date="2024-03-05")
        self.assertEqual(bill.due_date, datetime.date(2024, 3, 5))

    def test_bad_date_is_a_validation_error(self):
        with self.assertRaises(ValidationError):
            self.make_bill("1.00", date="2024-02-30")

    def test_unknown_vendor_is_not_found(self):
        with self.assertRaises(CounterpartyNotFound):
            self.make_bill("1.00", vendor_id=999999)

    def test_approve_posts_expense_against_payable(self):
        bill = self.make_bill("80.00", "20.00")
        bill = documents.approve("bill", self.company, bill.pk)

        # Bills open (not "sent") once approved
        self.assertEqual(bill.status, "open")
        je = bill.approval_entry
        self.assertEqual(je.reference_type, REF_BILL)

        lines = [(line.account_id, line.debit, line.credit) for line in je.lines.all()]
        self.assertEqual(lines, [
            (self.ap.pk, D("0.00"), D("100.00")),
            (self.expense.pk, D("80.00"), D("0.00")),
            (self.expense.pk, D("20.00"), D("0.00")),
        ])

        self.refresh(self.ap, self.expense)
        self.assertEqual(self.ap.current_balance, D("-100.00"))
        self.assertEqual(self.expense.current_balance, D("100.00"))

    def test_payment_clears_payable_from_bank(self):
        bill = documents.approve("bill", self.company, self.make_bill("100.00").pk)

        bill = documents.record_payment("bill", self.company, bill.pk,
                                        self.bank.pk, "60.00")
        self.assertEqual(bill.status, "partial")

        bill = documents.record_payment("bill", self.company, bill.pk,
                                        self.bank.pk, "40.00")
        self.assertEqual(bill.status, "paid")

        entry = BillPayment.objects.filter(bill=bill).first().journal_entry
        self.assertEqual(entry.reference_type, REF_BILL_PAYMENT)
        lines = [(line.account_id, line.debit, line.credit) for line in entry.lines.all()]
        self.assertEqual(lines, [
            (self.ap.pk, D("60.00"), D("0.00")),
            (self.bank.pk, D("0.00"), D("60.00")),
        ])

        self.refresh(self.ap, self.bank)
        self.assertEqual(self.ap.current_balance, D("0.00"))
        self.assertEqual(self.bank.current_balance, D("-100.00"))

    def test_overpayment_is_rejected(self):
        bill = documents.approve("bill", self.company, self.make_bill("10.00").pk)
        with self.assertRaises(OverpaymentError):
            documents.record_payment("bill", self.company, bill.pk, self.bank.pk, "11.00")

    def test_reopen_and_void(self):
        bill = documents.approve("bill", self.company, self.make_bill("30.00").pk)
        bill = documents.reopen("bill", self.company, bill.pk)
        self.assertEqual(bill.status, "draft")

        bill = documents.approve("bill", self.company, bill.pk)
        bill = documents.void("bill", self.company, bill.pk)
        self.assertEqual(bill.status, "void")

        # two approvals, two reversals
        self.assertEqual(
            JournalEntry.objects.filter(company=self.company,
                                        reference_type=REF_BILL_REVERSAL).count(),
            2,
        )
        self.refresh(self.ap, self.expense)
        self.assertEqual(self.ap.current_balance, D("0.00"))
        self.assertEqual(self.expense.current_balance, D("0.00"))

        with self.assertRaises(InvalidStateTransition):
            documents.reopen("bill", self.company, bill.pk)

    def test_draft_to_paid_is_not_a_transition(self):
        bill = self.make_bill("10.00")
        with self.assertRaises(InvalidStateTransition):
            bill.transition_to("paid")
        bill.refresh_from_db()
        self.assertEqual(bill.status, "draft")

    def test_only_draft_bills_can_be_deleted(self):
        bill = documents.approve("bill", self.company, self.make_bill("10.00").pk)
        # model-level guard as well as the service; a refused delete
        # rolls back its own atomic block only
        with self.assertRaises(InvalidStateTransition):
            with transaction.atomic():
                bill.delete()
        with self.assertRaises(InvalidStateTransition):
            with transaction.atomic():
                Bill.objects.filter(pk=bill.pk).delete()
        self.assertTrue(Bill.objects.filter(pk=bill.pk).exists())
