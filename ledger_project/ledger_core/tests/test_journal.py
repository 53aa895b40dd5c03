from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import F, Sum
from django.test import TestCase

from ..exceptions import (AccountNotFound, CrossOrganizationAccountError,
                          InsufficientLines, InvalidJournalLine,
                          InvalidStateTransition, UnbalancedEntryError)
from ..models import Account, AuditLog, Company, JournalEntry, JournalLine
from ..services.accounts import seed_chart_of_accounts
from ..services.ledger import (archive_draft_entry, delete_draft_entry,
                               post_draft_entry, post_journal_entry,
                               recompute_account_balances)
from .helpers import MARCH_1, D, LedgerFixtureMixin


class PostJournalEntryTests(LedgerFixtureMixin, TestCase):

    def test_balanced_entry_posts_and_moves_balances(self):
        je = self.post(self.cash, self.revenue, D("100.00"))

        # Entry is posted, numbered and carries both lines
        self.assertEqual(je.status, "posted")
        self.assertEqual(je.entry_number, 1)
        self.assertIsNotNone(je.posted_at)
        self.assertEqual(je.lines.count(), 2)

        # Uniform debit − credit delta on both accounts
        self.refresh(self.cash, self.revenue)
        self.assertEqual(self.cash.current_balance, D("100.00"))
        self.assertEqual(self.revenue.current_balance, D("-100.00"))

    def test_unbalanced_entry_is_rejected_and_leaves_no_trace(self):
        with self.assertRaisesMessage(UnbalancedEntryError, "Debits must equal Credits"):
            post_journal_entry(self.company, MARCH_1, "Bad", [
                {"account_id": self.cash.pk, "debit": "100"},
                {"account_id": self.revenue.pk, "credit": "90"},
            ])

        # Nothing written: no entry, no lines, balances untouched
        self.assertFalse(JournalEntry.objects.for_company(self.company).exists())
        self.assertFalse(JournalLine.objects.for_company(self.company).exists())
        self.refresh(self.cash, self.revenue)
        self.assertEqual(self.cash.current_balance, D("0.00"))
        self.assertEqual(self.revenue.current_balance, D("0.00"))

    def test_rejected_entry_does_not_consume_a_number(self):
        self.post(self.cash, self.revenue, D("10.00"))
        with self.assertRaises(UnbalancedEntryError):
            post_journal_entry(self.company, MARCH_1, "Bad", [
                {"account_id": self.cash.pk, "debit": "5"},
                {"account_id": self.revenue.pk, "credit": "4"},
            ])
        je = self.post(self.cash, self.revenue, D("10.00"))
        self.assertEqual(je.entry_number, 2)

        self.company.refresh_from_db()
        self.assertEqual(self.company.last_entry_number, 2)

    def test_entry_numbers_are_per_company(self):
        other = Company.objects.create(name="Other Co")
        other_accounts = seed_chart_of_accounts(other)

        self.post(self.cash, self.revenue, D("1.00"))
        self.post(self.cash, self.revenue, D("1.00"))
        je = self.post(other_accounts["1000"], other_accounts["4000"], D("1.00"),
                       company=other)

        # Each company has its own sequence
        self.assertEqual(je.entry_number, 1)

    def test_single_line_is_rejected(self):
        with self.assertRaises(InsufficientLines):
            post_journal_entry(self.company, MARCH_1, "One leg", [
                {"account_id": self.cash.pk, "debit": "100"},
            ])

    def test_zero_negative_and_two_sided_lines_are_rejected(self):
        bad_line_sets = [
            # zero-value line
            [{"account_id": self.cash.pk, "debit": "0", "credit": "0"},
             {"account_id": self.revenue.pk, "credit": "0"}],
            # negative amount
            [{"account_id": self.cash.pk, "debit": "-10"},
             {"account_id": self.revenue.pk, "credit": "-10"}],
            # both sides on one line
            [{"account_id": self.cash.pk, "debit": "10", "credit": "10"},
             {"account_id": self.revenue.pk, "credit": "0", "debit": "0"}],
            # not a number
            [{"account_id": self.cash.pk, "debit": "ten"},
             {"account_id": self.revenue.pk, "credit": "10"}],
            # NaN and infinities, as text or as floats from a JSON body
            [{"account_id": self.cash.pk, "debit": "NaN"},
             {"account_id": self.revenue.pk, "credit": "10"}],
            [{"account_id": self.cash.pk, "debit": float("nan")},
             {"account_id": self.revenue.pk, "credit": "10"}],
            [{"account_id": self.cash.pk, "debit": "10"},
             {"account_id": self.revenue.pk, "credit": "Infinity"}],
        ]
        for lines in bad_line_sets:
            with self.subTest(lines=lines):
                with self.assertRaises(InvalidJournalLine):
                    post_journal_entry(self.company, MARCH_1, "Bad", lines)
        self.assertFalse(JournalEntry.objects.for_company(self.company).exists())

    def test_unknown_account_is_rejected(self):
        with self.assertRaises(AccountNotFound):
            post_journal_entry(self.company, MARCH_1, "Ghost", [
                {"account_id": 999999, "debit": "10"},
                {"account_id": self.revenue.pk, "credit": "10"},
            ])

    def test_other_company_account_is_rejected_and_logged(self):
        other = Company.objects.create(name="Other Co")
        foreign_cash = seed_chart_of_accounts(other)["1000"]

        # A cross-tenant reference is logged as suspicious
        with self.assertLogs("ledger_core.services.ledger", level="WARNING") as logs:
            with self.assertRaises(CrossOrganizationAccountError):
                post_journal_entry(self.company, MARCH_1, "Foreign account", [
                    {"account_id": foreign_cash.pk, "debit": "10"},
                    {"account_id": self.revenue.pk, "credit": "10"},
                ])
        self.assertIn("Cross-company account", logs.output[0])

        foreign_cash.refresh_from_db()
        self.assertEqual(foreign_cash.current_balance, D("0.00"))

    def test_inactive_account_is_rejected(self):
        # Never used, so it may be deactivated
        dormant = Account.objects.create(
            company=self.company, code="1999", name="Dormant", ac_type="asset")
        dormant.is_active = False
        dormant.save()

        with self.assertRaises(InvalidJournalLine):
            post_journal_entry(self.company, MARCH_1, "Dormant", [
                {"account_id": dormant.pk, "debit": "10"},
                {"account_id": self.revenue.pk, "credit": "10"},
            ])

    def test_amounts_are_quantized_to_cents(self):
        je = post_journal_entry(self.company, MARCH_1, "Rounding", [
            {"account_id": self.cash.pk, "debit": 10.005},
            {"account_id": self.revenue.pk, "credit": "10.01"},
        ])
        debits = [line.debit for line in je.lines.all() if line.debit]
        self.assertEqual(debits, [D("10.01")])

    def test_posting_writes_an_audit_row(self):
        je = self.post(self.cash, self.revenue, D("25.00"))
        log = AuditLog.objects.get(object_type="JournalEntry", object_id=str(je.pk))
        self.assertEqual(log.action, "post")
        self.assertEqual(log.company, self.company)
        self.assertEqual(len(log.changes["lines"]), 2)


class PostedEntryImmutabilityTests(LedgerFixtureMixin, TestCase):

    def setUp(self):
        super().setUp()
        self.je = self.post(self.cash, self.revenue, D("50.00"))

    def test_cannot_edit_header(self):
        self.je.description = "Changed"
        with self.assertRaises(ValidationError):
            self.je.save()

    def test_cannot_unpost(self):
        self.je.status = "draft"
        with self.assertRaises(ValidationError):
            self.je.save()

    def test_cannot_delete_entry_or_lines(self):
        with self.assertRaises(ValidationError):
            with transaction.atomic():
                self.je.delete()
        # queryset delete goes through the pre_delete guard, which fails
        # inside the collector's transaction; keep it in its own block
        with self.assertRaises(ValidationError):
            with transaction.atomic():
                JournalEntry.objects.filter(pk=self.je.pk).delete()
        line = self.je.lines.first()
        with self.assertRaises(ValidationError):
            with transaction.atomic():
                line.delete()
        self.assertTrue(JournalEntry.objects.filter(pk=self.je.pk).exists())

    def test_cannot_edit_or_add_lines(self):
        line = self.je.lines.first()
        line.debit = D("60.00")
        with self.assertRaises(ValidationError):
            line.save()

        with self.assertRaises(ValidationError):
            JournalLine.objects.create(
                journal=self.je, account=self.cash, debit=D("1.00"))

    def test_posted_entry_cannot_be_archived_or_deleted_via_services(self):
        with self.assertRaises(InvalidStateTransition):
            archive_draft_entry(self.company, self.je.pk)
        with self.assertRaises(InvalidStateTransition):
            delete_draft_entry(self.company, self.je.pk)
        with self.assertRaises(InvalidStateTransition):
            post_draft_entry(self.company, self.je.pk)


class DraftEntryTests(LedgerFixtureMixin, TestCase):

    def test_draft_does_not_touch_balances_until_posted(self):
        je = self.post(self.cash, self.revenue, D("75.00"), status="draft")
        self.assertEqual(je.status, "draft")
        self.refresh(self.cash)
        self.assertEqual(self.cash.current_balance, D("0.00"))

        post_draft_entry(self.company, je.pk)

        je.refresh_from_db()
        self.refresh(self.cash, self.revenue)
        self.assertEqual(je.status, "posted")
        self.assertEqual(self.cash.current_balance, D("75.00"))
        self.assertEqual(self.revenue.current_balance, D("-75.00"))

    def test_unbalanced_draft_is_kept_but_cannot_be_posted(self):
        je = post_journal_entry(self.company, MARCH_1, "WIP", [
            {"account_id": self.cash.pk, "debit": "100"},
            {"account_id": self.revenue.pk, "credit": "80"},
        ], status="draft")

        with self.assertRaises(UnbalancedEntryError):
            post_draft_entry(self.company, je.pk)
        je.refresh_from_db()
        self.assertEqual(je.status, "draft")

    def test_draft_can_be_archived_or_deleted(self):
        keep = self.post(self.cash, self.revenue, D("1.00"), status="draft")
        drop = self.post(self.cash, self.revenue, D("2.00"), status="draft")

        archive_draft_entry(self.company, keep.pk)
        delete_draft_entry(self.company, drop.pk)

        keep.refresh_from_db()
        self.assertEqual(keep.status, "archived")
        self.assertFalse(JournalEntry.objects.filter(pk=drop.pk).exists())

        # archived is terminal
        with self.assertRaises(InvalidStateTransition):
            post_draft_entry(self.company, keep.pk)

    def test_new_entries_cannot_start_archived(self):
        with self.assertRaises(InvalidStateTransition):
            self.post(self.cash, self.revenue, D("1.00"), status="archived")


class BalanceConsistencyTests(LedgerFixtureMixin, TestCase):

    def test_cached_balance_equals_sum_of_posted_lines(self):
        self.post(self.cash, self.revenue, D("100.00"))
        self.post(self.expense, self.cash, D("30.25"))
        self.post(self.bank, self.cash, D("20.00"))
        self.post(self.cash, self.revenue, D("999.00"), status="draft")

        for account in Account.objects.for_company(self.company):
            ledger = (
                JournalLine.objects.for_company(self.company)
                .posted()
                .filter(account=account)
                .aggregate(net=Sum(F("debit") - F("credit")))["net"]
            ) or D("0.00")
            with self.subTest(account=account.code):
                self.assertEqual(account.current_balance, ledger)

        self.refresh(self.cash)
        self.assertEqual(self.cash.current_balance, D("49.75"))

    def test_recompute_fixes_and_reports_drift(self):
        self.post(self.cash, self.revenue, D("100.00"))
        # Corrupt the cache behind the ledger's back
        Account.objects.filter(pk=self.cash.pk).update(current_balance=D("5.00"))

        with self.assertLogs("ledger_core.services.ledger", level="WARNING"):
            corrections = recompute_account_balances(self.company)

        self.assertEqual(len(corrections), 1)
        self.assertEqual(corrections[0]["code"], self.cash.code)
        self.assertEqual(corrections[0]["cached"], D("5.00"))
        self.assertEqual(corrections[0]["ledger"], D("100.00"))

        self.refresh(self.cash)
        self.assertEqual(self.cash.current_balance, D("100.00"))

        # A second run finds nothing to fix
        self.assertEqual(recompute_account_balances(self.company), [])
