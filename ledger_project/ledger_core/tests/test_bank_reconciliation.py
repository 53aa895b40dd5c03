import datetime

from django.core.exceptions import ValidationError
from django.db import transaction
from django.test import TestCase, override_settings

from ..exceptions import (AlreadyMatched, InvalidStateTransition,
                          JournalEntryNotFound)
from ..models import BankTransaction, Company
from ..models.journal import REF_BANK_TX
from ..services import reconciliation
from ..services.accounts import seed_chart_of_accounts
from ..services.ledger import post_journal_entry
from .helpers import D, LedgerFixtureMixin


def day(n):
    return datetime.date(2024, 3, n)


class ReconciliationFixtureMixin(LedgerFixtureMixin):

    def bank_tx(self, amount, date=day(10), description="Card payment", **extra):
        return BankTransaction.objects.create(
            company=self.company,
            account=self.bank,
            date=date,
            amount=D(amount),
            description=description,
            **extra,
        )

    def withdrawal_entry(self, amount, date):
        """Posted entry that takes `amount` out of the bank account."""
        return self.post(self.expense, self.bank, D(amount), date=date)


class FindCandidatesTests(ReconciliationFixtureMixin, TestCase):

    def test_entry_near_the_bank_date_with_same_net_is_found(self):
        bt = self.bank_tx("-45.00", date=day(10))
        je = self.withdrawal_entry("45.00", day(12))

        candidates = reconciliation.find_candidates(self.company, bt.pk)
        self.assertEqual(candidates[0], je)

    def test_window_amount_and_status_filters(self):
        bt = self.bank_tx("-45.00", date=day(10))
        inside_early = self.withdrawal_entry("45.00", day(3))    # 7 days before
        inside_late = self.withdrawal_entry("45.00", day(17))    # 7 days after
        self.withdrawal_entry("45.00", day(2))                   # 8 days before
        self.withdrawal_entry("45.00", day(18))                  # 8 days after
        self.withdrawal_entry("45.01", day(10))                  # wrong amount
        self.post(self.bank, self.revenue, D("45.00"), date=day(10))  # deposit, wrong sign
        self.post(self.expense, self.bank, D("45.00"), date=day(10), status="draft")

        candidates = reconciliation.find_candidates(self.company, bt.pk)
        self.assertEqual(candidates, [inside_late, inside_early])

    def test_net_effect_on_bank_account_is_what_counts(self):
        bt = self.bank_tx("-45.00")
        # One entry whose two bank lines (−50, +5) net to −45
        je = post_journal_entry(self.company, day(11), "Split", [
            {"account_id": self.expense.pk, "debit": "45.00"},
            {"account_id": self.bank.pk, "credit": "50.00"},
            {"account_id": self.bank.pk, "debit": "5.00"},
        ])
        self.assertEqual(reconciliation.find_candidates(self.company, bt.pk), [je])

    def test_newest_first_then_higher_entry_number(self):
        bt = self.bank_tx("-45.00", date=day(10))
        older = self.withdrawal_entry("45.00", day(8))
        first_same_day = self.withdrawal_entry("45.00", day(12))
        second_same_day = self.withdrawal_entry("45.00", day(12))

        candidates = reconciliation.find_candidates(self.company, bt.pk)
        self.assertEqual(candidates, [second_same_day, first_same_day, older])

    def test_entries_matched_elsewhere_are_excluded(self):
        bt_one = self.bank_tx("-45.00", date=day(10))
        bt_two = self.bank_tx("-45.00", date=day(11))
        je = self.withdrawal_entry("45.00", day(10))

        reconciliation.match(self.company, bt_one.pk, je.pk)

        self.assertEqual(reconciliation.find_candidates(self.company, bt_two.pk), [])

    @override_settings(LEDGER_CANDIDATE_WINDOW_DAYS=2)
    def test_window_comes_from_settings(self):
        bt = self.bank_tx("-45.00", date=day(10))
        self.withdrawal_entry("45.00", day(13))
        self.assertEqual(reconciliation.find_candidates(self.company, bt.pk), [])
        self.assertEqual(
            len(reconciliation.find_candidates(self.company, bt.pk, window_days=3)), 1)


class MatchTests(ReconciliationFixtureMixin, TestCase):

    def test_match_links_entry_and_is_not_repeatable(self):
        bt = self.bank_tx("-45.00")
        je = self.withdrawal_entry("45.00", day(12))

        bt = reconciliation.match(self.company, bt.pk, je.pk)
        self.assertEqual(bt.status, "matched")
        self.assertEqual(bt.matched_journal_entry, je)
        self.assertIsNotNone(bt.matched_at)

        # A second attempt fails and changes nothing
        other = self.withdrawal_entry("45.00", day(11))
        with self.assertRaises(AlreadyMatched):
            reconciliation.match(self.company, bt.pk, other.pk)
        bt.refresh_from_db()
        self.assertEqual(bt.matched_journal_entry, je)

    def test_manual_match_ignores_amounts(self):
        bt = self.bank_tx("-45.00")
        je = self.withdrawal_entry("12.00", day(1))
        bt = reconciliation.match(self.company, bt.pk, je.pk)
        self.assertEqual(bt.status, "matched")

    def test_draft_entry_cannot_be_matched(self):
        bt = self.bank_tx("-45.00")
        draft = self.post(self.expense, self.bank, D("45.00"), date=day(10), status="draft")
        with self.assertRaises(InvalidStateTransition):
            reconciliation.match(self.company, bt.pk, draft.pk)
        bt.refresh_from_db()
        self.assertEqual(bt.status, "unmatched")

    def test_other_company_entry_is_not_found(self):
        bt = self.bank_tx("-45.00")
        other = Company.objects.create(name="Other Co")
        accounts = seed_chart_of_accounts(other)
        foreign = self.post(accounts["5000"], accounts["1010"], D("45.00"), company=other)
        with self.assertRaises(JournalEntryNotFound):
            reconciliation.match(self.company, bt.pk, foreign.pk)

    def test_excluded_transaction_cannot_be_matched(self):
        bt = self.bank_tx("-45.00")
        je = self.withdrawal_entry("45.00", day(10))
        reconciliation.exclude(self.company, bt.pk)
        with self.assertRaises(AlreadyMatched):
            reconciliation.match(self.company, bt.pk, je.pk)

    def test_matched_status_requires_an_entry(self):
        bt = self.bank_tx("-45.00")
        bt.status = "matched"
        with self.assertRaises(ValidationError):
            bt.save()


class CreateAndMatchTests(ReconciliationFixtureMixin, TestCase):

    def test_bank_fee_withdrawal(self):
        bt = self.bank_tx("-12.50", description="Monthly fee")

        bt = reconciliation.create_and_match(self.company, bt.pk, self.bank_fees.pk)

        self.assertEqual(bt.status, "matched")
        je = bt.matched_journal_entry
        self.assertEqual(je.status, "posted")
        self.assertEqual(je.reference_type, REF_BANK_TX)
        self.assertEqual(je.reference_id, bt.pk)
        self.assertEqual(je.date, bt.date)
        self.assertEqual(je.description, "Monthly fee")

        lines = [(line.account_id, line.debit, line.credit) for line in je.lines.all()]
        self.assertEqual(lines, [
            (self.bank_fees.pk, D("12.50"), D("0.00")),
            (self.bank.pk, D("0.00"), D("12.50")),
        ])

        self.refresh(self.bank, self.bank_fees)
        self.assertEqual(self.bank.current_balance, D("-12.50"))
        self.assertEqual(self.bank_fees.current_balance, D("12.50"))

    def test_deposit_credits_the_category(self):
        bt = self.bank_tx("200.00", description="Interest")
        bt = reconciliation.create_and_match(
            self.company, bt.pk, self.revenue.pk, description="Bank interest")

        je = bt.matched_journal_entry
        lines = [(line.account_id, line.debit, line.credit) for line in je.lines.all()]
        self.assertEqual(lines, [
            (self.bank.pk, D("200.00"), D("0.00")),
            (self.revenue.pk, D("0.00"), D("200.00")),
        ])
        self.assertEqual(je.description, "Bank interest")

    def test_already_matched_posts_nothing(self):
        bt = self.bank_tx("-12.50")
        reconciliation.create_and_match(self.company, bt.pk, self.bank_fees.pk)
        with self.assertRaises(AlreadyMatched):
            reconciliation.create_and_match(self.company, bt.pk, self.bank_fees.pk)

        self.refresh(self.bank_fees)
        self.assertEqual(self.bank_fees.current_balance, D("12.50"))


class BankTransactionStatusTests(ReconciliationFixtureMixin, TestCase):

    def test_exclude_and_include(self):
        bt = self.bank_tx("-5.00")
        bt = reconciliation.exclude(self.company, bt.pk)
        self.assertEqual(bt.status, "excluded")
        bt = reconciliation.include(self.company, bt.pk)
        self.assertEqual(bt.status, "unmatched")

        # unmatched → unmatched is not a transition
        with self.assertRaises(InvalidStateTransition):
            reconciliation.include(self.company, bt.pk)

    def test_matched_is_terminal(self):
        bt = self.bank_tx("-12.50")
        reconciliation.create_and_match(self.company, bt.pk, self.bank_fees.pk)

        with self.assertRaises(InvalidStateTransition):
            reconciliation.exclude(self.company, bt.pk)
        with self.assertRaisesMessage(InvalidStateTransition, "Cannot delete matched transaction"):
            reconciliation.delete_bank_transaction(self.company, bt.pk)
        with self.assertRaises(InvalidStateTransition):
            with transaction.atomic():
                BankTransaction.objects.filter(pk=bt.pk).delete()
        self.assertTrue(BankTransaction.objects.filter(pk=bt.pk).exists())

    def test_unmatched_can_be_deleted(self):
        bt = self.bank_tx("-5.00")
        reconciliation.delete_bank_transaction(self.company, bt.pk)
        self.assertFalse(BankTransaction.objects.filter(pk=bt.pk).exists())
