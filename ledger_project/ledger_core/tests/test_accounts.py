from io import StringIO

from django.core.exceptions import ValidationError
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase

from ..exceptions import AccountInUseError, AccountNotFound, SystemAccountError
from ..models import Account, Company
from ..services.accounts import (SEED_ACCOUNTS, create_account, delete_account,
                                 next_account_code, seed_chart_of_accounts)
from .helpers import D, LedgerFixtureMixin


class ChartOfAccountsTests(LedgerFixtureMixin, TestCase):

    def test_seed_creates_system_accounts_once(self):
        # setUp already seeded; running again must not duplicate anything
        seed_chart_of_accounts(self.company)
        accounts = Account.objects.for_company(self.company)
        self.assertEqual(accounts.count(), len(SEED_ACCOUNTS))
        self.assertTrue(all(a.is_system for a in accounts))

    def test_next_code_continues_within_type_range(self):
        # Seeded assets are 1000, 1010 and 1100
        self.assertEqual(next_account_code(self.company, "asset"), "1101")
        self.assertEqual(next_account_code(self.company, "liability"), "2001")

        other = Company.objects.create(name="Empty Co")
        self.assertEqual(next_account_code(other, "expense"), "5000")

        with self.assertRaises(ValueError):
            next_account_code(self.company, "income")

    def test_create_account_assigns_code_and_checks_parent(self):
        petty = create_account(self.company, "Petty Cash", "asset",
                               parent_id=self.cash.pk)
        self.assertEqual(petty.code, "1101")
        self.assertEqual(petty.parent, self.cash)
        self.assertFalse(petty.is_system)

        # Parent must be in the caller's company
        other = Company.objects.create(name="Other Co")
        foreign = seed_chart_of_accounts(other)["1000"]
        with self.assertRaises(AccountNotFound):
            create_account(self.company, "Sneaky", "asset", parent_id=foreign.pk)

    def test_duplicate_code_is_rejected(self):
        with self.assertRaises(ValidationError):
            create_account(self.company, "Another cash", "asset", code="1000")

    def test_unknown_type_is_rejected(self):
        with self.assertRaises(ValidationError):
            create_account(self.company, "Odd", "income")

    def test_delete_rules(self):
        # System accounts stay
        with self.assertRaisesMessage(SystemAccountError, "Cannot delete system accounts"):
            delete_account(self.company, self.cash.pk)

        # Accounts with ledger history stay
        used = create_account(self.company, "Used", "expense")
        self.post(used, self.cash, D("10.00"))
        with self.assertRaises(AccountInUseError):
            delete_account(self.company, used.pk)

        # A parent with children is still referenced
        parent = create_account(self.company, "Parent", "expense")
        create_account(self.company, "Child", "expense", parent_id=parent.pk)
        with self.assertRaises(AccountInUseError):
            delete_account(self.company, parent.pk)

        # Unused, non-system accounts can go
        spare = create_account(self.company, "Spare", "expense")
        delete_account(self.company, spare.pk)
        self.assertFalse(Account.objects.filter(pk=spare.pk).exists())

    def test_used_account_cannot_be_deactivated(self):
        self.post(self.cash, self.revenue, D("1.00"))
        self.cash.refresh_from_db()
        self.cash.is_active = False
        with self.assertRaises(ValidationError):
            self.cash.save()

    def test_normal_balance_is_derived_from_type(self):
        self.assertEqual(self.cash.normal_balance, "debit")
        self.assertEqual(self.expense.normal_balance, "debit")
        self.assertEqual(self.revenue.normal_balance, "credit")
        self.assertEqual(self.ap.normal_balance, "credit")

        self.post(self.cash, self.revenue, D("40.00"))
        self.refresh(self.revenue)
        # stored as debit − credit, shown credit-positive
        self.assertEqual(self.revenue.current_balance, D("-40.00"))
        self.assertEqual(self.revenue.natural_balance, D("40.00"))


class SeedCommandTests(TestCase):

    def test_command_creates_company_and_accounts(self):
        out = StringIO()
        call_command("seed_chart_of_accounts", company="Acme Ltd", create=True, stdout=out)

        company = Company.objects.get(name="Acme Ltd")
        self.assertEqual(company.slug, "acme-ltd")
        self.assertEqual(
            Account.objects.for_company(company).count(), len(SEED_ACCOUNTS))
        self.assertIn("Chart of accounts ready", out.getvalue())

        # Second run by slug is a no-op
        call_command("seed_chart_of_accounts", company="acme-ltd", stdout=StringIO())
        self.assertEqual(
            Account.objects.for_company(company).count(), len(SEED_ACCOUNTS))

    def test_unknown_company_without_create_fails(self):
        with self.assertRaises(CommandError):
            call_command("seed_chart_of_accounts", company="Nobody", stdout=StringIO())
