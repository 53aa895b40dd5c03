import datetime
from decimal import Decimal
from ..models import Company
from ..services.accounts import seed_chart_of_accounts
from ..services.ledger import post_journal_entry

D = Decimal
MARCH_1 = datetime.date(2024, 3, 1)


class LedgerFixtureMixin:
    """Company with the seeded chart of accounts, shared by most test cases."""

    company_name = "Test Co"

    def setUp(self):
        self.company = Company.objects.create(name=self.company_name)
        self.accounts = seed_chart_of_accounts(self.company)
        # Short names for the accounts tests touch most
        self.cash = self.accounts["1000"]
        self.bank = self.accounts["1010"]
        self.ar = self.accounts["1100"]
        self.ap = self.accounts["2000"]
        self.equity = self.accounts["3000"]
        self.revenue = self.accounts["4000"]
        self.expense = self.accounts["5000"]
        self.bank_fees = self.accounts["5100"]

    def post(self, debit_account, credit_account, amount, date=MARCH_1,
             company=None, status="posted", description="Test entry"):
        """Post a simple two-line entry: Dr debit_account / Cr credit_account."""
        return post_journal_entry(
            company or self.company,
            date,
            description,
            [
                {"account_id": debit_account.pk, "debit": amount},
                {"account_id": credit_account.pk, "credit": amount},
            ],
            status=status,
        )

    def refresh(self, *objs):
        for obj in objs:
            obj.refresh_from_db()
