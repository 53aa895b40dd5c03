import logging
from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import ProtectedError
from ..exceptions import (AccountInUseError, AccountNotFound,
                          SystemAccountError)
from ..models import Account, JournalLine
from ..models.account import AC_TYPES
from .audit_helper import log_action

logger = logging.getLogger(__name__)

# First code of each account type's range
CODE_RANGE_START = {
    "asset": 1000,
    "liability": 2000,
    "equity": 3000,
    "revenue": 4000,
    "expense": 5000,
}

# (code, name, ac_type) of the accounts every company starts with
SEED_ACCOUNTS = [
    ("1000", "Cash on Hand", "asset"),
    ("1010", "Bank Account", "asset"),
    ("1100", "Accounts Receivable", "asset"),
    ("2000", "Accounts Payable", "liability"),
    ("3000", "Owner's Equity", "equity"),
    ("3100", "Retained Earnings", "equity"),
    ("4000", "Sales Revenue", "revenue"),
    ("5000", "General Expenses", "expense"),
    ("5100", "Bank Fees", "expense"),
]


def next_account_code(company, ac_type):
    """Next free numeric code within the type's range (e.g. 1000, 1001, ...)."""
    if ac_type not in dict(AC_TYPES):
        raise ValueError(f"Unknown account type {ac_type!r}")
    codes = (
        Account.objects.for_company(company)
        .filter(ac_type=ac_type)
        .values_list("code", flat=True)
    )
    # Non numeric codes are user-chosen and don't take part in the sequence
    numbers = [int(code) for code in codes if code.isdigit()]
    if not numbers:
        return str(CODE_RANGE_START[ac_type])
    return str(max(numbers) + 1).zfill(4)


def create_account(company, name, ac_type, code=None, parent_id=None,
                   is_system=False, user=None):
    if ac_type not in dict(AC_TYPES):
        raise ValidationError(f"Unknown account type {ac_type!r}")
    parent = None
    if parent_id:
        try:
            parent = Account.objects.for_company(company).get(pk=parent_id)
        except Account.DoesNotExist:
            raise AccountNotFound(f"Parent account {parent_id} not found.")

    with transaction.atomic():
        account = Account(
            company=company,
            code=code or next_account_code(company, ac_type),
            name=name,
            ac_type=ac_type,
            parent=parent,
            is_system=is_system,
        )
        account.full_clean()  # type choice, unique code, parent tenancy
        account.save()
        log_action(action="create", instance=account, user=user,
                   changes={"code": account.code, "ac_type": ac_type})
    return account


def delete_account(company, account_id, user=None):
    """
    Physically delete an account.
    System seed accounts and accounts with ledger history are kept.
    """
    try:
        account = Account.objects.for_company(company).get(pk=account_id)
    except Account.DoesNotExist:
        raise AccountNotFound(f"Account {account_id} not found.")

    if account.is_system:
        raise SystemAccountError("Cannot delete system accounts")
    if JournalLine.objects.filter(account=account).exists():
        raise AccountInUseError(
            "Cannot delete an account used in journal lines; deactivate it instead.")

    with transaction.atomic():
        log_action(action="delete", instance=account, user=user,
                   changes={"code": account.code, "name": account.name})
        try:
            account.delete()
        except ProtectedError:
            # sub-accounts, document lines or bank transactions point at it
            raise AccountInUseError(
                f"Account {account.code} is still referenced and cannot be deleted.")


@transaction.atomic
def seed_chart_of_accounts(company):
    """Create the system accounts for a company. Safe to run repeatedly."""
    accounts = {}
    for code, name, ac_type in SEED_ACCOUNTS:
        account, created = Account.objects.get_or_create(
            company=company,
            code=code,
            defaults={"name": name, "ac_type": ac_type, "is_system": True},
        )
        if created:
            logger.info("Seeded account %s %s for company %s",
                        code, name, company.pk)
        accounts[code] = account
    return accounts
