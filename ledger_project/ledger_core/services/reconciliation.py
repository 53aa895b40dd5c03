import datetime
import logging
from django.conf import settings
from django.db import models, transaction
from django.utils import timezone
from ..amounts import amounts_equal
from ..exceptions import (AccountNotFound, AlreadyMatched,
                          BankTransactionNotFound,
                          CrossOrganizationAccountError,
                          InvalidStateTransition, JournalEntryNotFound,
                          StatementImportError)
# Import models
from ..models import Account, BankTransaction, JournalEntry, JournalLine
from ..models.journal import REF_BANK_TX
from .audit_helper import log_action
from .ledger import post_journal_entry
from .statement import map_statement_row

logger = logging.getLogger(__name__)

# Days on either side of the bank date searched for candidates
CANDIDATE_WINDOW_DAYS = 7


def _window_days():
    return getattr(settings, "LEDGER_CANDIDATE_WINDOW_DAYS", CANDIDATE_WINDOW_DAYS)


def _get_bank_transaction(company, bank_transaction_id, lock=False):
    qs = BankTransaction.objects.for_company(company)
    if lock:
        qs = qs.select_for_update()
    try:
        return qs.get(pk=bank_transaction_id)
    except (BankTransaction.DoesNotExist, ValueError, TypeError):
        raise BankTransactionNotFound(
            f"Bank transaction {bank_transaction_id} not found.")


def _get_account(company, account_id):
    try:
        account = Account.objects.get(pk=account_id)
    except (Account.DoesNotExist, ValueError, TypeError):
        raise AccountNotFound(f"Account {account_id} not found.")
    if account.company_id != company.pk:
        logger.warning("Cross-company account %s referenced by company %s",
                       account_id, company.pk)
        raise CrossOrganizationAccountError(f"Account {account_id} not found.")
    return account


# ----------------------------
# Candidate search
# ----------------------------
def find_candidates(company, bank_transaction_id, window_days=None):
    """
    Posted journal entries that could explain a bank transaction.

    Keeps entries dated within ±window days whose net effect on the bank's
    ledger account (Σdebit − Σcredit of the lines on that account) equals
    the bank amount within tolerance, and that no other bank transaction
    already claims. Newest first, then higher entry number.
    """
    bt = _get_bank_transaction(company, bank_transaction_id)
    window = datetime.timedelta(
        days=_window_days() if window_days is None else window_days)

    nets = (
        JournalLine.objects.for_company(company)
        .posted()
        .dated_between(bt.date - window, bt.date + window)
        .filter(account_id=bt.account_id)
        .values("journal_id")
        .annotate(net=models.Sum(models.F("debit") - models.F("credit")))
        .order_by()
    )
    matching_ids = [
        row["journal_id"] for row in nets
        if amounts_equal(row["net"], bt.amount)
    ]

    # Entries already reconciled against another bank line are spent
    taken = set(
        BankTransaction.objects.for_company(company)
        .filter(status="matched", matched_journal_entry_id__in=matching_ids)
        .exclude(pk=bt.pk)
        .values_list("matched_journal_entry_id", flat=True)
    )
    return list(
        JournalEntry.objects.for_company(company)
        .filter(pk__in=[pk for pk in matching_ids if pk not in taken])
        .order_by("-date", "-entry_number")
    )


# ----------------------------
# Matching
# ----------------------------
def _match_locked(bt, entry, user=None):
    """Link a locked, unmatched bank transaction to a posted entry."""
    if entry.status != "posted":
        raise InvalidStateTransition(
            "Only posted journal entries can be matched.")
    bt.matched_journal_entry = entry
    bt.matched_at = timezone.now()
    bt.transition_to("matched")
    log_action(action="match", instance=bt, user=user, changes={
        "journal_entry": entry.entry_number,
        "amount": str(bt.amount),
    })
    return bt


def match(company, bank_transaction_id, journal_entry_id, user=None):
    """
    Manually match a bank transaction to an existing entry.
    Amounts are not compared; the status check and update share one row lock.
    """
    with transaction.atomic():
        bt = _get_bank_transaction(company, bank_transaction_id, lock=True)
        if bt.status != "unmatched":
            raise AlreadyMatched(
                f"Bank transaction {bt.pk} is already {bt.status}.")
        try:
            entry = JournalEntry.objects.for_company(company).get(pk=journal_entry_id)
        except (JournalEntry.DoesNotExist, ValueError, TypeError):
            raise JournalEntryNotFound(
                f"Journal entry {journal_entry_id} not found.")
        _match_locked(bt, entry, user=user)
    return bt


def create_and_match(company, bank_transaction_id, category_account_id,
                     description=None, user=None):
    """
    Post a two-line entry for a bank line with no ledger counterpart
    (e.g. a bank fee) and match it, all in one transaction.

        withdrawal: Dr category / Cr bank
        deposit:    Dr bank     / Cr category
    """
    with transaction.atomic():
        bt = _get_bank_transaction(company, bank_transaction_id, lock=True)
        if bt.status != "unmatched":
            raise AlreadyMatched(
                f"Bank transaction {bt.pk} is already {bt.status}.")

        category = _get_account(company, category_account_id)
        description = description or bt.description
        amount = abs(bt.amount)
        if bt.is_deposit:
            lines = [
                {"account_id": bt.account_id, "debit": amount,
                 "description": "Bank Impact"},
                {"account_id": category.pk, "credit": amount,
                 "description": description},
            ]
        else:
            lines = [
                {"account_id": category.pk, "debit": amount,
                 "description": description},
                {"account_id": bt.account_id, "credit": amount,
                 "description": "Bank Impact"},
            ]

        entry = post_journal_entry(
            company,
            bt.date,
            description,
            lines,
            reference_type=REF_BANK_TX,
            reference_id=bt.pk,
            reference=bt.external_id,
            user=user,
        )
        _match_locked(bt, entry, user=user)
    return bt


# ----------------------------
# Statement import
# ----------------------------
def import_statement(company, account_id, rows, user=None, today=None):
    """
    Turn parsed statement rows into unmatched bank transactions.

    Fail-fast: the first bad row (amount, date or duplicate id) raises
    StatementImportError and nothing is inserted.
    """
    account = _get_account(company, account_id)
    rows = list(rows or [])
    if not rows:
        raise StatementImportError("Statement is empty or could not be parsed")

    mapped = [
        map_statement_row(row, row_number, today=today)
        for row_number, row in enumerate(rows, start=1)
    ]

    # Duplicate bank ids: within the batch or already imported on this account
    ids = [m["external_id"] for m in mapped if m["external_id"]]
    existing = set(
        BankTransaction.objects.filter(account=account, external_id__in=ids)
        .values_list("external_id", flat=True)
    )
    seen = set()
    for row_number, m in enumerate(mapped, start=1):
        ext = m["external_id"]
        if not ext:
            continue
        if ext in existing or ext in seen:
            raise StatementImportError(
                f"Duplicate transaction id in row {row_number}: {ext}",
                row_number=row_number)
        seen.add(ext)

    with transaction.atomic():
        created = BankTransaction.objects.bulk_create([
            BankTransaction(
                company=company,
                account=account,
                date=m["date"],
                amount=m["amount"],
                description=m["description"],
                external_id=m["external_id"],
                status="unmatched",
            )
            for m in mapped
        ])
        log_action(action="import", instance=account, user=user,
                   changes={"count": len(created)})
    logger.info("Imported %s bank transactions into account %s for company %s",
                len(created), account.code, company.pk)
    return created


# ----------------------------
# Status housekeeping
# ----------------------------
def exclude(company, bank_transaction_id, user=None):
    with transaction.atomic():
        bt = _get_bank_transaction(company, bank_transaction_id, lock=True)
        bt.transition_to("excluded")
        log_action(action="exclude", instance=bt, user=user)
    return bt


def include(company, bank_transaction_id, user=None):
    with transaction.atomic():
        bt = _get_bank_transaction(company, bank_transaction_id, lock=True)
        bt.transition_to("unmatched")
        log_action(action="include", instance=bt, user=user)
    return bt


def delete_bank_transaction(company, bank_transaction_id, user=None):
    with transaction.atomic():
        bt = _get_bank_transaction(company, bank_transaction_id, lock=True)
        if bt.status == "matched":
            raise InvalidStateTransition("Cannot delete matched transaction")
        log_action(action="delete", instance=bt, user=user,
                   changes={"amount": str(bt.amount), "date": bt.date.isoformat()})
        bt.delete()
