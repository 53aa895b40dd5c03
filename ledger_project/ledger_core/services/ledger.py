import logging
from decimal import InvalidOperation
from django.db import models, transaction
from django.utils import timezone
from ..amounts import BALANCE_TOLERANCE, ZERO, quantize_money, to_decimal
from ..exceptions import (AccountNotFound, CrossOrganizationAccountError,
                          InsufficientLines, InvalidJournalLine,
                          InvalidStateTransition, JournalEntryNotFound,
                          UnbalancedEntryError)
# Import models
from ..models import Account, Company, JournalEntry, JournalLine
from ..models.journal import REF_MANUAL, apply_lines_to_balances
from .audit_helper import log_action

logger = logging.getLogger(__name__)


# ----------------------------
# Line validation
# ----------------------------
def _line_account_id(raw):
    account = raw.get("account_id", raw.get("account"))
    if isinstance(account, Account):
        return account.pk
    return account


def prepare_lines(company, lines):
    """
    Validate raw line dicts for `company` and return them normalized as
    dicts of {account, debit, credit, description}, amounts quantized to cents.

    Nothing is written here, so a failure leaves no trace.
    """
    lines = list(lines or [])
    # a single-leg entry cannot balance
    if len(lines) < 2:
        raise InsufficientLines("A journal entry needs at least two lines.")

    prepared = []
    for idx, raw in enumerate(lines, start=1):
        try:
            debit = quantize_money(raw.get("debit"))
            credit = quantize_money(raw.get("credit"))
        except InvalidOperation:
            raise InvalidJournalLine(f"Line {idx}: amount is not a number.")

        if debit < 0 or credit < 0:
            raise InvalidJournalLine(
                f"Line {idx}: debit and credit must be >= 0.")
        if debit == 0 and credit == 0:
            raise InvalidJournalLine(
                f"Line {idx}: either debit or credit must be non-zero.")
        if debit > 0 and credit > 0:
            raise InvalidJournalLine(
                f"Line {idx}: a line cannot carry both a debit and a credit.")

        try:
            account_id = int(_line_account_id(raw))
        except (TypeError, ValueError):
            raise AccountNotFound(f"Line {idx}: no valid account given.")

        prepared.append({
            "account_id": account_id,
            "debit": debit,
            "credit": credit,
            "description": raw.get("description") or "",
        })

    # Resolve every account in one query
    ids = {line["account_id"] for line in prepared}
    accounts = Account.objects.in_bulk(ids)

    for idx, line in enumerate(prepared, start=1):
        account = accounts.get(line["account_id"])
        if account is None:
            raise AccountNotFound(
                f"Line {idx}: account {line['account_id']} does not exist.")
        # Tenancy violation, keep a trace
        if account.company_id != company.pk:
            logger.warning(
                "Cross-company account %s referenced on a journal line for company %s",
                account.pk, company.pk,
            )
            raise CrossOrganizationAccountError(
                f"Line {idx}: account {line['account_id']} does not exist.")
        if not account.is_active:
            raise InvalidJournalLine(
                f"Line {idx}: account {account.code} is inactive.")
        line["account"] = account

    return prepared


def check_balanced(prepared):
    total_debit = sum((line["debit"] for line in prepared), ZERO)
    total_credit = sum((line["credit"] for line in prepared), ZERO)
    if abs(total_debit - total_credit) >= BALANCE_TOLERANCE:
        raise UnbalancedEntryError(
            f"Debits must equal Credits (debits={total_debit}, credits={total_credit})."
        )
    return total_debit, total_credit


def _next_entry_number(company):
    """
    Bump the company's persistent journal sequence under a row lock.
    Numbers are never reused, a rolled back posting simply leaves a gap.
    """
    locked = Company.objects.select_for_update().get(pk=company.pk)
    locked.last_entry_number = models.F("last_entry_number") + 1
    locked.save(update_fields=["last_entry_number"])
    locked.refresh_from_db(fields=["last_entry_number"])
    company.last_entry_number = locked.last_entry_number
    return locked.last_entry_number


# ----------------------------
# Journal-related workflows
# ----------------------------
def post_journal_entry(
    company,
    date,
    description,
    lines,
    reference_type=None,
    reference_id=None,
    status="posted",
    reference=None,
    user=None,
):
    """
    Create a journal entry with its lines, and post it when status is "posted".

    Posted entries must balance within BALANCE_TOLERANCE; drafts may not
    balance yet. Either the entry, its lines, the sequence bump and the
    balance updates all persist, or none do.
    """
    if status not in ("draft", "posted"):
        raise InvalidStateTransition(
            f"New journal entries are created as draft or posted, not {status}.")

    # Validate before any row is written or the sequence is touched
    prepared = prepare_lines(company, lines)
    if status == "posted":
        check_balanced(prepared)

    with transaction.atomic():
        je = JournalEntry.objects.create(
            company=company,
            entry_number=_next_entry_number(company),
            date=date,
            description=description or "",
            reference=reference or "",
            status="draft",
            reference_type=reference_type or REF_MANUAL,
            reference_id=reference_id,
            created_by=user,
        )
        JournalLine.objects.bulk_create([
            JournalLine(
                company=company,
                journal=je,
                line_no=idx,
                account=line["account"],
                description=line["description"],
                debit=line["debit"],
                credit=line["credit"],
            )
            for idx, line in enumerate(prepared, start=1)
        ])

        if status == "posted":
            # bulk_create skips save(); lines were validated above
            apply_lines_to_balances(je.lines.all())
            je.status = "posted"
            je.posted_at = timezone.now()
            je.save(update_fields=["status", "posted_at"])
            logger.info(
                "Posted journal entry %s for company %s (%s, %s:%s)",
                je.entry_number, company.pk, len(prepared),
                je.reference_type, je.reference_id,
            )

        log_action(
            action="post" if status == "posted" else "create",
            instance=je,
            user=user,
            changes={
                "entry_number": je.entry_number,
                "reference_type": je.reference_type,
                "reference_id": je.reference_id,
                "lines": [
                    {
                        "account": line["account"].code,
                        "debit": str(line["debit"]),
                        "credit": str(line["credit"]),
                    }
                    for line in prepared
                ],
            },
        )
    return je


def _get_entry(company, entry_id, lock=False):
    qs = JournalEntry.objects.for_company(company)
    if lock:
        qs = qs.select_for_update()
    try:
        return qs.get(pk=entry_id)
    except JournalEntry.DoesNotExist:
        raise JournalEntryNotFound(f"Journal entry {entry_id} not found.")


def post_draft_entry(company, entry_id, user=None):
    """
    Wraps the model's posting logic with tenancy + transaction management
    """
    with transaction.atomic():
        # Lock the row to avoid race conditions
        je = _get_entry(company, entry_id, lock=True)
        if je.status != "draft":
            raise InvalidStateTransition(
                f"Cannot post a journal entry in status {je.status}")
        # Re-check the stored lines the same way new entries are checked
        stored = [
            {"account_id": line.account_id, "debit": line.debit,
             "credit": line.credit, "description": line.description}
            for line in je.lines.all()
        ]
        check_balanced(prepare_lines(company, stored))
        je.transition_to("posted", user=user)
        log_action(action="post", instance=je, user=user)
    return je


def archive_draft_entry(company, entry_id, user=None):
    with transaction.atomic():
        je = _get_entry(company, entry_id, lock=True)
        # posted → archived is rejected by the state machine
        je.transition_to("archived", user=user)
        log_action(action="archive", instance=je, user=user)
    return je


def delete_draft_entry(company, entry_id, user=None):
    with transaction.atomic():
        je = _get_entry(company, entry_id, lock=True)
        if je.status != "draft":
            raise InvalidStateTransition(
                f"Only draft journal entries can be deleted (status is {je.status}).")
        log_action(action="delete", instance=je, user=user,
                   changes={"entry_number": je.entry_number})
        je.delete()


def recompute_account_balances(company):
    """
    Rebuild every account's current_balance from posted lines.

    The cached balance should never drift; each drift found is logged at
    WARNING before it is overwritten. Returns the list of corrections.
    """
    corrections = []
    with transaction.atomic():
        sums = {
            row["account_id"]: row["net"]
            for row in JournalLine.objects.for_company(company)
            .posted()
            .values("account_id")
            .annotate(net=models.Sum(models.F("debit") - models.F("credit")))
        }
        accounts = (
            Account.objects.for_company(company)
            .select_for_update()
            .order_by("pk")
        )
        for account in accounts:
            expected = quantize_money(sums.get(account.pk) or ZERO)
            if account.current_balance != expected:
                logger.warning(
                    "Balance drift on account %s (%s): cached=%s, ledger=%s",
                    account.code, company.pk, account.current_balance, expected,
                )
                corrections.append({
                    "account_id": account.pk,
                    "code": account.code,
                    "cached": account.current_balance,
                    "ledger": expected,
                })
                Account.objects.filter(pk=account.pk).update(
                    current_balance=expected)
    return corrections
