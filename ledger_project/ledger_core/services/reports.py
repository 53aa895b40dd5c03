"""
Read-side reports over posted journal lines.

All three reports run one grouped aggregate query (sum of debits and
credits per account) against posted lines only; they never write.
"""
import logging
from django.db.models import Sum
from ..amounts import BALANCE_TOLERANCE, ZERO, quantize_money
from ..exceptions import TrialBalanceMismatch
from ..models import Account, JournalLine
from ..models.account import AC_TYPES, BALANCE_SHEET_TYPES, PROFIT_LOSS_TYPES

logger = logging.getLogger(__name__)


def _account_sums(company, start=None, end=None, types=None):
    """
    Σdebit and Σcredit per account over posted lines in [start, end].
    Both totals are kept separate, never netted.
    """
    qs = (
        JournalLine.objects.for_company(company)
        .posted()
        .dated_between(start, end)
    )
    if types:
        qs = qs.filter(account__ac_type__in=types)
    rows = (
        qs.values(
            "account_id",
            "account__code",
            "account__name",
            "account__ac_type",
        )
        .annotate(total_debit=Sum("debit"), total_credit=Sum("credit"))
        .order_by("account__code")
    )
    return [
        {
            "account_id": row["account_id"],
            "code": row["account__code"],
            "name": row["account__name"],
            "ac_type": row["account__ac_type"],
            "total_debit": quantize_money(row["total_debit"] or ZERO),
            "total_credit": quantize_money(row["total_credit"] or ZERO),
        }
        for row in rows
    ]


def account_rollups(company, balances):
    """
    Roll `balances` ({account_id: amount}) up the account tree.

    Returns {account_id: subtotal} where each subtotal is the account's own
    amount plus that of all its descendants.
    """
    parents = dict(
        Account.objects.for_company(company).values_list("id", "parent_id")
    )
    subtotals = {}
    for account_id, amount in balances.items():
        node = account_id
        seen = set()
        # walk up to the root, guarding against a corrupted cycle
        while node is not None and node not in seen:
            seen.add(node)
            subtotals[node] = subtotals.get(node, ZERO) + amount
            node = parents.get(node)
    return subtotals


def _with_subtotals(company, rows, amount_key):
    """
    Attach a rolled-up `subtotal` to every row and return the rows in code
    order, plus one row per ancestor account that has no activity of its
    own (header accounts), so their subtotals are not lost.
    """
    subtotals = account_rollups(
        company, {row["account_id"]: row[amount_key] for row in rows}
    )
    for row in rows:
        row["subtotal"] = subtotals.get(row["account_id"], row[amount_key])

    missing = set(subtotals) - {row["account_id"] for row in rows}
    headers = [
        {
            "account_id": account.pk,
            "code": account.code,
            "name": account.name,
            "ac_type": account.ac_type,
            "total_debit": ZERO,
            "total_credit": ZERO,
            amount_key: ZERO,
            "subtotal": subtotals[account.pk],
        }
        for account in Account.objects.for_company(company).filter(pk__in=missing)
    ]
    return sorted(rows + headers, key=lambda row: row["code"])


def trial_balance(company, as_of=None, strict=True):
    """
    Debits and credits per account up to `as_of`, grouped by account type.

    If total debits and credits disagree the ledger is corrupt: that is
    logged at ERROR and raised as TrialBalanceMismatch (strict), or
    returned with is_balanced=False.
    """
    rows = _account_sums(company, end=as_of)
    for row in rows:
        row["net_balance"] = row["total_debit"] - row["total_credit"]
    rows = _with_subtotals(company, rows, "net_balance")

    total_debit = sum((row["total_debit"] for row in rows), ZERO)
    total_credit = sum((row["total_credit"] for row in rows), ZERO)
    is_balanced = abs(total_debit - total_credit) < BALANCE_TOLERANCE

    report = {
        "as_of": as_of,
        "rows": rows,
        "by_type": {
            ac_type: [row for row in rows if row["ac_type"] == ac_type]
            for ac_type, _label in AC_TYPES
        },
        "total_debit": total_debit,
        "total_credit": total_credit,
        "is_balanced": is_balanced,
    }

    if not is_balanced:
        logger.error(
            "Trial balance mismatch for company %s as of %s: debits=%s credits=%s",
            company.pk, as_of, total_debit, total_credit,
            extra={"company_id": company.pk},
        )
        if strict:
            raise TrialBalanceMismatch(
                "Trial balance does not balance",
                total_debit=total_debit,
                total_credit=total_credit,
            )
    return report


def profit_and_loss(company, start=None, end=None):
    """Revenue (credit − debit) less expenses (debit − credit) in [start, end]."""
    rows = _account_sums(company, start=start, end=end, types=PROFIT_LOSS_TYPES)
    for row in rows:
        if row["ac_type"] == "revenue":
            # Revenue accounts are credit-positive
            row["amount"] = row["total_credit"] - row["total_debit"]
        else:
            # Expense accounts are debit-positive
            row["amount"] = row["total_debit"] - row["total_credit"]
    rows = _with_subtotals(company, rows, "amount")

    revenue = [row for row in rows if row["ac_type"] == "revenue"]
    expenses = [row for row in rows if row["ac_type"] == "expense"]

    total_revenue = sum((row["amount"] for row in revenue), ZERO)
    total_expenses = sum((row["amount"] for row in expenses), ZERO)
    return {
        "start": start,
        "end": end,
        "revenue": revenue,
        "expenses": expenses,
        "total_revenue": total_revenue,
        "total_expenses": total_expenses,
        "net_income": total_revenue - total_expenses,
    }


def balance_sheet(company, as_of=None):
    """
    Cumulative asset, liability and equity balances up to `as_of`.

    Revenue and expense activity not yet closed to retained earnings is
    shown as a "Current Earnings" equity line, so that
    total_assets == total_liabilities + total_equity.
    """
    rows = _account_sums(company, end=as_of)

    earnings = ZERO
    position = []
    for row in rows:
        ac_type = row["ac_type"]
        if ac_type == "asset":
            row["amount"] = row["total_debit"] - row["total_credit"]
        elif ac_type in BALANCE_SHEET_TYPES:
            row["amount"] = row["total_credit"] - row["total_debit"]
        else:
            # revenue adds to equity, expense reduces it
            earnings += row["total_credit"] - row["total_debit"]
            continue
        position.append(row)

    sections = {"asset": [], "liability": [], "equity": []}
    for row in _with_subtotals(company, position, "amount"):
        # a header of another type has nothing to show here
        if row["ac_type"] in sections:
            sections[row["ac_type"]].append(row)

    sections["equity"].append({
        "account_id": None,
        "code": "",
        "name": "Current Earnings",
        "ac_type": "equity",
        "amount": earnings,
        "subtotal": earnings,
    })

    total_assets = sum((row["amount"] for row in sections["asset"]), ZERO)
    total_liabilities = sum((row["amount"] for row in sections["liability"]), ZERO)
    total_equity = sum((row["amount"] for row in sections["equity"]), ZERO)
    is_balanced = abs(
        total_assets - (total_liabilities + total_equity)) < BALANCE_TOLERANCE
    if not is_balanced:
        logger.error(
            "Balance sheet does not balance for company %s as of %s: "
            "assets=%s liabilities=%s equity=%s",
            company.pk, as_of, total_assets, total_liabilities, total_equity,
        )

    return {
        "as_of": as_of,
        "assets": sections["asset"],
        "liabilities": sections["liability"],
        "equity": sections["equity"],
        "current_earnings": earnings,
        "total_assets": total_assets,
        "total_liabilities": total_liabilities,
        "total_equity": total_equity,
        "is_balanced": is_balanced,
    }
