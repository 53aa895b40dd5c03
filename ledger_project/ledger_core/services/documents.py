"""
Invoice and bill lifecycle.

Both document kinds share one state machine (see Document.transitions);
they differ only in which side of the ledger each account sits on:

    invoice approval: Dr AR (total)       / Cr revenue (per line)
    invoice payment:  Dr payment account  / Cr AR
    bill approval:    Dr expense (per line) / Cr AP (total)
    bill payment:     Dr AP               / Cr payment account

Every function takes `kind` ("invoice" or "bill") and the caller's company.
"""
import datetime
import logging
import re
from decimal import InvalidOperation
from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone
from django.utils.dateparse import parse_date
from ..amounts import BALANCE_TOLERANCE, quantize_money, to_decimal
from ..exceptions import (AccountNotFound, CounterpartyNotFound,
                          CrossOrganizationAccountError, DocumentNotFound,
                          InsufficientLines, InvalidPaymentAmount,
                          InvalidStateTransition, MissingContraAccount,
                          OverpaymentError)
# Import models
from ..models import (Account, Bill, BillLine, BillPayment, Customer, Invoice,
                      InvoiceLine, InvoicePayment, Vendor)
from ..models import journal as jm
from .audit_helper import log_action
from .ledger import post_journal_entry

logger = logging.getLogger(__name__)

KINDS = {
    "invoice": {
        "model": Invoice,
        "line_model": InvoiceLine,
        "payment_model": InvoicePayment,
        "parent_field": "invoice",
        "party_field": "customer",
        "party_model": Customer,
        "default_contra": "default_ar_account",
        "approval_ref": jm.REF_INVOICE,
        "payment_ref": jm.REF_INVOICE_PAYMENT,
        "reversal_ref": jm.REF_INVOICE_REVERSAL,
        # contra account is debited on approval (receivable)
        "contra_debit": True,
    },
    "bill": {
        "model": Bill,
        "line_model": BillLine,
        "payment_model": BillPayment,
        "parent_field": "bill",
        "party_field": "vendor",
        "party_model": Vendor,
        "default_contra": "default_ap_account",
        "approval_ref": jm.REF_BILL,
        "payment_ref": jm.REF_BILL_PAYMENT,
        "reversal_ref": jm.REF_BILL_REVERSAL,
        "contra_debit": False,
    },
}


def _kind(kind):
    try:
        return KINDS[kind]
    except KeyError:
        raise ValueError(f"Unknown document kind {kind!r}")


def _as_date(value, default=None):
    if value in (None, ""):
        return default
    if isinstance(value, datetime.date):
        return value
    try:
        parsed = parse_date(str(value))
    except ValueError:  # well formed but not a real date
        parsed = None
    if parsed is None:
        raise ValidationError(f"Invalid date: {value!r}")
    return parsed


def _get_document(kind, company, document_id, lock=True):
    cfg = _kind(kind)
    qs = cfg["model"].objects.for_company(company)
    if lock:
        # Lock row until the transaction finishes
        qs = qs.select_for_update()
    try:
        return qs.get(pk=document_id)
    except cfg["model"].DoesNotExist:
        raise DocumentNotFound(f"{kind.title()} {document_id} not found.")


def _get_account(company, account_id, label="Account"):
    try:
        account = Account.objects.get(pk=account_id)
    except (Account.DoesNotExist, ValueError, TypeError):
        raise AccountNotFound(f"{label} {account_id} not found.")
    if account.company_id != company.pk:
        logger.warning(
            "Cross-company account %s referenced by company %s",
            account_id, company.pk,
        )
        raise CrossOrganizationAccountError(f"{label} {account_id} not found.")
    return account


def _post_reversal(kind, doc, user=None):
    """Post the mirror image of the document's approval entry."""
    cfg = _kind(kind)
    entry = doc.approval_entry
    lines = [
        {
            "account_id": line.account_id,
            "debit": line.credit,
            "credit": line.debit,
            "description": f"Reversal: {line.description}".strip(),
        }
        for line in entry.lines.all()
    ]
    return post_journal_entry(
        doc.company,
        timezone.localdate(),
        f"Reversal of {doc} (JE-{entry.entry_number:06d})",
        lines,
        reference_type=cfg["reversal_ref"],
        reference_id=doc.pk,
        user=user,
    )


# ----------------------------
# Numbering
# ----------------------------
def next_document_number(kind, company, today=None):
    """
    INV-YYYY-NNNN / BILL-YYYY-NNNN.
    Continues the highest sequence of the current year, restarts at 0001 on a new year.
    """
    cfg = _kind(kind)
    model = cfg["model"]
    year = (today or timezone.localdate()).year
    prefix = f"{model.NUMBER_PREFIX}-{year}-"
    pattern = re.compile(rf"^{re.escape(prefix)}(\d{{4,}})$")

    numbers = model.objects.for_company(company).filter(
        **{f"{model.NUMBER_FIELD}__startswith": prefix}
    ).values_list(model.NUMBER_FIELD, flat=True)

    sequence = 0
    for number in numbers:
        match = pattern.match(number)
        if match:
            sequence = max(sequence, int(match.group(1)))
    return f"{prefix}{sequence + 1:04d}"


# ----------------------------
# Draft editing
# ----------------------------
def _replace_lines(kind, company, doc, raw_lines):
    """Delete-all/insert-all; caller holds the transaction."""
    cfg = _kind(kind)
    line_model = cfg["line_model"]

    # Resolve accounts up front so a bad line leaves the old set untouched
    resolved = []
    for idx, raw in enumerate(raw_lines, start=1):
        account = _get_account(company, raw.get("account_id"),
                               label=f"Line {idx}: account")
        try:
            quantity = to_decimal(raw.get("quantity"), default=to_decimal("1"))
            unit_price = to_decimal(raw.get("unit_price"))
        except InvalidOperation:
            raise ValidationError(f"Line {idx}: quantity and unit price must be numbers.")
        resolved.append((idx, raw, account, quantity, unit_price))

    doc.lines.all().delete()
    for idx, raw, account, quantity, unit_price in resolved:
        line = line_model(
            company=company,
            line_no=idx,
            description=raw.get("description") or "",
            quantity=quantity,
            unit_price=unit_price,
            account=account,
            **{cfg["parent_field"]: doc},
        )
        line.save()  # computes line_total, runs full_clean()


def save_draft(kind, company, data, user=None):
    """
    Create or edit a document; the result is always a draft.

    Editing an approved document first runs the explicit `reopen`
    transition (which reverses its approval entry), then replaces all
    lines and recomputes total_amount from them. Client-supplied totals
    are ignored.
    """
    cfg = _kind(kind)
    model = cfg["model"]
    party_field = cfg["party_field"]

    with transaction.atomic():
        document_id = data.get("id")
        if document_id:
            doc = _get_document(kind, company, document_id)
            if doc.status != "draft":
                doc = reopen(kind, company, doc.pk, user=user)
            action = "update"
        else:
            doc = model(company=company, currency_code=company.currency_code)
            action = "create"

        # Counterparty
        party_key = f"{party_field}_id"
        if party_key in data:
            party = None
            if data[party_key]:
                try:
                    party = cfg["party_model"].objects.for_company(
                        company).get(pk=data[party_key])
                except (cfg["party_model"].DoesNotExist, ValueError):
                    raise CounterpartyNotFound(
                        f"{party_field.title()} {data[party_key]} not found.")
            setattr(doc, party_field, party)

        # Header
        if "date" in data or not doc.date:
            doc.date = _as_date(data.get("date"), default=timezone.localdate())
        if "due_date" in data:
            doc.due_date = _as_date(data.get("due_date"))
        party = getattr(doc, party_field)
        if doc.due_date is None and party is not None:
            doc.due_date = doc.date + datetime.timedelta(days=party.payment_terms_days)
        if data.get("currency_code"):
            doc.currency_code = data["currency_code"]
        if "notes" in data:
            doc.notes = data.get("notes") or ""

        number = data.get("number") or data.get(model.NUMBER_FIELD)
        if number:
            setattr(doc, model.NUMBER_FIELD, number)
        elif not doc.number:
            setattr(doc, model.NUMBER_FIELD, next_document_number(kind, company))

        doc.status = "draft"
        doc.save()  # need a pk before lines can point at it

        if "lines" in data:
            _replace_lines(kind, company, doc, data.get("lines") or [])

        # Never trust a client-supplied total
        doc.recalc_total()
        doc.save()

        log_action(action=action, instance=doc, user=user,
                   changes={"number": doc.number, "total_amount": str(doc.total_amount)})
    return doc


def reopen(kind, company, document_id, user=None):
    """
    Explicit approved → draft transition.

    Only approved documents without payments can be reopened; the
    approval entry is reversed so the ledger is back to its
    pre-approval state.
    """
    with transaction.atomic():
        doc = _get_document(kind, company, document_id)
        if not doc.can_transition("draft"):
            raise InvalidStateTransition(
                f"Cannot reopen a {kind} in status {doc.status}")
        if doc.amount_paid > 0 or doc.payments.exists():
            raise InvalidStateTransition(
                f"Cannot reopen a {kind} with recorded payments")

        reversal = None
        if doc.approval_entry_id:
            reversal = _post_reversal(kind, doc, user=user)
        previous = doc.status
        doc.approval_entry = None
        doc.approved_at = None
        doc.transition_to("draft")

        log_action(action="reopen", instance=doc, user=user, changes={
            "from": previous,
            "reversal_entry": reversal.entry_number if reversal else None,
        })
    return doc


# ----------------------------
# Approval & payments
# ----------------------------
def approve(kind, company, document_id, contra_account_id=None, date=None, user=None):
    """
    Post the document to the ledger and move it draft → sent/open.

    The contra account (AR for invoices, AP for bills) comes from the
    argument, else from the customer's/vendor's default.
    """
    cfg = _kind(kind)
    with transaction.atomic():
        doc = _get_document(kind, company, document_id)
        approved_status = doc.APPROVED_STATUS
        if not (doc.status == "draft" and doc.can_transition(approved_status)):
            raise InvalidStateTransition(
                f"Cannot approve a {kind} in status {doc.status}")

        if contra_account_id:
            contra = _get_account(company, contra_account_id, label="Contra account")
        else:
            party = doc.counterparty
            contra = getattr(party, cfg["default_contra"], None) if party else None
        if contra is None:
            raise MissingContraAccount(
                f"No {'receivable' if cfg['contra_debit'] else 'payable'} "
                f"account given or configured for this {kind}.")

        total = doc.recalc_total()
        postable = [line for line in doc.lines.select_related("account")
                    if line.line_total > 0]
        if not postable or total <= 0:
            raise InsufficientLines(f"{kind.title()} has no lines to post")

        # One contra line for the total, one line per document line
        contra_side = "debit" if cfg["contra_debit"] else "credit"
        line_side = "credit" if cfg["contra_debit"] else "debit"
        lines = [{
            "account_id": contra.pk,
            contra_side: total,
            "description": f"{contra.name} for {doc}",
        }]
        for line in postable:
            lines.append({
                "account_id": line.account_id,
                line_side: line.line_total,
                "description": line.description or str(doc),
            })

        entry = post_journal_entry(
            company,
            _as_date(date, default=doc.date),
            f"{kind.title()} {doc.number}",
            lines,
            reference_type=cfg["approval_ref"],
            reference_id=doc.pk,
            user=user,
        )

        doc.contra_account = contra
        doc.approval_entry = entry
        doc.approved_at = timezone.now()
        doc.transition_to(approved_status)

        log_action(action="approve", instance=doc, user=user, changes={
            "entry_number": entry.entry_number,
            "contra_account": contra.code,
            "total_amount": str(total),
        })
        logger.info("Approved %s %s for company %s (JE-%06d)",
                    kind, doc.number, company.pk, entry.entry_number)
    return doc


def record_payment(kind, company, document_id, payment_account_id, amount,
                   date=None, reference=None, user=None):
    """
    Post a payment between the payment account and the approval's contra
    account, then move the document to partial or paid.

    Overpayment is rejected: the amount may not exceed what is outstanding.
    """
    cfg = _kind(kind)
    try:
        amount = quantize_money(amount)
    except InvalidOperation:
        raise InvalidPaymentAmount("Payment amount must be a number")
    if amount <= 0:
        raise InvalidPaymentAmount("Payment amount must be greater than zero")

    with transaction.atomic():
        doc = _get_document(kind, company, document_id)
        if doc.status not in (doc.APPROVED_STATUS, "partial", "overdue"):
            raise InvalidStateTransition(
                f"Cannot record a payment on a {kind} in status {doc.status}")

        outstanding = doc.outstanding
        if amount - outstanding >= BALANCE_TOLERANCE:
            raise OverpaymentError(
                f"Payment of {amount} exceeds the outstanding {outstanding}")

        payment_account = _get_account(company, payment_account_id,
                                       label="Payment account")
        contra = doc.contra_account

        if cfg["contra_debit"]:
            # Customer pays: cash in, receivable down
            lines = [
                {"account_id": payment_account.pk, "debit": amount,
                 "description": f"Receipt for {doc}"},
                {"account_id": contra.pk, "credit": amount,
                 "description": f"Clear AR for {doc}"},
            ]
        else:
            # We pay the vendor: payable down, cash out
            lines = [
                {"account_id": contra.pk, "debit": amount,
                 "description": f"Clear AP for {doc}"},
                {"account_id": payment_account.pk, "credit": amount,
                 "description": f"Payment for {doc}"},
            ]

        pay_date = _as_date(date, default=timezone.localdate())
        entry = post_journal_entry(
            company,
            pay_date,
            f"Payment for {kind} {doc.number}",
            lines,
            reference_type=cfg["payment_ref"],
            reference_id=doc.pk,
            reference=reference,
            user=user,
        )
        payment = cfg["payment_model"](
            company=company,
            amount=amount,
            date=pay_date,
            payment_account=payment_account,
            journal_entry=entry,
            reference=reference or "",
            **{cfg["parent_field"]: doc},
        )
        payment.save()

        doc.amount_paid = doc.amount_paid + amount
        new_status = "paid" if doc.is_settled else "partial"
        if new_status != doc.status:
            doc.transition_to(new_status)
        else:
            doc.save()

        log_action(action="pay", instance=doc, user=user, changes={
            "amount": str(amount),
            "entry_number": entry.entry_number,
            "status": doc.status,
        })
    return doc


# ----------------------------
# Void / delete / overdue
# ----------------------------
def void(kind, company, document_id, user=None):
    """
    Cancel any non-paid document. An approved document gets its approval
    entry reversed; payments already recorded stay on the contra account.
    """
    with transaction.atomic():
        doc = _get_document(kind, company, document_id)
        if not doc.can_transition("void"):
            raise InvalidStateTransition(
                f"Cannot void a {kind} in status {doc.status}")

        reversal = None
        if doc.approval_entry_id:
            reversal = _post_reversal(kind, doc, user=user)
        previous = doc.status
        doc.transition_to("void")

        log_action(action="void", instance=doc, user=user, changes={
            "from": previous,
            "reversal_entry": reversal.entry_number if reversal else None,
        })
    return doc


def delete(kind, company, document_id, user=None):
    with transaction.atomic():
        doc = _get_document(kind, company, document_id)
        # only DRAFT may be deleted
        if doc.status != "draft":
            raise InvalidStateTransition(
                f"Cannot delete a {kind} that is not in draft status")
        log_action(action="delete", instance=doc, user=user,
                   changes={"number": doc.number})
        doc.delete()


def mark_overdue(company, as_of=None):
    """
    Flag approved/partial documents past their due date with money
    still outstanding. Returns how many documents changed.
    """
    as_of = as_of or timezone.localdate()
    changed = 0
    with transaction.atomic():
        for kind, cfg in KINDS.items():
            model = cfg["model"]
            candidates = (
                model.objects.for_company(company)
                .select_for_update()
                .filter(
                    status__in=[model.APPROVED_STATUS, "partial"],
                    due_date__lt=as_of,
                )
            )
            for doc in candidates:
                if doc.outstanding < BALANCE_TOLERANCE:
                    continue
                previous = doc.status
                doc.transition_to("overdue")
                log_action(action="overdue", instance=doc,
                           changes={"from": previous, "as_of": as_of.isoformat()})
                changed += 1
    if changed:
        logger.info("Marked %s documents overdue for company %s", changed, company.pk)
    return changed
