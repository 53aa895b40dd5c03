import json
import logging
from functools import wraps
from django.core.exceptions import ValidationError
from django.http import JsonResponse
from django.utils.dateparse import parse_date
from django.views.decorators.http import require_GET, require_POST
from .exceptions import (LedgerIntegrityError, LedgerReferenceError,
                         LedgerValidationError, StatementImportError)
from .services import accounts as account_service
from .services import documents as document_service
from .services import ledger as ledger_service
from .services import reconciliation, reports
from .services.statement import parse_csv_text

logger = logging.getLogger(__name__)


# ----------------------------
# Request / response helpers
# ----------------------------
def _error(message, status, **extra):
    return JsonResponse({"ok": False, "error": message, **extra}, status=status)


def _payload(request):
    """JSON body as a dict ({} when empty)."""
    if not request.body:
        return {}
    try:
        data = json.loads(request.body)
    except (ValueError, UnicodeDecodeError):
        raise ValidationError("Request body must be valid JSON.")
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def _parse_date(value, name):
    try:
        parsed = parse_date(str(value))
    except ValueError:
        parsed = None
    if parsed is None:
        raise ValidationError(f"Invalid {name}: {value!r}")
    return parsed


def _query_date(request, name):
    value = request.GET.get(name)
    return _parse_date(value, name) if value else None


def _user(request):
    user = getattr(request, "user", None)
    return user if user is not None and user.is_authenticated else None


def ledger_api(view):
    """
    Map the ledger's error taxonomy onto HTTP:
    validation → 400, reference → 404, integrity → 500 (generic message).
    """
    @wraps(view)
    def wrapper(request, *args, **kwargs):
        # Tenant comes from CurrentCompanyMiddleware
        if getattr(request, "company", None) is None:
            return _error("Company context required.", 400)
        try:
            return view(request, *args, **kwargs)
        except StatementImportError as e:
            return _error(str(e), 400, row_number=e.row_number)
        except LedgerValidationError as e:
            return _error(str(e), 400, code=type(e).__name__)
        except LedgerReferenceError as e:
            return _error(str(e), 404, code=type(e).__name__)
        except LedgerIntegrityError as e:
            # Never leak ledger internals, the details go to the log
            logger.exception("Integrity error for company %s", request.company.pk)
            return _error(e.public_message, 500)
        except ValidationError as e:
            return _error("; ".join(e.messages), 400)

    return wrapper


def _entry_json(je):
    return {
        "id": je.pk,
        "entry_number": je.entry_number,
        "date": je.date,
        "description": je.description,
        "status": je.status,
        "reference_type": je.reference_type,
        "reference_id": je.reference_id,
        "lines": [
            {
                "account_id": line.account_id,
                "description": line.description,
                "debit": line.debit,
                "credit": line.credit,
            }
            for line in je.lines.all()
        ],
    }


def _document_json(doc):
    return {
        "id": doc.pk,
        "number": doc.number,
        "status": doc.status,
        "date": doc.date,
        "due_date": doc.due_date,
        "total_amount": doc.total_amount,
        "amount_paid": doc.amount_paid,
        "outstanding": doc.outstanding,
        "approval_entry_id": doc.approval_entry_id,
    }


def _bank_tx_json(bt):
    return {
        "id": bt.pk,
        "account_id": bt.account_id,
        "date": bt.date,
        "amount": bt.amount,
        "description": bt.description,
        "external_id": bt.external_id,
        "status": bt.status,
        "matched_journal_entry_id": bt.matched_journal_entry_id,
    }


# ----------------------------
# Chart of accounts
# ----------------------------
@require_POST
@ledger_api
def create_account_view(request):
    data = _payload(request)
    account = account_service.create_account(
        request.company,
        name=data.get("name"),
        ac_type=data.get("ac_type"),
        code=data.get("code"),
        parent_id=data.get("parent_id"),
        user=_user(request),
    )
    return JsonResponse({"ok": True, "id": account.pk, "code": account.code}, status=201)


@require_POST
@ledger_api
def delete_account_view(request, account_id):
    account_service.delete_account(request.company, account_id, user=_user(request))
    return JsonResponse({"ok": True})


# ----------------------------
# Journal entries
# ----------------------------
@require_POST
@ledger_api
def post_journal_entry_view(request):
    data = _payload(request)
    date = _parse_date(data.get("date") or "", "date")
    je = ledger_service.post_journal_entry(
        request.company,
        date,
        data.get("description"),
        data.get("lines") or [],
        status=data.get("status") or "posted",
        reference=data.get("reference"),
        user=_user(request),
    )
    return JsonResponse({"ok": True, "entry": _entry_json(je)}, status=201)


@require_POST
@ledger_api
def post_draft_entry_view(request, entry_id):
    je = ledger_service.post_draft_entry(request.company, entry_id, user=_user(request))
    return JsonResponse({"ok": True, "entry": _entry_json(je)})


# ----------------------------
# Invoices & bills (kind comes from the URL conf)
# ----------------------------
@require_POST
@ledger_api
def save_document_view(request, kind, document_id=None):
    data = _payload(request)
    if document_id is not None:
        data["id"] = document_id
    doc = document_service.save_draft(kind, request.company, data, user=_user(request))
    return JsonResponse({"ok": True, kind: _document_json(doc)},
                        status=200 if document_id else 201)


@require_POST
@ledger_api
def approve_document_view(request, kind, document_id):
    data = _payload(request)
    doc = document_service.approve(
        kind, request.company, document_id,
        contra_account_id=data.get("contra_account_id"),
        date=data.get("date"),
        user=_user(request),
    )
    return JsonResponse({"ok": True, kind: _document_json(doc)})


@require_POST
@ledger_api
def pay_document_view(request, kind, document_id):
    data = _payload(request)
    doc = document_service.record_payment(
        kind, request.company, document_id,
        payment_account_id=data.get("payment_account_id"),
        amount=data.get("amount"),
        date=data.get("date"),
        reference=data.get("reference"),
        user=_user(request),
    )
    return JsonResponse({"ok": True, kind: _document_json(doc)})


@require_POST
@ledger_api
def reopen_document_view(request, kind, document_id):
    doc = document_service.reopen(kind, request.company, document_id, user=_user(request))
    return JsonResponse({"ok": True, kind: _document_json(doc)})


@require_POST
@ledger_api
def void_document_view(request, kind, document_id):
    doc = document_service.void(kind, request.company, document_id, user=_user(request))
    return JsonResponse({"ok": True, kind: _document_json(doc)})


@require_POST
@ledger_api
def delete_document_view(request, kind, document_id):
    document_service.delete(kind, request.company, document_id, user=_user(request))
    return JsonResponse({"ok": True})


# ----------------------------
# Reports
# ----------------------------
@require_GET
@ledger_api
def trial_balance_view(request):
    report = reports.trial_balance(request.company, as_of=_query_date(request, "as_of"))
    return JsonResponse(report)


@require_GET
@ledger_api
def profit_and_loss_view(request):
    report = reports.profit_and_loss(
        request.company,
        start=_query_date(request, "start"),
        end=_query_date(request, "end"),
    )
    return JsonResponse(report)


@require_GET
@ledger_api
def balance_sheet_view(request):
    report = reports.balance_sheet(request.company, as_of=_query_date(request, "as_of"))
    return JsonResponse(report)


# ----------------------------
# Bank reconciliation
# ----------------------------
@require_GET
@ledger_api
def candidates_view(request, bank_transaction_id):
    entries = reconciliation.find_candidates(request.company, bank_transaction_id)
    return JsonResponse({"ok": True, "candidates": [_entry_json(je) for je in entries]})


@require_POST
@ledger_api
def match_view(request, bank_transaction_id):
    data = _payload(request)
    bt = reconciliation.match(
        request.company, bank_transaction_id, data.get("journal_entry_id"),
        user=_user(request),
    )
    return JsonResponse({"ok": True, "bank_transaction": _bank_tx_json(bt)})


@require_POST
@ledger_api
def create_and_match_view(request, bank_transaction_id):
    data = _payload(request)
    bt = reconciliation.create_and_match(
        request.company, bank_transaction_id, data.get("category_account_id"),
        description=data.get("description"),
        user=_user(request),
    )
    return JsonResponse({"ok": True, "bank_transaction": _bank_tx_json(bt)})


@require_POST
@ledger_api
def exclude_view(request, bank_transaction_id):
    bt = reconciliation.exclude(request.company, bank_transaction_id, user=_user(request))
    return JsonResponse({"ok": True, "bank_transaction": _bank_tx_json(bt)})


@require_POST
@ledger_api
def include_view(request, bank_transaction_id):
    bt = reconciliation.include(request.company, bank_transaction_id, user=_user(request))
    return JsonResponse({"ok": True, "bank_transaction": _bank_tx_json(bt)})


@require_POST
@ledger_api
def import_statement_view(request, account_id):
    """
    Accepts either a CSV upload (multipart field "file" or a text/csv body)
    or a JSON body {"rows": [{...}, ...]} of already tokenized rows.
    """
    if "file" in request.FILES:
        rows = parse_csv_text(request.FILES["file"].read())
    elif request.content_type == "text/csv":
        rows = parse_csv_text(request.body)
    else:
        rows = _payload(request).get("rows") or []
    created = reconciliation.import_statement(
        request.company, account_id, rows, user=_user(request))
    return JsonResponse({"ok": True, "imported": len(created)}, status=201)
