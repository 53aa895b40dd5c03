from django.urls import path
from . import views

app_name = "ledger_core"


def _document_urls(kind, prefix):
    """Same lifecycle endpoints for invoices and bills."""
    k = {"kind": kind}
    return [
        path(f"{prefix}/", views.save_document_view, k, name=f"{kind}-create"),
        path(f"{prefix}/<int:document_id>/", views.save_document_view, k,
             name=f"{kind}-update"),
        path(f"{prefix}/<int:document_id>/approve/", views.approve_document_view, k,
             name=f"{kind}-approve"),
        path(f"{prefix}/<int:document_id>/pay/", views.pay_document_view, k,
             name=f"{kind}-pay"),
        path(f"{prefix}/<int:document_id>/reopen/", views.reopen_document_view, k,
             name=f"{kind}-reopen"),
        path(f"{prefix}/<int:document_id>/void/", views.void_document_view, k,
             name=f"{kind}-void"),
        path(f"{prefix}/<int:document_id>/delete/", views.delete_document_view, k,
             name=f"{kind}-delete"),
    ]


urlpatterns = [
    path("accounts/", views.create_account_view, name="account-create"),
    path("accounts/<int:account_id>/delete/", views.delete_account_view,
         name="account-delete"),
    path("accounts/<int:account_id>/import-statement/", views.import_statement_view,
         name="statement-import"),

    path("journal-entries/", views.post_journal_entry_view, name="journal-create"),
    path("journal-entries/<int:entry_id>/post/", views.post_draft_entry_view,
         name="journal-post"),

    *_document_urls("invoice", "invoices"),
    *_document_urls("bill", "bills"),

    path("reports/trial-balance/", views.trial_balance_view, name="trial-balance"),
    path("reports/profit-and-loss/", views.profit_and_loss_view, name="profit-and-loss"),
    path("reports/balance-sheet/", views.balance_sheet_view, name="balance-sheet"),

    path("bank-transactions/<int:bank_transaction_id>/candidates/",
         views.candidates_view, name="bank-candidates"),
    path("bank-transactions/<int:bank_transaction_id>/match/",
         views.match_view, name="bank-match"),
    path("bank-transactions/<int:bank_transaction_id>/create-and-match/",
         views.create_and_match_view, name="bank-create-and-match"),
    path("bank-transactions/<int:bank_transaction_id>/exclude/",
         views.exclude_view, name="bank-exclude"),
    path("bank-transactions/<int:bank_transaction_id>/include/",
         views.include_view, name="bank-include"),
]
