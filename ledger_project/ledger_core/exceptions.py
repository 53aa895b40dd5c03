""" Error taxonomy for the ledger core.

- LedgerValidationError: caller-fixable, surfaced verbatim (HTTP 400)
- LedgerReferenceError: stale client view or tenancy violation (HTTP 404)
- LedgerIntegrityError: system fault, never shown in detail (HTTP 500)
"""


class LedgerValidationError(Exception):
    """Base for errors the caller can fix by changing the request."""
    status_code = 400


class LedgerReferenceError(Exception):
    """Base for lookups that miss inside the caller's company."""
    status_code = 404


class LedgerIntegrityError(Exception):
    """Base for broken ledger invariants. Must alert, never auto-correct."""
    status_code = 500
    public_message = "Data integrity error, please contact support."


# ---------- Validation errors ----------
class InsufficientLines(LedgerValidationError):
    """Raised when a JournalEntry has fewer than two lines."""
    pass


class UnbalancedEntryError(LedgerValidationError):
    """Raised when a JournalEntry fails double-entry balance check."""
    pass


class InvalidJournalLine(LedgerValidationError):
    """Raised for negative, zero-value or two-sided journal lines."""
    pass


class InvalidStateTransition(LedgerValidationError):
    """Raised when a document or entry is asked for a transition its status forbids."""
    pass


class AlreadyMatched(LedgerValidationError):
    """Raised when matching a bank transaction that is not unmatched."""
    pass


class MissingContraAccount(LedgerValidationError):
    """Raised when no AR/AP account is given or configured for approval."""
    pass


class InvalidPaymentAmount(LedgerValidationError):
    pass


class OverpaymentError(LedgerValidationError):
    """Raised when a payment exceeds the document's outstanding amount."""
    pass


class SystemAccountError(LedgerValidationError):
    pass


class AccountInUseError(LedgerValidationError):
    pass


class StatementImportError(LedgerValidationError):
    """Raised on the first bad row of a bank statement; nothing is imported."""

    def __init__(self, message, row_number=None):
        super().__init__(message)
        self.row_number = row_number


# ---------- Referential errors ----------
class AccountNotFound(LedgerReferenceError):
    pass


class CrossOrganizationAccountError(LedgerReferenceError):
    """Raised when a line references an account of another company."""
    pass


class DocumentNotFound(LedgerReferenceError):
    pass


class CounterpartyNotFound(LedgerReferenceError):
    """Customer or vendor missing from the caller's company."""
    pass


class JournalEntryNotFound(LedgerReferenceError):
    pass


class BankTransactionNotFound(LedgerReferenceError):
    pass


# ---------- Invariant violations ----------
class TrialBalanceMismatch(LedgerIntegrityError):
    """Raised when posted debits and credits disagree across the ledger."""

    def __init__(self, message, total_debit=None, total_credit=None):
        super().__init__(message)
        self.total_debit = total_debit
        self.total_credit = total_credit
