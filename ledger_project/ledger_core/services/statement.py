"""
Bank statement rows → BankTransaction field values.

The CSV itself is tokenized by the caller (see parse_csv_text for the
HTTP upload path); here we only map common bank headers onto our fields
and validate the values.
"""
import csv
import datetime
import io
from decimal import InvalidOperation
from django.utils import timezone
from ..amounts import quantize_money
from ..exceptions import StatementImportError

# Accepted headers per field, compared case-insensitively, first hit wins
DATE_HEADERS = ("date", "transaction date")
AMOUNT_HEADERS = ("amount", "transaction amount")
DESCRIPTION_HEADERS = ("description", "memo")
REFERENCE_HEADERS = ("reference", "transaction id")

DEFAULT_DESCRIPTION = "Imported Transaction"

# Tried in order. Month-first wins for ambiguous slashed dates,
# day-first only matches once the month-first reading is impossible.
DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%m/%d/%Y",  # also M/D/YYYY
    "%m-%d-%Y",
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%d %b %Y",  # 10 Mar 2024
    "%d %B %Y",
    "%b %d, %Y",  # Mar 10, 2024
    "%B %d, %Y",
)


def parse_statement_date(value):
    """Return a date for any of DATE_FORMATS, else None."""
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    text = str(value).strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def parse_statement_amount(value):
    """'$1,234.50' → Decimal('1234.50'); raises InvalidOperation."""
    if value is None:
        raise InvalidOperation("missing amount")
    if isinstance(value, str):
        value = value.replace("$", "").replace(",", "").strip()
        if not value:
            raise InvalidOperation("missing amount")
    return quantize_money(value)


def _pick(row, headers):
    for header in headers:
        value = row.get(header)
        if value not in (None, ""):
            return value
    return None


def map_statement_row(row, row_number, today=None):
    """
    Map one parsed CSV row to {date, amount, description, external_id}.
    Raises StatementImportError naming the (1-based) row on bad values.
    """
    if not isinstance(row, dict):
        raise StatementImportError(
            f"Row {row_number} is not a set of named columns", row_number=row_number)

    # Normalize header case and stray whitespace
    row = {
        str(key).strip().lstrip("\ufeff").lower(): value.strip() if isinstance(value, str) else value
        for key, value in row.items()
        if key is not None
    }

    raw_amount = _pick(row, AMOUNT_HEADERS)
    try:
        amount = parse_statement_amount(raw_amount)
    except InvalidOperation:
        raise StatementImportError(
            f"Invalid amount in row {row_number}: {raw_amount}", row_number=row_number)
    # a zero line can never be posted, so it could never be reconciled
    if amount == 0:
        raise StatementImportError(
            f"Zero amount in row {row_number}", row_number=row_number)

    raw_date = _pick(row, DATE_HEADERS)
    if raw_date is None:
        date = today or timezone.localdate()
    else:
        date = parse_statement_date(raw_date)
        if date is None:
            raise StatementImportError(
                f"Invalid date in row {row_number}: {raw_date}", row_number=row_number)

    reference = _pick(row, REFERENCE_HEADERS)
    return {
        "date": date,
        "amount": amount,
        "description": _pick(row, DESCRIPTION_HEADERS) or DEFAULT_DESCRIPTION,
        "external_id": str(reference) if reference is not None else None,
    }


def parse_csv_text(content):
    """Tokenize an uploaded CSV (str or bytes) into row dicts, skipping blank lines."""
    if isinstance(content, bytes):
        try:
            content = content.decode("utf-8-sig")  # Handle BOM
        except UnicodeDecodeError:
            raise StatementImportError("Statement file is not valid UTF-8 text")
    reader = csv.DictReader(io.StringIO(content))
    try:
        return [
            row for row in reader
            if any(value not in (None, "") for value in row.values())
        ]
    except csv.Error as e:
        raise StatementImportError(
            f"Malformed CSV near line {reader.line_num}: {e}")
