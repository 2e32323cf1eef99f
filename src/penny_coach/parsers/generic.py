"""Generic bank CSV parser.

Bank exports disagree on header names and sign conventions.  Headers are
matched case-insensitively against these variants (first non-empty wins):

    date:      date, transaction date, posted, posting date
    merchant:  merchant, description, details, name, payee
    category:  category (optional)
    amount:    amount, amt
    debit:     debit, withdrawal   (used only when no amount column is filled)
    credit:    credit, deposit

Sign convention of :class:`~penny_coach.models.MappedRow`:
    The bank's own sign is kept.  Debit columns become negative, credit
    columns positive.  :func:`to_transactions` converts into the engine's
    outflow-positive convention.

Rows without a usable date, merchant, or amount are skipped with a warning;
a bad row never aborts the file.  A date that is present but unparsable
falls back to *today*.
"""

from __future__ import annotations

import csv
import logging
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path

from penny_coach.models import MappedRow, StageResult, Transaction, generate_transaction_id

logger = logging.getLogger(__name__)

DATE_HEADERS = ("date", "transaction date", "posted", "posting date")
MERCHANT_HEADERS = ("merchant", "description", "details", "name", "payee")
CATEGORY_HEADERS = ("category",)
AMOUNT_HEADERS = ("amount", "amt")
DEBIT_HEADERS = ("debit", "withdrawal")
CREDIT_HEADERS = ("credit", "deposit")

DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%m/%d/%y", "%Y/%m/%d", "%d %b %Y")

_NON_NUMERIC_RE = re.compile(r"[^-0-9.]")


class MalformedRowError(ValueError):
    """A CSV row lacks a usable date, merchant, or amount."""


def map_row(row: dict[str, str], today: date) -> MappedRow:
    """Map one raw CSV row to a :class:`MappedRow`.

    Args:
        row: Raw row as read by ``csv.DictReader``.  Header case and
            surrounding whitespace are ignored.
        today: Date used when the row's date string cannot be parsed.

    Returns:
        The mapped row, amount in the bank's sign convention.

    Raises:
        MalformedRowError: If the date, merchant, or amount is missing, or
            the amount is not a number.
    """
    fields = {
        (k or "").strip().lower(): (v or "").strip()
        for k, v in row.items()
        if v is None or isinstance(v, str)
    }

    date_str = _first(fields, DATE_HEADERS)
    if not date_str:
        raise MalformedRowError("missing date")
    txn_date = _parse_date(date_str)
    if txn_date is None:
        logger.warning("Unparsable date %r, using %s", date_str, today.isoformat())
        txn_date = today

    merchant = _first(fields, MERCHANT_HEADERS)
    if not merchant:
        raise MalformedRowError("missing merchant")

    amount_str = _first(fields, AMOUNT_HEADERS)
    if amount_str:
        amount = _parse_amount(amount_str)
    else:
        debit = _first(fields, DEBIT_HEADERS)
        credit = _first(fields, CREDIT_HEADERS)
        if debit:
            amount = -abs(_parse_amount(debit))
        elif credit:
            amount = abs(_parse_amount(credit))
        else:
            raise MalformedRowError("missing amount")

    return MappedRow(
        date=txn_date,
        merchant=merchant,
        amount=amount,
        category=_first(fields, CATEGORY_HEADERS),
    )


def to_transactions(
    rows: list[dict[str, str]],
    source: str,
    today: date,
    bank_outflow_negative: bool = True,
) -> StageResult:
    """Map raw rows into Transactions, skipping malformed rows.

    Args:
        rows: Raw CSV rows.
        source: Name of the import source, used in transaction IDs and
            warnings.
        today: Fallback date for unparsable date strings.
        bank_outflow_negative: True if the bank writes spending as negative
            amounts; such amounts are negated so outflows are positive.

    Returns:
        A StageResult with one Transaction per usable row and a warning for
        every skipped row.  ``merchant_key`` and rule-derived fields are not
        filled in yet.
    """
    transactions: list[Transaction] = []
    warnings: list[str] = []

    for row_ordinal, row in enumerate(rows):
        try:
            mapped = map_row(row, today)
        except MalformedRowError as exc:
            warnings.append(f"{source}: skipped malformed row {row_ordinal} ({exc})")
            continue

        amount = -mapped.amount if bank_outflow_negative else mapped.amount
        transactions.append(
            Transaction(
                transaction_id=generate_transaction_id(
                    source=source,
                    txn_date=mapped.date,
                    merchant=mapped.merchant,
                    amount=amount,
                    row_ordinal=row_ordinal,
                ),
                date=mapped.date,
                merchant=mapped.merchant,
                amount=amount,
                category=mapped.category,
                source_file=source,
            )
        )

    return StageResult(transactions=transactions, warnings=warnings)


def read_rows(file_path: Path) -> list[dict[str, str]]:
    """Read a CSV file into raw rows with lower-cased, stripped headers.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file has no header row.
    """
    with open(file_path, newline="", encoding="utf-8-sig") as f:
        reader = csv.DictReader(f)
        if reader.fieldnames is None:
            raise ValueError("empty file or no header row")
        reader.fieldnames = [name.strip().lower() for name in reader.fieldnames]
        return [dict(row) for row in reader]


def parse(file_path: Path, today: date, bank_outflow_negative: bool = True) -> StageResult:
    """Parse a bank CSV file into Transactions.

    Returns:
        A StageResult containing parsed transactions, warnings for skipped
        rows, and errors if the file cannot be read at all.
    """
    source = Path(file_path).name

    try:
        rows = read_rows(file_path)
    except FileNotFoundError:
        return StageResult(errors=[f"{source}: file not found"])
    except (OSError, ValueError, csv.Error) as exc:
        return StageResult(errors=[f"{source}: {exc}"])

    return to_transactions(rows, source, today, bank_outflow_negative)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _first(fields: dict[str, str], headers: tuple[str, ...]) -> str:
    """Return the first non-empty value among *headers*."""
    for header in headers:
        value = fields.get(header, "")
        if value:
            return value
    return ""


def _parse_date(value: str) -> date | None:
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    # ISO timestamps such as "2026-01-15T08:30:00".
    try:
        return datetime.strptime(value[:10], "%Y-%m-%d").date()
    except ValueError:
        return None


def _parse_amount(value: str) -> Decimal:
    """Parse ``"$1,234.56"``-style text; raises MalformedRowError if not a number."""
    cleaned = _NON_NUMERIC_RE.sub("", value)
    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        raise MalformedRowError(f"invalid amount: {value!r}") from None
    return amount
