"""Ledger CSV storage and plain-text report printers.

- :func:`write_ledger` / :func:`read_ledger` keep all imported transactions
  in ``output_dir/transactions.csv``, newest first.
- :func:`print_import_summary`, :func:`print_findings`, :func:`print_budgets`,
  :func:`print_subscriptions`, and :func:`print_insights` print
  human-readable reports to stdout.
"""

from __future__ import annotations

import csv
from collections import Counter
from datetime import date
from decimal import Decimal
from pathlib import Path

from penny_coach.models import (
    Budget,
    Insight,
    RecurrenceFinding,
    StageResult,
    SubscriptionView,
    Transaction,
)

LEDGER_FILENAME = "transactions.csv"

# Fixed ledger column order.
CSV_COLUMNS = [
    "transaction_id",
    "date",
    "merchant",
    "merchant_key",
    "amount",
    "category",
    "is_subscription",
    "source_file",
]


# ---------------------------------------------------------------------------
# Ledger CSV
# ---------------------------------------------------------------------------


def write_ledger(transactions: list[Transaction], output_dir: str | Path) -> Path:
    """Write the full ledger to ``output_dir/transactions.csv``.

    Rows are sorted by date, newest first.  Overwrites the existing file.

    Args:
        transactions: Complete ledger.
        output_dir: Directory to write the CSV file into.

    Returns:
        The :class:`~pathlib.Path` to the written CSV file.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    output_path = output_dir / LEDGER_FILENAME

    ordered = sorted(transactions, key=lambda t: t.date, reverse=True)

    with open(output_path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=CSV_COLUMNS)
        writer.writeheader()
        for txn in ordered:
            writer.writerow(
                {
                    "transaction_id": txn.transaction_id,
                    "date": txn.date.isoformat(),
                    "merchant": txn.merchant,
                    "merchant_key": txn.merchant_key,
                    "amount": str(txn.amount),
                    "category": txn.category,
                    "is_subscription": str(txn.is_subscription),
                    "source_file": txn.source_file,
                }
            )

    return output_path


def read_ledger(output_dir: str | Path) -> list[Transaction]:
    """Read the ledger written by :func:`write_ledger`.

    Returns:
        The stored transactions, or an empty list if no ledger exists yet.
    """
    ledger_path = Path(output_dir) / LEDGER_FILENAME
    if not ledger_path.is_file():
        return []

    transactions: list[Transaction] = []
    with open(ledger_path, newline="", encoding="utf-8") as f:
        for row in csv.DictReader(f):
            transactions.append(
                Transaction(
                    transaction_id=row["transaction_id"],
                    date=date.fromisoformat(row["date"]),
                    merchant=row["merchant"],
                    merchant_key=row["merchant_key"],
                    amount=Decimal(row["amount"]),
                    category=row["category"],
                    is_subscription=row["is_subscription"] == "True",
                    source_file=row.get("source_file", ""),
                )
            )
    return transactions


# ---------------------------------------------------------------------------
# Report printers
# ---------------------------------------------------------------------------


def print_import_summary(result: StageResult, imported: int, ledger_size: int) -> None:
    """Print what an import run did.

    Args:
        result: Accumulated StageResult of the import.
        imported: Number of new transactions added to the ledger.
        ledger_size: Ledger size after the import.
    """
    category_counts: Counter[str] = Counter(t.category for t in result.transactions)

    print()
    print("== Import Summary ==")
    print(f"Parsed:   {len(result.transactions)} transactions")
    print(f"Added:    {imported} new ({ledger_size} in ledger)")

    if category_counts:
        print()
        print("By category:")
        for cat, count in category_counts.most_common():
            print(f"  {cat + ':':<25} {count}")

    _print_problems(result)
    print()


def print_findings(findings: list[RecurrenceFinding]) -> None:
    """Print detected recurring charges as a table."""
    print()
    if not findings:
        print("No recurring charges detected.")
        print()
        return

    print("== Recurring Charges ==")
    print(f"  {'Merchant':<30} {'Approx.':>10}  {'Last charge':<11}  Matches")
    for f in findings:
        print(
            f"  {f.merchant_key:<30} {f.average_amount:>10,.2f}  "
            f"{f.last_charge_date.isoformat():<11}  {f.occurrence_count}"
        )
    print()


def print_subscriptions(views: list[SubscriptionView]) -> None:
    """Print the merged subscription list."""
    if not views:
        return

    print("== Subscriptions ==")
    for v in views:
        last = v.last_charge.isoformat() if v.last_charge else "-"
        status = "" if v.active else "  (inactive)"
        print(f"  {v.merchant:<30} {v.amount:>10,.2f}  {last:<11}  {v.matches}{status}")
    print()


def print_budgets(budgets: list[Budget], month: str) -> None:
    """Print the limits set for *month*."""
    limits = [b for b in budgets if b.month == month]
    if not limits:
        print(f"No budgets set for {month}.")
        return

    print(f"== Budgets {month} ==")
    for b in limits:
        print(f"  {b.category + ':':<25} {b.limit:>10,.2f}")
    total = sum((b.limit for b in limits), Decimal("0"))
    print(f"  {'Total:':<25} {total:>10,.2f}")


def print_insights(insights: list[Insight]) -> None:
    """Print insights, one numbered entry each."""
    print()
    if not insights:
        print("On track: no insights this month.")
        print()
        return

    print("== Insights ==")
    for i, insight in enumerate(insights, start=1):
        print(f"  {i}. {insight.title}")
        print(f"     {insight.detail}")
    print()


def _print_problems(result: StageResult) -> None:
    if result.warnings:
        print()
        print(f"Warnings: {len(result.warnings)}")
        for w in result.warnings:
            print(f"  - {w}")

    if result.errors:
        print()
        print(f"Errors: {len(result.errors)}")
        for e in result.errors:
            print(f"  - {e}")
