"""Pipeline orchestration for Penny Coach.

Three flows are composed here:

* **Import** -- map raw CSV rows, normalize merchants and apply rules, then
  merge into the existing ledger without duplicating rows already imported.
* **Editing** -- hand-entered and deleted transactions, budget limits, and
  subscription records, each returned as a new list.
* **Analysis** -- one pass over a caller-owned snapshot of transactions,
  budgets, and subscriptions producing recurrence findings, proposed
  subscription upserts, the merged subscription view, and insights.

Every function here works on in-memory data; reading and writing files is
left to ``config`` and ``export``.  Each analysis pass is independent, so a
caller running several passes over overlapping data keeps whichever result
it started last.
"""

from __future__ import annotations

import dataclasses
import logging
from datetime import date
from decimal import Decimal
from pathlib import Path

from penny_coach.insights import (
    budgets_for_month,
    build_insights,
    month_pace,
    spend_by_category,
    transactions_in_month,
)
from penny_coach.merchants import normalize_merchant
from penny_coach.models import (
    AnalysisResult,
    AppConfig,
    Budget,
    MerchantRule,
    StageResult,
    Subscription,
    Transaction,
    generate_transaction_id,
)
from penny_coach.parsers import parse, to_transactions
from penny_coach.recurring import (
    detect_recurring,
    merge_subscription_view,
    plan_subscription_upserts,
)
from penny_coach.rules import categorize, edit_merchant

logger = logging.getLogger(__name__)

# Source name recorded on hand-entered transactions.
MANUAL_SOURCE = "manual"


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------


def import_rows(
    rows: list[dict[str, str]],
    source: str,
    rules: dict[str, MerchantRule],
    config: AppConfig,
    today: date,
) -> StageResult:
    """Map raw rows into categorized Transactions.

    Malformed rows are skipped with a warning; the rest of the batch is
    still imported.

    Args:
        rows: Raw CSV rows.
        source: Import source name, e.g. the CSV file name.
        rules: Rules indexed by merchant key.
        config: Application configuration.
        today: Fallback date for unparsable date strings.

    Returns:
        A StageResult with the new transactions and any warnings.
    """
    mapped = to_transactions(rows, source, today, config.bank_outflow_negative)
    categorized = categorize(mapped.transactions, rules, config.default_category)
    logger.info("Mapped %d of %d rows from %s", len(categorized.transactions), len(rows), source)
    return StageResult(
        transactions=categorized.transactions,
        warnings=mapped.warnings + categorized.warnings,
        errors=mapped.errors + categorized.errors,
    )


def import_file(
    file_path: Path,
    rules: dict[str, MerchantRule],
    config: AppConfig,
    today: date,
) -> StageResult:
    """Parse a bank CSV file and apply rules to every transaction."""
    parse_result = parse(file_path, today, config.bank_outflow_negative)
    cat_result = categorize(parse_result.transactions, rules, config.default_category)
    logger.info("Parsed %d transactions from %s", len(cat_result.transactions), file_path)
    return StageResult(
        transactions=cat_result.transactions,
        warnings=parse_result.warnings + cat_result.warnings,
        errors=parse_result.errors + cat_result.errors,
    )


def merge_ledger(
    ledger: list[Transaction],
    incoming: list[Transaction],
) -> StageResult:
    """Add *incoming* transactions to *ledger*, skipping known IDs.

    Existing ledger rows win over incoming rows with the same
    ``transaction_id``, so user edits survive a re-import of the same file.

    Returns:
        StageResult with the merged ledger in reverse chronological order.
    """
    seen: set[str] = set()
    merged: list[Transaction] = []
    dup_count = 0

    for txn in ledger + incoming:
        if txn.transaction_id in seen:
            dup_count += 1
            continue
        seen.add(txn.transaction_id)
        merged.append(txn)

    warnings: list[str] = []
    if dup_count > 0:
        warnings.append(f"Skipped {dup_count} already-imported transaction(s)")

    merged.sort(key=lambda t: t.date, reverse=True)
    return StageResult(transactions=merged, warnings=warnings)


def edit_transaction(
    ledger: list[Transaction],
    transaction_id: str,
    merchant: str,
    rules: dict[str, MerchantRule],
    config: AppConfig,
) -> list[Transaction]:
    """Change one transaction's merchant text and re-apply rules.

    Returns:
        A new ledger list with the edited transaction replaced.

    Raises:
        KeyError: If no transaction has *transaction_id*.
    """
    for index, txn in enumerate(ledger):
        if txn.transaction_id == transaction_id:
            edited = edit_merchant(txn, merchant, rules, config.default_category)
            logger.info(
                "Edited %s: %r -> %r (%s)", transaction_id, txn.merchant, edited.merchant, edited.category
            )
            return ledger[:index] + [edited] + ledger[index + 1 :]
    raise KeyError(transaction_id)


def add_transaction(
    ledger: list[Transaction],
    txn_date: date,
    merchant: str,
    amount: Decimal,
    rules: dict[str, MerchantRule],
    config: AppConfig,
    category: str = "",
) -> tuple[list[Transaction], Transaction]:
    """Add a hand-entered transaction to *ledger*.

    Rules are applied as on import.  An explicit *category* overrides the
    rule's category; the subscription flag still comes from the rule.

    Args:
        ledger: Current ledger.
        txn_date: Date of the charge.
        merchant: Merchant text as the user typed it.
        amount: Signed amount, positive for spending.
        rules: Rules indexed by merchant key.
        config: Application configuration.
        category: Optional category chosen by the user.

    Returns:
        ``(new_ledger, added_transaction)``.
    """
    merchant = merchant.strip()
    known_ids = {t.transaction_id for t in ledger}
    ordinal = len(ledger)
    while True:
        txn_id = generate_transaction_id(MANUAL_SOURCE, txn_date, merchant, amount, ordinal)
        if txn_id not in known_ids:
            break
        ordinal += 1

    txn = Transaction(
        transaction_id=txn_id,
        date=txn_date,
        merchant=merchant,
        amount=amount,
        category="",
        source_file=MANUAL_SOURCE,
    )
    categorize([txn], rules, config.default_category)
    if category:
        txn.category = category

    logger.info("Added %s: %s %s (%s)", txn_id, txn.merchant_key, amount, txn.category)
    merged = sorted(ledger + [txn], key=lambda t: t.date, reverse=True)
    return merged, txn


def delete_transaction(ledger: list[Transaction], transaction_id: str) -> list[Transaction]:
    """Return *ledger* without the transaction with *transaction_id*.

    Raises:
        KeyError: If no transaction has *transaction_id*.
    """
    remaining = [t for t in ledger if t.transaction_id != transaction_id]
    if len(remaining) == len(ledger):
        raise KeyError(transaction_id)
    return remaining


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------


def analyze(
    transactions: list[Transaction],
    budgets: list[Budget],
    subscriptions: list[Subscription],
    config: AppConfig,
    today: date,
) -> AnalysisResult:
    """Run one analysis pass over a snapshot.

    Args:
        transactions: Ledger snapshot.
        budgets: All stored budgets; only those for ``today``'s month are
            used.
        subscriptions: Stored subscriptions.
        config: Application configuration.
        today: Reference date for the lookback window and month pace.

    Returns:
        An :class:`AnalysisResult`.  The subscription view includes the
        proposed upserts, as the list will look once they are stored.
    """
    findings = detect_recurring(transactions, today, config.lookback_days)
    upserts = plan_subscription_upserts(findings, subscriptions)
    view = merge_subscription_view(apply_upserts(subscriptions, upserts), findings)

    month = today.strftime("%Y-%m")
    month_txns = transactions_in_month(transactions, month)
    day_of_month, days_in_month = month_pace(today)
    insights = build_insights(
        spend_by_category(month_txns),
        budgets_for_month(budgets, month),
        month_txns,
        day_of_month,
        days_in_month,
        max_insights=config.max_insights,
        overspend_slack=config.overspend_slack,
        under_pace_slack=config.under_pace_slack,
    )

    logger.info(
        "Analysis for %s: %d findings, %d new subscriptions, %d insights",
        today.isoformat(),
        len(findings),
        len(upserts),
        len(insights),
    )
    return AnalysisResult(
        findings=findings,
        upserts=upserts,
        subscriptions=view,
        insights=insights,
    )


def apply_upserts(
    subscriptions: list[Subscription],
    upserts: list[Subscription],
) -> list[Subscription]:
    """Return *subscriptions* with *upserts* applied.

    An upsert for a merchant key with no stored record is appended.  One
    that matches a paused (inactive) record reactivates it and refreshes its
    match count; the stored amount and last charge date are kept.  Active
    stored records are never changed.
    """
    merged = list(subscriptions)
    index_by_key = {normalize_merchant(s.merchant): i for i, s in enumerate(merged)}
    for sub in upserts:
        key = normalize_merchant(sub.merchant)
        index = index_by_key.get(key)
        if index is None:
            index_by_key[key] = len(merged)
            merged.append(sub)
            continue
        stored = merged[index]
        if stored.active:
            logger.debug("Keeping stored subscription for %s", key)
            continue
        logger.info("Reactivating subscription for %s", key)
        merged[index] = dataclasses.replace(stored, active=True, match_count=sub.match_count)
    return merged


def count_upserts(
    subscriptions: list[Subscription],
    upserts: list[Subscription],
) -> tuple[int, int]:
    """Return ``(added, reactivated)``: what :func:`apply_upserts` would change."""
    stored = {normalize_merchant(s.merchant): s for s in subscriptions}
    added = reactivated = 0
    for sub in upserts:
        match = stored.get(normalize_merchant(sub.merchant))
        if match is None:
            added += 1
        elif not match.active:
            reactivated += 1
    return added, reactivated


# ---------------------------------------------------------------------------
# Budgets and subscriptions
# ---------------------------------------------------------------------------


def set_budget(budgets: list[Budget], category: str, month: str, limit: Decimal) -> list[Budget]:
    """Insert or replace the limit for (*category*, *month*).

    A replaced budget keeps its position; a new one is appended.
    """
    updated: list[Budget] = []
    replaced = False
    for budget in budgets:
        if budget.category == category and budget.month == month:
            if not replaced:
                updated.append(Budget(category=category, month=month, limit=limit))
                replaced = True
            continue
        updated.append(budget)
    if not replaced:
        updated.append(Budget(category=category, month=month, limit=limit))
    return updated


def remove_budget(budgets: list[Budget], category: str, month: str) -> list[Budget]:
    """Return *budgets* without the limit for (*category*, *month*).

    Raises:
        KeyError: If no such budget exists.
    """
    remaining = [b for b in budgets if not (b.category == category and b.month == month)]
    if len(remaining) == len(budgets):
        raise KeyError(f"{category} {month}")
    return remaining


def add_subscription(
    subscriptions: list[Subscription],
    merchant: str,
    amount: Decimal,
) -> list[Subscription]:
    """Create a subscription by hand, or update the one for the same merchant.

    An existing record (matched by merchant key) takes the new amount and is
    marked active; its last charge date and match count are kept.
    """
    key = normalize_merchant(merchant)
    updated = list(subscriptions)
    for index, sub in enumerate(updated):
        if normalize_merchant(sub.merchant) == key:
            updated[index] = dataclasses.replace(sub, amount=amount, active=True)
            return updated
    updated.append(Subscription(merchant=merchant.strip(), amount=amount))
    return updated


def set_subscription_active(
    subscriptions: list[Subscription],
    merchant: str,
    active: bool,
) -> list[Subscription]:
    """Pause or resume every subscription whose merchant key matches *merchant*.

    Raises:
        KeyError: If no subscription matches.
    """
    key = normalize_merchant(merchant)
    found = False
    updated: list[Subscription] = []
    for sub in subscriptions:
        if normalize_merchant(sub.merchant) == key:
            sub = dataclasses.replace(sub, active=active)
            found = True
        updated.append(sub)
    if not found:
        raise KeyError(key)
    return updated


def remove_subscription(subscriptions: list[Subscription], merchant: str) -> list[Subscription]:
    """Return *subscriptions* without those matching *merchant*'s key.

    Raises:
        KeyError: If no subscription matches.
    """
    key = normalize_merchant(merchant)
    remaining = [s for s in subscriptions if normalize_merchant(s.merchant) != key]
    if len(remaining) == len(subscriptions):
        raise KeyError(key)
    return remaining
